"""Community feedback votes, weighted consensus and override recommendations.

Votes are weighted by the voter's reputation tier and trust level. Once a
content item has min_votes_for_consensus votes the weighted consensus is
computed; strong disagreement produces an override recommendation queued for
an administrator, never applied automatically.

Design notes:
- Duplicate votes are rejected twice over: an explicit has_voted() check for
  a friendly message and the (content_id, voter_id) unique constraint for
  concurrent submissions.
- confidence_score starts from the decisiveness of the vote,
  max(agreement, 1 - agreement), so a community that clearly disagrees with
  a decision is as confident as one that clearly agrees.
- Learning nudges go through record_threshold_adjustment(), which records at
  most one nudge per content id; only a newly recorded nudge moves the live
  thresholds.
"""

from collections import Counter
from datetime import timedelta
from typing import Optional

import structlog

from modcore.config import Settings, settings
from modcore.errors import DuplicateVote, InsufficientVotes, StoreUnavailable
from modcore.metrics import override_recommendations_total, votes_total
from modcore.models.base import utcnow
from modcore.schemas.consensus import (
    ConsensusResult,
    FeedbackOpportunity,
    FeedbackVote,
    OpportunityPriority,
    OverrideRecommendation,
    OverrideStatus,
    VoteOutcome,
    VoteSubmission,
)
from modcore.schemas.decision import (
    DecisionAction,
    DecisionSource,
    ModerationDecision,
    QueueType,
)
from modcore.schemas.reputation import (
    EXPERT_LEVELS,
    EventCategory,
    ReputationEvent,
    ReputationProfile,
    TrustLevelName,
)
from modcore.services.decision import BLOCK_THRESHOLD, DecisionEngine
from modcore.services.reputation import ReputationEngine
from modcore.store import ModerationStore

log = structlog.get_logger()

TRUST_WEIGHT_MULTIPLIERS: dict[TrustLevelName, float] = {
    TrustLevelName.admin: 3.0,
    TrustLevelName.moderator: 3.0,
    TrustLevelName.expert: 2.5,
    TrustLevelName.trusted: 1.5,
    TrustLevelName.new: 0.8,
    TrustLevelName.restricted: 0.3,
}
TRUSTED_LEVELS = EXPERT_LEVELS | {TrustLevelName.trusted}

MIN_VOTE_WEIGHT = 0.1
MAX_VOTE_WEIGHT = 3.0
VOTE_BASE_POINTS = 5
OPPORTUNITY_WINDOW_DAYS = 7
OVERRIDE_QUEUE_PRIORITY = 8

ALREADY_VOTED = "You have already provided feedback for this content"


def vote_weight(reputation: float, trust_level: TrustLevelName) -> float:
    """Weight of a vote, always within [0.1, 3.0]."""
    if reputation >= 500:
        weight = 2.0
    elif reputation >= 300:
        weight = 1.5
    elif reputation >= 150:
        weight = 1.2
    elif reputation < 50:
        weight = 0.5
    else:
        weight = 1.0
    weight *= TRUST_WEIGHT_MULTIPLIERS.get(trust_level, 1.0)
    return min(MAX_VOTE_WEIGHT, max(MIN_VOTE_WEIGHT, weight))


def vote_points(weight: float, was_accurate: bool) -> int:
    return round(VOTE_BASE_POINTS * min(weight, 2.0) * (1.2 if was_accurate else 0.8))


def consensus_action(votes: list[FeedbackVote], original: DecisionAction) -> DecisionAction:
    """Action with the highest weighted vote mass.

    A vote counts for its suggested action, or for the original action when it
    affirms accuracy without a suggestion. Zero mass, or a tie that includes
    the original action, resolves to the original; other ties resolve to the
    least severe tied action.
    """
    mass = {action: 0.0 for action in DecisionAction}
    for vote in votes:
        if vote.suggested_action is not None:
            mass[vote.suggested_action] += vote.weight
        elif vote.was_accurate:
            mass[original] += vote.weight
    best = max(mass.values())
    if best <= 0:
        return original
    tied = [action for action, value in mass.items() if value == best]
    if original in tied:
        return original
    return min(tied, key=lambda action: action.severity)


def consensus_confidence(agreement: float, expert_votes: int, total_votes: int, min_votes: int) -> float:
    confidence = max(agreement, 1 - agreement)
    if expert_votes > 0:
        confidence += min(expert_votes * 0.1, 0.3)
    if total_votes >= min_votes:
        confidence += min((total_votes - min_votes) * 0.05, 0.2)
    return min(1.0, max(0.0, confidence))


def opportunity_priority(confidence: float) -> OpportunityPriority:
    if confidence < 0.6:
        return OpportunityPriority.high
    if confidence < 0.8:
        return OpportunityPriority.medium
    return OpportunityPriority.low


_OPPORTUNITY_BASE_POINTS = {
    OpportunityPriority.high: 10,
    OpportunityPriority.medium: 7,
    OpportunityPriority.low: 5,
}


def opportunity_points(reputation: float, priority: OpportunityPriority) -> int:
    return round(_OPPORTUNITY_BASE_POINTS[priority] * min(reputation / 200, 2.0))


class ConsensusEngine:
    def __init__(
        self,
        store: ModerationStore,
        reputation: ReputationEngine,
        decisions: DecisionEngine,
        app_settings: Settings = settings,
    ) -> None:
        self._store = store
        self._reputation = reputation
        self._decisions = decisions
        self._settings = app_settings

    # ------------------------------------------------------------------
    # Votes
    # ------------------------------------------------------------------

    async def submit_vote(
        self, content_id: str, voter_id: str, submission: VoteSubmission
    ) -> VoteOutcome:
        decision = await self._store.find_decision(content_id)
        if decision is None:
            return self._rejected("no_decision", "Original moderation decision not found")

        voter = await self._reputation.get_profile(voter_id)
        if voter.overall_score < self._settings.min_voter_reputation:
            return self._rejected(
                "low_reputation",
                f"Minimum reputation of {self._settings.min_voter_reputation:g} required to vote",
            )

        if await self._store.has_voted(content_id, voter_id):
            return self._rejected("duplicate", ALREADY_VOTED)

        vote = self._build_vote(decision, voter_id, voter, submission)
        try:
            await self._store.record_vote(vote)
        except DuplicateVote:
            return self._rejected("duplicate", ALREADY_VOTED)
        except StoreUnavailable:
            return self._rejected("store_error", "Failed to submit feedback")

        points = vote_points(vote.weight, vote.was_accurate)
        try:
            await self._reputation.record_event(
                voter_id,
                ReputationEvent(
                    category=EventCategory.community_feedback,
                    action_type="community_feedback_vote",
                    impact=points,
                    reason=(
                        f"Community feedback vote (weight: {vote.weight:.1f}, "
                        f"accuracy: {'correct' if vote.was_accurate else 'disputed'})"
                    ),
                ),
            )
        except StoreUnavailable:
            log.warning("vote_points_not_awarded", voter_id=voter_id, content_id=content_id)
            points = 0

        votes_total.labels(outcome="accepted").inc()
        log.info(
            "feedback_vote_recorded",
            content_id=content_id,
            voter_id=voter_id,
            weight=vote.weight,
            was_accurate=vote.was_accurate,
        )

        try:
            await self.analyze_if_ready(content_id)
        except StoreUnavailable:
            log.warning("consensus_analysis_deferred", content_id=content_id)

        return VoteOutcome(
            accepted=True,
            reason="Thank you for your feedback!",
            weight=vote.weight,
            points_earned=points,
        )

    @staticmethod
    def _rejected(outcome: str, reason: str) -> VoteOutcome:
        votes_total.labels(outcome=outcome).inc()
        return VoteOutcome(accepted=False, reason=reason)

    @staticmethod
    def _build_vote(
        decision: ModerationDecision,
        voter_id: str,
        voter: ReputationProfile,
        submission: VoteSubmission,
    ) -> FeedbackVote:
        return FeedbackVote(
            content_id=decision.content_id,
            voter_id=voter_id,
            original_action=decision.action,
            was_accurate=submission.was_accurate,
            suggested_action=submission.suggested_action,
            severity=submission.resolved_severity(),
            categories=tuple(submission.categories),
            explanation=submission.explanation,
            weight=vote_weight(voter.overall_score, voter.trust_level),
            voter_reputation=voter.overall_score,
            voter_trust_level=voter.trust_level,
            submitted_at=utcnow(),
        )

    # ------------------------------------------------------------------
    # Consensus
    # ------------------------------------------------------------------

    async def _votes_for_consensus(self, content_id: str) -> list[FeedbackVote]:
        """Votes on a content item once there are enough for a consensus.

        Raises:
            InsufficientVotes: Below min_votes_for_consensus.
        """
        votes = await self._store.list_votes(content_id)
        required = self._settings.min_votes_for_consensus
        if len(votes) < required:
            raise InsufficientVotes(content_id, len(votes), required)
        return votes

    async def compute_consensus(self, content_id: str) -> Optional[ConsensusResult]:
        """Weighted consensus for a decided content item, or None while pending."""
        try:
            votes = await self._votes_for_consensus(content_id)
        except InsufficientVotes as exc:
            log.debug("consensus_pending", content_id=content_id, votes=exc.votes)
            return None
        decision = await self._store.find_decision(content_id)
        if decision is None:
            return None
        return self.evaluate_votes(decision, votes)

    def evaluate_votes(
        self, decision: ModerationDecision, votes: list[FeedbackVote]
    ) -> ConsensusResult:
        total = len(votes)
        accurate = sum(1 for v in votes if v.was_accurate)
        agreement = accurate / total
        experts = [v for v in votes if v.voter_trust_level in EXPERT_LEVELS]
        trusted = sum(1 for v in votes if v.voter_trust_level in TRUSTED_LEVELS)

        category_weights: dict[str, float] = {}
        for vote in votes:
            for category in vote.categories:
                category_weights[category] = category_weights.get(category, 0.0) + vote.weight

        action = consensus_action(votes, decision.action)
        confidence = consensus_confidence(
            agreement, len(experts), total, self._settings.min_votes_for_consensus
        )
        expert_dissent = sum(1 for v in experts if not v.was_accurate)

        override, reason = False, "Community feedback supports original decision"
        if agreement < 0.3 and confidence > 0.7:
            override, reason = True, "Strong community disagreement with high confidence"
        elif expert_dissent >= 2 and action != decision.action and confidence > 0.6:
            override, reason = True, "Expert community consensus differs from automated decision"
        elif decision.confidence < 0.6 and confidence > 0.8:
            override, reason = (
                True,
                "Low original confidence overridden by strong community consensus",
            )
        if override and action == decision.action:
            # Nothing to override to.
            override, reason = False, "Community feedback supports original decision"

        insights, rule_improvements = self._insights(decision, votes, agreement)
        return ConsensusResult(
            content_id=decision.content_id,
            original_action=decision.action,
            original_confidence=decision.confidence,
            total_votes=total,
            agreement_rate=round(agreement, 4),
            consensus_action=action,
            confidence_score=round(confidence, 4),
            expert_votes=len(experts),
            trusted_votes=trusted,
            override_recommended=override,
            recommended_action=action if override else None,
            reason=reason,
            category_weights=category_weights,
            insights=insights,
            rule_improvements=rule_improvements,
            threshold_adjustments=self._threshold_signal(decision, agreement, action, confidence),
        )

    @staticmethod
    def _insights(
        decision: ModerationDecision, votes: list[FeedbackVote], agreement: float
    ) -> tuple[list[str], list[str]]:
        insights: list[str] = []
        rule_improvements: list[str] = []
        if 1 - agreement > 0.5:
            insights.append("High disagreement suggests automated decision may be too aggressive")

        frequency = Counter(category for vote in votes for category in vote.categories)
        if frequency:
            top, count = frequency.most_common(1)[0]
            if count >= len(votes) * 0.6:
                insights.append(f"Community consistently identifies this as: {top}")
                if top == "false_positive":
                    rule_improvements.append(
                        f"Review rules that matched content {decision.content_id} "
                        "to reduce false positives"
                    )
        return insights, rule_improvements

    def _threshold_signal(
        self,
        decision: ModerationDecision,
        agreement: float,
        action: DecisionAction,
        confidence: float,
    ) -> dict[str, float]:
        s = self._settings
        if decision.action == DecisionAction.block and agreement < 0.5:
            step = s.threshold_step_up
        elif (
            decision.action == DecisionAction.allow
            and decision.confidence < 0.6
            and action == DecisionAction.block
            and confidence > 0.8
        ):
            step = -s.threshold_step_down
        else:
            return {}
        return {"spam_block_threshold": step, "toxicity_block_threshold": step}

    async def analyze_if_ready(self, content_id: str) -> Optional[ConsensusResult]:
        """Compute consensus and act on it: queue overrides, apply learning."""
        result = await self.compute_consensus(content_id)
        if result is None:
            return None
        if result.override_recommended:
            await self._recommend_override(result)
        if result.threshold_adjustments:
            await self._apply_learning(result)
        return result

    async def _recommend_override(self, result: ConsensusResult) -> None:
        existing = await self._store.find_pending_override(result.content_id)
        if existing is not None:
            await self._store.update_pending_override(
                existing.id,
                result.recommended_action,
                result.confidence_score,
                result.reason,
                result.total_votes,
                result.expert_votes,
                result.agreement_rate,
            )
            return
        recommendation = await self._store.create_override(
            result.content_id,
            result.original_action,
            result.recommended_action,
            result.confidence_score,
            result.reason,
            result.total_votes,
            result.expert_votes,
            result.agreement_rate,
        )
        await self._store.enqueue(
            result.content_id,
            QueueType.admin_review.value,
            OVERRIDE_QUEUE_PRIORITY,
            f"Community override recommended: {result.original_action.value} -> "
            f"{result.recommended_action.value} ({result.reason})",
            "consensus_engine",
        )
        override_recommendations_total.inc()
        log.info(
            "override_recommended",
            content_id=result.content_id,
            override_id=str(recommendation.id),
            recommended_action=result.recommended_action.value,
            confidence=result.confidence_score,
        )

    async def _apply_learning(self, result: ConsensusResult) -> None:
        delta = result.threshold_adjustments["spam_block_threshold"]
        recorded = await self._store.record_threshold_adjustment(
            result.content_id, BLOCK_THRESHOLD, delta, "; ".join(result.insights) or result.reason
        )
        if recorded:
            self._decisions.apply_threshold_adjustment(delta)

    # ------------------------------------------------------------------
    # Opportunities and administrator resolution
    # ------------------------------------------------------------------

    async def feedback_opportunities(
        self, voter_id: str, limit: int = 10
    ) -> list[FeedbackOpportunity]:
        """Recent decisions the voter could review, least confident first."""
        voter = await self._reputation.get_profile(voter_id)
        if voter.overall_score < self._settings.min_voter_reputation:
            return []
        since = utcnow() - timedelta(days=OPPORTUNITY_WINDOW_DAYS)
        candidates = await self._store.list_feedback_candidates(
            voter_id, since, self._settings.max_votes_per_opportunity, limit
        )
        opportunities = []
        for decision, votes in candidates:
            priority = opportunity_priority(decision.confidence)
            opportunities.append(
                FeedbackOpportunity(
                    content_id=decision.content_id,
                    original_action=decision.action,
                    confidence=decision.confidence,
                    decided_at=decision.timestamp,
                    votes_so_far=votes,
                    points_available=opportunity_points(voter.overall_score, priority),
                    priority=priority,
                )
            )
        return opportunities

    async def resolve_override(
        self, override_id, approve: bool, resolved_by: str
    ) -> Optional[OverrideRecommendation]:
        """Approve or reject a pending recommendation.

        Approval supersedes the current decision with the recommended action
        (source "consensus"). Returns None when the recommendation is missing
        or already resolved.
        """
        status = OverrideStatus.approved if approve else OverrideStatus.rejected
        override = await self._store.resolve_override(override_id, status, resolved_by)
        if override is None:
            return None
        if approve:
            current = await self._store.find_decision(override.content_id)
            superseding = ModerationDecision(
                content_id=override.content_id,
                action=override.recommended_action,
                confidence=min(1.0, override.confidence),
                reasons=(f"Community consensus override: {override.reason}",),
                timestamp=utcnow(),
                source=DecisionSource.consensus,
                author_id=current.author_id if current else None,
                content_digest=current.content_digest if current else None,
                adjusted_spam_score=current.adjusted_spam_score if current else 0.0,
                adjusted_toxicity_score=current.adjusted_toxicity_score if current else 0.0,
                reputation_multiplier=current.reputation_multiplier if current else 1.0,
            )
            await self._store.upsert_decision(superseding)
            await self._store.append_decision_log(superseding, None, [], {})
        await self._store.resolve_queue_items(override.content_id)
        log.info(
            "override_resolved",
            override_id=str(override_id),
            content_id=override.content_id,
            status=status.value,
            resolved_by=resolved_by,
        )
        return override
