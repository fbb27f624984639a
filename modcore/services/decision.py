"""Reputation-adjusted moderation decisions.

decide() and plan_actions() are pure: they read an analysis and a profile and
return values, never touching the store. ModerationCore persists the decision
and hands the plan to ActionExecutor.

Design notes:
- Thresholds live in an immutable DecisionThresholds value. The learning loop
  replaces it wholesale; block thresholds never drift more than
  threshold_max_drift from the configured baseline.
- The decision matrix is evaluated in strict order (block, review, flag) and
  the first match wins. Post-adjustments only move allow <-> flag.
"""

from datetime import datetime
from typing import Optional

import structlog

from modcore.config import Settings, settings
from modcore.metrics import threshold_adjustments_total
from modcore.models.base import utcnow
from modcore.schemas.analysis import AnalysisResult
from modcore.schemas.content import Content
from modcore.schemas.decision import (
    DecisionAction,
    DecisionSource,
    DecisionThresholds,
    ModerationDecision,
    PlannedAction,
    PlannedActionType,
    QueueType,
)
from modcore.schemas.reputation import (
    EXPERT_LEVELS,
    ReputationProfile,
    TrustLevelName,
    UserHistory,
)

log = structlog.get_logger()

BLOCK_THRESHOLD = "block"
MAX_STEP = 2.0

NEW_USER_SPAM_SCORE = 30


class DecisionEngine:
    def __init__(self, app_settings: Settings = settings) -> None:
        self._settings = app_settings
        self._baseline = DecisionThresholds.from_settings(app_settings)
        self._thresholds = self._baseline

    @property
    def thresholds(self) -> DecisionThresholds:
        return self._thresholds

    @property
    def baseline(self) -> DecisionThresholds:
        return self._baseline

    def reputation_multiplier(self, reputation: ReputationProfile) -> float:
        """Sensitivity factor applied to spam and toxicity scores."""
        s = self._settings
        multiplier = 1.0
        if reputation.overall_score < s.low_reputation_cutoff:
            multiplier *= s.low_reputation_multiplier
        elif reputation.overall_score > s.high_reputation_cutoff:
            multiplier *= s.high_reputation_multiplier

        if reputation.trust_level in EXPERT_LEVELS:
            multiplier *= s.expert_multiplier
        elif reputation.trust_level == TrustLevelName.trusted:
            multiplier *= s.trusted_multiplier
        elif reputation.trust_level == TrustLevelName.new:
            multiplier *= s.new_user_multiplier

        if reputation.moderation_strikes > 0:
            multiplier *= 1 + reputation.moderation_strikes * s.strike_multiplier_step

        return min(s.multiplier_max, max(s.multiplier_min, multiplier))

    def decide(
        self,
        content: Content,
        analysis: AnalysisResult,
        reputation: ReputationProfile,
        history: Optional[UserHistory] = None,
        now: Optional[datetime] = None,
    ) -> ModerationDecision:
        now = now or utcnow()
        history = history or UserHistory()
        t = self._thresholds

        multiplier = self.reputation_multiplier(reputation)
        spam = analysis.spam_score * multiplier
        toxicity = analysis.toxicity_score * multiplier
        quality = analysis.quality_score

        action = DecisionAction.allow
        confidence = 0.0
        reasons: list[str] = []

        if toxicity >= t.toxicity_block or spam >= t.spam_block:
            action = DecisionAction.block
            confidence = 0.95
            reasons.append("High toxicity/spam score with user reputation factor")
            if toxicity >= 90:
                reasons.append("Critical toxicity detected - immediate intervention required")
        elif (
            toxicity >= t.toxicity_review
            or spam >= t.spam_review
            or quality <= t.quality_review
        ):
            action = DecisionAction.review
            confidence = 0.8
            reasons.append("Content requires human review")
            if reputation.moderation_strikes > 2:
                reasons.append("User has multiple previous violations")
                confidence = 0.85
        elif toxicity >= t.toxicity_flag or spam >= t.spam_flag or quality <= t.quality_flag:
            action = DecisionAction.flag
            confidence = 0.65
            reasons.append("Medium risk content flagged for monitoring")

        if history.recent_violations > 1 and action == DecisionAction.allow:
            action = DecisionAction.flag
            confidence = max(confidence, 0.7)
            reasons.append("Recent violation pattern detected")

        if reputation.is_restricted(now) and action == DecisionAction.allow:
            action = DecisionAction.flag
            confidence = max(confidence, 0.6)
            reasons.append("User currently under restrictions")

        if reputation.trust_level in EXPERT_LEVELS and action == DecisionAction.flag:
            action = DecisionAction.allow
            confidence *= 0.8
            reasons.append("Trusted user - reduced sensitivity")

        if (
            reputation.is_new_user(now, self._settings.new_user_days)
            and analysis.spam_score > NEW_USER_SPAM_SCORE
            and action == DecisionAction.allow
        ):
            action = DecisionAction.flag
            confidence = max(confidence, 0.6)
            reasons.append("New user with potential spam indicators")

        return ModerationDecision(
            content_id=content.id,
            action=action,
            confidence=round(confidence, 4),
            reasons=tuple(reasons),
            timestamp=now,
            source=DecisionSource.automated,
            author_id=content.author_id,
            content_digest=content.digest,
            adjusted_spam_score=round(spam, 2),
            adjusted_toxicity_score=round(toxicity, 2),
            reputation_multiplier=round(multiplier, 4),
        )

    def plan_actions(
        self, content: Content, decision: ModerationDecision, reputation: ReputationProfile
    ) -> list[PlannedAction]:
        """Side effects for a decision, in execution order."""
        plan: list[PlannedAction] = []
        if decision.action == DecisionAction.block:
            plan.append(
                PlannedAction(
                    type=PlannedActionType.hide,
                    target="content",
                    reason="Auto-blocked due to policy violation",
                )
            )
            plan.append(
                PlannedAction(
                    type=PlannedActionType.warn,
                    target="user",
                    reason="Content automatically blocked for policy violation",
                )
            )
            plan.append(
                PlannedAction(
                    type=PlannedActionType.queue,
                    queue_type=QueueType.urgent,
                    priority=10,
                    reason="Added to urgent moderation queue",
                )
            )
        elif decision.action == DecisionAction.review:
            plan.append(
                PlannedAction(
                    type=PlannedActionType.queue,
                    queue_type=QueueType.review,
                    priority=7,
                    reason="Queued for moderator review",
                )
            )
            if decision.confidence > 0.85:
                plan.append(
                    PlannedAction(
                        type=PlannedActionType.notify,
                        target="moderator",
                        reason="High-risk content - moderator notification sent",
                    )
                )
        elif decision.action == DecisionAction.flag:
            plan.append(
                PlannedAction(
                    type=PlannedActionType.queue,
                    queue_type=QueueType.monitoring,
                    priority=5,
                    reason="Flagged for monitoring",
                )
            )

        s = self._settings
        if (
            reputation.overall_score < s.restriction_reputation_cutoff
            and decision.confidence > s.restriction_confidence_cutoff
        ):
            plan.append(
                PlannedAction(
                    type=PlannedActionType.restrict,
                    target="user",
                    reason="Temporary posting restriction due to repeated policy violations",
                    duration_hours=s.restriction_hours,
                    reputation_penalty=s.restriction_penalty,
                )
            )
        return plan

    def apply_threshold_adjustment(self, delta: float) -> DecisionThresholds:
        """Move both block thresholds by a bounded step.

        The step is clamped to [-2, 2] and the result to the configured
        baseline +/- threshold_max_drift. Returns the new thresholds.
        """
        step = max(-MAX_STEP, min(MAX_STEP, delta))
        drift = self._settings.threshold_max_drift
        current = self._thresholds
        spam_block = self._bounded(current.spam_block + step, self._baseline.spam_block, drift)
        toxicity_block = self._bounded(
            current.toxicity_block + step, self._baseline.toxicity_block, drift
        )
        self._thresholds = current.model_copy(
            update={"spam_block": spam_block, "toxicity_block": toxicity_block}
        )
        if step:
            threshold_adjustments_total.labels(direction="up" if step > 0 else "down").inc()
        log.info(
            "decision_thresholds_adjusted",
            step=step,
            spam_block=spam_block,
            toxicity_block=toxicity_block,
        )
        return self._thresholds

    def replay_adjustments(self, totals: dict[str, float]) -> DecisionThresholds:
        """Restore persisted learning at start-up from summed adjustment deltas."""
        total = totals.get(BLOCK_THRESHOLD, 0.0)
        drift = self._settings.threshold_max_drift
        self._thresholds = self._baseline.model_copy(
            update={
                "spam_block": self._bounded(
                    self._baseline.spam_block + total, self._baseline.spam_block, drift
                ),
                "toxicity_block": self._bounded(
                    self._baseline.toxicity_block + total, self._baseline.toxicity_block, drift
                ),
            }
        )
        if total:
            log.info("decision_thresholds_replayed", total=total)
        return self._thresholds

    @staticmethod
    def _bounded(value: float, baseline: float, drift: float) -> float:
        return max(0.0, min(100.0, max(baseline - drift, min(baseline + drift, value))))


def decision_scores(analysis: AnalysisResult, decision: ModerationDecision) -> dict:
    """Scores recorded with every decision for the learning loop."""
    return {
        "spam_score": analysis.spam_score,
        "toxicity_score": analysis.toxicity_score,
        "quality_score": analysis.quality_score,
        "overall_score": analysis.overall_score,
        "adjusted_spam_score": decision.adjusted_spam_score,
        "adjusted_toxicity_score": decision.adjusted_toxicity_score,
        "reputation_multiplier": decision.reputation_multiplier,
    }
