"""Tests for vote weighting, weighted consensus and override recommendations."""

import pytest

from modcore.config import Settings
from modcore.models.base import utcnow
from modcore.schemas.consensus import (
    FeedbackVote,
    OpportunityPriority,
    OverrideStatus,
    VoteSubmission,
)
from modcore.schemas.decision import DecisionAction, DecisionSource, ModerationDecision, QueueType
from modcore.schemas.reputation import TrustLevelName
from modcore.services.consensus import (
    ALREADY_VOTED,
    ConsensusEngine,
    consensus_action,
    vote_points,
    vote_weight,
)

DISAGREE = VoteSubmission(was_accurate=False, suggested_action=DecisionAction.allow)
AGREE = VoteSubmission(was_accurate=True)


def vote(weight=1.0, was_accurate=False, suggested=None, trust=TrustLevelName.new, original=DecisionAction.block):
    return FeedbackVote(
        content_id="c1",
        voter_id=f"v{weight}{suggested}",
        original_action=original,
        was_accurate=was_accurate,
        suggested_action=suggested,
        weight=weight,
        voter_trust_level=trust,
    )


def decision(action=DecisionAction.block, confidence=0.95, content_id="c1"):
    return ModerationDecision(
        content_id=content_id,
        action=action,
        confidence=confidence,
        author_id="author",
        timestamp=utcnow(),
    )


class TestVoteWeights:
    @pytest.mark.parametrize(
        "reputation,trust,expected",
        [
            (100, TrustLevelName.new, 0.8),
            (200, TrustLevelName.trusted, 1.8),
            (400, TrustLevelName.expert, 3.0),
            (600, TrustLevelName.admin, 3.0),
            (10, TrustLevelName.restricted, 0.15),
        ],
    )
    def test_weight_by_reputation_and_trust(self, reputation, trust, expected):
        assert vote_weight(reputation, trust) == pytest.approx(expected)

    def test_points_reward_accuracy(self):
        assert vote_points(1.0, True) == 6
        assert vote_points(1.0, False) == 4
        assert vote_points(3.0, True) == 12


class TestConsensusAction:
    def test_heaviest_suggestion_wins(self):
        votes = [vote(2.0, suggested=DecisionAction.allow), vote(1.0, suggested=DecisionAction.review)]
        assert consensus_action(votes, DecisionAction.block) == DecisionAction.allow

    def test_accurate_votes_count_for_original(self):
        votes = [vote(2.0, was_accurate=True), vote(1.0, suggested=DecisionAction.allow)]
        assert consensus_action(votes, DecisionAction.block) == DecisionAction.block

    def test_tie_with_original_keeps_original(self):
        votes = [vote(1.0, was_accurate=True), vote(1.0, suggested=DecisionAction.allow)]
        assert consensus_action(votes, DecisionAction.block) == DecisionAction.block

    def test_other_ties_pick_least_severe(self):
        votes = [vote(1.0, suggested=DecisionAction.review), vote(1.0, suggested=DecisionAction.flag)]
        assert consensus_action(votes, DecisionAction.block) == DecisionAction.flag

    def test_no_mass_keeps_original(self):
        assert consensus_action([vote(1.0)], DecisionAction.review) == DecisionAction.review


class TestEvaluateVotes:
    """Consensus over an in-memory vote list."""

    @pytest.fixture
    def engine(self):
        return ConsensusEngine(store=None, reputation=None, decisions=None, app_settings=Settings())

    def test_unanimous_agreement_supports_original(self, engine):
        votes = [vote(0.8, was_accurate=True) for _ in range(5)]
        result = engine.evaluate_votes(decision(), votes)
        assert result.agreement_rate == 1.0
        assert result.confidence_score == 1.0
        assert not result.override_recommended
        assert result.reason == "Community feedback supports original decision"
        assert result.threshold_adjustments == {}

    def test_missed_violation_lowers_thresholds(self, engine):
        votes = [vote(1.8, suggested=DecisionAction.block, trust=TrustLevelName.trusted) for _ in range(5)]
        result = engine.evaluate_votes(decision(DecisionAction.allow, 0.5), votes)
        assert result.override_recommended
        assert result.recommended_action == DecisionAction.block
        assert result.trusted_votes == 5
        assert result.threshold_adjustments == {
            "spam_block_threshold": -1,
            "toxicity_block_threshold": -1,
        }

    def test_false_positive_category_suggests_rule_review(self, engine):
        votes = [
            FeedbackVote(
                content_id="c1",
                voter_id=f"v{i}",
                original_action=DecisionAction.block,
                was_accurate=False,
                suggested_action=DecisionAction.allow,
                categories=("false_positive",),
                weight=1.0,
            )
            for i in range(5)
        ]
        result = engine.evaluate_votes(decision(), votes)
        assert result.category_weights == {"false_positive": 5.0}
        assert "Community consistently identifies this as: false_positive" in result.insights
        assert result.rule_improvements


async def vote_to_override(core, seed_profile):
    """Two experts and three newcomers all say the block on c1 should be allow."""
    await core.store.upsert_decision(decision())
    await seed_profile("expert-1", 400)
    await seed_profile("expert-2", 400)
    outcomes = []
    for voter in ("expert-1", "expert-2", "voter-1", "voter-2", "voter-3"):
        outcomes.append(await core.submit_feedback("c1", voter, DISAGREE))
    return outcomes


class TestConsensusEngine:
    """Votes and consensus against a real store."""

    @pytest.mark.asyncio
    async def test_votes_are_weighted_by_voter(self, core, seed_profile):
        outcomes = await vote_to_override(core, seed_profile)
        assert all(o.accepted for o in outcomes)
        assert [o.weight for o in outcomes] == pytest.approx([3.0, 3.0, 0.8, 0.8, 0.8])
        assert outcomes[0].points_earned == 8

    @pytest.mark.asyncio
    async def test_disagreement_queues_override_and_learns(self, core, seed_profile):
        await vote_to_override(core, seed_profile)

        overrides = await core.list_overrides()
        assert len(overrides) == 1
        assert overrides[0].recommended_action == DecisionAction.allow
        assert overrides[0].total_votes == 5
        assert overrides[0].expert_votes == 2

        queue = await core.list_queue()
        assert [item.queue_type for item in queue.items] == [QueueType.admin_review.value]
        assert core.decisions.thresholds.spam_block == 87
        assert core.decisions.thresholds.toxicity_block == 82

    @pytest.mark.asyncio
    async def test_later_votes_update_pending_override(self, core, seed_profile):
        await vote_to_override(core, seed_profile)
        outcome = await core.submit_feedback("c1", "voter-4", AGREE)
        assert outcome.accepted

        overrides = await core.list_overrides()
        assert len(overrides) == 1
        assert overrides[0].total_votes == 6
        result = await core.get_consensus("c1")
        assert result.override_recommended
        assert result.recommended_action == DecisionAction.allow
        # Learning is recorded once per content item.
        assert len(await core.store.list_threshold_adjustments()) == 1
        assert core.decisions.thresholds.spam_block == 87

    @pytest.mark.asyncio
    async def test_consensus_is_pending_below_minimum(self, core):
        await core.store.upsert_decision(decision(content_id="c2"))
        await core.submit_feedback("c2", "voter-1", DISAGREE)
        await core.submit_feedback("c2", "voter-2", DISAGREE)
        assert await core.get_consensus("c2") is None

    @pytest.mark.asyncio
    async def test_duplicate_vote_is_rejected(self, core):
        await core.store.upsert_decision(decision())
        assert (await core.submit_feedback("c1", "voter-1", AGREE)).accepted
        second = await core.submit_feedback("c1", "voter-1", DISAGREE)
        assert not second.accepted
        assert second.reason == ALREADY_VOTED
        assert await core.store.count_votes("c1") == 1

    @pytest.mark.asyncio
    async def test_vote_needs_a_decision(self, core):
        outcome = await core.submit_feedback("missing", "voter-1", AGREE)
        assert not outcome.accepted
        assert outcome.reason == "Original moderation decision not found"

    @pytest.mark.asyncio
    async def test_low_reputation_voter_is_rejected(self, core, seed_profile):
        await core.store.upsert_decision(decision())
        await seed_profile("newcomer", 40)
        outcome = await core.submit_feedback("c1", "newcomer", AGREE)
        assert not outcome.accepted
        assert outcome.reason == "Minimum reputation of 50 required to vote"
        assert await core.store.count_votes("c1") == 0
        assert await core.feedback_opportunities("newcomer") == []

    @pytest.mark.asyncio
    async def test_feedback_opportunities(self, core):
        await core.store.upsert_decision(decision())
        await core.store.upsert_decision(decision(DecisionAction.allow, content_id="c-allowed"))
        opportunities = await core.feedback_opportunities("voter-1")
        assert [o.content_id for o in opportunities] == ["c1"]
        assert opportunities[0].priority == OpportunityPriority.low
        assert opportunities[0].points_available == 2

        await core.submit_feedback("c1", "voter-1", AGREE)
        assert await core.feedback_opportunities("voter-1") == []

    @pytest.mark.asyncio
    async def test_approved_override_supersedes_decision(self, core, seed_profile):
        await vote_to_override(core, seed_profile)
        [override] = await core.list_overrides()

        resolved = await core.resolve_override(override.id, True, "admin")
        assert resolved.status == OverrideStatus.approved
        assert resolved.resolved_by == "admin"

        current = await core.store.find_decision("c1")
        assert current.action == DecisionAction.allow
        assert current.source == DecisionSource.consensus
        assert (await core.list_queue()).total == 0
        assert await core.resolve_override(override.id, True, "admin") is None

    @pytest.mark.asyncio
    async def test_rejected_override_keeps_decision(self, core, seed_profile):
        await vote_to_override(core, seed_profile)
        [override] = await core.list_overrides()
        resolved = await core.resolve_override(override.id, False, "admin")
        assert resolved.status == OverrideStatus.rejected
        assert (await core.store.find_decision("c1")).action == DecisionAction.block
        assert await core.list_overrides() == []
