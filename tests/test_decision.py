"""Tests for the reputation-adjusted decision matrix and threshold learning."""

from datetime import timedelta

import pytest

from modcore.config import Settings
from modcore.models.base import utcnow
from modcore.schemas.decision import DecisionAction, PlannedActionType, QueueType
from modcore.schemas.reputation import TrustLevelName, UserHistory
from modcore.services.decision import DecisionEngine
from tests.factories import make_analysis, make_content, make_profile


@pytest.fixture
def engine():
    return DecisionEngine(Settings())


class TestReputationMultiplier:
    def test_new_member(self, engine):
        assert engine.reputation_multiplier(make_profile(100)) == pytest.approx(1.2)

    def test_low_reputation(self, engine):
        profile = make_profile(30)
        assert profile.trust_level == TrustLevelName.restricted
        assert engine.reputation_multiplier(profile) == pytest.approx(1.3)

    def test_expert(self, engine):
        assert engine.reputation_multiplier(make_profile(400)) == pytest.approx(0.56)

    def test_moderator_gets_expert_scrutiny(self, engine):
        assert engine.reputation_multiplier(make_profile(600)) == pytest.approx(0.56)

    def test_admin_is_not_an_expert(self, engine):
        profile = make_profile(1000)
        assert profile.trust_level == TrustLevelName.admin
        assert engine.reputation_multiplier(profile) == pytest.approx(0.8)

    def test_strikes_raise_sensitivity(self, engine):
        profile = make_profile(100, moderation_strikes=3)
        assert engine.reputation_multiplier(profile) == pytest.approx(1.92)

    def test_multiplier_is_clamped(self, engine):
        profile = make_profile(30, trust_level=TrustLevelName.new, moderation_strikes=5)
        assert engine.reputation_multiplier(profile) == 2.0


class TestDecide:
    """The decision matrix and its post-adjustments."""

    def test_clean_content_is_allowed(self, engine):
        decision = engine.decide(make_content(), make_analysis(), make_profile(100))
        assert decision.action == DecisionAction.allow
        assert decision.reasons == ()

    def test_critical_toxicity_blocks(self, engine):
        decision = engine.decide(make_content(), make_analysis(toxicity=100), make_profile(100))
        assert decision.action == DecisionAction.block
        assert decision.confidence == 0.95
        assert "Critical toxicity detected - immediate intervention required" in decision.reasons

    def test_low_quality_goes_to_review(self, engine):
        decision = engine.decide(make_content(), make_analysis(quality=20), make_profile(100))
        assert decision.action == DecisionAction.review
        assert decision.confidence == 0.8

    def test_repeat_offender_review_confidence(self, engine):
        decision = engine.decide(
            make_content(), make_analysis(quality=20), make_profile(100, moderation_strikes=3)
        )
        assert decision.confidence == 0.85
        assert "User has multiple previous violations" in decision.reasons

    def test_new_user_with_spam_signals_is_flagged(self, engine):
        profile = make_profile(100, account_age_days=1)
        decision = engine.decide(make_content(), make_analysis(spam=35), profile)
        assert decision.action == DecisionAction.flag
        assert decision.confidence == 0.6
        assert decision.reasons == ("New user with potential spam indicators",)

    def test_expert_flag_is_relaxed(self, engine):
        decision = engine.decide(make_content(), make_analysis(toxicity=75), make_profile(400))
        assert decision.adjusted_toxicity_score == pytest.approx(42.0)
        assert decision.action == DecisionAction.allow
        assert decision.confidence == pytest.approx(0.52)
        assert "Trusted user - reduced sensitivity" in decision.reasons

    def test_recent_violations_flag(self, engine):
        decision = engine.decide(
            make_content(), make_analysis(), make_profile(100), UserHistory(recent_violations=2)
        )
        assert decision.action == DecisionAction.flag
        assert decision.confidence == 0.7

    def test_restricted_user_is_flagged(self, engine):
        now = utcnow()
        profile = make_profile(
            100, restriction_level="temporary", restriction_expires_at=now + timedelta(hours=2)
        )
        decision = engine.decide(make_content(), make_analysis(), profile, now=now)
        assert decision.action == DecisionAction.flag
        assert "User currently under restrictions" in decision.reasons

    @pytest.mark.parametrize("score", [100, 30, 400])
    def test_severity_is_monotonic_in_scores(self, engine, score):
        profile = make_profile(score)
        previous = -1
        for value in range(0, 101, 5):
            decision = engine.decide(make_content(), make_analysis(toxicity=value), profile)
            assert decision.action.severity >= previous
            previous = decision.action.severity


class TestPlanActions:
    def test_block_plan(self, engine):
        profile = make_profile(100)
        decision = engine.decide(make_content(), make_analysis(toxicity=100), profile)
        plan = engine.plan_actions(make_content(), decision, profile)
        assert [p.type for p in plan] == [
            PlannedActionType.hide,
            PlannedActionType.warn,
            PlannedActionType.queue,
        ]
        assert plan[2].queue_type == QueueType.urgent
        assert plan[2].priority == 10

    def test_low_reputation_high_confidence_adds_restriction(self, engine):
        profile = make_profile(20)
        decision = engine.decide(make_content(), make_analysis(spam=90), profile)
        plan = engine.plan_actions(make_content(), decision, profile)
        restriction = plan[-1]
        assert restriction.type == PlannedActionType.restrict
        assert restriction.duration_hours == 24
        assert restriction.reputation_penalty == 10

    def test_allow_has_no_plan(self, engine):
        profile = make_profile(100)
        decision = engine.decide(make_content(), make_analysis(), profile)
        assert engine.plan_actions(make_content(), decision, profile) == []


class TestThresholdLearning:
    def test_steps_are_clamped(self, engine):
        thresholds = engine.apply_threshold_adjustment(5)
        assert thresholds.spam_block == 87
        assert thresholds.toxicity_block == 82

    def test_drift_is_bounded(self, engine):
        for _ in range(20):
            engine.apply_threshold_adjustment(2)
        assert engine.thresholds.spam_block == 95
        assert engine.thresholds.toxicity_block == 90
        for _ in range(40):
            engine.apply_threshold_adjustment(-2)
        assert engine.thresholds.spam_block == 75
        assert engine.thresholds.toxicity_block == 70

    def test_review_thresholds_never_move(self, engine):
        engine.apply_threshold_adjustment(2)
        assert engine.thresholds.spam_review == engine.baseline.spam_review

    def test_replay_restores_totals(self, engine):
        thresholds = engine.replay_adjustments({"block": 4.0})
        assert thresholds.spam_block == 89
        assert engine.replay_adjustments({"block": 40.0}).spam_block == 95
