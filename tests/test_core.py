"""End-to-end tests for ModerationCore and the consensus worker cycle."""

import asyncio
from datetime import timedelta

import pytest
import pytest_asyncio

from modcore.core import ModerationCore
from modcore.models.base import utcnow
from modcore.schemas.consensus import VoteSubmission
from modcore.schemas.decision import DecisionAction, DecisionSource, ModerationDecision, QueueType
from modcore.schemas.rule import ModerationRule
from modcore.services.analysis_cache import MemoryAnalysisCache
from modcore.services.analyzer import ContentAnalyzer
from modcore.services.spam import SpamDetector
from modcore.worker.consensus_worker import run_consensus_cycle
from tests.factories import BARE_THREAT_TEXT, THREAT_TEXT, make_content

LINK_TEXT = "See https://example.com for details about puppy care and feeding."

LINKS_NEED_REVIEW = ModerationRule.model_validate(
    {
        "id": "links-review",
        "name": "Links need review",
        "priority": 6,
        "conditions": [
            {"type": "content_metadata", "field": "has_links", "operator": "equals", "value": True}
        ],
        "actions": [{"type": "review"}],
    }
)


class ExplodingAnalyzer(ContentAnalyzer):
    async def analyze_or_fallback(self, text):
        raise RuntimeError("boom")


class FlakySpamDetector(SpamDetector):
    """Raises until healthy is set."""

    healthy = False

    def analyze(self, text):
        if not self.healthy:
            raise RuntimeError("spam detector unavailable")
        return super().analyze(text)


class SlowAnalyzer(ContentAnalyzer):
    async def analyze_or_fallback(self, text):
        await asyncio.sleep(1)
        return self.analyze(text)


@pytest_asyncio.fixture
async def make_core(store, app_settings):
    """Build extra cores with their own settings or analyzer."""
    cores = []

    async def build(analyzer=None, **overrides):
        core = ModerationCore(
            store,
            MemoryAnalysisCache(100, 3600),
            app_settings.model_copy(update=overrides),
            analyzer=analyzer,
        )
        await core.start()
        cores.append(core)
        return core

    yield build
    for core in cores:
        await core.aclose()


class TestModerate:
    """moderate() on the happy path."""

    @pytest.mark.asyncio
    async def test_clean_content_is_allowed_and_recorded(self, core):
        content = make_content()
        decision = await core.moderate(content)
        assert decision.action == DecisionAction.allow
        assert decision.source == DecisionSource.automated

        stored = await core.store.find_decision("c1")
        assert stored.action == DecisionAction.allow
        assert stored.content_digest == content.digest
        [entry] = await core.store.list_decision_logs("c1")
        assert entry.action == "allow"
        assert entry.scores_json

    @pytest.mark.asyncio
    async def test_resubmission_is_idempotent(self, core):
        content = make_content(THREAT_TEXT)
        first = await core.moderate(content)
        await core.background.drain()
        assert first.action == DecisionAction.block

        second = await core.moderate(content)
        await core.background.drain()
        assert second.action == first.action
        assert second.timestamp == first.timestamp

        actions = await core.list_actions(content_id="c1")
        assert [a.action_type for a in actions].count("warn") == 1
        assert len(await core.store.list_decision_logs("c1")) == 1

    @pytest.mark.asyncio
    async def test_bare_threat_from_new_user_is_blocked(self, core):
        decision = await core.moderate(make_content(BARE_THREAT_TEXT))
        # 70 toxicity scaled by the new-user multiplier (1.2) reaches the block threshold
        assert decision.reputation_multiplier == pytest.approx(1.2)
        assert decision.action == DecisionAction.block

    @pytest.mark.asyncio
    async def test_block_plan_runs_in_background(self, core):
        await core.moderate(make_content(THREAT_TEXT))
        await core.background.drain()

        kinds = [a.action_type for a in await core.list_actions(content_id="c1")]
        assert kinds == ["hide", "warn"]
        queue = await core.list_queue()
        assert [item.queue_type for item in queue.items] == [QueueType.urgent]
        assert (await core.store.find_profile("author")).moderation_strikes == 1

    @pytest.mark.asyncio
    async def test_edited_content_is_moderated_again(self, core):
        assert (await core.moderate(make_content())).action == DecisionAction.allow
        edited = await core.moderate(make_content(THREAT_TEXT))
        assert edited.action == DecisionAction.block
        assert len(await core.store.list_decision_logs("c1")) == 2


class TestFailureModes:
    @pytest.mark.asyncio
    async def test_fail_open(self, make_core):
        core = await make_core(analyzer=ExplodingAnalyzer())
        decision = await core.moderate(make_content())
        assert decision.action == DecisionAction.allow
        assert decision.confidence == 0
        assert decision.source == DecisionSource.fallback
        assert decision.reasons == (
            "Moderation system error - defaulting to allow",
            "RuntimeError: boom",
        )
        assert await core.store.find_decision("c1") is None

    @pytest.mark.asyncio
    async def test_fail_closed_queues_review(self, make_core):
        core = await make_core(analyzer=ExplodingAnalyzer(), fail_mode="closed")
        decision = await core.moderate(make_content())
        await core.background.drain()
        assert decision.action == DecisionAction.review
        assert decision.reasons[0] == "Moderation system error - defaulting to review"
        [item] = (await core.list_queue()).items
        assert item.queue_type == QueueType.review
        assert item.priority == 7

    @pytest.mark.asyncio
    async def test_timeout_falls_back(self, make_core):
        core = await make_core(analyzer=SlowAnalyzer(), decision_timeout_seconds=0.05)
        decision = await core.moderate(make_content())
        assert decision.action == DecisionAction.allow
        assert decision.source == DecisionSource.fallback
        assert decision.reasons[1] == "TimeoutError"

    @pytest.mark.asyncio
    async def test_fallback_analysis_is_not_remembered(self, make_core):
        detector = FlakySpamDetector()
        core = await make_core(analyzer=ContentAnalyzer(spam=detector))
        content = make_content(THREAT_TEXT)

        first = await core.moderate(content)
        assert first.action == DecisionAction.allow
        assert first.content_digest is None
        assert await core.store.find_analysis("c1", content.digest) is None
        assert await core.analysis_cache.get("c1", content.digest) is None

        detector.healthy = True
        second = await core.moderate(content)
        assert second.action == DecisionAction.block
        assert (await core.store.find_decision("c1")).content_digest == content.digest

    @pytest.mark.asyncio
    async def test_fallback_is_not_reused(self, make_core, core):
        broken = await make_core(analyzer=ExplodingAnalyzer())
        await broken.moderate(make_content(THREAT_TEXT))
        decision = await core.moderate(make_content(THREAT_TEXT))
        assert decision.action == DecisionAction.block


class TestRules:
    @pytest.mark.asyncio
    async def test_rules_escalate_decision(self, core):
        await core.save_rule(LINKS_NEED_REVIEW)
        decision = await core.moderate(make_content(LINK_TEXT))

        assert decision.action == DecisionAction.review
        assert decision.source == DecisionSource.rules
        assert 'Rule "Links need review" triggered with 100% confidence' in decision.reasons
        [item] = (await core.list_queue()).items
        assert item.queue_type == QueueType.review
        assert item.added_by == "rules_engine"
        assert len(await core.store.list_rule_triggers("links-review")) == 1

    @pytest.mark.asyncio
    async def test_rules_never_downgrade(self, core):
        await core.save_rule(LINKS_NEED_REVIEW)
        decision = await core.moderate(make_content(THREAT_TEXT + " https://example.com"))
        assert decision.action == DecisionAction.block
        assert decision.source == DecisionSource.automated

    @pytest.mark.asyncio
    async def test_deactivated_rule_stops_applying(self, core):
        await core.save_rule(LINKS_NEED_REVIEW)
        assert await core.set_rule_active("links-review", False)
        decision = await core.moderate(make_content(LINK_TEXT))
        assert decision.action == DecisionAction.allow

    @pytest.mark.asyncio
    async def test_dry_run_has_no_side_effects(self, core):
        results, outcome = await core.test_rules(make_content(LINK_TEXT), [LINKS_NEED_REVIEW])
        assert results[0].triggered
        assert outcome.should_review
        assert outcome.actions == ["review:content"]

        assert (await core.list_queue()).total == 0
        assert await core.store.list_rule_triggers() == []
        assert await core.store.find_decision("c1") is None


class TestReputationOperations:
    @pytest.mark.asyncio
    async def test_preset_event_recomputes(self, core):
        profile = await core.record_reputation_event("u1", "harassment_reported", "reported")
        assert profile is not None
        assert profile.overall_score < 74.5
        events = await core.store.list_events("u1")
        assert [e.action_type for e in events] == ["harassment_reported"]

    @pytest.mark.asyncio
    async def test_unknown_preset(self, core):
        with pytest.raises(KeyError):
            await core.record_reputation_event("u1", "not_a_preset")


class TestConsensusCycle:
    @pytest.mark.asyncio
    async def test_cycle_reports_every_job(self, core):
        await core.store.upsert_decision(
            ModerationDecision(
                content_id="c1", action=DecisionAction.block, confidence=0.95, author_id="author"
            )
        )
        disagree = VoteSubmission(was_accurate=False, suggested_action=DecisionAction.allow)
        for i in range(5):
            await core.submit_feedback("c1", f"voter-{i}", disagree)
        await core.store.restrict_user("lapsed", "spam", utcnow() - timedelta(hours=1))
        await core.save_rule(LINKS_NEED_REVIEW)

        stats = await run_consensus_cycle(core)
        assert stats == {
            "consensus_checked": 1,
            "overrides_recommended": 1,
            "restrictions_cleared": 1,
            "rules_loaded": 1,
        }
        # The cycle refreshes the pending recommendation instead of adding one.
        assert len(await core.list_overrides()) == 1
