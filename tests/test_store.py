"""Tests for ModerationStore persistence against SQLite."""

import asyncio
from datetime import timedelta

import pytest

from modcore.errors import DuplicateVote
from modcore.models.base import utcnow
from modcore.schemas.consensus import FeedbackVote
from modcore.schemas.decision import DecisionAction, ModerationDecision
from modcore.schemas.queue import QueueStatus
from modcore.schemas.rule import ModerationRule
from modcore.services.analyzer import ContentAnalyzer
from tests.factories import SPAM_TEXT, make_content


def feedback_vote(voter_id="voter-1", content_id="c1"):
    return FeedbackVote(
        content_id=content_id,
        voter_id=voter_id,
        original_action=DecisionAction.block,
        was_accurate=False,
        suggested_action=DecisionAction.allow,
        categories=("false_positive",),
        weight=0.8,
    )


class TestProfiles:
    @pytest.mark.asyncio
    async def test_concurrent_increments_are_not_lost(self, store):
        await asyncio.gather(*(store.increment_score("busy", 10) for _ in range(10)))
        profile = await store.find_profile("busy")
        assert profile.overall_score == pytest.approx(200)

    @pytest.mark.asyncio
    async def test_expired_restrictions_are_cleared(self, store):
        now = utcnow()
        await store.restrict_user("expired", "spam", now - timedelta(hours=1))
        await store.restrict_user("active", "spam", now + timedelta(hours=1))

        assert await store.clear_expired_restrictions(now) == 1
        expired = await store.find_profile("expired")
        assert expired.restriction_level == "none"
        assert expired.restriction_expires_at is None
        assert expired.moderation_strikes == 1
        assert (await store.find_profile("active")).restriction_level == "temporary"

    @pytest.mark.asyncio
    async def test_restrictions_accumulate_strikes(self, store):
        expires = utcnow() + timedelta(hours=24)
        await store.restrict_user("repeat", "spam", expires)
        await store.add_strike("repeat")
        assert (await store.find_profile("repeat")).moderation_strikes == 2


class TestDecisions:
    @pytest.mark.asyncio
    async def test_analysis_is_stored_once_per_digest(self, store):
        content = make_content(SPAM_TEXT)
        analysis = ContentAnalyzer().analyze(content.text)
        await store.record_analysis(content, analysis)
        await store.record_analysis(content, analysis)

        assert await store.find_analysis("c1", content.digest) == analysis
        assert await store.find_analysis("c1", "other-digest") is None
        assert (await store.content_quality_stats("author"))[1] == 1

    @pytest.mark.asyncio
    async def test_upsert_supersedes_current_decision(self, store):
        first = ModerationDecision(content_id="c1", action=DecisionAction.flag, confidence=0.6)
        second = ModerationDecision(
            content_id="c1", action=DecisionAction.block, confidence=0.95, reasons=("spam",)
        )
        await store.upsert_decision(first)
        await store.upsert_decision(second)
        current = await store.find_decision("c1")
        assert current.action == DecisionAction.block
        assert current.reasons == ("spam",)


class TestVotes:
    @pytest.mark.asyncio
    async def test_duplicate_vote_raises(self, store):
        await store.record_vote(feedback_vote())
        with pytest.raises(DuplicateVote):
            await store.record_vote(feedback_vote())
        assert await store.has_voted("c1", "voter-1")
        assert not await store.has_voted("c1", "voter-2")

    @pytest.mark.asyncio
    async def test_votes_round_trip(self, store):
        await store.record_vote(feedback_vote())
        [stored] = await store.list_votes("c1")
        assert stored.suggested_action == DecisionAction.allow
        assert stored.categories == ("false_positive",)

    @pytest.mark.asyncio
    async def test_contents_ready_for_consensus(self, store):
        for i in range(3):
            await store.record_vote(feedback_vote(f"voter-{i}"))
        await store.record_vote(feedback_vote("voter-0", content_id="c2"))
        since = utcnow() - timedelta(minutes=5)
        assert await store.contents_ready_for_consensus(3, since) == ["c1"]
        assert await store.contents_ready_for_consensus(3, utcnow() + timedelta(minutes=5)) == []

    @pytest.mark.asyncio
    async def test_threshold_adjustment_recorded_once_per_content(self, store):
        assert await store.record_threshold_adjustment("c1", "block", 2, "disagreement")
        assert not await store.record_threshold_adjustment("c1", "block", 2, "disagreement")
        assert await store.record_threshold_adjustment("c2", "block", 2, "disagreement")
        assert await store.threshold_adjustment_totals() == {"block": 4.0}


class TestRulesAndQueue:
    @pytest.mark.asyncio
    async def test_rule_lifecycle(self, store):
        rule = ModerationRule(id="r1", name="Spam", priority=6)
        await store.save_rule(rule)
        await store.save_rule(rule.model_copy(update={"name": "Spam v2"}))
        await store.increment_rule_stats("r1", utcnow())

        [stored] = await store.list_active_rules()
        assert stored.name == "Spam v2"
        assert stored.times_triggered == 1

        assert await store.set_rule_active("r1", False)
        assert await store.list_active_rules() == []
        assert not await store.set_rule_active("missing", False)

    @pytest.mark.asyncio
    async def test_queue_orders_by_priority(self, store):
        await store.enqueue("low", "monitoring", 3, "low", "test")
        await store.enqueue("urgent", "urgent", 10, "urgent", "test")
        await store.enqueue("mid", "review", 7, "mid", "test")

        page = await store.list_queue()
        assert page.total == 3
        assert [item.content_id for item in page.items] == ["urgent", "mid", "low"]

        await store.resolve_queue_items("urgent")
        assert (await store.list_queue()).total == 2
        resolved = await store.list_queue(QueueStatus.resolved)
        assert [item.content_id for item in resolved.items] == ["urgent"]

    @pytest.mark.asyncio
    async def test_assign_and_escalate(self, store):
        await store.enqueue("c1", "review", 5, "check", "test")
        assert await store.assign_queue_items("c1", "mod-7") == 1
        assert await store.escalate_queue_items("c1", 2) == 1
        assert await store.escalate_queue_items("c1", 1) == 0
        [item] = (await store.list_queue(QueueStatus.assigned)).items
        assert item.assigned_to == "mod-7"
        assert item.escalation_level == 2
