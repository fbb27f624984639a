"""Tests for rule conditions, RuleEngine evaluation and the rule cache."""

import asyncio
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
from pydantic import ValidationError

from modcore.config import Settings
from modcore.errors import StoreUnavailable
from modcore.schemas.content import ContentType
from modcore.schemas.reputation import UserHistory
from modcore.schemas.rule import (
    ConditionType,
    ContentAnalysisCondition,
    ModerationRule,
    Operator,
    TriggerEvent,
)
from modcore.services.analyzer import ContentAnalyzer
from modcore.services.rule_cache import RuleCache, parse_stored_rule
from modcore.services.rule_fields import RuleContext, compare, extract
from modcore.services.rules import RuleEngine, summarize
from tests.factories import SPAM_TEXT, make_content, make_profile

# A Monday morning
MONDAY = datetime(2026, 10, 19, 10, 30, tzinfo=timezone.utc)


def build_context(text=SPAM_TEXT, timestamp=MONDAY, history=None, score=100, **content_kwargs):
    content = make_content(text, **content_kwargs)
    return RuleContext.build(
        content,
        ContentAnalyzer().analyze(text),
        make_profile(score),
        history or UserHistory(),
        timestamp,
    )


def rule(rule_id="r1", priority=5, conditions=(), actions=(), **extra) -> ModerationRule:
    return ModerationRule.model_validate(
        {
            "id": rule_id,
            "name": rule_id.upper(),
            "priority": priority,
            "conditions": list(conditions),
            "actions": list(actions),
            **extra,
        }
    )


def cond(field, operator, value, type="content_analysis", weight=1.0):
    return {"type": type, "field": field, "operator": operator, "value": value, "weight": weight}


SPAMMY = cond("spam_score", "greater_than", 80)
NEVER = cond("spam_score", "less_than", 0)
FLAG = {"type": "flag"}
BLOCK = {"type": "block"}


@pytest.fixture
def dry_engine():
    # Dry runs never touch the store or the executor.
    return RuleEngine(store=None, executor=None, app_settings=Settings())


class TestFieldsAndOperators:
    def test_time_fields(self):
        ctx = build_context()
        assert extract(ConditionType.time_based, "day_of_week", ctx) == 1
        assert extract(ConditionType.time_based, "is_business_hours", ctx) is True
        sunday = build_context(timestamp=datetime(2026, 10, 18, 22, tzinfo=timezone.utc))
        assert extract(ConditionType.time_based, "is_weekend", sunday) is True
        assert extract(ConditionType.time_based, "is_business_hours", sunday) is False

    def test_metadata_fields(self):
        ctx = build_context("Visit https://example.com now 😀")
        assert extract(ConditionType.content_metadata, "has_links", ctx) is True
        assert extract(ConditionType.content_metadata, "has_emojis", ctx) is True
        assert extract(ConditionType.content_metadata, "is_first_post", ctx) is True
        assert extract(ConditionType.content_metadata, "content_type", ctx) == "post"

    def test_unknown_field_is_rejected(self):
        with pytest.raises(ValueError):
            extract(ConditionType.content_analysis, "shoe_size", build_context())
        with pytest.raises(ValidationError):
            ContentAnalysisCondition(field="shoe_size", operator=Operator.equals, value=1)

    def test_contains_is_case_insensitive(self):
        assert compare(Operator.contains, "Hello World", "WORLD")
        assert compare(Operator.not_contains, "Hello", "bye")

    def test_membership_needs_a_list(self):
        assert compare(Operator.in_, "new", ["new", "restricted"])
        assert compare(Operator.not_in, "expert", ["new"])
        with pytest.raises(ValueError):
            compare(Operator.in_, "new", "new")

    def test_numeric_comparison_rejects_missing_values(self):
        with pytest.raises(ValueError):
            compare(Operator.greater_than, None, 3)


class TestRuleEvaluation:
    """Weighted confidence, ordering and short-circuiting."""

    @pytest.mark.asyncio
    async def test_half_of_conditions_triggers(self, dry_engine):
        results = await dry_engine.evaluate([rule(conditions=[SPAMMY, NEVER], actions=[FLAG])], build_context())
        assert results[0].triggered
        assert results[0].confidence == 0.5
        assert results[0].actions_executed == ["flag:content"]
        assert results[0].reason == 'Rule "R1" triggered with 50% confidence'

    @pytest.mark.asyncio
    async def test_below_half_does_not_trigger(self, dry_engine):
        r = rule(conditions=[SPAMMY, NEVER, NEVER], actions=[FLAG])
        results = await dry_engine.evaluate([r], build_context())
        assert not results[0].triggered
        assert results[0].reason == 'Rule "R1" conditions not met'
        assert results[0].actions_executed == []

    @pytest.mark.asyncio
    async def test_condition_weights(self, dry_engine):
        heavy = cond("spam_score", "greater_than", 80, weight=2.0)
        results = await dry_engine.evaluate([rule(conditions=[heavy, NEVER])], build_context())
        assert results[0].confidence == pytest.approx(2 / 3)

    @pytest.mark.asyncio
    async def test_rules_run_by_descending_priority(self, dry_engine):
        rules = [
            rule("low", priority=2, conditions=[SPAMMY]),
            rule("high", priority=7, conditions=[SPAMMY]),
        ]
        results = await dry_engine.evaluate(rules, build_context())
        assert [r.rule_id for r in results] == ["high", "low"]

    @pytest.mark.asyncio
    async def test_high_priority_block_short_circuits(self, dry_engine):
        rules = [
            rule("blocker", priority=9, conditions=[SPAMMY], actions=[BLOCK]),
            rule("flagger", priority=5, conditions=[SPAMMY], actions=[FLAG]),
        ]
        results = await dry_engine.evaluate(rules, build_context())
        assert [r.rule_id for r in results] == ["blocker"]

    @pytest.mark.asyncio
    async def test_low_priority_block_does_not_short_circuit(self, dry_engine):
        rules = [
            rule("blocker", priority=7, conditions=[SPAMMY], actions=[BLOCK]),
            rule("flagger", priority=5, conditions=[SPAMMY], actions=[FLAG]),
        ]
        assert len(await dry_engine.evaluate(rules, build_context())) == 2

    @pytest.mark.asyncio
    async def test_malformed_rule_is_skipped(self, dry_engine):
        broken = rule(
            "broken",
            priority=9,
            conditions=[cond("trust_level", "in", "new", type="user_reputation")],
            actions=[BLOCK],
        )
        rules = [broken, rule("ok", priority=3, conditions=[SPAMMY], actions=[FLAG])]
        results = await dry_engine.evaluate(rules, build_context())
        assert results[0].error
        assert not results[0].triggered
        assert results[0].reason.startswith("Error executing rule")
        assert results[1].triggered

    @pytest.mark.asyncio
    async def test_inactive_and_inapplicable_rules_are_ignored(self, dry_engine):
        rules = [
            rule("off", conditions=[SPAMMY], is_active=False),
            rule("answers_only", conditions=[SPAMMY], trigger={"content_types": ["answer"]}),
        ]
        assert await dry_engine.evaluate(rules, build_context()) == []

    @pytest.mark.asyncio
    async def test_summary(self, dry_engine):
        rules = [
            rule("a", conditions=[SPAMMY], actions=[FLAG, {"type": "escalate"}]),
            rule("b", conditions=[NEVER], actions=[BLOCK]),
        ]
        results, outcome = await dry_engine.test_rules(rules, build_context())
        assert outcome.should_flag
        assert outcome.should_review
        assert not outcome.should_block
        assert outcome.actions == ["flag:content", "escalate:moderator"]
        assert summarize(results) == outcome

    def test_rule_definition_round_trip(self):
        r = rule(
            conditions=[SPAMMY, cond("total_posts", "equals", 0, type="user_history")],
            actions=[FLAG, {"type": "restrict", "duration_hours": 12}],
        )
        assert ModerationRule.model_validate_json(r.model_dump_json()) == r


def stored(r: ModerationRule, **overrides):
    values = {
        "id": r.id,
        "name": r.name,
        "priority": r.priority,
        "is_active": r.is_active,
        "definition": r.model_dump(mode="json", exclude={"stats"}),
        "times_triggered": 0,
        "last_triggered_at": None,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


class FakeRuleStore:
    def __init__(self, rows):
        self.rows = rows
        self.calls = 0
        self.fail = False

    async def list_active_rules(self):
        self.calls += 1
        await asyncio.sleep(0)
        if self.fail:
            raise StoreUnavailable("list_active_rules")
        return list(self.rows)


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestRuleCache:
    @pytest.mark.asyncio
    async def test_snapshot_is_reused_within_ttl(self):
        store, clock = FakeRuleStore([stored(rule())]), FakeClock()
        cache = RuleCache(store, ttl_seconds=300, clock=clock)
        first = await cache.current()
        clock.now += 299
        assert await cache.current() is first
        clock.now += 1
        second = await cache.current()
        assert second.generation == first.generation + 1
        assert store.calls == 2

    @pytest.mark.asyncio
    async def test_concurrent_readers_share_one_reload(self):
        store = FakeRuleStore([stored(rule())])
        cache = RuleCache(store, ttl_seconds=300, clock=FakeClock())
        snapshots = await asyncio.gather(*(cache.current() for _ in range(5)))
        assert store.calls == 1
        assert all(s is snapshots[0] for s in snapshots)

    @pytest.mark.asyncio
    async def test_failed_reload_keeps_stale_rules(self):
        store, clock = FakeRuleStore([stored(rule())]), FakeClock()
        cache = RuleCache(store, ttl_seconds=300, clock=clock)
        first = await cache.current()
        store.fail = True
        clock.now += 301
        assert (await cache.current()).rules == first.rules

    @pytest.mark.asyncio
    async def test_failed_reload_backs_off(self):
        store, clock = FakeRuleStore([stored(rule())]), FakeClock()
        cache = RuleCache(store, ttl_seconds=300, retry_seconds=30, clock=clock)
        first = await cache.current()
        store.fail = True
        clock.now += 301
        await asyncio.gather(*(cache.current() for _ in range(5)))
        clock.now += 29
        await cache.current()
        assert store.calls == 2

        store.fail = False
        clock.now += 1
        recovered = await cache.current()
        assert store.calls == 3
        assert recovered.generation == first.generation + 1

    @pytest.mark.asyncio
    async def test_invalidate_forces_reload(self):
        store = FakeRuleStore([stored(rule())])
        cache = RuleCache(store, ttl_seconds=300, clock=FakeClock())
        await cache.current()
        store.rows.append(stored(rule("r2")))
        cache.invalidate()
        assert len((await cache.current()).rules) == 2

    @pytest.mark.asyncio
    async def test_malformed_rows_are_skipped(self):
        bad = stored(rule("bad"), definition={"conditions": [{"type": "nope"}]})
        store = FakeRuleStore([stored(rule()), bad])
        cache = RuleCache(store, ttl_seconds=300, clock=FakeClock())
        assert [r.id for r in (await cache.current()).rules] == ["r1"]
        assert parse_stored_rule(bad) is None

    @pytest.mark.asyncio
    async def test_rules_for_filters_event_and_type(self):
        rows = [
            stored(rule("posted")),
            stored(rule("reported", trigger={"event": "content_reported"})),
            stored(rule("answers", trigger={"content_types": ["answer"]})),
        ]
        cache = RuleCache(FakeRuleStore(rows), ttl_seconds=300, clock=FakeClock())
        matching = await cache.rules_for(TriggerEvent.content_posted, ContentType.post)
        assert [r.id for r in matching] == ["posted"]
