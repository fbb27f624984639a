"""Generation-stamped cache of active moderation rules.

Readers always see one complete snapshot. An expired snapshot triggers a
full reload of every active rule (never an incremental patch) and the new
snapshot replaces the old one with a single reference assignment, so a
partially updated rule set is never observable. Callers tolerate staleness
up to the TTL.

Design notes:
- Reloads are single-flight: concurrent readers that find the snapshot
  expired wait on one asyncio.Lock and reuse the reload that got there first.
- A failed reload keeps serving the stale snapshot and retries no sooner
  than retry_seconds later, so a store outage is not hit by every reader.
- Stored rules that no longer validate are skipped and logged at load time.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Optional

import structlog
from pydantic import ValidationError

from modcore.errors import StoreUnavailable
from modcore.schemas.content import ContentType
from modcore.schemas.rule import ModerationRule, TriggerEvent
from modcore.store import ModerationStore

log = structlog.get_logger()


def parse_stored_rule(row) -> Optional[ModerationRule]:
    """Rebuild a ModerationRule from a stored row, or None when it is malformed."""
    payload = dict(row.definition or {})
    payload.update(
        id=row.id,
        name=row.name,
        priority=row.priority,
        is_active=row.is_active,
        stats={
            "times_triggered": row.times_triggered,
            "last_triggered_at": row.last_triggered_at,
        },
    )
    try:
        return ModerationRule.model_validate(payload)
    except ValidationError as exc:
        log.warning("rule_definition_invalid", rule_id=row.id, errors=exc.error_count())
        return None


@dataclass(frozen=True)
class RuleSnapshot:
    rules: tuple[ModerationRule, ...]
    fetched_at: float
    ttl: float
    generation: int

    def is_expired(self, now: float) -> bool:
        return now - self.fetched_at >= self.ttl

    def for_event(
        self, event: TriggerEvent, content_type: Optional[ContentType] = None
    ) -> list[ModerationRule]:
        return [
            rule
            for rule in self.rules
            if rule.trigger.event == event
            and (content_type is None or rule.applies_to(content_type))
        ]


class RuleCache:
    def __init__(
        self,
        store: ModerationStore,
        ttl_seconds: float,
        retry_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._ttl = ttl_seconds
        self._retry = retry_seconds
        self._clock = clock
        self._lock = asyncio.Lock()
        self._snapshot = RuleSnapshot(rules=(), fetched_at=float("-inf"), ttl=ttl_seconds, generation=0)

    @property
    def snapshot(self) -> RuleSnapshot:
        return self._snapshot

    async def rules_for(
        self,
        event: TriggerEvent = TriggerEvent.content_posted,
        content_type: Optional[ContentType] = None,
    ) -> list[ModerationRule]:
        snapshot = await self.current()
        return snapshot.for_event(event, content_type)

    async def current(self) -> RuleSnapshot:
        snapshot = self._snapshot
        if not snapshot.is_expired(self._clock()):
            return snapshot
        async with self._lock:
            # Another reader may have reloaded (or failed to) while this one waited.
            if self._snapshot is not snapshot and not self._snapshot.is_expired(self._clock()):
                return self._snapshot
            return await self._reload()

    async def refresh(self) -> RuleSnapshot:
        """Force a full reload regardless of the TTL."""
        async with self._lock:
            return await self._reload()

    def invalidate(self) -> None:
        """Expire the current snapshot so the next read reloads."""
        current = self._snapshot
        self._snapshot = RuleSnapshot(
            rules=current.rules,
            fetched_at=float("-inf"),
            ttl=current.ttl,
            generation=current.generation,
        )

    async def _reload(self) -> RuleSnapshot:
        try:
            rows = await self._store.list_active_rules()
        except StoreUnavailable:
            stale = self._snapshot
            log.warning(
                "rule_cache_reload_failed", generation=stale.generation, retry_in=self._retry
            )
            self._snapshot = RuleSnapshot(
                rules=stale.rules,
                fetched_at=self._clock(),
                ttl=min(self._retry, self._ttl),
                generation=stale.generation,
            )
            return self._snapshot

        rules = tuple(rule for rule in map(parse_stored_rule, rows) if rule is not None)
        snapshot = RuleSnapshot(
            rules=rules,
            fetched_at=self._clock(),
            ttl=self._ttl,
            generation=self._snapshot.generation + 1,
        )
        self._snapshot = snapshot
        log.info(
            "rule_cache_reloaded",
            generation=snapshot.generation,
            rules=len(rules),
            skipped=len(rows) - len(rules),
        )
        return snapshot
