"""Consensus worker: periodic upkeep for the community review loop.

Each cycle:
1. Re-runs consensus for content that received votes since the last cycle,
   so overrides and learning are applied even when inline analysis after a
   vote was deferred (store briefly unavailable).
2. Lifts restrictions whose expiry has passed.
3. Re-reads active rules so edits made by other processes become visible.

Jobs run independently; one failure does not block the others.
"""

import asyncio
from datetime import timedelta

import structlog

from modcore.core import ModerationCore
from modcore.models.base import utcnow

log = structlog.get_logger()


async def _analyze_recent_votes(core: ModerationCore, since) -> dict:
    content_ids = await core.store.contents_ready_for_consensus(
        core.settings.min_votes_for_consensus, since
    )
    overrides = 0
    for content_id in content_ids:
        result = await core.consensus.analyze_if_ready(content_id)
        if result is not None and result.override_recommended:
            overrides += 1
    return {"consensus_checked": len(content_ids), "overrides_recommended": overrides}


async def _clear_expired_restrictions(core: ModerationCore) -> int:
    return await core.store.clear_expired_restrictions(utcnow())


async def _refresh_rules(core: ModerationCore) -> int:
    snapshot = await core.rule_cache.refresh()
    return len(snapshot.rules)


async def run_consensus_cycle(core: ModerationCore) -> dict:
    """Execute one maintenance cycle. Returns stats for logging."""
    stats: dict = {}
    errors = []
    # Overlap two intervals so a slow previous cycle never drops votes.
    since = utcnow() - timedelta(seconds=core.settings.consensus_interval_seconds * 2)

    jobs: list[tuple[str, object]] = [
        ("consensus", _analyze_recent_votes(core, since)),
        ("restrictions_cleared", _clear_expired_restrictions(core)),
        ("rules_loaded", _refresh_rules(core)),
    ]
    for job_name, coro in jobs:
        try:
            result = await coro
            if isinstance(result, dict):
                stats.update(result)
            else:
                stats[job_name] = result
        except Exception:
            log.error("consensus_job_failed", job=job_name, exc_info=True)
            stats[job_name] = "error"
            errors.append(job_name)

    if errors:
        log.warning("consensus_cycle_partial", failed_jobs=errors, stats=stats)
    else:
        log.info("consensus_cycle_completed", stats=stats)
    return stats


async def consensus_worker_loop(core: ModerationCore, initial_delay: float = 60):
    """Background loop that runs the consensus cycle on a configurable interval."""
    interval = core.settings.consensus_interval_seconds
    log.info("consensus_worker_started", interval_seconds=interval)

    await asyncio.sleep(initial_delay)

    while True:
        try:
            await run_consensus_cycle(core)
        except Exception:
            log.error("consensus_worker_error", exc_info=True)
        await asyncio.sleep(interval)
