"""ModerationCore: the engine object constructed once at process start.

It owns the store, caches and component engines and exposes the operations
the surrounding application calls: moderate() on content submission,
feedback and consensus for the community review loop, and read access to
queue and audit records for an admin surface.

Design notes:
- moderate() runs under asyncio.timeout(decision_timeout_seconds). Any
  error that escapes the component-level recovery (fallback analysis,
  default profile) produces the fail_mode decision: allow with confidence 0
  (fail open) or review (fail closed).
- Analysis and the reputation/history lookups run concurrently; rules are
  evaluated after the decision and may only escalate it.
- Planned side effects of a decision run as tracked background tasks; the
  caller gets the decision without waiting for them.
- Re-moderating the same text for a content id returns the current
  decision unchanged, so a retried submission is never penalised twice.
  Decisions made from a fallback analysis are not reused.
"""

import asyncio
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncEngine

from modcore.background import BackgroundTasks
from modcore.config import Settings, settings
from modcore.database import build_engine, build_session_factory
from modcore.errors import StoreUnavailable
from modcore.metrics import decisions_total, fail_open_total
from modcore.models.base import utcnow
from modcore.schemas.analysis import AnalysisResult
from modcore.schemas.common import PaginatedResponse
from modcore.schemas.consensus import (
    ConsensusResult,
    FeedbackOpportunity,
    OverrideRecommendation,
    OverrideStatus,
    VoteOutcome,
    VoteSubmission,
)
from modcore.schemas.content import Content
from modcore.schemas.decision import (
    DecisionAction,
    DecisionSource,
    ModerationDecision,
    QueueType,
)
from modcore.schemas.queue import ModerationActionRecord, QueueItem, QueueStatus
from modcore.schemas.reputation import ReputationEvent, ReputationProfile, preset_event
from modcore.schemas.rule import (
    ModerationRule,
    RuleExecutionResult,
    RuleOutcome,
    TriggerEvent,
)
from modcore.services.actions import ActionExecutor
from modcore.services.analysis_cache import AnalysisCache, build_analysis_cache
from modcore.services.analyzer import FALLBACK_FLAG, ContentAnalyzer
from modcore.services.consensus import ConsensusEngine
from modcore.services.decision import DecisionEngine, decision_scores
from modcore.services.reputation import ReputationEngine
from modcore.services.rule_cache import RuleCache
from modcore.services.rule_fields import RuleContext
from modcore.services.rules import RuleEngine, summarize
from modcore.store import ModerationStore

log = structlog.get_logger()

_OUTCOME_ACTIONS = (
    ("should_block", DecisionAction.block),
    ("should_review", DecisionAction.review),
    ("should_flag", DecisionAction.flag),
)


def refine_with_rules(
    decision: ModerationDecision,
    results: list[RuleExecutionResult],
    outcome: RuleOutcome,
) -> ModerationDecision:
    """Escalate a decision to what the triggered rules call for. Never de-escalates."""
    target = next(
        (action for attr, action in _OUTCOME_ACTIONS if getattr(outcome, attr)), None
    )
    if target is None or target.severity <= decision.action.severity:
        return decision
    rule_confidence = max((r.confidence for r in results if r.triggered), default=0.0)
    return decision.model_copy(
        update={
            "action": target,
            "confidence": max(decision.confidence, rule_confidence),
            "reasons": decision.reasons + tuple(outcome.reasons),
            "source": DecisionSource.rules,
        }
    )


class ModerationCore:
    def __init__(
        self,
        store: ModerationStore,
        analysis_cache: AnalysisCache,
        app_settings: Settings = settings,
        analyzer: Optional[ContentAnalyzer] = None,
        engine: Optional[AsyncEngine] = None,
    ) -> None:
        self.settings = app_settings
        self.store = store
        self.analysis_cache = analysis_cache
        self.analyzer = analyzer or ContentAnalyzer()
        self.background = BackgroundTasks()
        self.reputation = ReputationEngine(store, self.background, app_settings)
        self.executor = ActionExecutor(store, self.reputation, app_settings)
        self.rules = RuleEngine(store, self.executor, app_settings)
        self.rule_cache = RuleCache(
            store,
            app_settings.rule_cache_ttl_seconds,
            app_settings.rule_cache_retry_seconds,
        )
        self.decisions = DecisionEngine(app_settings)
        self.consensus = ConsensusEngine(store, self.reputation, self.decisions, app_settings)
        self._engine = engine

    async def start(self) -> None:
        """Replay persisted threshold learning into the decision engine."""
        try:
            totals = await self.store.threshold_adjustment_totals()
        except StoreUnavailable:
            log.warning("threshold_replay_skipped")
            return
        self.decisions.replay_adjustments(totals)

    async def aclose(self) -> None:
        await self.background.drain()
        await self.analysis_cache.aclose()
        if self._engine is not None:
            await self._engine.dispose()

    # ------------------------------------------------------------------
    # Moderation
    # ------------------------------------------------------------------

    async def moderate(self, content: Content) -> ModerationDecision:
        """Produce (or reuse) the current moderation decision for content."""
        with structlog.contextvars.bound_contextvars(
            content_id=content.id, author_id=content.author_id
        ):
            try:
                async with asyncio.timeout(self.settings.decision_timeout_seconds):
                    decision = await self._moderate(content)
            except Exception as exc:
                decision = self._fallback_decision(content, exc)
            decisions_total.labels(
                action=decision.action.value, source=decision.source.value
            ).inc()
            return decision

    async def _moderate(self, content: Content) -> ModerationDecision:
        current = await self._current_decision(content.id)
        if current is not None and current.content_digest == content.digest:
            log.info("decision_reused", action=current.action.value)
            return current

        (analysis, is_new), profile, history = await asyncio.gather(
            self._analyze(content),
            self.reputation.get_profile(content.author_id),
            self.reputation.user_history(content.author_id),
        )
        now = utcnow()
        decision = self.decisions.decide(content, analysis, profile, history, now)

        rules = await self.rule_cache.rules_for(TriggerEvent.content_posted, content.type)
        if rules:
            ctx = RuleContext.build(content, analysis, profile, history, now)
            results = await self.rules.evaluate(rules, ctx)
            final = refine_with_rules(decision, results, summarize(results))
        else:
            final = decision

        if FALLBACK_FLAG in analysis.flags:
            # Left without a digest so the next submission is decided afresh
            final = final.model_copy(update={"content_digest": None})

        await self._persist(content, analysis, is_new, final)
        plan = self.decisions.plan_actions(content, decision, profile)
        if plan:
            self.background.spawn(
                self.executor.execute_plan(content, final, plan),
                name=f"decision_actions:{content.id}",
            )
        log.info(
            "content_moderated",
            action=final.action.value,
            confidence=final.confidence,
            source=final.source.value,
            multiplier=final.reputation_multiplier,
        )
        return final

    async def _current_decision(self, content_id: str) -> Optional[ModerationDecision]:
        try:
            return await self.store.find_decision(content_id)
        except StoreUnavailable:
            return None

    async def _analyze(self, content: Content) -> tuple[AnalysisResult, bool]:
        """Cached analysis of this content version.

        The flag is True when the analysis was freshly computed and should be
        stored. A fallback analysis is never cached or stored.
        """
        digest = content.digest
        cached = await self.analysis_cache.get(content.id, digest)
        if cached is not None:
            return cached, False
        try:
            stored = await self.store.find_analysis(content.id, digest)
        except StoreUnavailable:
            stored = None
        if stored is not None:
            await self.analysis_cache.set(content.id, digest, stored)
            return stored, False
        analysis = await self.analyzer.analyze_or_fallback(content.text)
        if FALLBACK_FLAG in analysis.flags:
            return analysis, False
        await self.analysis_cache.set(content.id, digest, analysis)
        return analysis, True

    async def _persist(
        self,
        content: Content,
        analysis: AnalysisResult,
        is_new: bool,
        decision: ModerationDecision,
    ) -> None:
        try:
            if is_new:
                await self.store.record_analysis(content, analysis)
            await self.store.upsert_decision(decision, content.type.value)
            await self.store.append_decision_log(
                decision,
                content.type.value,
                sorted(analysis.flags),
                decision_scores(analysis, decision),
            )
        except StoreUnavailable:
            log.warning("decision_not_persisted", action=decision.action.value)

    def _fallback_decision(self, content: Content, exc: Exception) -> ModerationDecision:
        fail_open = self.settings.fail_mode == "open"
        action = DecisionAction.allow if fail_open else DecisionAction.review
        fail_open_total.labels(reason=type(exc).__name__).inc()
        log.error(
            "moderation_failed",
            fail_mode=self.settings.fail_mode,
            error=str(exc) or type(exc).__name__,
            exc_info=True,
        )
        decision = ModerationDecision(
            content_id=content.id,
            action=action,
            confidence=0.0,
            reasons=(
                f"Moderation system error - defaulting to {action.value}",
                f"{type(exc).__name__}: {exc}" if str(exc) else type(exc).__name__,
            ),
            source=DecisionSource.fallback,
            author_id=content.author_id,
        )
        if not fail_open:
            self.background.spawn(
                self.store.enqueue(
                    content.id,
                    QueueType.review.value,
                    7,
                    "Queued for moderator review after a moderation system error",
                    "automated_moderation",
                    content_type=content.type.value,
                ),
                name=f"fallback_review:{content.id}",
            )
        return decision

    # ------------------------------------------------------------------
    # Community feedback
    # ------------------------------------------------------------------

    async def submit_feedback(
        self, content_id: str, voter_id: str, vote: VoteSubmission
    ) -> VoteOutcome:
        return await self.consensus.submit_vote(content_id, voter_id, vote)

    async def get_consensus(self, content_id: str) -> Optional[ConsensusResult]:
        """Consensus for a content item, or None while fewer than the minimum votes exist."""
        return await self.consensus.compute_consensus(content_id)

    async def feedback_opportunities(
        self, voter_id: str, limit: int = 10
    ) -> list[FeedbackOpportunity]:
        return await self.consensus.feedback_opportunities(voter_id, limit)

    async def resolve_override(
        self, override_id, approve: bool, resolved_by: str
    ) -> Optional[OverrideRecommendation]:
        return await self.consensus.resolve_override(override_id, approve, resolved_by)

    async def list_overrides(
        self, status: Optional[OverrideStatus] = OverrideStatus.pending_review
    ) -> list[OverrideRecommendation]:
        return await self.store.list_overrides(status)

    # ------------------------------------------------------------------
    # Reputation
    # ------------------------------------------------------------------

    async def record_reputation_event(
        self, user_id: str, event: ReputationEvent | str, reason: str = ""
    ) -> Optional[ReputationProfile]:
        """Record a ledger event, given either as an event or a preset name.

        Raises:
            KeyError: If a preset name is unknown.
        """
        if isinstance(event, str):
            event = preset_event(event, reason)
        return await self.reputation.record_event(user_id, event)

    async def get_reputation(self, user_id: str) -> ReputationProfile:
        return await self.reputation.get_profile(user_id)

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    async def save_rule(self, rule: ModerationRule) -> None:
        await self.store.save_rule(rule)
        self.rule_cache.invalidate()

    async def set_rule_active(self, rule_id: str, is_active: bool) -> bool:
        changed = await self.store.set_rule_active(rule_id, is_active)
        self.rule_cache.invalidate()
        return changed

    async def test_rules(
        self, content: Content, rules: Optional[list[ModerationRule]] = None
    ) -> tuple[list[RuleExecutionResult], RuleOutcome]:
        """Dry-run rules against sample content. No side effects are performed."""
        analysis = self.analyzer.analyze(content.text)
        profile, history = await asyncio.gather(
            self.reputation.get_profile(content.author_id),
            self.reputation.user_history(content.author_id),
        )
        if rules is None:
            rules = await self.rule_cache.rules_for(TriggerEvent.content_posted, content.type)
        ctx = RuleContext.build(content, analysis, profile, history, utcnow())
        return await self.rules.test_rules(rules, ctx)

    # ------------------------------------------------------------------
    # Admin surface reads
    # ------------------------------------------------------------------

    async def list_queue(
        self,
        status: Optional[QueueStatus] = QueueStatus.pending,
        page: int = 1,
        page_size: int = 20,
    ) -> PaginatedResponse[QueueItem]:
        return await self.store.list_queue(status, page, page_size)

    async def list_actions(
        self,
        content_id: Optional[str] = None,
        user_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[ModerationActionRecord]:
        return await self.store.list_actions(content_id, user_id, limit)


async def build_core(app_settings: Settings = settings) -> ModerationCore:
    """Construct and start a ModerationCore from configuration."""
    engine = build_engine(app_settings)
    core = ModerationCore(
        ModerationStore(build_session_factory(engine)),
        build_analysis_cache(app_settings),
        app_settings,
        engine=engine,
    )
    await core.start()
    return core
