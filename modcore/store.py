"""Persistent store for the moderation core.

Every public method opens its own session, commits its own work and
translates SQLAlchemyError into StoreUnavailable, so callers can decide per
operation whether to proceed with defaults or propagate.

Design notes:
- Score and counter updates use column expressions inside
  INSERT ... ON CONFLICT DO UPDATE, never a Python read-modify-write, so
  concurrent requests for the same user stay correct.
- Upserts go through _insert(), which picks the PostgreSQL or SQLite insert
  construct for the bound dialect; both expose on_conflict_do_update/nothing.
- The unique (content_id, voter_id) constraint on feedback_votes is the
  final arbiter of duplicate votes; IntegrityError becomes DuplicateVote.
"""

import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import AsyncIterator, Optional

import structlog
from sqlalchemy import case, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from modcore.errors import DuplicateVote, StoreUnavailable
from modcore.models import (
    ContentAnalysisRecord,
    CurrentDecision,
    DecisionLog,
    EnforcementAction,
    FeedbackVoteRecord,
    ModerationQueueItem,
    OverrideRecommendationRecord,
    ReputationLedgerEntry,
    RuleTriggerAudit,
    StoredRule,
    ThresholdAdjustment,
    UserReputation,
)
from modcore.models.base import as_utc, utcnow
from modcore.schemas.analysis import AnalysisResult
from modcore.schemas.common import PaginatedResponse
from modcore.schemas.consensus import (
    FeedbackVote,
    OverrideRecommendation,
    OverrideStatus,
)
from modcore.schemas.content import Content
from modcore.schemas.decision import DecisionAction, ModerationDecision
from modcore.schemas.queue import ModerationActionRecord, QueueItem, QueueStatus
from modcore.schemas.reputation import EventCategory, ReputationEvent, ReputationProfile, UserHistory
from modcore.schemas.rule import ModerationRule

log = structlog.get_logger()

SCORE_MIN = 0.0
SCORE_MAX = 1000.0
DEFAULT_STORED_SCORE = 100.0


def _clamped(expr):
    """SQL expression clamping a score expression to [SCORE_MIN, SCORE_MAX]."""
    return case(
        (expr < SCORE_MIN, SCORE_MIN),
        (expr > SCORE_MAX, SCORE_MAX),
        else_=expr,
    )


def _decision_from_row(row: CurrentDecision) -> ModerationDecision:
    return ModerationDecision(
        content_id=row.content_id,
        action=DecisionAction(row.action),
        confidence=row.confidence,
        reasons=tuple(row.reasons or ()),
        timestamp=as_utc(row.decided_at),
        source=row.source,
        author_id=row.author_id,
        content_digest=row.content_digest,
        adjusted_spam_score=row.adjusted_spam_score,
        adjusted_toxicity_score=row.adjusted_toxicity_score,
        reputation_multiplier=row.reputation_multiplier,
    )


def _vote_from_row(row: FeedbackVoteRecord) -> FeedbackVote:
    return FeedbackVote(
        content_id=row.content_id,
        voter_id=row.voter_id,
        original_action=DecisionAction(row.original_action),
        was_accurate=row.was_accurate,
        suggested_action=DecisionAction(row.suggested_action) if row.suggested_action else None,
        severity=row.severity,
        categories=tuple(row.categories or ()),
        explanation=row.explanation,
        weight=row.weight,
        voter_reputation=row.voter_reputation,
        voter_trust_level=row.voter_trust_level,
        submitted_at=as_utc(row.created_at),
    )


def _override_from_row(row: OverrideRecommendationRecord) -> OverrideRecommendation:
    return OverrideRecommendation(
        id=row.id,
        content_id=row.content_id,
        original_action=DecisionAction(row.original_action),
        recommended_action=DecisionAction(row.recommended_action),
        confidence=row.confidence,
        reason=row.reason,
        total_votes=row.total_votes,
        expert_votes=row.expert_votes,
        agreement_rate=row.agreement_rate,
        status=OverrideStatus(row.status),
        created_at=as_utc(row.created_at),
        resolved_by=row.resolved_by,
        resolved_at=as_utc(row.resolved_at),
    )


class ModerationStore:
    """SQLAlchemy-backed store for profiles, decisions, rules, votes and audits."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                yield session
        except SQLAlchemyError as exc:
            log.warning("store_operation_failed", operation=operation, error=str(exc))
            raise StoreUnavailable(operation, str(exc)) from exc

    @staticmethod
    def _insert(session: AsyncSession, model):
        if session.get_bind().dialect.name == "postgresql":
            return pg_insert(model)
        return sqlite_insert(model)

    # ------------------------------------------------------------------
    # Reputation profiles and ledger
    # ------------------------------------------------------------------

    async def find_profile(self, user_id: str) -> Optional[UserReputation]:
        async with self._session("find_profile") as session:
            return await session.get(UserReputation, user_id)

    async def upsert_profile(self, profile: ReputationProfile) -> None:
        """Insert or refresh the computed part of a stored profile.

        Enforcement state (restriction, strikes) is owned by the enforcement
        operations and is never overwritten here.
        """
        async with self._session("upsert_profile") as session:
            computed = {
                "overall_score": round(profile.overall_score, 2),
                "trust_level": profile.trust_level.value,
                "factors_json": profile.factors.model_dump(),
                "trend_json": profile.trend.model_dump(mode="json"),
                "recommendations_json": list(profile.recommendations),
                "last_calculated_at": profile.calculated_at or utcnow(),
                "updated_at": utcnow(),
            }
            stmt = self._insert(session, UserReputation).values(
                user_id=profile.user_id,
                account_created_at=profile.account_created_at or utcnow(),
                **computed,
            )
            stmt = stmt.on_conflict_do_update(index_elements=["user_id"], set_=computed)
            await session.execute(stmt)
            await session.commit()

    async def increment_score(self, user_id: str, delta: float) -> float:
        """Atomically add delta to the stored overall score, clamped to [0, 1000].

        Creates the profile row when the user has none. Returns the new score.
        """
        async with self._session("increment_score") as session:
            initial = min(SCORE_MAX, max(SCORE_MIN, DEFAULT_STORED_SCORE + delta))
            stmt = (
                self._insert(session, UserReputation)
                .values(user_id=user_id, overall_score=initial, account_created_at=utcnow())
                .on_conflict_do_update(
                    index_elements=["user_id"],
                    set_={
                        "overall_score": _clamped(UserReputation.overall_score + delta),
                        "updated_at": utcnow(),
                    },
                )
                .returning(UserReputation.overall_score)
            )
            result = await session.execute(stmt)
            new_score = result.scalar_one()
            await session.commit()
            return new_score

    async def restrict_user(
        self, user_id: str, reason: str, expires_at: datetime, level: str = "temporary"
    ) -> None:
        """Apply a posting restriction and count a moderation strike."""
        async with self._session("restrict_user") as session:
            stmt = (
                self._insert(session, UserReputation)
                .values(
                    user_id=user_id,
                    overall_score=DEFAULT_STORED_SCORE,
                    account_created_at=utcnow(),
                    restriction_level=level,
                    restriction_reason=reason,
                    restriction_expires_at=expires_at,
                    moderation_strikes=1,
                )
                .on_conflict_do_update(
                    index_elements=["user_id"],
                    set_={
                        "restriction_level": level,
                        "restriction_reason": reason,
                        "restriction_expires_at": expires_at,
                        "moderation_strikes": UserReputation.moderation_strikes + 1,
                        "updated_at": utcnow(),
                    },
                )
            )
            await session.execute(stmt)
            await session.commit()

    async def add_strike(self, user_id: str) -> None:
        async with self._session("add_strike") as session:
            stmt = (
                self._insert(session, UserReputation)
                .values(
                    user_id=user_id,
                    overall_score=DEFAULT_STORED_SCORE,
                    account_created_at=utcnow(),
                    moderation_strikes=1,
                )
                .on_conflict_do_update(
                    index_elements=["user_id"],
                    set_={
                        "moderation_strikes": UserReputation.moderation_strikes + 1,
                        "updated_at": utcnow(),
                    },
                )
            )
            await session.execute(stmt)
            await session.commit()

    async def clear_expired_restrictions(self, now: datetime) -> int:
        async with self._session("clear_expired_restrictions") as session:
            result = await session.execute(
                update(UserReputation)
                .where(UserReputation.restriction_level != "none")
                .where(UserReputation.restriction_expires_at.is_not(None))
                .where(UserReputation.restriction_expires_at <= now)
                .values(
                    restriction_level="none",
                    restriction_reason=None,
                    restriction_expires_at=None,
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount

    async def append_event(
        self, user_id: str, event: ReputationEvent, created_at: Optional[datetime] = None
    ) -> None:
        async with self._session("append_event") as session:
            session.add(
                ReputationLedgerEntry(
                    user_id=user_id,
                    category=event.category.value,
                    action_type=event.action_type,
                    impact=event.impact,
                    weight=event.weight,
                    points=event.points,
                    reason=event.reason,
                    created_at=created_at or utcnow(),
                )
            )
            await session.commit()

    async def list_events(
        self, user_id: str, since: Optional[datetime] = None
    ) -> list[ReputationLedgerEntry]:
        """Ledger entries for a user, oldest first."""
        async with self._session("list_events") as session:
            stmt = select(ReputationLedgerEntry).where(ReputationLedgerEntry.user_id == user_id)
            if since is not None:
                stmt = stmt.where(ReputationLedgerEntry.created_at >= since)
            stmt = stmt.order_by(ReputationLedgerEntry.created_at.asc())
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def event_counts(self, user_id: str) -> dict[str, int]:
        """Number of ledger entries per action type for a user."""
        async with self._session("event_counts") as session:
            result = await session.execute(
                select(ReputationLedgerEntry.action_type, func.count())
                .where(ReputationLedgerEntry.user_id == user_id)
                .group_by(ReputationLedgerEntry.action_type)
            )
            return {action_type: count for action_type, count in result.all()}

    async def content_quality_stats(self, author_id: str) -> tuple[Optional[float], int]:
        """Average stored quality score and number of analysed contents for an author."""
        async with self._session("content_quality_stats") as session:
            result = await session.execute(
                select(
                    func.avg(ContentAnalysisRecord.quality_score),
                    func.count(func.distinct(ContentAnalysisRecord.content_id)),
                ).where(ContentAnalysisRecord.author_id == author_id)
            )
            avg_quality, total = result.one()
            return (float(avg_quality) if avg_quality is not None else None), total or 0

    async def enforcement_count(self, user_id: str) -> int:
        """Enforcement actions (warn, restrict) taken against a user."""
        async with self._session("enforcement_count") as session:
            result = await session.execute(
                select(func.count(EnforcementAction.id))
                .where(EnforcementAction.user_id == user_id)
                .where(EnforcementAction.action_type.in_(("warn", "restrict")))
            )
            return result.scalar_one()

    async def activity_timestamps(self, user_id: str, since: datetime) -> list[datetime]:
        """Timestamps of ledger events and content submissions since a point in time."""
        async with self._session("activity_timestamps") as session:
            events = await session.execute(
                select(ReputationLedgerEntry.created_at)
                .where(ReputationLedgerEntry.user_id == user_id)
                .where(ReputationLedgerEntry.created_at >= since)
            )
            contents = await session.execute(
                select(ContentAnalysisRecord.created_at)
                .where(ContentAnalysisRecord.author_id == user_id)
                .where(ContentAnalysisRecord.created_at >= since)
            )
            return [as_utc(ts) for ts in [*events.scalars().all(), *contents.scalars().all()]]

    async def user_history(self, user_id: str, now: datetime) -> UserHistory:
        async with self._session("user_history") as session:
            violations = await session.execute(
                select(ReputationLedgerEntry.created_at)
                .where(ReputationLedgerEntry.user_id == user_id)
                .where(ReputationLedgerEntry.category == EventCategory.violation.value)
                .order_by(ReputationLedgerEntry.created_at.desc())
            )
            violation_times = [as_utc(ts) for ts in violations.scalars().all()]

            actions = await session.execute(
                select(EnforcementAction.action_type, EnforcementAction.created_at).where(
                    EnforcementAction.user_id == user_id
                )
            )
            action_rows = [(action_type, as_utc(ts)) for action_type, ts in actions.all()]

            counts = await session.execute(
                select(ReputationLedgerEntry.action_type, func.count())
                .where(ReputationLedgerEntry.user_id == user_id)
                .where(ReputationLedgerEntry.action_type.in_(("report_upheld", "false_reporting")))
                .group_by(ReputationLedgerEntry.action_type)
            )
            report_counts = dict(counts.all())

            posts = await session.execute(
                select(func.count(func.distinct(ContentAnalysisRecord.content_id))).where(
                    ContentAnalysisRecord.author_id == user_id
                )
            )
            total_posts = posts.scalar_one()

        month_ago = now - timedelta(days=30)
        week_ago = now - timedelta(days=7)
        return UserHistory(
            violations_30d=sum(1 for ts in violation_times if ts >= month_ago),
            recent_violations=sum(1 for ts in violation_times if ts >= week_ago),
            warnings_7d=sum(1 for kind, ts in action_rows if kind == "warn" and ts >= week_ago),
            successful_reports=report_counts.get("report_upheld", 0),
            false_reports=report_counts.get("false_reporting", 0),
            content_removed_count=sum(1 for kind, _ in action_rows if kind == "hide"),
            days_since_last_violation=(
                (now - violation_times[0]).days if violation_times else 999
            ),
            total_posts=total_posts,
        )

    # ------------------------------------------------------------------
    # Analyses and decisions
    # ------------------------------------------------------------------

    async def record_analysis(self, content: Content, analysis: AnalysisResult) -> None:
        async with self._session("record_analysis") as session:
            stmt = (
                self._insert(session, ContentAnalysisRecord)
                .values(
                    id=uuid.uuid4(),
                    content_id=content.id,
                    content_digest=content.digest,
                    author_id=content.author_id,
                    content_type=content.type.value,
                    spam_score=analysis.spam_score,
                    quality_score=analysis.quality_score,
                    toxicity_score=analysis.toxicity_score,
                    overall_score=analysis.overall_score,
                    recommendation=analysis.recommendation.value,
                    flags=sorted(analysis.flags),
                    result_json=analysis.model_dump(mode="json"),
                    created_at=utcnow(),
                )
                .on_conflict_do_nothing(index_elements=["content_id", "content_digest"])
            )
            await session.execute(stmt)
            await session.commit()

    async def find_analysis(self, content_id: str, digest: str) -> Optional[AnalysisResult]:
        async with self._session("find_analysis") as session:
            result = await session.execute(
                select(ContentAnalysisRecord.result_json)
                .where(ContentAnalysisRecord.content_id == content_id)
                .where(ContentAnalysisRecord.content_digest == digest)
            )
            payload = result.scalar_one_or_none()
        return AnalysisResult.model_validate(payload) if payload is not None else None

    async def find_decision(self, content_id: str) -> Optional[ModerationDecision]:
        async with self._session("find_decision") as session:
            row = await session.get(CurrentDecision, content_id)
            return _decision_from_row(row) if row is not None else None

    async def upsert_decision(
        self, decision: ModerationDecision, content_type: Optional[str] = None
    ) -> None:
        """Make decision the current one for its content id, superseding any other."""
        async with self._session("upsert_decision") as session:
            values = {
                "author_id": decision.author_id,
                "content_digest": decision.content_digest,
                "action": decision.action.value,
                "confidence": decision.confidence,
                "source": decision.source.value,
                "reasons": list(decision.reasons),
                "adjusted_spam_score": decision.adjusted_spam_score,
                "adjusted_toxicity_score": decision.adjusted_toxicity_score,
                "reputation_multiplier": decision.reputation_multiplier,
                "decided_at": decision.timestamp,
            }
            if content_type is not None:
                values["content_type"] = content_type
            stmt = self._insert(session, CurrentDecision).values(
                content_id=decision.content_id, **values
            )
            stmt = stmt.on_conflict_do_update(index_elements=["content_id"], set_=values)
            await session.execute(stmt)
            await session.commit()

    async def append_decision_log(
        self,
        decision: ModerationDecision,
        content_type: Optional[str],
        flags: list[str],
        scores: dict,
    ) -> None:
        async with self._session("append_decision_log") as session:
            session.add(
                DecisionLog(
                    content_id=decision.content_id,
                    author_id=decision.author_id,
                    content_type=content_type,
                    action=decision.action.value,
                    confidence=decision.confidence,
                    source=decision.source.value,
                    reasons=list(decision.reasons),
                    flags=flags,
                    scores_json=scores,
                )
            )
            await session.commit()

    async def list_decision_logs(self, content_id: str) -> list[DecisionLog]:
        async with self._session("list_decision_logs") as session:
            result = await session.execute(
                select(DecisionLog)
                .where(DecisionLog.content_id == content_id)
                .order_by(DecisionLog.created_at.asc())
            )
            return list(result.scalars().all())

    async def list_feedback_candidates(
        self, voter_id: str, since: datetime, max_votes: int, limit: int
    ) -> list[tuple[ModerationDecision, int]]:
        """Recent non-allow decisions the voter has not voted on, least confident first."""
        async with self._session("list_feedback_candidates") as session:
            vote_count = (
                select(func.count(FeedbackVoteRecord.id))
                .where(FeedbackVoteRecord.content_id == CurrentDecision.content_id)
                .scalar_subquery()
            )
            already_voted = (
                select(FeedbackVoteRecord.id)
                .where(FeedbackVoteRecord.content_id == CurrentDecision.content_id)
                .where(FeedbackVoteRecord.voter_id == voter_id)
                .exists()
            )
            stmt = (
                select(CurrentDecision, vote_count.label("votes"))
                .where(CurrentDecision.action.in_(("flag", "review", "block")))
                .where(CurrentDecision.decided_at > since)
                .where(func.coalesce(CurrentDecision.author_id, "") != voter_id)
                .where(~already_voted)
                .where(vote_count < max_votes)
                .order_by(CurrentDecision.confidence.asc(), CurrentDecision.decided_at.desc())
                .limit(limit)
            )
            result = await session.execute(stmt)
            return [(_decision_from_row(row), votes) for row, votes in result.all()]

    # ------------------------------------------------------------------
    # Enforcement audit and queue
    # ------------------------------------------------------------------

    async def record_action(
        self,
        action_type: str,
        reason: str,
        performed_by: str,
        content_id: Optional[str] = None,
        user_id: Optional[str] = None,
        duration_hours: Optional[int] = None,
    ) -> uuid.UUID:
        async with self._session("record_action") as session:
            row = EnforcementAction(
                content_id=content_id,
                user_id=user_id,
                action_type=action_type,
                reason=reason,
                performed_by=performed_by,
                duration_hours=duration_hours,
            )
            session.add(row)
            await session.commit()
            return row.id

    async def list_actions(
        self,
        content_id: Optional[str] = None,
        user_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[ModerationActionRecord]:
        async with self._session("list_actions") as session:
            stmt = select(EnforcementAction)
            if content_id is not None:
                stmt = stmt.where(EnforcementAction.content_id == content_id)
            if user_id is not None:
                stmt = stmt.where(EnforcementAction.user_id == user_id)
            stmt = stmt.order_by(EnforcementAction.created_at.asc()).limit(limit)
            result = await session.execute(stmt)
            return [ModerationActionRecord.model_validate(row) for row in result.scalars().all()]

    async def enqueue(
        self,
        content_id: str,
        queue_type: str,
        priority: int,
        reason: str,
        added_by: str,
        content_type: Optional[str] = None,
    ) -> uuid.UUID:
        async with self._session("enqueue") as session:
            item = ModerationQueueItem(
                content_id=content_id,
                content_type=content_type,
                queue_type=queue_type,
                priority=priority,
                reason=reason,
                added_by=added_by,
                status=QueueStatus.pending.value,
            )
            session.add(item)
            await session.commit()
            return item.id

    async def list_queue(
        self,
        status: Optional[QueueStatus] = QueueStatus.pending,
        page: int = 1,
        page_size: int = 20,
    ) -> PaginatedResponse[QueueItem]:
        """Queue items, highest priority first, oldest first within a priority."""
        async with self._session("list_queue") as session:
            count_stmt = select(func.count(ModerationQueueItem.id))
            items_stmt = select(ModerationQueueItem)
            if status is not None:
                count_stmt = count_stmt.where(ModerationQueueItem.status == status.value)
                items_stmt = items_stmt.where(ModerationQueueItem.status == status.value)
            total_result = await session.execute(count_stmt)
            total = total_result.scalar_one()
            result = await session.execute(
                items_stmt.order_by(
                    ModerationQueueItem.priority.desc(), ModerationQueueItem.created_at.asc()
                )
                .offset((page - 1) * page_size)
                .limit(page_size)
            )
            items = [QueueItem.model_validate(row) for row in result.scalars().all()]
        return PaginatedResponse[QueueItem](
            items=items, total=total, page=page, page_size=page_size
        )

    async def assign_queue_items(self, content_id: str, assignee: str) -> int:
        async with self._session("assign_queue_items") as session:
            result = await session.execute(
                update(ModerationQueueItem)
                .where(ModerationQueueItem.content_id == content_id)
                .where(ModerationQueueItem.status != QueueStatus.resolved.value)
                .values(assigned_to=assignee, status=QueueStatus.assigned.value, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount

    async def escalate_queue_items(self, content_id: str, level: int) -> int:
        async with self._session("escalate_queue_items") as session:
            result = await session.execute(
                update(ModerationQueueItem)
                .where(ModerationQueueItem.content_id == content_id)
                .where(ModerationQueueItem.status != QueueStatus.resolved.value)
                .where(ModerationQueueItem.escalation_level < level)
                .values(escalation_level=level, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount

    async def resolve_queue_items(self, content_id: str) -> int:
        async with self._session("resolve_queue_items") as session:
            result = await session.execute(
                update(ModerationQueueItem)
                .where(ModerationQueueItem.content_id == content_id)
                .where(ModerationQueueItem.status != QueueStatus.resolved.value)
                .values(status=QueueStatus.resolved.value, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    async def list_active_rules(self) -> list[StoredRule]:
        async with self._session("list_active_rules") as session:
            result = await session.execute(
                select(StoredRule)
                .where(StoredRule.is_active.is_(True))
                .order_by(StoredRule.priority.desc(), StoredRule.id.asc())
            )
            return list(result.scalars().all())

    async def find_rule(self, rule_id: str) -> Optional[StoredRule]:
        async with self._session("find_rule") as session:
            return await session.get(StoredRule, rule_id)

    async def save_rule(self, rule: ModerationRule) -> None:
        """Create or replace a rule definition. Statistics are preserved on update."""
        async with self._session("save_rule") as session:
            definition = rule.model_dump(mode="json", exclude={"stats"})
            values = {
                "name": rule.name,
                "description": rule.description,
                "priority": rule.priority,
                "is_active": rule.is_active,
                "trigger_event": rule.trigger.event.value,
                "definition": definition,
                "created_by": rule.created_by,
                "updated_at": utcnow(),
            }
            stmt = self._insert(session, StoredRule).values(
                id=rule.id, created_at=utcnow(), **values
            )
            stmt = stmt.on_conflict_do_update(index_elements=["id"], set_=values)
            await session.execute(stmt)
            await session.commit()

    async def set_rule_active(self, rule_id: str, is_active: bool) -> bool:
        async with self._session("set_rule_active") as session:
            result = await session.execute(
                update(StoredRule)
                .where(StoredRule.id == rule_id)
                .values(is_active=is_active, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount > 0

    async def increment_rule_stats(self, rule_id: str, triggered_at: datetime) -> None:
        async with self._session("increment_rule_stats") as session:
            await session.execute(
                update(StoredRule)
                .where(StoredRule.id == rule_id)
                .values(
                    times_triggered=StoredRule.times_triggered + 1,
                    last_triggered_at=triggered_at,
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()

    async def record_rule_trigger(
        self,
        rule_id: str,
        content_id: str,
        user_id: Optional[str],
        confidence: float,
        matched_conditions: list[str],
        actions_executed: list[str],
    ) -> None:
        async with self._session("record_rule_trigger") as session:
            session.add(
                RuleTriggerAudit(
                    rule_id=rule_id,
                    content_id=content_id,
                    user_id=user_id,
                    confidence=confidence,
                    matched_conditions=matched_conditions,
                    actions_executed=actions_executed,
                )
            )
            await session.commit()

    async def list_rule_triggers(
        self, rule_id: Optional[str] = None, content_id: Optional[str] = None
    ) -> list[RuleTriggerAudit]:
        async with self._session("list_rule_triggers") as session:
            stmt = select(RuleTriggerAudit)
            if rule_id is not None:
                stmt = stmt.where(RuleTriggerAudit.rule_id == rule_id)
            if content_id is not None:
                stmt = stmt.where(RuleTriggerAudit.content_id == content_id)
            result = await session.execute(stmt.order_by(RuleTriggerAudit.created_at.asc()))
            return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Votes, overrides and threshold adjustments
    # ------------------------------------------------------------------

    async def has_voted(self, content_id: str, voter_id: str) -> bool:
        async with self._session("has_voted") as session:
            result = await session.execute(
                select(FeedbackVoteRecord.id)
                .where(FeedbackVoteRecord.content_id == content_id)
                .where(FeedbackVoteRecord.voter_id == voter_id)
                .limit(1)
            )
            return result.scalar_one_or_none() is not None

    async def record_vote(self, vote: FeedbackVote) -> None:
        """Persist a vote.

        Raises:
            DuplicateVote: If the voter already voted on this content.
        """
        async with self._session("record_vote") as session:
            session.add(
                FeedbackVoteRecord(
                    content_id=vote.content_id,
                    voter_id=vote.voter_id,
                    original_action=vote.original_action.value,
                    was_accurate=vote.was_accurate,
                    suggested_action=vote.suggested_action.value if vote.suggested_action else None,
                    severity=vote.severity.value,
                    categories=list(vote.categories),
                    explanation=vote.explanation,
                    weight=vote.weight,
                    voter_reputation=vote.voter_reputation,
                    voter_trust_level=vote.voter_trust_level.value,
                )
            )
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise DuplicateVote(vote.content_id, vote.voter_id) from exc

    async def list_votes(self, content_id: str) -> list[FeedbackVote]:
        async with self._session("list_votes") as session:
            result = await session.execute(
                select(FeedbackVoteRecord)
                .where(FeedbackVoteRecord.content_id == content_id)
                .order_by(FeedbackVoteRecord.created_at.asc())
            )
            return [_vote_from_row(row) for row in result.scalars().all()]

    async def count_votes(self, content_id: str) -> int:
        async with self._session("count_votes") as session:
            result = await session.execute(
                select(func.count(FeedbackVoteRecord.id)).where(
                    FeedbackVoteRecord.content_id == content_id
                )
            )
            return result.scalar_one()

    async def contents_ready_for_consensus(self, min_votes: int, since: datetime) -> list[str]:
        """Content ids with at least min_votes votes and at least one vote since a point in time."""
        async with self._session("contents_ready_for_consensus") as session:
            result = await session.execute(
                select(FeedbackVoteRecord.content_id)
                .group_by(FeedbackVoteRecord.content_id)
                .having(func.count(FeedbackVoteRecord.id) >= min_votes)
                .having(func.max(FeedbackVoteRecord.created_at) >= since)
            )
            return list(result.scalars().all())

    async def find_pending_override(self, content_id: str) -> Optional[OverrideRecommendation]:
        async with self._session("find_pending_override") as session:
            result = await session.execute(
                select(OverrideRecommendationRecord)
                .where(OverrideRecommendationRecord.content_id == content_id)
                .where(OverrideRecommendationRecord.status == OverrideStatus.pending_review.value)
                .limit(1)
            )
            row = result.scalar_one_or_none()
            return _override_from_row(row) if row is not None else None

    async def create_override(
        self,
        content_id: str,
        original_action: DecisionAction,
        recommended_action: DecisionAction,
        confidence: float,
        reason: str,
        total_votes: int,
        expert_votes: int,
        agreement_rate: float,
    ) -> OverrideRecommendation:
        async with self._session("create_override") as session:
            row = OverrideRecommendationRecord(
                content_id=content_id,
                original_action=original_action.value,
                recommended_action=recommended_action.value,
                confidence=confidence,
                reason=reason,
                total_votes=total_votes,
                expert_votes=expert_votes,
                agreement_rate=agreement_rate,
                status=OverrideStatus.pending_review.value,
            )
            session.add(row)
            await session.commit()
            return _override_from_row(row)

    async def update_pending_override(
        self,
        override_id: uuid.UUID,
        recommended_action: DecisionAction,
        confidence: float,
        reason: str,
        total_votes: int,
        expert_votes: int,
        agreement_rate: float,
    ) -> None:
        async with self._session("update_pending_override") as session:
            await session.execute(
                update(OverrideRecommendationRecord)
                .where(OverrideRecommendationRecord.id == override_id)
                .where(OverrideRecommendationRecord.status == OverrideStatus.pending_review.value)
                .values(
                    recommended_action=recommended_action.value,
                    confidence=confidence,
                    reason=reason,
                    total_votes=total_votes,
                    expert_votes=expert_votes,
                    agreement_rate=agreement_rate,
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()

    async def list_overrides(
        self, status: Optional[OverrideStatus] = OverrideStatus.pending_review
    ) -> list[OverrideRecommendation]:
        async with self._session("list_overrides") as session:
            stmt = select(OverrideRecommendationRecord)
            if status is not None:
                stmt = stmt.where(OverrideRecommendationRecord.status == status.value)
            result = await session.execute(
                stmt.order_by(OverrideRecommendationRecord.created_at.asc())
            )
            return [_override_from_row(row) for row in result.scalars().all()]

    async def resolve_override(
        self, override_id: uuid.UUID, status: OverrideStatus, resolved_by: str
    ) -> Optional[OverrideRecommendation]:
        """Close a pending recommendation. Returns None if it is missing or already closed."""
        async with self._session("resolve_override") as session:
            result = await session.execute(
                update(OverrideRecommendationRecord)
                .where(OverrideRecommendationRecord.id == override_id)
                .where(OverrideRecommendationRecord.status == OverrideStatus.pending_review.value)
                .values(status=status.value, resolved_by=resolved_by, resolved_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                await session.rollback()
                return None
            await session.commit()
            row = await session.get(OverrideRecommendationRecord, override_id)
            return _override_from_row(row)

    async def record_threshold_adjustment(
        self, content_id: str, name: str, delta: float, reason: str
    ) -> bool:
        """Record a nudge once per (content, threshold). Returns False if already recorded."""
        async with self._session("record_threshold_adjustment") as session:
            stmt = (
                self._insert(session, ThresholdAdjustment)
                .values(
                    id=uuid.uuid4(),
                    content_id=content_id,
                    name=name,
                    delta=delta,
                    reason=reason,
                    created_at=utcnow(),
                )
                .on_conflict_do_nothing(index_elements=["content_id", "name"])
            )
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount > 0

    async def threshold_adjustment_totals(self) -> dict[str, float]:
        async with self._session("threshold_adjustment_totals") as session:
            result = await session.execute(
                select(ThresholdAdjustment.name, func.sum(ThresholdAdjustment.delta)).group_by(
                    ThresholdAdjustment.name
                )
            )
            return {name: float(total or 0.0) for name, total in result.all()}

    async def list_threshold_adjustments(self) -> list[ThresholdAdjustment]:
        async with self._session("list_threshold_adjustments") as session:
            result = await session.execute(
                select(ThresholdAdjustment).order_by(ThresholdAdjustment.created_at.asc())
            )
            return list(result.scalars().all())
