"""Multi-factor user reputation and trust level computation.

A profile is derived from signals gathered concurrently from the store:
stored profile row, authored content quality, ledger counters, enforcement
history and recent activity. Eight factors in [0, 100] are combined with
fixed weights; decayed ledger points and the base grant are added on top.

Design notes:
- compute_reputation() never blocks on persisting its result; the upsert is
  spawned as a background task and failures are only logged.
- Reputation deltas go through ModerationStore.increment_score(), an SQL-side
  clamped upsert, so concurrent penalties for the same user all land.
- StoreUnavailable while gathering signals yields the default profile
  (score 100, trust level "new") instead of failing the caller.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

import structlog

from modcore.background import BackgroundTasks
from modcore.config import Settings, settings
from modcore.errors import StoreUnavailable
from modcore.models.base import as_utc, utcnow
from modcore.schemas.reputation import (
    EventCategory,
    ReputationEvent,
    ReputationFactors,
    ReputationProfile,
    ReputationTrend,
    TrendDirection,
    TrustLevelName,
    UserHistory,
    trust_level_for,
)
from modcore.store import ModerationStore

log = structlog.get_logger()

FACTOR_WEIGHTS: dict[str, float] = {
    "content_quality": 0.20,
    "community_helpfulness": 0.18,
    "consistent_activity": 0.15,
    "moderation_history": 0.15,
    "expertise": 0.12,
    "community_trust": 0.10,
    "account_maturity": 0.05,
    "behavior_pattern": 0.05,
}

# Weekly decay of ledger points per event category
DECAY_FACTORS: dict[str, float] = {
    EventCategory.content_quality.value: 0.95,
    EventCategory.community_feedback.value: 0.92,
    EventCategory.moderation_action.value: 0.85,
    EventCategory.expertise_demo.value: 0.98,
    EventCategory.violation.value: 0.88,
    EventCategory.achievement.value: 0.90,
}
DEFAULT_DECAY = 0.90

DEFAULT_SCORE = 100.0
ACTIVITY_WINDOW_DAYS = 30
BEHAVIOR_WINDOW_DAYS = 90
TREND_MIN_SAMPLES = 5

DEFAULT_RECOMMENDATION = "Complete your profile to start building reputation"


@dataclass
class ReputationSignals:
    """Raw inputs to the factor formulas, gathered from the store."""

    average_quality: Optional[float] = None
    total_content: int = 0
    helpful: int = 0
    best_answers: int = 0
    upvotes: int = 0
    downvotes: int = 0
    expert_verifications: int = 0
    mentoring_sessions: int = 0
    followers: int = 0
    mentions: int = 0
    valid_reports: int = 0
    false_reports: int = 0
    reports_received: int = 0
    moderation_actions: int = 0
    active_days: int = 0
    avg_daily_actions: float = 0.0
    account_created_at: Optional[datetime] = None
    # (points, action_type) of ledger entries in the behavior window
    behavior_events: list[tuple[int, str]] = field(default_factory=list)

    @classmethod
    def from_event_counts(cls, counts: dict[str, int], **kwargs) -> "ReputationSignals":
        return cls(
            helpful=counts.get("helpful_answer", 0),
            best_answers=counts.get("best_answer_selected", 0),
            upvotes=counts.get("community_upvote", 0),
            downvotes=counts.get("community_downvote", 0),
            expert_verifications=counts.get("expert_verification", 0),
            mentoring_sessions=counts.get("mentorship_given", 0),
            followers=counts.get("follower_gained", 0),
            mentions=counts.get("mentioned", 0),
            valid_reports=counts.get("report_upheld", 0),
            false_reports=counts.get("false_reporting", 0),
            reports_received=counts.get("report_received", 0),
            **kwargs,
        )


def _bounded(value: float) -> float:
    return float(max(0, min(100, round(value))))


def compute_factors(signals: ReputationSignals, now: datetime) -> ReputationFactors:
    avg_quality = signals.average_quality if signals.average_quality is not None else 50.0
    content_quality = avg_quality * 0.7 + min(signals.total_content / 10, 10) * 3

    helpfulness = (
        signals.helpful * 5
        + signals.best_answers * 10
        + signals.upvotes * 2
        - signals.downvotes
    )

    activity = (signals.active_days / ACTIVITY_WINDOW_DAYS) * 50 + min(
        signals.avg_daily_actions / 3, 10
    ) * 5

    clean_record = signals.reports_received == 0 and signals.moderation_actions == 0
    if clean_record:
        moderation = 100.0
    else:
        moderation = (
            100
            - signals.reports_received * 10
            - signals.moderation_actions * 15
            - signals.false_reports * 5
        )

    expertise = (
        signals.best_answers * 8
        + signals.expert_verifications * 15
        + signals.mentoring_sessions * 12
    )

    trust = (
        signals.followers * 2
        + signals.mentions * 3
        + signals.valid_reports * 5
        - signals.false_reports * 8
    )

    if signals.account_created_at is not None:
        age_months = (now - signals.account_created_at).total_seconds() / (30 * 86400)
    else:
        age_months = 0.0

    if signals.behavior_events:
        positive = sum(1 for points, _ in signals.behavior_events if points > 0)
        positive_ratio = positive / len(signals.behavior_events)
        diversity = len({action for _, action in signals.behavior_events}) * 5
        behavior = positive_ratio * 70 + min(diversity, 30)
    else:
        behavior = 50.0

    return ReputationFactors(
        content_quality=_bounded(content_quality),
        community_helpfulness=_bounded(helpfulness),
        consistent_activity=_bounded(activity),
        moderation_history=_bounded(moderation),
        expertise=_bounded(expertise),
        community_trust=_bounded(trust),
        account_maturity=_bounded(age_months * 5),
        behavior_pattern=_bounded(behavior),
    )


def weighted_factor_score(factors: ReputationFactors) -> float:
    values = factors.model_dump()
    return sum(values[name] * weight for name, weight in FACTOR_WEIGHTS.items())


def decayed_points(entries: list[tuple[int, str, datetime]], now: datetime) -> float:
    """Sum ledger points with exponential decay by age in weeks.

    Args:
        entries: (points, category, created_at) triples.
        now: Reference time.
    """
    total = 0.0
    for points, category, created_at in entries:
        weeks = max(0.0, (now - created_at).total_seconds() / (7 * 86400))
        total += points * DECAY_FACTORS.get(category, DEFAULT_DECAY) ** weeks
    return total


def trend_slope(values: list[float]) -> float:
    """Least-squares slope of values against their index."""
    n = len(values)
    sum_x = n * (n - 1) / 2
    sum_xx = (n - 1) * n * (2 * n - 1) / 6
    sum_y = sum(values)
    sum_xy = sum(i * y for i, y in enumerate(values))
    denominator = n * sum_xx - sum_x * sum_x
    if denominator == 0:
        return 0.0
    return (n * sum_xy - sum_x * sum_y) / denominator


def trend_for(points: list[float]) -> ReputationTrend:
    if len(points) < TREND_MIN_SAMPLES:
        return ReputationTrend(direction=TrendDirection.stable, rate=0.0, confidence=0.3)
    slope = trend_slope(points)
    if slope > 0.1:
        direction = TrendDirection.improving
    elif slope < -0.1:
        direction = TrendDirection.declining
    else:
        direction = TrendDirection.stable
    return ReputationTrend(
        direction=direction,
        rate=abs(slope),
        confidence=min(1.0, len(points) / 20),
    )


def recommendations_for(factors: ReputationFactors, trend: ReputationTrend) -> list[str]:
    recommendations: list[str] = []
    if factors.content_quality < 60:
        recommendations.append("Focus on creating higher quality, more detailed content")
    if factors.community_helpfulness < 40:
        recommendations.append(
            "Help other community members by answering questions and providing useful feedback"
        )
    if factors.consistent_activity < 30:
        recommendations.append(
            "Engage more regularly with the community to build consistent activity"
        )
    if factors.expertise < 50 and factors.content_quality > 70:
        recommendations.append(
            "Consider applying for expert verification in your areas of expertise"
        )
    if trend.direction == TrendDirection.declining:
        recommendations.append(
            "Your recent activity trend is declining - focus on positive contributions"
        )
    if factors.community_trust < 30:
        recommendations.append(
            "Build trust by making accurate reports and helping moderate the community"
        )
    if not recommendations:
        recommendations.append("Keep up the great work! You're a valued community member")
    return recommendations


def default_profile(user_id: str) -> ReputationProfile:
    return ReputationProfile(
        user_id=user_id,
        overall_score=DEFAULT_SCORE,
        factors=ReputationFactors(),
        trust_level=TrustLevelName.new,
        recommendations=[DEFAULT_RECOMMENDATION],
    )


def profile_from_row(row) -> ReputationProfile:
    """Rebuild a ReputationProfile from a stored UserReputation row."""
    score = max(0.0, min(1000.0, row.overall_score))
    return ReputationProfile(
        user_id=row.user_id,
        overall_score=score,
        factors=ReputationFactors.model_validate(row.factors_json or {}),
        trust_level=trust_level_for(score).level,
        restriction_level=row.restriction_level,
        restriction_reason=row.restriction_reason,
        restriction_expires_at=as_utc(row.restriction_expires_at),
        moderation_strikes=row.moderation_strikes,
        account_created_at=as_utc(row.account_created_at),
        trend=ReputationTrend.model_validate(row.trend_json or {}),
        recommendations=list(row.recommendations_json or []),
        calculated_at=as_utc(row.last_calculated_at),
    )


def _active_day_stats(timestamps: list[datetime]) -> tuple[int, float]:
    days = {ts.date() for ts in timestamps}
    return len(days), len(timestamps) / max(len(days), 1)


class ReputationEngine:
    def __init__(
        self,
        store: ModerationStore,
        background: BackgroundTasks,
        app_settings: Settings = settings,
    ) -> None:
        self._store = store
        self._background = background
        self._settings = app_settings

    async def _gather_signals(self, user_id: str, now: datetime):
        behavior_since = now - timedelta(days=BEHAVIOR_WINDOW_DAYS)
        activity_since = now - timedelta(days=ACTIVITY_WINDOW_DAYS)
        row, quality, counts, enforcement, activity, events = await asyncio.gather(
            self._store.find_profile(user_id),
            self._store.content_quality_stats(user_id),
            self._store.event_counts(user_id),
            self._store.enforcement_count(user_id),
            self._store.activity_timestamps(user_id, activity_since),
            self._store.list_events(user_id),
        )
        average_quality, total_content = quality
        active_days, avg_daily = _active_day_stats(activity)
        entries = [
            (e.points, e.category, as_utc(e.created_at), e.action_type) for e in events
        ]
        signals = ReputationSignals.from_event_counts(
            counts,
            average_quality=average_quality,
            total_content=total_content,
            moderation_actions=enforcement,
            active_days=active_days,
            avg_daily_actions=avg_daily,
            account_created_at=as_utc(row.account_created_at) if row is not None else None,
            behavior_events=[
                (points, action) for points, _, ts, action in entries if ts >= behavior_since
            ],
        )
        return row, signals, entries

    async def compute_reputation(self, user_id: str) -> ReputationProfile:
        """Recompute a user's profile from stored signals.

        The computed profile is persisted in the background; enforcement state
        (restriction, strikes) is carried over from the stored row.
        """
        now = utcnow()
        try:
            row, signals, entries = await self._gather_signals(user_id, now)
        except StoreUnavailable:
            log.warning("reputation_signals_unavailable", user_id=user_id)
            return default_profile(user_id)

        factors = compute_factors(signals, now)
        decayed = decayed_points([(p, c, ts) for p, c, ts, _ in entries], now)
        overall = self._settings.base_reputation + weighted_factor_score(factors) + decayed
        overall = max(0.0, min(1000.0, overall))

        trend_since = now - timedelta(days=ACTIVITY_WINDOW_DAYS)
        trend = trend_for([float(p) for p, _, ts, _ in entries if ts >= trend_since])

        profile = ReputationProfile(
            user_id=user_id,
            overall_score=round(overall, 2),
            factors=factors,
            trust_level=trust_level_for(overall).level,
            trend=trend,
            recommendations=recommendations_for(factors, trend),
            calculated_at=now,
            account_created_at=signals.account_created_at or now,
        )
        if row is not None:
            profile = profile.model_copy(
                update={
                    "restriction_level": row.restriction_level,
                    "restriction_reason": row.restriction_reason,
                    "restriction_expires_at": as_utc(row.restriction_expires_at),
                    "moderation_strikes": row.moderation_strikes,
                }
            )

        self._background.spawn(self._store.upsert_profile(profile), name=f"upsert_profile:{user_id}")
        log.info(
            "reputation_computed",
            user_id=user_id,
            overall_score=profile.overall_score,
            trust_level=profile.trust_level.value,
        )
        return profile

    async def get_profile(self, user_id: str) -> ReputationProfile:
        """Stored profile when recently computed, otherwise a fresh computation."""
        try:
            row = await self._store.find_profile(user_id)
        except StoreUnavailable:
            return default_profile(user_id)
        if row is not None and row.last_calculated_at is not None:
            age = utcnow() - as_utc(row.last_calculated_at)
            if age.total_seconds() < self._settings.reputation_recompute_after_seconds:
                return profile_from_row(row)
        return await self.compute_reputation(user_id)

    async def user_history(self, user_id: str) -> UserHistory:
        try:
            return await self._store.user_history(user_id, utcnow())
        except StoreUnavailable:
            log.warning("user_history_unavailable", user_id=user_id)
            return UserHistory()

    async def record_event(self, user_id: str, event: ReputationEvent) -> Optional[ReputationProfile]:
        """Append a ledger event; significant events trigger a recomputation.

        Returns the recomputed profile, or None when no recomputation ran.
        """
        await self._store.append_event(user_id, event)
        log.info(
            "reputation_event_recorded",
            user_id=user_id,
            action_type=event.action_type,
            points=event.points,
        )
        if abs(event.impact) >= self._settings.significant_event_impact:
            return await self.compute_reputation(user_id)
        return None

    async def adjust_score(
        self,
        user_id: str,
        delta: float,
        reason: str,
        category: EventCategory = EventCategory.moderation_action,
        action_type: str = "score_adjustment",
    ) -> float:
        """Atomically shift the stored score and record the matching ledger entry."""
        new_score = await self._store.increment_score(user_id, delta)
        await self._store.append_event(
            user_id,
            ReputationEvent(
                category=category,
                action_type=action_type,
                impact=max(-100.0, min(100.0, delta)),
                reason=reason,
            ),
        )
        log.info("reputation_adjusted", user_id=user_id, delta=delta, new_score=new_score)
        return new_score
