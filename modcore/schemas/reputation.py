"""Pydantic schemas for reputation profiles, trust levels and ledger events.

The trust ladder is ordered: a profile's trust level is always the highest
level whose min_reputation the overall score meets.
"""

import enum
from datetime import datetime, timedelta
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class TrustLevelName(str, enum.Enum):
    restricted = "restricted"
    new = "new"
    trusted = "trusted"
    expert = "expert"
    moderator = "moderator"
    admin = "admin"


class TrustLevel(BaseModel):
    model_config = ConfigDict(frozen=True)

    level: TrustLevelName
    min_reputation: float
    privileges: tuple[str, ...]
    restrictions: tuple[str, ...]
    description: str


TRUST_LEVELS: tuple[TrustLevel, ...] = (
    TrustLevel(
        level=TrustLevelName.restricted,
        min_reputation=0,
        privileges=("read", "basic_comments"),
        restrictions=("no_posting", "moderated_comments", "rate_limited"),
        description="Limited access due to policy violations",
    ),
    TrustLevel(
        level=TrustLevelName.new,
        min_reputation=50,
        privileges=("read", "comment", "post_questions", "basic_voting"),
        restrictions=("moderated_posts", "daily_limits", "no_direct_messages"),
        description="New community member building reputation",
    ),
    TrustLevel(
        level=TrustLevelName.trusted,
        min_reputation=150,
        privileges=("read", "comment", "post", "vote", "direct_message", "report_content"),
        restrictions=("weekly_post_limits",),
        description="Established community member with good standing",
    ),
    TrustLevel(
        level=TrustLevelName.expert,
        min_reputation=300,
        privileges=(
            "read", "comment", "post", "vote", "direct_message", "report_content",
            "answer_verification", "mentor_access",
        ),
        restrictions=(),
        description="Recognized expert with specialized knowledge",
    ),
    TrustLevel(
        level=TrustLevelName.moderator,
        min_reputation=500,
        privileges=("all_expert_privileges", "moderate_content", "ban_users", "edit_posts", "access_reports"),
        restrictions=(),
        description="Community moderator with enforcement powers",
    ),
    TrustLevel(
        level=TrustLevelName.admin,
        min_reputation=1000,
        privileges=("all_privileges",),
        restrictions=(),
        description="Platform administrator with full access",
    ),
)

TRUST_LEVEL_BY_NAME: dict[TrustLevelName, TrustLevel] = {t.level: t for t in TRUST_LEVELS}

# Trust levels whose holders count as expert voters and get reduced scrutiny
EXPERT_LEVELS: frozenset[TrustLevelName] = frozenset(
    {TrustLevelName.expert, TrustLevelName.moderator}
)


def trust_level_for(score: float) -> TrustLevel:
    """Return the highest trust level whose threshold the score meets."""
    for level in sorted(TRUST_LEVELS, key=lambda t: t.min_reputation, reverse=True):
        if score >= level.min_reputation:
            return level
    return TRUST_LEVELS[0]


class ReputationFactors(BaseModel):
    """Eight named reputation factors, each in [0, 100]."""

    content_quality: float = Field(default=50, ge=0, le=100)
    community_helpfulness: float = Field(default=50, ge=0, le=100)
    consistent_activity: float = Field(default=50, ge=0, le=100)
    moderation_history: float = Field(default=100, ge=0, le=100)
    expertise: float = Field(default=0, ge=0, le=100)
    community_trust: float = Field(default=50, ge=0, le=100)
    account_maturity: float = Field(default=20, ge=0, le=100)
    behavior_pattern: float = Field(default=50, ge=0, le=100)


class TrendDirection(str, enum.Enum):
    improving = "improving"
    stable = "stable"
    declining = "declining"


class ReputationTrend(BaseModel):
    direction: TrendDirection = TrendDirection.stable
    rate: float = 0.0
    confidence: float = Field(default=0.0, ge=0, le=1)


class ReputationProfile(BaseModel):
    user_id: str
    overall_score: float = Field(ge=0, le=1000)
    factors: ReputationFactors = Field(default_factory=ReputationFactors)
    trust_level: TrustLevelName = TrustLevelName.new
    restriction_level: str = "none"
    restriction_reason: Optional[str] = None
    restriction_expires_at: Optional[datetime] = None
    moderation_strikes: int = 0
    account_created_at: Optional[datetime] = None
    trend: ReputationTrend = Field(default_factory=ReputationTrend)
    recommendations: list[str] = Field(default_factory=list)
    calculated_at: Optional[datetime] = None

    def is_restricted(self, now: datetime) -> bool:
        if self.restriction_level == "none":
            return False
        return self.restriction_expires_at is None or self.restriction_expires_at > now

    def is_new_user(self, now: datetime, new_user_days: int) -> bool:
        if self.account_created_at is None:
            return True
        return now - self.account_created_at < timedelta(days=new_user_days)


class UserHistory(BaseModel):
    """Moderation history of a submitter, used by decisions and rules."""

    violations_30d: int = 0
    recent_violations: int = 0  # last 7 days
    warnings_7d: int = 0
    successful_reports: int = 0
    false_reports: int = 0
    content_removed_count: int = 0
    days_since_last_violation: int = 999
    total_posts: int = 0


class EventCategory(str, enum.Enum):
    content_quality = "content_quality"
    community_feedback = "community_feedback"
    moderation_action = "moderation_action"
    expertise_demo = "expertise_demo"
    violation = "violation"
    achievement = "achievement"


class ReputationEvent(BaseModel):
    """A points-bearing event recorded against a user's reputation ledger."""

    category: EventCategory
    action_type: str = Field(min_length=1, max_length=50)
    impact: float = Field(ge=-100, le=100)
    weight: float = Field(default=1.0, ge=0.1, le=2.0)
    reason: str = ""

    @property
    def points(self) -> int:
        return round(self.impact * self.weight)


# Named presets: action_type -> (category, impact, weight)
EVENT_PRESETS: dict[str, tuple[EventCategory, float, float]] = {
    "high_quality_post": (EventCategory.content_quality, 15, 1.2),
    "helpful_answer": (EventCategory.community_feedback, 20, 1.5),
    "best_answer_selected": (EventCategory.expertise_demo, 30, 1.8),
    "community_upvote": (EventCategory.community_feedback, 3, 1.0),
    "community_downvote": (EventCategory.community_feedback, -2, 1.0),
    "follower_gained": (EventCategory.community_feedback, 2, 1.0),
    "mentioned": (EventCategory.community_feedback, 1, 1.0),
    "expert_verification": (EventCategory.expertise_demo, 50, 2.0),
    "mentorship_given": (EventCategory.expertise_demo, 25, 1.4),
    "consistent_activity": (EventCategory.achievement, 10, 1.1),
    "report_upheld": (EventCategory.moderation_action, 5, 1.0),
    "report_received": (EventCategory.violation, -5, 1.0),
    "content_blocked": (EventCategory.violation, -15, 1.0),
    "warning_issued": (EventCategory.violation, -5, 1.0),
    "automated_restriction": (EventCategory.violation, -10, 1.0),
    "violation_minor": (EventCategory.violation, -20, 1.3),
    "violation_major": (EventCategory.violation, -50, 1.8),
    "spam_detected": (EventCategory.violation, -40, 1.6),
    "harassment_reported": (EventCategory.violation, -80, 2.0),
    "false_reporting": (EventCategory.moderation_action, -15, 1.2),
    "achievement_earned": (EventCategory.achievement, 35, 1.3),
}


def preset_event(action_type: str, reason: str = "") -> ReputationEvent:
    """Build a ledger event from a named preset.

    Raises:
        KeyError: If action_type is not a known preset.
    """
    category, impact, weight = EVENT_PRESETS[action_type]
    return ReputationEvent(
        category=category,
        action_type=action_type,
        impact=impact,
        weight=weight,
        reason=reason or action_type.replace("_", " "),
    )
