"""Pydantic schemas for moderation decisions and their planned side effects."""

import enum
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class DecisionAction(str, enum.Enum):
    allow = "allow"
    flag = "flag"
    review = "review"
    block = "block"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]

    def escalate_to(self, other: "DecisionAction") -> "DecisionAction":
        """Return the more severe of the two actions."""
        return other if other.severity > self.severity else self


_SEVERITY = {
    DecisionAction.allow: 0,
    DecisionAction.flag: 1,
    DecisionAction.review: 2,
    DecisionAction.block: 3,
}


class DecisionSource(str, enum.Enum):
    automated = "automated"
    rules = "rules"
    consensus = "consensus"
    fallback = "fallback"


class ModerationDecision(BaseModel):
    """The current enforcement decision for one piece of content."""

    model_config = ConfigDict(frozen=True)

    content_id: str
    action: DecisionAction
    confidence: float = Field(ge=0, le=1)
    reasons: tuple[str, ...] = ()
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    source: DecisionSource = DecisionSource.automated
    author_id: Optional[str] = None
    content_digest: Optional[str] = None
    adjusted_spam_score: float = 0.0
    adjusted_toxicity_score: float = 0.0
    reputation_multiplier: float = 1.0


class PlannedActionType(str, enum.Enum):
    hide = "hide"
    warn = "warn"
    queue = "queue"
    notify = "notify"
    restrict = "restrict"


class QueueType(str, enum.Enum):
    urgent = "urgent"
    review = "review"
    monitoring = "monitoring"
    admin_review = "admin_review"


class PlannedAction(BaseModel):
    """A side effect chosen for a decision, executed by the ActionExecutor."""

    model_config = ConfigDict(frozen=True)

    type: PlannedActionType
    target: str = "content"
    reason: str
    queue_type: Optional[QueueType] = None
    priority: Optional[int] = Field(default=None, ge=1, le=10)
    duration_hours: Optional[int] = None
    reputation_penalty: Optional[float] = None


class DecisionThresholds(BaseModel):
    """Score thresholds of the decision matrix; replaced wholesale, never mutated."""

    model_config = ConfigDict(frozen=True)

    spam_block: float
    spam_review: float
    spam_flag: float
    toxicity_block: float
    toxicity_review: float
    toxicity_flag: float
    quality_review: float
    quality_flag: float

    @classmethod
    def from_settings(cls, app_settings) -> "DecisionThresholds":
        return cls(
            spam_block=app_settings.spam_block_threshold,
            spam_review=app_settings.spam_review_threshold,
            spam_flag=app_settings.spam_flag_threshold,
            toxicity_block=app_settings.toxicity_block_threshold,
            toxicity_review=app_settings.toxicity_review_threshold,
            toxicity_flag=app_settings.toxicity_flag_threshold,
            quality_review=app_settings.quality_review_threshold,
            quality_flag=app_settings.quality_flag_threshold,
        )
