"""Pydantic schemas for moderation rules.

Conditions and actions are tagged unions discriminated on ``type``. Each
condition variant restricts ``field`` to the fields its extractor table knows,
and each action variant carries only the parameters that action uses, so a
rule that validates is structurally sound before it is ever evaluated.
"""

import enum
from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from modcore.schemas.analysis import Severity
from modcore.schemas.content import ContentType


class ConditionType(str, enum.Enum):
    content_analysis = "content_analysis"
    user_reputation = "user_reputation"
    user_history = "user_history"
    time_based = "time_based"
    content_metadata = "content_metadata"


class Operator(str, enum.Enum):
    equals = "equals"
    not_equals = "not_equals"
    greater_than = "greater_than"
    less_than = "less_than"
    contains = "contains"
    not_contains = "not_contains"
    in_ = "in"
    not_in = "not_in"


Scalar = Union[bool, int, float, str]
ConditionValue = Union[Scalar, list[Scalar]]

AnalysisField = Literal[
    "spam_score", "toxicity_score", "quality_score", "readability_score",
    "overall_score", "has_spam_keywords", "has_toxic_language",
    "toxicity_severity", "word_count", "sentence_count", "recommendation",
]
ReputationField = Literal[
    "overall_reputation", "trust_level", "content_quality_avg",
    "community_helpfulness", "moderation_history", "account_maturity",
    "recent_trend", "expert_status", "restriction_level",
]
HistoryField = Literal[
    "violations_30d", "warnings_7d", "successful_reports", "false_reports",
    "content_removed_count", "days_since_last_violation", "total_posts",
]
TimeField = Literal["hour_of_day", "day_of_week", "is_weekend", "is_business_hours"]
MetadataField = Literal[
    "content_length", "word_count", "has_links", "has_emojis", "language",
    "content_type", "is_first_post",
]


class _ConditionBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    operator: Operator
    value: ConditionValue
    weight: float = Field(default=1.0, ge=0.1, le=2.0)

    def describe(self) -> str:
        return f"{self.field} {self.operator.value} {self.value}"


class ContentAnalysisCondition(_ConditionBase):
    type: Literal[ConditionType.content_analysis] = ConditionType.content_analysis
    field: AnalysisField


class UserReputationCondition(_ConditionBase):
    type: Literal[ConditionType.user_reputation] = ConditionType.user_reputation
    field: ReputationField


class UserHistoryCondition(_ConditionBase):
    type: Literal[ConditionType.user_history] = ConditionType.user_history
    field: HistoryField


class TimeBasedCondition(_ConditionBase):
    type: Literal[ConditionType.time_based] = ConditionType.time_based
    field: TimeField


class ContentMetadataCondition(_ConditionBase):
    type: Literal[ConditionType.content_metadata] = ConditionType.content_metadata
    field: MetadataField


RuleCondition = Annotated[
    Union[
        ContentAnalysisCondition,
        UserReputationCondition,
        UserHistoryCondition,
        TimeBasedCondition,
        ContentMetadataCondition,
    ],
    Field(discriminator="type"),
]


class ActionType(str, enum.Enum):
    block = "block"
    flag = "flag"
    review = "review"
    warn = "warn"
    restrict = "restrict"
    notify = "notify"
    assign = "assign"
    escalate = "escalate"


class ActionTarget(str, enum.Enum):
    content = "content"
    user = "user"
    moderator = "moderator"


class _ActionBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    target: ActionTarget = ActionTarget.content
    reason: Optional[str] = None


class BlockAction(_ActionBase):
    type: Literal[ActionType.block] = ActionType.block


class FlagAction(_ActionBase):
    type: Literal[ActionType.flag] = ActionType.flag
    severity: Severity = Severity.medium


class ReviewAction(_ActionBase):
    type: Literal[ActionType.review] = ActionType.review


class WarnAction(_ActionBase):
    type: Literal[ActionType.warn] = ActionType.warn
    target: ActionTarget = ActionTarget.user


class RestrictAction(_ActionBase):
    type: Literal[ActionType.restrict] = ActionType.restrict
    target: ActionTarget = ActionTarget.user
    duration_hours: int = Field(default=24, ge=1, le=24 * 365)


class NotifyAction(_ActionBase):
    type: Literal[ActionType.notify] = ActionType.notify
    target: ActionTarget = ActionTarget.moderator
    severity: Severity = Severity.medium
    notification_template: Optional[str] = None


class AssignAction(_ActionBase):
    type: Literal[ActionType.assign] = ActionType.assign
    target: ActionTarget = ActionTarget.moderator
    assign_to: str = Field(min_length=1)


class EscalateAction(_ActionBase):
    type: Literal[ActionType.escalate] = ActionType.escalate
    target: ActionTarget = ActionTarget.moderator
    escalation_level: int = Field(default=1, ge=1, le=5)


RuleAction = Annotated[
    Union[
        BlockAction,
        FlagAction,
        ReviewAction,
        WarnAction,
        RestrictAction,
        NotifyAction,
        AssignAction,
        EscalateAction,
    ],
    Field(discriminator="type"),
]


class TriggerEvent(str, enum.Enum):
    content_posted = "content_posted"
    content_reported = "content_reported"
    user_action = "user_action"
    scheduled = "scheduled"
    threshold_reached = "threshold_reached"


class TriggerFrequency(str, enum.Enum):
    immediate = "immediate"
    batch_hourly = "batch_hourly"
    batch_daily = "batch_daily"


class RuleTrigger(BaseModel):
    model_config = ConfigDict(frozen=True)

    event: TriggerEvent = TriggerEvent.content_posted
    frequency: TriggerFrequency = TriggerFrequency.immediate
    # Empty list applies the rule to every content type
    content_types: tuple[ContentType, ...] = ()


class RuleStats(BaseModel):
    times_triggered: int = 0
    success_rate: float = 0.0
    false_positive_rate: float = 0.0
    last_triggered_at: Optional[datetime] = None


class ModerationRule(BaseModel):
    """A configurable condition/action policy rule."""

    id: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=200)
    description: str = ""
    priority: int = Field(ge=1, le=10)
    is_active: bool = True
    conditions: list[RuleCondition] = Field(default_factory=list)
    actions: list[RuleAction] = Field(default_factory=list)
    trigger: RuleTrigger = Field(default_factory=RuleTrigger)
    created_by: str = "system"
    stats: RuleStats = Field(default_factory=RuleStats)

    @property
    def blocks(self) -> bool:
        return any(a.type == ActionType.block for a in self.actions)

    def applies_to(self, content_type: ContentType) -> bool:
        return not self.trigger.content_types or content_type in self.trigger.content_types


class RuleExecutionResult(BaseModel):
    rule_id: str
    triggered: bool
    confidence: float = Field(ge=0, le=1)
    matched_conditions: list[str] = Field(default_factory=list)
    actions_executed: list[str] = Field(default_factory=list)
    processing_time_ms: float = 0.0
    reason: str
    error: bool = False


class RuleOutcome(BaseModel):
    """Flattened view of a rule evaluation pass."""

    should_block: bool = False
    should_flag: bool = False
    should_review: bool = False
    actions: list[str] = Field(default_factory=list)
    reasons: list[str] = Field(default_factory=list)
