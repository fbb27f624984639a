"""Pydantic schemas for community feedback votes and consensus results."""

import enum
import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from modcore.schemas.decision import DecisionAction
from modcore.schemas.reputation import TrustLevelName


class VoteSeverity(str, enum.Enum):
    too_lenient = "too_lenient"
    accurate = "accurate"
    too_strict = "too_strict"


class VoteSubmission(BaseModel):
    """A voter's opinion of an existing moderation decision."""

    was_accurate: bool
    severity: Optional[VoteSeverity] = None
    categories: list[str] = Field(default_factory=list, max_length=10)
    explanation: Optional[str] = Field(default=None, max_length=2000)
    suggested_action: Optional[DecisionAction] = None

    def resolved_severity(self) -> VoteSeverity:
        if self.severity is not None:
            return self.severity
        return VoteSeverity.accurate if self.was_accurate else VoteSeverity.too_strict


class VoteOutcome(BaseModel):
    accepted: bool
    reason: str
    weight: Optional[float] = None
    points_earned: int = 0


class FeedbackVote(BaseModel):
    model_config = ConfigDict(frozen=True)

    content_id: str
    voter_id: str
    original_action: DecisionAction
    was_accurate: bool
    suggested_action: Optional[DecisionAction] = None
    severity: VoteSeverity = VoteSeverity.accurate
    categories: tuple[str, ...] = ()
    explanation: Optional[str] = None
    weight: float = Field(ge=0.1, le=3.0)
    voter_reputation: float = 0.0
    voter_trust_level: TrustLevelName = TrustLevelName.new
    submitted_at: Optional[datetime] = None


class ConsensusResult(BaseModel):
    """Weighted community agreement on one decision. Derived, never stored."""

    content_id: str
    original_action: DecisionAction
    original_confidence: float
    total_votes: int
    agreement_rate: float = Field(ge=0, le=1)
    consensus_action: DecisionAction
    confidence_score: float = Field(ge=0, le=1)
    expert_votes: int = 0
    trusted_votes: int = 0
    override_recommended: bool = False
    recommended_action: Optional[DecisionAction] = None
    reason: str = ""
    category_weights: dict[str, float] = Field(default_factory=dict)
    insights: list[str] = Field(default_factory=list)
    rule_improvements: list[str] = Field(default_factory=list)
    threshold_adjustments: dict[str, float] = Field(default_factory=dict)


class OpportunityPriority(str, enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"


class FeedbackOpportunity(BaseModel):
    content_id: str
    original_action: DecisionAction
    confidence: float
    decided_at: datetime
    votes_so_far: int = 0
    points_available: int
    priority: OpportunityPriority


class OverrideStatus(str, enum.Enum):
    pending_review = "pending_review"
    approved = "approved"
    rejected = "rejected"


class OverrideRecommendation(BaseModel):
    id: uuid.UUID
    content_id: str
    original_action: DecisionAction
    recommended_action: DecisionAction
    confidence: float
    reason: str
    total_votes: int
    expert_votes: int
    agreement_rate: float
    status: OverrideStatus = OverrideStatus.pending_review
    created_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
