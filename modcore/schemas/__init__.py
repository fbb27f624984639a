"""modcore Pydantic schemas package.

Re-exports the domain schemas for convenient importing:

    from modcore.schemas import Content, ModerationDecision, ModerationRule, ...
"""

from modcore.schemas.analysis import (
    AnalysisResult,
    QualityAnalysis,
    Recommendation,
    Severity,
    SpamAnalysis,
    ToxicityAnalysis,
)
from modcore.schemas.common import PaginatedResponse
from modcore.schemas.consensus import (
    ConsensusResult,
    FeedbackOpportunity,
    FeedbackVote,
    OverrideRecommendation,
    OverrideStatus,
    VoteOutcome,
    VoteSeverity,
    VoteSubmission,
)
from modcore.schemas.content import Content, ContentType
from modcore.schemas.decision import (
    DecisionAction,
    DecisionSource,
    DecisionThresholds,
    ModerationDecision,
    PlannedAction,
    PlannedActionType,
    QueueType,
)
from modcore.schemas.queue import ModerationActionRecord, QueueItem, QueueStatus
from modcore.schemas.reputation import (
    ReputationEvent,
    ReputationFactors,
    ReputationProfile,
    TrustLevel,
    TrustLevelName,
    UserHistory,
)
from modcore.schemas.rule import (
    ModerationRule,
    RuleExecutionResult,
    RuleOutcome,
    RuleTrigger,
    TriggerEvent,
)

__all__ = [
    # Content
    "Content",
    "ContentType",
    # Analysis
    "AnalysisResult",
    "SpamAnalysis",
    "QualityAnalysis",
    "ToxicityAnalysis",
    "Severity",
    "Recommendation",
    # Reputation
    "ReputationProfile",
    "ReputationFactors",
    "ReputationEvent",
    "TrustLevel",
    "TrustLevelName",
    "UserHistory",
    # Rules
    "ModerationRule",
    "RuleTrigger",
    "TriggerEvent",
    "RuleExecutionResult",
    "RuleOutcome",
    # Decisions
    "ModerationDecision",
    "DecisionAction",
    "DecisionSource",
    "DecisionThresholds",
    "PlannedAction",
    "PlannedActionType",
    "QueueType",
    # Consensus
    "VoteSubmission",
    "VoteOutcome",
    "VoteSeverity",
    "FeedbackVote",
    "ConsensusResult",
    "FeedbackOpportunity",
    "OverrideRecommendation",
    "OverrideStatus",
    # Queue
    "QueueItem",
    "QueueStatus",
    "ModerationActionRecord",
    # Common
    "PaginatedResponse",
]
