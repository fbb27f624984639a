from .base import Base
from .reputation import ReputationLedgerEntry, UserReputation
from .analysis import ContentAnalysisRecord
from .decision import CurrentDecision, DecisionLog, EnforcementAction, ThresholdAdjustment
from .queue import ModerationQueueItem
from .rule import RuleTriggerAudit, StoredRule
from .vote import FeedbackVoteRecord, OverrideRecommendationRecord

__all__ = [
    "Base",
    "UserReputation",
    "ReputationLedgerEntry",
    "ContentAnalysisRecord",
    "CurrentDecision",
    "DecisionLog",
    "EnforcementAction",
    "ThresholdAdjustment",
    "ModerationQueueItem",
    "StoredRule",
    "RuleTriggerAudit",
    "FeedbackVoteRecord",
    "OverrideRecommendationRecord",
]
