"""Rule evaluation context and per-condition-type field extractors.

Each condition type has its own table mapping a field name to an extractor
over RuleContext. The condition schemas restrict ``field`` to the keys of the
matching table, so a validated rule never asks for an unknown field.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from modcore.errors import RuleEvaluationError
from modcore.schemas.analysis import AnalysisResult
from modcore.schemas.content import Content
from modcore.schemas.reputation import EXPERT_LEVELS, ReputationProfile, UserHistory
from modcore.schemas.rule import ConditionType, Operator
from modcore.services.analyzer import detect_language

LINK_PATTERN = re.compile(r"https?://")
EMOJI_PATTERN = re.compile(
    "[\U0001F600-\U0001F64F\U0001F300-\U0001F5FF\U0001F680-\U0001F6FF\U0001F1E0-\U0001F1FF]"
)


@dataclass(frozen=True)
class ContentMetadata:
    content_length: int
    word_count: int
    has_links: bool
    has_emojis: bool
    language: str

    @classmethod
    def from_text(cls, text: str, language: str = "") -> "ContentMetadata":
        return cls(
            content_length=len(text),
            word_count=len(text.split()),
            has_links=bool(LINK_PATTERN.search(text)),
            has_emojis=bool(EMOJI_PATTERN.search(text)),
            language=language or detect_language(text),
        )


@dataclass(frozen=True)
class RuleContext:
    """Everything a rule condition can look at for one submission."""

    content: Content
    analysis: AnalysisResult
    reputation: ReputationProfile
    history: UserHistory
    timestamp: datetime
    metadata: ContentMetadata

    @classmethod
    def build(
        cls,
        content: Content,
        analysis: AnalysisResult,
        reputation: ReputationProfile,
        history: UserHistory,
        timestamp: datetime,
    ) -> "RuleContext":
        return cls(
            content=content,
            analysis=analysis,
            reputation=reputation,
            history=history,
            timestamp=timestamp,
            metadata=ContentMetadata.from_text(content.text, analysis.language),
        )


Extractor = Callable[[RuleContext], Any]

ANALYSIS_FIELDS: dict[str, Extractor] = {
    "spam_score": lambda ctx: ctx.analysis.spam_score,
    "toxicity_score": lambda ctx: ctx.analysis.toxicity_score,
    "quality_score": lambda ctx: ctx.analysis.quality_score,
    "readability_score": lambda ctx: ctx.analysis.quality.readability_score,
    "overall_score": lambda ctx: ctx.analysis.overall_score,
    "has_spam_keywords": lambda ctx: bool(ctx.analysis.spam.flags),
    "has_toxic_language": lambda ctx: bool(ctx.analysis.toxicity.flags),
    "toxicity_severity": lambda ctx: ctx.analysis.toxicity.severity.value,
    "word_count": lambda ctx: ctx.analysis.quality.word_count,
    "sentence_count": lambda ctx: ctx.analysis.quality.sentence_count,
    "recommendation": lambda ctx: ctx.analysis.recommendation.value,
}

REPUTATION_FIELDS: dict[str, Extractor] = {
    "overall_reputation": lambda ctx: ctx.reputation.overall_score,
    "trust_level": lambda ctx: ctx.reputation.trust_level.value,
    "content_quality_avg": lambda ctx: ctx.reputation.factors.content_quality,
    "community_helpfulness": lambda ctx: ctx.reputation.factors.community_helpfulness,
    "moderation_history": lambda ctx: ctx.reputation.factors.moderation_history,
    "account_maturity": lambda ctx: ctx.reputation.factors.account_maturity,
    "recent_trend": lambda ctx: ctx.reputation.trend.direction.value,
    "expert_status": lambda ctx: ctx.reputation.trust_level in EXPERT_LEVELS,
    "restriction_level": lambda ctx: ctx.reputation.restriction_level,
}

HISTORY_FIELDS: dict[str, Extractor] = {
    "violations_30d": lambda ctx: ctx.history.violations_30d,
    "warnings_7d": lambda ctx: ctx.history.warnings_7d,
    "successful_reports": lambda ctx: ctx.history.successful_reports,
    "false_reports": lambda ctx: ctx.history.false_reports,
    "content_removed_count": lambda ctx: ctx.history.content_removed_count,
    "days_since_last_violation": lambda ctx: ctx.history.days_since_last_violation,
    "total_posts": lambda ctx: ctx.history.total_posts,
}


def _day_of_week(ctx: RuleContext) -> int:
    # 0 = Sunday
    return (ctx.timestamp.weekday() + 1) % 7


TIME_FIELDS: dict[str, Extractor] = {
    "hour_of_day": lambda ctx: ctx.timestamp.hour,
    "day_of_week": _day_of_week,
    "is_weekend": lambda ctx: _day_of_week(ctx) in (0, 6),
    "is_business_hours": lambda ctx: 9 <= ctx.timestamp.hour <= 17,
}

METADATA_FIELDS: dict[str, Extractor] = {
    "content_length": lambda ctx: ctx.metadata.content_length,
    "word_count": lambda ctx: ctx.metadata.word_count,
    "has_links": lambda ctx: ctx.metadata.has_links,
    "has_emojis": lambda ctx: ctx.metadata.has_emojis,
    "language": lambda ctx: ctx.metadata.language,
    "content_type": lambda ctx: ctx.content.type.value,
    "is_first_post": lambda ctx: ctx.history.total_posts == 0,
}

EXTRACTORS: dict[ConditionType, dict[str, Extractor]] = {
    ConditionType.content_analysis: ANALYSIS_FIELDS,
    ConditionType.user_reputation: REPUTATION_FIELDS,
    ConditionType.user_history: HISTORY_FIELDS,
    ConditionType.time_based: TIME_FIELDS,
    ConditionType.content_metadata: METADATA_FIELDS,
}


def extract(condition_type: ConditionType, field: str, ctx: RuleContext) -> Any:
    try:
        extractor = EXTRACTORS[condition_type][field]
    except KeyError:
        raise ValueError(
            f"unknown field {field!r} for {condition_type.value} conditions"
        ) from None
    return extractor(ctx)


def _as_number(value: Any) -> float:
    if isinstance(value, (list, tuple)) or value is None:
        raise ValueError(f"{value!r} is not numeric")
    return float(value)


def compare(operator: Operator, actual: Any, expected: Any) -> bool:
    """Apply a condition operator.

    Raises:
        ValueError: If the comparison cannot be performed on these values.
    """
    if operator == Operator.equals:
        return actual == expected
    if operator == Operator.not_equals:
        return actual != expected
    if operator == Operator.greater_than:
        return _as_number(actual) > _as_number(expected)
    if operator == Operator.less_than:
        return _as_number(actual) < _as_number(expected)
    if operator == Operator.contains:
        return str(expected).lower() in str(actual).lower()
    if operator == Operator.not_contains:
        return str(expected).lower() not in str(actual).lower()
    if operator in (Operator.in_, Operator.not_in):
        if not isinstance(expected, (list, tuple)):
            raise ValueError(f"operator {operator.value!r} needs a list, got {expected!r}")
        found = actual in expected
        return found if operator == Operator.in_ else not found
    raise ValueError(f"unsupported operator {operator!r}")


def condition_matches(rule_id: str, condition, ctx: RuleContext) -> bool:
    """Evaluate one rule condition against a context.

    Raises:
        RuleEvaluationError: If the field cannot be extracted or compared.
    """
    try:
        actual = extract(condition.type, condition.field, ctx)
        return compare(condition.operator, actual, condition.value)
    except (ValueError, TypeError, AttributeError) as exc:
        raise RuleEvaluationError(rule_id, f"{condition.describe()}: {exc}") from exc
