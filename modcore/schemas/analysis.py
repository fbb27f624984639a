"""Pydantic schemas for content analysis results.

All results are frozen: an AnalysisResult is produced once per content version
and never mutated.
"""

import enum

from pydantic import BaseModel, ConfigDict, Field


class Severity(str, enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"


class Recommendation(str, enum.Enum):
    approve = "approve"
    flag = "flag"
    review = "review"
    block = "block"


class SpamAnalysis(BaseModel):
    model_config = ConfigDict(frozen=True)

    spam_score: float = Field(ge=0, le=100)
    confidence: float = Field(ge=0, le=1)
    flags: tuple[str, ...] = ()
    keyword_matches: tuple[str, ...] = ()
    url_count: int = 0
    caps_ratio: float = 0.0
    word_count: int = 0
    language_quality: float = 1.0
    repetitive_score: float = 0.0
    promotional_score: float = 0.0

    @property
    def is_spam(self) -> bool:
        return self.spam_score > 50


class QualityAnalysis(BaseModel):
    model_config = ConfigDict(frozen=True)

    quality_score: float = Field(ge=0, le=100)
    readability_score: float = 0.0
    feedback: tuple[str, ...] = ()
    word_count: int = 0
    sentence_count: int = 0
    avg_words_per_sentence: float = 0.0
    meaningful_ratio: float = 0.0
    grammar_score: float = 100.0
    coherence_score: float = 0.0


class ToxicityAnalysis(BaseModel):
    model_config = ConfigDict(frozen=True)

    toxicity_score: float = Field(ge=0, le=100)
    severity: Severity = Severity.low
    flags: tuple[str, ...] = ()
    categories: dict[str, float] = Field(default_factory=dict)

    @property
    def is_toxic(self) -> bool:
        return self.toxicity_score > 30


class AnalysisResult(BaseModel):
    """Combined spam, quality and toxicity analysis of one content version."""

    model_config = ConfigDict(frozen=True)

    spam: SpamAnalysis
    quality: QualityAnalysis
    toxicity: ToxicityAnalysis
    overall_score: int = Field(ge=0, le=100)
    recommendation: Recommendation
    language: str = "english"
    flags: frozenset[str] = frozenset()

    @property
    def spam_score(self) -> float:
        return self.spam.spam_score

    @property
    def quality_score(self) -> float:
        return self.quality.quality_score

    @property
    def toxicity_score(self) -> float:
        return self.toxicity.toxicity_score

    @property
    def toxicity_categories(self) -> dict[str, float]:
        return self.toxicity.categories

    @property
    def is_spam(self) -> bool:
        return self.spam.is_spam

    @property
    def is_toxic(self) -> bool:
        return self.toxicity.is_toxic
