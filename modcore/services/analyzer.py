"""ContentAnalyzer: combined spam, quality and toxicity analysis of a text.

analyze() is a pure, deterministic function of the text. The async
analyze_concurrently() runs the three independent sub-analyses in worker
threads and joins them before the composite score is derived.
"""

import asyncio
import re
from typing import Optional

import structlog

from modcore.errors import AnalysisFailure
from modcore.metrics import analysis_duration
from modcore.schemas.analysis import (
    AnalysisResult,
    QualityAnalysis,
    Recommendation,
    Severity,
    SpamAnalysis,
    ToxicityAnalysis,
)
from modcore.services.quality import QualityAnalyzer
from modcore.services.spam import SpamDetector
from modcore.services.toxicity import ToxicityDetector

log = structlog.get_logger()

FALLBACK_FLAG = "analysis_fallback"

_DEVANAGARI = re.compile("[\u0900-\u097F\uA8E0-\uA8FF]")
_LATIN = re.compile("[A-Za-z]")


def detect_language(text: str) -> str:
    """Classify text as hindi, hinglish (mixed script) or english."""
    has_devanagari = bool(_DEVANAGARI.search(text))
    if not has_devanagari:
        return "english"
    return "hinglish" if _LATIN.search(text) else "hindi"


def overall_score(spam: SpamAnalysis, quality: QualityAnalysis, toxicity: ToxicityAnalysis) -> int:
    return round(
        (100 - spam.spam_score) * 0.4
        + quality.quality_score * 0.35
        + (100 - toxicity.toxicity_score) * 0.25
    )


def recommend(spam: SpamAnalysis, quality: QualityAnalysis, toxicity: ToxicityAnalysis) -> Recommendation:
    if toxicity.severity == Severity.critical and toxicity.toxicity_score > 60:
        return Recommendation.block
    if spam.is_spam and spam.confidence > 0.8:
        return Recommendation.block
    if toxicity.severity == Severity.high or (spam.is_spam and spam.confidence > 0.6):
        return Recommendation.review
    if toxicity.severity == Severity.medium or spam.confidence > 0.4:
        return Recommendation.flag
    if quality.quality_score < 30:
        return Recommendation.flag
    return Recommendation.approve


def combine(
    text: str, spam: SpamAnalysis, quality: QualityAnalysis, toxicity: ToxicityAnalysis
) -> AnalysisResult:
    return AnalysisResult(
        spam=spam,
        quality=quality,
        toxicity=toxicity,
        overall_score=overall_score(spam, quality, toxicity),
        recommendation=recommend(spam, quality, toxicity),
        language=detect_language(text),
        flags=frozenset(spam.flags) | frozenset(toxicity.flags),
    )


def fallback_analysis(text: str) -> AnalysisResult:
    """Deterministic stand-in used when analysis fails.

    Zero spam and toxicity, quality estimated from word count alone.
    """
    words = len(text.split())
    quality = QualityAnalysis(quality_score=min(100.0, 40.0 + 2 * words), word_count=words)
    spam = SpamAnalysis(spam_score=0.0, confidence=0.0, word_count=words)
    toxicity = ToxicityAnalysis(toxicity_score=0.0)
    return AnalysisResult(
        spam=spam,
        quality=quality,
        toxicity=toxicity,
        overall_score=overall_score(spam, quality, toxicity),
        recommendation=Recommendation.approve,
        language=detect_language(text),
        flags=frozenset({FALLBACK_FLAG}),
    )


class ContentAnalyzer:
    def __init__(
        self,
        spam: Optional[SpamDetector] = None,
        quality: Optional[QualityAnalyzer] = None,
        toxicity: Optional[ToxicityDetector] = None,
    ) -> None:
        self.spam = spam or SpamDetector()
        self.quality = quality or QualityAnalyzer()
        self.toxicity = toxicity or ToxicityDetector()

    def analyze(self, text: str) -> AnalysisResult:
        """Analyze text synchronously.

        Raises:
            AnalysisFailure: If any sub-analysis raises.
        """
        with analysis_duration.time():
            try:
                return combine(
                    text,
                    self.spam.analyze(text),
                    self.quality.analyze(text),
                    self.toxicity.analyze(text),
                )
            except Exception as exc:
                raise AnalysisFailure(str(exc)) from exc

    async def analyze_concurrently(self, text: str) -> AnalysisResult:
        """Run the three sub-analyses in worker threads and join them.

        Raises:
            AnalysisFailure: If any sub-analysis raises.
        """
        with analysis_duration.time():
            try:
                spam, quality, toxicity = await asyncio.gather(
                    asyncio.to_thread(self.spam.analyze, text),
                    asyncio.to_thread(self.quality.analyze, text),
                    asyncio.to_thread(self.toxicity.analyze, text),
                )
                return combine(text, spam, quality, toxicity)
            except Exception as exc:
                raise AnalysisFailure(str(exc)) from exc

    async def analyze_or_fallback(self, text: str) -> AnalysisResult:
        try:
            return await self.analyze_concurrently(text)
        except AnalysisFailure:
            log.warning("analysis_failed_using_fallback", exc_info=True)
            return fallback_analysis(text)
