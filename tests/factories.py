"""Builders for content, analyses and profiles used across the test suite."""

from datetime import timedelta

from modcore.models.base import utcnow
from modcore.schemas.analysis import (
    AnalysisResult,
    QualityAnalysis,
    Recommendation,
    SpamAnalysis,
    ToxicityAnalysis,
)
from modcore.schemas.content import Content, ContentType
from modcore.schemas.reputation import ReputationProfile, trust_level_for

CLEAN_TEXT = (
    "My puppy has been eating well since we changed her food. The vet recommended "
    "smaller portions twice a day, and her energy is much better now."
)
SPAM_TEXT = "BUY NOW!!! Click here for a free gift, call 9876543210 on whatsapp"
THREAT_TEXT = "I will hurt you, watch out"
# A single threat pattern plus keyword: high severity, not critical
BARE_THREAT_TEXT = "i will hurt you"


def make_content(
    text: str = CLEAN_TEXT,
    content_id: str = "c1",
    author_id: str = "author",
    content_type: ContentType = ContentType.post,
) -> Content:
    return Content(id=content_id, type=content_type, text=text, author_id=author_id)


def make_analysis(spam: float = 0, toxicity: float = 0, quality: float = 80) -> AnalysisResult:
    """AnalysisResult with chosen top-level scores, bypassing the detectors."""
    return AnalysisResult(
        spam=SpamAnalysis(spam_score=spam, confidence=spam / 100),
        quality=QualityAnalysis(quality_score=quality),
        toxicity=ToxicityAnalysis(toxicity_score=toxicity),
        overall_score=50,
        recommendation=Recommendation.approve,
    )


def make_profile(
    score: float = 100,
    user_id: str = "user",
    account_age_days: float = 365,
    **overrides,
) -> ReputationProfile:
    values = {
        "user_id": user_id,
        "overall_score": score,
        "trust_level": trust_level_for(score).level,
        "account_created_at": utcnow() - timedelta(days=account_age_days),
        "calculated_at": utcnow(),
    }
    values.update(overrides)
    return ReputationProfile(**values)
