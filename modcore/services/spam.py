"""Keyword and pattern based spam scoring.

The score is additive: keyword matches, suspicious patterns, structural
signals (short promotional text, run-on sentences), language quality, caps
ratio, link density and promotional word density each contribute, and the
total is clamped to [0, 100]. All matching is case-insensitive except the
caps-based patterns, which look at the original text.
"""

import re

from modcore.schemas.analysis import SpamAnalysis

SPAM_KEYWORDS: dict[str, tuple[str, ...]] = {
    "english": (
        "buy now", "click here", "limited offer", "guaranteed", "earn money",
        "work from home", "free gift", "act now", "special deal", "discount",
        "make money fast", "no experience needed", "urgent", "congratulations",
        "winner", "selected", "claim now", "risk free", "call now", "apply now",
    ),
    "hindi": (
        "paisa kamao", "ghar baithe kaam", "free mein", "jaldi karo", "offer",
        "discount mil raha", "click karo", "guarantee", "easy money", "kamao",
        "rupaye", "muft", "jeetna", "prize", "gift", "winner",
    ),
    "hinglish": (
        "paisa earn karo", "ghar se work", "free offer", "easy income",
        "click kar", "apply kar", "join kar", "money kamao",
    ),
}

# Distinct keywords across all languages, in declaration order
ALL_SPAM_KEYWORDS: tuple[str, ...] = tuple(
    dict.fromkeys(kw for keywords in SPAM_KEYWORDS.values() for kw in keywords)
)

# (flag, pattern, weight); each pattern scores min(matches * weight, 50)
SUSPICIOUS_PATTERNS: tuple[tuple[str, re.Pattern, int], ...] = (
    ("repeated_chars", re.compile(r"(.)\1{4,}"), 20),
    ("excessive_caps", re.compile(r"[A-Z]{5,}"), 15),
    ("long_numbers", re.compile(r"\d{10,}"), 25),
    ("excessive_symbols", re.compile(r"[!@#$%^&*]{3,}"), 10),
    ("multiple_urls", re.compile(r"https?://[^\s]+"), 20),
    ("money_mentions", re.compile(r"\b\d+\s*(?:rs|rupees|₹)\b", re.IGNORECASE), 15),
    ("social_media_promo", re.compile(r"\b(?:whatsapp|telegram|instagram)\b", re.IGNORECASE), 30),
    ("phone_numbers", re.compile(r"\b\d{10}\b"), 35),
    ("email_addresses", re.compile(r"[a-z0-9._%+-]+@[a-z0-9.-]+\.[a-z]{2,}", re.IGNORECASE), 25),
)
PATTERN_CAP = 50

PROMOTIONAL_WORDS: tuple[str, ...] = (
    "buy", "sell", "discount", "offer", "deal", "sale", "price", "cheap",
    "business", "service", "company", "website", "promotion", "advertisement",
)

URL_PATTERN = re.compile(r"https?://[^\s]+")
SENTENCE_SPLIT = re.compile(r"[.!?]+")


def split_sentences(text: str) -> list[str]:
    return [s for s in SENTENCE_SPLIT.split(text) if s.strip()]


def language_quality(text: str, words: list[str]) -> float:
    """Heuristic 0-1 estimate of how well-formed the text is."""
    score = 1.0
    sentences = split_sentences(text)
    avg_words = len(words) / max(len(sentences), 1)
    if avg_words < 2:
        score -= 0.3
    if avg_words > 50:
        score -= 0.2

    stripped = text.strip()
    if not re.match(r"[A-Z]", stripped) and len(text) > 10:
        score -= 0.2
    if not re.search(r"[.!?]$", stripped) and len(text) > 20:
        score -= 0.1

    if words:
        unique_ratio = len({w.lower() for w in words}) / len(words)
        if unique_ratio < 0.6:
            score -= 0.3
    return max(0.0, score)


class SpamDetector:
    def analyze(self, text: str) -> SpamAnalysis:
        score = 0.0
        flags: list[str] = []
        normalized = text.lower().strip()
        words = normalized.split()
        word_count = len(words)

        keyword_matches = [kw for kw in ALL_SPAM_KEYWORDS if kw in normalized]
        score += 15 * len(keyword_matches)
        if keyword_matches:
            flags.append("spam_keywords")
        if len(keyword_matches) > 3:
            score += 25
            flags.append("excessive_spam_keywords")

        pattern_score = 0.0
        for flag, pattern, weight in SUSPICIOUS_PATTERNS:
            count = len(pattern.findall(text))
            if count:
                contribution = min(count * weight, PATTERN_CAP)
                score += contribution
                pattern_score += contribution
                flags.append(flag)

        sentences = split_sentences(text)
        if word_count < 5 and (keyword_matches or pattern_score > 0):
            score += 30
            flags.append("short_promotional")
        if len(sentences) == 1 and word_count > 25:
            score += 20
            flags.append("run_on_sentence")

        quality = language_quality(text, words)
        if quality < 0.4:
            score += 15
            flags.append("poor_language_quality")

        caps_ratio = sum(1 for c in text if "A" <= c <= "Z") / len(text) if text else 0.0
        if caps_ratio > 0.3:
            score += min(caps_ratio * 50, 30)
            flags.append("excessive_capitalization")

        urls = URL_PATTERN.findall(text)
        if len(urls) > 1:
            score += 15 * len(urls)
            flags.append("multiple_links")

        promotional_count = sum(1 for word in PROMOTIONAL_WORDS if word in normalized)
        promotional_score = 0.0
        if promotional_count >= 3:
            promotional_score = min(promotional_count * 8, 40)
            score += promotional_score
            flags.append("promotional_content")

        final = min(score, 100.0)
        return SpamAnalysis(
            spam_score=final,
            confidence=final / 100,
            flags=tuple(flags),
            keyword_matches=tuple(keyword_matches),
            url_count=len(urls),
            caps_ratio=round(caps_ratio, 2),
            word_count=word_count,
            language_quality=round(quality, 2),
            repetitive_score=pattern_score,
            promotional_score=promotional_score,
        )
