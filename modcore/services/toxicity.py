"""Category-weighted toxicity scoring.

Each category has keywords (substring matches, counted once each) and
patterns (counted per match). The category's severity tier sets the weight of
every match, with patterns weighted higher than keywords.
"""

import re
from dataclasses import dataclass

from modcore.schemas.analysis import Severity, ToxicityAnalysis

KEYWORD_WEIGHTS = {
    Severity.critical: 30,
    Severity.high: 20,
    Severity.medium: 15,
    Severity.low: 10,
}
PATTERN_WEIGHTS = {
    Severity.critical: 40,
    Severity.high: 30,
    Severity.medium: 20,
    Severity.low: 15,
}


@dataclass(frozen=True)
class ToxicCategory:
    name: str
    severity: Severity
    keywords: tuple[str, ...]
    patterns: tuple[re.Pattern, ...]


def _patterns(*sources: str) -> tuple[re.Pattern, ...]:
    return tuple(re.compile(source, re.IGNORECASE) for source in sources)


TOXIC_CATEGORIES: tuple[ToxicCategory, ...] = (
    ToxicCategory(
        name="harassment",
        severity=Severity.medium,
        keywords=(
            "stupid", "idiot", "dumb", "moron", "fool", "loser", "pathetic",
            "useless", "worthless", "disgusting", "horrible", "terrible",
        ),
        patterns=_patterns(
            r"you\s+(are|r)\s+(stupid|dumb|idiot)",
            r"shut\s+up",
            r"get\s+lost",
            r"mind\s+your\s+business",
        ),
    ),
    ToxicCategory(
        name="threats",
        severity=Severity.critical,
        keywords=("kill", "hurt", "harm", "attack", "violence", "threat"),
        patterns=_patterns(
            r"i\s+will\s+(kill|hurt|harm)",
            r"you\s+should\s+(die|suffer)",
            r"watch\s+out",
        ),
    ),
    ToxicCategory(
        name="animal_abuse",
        severity=Severity.critical,
        keywords=(
            "abuse", "cruel", "cruelty", "torture", "neglect", "abandon",
            "starve", "mistreat", "violent", "kick", "hit", "punish",
        ),
        patterns=_patterns(
            r"beat\s+(the|your)\s+dog",
            r"don't\s+feed",
            r"let\s+(it|them)\s+starve",
            r"abandon\s+(the|your)\s+pet",
        ),
    ),
    ToxicCategory(
        name="profanity",
        severity=Severity.low,
        keywords=("damn", "hell", "crap", "bloody"),
        patterns=_patterns(r"what\s+the\s+hell", r"damn\s+it"),
    ),
    ToxicCategory(
        name="misinformation",
        severity=Severity.high,
        keywords=(
            "chocolate is safe", "onion is good", "grapes are healthy",
            "human medicine", "never vaccinate", "vaccines are poison",
        ),
        patterns=_patterns(
            r"chocolate\s+is\s+(safe|good|healthy)",
            r"onions?\s+(are|is)\s+(safe|good|healthy)",
            r"grapes?\s+(are|is)\s+(safe|good|healthy)",
            r"never\s+vaccinate",
            r"vaccines?\s+(are|is)\s+(poison|toxic|harmful)",
        ),
    ),
)


def severity_for(score: float) -> Severity:
    if score > 70:
        return Severity.critical
    if score > 50:
        return Severity.high
    if score > 25:
        return Severity.medium
    return Severity.low


class ToxicityDetector:
    def __init__(self, categories: tuple[ToxicCategory, ...] = TOXIC_CATEGORIES) -> None:
        self._categories = categories

    def analyze(self, text: str) -> ToxicityAnalysis:
        normalized = text.lower()
        total = 0.0
        flags: list[str] = []
        category_scores: dict[str, float] = {}

        for category in self._categories:
            raw = sum(
                KEYWORD_WEIGHTS[category.severity]
                for keyword in category.keywords
                if keyword in normalized
            )
            raw += sum(
                len(pattern.findall(text)) * PATTERN_WEIGHTS[category.severity]
                for pattern in category.patterns
            )
            if raw > 0:
                flags.append(category.name)
            category_scores[category.name] = float(min(raw, 100))
            total += category_scores[category.name]

        score = min(total, 100.0)
        return ToxicityAnalysis(
            toxicity_score=score,
            severity=severity_for(score),
            flags=tuple(flags),
            categories=category_scores,
        )
