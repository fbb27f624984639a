"""Content quality scoring: length, structure, meaningfulness, readability, coherence."""

import re

from modcore.schemas.analysis import QualityAnalysis
from modcore.services.spam import split_sentences

STOP_WORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "this", "that", "these", "those", "i", "you", "he",
    "she", "it", "we", "they", "is", "are", "was", "were", "be", "been",
    "have", "has", "had", "do", "does", "did", "will", "would", "could",
    "should", "may", "might", "must", "very", "really", "just", "only",
    "also", "even", "still", "well", "now", "then", "here", "there",
})

TRANSITION_WORDS: tuple[str, ...] = (
    "however", "therefore", "moreover", "furthermore", "additionally",
    "consequently", "meanwhile", "similarly", "likewise", "nevertheless",
    "also", "but", "and", "so", "because", "since", "although", "while",
)

DOMAIN_KEYWORDS: tuple[str, ...] = (
    "dog", "puppy", "pet", "vet", "health", "feeding", "training", "breed",
    "vaccination", "grooming", "exercise", "behavior", "nutrition", "care",
)

_CONSONANTS = "bcdfghjklmnpqrstvwxz"


def estimate_syllables(word: str) -> int:
    """Vowel-group syllable count with silent-e and consonant-le corrections."""
    clean = re.sub(r"[^a-z]", "", word.lower())
    if len(clean) <= 3:
        return 1
    count = len(re.findall(r"[aeiouy]+", clean))
    if clean.endswith("e") and count > 1:
        count -= 1
    if clean.endswith("le") and len(clean) > 2 and clean[-3] in _CONSONANTS:
        count += 1
    return max(1, count)


def readability(words: list[str], sentences: list[str]) -> float:
    if not words:
        return 100.0
    avg_words = len(words) / max(len(sentences), 1)
    avg_syllables = sum(estimate_syllables(w) for w in words) / len(words)
    simple_ratio = sum(1 for w in words if len(w) <= 6) / len(words)
    score = 120 - avg_words * 1.2 - avg_syllables * 35 + simple_ratio * 20
    return max(0.0, min(100.0, score))


def coherence(text: str, sentences: list[str]) -> float:
    score = 0.7
    lowered = text.lower()
    transitions = sum(1 for word in TRANSITION_WORDS if word in lowered)
    if transitions:
        score += min(transitions * 0.1, 0.2)

    if len(sentences) > 1:
        sentence_words = [s.lower().split() for s in sentences]
        overlap_total = 0.0
        for previous, current in zip(sentence_words, sentence_words[1:]):
            seen = set(previous)
            overlap = sum(1 for w in current if w in seen)
            overlap_total += overlap / max(len(current), 1)
        score += overlap_total / (len(sentence_words) - 1) * 0.3
    return min(1.0, score)


class QualityAnalyzer:
    def analyze(self, text: str) -> QualityAnalysis:
        score = 100.0
        feedback: list[str] = []
        words = text.split()
        sentences = split_sentences(text)
        word_count = len(words)
        sentence_count = len(sentences)

        if word_count < 5:
            score -= 35
            feedback.append("Content too short for meaningful discussion")
        elif word_count < 10:
            score -= 15
            feedback.append("Content could be more detailed")
        elif word_count > 500:
            score -= 10
            feedback.append("Content very long - consider breaking into sections")

        avg_words = word_count / max(sentence_count, 1)
        if avg_words < 3:
            score -= 25
            feedback.append("Sentences too short - lacks detail")
        elif avg_words > 40:
            score -= 20
            feedback.append("Sentences too long - hard to read")

        grammar = 100.0
        exclamations = text.count("!")
        terminals = text.count(".") + text.count("?") + exclamations
        if exclamations > 3:
            score -= 15
            grammar -= 15
            feedback.append("Too many exclamation marks")
        if sentence_count > 1 and terminals < sentence_count * 0.8:
            score -= 10
            grammar -= 20
            feedback.append("Missing proper sentence endings")

        meaningful = sum(
            1 for w in words
            if len(w) > 3 and w.lower() not in STOP_WORDS and not w.isdigit()
        )
        meaningful_ratio = meaningful / word_count if word_count else 0.0
        if meaningful_ratio < 0.3:
            score -= 30
            feedback.append("Low content value - too many filler words")
        elif meaningful_ratio < 0.5:
            score -= 15
            feedback.append("Could include more specific, meaningful content")

        readability_score = readability(words, sentences)
        if readability_score < 40:
            score -= 20
            feedback.append("Difficult to read - consider simpler language")

        coherence_score = coherence(text, sentences)
        if coherence_score < 0.5:
            score -= 25
            feedback.append("Content lacks coherence - ideas not well connected")

        lowered = text.lower()
        domain_hits = sum(1 for kw in DOMAIN_KEYWORDS if kw in lowered)
        if domain_hits:
            score += min(domain_hits * 2, 10)

        return QualityAnalysis(
            quality_score=max(0.0, min(100.0, score)),
            readability_score=round(readability_score),
            feedback=tuple(feedback),
            word_count=word_count,
            sentence_count=sentence_count,
            avg_words_per_sentence=round(avg_words, 1),
            meaningful_ratio=round(meaningful_ratio, 2),
            grammar_score=max(0.0, grammar),
            coherence_score=round(coherence_score, 2),
        )
