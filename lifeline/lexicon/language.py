"""Word-frequency language detection over a small indicator set per language."""

import re
from dataclasses import dataclass

from lifeline.lexicon.phrases import DEFAULT_LANGUAGE, LANGUAGE_INDICATORS

_TOKEN = re.compile(r"[^\W\d_]+", re.UNICODE)


@dataclass(frozen=True)
class LanguageDetection:
    language: str
    confidence: float
    score: int = 0


def detect_language(text: str) -> LanguageDetection:
    """
    Pick the language whose indicator words occur most often as tokens.

    Ties and texts with no indicator hits resolve to English. Confidence is
    0.8 with more than two hits, otherwise 0.6.
    """
    tokens = _TOKEN.findall((text or "").lower())
    if not tokens:
        return LanguageDetection(language=DEFAULT_LANGUAGE, confidence=0.6)

    best_language = DEFAULT_LANGUAGE
    best_score = 0
    for language, indicators in LANGUAGE_INDICATORS.items():
        indicator_set = set(indicators)
        score = sum(1 for token in tokens if token in indicator_set)
        if score > best_score:
            best_language, best_score = language, score

    return LanguageDetection(
        language=best_language,
        confidence=0.8 if best_score > 2 else 0.6,
        score=best_score,
    )
