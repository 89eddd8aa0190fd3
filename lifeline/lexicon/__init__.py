"""
Lexicon module: crisis phrases, sentiment and language heuristics.

Everything here is a pure function of its input text.

Example usage:
    from lifeline.lexicon import analyze_keywords, analyze_sentiment, classify_crisis_level

    keywords = analyze_keywords("I have the pills", "en")
    level = classify_crisis_level(keywords, analyze_sentiment("I have the pills"))
"""

from lifeline.lexicon.analyzer import (
    KeywordAnalysis,
    NO_SIGNAL,
    PhraseMatch,
    analyze_basic_sentiment,
    analyze_keywords,
    analyze_sentiment,
    classify_crisis_level,
)
from lifeline.lexicon.language import LanguageDetection, detect_language
from lifeline.lexicon.phrases import (
    CRISIS_PHRASES,
    DEFAULT_LANGUAGE,
    PROTECTIVE_PHRASES,
    SUPPORTED_LANGUAGES,
    TIER_ORDER,
    CrisisTier,
    tier_for_phrase,
)

__all__ = [
    "KeywordAnalysis",
    "NO_SIGNAL",
    "PhraseMatch",
    "analyze_basic_sentiment",
    "analyze_keywords",
    "analyze_sentiment",
    "classify_crisis_level",
    "LanguageDetection",
    "detect_language",
    "CRISIS_PHRASES",
    "DEFAULT_LANGUAGE",
    "PROTECTIVE_PHRASES",
    "SUPPORTED_LANGUAGES",
    "TIER_ORDER",
    "CrisisTier",
    "tier_for_phrase",
]
