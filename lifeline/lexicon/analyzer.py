"""
Crisis Keyword and Sentiment Analysis

Pure functions over text: no state, no I/O, safe to call concurrently.

- analyze_keywords: tiered crisis-phrase matching with protective factors
- analyze_sentiment: full emotion vector from word-list hit ratios
- analyze_basic_sentiment: cheaper polarity count for primary-model mode
- classify_crisis_level: ordered thresholds over the two signals
"""

from dataclasses import dataclass, field

from lifeline.lexicon.phrases import (
    BASIC_NEGATIVE_WORDS,
    BASIC_POSITIVE_WORDS,
    DEFAULT_LANGUAGE,
    EMOTION_WORDS,
    IMMEDIATE,
    NO_CATEGORY,
    PLANNING,
    TIER_ORDER,
    CrisisTier,
    crisis_phrases,
    protective_phrases,
)
from lifeline.schemas.moderation import CrisisLevel, EmotionVector, SentimentScore


@dataclass(frozen=True)
class PhraseMatch:
    phrase: str
    tier: CrisisTier


@dataclass(frozen=True)
class KeywordAnalysis:
    """
    Result of crisis-phrase matching.

    Attributes:
        detected: True when any danger tier matched
        severity: Highest tier severity, after protective-factor reduction
        category: Category of the highest tier that matched, or "none"
        matches: Danger phrases that matched, highest tier first
        protective_matches: Protective-factor phrases that matched
    """

    detected: bool
    severity: float
    category: str
    matches: tuple[PhraseMatch, ...] = field(default_factory=tuple)
    protective_matches: tuple[str, ...] = field(default_factory=tuple)

    @property
    def matched_terms(self) -> list[str]:
        return [m.phrase for m in self.matches]


NO_SIGNAL = KeywordAnalysis(detected=False, severity=0.0, category=NO_CATEGORY)


def analyze_keywords(
    text: str,
    language: str = DEFAULT_LANGUAGE,
    *,
    protective_step: float = 0.1,
    protective_floor: float = 0.3,
) -> KeywordAnalysis:
    """
    Match text against the crisis tiers for a language.

    Severity is the highest matched tier's severity. The category is that
    of the highest tier that matched. Each protective-factor phrase lowers
    severity by ``protective_step`` but never below ``protective_floor``,
    so a fired danger signal is never cancelled outright.

    Non-English text is checked against its own lists and the English
    lists, since English phrases are common in mixed-language chats.

    Args:
        text: Message content
        language: ISO language code; unknown codes fall back to English
        protective_step: Severity reduction per protective phrase
        protective_floor: Minimum severity once any danger tier matched

    Returns:
        KeywordAnalysis with severity in [0, 1]
    """
    if not text or not text.strip():
        return NO_SIGNAL

    lowered = text.lower()
    tier_lists = [crisis_phrases(language)]
    protective_lists = [protective_phrases(language)]
    if tier_lists[0] is not crisis_phrases(DEFAULT_LANGUAGE):
        tier_lists.append(crisis_phrases(DEFAULT_LANGUAGE))
        protective_lists.append(protective_phrases(DEFAULT_LANGUAGE))

    matches: list[PhraseMatch] = []
    for tier in TIER_ORDER:
        for phrases in tier_lists:
            for phrase in phrases.get(tier.name, ()):
                if phrase in lowered and all(m.phrase != phrase for m in matches):
                    matches.append(PhraseMatch(phrase=phrase, tier=tier))

    protective = tuple(
        dict.fromkeys(
            phrase
            for phrases in protective_lists
            for phrase in phrases
            if phrase in lowered
        )
    )

    if not matches:
        return KeywordAnalysis(
            detected=False,
            severity=0.0,
            category=NO_CATEGORY,
            protective_matches=protective,
        )

    top = matches[0].tier
    severity = top.severity
    if protective:
        severity = max(severity - len(protective) * protective_step, protective_floor)

    return KeywordAnalysis(
        detected=True,
        severity=round(severity, 4),
        category=top.category,
        matches=tuple(matches),
        protective_matches=protective,
    )


def analyze_sentiment(text: str, language: str = DEFAULT_LANGUAGE) -> SentimentScore:
    """
    Full sentiment: one hit ratio per emotion word list.

    ``overall`` is hope minus the mean of despair, anger and fear, clamped
    to [-1, 1]. The word lists are English; other languages score neutral
    unless they share vocabulary.
    """
    lowered = (text or "").lower()
    ratios = {
        emotion: sum(1 for word in words if word in lowered) / len(words)
        for emotion, words in EMOTION_WORDS.items()
    }
    negative = (ratios["despair"] + ratios["anger"] + ratios["fear"]) / 3
    overall = _clamp(ratios["hope"] - negative, -1.0, 1.0)

    return SentimentScore(
        overall=round(overall, 4),
        emotions=EmotionVector(
            despair=round(min(1.0, ratios["despair"]), 4),
            anger=round(min(1.0, ratios["anger"]), 4),
            fear=round(min(1.0, ratios["fear"]), 4),
            hope=round(min(1.0, ratios["hope"]), 4),
        ),
    )


def analyze_basic_sentiment(
    text: str, language: str = DEFAULT_LANGUAGE
) -> SentimentScore:
    """Polarity count over two short word lists. Used outside ensemble mode."""
    lowered = (text or "").lower()
    negative = sum(1 for word in BASIC_NEGATIVE_WORDS if word in lowered)
    positive = sum(1 for word in BASIC_POSITIVE_WORDS if word in lowered)

    overall = (positive - negative) / max(positive + negative, 1)

    return SentimentScore(
        overall=round(_clamp(overall, -1.0, 1.0), 4),
        emotions=EmotionVector(
            despair=0.7 if negative > 2 else round(negative * 0.3, 4),
            anger=0.6 if ("angry" in lowered or "hate" in lowered) else 0.0,
            fear=0.6 if ("scared" in lowered or "afraid" in lowered) else 0.0,
            hope=0.7 if positive > 1 else round(positive * 0.4, 4),
        ),
    )


def classify_crisis_level(
    keywords: KeywordAnalysis, sentiment: SentimentScore
) -> CrisisLevel:
    """
    Crisis level from lexicon severity first, sentiment second.

    First matching rule wins:
        severity >= 0.95 or immediate-danger category -> EMERGENCY
        severity >= 0.8 or planning category          -> CRITICAL
        severity >= 0.6 or despair > 0.8              -> HIGH
        severity >= 0.4 or overall < -0.5             -> MODERATE
        severity > 0 or overall < -0.2                -> LOW
        otherwise                                     -> NONE
    """
    severity = keywords.severity

    if severity >= 0.95 or keywords.category == IMMEDIATE.category:
        return CrisisLevel.EMERGENCY
    if severity >= 0.8 or keywords.category == PLANNING.category:
        return CrisisLevel.CRITICAL
    if severity >= 0.6 or sentiment.emotions.despair > 0.8:
        return CrisisLevel.HIGH
    if severity >= 0.4 or sentiment.overall < -0.5:
        return CrisisLevel.MODERATE
    if severity > 0 or sentiment.overall < -0.2:
        return CrisisLevel.LOW
    return CrisisLevel.NONE


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))
