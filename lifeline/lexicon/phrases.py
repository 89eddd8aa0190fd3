"""
Crisis Lexicon Phrase Lists

Per-language phrase lists for the four danger tiers and for protective
factors, plus the word lists used by the sentiment and language heuristics.

Phrase lists are matched as lower-case substrings. Tiers are declared
highest-severity first; ``TIER_ORDER`` is the precedence used when more
than one tier matches.

These lists are illustrative, not clinically validated. Extend them per
deployment rather than treating them as exhaustive.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class CrisisTier:
    """A danger tier: its name, fixed severity and category label."""

    name: str
    severity: float
    category: str


IMMEDIATE = CrisisTier("immediate", 1.0, "immediate_danger")
PLANNING = CrisisTier("planning", 0.9, "suicide_planning")
SELF_HARM = CrisisTier("self_harm", 0.7, "self_harm")
DISTRESS = CrisisTier("distress", 0.5, "severe_distress")

TIER_ORDER: tuple[CrisisTier, ...] = (IMMEDIATE, PLANNING, SELF_HARM, DISTRESS)

NO_CATEGORY = "none"

DEFAULT_LANGUAGE = "en"


CRISIS_PHRASES: dict[str, dict[str, tuple[str, ...]]] = {
    "en": {
        "immediate": (
            "kill myself now",
            "going to die tonight",
            "have the pills",
            "gun is loaded",
            "rope around neck",
            "taking pills now",
            "jumping off bridge",
            "ending it tonight",
        ),
        "planning": (
            "suicide plan",
            "how to kill myself",
            "painless suicide",
            "suicide methods",
            "when to do it",
            "suicide note",
            "final arrangements",
            "after i die",
        ),
        "self_harm": (
            "cutting myself",
            "burning myself",
            "hitting myself",
            "razor blade",
            "want to hurt myself",
            "punching walls",
            "starving myself",
        ),
        "distress": (
            "can't take anymore",
            "no hope left",
            "better off dead",
            "everyone hates me",
            "complete failure",
            "nothing matters",
            "burden to everyone",
        ),
    },
    "es": {
        "immediate": (
            "matarme ahora",
            "voy a morir esta noche",
            "tengo las pastillas",
            "pistola cargada",
            "soga al cuello",
        ),
        "planning": (
            "plan de suicidio",
            "cómo matarme",
            "suicidio sin dolor",
            "métodos de suicidio",
            "nota de suicidio",
        ),
        "self_harm": ("cortarme", "quemarme", "golpearme", "navaja", "lastimarme"),
        "distress": (
            "no puedo más",
            "sin esperanza",
            "mejor muerto",
            "todos me odian",
            "fracaso total",
        ),
    },
    "fr": {
        "immediate": (
            "me tuer maintenant",
            "vais mourir ce soir",
            "ai les pilules",
            "pistolet chargé",
            "corde au cou",
        ),
        "planning": (
            "plan de suicide",
            "comment me tuer",
            "suicide sans douleur",
            "méthodes de suicide",
            "lettre de suicide",
        ),
        "self_harm": (
            "me couper",
            "me brûler",
            "me frapper",
            "lame de rasoir",
            "me faire mal",
        ),
        "distress": (
            "ne peux plus",
            "sans espoir",
            "mieux mort",
            "tout le monde me déteste",
            "échec total",
        ),
    },
    "de": {
        "immediate": (
            "mich jetzt töten",
            "werde heute nacht sterben",
            "habe die pillen",
            "pistole geladen",
            "seil um den hals",
        ),
        "planning": (
            "selbstmordplan",
            "wie töte ich mich",
            "schmerzloser selbstmord",
            "selbstmordmethoden",
            "abschiedsbrief",
        ),
        "self_harm": (
            "mich schneiden",
            "mich verbrennen",
            "mich schlagen",
            "rasierklinge",
            "mich verletzen",
        ),
        "distress": (
            "kann nicht mehr",
            "keine hoffnung",
            "besser tot",
            "alle hassen mich",
            "kompletter versager",
        ),
    },
    "pt": {
        "immediate": (
            "me matar agora",
            "vou morrer hoje à noite",
            "tenho os comprimidos",
            "arma carregada",
            "corda no pescoço",
        ),
        "planning": (
            "plano de suicídio",
            "como me matar",
            "suicídio sem dor",
            "métodos de suicídio",
            "carta de suicídio",
        ),
        "self_harm": (
            "me cortar",
            "me queimar",
            "me bater",
            "lâmina de barbear",
            "me machucar",
        ),
        "distress": (
            "não aguento mais",
            "sem esperança",
            "melhor morto",
            "todos me odeiam",
            "fracasso total",
        ),
    },
}


# Support system, active treatment, future orientation, caregiving, hope.
PROTECTIVE_PHRASES: dict[str, tuple[str, ...]] = {
    "en": (
        "getting help",
        "therapist",
        "medication",
        "support group",
        "family cares",
        "friends support",
        "tomorrow will be better",
        "seeking treatment",
        "my kids need me",
    ),
    "es": (
        "buscando ayuda",
        "terapeuta",
        "medicación",
        "grupo de apoyo",
        "familia se preocupa",
        "amigos apoyan",
        "mañana será mejor",
    ),
    "fr": (
        "chercher de l'aide",
        "thérapeute",
        "médication",
        "groupe de soutien",
        "famille se soucie",
        "amis soutiennent",
        "demain sera mieux",
    ),
    "de": (
        "hilfe suchen",
        "therapeut",
        "medikation",
        "selbsthilfegruppe",
        "familie sorgt sich",
        "freunde unterstützen",
        "morgen wird besser",
    ),
    "pt": (
        "procurando ajuda",
        "terapeuta",
        "medicação",
        "grupo de apoio",
        "família se importa",
        "amigos apoiam",
        "amanhã será melhor",
    ),
}


# Full sentiment: each list contributes its hit ratio to one emotion.
EMOTION_WORDS: dict[str, tuple[str, ...]] = {
    "despair": ("hopeless", "worthless", "pointless", "give up", "no point", "nothing matters"),
    "anger": ("angry", "furious", "hate", "rage", "mad", "pissed"),
    "fear": ("scared", "afraid", "terrified", "panic", "anxiety", "worried"),
    "hope": ("hope", "better", "improve", "help", "support", "tomorrow"),
}

# Basic sentiment: a polarity count only.
BASIC_NEGATIVE_WORDS = ("bad", "sad", "hate", "angry", "hopeless", "worthless")
BASIC_POSITIVE_WORDS = ("good", "help", "hope", "better", "support", "love")


# Common function words per language, matched as whole tokens.
LANGUAGE_INDICATORS: dict[str, tuple[str, ...]] = {
    "en": ("the", "and", "you", "that", "was", "for", "are", "with", "his", "they"),
    "es": ("que", "de", "no", "la", "el", "en", "y", "te", "lo", "le"),
    "fr": ("que", "de", "je", "est", "pas", "le", "vous", "la", "tu", "il"),
    "de": ("der", "die", "und", "in", "den", "von", "zu", "das", "mit", "sich"),
    "pt": ("que", "de", "não", "o", "a", "em", "para", "com", "uma", "os"),
}

SUPPORTED_LANGUAGES = frozenset(CRISIS_PHRASES)


def crisis_phrases(language: str) -> dict[str, tuple[str, ...]]:
    """Tier phrase lists for a language, falling back to English."""
    return CRISIS_PHRASES.get(_base_language(language), CRISIS_PHRASES[DEFAULT_LANGUAGE])


def protective_phrases(language: str) -> tuple[str, ...]:
    return PROTECTIVE_PHRASES.get(
        _base_language(language), PROTECTIVE_PHRASES[DEFAULT_LANGUAGE]
    )


def _base_language(language: str) -> str:
    # "pt-BR" -> "pt"
    return (language or DEFAULT_LANGUAGE).split("-")[0].lower()


def tier_for_phrase(phrase: str) -> CrisisTier | None:
    """Danger tier a lexicon phrase belongs to, in any supported language."""
    return _PHRASE_TIERS.get(phrase.lower())


_PHRASE_TIERS: dict[str, CrisisTier] = {
    phrase: tier
    for tiers in CRISIS_PHRASES.values()
    for tier in reversed(TIER_ORDER)
    for phrase in tiers.get(tier.name, ())
}
