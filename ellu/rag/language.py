"""
Language detection and greeting handling for German/English student queries.
"""

import re
import random
import logging
from typing import List, Optional

logger = logging.getLogger(__name__)

SUPPORTED_LANGUAGES = ("en", "de", "auto")

GERMAN_TERMS = [
    # Basic German words
    "der", "die", "das", "und", "ist", "ich", "bin", "wie", "was", "wo", "wann", "warum",
    "können", "kann", "könnt", "soll", "sollte", "würde", "möchte", "haben", "hat",
    "zeigen", "erklären", "helfen", "machen", "nähen", "schneiden",
    # Fashion/sewing terms
    "stoff", "nesselstoff", "schneiderpuppe", "abnäher", "naht", "saum", "taille", "hüfte",
    "ärmel", "kragen", "knopf", "reißverschluss", "futter", "einlage", "vlieseline",
    "drapieren", "stecken", "heften", "versäubern", "bügeln", "zuschneiden",
    "grundschnitt", "schnittmuster", "schnittkonstruktion", "maßnehmen",
    "vorderrock", "hinterrock", "seitennaht", "webkante", "fadenlauf",
    "werkzeuge", "ebene", "ebenen", "formatieren", "schablone",
    "vorderansicht", "rückansicht", "beschriften", "zusammenfassung",
    # Course terms
    "kurs", "teil", "lektion", "schritt", "anleitung",
]

ENGLISH_TERMS = [
    "the", "and", "is", "how", "what", "where", "when", "why", "can", "could", "should", "would",
    "show", "explain", "help", "make", "sew", "cut", "pattern", "fabric", "draping", "construction",
    "tools", "steps", "course", "lesson",
]

GREETING_PATTERNS = [
    re.compile(r"^(hi|hello|hey|good\s+morning|good\s+afternoon|good\s+evening)\s*!*$"),
    re.compile(r"^good\s+(morning|afternoon|evening|day)\s*!*$"),
    re.compile(r"^(hallo|hi|hey|guten\s+morgen|guten\s+tag|guten\s+abend)\s*!*$"),
    re.compile(r"^(howdy|greetings|salutations)\s*!*$"),
    re.compile(r"^(moin|servus|ciao)\s*!*$"),
]

GERMAN_GREETINGS = re.compile(r"^(hallo|guten\s+\w+|moin|servus)")


class LanguageDetector:
    """Scores German and English indicators in a query"""

    @staticmethod
    def _contains_word(text: str, term: str) -> bool:
        return re.search(rf"(?<!\w){re.escape(term)}(?!\w)", text) is not None

    @classmethod
    def detect(cls, text: str) -> str:
        """Return 'de', 'en', or 'auto' when undecided"""
        if not text or not text.strip():
            return "auto"

        normalized = text.lower().strip()
        german_score = sum(len(t) for t in GERMAN_TERMS if cls._contains_word(normalized, t))
        english_score = sum(len(t) for t in ENGLISH_TERMS if cls._contains_word(normalized, t))

        if re.search(r"\b(wie|was|wo|wann|warum)\b", normalized):
            german_score += 10
        if re.search(r"\b(können|kann|könnt|soll|sollte)\b", normalized):
            german_score += 8
        if re.search(r"[ßäöü]", normalized):
            german_score += 15

        if re.search(r"\b(how|what|where|when|why)\s", normalized):
            english_score += 10
        if re.search(r"\b(can|could|should|would)\s", normalized):
            english_score += 8

        logger.debug(f"Language scores for {normalized[:50]!r}: de={german_score} en={english_score}")

        if german_score > english_score and german_score > 3:
            return "de"
        if english_score > german_score and english_score > 3:
            return "en"
        return "auto"


def resolve_language(language: str, text: str, default: str = "en") -> str:
    """Turn a requested language (possibly 'auto') into 'en' or 'de'"""
    if language in ("en", "de"):
        return language
    detected = LanguageDetector.detect(text)
    return detected if detected in ("en", "de") else default


def is_simple_greeting(message: str) -> bool:
    normalized = message.lower().strip()
    return any(pattern.match(normalized) for pattern in GREETING_PATTERNS)


def greeting_language(message: str, requested: str) -> str:
    if requested in ("en", "de"):
        return requested
    return "de" if GERMAN_GREETINGS.match(message.lower().strip()) else "en"


def pick_greeting(responses: List[str], rng: Optional[random.Random] = None) -> str:
    return (rng or random).choice(responses)
