"""
Knowledge Validator

Heuristic quality checks for course content before it enters the knowledge
base: length, fashion vocabulary, topic relevance, course alignment,
readability and complexity.
"""

import re
import hashlib
import logging
from typing import Dict, List, Optional
from dataclasses import dataclass, field, asdict

logger = logging.getLogger(__name__)

FASHION_TERMS = [
    # Pattern making
    "dart", "seam", "ease", "grain", "bias", "notch", "facing", "interfacing",
    "hem", "seam allowance", "pattern", "sizing", "grading", "alteration",
    # Illustrator / design
    "illustrator", "vector", "flat sketch", "technical drawing", "color palette",
    "swatch", "pantone", "repeat", "texture", "brush", "pen tool",
    # Draping
    "draping", "muslin", "toile", "form", "mannequin", "drape", "fold",
    "gather", "pleat", "tuck", "princess seam", "french curve",
    # Construction
    "sewing", "construction", "fitting", "pressing", "finishing", "zipper",
    "button", "buttonhole", "collar", "cuff", "sleeve", "bodice", "skirt",
    "trouser", "lining", "thread", "needle", "machine",
]

GERMAN_FASHION_TERMS = [
    "schnitt", "naht", "abnäher", "fadenlauf", "schräg", "muster",
    "technische zeichnung", "mode", "bekleidung", "entwurf",
]

EDUCATIONAL_TERMS = {
    "learn", "understand", "technique", "method", "process", "step",
    "tutorial", "guide", "instruction",
}

COURSE_TYPE_TERMS = {
    "pattern-making": ["pattern", "dart", "seam", "ease", "grain", "measurement", "grading", "sizing"],
    "illustrator-fashion": ["illustrator", "vector", "flat", "sketch", "color", "palette", "brush", "pen tool"],
    "draping": ["draping", "drape", "muslin", "form", "mannequin", "fold", "gather", "pleat"],
    "construction": ["sewing", "construction", "fitting", "zipper", "button", "collar", "sleeve"],
}

COURSE_LEVELS = {
    "pattern-making": [1, 2],
    "illustrator-fashion": [2, 3],
    "draping": [3, 4],
    "construction": [4, 5],
}

ENGLISH_INDICATORS = {
    "the", "and", "for", "are", "but", "not", "you", "all", "can", "had", "her", "was", "one",
    "our", "out", "day", "get", "has", "him", "his", "how", "its", "may", "new", "now", "old",
    "see", "two", "way", "who", "did", "man", "men", "run", "too", "use",
}

GERMAN_INDICATORS = {
    "der", "die", "das", "und", "ist", "mit", "auf", "für", "von", "den", "des", "dem", "ein",
    "eine", "einen", "einem", "einer", "eines", "sich", "auch", "nicht", "werden", "kann",
    "wie", "nach", "über", "sie", "ihm", "ihr", "ihre", "seine", "mein", "dein",
}

MIN_WORD_COUNT = 50
MAX_WORD_COUNT = 10000
MIN_FASHION_TERM_DENSITY = 0.02
MIN_TOPIC_RELEVANCE = 0.3


@dataclass
class ContentAnalysis:
    word_count: int
    sentence_count: int
    readability_score: float
    fashion_term_density: float
    technical_complexity: float
    language: str
    topic_relevance: float


@dataclass
class ValidationResult:
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)
    confidence: float = 1.0

    def to_dict(self) -> Dict:
        return asdict(self)


class KnowledgeValidator:
    """
    Scores content for the knowledge base.

    Errors make content invalid; warnings and suggestions are advisory and
    lower the confidence score.

    Usage:
        result = KnowledgeValidator().validate(
            text, {"title": "Darts", "course_type": "pattern-making", "course_number": "101"}
        )
        if not result.is_valid:
            print(result.errors)
    """

    def __init__(self):
        self._terms = [t.lower() for t in FASHION_TERMS + GERMAN_FASHION_TERMS]

    def _is_fashion_word(self, word: str) -> bool:
        return any(term in word or word in term for term in self._terms)

    def analyze(self, content: str) -> ContentAnalysis:
        words = [w for w in content.lower().split() if w]
        sentences = [s for s in re.split(r"[.!?]+", content) if s.strip()]
        word_count = len(words)

        if word_count == 0:
            return ContentAnalysis(0, len(sentences), 0.0, 0.0, 0.0, "unknown", 0.0)

        fashion_density = sum(1 for w in words if self._is_fashion_word(w)) / word_count

        english = sum(
            1 for w in words
            if w in ENGLISH_INDICATORS or re.fullmatch(r"[a-z]+(ing|ed)", w)
        )
        german = sum(
            1 for w in words
            if w in GERMAN_INDICATORS or w.endswith(("ung", "keit", "heit"))
        )
        english_ratio = english / word_count
        german_ratio = german / word_count
        if english_ratio > 0.6:
            language = "english"
        elif german_ratio > 0.3:
            language = "german"
        elif english_ratio > 0.3 and german_ratio > 0.2:
            language = "mixed"
        else:
            language = "unknown"

        avg_words_per_sentence = word_count / len(sentences) if sentences else 0
        avg_chars_per_word = sum(len(w) for w in words) / word_count
        readability = 1 - ((avg_words_per_sentence - 15) / 30 + (avg_chars_per_word - 5) / 10) / 2
        readability = max(0.0, min(1.0, readability))

        technical = sum(
            1 for w in words
            if len(w) > 8
            or re.match(r"^(micro|macro|multi|inter|intra|pre|post|anti|pro)", w)
            or re.search(r"[0-9]", w)
        )
        technical_complexity = min(1.0, technical / word_count * 5)

        educational = sum(1 for w in words if w in EDUCATIONAL_TERMS)
        topic_relevance = min(1.0, (fashion_density * 2 + educational / word_count) / 2)

        return ContentAnalysis(
            word_count=word_count,
            sentence_count=len(sentences),
            readability_score=readability,
            fashion_term_density=fashion_density,
            technical_complexity=technical_complexity,
            language=language,
            topic_relevance=topic_relevance,
        )

    @staticmethod
    def course_alignment(content: str, course_type: str) -> tuple[float, str]:
        """Return (score for course_type, best-matching course type)"""
        content_lower = content.lower()
        scores = {
            ctype: sum(1 for t in terms if t in content_lower) / len(terms)
            for ctype, terms in COURSE_TYPE_TERMS.items()
        }
        best = max(scores, key=scores.get)
        return scores.get(course_type, 0.0), best

    @staticmethod
    def title_relevance(title: str, content: str) -> float:
        title_words = [w for w in title.lower().split() if len(w) > 2]
        if not title_words:
            return 0.0
        content_lower = content.lower()
        return sum(1 for w in title_words if w in content_lower) / len(title_words)

    @staticmethod
    def check_course_number(course_number: str, course_type: str) -> Optional[str]:
        """Return a warning message, or None when the number fits the course type"""
        if not re.fullmatch(r"\d{3}", course_number or ""):
            return "Course number should be a 3-digit number (e.g., 101, 201, 301)"

        level = int(course_number[0])
        expected = COURSE_LEVELS.get(course_type, [1, 2, 3, 4, 5])
        if level not in expected:
            levels = ", ".join(f"{lvl}00s" for lvl in expected)
            return f"Course number {course_number} may not align with {course_type} (expected levels: {levels})"
        return None

    def validate(self, content: str, metadata: Dict) -> ValidationResult:
        """Validate content against its update metadata (title, course_type, course_number)"""
        return self.validate_content(
            content,
            metadata.get("title", ""),
            metadata.get("course_type", ""),
            str(metadata.get("course_number") or ""),
        )

    def validate_content(
        self,
        content: str,
        title: str,
        course_type: str,
        course_number: str
    ) -> ValidationResult:
        errors: List[str] = []
        warnings: List[str] = []
        suggestions: List[str] = []
        confidence = 1.0

        analysis = self.analyze(content)

        if analysis.word_count < MIN_WORD_COUNT:
            errors.append(
                f"Content too short: {analysis.word_count} words (minimum: {MIN_WORD_COUNT})"
            )
            confidence -= 0.2
        elif analysis.word_count > MAX_WORD_COUNT:
            warnings.append(
                f"Content is very long: {analysis.word_count} words (consider splitting)"
            )
            confidence -= 0.1

        if analysis.fashion_term_density < MIN_FASHION_TERM_DENSITY:
            warnings.append(
                f"Low fashion term density: {round(analysis.fashion_term_density * 100)}% "
                f"(recommended: {MIN_FASHION_TERM_DENSITY * 100:.0f}%)"
            )
            suggestions.append("Consider adding more fashion-specific terminology")
            confidence -= 0.15

        if analysis.topic_relevance < MIN_TOPIC_RELEVANCE:
            errors.append(
                "Content appears to be off-topic for fashion education "
                f"(relevance: {round(analysis.topic_relevance * 100)}%)"
            )
            confidence -= 0.4

        alignment, suggested_type = self.course_alignment(content, course_type)
        if alignment < 0.3:
            warnings.append(
                f'Content may not align well with course type "{course_type}" '
                f"(alignment: {round(alignment * 100)}%)"
            )
            suggestions.append(f"Consider course type: {suggested_type}")
            confidence -= 0.1

        if self.title_relevance(title, content) < 0.5:
            warnings.append("Title may not be representative of content")
            suggestions.append("Consider updating the title to better reflect the content")
            confidence -= 0.05

        if analysis.language == "mixed":
            warnings.append("Mixed language content detected - ensure this is intentional")
            suggestions.append("Consider separating content by language or choosing a primary language")
        elif analysis.language == "unknown":
            warnings.append("Unable to detect content language")

        course_number_warning = self.check_course_number(course_number, course_type)
        if course_number_warning:
            warnings.append(course_number_warning)
            confidence -= 0.05

        if analysis.readability_score < 0.4:
            warnings.append("Content may be difficult to understand")
            suggestions.append("Consider simplifying language or adding more explanatory text")
            confidence -= 0.1
        elif analysis.readability_score > 0.9:
            suggestions.append("Content appears very accessible - good for beginners")

        if analysis.technical_complexity > 0.8 and (course_number or "").startswith("1"):
            warnings.append("High technical complexity for an introductory course")
            suggestions.append("Consider adding more basic explanations")
            confidence -= 0.1

        confidence = max(0.0, min(1.0, confidence))
        if confidence < 0.7:
            warnings.append(f"Low validation confidence: {round(confidence * 100)}%")
        if confidence < 0.5:
            suggestions.append("Review the content carefully before publishing")

        logger.debug(
            f"Validated '{title}': {len(errors)} errors, {len(warnings)} warnings, "
            f"confidence {confidence:.2f}"
        )
        return ValidationResult(
            is_valid=not errors,
            errors=errors,
            warnings=warnings,
            suggestions=suggestions,
            confidence=confidence,
        )

    @staticmethod
    def find_duplicate_chunks(contents: List[str]) -> List[int]:
        """Indexes of chunks whose content repeats an earlier chunk"""
        seen = set()
        duplicates = []
        for index, content in enumerate(contents):
            digest = hashlib.sha256(content.encode("utf-8")).hexdigest()
            if digest in seen:
                duplicates.append(index)
            seen.add(digest)
        return duplicates
