"""Tests for the content quality heuristics"""

import pytest

from ellu.knowledge import KnowledgeValidator

DART_LESSON = (
    "Mark the dart legs on the pattern and fold the dart toward the centre. "
    "Sew the dart from the wide end to the point, then press the dart and seam allowance toward the centre front. "
    "Check the grain line and the ease at the bust before cutting the muslin. "
    "Pin the muslin to the dress form, drape the bodice, and mark the princess seam with a french curve. "
    "Learn this technique step by step."
)

FINANCE_REPORT = "Quarterly revenue grew strongly. Investors welcomed higher margins. Analysts expect steady growth. " * 8


@pytest.fixture
def validator():
    return KnowledgeValidator()


class TestValidateContent:

    def test_accepts_fashion_lesson(self, validator):
        result = validator.validate_content(DART_LESSON, "Dart Pattern", "pattern-making", "101")

        assert result.is_valid
        assert result.errors == []
        assert result.confidence >= 0.9

    def test_rejects_short_content(self, validator):
        result = validator.validate_content("Dart basics.", "Darts", "pattern-making", "101")

        assert not result.is_valid
        assert any("Content too short" in e for e in result.errors)

    def test_rejects_off_topic_content(self, validator):
        result = validator.validate_content(FINANCE_REPORT, "Quarterly Report", "construction", "401")

        assert not result.is_valid
        assert any("off-topic" in e for e in result.errors)
        assert any("Low fashion term density" in w for w in result.warnings)
        assert result.confidence < 0.5
        assert any("Low validation confidence" in w for w in result.warnings)
        assert "Review the content carefully before publishing" in result.suggestions

    def test_misaligned_course_type_suggests_better_one(self, validator):
        result = validator.validate_content(DART_LESSON, "Dart Pattern", "illustrator-fashion", "201")

        assert result.is_valid
        assert any("may not align well" in w for w in result.warnings)
        assert "Consider course type: pattern-making" in result.suggestions

    def test_unrepresentative_title_warns(self, validator):
        result = validator.validate_content(DART_LESSON, "Zipper Installation Guide", "pattern-making", "101")

        assert "Title may not be representative of content" in result.warnings

    def test_validate_with_metadata_dict(self, validator):
        result = validator.validate(
            DART_LESSON,
            {"title": "Dart Pattern", "course_type": "pattern-making", "course_number": 101},
        )

        assert result.is_valid
        assert result.to_dict()["is_valid"] is True


class TestAnalysis:

    def test_empty_content(self, validator):
        analysis = validator.analyze("")

        assert analysis.word_count == 0
        assert analysis.language == "unknown"

    def test_fashion_density(self, validator):
        analysis = validator.analyze(DART_LESSON)

        assert analysis.word_count > 50
        assert analysis.fashion_term_density > 0.3
        assert analysis.topic_relevance >= 0.3

    def test_course_alignment_best_match(self):
        score, best = KnowledgeValidator.course_alignment(
            "Pin the muslin to the form, drape and fold, then gather the pleat.", "draping"
        )

        assert best == "draping"
        assert score > 0.5

    def test_title_relevance(self):
        assert KnowledgeValidator.title_relevance("Dart Basics", "the dart is sewn") == 0.5
        assert KnowledgeValidator.title_relevance("A", "anything") == 0.0


class TestCourseNumber:

    @pytest.mark.parametrize("number,course_type", [
        ("101", "pattern-making"),
        ("201", "illustrator-fashion"),
        ("301", "draping"),
        ("401", "construction"),
        ("501", "construction"),
    ])
    def test_matching_levels(self, number, course_type):
        assert KnowledgeValidator.check_course_number(number, course_type) is None

    def test_not_three_digits(self):
        warning = KnowledgeValidator.check_course_number("12", "draping")

        assert warning == "Course number should be a 3-digit number (e.g., 101, 201, 301)"

    def test_level_mismatch(self):
        warning = KnowledgeValidator.check_course_number("101", "draping")

        assert "may not align with draping" in warning
        assert "300s, 400s" in warning


def test_find_duplicate_chunks():
    assert KnowledgeValidator.find_duplicate_chunks(["dart", "seam", "dart", "hem", "seam"]) == [2, 4]
