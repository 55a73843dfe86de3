"""
Unit tests for QuestionNormalizer.
"""

import pytest

from sqlagent.agents.normalizer import QuestionNormalizer, detect_language


@pytest.fixture
def normalizer():
    return QuestionNormalizer()


class TestQuestionNormalizer:
    """Whitespace, abbreviations, typos and language detection."""

    def test_trims_and_collapses_whitespace(self, normalizer):
        result = normalizer.normalize("  How many   customers\tare there?  ")

        assert result.normalized_text == "How many customers are there?"
        assert result.original_text == "  How many   customers\tare there?  "
        assert result.language == "en"

    def test_expands_abbreviations_as_whole_words(self, normalizer):
        result = normalizer.normalize("avg order amt per tbl")

        assert result.normalized_text == "average order amount per table"

    def test_does_not_expand_inside_words(self, normalizer):
        result = normalizer.normalize("list dbadmins")

        assert result.normalized_text == "list dbadmins"

    def test_fixes_unaccented_vietnamese(self, normalizer):
        result = normalizer.normalize("cho toi bao nhieu kh")

        assert result.normalized_text == "cho tôi bao nhiêu khách hàng"
        assert result.language == "vi"

    def test_composes_unicode(self, normalizer):
        decomposed = "so\u0302\u0301 lu\u031bo\u031b\u0323ng"

        result = normalizer.normalize(decomposed)

        assert result.normalized_text == "số lượng"

    @pytest.mark.parametrize("question", ["", "   ", "\n\t"])
    def test_empty_question_rejected(self, normalizer, question):
        with pytest.raises(ValueError, match="Question cannot be empty"):
            normalizer.normalize(question)


def test_detect_language():
    assert detect_language("Liệt kê tất cả đơn hàng") == "vi"
    assert detect_language("List all orders") == "en"
