"""
Question Normalizer

First pipeline step: trims the question, composes Unicode (so Vietnamese
diacritics compare equal), collapses whitespace, expands common
abbreviations, fixes a few unaccented Vietnamese phrases and detects the
language.
"""

import logging
import re
import unicodedata

from sqlagent.models.query import NormalizedQuestion

logger = logging.getLogger(__name__)

ABBREVIATIONS: dict[str, str] = {
    "db": "database",
    "tbl": "table",
    "qty": "quantity",
    "amt": "amount",
    "desc": "description",
    "avg": "average",
    "cnt": "count",
    "ds": "danh sách",
    "kh": "khách hàng",
    "dh": "đơn hàng",
    "sp": "sản phẩm",
    "dt": "doanh thu",
    "sl": "số lượng",
}

TYPO_FIXES: dict[str, str] = {
    "cho toi": "cho tôi",
    "bao nhieu": "bao nhiêu",
    "tat ca": "tất cả",
    "tim kiem": "tìm kiếm",
}

_ABBREVIATION_PATTERNS = [
    (re.compile(rf"\b{re.escape(short)}\b", re.IGNORECASE), full)
    for short, full in ABBREVIATIONS.items()
]
_TYPO_PATTERNS = [
    (re.compile(rf"\b{re.escape(typo)}\b", re.IGNORECASE), fixed)
    for typo, fixed in TYPO_FIXES.items()
]
_VIETNAMESE_CHARS = set("ăâđêôơưáàảãạắằẳẵặấầẩẫậéèẻẽẹếềểễệíìỉĩịóòỏõọốồổỗộớờởỡợúùủũụứừửữựýỳỷỹỵ")


class QuestionNormalizer:
    """Cleans raw question text before retrieval and intent extraction."""

    def normalize(self, question: str) -> NormalizedQuestion:
        """
        Normalize a raw question.

        Raises:
            ValueError: If the question is empty or whitespace only
        """
        if question is None or not question.strip():
            raise ValueError("Question cannot be empty")

        text = unicodedata.normalize("NFC", question.strip())
        text = re.sub(r"\s+", " ", text)
        for pattern, replacement in _ABBREVIATION_PATTERNS:
            text = pattern.sub(replacement, text)
        for pattern, replacement in _TYPO_PATTERNS:
            text = pattern.sub(replacement, text)

        language = detect_language(text)
        logger.debug(f"Normalized question: {text}", extra={"language": language})
        return NormalizedQuestion(original_text=question, normalized_text=text, language=language)


def detect_language(text: str) -> str:
    """Return "vi" when the text contains Vietnamese letters, else "en"."""
    return "vi" if any(ch in _VIETNAMESE_CHARS for ch in text.lower()) else "en"
