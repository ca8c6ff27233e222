import logging
import re
import unicodedata
from decimal import Decimal, InvalidOperation
from typing import Optional

from .models import Question

integrity_logger = logging.getLogger("tirgul.integrity")

_NIQQUD = re.compile(r"[֑-ׇ]")
_PUNCTUATION = re.compile(r"[.,;:!?'\"״׳–—־]")
_WHITESPACE = re.compile(r"\s+")
_NON_NUMERIC = re.compile(r"[^0-9.\-]")


class AnswerMatcher:
    """Normalizes and compares free-text and numeric answers.

    Text is compared after stripping Hebrew niqqud and cantillation marks,
    punctuation (including Hebrew geresh/gershayim and maqaf), repeated
    whitespace and case. Numbers are compared as ``Decimal``.
    """

    def normalize(self, text: Optional[str]) -> str:
        if text is None:
            return ""
        normalized = unicodedata.normalize("NFD", text)
        normalized = _NIQQUD.sub("", normalized)
        normalized = _PUNCTUATION.sub("", normalized)
        normalized = _WHITESPACE.sub(" ", normalized)
        return normalized.lower().strip()

    def matches(self, expected: Optional[str], candidate: Optional[str]) -> bool:
        return self.normalize(expected) == self.normalize(candidate)

    def parse_numeric(self, text: Optional[str]) -> Optional[Decimal]:
        """Returns None when the text should be treated as plain text."""
        if text is None:
            return None
        cleaned = _NON_NUMERIC.sub("", text.strip())
        if not cleaned:
            return None
        try:
            return Decimal(cleaned)
        except InvalidOperation:
            return None

    def numeric_matches(
        self, expected: Decimal, candidate: Decimal, tolerance: Optional[Decimal] = None
    ) -> bool:
        expected, candidate = Decimal(str(expected)), Decimal(str(candidate))
        if tolerance is None or Decimal(str(tolerance)) == 0:
            return expected == candidate
        return abs(expected - candidate) <= Decimal(str(tolerance))

    def is_correct(
        self,
        question: Question,
        selected_option_id: Optional[str] = None,
        raw_text: Optional[str] = None,
    ) -> bool:
        if selected_option_id is not None:
            option = question.option(selected_option_id)
            return bool(option and option.is_correct)

        if raw_text is None or not raw_text.strip():
            return False

        candidate_number = self.parse_numeric(raw_text)
        for accepted in question.acceptable_answers:
            expected_number = self.parse_numeric(accepted.value)
            if expected_number is not None and candidate_number is not None:
                if self.numeric_matches(
                    expected_number, candidate_number, accepted.numeric_tolerance
                ):
                    return True
            elif self.matches(accepted.value, raw_text):
                return True
        return False

    def check_integrity(self, question: Question) -> int:
        """Logs a warning when a choice question does not have exactly one correct option."""
        if not question.is_multiple_choice or not question.options:
            return 1
        correct_count = sum(1 for opt in question.options if opt.is_correct)
        if correct_count == 0:
            integrity_logger.warning(
                f"DATA INTEGRITY ISSUE: Question {question.id} (type: {question.type.value}) "
                "has ZERO correct answers. All answers will be marked incorrect."
            )
        elif correct_count > 1:
            integrity_logger.warning(
                f"DATA INTEGRITY ISSUE: Question {question.id} (type: {question.type.value}) "
                f"has {correct_count} correct answers. Scoring may be wrong."
            )
        return correct_count
