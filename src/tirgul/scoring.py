"""Pure scoring helpers for exam sections, whole attempts and practice sessions."""

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional, Sequence

from .models import PracticeAnswer, PracticeSummary, SectionScore

MAX_SCORE = 90


def accuracy(correct: int, total: int) -> float:
    if total == 0:
        return 0.0
    return correct / total * 100


def score_90(correct: int, total: int) -> int:
    """Scales correct/total to 90 points, rounding .5 up."""
    if total == 0:
        return 0
    scaled = Decimal(MAX_SCORE) * Decimal(correct) / Decimal(total)
    return int(scaled.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def seconds_between(start: Optional[datetime], end: Optional[datetime]) -> Optional[int]:
    if start is None or end is None:
        return None
    return int((end - start).total_seconds())


def count_correct(answers: Iterable) -> int:
    return sum(1 for answer in answers if answer.is_correct)


def score_section(
    answers: Sequence,
    started_at: Optional[datetime] = None,
    ended_at: Optional[datetime] = None,
) -> SectionScore:
    correct = count_correct(answers)
    return SectionScore(
        correct=correct,
        total=len(answers),
        accuracy=accuracy(correct, len(answers)),
        time_spent_seconds=seconds_between(started_at, ended_at),
    )


def summarize_practice(answers: Sequence[PracticeAnswer]) -> PracticeSummary:
    correct = count_correct(answers)
    return PracticeSummary(
        total_questions=len(answers),
        correct_answers=correct,
        accuracy=accuracy(correct, len(answers)),
        total_time_ms=sum(answer.time_ms or 0 for answer in answers),
    )
