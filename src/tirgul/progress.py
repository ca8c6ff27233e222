from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence

from .errors import MissingIdentity, NotFound, Unauthorized
from .exam import build_summary
from .models import (
    AttemptListItem,
    AttemptOverview,
    DailyVolume,
    ExamAnswer,
    ExamAttempt,
    ExamSummary,
    PracticeStats,
    PracticeTypeStats,
    ProgressSummary,
    QuestionType,
    SectionBreakdown,
    TrendPoint,
    TypeStats,
    utcnow,
)
from .scoring import accuracy, count_correct, seconds_between
from .store import Store

RECENT_ATTEMPTS = 10
MASTERY_FLOOR = 0.6
MASTERY_DECAY_DAYS = 14


def improvement_percent(attempts: List[ExamAttempt]) -> float:
    """Compares the average score of the newer half of attempts to the older half.

    ``attempts`` is ordered newest first; with an odd count the middle
    attempt counts toward the older half.
    """
    scored = [a for a in attempts if a.total_score_90 is not None]
    if len(scored) < 2:
        return 0.0
    mid = len(scored) // 2
    newer, older = scored[:mid], scored[mid:]
    older_avg = sum(a.total_score_90 for a in older) / len(older)
    newer_avg = sum(a.total_score_90 for a in newer) / len(newer)
    if older_avg == 0:
        return 0.0
    return (newer_avg - older_avg) / older_avg * 100


def recency_weight(last_answered: datetime, now: datetime) -> float:
    """1.0 within a day of practice, decaying linearly to 0.6 after two weeks."""
    days = (now - last_answered).days
    if days <= 1:
        return 1.0
    if days >= MASTERY_DECAY_DAYS:
        return MASTERY_FLOOR
    return 1.0 - days / MASTERY_DECAY_DAYS * (1.0 - MASTERY_FLOOR)


def practice_streak(days: Sequence[date], today: date) -> int:
    """Consecutive practice days ending today or yesterday."""
    ordered = sorted(set(days), reverse=True)
    if not ordered or ordered[0] < today - timedelta(days=1):
        return 0
    streak = 1
    for newer, older in zip(ordered, ordered[1:]):
        if (newer - older).days != 1:
            break
        streak += 1
    return streak


def in_range(moment: datetime, start: Optional[date], end: Optional[date]) -> bool:
    day = moment.date()
    if start is not None and day < start:
        return False
    if end is not None and day > end:
        return False
    return True


def _average_time(answers: Sequence) -> float:
    if not answers:
        return 0.0
    return sum(a.time_ms or 0 for a in answers) / len(answers)


class ProgressService:
    """Read-only views over a registered user's exam and practice history."""

    def __init__(self, store: Store, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.clock = clock

    # --- Exams ---
    def summary(
        self,
        user_id: Optional[str],
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> ProgressSummary:
        self._require(user_id)
        attempts = [
            a for a in self.store.attempts_for_user(user_id) if in_range(a.created_at, start, end)
        ]
        answers_by_attempt = {a.id: self.store.attempt_answers(a.id) for a in attempts}
        all_answers = [ans for answers in answers_by_attempt.values() for ans in answers]
        by_type = self._exam_answers_by_type(all_answers)

        stats_by_type = []
        for qtype in QuestionType:
            typed = by_type.get(qtype)
            if not typed:
                continue
            correct = count_correct(typed)
            stats_by_type.append(
                TypeStats(
                    type=qtype,
                    total_questions=len(typed),
                    correct_answers=correct,
                    accuracy=accuracy(correct, len(typed)),
                )
            )

        total_time = sum(a.time_ms or 0 for a in all_answers)
        return ProgressSummary(
            total_attempts=len(attempts),
            overall_accuracy=accuracy(count_correct(all_answers), len(all_answers)),
            avg_time_per_question_ms=total_time // len(all_answers) if all_answers else 0,
            improvement_percent=improvement_percent(attempts),
            stats_by_type=stats_by_type,
            recent_attempts=[
                AttemptOverview(
                    attempt_id=attempt.id,
                    created_at=attempt.created_at,
                    score_90=attempt.total_score_90,
                    correct_answers=count_correct(answers_by_attempt[attempt.id]),
                    total_questions=len(answers_by_attempt[attempt.id]),
                )
                for attempt in attempts[:RECENT_ATTEMPTS]
            ],
        )

    def trend(self, user_id: Optional[str]) -> List[TrendPoint]:
        """Per-type accuracy of every attempt, newest attempt first."""
        self._require(user_id)
        points = []
        for attempt in self.store.attempts_for_user(user_id):
            by_type = self._exam_answers_by_type(self.store.attempt_answers(attempt.id))
            points.extend(_trend_points(attempt.created_at, by_type))
        return points

    def recent_attempts(self, user_id: Optional[str], limit: int = RECENT_ATTEMPTS) -> List[AttemptListItem]:
        self._require(user_id)
        items = []
        for attempt in self.store.attempts_for_user(user_id)[:limit]:
            answers = self.store.attempt_answers(attempt.id)
            sections = {}
            for qtype, typed in self._exam_answers_by_type(answers).items():
                answered = sum(
                    1 for a in typed if a.selected_option_id is not None or a.raw_text is not None
                )
                sections[qtype] = SectionBreakdown(
                    answered=answered,
                    total=len(typed),
                    skipped=len(typed) - answered,
                    accuracy=accuracy(count_correct(typed), len(typed)),
                    time_spent_seconds=sum(a.time_ms or 0 for a in typed) // 1000,
                )
            items.append(
                AttemptListItem(
                    attempt_id=attempt.id,
                    created_at=attempt.created_at,
                    score_90=attempt.total_score_90,
                    accuracy=accuracy(count_correct(answers), len(answers)),
                    duration_seconds=seconds_between(attempt.created_at, attempt.completed_at) or 0,
                    sections=sections,
                )
            )
        return items

    def attempt_detail(self, attempt_id: str, user_id: Optional[str]) -> ExamSummary:
        self._require(user_id)
        attempt = self.store.get_attempt(attempt_id)
        if attempt is None:
            raise NotFound(f"Attempt not found: {attempt_id}")
        if attempt.user_id != user_id:
            raise Unauthorized("Attempt belongs to another user")
        return build_summary(
            attempt,
            self.store.get_sections(attempt_id),
            self.store.attempt_answers(attempt_id),
        )

    # --- Practice ---
    def practice_summary(
        self,
        user_id: Optional[str],
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> PracticeStats:
        self._require(user_id)
        sessions = [
            s
            for s in self.store.practice_sessions_for_user(user_id)
            if in_range(s.started_at, start, end)
        ]
        by_type = defaultdict(list)
        for session in sessions:
            by_type[session.type].extend(self.store.practice_answers(session.id))
        all_answers = [a for typed in by_type.values() for a in typed]
        if not all_answers:
            return PracticeStats(
                total_questions=0,
                overall_accuracy=0.0,
                avg_time_per_question_ms=0.0,
                current_streak=0,
                stats_by_type=[],
                daily_volume=[],
            )

        now = self.clock()
        stats_by_type = []
        for qtype in QuestionType:
            typed = by_type.get(qtype)
            if not typed:
                continue
            correct = count_correct(typed)
            type_accuracy = accuracy(correct, len(typed))
            last_answered = max(a.answered_at for a in typed)
            stats_by_type.append(
                PracticeTypeStats(
                    type=qtype,
                    total_questions=len(typed),
                    correct_answers=correct,
                    accuracy=type_accuracy,
                    avg_time_ms=_average_time(typed),
                    mastery_score=type_accuracy * recency_weight(last_answered, now),
                )
            )

        by_day = defaultdict(list)
        for answer in all_answers:
            by_day[answer.answered_at.date()].append(answer)
        daily_volume = [
            DailyVolume(
                day=day,
                question_count=len(answers),
                accuracy=accuracy(count_correct(answers), len(answers)),
            )
            for day, answers in sorted(by_day.items())
        ]

        return PracticeStats(
            total_questions=len(all_answers),
            overall_accuracy=accuracy(count_correct(all_answers), len(all_answers)),
            avg_time_per_question_ms=_average_time(all_answers),
            current_streak=practice_streak([s.started_at.date() for s in sessions], now.date()),
            stats_by_type=stats_by_type,
            daily_volume=daily_volume,
        )

    def practice_trend(
        self,
        user_id: Optional[str],
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[TrendPoint]:
        """Accuracy of every practice session with answers, newest first."""
        self._require(user_id)
        points = []
        for session in self.store.practice_sessions_for_user(user_id):
            if not in_range(session.started_at, start, end):
                continue
            answers = self.store.practice_answers(session.id)
            if answers:
                points.extend(_trend_points(session.started_at, {session.type: answers}))
        return points

    def _require(self, user_id: Optional[str]) -> None:
        if not user_id:
            raise MissingIdentity("Only registered users can view progress")

    def _exam_answers_by_type(self, answers: Sequence[ExamAnswer]) -> Dict[QuestionType, List[ExamAnswer]]:
        types: Dict[str, Optional[QuestionType]] = {}
        by_type = defaultdict(list)
        for answer in answers:
            if answer.question_id not in types:
                question = self.store.get_question(answer.question_id)
                types[answer.question_id] = question.type if question else None
            qtype = types[answer.question_id]
            if qtype is not None:
                by_type[qtype].append(answer)
        return by_type


def _trend_points(taken_at: datetime, by_type: Dict[QuestionType, List]) -> List[TrendPoint]:
    return [
        TrendPoint(
            taken_at=taken_at,
            type=qtype,
            accuracy=accuracy(count_correct(by_type[qtype]), len(by_type[qtype])),
        )
        for qtype in QuestionType
        if by_type.get(qtype)
    ]
