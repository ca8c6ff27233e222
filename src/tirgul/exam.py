import logging
from collections import defaultdict
from datetime import datetime
from typing import Callable, List, Optional, Sequence

from .config import Settings, settings
from .errors import (
    AttemptComplete,
    DuplicateAnswer,
    InvalidState,
    MissingIdentity,
    NotFound,
    Unauthorized,
)
from .matcher import AnswerMatcher
from .models import (
    SECTION_ORDER,
    AnswerResult,
    AttemptStarted,
    CurrentSection,
    ExamAnswer,
    ExamAttempt,
    ExamSection,
    ExamSummary,
    Pool,
    QuestionView,
    SectionInfo,
    SectionScore,
    SectionState,
    utcnow,
)
from .sampler import QuestionSampler
from .scoring import count_correct, score_90, score_section, seconds_between
from .store import Store

logger = logging.getLogger(__name__)


def elapsed_seconds(section: ExamSection, now: datetime) -> float:
    if section.started_at is None:
        return 0.0
    return (now - section.started_at).total_seconds()


def is_expired(section: ExamSection, now: datetime) -> bool:
    if section.state is not SectionState.ACTIVE:
        return False
    return elapsed_seconds(section, now) >= section.duration_seconds


def build_summary(
    attempt: ExamAttempt, sections: Sequence[ExamSection], answers: Sequence[ExamAnswer]
) -> ExamSummary:
    by_section = defaultdict(list)
    for answer in answers:
        by_section[answer.section_id].append(answer)

    correct = count_correct(answers)
    total_score = attempt.total_score_90
    if total_score is None:
        total_score = score_90(correct, len(answers))
    return ExamSummary(
        attempt_id=attempt.id,
        total_score_90=total_score,
        correct_answers=correct,
        total_questions=len(answers),
        total_time_seconds=seconds_between(attempt.created_at, attempt.completed_at),
        sections={
            section.type: score_section(
                by_section[section.id], section.started_at, section.ended_at
            )
            for section in sections
        },
    )


class ExamSectionMachine:
    """Drives the timed four-section lifecycle of exam attempts.

    Sections move ``PENDING -> ACTIVE -> LOCKED`` strictly in order. Expiry
    is detected lazily: every operation that touches sections first runs
    :meth:`_advance` under the attempt lock, which locks an overdue section
    and activates the next one.
    """

    def __init__(
        self,
        store: Store,
        sampler: Optional[QuestionSampler] = None,
        matcher: Optional[AnswerMatcher] = None,
        config: Settings = settings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.sampler = sampler or QuestionSampler(store)
        self.matcher = matcher or AnswerMatcher()
        self.config = config
        self.clock = clock

    # --- Operations ---
    def start_attempt(self, user_id: Optional[str]) -> AttemptStarted:
        if not user_id:
            raise MissingIdentity("Only registered users can take exams")

        now = self.clock()
        attempt = ExamAttempt(user_id=user_id, created_at=now)
        self.store.save_attempt(attempt)

        durations = self.config.section_durations()
        sections = [
            ExamSection(
                attempt_id=attempt.id,
                type=qtype,
                order_index=index,
                duration_seconds=durations[qtype],
            )
            for index, qtype in enumerate(SECTION_ORDER)
        ]
        for section in sections:
            self.store.save_section(section)

        with self.store.lock(f"attempt:{attempt.id}"):
            self._advance(sections, now)

        logger.info(f"New attempt: {attempt.id} [User: {user_id}]")
        return AttemptStarted(
            attempt_id=attempt.id,
            sections=[
                SectionInfo(
                    section_id=s.id,
                    type=s.type,
                    order_index=s.order_index,
                    duration_seconds=s.duration_seconds,
                    locked=s.locked,
                )
                for s in sections
            ],
        )

    def get_current_section(self, attempt_id: str, user_id: Optional[str]) -> CurrentSection:
        self._load_attempt(attempt_id, user_id)
        with self.store.lock(f"attempt:{attempt_id}"):
            now = self.clock()
            section = self._current(attempt_id, now)

        remaining = max(0, section.duration_seconds - int(elapsed_seconds(section, now)))
        count = self.config.section_counts()[section.type]
        questions = self.sampler.sample(section.type, Pool.EXAM, None, count)
        for question in questions:
            self.matcher.check_integrity(question)

        return CurrentSection(
            section_id=section.id,
            type=section.type,
            order_index=section.order_index,
            remaining_time_seconds=remaining,
            expired=remaining <= 0,
            questions=[QuestionView.from_question(q) for q in questions],
            answered_question_ids=[a.question_id for a in self.store.section_answers(section.id)],
        )

    def submit_answer(
        self,
        attempt_id: str,
        user_id: Optional[str],
        question_id: str,
        selected_option_id: Optional[str] = None,
        raw_text: Optional[str] = None,
        time_ms: Optional[int] = None,
    ) -> AnswerResult:
        self._load_attempt(attempt_id, user_id)
        question = self.store.get_question(question_id)
        if question is None:
            raise NotFound(f"Question not found: {question_id}")

        with self.store.lock(f"attempt:{attempt_id}"):
            now = self.clock()
            section = self._current(attempt_id, now)
            if question.type != section.type:
                raise InvalidState("Question does not belong to current section")
            if question.pool is not Pool.EXAM:
                raise InvalidState("Question is not an exam question")

            existing = self.store.section_answers(section.id)
            if any(a.question_id == question_id for a in existing):
                raise DuplicateAnswer("Question already answered")

            self.matcher.check_integrity(question)
            is_correct = self.matcher.is_correct(question, selected_option_id, raw_text)
            answer = ExamAnswer(
                attempt_id=attempt_id,
                section_id=section.id,
                question_id=question_id,
                selected_option_id=selected_option_id,
                raw_text=raw_text,
                is_correct=is_correct,
                time_ms=time_ms,
                order_index=len(existing),
                answered_at=now,
            )
            if not self.store.add_exam_answer(answer):
                raise DuplicateAnswer("Question already answered")

        return AnswerResult(correct=is_correct)

    def confirm_finish_section(self, attempt_id: str, user_id: Optional[str]) -> SectionScore:
        self._load_attempt(attempt_id, user_id)
        with self.store.lock(f"attempt:{attempt_id}"):
            now = self.clock()
            sections = self.store.get_sections(attempt_id)
            current = next((s for s in sections if s.state is SectionState.ACTIVE), None)
            if current is None:
                raise InvalidState("No active section")
            # An overdue section is locked by _advance itself.
            if not is_expired(current, now):
                self._lock_section(current, now)
            self._advance(sections, now)

        return score_section(
            self.store.section_answers(current.id), current.started_at, current.ended_at
        )

    def finish_exam(self, attempt_id: str, user_id: Optional[str]) -> ExamSummary:
        with self.store.lock(f"attempt:{attempt_id}"):
            attempt = self._load_attempt(attempt_id, user_id)
            if attempt.completed_at is not None:
                raise AttemptComplete("Exam already finished")

            now = self.clock()
            sections = self.store.get_sections(attempt_id)
            for section in sections:
                if not section.locked:
                    self._lock_section(section, now)

            answers = self.store.attempt_answers(attempt_id)
            attempt.total_score_90 = score_90(count_correct(answers), len(answers))
            attempt.completed_at = now
            self.store.save_attempt(attempt)

        logger.info(f"Attempt finished: {attempt_id} [Score: {attempt.total_score_90}/90]")
        return build_summary(attempt, sections, answers)

    # --- Transitions ---
    def _load_attempt(self, attempt_id: str, user_id: Optional[str]) -> ExamAttempt:
        if not user_id:
            raise MissingIdentity("Only registered users can take exams")
        attempt = self.store.get_attempt(attempt_id)
        if attempt is None:
            raise NotFound(f"Attempt not found: {attempt_id}")
        if attempt.user_id != user_id:
            raise Unauthorized("Attempt belongs to another user")
        return attempt

    def _current(self, attempt_id: str, now: datetime) -> ExamSection:
        section = self._advance(self.store.get_sections(attempt_id), now)
        if section is None:
            raise AttemptComplete("Exam completed")
        return section

    def _advance(self, sections: List[ExamSection], now: datetime) -> Optional[ExamSection]:
        """Resolves the current section, applying expiry and activation.

        Must run under the attempt lock. Returns None once every section is
        locked.
        """
        while True:
            current = next((s for s in sections if not s.locked), None)
            if current is None:
                return None
            if current.state is SectionState.PENDING:
                current.started_at = now
                self.store.save_section(current)
                logger.info(f"Section started: {current.type.value} [Attempt: {current.attempt_id}]")
                return current
            if is_expired(current, now):
                logger.info(f"Section expired: {current.type.value} [Attempt: {current.attempt_id}]")
                self._lock_section(current, now)
                continue
            return current

    def _lock_section(self, section: ExamSection, now: datetime) -> None:
        answers = self.store.section_answers(section.id)
        section.locked = True
        section.ended_at = now
        section.score_section = count_correct(answers)
        self.store.save_section(section)
        logger.info(
            f"Section locked: {section.type.value} [Attempt: {section.attempt_id}, "
            f"Correct: {section.score_section}/{len(answers)}]"
        )
