import logging
from datetime import datetime
from typing import Callable, List, Optional

from .config import Settings, settings
from .errors import InvalidState, NotFound, Unauthorized
from .matcher import AnswerMatcher
from .models import (
    AnswerResult,
    GuestIdentity,
    Identity,
    Pool,
    PracticeAnswer,
    PracticeSession,
    PracticeStarted,
    PracticeSummary,
    QuestionType,
    QuestionView,
    RecentlyServed,
    utcnow,
)
from .rate_limit import GuestRateLimiter, window_start
from .sampler import QuestionSampler
from .scoring import summarize_practice
from .store import Store

logger = logging.getLogger(__name__)


class PracticeFlow:
    """Untimed single-type practice sessions for registered users and guests."""

    def __init__(
        self,
        store: Store,
        sampler: Optional[QuestionSampler] = None,
        matcher: Optional[AnswerMatcher] = None,
        limiter: Optional[GuestRateLimiter] = None,
        config: Settings = settings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.sampler = sampler or QuestionSampler(store)
        self.matcher = matcher or AnswerMatcher()
        self.limiter = limiter or GuestRateLimiter(store)
        self.config = config
        self.clock = clock

    def start_session(self, qtype: QuestionType, identity: Identity) -> PracticeStarted:
        now = self.clock()
        if identity.is_guest:
            self._touch_guest(identity.guest_id, now)
            limit = self.config.GUEST_PRACTICE_LIMIT_PER_TYPE
            if not self.limiter.check_and_consume(
                identity.guest_id, qtype, limit, window_start(now)
            ):
                return PracticeStarted(type=qtype, limit_reached=True, questions_available=0)
            available = limit
        else:
            available = self.config.REGISTERED_QUESTIONS_AVAILABLE

        session = PracticeSession(
            user_id=identity.user_id,
            guest_id=identity.guest_id,
            type=qtype,
            started_at=now,
        )
        self.store.save_practice_session(session)
        logger.info(f"New practice session: {session.id} [{identity.key}, Type: {qtype.value}]")

        return PracticeStarted(
            session_id=session.id,
            type=qtype,
            limit_reached=False,
            questions_available=available,
        )

    def get_questions(self, session_id: str, identity: Identity) -> List[QuestionView]:
        session = self._load(session_id, identity)
        exclude_ids = self.sampler.recent_exclusions(
            identity.key, session.type, self.config.RECENT_QUESTIONS_CACHE_SIZE
        )
        if identity.is_guest:
            count = self.config.GUEST_PRACTICE_LIMIT_PER_TYPE
        else:
            count = self.config.REGISTERED_PRACTICE_BATCH

        questions = self.sampler.sample(session.type, Pool.PRACTICE, exclude_ids, count)
        for question in questions:
            self.matcher.check_integrity(question)
        return [QuestionView.from_question(q) for q in questions]

    def submit_answer(
        self,
        session_id: str,
        identity: Identity,
        question_id: str,
        selected_option_id: Optional[str] = None,
        raw_text: Optional[str] = None,
        time_ms: Optional[int] = None,
    ) -> AnswerResult:
        session = self._load(session_id, identity)
        if session.ended_at is not None:
            raise InvalidState("Practice session already finished")

        question = self.store.get_question(question_id)
        if question is None:
            raise NotFound(f"Question not found: {question_id}")
        if question.type != session.type:
            raise InvalidState("Question does not match the session type")
        if question.pool is not Pool.PRACTICE:
            raise InvalidState("Question is not a practice question")

        self.matcher.check_integrity(question)
        is_correct = self.matcher.is_correct(question, selected_option_id, raw_text)
        now = self.clock()
        self.store.add_practice_answer(
            PracticeAnswer(
                session_id=session.id,
                question_id=question_id,
                selected_option_id=selected_option_id,
                raw_text=raw_text,
                is_correct=is_correct,
                time_ms=time_ms,
                answered_at=now,
            )
        )
        self.store.record_served(
            RecentlyServed(
                identity_key=identity.key,
                question_id=question_id,
                type=question.type,
                served_at=now,
            )
        )
        return AnswerResult(correct=is_correct, explanation=question.explanation)

    def finish_session(self, session_id: str, identity: Identity) -> PracticeSummary:
        with self.store.lock(f"practice:{session_id}"):
            session = self._load(session_id, identity)
            if session.ended_at is not None:
                raise InvalidState("Practice session already finished")
            session.ended_at = self.clock()
            self.store.save_practice_session(session)

        summary = summarize_practice(self.store.practice_answers(session_id))
        logger.info(
            f"Practice session finished: {session_id} "
            f"[{summary.correct_answers}/{summary.total_questions}]"
        )
        return summary

    def _load(self, session_id: str, identity: Identity) -> PracticeSession:
        session = self.store.get_practice_session(session_id)
        if session is None:
            raise NotFound(f"Practice session not found: {session_id}")
        if session.user_id != identity.user_id or session.guest_id != identity.guest_id:
            raise Unauthorized("Practice session belongs to another identity")
        return session

    def _touch_guest(self, guest_id: str, now: datetime) -> None:
        guest = self.store.get_guest(guest_id)
        if guest is None:
            guest = GuestIdentity(guest_id=guest_id, created_at=now, last_seen_at=now)
        else:
            guest.last_seen_at = now
        self.store.save_guest(guest)
