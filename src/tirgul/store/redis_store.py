from datetime import datetime
from typing import List, Optional

import redis

from ..config import settings
from ..models import (
    ExamAnswer,
    ExamAttempt,
    ExamSection,
    GuestIdentity,
    Pool,
    PracticeAnswer,
    PracticeSession,
    Question,
    QuestionType,
    RecentlyServed,
)
from .base import Store


def get_redis() -> redis.Redis:
    return redis.from_url(settings.REDIS_URL, decode_responses=True)


class RedisStore(Store):
    """Stores records as pydantic JSON documents with sets and sorted sets as indexes."""

    def __init__(self, client: Optional[redis.Redis] = None, prefix: str = "tirgul"):
        self.redis = client if client is not None else get_redis()
        self.prefix = prefix

    def _key(self, *parts: str) -> str:
        return ":".join((self.prefix,) + parts)

    # --- Questions ---
    def save_question(self, question: Question) -> None:
        pipe = self.redis.pipeline()
        pipe.set(self._key("question", question.id), question.model_dump_json())
        pipe.sadd(self._key("questions", question.type.value, question.pool.value), question.id)
        pipe.execute()

    def get_question(self, question_id: str) -> Optional[Question]:
        raw = self.redis.get(self._key("question", question_id))
        return Question.model_validate_json(raw) if raw else None

    def questions_by(self, qtype: QuestionType, pool: Pool) -> List[Question]:
        ids = sorted(self.redis.smembers(self._key("questions", qtype.value, pool.value)))
        if not ids:
            return []
        raws = self.redis.mget([self._key("question", qid) for qid in ids])
        return [Question.model_validate_json(raw) for raw in raws if raw]

    # --- Exam attempts ---
    def save_attempt(self, attempt: ExamAttempt) -> None:
        pipe = self.redis.pipeline()
        pipe.set(self._key("attempt", attempt.id), attempt.model_dump_json())
        pipe.zadd(
            self._key("user_attempts", attempt.user_id),
            {attempt.id: attempt.created_at.timestamp()},
        )
        pipe.execute()

    def get_attempt(self, attempt_id: str) -> Optional[ExamAttempt]:
        raw = self.redis.get(self._key("attempt", attempt_id))
        return ExamAttempt.model_validate_json(raw) if raw else None

    def attempts_for_user(self, user_id: str) -> List[ExamAttempt]:
        ids = self.redis.zrevrange(self._key("user_attempts", user_id), 0, -1)
        attempts = [self.get_attempt(attempt_id) for attempt_id in ids]
        return [a for a in attempts if a is not None]

    def save_section(self, section: ExamSection) -> None:
        self.redis.hset(
            self._key("sections", section.attempt_id),
            str(section.order_index),
            section.model_dump_json(),
        )

    def get_sections(self, attempt_id: str) -> List[ExamSection]:
        raws = self.redis.hgetall(self._key("sections", attempt_id))
        sections = [ExamSection.model_validate_json(raw) for raw in raws.values()]
        return sorted(sections, key=lambda s: s.order_index)

    def add_exam_answer(self, answer: ExamAnswer) -> bool:
        claimed = self.redis.set(
            self._key("answered", answer.section_id, answer.question_id),
            answer.id,
            nx=True,
        )
        if not claimed:
            return False
        payload = answer.model_dump_json()
        pipe = self.redis.pipeline()
        pipe.rpush(self._key("section_answers", answer.section_id), payload)
        pipe.rpush(self._key("attempt_answers", answer.attempt_id), payload)
        pipe.execute()
        return True

    def section_answers(self, section_id: str) -> List[ExamAnswer]:
        raws = self.redis.lrange(self._key("section_answers", section_id), 0, -1)
        answers = [ExamAnswer.model_validate_json(raw) for raw in raws]
        return sorted(answers, key=lambda a: a.order_index)

    def attempt_answers(self, attempt_id: str) -> List[ExamAnswer]:
        raws = self.redis.lrange(self._key("attempt_answers", attempt_id), 0, -1)
        return [ExamAnswer.model_validate_json(raw) for raw in raws]

    def lock(self, name: str):
        return self.redis.lock(
            self._key("lock", name),
            timeout=settings.LOCK_TIMEOUT_SECONDS,
            blocking_timeout=settings.LOCK_TIMEOUT_SECONDS,
        )

    # --- Practice ---
    def save_practice_session(self, session: PracticeSession) -> None:
        pipe = self.redis.pipeline()
        pipe.set(self._key("practice", session.id), session.model_dump_json())
        if session.user_id:
            pipe.zadd(
                self._key("user_practice", session.user_id),
                {session.id: session.started_at.timestamp()},
            )
        if session.guest_id:
            pipe.zadd(
                self._key("guest_sessions", session.guest_id, session.type.value),
                {session.id: session.started_at.timestamp()},
            )
        pipe.execute()

    def get_practice_session(self, session_id: str) -> Optional[PracticeSession]:
        raw = self.redis.get(self._key("practice", session_id))
        return PracticeSession.model_validate_json(raw) if raw else None

    def practice_sessions_for_user(self, user_id: str) -> List[PracticeSession]:
        ids = self.redis.zrevrange(self._key("user_practice", user_id), 0, -1)
        sessions = [self.get_practice_session(session_id) for session_id in ids]
        return [s for s in sessions if s is not None]

    def count_guest_sessions(self, guest_id: str, qtype: QuestionType, since: datetime) -> int:
        return self.redis.zcount(
            self._key("guest_sessions", guest_id, qtype.value), since.timestamp(), "+inf"
        )

    def add_practice_answer(self, answer: PracticeAnswer) -> None:
        self.redis.rpush(self._key("practice_answers", answer.session_id), answer.model_dump_json())

    def practice_answers(self, session_id: str) -> List[PracticeAnswer]:
        raws = self.redis.lrange(self._key("practice_answers", session_id), 0, -1)
        answers = [PracticeAnswer.model_validate_json(raw) for raw in raws]
        return sorted(answers, key=lambda a: a.answered_at)

    # --- Identity and recency ---
    def get_guest(self, guest_id: str) -> Optional[GuestIdentity]:
        raw = self.redis.get(self._key("guest", guest_id))
        return GuestIdentity.model_validate_json(raw) if raw else None

    def save_guest(self, guest: GuestIdentity) -> None:
        self.redis.set(self._key("guest", guest.guest_id), guest.model_dump_json())

    def record_served(self, record: RecentlyServed) -> None:
        """Appends to the served log and bumps the question in the recency index."""
        pipe = self.redis.pipeline()
        pipe.rpush(
            self._key("served", record.identity_key, record.type.value),
            record.model_dump_json(),
        )
        pipe.zadd(
            self._key("recent", record.identity_key, record.type.value),
            {record.question_id: record.served_at.timestamp()},
        )
        pipe.execute()

    def recent_question_ids(self, identity_key: str, qtype: QuestionType, limit: int) -> List[str]:
        if limit <= 0:
            return []
        return self.redis.zrevrange(self._key("recent", identity_key, qtype.value), 0, limit - 1)
