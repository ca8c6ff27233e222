import threading
from collections import defaultdict
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterator, List, Optional, Tuple

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


class MemoryStore(Store):
    """Thread-safe in-process store. Records are copied on the way in and out."""

    def __init__(self):
        self._lock = threading.Lock()
        self._named_locks: Dict[str, list] = {}
        self._questions: Dict[str, Question] = {}
        self._attempts: Dict[str, ExamAttempt] = {}
        self._sections: Dict[str, ExamSection] = {}
        self._exam_answers: Dict[Tuple[str, str], ExamAnswer] = {}
        self._sessions: Dict[str, PracticeSession] = {}
        self._practice_answers: Dict[str, List[PracticeAnswer]] = defaultdict(list)
        self._guests: Dict[str, GuestIdentity] = {}
        self._served: List[RecentlyServed] = []

    # --- Questions ---
    def save_question(self, question: Question) -> None:
        with self._lock:
            self._questions[question.id] = question.model_copy(deep=True)

    def get_question(self, question_id: str) -> Optional[Question]:
        question = self._questions.get(question_id)
        return question.model_copy(deep=True) if question else None

    def questions_by(self, qtype: QuestionType, pool: Pool) -> List[Question]:
        with self._lock:
            return [
                q.model_copy(deep=True)
                for q in self._questions.values()
                if q.type == qtype and q.pool == pool
            ]

    # --- Exam attempts ---
    def save_attempt(self, attempt: ExamAttempt) -> None:
        with self._lock:
            self._attempts[attempt.id] = attempt.model_copy()

    def get_attempt(self, attempt_id: str) -> Optional[ExamAttempt]:
        attempt = self._attempts.get(attempt_id)
        return attempt.model_copy() if attempt else None

    def attempts_for_user(self, user_id: str) -> List[ExamAttempt]:
        with self._lock:
            owned = [a.model_copy() for a in self._attempts.values() if a.user_id == user_id]
        return sorted(owned, key=lambda a: a.created_at, reverse=True)

    def save_section(self, section: ExamSection) -> None:
        with self._lock:
            self._sections[section.id] = section.model_copy()

    def get_sections(self, attempt_id: str) -> List[ExamSection]:
        with self._lock:
            sections = [
                s.model_copy() for s in self._sections.values() if s.attempt_id == attempt_id
            ]
        return sorted(sections, key=lambda s: s.order_index)

    def add_exam_answer(self, answer: ExamAnswer) -> bool:
        key = (answer.section_id, answer.question_id)
        with self._lock:
            if key in self._exam_answers:
                return False
            self._exam_answers[key] = answer.model_copy()
            return True

    def section_answers(self, section_id: str) -> List[ExamAnswer]:
        with self._lock:
            answers = [
                a.model_copy() for a in self._exam_answers.values() if a.section_id == section_id
            ]
        return sorted(answers, key=lambda a: a.order_index)

    def attempt_answers(self, attempt_id: str) -> List[ExamAnswer]:
        with self._lock:
            return [
                a.model_copy() for a in self._exam_answers.values() if a.attempt_id == attempt_id
            ]

    @contextmanager
    def lock(self, name: str) -> Iterator[None]:
        with self._lock:
            entry = self._named_locks.setdefault(name, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            # Dropped once no caller holds or waits on it.
            with self._lock:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._named_locks[name]

    # --- Practice ---
    def save_practice_session(self, session: PracticeSession) -> None:
        with self._lock:
            self._sessions[session.id] = session.model_copy()

    def get_practice_session(self, session_id: str) -> Optional[PracticeSession]:
        session = self._sessions.get(session_id)
        return session.model_copy() if session else None

    def practice_sessions_for_user(self, user_id: str) -> List[PracticeSession]:
        with self._lock:
            owned = [s.model_copy() for s in self._sessions.values() if s.user_id == user_id]
        return sorted(owned, key=lambda s: s.started_at, reverse=True)

    def count_guest_sessions(self, guest_id: str, qtype: QuestionType, since: datetime) -> int:
        with self._lock:
            return sum(
                1
                for s in self._sessions.values()
                if s.guest_id == guest_id and s.type == qtype and s.started_at >= since
            )

    def add_practice_answer(self, answer: PracticeAnswer) -> None:
        with self._lock:
            self._practice_answers[answer.session_id].append(answer.model_copy())

    def practice_answers(self, session_id: str) -> List[PracticeAnswer]:
        with self._lock:
            answers = [a.model_copy() for a in self._practice_answers.get(session_id, [])]
        return sorted(answers, key=lambda a: a.answered_at)

    # --- Identity and recency ---
    def get_guest(self, guest_id: str) -> Optional[GuestIdentity]:
        guest = self._guests.get(guest_id)
        return guest.model_copy() if guest else None

    def save_guest(self, guest: GuestIdentity) -> None:
        with self._lock:
            self._guests[guest.guest_id] = guest.model_copy()

    def record_served(self, record: RecentlyServed) -> None:
        with self._lock:
            self._served.append(record.model_copy())

    def recent_question_ids(self, identity_key: str, qtype: QuestionType, limit: int) -> List[str]:
        if limit <= 0:
            return []
        with self._lock:
            records = [
                r for r in self._served if r.identity_key == identity_key and r.type == qtype
            ]
        records.sort(key=lambda r: r.served_at, reverse=True)
        ids: List[str] = []
        for record in records:
            if record.question_id not in ids:
                ids.append(record.question_id)
            if len(ids) >= limit:
                break
        return ids
