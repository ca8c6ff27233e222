from abc import ABC, abstractmethod
from datetime import datetime
from typing import ContextManager, List, Optional

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


class Store(ABC):
    """Durable storage operations the engine depends on."""

    # --- Questions ---
    @abstractmethod
    def save_question(self, question: Question) -> None:
        pass

    @abstractmethod
    def get_question(self, question_id: str) -> Optional[Question]:
        pass

    @abstractmethod
    def questions_by(self, qtype: QuestionType, pool: Pool) -> List[Question]:
        pass

    # --- Exam attempts ---
    @abstractmethod
    def save_attempt(self, attempt: ExamAttempt) -> None:
        pass

    @abstractmethod
    def get_attempt(self, attempt_id: str) -> Optional[ExamAttempt]:
        pass

    @abstractmethod
    def attempts_for_user(self, user_id: str) -> List[ExamAttempt]:
        """Newest first."""

    @abstractmethod
    def save_section(self, section: ExamSection) -> None:
        pass

    @abstractmethod
    def get_sections(self, attempt_id: str) -> List[ExamSection]:
        """Ordered by ``order_index``."""

    @abstractmethod
    def add_exam_answer(self, answer: ExamAnswer) -> bool:
        """Inserts the answer unless (section, question) already has one.

        Returns False, without writing, when an answer already exists. The
        check and the write are a single atomic step.
        """

    @abstractmethod
    def section_answers(self, section_id: str) -> List[ExamAnswer]:
        """Ordered by ``order_index``."""

    @abstractmethod
    def attempt_answers(self, attempt_id: str) -> List[ExamAnswer]:
        pass

    @abstractmethod
    def lock(self, name: str) -> ContextManager:
        """Mutual exclusion scope for read-modify-write on one record, e.g. ``attempt:<id>``."""

    # --- Practice ---
    @abstractmethod
    def save_practice_session(self, session: PracticeSession) -> None:
        pass

    @abstractmethod
    def get_practice_session(self, session_id: str) -> Optional[PracticeSession]:
        pass

    @abstractmethod
    def practice_sessions_for_user(self, user_id: str) -> List[PracticeSession]:
        """Newest first."""

    @abstractmethod
    def count_guest_sessions(self, guest_id: str, qtype: QuestionType, since: datetime) -> int:
        pass

    @abstractmethod
    def add_practice_answer(self, answer: PracticeAnswer) -> None:
        pass

    @abstractmethod
    def practice_answers(self, session_id: str) -> List[PracticeAnswer]:
        """Ordered by ``answered_at``."""

    # --- Identity and recency ---
    @abstractmethod
    def get_guest(self, guest_id: str) -> Optional[GuestIdentity]:
        pass

    @abstractmethod
    def save_guest(self, guest: GuestIdentity) -> None:
        pass

    @abstractmethod
    def record_served(self, record: RecentlyServed) -> None:
        pass

    @abstractmethod
    def recent_question_ids(self, identity_key: str, qtype: QuestionType, limit: int) -> List[str]:
        """Distinct question ids, most recently served first, at most ``limit``."""
