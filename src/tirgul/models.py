import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, model_validator


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# --- Enums ---
class QuestionType(str, Enum):
    VERBAL_ANALOGY = "VERBAL_ANALOGY"
    SHAPE_ANALOGY = "SHAPE_ANALOGY"
    INSTRUCTIONS_DIRECTIONS = "INSTRUCTIONS_DIRECTIONS"
    QUANTITATIVE = "QUANTITATIVE"


# Fixed exam template, in section order.
SECTION_ORDER: List[QuestionType] = [
    QuestionType.VERBAL_ANALOGY,
    QuestionType.SHAPE_ANALOGY,
    QuestionType.INSTRUCTIONS_DIRECTIONS,
    QuestionType.QUANTITATIVE,
]


class QuestionFormat(str, Enum):
    SINGLE_CHOICE = "SINGLE_CHOICE"
    SINGLE_CHOICE_IMAGE = "SINGLE_CHOICE_IMAGE"
    TEXT = "TEXT"
    NUMERIC = "NUMERIC"


class Pool(str, Enum):
    EXAM = "exam"
    PRACTICE = "practice"


class SectionState(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    LOCKED = "locked"


# --- Content ---
class QuestionOption(BaseModel):
    id: str = Field(default_factory=new_id)
    text: Optional[str] = None
    image_url: Optional[str] = None
    option_order: int = 0
    is_correct: bool = False


class AcceptableAnswer(BaseModel):
    value: str
    numeric_tolerance: Optional[Decimal] = None


class Question(BaseModel):
    id: str = Field(default_factory=new_id)
    type: QuestionType
    format: QuestionFormat = QuestionFormat.SINGLE_CHOICE
    prompt_text: Optional[str] = None
    prompt_image_url: Optional[str] = None
    explanation: Optional[str] = None
    is_exam_question: bool = False
    options: List[QuestionOption] = []
    acceptable_answers: List[AcceptableAnswer] = []

    @property
    def pool(self) -> Pool:
        return Pool.EXAM if self.is_exam_question else Pool.PRACTICE

    @property
    def is_multiple_choice(self) -> bool:
        return self.format in (QuestionFormat.SINGLE_CHOICE, QuestionFormat.SINGLE_CHOICE_IMAGE)

    def option(self, option_id: str) -> Optional[QuestionOption]:
        return next((opt for opt in self.options if opt.id == option_id), None)


# --- Exam ---
class ExamAttempt(BaseModel):
    id: str = Field(default_factory=new_id)
    user_id: str
    created_at: datetime
    completed_at: Optional[datetime] = None
    total_score_90: Optional[int] = None


class ExamSection(BaseModel):
    id: str = Field(default_factory=new_id)
    attempt_id: str
    type: QuestionType
    order_index: int
    duration_seconds: int
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    locked: bool = False
    score_section: Optional[int] = None

    @property
    def state(self) -> SectionState:
        if self.locked:
            return SectionState.LOCKED
        if self.started_at is None:
            return SectionState.PENDING
        return SectionState.ACTIVE


class ExamAnswer(BaseModel):
    id: str = Field(default_factory=new_id)
    attempt_id: str
    section_id: str
    question_id: str
    selected_option_id: Optional[str] = None
    raw_text: Optional[str] = None
    is_correct: bool
    time_ms: Optional[int] = None
    order_index: int
    answered_at: datetime


# --- Practice ---
class Identity(BaseModel):
    """A resolved caller: a registered user or an anonymous guest, never both."""

    user_id: Optional[str] = None
    guest_id: Optional[str] = None

    @model_validator(mode="after")
    def _exactly_one(self):
        if (self.user_id is None) == (self.guest_id is None):
            raise ValueError("identity needs exactly one of user_id or guest_id")
        return self

    @property
    def is_guest(self) -> bool:
        return self.user_id is None

    @property
    def key(self) -> str:
        return f"user:{self.user_id}" if self.user_id else f"guest:{self.guest_id}"


class PracticeSession(BaseModel):
    id: str = Field(default_factory=new_id)
    user_id: Optional[str] = None
    guest_id: Optional[str] = None
    type: QuestionType
    started_at: datetime
    ended_at: Optional[datetime] = None

    @property
    def identity(self) -> Identity:
        return Identity(user_id=self.user_id, guest_id=self.guest_id)


class PracticeAnswer(BaseModel):
    id: str = Field(default_factory=new_id)
    session_id: str
    question_id: str
    selected_option_id: Optional[str] = None
    raw_text: Optional[str] = None
    is_correct: bool
    time_ms: Optional[int] = None
    answered_at: datetime


class GuestIdentity(BaseModel):
    guest_id: str
    created_at: datetime
    last_seen_at: datetime


class RecentlyServed(BaseModel):
    identity_key: str
    question_id: str
    type: QuestionType
    served_at: datetime


# --- Responses ---
class OptionView(BaseModel):
    id: str
    text: Optional[str] = None
    image_url: Optional[str] = None
    option_order: int


class QuestionView(BaseModel):
    id: str
    type: QuestionType
    format: QuestionFormat
    prompt_text: Optional[str] = None
    prompt_image_url: Optional[str] = None
    options: List[OptionView] = []

    @classmethod
    def from_question(cls, question: Question) -> "QuestionView":
        options = sorted(question.options, key=lambda opt: opt.option_order)
        return cls(
            id=question.id,
            type=question.type,
            format=question.format,
            prompt_text=question.prompt_text,
            prompt_image_url=question.prompt_image_url,
            options=[
                OptionView(
                    id=opt.id,
                    text=opt.text,
                    image_url=opt.image_url,
                    option_order=opt.option_order,
                )
                for opt in options
            ],
        )


class SectionInfo(BaseModel):
    section_id: str
    type: QuestionType
    order_index: int
    duration_seconds: int
    locked: bool


class AttemptStarted(BaseModel):
    attempt_id: str
    sections: List[SectionInfo]


class CurrentSection(BaseModel):
    section_id: str
    type: QuestionType
    order_index: int
    remaining_time_seconds: int
    expired: bool
    questions: List[QuestionView]
    answered_question_ids: List[str]


class AnswerResult(BaseModel):
    correct: bool
    explanation: Optional[str] = None


class SectionScore(BaseModel):
    correct: int
    total: int
    accuracy: float
    time_spent_seconds: Optional[int] = None


class ExamSummary(BaseModel):
    attempt_id: str
    total_score_90: int
    correct_answers: int
    total_questions: int
    total_time_seconds: Optional[int] = None
    sections: Dict[QuestionType, SectionScore]


class PracticeStarted(BaseModel):
    session_id: Optional[str] = None
    type: QuestionType
    limit_reached: bool
    questions_available: int


class PracticeSummary(BaseModel):
    total_questions: int
    correct_answers: int
    accuracy: float
    total_time_ms: int


class TypeStats(BaseModel):
    type: QuestionType
    total_questions: int
    correct_answers: int
    accuracy: float


class AttemptOverview(BaseModel):
    attempt_id: str
    created_at: datetime
    score_90: Optional[int] = None
    correct_answers: int
    total_questions: int


class ProgressSummary(BaseModel):
    total_attempts: int
    overall_accuracy: float
    avg_time_per_question_ms: int
    improvement_percent: float
    stats_by_type: List[TypeStats]
    recent_attempts: List[AttemptOverview]


class TrendPoint(BaseModel):
    taken_at: datetime
    type: QuestionType
    accuracy: float


class SectionBreakdown(BaseModel):
    answered: int
    total: int
    skipped: int
    accuracy: float
    time_spent_seconds: int


class AttemptListItem(BaseModel):
    attempt_id: str
    created_at: datetime
    score_90: Optional[int] = None
    accuracy: float
    duration_seconds: int
    sections: Dict[QuestionType, SectionBreakdown]


class PracticeTypeStats(BaseModel):
    type: QuestionType
    total_questions: int
    correct_answers: int
    accuracy: float
    avg_time_ms: float
    mastery_score: float


class DailyVolume(BaseModel):
    day: date
    question_count: int
    accuracy: float


class PracticeStats(BaseModel):
    total_questions: int
    overall_accuracy: float
    avg_time_per_question_ms: float
    current_streak: int
    stats_by_type: List[PracticeTypeStats]
    daily_volume: List[DailyVolume]
