import random
from datetime import datetime, timedelta, timezone

import pytest

from tirgul.config import Settings
from tirgul.exam import ExamSectionMachine
from tirgul.models import Pool, Question, QuestionOption, QuestionType
from tirgul.practice import PracticeFlow
from tirgul.sampler import QuestionSampler
from tirgul.store import MemoryStore

EXAM_PER_TYPE = 12
PRACTICE_PER_TYPE = 5


class FakeClock:
    def __init__(self):
        self.now = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds: float):
        self.now += timedelta(seconds=seconds)


def build_question(qtype, exam=True, correct=(0,), explanation=None):
    return Question(
        type=qtype,
        prompt_text=f"{qtype.value} prompt",
        explanation=explanation,
        is_exam_question=exam,
        options=[
            QuestionOption(text=f"option {i}", option_order=i, is_correct=i in correct)
            for i in range(4)
        ],
    )


def correct_option(question):
    return next(opt.id for opt in question.options if opt.is_correct)


def wrong_option(question):
    return next(opt.id for opt in question.options if not opt.is_correct)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    config = Settings()
    config.EXAM_SECTION_COUNTS = "VERBAL_ANALOGY:10,SHAPE_ANALOGY:10,INSTRUCTIONS_DIRECTIONS:10,QUANTITATIVE:10"
    config.EXAM_SECTION_DURATIONS = "VERBAL_ANALOGY:480,SHAPE_ANALOGY:600,INSTRUCTIONS_DIRECTIONS:600,QUANTITATIVE:900"
    config.GUEST_PRACTICE_LIMIT_PER_TYPE = 3
    config.RECENT_QUESTIONS_CACHE_SIZE = 50
    return config


@pytest.fixture
def store():
    store = MemoryStore()
    for qtype in QuestionType:
        for _ in range(EXAM_PER_TYPE):
            store.save_question(build_question(qtype, exam=True))
        for _ in range(PRACTICE_PER_TYPE):
            store.save_question(
                build_question(qtype, exam=False, explanation=f"Why {qtype.value}")
            )
    return store


@pytest.fixture
def sampler(store):
    return QuestionSampler(store, rng=random.Random(7))


@pytest.fixture
def machine(store, sampler, config, clock):
    return ExamSectionMachine(store, sampler=sampler, config=config, clock=clock)


@pytest.fixture
def practice(store, sampler, config, clock):
    return PracticeFlow(store, sampler=sampler, config=config, clock=clock)


@pytest.fixture
def exam_questions(store):
    """Exam-pool questions keyed by type."""
    return {qtype: store.questions_by(qtype, Pool.EXAM) for qtype in QuestionType}
