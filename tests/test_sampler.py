from datetime import datetime, timedelta, timezone

from conftest import EXAM_PER_TYPE, PRACTICE_PER_TYPE
from tirgul.models import Pool, QuestionType, RecentlyServed


def test_sample_stays_in_pool_and_type(sampler):
    batch = sampler.sample(QuestionType.SHAPE_ANALOGY, Pool.EXAM, None, 10)
    assert len(batch) == 10
    assert len({q.id for q in batch}) == 10
    assert all(q.type is QuestionType.SHAPE_ANALOGY and q.is_exam_question for q in batch)

    practice = sampler.sample(QuestionType.SHAPE_ANALOGY, Pool.PRACTICE, None, 10)
    assert len(practice) == PRACTICE_PER_TYPE
    assert not any(q.is_exam_question for q in practice)


def test_sample_caps_at_pool_size(sampler):
    batch = sampler.sample(QuestionType.QUANTITATIVE, Pool.EXAM, [], 100)
    assert len(batch) == EXAM_PER_TYPE


def test_exclusion_filters_recent_questions(store, sampler):
    pool = store.questions_by(QuestionType.VERBAL_ANALOGY, Pool.PRACTICE)
    excluded = {q.id for q in pool[:3]}

    batch = sampler.sample(QuestionType.VERBAL_ANALOGY, Pool.PRACTICE, excluded, 10)

    assert len(batch) == PRACTICE_PER_TYPE - 3
    assert not excluded & {q.id for q in batch}


def test_full_exclusion_falls_back_to_unfiltered_pool(store, sampler):
    pool = store.questions_by(QuestionType.VERBAL_ANALOGY, Pool.PRACTICE)
    excluded = {q.id for q in pool}

    batch = sampler.sample(QuestionType.VERBAL_ANALOGY, Pool.PRACTICE, excluded, 3)

    assert len(batch) == 3
    assert {q.id for q in batch} <= excluded


def test_recent_exclusions_newest_first_and_capped(store, sampler):
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    for i, qid in enumerate(["q1", "q2", "q3", "q1"]):
        store.record_served(
            RecentlyServed(
                identity_key="guest:g",
                question_id=qid,
                type=QuestionType.QUANTITATIVE,
                served_at=start + timedelta(minutes=i),
            )
        )

    assert sampler.recent_exclusions("guest:g", QuestionType.QUANTITATIVE, 10) == ["q1", "q3", "q2"]
    assert sampler.recent_exclusions("guest:g", QuestionType.QUANTITATIVE, 2) == ["q1", "q3"]
    assert sampler.recent_exclusions("guest:g", QuestionType.VERBAL_ANALOGY, 10) == []
    assert sampler.recent_exclusions("guest:g", QuestionType.QUANTITATIVE, 0) == []
