import threading

import pytest

from conftest import build_question, correct_option, wrong_option
from tirgul.errors import (
    AttemptComplete,
    DuplicateAnswer,
    InvalidState,
    MissingIdentity,
    NotFound,
    Unauthorized,
)
from tirgul.models import Pool, QuestionType, SectionState

USER = "user-1"


def _answer_section(machine, attempt_id, questions, correct):
    for i, question in enumerate(questions):
        option = correct_option(question) if i < correct else wrong_option(question)
        machine.submit_answer(attempt_id, USER, question.id, selected_option_id=option, time_ms=1000)


class TestStartAttempt:
    def test_creates_four_sections_in_order(self, machine, store):
        started = machine.start_attempt(USER)

        assert [s.order_index for s in started.sections] == [0, 1, 2, 3]
        assert [s.type for s in started.sections] == [
            QuestionType.VERBAL_ANALOGY,
            QuestionType.SHAPE_ANALOGY,
            QuestionType.INSTRUCTIONS_DIRECTIONS,
            QuestionType.QUANTITATIVE,
        ]
        states = [s.state for s in store.get_sections(started.attempt_id)]
        assert states == [
            SectionState.ACTIVE,
            SectionState.PENDING,
            SectionState.PENDING,
            SectionState.PENDING,
        ]

    def test_guests_cannot_start(self, machine):
        with pytest.raises(MissingIdentity):
            machine.start_attempt(None)


class TestCurrentSection:
    def test_serves_exam_pool_questions(self, machine):
        attempt_id = machine.start_attempt(USER).attempt_id

        current = machine.get_current_section(attempt_id, USER)

        assert current.type is QuestionType.VERBAL_ANALOGY
        assert current.order_index == 0
        assert current.remaining_time_seconds == 480
        assert not current.expired
        assert len(current.questions) == 10
        assert all(q.type is QuestionType.VERBAL_ANALOGY for q in current.questions)
        assert current.answered_question_ids == []

    def test_questions_hide_correctness(self, machine):
        attempt_id = machine.start_attempt(USER).attempt_id

        payload = machine.get_current_section(attempt_id, USER).model_dump()

        option = payload["questions"][0]["options"][0]
        assert "is_correct" not in option
        assert "explanation" not in payload["questions"][0]

    def test_remaining_time_counts_down(self, machine, clock):
        attempt_id = machine.start_attempt(USER).attempt_id
        clock.advance(100.6)

        assert machine.get_current_section(attempt_id, USER).remaining_time_seconds == 380

    def test_expiry_locks_and_activates_next_in_one_call(self, machine, store, clock):
        attempt_id = machine.start_attempt(USER).attempt_id
        clock.advance(480)

        current = machine.get_current_section(attempt_id, USER)

        assert current.type is QuestionType.SHAPE_ANALOGY
        assert current.remaining_time_seconds == 600
        verbal, shape = store.get_sections(attempt_id)[:2]
        assert verbal.locked
        assert verbal.ended_at == clock.now
        assert verbal.score_section == 0
        assert shape.started_at == clock.now

    def test_last_section_expiry_completes_exam(self, machine, clock):
        attempt_id = machine.start_attempt(USER).attempt_id
        for seconds in (480, 600, 600):
            clock.advance(seconds)
            machine.get_current_section(attempt_id, USER)
        clock.advance(900)

        with pytest.raises(AttemptComplete):
            machine.get_current_section(attempt_id, USER)

    def test_answered_ids_are_reported(self, machine, exam_questions):
        attempt_id = machine.start_attempt(USER).attempt_id
        question = exam_questions[QuestionType.VERBAL_ANALOGY][0]
        machine.submit_answer(attempt_id, USER, question.id, selected_option_id=correct_option(question))

        current = machine.get_current_section(attempt_id, USER)
        assert current.answered_question_ids == [question.id]


class TestSubmitAnswer:
    def test_correct_and_incorrect(self, machine, exam_questions):
        attempt_id = machine.start_attempt(USER).attempt_id
        first, second = exam_questions[QuestionType.VERBAL_ANALOGY][:2]

        right = machine.submit_answer(attempt_id, USER, first.id, selected_option_id=correct_option(first))
        wrong = machine.submit_answer(attempt_id, USER, second.id, selected_option_id=wrong_option(second))

        assert right.correct is True
        assert wrong.correct is False
        assert right.explanation is None

    def test_duplicate_is_rejected_and_stored_once(self, machine, store, exam_questions):
        attempt_id = machine.start_attempt(USER).attempt_id
        question = exam_questions[QuestionType.VERBAL_ANALOGY][0]
        machine.submit_answer(attempt_id, USER, question.id, selected_option_id=correct_option(question))

        with pytest.raises(DuplicateAnswer):
            machine.submit_answer(attempt_id, USER, question.id, selected_option_id=wrong_option(question))

        answers = store.attempt_answers(attempt_id)
        assert len(answers) == 1
        assert answers[0].is_correct

    def test_concurrent_duplicates_have_one_winner(self, machine, store, exam_questions):
        attempt_id = machine.start_attempt(USER).attempt_id
        question = exam_questions[QuestionType.VERBAL_ANALOGY][0]
        barrier = threading.Barrier(8)
        outcomes = []

        def submit():
            barrier.wait()
            try:
                machine.submit_answer(attempt_id, USER, question.id, selected_option_id=correct_option(question))
                outcomes.append("ok")
            except DuplicateAnswer:
                outcomes.append("duplicate")

        threads = [threading.Thread(target=submit) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert outcomes.count("ok") == 1
        assert outcomes.count("duplicate") == 7
        assert len(store.attempt_answers(attempt_id)) == 1

    def test_question_from_other_section_is_rejected(self, machine, exam_questions):
        attempt_id = machine.start_attempt(USER).attempt_id
        shape = exam_questions[QuestionType.SHAPE_ANALOGY][0]

        with pytest.raises(InvalidState):
            machine.submit_answer(attempt_id, USER, shape.id, selected_option_id=correct_option(shape))

    def test_practice_pool_question_is_rejected(self, machine, store):
        practice_question = store.questions_by(QuestionType.VERBAL_ANALOGY, Pool.PRACTICE)[0]
        attempt_id = machine.start_attempt(USER).attempt_id

        with pytest.raises(InvalidState):
            machine.submit_answer(
                attempt_id, USER, practice_question.id, selected_option_id=correct_option(practice_question)
            )
        assert store.attempt_answers(attempt_id) == []

    def test_unknown_question(self, machine):
        attempt_id = machine.start_attempt(USER).attempt_id

        with pytest.raises(NotFound):
            machine.submit_answer(attempt_id, USER, "missing", selected_option_id="x")

    def test_answer_after_expiry_lands_in_next_section(self, machine, clock, exam_questions):
        attempt_id = machine.start_attempt(USER).attempt_id
        clock.advance(481)
        verbal = exam_questions[QuestionType.VERBAL_ANALOGY][0]
        shape = exam_questions[QuestionType.SHAPE_ANALOGY][0]

        with pytest.raises(InvalidState):
            machine.submit_answer(attempt_id, USER, verbal.id, selected_option_id=correct_option(verbal))
        assert machine.submit_answer(
            attempt_id, USER, shape.id, selected_option_id=correct_option(shape)
        ).correct

    def test_zero_correct_question_is_scored_not_raised(self, machine, store, caplog):
        broken = build_question(QuestionType.VERBAL_ANALOGY, exam=True, correct=())
        store.save_question(broken)
        attempt_id = machine.start_attempt(USER).attempt_id

        result = machine.submit_answer(attempt_id, USER, broken.id, selected_option_id=broken.options[0].id)

        assert result.correct is False
        assert any("ZERO" in r.getMessage() for r in caplog.records)

    def test_ownership_is_enforced(self, machine, exam_questions):
        attempt_id = machine.start_attempt(USER).attempt_id
        question = exam_questions[QuestionType.VERBAL_ANALOGY][0]

        with pytest.raises(Unauthorized):
            machine.submit_answer(attempt_id, "intruder", question.id, selected_option_id=correct_option(question))
        with pytest.raises(MissingIdentity):
            machine.submit_answer(attempt_id, None, question.id, selected_option_id=correct_option(question))
        with pytest.raises(NotFound):
            machine.get_current_section("nope", USER)


class TestConfirmFinishSection:
    def test_locks_current_and_activates_next(self, machine, store, clock, exam_questions):
        attempt_id = machine.start_attempt(USER).attempt_id
        _answer_section(machine, attempt_id, exam_questions[QuestionType.VERBAL_ANALOGY][:4], correct=3)
        clock.advance(120)

        score = machine.confirm_finish_section(attempt_id, USER)

        assert (score.correct, score.total) == (3, 4)
        assert score.accuracy == 75.0
        assert score.time_spent_seconds == 120
        sections = store.get_sections(attempt_id)
        assert sections[0].locked and sections[0].score_section == 3
        assert sections[1].state is SectionState.ACTIVE
        assert machine.get_current_section(attempt_id, USER).type is QuestionType.SHAPE_ANALOGY

    def test_expired_section_is_not_skipped_past(self, machine, store, clock):
        attempt_id = machine.start_attempt(USER).attempt_id
        clock.advance(500)

        machine.confirm_finish_section(attempt_id, USER)

        sections = store.get_sections(attempt_id)
        assert sections[0].locked
        assert sections[1].state is SectionState.ACTIVE
        assert sections[2].state is SectionState.PENDING

    def test_after_last_section_there_is_nothing_to_finish(self, machine):
        attempt_id = machine.start_attempt(USER).attempt_id
        for _ in range(4):
            machine.confirm_finish_section(attempt_id, USER)

        with pytest.raises(InvalidState):
            machine.confirm_finish_section(attempt_id, USER)
        with pytest.raises(AttemptComplete):
            machine.get_current_section(attempt_id, USER)


class TestFinishExam:
    def test_scales_to_ninety(self, machine, clock, exam_questions):
        attempt_id = machine.start_attempt(USER).attempt_id
        for qtype in (
            QuestionType.VERBAL_ANALOGY,
            QuestionType.SHAPE_ANALOGY,
            QuestionType.INSTRUCTIONS_DIRECTIONS,
            QuestionType.QUANTITATIVE,
        ):
            _answer_section(machine, attempt_id, exam_questions[qtype][:10], correct=9)
            clock.advance(300)
            machine.confirm_finish_section(attempt_id, USER)

        summary = machine.finish_exam(attempt_id, USER)

        assert summary.total_score_90 == 81
        assert summary.correct_answers == 36
        assert summary.total_questions == 40
        assert summary.total_time_seconds == 1200
        assert set(summary.sections) == set(QuestionType)
        assert summary.sections[QuestionType.QUANTITATIVE].correct == 9
        assert summary.sections[QuestionType.QUANTITATIVE].time_spent_seconds == 300

    def test_early_finish_locks_open_sections(self, machine, store, exam_questions):
        attempt_id = machine.start_attempt(USER).attempt_id
        _answer_section(machine, attempt_id, exam_questions[QuestionType.VERBAL_ANALOGY][:2], correct=1)

        summary = machine.finish_exam(attempt_id, USER)

        assert summary.total_score_90 == 45
        assert all(s.locked for s in store.get_sections(attempt_id))
        assert store.get_attempt(attempt_id).completed_at is not None

    def test_empty_exam_scores_zero(self, machine):
        attempt_id = machine.start_attempt(USER).attempt_id

        summary = machine.finish_exam(attempt_id, USER)

        assert summary.total_score_90 == 0
        assert summary.total_questions == 0

    def test_finish_twice_and_answer_after_finish(self, machine, exam_questions):
        attempt_id = machine.start_attempt(USER).attempt_id
        machine.finish_exam(attempt_id, USER)
        question = exam_questions[QuestionType.VERBAL_ANALOGY][0]

        with pytest.raises(AttemptComplete):
            machine.finish_exam(attempt_id, USER)
        with pytest.raises(AttemptComplete):
            machine.submit_answer(attempt_id, USER, question.id, selected_option_id=correct_option(question))

    def test_foreign_user_cannot_finish(self, machine):
        attempt_id = machine.start_attempt(USER).attempt_id

        with pytest.raises(Unauthorized):
            machine.finish_exam(attempt_id, "someone-else")
