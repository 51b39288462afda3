"""
Tests for the assessment domain models: enum coercion, definition
invariants and the answer-free views.
"""

import datetime

import pytest

from eduassess.common.error_handling import ValidationError
from eduassess.assessments.models import (
    Attempt,
    AttemptAnswer,
    AttemptStatus,
    Question,
    QuestionType,
    TestDefinition,
    TestStatus,
    TestType,
    ensure_utc,
)
from eduassess.tests.conftest import mcq_definition


def make_test(**overrides):
    data = mcq_definition()
    data.pop("subject_content_id")
    data.update(overrides)
    data.setdefault("total_marks", sum(q["marks"] for q in data["questions"]))
    return TestDefinition(teacher_id="teacher-1", **data)


class TestQuestion:
    def test_enum_values_are_coerced(self):
        question = Question(number=1, question_type="short-answer", text="Capital of France?",
                            correct_answers=["Paris"])
        assert question.question_type == QuestionType.SHORT_ANSWER
        assert question.is_auto_gradable
        assert not question.is_objective

    def test_unknown_question_type_is_a_field_error(self):
        with pytest.raises(ValidationError) as exc_info:
            Question(number=1, question_type="matching", text="?")
        assert "question_type" in exc_info.value.errors

    def test_essay_is_never_auto_gradable(self):
        essay = Question(number=1, question_type="essay", text="Discuss")
        assert not essay.is_auto_gradable
        assert essay.validation_errors("q") == {}

    def test_objective_question_needs_options_and_key(self):
        errors = Question(number=1, question_type="mcq", text="Pick one").validation_errors("questions[0]")
        assert set(errors) == {"questions[0].options", "questions[0].correct_answer"}

    def test_answer_key_must_be_an_option(self):
        question = Question(number=1, question_type="mcq", text="1/2 + 1/4 = ?", options=["1/4", "3/4", "1"],
                            correct_answer="7/8")
        assert question.validation_errors("q") == {"q.correct_answer": "not among the options: 7/8"}

        multi = Question(number=1, question_type="mcq", text="Primes?", options=["2", "3", "4"],
                         correct_answers=["2", "5"])
        assert set(multi.validation_errors("q")) == {"q.correct_answers"}

    def test_answer_fields_hidden_from_students(self):
        question = Question(number=1, question_type="mcq", text="?", options=["a", "b"],
                            correct_answer="a", explanation="because")
        data = question.to_dict(include_answers=False)
        assert "correct_answer" not in data
        assert "explanation" not in data
        assert data["options"] == ["a", "b"]


class TestDefinitionInvariants:
    def test_valid_definition(self):
        test = make_test()
        assert test.validation_errors() == {}
        assert test.total_questions == 2
        assert test.status == TestStatus.DRAFT

    def test_total_marks_must_match_question_marks(self):
        errors = make_test(total_marks=12).validation_errors()
        assert "total_marks" in errors

    def test_passing_marks_cannot_exceed_total(self):
        errors = make_test(passing_marks=11).validation_errors()
        assert errors["passing_marks"] == "must not exceed total_marks"

    def test_duplicate_question_numbers(self):
        data = mcq_definition()
        data["questions"][1]["number"] = 1
        test = make_test(questions=data["questions"])
        assert any("duplicate" in reason for reason in test.validation_errors().values())

    def test_mcq_test_rejects_essay_questions(self):
        questions = mcq_definition()["questions"] + [
            {"number": 3, "question_type": "essay", "text": "Why?", "marks": 0}
        ]
        errors = make_test(questions=questions).validation_errors()
        assert "questions[2].question_type" in errors

    def test_window_must_be_ordered(self):
        start = datetime.datetime(2026, 1, 5, 10, tzinfo=datetime.timezone.utc)
        errors = make_test(start_time=start, end_time=start).validation_errors()
        assert "end_time" in errors

    def test_batch_audience_needs_batches(self):
        errors = make_test(target_audience="batch").validation_errors()
        assert "batch_ids" in errors

    def test_validate_raises_with_field_errors(self):
        with pytest.raises(ValidationError) as exc_info:
            make_test(title="  ").validate()
        assert exc_info.value.details["errors"]["title"] == "is required"

    def test_effective_max_attempts(self):
        assert make_test(max_attempts=3).effective_max_attempts == 1
        assert make_test(max_attempts=3, allow_multiple_attempts=True).effective_max_attempts == 3

    def test_pdf_test_takes_no_questions(self):
        test = TestDefinition(title="Scan", teacher_id="t", test_type=TestType.PDF, total_marks=20,
                              pdf_url="https://files.test/paper.pdf")
        assert test.is_question_less
        assert test.validation_errors() == {}

    def test_student_view_hides_answer_key(self):
        test = make_test(answer_key_url="https://files.test/key.pdf")
        data = test.to_dict(include_answers=False)
        assert "answer_key_url" not in data
        assert all("correct_answer" not in q for q in data["questions"])
        assert test.to_dict()["answer_key_url"] == "https://files.test/key.pdf"

    def test_questions_are_kept_in_number_order(self):
        questions = list(reversed(mcq_definition()["questions"]))
        assert [q.number for q in make_test(questions=questions).questions] == [1, 2]


class TestAttempt:
    def test_naive_datetimes_are_utc(self):
        naive = datetime.datetime(2026, 1, 5, 10, 0)
        attempt = Attempt(test_id="t", student_id="s", attempt_number=1, started_at=naive)
        assert attempt.started_at.tzinfo == datetime.timezone.utc
        assert ensure_utc("2026-01-05T10:00:00+02:00").hour == 8

    def test_pending_questions(self):
        attempt = Attempt(
            test_id="t", student_id="s", attempt_number=1,
            status="submitted",
            answers=[AttemptAnswer(1, "a", True, 2.0), {"question_number": 2, "answer": "essay"}],
        )
        assert attempt.status == AttemptStatus.SUBMITTED
        assert attempt.is_completed and not attempt.is_open
        assert attempt.pending_questions() == [2]

    def test_marks_hidden_when_requested(self):
        attempt = Attempt(test_id="t", student_id="s", attempt_number=1, total_score=7.0)
        assert "total_score" not in attempt.to_dict(include_marks=False)
        assert attempt.to_dict()["total_score"] == 7.0
