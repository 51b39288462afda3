"""
Scoring Engine

Pure computation over a test definition and one attempt's answers:
objective questions are graded against their key, subjective ones are
left pending for a reviewer, and attempt totals are derived from the
per-question marks.
"""

from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from eduassess.common.error_handling import ErrorCode, NotFoundError, ValidationError
from eduassess.common.logger import app_logger
from eduassess.assessments.models import (
    AttemptAnswer,
    Question,
    TestDefinition,
)

logger = app_logger.getChild("assessments.scoring")

QuestionGrade = Tuple[int, float]


def is_blank(value: Any) -> bool:
    """Whether a submitted value counts as unanswered."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, set)):
        return len(value) == 0
    return False


def _normalize_text(value: Any) -> str:
    return str(value).strip().lower()


class ScoringEngine:
    """
    Grades submissions and manual reviews.

    Negative marking is applied per question without clamping; only the
    attempt total is floored at zero.
    """

    def score_question(self, question: Question, value: Any) -> AttemptAnswer:
        """
        Grade one answer against its question.

        Args:
            question: The question being answered
            value: The submitted value (None when unanswered)

        Returns:
            The graded answer; ``marks_awarded`` is None when a reviewer must grade it
        """
        answer = AttemptAnswer(question_number=question.number, answer=value)

        if not question.is_auto_gradable:
            return answer

        if is_blank(value):
            answer.is_correct = False
            answer.marks_awarded = 0.0
            return answer

        if question.is_objective:
            answer.is_correct = self._objective_match(question, value)
            if answer.is_correct:
                answer.marks_awarded = float(question.marks)
            else:
                answer.marks_awarded = -float(question.negative_marking) if question.negative_marking else 0.0
            return answer

        # short answer with an accepted set
        accepted = {_normalize_text(a) for a in question.accepted_answers()}
        answer.is_correct = _normalize_text(value) in accepted
        answer.marks_awarded = float(question.marks) if answer.is_correct else 0.0
        return answer

    @staticmethod
    def _objective_match(question: Question, value: Any) -> bool:
        # Option identifiers compare as strings, case-sensitively.
        if question.correct_answers:
            accepted = {str(a) for a in question.correct_answers}
            if isinstance(value, (list, tuple, set)):
                return {str(v) for v in value} == accepted
            return str(value) in accepted

        expected = str(question.correct_answer)
        if isinstance(value, (list, tuple, set)):
            values = list(value)
            return len(values) == 1 and str(values[0]) == expected
        return str(value) == expected

    def score_submission(
        self,
        test: TestDefinition,
        submitted: Iterable[AttemptAnswer],
    ) -> List[AttemptAnswer]:
        """
        Normalize and grade a submission.

        The result holds exactly one entry per test question, in question
        order. Question-less tests keep the submitted entries as they are,
        all pending review.

        Raises:
            ValidationError: If an answer names an unknown question or a
                question is answered twice
        """
        by_number: Dict[int, AttemptAnswer] = {}
        errors: Dict[str, str] = {}
        for index, entry in enumerate(submitted):
            number = entry.question_number
            if number in by_number:
                errors[f"answers[{index}].question_number"] = f"question {number} answered more than once"
            elif test.questions and test.get_question(number) is None:
                errors[f"answers[{index}].question_number"] = f"unknown question {number}"
            elif not test.questions and (not isinstance(number, int) or number < 1):
                errors[f"answers[{index}].question_number"] = "must be a positive integer"
            by_number[number] = entry
        if errors:
            raise ValidationError("Invalid submission", errors=errors)

        if test.is_question_less:
            return [
                AttemptAnswer(question_number=number, answer=by_number[number].answer)
                for number in sorted(by_number)
            ]

        graded = []
        for question in test.questions:
            entry = by_number.get(question.number)
            graded.append(self.score_question(question, entry.answer if entry else None))

        pending = sum(1 for a in graded if a.is_pending)
        logger.debug(f"Scored {len(graded)} answers for test {test.id} ({pending} pending review)")
        return graded

    @staticmethod
    def compute_totals(
        test: TestDefinition,
        answers: Sequence[AttemptAnswer],
    ) -> Tuple[float, Optional[float]]:
        """
        Derive the attempt total and percentage.

        Pending answers count as zero. The percentage is None when the test
        carries no marks.
        """
        raw = sum(a.marks_awarded for a in answers if a.marks_awarded is not None)
        total_score = round(max(0.0, float(raw)), 4)
        if not test.total_marks:
            return total_score, None
        return total_score, round(total_score / test.total_marks * 100, 2)

    @staticmethod
    def is_fully_graded(test: TestDefinition, answers: Sequence[AttemptAnswer]) -> bool:
        """
        Whether the answers can be considered evaluated.

        Question-less tests additionally need at least one graded entry,
        since their grading always comes from a reviewer.
        """
        if any(a.is_pending for a in answers):
            return False
        return bool(test.questions) or bool(answers)

    def apply_grades(
        self,
        test: TestDefinition,
        answers: Sequence[AttemptAnswer],
        grades: Iterable[QuestionGrade],
        finalize: bool = True,
    ) -> List[AttemptAnswer]:
        """
        Apply a reviewer's marks to a copy of ``answers``.

        Grades overwrite earlier marks, so applying the same grades twice
        gives the same result. With ``finalize`` every answer still pending
        afterwards is awarded zero.

        Args:
            test: The test the answers belong to
            answers: Current answers of the attempt
            grades: ``(question_number, marks_awarded)`` pairs
            finalize: Whether the reviewer is closing the review

        Returns:
            The updated answers, in question order

        Raises:
            NotFoundError: If a grade names a question the test does not have
            ValidationError: If awarded marks fall outside the question's range
        """
        updated = {
            a.question_number: AttemptAnswer(a.question_number, a.answer, a.is_correct, a.marks_awarded)
            for a in answers
        }
        errors: Dict[str, str] = {}

        for index, (number, marks) in enumerate(grades):
            if test.questions:
                question = test.get_question(number)
                if question is None:
                    raise NotFoundError(
                        f"Question {number} not found in test {test.id}",
                        code=ErrorCode.QUESTION_NOT_FOUND,
                        details={"test_id": test.id, "question_number": number},
                    )
                lower, upper = -float(question.negative_marking), float(question.marks)
            else:
                if not isinstance(number, int) or number < 1:
                    errors[f"question_grades[{index}].question_number"] = "must be a positive integer"
                    continue
                question = None
                lower, upper = 0.0, float(test.total_marks)

            if marks is None or not lower <= marks <= upper:
                errors[f"question_grades[{index}].marks_awarded"] = (
                    f"must be between {lower:g} and {upper:g}"
                )
                continue

            entry = updated.get(number) or AttemptAnswer(question_number=number)
            entry.marks_awarded = float(marks)
            if question is not None and question.marks > 0:
                entry.is_correct = entry.marks_awarded >= question.marks
            updated[number] = entry

        if errors:
            raise ValidationError("Invalid grades", errors=errors)

        if not test.questions:
            awarded = sum(e.marks_awarded or 0.0 for e in updated.values())
            if awarded > test.total_marks:
                raise ValidationError(
                    "Invalid grades",
                    errors={"question_grades": f"awarded marks total {awarded:g}, above total_marks {test.total_marks:g}"},
                )

        if finalize:
            for entry in updated.values():
                if entry.is_pending:
                    entry.marks_awarded = 0.0
                    if entry.is_correct is None and test.get_question(entry.question_number) is not None:
                        entry.is_correct = False

        return [updated[number] for number in sorted(updated)]
