"""
Assessment Domain Models

This module defines the core data models of the assessment engine:
questions embedded in a test definition, the test definition itself,
and the per-student attempt with its answers.
"""

import uuid
import enum
import datetime
from typing import Dict, List, Any, Optional
from dataclasses import dataclass, field

from eduassess.common.error_handling import ValidationError


def utcnow() -> datetime.datetime:
    """Current time as an aware UTC datetime."""
    return datetime.datetime.now(datetime.timezone.utc)


def ensure_utc(value: Optional[datetime.datetime]) -> Optional[datetime.datetime]:
    """Normalize a datetime to aware UTC. Naive values are taken to be UTC."""
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.datetime.fromisoformat(value)
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc)


def _iso(value: Optional[datetime.datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _coerce_enum(enum_cls, value, field_name: str):
    """Convert a raw value to ``enum_cls`` or raise a field-level ValidationError."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(
            f"Invalid {field_name}: {value!r}",
            errors={field_name: f"must be one of: {allowed}"}
        )


class QuestionType(enum.Enum):
    """Types of question a test can contain."""
    MCQ = "mcq"
    TRUE_FALSE = "true-false"
    SHORT_ANSWER = "short-answer"
    ESSAY = "essay"


class Difficulty(enum.Enum):
    """Informational difficulty tag of a question."""
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class TestType(enum.Enum):
    """What drives grading of a test."""
    __test__ = False

    MCQ = "mcq"
    MIXED = "mixed"
    PDF = "pdf"
    SUBJECTIVE = "subjective"


class TestCategory(enum.Enum):
    """Kind of assessment, for listings."""
    __test__ = False

    QUIZ = "quiz"
    ASSIGNMENT = "assignment"
    MID_TERM = "mid-term"
    FINAL = "final"
    PRACTICE = "practice"


class TestStatus(enum.Enum):
    """Lifecycle status of a test definition."""
    __test__ = False

    DRAFT = "draft"
    SCHEDULED = "scheduled"
    ACTIVE = "active"
    CLOSED = "closed"
    ARCHIVED = "archived"


class TargetAudience(enum.Enum):
    """Who may attempt a test."""
    ALL = "all"
    BATCH = "batch"
    SPECIFIC = "specific"


class AttemptStatus(enum.Enum):
    """Status of a student's attempt."""
    IN_PROGRESS = "in-progress"
    SUBMITTED = "submitted"
    EVALUATED = "evaluated"


OBJECTIVE_TYPES = frozenset({QuestionType.MCQ, QuestionType.TRUE_FALSE})

_REQUIRED_FLAGS = (
    "is_untimed", "show_results_immediately", "show_correct_answers",
    "shuffle_questions", "shuffle_options", "allow_multiple_attempts",
)


@dataclass
class Question:
    """
    One question embedded in a test definition.

    ``correct_answer`` holds a single accepted value; ``correct_answers``
    holds an accepted set (multi-select for objective questions, accepted
    spellings for short answers). Essays carry neither.
    """

    number: int
    question_type: QuestionType
    text: str
    options: List[str] = field(default_factory=list)
    correct_answer: Optional[Any] = None
    correct_answers: Optional[List[Any]] = None
    marks: float = 1.0
    negative_marking: float = 0.0
    difficulty: Difficulty = Difficulty.MEDIUM
    image_url: Optional[str] = None
    explanation: Optional[str] = None

    def __post_init__(self):
        self.question_type = _coerce_enum(QuestionType, self.question_type, "question_type")
        self.difficulty = _coerce_enum(Difficulty, self.difficulty, "difficulty")
        self.options = list(self.options or [])
        if self.correct_answers is not None:
            self.correct_answers = list(self.correct_answers)

    @property
    def is_objective(self) -> bool:
        return self.question_type in OBJECTIVE_TYPES

    @property
    def has_answer_key(self) -> bool:
        """Whether a correct answer (single or accepted set) is defined."""
        return bool(self.correct_answers) or _has_value(self.correct_answer)

    @property
    def is_auto_gradable(self) -> bool:
        if self.question_type == QuestionType.ESSAY:
            return False
        return self.has_answer_key

    def accepted_answers(self) -> List[Any]:
        if self.correct_answers:
            return list(self.correct_answers)
        if _has_value(self.correct_answer):
            return [self.correct_answer]
        return []

    def validation_errors(self, prefix: str) -> Dict[str, str]:
        """
        Check this question's own invariants.

        Args:
            prefix: Field path used in the returned keys, e.g. ``questions[0]``

        Returns:
            Mapping of field path to reason; empty when the question is valid
        """
        errors: Dict[str, str] = {}
        if not isinstance(self.number, int) or self.number < 1:
            errors[f"{prefix}.number"] = "must be a positive integer"
        if not self.text or not str(self.text).strip():
            errors[f"{prefix}.text"] = "is required"
        if self.marks is None or self.marks < 0:
            errors[f"{prefix}.marks"] = "must be non-negative"
        if self.negative_marking is None or self.negative_marking < 0:
            errors[f"{prefix}.negative_marking"] = "must be non-negative"

        if self.is_objective:
            if not self.options:
                errors[f"{prefix}.options"] = f"required for {self.question_type.value} questions"
            elif any(not str(option).strip() for option in self.options):
                errors[f"{prefix}.options"] = "options must not be blank"
            if not self.has_answer_key:
                errors[f"{prefix}.correct_answer"] = (
                    f"required for {self.question_type.value} questions"
                )
            elif self.options:
                choices = {str(option) for option in self.options}
                unknown = [str(a) for a in self.accepted_answers() if str(a) not in choices]
                if unknown:
                    field_name = "correct_answers" if self.correct_answers else "correct_answer"
                    errors[f"{prefix}.{field_name}"] = f"not among the options: {', '.join(unknown)}"
        elif self.options:
            errors[f"{prefix}.options"] = f"not allowed for {self.question_type.value} questions"

        if self.question_type == QuestionType.ESSAY and self.has_answer_key:
            errors[f"{prefix}.correct_answer"] = "not allowed for essay questions"
        return errors

    def to_dict(self, include_answers: bool = True) -> Dict[str, Any]:
        data = {
            "number": self.number,
            "question_type": self.question_type.value,
            "text": self.text,
            "options": list(self.options),
            "marks": self.marks,
            "negative_marking": self.negative_marking,
            "difficulty": self.difficulty.value,
            "image_url": self.image_url,
        }
        if include_answers:
            data["correct_answer"] = self.correct_answer
            data["correct_answers"] = self.correct_answers
            data["explanation"] = self.explanation
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Question":
        return cls(
            number=data["number"],
            question_type=data["question_type"],
            text=data.get("text", ""),
            options=data.get("options") or [],
            correct_answer=data.get("correct_answer"),
            correct_answers=data.get("correct_answers"),
            marks=data.get("marks", 1.0),
            negative_marking=data.get("negative_marking", 0.0),
            difficulty=data.get("difficulty", Difficulty.MEDIUM.value),
            image_url=data.get("image_url"),
            explanation=data.get("explanation"),
        )


def _has_value(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple, set)):
        return bool(value)
    return True


@dataclass
class TestDefinition:
    """
    An authored assessment: questions, timing, grading and attempt policy,
    audience and lifecycle status.

    ``total_attempts``, ``avg_score`` and ``pass_rate`` are a cache refreshed
    by the statistics aggregator; they are never used for decisions.
    """

    __test__ = False

    title: str
    teacher_id: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    teacher_name: Optional[str] = None
    subject_content_id: Optional[str] = None
    course_id: Optional[str] = None
    course_name: Optional[str] = None
    subject_name: Optional[str] = None
    module_number: Optional[int] = None
    module_name: Optional[str] = None
    description: str = ""
    instructions: str = ""
    test_type: TestType = TestType.MIXED
    category: TestCategory = TestCategory.QUIZ
    questions: List[Question] = field(default_factory=list)
    total_marks: float = 0.0
    passing_marks: Optional[float] = None
    pdf_url: Optional[str] = None
    pdf_file_name: Optional[str] = None
    answer_key_url: Optional[str] = None
    duration: int = 0
    is_untimed: bool = False
    start_time: Optional[datetime.datetime] = None
    end_time: Optional[datetime.datetime] = None
    show_results_immediately: bool = True
    show_correct_answers: bool = True
    shuffle_questions: bool = False
    shuffle_options: bool = False
    allow_multiple_attempts: bool = False
    max_attempts: int = 1
    target_audience: TargetAudience = TargetAudience.ALL
    batch_ids: List[str] = field(default_factory=list)
    student_ids: List[str] = field(default_factory=list)
    status: TestStatus = TestStatus.DRAFT
    is_active: bool = True
    total_attempts: int = 0
    avg_score: Optional[float] = None
    pass_rate: Optional[float] = None
    created_at: datetime.datetime = field(default_factory=utcnow)
    updated_at: datetime.datetime = field(default_factory=utcnow)
    version: int = 0

    def __post_init__(self):
        self.test_type = _coerce_enum(TestType, self.test_type, "test_type")
        self.category = _coerce_enum(TestCategory, self.category, "category")
        self.status = _coerce_enum(TestStatus, self.status, "status")
        self.target_audience = _coerce_enum(TargetAudience, self.target_audience, "target_audience")
        self.questions = [
            q if isinstance(q, Question) else Question.from_dict(q)
            for q in (self.questions or [])
        ]
        self.questions.sort(key=lambda q: q.number)
        self.batch_ids = list(self.batch_ids or [])
        self.student_ids = list(self.student_ids or [])
        self.start_time = ensure_utc(self.start_time)
        self.end_time = ensure_utc(self.end_time)
        self.created_at = ensure_utc(self.created_at)
        self.updated_at = ensure_utc(self.updated_at)

    @property
    def total_questions(self) -> int:
        return len(self.questions)

    @property
    def effective_max_attempts(self) -> int:
        """Attempt ceiling per student; 1 unless multiple attempts are allowed."""
        return self.max_attempts if self.allow_multiple_attempts else 1

    @property
    def is_question_less(self) -> bool:
        return not self.questions

    def questions_marks_total(self) -> float:
        return float(sum(q.marks for q in self.questions))

    def get_question(self, number: int) -> Optional[Question]:
        for question in self.questions:
            if question.number == number:
                return question
        return None

    def validation_errors(self) -> Dict[str, str]:
        """
        Check the definition invariants.

        Returns:
            Mapping of field path to reason; empty when the definition is valid
        """
        errors: Dict[str, str] = {}
        if not self.title or not self.title.strip():
            errors["title"] = "is required"
        for name in _REQUIRED_FLAGS:
            if not isinstance(getattr(self, name), bool):
                errors[name] = "must be true or false"
        for name in ("description", "instructions"):
            if not isinstance(getattr(self, name), str):
                errors[name] = "must be a string"

        seen = set()
        for index, question in enumerate(self.questions):
            errors.update(question.validation_errors(f"questions[{index}]"))
            if question.number in seen:
                errors[f"questions[{index}].number"] = f"duplicate question number {question.number}"
            seen.add(question.number)

        if self.test_type == TestType.PDF and self.questions:
            errors["questions"] = "pdf tests are graded from the document and take no question list"
        if self.test_type == TestType.MCQ:
            for index, question in enumerate(self.questions):
                if not question.is_objective:
                    errors[f"questions[{index}].question_type"] = (
                        "mcq tests only allow mcq and true-false questions"
                    )

        if self.total_marks is None or self.total_marks < 0:
            errors["total_marks"] = "must be non-negative"
        elif self.questions and abs(self.questions_marks_total() - self.total_marks) > 1e-9:
            errors["total_marks"] = (
                f"must equal the sum of question marks ({self.questions_marks_total():g})"
            )

        if self.passing_marks is not None:
            if self.passing_marks < 0:
                errors["passing_marks"] = "must be non-negative"
            elif self.total_marks is not None and self.passing_marks > self.total_marks:
                errors["passing_marks"] = "must not exceed total_marks"

        if self.duration is None or self.duration < 0:
            errors["duration"] = "must be non-negative"
        if self.start_time and self.end_time and self.start_time >= self.end_time:
            errors["end_time"] = "must be after start_time"
        if self.max_attempts is None or self.max_attempts < 1:
            errors["max_attempts"] = "must be at least 1"

        if self.target_audience == TargetAudience.BATCH and not self.batch_ids:
            errors["batch_ids"] = "required when targeting batches"
        if self.target_audience == TargetAudience.SPECIFIC and not self.student_ids:
            errors["student_ids"] = "required when targeting specific students"
        return errors

    def validate(self) -> None:
        """Raise ValidationError when any definition invariant is broken."""
        errors = self.validation_errors()
        if errors:
            raise ValidationError("Invalid test definition", errors=errors)

    def to_dict(self, include_answers: bool = True) -> Dict[str, Any]:
        """
        Convert the definition to a dictionary.

        Args:
            include_answers: When False, correct answers, explanations and the
                answer key reference are left out (student-facing views)
        """
        data = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "instructions": self.instructions,
            "teacher_id": self.teacher_id,
            "teacher_name": self.teacher_name,
            "subject_content_id": self.subject_content_id,
            "course_id": self.course_id,
            "course_name": self.course_name,
            "subject_name": self.subject_name,
            "module_number": self.module_number,
            "module_name": self.module_name,
            "test_type": self.test_type.value,
            "category": self.category.value,
            "questions": [q.to_dict(include_answers) for q in self.questions],
            "total_questions": self.total_questions,
            "total_marks": self.total_marks,
            "passing_marks": self.passing_marks,
            "pdf_url": self.pdf_url,
            "pdf_file_name": self.pdf_file_name,
            "duration": self.duration,
            "is_untimed": self.is_untimed,
            "start_time": _iso(self.start_time),
            "end_time": _iso(self.end_time),
            "show_results_immediately": self.show_results_immediately,
            "show_correct_answers": self.show_correct_answers,
            "shuffle_questions": self.shuffle_questions,
            "shuffle_options": self.shuffle_options,
            "allow_multiple_attempts": self.allow_multiple_attempts,
            "max_attempts": self.max_attempts,
            "target_audience": self.target_audience.value,
            "batch_ids": list(self.batch_ids),
            "student_ids": list(self.student_ids),
            "status": self.status.value,
            "total_attempts": self.total_attempts,
            "avg_score": self.avg_score,
            "pass_rate": self.pass_rate,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "version": self.version,
        }
        if include_answers:
            data["answer_key_url"] = self.answer_key_url
        return data


@dataclass
class AttemptAnswer:
    """
    One submitted answer.

    ``marks_awarded`` is None while the answer waits for a reviewer;
    ``is_correct`` is only set for answers graded against a key.
    """

    question_number: int
    answer: Any = None
    is_correct: Optional[bool] = None
    marks_awarded: Optional[float] = None

    @property
    def is_pending(self) -> bool:
        return self.marks_awarded is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "question_number": self.question_number,
            "answer": self.answer,
            "is_correct": self.is_correct,
            "marks_awarded": self.marks_awarded,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AttemptAnswer":
        return cls(
            question_number=data["question_number"],
            answer=data.get("answer"),
            is_correct=data.get("is_correct"),
            marks_awarded=data.get("marks_awarded"),
        )


@dataclass
class Attempt:
    """A student's attempt at a test definition."""

    test_id: str
    student_id: str
    attempt_number: int
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    student_name: Optional[str] = None
    student_email: Optional[str] = None
    answers: List[AttemptAnswer] = field(default_factory=list)
    status: AttemptStatus = AttemptStatus.IN_PROGRESS
    total_score: float = 0.0
    percentage: Optional[float] = None
    started_at: datetime.datetime = field(default_factory=utcnow)
    submitted_at: Optional[datetime.datetime] = None
    time_spent: Optional[int] = None
    is_late: bool = False
    feedback: Optional[str] = None
    graded_at: Optional[datetime.datetime] = None
    graded_by: Optional[str] = None
    is_active: bool = True
    version: int = 0

    def __post_init__(self):
        self.status = _coerce_enum(AttemptStatus, self.status, "status")
        self.answers = [
            a if isinstance(a, AttemptAnswer) else AttemptAnswer.from_dict(a)
            for a in (self.answers or [])
        ]
        self.started_at = ensure_utc(self.started_at)
        self.submitted_at = ensure_utc(self.submitted_at)
        self.graded_at = ensure_utc(self.graded_at)

    @property
    def is_open(self) -> bool:
        return self.status == AttemptStatus.IN_PROGRESS

    @property
    def is_completed(self) -> bool:
        return self.status in (AttemptStatus.SUBMITTED, AttemptStatus.EVALUATED)

    def pending_questions(self) -> List[int]:
        return [a.question_number for a in self.answers if a.is_pending]

    def to_dict(self, include_marks: bool = True) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "test_id": self.test_id,
            "student_id": self.student_id,
            "student_name": self.student_name,
            "student_email": self.student_email,
            "attempt_number": self.attempt_number,
            "status": self.status.value,
            "started_at": _iso(self.started_at),
            "submitted_at": _iso(self.submitted_at),
            "time_spent": self.time_spent,
            "is_late": self.is_late,
            "is_active": self.is_active,
            "version": self.version,
        }
        if include_marks:
            data.update({
                "answers": [a.to_dict() for a in self.answers],
                "total_score": self.total_score,
                "percentage": self.percentage,
                "feedback": self.feedback,
                "graded_at": _iso(self.graded_at),
                "graded_by": self.graded_by,
            })
        else:
            data["answers"] = [
                {"question_number": a.question_number, "answer": a.answer}
                for a in self.answers
            ]
        return data
