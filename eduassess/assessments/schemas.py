"""
Assessment API Schemas

Request models for the assessment endpoints. They check the shape of the
payload; domain invariants are enforced by the service.
"""

import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from eduassess.assessments.models import (
    Difficulty,
    QuestionType,
    TargetAudience,
    TestCategory,
    TestType,
)


class QuestionSchema(BaseModel):
    """One authored question."""

    model_config = ConfigDict(use_enum_values=True)

    number: int = Field(..., ge=1, description="1-based position of the question")
    question_type: QuestionType
    text: str = Field(..., min_length=1)
    options: List[str] = Field(default_factory=list)
    correct_answer: Optional[Any] = None
    correct_answers: List[str] = Field(default_factory=list)
    marks: float = Field(1.0, ge=0)
    negative_marking: float = Field(0.0, ge=0)
    difficulty: Difficulty = Difficulty.MEDIUM
    image_url: Optional[str] = None
    explanation: Optional[str] = None


class _TestFields(BaseModel):
    model_config = ConfigDict(use_enum_values=True, extra="forbid")

    description: Optional[str] = None
    instructions: Optional[str] = None
    test_type: Optional[TestType] = None
    category: Optional[TestCategory] = None
    questions: Optional[List[QuestionSchema]] = None
    total_marks: Optional[float] = Field(None, ge=0)
    passing_marks: Optional[float] = Field(None, ge=0)
    pdf_url: Optional[str] = None
    pdf_file_name: Optional[str] = None
    answer_key_url: Optional[str] = None
    duration: Optional[int] = Field(None, ge=0, description="Minutes")
    is_untimed: Optional[bool] = None
    start_time: Optional[datetime.datetime] = None
    end_time: Optional[datetime.datetime] = None
    show_results_immediately: Optional[bool] = None
    show_correct_answers: Optional[bool] = None
    shuffle_questions: Optional[bool] = None
    shuffle_options: Optional[bool] = None
    allow_multiple_attempts: Optional[bool] = None
    max_attempts: Optional[int] = Field(None, ge=1)
    target_audience: Optional[TargetAudience] = None
    batch_ids: Optional[List[str]] = None
    student_ids: Optional[List[str]] = None


class TestCreate(_TestFields):
    """
    Request model for creating a draft test.
    """

    __test__ = False

    title: str = Field(..., min_length=1, max_length=255)
    subject_content_id: Optional[str] = None

    model_config = ConfigDict(
        use_enum_values=True,
        extra="forbid",
        json_schema_extra={
            "example": {
                "title": "Algebra quiz 1",
                "subject_content_id": "math-101",
                "test_type": "mcq",
                "duration": 30,
                "questions": [
                    {
                        "number": 1,
                        "question_type": "mcq",
                        "text": "2 + 2 = ?",
                        "options": ["3", "4", "5"],
                        "correct_answer": "4",
                        "marks": 2,
                    }
                ],
            }
        },
    )

    def to_definition(self):
        """Fields the client actually sent, ready for the service."""
        return self.model_dump(exclude_none=True)


class TestUpdate(_TestFields):
    """
    Partial update. Only fields present in the request are applied, so an
    explicit null clears a field.
    """

    __test__ = False

    title: Optional[str] = Field(None, min_length=1, max_length=255)

    @field_validator("title")
    @classmethod
    def validate_title(cls, v):
        if v is not None and not v.strip():
            raise ValueError("title cannot be blank")
        return v

    def to_patch(self):
        return self.model_dump(exclude_unset=True)


class AnswerIn(BaseModel):
    question_number: int = Field(..., ge=1)
    answer: Optional[Any] = None


class SubmitRequest(BaseModel):
    """Answers of an attempt, submitted once."""

    answers: List[AnswerIn] = Field(default_factory=list)
    time_spent: Optional[int] = Field(None, ge=0, description="Seconds reported by the client")


class QuestionGradeIn(BaseModel):
    question_number: int = Field(..., ge=1)
    marks_awarded: float


class GradeRequest(BaseModel):
    """
    A reviewer's marks for a submitted attempt.
    """

    question_grades: List[QuestionGradeIn] = Field(default_factory=list)
    feedback: Optional[str] = None
    expected_version: Optional[int] = Field(
        None, description="Version of the attempt the reviewer looked at"
    )
    finalize: bool = Field(True, description="Award zero to answers left ungraded")

    @field_validator("question_grades")
    @classmethod
    def validate_unique(cls, v):
        numbers = [g.question_number for g in v]
        if len(numbers) != len(set(numbers)):
            raise ValueError("each question can be graded once per request")
        return v
