"""
SQLAlchemy ORM models for assessments.

This module defines the two persisted records of the engine:
- TestRecord: a test definition with its questions embedded as JSON
- AttemptRecord: one student's attempt, stored separately and referencing its test

Both carry a version column used for optimistic concurrency. The attempt
table enforces one attempt per (test, student, attempt number) and at most
one in-progress attempt per (test, student).
"""

import datetime

from sqlalchemy import (
    Column, String, Integer, Boolean, DateTime, Text, Float, ForeignKey, JSON, Index, text
)
from sqlalchemy.schema import UniqueConstraint

from eduassess.database.base import ModelBase


def _utcnow_naive() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


OPEN_ATTEMPT_CLAUSE = "status = 'in-progress'"


class TestRecord(ModelBase):
    """Persisted test definition. Datetimes are stored as naive UTC."""

    __test__ = False
    __tablename__ = "assessment_tests"

    id = Column(String(36), primary_key=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    instructions = Column(Text, nullable=False, default="")

    teacher_id = Column(String(255), nullable=False, index=True)
    teacher_name = Column(String(255), nullable=True)
    subject_content_id = Column(String(255), nullable=True, index=True)
    course_id = Column(String(255), nullable=True, index=True)
    course_name = Column(String(255), nullable=True)
    subject_name = Column(String(255), nullable=True)
    module_number = Column(Integer, nullable=True)
    module_name = Column(String(255), nullable=True)

    test_type = Column(String(20), nullable=False)
    category = Column(String(20), nullable=False)
    questions = Column(JSON, nullable=False, default=list)
    total_marks = Column(Float, nullable=False, default=0)
    passing_marks = Column(Float, nullable=True)

    pdf_url = Column(String(1024), nullable=True)
    pdf_file_name = Column(String(255), nullable=True)
    answer_key_url = Column(String(1024), nullable=True)

    duration = Column(Integer, nullable=False, default=0)
    is_untimed = Column(Boolean, nullable=False, default=False)
    start_time = Column(DateTime, nullable=True)
    end_time = Column(DateTime, nullable=True)

    show_results_immediately = Column(Boolean, nullable=False, default=True)
    show_correct_answers = Column(Boolean, nullable=False, default=True)
    shuffle_questions = Column(Boolean, nullable=False, default=False)
    shuffle_options = Column(Boolean, nullable=False, default=False)
    allow_multiple_attempts = Column(Boolean, nullable=False, default=False)
    max_attempts = Column(Integer, nullable=False, default=1)

    target_audience = Column(String(20), nullable=False, default="all")
    batch_ids = Column(JSON, nullable=False, default=list)
    student_ids = Column(JSON, nullable=False, default=list)

    status = Column(String(20), nullable=False, default="draft", index=True)
    is_active = Column(Boolean, nullable=False, default=True)

    # Statistics cache, written outside the version check
    total_attempts = Column(Integer, nullable=False, default=0)
    avg_score = Column(Float, nullable=True)
    pass_rate = Column(Float, nullable=True)

    created_at = Column(DateTime, nullable=False, default=_utcnow_naive)
    updated_at = Column(DateTime, nullable=False, default=_utcnow_naive)
    version = Column(Integer, nullable=False)

    __table_args__ = (
        Index("idx_assessment_tests_teacher_status", "teacher_id", "status"),
    )
    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<TestRecord {self.id} {self.status} v{self.version}>"


class AttemptRecord(ModelBase):
    """Persisted attempt. Answers are stored as a JSON list."""

    __tablename__ = "assessment_attempts"

    id = Column(String(36), primary_key=True)
    test_id = Column(String(36), ForeignKey("assessment_tests.id"), nullable=False, index=True)
    student_id = Column(String(255), nullable=False, index=True)
    student_name = Column(String(255), nullable=True)
    student_email = Column(String(255), nullable=True)
    attempt_number = Column(Integer, nullable=False)

    answers = Column(JSON, nullable=False, default=list)
    status = Column(String(20), nullable=False, default="in-progress", index=True)
    total_score = Column(Float, nullable=False, default=0)
    percentage = Column(Float, nullable=True)

    started_at = Column(DateTime, nullable=False, default=_utcnow_naive)
    submitted_at = Column(DateTime, nullable=True)
    time_spent = Column(Integer, nullable=True)
    is_late = Column(Boolean, nullable=False, default=False)

    feedback = Column(Text, nullable=True)
    graded_at = Column(DateTime, nullable=True)
    graded_by = Column(String(255), nullable=True)

    is_active = Column(Boolean, nullable=False, default=True)
    version = Column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "test_id", "student_id", "attempt_number",
            name="uq_assessment_attempts_test_student_number",
        ),
        Index(
            "uq_assessment_attempts_open_attempt",
            "test_id", "student_id",
            unique=True,
            sqlite_where=text(OPEN_ATTEMPT_CLAUSE),
            postgresql_where=text(OPEN_ATTEMPT_CLAUSE),
        ),
    )
    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<AttemptRecord {self.id} test={self.test_id} #{self.attempt_number} {self.status}>"
