"""
Assessment Repositories

This module defines the repository interfaces for tests and attempts and
their SQLAlchemy implementations. A repository works inside the session
(and transaction) it is given; committing is the caller's job.
"""

import datetime
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from eduassess.common.error_handling import TransientDatabaseError, retry
from eduassess.common.logger import app_logger
from eduassess.assessments.database_models import AttemptRecord, TestRecord
from eduassess.assessments.models import (
    Attempt,
    AttemptAnswer,
    Question,
    TestDefinition,
    TestStatus,
    ensure_utc,
)
from eduassess.assessments.statistics import TestStatistics

logger = app_logger.getChild("assessments.repositories")

# Reads are retried once on transient failures; writes never are.
transient_retry = retry(
    max_retries=1,
    retry_delay=0.05,
    backoff_factor=1.0,
    retry_exceptions=(TransientDatabaseError,),
)


def _to_db(value: Optional[datetime.datetime]) -> Optional[datetime.datetime]:
    if value is None:
        return None
    return ensure_utc(value).replace(tzinfo=None)


def _from_db(value: Optional[datetime.datetime]) -> Optional[datetime.datetime]:
    return ensure_utc(value)


class TestRepository(ABC):
    """
    Abstract repository interface for test definitions.
    """

    __test__ = False

    @abstractmethod
    async def get(self, test_id: str, for_update: bool = False) -> Optional[TestDefinition]:
        """
        Retrieve a test by its ID, including soft-deleted ones.

        Args:
            test_id: The test identifier
            for_update: Lock the row for the rest of the transaction

        Returns:
            The test if found, None otherwise

        Raises:
            TransientDatabaseError: If the store is temporarily unavailable
        """
        pass

    @abstractmethod
    async def add(self, test: TestDefinition) -> TestDefinition:
        """
        Insert a new test.

        Returns:
            The test with its stored version
        """
        pass

    @abstractmethod
    async def save(self, test: TestDefinition) -> TestDefinition:
        """
        Write back a test loaded in this session.

        Raises:
            StaleDataError: If another transaction changed the test meanwhile
        """
        pass

    @abstractmethod
    async def list_for_teacher(
        self,
        teacher_id: Optional[str],
        statuses: Optional[Sequence[TestStatus]] = None,
    ) -> List[TestDefinition]:
        """
        List live tests, newest first.

        Args:
            teacher_id: Owner filter; None lists every teacher's tests
            statuses: Optional status filter
        """
        pass

    @abstractmethod
    async def list_published(self) -> List[TestDefinition]:
        """List live scheduled and active tests, soonest first."""
        pass

    @abstractmethod
    async def update_statistics(self, test_id: str, stats: TestStatistics) -> None:
        """Refresh the cached statistics without touching the test's version."""
        pass


class AttemptRepository(ABC):
    """
    Abstract repository interface for attempts.
    """

    @abstractmethod
    async def get(self, attempt_id: str, for_update: bool = False) -> Optional[Attempt]:
        """
        Retrieve an attempt by its ID.

        Args:
            attempt_id: The attempt identifier
            for_update: Lock the row for the rest of the transaction

        Returns:
            The attempt if found, None otherwise
        """
        pass

    @abstractmethod
    async def add(self, attempt: Attempt) -> Attempt:
        """
        Insert a new attempt.

        Raises:
            IntegrityError: If it duplicates an attempt number or a second open attempt
        """
        pass

    @abstractmethod
    async def save(self, attempt: Attempt) -> Attempt:
        """
        Write back an attempt loaded in this session.

        Raises:
            StaleDataError: If another transaction changed the attempt meanwhile
        """
        pass

    @abstractmethod
    async def count_for_test(self, test_id: str) -> int:
        """Count attempts of a test in any status."""
        pass

    @abstractmethod
    async def list_for_test(self, test_id: str) -> List[Attempt]:
        """List every attempt of a test, oldest first."""
        pass

    @abstractmethod
    async def list_for_student(self, test_id: str, student_id: str) -> List[Attempt]:
        """List a student's attempts at a test, by attempt number."""
        pass

    @abstractmethod
    async def list_by_student(self, student_id: str, test_ids: Sequence[str]) -> List[Attempt]:
        """List a student's attempts across several tests."""
        pass

    @abstractmethod
    async def deactivate_for_test(self, test_id: str) -> int:
        """Mark every attempt of a test inactive. Returns the number of attempts changed."""
        pass


class SQLTestRepository(TestRepository):
    """SQLAlchemy implementation of TestRepository."""

    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def to_domain(record: TestRecord) -> TestDefinition:
        return TestDefinition(
            id=record.id,
            title=record.title,
            description=record.description or "",
            instructions=record.instructions or "",
            teacher_id=record.teacher_id,
            teacher_name=record.teacher_name,
            subject_content_id=record.subject_content_id,
            course_id=record.course_id,
            course_name=record.course_name,
            subject_name=record.subject_name,
            module_number=record.module_number,
            module_name=record.module_name,
            test_type=record.test_type,
            category=record.category,
            questions=[Question.from_dict(q) for q in (record.questions or [])],
            total_marks=record.total_marks,
            passing_marks=record.passing_marks,
            pdf_url=record.pdf_url,
            pdf_file_name=record.pdf_file_name,
            answer_key_url=record.answer_key_url,
            duration=record.duration,
            is_untimed=record.is_untimed,
            start_time=_from_db(record.start_time),
            end_time=_from_db(record.end_time),
            show_results_immediately=record.show_results_immediately,
            show_correct_answers=record.show_correct_answers,
            shuffle_questions=record.shuffle_questions,
            shuffle_options=record.shuffle_options,
            allow_multiple_attempts=record.allow_multiple_attempts,
            max_attempts=record.max_attempts,
            target_audience=record.target_audience,
            batch_ids=list(record.batch_ids or []),
            student_ids=list(record.student_ids or []),
            status=record.status,
            is_active=record.is_active,
            total_attempts=record.total_attempts or 0,
            avg_score=record.avg_score,
            pass_rate=record.pass_rate,
            created_at=_from_db(record.created_at),
            updated_at=_from_db(record.updated_at),
            version=record.version,
        )

    @staticmethod
    def _columns(test: TestDefinition) -> Dict[str, Any]:
        # Cached statistics are left out; they are written by update_statistics
        return {
            "title": test.title,
            "description": test.description or "",
            "instructions": test.instructions or "",
            "teacher_id": test.teacher_id,
            "teacher_name": test.teacher_name,
            "subject_content_id": test.subject_content_id,
            "course_id": test.course_id,
            "course_name": test.course_name,
            "subject_name": test.subject_name,
            "module_number": test.module_number,
            "module_name": test.module_name,
            "test_type": test.test_type.value,
            "category": test.category.value,
            "questions": [q.to_dict() for q in test.questions],
            "total_marks": test.total_marks,
            "passing_marks": test.passing_marks,
            "pdf_url": test.pdf_url,
            "pdf_file_name": test.pdf_file_name,
            "answer_key_url": test.answer_key_url,
            "duration": test.duration,
            "is_untimed": test.is_untimed,
            "start_time": _to_db(test.start_time),
            "end_time": _to_db(test.end_time),
            "show_results_immediately": test.show_results_immediately,
            "show_correct_answers": test.show_correct_answers,
            "shuffle_questions": test.shuffle_questions,
            "shuffle_options": test.shuffle_options,
            "allow_multiple_attempts": test.allow_multiple_attempts,
            "max_attempts": test.max_attempts,
            "target_audience": test.target_audience.value,
            "batch_ids": list(test.batch_ids),
            "student_ids": list(test.student_ids),
            "status": test.status.value,
            "is_active": test.is_active,
            "created_at": _to_db(test.created_at),
            "updated_at": _to_db(test.updated_at),
        }

    @transient_retry
    async def get(self, test_id: str, for_update: bool = False) -> Optional[TestDefinition]:
        stmt = select(TestRecord).where(TestRecord.id == test_id)
        if for_update:
            stmt = stmt.with_for_update()
        try:
            record = (await self.session.execute(stmt)).scalar_one_or_none()
        except OperationalError as e:
            raise TransientDatabaseError("get test", cause=e) from e
        return self.to_domain(record) if record else None

    async def add(self, test: TestDefinition) -> TestDefinition:
        record = TestRecord(id=test.id, **self._columns(test))
        record.total_attempts = test.total_attempts
        record.avg_score = test.avg_score
        record.pass_rate = test.pass_rate
        self.session.add(record)
        await self.session.flush()
        test.version = record.version
        logger.debug(f"Inserted test {test.id}")
        return test

    async def save(self, test: TestDefinition) -> TestDefinition:
        record = await self.session.get(TestRecord, test.id)
        if record is None:
            raise ValueError(f"Test {test.id} is not stored")
        record.update(self._columns(test))
        await self.session.flush()
        test.version = record.version
        return test

    @transient_retry
    async def list_for_teacher(
        self,
        teacher_id: Optional[str],
        statuses: Optional[Sequence[TestStatus]] = None,
    ) -> List[TestDefinition]:
        stmt = select(TestRecord).where(TestRecord.is_active.is_(True))
        if teacher_id is not None:
            stmt = stmt.where(TestRecord.teacher_id == teacher_id)
        if statuses:
            stmt = stmt.where(TestRecord.status.in_([s.value for s in statuses]))
        stmt = stmt.order_by(TestRecord.created_at.desc(), TestRecord.id)
        try:
            records = (await self.session.execute(stmt)).scalars().all()
        except OperationalError as e:
            raise TransientDatabaseError("list tests", cause=e) from e
        return [self.to_domain(r) for r in records]

    @transient_retry
    async def list_published(self) -> List[TestDefinition]:
        stmt = (
            select(TestRecord)
            .where(TestRecord.is_active.is_(True))
            .where(TestRecord.status.in_([TestStatus.SCHEDULED.value, TestStatus.ACTIVE.value]))
            .order_by(TestRecord.start_time, TestRecord.created_at, TestRecord.id)
        )
        try:
            records = (await self.session.execute(stmt)).scalars().all()
        except OperationalError as e:
            raise TransientDatabaseError("list published tests", cause=e) from e
        return [self.to_domain(r) for r in records]

    async def update_statistics(self, test_id: str, stats: TestStatistics) -> None:
        # Core UPDATE on the table so the version column is not involved
        await self.session.execute(
            update(TestRecord.__table__)
            .where(TestRecord.__table__.c.id == test_id)
            .values(
                total_attempts=stats.total_attempts,
                avg_score=stats.avg_score,
                pass_rate=stats.pass_rate,
            )
        )


class SQLAttemptRepository(AttemptRepository):
    """SQLAlchemy implementation of AttemptRepository."""

    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def to_domain(record: AttemptRecord) -> Attempt:
        return Attempt(
            id=record.id,
            test_id=record.test_id,
            student_id=record.student_id,
            student_name=record.student_name,
            student_email=record.student_email,
            attempt_number=record.attempt_number,
            answers=[AttemptAnswer.from_dict(a) for a in (record.answers or [])],
            status=record.status,
            total_score=record.total_score or 0.0,
            percentage=record.percentage,
            started_at=_from_db(record.started_at),
            submitted_at=_from_db(record.submitted_at),
            time_spent=record.time_spent,
            is_late=record.is_late,
            feedback=record.feedback,
            graded_at=_from_db(record.graded_at),
            graded_by=record.graded_by,
            is_active=record.is_active,
            version=record.version,
        )

    @staticmethod
    def _columns(attempt: Attempt) -> Dict[str, Any]:
        return {
            "test_id": attempt.test_id,
            "student_id": attempt.student_id,
            "student_name": attempt.student_name,
            "student_email": attempt.student_email,
            "attempt_number": attempt.attempt_number,
            "answers": [a.to_dict() for a in attempt.answers],
            "status": attempt.status.value,
            "total_score": attempt.total_score,
            "percentage": attempt.percentage,
            "started_at": _to_db(attempt.started_at),
            "submitted_at": _to_db(attempt.submitted_at),
            "time_spent": attempt.time_spent,
            "is_late": attempt.is_late,
            "feedback": attempt.feedback,
            "graded_at": _to_db(attempt.graded_at),
            "graded_by": attempt.graded_by,
            "is_active": attempt.is_active,
        }

    async def _fetch(self, stmt, operation: str) -> List[Attempt]:
        try:
            records = (await self.session.execute(stmt)).scalars().all()
        except OperationalError as e:
            raise TransientDatabaseError(operation, cause=e) from e
        return [self.to_domain(r) for r in records]

    @transient_retry
    async def get(self, attempt_id: str, for_update: bool = False) -> Optional[Attempt]:
        stmt = select(AttemptRecord).where(AttemptRecord.id == attempt_id)
        if for_update:
            stmt = stmt.with_for_update()
        attempts = await self._fetch(stmt, "get attempt")
        return attempts[0] if attempts else None

    async def add(self, attempt: Attempt) -> Attempt:
        record = AttemptRecord(id=attempt.id, **self._columns(attempt))
        self.session.add(record)
        await self.session.flush()
        attempt.version = record.version
        logger.debug(f"Inserted attempt {attempt.id} (#{attempt.attempt_number}) for test {attempt.test_id}")
        return attempt

    async def save(self, attempt: Attempt) -> Attempt:
        record = await self.session.get(AttemptRecord, attempt.id)
        if record is None:
            raise ValueError(f"Attempt {attempt.id} is not stored")
        record.update(self._columns(attempt))
        await self.session.flush()
        attempt.version = record.version
        return attempt

    @transient_retry
    async def count_for_test(self, test_id: str) -> int:
        stmt = select(func.count()).select_from(AttemptRecord).where(AttemptRecord.test_id == test_id)
        try:
            return (await self.session.execute(stmt)).scalar_one()
        except OperationalError as e:
            raise TransientDatabaseError("count attempts", cause=e) from e

    @transient_retry
    async def list_for_test(self, test_id: str) -> List[Attempt]:
        stmt = (
            select(AttemptRecord)
            .where(AttemptRecord.test_id == test_id)
            .order_by(AttemptRecord.started_at, AttemptRecord.id)
        )
        return await self._fetch(stmt, "list attempts")

    @transient_retry
    async def list_for_student(self, test_id: str, student_id: str) -> List[Attempt]:
        stmt = (
            select(AttemptRecord)
            .where(AttemptRecord.test_id == test_id, AttemptRecord.student_id == student_id)
            .order_by(AttemptRecord.attempt_number)
        )
        return await self._fetch(stmt, "list student attempts")

    @transient_retry
    async def list_by_student(self, student_id: str, test_ids: Sequence[str]) -> List[Attempt]:
        if not test_ids:
            return []
        stmt = (
            select(AttemptRecord)
            .where(AttemptRecord.student_id == student_id, AttemptRecord.test_id.in_(list(test_ids)))
            .order_by(AttemptRecord.test_id, AttemptRecord.attempt_number)
        )
        return await self._fetch(stmt, "list student attempts")

    async def deactivate_for_test(self, test_id: str) -> int:
        attempts = await self.list_for_test(test_id)
        changed = 0
        for attempt in attempts:
            if attempt.is_active:
                attempt.is_active = False
                await self.save(attempt)
                changed += 1
        return changed
