"""
Shared fixtures for the assessment engine tests.

Every test gets its own SQLite database file, a controllable clock and
in-memory identity, enrollment and catalog collaborators.
"""

import datetime

import pytest

from eduassess.config import Settings
from eduassess.database.init_db import build_engine, create_schema, create_session_factory
from eduassess.assessments.integrations import (
    Actor,
    ActorRole,
    AuditLogger,
    InMemoryCatalogService,
    InMemoryEnrollmentService,
    RecordingAuditSink,
    SubjectContext,
)
from eduassess.assessments.services import AssessmentService

START = datetime.datetime(2026, 1, 5, 10, 0, tzinfo=datetime.timezone.utc)


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime.datetime = START):
        self.now = now

    def __call__(self) -> datetime.datetime:
        return self.now

    def advance(self, **delta) -> datetime.datetime:
        self.now = self.now + datetime.timedelta(**delta)
        return self.now


TEACHER = Actor(id="teacher-1", role=ActorRole.TEACHER, name="Ada Teacher", email="ada@school.test")
OTHER_TEACHER = Actor(id="teacher-2", role=ActorRole.TEACHER, name="Bo Teacher")
ADMIN = Actor(id="admin-1", role=ActorRole.ADMIN, name="Root")
STUDENT = Actor(id="student-1", role=ActorRole.STUDENT, name="Sam Student", email="sam@school.test")
OTHER_STUDENT = Actor(id="student-2", role=ActorRole.STUDENT, name="Kim Student")
OUTSIDER = Actor(id="student-9", role=ActorRole.STUDENT, name="Out Sider")


def mcq_definition(**overrides):
    """Two objective questions worth 5 marks each, one with negative marking."""
    data = {
        "title": "Fractions quiz",
        "subject_content_id": "math-101",
        "test_type": "mcq",
        "duration": 30,
        "passing_marks": 5,
        "questions": [
            {
                "number": 1,
                "question_type": "mcq",
                "text": "1/2 + 1/4 = ?",
                "options": ["1/4", "3/4", "1"],
                "correct_answer": "3/4",
                "marks": 5,
                "negative_marking": 2,
            },
            {
                "number": 2,
                "question_type": "true-false",
                "text": "2/4 equals 1/2",
                "options": ["true", "false"],
                "correct_answer": "true",
                "marks": 5,
            },
        ],
    }
    data.update(overrides)
    return data


def mixed_definition(**overrides):
    """One auto-graded question and one essay."""
    data = {
        "title": "Essay and recall",
        "subject_content_id": "math-101",
        "test_type": "mixed",
        "duration": 60,
        "passing_marks": 6,
        "questions": [
            {
                "number": 1,
                "question_type": "short-answer",
                "text": "Name the longest side of a right triangle",
                "correct_answers": ["hypotenuse", "the hypotenuse"],
                "marks": 4,
            },
            {
                "number": 2,
                "question_type": "essay",
                "text": "Explain the Pythagorean theorem",
                "marks": 6,
            },
        ],
    }
    data.update(overrides)
    return data


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'eduassess-test.db'}",
        SUBMISSION_GRACE_SECONDS=60,
    )


@pytest.fixture
async def engine(settings):
    engine = build_engine(settings)
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def enrollment():
    service = InMemoryEnrollmentService()
    service.enroll(STUDENT.id, course_id="course-math", batch_id="batch-a")
    service.enroll(OTHER_STUDENT.id, course_id="course-math", batch_id="batch-b")
    return service


@pytest.fixture
def catalog():
    return InMemoryCatalogService([
        SubjectContext(
            subject_content_id="math-101",
            course_id="course-math",
            course_name="Mathematics",
            subject_name="Arithmetic",
            module_number=1,
            module_name="Fractions",
            teacher_ids=frozenset({TEACHER.id}),
        ),
    ])


@pytest.fixture
def audit_sink():
    return RecordingAuditSink()


@pytest.fixture
def audit(audit_sink):
    return AuditLogger(audit_sink)


@pytest.fixture
def service(session_factory, enrollment, catalog, audit, clock):
    return AssessmentService(
        session_factory=session_factory,
        enrollment=enrollment,
        catalog=catalog,
        audit=audit,
        clock=clock,
        submission_grace_seconds=60,
    )


@pytest.fixture
def make_active_test(service):
    """Create and publish a test, returning it."""

    async def _make(definition=None, actor=TEACHER):
        test = await service.create_test(actor, definition or mcq_definition())
        return await service.publish_test(actor, test.id)

    return _make
