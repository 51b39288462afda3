"""
Tests for the in-memory collaborators, the access policy, the audit
emitter and the logging helpers.
"""

import json
import logging

import pytest

from eduassess.common.error_handling import ForbiddenError
from eduassess.common.logger import JsonFormatter, LoggerAdapter, configure_logger
from eduassess.assessments.integrations import (
    AccessPolicy,
    AuditLogger,
    Capability,
    InMemoryIdentityService,
    RecordingAuditSink,
)
from eduassess.assessments.models import TestDefinition
from eduassess.tests.conftest import ADMIN, OTHER_STUDENT, OTHER_TEACHER, OUTSIDER, STUDENT, TEACHER


def owned_test(**overrides):
    data = dict(title="Quiz", teacher_id=TEACHER.id, course_id="course-math")
    data.update(overrides)
    return TestDefinition(**data)


class TestEnrollment:
    async def test_course_audience(self, enrollment):
        test = owned_test()
        assert await enrollment.is_eligible(test, STUDENT.id)
        assert not await enrollment.is_eligible(test, OUTSIDER.id)

    async def test_batch_audience(self, enrollment):
        test = owned_test(target_audience="batch", batch_ids=["batch-b"])
        assert await enrollment.is_eligible(test, OTHER_STUDENT.id)
        assert not await enrollment.is_eligible(test, STUDENT.id)

    async def test_specific_audience(self, enrollment):
        test = owned_test(target_audience="specific", student_ids=[OUTSIDER.id])
        assert await enrollment.is_eligible(test, OUTSIDER.id)
        assert not await enrollment.is_eligible(test, STUDENT.id)

    async def test_capabilities(self, enrollment):
        test = owned_test()
        assert await enrollment.get_capabilities(ADMIN, test) == set(Capability)
        assert await enrollment.get_capabilities(TEACHER, test) == set(Capability)
        assert await enrollment.get_capabilities(OTHER_TEACHER, test) == set()
        assert await enrollment.get_capabilities(OTHER_TEACHER, None) == {Capability.EDIT}
        assert await enrollment.get_capabilities(STUDENT, test) == {Capability.VIEW}
        assert await enrollment.get_capabilities(OUTSIDER, test) == set()

    async def test_enroll(self, enrollment):
        enrollment.enroll(OUTSIDER.id, course_id="course-math")
        assert await enrollment.enrolled_course_ids(OUTSIDER.id) == {"course-math"}
        assert await enrollment.is_eligible(owned_test(), OUTSIDER.id)


class TestAccessPolicy:
    async def test_require_returns_granted_set(self, enrollment):
        policy = AccessPolicy(enrollment)
        granted = await policy.require(TEACHER, Capability.EDIT, owned_test())
        assert Capability.GRADE in granted

    async def test_missing_capability(self, enrollment):
        policy = AccessPolicy(enrollment)
        with pytest.raises(ForbiddenError) as exc_info:
            await policy.require(STUDENT, Capability.GRADE, owned_test())
        assert exc_info.value.details["actor_id"] == STUDENT.id


async def test_identity_lookup():
    identity = InMemoryIdentityService({"t": TEACHER})
    identity.register("s", STUDENT)
    assert await identity.authenticate("s") == STUDENT
    assert await identity.authenticate("nope") is None


async def test_catalog_lookup(catalog):
    subject = await catalog.get_subject_context("math-101")
    assert subject.course_name == "Mathematics"
    assert TEACHER.id in subject.teacher_ids
    assert await catalog.get_subject_context("history-1") is None


class TestAuditLogger:
    async def test_events_are_delivered(self):
        sink = RecordingAuditSink()
        audit = AuditLogger(sink)
        audit.emit("test.created", TEACHER, "test", "t1", title="Quiz")
        await audit.drain()
        event = sink.events[0]
        assert event.to_dict()["actor_role"] == "teacher"
        assert event.details == {"title": "Quiz"}

    async def test_disabled_logger_emits_nothing(self):
        sink = RecordingAuditSink()
        audit = AuditLogger(sink, enabled=False)
        audit.emit("test.created", TEACHER, "test", "t1")
        await audit.drain()
        assert sink.events == []

    def test_no_running_loop_drops_event(self):
        sink = RecordingAuditSink()
        AuditLogger(sink).emit("test.created", TEACHER, "test", "t1")
        assert sink.events == []


class TestLogging:
    def test_json_formatter_merges_context(self):
        record = logging.LogRecord("eduassess.x", logging.INFO, __file__, 10, "started", None, None)
        record.data = {"attempt_id": "a1"}
        payload = json.loads(JsonFormatter().format(record))
        assert payload["message"] == "started"
        assert payload["attempt_id"] == "a1"
        assert payload["level"] == "INFO"

    def test_adapter_carries_context(self):
        adapter = LoggerAdapter(logging.getLogger("eduassess.tests"), {"test_id": "t1"})
        child = adapter.with_context(actor_id="teacher-1")
        _, kwargs = child.process("msg", {})
        assert kwargs["extra"]["data"] == {"test_id": "t1", "actor_id": "teacher-1"}

    def test_configure_replaces_handlers(self, tmp_path):
        log_file = tmp_path / "logs" / "engine.log"
        logger = configure_logger("eduassess.tests.configured", level="warning",
                                  log_file=str(log_file), console_output=False)
        configure_logger("eduassess.tests.configured", level="warning",
                         log_file=str(log_file), console_output=False)
        assert logger.level == logging.WARNING
        assert len(logger.handlers) == 1
        logger.warning("written")
        logger.handlers[0].flush()
        assert "written" in log_file.read_text()
