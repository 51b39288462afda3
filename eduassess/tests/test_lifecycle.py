"""
Tests for the lifecycle rules: status transitions, lazy time-driven
changes, the edit-lock, admission and late submissions.
"""

import datetime

import pytest

from eduassess.common.error_handling import (
    ConflictError,
    ErrorCode,
    ForbiddenError,
    TestNotFoundError,
    ValidationError,
)
from eduassess.assessments import lifecycle
from eduassess.assessments.models import Attempt, AttemptStatus, TestDefinition, TestStatus
from eduassess.tests.conftest import START, mcq_definition


def make_test(**overrides):
    data = mcq_definition()
    data.pop("subject_content_id")
    data["total_marks"] = 10
    data.update(overrides)
    return TestDefinition(teacher_id="teacher-1", **data)


def hours(n):
    return datetime.timedelta(hours=n)


class TestTransitions:
    def test_draft_can_be_published(self):
        lifecycle.ensure_transition(make_test(), TestStatus.ACTIVE, 0)

    def test_publishing_requires_questions(self):
        test = make_test(questions=[], total_marks=0)
        with pytest.raises(ValidationError) as exc_info:
            lifecycle.ensure_transition(test, TestStatus.ACTIVE, 0)
        assert "questions" in exc_info.value.errors

    def test_timed_test_needs_duration(self):
        with pytest.raises(ValidationError) as exc_info:
            lifecycle.ensure_transition(make_test(duration=0), TestStatus.ACTIVE, 0)
        assert "duration" in exc_info.value.errors
        lifecycle.ensure_transition(make_test(duration=0, is_untimed=True), TestStatus.ACTIVE, 0)

    def test_scheduling_needs_start_time(self):
        with pytest.raises(ValidationError):
            lifecycle.ensure_transition(make_test(), TestStatus.SCHEDULED, 0)
        lifecycle.ensure_transition(make_test(start_time=START + hours(1)), TestStatus.SCHEDULED, 0)

    def test_closed_test_cannot_reopen(self):
        with pytest.raises(ConflictError) as exc_info:
            lifecycle.ensure_transition(make_test(status="closed"), TestStatus.ACTIVE, 0)
        assert exc_info.value.code == ErrorCode.INVALID_TRANSITION

    def test_archived_is_terminal(self):
        for target in TestStatus:
            with pytest.raises(ConflictError):
                lifecycle.ensure_transition(make_test(status="archived"), target, 0)

    def test_unpublish_blocked_by_attempts(self):
        test = make_test(status="scheduled", start_time=START + hours(1))
        lifecycle.ensure_transition(test, TestStatus.DRAFT, 0)
        with pytest.raises(ConflictError) as exc_info:
            lifecycle.ensure_transition(test, TestStatus.DRAFT, 1)
        assert exc_info.value.code == ErrorCode.TEST_EDIT_LOCKED


class TestRefreshStatus:
    def test_scheduled_test_activates_at_start(self):
        test = make_test(status="scheduled", start_time=START)
        assert lifecycle.refresh_status(test, START - hours(1)) is None
        assert lifecycle.refresh_status(test, START) == TestStatus.SCHEDULED
        assert test.status == TestStatus.ACTIVE

    def test_active_test_closes_at_end(self):
        test = make_test(status="active", end_time=START)
        assert lifecycle.refresh_status(test, START + hours(1)) == TestStatus.ACTIVE
        assert test.status == TestStatus.CLOSED

    def test_elapsed_window_goes_straight_to_closed(self):
        test = make_test(status="scheduled", start_time=START, end_time=START + hours(1))
        lifecycle.refresh_status(test, START + hours(2))
        assert test.status == TestStatus.CLOSED

    def test_draft_is_never_refreshed(self):
        test = make_test(start_time=START)
        assert lifecycle.refresh_status(test, START + hours(5)) is None
        assert test.status == TestStatus.DRAFT


class TestEditLock:
    def test_attempts_lock_every_field(self):
        with pytest.raises(ConflictError) as exc_info:
            lifecycle.ensure_editable(make_test(), ["description"], 1)
        assert exc_info.value.code == ErrorCode.TEST_EDIT_LOCKED
        assert exc_info.value.message == "cannot edit test with student attempts"

    def test_lock_is_checked_before_field_validation(self):
        with pytest.raises(ConflictError):
            lifecycle.ensure_editable(make_test(), ["not_a_field"], 3)

    def test_active_test_is_not_editable(self):
        with pytest.raises(ConflictError):
            lifecycle.ensure_editable(make_test(status="active"), ["title"], 0)

    def test_status_is_not_patchable(self):
        with pytest.raises(ValidationError) as exc_info:
            lifecycle.ensure_editable(make_test(), ["status", "id"], 0)
        assert set(exc_info.value.errors) == {"status", "id"}

    def test_questions_only_change_in_draft(self):
        scheduled = make_test(status="scheduled", start_time=START + hours(1))
        lifecycle.ensure_editable(scheduled, ["title", "end_time"], 0)
        with pytest.raises(ConflictError):
            lifecycle.ensure_editable(scheduled, ["questions"], 0)


class TestAdmission:
    def active(self, **overrides):
        return make_test(status="active", **overrides)

    def test_first_attempt_is_number_one(self):
        assert lifecycle.check_admission(self.active(), "t", "s", START, True, []) == 1

    def test_missing_or_draft_test_is_not_found(self):
        with pytest.raises(TestNotFoundError):
            lifecycle.check_admission(None, "t", "s", START, True, [])
        with pytest.raises(TestNotFoundError):
            lifecycle.check_admission(make_test(), "t", "s", START, True, [])
        with pytest.raises(TestNotFoundError):
            lifecycle.check_admission(self.active(is_active=False), "t", "s", START, True, [])

    def test_window_is_enforced(self):
        test = self.active(start_time=START + hours(1))
        with pytest.raises(ForbiddenError) as exc_info:
            lifecycle.check_admission(test, "t", "s", START, True, [])
        assert exc_info.value.code == ErrorCode.OUTSIDE_TEST_WINDOW

        ended = self.active(end_time=START - hours(1))
        with pytest.raises(ForbiddenError):
            lifecycle.check_admission(ended, "t", "s", START, True, [])

    def test_audience_is_enforced(self):
        with pytest.raises(ForbiddenError) as exc_info:
            lifecycle.check_admission(self.active(), "t", "s", START, False, [])
        assert exc_info.value.code == ErrorCode.NOT_IN_AUDIENCE

    def test_open_attempt_blocks_a_new_one(self):
        prior = [Attempt(test_id="t", student_id="s", attempt_number=1)]
        with pytest.raises(ConflictError) as exc_info:
            lifecycle.check_admission(self.active(allow_multiple_attempts=True, max_attempts=3),
                                      "t", "s", START, True, prior)
        assert exc_info.value.code == ErrorCode.ATTEMPT_IN_PROGRESS

    def test_attempt_limit(self):
        prior = [Attempt(test_id="t", student_id="s", attempt_number=1, status=AttemptStatus.EVALUATED)]
        with pytest.raises(ConflictError) as exc_info:
            lifecycle.check_admission(self.active(), "t", "s", START, True, prior)
        assert exc_info.value.code == ErrorCode.ATTEMPT_LIMIT_REACHED

        test = self.active(allow_multiple_attempts=True, max_attempts=2)
        assert lifecycle.check_admission(test, "t", "s", START, True, prior) == 2


class TestLateSubmission:
    def test_duration_sets_the_deadline(self):
        test = make_test(duration=30)
        attempt = Attempt(test_id="t", student_id="s", attempt_number=1, started_at=START)
        assert lifecycle.attempt_deadline(test, attempt) == START + datetime.timedelta(minutes=30)
        assert not lifecycle.is_late_submission(test, attempt, START + datetime.timedelta(minutes=30, seconds=59), 60)
        assert lifecycle.is_late_submission(test, attempt, START + datetime.timedelta(minutes=31, seconds=1), 60)

    def test_end_time_caps_the_deadline(self):
        test = make_test(duration=120, end_time=START + hours(1))
        attempt = Attempt(test_id="t", student_id="s", attempt_number=1, started_at=START)
        assert lifecycle.attempt_deadline(test, attempt) == START + hours(1)

    def test_untimed_without_end_is_never_late(self):
        test = make_test(is_untimed=True)
        attempt = Attempt(test_id="t", student_id="s", attempt_number=1, started_at=START)
        assert lifecycle.attempt_deadline(test, attempt) is None
        assert not lifecycle.is_late_submission(test, attempt, START + hours(48))
