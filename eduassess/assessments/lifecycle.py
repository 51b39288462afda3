"""
Lifecycle Controller

Enforces the test status state machine, the edit-lock, the time-window
rules and attempt admission. All functions here are pure: they inspect
domain objects and raise engine errors, and persistence is left to the
caller.
"""

import datetime
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence

from eduassess.common.error_handling import (
    ConflictError,
    ErrorCode,
    ForbiddenError,
    TestNotFoundError,
    ValidationError,
)
from eduassess.common.logger import app_logger
from eduassess.assessments.models import (
    Attempt,
    TestDefinition,
    TestStatus,
    TestType,
)

logger = app_logger.getChild("assessments.lifecycle")

ALLOWED_TRANSITIONS: Mapping[TestStatus, FrozenSet[TestStatus]] = {
    TestStatus.DRAFT: frozenset({TestStatus.SCHEDULED, TestStatus.ACTIVE, TestStatus.ARCHIVED}),
    TestStatus.SCHEDULED: frozenset({
        TestStatus.ACTIVE, TestStatus.DRAFT, TestStatus.CLOSED, TestStatus.ARCHIVED
    }),
    TestStatus.ACTIVE: frozenset({TestStatus.CLOSED, TestStatus.ARCHIVED}),
    TestStatus.CLOSED: frozenset({TestStatus.ARCHIVED}),
    TestStatus.ARCHIVED: frozenset(),
}

EDITABLE_STATUSES = frozenset({TestStatus.DRAFT, TestStatus.SCHEDULED})

# Fields an author may patch. Question content is editable only in draft.
EDITABLE_FIELDS = frozenset({
    "title", "description", "instructions", "test_type", "category",
    "questions", "total_marks", "passing_marks",
    "pdf_url", "pdf_file_name", "answer_key_url",
    "duration", "is_untimed", "start_time", "end_time",
    "show_results_immediately", "show_correct_answers",
    "shuffle_questions", "shuffle_options",
    "allow_multiple_attempts", "max_attempts",
    "target_audience", "batch_ids", "student_ids",
})
DRAFT_ONLY_FIELDS = frozenset({"questions", "test_type", "total_marks"})

PUBLISHED_STATUSES = frozenset({TestStatus.SCHEDULED, TestStatus.ACTIVE})


def refresh_status(test: TestDefinition, now: datetime.datetime) -> Optional[TestStatus]:
    """
    Apply time-driven transitions lazily.

    A scheduled test becomes active once its start time has passed, and an
    active test closes once its end time has passed. A scheduled test whose
    whole window has elapsed goes straight to closed.

    Returns:
        The previous status when the test changed, otherwise None
    """
    previous = test.status
    if test.status == TestStatus.SCHEDULED and test.start_time and test.start_time <= now:
        test.status = TestStatus.ACTIVE
    if test.status == TestStatus.ACTIVE and test.end_time and test.end_time <= now:
        test.status = TestStatus.CLOSED

    if test.status == previous:
        return None
    test.updated_at = now
    logger.info(f"Test {test.id} moved from {previous.value} to {test.status.value} on access")
    return previous


def publish_errors(test: TestDefinition, target: TestStatus) -> Dict[str, str]:
    """Reasons a test cannot be in a published status, keyed by field."""
    errors = test.validation_errors()
    if not test.questions:
        if test.test_type == TestType.PDF:
            if not test.pdf_url:
                errors["pdf_url"] = "pdf tests need a document before publishing"
        elif test.test_type == TestType.SUBJECTIVE:
            if not test.pdf_url:
                errors["questions"] = "add questions or a question document before publishing"
        else:
            errors["questions"] = "at least one question is required to publish"
    if not test.is_untimed and (test.duration or 0) <= 0:
        errors["duration"] = "a positive duration is required unless the test is untimed"
    if target == TestStatus.SCHEDULED and test.start_time is None:
        errors["start_time"] = "a start time is required to schedule a test"
    return errors


def ensure_transition(
    test: TestDefinition,
    target: TestStatus,
    attempt_count: int,
) -> None:
    """
    Check that ``test`` may move to ``target``.

    Args:
        test: The test, with its status already refreshed
        target: Requested status
        attempt_count: Number of attempts of the test, in any status

    Raises:
        ConflictError: If the state machine forbids the move
        ValidationError: If the test is not ready for a published status
    """
    if target not in ALLOWED_TRANSITIONS[test.status]:
        raise ConflictError(
            f"Cannot move test from {test.status.value} to {target.value}",
            code=ErrorCode.INVALID_TRANSITION,
            details={"test_id": test.id, "from": test.status.value, "to": target.value},
        )
    if test.status == TestStatus.SCHEDULED and target == TestStatus.DRAFT and attempt_count > 0:
        raise ConflictError(
            "Cannot unpublish a test with student attempts",
            code=ErrorCode.TEST_EDIT_LOCKED,
            details={"test_id": test.id, "attempts": attempt_count},
        )
    if target in PUBLISHED_STATUSES:
        errors = publish_errors(test, target)
        if errors:
            raise ValidationError(f"Test cannot be moved to {target.value}", errors=errors)


def ensure_editable(test: TestDefinition, fields: Iterable[str], attempt_count: int) -> None:
    """
    Check that ``fields`` of ``test`` may be patched.

    The edit-lock comes first: a test with any attempt rejects every edit.

    Raises:
        ConflictError: If the test is locked or its status forbids the edit
        ValidationError: If a field is unknown or not editable
    """
    if attempt_count > 0:
        raise ConflictError(
            "cannot edit test with student attempts",
            code=ErrorCode.TEST_EDIT_LOCKED,
            details={"test_id": test.id, "attempts": attempt_count},
        )
    if test.status not in EDITABLE_STATUSES:
        raise ConflictError(
            f"Cannot edit a {test.status.value} test",
            code=ErrorCode.INVALID_TRANSITION,
            details={"test_id": test.id, "status": test.status.value},
        )

    fields = set(fields)
    errors: Dict[str, str] = {}
    if "status" in fields:
        errors["status"] = "use the publish, schedule, close or archive operations"
    for name in sorted(fields - EDITABLE_FIELDS - {"status"}):
        errors[name] = "is not an editable field"
    if errors:
        raise ValidationError("Invalid test update", errors=errors)

    locked = fields & DRAFT_ONLY_FIELDS
    if locked and test.status != TestStatus.DRAFT:
        raise ConflictError(
            "Questions can only be changed while the test is a draft",
            code=ErrorCode.INVALID_TRANSITION,
            details={"test_id": test.id, "fields": sorted(locked)},
        )


def ensure_visible_to_students(test: Optional[TestDefinition], test_id: str) -> TestDefinition:
    """Deleted, draft, closed and archived tests do not exist for students."""
    if test is None or not test.is_active or test.status not in PUBLISHED_STATUSES:
        raise TestNotFoundError(test_id)
    return test


def ensure_within_window(test: TestDefinition, now: datetime.datetime) -> None:
    if test.start_time and now < test.start_time:
        raise ForbiddenError(
            "Test has not started yet",
            code=ErrorCode.OUTSIDE_TEST_WINDOW,
            details={"test_id": test.id, "start_time": test.start_time.isoformat()},
        )
    if test.end_time and now > test.end_time:
        raise ForbiddenError(
            "Test has ended",
            code=ErrorCode.OUTSIDE_TEST_WINDOW,
            details={"test_id": test.id, "end_time": test.end_time.isoformat()},
        )


def check_admission(
    test: Optional[TestDefinition],
    test_id: str,
    student_id: str,
    now: datetime.datetime,
    is_eligible: bool,
    prior_attempts: Sequence[Attempt],
) -> int:
    """
    Decide whether a student may start a new attempt.

    Args:
        test: The test after lazy status refresh, or None when missing
        test_id: Requested test id
        student_id: The student starting the attempt
        now: Current time
        is_eligible: Audience decision of the enrollment collaborator
        prior_attempts: Every earlier attempt of this student on this test

    Returns:
        The attempt number to assign

    Raises:
        TestNotFoundError: If the test is missing or not open to students
        ForbiddenError: Outside the time window or outside the audience
        ConflictError: With an open attempt or when the attempt limit is reached
    """
    test = ensure_visible_to_students(test, test_id)
    ensure_within_window(test, now)

    if not is_eligible:
        raise ForbiddenError(
            "You are not in the audience of this test",
            code=ErrorCode.NOT_IN_AUDIENCE,
            details={"test_id": test.id, "student_id": student_id},
        )

    if any(a.is_open for a in prior_attempts):
        raise ConflictError(
            "An attempt for this test is already in progress",
            code=ErrorCode.ATTEMPT_IN_PROGRESS,
            details={"test_id": test.id, "student_id": student_id},
        )

    count = len(prior_attempts)
    if count >= test.effective_max_attempts:
        raise ConflictError(
            "Maximum attempts reached for this test",
            code=ErrorCode.ATTEMPT_LIMIT_REACHED,
            details={"test_id": test.id, "attempts": count, "max_attempts": test.effective_max_attempts},
        )

    return count + 1


def attempt_deadline(test: TestDefinition, attempt: Attempt) -> Optional[datetime.datetime]:
    """When the attempt's time runs out, or None for untimed tests without an end time."""
    candidates: List[datetime.datetime] = []
    if not test.is_untimed and test.duration:
        candidates.append(attempt.started_at + datetime.timedelta(minutes=test.duration))
    if test.end_time:
        candidates.append(test.end_time)
    return min(candidates) if candidates else None


def is_late_submission(
    test: TestDefinition,
    attempt: Attempt,
    now: datetime.datetime,
    grace_seconds: int = 0,
) -> bool:
    deadline = attempt_deadline(test, attempt)
    if deadline is None:
        return False
    return now > deadline + datetime.timedelta(seconds=grace_seconds)
