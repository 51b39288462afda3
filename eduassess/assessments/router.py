"""
Assessment Router

HTTP endpoints for authoring tests, taking attempts, grading and
statistics. Every handler is a thin wrapper over AssessmentService; engine
errors are mapped to HTTP responses by the application's exception
handlers.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request, status

from eduassess.api import APIResponse
from eduassess.common.auth import get_current_actor
from eduassess.common.logger import app_logger
from eduassess.assessments.integrations import Actor
from eduassess.assessments.models import TestStatus
from eduassess.assessments.schemas import GradeRequest, SubmitRequest, TestCreate, TestUpdate
from eduassess.assessments.services import AssessmentService

logger = app_logger.getChild("assessments.router")

router = APIRouter()

ResponseDict = Dict[str, Any]


def get_assessment_service(request: Request) -> AssessmentService:
    return request.app.state.assessment_service


# ----------------------------------------------------------------- tests

@router.post("/tests", status_code=status.HTTP_201_CREATED)
async def create_test_endpoint(
    body: TestCreate,
    actor: Actor = Depends(get_current_actor),
    service: AssessmentService = Depends(get_assessment_service),
) -> ResponseDict:
    """Create a draft test."""
    test = await service.create_test(actor, body.to_definition())
    return APIResponse.success(test.to_dict(), message="Test created")


@router.get("/tests")
async def list_tests_endpoint(
    status_filter: Optional[TestStatus] = Query(None, alias="status"),
    include_archived: bool = Query(False),
    actor: Actor = Depends(get_current_actor),
    service: AssessmentService = Depends(get_assessment_service),
) -> ResponseDict:
    """List the caller's tests with a per-status summary."""
    return APIResponse.success(
        await service.list_tests(actor, status=status_filter, include_archived=include_archived)
    )


# Declared before /tests/{test_id} so "available" is not taken for an id
@router.get("/tests/available")
async def list_available_tests_endpoint(
    actor: Actor = Depends(get_current_actor),
    service: AssessmentService = Depends(get_assessment_service),
) -> ResponseDict:
    """Published tests the calling student may see, with attempt history."""
    return APIResponse.success(await service.list_available_tests(actor))


@router.get("/tests/{test_id}")
async def get_test_endpoint(
    test_id: str,
    actor: Actor = Depends(get_current_actor),
    service: AssessmentService = Depends(get_assessment_service),
) -> ResponseDict:
    return APIResponse.success(await service.get_test(actor, test_id))


@router.patch("/tests/{test_id}")
async def update_test_endpoint(
    test_id: str,
    body: TestUpdate,
    actor: Actor = Depends(get_current_actor),
    service: AssessmentService = Depends(get_assessment_service),
) -> ResponseDict:
    test = await service.update_test(actor, test_id, body.to_patch())
    return APIResponse.success(test.to_dict(), message="Test updated")


@router.delete("/tests/{test_id}")
async def delete_test_endpoint(
    test_id: str,
    actor: Actor = Depends(get_current_actor),
    service: AssessmentService = Depends(get_assessment_service),
) -> ResponseDict:
    await service.delete_test(actor, test_id)
    return APIResponse.success({"id": test_id}, message="Test deleted")


@router.post("/tests/{test_id}/publish")
async def publish_test_endpoint(
    test_id: str,
    actor: Actor = Depends(get_current_actor),
    service: AssessmentService = Depends(get_assessment_service),
) -> ResponseDict:
    test = await service.publish_test(actor, test_id)
    return APIResponse.success(test.to_dict(), message="Test published")


@router.post("/tests/{test_id}/schedule")
async def schedule_test_endpoint(
    test_id: str,
    actor: Actor = Depends(get_current_actor),
    service: AssessmentService = Depends(get_assessment_service),
) -> ResponseDict:
    test = await service.schedule_test(actor, test_id)
    return APIResponse.success(test.to_dict(), message="Test scheduled")


@router.post("/tests/{test_id}/unpublish")
async def unpublish_test_endpoint(
    test_id: str,
    actor: Actor = Depends(get_current_actor),
    service: AssessmentService = Depends(get_assessment_service),
) -> ResponseDict:
    test = await service.unpublish_test(actor, test_id)
    return APIResponse.success(test.to_dict(), message="Test moved back to draft")


@router.post("/tests/{test_id}/close")
async def close_test_endpoint(
    test_id: str,
    actor: Actor = Depends(get_current_actor),
    service: AssessmentService = Depends(get_assessment_service),
) -> ResponseDict:
    test = await service.close_test(actor, test_id)
    return APIResponse.success(test.to_dict(), message="Test closed")


@router.post("/tests/{test_id}/archive")
async def archive_test_endpoint(
    test_id: str,
    actor: Actor = Depends(get_current_actor),
    service: AssessmentService = Depends(get_assessment_service),
) -> ResponseDict:
    test = await service.archive_test(actor, test_id)
    return APIResponse.success(test.to_dict(), message="Test archived")


@router.get("/tests/{test_id}/statistics")
async def get_test_statistics_endpoint(
    test_id: str,
    actor: Actor = Depends(get_current_actor),
    service: AssessmentService = Depends(get_assessment_service),
) -> ResponseDict:
    stats = await service.get_test_statistics(actor, test_id)
    return APIResponse.success(stats.to_dict())


@router.get("/tests/{test_id}/report")
async def export_test_report_endpoint(
    test_id: str,
    actor: Actor = Depends(get_current_actor),
    service: AssessmentService = Depends(get_assessment_service),
) -> ResponseDict:
    return APIResponse.success(await service.export_test_report(actor, test_id))


# -------------------------------------------------------------- attempts

@router.get("/tests/{test_id}/attempts")
async def list_attempts_endpoint(
    test_id: str,
    actor: Actor = Depends(get_current_actor),
    service: AssessmentService = Depends(get_assessment_service),
) -> ResponseDict:
    return APIResponse.success(await service.list_attempts(actor, test_id))


@router.post("/tests/{test_id}/attempts", status_code=status.HTTP_201_CREATED)
async def start_attempt_endpoint(
    test_id: str,
    actor: Actor = Depends(get_current_actor),
    service: AssessmentService = Depends(get_assessment_service),
) -> ResponseDict:
    """Start an attempt for the calling student."""
    attempt = await service.start_attempt(actor, test_id)
    return APIResponse.success(attempt.to_dict(), message="Attempt started")


@router.get("/attempts/{attempt_id}")
async def get_attempt_endpoint(
    attempt_id: str,
    actor: Actor = Depends(get_current_actor),
    service: AssessmentService = Depends(get_assessment_service),
) -> ResponseDict:
    attempt = await service.get_attempt(actor, attempt_id)
    return APIResponse.success(attempt.to_dict(include_marks=attempt.student_id != actor.id))


@router.get("/attempts/{attempt_id}/paper")
async def get_attempt_paper_endpoint(
    attempt_id: str,
    actor: Actor = Depends(get_current_actor),
    service: AssessmentService = Depends(get_assessment_service),
) -> ResponseDict:
    """Questions of an open attempt, without answer keys."""
    return APIResponse.success(await service.get_attempt_paper(actor, attempt_id))


@router.post("/attempts/{attempt_id}/submit")
async def submit_attempt_endpoint(
    attempt_id: str,
    body: SubmitRequest,
    actor: Actor = Depends(get_current_actor),
    service: AssessmentService = Depends(get_assessment_service),
) -> ResponseDict:
    attempt = await service.submit_attempt(
        actor,
        attempt_id,
        [a.model_dump() for a in body.answers],
        time_spent=body.time_spent,
    )
    result = await service.get_attempt_result(actor, attempt.id)
    return APIResponse.success(result, message="Attempt submitted")


@router.get("/attempts/{attempt_id}/result")
async def get_attempt_result_endpoint(
    attempt_id: str,
    actor: Actor = Depends(get_current_actor),
    service: AssessmentService = Depends(get_assessment_service),
) -> ResponseDict:
    return APIResponse.success(await service.get_attempt_result(actor, attempt_id))


@router.post("/attempts/{attempt_id}/grade")
async def grade_attempt_endpoint(
    attempt_id: str,
    body: GradeRequest,
    actor: Actor = Depends(get_current_actor),
    service: AssessmentService = Depends(get_assessment_service),
) -> ResponseDict:
    """Apply a reviewer's marks; pass expected_version to guard against concurrent graders."""
    attempt = await service.grade_attempt(
        actor,
        attempt_id,
        [(g.question_number, g.marks_awarded) for g in body.question_grades],
        feedback=body.feedback,
        expected_version=body.expected_version,
        finalize=body.finalize,
    )
    return APIResponse.success(attempt.to_dict(), message="Attempt graded")
