"""
Assessment Service

The programmatic surface of the engine. Every operation authorizes the
actor once, runs in a single database transaction, and emits an audit
event for the state transition it performs.
"""

import dataclasses
import datetime
import random
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from eduassess.common.error_handling import (
    AssessmentEngineError,
    AttemptNotFoundError,
    ConflictError,
    ErrorCode,
    ForbiddenError,
    TestNotFoundError,
    TransientDatabaseError,
    ValidationError,
    log_error,
)
from eduassess.common.logger import LoggerAdapter, app_logger, log_execution_time
from eduassess.assessments import lifecycle
from eduassess.assessments.integrations import (
    AccessPolicy,
    Actor,
    ActorRole,
    AuditLogger,
    Capability,
    CatalogService,
    EnrollmentService,
)
from eduassess.assessments.models import (
    Attempt,
    AttemptAnswer,
    AttemptStatus,
    Question,
    TestDefinition,
    TestStatus,
    utcnow,
)
from eduassess.assessments.repositories import SQLAttemptRepository, SQLTestRepository
from eduassess.assessments.scoring import QuestionGrade, ScoringEngine
from eduassess.assessments.statistics import StatisticsAggregator, TestStatistics

logger = app_logger.getChild("assessments.services")

# Fields set by the engine rather than the author
_ENGINE_FIELDS = frozenset({
    "id", "teacher_id", "teacher_name", "course_id", "course_name", "subject_name",
    "module_number", "module_name", "status", "is_active", "total_attempts",
    "avg_score", "pass_rate", "created_at", "updated_at", "version",
})
_DEFINITION_FIELDS = frozenset(f.name for f in dataclasses.fields(TestDefinition))


class _UnitOfWork:
    """Repositories bound to one session and transaction."""

    def __init__(self, session):
        self.session = session
        self.tests = SQLTestRepository(session)
        self.attempts = SQLAttemptRepository(session)


class AssessmentService:
    """
    Facade over the assessment engine.

    Args:
        session_factory: Produces one AsyncSession per operation
        enrollment: Audience and capability collaborator
        catalog: Subject catalog collaborator
        audit: Audit emitter
        access: Capability check; defaults to a policy over ``enrollment``
        clock: Source of the current time (aware UTC)
        submission_grace_seconds: Slack before a submission counts as late
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        enrollment: EnrollmentService,
        catalog: CatalogService,
        audit: Optional[AuditLogger] = None,
        access: Optional[AccessPolicy] = None,
        clock: Callable[[], datetime.datetime] = utcnow,
        submission_grace_seconds: int = 0,
        scoring: Optional[ScoringEngine] = None,
    ):
        self.session_factory = session_factory
        self.enrollment = enrollment
        self.catalog = catalog
        self.audit = audit or AuditLogger()
        self.access = access or AccessPolicy(enrollment)
        self.clock = clock
        self.submission_grace_seconds = submission_grace_seconds
        self.scoring = scoring or ScoringEngine()
        self.aggregator = StatisticsAggregator()

    # ------------------------------------------------------------------ helpers

    @asynccontextmanager
    async def _unit_of_work(self, operation: str) -> AsyncIterator[_UnitOfWork]:
        """Run the body in one transaction and translate store failures."""
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    yield _UnitOfWork(session)
        except IntegrityError as e:
            raise ConflictError(
                f"Concurrent modification during {operation}",
                code=ErrorCode.CONFLICT,
                details={"operation": operation},
                cause=e,
            ) from e
        except StaleDataError as e:
            raise ConflictError(
                f"The record changed during {operation}; refetch and retry",
                code=ErrorCode.STALE_VERSION,
                details={"operation": operation},
                cause=e,
            ) from e
        except OperationalError as e:
            raise TransientDatabaseError(operation, cause=e) from e

    @asynccontextmanager
    async def _audited(
        self,
        action: str,
        actor: Actor,
        resource_type: str,
        resource_id: Optional[str],
        **details: Any,
    ) -> AsyncIterator[Dict[str, Any]]:
        """
        Emit ``action`` after the body: success when it returns, failure when it raises.
        The yielded dict collects extra details (and may replace the resource id).
        """
        extra: Dict[str, Any] = dict(details)
        try:
            yield extra
        except AssessmentEngineError as e:
            log = LoggerAdapter(logger, {"actor_id": actor.id, "action": action})
            log.info(f"{action} rejected for {resource_type} {resource_id}: {e.code.value}")
            self.audit.emit(
                action, actor, resource_type, extra.pop("resource_id", resource_id),
                success=False, error=e.code.value, **extra,
            )
            raise
        except Exception as e:
            log_error(e, context={"action": action, "resource_id": resource_id})
            self.audit.emit(
                action, actor, resource_type, extra.pop("resource_id", resource_id),
                success=False, error=type(e).__name__, **extra,
            )
            raise
        self.audit.emit(action, actor, resource_type, extra.pop("resource_id", resource_id), **extra)

    async def _load_test(
        self, uow: _UnitOfWork, test_id: str, for_update: bool = False
    ) -> TestDefinition:
        """Load a live test and apply lazy status transitions, persisting any change."""
        test = await uow.tests.get(test_id, for_update=for_update)
        if test is None or not test.is_active:
            raise TestNotFoundError(test_id)
        await self._refresh(uow, test)
        return test

    async def _refresh(self, uow: _UnitOfWork, test: TestDefinition) -> None:
        if lifecycle.refresh_status(test, self.clock()) is not None:
            await uow.tests.save(test)

    async def _load_attempt(
        self, uow: _UnitOfWork, attempt_id: str, for_update: bool = False
    ) -> Attempt:
        attempt = await uow.attempts.get(attempt_id, for_update=for_update)
        if attempt is None:
            raise AttemptNotFoundError(attempt_id)
        return attempt

    async def _recompute_statistics(self, uow: _UnitOfWork, test: TestDefinition) -> TestStatistics:
        attempts = await uow.attempts.list_for_test(test.id)
        stats = self.aggregator.compute(test, attempts)
        await uow.tests.update_statistics(test.id, stats)
        test.total_attempts = stats.total_attempts
        test.avg_score = stats.avg_score
        test.pass_rate = stats.pass_rate
        return stats

    @staticmethod
    def _parse_questions(raw: Iterable[Any]) -> List[Question]:
        questions = []
        for item in raw or []:
            if isinstance(item, Question):
                questions.append(item)
            elif isinstance(item, Mapping):
                questions.append(Question.from_dict(dict(item)))
            else:
                raise ValidationError("Invalid question", errors={"questions": "each question must be an object"})
        return questions

    def _require_owner(self, actor: Actor, attempt: Attempt) -> None:
        if attempt.student_id != actor.id:
            raise AttemptNotFoundError(attempt.id)

    # ------------------------------------------------------------- authoring

    @log_execution_time(logger)
    async def create_test(self, actor: Actor, definition: Mapping[str, Any]) -> TestDefinition:
        """
        Create a draft test.

        Catalog context for ``subject_content_id`` is copied onto the test.
        When questions are given and ``total_marks`` is omitted, the total is
        the sum of question marks.

        Raises:
            ForbiddenError: If the actor may not author tests or does not teach the subject
            ValidationError: If the definition breaks an invariant
        """
        async with self._audited("test.created", actor, "test", None) as audit:
            await self.access.require(actor, Capability.EDIT, None)

            data = dict(definition)
            invalid = sorted((set(data) & _ENGINE_FIELDS) | (set(data) - _DEFINITION_FIELDS))
            if invalid:
                raise ValidationError(
                    "Invalid test definition",
                    errors={name: "cannot be set when creating a test" for name in invalid},
                )
            data["questions"] = self._parse_questions(data.get("questions"))
            if data["questions"] and data.get("total_marks") is None:
                data["total_marks"] = float(sum(q.marks for q in data["questions"]))
            elif data.get("total_marks") is None:
                data["total_marks"] = 0.0

            subject_id = data.get("subject_content_id")
            if subject_id:
                context = await self.catalog.get_subject_context(subject_id)
                if context is None:
                    raise ValidationError(
                        "Unknown subject", errors={"subject_content_id": f"subject {subject_id} not found"}
                    )
                if actor.role != ActorRole.ADMIN and context.teacher_ids and actor.id not in context.teacher_ids:
                    raise ForbiddenError(
                        "Subject is not assigned to you",
                        details={"subject_content_id": subject_id, "actor_id": actor.id},
                    )
                data.update(
                    course_id=context.course_id,
                    course_name=context.course_name,
                    subject_name=context.subject_name,
                    module_number=context.module_number,
                    module_name=context.module_name,
                )

            now = self.clock()
            try:
                test = TestDefinition(
                    teacher_id=actor.id,
                    teacher_name=actor.name,
                    status=TestStatus.DRAFT,
                    created_at=now,
                    updated_at=now,
                    **data,
                )
            except TypeError as e:
                raise ValidationError("Invalid test definition", cause=e) from e
            test.validate()
            audit["resource_id"] = test.id

            async with self._unit_of_work("create_test") as uow:
                await uow.tests.add(test)

            logger.info(f"Test {test.id} created by {actor.id} with {test.total_questions} questions")
            return test

    @log_execution_time(logger)
    async def update_test(self, actor: Actor, test_id: str, patch: Mapping[str, Any]) -> TestDefinition:
        """
        Patch a test.

        The attempt count is read with the test row locked, in the same
        transaction as the write. A test with any attempt rejects every
        edit before the patch is looked at.

        Raises:
            ConflictError: If the test has attempts or its status forbids the edit
            ValidationError: If the patched test breaks an invariant
        """
        async with self._audited("test.updated", actor, "test", test_id, fields=sorted(patch)):
            async with self._unit_of_work("update_test") as uow:
                test = await self._load_test(uow, test_id, for_update=True)
                await self.access.require(actor, Capability.EDIT, test)

                attempt_count = await uow.attempts.count_for_test(test.id)
                lifecycle.ensure_editable(test, patch.keys(), attempt_count)

                changes = dict(patch)
                if "questions" in changes:
                    changes["questions"] = self._parse_questions(changes["questions"])
                    if "total_marks" not in changes and changes["questions"]:
                        changes["total_marks"] = float(sum(q.marks for q in changes["questions"]))

                try:
                    updated = dataclasses.replace(test, **changes, updated_at=self.clock())
                except TypeError as e:
                    raise ValidationError("Invalid test update", cause=e) from e

                if updated.status in lifecycle.PUBLISHED_STATUSES:
                    errors = lifecycle.publish_errors(updated, updated.status)
                    if errors:
                        raise ValidationError("Invalid test update", errors=errors)
                else:
                    updated.validate()

                await uow.tests.save(updated)

            logger.info(f"Test {test_id} updated by {actor.id}: {sorted(patch)}")
            return updated

    async def _transition(
        self,
        actor: Actor,
        test_id: str,
        target: TestStatus,
        action: str,
    ) -> TestDefinition:
        async with self._audited(action, actor, "test", test_id, to=target.value) as audit:
            async with self._unit_of_work(action) as uow:
                test = await self._load_test(uow, test_id, for_update=True)
                await self.access.require(actor, Capability.EDIT, test)

                previous = test.status
                audit["from"] = previous.value
                if previous == target:
                    return test

                attempt_count = await uow.attempts.count_for_test(test.id)
                lifecycle.ensure_transition(test, target, attempt_count)

                test.status = target
                test.updated_at = self.clock()
                await uow.tests.save(test)

                if target == TestStatus.ARCHIVED:
                    deactivated = await uow.attempts.deactivate_for_test(test.id)
                    audit["attempts_deactivated"] = deactivated

            logger.info(f"Test {test_id} moved from {previous.value} to {target.value} by {actor.id}")
            return test

    async def publish_test(self, actor: Actor, test_id: str) -> TestDefinition:
        """Make a draft or scheduled test active."""
        return await self._transition(actor, test_id, TestStatus.ACTIVE, "test.published")

    async def schedule_test(self, actor: Actor, test_id: str) -> TestDefinition:
        """Schedule a draft test; it becomes active at its start time."""
        return await self._transition(actor, test_id, TestStatus.SCHEDULED, "test.scheduled")

    async def unpublish_test(self, actor: Actor, test_id: str) -> TestDefinition:
        """Return a scheduled test without attempts to draft."""
        return await self._transition(actor, test_id, TestStatus.DRAFT, "test.status_changed")

    async def close_test(self, actor: Actor, test_id: str) -> TestDefinition:
        return await self._transition(actor, test_id, TestStatus.CLOSED, "test.status_changed")

    async def archive_test(self, actor: Actor, test_id: str) -> TestDefinition:
        """Archive a test; its attempts are kept but marked inactive."""
        return await self._transition(actor, test_id, TestStatus.ARCHIVED, "test.status_changed")

    async def delete_test(self, actor: Actor, test_id: str) -> None:
        """
        Soft-delete a test.

        Raises:
            ConflictError: If the test is active
        """
        async with self._audited("test.deleted", actor, "test", test_id):
            async with self._unit_of_work("delete_test") as uow:
                test = await self._load_test(uow, test_id, for_update=True)
                await self.access.require(actor, Capability.EDIT, test)
                if test.status == TestStatus.ACTIVE:
                    raise ConflictError(
                        "Cannot delete an active test; close it first",
                        code=ErrorCode.INVALID_TRANSITION,
                        details={"test_id": test_id},
                    )
                test.is_active = False
                test.updated_at = self.clock()
                await uow.tests.save(test)
            logger.info(f"Test {test_id} deleted by {actor.id}")

    # ---------------------------------------------------------------- reading

    async def get_test(self, actor: Actor, test_id: str) -> Dict[str, Any]:
        """Get a test. Actors without edit or grade capability get it without answer keys."""
        async with self._unit_of_work("get_test") as uow:
            test = await self._load_test(uow, test_id)
            granted = await self.access.require(actor, Capability.VIEW, test)
        include_answers = bool(granted & {Capability.EDIT, Capability.GRADE})
        if not include_answers:
            lifecycle.ensure_visible_to_students(test, test_id)
        return test.to_dict(include_answers=include_answers)

    async def list_tests(
        self,
        actor: Actor,
        status: Optional[TestStatus] = None,
        include_archived: bool = False,
    ) -> Dict[str, Any]:
        """
        List the tests authored by ``actor`` (every test for admins) with a summary.

        Archived tests are hidden unless ``include_archived`` is set or they
        are asked for by status.
        """
        await self.access.require(actor, Capability.EDIT, None)
        teacher_id = None if actor.role == ActorRole.ADMIN else actor.id
        async with self._unit_of_work("list_tests") as uow:
            tests = await uow.tests.list_for_teacher(teacher_id)
            for test in tests:
                await self._refresh(uow, test)

        summary = {s.value: 0 for s in TestStatus}
        for test in tests:
            summary[test.status.value] += 1
        summary["total"] = len(tests)
        summary["total_questions"] = sum(t.total_questions for t in tests)

        if status is not None:
            tests = [t for t in tests if t.status == status]
        elif not include_archived:
            tests = [t for t in tests if t.status != TestStatus.ARCHIVED]

        return {"tests": [t.to_dict() for t in tests], "summary": summary}

    async def list_available_tests(self, actor: Actor) -> List[Dict[str, Any]]:
        """
        List the published tests a student is eligible for, with their
        attempt history and whether a new attempt can start now.
        """
        now = self.clock()
        async with self._unit_of_work("list_available_tests") as uow:
            tests = await uow.tests.list_published()
            for test in tests:
                await self._refresh(uow, test)
            visible = [
                t for t in tests
                if t.status in lifecycle.PUBLISHED_STATUSES and await self.enrollment.is_eligible(t, actor.id)
            ]
            attempts = await uow.attempts.list_by_student(actor.id, [t.id for t in visible])

        by_test: Dict[str, List[Attempt]] = {}
        for attempt in attempts:
            by_test.setdefault(attempt.test_id, []).append(attempt)

        results = []
        for test in visible:
            mine = by_test.get(test.id, [])
            open_attempt = next((a for a in mine if a.is_open), None)
            within_window = not (
                (test.start_time and now < test.start_time) or (test.end_time and now > test.end_time)
            )
            can_attempt = (
                test.status == TestStatus.ACTIVE
                and within_window
                and open_attempt is None
                and len(mine) < test.effective_max_attempts
            )
            entry = test.to_dict(include_answers=False)
            entry.pop("questions")
            entry.update(
                attempts_made=len(mine),
                attempts_remaining=max(0, test.effective_max_attempts - len(mine)),
                in_progress_attempt_id=open_attempt.id if open_attempt else None,
                last_attempt_status=mine[-1].status.value if mine else None,
                can_attempt=can_attempt,
            )
            results.append(entry)
        return results

    # ---------------------------------------------------------------- attempts

    @log_execution_time(logger)
    async def start_attempt(self, actor: Actor, test_id: str) -> Attempt:
        """
        Start a new attempt for the calling student.

        Admission runs in one transaction; the unique constraints on the
        attempt table turn a lost race into a ConflictError.
        """
        async with self._audited("attempt.started", actor, "attempt", None, test_id=test_id) as audit:
            if not actor.is_student:
                raise ForbiddenError("Only students can attempt tests", details={"actor_id": actor.id})

            async with self._unit_of_work("start_attempt") as uow:
                test = await uow.tests.get(test_id, for_update=True)
                if test is not None and test.is_active:
                    await self._refresh(uow, test)
                now = self.clock()
                eligible = False
                if test is not None and test.is_active and test.status in lifecycle.PUBLISHED_STATUSES:
                    eligible = await self.enrollment.is_eligible(test, actor.id)
                prior = await uow.attempts.list_for_student(test_id, actor.id)
                number = lifecycle.check_admission(test, test_id, actor.id, now, eligible, prior)

                attempt = Attempt(
                    test_id=test_id,
                    student_id=actor.id,
                    student_name=actor.name,
                    student_email=actor.email,
                    attempt_number=number,
                    started_at=now,
                )
                audit["resource_id"] = attempt.id
                await uow.attempts.add(attempt)

            logger.info(f"Attempt {attempt.id} (#{number}) started on test {test_id} by {actor.id}")
            return attempt

    async def get_attempt_paper(self, actor: Actor, attempt_id: str) -> Dict[str, Any]:
        """
        The delivery view of an open attempt: questions without answer keys,
        shuffled per attempt when the test asks for it.
        """
        async with self._unit_of_work("get_attempt_paper") as uow:
            attempt = await self._load_attempt(uow, attempt_id)
            self._require_owner(actor, attempt)
            test = await self._load_test(uow, attempt.test_id)
        if not attempt.is_open:
            raise ConflictError(
                "Attempt has already been submitted",
                details={"attempt_id": attempt_id, "status": attempt.status.value},
            )

        rng = random.Random(attempt.id)
        questions = [q.to_dict(include_answers=False) for q in test.questions]
        if test.shuffle_questions:
            rng.shuffle(questions)
        if test.shuffle_options:
            for question in questions:
                rng.shuffle(question["options"])

        deadline = lifecycle.attempt_deadline(test, attempt)
        return {
            "attempt": attempt.to_dict(include_marks=False),
            "test": {
                "id": test.id,
                "title": test.title,
                "description": test.description,
                "instructions": test.instructions,
                "test_type": test.test_type.value,
                "total_marks": test.total_marks,
                "duration": test.duration,
                "is_untimed": test.is_untimed,
                "pdf_url": test.pdf_url,
                "pdf_file_name": test.pdf_file_name,
            },
            "questions": questions,
            "deadline": deadline.isoformat() if deadline else None,
        }

    @log_execution_time(logger)
    async def submit_attempt(
        self,
        actor: Actor,
        attempt_id: str,
        answers: Sequence[Any],
        time_spent: Optional[int] = None,
    ) -> Attempt:
        """
        Submit an open attempt and grade it.

        Objective answers are graded at once. The attempt is evaluated when
        nothing is left for a reviewer, and stays submitted otherwise.
        Submissions past the deadline are accepted and flagged late.
        """
        async with self._audited("attempt.submitted", actor, "attempt", attempt_id):
            async with self._unit_of_work("submit_attempt") as uow:
                attempt = await self._load_attempt(uow, attempt_id, for_update=True)
                self._require_owner(actor, attempt)
                test = await uow.tests.get(attempt.test_id)
                if test is None or not test.is_active:
                    raise TestNotFoundError(attempt.test_id)
                await self._refresh(uow, test)

                if not attempt.is_open:
                    raise ConflictError(
                        "Attempt has already been submitted",
                        details={"attempt_id": attempt_id, "status": attempt.status.value},
                    )
                if test.status == TestStatus.ARCHIVED:
                    raise ConflictError("Test has been archived", details={"test_id": test.id})

                now = self.clock()
                graded = self.scoring.score_submission(test, [_as_answer(a) for a in answers])
                attempt.answers = graded
                attempt.total_score, attempt.percentage = self.scoring.compute_totals(test, graded)
                attempt.status = (
                    AttemptStatus.EVALUATED
                    if test.questions and self.scoring.is_fully_graded(test, graded)
                    else AttemptStatus.SUBMITTED
                )
                attempt.submitted_at = now
                elapsed = max(0, int((now - attempt.started_at).total_seconds()))
                # client-reported time is capped at the elapsed time
                attempt.time_spent = elapsed if time_spent is None else min(max(0, int(time_spent)), elapsed)
                attempt.is_late = lifecycle.is_late_submission(
                    test, attempt, now, self.submission_grace_seconds
                )
                await uow.attempts.save(attempt)
                await self._recompute_statistics(uow, test)

            logger.info(
                f"Attempt {attempt_id} submitted: {attempt.status.value}, "
                f"score {attempt.total_score}/{test.total_marks}{' (late)' if attempt.is_late else ''}"
            )
            return attempt

    @log_execution_time(logger)
    async def grade_attempt(
        self,
        actor: Actor,
        attempt_id: str,
        question_grades: Iterable[QuestionGrade],
        feedback: Optional[str] = None,
        expected_version: Optional[int] = None,
        finalize: bool = True,
    ) -> Attempt:
        """
        Apply a reviewer's marks to a submitted attempt.

        Marks overwrite earlier ones. With ``finalize`` (the default) answers
        left ungraded get zero and the attempt becomes evaluated; otherwise it
        becomes evaluated only once no answer is pending.

        Raises:
            ConflictError: If the attempt is still open, or ``expected_version``
                does not match
            NotFoundError: If a grade names an unknown question
        """
        grades = [(int(number), marks) for number, marks in question_grades]
        async with self._audited("attempt.graded", actor, "attempt", attempt_id, questions=len(grades)):
            async with self._unit_of_work("grade_attempt") as uow:
                attempt = await self._load_attempt(uow, attempt_id, for_update=True)
                test = await uow.tests.get(attempt.test_id)
                if test is None or not test.is_active:
                    raise TestNotFoundError(attempt.test_id)
                await self.access.require(actor, Capability.GRADE, test)

                if expected_version is not None and expected_version != attempt.version:
                    raise ConflictError(
                        "Attempt was modified by someone else; refetch and retry",
                        code=ErrorCode.STALE_VERSION,
                        details={"attempt_id": attempt_id, "expected": expected_version, "actual": attempt.version},
                    )
                if attempt.is_open:
                    raise ConflictError(
                        "Cannot grade an attempt that is still in progress",
                        details={"attempt_id": attempt_id},
                    )

                answers = self.scoring.apply_grades(test, attempt.answers, grades, finalize=finalize)
                attempt.answers = answers
                attempt.total_score, attempt.percentage = self.scoring.compute_totals(test, answers)
                if self.scoring.is_fully_graded(test, answers):
                    attempt.status = AttemptStatus.EVALUATED
                if feedback is not None:
                    attempt.feedback = feedback
                attempt.graded_at = self.clock()
                attempt.graded_by = actor.id
                await uow.attempts.save(attempt)
                await self._recompute_statistics(uow, test)

            logger.info(f"Attempt {attempt_id} graded by {actor.id}: {attempt.status.value}, score {attempt.total_score}")
            return attempt

    async def get_attempt(self, actor: Actor, attempt_id: str) -> Attempt:
        """Get an attempt, for its student or a reviewer of its test."""
        async with self._unit_of_work("get_attempt") as uow:
            attempt = await self._load_attempt(uow, attempt_id)
            if attempt.student_id != actor.id:
                test = await uow.tests.get(attempt.test_id)
                if test is None:
                    raise AttemptNotFoundError(attempt_id)
                await self.access.require(actor, Capability.GRADE, test)
        return attempt

    async def get_attempt_result(self, actor: Actor, attempt_id: str) -> Dict[str, Any]:
        """
        The result view of an attempt.

        Students see marks only when the test shows results immediately or
        the attempt is evaluated, and see answer keys only when the test
        shows correct answers. Reviewers always see everything.
        """
        async with self._unit_of_work("get_attempt_result") as uow:
            attempt = await self._load_attempt(uow, attempt_id)
            test = await uow.tests.get(attempt.test_id)
            if test is None:
                raise AttemptNotFoundError(attempt_id)
            reviewer = attempt.student_id != actor.id
            if reviewer:
                await self.access.require(actor, Capability.GRADE, test)

        if attempt.is_open:
            raise ConflictError("Attempt has not been submitted", details={"attempt_id": attempt_id})

        results_visible = reviewer or test.show_results_immediately or attempt.status == AttemptStatus.EVALUATED
        answers_visible = reviewer or (results_visible and test.show_correct_answers)

        result: Dict[str, Any] = {
            "attempt": attempt.to_dict(include_marks=results_visible),
            "test": {
                "id": test.id,
                "title": test.title,
                "total_marks": test.total_marks,
                "passing_marks": test.passing_marks,
            },
            "results_available": results_visible,
        }
        if results_visible and test.passing_marks is not None and attempt.status == AttemptStatus.EVALUATED:
            result["passed"] = attempt.total_score >= test.passing_marks
        if answers_visible:
            result["questions"] = [q.to_dict(include_answers=True) for q in test.questions]
        return result

    async def list_attempts(self, actor: Actor, test_id: str) -> Dict[str, Any]:
        """List the attempts of a test with completion counts."""
        async with self._unit_of_work("list_attempts") as uow:
            test = await self._load_test(uow, test_id)
            await self.access.require(actor, Capability.GRADE, test)
            attempts = await uow.attempts.list_for_test(test_id)

        stats = {
            "total": len(attempts),
            "completed": sum(1 for a in attempts if a.is_completed),
            "in_progress": sum(1 for a in attempts if a.is_open),
            "pending_review": sum(1 for a in attempts if a.status == AttemptStatus.SUBMITTED),
        }
        return {"attempts": [a.to_dict() for a in attempts], "stats": stats}

    # ------------------------------------------------------------ statistics

    async def get_test_statistics(self, actor: Actor, test_id: str) -> TestStatistics:
        """Recompute statistics from the full attempt set and refresh the cache."""
        async with self._unit_of_work("get_test_statistics") as uow:
            test = await self._load_test(uow, test_id)
            await self.access.require(actor, Capability.GRADE, test)
            return await self._recompute_statistics(uow, test)

    async def export_test_report(self, actor: Actor, test_id: str) -> Dict[str, Any]:
        """
        Read-only report for export: the test, its attempts and freshly
        computed statistics. avg_score and pass_rate may be None.
        """
        async with self._unit_of_work("export_test_report") as uow:
            test = await uow.tests.get(test_id)
            if test is None or not test.is_active:
                raise TestNotFoundError(test_id)
            await self.access.require(actor, Capability.GRADE, test)
            attempts = await uow.attempts.list_for_test(test_id)
        stats = self.aggregator.compute(test, attempts)
        return {
            "test": test.to_dict(),
            "attempts": [a.to_dict() for a in attempts],
            "statistics": stats.to_dict(),
            "generated_at": self.clock().isoformat(),
        }


def _as_answer(item: Any) -> AttemptAnswer:
    if isinstance(item, AttemptAnswer):
        return AttemptAnswer(question_number=item.question_number, answer=item.answer)
    if isinstance(item, Mapping):
        if "question_number" not in item:
            raise ValidationError("Invalid submission", errors={"answers": "each answer needs a question_number"})
        return AttemptAnswer(question_number=item["question_number"], answer=item.get("answer"))
    if isinstance(item, tuple) and len(item) == 2:
        return AttemptAnswer(question_number=item[0], answer=item[1])
    raise ValidationError("Invalid submission", errors={"answers": "each answer must be an object"})
