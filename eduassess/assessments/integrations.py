"""
External Collaborators

Interfaces for the services the engine consumes without owning them:
identity, enrollment, the subject catalog and the audit log. Each
interface ships with an in-memory implementation used for local wiring
and tests.
"""

import asyncio
import enum
import datetime
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Set

from eduassess.common.error_handling import ErrorCode, ForbiddenError
from eduassess.common.logger import app_logger
from eduassess.assessments.models import TargetAudience, TestDefinition, utcnow

logger = app_logger.getChild("assessments.integrations")


class ActorRole(enum.Enum):
    """Role of the caller."""
    STUDENT = "student"
    TEACHER = "teacher"
    ADMIN = "admin"


class Capability(enum.Enum):
    """What an actor may do with a test."""
    EDIT = "edit"
    GRADE = "grade"
    VIEW = "view"


@dataclass(frozen=True)
class Actor:
    """The authenticated caller of an engine operation."""

    id: str
    role: ActorRole
    name: Optional[str] = None
    email: Optional[str] = None

    @property
    def is_student(self) -> bool:
        return self.role == ActorRole.STUDENT


@dataclass(frozen=True)
class SubjectContext:
    """Catalog data copied onto a test at creation time."""

    subject_content_id: str
    course_id: Optional[str] = None
    course_name: Optional[str] = None
    subject_name: Optional[str] = None
    module_number: Optional[int] = None
    module_name: Optional[str] = None
    teacher_ids: FrozenSet[str] = frozenset()


@dataclass
class AuditEvent:
    """One audit record describing a state transition."""

    action: str
    actor_id: str
    actor_role: str
    resource_type: str
    resource_id: Optional[str]
    success: bool = True
    timestamp: datetime.datetime = field(default_factory=utcnow)
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action,
            "actor_id": self.actor_id,
            "actor_role": self.actor_role,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "success": self.success,
            "timestamp": self.timestamp.isoformat(),
            "details": self.details,
        }


class IdentityService(ABC):
    """Resolves bearer tokens to actors."""

    @abstractmethod
    async def authenticate(self, token: str) -> Optional[Actor]:
        """
        Resolve a token.

        Args:
            token: Bearer token from the request

        Returns:
            The actor, or None when the token is unknown
        """
        pass


class EnrollmentService(ABC):
    """Audience membership and per-test capabilities."""

    @abstractmethod
    async def is_eligible(self, test: TestDefinition, student_id: str) -> bool:
        """
        Decide whether a student belongs to the audience of a test.

        Args:
            test: The test definition
            student_id: The student

        Returns:
            True if the student may take the test
        """
        pass

    @abstractmethod
    async def get_capabilities(
        self, actor: Actor, test: Optional[TestDefinition]
    ) -> Set[Capability]:
        """
        Get what ``actor`` may do with ``test``.

        Args:
            actor: The caller
            test: The test, or None for the authoring of a new test

        Returns:
            Set of granted capabilities
        """
        pass

    @abstractmethod
    async def enrolled_course_ids(self, student_id: str) -> Set[str]:
        """Get the ids of the courses a student is enrolled in."""
        pass


class CatalogService(ABC):
    """Subject and module catalog."""

    @abstractmethod
    async def get_subject_context(self, subject_content_id: str) -> Optional[SubjectContext]:
        """
        Look up catalog context for a subject content id.

        Returns:
            The context, or None when the subject is unknown
        """
        pass


class AuditSink(ABC):
    """Destination of audit events."""

    @abstractmethod
    async def write(self, event: AuditEvent) -> None:
        pass


class InMemoryIdentityService(IdentityService):
    """Token table kept in memory."""

    def __init__(self, tokens: Optional[Mapping[str, Actor]] = None):
        self._tokens: Dict[str, Actor] = dict(tokens or {})

    def register(self, token: str, actor: Actor) -> None:
        self._tokens[token] = actor

    async def authenticate(self, token: str) -> Optional[Actor]:
        return self._tokens.get(token)


class InMemoryEnrollmentService(EnrollmentService):
    """
    Enrollment data kept in memory.

    Admins hold every capability. Teachers may author tests, and hold
    edit, grade and view on the tests they own. Students hold view on the
    tests whose audience includes them.
    """

    def __init__(
        self,
        student_batches: Optional[Mapping[str, Iterable[str]]] = None,
        student_courses: Optional[Mapping[str, Iterable[str]]] = None,
    ):
        self._batches = {k: set(v) for k, v in (student_batches or {}).items()}
        self._courses = {k: set(v) for k, v in (student_courses or {}).items()}

    def enroll(self, student_id: str, course_id: Optional[str] = None, batch_id: Optional[str] = None) -> None:
        if course_id:
            self._courses.setdefault(student_id, set()).add(course_id)
        if batch_id:
            self._batches.setdefault(student_id, set()).add(batch_id)

    async def enrolled_course_ids(self, student_id: str) -> Set[str]:
        return set(self._courses.get(student_id, set()))

    async def is_eligible(self, test: TestDefinition, student_id: str) -> bool:
        if test.target_audience == TargetAudience.SPECIFIC:
            return student_id in test.student_ids
        if test.target_audience == TargetAudience.BATCH:
            return bool(self._batches.get(student_id, set()) & set(test.batch_ids))
        if test.course_id:
            return test.course_id in self._courses.get(student_id, set())
        return True

    async def get_capabilities(
        self, actor: Actor, test: Optional[TestDefinition]
    ) -> Set[Capability]:
        if actor.role == ActorRole.ADMIN:
            return set(Capability)
        if actor.role == ActorRole.TEACHER:
            if test is None:
                return {Capability.EDIT}
            if test.teacher_id == actor.id:
                return {Capability.EDIT, Capability.GRADE, Capability.VIEW}
            return set()
        if test is not None and await self.is_eligible(test, actor.id):
            return {Capability.VIEW}
        return set()


class InMemoryCatalogService(CatalogService):
    """Catalog entries kept in memory."""

    def __init__(self, subjects: Optional[Iterable[SubjectContext]] = None):
        self._subjects = {s.subject_content_id: s for s in (subjects or [])}

    def add(self, subject: SubjectContext) -> None:
        self._subjects[subject.subject_content_id] = subject

    async def get_subject_context(self, subject_content_id: str) -> Optional[SubjectContext]:
        return self._subjects.get(subject_content_id)


class LoggingAuditSink(AuditSink):
    """Writes audit events to the application log."""

    def __init__(self):
        self._logger = app_logger.getChild("audit")

    async def write(self, event: AuditEvent) -> None:
        outcome = "success" if event.success else "failure"
        self._logger.info(
            f"{event.action} {event.resource_type}:{event.resource_id} "
            f"by {event.actor_role}:{event.actor_id} ({outcome})",
            extra={"data": event.to_dict()},
        )


class RecordingAuditSink(AuditSink):
    """Keeps audit events in a list."""

    def __init__(self):
        self.events: List[AuditEvent] = []

    async def write(self, event: AuditEvent) -> None:
        self.events.append(event)

    def actions(self) -> List[str]:
        return [e.action for e in self.events]


class AuditLogger:
    """
    Fire-and-forget emitter in front of an AuditSink.

    Each event is written by a background task. A failing sink is logged
    and never reaches the operation that emitted the event.
    """

    def __init__(self, sink: Optional[AuditSink] = None, enabled: bool = True):
        self.sink = sink or LoggingAuditSink()
        self.enabled = enabled
        self._pending: Set[asyncio.Task] = set()

    def emit(
        self,
        action: str,
        actor: Actor,
        resource_type: str,
        resource_id: Optional[str],
        success: bool = True,
        **details: Any,
    ) -> None:
        if not self.enabled:
            return
        event = AuditEvent(
            action=action,
            actor_id=actor.id,
            actor_role=actor.role.value,
            resource_type=resource_type,
            resource_id=resource_id,
            success=success,
            details=details,
        )
        try:
            task = asyncio.get_running_loop().create_task(self._deliver(event))
        except RuntimeError:
            logger.warning(f"No running event loop, audit event {action} dropped")
            return
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, event: AuditEvent) -> None:
        try:
            await self.sink.write(event)
        except Exception as e:
            logger.error(f"Audit delivery failed for {event.action} on {event.resource_id}: {e}")

    async def drain(self) -> None:
        """Wait for every scheduled event to be delivered."""
        while self._pending:
            await asyncio.gather(*list(self._pending))


class AccessPolicy:
    """Single capability check performed at the start of each operation."""

    def __init__(self, enrollment: EnrollmentService):
        self.enrollment = enrollment

    async def capabilities(self, actor: Actor, test: Optional[TestDefinition]) -> Set[Capability]:
        return await self.enrollment.get_capabilities(actor, test)

    async def require(
        self,
        actor: Actor,
        capability: Capability,
        test: Optional[TestDefinition] = None,
    ) -> Set[Capability]:
        """
        Require ``capability`` on ``test``.

        Returns:
            Every capability the actor holds, for finer decisions by the caller

        Raises:
            ForbiddenError: If the capability is missing
        """
        granted = await self.capabilities(actor, test)
        if capability not in granted:
            raise ForbiddenError(
                f"Not allowed to {capability.value} this test",
                code=ErrorCode.FORBIDDEN,
                details={"actor_id": actor.id, "test_id": test.id if test else None},
            )
        return granted
