"""
Assessment Engine

This package holds the domain of the engine: test definitions and
attempts, the lifecycle rules, scoring and statistics, persistence, and
the service facade the HTTP router is built on.
"""

from eduassess.assessments.models import (
    Attempt,
    AttemptAnswer,
    AttemptStatus,
    Question,
    QuestionType,
    TestDefinition,
    TestStatus,
    TestType,
)

from eduassess.assessments.integrations import (
    AccessPolicy,
    Actor,
    ActorRole,
    AuditLogger,
    Capability,
)

from eduassess.assessments.repositories import (
    AttemptRepository,
    TestRepository,
)

from eduassess.assessments.services import AssessmentService

__all__ = [
    # Models
    'Attempt',
    'AttemptAnswer',
    'AttemptStatus',
    'Question',
    'QuestionType',
    'TestDefinition',
    'TestStatus',
    'TestType',

    # Collaborators
    'AccessPolicy',
    'Actor',
    'ActorRole',
    'AuditLogger',
    'Capability',

    # Repositories
    'AttemptRepository',
    'TestRepository',

    # Services
    'AssessmentService',
]
