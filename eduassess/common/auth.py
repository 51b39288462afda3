"""
Authentication dependencies for the assessment API.

The bearer token is resolved to an Actor by the identity service held on
the application state.
"""

from typing import Optional

from fastapi import Header, HTTPException, Request, status

from eduassess.assessments.integrations import Actor, IdentityService
from eduassess.common.logger import app_logger

logger = app_logger.getChild("auth")


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_actor(
    request: Request,
    authorization: Optional[str] = Header(None),
) -> Actor:
    """
    Get the calling actor from the authorization header.

    Args:
        request: The incoming request
        authorization: Authorization header value

    Returns:
        The authenticated Actor

    Raises:
        HTTPException: If authentication fails
    """
    if not authorization:
        raise _unauthorized("Missing authorization header")

    try:
        scheme, token = authorization.split()
    except ValueError:
        raise _unauthorized("Invalid authorization header format")
    if scheme.lower() != "bearer":
        raise _unauthorized("Invalid authentication scheme")

    identity: IdentityService = request.app.state.identity
    actor = await identity.authenticate(token)
    if actor is None:
        logger.info("Rejected request with an unknown token")
        raise _unauthorized("Invalid or expired token")
    return actor
