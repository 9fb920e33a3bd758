"""
FastAPI dependencies for actor resolution and service wiring.

WHY: Every lifecycle operation receives an already-authenticated actor.
These dependencies turn the bearer token into that actor and build the
services with the request-scoped session and the application's
notification sink, so route handlers stay one-liners.
"""

from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.actor import Actor
from app.core.auth import verify_token
from app.core.exceptions import (
    AuthenticationError,
    InsufficientPermissionsError,
    TokenExpiredError,
    TokenInvalidError,
)
from app.dao.user import UserDAO
from app.db.session import get_db
from app.models.user import User
from app.services.amendment_service import AmendmentWorkflow
from app.services.notification_service import NotificationSink, LoggingNotificationSink
from app.services.proposal_service import ProposalWorkflowService
from app.services.request_service import ProjectRequestService
from app.services.signature_service import SignatureCoordinator
from app.services.stage_service import StageProgressTracker


# Format: "Authorization: Bearer <token>"
security = HTTPBearer()
optional_security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Resolve the acting user from the bearer token.

    Raises:
        AuthenticationError: If the token is invalid, expired, or names a
            missing or inactive user
    """
    try:
        payload = verify_token(credentials.credentials)
    except (TokenExpiredError, TokenInvalidError) as e:
        raise AuthenticationError(
            message=str(e),
            status_code=e.status_code,
        )

    user_id = payload.get("user_id")
    if not user_id:
        raise AuthenticationError(message="Invalid token: missing user_id")

    user = await UserDAO(db).get_by_id(user_id)

    if not user:
        raise AuthenticationError(message="User not found", user_id=user_id)

    if not user.is_active:
        raise AuthenticationError(message="User account is inactive", user_id=user_id)

    return user


async def get_current_actor(current_user: User = Depends(get_current_user)) -> Actor:
    """Authenticated user as the value object the services consume."""
    return Actor.from_user(current_user)


async def get_optional_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(optional_security),
    db: AsyncSession = Depends(get_db),
) -> Optional[Actor]:
    """
    Actor for endpoints open to anonymous callers (request intake).

    A token that is present must still be valid.
    """
    if credentials is None:
        return None
    return Actor.from_user(await get_current_user(credentials, db))


async def require_manager(actor: Actor = Depends(get_current_actor)) -> Actor:
    """
    Require a manager-class role.

    Raises:
        InsufficientPermissionsError: If the user is not a manager
    """
    if not actor.is_manager:
        raise InsufficientPermissionsError(
            message="Manager access required",
            user_id=actor.id,
            user_role=actor.role.value,
        )
    return actor


def get_notification_sink(request: Request) -> NotificationSink:
    """
    Notification sink configured on the application.

    WHY: Tests and deployments swap the sink on app.state without touching
    route code. Falls back to the logging sink.
    """
    sink = getattr(request.app.state, "notification_sink", None)
    return sink or LoggingNotificationSink()


# ============================================================================
# Service factories
# ============================================================================


def get_request_service(
    db: AsyncSession = Depends(get_db),
    sink: NotificationSink = Depends(get_notification_sink),
) -> ProjectRequestService:
    return ProjectRequestService(db, sink)


def get_proposal_service(
    db: AsyncSession = Depends(get_db),
    sink: NotificationSink = Depends(get_notification_sink),
) -> ProposalWorkflowService:
    return ProposalWorkflowService(db, sink)


def get_signature_coordinator(
    db: AsyncSession = Depends(get_db),
    sink: NotificationSink = Depends(get_notification_sink),
) -> SignatureCoordinator:
    return SignatureCoordinator(db, sink)


def get_amendment_workflow(
    db: AsyncSession = Depends(get_db),
    sink: NotificationSink = Depends(get_notification_sink),
) -> AmendmentWorkflow:
    return AmendmentWorkflow(db, sink)


def get_stage_tracker(
    db: AsyncSession = Depends(get_db),
    sink: NotificationSink = Depends(get_notification_sink),
) -> StageProgressTracker:
    return StageProgressTracker(db, sink)
