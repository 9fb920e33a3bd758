"""
Project request service.

WHAT: Client intake: submission, lookup, listing, staff status decisions
and soft deletion.

WHY: A request's status is only ever advanced by staff (through the
request transition table) or by proposal acceptance. Clients can submit
and read their own requests but never move them.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.actor import Actor, require_manager
from app.core.config import settings
from app.core.exceptions import (
    AuthorizationError,
    ProjectRequestNotFoundError,
)
from app.core.transitions import EntityKind, assert_transition
from app.dao.project_request import ProjectRequestDAO
from app.models.project_request import ProjectRequest, RequestStatus
from app.services.notification_service import NotificationSink
from app.services.unit_of_work import OperationResult, Page, UnitOfWork, page_window

logger = logging.getLogger(__name__)


class ProjectRequestService:
    """
    Intake request operations.

    Attributes:
        session: Request-scoped session
        sink: Notification sink used after commit
    """

    def __init__(self, session: AsyncSession, sink: Optional[NotificationSink] = None):
        self.session = session
        self.sink = sink
        self.dao = ProjectRequestDAO(session)

    async def _get_visible(self, request_id: int, actor: Actor) -> ProjectRequest:
        request = await self.dao.get_active(request_id)
        if not request:
            raise ProjectRequestNotFoundError(resource_type="ProjectRequest", resource_id=request_id)
        if not actor.is_manager and not actor.matches(request.user_id, request.email):
            raise AuthorizationError(
                message="You can only access your own requests",
                resource_id=request_id,
                user_id=actor.id,
            )
        return request

    async def submit(self, data: Dict[str, Any], actor: Optional[Actor] = None) -> OperationResult:
        """
        Create a PENDING request from intake data.

        Args:
            data: Intake fields (see ProjectRequest)
            actor: Submitting client, if authenticated; links the request
                to the account

        Returns:
            OperationResult with the created request
        """
        fields = {k: v for k, v in data.items() if hasattr(ProjectRequest, k)}
        fields.pop("status", None)
        fields.pop("deleted_at", None)
        if actor is not None:
            fields["user_id"] = actor.id

        async with UnitOfWork(self.session, self.sink) as uow:
            request = await self.dao.create(status=RequestStatus.PENDING, **fields)

        logger.info(f"Project request {request.id} submitted for {request.email}")
        return uow.result(request, "Project request submitted")

    async def get(self, request_id: int, actor: Actor) -> ProjectRequest:
        """
        Read one request.

        Raises:
            ProjectRequestNotFoundError: If missing or soft-deleted
            AuthorizationError: If a non-manager reads someone else's request
        """
        return await self._get_visible(request_id, actor)

    async def list(
        self,
        actor: Actor,
        page: int = 1,
        limit: int = settings.DEFAULT_PAGE_SIZE,
        status: Optional[RequestStatus] = None,
        search: Optional[str] = None,
    ) -> Page:
        """Manager listing with status filter and free-text search."""
        require_manager(actor, "list all requests")
        page, limit, skip = page_window(page, limit, settings.MAX_PAGE_SIZE)
        items, total = await self.dao.list_filtered(skip, limit, status=status, search=search)
        return Page(items=items, total=total, page=page, limit=limit)

    async def list_mine(
        self,
        actor: Actor,
        page: int = 1,
        limit: int = settings.DEFAULT_PAGE_SIZE,
        status: Optional[RequestStatus] = None,
    ) -> Page:
        """The actor's own requests, matched by account id or email."""
        page, limit, skip = page_window(page, limit, settings.MAX_PAGE_SIZE)
        items, total = await self.dao.list_filtered(
            skip,
            limit,
            status=status,
            owner_id=actor.id,
            owner_email=actor.email,
        )
        return Page(items=items, total=total, page=page, limit=limit)

    async def update_status(
        self,
        request_id: int,
        new_status: RequestStatus,
        actor: Actor,
    ) -> OperationResult:
        """
        Staff decision on a request.

        Raises:
            InsufficientPermissionsError: For non-managers
            ProjectRequestNotFoundError: If missing or soft-deleted
            InvalidStateTransitionError: If the move is not in the table
        """
        require_manager(actor, "change request status")

        async with UnitOfWork(self.session, self.sink) as uow:
            request = await self.dao.get_active(request_id)
            if not request:
                raise ProjectRequestNotFoundError(
                    resource_type="ProjectRequest", resource_id=request_id
                )

            previous = request.status
            assert_transition(EntityKind.REQUEST, previous, new_status)

            request.status = new_status
            request.updated_at = datetime.utcnow()
            await self.session.flush()
            uow.outbox.notify_request_status_changed(request, previous)

        logger.info(
            f"Request {request_id} moved {previous.value} -> {new_status.value} by user {actor.id}"
        )
        return uow.result(request, f"Request status updated to {new_status.value}")

    async def soft_delete(self, request_id: int, actor: Actor) -> OperationResult:
        """
        Hide a request from every read path.

        Raises:
            InsufficientPermissionsError: For non-managers
            ProjectRequestNotFoundError: If missing or already deleted
        """
        require_manager(actor, "delete requests")

        async with UnitOfWork(self.session, self.sink) as uow:
            if not await self.dao.soft_delete(request_id):
                raise ProjectRequestNotFoundError(
                    resource_type="ProjectRequest", resource_id=request_id
                )

        logger.info(f"Request {request_id} soft-deleted by user {actor.id}")
        return uow.result({"id": request_id}, "Project request deleted")

    async def counts_by_status(self, actor: Actor) -> Dict[str, int]:
        """Dashboard counters: live requests per status."""
        require_manager(actor, "view request statistics")
        counts = await self.dao.counts_by_status()
        return {status.value: count for status, count in counts.items()}
