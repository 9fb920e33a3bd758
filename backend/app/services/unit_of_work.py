"""
Unit of work and operation results.

WHAT: Wraps one AsyncSession transaction together with a notification
outbox, and defines the result shapes every service returns.

WHY: Each mutating lifecycle operation is one atomic unit: all of its
writes commit together or not at all, and its notifications leave the
process only after the commit succeeded. Centralizing the
commit-then-dispatch sequence keeps every service from re-implementing
it (and from accidentally notifying before commit).

HOW:
    uow = UnitOfWork(session, sink)
    async with uow:
        ... DAO writes ...
        uow.outbox.notify_proposal_sent(proposal)
    # leaving the block commits, then dispatches
    degraded = uow.notifications_degraded
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Generic, List, Optional, TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import DatabaseError
from app.services.notification_service import (
    NotificationOutbox,
    NotificationSink,
    LoggingNotificationSink,
    dispatch_all,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class OperationResult(Generic[T]):
    """
    Result of a state-mutating operation.

    WHY: Callers need to distinguish "done, everyone notified" from
    "done, but some notifications failed" without treating the latter as
    an error.
    """

    success: bool
    """Whether the state change was committed."""

    data: Optional[T] = None
    """The affected entity (or a summary dict)."""

    message: str = ""
    """Human-readable outcome."""

    notifications_degraded: bool = False
    """True if at least one post-commit notification failed to dispatch."""


@dataclass
class Page(Generic[T]):
    """One page of a read operation."""

    items: List[T] = field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 10

    @property
    def pages(self) -> int:
        if self.limit <= 0:
            return 0
        return (self.total + self.limit - 1) // self.limit


class UnitOfWork:
    """
    One transaction plus its post-commit notifications.

    Attributes:
        session: The session every DAO in this unit shares
        outbox: Intents queued while the transaction is open
        notifications_degraded: Set after commit if any dispatch failed
    """

    def __init__(self, session: AsyncSession, sink: Optional[NotificationSink] = None):
        self.session = session
        self.sink = sink or LoggingNotificationSink()
        self.outbox = NotificationOutbox()
        self.notifications_degraded = False

    async def __aenter__(self) -> "UnitOfWork":
        self.outbox.clear()
        self.notifications_degraded = False
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            await self.rollback()
            return
        await self.commit()

    async def commit(self) -> bool:
        """
        Commit the transaction, then dispatch queued intents.

        Returns:
            True if any notification failed (degraded)

        Raises:
            DatabaseError: If the commit violated a constraint
        """
        try:
            await self.session.commit()
        except IntegrityError as e:
            await self.rollback()
            logger.error(f"Commit rejected by database constraint: {e}")
            raise DatabaseError(
                message="The change conflicts with existing data",
                reason="integrity_error",
            )

        intents = list(self.outbox.intents)
        self.outbox.clear()
        if intents:
            self.notifications_degraded = await dispatch_all(self.sink, intents)
            if self.notifications_degraded:
                logger.warning(
                    f"{len(intents)} notification(s) queued, at least one failed to dispatch"
                )
        return self.notifications_degraded

    async def rollback(self) -> None:
        """Roll back and drop every queued intent."""
        self.outbox.clear()
        await self.session.rollback()

    def result(self, data: Any = None, message: str = "") -> OperationResult:
        """Build the success result for this unit of work."""
        return OperationResult(
            success=True,
            data=data,
            message=message,
            notifications_degraded=self.notifications_degraded,
        )


def page_window(page: int, limit: int, max_limit: int) -> tuple:
    """
    Normalise 1-based page/limit into (page, limit, skip).

    Non-positive values fall back to page 1 / limit 1; limit is capped.
    """
    page = max(page, 1)
    limit = min(max(limit, 1), max_limit)
    return page, limit, (page - 1) * limit
