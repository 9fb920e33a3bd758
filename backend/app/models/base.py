"""
Base model class and shared column mixins.

WHY: Every engagement entity (requests, proposals, stages, amendments)
carries the same surrogate key and audit timestamps. Declaring them once
keeps the schema uniform and lets the DAO layer rely on `id`,
`created_at` and `deleted_at` existing wherever the mixin is used.
"""

from datetime import datetime
from sqlalchemy import Column, Integer, DateTime
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """
    Declarative base for all engagement models.

    WHY: A single metadata object lets Alembic and the test suite create
    the whole schema with one `Base.metadata.create_all` call.
    """

    pass


class PrimaryKeyMixin:
    """Auto-incrementing integer primary key."""

    id = Column(Integer, primary_key=True, index=True)


class TimestampMixin:
    """
    created_at / updated_at audit columns.

    WHY: Listing helpers order proposal trees and amendment queues by
    creation time, so created_at must always be populated.
    """

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class SoftDeleteMixin:
    """
    Soft-delete marker.

    WHY: Client intake requests are never hard-deleted; a non-null
    deleted_at hides the row from every read path instead.
    """

    deleted_at = Column(DateTime, nullable=True, index=True)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None
