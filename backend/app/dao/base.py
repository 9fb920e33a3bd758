"""
Base Data Access Object (DAO) class.

WHY: The DAO pattern keeps SQL out of the lifecycle services. Services
decide *whether* a change is legal; DAOs decide *how* it is read and
written, including the row locks and conditional updates the signature
and amendment workflows rely on.
"""

from typing import Generic, TypeVar, Type, Optional, List, Any, Tuple
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import Select

from app.models.base import Base

# Type variable for model class
ModelType = TypeVar("ModelType", bound=Base)


class BaseDAO(Generic[ModelType]):
    """
    Base Data Access Object providing CRUD operations for all models.

    Type Parameters:
        ModelType: The SQLAlchemy model class this DAO manages
    """

    def __init__(self, model: Type[ModelType], session: AsyncSession):
        """
        Initialize DAO with model class and database session.

        Args:
            model: The SQLAlchemy model class
            session: Async database session (one per unit of work)
        """
        self.model = model
        self.session = session

    async def create(self, **kwargs: Any) -> ModelType:
        """
        Create a new record.

        Args:
            **kwargs: Field values for the new record

        Returns:
            The created model instance with database-generated fields populated

        Raises:
            IntegrityError: If unique constraints are violated
        """
        instance = self.model(**kwargs)
        self.session.add(instance)
        await self.session.flush()  # Flush to get auto-generated fields
        await self.session.refresh(instance)
        return instance

    async def get_by_id(self, id: int) -> Optional[ModelType]:
        """
        Retrieve a single record by primary key.

        Returns:
            The model instance if found, None otherwise
        """
        result = await self.session.execute(select(self.model).where(self.model.id == id))
        return result.scalar_one_or_none()

    async def get_for_update(self, id: int) -> Optional[ModelType]:
        """
        Re-read a record inside the current transaction and lock its row.

        WHY: Read-then-write workflows (signing, amendment linking) must
        branch on the committed row, not on an instance loaded before the
        transaction started. populate_existing overwrites any stale state
        already held by the identity map.

        Returns:
            The freshly loaded instance, or None
        """
        result = await self.session.execute(
            select(self.model)
            .where(self.model.id == id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def count(self, **filters: Any) -> int:
        """Count records matching filters."""
        query = self._apply_filters(select(func.count()).select_from(self.model), **filters)
        result = await self.session.execute(query)
        return result.scalar_one()

    async def paginate(self, query: Select, skip: int, limit: int) -> Tuple[List[ModelType], int]:
        """
        Run a filtered query as one page plus the unpaged total.

        WHY: Every list operation returns {items, total, page, limit};
        computing the total from the same filtered statement keeps the two
        consistent.

        Args:
            query: A select() over self.model with filters and ordering applied
            skip: Offset of the page
            limit: Page size

        Returns:
            (items, total)
        """
        count_query = select(func.count()).select_from(query.order_by(None).subquery())
        total = (await self.session.execute(count_query)).scalar_one()

        result = await self.session.execute(query.offset(skip).limit(limit))
        return list(result.scalars().all()), total

    def _apply_filters(self, query: Select, **filters: Any) -> Select:
        for field, value in filters.items():
            if hasattr(self.model, field):
                query = query.where(getattr(self.model, field) == value)
        return query
