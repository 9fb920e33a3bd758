"""
User Data Access Object.

WHY: Ownership checks match clients by email as well as by id, and the
acceptance and amendment workflows notify every active manager. Both
lookups live here.
"""

from typing import List, Optional
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.dao.base import BaseDAO
from app.models.user import User, UserRole, is_manager_role


class UserDAO(BaseDAO[User]):
    """Data Access Object for User model."""

    def __init__(self, session: AsyncSession):
        super().__init__(User, session)

    async def get_by_email(self, email: str) -> Optional[User]:
        """
        Retrieve user by email address, case-insensitively.

        Example:
            >>> user = await user_dao.get_by_email("Client@Example.com")
            >>> user.email
            'client@example.com'
        """
        result = await self.session.execute(
            select(User).where(func.lower(User.email) == email.lower())
        )
        return result.scalar_one_or_none()

    async def get_active_managers(self) -> List[User]:
        """
        All active users holding a manager-class role.

        WHY: Fan-out notifications (acceptance, amendment requests, stage
        completion) go to every active manager.
        """
        manager_roles = [role for role in UserRole if is_manager_role(role)]
        result = await self.session.execute(
            select(User)
            .where(User.role.in_(manager_roles), User.is_active.is_(True))
            .order_by(User.id)
        )
        return list(result.scalars().all())
