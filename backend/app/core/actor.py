"""
Authenticated actor passed into every lifecycle operation.

WHY: Identity is established outside the core. Services only need the
actor's id, email and role to make role and ownership decisions, so they
receive this plain value object instead of a session-bound User row.
It stays valid across commits and rollbacks of the caller's session.
"""

from dataclasses import dataclass
from typing import Optional

from app.core.exceptions import InsufficientPermissionsError
from app.models.user import RoleClass, UserRole, classify_role


@dataclass(frozen=True)
class Actor:
    """
    The user performing an operation.

    Example:
        >>> actor = Actor(id=7, email="pm@firm.test", role=UserRole.PROJECT_MANAGER)
        >>> actor.is_manager
        True
    """

    id: int
    email: str
    role: UserRole
    name: Optional[str] = None

    @classmethod
    def from_user(cls, user) -> "Actor":
        return cls(id=user.id, email=user.email, role=user.role, name=user.name)

    @property
    def role_class(self) -> RoleClass:
        return classify_role(self.role)

    @property
    def is_manager(self) -> bool:
        return self.role_class == RoleClass.MANAGER

    @property
    def display_name(self) -> str:
        return self.name or self.email

    def matches(self, user_id: Optional[int], email: Optional[str]) -> bool:
        """
        Ownership check used for clients.

        An actor owns a record if the record's account id is the actor's
        id, or the record's contact email equals the actor's email
        (case-insensitive).
        """
        if user_id is not None and user_id == self.id:
            return True
        if email and self.email and email.lower() == self.email.lower():
            return True
        return False


def require_manager(actor: Actor, action: str) -> None:
    """
    Raise unless the actor holds a manager-class role.

    Args:
        actor: Acting user
        action: Phrase used in the error message ("send proposals")

    Raises:
        InsufficientPermissionsError: For non-manager actors
    """
    if not actor.is_manager:
        raise InsufficientPermissionsError(
            message=f"Only managers can {action}",
            user_id=actor.id,
            user_role=actor.role.value,
        )
