"""
User model and role classification.

WHY: Every lifecycle operation receives an already-authenticated actor.
The core never checks credentials; it only needs the actor's identity
(id, email) for ownership checks and the role for manager-only steps.
"""

import enum
from sqlalchemy import Column, String, Enum, Boolean

from app.models.base import Base, TimestampMixin, PrimaryKeyMixin


class UserRole(str, enum.Enum):
    """
    Closed set of staff and client roles.

    WHY: Enum ensures only valid roles can be assigned, so role checks can
    be expressed as pure functions over this type instead of string lists.
    """

    SUPER_ADMIN = "SUPER_ADMIN"
    ADMIN = "ADMIN"
    PROJECT_MANAGER = "PROJECT_MANAGER"
    HIGHER_MANAGER = "HIGHER_MANAGER"
    FINANCE = "FINANCE"
    EMPLOYEE = "EMPLOYEE"
    CLIENT = "CLIENT"


class RoleClass(str, enum.Enum):
    """Coarse role classification consumed by the lifecycle services."""

    MANAGER = "manager"
    CLIENT = "client"
    OTHER = "other"


_MANAGER_ROLES = frozenset(
    {
        UserRole.SUPER_ADMIN,
        UserRole.ADMIN,
        UserRole.PROJECT_MANAGER,
        UserRole.HIGHER_MANAGER,
    }
)


def is_manager_role(role: UserRole) -> bool:
    """
    Check whether a role may perform manager-only lifecycle steps.

    Manager-class roles send proposals, sign as architect, review
    amendments and update stage progress.

    Args:
        role: Role to classify

    Returns:
        True for SUPER_ADMIN, ADMIN, PROJECT_MANAGER and HIGHER_MANAGER
    """
    return role in _MANAGER_ROLES


def classify_role(role: UserRole) -> RoleClass:
    """Map a concrete role onto {manager, client, other}."""
    if is_manager_role(role):
        return RoleClass.MANAGER
    if role == UserRole.CLIENT:
        return RoleClass.CLIENT
    return RoleClass.OTHER


class User(Base, PrimaryKeyMixin, TimestampMixin):
    """
    Staff member or client account.

    WHY: Proposals reference their client by user id (when the client has
    registered) and by email (always). Stage assignment and amendment
    review reference staff users.
    """

    __tablename__ = "users"

    name = Column(String(255), nullable=True)
    email = Column(String(255), unique=True, index=True, nullable=False)

    # WHY: values_callable keeps the stored value identical to the enum value
    role = Column(
        Enum(
            UserRole,
            name="userrole",
            create_type=False,
            values_callable=lambda enum: [e.value for e in enum],
        ),
        nullable=False,
        default=UserRole.CLIENT,
    )

    # WHY: inactive staff never receive manager fan-out notifications
    is_active = Column(Boolean, default=True, nullable=False)

    @property
    def is_manager(self) -> bool:
        return is_manager_role(self.role)

    @property
    def display_name(self) -> str:
        """Name used when recording a staff signature."""
        return self.name or self.email

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"
