"""Tournament roles and permission checks."""

from enum import Enum

from abacus.errors import Unauthorized
from abacus.tournaments.models import Member, MemberRole


class Permission(Enum):
    MANAGE_PARTICIPANTS = "manage_participants"
    MANAGE_DRAWS = "manage_draws"
    MANAGE_RESULTS = "manage_results"
    VIEW_DRAFT = "view_draft"


ROLE_PERMISSIONS: dict[MemberRole, set[Permission]] = {
    MemberRole.SUPERUSER: set(Permission),
    MemberRole.TAB_DIRECTOR: set(Permission),
    MemberRole.VIEWER: {Permission.VIEW_DRAFT},
}


def has_permission(member: Member | None, permission: Permission) -> bool:
    if member is None:
        return False
    return permission in ROLE_PERMISSIONS.get(member.role, set())


def require_permission(member: Member | None, permission: Permission) -> None:
    """Raise :class:`Unauthorized` unless ``member`` holds ``permission``."""
    if not has_permission(member, permission):
        raise Unauthorized(f"Missing permission: {permission.value}")
