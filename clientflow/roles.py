from enum import Enum
from typing import Optional


class Role(str, Enum):
    ADMIN = "admin"
    EMPLOYEE = "employee"
    PORTAL = "portal"


def resolve_role(profile_role: Optional[str], is_portal: bool = False) -> Optional[Role]:
    """Map a stored profile role (or a portal account) onto the closed set of roles.

    Unknown profile roles resolve to None so callers fail closed instead of
    guessing a privilege level.
    """
    if is_portal:
        return Role.PORTAL
    if not profile_role:
        return None
    try:
        role = Role(profile_role.strip().lower())
    except ValueError:
        return None
    # A stored profile can never claim the portal role
    return None if role is Role.PORTAL else role
