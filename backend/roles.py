# roles.py — Roles and ownership predicates
#
# Pure helpers shared by the policy engine, the models and the routers.
# They accept ORM rows, pydantic CurrentUser objects or anything exposing
# the same attribute names.

from enum import Enum as PyEnum
from typing import Any, Optional


class Role(str, PyEnum):
    SUPER_ADMIN = "super_admin"
    SUPERVISOR = "supervisor"
    TEAM_LEAD = "team_lead"
    STAFF = "staff"


# Roles an invitation link may grant; super_admin is never invitable
INVITABLE_ROLES = frozenset({Role.SUPERVISOR, Role.TEAM_LEAD, Role.STAFF})
TEAM_LEAD_INVITABLE_ROLES = frozenset({Role.TEAM_LEAD, Role.STAFF})

# Users a team lead may edit
TEAM_LEAD_MANAGED_ROLES = frozenset({Role.TEAM_LEAD, Role.STAFF})


def role_of(user: Any) -> Optional[Role]:
    """Normalise ``user.role`` to a Role, or None when it is unknown."""
    raw = getattr(user, "role", None)
    if isinstance(raw, Role):
        return raw
    try:
        return Role(raw)
    except ValueError:
        return None


def coerce_role(value: Any) -> Optional[Role]:
    if value is None or isinstance(value, Role):
        return value
    try:
        return Role(value)
    except ValueError:
        return None


def is_assignee(user: Any, task: Any) -> bool:
    assigned = getattr(task, "assigned_to_id", None)
    return assigned is not None and assigned == getattr(user, "id", None)


def is_creator(user: Any, resource: Any) -> bool:
    creator = getattr(resource, "created_by_id", None)
    return creator is not None and creator == getattr(user, "id", None)
