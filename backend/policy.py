# policy.py — Authorization policy for TaskLedger
#
# One decision function for every (actor, action, resource) triple.  Routers
# call authorize() before any mutation and hand the result to auth.enforce();
# the frontend-facing affordance endpoints use can().
#
# Rules are evaluated top to bottom and the first match decides:
#   1. unapproved actors may only read tasks they own
#   2. super_admin may do anything, in any organization
#   3. other roles are confined to their current organization
#   4. anyone approved may read and edit their own profile (no privilege changes)
#   5. per-role tables for supervisor, team_lead and staff
#   6. everything else is denied with insufficient_role

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from logging_system import log_policy
from roles import (
    Role, INVITABLE_ROLES, TEAM_LEAD_INVITABLE_ROLES, TEAM_LEAD_MANAGED_ROLES,
    role_of, coerce_role, is_assignee, is_creator,
)


class Action(str, Enum):
    TASK_CREATE = "task.create"
    TASK_READ = "task.read"
    TASK_UPDATE = "task.update"
    TASK_DELETE = "task.delete"
    PROJECT_CREATE = "project.create"
    PROJECT_UPDATE = "project.update"
    PROJECT_DELETE = "project.delete"
    USER_READ = "user.read"
    USER_CREATE = "user.create"
    USER_UPDATE = "user.update"
    USER_DELETE = "user.delete"
    USER_APPROVE = "user.approve"
    ORGANIZATION_CREATE = "organization.create"
    ORGANIZATION_MANAGE = "organization.manage"
    ORGANIZATION_DELETE = "organization.delete"
    INVITATION_CREATE = "invitation.create"
    INVITATION_DELETE = "invitation.delete"

    @property
    def family(self) -> str:
        return self.value.split(".", 1)[0]


class DenyReason(str, Enum):
    INSUFFICIENT_ROLE = "insufficient_role"
    NOT_OWNER = "not_owner"
    NOT_APPROVED = "not_approved"
    CROSS_ORGANIZATION = "cross_organization"


DENY_MESSAGES: Dict[DenyReason, str] = {
    DenyReason.INSUFFICIENT_ROLE: "Your role does not allow this action",
    DenyReason.NOT_OWNER: "You can only modify resources you own",
    DenyReason.NOT_APPROVED: "Your account is awaiting approval",
    DenyReason.CROSS_ORGANIZATION: "This resource belongs to another organization",
}

NOT_OWNER_MESSAGES: Dict[Action, str] = {
    Action.TASK_READ: "You can only view tasks assigned to you",
    Action.TASK_UPDATE: "You can only edit tasks assigned to you",
    Action.TASK_DELETE: "You can only delete tasks assigned to you",
    Action.PROJECT_UPDATE: "You can only edit projects you created",
    Action.INVITATION_DELETE: "You can only delete invitations you created",
}

# Actions that cannot be decided without the target resource
RESOURCE_REQUIRED = frozenset({
    Action.TASK_READ, Action.TASK_UPDATE, Action.TASK_DELETE,
    Action.PROJECT_UPDATE, Action.PROJECT_DELETE,
    Action.USER_UPDATE, Action.USER_DELETE, Action.USER_APPROVE,
    Action.ORGANIZATION_MANAGE, Action.ORGANIZATION_DELETE, Action.INVITATION_DELETE,
})


class PolicyInputError(ValueError):
    """authorize() was called without data the action needs."""


@dataclass(frozen=True)
class PolicyDecision:
    allowed: bool
    reason: Optional[DenyReason] = None
    message: str = ""

    def __bool__(self) -> bool:
        return self.allowed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "reason": self.reason.value if self.reason else None,
            "message": self.message,
        }


def Allow() -> PolicyDecision:
    return PolicyDecision(allowed=True)


def Deny(reason: DenyReason, message: Optional[str] = None) -> PolicyDecision:
    return PolicyDecision(allowed=False, reason=reason, message=message or DENY_MESSAGES[reason])


@dataclass(frozen=True)
class ResourceContext:
    """Facts about the resource that the resource row itself does not carry."""
    organization_id: Optional[str] = None
    target_role: Optional[Role] = None
    changes_privileges: bool = False


_EMPTY_CONTEXT = ResourceContext()


def _not_owner(action: Action) -> PolicyDecision:
    return Deny(DenyReason.NOT_OWNER, NOT_OWNER_MESSAGES.get(action))


def _resource_organization(action: Action, resource: Any, context: ResourceContext) -> Optional[str]:
    if context.organization_id is not None:
        return context.organization_id
    if resource is None:
        return None
    if action.family == "organization":
        return getattr(resource, "id", None)
    return getattr(resource, "organization_id", None)


def _supervisor_rules(actor: Any, action: Action, resource: Any, context: ResourceContext) -> PolicyDecision:
    if action.family == "user":
        # Supervisors never act on a super_admin or grant that role
        if coerce_role(context.target_role) == Role.SUPER_ADMIN:
            return Deny(DenyReason.INSUFFICIENT_ROLE)
        if resource is not None and role_of(resource) == Role.SUPER_ADMIN:
            return Deny(DenyReason.INSUFFICIENT_ROLE)
        return Allow()
    if action.family in ("task", "project"):
        return Allow()
    if action == Action.INVITATION_CREATE:
        target = coerce_role(context.target_role)
        if target is not None and target not in INVITABLE_ROLES:
            return Deny(DenyReason.INSUFFICIENT_ROLE)
        return Allow()
    if action in (Action.INVITATION_DELETE, Action.ORGANIZATION_CREATE, Action.ORGANIZATION_MANAGE):
        # organization.manage already passed the tenancy check against the org itself
        return Allow()
    return Deny(DenyReason.INSUFFICIENT_ROLE)


def _team_lead_rules(actor: Any, action: Action, resource: Any, context: ResourceContext) -> PolicyDecision:
    if action in (Action.TASK_CREATE, Action.TASK_READ, Action.TASK_UPDATE, Action.PROJECT_CREATE):
        return Allow()
    if action == Action.TASK_DELETE:
        if is_creator(actor, resource):
            return Allow()
        return Deny(DenyReason.NOT_OWNER, "You can only delete tasks you created")
    if action == Action.PROJECT_UPDATE:
        return Allow() if is_creator(actor, resource) else _not_owner(action)
    if action == Action.USER_READ:
        return Allow()
    if action == Action.USER_UPDATE:
        if role_of(resource) not in TEAM_LEAD_MANAGED_ROLES:
            return Deny(DenyReason.INSUFFICIENT_ROLE, "Team leads can only edit team leads and staff")
        if context.changes_privileges:
            return Deny(DenyReason.INSUFFICIENT_ROLE)
        return Allow()
    if action == Action.INVITATION_CREATE:
        target = coerce_role(context.target_role)
        if target is not None and target not in TEAM_LEAD_INVITABLE_ROLES:
            return Deny(DenyReason.INSUFFICIENT_ROLE, "Team leads can only invite team leads and staff")
        return Allow()
    if action == Action.INVITATION_DELETE:
        return Allow() if is_creator(actor, resource) else _not_owner(action)
    return Deny(DenyReason.INSUFFICIENT_ROLE)


def _staff_rules(actor: Any, action: Action, resource: Any, context: ResourceContext) -> PolicyDecision:
    if action in (Action.TASK_CREATE, Action.PROJECT_CREATE):
        return Allow()
    if action in (Action.TASK_READ, Action.TASK_UPDATE, Action.TASK_DELETE):
        return Allow() if is_assignee(actor, resource) else _not_owner(action)
    return Deny(DenyReason.INSUFFICIENT_ROLE)


_ROLE_RULES = {
    Role.SUPERVISOR: _supervisor_rules,
    Role.TEAM_LEAD: _team_lead_rules,
    Role.STAFF: _staff_rules,
}


def _decide(actor: Any, action: Action, resource: Any, context: ResourceContext) -> PolicyDecision:
    if not getattr(actor, "is_approved", False):
        if action == Action.TASK_READ and (is_assignee(actor, resource) or is_creator(actor, resource)):
            return Allow()
        return Deny(DenyReason.NOT_APPROVED)

    role = role_of(actor)
    if role == Role.SUPER_ADMIN:
        return Allow()

    resource_org = _resource_organization(action, resource, context)
    if resource_org is not None and resource_org != getattr(actor, "current_organization_id", None):
        return Deny(DenyReason.CROSS_ORGANIZATION)

    is_self = resource is not None and getattr(resource, "id", None) == getattr(actor, "id", None)
    if is_self and (action == Action.USER_READ or (action == Action.USER_UPDATE and not context.changes_privileges)):
        return Allow()

    rules = _ROLE_RULES.get(role)
    if rules is None:
        return Deny(DenyReason.INSUFFICIENT_ROLE)
    return rules(actor, action, resource, context)


def authorize(
    actor: Any,
    action: Any,
    resource: Any = None,
    context: Optional[ResourceContext] = None,
) -> PolicyDecision:
    """
    Decide whether ``actor`` may perform ``action`` on ``resource``.

    ``actor`` needs ``id``, ``role``, ``is_approved`` and
    ``current_organization_id``.  ``resource`` is the task, project, user,
    organization or invitation being acted on (None for creates).
    Denials are returned, never raised; PolicyInputError signals a caller
    bug such as a missing resource.
    """
    try:
        action = Action(action)
    except ValueError:
        raise PolicyInputError(f"Unknown action: {action!r}")
    if resource is None and action in RESOURCE_REQUIRED:
        raise PolicyInputError(f"{action.value} requires a resource")
    if actor is None:
        raise PolicyInputError("authorize() requires an actor")

    decision = _decide(actor, action, resource, context or _EMPTY_CONTEXT)
    log_policy(
        str(getattr(actor, "id", "")),
        action.value,
        decision.allowed,
        decision.reason.value if decision.reason else None,
    )
    return decision


def can(actor: Any, action: Any, resource: Any = None, context: Optional[ResourceContext] = None) -> bool:
    return authorize(actor, action, resource, context).allowed
