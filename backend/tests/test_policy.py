"""Tests for the policy engine (pure, no database)."""
from types import SimpleNamespace

import pytest

from policy import (
    authorize, can, Action, DenyReason, PolicyInputError, ResourceContext,
)
from roles import Role

ORG = "org-1"
OTHER_ORG = "org-2"


def actor(uid="5", role=Role.STAFF, approved=True, org=ORG):
    return SimpleNamespace(id=uid, role=role.value, is_approved=approved, current_organization_id=org)


def task(assigned_to_id=None, created_by_id="9", tid="t-1"):
    return SimpleNamespace(id=tid, assigned_to_id=assigned_to_id, created_by_id=created_by_id)


def in_org(org=ORG, **kwargs):
    return ResourceContext(organization_id=org, **kwargs)


# ============================================================
# SCENARIOS
# ============================================================

def test_staff_updates_assigned_task_but_cannot_delete_someone_elses():
    a = actor(uid="5")
    mine = task(assigned_to_id="5", created_by_id="9")
    theirs = task(assigned_to_id="6", created_by_id="9", tid="t-2")

    assert authorize(a, Action.TASK_UPDATE, mine, in_org()).allowed is True

    denied = authorize(a, Action.TASK_DELETE, theirs, in_org())
    assert denied.allowed is False
    assert denied.reason == DenyReason.NOT_OWNER


def test_unapproved_staff_cannot_create_task():
    decision = authorize(actor(approved=False), Action.TASK_CREATE, context=in_org())
    assert decision.allowed is False
    assert decision.reason == DenyReason.NOT_APPROVED


def test_unapproved_user_may_read_own_task_only():
    a = actor(uid="5", approved=False)
    assert can(a, Action.TASK_READ, task(assigned_to_id="5"))
    assert can(a, Action.TASK_READ, task(created_by_id="5"))
    assert not can(a, Action.TASK_READ, task(assigned_to_id="7"))
    assert not can(a, Action.TASK_UPDATE, task(assigned_to_id="5"))


# ============================================================
# ROLE x OWNERSHIP CROSS-PRODUCT FOR task.delete
# ============================================================

OWNERSHIP = {
    "assignee": task(assigned_to_id="5", created_by_id="9"),
    "creator": task(assigned_to_id="6", created_by_id="5"),
    "both": task(assigned_to_id="5", created_by_id="5"),
    "neither": task(assigned_to_id="6", created_by_id="9"),
    "unassigned": task(assigned_to_id=None, created_by_id="9"),
}

EXPECTED_DELETE = {
    Role.SUPER_ADMIN: {"assignee", "creator", "both", "neither", "unassigned"},
    Role.SUPERVISOR: {"assignee", "creator", "both", "neither", "unassigned"},
    Role.TEAM_LEAD: {"creator", "both"},
    Role.STAFF: {"assignee", "both"},
}


@pytest.mark.parametrize("role", list(Role))
@pytest.mark.parametrize("ownership", sorted(OWNERSHIP))
def test_task_delete_cross_product(role, ownership):
    decision = authorize(actor(uid="5", role=role), Action.TASK_DELETE, OWNERSHIP[ownership], in_org())
    assert decision.allowed is (ownership in EXPECTED_DELETE[role])
    if not decision.allowed:
        assert decision.reason == DenyReason.NOT_OWNER


@pytest.mark.parametrize("role", list(Role))
@pytest.mark.parametrize("ownership", sorted(OWNERSHIP))
def test_unapproved_never_deletes(role, ownership):
    decision = authorize(actor(uid="5", role=role, approved=False), Action.TASK_DELETE, OWNERSHIP[ownership])
    assert decision.allowed is False
    assert decision.reason == DenyReason.NOT_APPROVED


# ============================================================
# TENANCY
# ============================================================

def test_cross_organization_denied_for_supervisor():
    decision = authorize(actor(role=Role.SUPERVISOR), Action.TASK_UPDATE, task(), in_org(OTHER_ORG))
    assert decision.allowed is False
    assert decision.reason == DenyReason.CROSS_ORGANIZATION


def test_super_admin_ignores_tenancy():
    assert can(actor(role=Role.SUPER_ADMIN), Action.TASK_DELETE, task(), in_org(OTHER_ORG))


def test_organization_resource_uses_its_own_id_for_tenancy():
    org = SimpleNamespace(id=OTHER_ORG)
    decision = authorize(actor(role=Role.SUPERVISOR), Action.ORGANIZATION_MANAGE, org)
    assert decision.reason == DenyReason.CROSS_ORGANIZATION
    assert can(actor(role=Role.SUPERVISOR), Action.ORGANIZATION_MANAGE, SimpleNamespace(id=ORG))


# ============================================================
# PER-ROLE RULES
# ============================================================

def test_team_lead_project_update_only_as_creator():
    lead = actor(uid="5", role=Role.TEAM_LEAD)
    own = SimpleNamespace(id="p-1", organization_id=ORG, created_by_id="5")
    other = SimpleNamespace(id="p-2", organization_id=ORG, created_by_id="9")
    assert can(lead, Action.PROJECT_UPDATE, own)
    assert authorize(lead, Action.PROJECT_UPDATE, other).reason == DenyReason.NOT_OWNER
    assert authorize(lead, Action.PROJECT_DELETE, own).reason == DenyReason.INSUFFICIENT_ROLE


def test_team_lead_user_update_without_privilege_change():
    lead = actor(uid="5", role=Role.TEAM_LEAD)
    target = SimpleNamespace(id="8", role=Role.STAFF.value)
    assert can(lead, Action.USER_UPDATE, target, in_org())
    decision = authorize(lead, Action.USER_UPDATE, target, in_org(changes_privileges=True))
    assert decision.reason == DenyReason.INSUFFICIENT_ROLE
    assert not can(lead, Action.USER_APPROVE, target, in_org())


@pytest.mark.parametrize("target_role,allowed", [
    (Role.STAFF, True),
    (Role.TEAM_LEAD, True),
    (Role.SUPERVISOR, False),
    (Role.SUPER_ADMIN, False),
])
def test_team_lead_edits_only_team_leads_and_staff(target_role, allowed):
    lead = actor(uid="5", role=Role.TEAM_LEAD)
    target = SimpleNamespace(id="8", role=target_role.value)
    decision = authorize(lead, Action.USER_UPDATE, target, in_org())
    assert decision.allowed is allowed
    if not allowed:
        assert decision.reason == DenyReason.INSUFFICIENT_ROLE


def test_team_lead_cannot_edit_user_with_unknown_role():
    lead = actor(uid="5", role=Role.TEAM_LEAD)
    assert not can(lead, Action.USER_UPDATE, SimpleNamespace(id="8", role="owner"), in_org())


@pytest.mark.parametrize("target_role,allowed", [
    (Role.STAFF, True),
    (Role.TEAM_LEAD, True),
    (Role.SUPERVISOR, False),
    (Role.SUPER_ADMIN, False),
])
def test_team_lead_invitation_roles(target_role, allowed):
    lead = actor(role=Role.TEAM_LEAD)
    assert can(lead, Action.INVITATION_CREATE, context=in_org(target_role=target_role)) is allowed


@pytest.mark.parametrize("target_role,allowed", [
    (Role.STAFF, True),
    (Role.TEAM_LEAD, True),
    (Role.SUPERVISOR, True),
    (Role.SUPER_ADMIN, False),
])
def test_supervisor_invitation_roles(target_role, allowed):
    sup = actor(role=Role.SUPERVISOR)
    assert can(sup, Action.INVITATION_CREATE, context=in_org(target_role=target_role)) is allowed


def test_team_lead_deletes_only_own_invitations():
    lead = actor(uid="5", role=Role.TEAM_LEAD)
    own = SimpleNamespace(id="i-1", organization_id=ORG, created_by_id="5")
    other = SimpleNamespace(id="i-2", organization_id=ORG, created_by_id="9")
    assert can(lead, Action.INVITATION_DELETE, own)
    assert authorize(lead, Action.INVITATION_DELETE, other).reason == DenyReason.NOT_OWNER


def test_supervisor_cannot_touch_super_admin():
    sup = actor(role=Role.SUPERVISOR)
    root = SimpleNamespace(id="1", role=Role.SUPER_ADMIN.value)
    assert not can(sup, Action.USER_DELETE, root, in_org())
    assert not can(sup, Action.USER_UPDATE, root, in_org())
    assert not can(sup, Action.USER_CREATE, context=in_org(target_role=Role.SUPER_ADMIN))
    assert can(sup, Action.USER_CREATE, context=in_org(target_role=Role.TEAM_LEAD))

    peer = SimpleNamespace(id="2", role=Role.SUPERVISOR.value)
    assert can(sup, Action.USER_UPDATE, peer, in_org())
    assert not can(sup, Action.USER_UPDATE, peer, in_org(target_role=Role.SUPER_ADMIN))


def test_supervisor_cannot_delete_organization():
    decision = authorize(actor(role=Role.SUPERVISOR), Action.ORGANIZATION_DELETE, SimpleNamespace(id=ORG))
    assert decision.reason == DenyReason.INSUFFICIENT_ROLE


@pytest.mark.parametrize("action", [
    Action.PROJECT_UPDATE, Action.USER_UPDATE, Action.USER_DELETE, Action.INVITATION_DELETE,
])
def test_staff_denied_management_actions(action):
    resource = SimpleNamespace(id="x", organization_id=ORG, created_by_id="5", role=Role.STAFF.value)
    decision = authorize(actor(uid="5"), action, resource)
    assert decision.allowed is False
    assert decision.reason == DenyReason.INSUFFICIENT_ROLE


def test_staff_may_create_projects_and_tasks():
    staff = actor()
    assert can(staff, Action.PROJECT_CREATE, context=in_org())
    assert can(staff, Action.TASK_CREATE, context=in_org())
    assert not can(staff, Action.INVITATION_CREATE, context=in_org(target_role=Role.STAFF))


def test_self_profile_edit_allowed_without_privilege_change():
    staff = actor(uid="5")
    me = SimpleNamespace(id="5", role=Role.STAFF.value)
    assert can(staff, Action.USER_UPDATE, me, in_org())
    assert can(staff, Action.USER_READ, me, in_org())
    assert not can(staff, Action.USER_UPDATE, me, in_org(changes_privileges=True))


def test_unknown_role_falls_through_to_default_deny():
    weird = SimpleNamespace(id="5", role="auditor", is_approved=True, current_organization_id=ORG)
    decision = authorize(weird, Action.TASK_CREATE, context=in_org())
    assert decision.reason == DenyReason.INSUFFICIENT_ROLE


# ============================================================
# CONTRACT
# ============================================================

def test_missing_required_resource_raises():
    with pytest.raises(PolicyInputError):
        authorize(actor(), Action.TASK_UPDATE)


def test_unknown_action_raises():
    with pytest.raises(PolicyInputError):
        authorize(actor(), "task.archive")


def test_action_accepts_plain_strings():
    assert can(actor(uid="5"), "task.read", task(assigned_to_id="5"), in_org())


def test_decisions_are_deterministic():
    a, t = actor(uid="5", role=Role.TEAM_LEAD), task(created_by_id="9")
    first = authorize(a, Action.TASK_DELETE, t, in_org())
    assert all(authorize(a, Action.TASK_DELETE, t, in_org()) == first for _ in range(20))


def test_denial_carries_message():
    decision = authorize(actor(uid="5"), Action.TASK_UPDATE, task(assigned_to_id="6"), in_org())
    assert decision.message == "You can only edit tasks assigned to you"
    assert decision.to_dict() == {
        "allowed": False,
        "reason": "not_owner",
        "message": "You can only edit tasks assigned to you",
    }
    assert not decision
