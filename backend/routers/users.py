# routers/users.py — User management, approval and project assignment
from typing import Optional, List

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from sqlalchemy import select, or_, delete, update
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, enforce, AuthService, CurrentUser, organization_member_ids
from database import get_db_session
from logging_system import log_audit
from models import User, OrganizationUser, Project, UserProject, Task, TaskComment, TaskHistory, InvitationLink
from policy import authorize, Action, ResourceContext
from roles import Role

router = APIRouter(prefix="/api/v1/users", tags=["Users"])


# --- Schemas ---

class UserOut(BaseModel):
    id: str
    email: str
    username: str
    full_name: str
    role: str
    is_approved: bool
    current_organization_id: Optional[str] = None
    last_login_at: Optional[str] = None
    created_at: str


class UserCreate(BaseModel):
    email: EmailStr
    username: str = Field(..., min_length=3, max_length=100)
    password: str = Field(..., min_length=8)
    full_name: str = ""
    role: Role = Role.STAFF


class UserUpdate(BaseModel):
    # Approval only happens through POST /{id}/approve
    model_config = ConfigDict(extra="forbid")

    email: Optional[EmailStr] = None
    username: Optional[str] = Field(None, min_length=3, max_length=100)
    full_name: Optional[str] = None
    password: Optional[str] = Field(None, min_length=8)
    role: Optional[Role] = None


class ApproveRequest(BaseModel):
    project_ids: List[str] = Field(default_factory=list)


class ProjectAssignment(BaseModel):
    project_ids: List[str]


class AssignedProjectOut(BaseModel):
    id: str
    name: str
    organization_id: str


# --- Helpers ---

def _user_to_out(u: User) -> UserOut:
    return UserOut(
        id=u.id,
        email=u.email,
        username=u.username,
        full_name=u.full_name or "",
        role=u.role.value if isinstance(u.role, Role) else u.role,
        is_approved=bool(u.is_approved),
        current_organization_id=u.current_organization_id,
        last_login_at=u.last_login_at.isoformat() if u.last_login_at else None,
        created_at=u.created_at.isoformat() if u.created_at else "",
    )


async def _get_user(db: AsyncSession, user_id: str) -> User:
    target = (await db.execute(select(User).where(User.id == user_id))).scalar_one_or_none()
    if not target:
        raise HTTPException(status_code=404, detail="User not found")
    return target


async def _user_context(
    db: AsyncSession,
    actor: CurrentUser,
    target: User,
    target_role: Optional[Role] = None,
    changes_privileges: bool = False,
) -> ResourceContext:
    """Tenancy of a user is the actor's organization when they share it, else the user's own."""
    members = await organization_member_ids(db, actor.current_organization_id)
    org_id = actor.current_organization_id if target.id in members else target.current_organization_id
    return ResourceContext(organization_id=org_id, target_role=target_role, changes_privileges=changes_privileges)


async def _ensure_membership(db: AsyncSession, user: User, organization_id: str) -> None:
    stmt = select(OrganizationUser).where(
        OrganizationUser.user_id == user.id,
        OrganizationUser.organization_id == organization_id,
    )
    membership = (await db.execute(stmt)).scalar_one_or_none()
    if membership is None:
        db.add(OrganizationUser(organization_id=organization_id, user_id=user.id, role=user.role))
    else:
        membership.role = user.role
    if user.current_organization_id is None:
        user.current_organization_id = organization_id


async def _assign_projects(db: AsyncSession, user: User, project_ids: List[str], organization_id: Optional[str]) -> List[Project]:
    if not project_ids:
        return []
    stmt = select(Project).where(Project.id.in_(project_ids))
    if organization_id is not None:
        stmt = stmt.where(Project.organization_id == organization_id)
    projects = (await db.execute(stmt)).scalars().all()
    if len(projects) != len(set(project_ids)):
        raise HTTPException(status_code=400, detail="Unknown project or project from another organization")

    existing = await db.execute(select(UserProject.project_id).where(UserProject.user_id == user.id))
    already = set(existing.scalars().all())
    for project in projects:
        if project.id not in already:
            db.add(UserProject(user_id=user.id, project_id=project.id))
    return list(projects)


# Rows that keep their author; a user who wrote any of them cannot be deleted
_AUTHORED_COLUMNS = (
    ("projects", Project.created_by_id),
    ("tasks", Task.created_by_id),
    ("comments", TaskComment.user_id),
    ("history", TaskHistory.user_id),
    ("invitations", InvitationLink.created_by_id),
)


async def _authored_records(db: AsyncSession, user_id: str) -> List[str]:
    kinds = []
    for kind, column in _AUTHORED_COLUMNS:
        if (await db.execute(select(column).where(column == user_id).limit(1))).first():
            kinds.append(kind)
    return kinds


# --- Endpoints ---

@router.get("", response_model=List[UserOut])
async def list_users(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    limit: int = Query(default=100, le=500),
    offset: int = Query(default=0, ge=0),
    role: Optional[Role] = None,
    pending: bool = False,
):
    """Members of the current organization; ``pending=true`` lists users awaiting approval"""
    enforce(authorize(user, Action.USER_READ))

    stmt = select(User).order_by(User.created_at.desc()).offset(offset).limit(limit)
    if pending:
        stmt = stmt.where(User.is_approved.is_(False))
        if user.role != Role.SUPER_ADMIN.value:
            stmt = stmt.where(or_(
                User.current_organization_id.is_(None),
                User.current_organization_id == user.current_organization_id,
            ))
    elif user.role != Role.SUPER_ADMIN.value or user.current_organization_id:
        stmt = stmt.join(OrganizationUser, OrganizationUser.user_id == User.id).where(
            OrganizationUser.organization_id == user.current_organization_id
        )
    if role:
        stmt = stmt.where(User.role == role)

    users = (await db.execute(stmt)).scalars().all()
    return [_user_to_out(u) for u in users]


@router.post("", response_model=UserOut, status_code=201)
async def create_user(
    data: UserCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Create an approved user directly in the current organization"""
    org_id = user.current_organization_id
    enforce(authorize(user, Action.USER_CREATE, context=ResourceContext(organization_id=org_id, target_role=data.role)))

    clash = await db.execute(select(User.id).where(or_(User.email == data.email, User.username == data.username)))
    if clash.first():
        raise HTTPException(status_code=400, detail="Email or username already in use")

    new_user = User(
        email=data.email,
        username=data.username,
        full_name=data.full_name or data.username,
        password_hash=AuthService.hash_password(data.password),
        role=data.role,
        is_approved=True,
    )
    db.add(new_user)
    await db.flush()
    if org_id:
        await _ensure_membership(db, new_user, org_id)
    await db.commit()
    await db.refresh(new_user)

    log_audit("user.create", f"user:{new_user.id}", metadata={"role": data.role.value})
    return _user_to_out(new_user)


@router.get("/{user_id}", response_model=UserOut)
async def get_user(
    user_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    target = await _get_user(db, user_id)
    enforce(authorize(user, Action.USER_READ, target, await _user_context(db, user, target)))
    return _user_to_out(target)


@router.patch("/{user_id}", response_model=UserOut)
async def update_user(
    user_id: str,
    data: UserUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Profile edits; role changes and credentials of other users need supervisor rights"""
    target = await _get_user(db, user_id)
    fields = data.model_dump(exclude_unset=True)

    new_role = fields.get("role")
    new_email = fields.get("email")
    privileged = (new_role is not None and new_role != target.role) or (
        target.id != user.id
        and (bool(fields.get("password")) or (new_email is not None and new_email != target.email))
    )
    context = await _user_context(db, user, target, target_role=new_role, changes_privileges=privileged)
    enforce(authorize(user, Action.USER_UPDATE, target, context))

    for unique_field in ("email", "username"):
        value = fields.get(unique_field)
        if value is not None and value != getattr(target, unique_field):
            clash = await db.execute(
                select(User.id).where(getattr(User, unique_field) == value, User.id != target.id)
            )
            if clash.first():
                raise HTTPException(status_code=400, detail=f"{unique_field.capitalize()} already in use")

    password = fields.pop("password", None)
    if password:
        target.password_hash = AuthService.hash_password(password)
    for field, value in fields.items():
        if value is None and field in ("role", "email", "username"):
            continue
        setattr(target, field, value)
    if new_role is not None and user.current_organization_id:
        members = await organization_member_ids(db, user.current_organization_id)
        if target.id in members:
            await _ensure_membership(db, target, user.current_organization_id)

    await db.commit()
    await db.refresh(target)

    log_audit(
        "user.update",
        f"user:{target.id}",
        metadata={"fields": sorted(fields), "privileged": privileged},
    )
    return _user_to_out(target)


@router.post("/{user_id}/approve", response_model=UserOut)
async def approve_user(
    user_id: str,
    data: Optional[ApproveRequest] = None,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Approve a pending user, add them to the current organization and optionally to projects"""
    target = await _get_user(db, user_id)
    enforce(authorize(user, Action.USER_APPROVE, target, await _user_context(db, user, target)))
    if target.is_approved:
        raise HTTPException(status_code=400, detail="User is already approved")

    org_id = target.current_organization_id or user.current_organization_id
    target.is_approved = True
    if org_id:
        await _ensure_membership(db, target, org_id)
    projects = await _assign_projects(db, target, data.project_ids if data else [], org_id)

    await db.commit()
    await db.refresh(target)

    log_audit(
        "user.approve",
        f"user:{target.id}",
        metadata={"organization_id": org_id, "project_ids": [p.id for p in projects]},
    )
    return _user_to_out(target)


@router.delete("/{user_id}")
async def delete_user(
    user_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    if user_id == user.id:
        raise HTTPException(status_code=400, detail="Cannot delete your own account")
    target = await _get_user(db, user_id)
    enforce(authorize(user, Action.USER_DELETE, target, await _user_context(db, user, target)))

    authored = await _authored_records(db, target.id)
    if authored:
        raise HTTPException(status_code=409, detail={
            "reason": "has_authored_records",
            "message": "User has authored records and cannot be deleted",
            "authored": authored,
        })

    await db.execute(update(Task).where(Task.assigned_to_id == target.id).values(assigned_to_id=None))
    await db.execute(delete(UserProject).where(UserProject.user_id == target.id))
    await db.delete(target)
    await db.commit()

    log_audit("user.delete", f"user:{user_id}")
    return {"status": "deleted", "id": user_id}


# ============================================================
# PROJECT ASSIGNMENTS
# ============================================================

@router.get("/{user_id}/projects", response_model=List[AssignedProjectOut])
async def list_user_projects(
    user_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    target = await _get_user(db, user_id)
    enforce(authorize(user, Action.USER_READ, target, await _user_context(db, user, target)))

    stmt = (
        select(Project)
        .join(UserProject, UserProject.project_id == Project.id)
        .where(UserProject.user_id == user_id)
        .order_by(Project.name.asc())
    )
    projects = (await db.execute(stmt)).scalars().all()
    return [AssignedProjectOut(id=p.id, name=p.name, organization_id=p.organization_id) for p in projects]


@router.post("/{user_id}/projects", response_model=List[AssignedProjectOut])
async def assign_user_projects(
    user_id: str,
    data: ProjectAssignment,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Add project assignments; counts as a privilege change"""
    target = await _get_user(db, user_id)
    context = await _user_context(db, user, target, changes_privileges=True)
    enforce(authorize(user, Action.USER_UPDATE, target, context))

    org_id = None if user.role == Role.SUPER_ADMIN.value else user.current_organization_id
    projects = await _assign_projects(db, target, data.project_ids, org_id)
    await db.commit()

    log_audit("user.assign_projects", f"user:{target.id}", metadata={"project_ids": data.project_ids})
    return [AssignedProjectOut(id=p.id, name=p.name, organization_id=p.organization_id) for p in projects]
