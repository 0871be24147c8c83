# routers/organizations.py — Organizations, membership and switching
from typing import Optional, List

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy import select, func, update, delete
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, enforce, get_organization, CurrentUser
from database import get_db_session
from logging_system import log_audit
from models import Organization, OrganizationUser, User, InvitationLink
from policy import authorize, Action
from roles import Role

router = APIRouter(prefix="/api/v1/organizations", tags=["Organizations"])


# --- Schemas ---

class OrgOut(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    created_by_id: Optional[str] = None
    member_count: int = 0
    is_current: bool = False
    created_at: str


class OrgCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    description: Optional[str] = None


class OrgUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    description: Optional[str] = None


class OrgSwitch(BaseModel):
    organization_id: str


# --- Helpers ---

async def _org_to_out(org: Organization, user: CurrentUser, db: AsyncSession) -> OrgOut:
    count_stmt = select(func.count(OrganizationUser.id)).where(OrganizationUser.organization_id == org.id)
    member_count = (await db.execute(count_stmt)).scalar() or 0
    return OrgOut(
        id=org.id,
        name=org.name,
        description=org.description,
        created_by_id=org.created_by_id,
        member_count=member_count,
        is_current=org.id == user.current_organization_id,
        created_at=org.created_at.isoformat() if org.created_at else "",
    )


async def _is_member(db: AsyncSession, user_id: str, organization_id: str) -> bool:
    stmt = select(OrganizationUser.id).where(
        OrganizationUser.user_id == user_id,
        OrganizationUser.organization_id == organization_id,
    )
    return (await db.execute(stmt)).scalar_one_or_none() is not None


# --- Endpoints ---

@router.get("", response_model=List[OrgOut])
async def list_organizations(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    limit: int = Query(default=50, le=200),
):
    """List organizations (super_admin sees all, others their memberships)"""
    if user.role == Role.SUPER_ADMIN.value:
        stmt = select(Organization).order_by(Organization.name.asc()).limit(limit)
    else:
        stmt = (
            select(Organization)
            .join(OrganizationUser, OrganizationUser.organization_id == Organization.id)
            .where(OrganizationUser.user_id == user.id)
            .order_by(Organization.name.asc())
            .limit(limit)
        )
    orgs = (await db.execute(stmt)).scalars().all()
    return [await _org_to_out(org, user, db) for org in orgs]


@router.get("/current", response_model=OrgOut)
async def get_current_organization(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    if not user.current_organization_id:
        raise HTTPException(status_code=404, detail="No current organization selected")
    org = await get_organization(db, user.current_organization_id)
    return await _org_to_out(org, user, db)


@router.post("", response_model=OrgOut, status_code=201)
async def create_organization(
    org_data: OrgCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Create an organization; the creator becomes a member and switches to it"""
    enforce(authorize(user, Action.ORGANIZATION_CREATE))

    org = Organization(name=org_data.name, description=org_data.description, created_by_id=user.id)
    db.add(org)
    await db.flush()
    db.add(OrganizationUser(organization_id=org.id, user_id=user.id, role=Role(user.role)))

    db_user = (await db.execute(select(User).where(User.id == user.id))).scalar_one()
    db_user.current_organization_id = org.id
    await db.commit()
    await db.refresh(org)

    log_audit("organization.create", f"organization:{org.id}")
    user.current_organization_id = org.id
    return await _org_to_out(org, user, db)


@router.get("/{org_id}", response_model=OrgOut)
async def get_organization_by_id(
    org_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    org = await get_organization(db, org_id)
    if user.role != Role.SUPER_ADMIN.value and not await _is_member(db, user.id, org_id):
        raise HTTPException(status_code=404, detail="Organization not found")
    return await _org_to_out(org, user, db)


@router.patch("/{org_id}", response_model=OrgOut)
async def update_organization(
    org_id: str,
    org_data: OrgUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    org = await get_organization(db, org_id)
    enforce(authorize(user, Action.ORGANIZATION_MANAGE, org))

    changes = org_data.model_dump(exclude_unset=True)
    for field, value in changes.items():
        setattr(org, field, value)
    await db.commit()
    await db.refresh(org)

    log_audit("organization.update", f"organization:{org.id}", metadata={"fields": sorted(changes)})
    return await _org_to_out(org, user, db)


@router.delete("/{org_id}")
async def delete_organization(
    org_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    org = await get_organization(db, org_id)
    enforce(authorize(user, Action.ORGANIZATION_DELETE, org))

    await db.execute(
        update(User)
        .where(User.current_organization_id == org_id)
        .values(current_organization_id=None)
        .execution_options(synchronize_session=False)
    )
    await db.execute(delete(InvitationLink).where(InvitationLink.organization_id == org_id))
    await db.delete(org)
    await db.commit()
    log_audit("organization.delete", f"organization:{org_id}")
    return {"status": "deleted", "id": org_id}


@router.post("/switch", response_model=OrgOut)
async def switch_organization(
    data: OrgSwitch,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Change the organization the user is working in"""
    org = await get_organization(db, data.organization_id)
    if user.role != Role.SUPER_ADMIN.value and not await _is_member(db, user.id, org.id):
        raise HTTPException(status_code=403, detail="You are not a member of this organization")

    db_user = (await db.execute(select(User).where(User.id == user.id))).scalar_one()
    db_user.current_organization_id = org.id
    await db.commit()

    user.current_organization_id = org.id
    return await _org_to_out(org, user, db)
