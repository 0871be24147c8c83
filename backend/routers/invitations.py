# routers/invitations.py — Invitation links for joining an organization
from datetime import datetime
from typing import Optional, List

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, enforce, get_organization, CurrentUser
from database import get_db_session
from invitations import generate_invitation_token, validate_invitation, InvitationRejected
from logging_system import log_audit
from models import InvitationLink
from policy import authorize, Action, ResourceContext
from roles import Role, INVITABLE_ROLES

router = APIRouter(prefix="/api/v1/invitations", tags=["Invitations"])


# --- Schemas ---

class InvitationCreate(BaseModel):
    organization_id: Optional[str] = None  # defaults to the current organization
    role: Role = Role.STAFF
    message: Optional[str] = Field(None, max_length=2000)
    expires: Optional[datetime] = None
    max_uses: Optional[int] = Field(None, ge=1)

    @field_validator("role")
    @classmethod
    def validate_role(cls, v: Role) -> Role:
        if v not in INVITABLE_ROLES:
            raise ValueError("Invitations cannot grant super_admin")
        return v


class InvitationOut(BaseModel):
    id: str
    organization_id: str
    created_by_id: str
    token: str
    role: str
    message: Optional[str] = None
    expires: Optional[str] = None
    max_uses: Optional[int] = None
    used_count: int
    active: bool
    created_at: Optional[str] = None


class InvitationValidation(BaseModel):
    valid: bool
    reason: Optional[str] = None
    message: Optional[str] = None
    organization_id: Optional[str] = None
    organization_name: Optional[str] = None
    role: Optional[str] = None
    invitation_message: Optional[str] = None


# --- Helpers ---

def _invitation_to_out(inv: InvitationLink) -> InvitationOut:
    return InvitationOut(
        id=inv.id,
        organization_id=inv.organization_id,
        created_by_id=inv.created_by_id,
        token=inv.token,
        role=inv.role.value if isinstance(inv.role, Role) else str(inv.role),
        message=inv.message,
        expires=inv.expires.isoformat() if inv.expires else None,
        max_uses=inv.max_uses,
        used_count=inv.used_count or 0,
        active=bool(inv.active),
        created_at=inv.created_at.isoformat() if inv.created_at else None,
    )


# --- Endpoints ---

@router.post("", response_model=InvitationOut, status_code=201)
async def create_invitation(
    data: InvitationCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    org_id = data.organization_id or user.current_organization_id
    if not org_id:
        raise HTTPException(status_code=400, detail="Select an organization first")
    await get_organization(db, org_id)
    enforce(authorize(
        user, Action.INVITATION_CREATE,
        context=ResourceContext(organization_id=org_id, target_role=data.role),
    ))

    invitation = InvitationLink(
        organization_id=org_id,
        created_by_id=user.id,
        token=generate_invitation_token(),
        role=data.role,
        message=data.message,
        expires=data.expires,
        max_uses=data.max_uses,
        used_count=0,
        active=True,
    )
    db.add(invitation)
    await db.commit()
    await db.refresh(invitation)

    log_audit(
        "invitation.create",
        f"invitation:{invitation.id}",
        metadata={"organization_id": org_id, "role": data.role.value, "max_uses": data.max_uses},
    )
    return _invitation_to_out(invitation)


@router.get("/organization/{org_id}", response_model=List[InvitationOut])
async def list_organization_invitations(
    org_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Invitation links of an organization, for those allowed to issue them"""
    await get_organization(db, org_id)
    enforce(authorize(user, Action.INVITATION_CREATE, context=ResourceContext(organization_id=org_id)))

    stmt = (
        select(InvitationLink)
        .where(InvitationLink.organization_id == org_id)
        .order_by(InvitationLink.created_at.desc())
    )
    invitations = (await db.execute(stmt)).scalars().all()
    return [_invitation_to_out(inv) for inv in invitations]


@router.delete("/{invitation_id}")
async def delete_invitation(
    invitation_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    stmt = select(InvitationLink).where(InvitationLink.id == invitation_id)
    invitation = (await db.execute(stmt)).scalar_one_or_none()
    if not invitation:
        raise HTTPException(status_code=404, detail="Invitation link not found")
    enforce(authorize(user, Action.INVITATION_DELETE, invitation))

    await db.delete(invitation)
    await db.commit()
    log_audit("invitation.delete", f"invitation:{invitation_id}")
    return {"status": "deleted", "id": invitation_id}


@router.post("/{invitation_id}/deactivate", response_model=InvitationOut)
async def deactivate_invitation(
    invitation_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Switch a link off without deleting it; deactivation is permanent"""
    stmt = select(InvitationLink).where(InvitationLink.id == invitation_id)
    invitation = (await db.execute(stmt)).scalar_one_or_none()
    if not invitation:
        raise HTTPException(status_code=404, detail="Invitation link not found")
    enforce(authorize(user, Action.INVITATION_DELETE, invitation))

    invitation.active = False
    await db.commit()
    await db.refresh(invitation)
    log_audit("invitation.deactivate", f"invitation:{invitation_id}")
    return _invitation_to_out(invitation)


@router.get("/validate/{token}", response_model=InvitationValidation)
async def validate_invitation_token(
    token: str,
    db: AsyncSession = Depends(get_db_session),
):
    """Public check used by the registration page before sign-up"""
    stmt = select(InvitationLink).where(InvitationLink.token == token)
    invitation = (await db.execute(stmt)).scalar_one_or_none()
    check = validate_invitation(invitation)

    if not check.valid:
        raise InvitationRejected(check.reason)

    org = await get_organization(db, invitation.organization_id)
    return InvitationValidation(
        **check.to_dict(),
        organization_name=org.name,
        invitation_message=invitation.message,
    )
