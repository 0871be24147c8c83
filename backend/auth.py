# auth.py — Authentication and identity for TaskLedger
# Features:
# - JWT access/refresh tokens with JTI
# - bcrypt password hashing
# - Brute force protection on login
# - Registration through invitation links (approved, role from the link)
#   or self-service (staff, awaiting supervisor approval)
# - enforce(): turns a policy denial into a 403

import os
import uuid
import secrets
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, List
from collections import defaultdict

import bcrypt
from jose import jwt, JWTError, ExpiredSignatureError
from fastapi import HTTPException, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel, EmailStr, field_validator
from sqlalchemy import select, update, or_
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db_session
from invitations import InvitationRejected, InvitationReason, redeem_invitation
from lifecycle import derive_registration_events
from logging_system import bind_user, log_audit, log_security
from models import User, Organization, OrganizationUser, InvitationLink, Notification, utcnow
from policy import PolicyDecision
from roles import Role

logger = logging.getLogger("taskledger.auth")

# ============================================================
# CONFIGURATION
# ============================================================

SECRET_KEY = os.getenv("JWT_SECRET_KEY", "")
if not SECRET_KEY or SECRET_KEY == "change-this-to-a-secure-random-key-in-production":
    SECRET_KEY = secrets.token_urlsafe(64)
    logger.warning(
        "JWT_SECRET_KEY not set or insecure. Generated ephemeral key. "
        "Set JWT_SECRET_KEY in production!"
    )

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "30"))
REFRESH_TOKEN_EXPIRE_DAYS = int(os.getenv("REFRESH_TOKEN_EXPIRE_DAYS", "7"))
MIN_PASSWORD_LENGTH = 8
MAX_LOGIN_ATTEMPTS = 5
LOGIN_LOCKOUT_MINUTES = 15

security = HTTPBearer()

# In-memory brute force tracker (per process)
_login_attempts: Dict[str, list] = defaultdict(list)


# ============================================================
# PYDANTIC SCHEMAS
# ============================================================

class UserRegister(BaseModel):
    email: EmailStr
    username: str
    password: str
    full_name: str = ""
    invitation_token: Optional[str] = None
    role: Optional[str] = None  # ignored when an invitation decides the role

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 3:
            raise ValueError("Username must be at least 3 characters")
        return v

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        if len(v) < MIN_PASSWORD_LENGTH:
            raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        if not any(c.isdigit() for c in v):
            raise ValueError("Password must contain at least one digit")
        return v


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    user: Dict[str, Any]


class CurrentUser(BaseModel):
    id: str
    email: str
    username: str
    full_name: str
    role: str
    is_approved: bool
    current_organization_id: Optional[str] = None


class RefreshRequest(BaseModel):
    refresh_token: str


# ============================================================
# AUTH SERVICE
# ============================================================

class AuthService:
    """Password hashing, tokens, registration and login"""

    @staticmethod
    def hash_password(password: str) -> str:
        salt = bcrypt.gensalt(rounds=12)
        return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")

    @staticmethod
    def verify_password(password: str, password_hash: str) -> bool:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))

    @staticmethod
    def _create_token(data: Dict[str, Any], token_type: str, expires_delta: timedelta) -> str:
        to_encode = data.copy()
        now = datetime.now(timezone.utc)
        to_encode.update({
            "exp": now + expires_delta,
            "iat": now,
            "type": token_type,
            "jti": str(uuid.uuid4()),
        })
        return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)

    @staticmethod
    def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
        delta = expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
        return AuthService._create_token(data, "access", delta)

    @staticmethod
    def create_refresh_token(data: Dict[str, Any]) -> str:
        return AuthService._create_token(data, "refresh", timedelta(days=REFRESH_TOKEN_EXPIRE_DAYS))

    @staticmethod
    def verify_token(token: str) -> Dict[str, Any]:
        try:
            return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        except ExpiredSignatureError:
            raise HTTPException(status_code=401, detail="Token expired")
        except JWTError:
            raise HTTPException(status_code=401, detail="Invalid token")

    @staticmethod
    def _check_brute_force(email: str) -> None:
        now = datetime.now(timezone.utc)
        cutoff = now - timedelta(minutes=LOGIN_LOCKOUT_MINUTES)
        recent = [t for t in _login_attempts.get(email, ()) if t > cutoff]
        if not recent:
            _login_attempts.pop(email, None)
            return
        _login_attempts[email] = recent
        if len(recent) >= MAX_LOGIN_ATTEMPTS:
            log_security("login_locked_out", metadata={"email": email})
            raise HTTPException(
                status_code=429,
                detail=f"Too many login attempts. Try again in {LOGIN_LOCKOUT_MINUTES} minutes.",
            )

    @staticmethod
    def _record_failed_attempt(email: str) -> None:
        _login_attempts[email].append(datetime.now(timezone.utc))

    @staticmethod
    def _clear_attempts(email: str) -> None:
        _login_attempts.pop(email, None)

    @staticmethod
    async def _claim_invitation(db: AsyncSession, invitation: InvitationLink) -> None:
        """Bump used_count only if a use is still left; losing the race means exhausted."""
        stmt = (
            update(InvitationLink)
            .where(InvitationLink.id == invitation.id)
            .where(InvitationLink.active.is_(True))
            .values(used_count=InvitationLink.used_count + 1)
            .execution_options(synchronize_session=False)
        )
        if invitation.max_uses is not None:
            stmt = stmt.where(InvitationLink.used_count < InvitationLink.max_uses)
        result = await db.execute(stmt)
        if result.rowcount != 1:
            raise InvitationRejected(InvitationReason.EXHAUSTED)

    @staticmethod
    async def register_user(user_data: UserRegister, db: AsyncSession) -> User:
        stmt = select(User).where(or_(User.email == user_data.email, User.username == user_data.username))
        existing = (await db.execute(stmt)).scalars().first()
        if existing is not None:
            if existing.email == user_data.email:
                raise HTTPException(status_code=400, detail="Email already in use")
            raise HTTPException(status_code=400, detail="Username already in use")

        grant = None
        if user_data.invitation_token:
            stmt = select(InvitationLink).where(InvitationLink.token == user_data.invitation_token)
            invitation = (await db.execute(stmt)).scalar_one_or_none()
            grant = redeem_invitation(invitation, user_data.role)
            await AuthService._claim_invitation(db, invitation)

        new_user = User(
            email=user_data.email,
            username=user_data.username,
            full_name=user_data.full_name or user_data.username,
            password_hash=AuthService.hash_password(user_data.password),
            role=grant.role if grant else Role.STAFF,
            is_approved=grant.is_approved if grant else False,
            current_organization_id=grant.organization_id if grant else None,
        )
        db.add(new_user)
        await db.flush()

        if grant:
            db.add(OrganizationUser(organization_id=grant.organization_id, user_id=new_user.id, role=grant.role))
        else:
            supervisors = await db.execute(
                select(User.id).where(User.role.in_([Role.SUPERVISOR, Role.SUPER_ADMIN]))
            )
            for record in derive_registration_events(new_user, supervisors.scalars().all()):
                db.add(Notification(
                    user_id=record.user_id,
                    task_id=record.task_id,
                    type=record.type,
                    message=record.message,
                ))

        await db.commit()
        await db.refresh(new_user)

        log_audit(
            "user.register",
            f"user:{new_user.id}",
            metadata={"via_invitation": grant is not None, "role": new_user.role.value},
        )
        return new_user

    @staticmethod
    async def authenticate_user(email: str, password: str, db: AsyncSession) -> Optional[User]:
        AuthService._check_brute_force(email)

        stmt = select(User).where(User.email == email)
        user = (await db.execute(stmt)).scalar_one_or_none()

        if not user or not AuthService.verify_password(password, user.password_hash):
            AuthService._record_failed_attempt(email)
            log_security("login_failed", metadata={"email": email})
            return None

        AuthService._clear_attempts(email)
        user.last_login_at = utcnow()
        await db.commit()
        return user

    @staticmethod
    def token_claims(user: User) -> Dict[str, Any]:
        return {
            "sub": user.id,
            "email": user.email,
            "role": _role_value(user.role),
        }


def _role_value(role: Any) -> str:
    return role.value if isinstance(role, Role) else str(role)


def user_to_current(user: User) -> CurrentUser:
    return CurrentUser(
        id=user.id,
        email=user.email,
        username=user.username,
        full_name=user.full_name or "",
        role=_role_value(user.role),
        is_approved=bool(user.is_approved),
        current_organization_id=user.current_organization_id,
    )


# ============================================================
# FASTAPI DEPENDENCIES
# ============================================================

async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db_session),
) -> CurrentUser:
    payload = AuthService.verify_token(credentials.credentials)

    if payload.get("type") != "access":
        raise HTTPException(status_code=401, detail="Invalid token type")

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")

    user = (await db.execute(select(User).where(User.id == user_id))).scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=401, detail="User not found")

    bind_user(user.id, user.current_organization_id)
    return user_to_current(user)


def enforce(decision: PolicyDecision) -> None:
    """Raise 403 with the denial reason when the policy said no."""
    if not decision.allowed:
        raise HTTPException(
            status_code=403,
            detail={"reason": decision.reason.value, "message": decision.message},
        )


async def organization_member_ids(db: AsyncSession, organization_id: Optional[str]) -> List[str]:
    if organization_id is None:
        return []
    result = await db.execute(
        select(OrganizationUser.user_id).where(OrganizationUser.organization_id == organization_id)
    )
    return list(result.scalars().all())


async def get_organization(db: AsyncSession, organization_id: str) -> Organization:
    org = (await db.execute(select(Organization).where(Organization.id == organization_id))).scalar_one_or_none()
    if not org:
        raise HTTPException(status_code=404, detail="Organization not found")
    return org
