# invitations.py — Invitation link validation and redemption
#
# The token lookup and the used_count increment live in the routers; this
# module only decides whether a loaded InvitationLink may be used and what
# a registration through it grants.

import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from logging_system import get_logger, log_security, LogCategory
from roles import Role, coerce_role

logger = get_logger()


class InvitationReason(str, Enum):
    NOT_FOUND = "not_found"
    INACTIVE = "inactive"
    EXPIRED = "expired"
    EXHAUSTED = "exhausted"


_REASON_MESSAGES = {
    InvitationReason.NOT_FOUND: "Invalid invitation link",
    InvitationReason.INACTIVE: "This invitation link is no longer active",
    InvitationReason.EXPIRED: "This invitation link has expired",
    InvitationReason.EXHAUSTED: "This invitation link has reached its maximum uses",
}


def invitation_reason_message(reason: InvitationReason) -> str:
    return _REASON_MESSAGES[InvitationReason(reason)]


class InvitationRejected(Exception):
    def __init__(self, reason: InvitationReason):
        self.reason = InvitationReason(reason)
        super().__init__(invitation_reason_message(self.reason))

    @property
    def status_code(self) -> int:
        return 404 if self.reason == InvitationReason.NOT_FOUND else 400


@dataclass(frozen=True)
class InvitationCheck:
    valid: bool
    reason: Optional[InvitationReason] = None
    organization_id: Optional[str] = None
    role: Optional[Role] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "reason": self.reason.value if self.reason else None,
            "message": invitation_reason_message(self.reason) if self.reason else None,
            "organization_id": self.organization_id,
            "role": self.role.value if self.role else None,
        }


@dataclass(frozen=True)
class RegistrationGrant:
    organization_id: str
    role: Role
    is_approved: bool = True


def generate_invitation_token() -> str:
    """32 hex characters from 16 random bytes"""
    return secrets.token_hex(16)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; they are stored as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def validate_invitation(invitation: Any, now: Optional[datetime] = None) -> InvitationCheck:
    if invitation is None:
        return InvitationCheck(valid=False, reason=InvitationReason.NOT_FOUND)

    now = _as_utc(now or datetime.now(timezone.utc))
    org_id = invitation.organization_id
    role = coerce_role(invitation.role)

    if not invitation.active:
        return InvitationCheck(False, InvitationReason.INACTIVE, org_id, role)
    if invitation.expires is not None and now > _as_utc(invitation.expires):
        return InvitationCheck(False, InvitationReason.EXPIRED, org_id, role)
    if invitation.max_uses is not None and (invitation.used_count or 0) >= invitation.max_uses:
        return InvitationCheck(False, InvitationReason.EXHAUSTED, org_id, role)

    return InvitationCheck(True, None, org_id, role)


def redeem_invitation(
    invitation: Any,
    requested_role: Optional[Any] = None,
    now: Optional[datetime] = None,
) -> RegistrationGrant:
    """
    Turn a valid invitation into a registration grant.

    The granted role is always the invitation's role. A different
    ``requested_role`` is ignored and recorded as a security event.
    Raises InvitationRejected when the invitation cannot be used.
    """
    check = validate_invitation(invitation, now)
    if not check.valid:
        logger.info(
            f"Invitation rejected: {check.reason.value}",
            category=LogCategory.INVITATION,
            metadata={"reason": check.reason.value, "organization_id": check.organization_id},
        )
        raise InvitationRejected(check.reason)

    requested = coerce_role(requested_role) if requested_role is not None else None
    if requested_role is not None and requested != check.role:
        log_security(
            "invitation_role_mismatch",
            metadata={
                "invitation_id": getattr(invitation, "id", None),
                "requested_role": str(requested_role),
                "granted_role": check.role.value,
            },
        )

    logger.info(
        "Invitation redeemed",
        category=LogCategory.INVITATION,
        metadata={"invitation_id": getattr(invitation, "id", None), "role": check.role.value},
    )
    return RegistrationGrant(organization_id=check.organization_id, role=check.role, is_approved=True)
