# routers/notifications.py — In-app notifications for task and user events
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy import select, func, update
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, CurrentUser
from database import get_db_session
from models import Notification, NotificationType

router = APIRouter(prefix="/api/v1/notifications", tags=["Notifications"])


# --- Schemas ---

class NotificationOut(BaseModel):
    id: str
    task_id: Optional[str] = None
    type: str
    message: str
    read: bool
    created_at: str


def _notif_out(n) -> dict:
    return NotificationOut(
        id=n.id,
        task_id=n.task_id,
        type=n.type.value if hasattr(n.type, 'value') else str(n.type),
        message=n.message,
        read=bool(n.read),
        created_at=n.created_at.isoformat() if n.created_at else "",
    ).model_dump()


async def _own_notification(db: AsyncSession, notification_id: str, user_id: str) -> Notification:
    result = await db.execute(
        select(Notification).where(
            Notification.id == notification_id,
            Notification.user_id == user_id,
        )
    )
    notif = result.scalar_one_or_none()
    if not notif:
        raise HTTPException(404, "Notification not found")
    return notif


# ============================================================
# LIST
# ============================================================

@router.get("")
async def list_notifications(
    unread_only: bool = Query(default=False),
    type: Optional[NotificationType] = Query(None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
):
    query = select(Notification).where(Notification.user_id == user.id)
    if unread_only:
        query = query.where(Notification.read.is_(False))
    if type:
        query = query.where(Notification.type == type)
    query = query.order_by(Notification.created_at.desc()).offset(offset).limit(limit)
    result = await db.execute(query)
    return [_notif_out(n) for n in result.scalars().all()]


# ============================================================
# COUNT
# ============================================================

@router.get("/count")
async def notification_count(
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
):
    unread = (await db.execute(
        select(func.count(Notification.id)).where(
            Notification.user_id == user.id,
            Notification.read.is_(False),
        )
    )).scalar() or 0
    return {"unread": unread}


# ============================================================
# MARK READ
# ============================================================

@router.post("/read-all")
async def mark_all_read(
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
):
    result = await db.execute(
        update(Notification)
        .where(Notification.user_id == user.id, Notification.read.is_(False))
        .values(read=True)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return {"marked": result.rowcount or 0}


@router.post("/{notification_id}/read")
async def mark_read(
    notification_id: str,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
):
    notif = await _own_notification(db, notification_id, user.id)
    notif.read = True
    await db.commit()
    return {"status": "read"}


# ============================================================
# DELETE
# ============================================================

@router.delete("/{notification_id}")
async def delete_notification(
    notification_id: str,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
):
    notif = await _own_notification(db, notification_id, user.id)
    await db.delete(notif)
    await db.commit()
    return {"status": "deleted"}
