"""Tests for the Notifications router."""
import pytest

from models import Notification, NotificationType
from tests.conftest import get_auth_headers


async def _notify(db_session, user, message="Something happened", type=NotificationType.TASK_ASSIGNED, read=False):
    notif = Notification(user_id=user.id, type=type, message=message, read=read)
    db_session.add(notif)
    await db_session.commit()
    await db_session.refresh(notif)
    return notif


@pytest.mark.asyncio
async def test_list_notifications_empty(client, staff_user):
    headers = get_auth_headers(staff_user)
    resp = await client.get("/api/v1/notifications", headers=headers)
    assert resp.status_code == 200
    assert resp.json() == []


@pytest.mark.asyncio
async def test_list_only_own_notifications(client, db_session, staff_user, other_staff):
    await _notify(db_session, staff_user, "For Stan")
    await _notify(db_session, other_staff, "For Olga")

    resp = await client.get("/api/v1/notifications", headers=get_auth_headers(staff_user))
    body = resp.json()
    assert [n["message"] for n in body] == ["For Stan"]
    assert body[0]["type"] == "task_assigned"
    assert body[0]["read"] is False


@pytest.mark.asyncio
async def test_filters_unread_and_type(client, db_session, staff_user):
    await _notify(db_session, staff_user, "old", read=True)
    await _notify(db_session, staff_user, "comment", type=NotificationType.TASK_COMMENT)
    headers = get_auth_headers(staff_user)

    unread = await client.get("/api/v1/notifications", params={"unread_only": "true"}, headers=headers)
    assert [n["message"] for n in unread.json()] == ["comment"]

    by_type = await client.get("/api/v1/notifications", params={"type": "task_assigned"}, headers=headers)
    assert [n["message"] for n in by_type.json()] == ["old"]


@pytest.mark.asyncio
async def test_notification_count(client, db_session, staff_user):
    await _notify(db_session, staff_user)
    await _notify(db_session, staff_user, read=True)
    resp = await client.get("/api/v1/notifications/count", headers=get_auth_headers(staff_user))
    assert resp.status_code == 200
    assert resp.json() == {"unread": 1}


@pytest.mark.asyncio
async def test_mark_notification_read(client, db_session, staff_user):
    notif = await _notify(db_session, staff_user)
    headers = get_auth_headers(staff_user)
    resp = await client.post(f"/api/v1/notifications/{notif.id}/read", headers=headers)
    assert resp.status_code == 200

    count = await client.get("/api/v1/notifications/count", headers=headers)
    assert count.json()["unread"] == 0


@pytest.mark.asyncio
async def test_cannot_mark_someone_elses_notification(client, db_session, staff_user, other_staff):
    notif = await _notify(db_session, other_staff)
    resp = await client.post(f"/api/v1/notifications/{notif.id}/read", headers=get_auth_headers(staff_user))
    assert resp.status_code == 404

    await db_session.refresh(notif)
    assert notif.read is False


@pytest.mark.asyncio
async def test_mark_all_read(client, db_session, staff_user, other_staff):
    await _notify(db_session, staff_user)
    await _notify(db_session, staff_user)
    theirs = await _notify(db_session, other_staff)

    resp = await client.post("/api/v1/notifications/read-all", headers=get_auth_headers(staff_user))
    assert resp.status_code == 200
    assert resp.json()["marked"] == 2

    await db_session.refresh(theirs)
    assert theirs.read is False


@pytest.mark.asyncio
async def test_delete_notification(client, db_session, staff_user):
    notif = await _notify(db_session, staff_user)
    headers = get_auth_headers(staff_user)
    resp = await client.delete(f"/api/v1/notifications/{notif.id}", headers=headers)
    assert resp.status_code == 200

    resp = await client.get("/api/v1/notifications", headers=headers)
    assert resp.json() == []


@pytest.mark.asyncio
async def test_notifications_require_auth(client):
    resp = await client.get("/api/v1/notifications")
    assert resp.status_code in (401, 403)
