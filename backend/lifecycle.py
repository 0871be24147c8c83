# lifecycle.py — Task change-sets, history entries and notification fan-out
#
# Pure projection: given what changed on a task and who changed it, build the
# TaskHistory row and the Notification rows the caller should persist.

import os
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from models import HistoryAction, NotificationType

DUE_SOON_THRESHOLD_HOURS = float(os.getenv("DUE_SOON_THRESHOLD_HOURS", "24"))

# Fields whose change can notify someone
NOTIFY_FIELDS = ("status", "assigned_to_id", "due_date")

# Fields recorded in task history
AUDITED_FIELDS = NOTIFY_FIELDS + (
    "title", "description", "project_id",
    "pricing_type", "currency", "hourly_rate", "fixed_price", "hours",
    "start_date", "start_time", "end_date", "end_time",
)


@dataclass(frozen=True)
class FieldChange:
    field: str
    from_: Any
    to: Any

    def to_dict(self) -> Dict[str, Any]:
        return {"field": self.field, "from": _json_value(self.from_), "to": _json_value(self.to)}


@dataclass
class ChangeSet:
    created: bool
    changes: List[FieldChange] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.created or bool(self.changes)

    def get(self, name: str) -> Optional[FieldChange]:
        for change in self.changes:
            if change.field == name:
                return change
        return None

    def touched(self, name: str) -> bool:
        return self.get(name) is not None

    def to_list(self) -> List[Dict[str, Any]]:
        return [c.to_dict() for c in self.changes]


@dataclass
class HistoryRecord:
    task_id: str
    user_id: str
    action: HistoryAction
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class NotificationRecord:
    user_id: str
    task_id: Optional[str]
    type: NotificationType
    message: str


@dataclass
class TaskEvents:
    history_entry: HistoryRecord
    notifications: List[NotificationRecord] = field(default_factory=list)


# ============================================================
# VALUE NORMALISATION
# ============================================================

def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _comparable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return _as_utc(value)
    if isinstance(value, Decimal):
        return value.normalize()
    if isinstance(value, float):
        return Decimal(str(value)).normalize()
    if isinstance(value, int) and not isinstance(value, bool):
        return Decimal(value).normalize()
    return value


def _json_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return _as_utc(value).isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value


def _read(source: Any, name: str) -> Any:
    if isinstance(source, Mapping):
        return source.get(name)
    return getattr(source, name, None)


def snapshot_task(task: Any, fields: Sequence[str] = AUDITED_FIELDS) -> Dict[str, Any]:
    """Capture field values before a mutation so they can be diffed after it."""
    return {name: _read(task, name) for name in fields}


# ============================================================
# DIFF
# ============================================================

def diff_task(before: Any, after: Any, fields: Sequence[str] = NOTIFY_FIELDS) -> ChangeSet:
    """Structural comparison of two task states; ``before=None`` is a first save."""
    if before is None:
        changes = [
            FieldChange(name, None, _read(after, name))
            for name in fields
            if _read(after, name) is not None
        ]
        return ChangeSet(created=True, changes=changes)

    changes = []
    for name in fields:
        old, new = _read(before, name), _read(after, name)
        if _comparable(old) != _comparable(new):
            changes.append(FieldChange(name, old, new))
    return ChangeSet(created=False, changes=changes)


# ============================================================
# EVENTS
# ============================================================

def _status_label(value: Any) -> str:
    return str(getattr(value, "value", value))


def _due_within(task: Any, now: datetime, threshold_hours: float) -> bool:
    due = getattr(task, "due_date", None)
    if due is None:
        return False
    if not isinstance(due, datetime):
        due = datetime.combine(due, datetime.min.time())
    remaining = _as_utc(due) - _as_utc(now)
    return timedelta(0) <= remaining <= timedelta(hours=threshold_hours)


def build_due_soon_notification(
    task: Any,
    now: datetime,
    threshold: Optional[float] = None,
) -> Optional[NotificationRecord]:
    """task_due_soon for the assignee, or None when the task is not due soon."""
    hours = DUE_SOON_THRESHOLD_HOURS if threshold is None else threshold
    assignee = getattr(task, "assigned_to_id", None)
    if assignee is None or not _due_within(task, now, hours):
        return None
    status = _status_label(getattr(task, "status", None))
    if status == "completed":
        return None
    return NotificationRecord(
        user_id=assignee,
        task_id=getattr(task, "id", None),
        type=NotificationType.TASK_DUE_SOON,
        message=f'Task "{task.title}" is due soon',
    )


def derive_events(
    actor: Any,
    task: Any,
    change_set: ChangeSet,
    now: Optional[datetime] = None,
) -> TaskEvents:
    """
    History entry plus notifications for one task mutation.

    - the new assignee hears about an assignment made by someone else
    - creator and assignee hear about status changes, never the actor
    - with ``now`` given, a due date inside the threshold notifies the
      assignee when the due date or the assignee just changed
    """
    actor_id = getattr(actor, "id", None)
    task_id = getattr(task, "id", None)

    history = HistoryRecord(
        task_id=task_id,
        user_id=actor_id,
        action=HistoryAction.CREATED if change_set.created else HistoryAction.UPDATED,
        details={"changes": change_set.to_list()},
    )
    notifications: List[NotificationRecord] = []

    assignment = change_set.get("assigned_to_id")
    if assignment is not None and assignment.to is not None and assignment.to != actor_id:
        notifications.append(NotificationRecord(
            user_id=assignment.to,
            task_id=task_id,
            type=NotificationType.TASK_ASSIGNED,
            message=f"You have been assigned to task: {task.title}",
        ))

    status = change_set.get("status")
    if status is not None and not change_set.created:
        message = f'Task "{task.title}" status changed to {_status_label(status.to)}'
        for recipient in _unique(getattr(task, "created_by_id", None), getattr(task, "assigned_to_id", None)):
            if recipient == actor_id:
                continue
            notifications.append(NotificationRecord(
                user_id=recipient,
                task_id=task_id,
                type=NotificationType.TASK_STATUS_CHANGED,
                message=message,
            ))

    if now is not None and (change_set.touched("due_date") or assignment is not None):
        due_soon = build_due_soon_notification(task, now)
        if due_soon is not None:
            notifications.append(due_soon)

    return TaskEvents(history_entry=history, notifications=notifications)


def derive_comment_events(actor: Any, task: Any, comment_id: Optional[str] = None) -> TaskEvents:
    actor_id = getattr(actor, "id", None)
    history = HistoryRecord(
        task_id=task.id,
        user_id=actor_id,
        action=HistoryAction.COMMENTED,
        details={"comment_id": comment_id},
    )
    notifications = []
    assignee = getattr(task, "assigned_to_id", None)
    if assignee is not None and assignee != actor_id:
        author = getattr(actor, "full_name", None) or getattr(actor, "username", None) or "Someone"
        notifications.append(NotificationRecord(
            user_id=assignee,
            task_id=task.id,
            type=NotificationType.TASK_COMMENT,
            message=f'{author} commented on task "{task.title}"',
        ))
    return TaskEvents(history_entry=history, notifications=notifications)


def derive_registration_events(new_user: Any, supervisor_ids: Iterable[str]) -> List[NotificationRecord]:
    """new_user notifications for the supervisors who can approve a self-registration."""
    label = getattr(new_user, "full_name", None) or getattr(new_user, "username", None) or new_user.email
    new_id = getattr(new_user, "id", None)
    return [
        NotificationRecord(
            user_id=supervisor_id,
            task_id=None,
            type=NotificationType.NEW_USER,
            message=f"New user {label} registered and is awaiting approval",
        )
        for supervisor_id in _unique(*supervisor_ids)
        if supervisor_id != new_id
    ]


def _unique(*values: Optional[str]) -> List[str]:
    seen: List[str] = []
    for value in values:
        if value is not None and value not in seen:
            seen.append(value)
    return seen
