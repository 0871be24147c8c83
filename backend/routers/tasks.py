# routers/tasks.py — Tasks, comments, history and the payable report
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, List, Dict, Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, enforce, CurrentUser
from billing import (
    compute_task_amount, build_invoice_report, parse_clock,
    InvoiceParty, InvoiceDetails, reconcile_party_text, ComputationError,
)
from database import get_db_session
from lifecycle import (
    AUDITED_FIELDS, TaskEvents, snapshot_task, diff_task, derive_events, derive_comment_events,
)
from logging_system import log_audit
from models import (
    Task, TaskComment, TaskHistory, Project, User, OrganizationUser, Notification,
    TaskStatus, PricingType, Currency, utcnow,
)
from policy import authorize, can, Action, ResourceContext
from roles import Role
from telemetry import traced

router = APIRouter(prefix="/api/v1/tasks", tags=["Tasks"])


# ============================================================
# SCHEMAS
# ============================================================

def _check_clock(v: Optional[str]) -> Optional[str]:
    if v is None or v == "":
        return None
    try:
        parse_clock(v, "time")
    except ComputationError as exc:
        raise ValueError(str(exc))
    return v


class TaskFields(BaseModel):
    description: Optional[str] = None
    assigned_to_id: Optional[str] = None
    status: Optional[TaskStatus] = None
    pricing_type: Optional[PricingType] = None
    currency: Optional[Currency] = None
    hourly_rate: Optional[int] = Field(None, ge=0, description="Cents per hour")
    fixed_price: Optional[int] = Field(None, ge=0, description="Cents")
    hours: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
    start_date: Optional[date] = None
    start_time: Optional[str] = None
    end_date: Optional[date] = None
    end_time: Optional[str] = None
    due_date: Optional[datetime] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_clock(cls, v: Optional[str]) -> Optional[str]:
        return _check_clock(v)


class TaskCreate(TaskFields):
    project_id: str
    title: str = Field(..., min_length=1, max_length=500)


class TaskUpdate(TaskFields):
    project_id: Optional[str] = None
    title: Optional[str] = Field(None, min_length=1, max_length=500)


class TaskOut(BaseModel):
    id: str
    project_id: str
    project_name: Optional[str] = None
    title: str
    description: Optional[str] = None
    status: str
    assigned_to_id: Optional[str] = None
    created_by_id: str
    pricing_type: str
    currency: str
    hourly_rate: Optional[int] = None
    fixed_price: Optional[int] = None
    hours: Optional[float] = None
    start_date: Optional[str] = None
    start_time: Optional[str] = None
    end_date: Optional[str] = None
    end_time: Optional[str] = None
    due_date: Optional[str] = None
    amount: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class CommentCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=10000)


class CommentOut(BaseModel):
    id: str
    task_id: str
    user_id: str
    username: Optional[str] = None
    content: str
    created_at: Optional[str] = None


class HistoryOut(BaseModel):
    id: str
    task_id: str
    user_id: str
    username: Optional[str] = None
    action: str
    details: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[str] = None


class PartyIn(BaseModel):
    org_name: str = ""
    name: str = ""
    address: str = ""
    email: str = ""
    phone: str = ""
    text: Optional[str] = None  # free-text block as typed, checked against the fields


class InvoiceRequest(BaseModel):
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    project_id: Optional[str] = None
    organization_id: Optional[str] = None
    currency: Optional[Currency] = None
    bill_from: PartyIn = Field(default_factory=PartyIn)
    bill_to: PartyIn = Field(default_factory=PartyIn)
    payment_terms: str = ""


# ============================================================
# HELPERS
# ============================================================

def _ts(dt) -> Optional[str]:
    if dt is None:
        return None
    return dt.isoformat() if isinstance(dt, (datetime, date)) else str(dt)


def _task_to_out(task: Task, project_name: Optional[str] = None) -> TaskOut:
    return TaskOut(
        id=task.id,
        project_id=task.project_id,
        project_name=project_name,
        title=task.title,
        description=task.description,
        status=task.status.value if isinstance(task.status, TaskStatus) else str(task.status),
        assigned_to_id=task.assigned_to_id,
        created_by_id=task.created_by_id,
        pricing_type=task.pricing_type.value if isinstance(task.pricing_type, PricingType) else str(task.pricing_type),
        currency=task.currency,
        hourly_rate=task.hourly_rate,
        fixed_price=task.fixed_price,
        hours=float(task.hours) if task.hours is not None else None,
        start_date=_ts(task.start_date),
        start_time=task.start_time,
        end_date=_ts(task.end_date),
        end_time=task.end_time,
        due_date=_ts(task.due_date),
        amount=compute_task_amount(task).to_dict(),
        created_at=_ts(task.created_at),
        updated_at=_ts(task.updated_at),
    )


async def _get_task_with_project(db: AsyncSession, task_id: str):
    stmt = select(Task, Project).join(Project, Project.id == Task.project_id).where(Task.id == task_id)
    row = (await db.execute(stmt)).first()
    if not row:
        raise HTTPException(status_code=404, detail="Task not found")
    return row[0], row[1]


async def _get_project(db: AsyncSession, project_id: str) -> Project:
    project = (await db.execute(select(Project).where(Project.id == project_id))).scalar_one_or_none()
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    return project


def _org_context(project: Project) -> ResourceContext:
    return ResourceContext(organization_id=project.organization_id)


async def _check_assignee(db: AsyncSession, assignee_id: Optional[str], organization_id: str) -> None:
    if assignee_id is None:
        return
    stmt = select(OrganizationUser.id).where(
        OrganizationUser.user_id == assignee_id,
        OrganizationUser.organization_id == organization_id,
    )
    if (await db.execute(stmt)).scalar_one_or_none() is None:
        raise HTTPException(status_code=400, detail="Assignee is not a member of this organization")


def _clean_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Drop nulls for non-nullable columns and store enums by value."""
    for name in ("status", "pricing_type", "currency"):
        if name in fields and fields[name] is None:
            del fields[name]
    if "currency" in fields:
        fields["currency"] = Currency(fields["currency"]).value
    return fields


def _persist_events(db: AsyncSession, events: TaskEvents) -> None:
    entry = events.history_entry
    db.add(TaskHistory(task_id=entry.task_id, user_id=entry.user_id, action=entry.action, details=entry.details))
    for record in events.notifications:
        db.add(Notification(
            user_id=record.user_id,
            task_id=record.task_id,
            type=record.type,
            message=record.message,
        ))


def _visible_tasks_stmt(user: CurrentUser, organization_id: Optional[str]):
    """Tasks the user may list: own org, narrowed to owned tasks for staff and unapproved users."""
    stmt = select(Task, Project.name).join(Project, Project.id == Task.project_id)
    if organization_id is not None:
        stmt = stmt.where(Project.organization_id == organization_id)
    if not user.is_approved:
        stmt = stmt.where(or_(Task.assigned_to_id == user.id, Task.created_by_id == user.id))
    elif user.role == Role.STAFF.value:
        stmt = stmt.where(Task.assigned_to_id == user.id)
    return stmt


def _scope_organization(user: CurrentUser, requested: Optional[str]) -> Optional[str]:
    if user.role == Role.SUPER_ADMIN.value:
        return requested
    if requested and requested != user.current_organization_id:
        raise HTTPException(
            status_code=403,
            detail={"reason": "cross_organization", "message": "This resource belongs to another organization"},
        )
    if not user.current_organization_id:
        raise HTTPException(status_code=400, detail="Select an organization first")
    return user.current_organization_id


async def _payable_tasks(
    db: AsyncSession,
    user: CurrentUser,
    start_date: Optional[date],
    end_date: Optional[date],
    project_id: Optional[str],
    organization_id: Optional[str],
):
    stmt = _visible_tasks_stmt(user, _scope_organization(user, organization_id))
    if start_date:
        stmt = stmt.where(Task.start_date >= start_date)
    if end_date:
        stmt = stmt.where(Task.end_date <= end_date)
    if project_id:
        stmt = stmt.where(Task.project_id == project_id)
    stmt = stmt.order_by(Task.start_date.asc(), Task.created_at.asc())
    rows = (await db.execute(stmt)).all()
    tasks = [task for task, _ in rows]
    names = {task.project_id: name for task, name in rows}
    return tasks, names


# ============================================================
# PAYABLE REPORT
# ============================================================

@router.get("/payable/report")
async def payable_report(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    project_id: Optional[str] = None,
    organization_id: Optional[str] = None,
    currency: Optional[Currency] = None,
):
    """Billable amounts grouped by project, in integer cents"""
    with traced("tasks.payable_report", project_id=project_id):
        tasks, names = await _payable_tasks(db, user, start_date, end_date, project_id, organization_id)
        report = build_invoice_report(tasks, names, currency.value if currency else None)
    return report.to_dict()


@router.post("/payable/invoice")
async def payable_invoice(
    data: InvoiceRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Payable report plus the bill-from / bill-to blocks for an invoice"""
    tasks, names = await _payable_tasks(
        db, user, data.start_date, data.end_date, data.project_id, data.organization_id,
    )
    report = build_invoice_report(tasks, names, data.currency.value if data.currency else None)

    parties = {}
    diverged = []
    for label, party_in in (("bill_from", data.bill_from), ("bill_to", data.bill_to)):
        party = InvoiceParty(**party_in.model_dump(exclude={"text"}))
        _, differs = reconcile_party_text(party, party_in.text)
        parties[label] = party
        if differs:
            diverged.append(label)

    details = InvoiceDetails(parties["bill_from"], parties["bill_to"], data.payment_terms)
    return {**report.to_dict(), "invoice": details.to_dict(), "diverged_parties": diverged}


# ============================================================
# TASK ENDPOINTS
# ============================================================

@router.get("", response_model=List[TaskOut])
async def list_tasks(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    project_id: Optional[str] = None,
    status: Optional[TaskStatus] = None,
    assigned_to_id: Optional[str] = None,
    organization_id: Optional[str] = None,
    limit: int = Query(default=200, le=500),
):
    """Tasks of the current organization; staff only see their own"""
    stmt = _visible_tasks_stmt(user, _scope_organization(user, organization_id))
    if project_id:
        stmt = stmt.where(Task.project_id == project_id)
    if status:
        stmt = stmt.where(Task.status == status)
    if assigned_to_id:
        stmt = stmt.where(Task.assigned_to_id == assigned_to_id)
    stmt = stmt.order_by(Task.created_at.desc()).limit(limit)

    rows = (await db.execute(stmt)).all()
    return [_task_to_out(task, name) for task, name in rows]


@router.get("/{task_id}", response_model=TaskOut)
async def get_task(
    task_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    task, project = await _get_task_with_project(db, task_id)
    enforce(authorize(user, Action.TASK_READ, task, _org_context(project)))
    return _task_to_out(task, project.name)


@router.post("", response_model=TaskOut, status_code=201)
async def create_task(
    data: TaskCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    project = await _get_project(db, data.project_id)
    enforce(authorize(user, Action.TASK_CREATE, context=_org_context(project)))

    fields = _clean_fields(data.model_dump(exclude_unset=True))
    if user.role == Role.STAFF.value:
        # Staff tasks are always their own
        fields["assigned_to_id"] = user.id
    await _check_assignee(db, fields.get("assigned_to_id"), project.organization_id)

    task = Task(created_by_id=user.id, **fields)
    db.add(task)
    await db.flush()

    change_set = diff_task(None, task, AUDITED_FIELDS)
    _persist_events(db, derive_events(user, task, change_set, now=utcnow()))
    await db.commit()
    await db.refresh(task)

    log_audit("task.create", f"task:{task.id}", metadata={"project_id": project.id})
    return _task_to_out(task, project.name)


@router.patch("/{task_id}", response_model=TaskOut)
async def update_task(
    task_id: str,
    data: TaskUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    task, project = await _get_task_with_project(db, task_id)
    enforce(authorize(user, Action.TASK_UPDATE, task, _org_context(project)))

    fields = _clean_fields(data.model_dump(exclude_unset=True))
    if fields.get("title", task.title) is None:
        raise HTTPException(status_code=400, detail="Title cannot be empty")
    if "project_id" in fields:
        if fields["project_id"] is None:
            raise HTTPException(status_code=400, detail="project_id cannot be empty")
        if fields["project_id"] != task.project_id:
            target = await _get_project(db, fields["project_id"])
            if target.organization_id != project.organization_id:
                raise HTTPException(status_code=400, detail="Tasks cannot move between organizations")
            project = target
    if "assigned_to_id" in fields:
        await _check_assignee(db, fields["assigned_to_id"], project.organization_id)

    before = snapshot_task(task)
    for field, value in fields.items():
        setattr(task, field, value)

    change_set = diff_task(before, task, AUDITED_FIELDS)
    if change_set:
        _persist_events(db, derive_events(user, task, change_set, now=utcnow()))
    await db.commit()
    await db.refresh(task)

    if change_set:
        log_audit("task.update", f"task:{task.id}", metadata={"fields": [c.field for c in change_set.changes]})
    return _task_to_out(task, project.name)


@router.delete("/{task_id}")
async def delete_task(
    task_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    task, project = await _get_task_with_project(db, task_id)
    enforce(authorize(user, Action.TASK_DELETE, task, _org_context(project)))

    await db.delete(task)
    await db.commit()
    log_audit("task.delete", f"task:{task_id}", metadata={"project_id": project.id})
    return {"status": "deleted", "id": task_id}


# ============================================================
# COMMENTS & HISTORY
# ============================================================

@router.get("/{task_id}/comments", response_model=List[CommentOut])
async def list_comments(
    task_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    task, project = await _get_task_with_project(db, task_id)
    enforce(authorize(user, Action.TASK_READ, task, _org_context(project)))

    stmt = (
        select(TaskComment, User.username)
        .outerjoin(User, User.id == TaskComment.user_id)
        .where(TaskComment.task_id == task_id)
        .order_by(TaskComment.created_at.asc())
    )
    rows = (await db.execute(stmt)).all()
    return [
        CommentOut(
            id=c.id, task_id=c.task_id, user_id=c.user_id, username=username,
            content=c.content, created_at=_ts(c.created_at),
        )
        for c, username in rows
    ]


@router.post("/{task_id}/comments", response_model=CommentOut, status_code=201)
async def add_comment(
    task_id: str,
    data: CommentCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Comment on a task; anyone who can update it may comment"""
    task, project = await _get_task_with_project(db, task_id)
    enforce(authorize(user, Action.TASK_UPDATE, task, _org_context(project)))

    comment = TaskComment(task_id=task_id, user_id=user.id, content=data.content)
    db.add(comment)
    await db.flush()
    _persist_events(db, derive_comment_events(user, task, comment.id))
    await db.commit()
    await db.refresh(comment)

    return CommentOut(
        id=comment.id, task_id=task_id, user_id=user.id, username=user.username,
        content=comment.content, created_at=_ts(comment.created_at),
    )


@router.get("/{task_id}/history", response_model=List[HistoryOut])
async def get_task_history(
    task_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    limit: int = Query(default=100, le=500),
):
    task, project = await _get_task_with_project(db, task_id)
    enforce(authorize(user, Action.TASK_READ, task, _org_context(project)))

    stmt = (
        select(TaskHistory, User.username)
        .outerjoin(User, User.id == TaskHistory.user_id)
        .where(TaskHistory.task_id == task_id)
        .order_by(TaskHistory.created_at.desc())
        .limit(limit)
    )
    rows = (await db.execute(stmt)).all()
    return [
        HistoryOut(
            id=h.id, task_id=h.task_id, user_id=h.user_id, username=username,
            action=h.action.value if hasattr(h.action, "value") else str(h.action),
            details=h.details or {},
            created_at=_ts(h.created_at),
        )
        for h, username in rows
    ]


@router.get("/{task_id}/permissions")
async def task_permissions(
    task_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """What the current user may do with this task (for UI affordances)"""
    task, project = await _get_task_with_project(db, task_id)
    context = _org_context(project)
    return {
        action.value: can(user, action, task, context)
        for action in (Action.TASK_READ, Action.TASK_UPDATE, Action.TASK_DELETE)
    }
