# routers/projects.py — Projects inside the current organization
from typing import Optional, List

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, enforce, CurrentUser
from database import get_db_session
from logging_system import log_audit
from models import Project, Task
from policy import authorize, Action, ResourceContext
from roles import Role

router = APIRouter(prefix="/api/v1/projects", tags=["Projects"])


# ============================================================
# SCHEMAS
# ============================================================

class ProjectCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None


class ProjectUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None


class ProjectOut(BaseModel):
    id: str
    organization_id: str
    name: str
    description: Optional[str] = None
    created_by_id: str
    task_count: int = 0
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


# ============================================================
# HELPERS
# ============================================================

async def _project_to_out(project: Project, db: AsyncSession) -> ProjectOut:
    count = (await db.execute(select(func.count(Task.id)).where(Task.project_id == project.id))).scalar() or 0
    return ProjectOut(
        id=project.id,
        organization_id=project.organization_id,
        name=project.name,
        description=project.description,
        created_by_id=project.created_by_id,
        task_count=count,
        created_at=project.created_at.isoformat() if project.created_at else None,
        updated_at=project.updated_at.isoformat() if project.updated_at else None,
    )


async def get_project(db: AsyncSession, project_id: str) -> Project:
    project = (await db.execute(select(Project).where(Project.id == project_id))).scalar_one_or_none()
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    return project


def _require_current_org(user: CurrentUser) -> str:
    if not user.current_organization_id:
        raise HTTPException(status_code=400, detail="Select an organization first")
    return user.current_organization_id


# ============================================================
# ENDPOINTS
# ============================================================

@router.get("", response_model=List[ProjectOut])
async def list_projects(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    organization_id: Optional[str] = None,
    limit: int = Query(default=200, le=500),
):
    """Projects of the current organization (super_admin may pick any)"""
    org_id = organization_id if organization_id and user.role == Role.SUPER_ADMIN.value else None
    org_id = org_id or _require_current_org(user)
    stmt = (
        select(Project)
        .where(Project.organization_id == org_id)
        .order_by(Project.name.asc())
        .limit(limit)
    )
    projects = (await db.execute(stmt)).scalars().all()
    return [await _project_to_out(p, db) for p in projects]


@router.get("/{project_id}", response_model=ProjectOut)
async def get_project_by_id(
    project_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    project = await get_project(db, project_id)
    if user.role != Role.SUPER_ADMIN.value and project.organization_id != user.current_organization_id:
        raise HTTPException(status_code=404, detail="Project not found")
    return await _project_to_out(project, db)


@router.post("", response_model=ProjectOut, status_code=201)
async def create_project(
    data: ProjectCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    org_id = _require_current_org(user)
    enforce(authorize(user, Action.PROJECT_CREATE, context=ResourceContext(organization_id=org_id)))

    project = Project(
        organization_id=org_id,
        name=data.name,
        description=data.description,
        created_by_id=user.id,
    )
    db.add(project)
    await db.commit()
    await db.refresh(project)

    log_audit("project.create", f"project:{project.id}")
    return await _project_to_out(project, db)


@router.patch("/{project_id}", response_model=ProjectOut)
async def update_project(
    project_id: str,
    data: ProjectUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    project = await get_project(db, project_id)
    enforce(authorize(user, Action.PROJECT_UPDATE, project))

    changes = data.model_dump(exclude_unset=True)
    for field, value in changes.items():
        setattr(project, field, value)
    await db.commit()
    await db.refresh(project)

    log_audit("project.update", f"project:{project.id}", metadata={"fields": sorted(changes)})
    return await _project_to_out(project, db)


@router.delete("/{project_id}")
async def delete_project(
    project_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    project = await get_project(db, project_id)
    enforce(authorize(user, Action.PROJECT_DELETE, project))

    await db.delete(project)
    await db.commit()
    log_audit("project.delete", f"project:{project_id}")
    return {"status": "deleted", "id": project_id}
