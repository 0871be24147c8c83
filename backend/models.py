# models.py — Database models for TaskLedger
# - String UUID primary keys
# - Four-role hierarchy (super_admin, supervisor, team_lead, staff)
# - Multi-organization membership, projects, tasks with pricing
# - Append-only task history, in-app notifications, invitation links
# - Money columns are integer cents

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from sqlalchemy import (
    Column, String, DateTime, Date, JSON, Boolean, Integer, Numeric,
    Enum as SQLEnum, ForeignKey, Text, Index, UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

from roles import Role

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


def new_uuid():
    return str(uuid.uuid4())


# ============================================================
# ENUMS
# ============================================================

class TaskStatus(str, PyEnum):
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class PricingType(str, PyEnum):
    HOURLY = "hourly"
    FIXED = "fixed"


class Currency(str, PyEnum):
    PHP = "PHP"
    USD = "USD"


class HistoryAction(str, PyEnum):
    CREATED = "created"
    UPDATED = "updated"
    COMMENTED = "commented"


class NotificationType(str, PyEnum):
    TASK_ASSIGNED = "task_assigned"
    TASK_STATUS_CHANGED = "task_status_changed"
    TASK_COMMENT = "task_comment"
    TASK_DUE_SOON = "task_due_soon"
    NEW_USER = "new_user"


# ============================================================
# ORGANIZATIONS
# ============================================================

class Organization(Base):
    __tablename__ = "organizations"

    id = Column(String, primary_key=True, default=new_uuid)
    name = Column(String, nullable=False, index=True)
    description = Column(Text, nullable=True)
    created_by_id = Column(String, nullable=True)  # users.id, not enforced (users reference organizations)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    memberships = relationship("OrganizationUser", back_populates="organization", cascade="all, delete-orphan")
    projects = relationship("Project", back_populates="organization", cascade="all, delete-orphan")


class OrganizationUser(Base):
    """Membership of a user in an organization"""
    __tablename__ = "organization_users"

    id = Column(String, primary_key=True, default=new_uuid)
    organization_id = Column(String, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(SQLEnum(Role), default=Role.STAFF, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    organization = relationship("Organization", back_populates="memberships")
    user = relationship("User", back_populates="memberships")

    __table_args__ = (
        UniqueConstraint("organization_id", "user_id", name="uq_org_user"),
    )


# ============================================================
# USERS
# ============================================================

class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=new_uuid)
    email = Column(String, unique=True, nullable=False, index=True)
    username = Column(String, unique=True, nullable=False, index=True)
    full_name = Column(String, nullable=False, default="")
    password_hash = Column(String, nullable=False)
    role = Column(SQLEnum(Role), default=Role.STAFF, nullable=False, index=True)
    is_approved = Column(Boolean, default=False, nullable=False, index=True)
    current_organization_id = Column(String, ForeignKey("organizations.id", ondelete="SET NULL"), nullable=True, index=True)
    last_login_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    memberships = relationship("OrganizationUser", back_populates="user", cascade="all, delete-orphan")
    notifications = relationship("Notification", back_populates="user", cascade="all, delete-orphan")

    __table_args__ = (
        Index("idx_user_org_approved", "current_organization_id", "is_approved"),
    )


# ============================================================
# PROJECTS
# ============================================================

class Project(Base):
    __tablename__ = "projects"

    id = Column(String, primary_key=True, default=new_uuid)
    organization_id = Column(String, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    created_by_id = Column(String, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    organization = relationship("Organization", back_populates="projects")
    tasks = relationship("Task", back_populates="project", cascade="all, delete-orphan")


class UserProject(Base):
    """Assignment of a user to a project"""
    __tablename__ = "user_projects"

    id = Column(String, primary_key=True, default=new_uuid)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "project_id", name="uq_user_project"),
    )


# ============================================================
# TASKS
# ============================================================

class Task(Base):
    """Unit of billable work inside a project"""
    __tablename__ = "tasks"

    id = Column(String, primary_key=True, default=new_uuid)
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    status = Column(SQLEnum(TaskStatus), default=TaskStatus.TODO, nullable=False, index=True)

    # Assignment
    created_by_id = Column(String, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    assigned_to_id = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    # Pricing (cents)
    pricing_type = Column(SQLEnum(PricingType), default=PricingType.HOURLY, nullable=False)
    currency = Column(String(3), default=Currency.PHP.value, nullable=False)
    hourly_rate = Column(Integer, nullable=True)
    fixed_price = Column(Integer, nullable=True)
    hours = Column(Numeric(10, 2), nullable=True)  # Externally supplied duration

    # Schedule
    start_date = Column(Date, nullable=True)
    start_time = Column(String(5), nullable=True)  # "HH:MM"
    end_date = Column(Date, nullable=True)
    end_time = Column(String(5), nullable=True)
    due_date = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    project = relationship("Project", back_populates="tasks")
    creator = relationship("User", foreign_keys=[created_by_id])
    assignee = relationship("User", foreign_keys=[assigned_to_id])
    comments = relationship("TaskComment", back_populates="task", cascade="all, delete-orphan",
                            order_by="TaskComment.created_at")
    history = relationship("TaskHistory", back_populates="task", cascade="all, delete-orphan",
                           order_by="TaskHistory.created_at.desc()")

    __table_args__ = (
        Index("idx_task_project_assignee", "project_id", "assigned_to_id"),
    )


class TaskComment(Base):
    __tablename__ = "task_comments"

    id = Column(String, primary_key=True, default=new_uuid)
    task_id = Column(String, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    task = relationship("Task", back_populates="comments")
    user = relationship("User")


class TaskHistory(Base):
    """Append-only audit trail for a task"""
    __tablename__ = "task_history"

    id = Column(String, primary_key=True, default=new_uuid)
    task_id = Column(String, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    action = Column(SQLEnum(HistoryAction), nullable=False)
    details = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    task = relationship("Task", back_populates="history")
    user = relationship("User")

    __table_args__ = (
        Index("idx_history_task_time", "task_id", "created_at"),
    )


# ============================================================
# NOTIFICATIONS
# ============================================================

class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String, primary_key=True, default=new_uuid)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    task_id = Column(String, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=True, index=True)
    type = Column(SQLEnum(NotificationType), nullable=False)
    message = Column(Text, nullable=False)
    read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)

    user = relationship("User", back_populates="notifications")

    __table_args__ = (
        Index("idx_notification_user_read", "user_id", "read"),
    )


# ============================================================
# INVITATION LINKS
# ============================================================

class InvitationLink(Base):
    __tablename__ = "invitation_links"

    id = Column(String, primary_key=True, default=new_uuid)
    organization_id = Column(String, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    created_by_id = Column(String, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    token = Column(String(32), unique=True, nullable=False, index=True)
    role = Column(SQLEnum(Role), default=Role.STAFF, nullable=False)
    message = Column(Text, nullable=True)
    expires = Column(DateTime(timezone=True), nullable=True)
    max_uses = Column(Integer, nullable=True)
    used_count = Column(Integer, default=0, nullable=False)
    active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
