"""Initial TaskLedger schema (organizations, users, projects, tasks, history, notifications, invitations)

Revision ID: a1f3c5e7b9d2
Revises:
Create Date: 2026-10-19T09:12:41.503118
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = 'a1f3c5e7b9d2'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# SQLAlchemy Enum columns persist member names
ROLE_ENUM = ('SUPER_ADMIN', 'SUPERVISOR', 'TEAM_LEAD', 'STAFF')


def upgrade() -> None:
    # --- organizations ---
    op.create_table(
        'organizations',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('created_by_id', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_organizations_name', 'organizations', ['name'])

    # --- users ---
    op.create_table(
        'users',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('username', sa.String(), nullable=False),
        sa.Column('full_name', sa.String(), nullable=False, server_default=''),
        sa.Column('password_hash', sa.String(), nullable=False),
        sa.Column('role', sa.Enum(*ROLE_ENUM, name='role'), nullable=False, server_default='STAFF'),
        sa.Column('is_approved', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('current_organization_id', sa.String(), sa.ForeignKey('organizations.id', ondelete='SET NULL'), nullable=True),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_username', 'users', ['username'], unique=True)
    op.create_index('ix_users_role', 'users', ['role'])
    op.create_index('ix_users_is_approved', 'users', ['is_approved'])
    op.create_index('ix_users_current_organization_id', 'users', ['current_organization_id'])
    op.create_index('ix_users_created_at', 'users', ['created_at'])
    op.create_index('idx_user_org_approved', 'users', ['current_organization_id', 'is_approved'])

    # --- organization_users ---
    op.create_table(
        'organization_users',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('organization_id', sa.String(), sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('role', sa.Enum(*ROLE_ENUM, name='role', create_type=False), nullable=False, server_default='STAFF'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('organization_id', 'user_id', name='uq_org_user'),
    )
    op.create_index('ix_organization_users_organization_id', 'organization_users', ['organization_id'])
    op.create_index('ix_organization_users_user_id', 'organization_users', ['user_id'])

    # --- projects ---
    op.create_table(
        'projects',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('organization_id', sa.String(), sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('created_by_id', sa.String(), sa.ForeignKey('users.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_projects_organization_id', 'projects', ['organization_id'])

    # --- user_projects ---
    op.create_table(
        'user_projects',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('project_id', sa.String(), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'project_id', name='uq_user_project'),
    )
    op.create_index('ix_user_projects_user_id', 'user_projects', ['user_id'])
    op.create_index('ix_user_projects_project_id', 'user_projects', ['project_id'])

    # --- tasks ---
    op.create_table(
        'tasks',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('project_id', sa.String(), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('status', sa.Enum('TODO', 'IN_PROGRESS', 'COMPLETED', name='taskstatus'), nullable=False, server_default='TODO'),
        sa.Column('created_by_id', sa.String(), sa.ForeignKey('users.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('assigned_to_id', sa.String(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('pricing_type', sa.Enum('HOURLY', 'FIXED', name='pricingtype'), nullable=False, server_default='HOURLY'),
        sa.Column('currency', sa.String(3), nullable=False, server_default='PHP'),
        sa.Column('hourly_rate', sa.Integer(), nullable=True),
        sa.Column('fixed_price', sa.Integer(), nullable=True),
        sa.Column('hours', sa.Numeric(10, 2), nullable=True),
        sa.Column('start_date', sa.Date(), nullable=True),
        sa.Column('start_time', sa.String(5), nullable=True),
        sa.Column('end_date', sa.Date(), nullable=True),
        sa.Column('end_time', sa.String(5), nullable=True),
        sa.Column('due_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_tasks_project_id', 'tasks', ['project_id'])
    op.create_index('ix_tasks_status', 'tasks', ['status'])
    op.create_index('ix_tasks_assigned_to_id', 'tasks', ['assigned_to_id'])
    op.create_index('idx_task_project_assignee', 'tasks', ['project_id', 'assigned_to_id'])

    # --- task_comments ---
    op.create_table(
        'task_comments',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('task_id', sa.String(), sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_task_comments_task_id', 'task_comments', ['task_id'])

    # --- task_history ---
    op.create_table(
        'task_history',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('task_id', sa.String(), sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('action', sa.Enum('CREATED', 'UPDATED', 'COMMENTED', name='historyaction'), nullable=False),
        sa.Column('details', sa.JSON(), nullable=False, server_default='{}'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_task_history_task_id', 'task_history', ['task_id'])
    op.create_index('idx_history_task_time', 'task_history', ['task_id', 'created_at'])

    # --- notifications ---
    op.create_table(
        'notifications',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('task_id', sa.String(), sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=True),
        sa.Column('type', sa.Enum('TASK_ASSIGNED', 'TASK_STATUS_CHANGED', 'TASK_COMMENT', 'TASK_DUE_SOON', 'NEW_USER', name='notificationtype'), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('read', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])
    op.create_index('ix_notifications_task_id', 'notifications', ['task_id'])
    op.create_index('ix_notifications_created_at', 'notifications', ['created_at'])
    op.create_index('idx_notification_user_read', 'notifications', ['user_id', 'read'])

    # --- invitation_links ---
    op.create_table(
        'invitation_links',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('organization_id', sa.String(), sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('created_by_id', sa.String(), sa.ForeignKey('users.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('token', sa.String(32), nullable=False),
        sa.Column('role', sa.Enum(*ROLE_ENUM, name='role', create_type=False), nullable=False, server_default='STAFF'),
        sa.Column('message', sa.Text(), nullable=True),
        sa.Column('expires', sa.DateTime(timezone=True), nullable=True),
        sa.Column('max_uses', sa.Integer(), nullable=True),
        sa.Column('used_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_invitation_links_organization_id', 'invitation_links', ['organization_id'])
    op.create_index('ix_invitation_links_token', 'invitation_links', ['token'], unique=True)


def downgrade() -> None:
    op.drop_table('invitation_links')
    op.drop_table('notifications')
    op.drop_table('task_history')
    op.drop_table('task_comments')
    op.drop_table('tasks')
    op.drop_table('user_projects')
    op.drop_table('projects')
    op.drop_table('organization_users')
    op.drop_table('users')
    op.drop_table('organizations')
    for enum_name in ('notificationtype', 'historyaction', 'pricingtype', 'taskstatus', 'role'):
        sa.Enum(name=enum_name).drop(op.get_bind(), checkfirst=True)
