"""create_jobs_and_notifications

Revision ID: 7c1e0a9d4b21
Revises:
Create Date: 2026-10-18 09:12:44.310527

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '7c1e0a9d4b21'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


job_trigger = sa.Enum('SCHEDULE', 'MANUAL', 'STARTUP', name='job_trigger')
job_run_status = sa.Enum('SUCCESS', 'FAILED', name='job_run_status')
notification_endpoint_type = sa.Enum(
    'DISCORD', 'SLACK', 'WEBHOOK', 'TELEGRAM', 'PUSHOVER', 'PUSHBULLET',
    'NTFY', 'GOTIFY', 'EMAIL', 'WEBPUSH',
    name='notification_endpoint_type',
)


def upgrade() -> None:
    """Upgrade schema: scheduler bookkeeping and notification endpoints."""
    op.create_table(
        'jobs',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('schedule', sa.String(length=100), nullable=False,
                  comment='Cron expression, or empty for interval scheduling'),
        sa.Column('interval_seconds', sa.Integer(), nullable=False),
        sa.Column('enabled', sa.Boolean(), nullable=False),
        sa.Column('run_on_start', sa.Boolean(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('next_run_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_run_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('failure_count', sa.Integer(), nullable=False,
                  comment='Consecutive failures; reset by a successful run'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_jobs_name', 'jobs', ['name'], unique=True)
    op.create_index('ix_jobs_next_run_at', 'jobs', ['next_run_at'])

    op.create_table(
        'job_runs',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('job_id', sa.Integer(), nullable=False),
        sa.Column('job_name', sa.String(length=100), nullable=False),
        sa.Column('trigger', job_trigger, nullable=False),
        sa.Column('status', job_run_status, nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('finished_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('duration_ms', sa.Integer(), nullable=False),
        sa.Column('error', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['job_id'], ['jobs.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_job_runs_job_id', 'job_runs', ['job_id'])
    op.create_index('ix_job_runs_job_name', 'job_runs', ['job_name'])
    op.create_index('ix_job_runs_status', 'job_runs', ['status'])
    op.create_index('ix_job_runs_started_at', 'job_runs', ['started_at'])

    op.create_table(
        'notification_endpoints',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('type', notification_endpoint_type, nullable=False),
        sa.Column('enabled', sa.Boolean(), nullable=False),
        sa.Column('is_global', sa.Boolean(), nullable=False),
        sa.Column('event_mask', sa.Integer(), nullable=False,
                  comment='NotificationType bits; bit 0 means all events'),
        sa.Column('config', sa.JSON(), nullable=False,
                  comment='Type-specific settings validated against the adapter schema'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_notification_endpoints_type', 'notification_endpoints', ['type'])
    op.create_index('ix_notification_endpoints_is_global', 'notification_endpoints', ['is_global'])

    op.create_table(
        'user_notification_endpoints',
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('endpoint_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['endpoint_id'], ['notification_endpoints.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('user_id', 'endpoint_id'),
    )
    op.create_index(
        'ix_user_notification_endpoints_endpoint_id', 'user_notification_endpoints', ['endpoint_id']
    )

    op.create_table(
        'push_subscriptions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('endpoint', sa.Text(), nullable=False),
        sa.Column('p256dh', sa.String(length=255), nullable=False),
        sa.Column('auth', sa.String(length=255), nullable=False),
        sa.Column('user_agent', sa.String(length=500), nullable=True),
        sa.Column('active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('endpoint', name='uq_push_subscriptions_endpoint'),
    )
    op.create_index('ix_push_subscriptions_user_id', 'push_subscriptions', ['user_id'])
    op.create_index('ix_push_subscriptions_active', 'push_subscriptions', ['active'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_push_subscriptions_active', table_name='push_subscriptions')
    op.drop_index('ix_push_subscriptions_user_id', table_name='push_subscriptions')
    op.drop_table('push_subscriptions')
    op.drop_index('ix_user_notification_endpoints_endpoint_id', table_name='user_notification_endpoints')
    op.drop_table('user_notification_endpoints')
    op.drop_index('ix_notification_endpoints_is_global', table_name='notification_endpoints')
    op.drop_index('ix_notification_endpoints_type', table_name='notification_endpoints')
    op.drop_table('notification_endpoints')
    op.drop_index('ix_job_runs_started_at', table_name='job_runs')
    op.drop_index('ix_job_runs_status', table_name='job_runs')
    op.drop_index('ix_job_runs_job_name', table_name='job_runs')
    op.drop_index('ix_job_runs_job_id', table_name='job_runs')
    op.drop_table('job_runs')
    op.drop_index('ix_jobs_next_run_at', table_name='jobs')
    op.drop_index('ix_jobs_name', table_name='jobs')
    op.drop_table('jobs')

    # PostgreSQL keeps named enum types after their tables are gone
    bind = op.get_bind()
    for enum_type in (notification_endpoint_type, job_run_status, job_trigger):
        enum_type.drop(bind, checkfirst=True)
