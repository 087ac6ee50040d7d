"""Create credential lifecycle tables

Revision ID: 4f1c2a9d7e01
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

from credential_lifecycle_core.db.db_base import JSON


# revision identifiers, used by Alembic.
revision: str = '4f1c2a9d7e01'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'integrations',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(100), nullable=False),
        sa.Column('workspace_id', sa.String(100), nullable=True),
        sa.Column('provider_key', sa.String(100), nullable=False),
        sa.Column('provider_name', sa.String(200), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('last_sync_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('next_sync_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('health_score', sa.Integer(), nullable=False, server_default='100'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('metadata', JSON(), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_integrations_user_id', 'integrations', ['user_id'])
    op.create_index('ix_integrations_status', 'integrations', ['status'])
    op.create_index(
        'ix_integration_owner', 'integrations', ['user_id', 'provider_key', 'workspace_id'], unique=True
    )

    op.create_table(
        'credentials',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(100), nullable=False),
        sa.Column('platform', sa.String(100), nullable=False),
        sa.Column('platform_name', sa.String(200), nullable=False),
        sa.Column('credential_type', sa.String(20), nullable=False),
        sa.Column('access_token', sa.Text(), nullable=True),
        sa.Column('refresh_token', sa.Text(), nullable=True),
        sa.Column('api_key', sa.Text(), nullable=True),
        sa.Column('api_secret', sa.Text(), nullable=True),
        sa.Column('additional_data', JSON(), nullable=True),
        sa.Column('scopes', JSON(), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_refreshed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('connection_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('integration_id', sa.String(36), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('refresh_lease_expires_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_credentials_user_id', 'credentials', ['user_id'])
    op.create_index('ix_credentials_integration_id', 'credentials', ['integration_id'])
    op.create_index('ix_credential_user_platform', 'credentials', ['user_id', 'platform'], unique=True)

    op.create_table(
        'integration_sync_jobs',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('integration_id', sa.String(36), nullable=False),
        sa.Column('job_type', sa.String(50), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('result_summary', JSON(), nullable=True),
        *_timestamps(),
    )
    op.create_index(
        'ix_sync_job_integration_status', 'integration_sync_jobs', ['integration_id', 'status']
    )

    op.create_table(
        'integration_logs',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(100), nullable=False),
        sa.Column('platform', sa.String(100), nullable=False),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('log_level', sa.String(20), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('error_details', JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_integration_log_user_created', 'integration_logs', ['user_id', 'created_at'])

    op.create_table(
        'integration_webhooks',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('integration_id', sa.String(36), nullable=False, unique=True),
        sa.Column('webhook_url', sa.Text(), nullable=False),
        sa.Column('webhook_id', sa.String(255), nullable=True),
        sa.Column('webhook_secret', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('event_types', JSON(), nullable=True),
        sa.Column('last_triggered_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_integration_webhooks_webhook_id', 'integration_webhooks', ['webhook_id'])

    op.create_table(
        'integration_events',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('integration_id', sa.String(36), nullable=True),
        sa.Column('user_id', sa.String(100), nullable=True),
        sa.Column('provider', sa.String(100), nullable=False),
        sa.Column('webhook_id', sa.String(255), nullable=True),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column('payload', JSON(), nullable=True),
        sa.Column('headers', JSON(), nullable=True),
        sa.Column('processed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_integration_events_integration_id', 'integration_events', ['integration_id'])

    op.create_table(
        'oauth_states',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('state', sa.String(128), nullable=False, unique=True),
        sa.Column('user_id', sa.String(100), nullable=False),
        sa.Column('platform', sa.String(100), nullable=False),
        sa.Column('code_verifier', sa.Text(), nullable=True),
        sa.Column('redirect_uri', sa.Text(), nullable=True),
        sa.Column('scopes', JSON(), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('oauth_states')
    op.drop_index('ix_integration_events_integration_id', table_name='integration_events')
    op.drop_table('integration_events')
    op.drop_index('ix_integration_webhooks_webhook_id', table_name='integration_webhooks')
    op.drop_table('integration_webhooks')
    op.drop_index('ix_integration_log_user_created', table_name='integration_logs')
    op.drop_table('integration_logs')
    op.drop_index('ix_sync_job_integration_status', table_name='integration_sync_jobs')
    op.drop_table('integration_sync_jobs')
    op.drop_index('ix_credential_user_platform', table_name='credentials')
    op.drop_index('ix_credentials_integration_id', table_name='credentials')
    op.drop_index('ix_credentials_user_id', table_name='credentials')
    op.drop_table('credentials')
    op.drop_index('ix_integration_owner', table_name='integrations')
    op.drop_index('ix_integrations_status', table_name='integrations')
    op.drop_index('ix_integrations_user_id', table_name='integrations')
    op.drop_table('integrations')
