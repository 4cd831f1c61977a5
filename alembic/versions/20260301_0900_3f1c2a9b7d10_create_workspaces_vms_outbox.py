"""create workspaces, virtual machines and event outbox

Revision ID: 3f1c2a9b7d10
Revises:
Create Date: 2026-03-01 09:00:00.000000

"""
from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '3f1c2a9b7d10'
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create the tenant tables and the transactional outbox."""
    op.create_table(
        'workspaces',
        sa.Column('id', sa.Uuid(), nullable=False, comment='UUID v7 primary key (time-sortable)'),
        sa.Column('name', sa.String(length=100), nullable=False, comment='Unique workspace name'),
        sa.Column('description', sa.String(length=500), nullable=True),
        sa.Column('owner_id', sa.String(length=64), nullable=True, comment='User that created the workspace'),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_workspaces')),
        sa.UniqueConstraint('name', name='uq_workspaces_name'),
    )
    op.create_index(op.f('ix_workspaces_name'), 'workspaces', ['name'], unique=False)

    op.create_table(
        'virtual_machines',
        sa.Column('id', sa.Uuid(), nullable=False, comment='UUID v7 primary key (time-sortable)'),
        sa.Column('workspace_id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('provider', sa.String(length=20), nullable=False, comment='aws | gcp | azure | ncp'),
        sa.Column('region', sa.String(length=50), nullable=False),
        sa.Column('instance_type', sa.String(length=50), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(
            ['workspace_id'],
            ['workspaces.id'],
            name=op.f('fk_virtual_machines_workspace_id_workspaces'),
            ondelete='CASCADE',
        ),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_virtual_machines')),
    )
    op.create_index(
        op.f('ix_virtual_machines_workspace_id'), 'virtual_machines', ['workspace_id'], unique=False
    )

    op.create_table(
        'event_outbox',
        # UUID v7 assigned at enqueue; doubles as the consumer idempotency key
        sa.Column('id', sa.Uuid(), nullable=False, comment='UUID v7 primary key (time-sortable)'),

        # Routing and body
        sa.Column('topic', sa.String(length=100), nullable=False, comment='Destination category (routing key)'),
        sa.Column('event_type', sa.String(length=100), nullable=False, comment='Event type identifier'),
        sa.Column('payload', sa.Text(), nullable=False, comment='JSON-serialized event data'),

        # Delivery state
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending', comment='Delivery state'),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0', comment='Number of failed publish attempts'),
        sa.Column('last_error', sa.Text(), nullable=True, comment='Last error message if publishing failed'),

        # Tenant and tracing context
        sa.Column('workspace_id', sa.String(length=64), nullable=True, comment='Workspace (tenant) the event belongs to'),
        sa.Column('correlation_id', sa.String(length=64), nullable=True, comment='Request correlation ID'),

        # Timestamps
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now(), comment='Enqueue time'),
        sa.Column('available_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now(), comment='Earliest time the event may be claimed'),
        sa.Column('claimed_at', sa.DateTime(timezone=True), nullable=True, comment='When the current claim was taken'),
        sa.Column('published_at', sa.DateTime(timezone=True), nullable=True, comment='When the event was acknowledged by the bus'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now(), comment='Last status change'),

        sa.PrimaryKeyConstraint('id', name=op.f('pk_event_outbox')),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'published', 'failed')",
            name=op.f('ck_event_outbox_outbox_status'),
        ),
        sa.CheckConstraint(
            "(status = 'published' AND published_at IS NOT NULL)"
            " OR (status <> 'published' AND published_at IS NULL)",
            name=op.f('ck_event_outbox_published_at_iff_published'),
        ),
    )
    op.create_index(op.f('ix_event_outbox_workspace_id'), 'event_outbox', ['workspace_id'], unique=False)
    op.create_index(
        'ix_event_outbox_claim',
        'event_outbox',
        ['status', 'available_at', 'created_at'],
        unique=False,
    )
    op.create_index(
        'ix_event_outbox_processing',
        'event_outbox',
        ['claimed_at'],
        unique=False,
        postgresql_where=sa.text("status = 'processing'"),
    )
    op.create_index(
        'ix_event_outbox_published',
        'event_outbox',
        ['published_at'],
        unique=False,
        postgresql_where=sa.text("status = 'published'"),
    )


def downgrade() -> None:
    """Drop the outbox and tenant tables."""
    op.drop_index('ix_event_outbox_published', table_name='event_outbox')
    op.drop_index('ix_event_outbox_processing', table_name='event_outbox')
    op.drop_index('ix_event_outbox_claim', table_name='event_outbox')
    op.drop_index(op.f('ix_event_outbox_workspace_id'), table_name='event_outbox')
    op.drop_table('event_outbox')

    op.drop_index(op.f('ix_virtual_machines_workspace_id'), table_name='virtual_machines')
    op.drop_table('virtual_machines')

    op.drop_index(op.f('ix_workspaces_name'), table_name='workspaces')
    op.drop_table('workspaces')
