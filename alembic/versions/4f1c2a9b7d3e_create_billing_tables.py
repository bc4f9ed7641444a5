"""Create billing tables

Revision ID: 4f1c2a9b7d3e
Revises:
Create Date: 2026-10-19 09:12:44.318207

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '4f1c2a9b7d3e'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list:
    return [
        sa.Column('created_at', sa.DateTime(timezone=False), nullable=False),
        sa.Column('modified_at', sa.DateTime(timezone=False), nullable=False),
    ]


def upgrade() -> None:
    # Owned by the identity subsystem; created here only where it does not exist yet
    op.create_table(
        'account',
        sa.Column('id', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('locale', sa.String(length=16), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email'),
        if_not_exists=True,
    )

    op.create_table(
        'account_subscription',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('account_id', sa.String(length=255), nullable=False),
        sa.Column('active_provider', sa.String(length=50), nullable=False),
        sa.Column('provider_customer_ref', sa.String(length=255), nullable=True),
        sa.Column('provider_subscription_ref', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=50), nullable=False),
        sa.Column('tier', sa.String(length=50), nullable=False),
        sa.Column('period_end', sa.DateTime(timezone=False), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('last_event_at', sa.DateTime(timezone=False), nullable=True),
        sa.Column('last_event_id', sa.String(length=255), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('account_id'),
    )
    op.create_index(
        'idx_account_subscription_customer',
        'account_subscription',
        ['active_provider', 'provider_customer_ref'],
    )
    op.create_index(
        'idx_account_subscription_subscription',
        'account_subscription',
        ['active_provider', 'provider_subscription_ref'],
    )

    op.create_table(
        'processed_event',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('provider', sa.String(length=50), nullable=False),
        sa.Column('event_id', sa.String(length=255), nullable=False),
        sa.Column('event_type', sa.String(length=100), nullable=True),
        sa.Column('account_id', sa.String(length=255), nullable=True),
        sa.Column('outcome', sa.String(length=50), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('received_at', sa.DateTime(timezone=False), nullable=False),
        sa.Column('finalized_at', sa.DateTime(timezone=False), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('provider', 'event_id', name='uq_processed_event_provider_event'),
    )
    op.create_index('idx_processed_event_outcome', 'processed_event', ['outcome'])

    op.create_table(
        'webhook_delivery',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('provider', sa.String(length=50), nullable=False),
        sa.Column('event_id', sa.String(length=255), nullable=False),
        sa.Column('outcome', sa.String(length=50), nullable=False),
        sa.Column('received_at', sa.DateTime(timezone=False), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_webhook_delivery_event', 'webhook_delivery', ['provider', 'event_id'])

    op.create_table(
        'audit_entry',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('account_id', sa.String(length=255), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('previous_status', sa.String(length=50), nullable=False),
        sa.Column('new_status', sa.String(length=50), nullable=False),
        sa.Column('previous_tier', sa.String(length=50), nullable=False),
        sa.Column('new_tier', sa.String(length=50), nullable=False),
        sa.Column('provider', sa.String(length=50), nullable=False),
        sa.Column('event_type', sa.String(length=100), nullable=False),
        sa.Column('event_id', sa.String(length=255), nullable=False),
        sa.Column('provider_event_time', sa.DateTime(timezone=False), nullable=False),
        sa.Column('new_period_end', sa.DateTime(timezone=False), nullable=True),
        sa.Column('new_customer_ref', sa.String(length=255), nullable=True),
        sa.Column('new_subscription_ref', sa.String(length=255), nullable=True),
        sa.Column('applied_at', sa.DateTime(timezone=False), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('account_id', 'version', name='uq_audit_entry_version'),
        sa.UniqueConstraint('provider', 'event_id', name='uq_audit_entry_event'),
    )
    op.create_index('ix_audit_entry_account_id', 'audit_entry', ['account_id'])


def downgrade() -> None:
    op.drop_index('ix_audit_entry_account_id', table_name='audit_entry')
    op.drop_table('audit_entry')
    op.drop_index('idx_webhook_delivery_event', table_name='webhook_delivery')
    op.drop_table('webhook_delivery')
    op.drop_index('idx_processed_event_outcome', table_name='processed_event')
    op.drop_table('processed_event')
    op.drop_index('idx_account_subscription_subscription', table_name='account_subscription')
    op.drop_index('idx_account_subscription_customer', table_name='account_subscription')
    op.drop_table('account_subscription')
