"""Initial schema

Revision ID: 001_initial
Revises:
Create Date: 2026-10-01 00:00:00.000000

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """
    Create initial database schema:
    - short_links: code -> target mapping with lifecycle state
    - retired_codes: codes released by hard deletes, never reassigned
    - resolution_events: append-only analytics events
    - rate_limit_counters: fixed-window counters per (dimension, key)
    - recovery_tokens: hashed credential-recovery tokens
    """
    op.create_table(
        'short_links',
        sa.Column('id', sa.Integer(), nullable=False, autoincrement=True),
        sa.Column('code', sa.String(length=50), nullable=False),
        sa.Column('target', sa.Text(), nullable=False),
        sa.Column('owner', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code'),
    )
    op.create_index('ix_short_links_code', 'short_links', ['code'], unique=True)
    op.create_index('ix_short_links_owner', 'short_links', ['owner'])
    op.create_index('ix_short_links_status', 'short_links', ['status'])
    op.create_index('ix_short_links_created_at', 'short_links', ['created_at'])
    op.create_index('ix_short_links_expires_at', 'short_links', ['expires_at'])

    op.create_table(
        'retired_codes',
        sa.Column('code', sa.String(length=50), nullable=False),
        sa.Column('retired_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('code'),
    )

    # No foreign key to short_links: events outlive hard-deleted links
    op.create_table(
        'resolution_events',
        sa.Column('id', sa.Integer(), nullable=False, autoincrement=True),
        sa.Column('short_code', sa.String(length=50), nullable=False),
        sa.Column('link_created_at', sa.DateTime(), nullable=False),
        sa.Column('occurred_at', sa.DateTime(), nullable=False),
        sa.Column('outcome', sa.String(length=10), nullable=False),
        sa.Column('client_ip', sa.String(length=45), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('referrer', sa.Text(), nullable=True),
        sa.Column('country_code', sa.String(length=2), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_resolution_events_short_code', 'resolution_events', ['short_code'])
    op.create_index('ix_resolution_events_occurred_at', 'resolution_events', ['occurred_at'])
    op.create_index(
        'ix_resolution_events_code_occurred',
        'resolution_events',
        ['short_code', 'occurred_at'],
    )

    op.create_table(
        'rate_limit_counters',
        sa.Column('dimension', sa.String(length=20), nullable=False),
        sa.Column('key', sa.String(length=255), nullable=False),
        sa.Column('count', sa.Integer(), nullable=False),
        sa.Column('window_start', sa.DateTime(), nullable=False),
        sa.Column('window_end', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('dimension', 'key'),
    )
    op.create_index('ix_rate_limit_counters_window_end', 'rate_limit_counters', ['window_end'])

    op.create_table(
        'recovery_tokens',
        sa.Column('id', sa.Integer(), nullable=False, autoincrement=True),
        sa.Column('subject', sa.String(length=255), nullable=False),
        sa.Column('token_hash', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('used_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('token_hash'),
    )
    op.create_index('ix_recovery_tokens_subject', 'recovery_tokens', ['subject'])
    op.create_index('ix_recovery_tokens_expires_at', 'recovery_tokens', ['expires_at'])


def downgrade() -> None:
    op.drop_table('recovery_tokens')
    op.drop_table('rate_limit_counters')
    op.drop_table('resolution_events')
    op.drop_table('retired_codes')
    op.drop_table('short_links')
