"""Initial migration

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create restaurants table
    op.create_table(
        'restaurants',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('phone', sa.String(20)),
        sa.Column('created_at', sa.DateTime(), default=sa.func.now()),
    )

    # Create tables table
    op.create_table(
        'tables',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('restaurant_id', sa.Uuid(), sa.ForeignKey('restaurants.id'), nullable=False),
        sa.Column('label', sa.String(50)),
        sa.Column('seats', sa.Integer(), nullable=False, server_default='2'),
        sa.Column('status', sa.String(20), nullable=False, server_default='free'),
        sa.Column('created_at', sa.DateTime(), default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), default=sa.func.now(), onupdate=sa.func.now()),
    )

    # Create reservations table
    op.create_table(
        'reservations',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('restaurant_id', sa.Uuid(), sa.ForeignKey('restaurants.id'), nullable=False),
        sa.Column('table_id', sa.Uuid(), sa.ForeignKey('tables.id'), nullable=False),
        sa.Column('user_id', sa.String(255)),
        sa.Column('reserved_for', sa.String(255), nullable=False),
        sa.Column('seats', sa.Integer(), nullable=False),
        sa.Column('eta_minutes', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('responded_at', sa.DateTime()),
        sa.Column('call_sid', sa.String(64)),
        sa.Column('call_status', sa.String(32)),
        sa.Column('created_at', sa.DateTime(), default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), default=sa.func.now(), onupdate=sa.func.now()),
    )

    # Create reservation_events table
    op.create_table(
        'reservation_events',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('reservation_id', sa.Uuid(), sa.ForeignKey('reservations.id')),
        sa.Column('actor_type', sa.String(20)),
        sa.Column('actor_id', sa.String(255)),
        sa.Column('action', sa.String(64), nullable=False),
        sa.Column('data_json', sa.JSON()),
        sa.Column('created_at', sa.DateTime(), default=sa.func.now()),
    )

    # Create indexes
    op.create_index('ix_tables_restaurant_id', 'tables', ['restaurant_id'])
    op.create_index('ix_reservations_user_id', 'reservations', ['user_id'])
    op.create_index('ix_reservations_created_at', 'reservations', ['created_at'])
    op.create_index('ix_reservation_events_reservation_id', 'reservation_events', ['reservation_id'])
    # Expiry sweep scans pending rows by deadline
    op.create_index('ix_reservations_status_expires_at', 'reservations', ['status', 'expires_at'])


def downgrade() -> None:
    op.drop_table('reservation_events')
    op.drop_table('reservations')
    op.drop_table('tables')
    op.drop_table('restaurants')
