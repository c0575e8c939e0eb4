"""equipment, tickets, visit requests, confirmations and notifications

Revision ID: 0002_equipment_tickets
Revises: 0001_initial_tenancy
Create Date: 2026-10-19
"""
from __future__ import annotations
from alembic import op
import sqlalchemy as sa

revision = '0002_equipment_tickets'
down_revision = '0001_initial_tenancy'
branch_labels = None
depends_on = None

def upgrade():
    op.create_table('equipment',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('factory_id', sa.Integer(), sa.ForeignKey('factories.id'), nullable=False),
        sa.Column('gym_id', sa.Integer(), sa.ForeignKey('gyms.id'), nullable=True),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('serial_number', sa.String(length=64), nullable=False),
        sa.Column('qr_code', sa.String(length=64), nullable=False, unique=True),
        sa.Column('equipment_type', sa.String(length=32), nullable=False, server_default='other'),
        sa.Column('muscle_group', sa.String(length=32), nullable=False, server_default='other'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active'),
        sa.Column('created_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'))
    )
    op.create_index('ix_equipment_factory_id', 'equipment', ['factory_id'])
    op.create_index('ix_equipment_gym_id', 'equipment', ['gym_id'])
    op.create_index('ix_equipment_qr_code', 'equipment', ['qr_code'])

    op.create_table('tickets',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('equipment_id', sa.Integer(), sa.ForeignKey('equipment.id'), nullable=False),
        sa.Column('gym_id', sa.Integer(), sa.ForeignKey('gyms.id'), nullable=False),
        sa.Column('factory_id', sa.Integer(), sa.ForeignKey('factories.id'), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='open'),
        sa.Column('priority', sa.String(length=8), nullable=False, server_default='medium'),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('photo_url', sa.String(length=512), nullable=True),
        sa.Column('created_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('resolved_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('resolution_notes', sa.Text(), nullable=True),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('closed_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('confirmation_count', sa.Integer(), nullable=False, server_default=sa.text('0'))
    )
    for col in ('equipment_id', 'gym_id', 'factory_id', 'status', 'created_at'):
        op.create_index(f'ix_tickets_{col}', 'tickets', [col])

    op.create_table('ticket_events',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('ticket_id', sa.Integer(), sa.ForeignKey('tickets.id'), nullable=False),
        sa.Column('actor_user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('event_type', sa.String(length=32), nullable=False),
        sa.Column('data', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'))
    )
    op.create_index('ix_ticket_events_ticket_id', 'ticket_events', ['ticket_id'])
    op.create_index('ix_ticket_events_event_type', 'ticket_events', ['event_type'])

    op.create_table('factory_visit_requests',
        sa.Column('ticket_id', sa.Integer(), sa.ForeignKey('tickets.id'), primary_key=True),
        sa.Column('requested_by_gym_owner', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('gym_owner_user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('gym_owner_requested_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('requested_by_factory_employee', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('factory_employee_user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('factory_employee_requested_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('approval_status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('approved_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('scheduled_visit_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('technician_assigned_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('visit_notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'))
    )

    op.create_table('ticket_confirmations',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('ticket_id', sa.Integer(), sa.ForeignKey('tickets.id'), nullable=False),
        sa.Column('side', sa.String(length=8), nullable=False),
        sa.Column('confirmed_by_user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('confirmer_role', sa.String(length=32), nullable=False),
        sa.Column('notes', sa.Text(), nullable=False),
        sa.Column('photo_url', sa.String(length=512), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'))
    )
    op.create_index('ix_ticket_confirmations_ticket_id', 'ticket_confirmations', ['ticket_id'])
    # at most one confirmation per side
    with op.batch_alter_table('ticket_confirmations') as batch_op:
        batch_op.create_unique_constraint('uq_ticket_confirmation_side', ['ticket_id', 'side'])

    op.create_table('notifications',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('type', sa.String(length=32), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('read_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'))
    )
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])
    op.create_index('ix_notifications_created_at', 'notifications', ['created_at'])


def downgrade():
    for tbl in ['notifications', 'ticket_confirmations', 'factory_visit_requests', 'ticket_events', 'tickets', 'equipment']:
        op.drop_table(tbl)
