"""create booking engine tables

Revision ID: e1f2a3b4c5d6
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'e1f2a3b4c5d6'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'bookings',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('client_name', sa.String(length=120), nullable=False),
        sa.Column('client_email', sa.String(length=255), nullable=False),
        sa.Column('client_phone', sa.String(length=30), nullable=False),
        sa.Column('service', sa.String(length=255), nullable=False),
        sa.Column('source', sa.String(length=20), nullable=False),
        sa.Column('appointment_date', sa.Date(), nullable=False),
        sa.Column('time_slot', sa.String(length=40), nullable=False),
        sa.Column('original_price', sa.Integer(), nullable=False),
        sa.Column('discount', sa.Integer(), nullable=False),
        sa.Column('discount_percent', sa.Integer(), nullable=False),
        sa.Column('discount_source', sa.String(length=40), nullable=True),
        sa.Column('promo_code', sa.String(length=40), nullable=True),
        sa.Column('final_price', sa.Integer(), nullable=False),
        sa.Column('deposit_paid', sa.Integer(), nullable=False),
        sa.Column('fine_amount', sa.Integer(), nullable=True),
        sa.Column('fine_reason', sa.String(length=255), nullable=True),
        sa.Column('fine_added_at', sa.DateTime(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('paid_in_full_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('calendar_event_id', sa.String(length=255), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('cancelled_by', sa.String(length=20), nullable=True),
        sa.Column('cancellation_reason', sa.String(length=255), nullable=True),
        sa.Column('refund_status', sa.String(length=20), nullable=True),
        sa.Column('refund_amount', sa.Integer(), nullable=True),
        sa.Column('refund_notes', sa.String(length=255), nullable=True),
        sa.Column('refund_external_ref', sa.String(length=255), nullable=True),
        sa.Column('refunded_at', sa.DateTime(), nullable=True),
        sa.Column('rescheduled_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('bookings', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_bookings_client_email'), ['client_email'], unique=False)
        batch_op.create_index(batch_op.f('ix_bookings_appointment_date'), ['appointment_date'], unique=False)
        batch_op.create_index(batch_op.f('ix_bookings_status'), ['status'], unique=False)

    op.create_table(
        'booking_service_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('booking_id', sa.String(length=32), nullable=False),
        sa.Column('name', sa.String(length=160), nullable=False),
        sa.Column('price', sa.Integer(), nullable=False),
        sa.Column('added_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['booking_id'], ['bookings.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('booking_service_lines', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_booking_service_lines_booking_id'), ['booking_id'], unique=False)

    op.create_table(
        'booking_reschedules',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('booking_id', sa.String(length=32), nullable=False),
        sa.Column('from_date', sa.Date(), nullable=False),
        sa.Column('from_slot', sa.String(length=40), nullable=False),
        sa.Column('to_date', sa.Date(), nullable=False),
        sa.Column('to_slot', sa.String(length=40), nullable=False),
        sa.Column('rescheduled_at', sa.DateTime(), nullable=False),
        sa.Column('rescheduled_by', sa.String(length=80), nullable=False),
        sa.Column('notes', sa.String(length=255), nullable=True),
        sa.ForeignKeyConstraint(['booking_id'], ['bookings.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('booking_reschedules', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_booking_reschedules_booking_id'), ['booking_id'], unique=False)

    op.create_table(
        'slot_holds',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('booking_id', sa.String(length=32), nullable=False),
        sa.Column('appointment_date', sa.Date(), nullable=False),
        sa.Column('time_slot', sa.String(length=40), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['booking_id'], ['bookings.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('booking_id'),
        sa.UniqueConstraint('appointment_date', 'time_slot', name='uq_slot_hold_date_slot')
    )

    op.create_table(
        'payment_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('booking_id', sa.String(length=32), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('method', sa.String(length=20), nullable=False),
        sa.Column('external_ref', sa.String(length=255), nullable=True),
        sa.Column('recorded_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['booking_id'], ['bookings.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('payment_entries', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_payment_entries_booking_id'), ['booking_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_payment_entries_external_ref'), ['external_ref'], unique=True)

    op.create_table(
        'redeemable_codes',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=40), nullable=False),
        sa.Column('owner_identity', sa.String(length=255), nullable=False),
        sa.Column('code_type', sa.String(length=20), nullable=False),
        sa.Column('effect', sa.String(length=30), nullable=False),
        sa.Column('effect_value', sa.Integer(), nullable=True),
        sa.Column('effect_item', sa.String(length=160), nullable=True),
        sa.Column('label', sa.String(length=120), nullable=True),
        sa.Column('source_key', sa.String(length=80), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('active', sa.Boolean(), nullable=False),
        sa.Column('used_by', sa.String(length=255), nullable=True),
        sa.Column('used_at', sa.DateTime(), nullable=True),
        sa.Column('used_for', sa.String(length=20), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('owner_identity', 'source_key', name='uq_code_owner_source')
    )
    with op.batch_alter_table('redeemable_codes', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_redeemable_codes_code'), ['code'], unique=True)
        batch_op.create_index(batch_op.f('ix_redeemable_codes_owner_identity'), ['owner_identity'], unique=False)

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('actor', sa.String(length=80), nullable=True),
        sa.Column('action', sa.String(length=80), nullable=False),
        sa.Column('entity', sa.String(length=80), nullable=True),
        sa.Column('entity_id', sa.String(length=80), nullable=True),
        sa.Column('ip', sa.String(length=64), nullable=True),
        sa.Column('user_agent', sa.String(length=255), nullable=True),
        sa.Column('metadata_json', sa.Text(), nullable=True),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('audit_logs', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_audit_logs_entity_id'), ['entity_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_audit_logs_timestamp'), ['timestamp'], unique=False)


def downgrade():
    with op.batch_alter_table('audit_logs', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_audit_logs_timestamp'))
        batch_op.drop_index(batch_op.f('ix_audit_logs_entity_id'))
    op.drop_table('audit_logs')

    with op.batch_alter_table('redeemable_codes', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_redeemable_codes_owner_identity'))
        batch_op.drop_index(batch_op.f('ix_redeemable_codes_code'))
    op.drop_table('redeemable_codes')

    with op.batch_alter_table('payment_entries', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_payment_entries_external_ref'))
        batch_op.drop_index(batch_op.f('ix_payment_entries_booking_id'))
    op.drop_table('payment_entries')

    op.drop_table('slot_holds')

    with op.batch_alter_table('booking_reschedules', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_booking_reschedules_booking_id'))
    op.drop_table('booking_reschedules')

    with op.batch_alter_table('booking_service_lines', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_booking_service_lines_booking_id'))
    op.drop_table('booking_service_lines')

    with op.batch_alter_table('bookings', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_bookings_status'))
        batch_op.drop_index(batch_op.f('ix_bookings_appointment_date'))
        batch_op.drop_index(batch_op.f('ix_bookings_client_email'))
    op.drop_table('bookings')
