"""create users and otp_records tables

Revision ID: c4e1a7d2b9f0
Revises:
Create Date: 2026-10-19

Creates:
  users        accounts; verified_at stays null until the REGISTER OTP passes
  otp_records  one row per issued code, bcrypt hash only

uq_otp_records_pending_key is a partial unique index: at most one row with
status = 'pending' per (user_id, purpose, channel). Used/expired/blocked rows
are history and don't count against it.
"""
from alembic import op
import sqlalchemy as sa

revision = 'c4e1a7d2b9f0'
down_revision = None
branch_labels = None
depends_on = None

OTP_PURPOSES = ('register', 'reset_password', 'email_verification', 'login_verification', 'two_factor_auth')
OTP_CHANNELS = ('email', 'sms', 'whatsapp')
OTP_STATUSES = ('pending', 'used', 'expired', 'blocked')


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), primary_key=True, nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('phone', sa.String(20), nullable=True),
        sa.Column('hashed_password', sa.String(), nullable=False),
        sa.Column('role', sa.String(20), server_default='user', nullable=False),
        sa.Column('two_factor_enabled', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('verified_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'otp_records',
        sa.Column('id', sa.Uuid(), primary_key=True, nullable=False),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('purpose', sa.Enum(*OTP_PURPOSES, name='otp_purpose'), nullable=False),
        sa.Column('channel', sa.Enum(*OTP_CHANNELS, name='otp_channel'), nullable=False),
        sa.Column('code_hash', sa.String(), nullable=False),
        sa.Column('status', sa.Enum(*OTP_STATUSES, name='otp_status'), server_default='pending', nullable=False),
        sa.Column('retry_count', sa.Integer(), server_default='0', nullable=False),
        sa.Column('expires_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
    )
    op.create_index('ix_otp_records_user_id', 'otp_records', ['user_id'])
    op.create_index(
        'ix_otp_records_key_created', 'otp_records', ['user_id', 'purpose', 'channel', 'created_at'],
    )
    op.create_index(
        'uq_otp_records_pending_key',
        'otp_records',
        ['user_id', 'purpose', 'channel'],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
    )


def downgrade() -> None:
    op.drop_index('uq_otp_records_pending_key', table_name='otp_records')
    op.drop_index('ix_otp_records_key_created', table_name='otp_records')
    op.drop_index('ix_otp_records_user_id', table_name='otp_records')
    op.drop_table('otp_records')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')
    sa.Enum(name='otp_status').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='otp_channel').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='otp_purpose').drop(op.get_bind(), checkfirst=True)
