"""create_verification_and_csrf_tables

Revision ID: 3f1c9a2b7d40
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1c9a2b7d40'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """
    Create verification_records (unique token per record) and
    csrf_tokens (one row per session and form).
    """
    op.create_table(
        'verification_records',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('token', sa.String(length=64), nullable=False),
        sa.Column('verified', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('verified_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=True),
        sa.Column('subscribed', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('source_ip', sa.String(length=255), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_verification_records_token', 'verification_records', ['token'], unique=True)
    op.create_index('ix_verification_records_email', 'verification_records', ['email'])
    op.create_index('ix_verification_records_created_at', 'verification_records', ['created_at'])

    op.create_table(
        'csrf_tokens',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('session_id', sa.String(length=64), nullable=False),
        sa.Column('form_name', sa.String(length=100), nullable=False),
        sa.Column('token', sa.String(length=64), nullable=False),
        sa.Column('issued_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('session_id', 'form_name', name='uq_csrf_tokens_session_form'),
    )
    op.create_index('ix_csrf_tokens_issued_at', 'csrf_tokens', ['issued_at'])


def downgrade() -> None:
    """
    Drop both tables.
    """
    op.drop_index('ix_csrf_tokens_issued_at', table_name='csrf_tokens')
    op.drop_table('csrf_tokens')
    op.drop_index('ix_verification_records_created_at', table_name='verification_records')
    op.drop_index('ix_verification_records_email', table_name='verification_records')
    op.drop_index('ix_verification_records_token', table_name='verification_records')
    op.drop_table('verification_records')
