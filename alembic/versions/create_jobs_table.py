"""Create jobs table

Revision ID: create_jobs_table
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = 'create_jobs_table'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'jobs',
        sa.Column('job_id', sa.String(length=36), nullable=False),
        # Masumi blockchain identifiers can be very long (682+ characters)
        sa.Column('blockchain_identifier', sa.Text(), nullable=False),
        sa.Column('pay_by_time', sa.BigInteger(), nullable=True),
        sa.Column('submit_result_time', sa.BigInteger(), nullable=False),
        sa.Column('unlock_time', sa.BigInteger(), nullable=False),
        sa.Column('external_dispute_unlock_time', sa.BigInteger(), nullable=False),
        sa.Column('amounts', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('agent_identifier', sa.Text(), nullable=True),
        sa.Column('seller_vkey', sa.Text(), nullable=True),
        sa.Column('identifier_from_purchaser', sa.String(length=255), nullable=True),
        sa.Column('input_hash', sa.String(length=64), nullable=True),
        sa.Column('payment_status', sa.String(length=20), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('input_data', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('input_request', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('execution_handle', sa.Text(), nullable=True),
        sa.Column('result', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('job_id')
    )
    op.create_index('idx_jobs_blockchain_id', 'jobs', ['blockchain_identifier'], unique=True)
    op.create_index('idx_jobs_status', 'jobs', ['status'], unique=False)
    op.create_index('idx_jobs_payment_status', 'jobs', ['payment_status'], unique=False)
    op.create_index('idx_jobs_created_at', 'jobs', ['created_at'], unique=False)


def downgrade() -> None:
    op.drop_index('idx_jobs_created_at', table_name='jobs')
    op.drop_index('idx_jobs_payment_status', table_name='jobs')
    op.drop_index('idx_jobs_status', table_name='jobs')
    op.drop_index('idx_jobs_blockchain_id', table_name='jobs')
    op.drop_table('jobs')
