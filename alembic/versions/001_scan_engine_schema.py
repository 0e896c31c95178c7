"""scan_engine_schema

Revision ID: 001
Revises: 
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    # Create scan_jobs table
    op.create_table(
        'scan_jobs',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('url', sa.Text(), nullable=False),
        sa.Column(
            'state',
            sa.Enum(
                'QUEUED', 'FETCHING', 'ANALYZING', 'COMPLETED', 'FAILED', 'TIMED_OUT',
                name='scan_job_state', native_enum=False, length=16,
            ),
            nullable=False,
        ),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('version >= 1', name='check_scan_job_version_positive'),
    )
    op.create_index(op.f('ix_scan_jobs_id'), 'scan_jobs', ['id'], unique=False)
    op.create_index(op.f('ix_scan_jobs_user_id'), 'scan_jobs', ['user_id'], unique=False)
    op.create_index('idx_scan_jobs_state', 'scan_jobs', ['state'], unique=False)
    op.create_index('idx_scan_jobs_user_created', 'scan_jobs', ['user_id', 'created_at'], unique=False)
    op.create_index('idx_scan_jobs_state_created', 'scan_jobs', ['state', 'created_at'], unique=False)

    # Create scan_results table
    op.create_table(
        'scan_results',
        sa.Column('job_id', sa.String(), nullable=False),
        sa.Column('risk_score', sa.Integer(), nullable=False),
        sa.Column('categories', sa.JSON(), nullable=False),
        sa.Column('confidence_score', sa.Float(), nullable=False),
        sa.Column('reasoning', sa.Text(), nullable=False),
        sa.Column('indicators', sa.JSON(), nullable=False),
        sa.Column('content_hash', sa.String(64), nullable=False),
        sa.Column('http_status', sa.Integer(), nullable=True),
        sa.Column('http_headers', sa.JSON(), nullable=False),
        sa.Column('content_type', sa.String(255), nullable=True),
        sa.Column('model_used', sa.String(255), nullable=False),
        sa.Column('analysis_metadata', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['job_id'], ['scan_jobs.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('job_id'),
        sa.CheckConstraint('risk_score >= 0 AND risk_score <= 100', name='check_risk_score_range'),
        sa.CheckConstraint('confidence_score >= 0 AND confidence_score <= 1', name='check_confidence_range'),
    )
    op.create_index(
        'idx_scan_results_content_hash_created', 'scan_results', ['content_hash', 'created_at'], unique=False
    )
    op.create_index('idx_scan_results_created', 'scan_results', ['created_at'], unique=False)

    # Create wallets table
    op.create_table(
        'wallets',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('credit_balance', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id'),
        sa.CheckConstraint('credit_balance >= 0', name='check_credit_balance_non_negative'),
    )
    op.create_index(op.f('ix_wallets_id'), 'wallets', ['id'], unique=False)

    # Create audit_logs table
    op.create_table(
        'audit_logs',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('scan_job_id', sa.String(), nullable=False),
        sa.Column('url_accessed', sa.Text(), nullable=False),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
        sa.Column('content_hash', sa.String(64), nullable=False),
        sa.Column('http_status', sa.Integer(), nullable=True),
        sa.Column('http_headers', sa.JSON(), nullable=True),
        sa.Column('content_type', sa.String(255), nullable=True),
        sa.Column('risk_assessment_summary', sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(['scan_job_id'], ['scan_jobs.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'idx_audit_logs_scan_job_timestamp', 'audit_logs', ['scan_job_id', 'timestamp'], unique=False
    )
    op.create_index('idx_audit_logs_url_accessed', 'audit_logs', ['url_accessed'], unique=False)
    op.create_index('idx_audit_logs_content_hash', 'audit_logs', ['content_hash'], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('idx_audit_logs_content_hash', table_name='audit_logs')
    op.drop_index('idx_audit_logs_url_accessed', table_name='audit_logs')
    op.drop_index('idx_audit_logs_scan_job_timestamp', table_name='audit_logs')
    op.drop_table('audit_logs')
    op.drop_index(op.f('ix_wallets_id'), table_name='wallets')
    op.drop_table('wallets')
    op.drop_index('idx_scan_results_created', table_name='scan_results')
    op.drop_index('idx_scan_results_content_hash_created', table_name='scan_results')
    op.drop_table('scan_results')
    op.drop_index('idx_scan_jobs_state_created', table_name='scan_jobs')
    op.drop_index('idx_scan_jobs_user_created', table_name='scan_jobs')
    op.drop_index(op.f('ix_scan_jobs_user_id'), table_name='scan_jobs')
    op.drop_index('idx_scan_jobs_state', table_name='scan_jobs')
    op.drop_index(op.f('ix_scan_jobs_id'), table_name='scan_jobs')
    op.drop_table('scan_jobs')
