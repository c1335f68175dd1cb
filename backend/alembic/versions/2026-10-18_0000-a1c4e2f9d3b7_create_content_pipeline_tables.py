"""create_content_pipeline_tables

Revision ID: a1c4e2f9d3b7
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from pgvector.sqlalchemy import Vector
from sqlalchemy.dialects import postgresql

from contentpipe.core.config import settings

# revision identifiers, used by Alembic.
revision: str = 'a1c4e2f9d3b7'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Enum columns store member names
source_type = postgresql.ENUM('PDF', name='sourcetype', create_type=False)
source_status = postgresql.ENUM('PENDING', 'PROCESSING', 'COMPLETED', 'FAILED', name='sourcestatus', create_type=False)
job_type = postgresql.ENUM('TEXT_EXTRACTION', 'CHUNKING', 'EMBEDDING', name='jobtype', create_type=False)
job_status = postgresql.ENUM('PENDING', 'PROCESSING', 'COMPLETED', 'FAILED', name='jobstatus', create_type=False)


def upgrade() -> None:
    """
    Create the content pipeline schema.

    Creates the following tables:
    1. content_sources - Uploaded documents
    2. processing_jobs - One row per (source, stage)
    3. content_chunks - Chunk text with optional embedding

    The embedding column width comes from EMBEDDING_DIMENSION at the time
    the migration runs.
    """
    op.execute('CREATE EXTENSION IF NOT EXISTS vector')

    bind = op.get_bind()
    for enum_type in (source_type, source_status, job_type, job_status):
        enum_type.create(bind, checkfirst=True)

    # ================================
    # content_sources
    # ================================
    op.create_table(
        'content_sources',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('owner_id', sa.String(length=255), nullable=False),
        sa.Column('title', sa.String(length=500), nullable=False),
        sa.Column('source_type', source_type, nullable=False),
        sa.Column('file_path', sa.String(length=1000), nullable=True),
        sa.Column('status', source_status, nullable=False),
        sa.Column('source_metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_content_sources')),
    )
    op.create_index(op.f('ix_content_sources_owner_id'), 'content_sources', ['owner_id'])
    op.create_index(op.f('ix_content_sources_status'), 'content_sources', ['status'])

    # ================================
    # processing_jobs
    # ================================
    op.create_table(
        'processing_jobs',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('source_id', sa.Integer(), nullable=False),
        sa.Column('job_type', job_type, nullable=False),
        sa.Column('status', job_status, nullable=False),
        sa.Column('progress', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('progress >= 0 AND progress <= 100', name=op.f('ck_processing_jobs_progress_range')),
        sa.ForeignKeyConstraint(['source_id'], ['content_sources.id'], name=op.f('fk_processing_jobs_source_id_content_sources'), ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_processing_jobs')),
        sa.UniqueConstraint('source_id', 'job_type', name='uq_processing_job_source_type'),
    )
    op.create_index(op.f('ix_processing_jobs_source_id'), 'processing_jobs', ['source_id'])
    op.create_index(op.f('ix_processing_jobs_status'), 'processing_jobs', ['status'])

    # ================================
    # content_chunks
    # ================================
    op.create_table(
        'content_chunks',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('source_id', sa.Integer(), nullable=False),
        sa.Column('chunk_index', sa.Integer(), nullable=False),
        sa.Column('page_number', sa.Integer(), nullable=True),
        sa.Column('chunk_text', sa.Text(), nullable=False),
        sa.Column('chunk_metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('embedding', Vector(settings.EMBEDDING_DIMENSION), nullable=True),
        sa.ForeignKeyConstraint(['source_id'], ['content_sources.id'], name=op.f('fk_content_chunks_source_id_content_sources'), ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_content_chunks')),
        sa.UniqueConstraint('source_id', 'chunk_index', name='uq_content_chunk_source_index'),
    )
    op.create_index(op.f('ix_content_chunks_source_id'), 'content_chunks', ['source_id'])


def downgrade() -> None:
    op.drop_index(op.f('ix_content_chunks_source_id'), table_name='content_chunks')
    op.drop_table('content_chunks')

    op.drop_index(op.f('ix_processing_jobs_status'), table_name='processing_jobs')
    op.drop_index(op.f('ix_processing_jobs_source_id'), table_name='processing_jobs')
    op.drop_table('processing_jobs')

    op.drop_index(op.f('ix_content_sources_status'), table_name='content_sources')
    op.drop_index(op.f('ix_content_sources_owner_id'), table_name='content_sources')
    op.drop_table('content_sources')

    bind = op.get_bind()
    for enum_type in (job_status, job_type, source_status, source_type):
        enum_type.drop(bind, checkfirst=True)
