"""
Content Models

Tables backing the content-processing pipeline.

Models Included:
----------------
1. ContentSource - An uploaded document and its aggregate status
2. ProcessingJob - One pipeline stage's execution record for a source
3. ContentChunk - A bounded text span of a source, optionally embedded

Relationships:
--------------
- ContentSource (1) ←→ (Many) ProcessingJob  (one job per JobType)
- ContentSource (1) ←→ (Many) ContentChunk

Lifecycle:
----------
Sources are created on upload together with one pending job per stage.
Jobs are only mutated by the orchestrator; a retry resets a job row in
place instead of inserting a new one. Chunks are written by the chunking
stage, updated in place by the embedding stage, and deleted wholesale
when a source is force-reprocessed.
"""

import enum
from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship
from pgvector.sqlalchemy import Vector

from contentpipe.core.config import settings
from contentpipe.db.base import BaseModel, String255, String500, String1000


# ================================
# Enums
# ================================

class SourceType(str, enum.Enum):
    """Document types the pipeline can extract text from."""

    PDF = "pdf"

    def __str__(self) -> str:
        return self.value


class SourceStatus(str, enum.Enum):
    """
    Aggregate status of a content source.

    Status Flow:
    ------------
    PENDING → PROCESSING → COMPLETED (every chunk embedded)
                  ↓
               FAILED (a stage failed or the run was cancelled)

    A retry moves a FAILED source back to PROCESSING.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value


class JobStatus(str, enum.Enum):
    """
    Status of a single stage.

    PENDING → PROCESSING → {COMPLETED | FAILED}. A FAILED job can be reset
    to PENDING by a retry; cancellation moves PENDING/PROCESSING straight
    to FAILED.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value


class JobType(str, enum.Enum):
    """Pipeline stages, in execution order."""

    TEXT_EXTRACTION = "text_extraction"
    CHUNKING = "chunking"
    EMBEDDING = "embedding"

    def __str__(self) -> str:
        return self.value


# ================================
# ContentSource Model
# ================================

class ContentSource(BaseModel):
    """
    An uploaded document.

    source_metadata holds free-form stats written by the pipeline:
    original_filename, file_size, pdf_metadata, processing_stats,
    embedding_cost, total_embeddings, embeddings_completed_at.
    """

    __tablename__ = "content_sources"

    owner_id: Mapped[str] = mapped_column(
        String255,
        nullable=False,
        index=True,
        comment="Identifier of the owning user (issued by the auth layer)"
    )

    title: Mapped[str] = mapped_column(
        String500,
        nullable=False,
        comment="Display title, defaults to the uploaded file name"
    )

    source_type: Mapped[SourceType] = mapped_column(
        nullable=False,
        default=SourceType.PDF,
        comment="Document type"
    )

    file_path: Mapped[str | None] = mapped_column(
        String1000,
        nullable=True,
        comment="Storage reference of the uploaded file"
    )

    status: Mapped[SourceStatus] = mapped_column(
        nullable=False,
        default=SourceStatus.PENDING,
        index=True,
        comment="Aggregate processing status"
    )

    source_metadata: Mapped[dict | None] = mapped_column(
        JSONB,
        nullable=True,
        default=dict,
        comment="Extraction stats, cost totals and document metadata"
    )

    jobs: Mapped[list["ProcessingJob"]] = relationship(
        "ProcessingJob",
        back_populates="source",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    chunks: Mapped[list["ContentChunk"]] = relationship(
        "ContentChunk",
        back_populates="source",
        cascade="all, delete-orphan",
        lazy="noload",
    )


# ================================
# ProcessingJob Model
# ================================

class ProcessingJob(BaseModel):
    """
    Execution record of one stage for one source.

    status and progress are the only columns that can be raced on by
    concurrent runs; the record store changes them with compare-and-set
    UPDATEs guarded by the expected prior status.
    """

    __tablename__ = "processing_jobs"

    source_id: Mapped[int] = mapped_column(
        ForeignKey("content_sources.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Foreign key to content_sources table"
    )

    job_type: Mapped[JobType] = mapped_column(
        nullable=False,
        comment="Pipeline stage"
    )

    status: Mapped[JobStatus] = mapped_column(
        nullable=False,
        default=JobStatus.PENDING,
        index=True,
        comment="Stage status"
    )

    progress: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Stage progress percentage (0-100)"
    )

    error_message: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        comment="Why the stage failed"
    )

    started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    source: Mapped["ContentSource"] = relationship(
        "ContentSource",
        back_populates="jobs",
    )

    __table_args__ = (
        UniqueConstraint(
            "source_id",
            "job_type",
            name="uq_processing_job_source_type"
        ),
        CheckConstraint(
            "progress >= 0 AND progress <= 100",
            name="progress_range"
        ),
    )

    def __repr__(self) -> str:
        return (
            f"ProcessingJob(id={self.id}, source_id={self.source_id}, "
            f"type={self.job_type}, status={self.status}, progress={self.progress})"
        )


# ================================
# ContentChunk Model
# ================================

class ContentChunk(BaseModel):
    """
    A chunk of a source's text.

    chunk_index is unique and contiguous per source, increasing in page
    order then position within the page. chunk_metadata carries
    token_count, start_index and end_index (character offsets in the page
    text), plus embedding_model and embedding_generated_at once embedded.
    """

    __tablename__ = "content_chunks"

    source_id: Mapped[int] = mapped_column(
        ForeignKey("content_sources.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Foreign key to content_sources table"
    )

    chunk_index: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Global order of this chunk within the source (0-indexed)"
    )

    page_number: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
        comment="1-based page the chunk was taken from"
    )

    chunk_text: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )

    chunk_metadata: Mapped[dict | None] = mapped_column(
        JSONB,
        nullable=True,
        comment="Token count, character offsets, embedding model"
    )

    embedding = mapped_column(
        Vector(settings.EMBEDDING_DIMENSION),
        nullable=True,
        comment="Embedding vector, NULL until the embedding stage runs"
    )

    source: Mapped["ContentSource"] = relationship(
        "ContentSource",
        back_populates="chunks",
    )

    __table_args__ = (
        UniqueConstraint(
            "source_id",
            "chunk_index",
            name="uq_content_chunk_source_index"
        ),
    )

    def __repr__(self) -> str:
        preview = self.chunk_text[:50] + "..." if self.chunk_text else ""
        return (
            f"ContentChunk(id={self.id}, source_id={self.source_id}, "
            f"index={self.chunk_index}, text='{preview}')"
        )
