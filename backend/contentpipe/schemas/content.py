"""
Pydantic schemas for the content pipeline.

Record structs are read models of the ORM rows (built with
``model_validate(row)``); services pass these around instead of live ORM
objects. The rest are request/response bodies for the content API and
the results returned by the orchestrator.
"""

from datetime import datetime
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from contentpipe.core.config import settings
from contentpipe.models.content import JobStatus, JobType, SourceStatus, SourceType
from contentpipe.services.processors.vector_store import SearchResult
from contentpipe.services.processors.vectors import as_float_list


# ========================================
# Records
# ========================================

class SourceRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    owner_id: str
    title: str
    source_type: SourceType = SourceType.PDF
    file_path: Optional[str] = None
    status: SourceStatus = SourceStatus.PENDING
    source_metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("source_metadata", mode="before")
    @classmethod
    def default_metadata(cls, v):
        return v or {}


class JobRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    source_id: int
    job_type: JobType
    status: JobStatus = JobStatus.PENDING
    progress: int = Field(0, ge=0, le=100)
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class ChunkRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    source_id: int
    chunk_index: int
    page_number: Optional[int] = None
    chunk_text: str
    chunk_metadata: dict[str, Any] = Field(default_factory=dict)
    embedding: Optional[List[float]] = None

    @field_validator("chunk_metadata", mode="before")
    @classmethod
    def default_metadata(cls, v):
        return v or {}

    @field_validator("embedding", mode="before")
    @classmethod
    def coerce_embedding(cls, v):
        """pgvector returns numpy arrays; accept literals and lists too."""
        return as_float_list(v)

    @property
    def has_embedding(self) -> bool:
        return self.embedding is not None


# ========================================
# Orchestrator Results
# ========================================

class ProcessingSummary(BaseModel):
    source_id: int
    already_processed: bool = False
    chunks_created: int = 0
    total_tokens: int = 0
    average_chunk_size: float = 0.0
    pages_processed: int = 0
    pdf_metadata: Optional[dict[str, Any]] = None


class EmbeddingBatchSummary(BaseModel):
    source_id: int
    embeddings_generated: int = 0
    total_tokens: int = 0
    cost_estimate: float = 0.0
    progress: float = 0.0
    remaining: int = 0
    all_complete: bool = False


class EmbeddingStatus(BaseModel):
    source_id: int
    title: Optional[str] = None
    total_chunks: int
    chunks_with_embeddings: int
    progress: float
    complete: bool


class ProcessingStatusResponse(BaseModel):
    source_id: int
    overall_status: SourceStatus
    overall_progress: float
    jobs: List[JobRecord]
    total_jobs: int
    completed_jobs: int
    failed_jobs: int
    current_job: Optional[JobRecord] = None
    chunk_count: Optional[int] = None
    estimated_completion: Optional[datetime] = None


class ActionResult(BaseModel):
    source_id: int
    action: Literal["retry", "cancel"]
    jobs_affected: int
    message: str


class UploadResponse(BaseModel):
    source: SourceRecord
    jobs: List[JobRecord]


# ========================================
# Request Schemas
# ========================================

class ProcessRequest(BaseModel):
    """Request schema for triggering extraction and chunking."""

    source_id: int = Field(..., gt=0, description="Content source to process")
    force_reprocess: bool = Field(
        False,
        description="Delete existing chunks and process again",
    )


class StatusActionRequest(BaseModel):
    source_id: int = Field(..., gt=0)
    action: Literal["retry", "cancel"] = Field(
        ...,
        description="retry resets failed jobs; cancel fails pending/processing jobs",
    )


class EmbeddingRequest(BaseModel):
    """Request schema for embedding one batch of a source's chunks."""

    source_id: int = Field(..., gt=0)
    batch_size: int = Field(
        default_factory=lambda: settings.EMBEDDING_BATCH_SIZE,
        gt=0,
        le=100,
        description="Maximum chunks to embed in this call",
    )


class SearchRequest(BaseModel):
    """Similarity search over the caller's processed sources."""

    query: Optional[str] = Field(
        None,
        description="Free-text query, embedded with the configured provider",
        max_length=2000,
    )
    query_embedding: Optional[List[float]] = Field(
        None,
        description="Precomputed query vector",
    )
    limit: int = Field(default_factory=lambda: settings.SEARCH_DEFAULT_LIMIT, gt=0, le=50)
    threshold: float = Field(
        default_factory=lambda: settings.SEARCH_DEFAULT_THRESHOLD,
        ge=-1.0,
        le=1.0,
    )
    include_chunks: bool = True

    @field_validator("query")
    @classmethod
    def clean_query(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        return v or None

    @model_validator(mode="after")
    def require_query(self) -> "SearchRequest":
        if self.query is None and not self.query_embedding:
            raise ValueError("Either query or query_embedding is required")
        return self


class SearchResponse(BaseModel):
    results: List[SearchResult]
    total: int
