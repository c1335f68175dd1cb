"""
Pydantic schemas for request/response validation.

Import all schemas here for easy access.
"""

from contentpipe.schemas.content import (
    ActionResult,
    ChunkRecord,
    EmbeddingBatchSummary,
    EmbeddingRequest,
    EmbeddingStatus,
    JobRecord,
    ProcessingStatusResponse,
    ProcessingSummary,
    ProcessRequest,
    SearchRequest,
    SearchResponse,
    SourceRecord,
    StatusActionRequest,
    UploadResponse,
)

__all__ = [
    # Records
    "SourceRecord",
    "JobRecord",
    "ChunkRecord",
    # Results
    "ProcessingSummary",
    "EmbeddingBatchSummary",
    "EmbeddingStatus",
    "ProcessingStatusResponse",
    "ActionResult",
    "UploadResponse",
    # Requests
    "ProcessRequest",
    "StatusActionRequest",
    "EmbeddingRequest",
    "SearchRequest",
    "SearchResponse",
]
