"""
Database Models

Import models from this module so they are registered on Base.metadata
(Alembic autogenerate and init_db depend on it):

    from contentpipe.models import ContentSource, ProcessingJob, ContentChunk
"""

from contentpipe.models.content import (
    ContentChunk,
    ContentSource,
    JobStatus,
    JobType,
    ProcessingJob,
    SourceStatus,
    SourceType,
)

__all__ = [
    "ContentSource",
    "ProcessingJob",
    "ContentChunk",
    "SourceType",
    "SourceStatus",
    "JobType",
    "JobStatus",
]
