"""
Celery tasks for background processing.
"""

from contentpipe.tasks.content_tasks import (
    embed_source,
    process_source,
    retry_source,
)

__all__ = [
    "process_source",
    "embed_source",
    "retry_source",
]
