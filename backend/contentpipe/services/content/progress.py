"""
Progress reporting for pipeline stages.

Stages report progress through a ProgressReporter instead of writing job
rows themselves. The default reporter persists progress on the job with
a compare-and-set, so a cancelled job keeps its failed status. Tests pass
a recording reporter and assert on the emitted values.
"""

from typing import Protocol

from contentpipe.core.logging import get_logger
from contentpipe.services.content.store import ContentStore

logger = get_logger(__name__)


class ProgressReporter(Protocol):
    async def report(self, job_id: int, progress: int) -> bool:
        """Publish progress (0-100); False means the job is no longer processing."""
        ...


class StoreProgressReporter:
    """Writes progress onto the job record."""

    def __init__(self, store: ContentStore):
        self.store = store

    async def report(self, job_id: int, progress: int) -> bool:
        progress = max(0, min(100, int(progress)))
        applied = await self.store.update_job_progress(job_id, progress)
        logger.debug("job_progress", job_id=job_id, progress=progress, applied=applied)
        return applied

