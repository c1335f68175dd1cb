"""
Per-source status aggregation (read path).

Combines a source's jobs into one overall status and progress:

- overall_progress: mean effective job progress, where a completed job
  counts 100, a failed job 0 and anything else its own progress.
- overall_status:
    failed      some job failed and every job is finished
                (completed + failed == total)
    completed   every job completed
    processing  some job is processing
    otherwise   the source's stored status
- estimated_completion: linear extrapolation of the processing job's
  elapsed time against its progress.
"""

from datetime import datetime, timedelta
from typing import Optional

from contentpipe.db.base import utcnow
from contentpipe.models.content import JobStatus, SourceStatus
from contentpipe.schemas.content import JobRecord, ProcessingStatusResponse, SourceRecord


def effective_progress(job: JobRecord) -> int:
    if job.status == JobStatus.COMPLETED:
        return 100
    if job.status == JobStatus.FAILED:
        return 0
    return job.progress


def overall_status(source: SourceRecord, jobs: list[JobRecord]) -> SourceStatus:
    total = len(jobs)
    completed = sum(1 for job in jobs if job.status == JobStatus.COMPLETED)
    failed = sum(1 for job in jobs if job.status == JobStatus.FAILED)

    if failed > 0 and completed + failed == total:
        return SourceStatus.FAILED
    if total > 0 and completed == total:
        return SourceStatus.COMPLETED
    if any(job.status == JobStatus.PROCESSING for job in jobs):
        return SourceStatus.PROCESSING
    return source.status


def estimate_completion(
    job: Optional[JobRecord],
    now: Optional[datetime] = None,
) -> Optional[datetime]:
    """Projected finish time of a processing job, or None without a basis."""
    if job is None or job.started_at is None:
        return None
    if job.progress <= 0 or job.progress >= 100:
        return None

    now = now or utcnow()
    elapsed = (now - job.started_at).total_seconds()
    if elapsed < 0:
        return None

    remaining = elapsed / job.progress * (100 - job.progress)
    return now + timedelta(seconds=remaining)


def aggregate_status(
    source: SourceRecord,
    jobs: list[JobRecord],
    chunk_count: Optional[int] = None,
    now: Optional[datetime] = None,
) -> ProcessingStatusResponse:
    """
    Build the status view for a source.

    Args:
        source: The content source
        jobs: All of its jobs
        chunk_count: Number of chunks currently stored for the source
        now: Reference time for the completion estimate

    Returns:
        ProcessingStatusResponse
    """
    total = len(jobs)
    current_job = next(
        (job for job in jobs if job.status == JobStatus.PROCESSING),
        None,
    )

    overall_progress = (
        round(sum(effective_progress(job) for job in jobs) / total, 2)
        if total else 0.0
    )

    return ProcessingStatusResponse(
        source_id=source.id,
        overall_status=overall_status(source, jobs),
        overall_progress=overall_progress,
        jobs=jobs,
        total_jobs=total,
        completed_jobs=sum(1 for job in jobs if job.status == JobStatus.COMPLETED),
        failed_jobs=sum(1 for job in jobs if job.status == JobStatus.FAILED),
        current_job=current_job,
        chunk_count=chunk_count,
        estimated_completion=estimate_completion(current_job, now),
    )
