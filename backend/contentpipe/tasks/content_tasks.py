"""
Celery tasks for the content pipeline.

This module contains background tasks for:
- Extracting and chunking an uploaded source
- Embedding a source's chunks batch by batch
- Retrying a failed source

A processed source enqueues its own embedding run; each embedding task
handles one batch and re-enqueues itself until every chunk has a vector.
Tasks never auto-retry: transient provider errors are already retried
inside the embedding generator, and a failed job waits for an explicit
retry.
"""

import asyncio
import concurrent.futures
from typing import Any, Dict, Optional

from contentpipe.core.errors import ContentPipelineError, JobCancelledError
from contentpipe.core.logging import get_logger
from contentpipe.models.content import JobStatus, JobType
from contentpipe.services.content.orchestrator import build_orchestrator
from contentpipe.workers.celery_app import celery_app

logger = get_logger(__name__)


# ========================================
# Async Helper
# ========================================

def run_async(coro):
    """
    Run async coroutine, handling both event loop and no event loop scenarios.

    - Celery worker (no running loop): asyncio.run()
    - Inside a running loop (tests): asyncio.run() in a worker thread
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)

    with concurrent.futures.ThreadPoolExecutor() as executor:
        future = executor.submit(asyncio.run, coro)
        return future.result()


def _error_result(source_id: int, exc: Exception) -> Dict[str, Any]:
    result: Dict[str, Any] = {
        'success': False,
        'source_id': source_id,
        'error': str(exc),
    }
    if isinstance(exc, ContentPipelineError):
        result['error_code'] = exc.code
        result['category'] = str(exc.category)
    return result


# ========================================
# Tasks
# ========================================

@celery_app.task(name='content.process_source', bind=True)
def process_source(
    self,
    source_id: int,
    owner_id: Optional[str] = None,
    force_reprocess: bool = False,
) -> dict:
    """
    Extract and chunk a source, then enqueue its embedding.

    Args:
        source_id: Database ID of the ContentSource
        owner_id: Caller identity checked against the source
        force_reprocess: Replace existing chunks

    Returns:
        Dictionary with processing results:
        {
            'success': bool,
            'source_id': int,
            'chunks_created': int,
            'total_tokens': int,
            'pages_processed': int,
            'already_processed': bool
        }
    """
    orchestrator = build_orchestrator()

    try:
        summary = run_async(orchestrator.process_source(
            source_id, owner_id=owner_id, force_reprocess=force_reprocess,
        ))
    except ContentPipelineError as exc:
        logger.warning("process_task_failed", source_id=source_id, error=str(exc))
        return _error_result(source_id, exc)

    embed_source.delay(source_id, owner_id)

    return {
        'success': True,
        **summary.model_dump(include={
            'source_id', 'chunks_created', 'total_tokens',
            'pages_processed', 'already_processed',
        }),
    }


@celery_app.task(name='content.embed_source', bind=True)
def embed_source(
    self,
    source_id: int,
    owner_id: Optional[str] = None,
    batch_size: Optional[int] = None,
) -> dict:
    """
    Embed one batch of a source's chunks; re-enqueue while chunks remain.

    Returns:
        Dictionary with the batch summary and 'success'
    """
    orchestrator = build_orchestrator()

    try:
        summary = run_async(orchestrator.generate_embeddings(
            source_id, owner_id=owner_id, batch_size=batch_size,
        ))
    except JobCancelledError as exc:
        logger.info("embed_task_cancelled", source_id=source_id)
        return _error_result(source_id, exc)
    except ContentPipelineError as exc:
        logger.warning("embed_task_failed", source_id=source_id, error=str(exc))
        return _error_result(source_id, exc)

    if not summary.all_complete and summary.embeddings_generated > 0:
        embed_source.delay(source_id, owner_id, batch_size)

    return {'success': True, **summary.model_dump()}


@celery_app.task(name='content.retry_source', bind=True)
def retry_source(self, source_id: int) -> dict:
    """
    Reset a source's failed jobs and resume from the first unfinished stage.
    """
    orchestrator = build_orchestrator()

    async def _retry():
        result = await orchestrator.retry(source_id)
        return result, await orchestrator.get_status(source_id)

    try:
        result, status = run_async(_retry())
    except ContentPipelineError as exc:
        return _error_result(source_id, exc)

    if result.jobs_affected:
        chunking = next(job for job in status.jobs if job.job_type == JobType.CHUNKING)
        if chunking.status == JobStatus.COMPLETED:
            embed_source.delay(source_id)
        else:
            process_source.delay(source_id)

    return {'success': True, **result.model_dump()}
