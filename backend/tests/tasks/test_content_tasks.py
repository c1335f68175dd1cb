"""
Tests for the content pipeline Celery tasks.

Tasks are called directly (synchronously); the orchestrator and the
follow-up enqueues are mocked.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from contentpipe.core.errors import (
    DocumentValidationError,
    JobCancelledError,
    MissingCredentialError,
)
from contentpipe.models.content import JobStatus, JobType, SourceStatus
from contentpipe.schemas.content import (
    ActionResult,
    EmbeddingBatchSummary,
    JobRecord,
    ProcessingStatusResponse,
    ProcessingSummary,
)
from contentpipe.tasks.content_tasks import (
    embed_source,
    process_source,
    retry_source,
    run_async,
)


@pytest.fixture
def orchestrator():
    mock = MagicMock()
    with patch('contentpipe.tasks.content_tasks.build_orchestrator', return_value=mock):
        yield mock


@pytest.fixture
def embed_delay():
    with patch('contentpipe.tasks.content_tasks.embed_source.delay') as mock_delay:
        yield mock_delay


def make_status(chunking_status: JobStatus) -> ProcessingStatusResponse:
    jobs = [
        JobRecord(id=1, source_id=7, job_type=JobType.TEXT_EXTRACTION, status=JobStatus.COMPLETED),
        JobRecord(id=2, source_id=7, job_type=JobType.CHUNKING, status=chunking_status),
        JobRecord(id=3, source_id=7, job_type=JobType.EMBEDDING, status=JobStatus.PENDING),
    ]
    return ProcessingStatusResponse(
        source_id=7,
        overall_status=SourceStatus.PROCESSING,
        overall_progress=0.0,
        jobs=jobs,
        total_jobs=3,
        completed_jobs=1,
        failed_jobs=0,
    )


# ========================================
# run_async
# ========================================

def test_run_async_without_loop():
    async def answer():
        return 42

    assert run_async(answer()) == 42


@pytest.mark.asyncio
async def test_run_async_inside_running_loop():
    async def answer():
        return 7

    assert run_async(answer()) == 7


# ========================================
# process_source
# ========================================

def test_process_source_enqueues_embedding(orchestrator, embed_delay):
    orchestrator.process_source = AsyncMock(return_value=ProcessingSummary(
        source_id=7,
        chunks_created=4,
        total_tokens=900,
        pages_processed=2,
    ))

    result = process_source(7, owner_id="user-1")

    assert result == {
        'success': True,
        'source_id': 7,
        'chunks_created': 4,
        'total_tokens': 900,
        'pages_processed': 2,
        'already_processed': False,
    }
    orchestrator.process_source.assert_awaited_once_with(7, owner_id="user-1", force_reprocess=False)
    embed_delay.assert_called_once_with(7, "user-1")


def test_process_source_failure_returns_error(orchestrator, embed_delay):
    orchestrator.process_source = AsyncMock(
        side_effect=DocumentValidationError("Invalid PDF file format"),
    )

    result = process_source(7)

    assert result['success'] is False
    assert result['error'] == "Invalid PDF file format"
    assert result['error_code'] == "document_invalid"
    assert result['category'] == "validation"
    embed_delay.assert_not_called()


# ========================================
# embed_source
# ========================================

def test_embed_source_reenqueues_while_chunks_remain(orchestrator, embed_delay):
    orchestrator.generate_embeddings = AsyncMock(return_value=EmbeddingBatchSummary(
        source_id=7,
        embeddings_generated=20,
        progress=40.0,
        remaining=30,
    ))

    result = embed_source(7, "user-1", 20)

    assert result['success'] is True
    assert result['remaining'] == 30
    embed_delay.assert_called_once_with(7, "user-1", 20)


def test_embed_source_stops_when_complete(orchestrator, embed_delay):
    orchestrator.generate_embeddings = AsyncMock(return_value=EmbeddingBatchSummary(
        source_id=7,
        embeddings_generated=3,
        progress=100.0,
        all_complete=True,
    ))

    result = embed_source(7)

    assert result['all_complete'] is True
    embed_delay.assert_not_called()


@pytest.mark.parametrize(
    "error, code",
    [
        (MissingCredentialError(), "missing_credential"),
        (JobCancelledError(), "job_cancelled"),
    ],
)
def test_embed_source_failure_does_not_reenqueue(orchestrator, embed_delay, error, code):
    orchestrator.generate_embeddings = AsyncMock(side_effect=error)

    result = embed_source(7)

    assert result['success'] is False
    assert result['error_code'] == code
    embed_delay.assert_not_called()


# ========================================
# retry_source
# ========================================

def test_retry_resumes_embedding_after_chunking(orchestrator, embed_delay):
    orchestrator.retry = AsyncMock(return_value=ActionResult(
        source_id=7, action="retry", jobs_affected=1, message="Reset 1 failed job(s)",
    ))
    orchestrator.get_status = AsyncMock(return_value=make_status(JobStatus.COMPLETED))

    with patch('contentpipe.tasks.content_tasks.process_source.delay') as process_delay:
        result = retry_source(7)

    assert result['success'] is True
    assert result['jobs_affected'] == 1
    embed_delay.assert_called_once_with(7)
    process_delay.assert_not_called()


def test_retry_reprocesses_when_chunking_unfinished(orchestrator, embed_delay):
    orchestrator.retry = AsyncMock(return_value=ActionResult(
        source_id=7, action="retry", jobs_affected=2, message="Reset 2 failed job(s)",
    ))
    orchestrator.get_status = AsyncMock(return_value=make_status(JobStatus.PENDING))

    with patch('contentpipe.tasks.content_tasks.process_source.delay') as process_delay:
        retry_source(7)

    process_delay.assert_called_once_with(7)
    embed_delay.assert_not_called()


def test_retry_with_nothing_failed_enqueues_nothing(orchestrator, embed_delay):
    orchestrator.retry = AsyncMock(return_value=ActionResult(
        source_id=7, action="retry", jobs_affected=0, message="No failed jobs to retry",
    ))
    orchestrator.get_status = AsyncMock(return_value=make_status(JobStatus.COMPLETED))

    with patch('contentpipe.tasks.content_tasks.process_source.delay') as process_delay:
        result = retry_source(7)

    assert result['jobs_affected'] == 0
    process_delay.assert_not_called()
    embed_delay.assert_not_called()
