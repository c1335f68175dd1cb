"""
Processing Job Orchestrator

Drives a content source through text extraction → chunking → embedding,
one ProcessingJob per stage.

Job State Machine:
------------------
    PENDING → PROCESSING → COMPLETED
                  ↓
               FAILED ──retry──→ PENDING
    PENDING / PROCESSING ──cancel──→ FAILED ("Cancelled by user")

Every status change is a compare-and-set against the expected prior
status, so a retry, a cancel and an in-flight run can never both win.

Stages:
-------
1. process_source: extraction + chunking in one run. Progress on the
   extraction job is 25 after validation, 50 after extraction and 75
   after chunking; both jobs finish at 100. A forced rerun also holds the
   embedding job until the new chunks are stored, then resets it.
2. generate_embeddings: one resumable batch of chunks that still lack a
   vector. The embedding job is PROCESSING only while a batch is in
   flight and returns to PENDING between batches. When every chunk is
   embedded the job and the source become COMPLETED.

Failures are recorded on the job's error_message, the source is marked
FAILED, and the error is re-raised to the caller. Nothing retries a
whole run automatically: retry() is an explicit action.
"""

from typing import Optional

from contentpipe.core.config import settings
from contentpipe.core.errors import (
    ConfigurationError,
    ContentPipelineError,
    DocumentValidationError,
    InvalidRequestError,
    JobCancelledError,
    ProcessingConflictError,
    SourceNotFoundError,
)
from contentpipe.core.logging import get_logger
from contentpipe.db.base import utcnow
from contentpipe.models.content import JobStatus, JobType, SourceStatus, SourceType
from contentpipe.schemas.content import (
    ActionResult,
    EmbeddingBatchSummary,
    EmbeddingStatus,
    JobRecord,
    ProcessingStatusResponse,
    ProcessingSummary,
    SourceRecord,
    UploadResponse,
)
from contentpipe.services.content.file_storage import FileStorage
from contentpipe.services.content.progress import ProgressReporter, StoreProgressReporter
from contentpipe.services.content.status import aggregate_status
from contentpipe.services.content.store import ContentStore
from contentpipe.services.processors.chunker import ChunkingOptions, TextChunker
from contentpipe.services.processors.embedder import EmbeddingGenerator
from contentpipe.services.processors.pdf import PdfExtractor

logger = get_logger(__name__)

CANCELLED_MESSAGE = "Cancelled by user"
PDF_CONTENT_TYPE = "application/pdf"

ACTIVE_STATUSES = (JobStatus.PENDING, JobStatus.PROCESSING)


class ProcessingJobOrchestrator:
    """
    Runs pipeline stages for content sources.

    Usage:
    ------
    orchestrator = ProcessingJobOrchestrator(
        store=SQLAlchemyContentStore(AsyncSessionLocal),
        file_storage=FileStorage(),
        extractor=PdfExtractor(),
        chunker=TextChunker(),
        embedding_generator=get_embedding_generator(),
    )
    summary = await orchestrator.process_source(source_id, owner_id="user-1")
    batch = await orchestrator.generate_embeddings(source_id, owner_id="user-1")

    owner_id=None skips the ownership check (worker-internal calls).
    """

    def __init__(
        self,
        store: ContentStore,
        file_storage: FileStorage,
        extractor: PdfExtractor,
        chunker: TextChunker,
        embedding_generator: EmbeddingGenerator,
        progress: Optional[ProgressReporter] = None,
        chunking_options: Optional[ChunkingOptions] = None,
        default_batch_size: Optional[int] = None,
    ):
        self.store = store
        self.file_storage = file_storage
        self.extractor = extractor
        self.chunker = chunker
        self.embedding_generator = embedding_generator
        self.progress = progress or StoreProgressReporter(store)
        self.chunking_options = chunking_options or ChunkingOptions.from_settings()
        self.default_batch_size = default_batch_size or settings.EMBEDDING_BATCH_SIZE

    # ========================================
    # Registration
    # ========================================

    async def register_source(
        self,
        owner_id: str,
        filename: str,
        data: bytes,
        content_type: Optional[str],
        title: Optional[str] = None,
    ) -> UploadResponse:
        """
        Store an uploaded PDF and create its source and pending jobs.

        Raises:
            InvalidRequestError: Wrong content type, empty or oversized file
        """
        if content_type != PDF_CONTENT_TYPE:
            raise InvalidRequestError("Only PDF files are supported")
        if not data:
            raise InvalidRequestError("Uploaded file is empty")
        if len(data) > settings.MAX_UPLOAD_BYTES:
            raise InvalidRequestError(
                f"File too large (max {settings.MAX_UPLOAD_BYTES // (1024 * 1024)}MB)"
            )

        file_ref = await self.file_storage.upload(owner_id, filename, data)
        source, jobs = await self.store.create_source(
            owner_id=owner_id,
            title=title or filename,
            file_path=file_ref,
            source_type=SourceType.PDF,
            metadata={
                "original_filename": filename,
                "file_size": len(data),
                "content_type": content_type,
            },
        )
        return UploadResponse(source=source, jobs=jobs)

    # ========================================
    # Extraction + Chunking
    # ========================================

    async def process_source(
        self,
        source_id: int,
        owner_id: Optional[str] = None,
        force_reprocess: bool = False,
    ) -> ProcessingSummary:
        """
        Extract, chunk and store a source's text.

        Args:
            source_id: Source to process
            owner_id: Caller identity; None skips the ownership check
            force_reprocess: Delete existing chunks and run again even if
                the stages already completed

        Returns:
            ProcessingSummary; already_processed=True when chunking had
            completed and force_reprocess was not requested

        Raises:
            SourceNotFoundError: Unknown source or not owned by owner_id
            ProcessingConflictError: A stage of this source is running
            DocumentValidationError: The file is not a usable PDF
        """
        source = await self._get_source(source_id, owner_id)
        if source.source_type != SourceType.PDF:
            raise InvalidRequestError(f"Unsupported source type: {source.source_type}")
        if not source.file_path:
            raise InvalidRequestError("Source has no stored file")

        jobs = await self._jobs_by_type(source_id)
        self._ensure_idle(jobs)

        extraction = jobs[JobType.TEXT_EXTRACTION]
        chunking = jobs[JobType.CHUNKING]
        existing_chunks = await self.store.count_chunks(source_id)

        if (
            not force_reprocess
            and chunking.status == JobStatus.COMPLETED
            and existing_chunks > 0
        ):
            logger.info("source_already_processed", source_id=source_id)
            stats = source.source_metadata.get("processing_stats", {})
            return ProcessingSummary(
                source_id=source_id,
                already_processed=True,
                chunks_created=existing_chunks,
                total_tokens=stats.get("total_tokens", 0),
                average_chunk_size=stats.get("average_chunk_size", 0.0),
                pages_processed=source.source_metadata.get("pdf_metadata", {}).get("page_count", 0),
                pdf_metadata=source.source_metadata.get("pdf_metadata"),
            )

        startable = [JobStatus.PENDING]
        if force_reprocess:
            startable += [JobStatus.COMPLETED, JobStatus.FAILED]
        elif chunking.status == JobStatus.COMPLETED:
            # Completed stages whose chunks are gone run again
            startable.append(JobStatus.COMPLETED)

        # Chunks are about to be replaced, so their embeddings go too. The
        # embedding job stays PROCESSING until then so no batch can run.
        held = []
        if force_reprocess:
            embedding = jobs[JobType.EMBEDDING]
            await self._start(
                embedding,
                [JobStatus.PENDING, JobStatus.COMPLETED, JobStatus.FAILED],
                progress=0,
            )
            held.append(embedding)

        try:
            await self._start(extraction, startable, progress=0)
        except ContentPipelineError:
            for job in held:
                await self._release(job)
            raise

        logger.info(
            "processing_started",
            source_id=source_id,
            force_reprocess=force_reprocess,
        )

        await self.store.update_source(source_id, status=SourceStatus.PROCESSING)
        running = [extraction]

        try:
            data = await self.file_storage.download(source.file_path)

            validation = self.extractor.validate(data)
            if not validation.valid:
                raise DocumentValidationError(validation.error)
            await self._report(extraction, 25)

            document = await self.extractor.extract(data)
            if not document.pages:
                raise DocumentValidationError("PDF contains no extractable text")
            await self._report(extraction, 50)

            await self._start(chunking, startable, progress=0)
            running.append(chunking)

            result = self.chunker.chunk_by_pages(document.pages, self.chunking_options)
            await self._report(extraction, 75)

            if force_reprocess or existing_chunks:
                deleted = await self.store.delete_chunks(source_id)
                logger.info("existing_chunks_deleted", source_id=source_id, count=deleted)

            await self._ensure_active(extraction)
            await self.store.insert_chunks(source_id, result.chunks)

            for job in running:
                await self._complete(job)
            for job in held:
                await self._reset(job)

            pdf_metadata = document.metadata.model_dump()
            await self.store.update_source(
                source_id,
                metadata={
                    "pdf_metadata": pdf_metadata,
                    "processing_stats": {
                        "total_chunks": result.total_chunks,
                        "total_tokens": result.total_tokens,
                        "average_chunk_size": result.average_chunk_size,
                        "processed_at": utcnow().isoformat(),
                    },
                },
            )

        except Exception as exc:
            await self._fail(source_id, running + held, exc)
            raise

        logger.info(
            "processing_completed",
            source_id=source_id,
            chunks_created=result.total_chunks,
            total_tokens=result.total_tokens,
            pages=document.metadata.page_count,
        )

        return ProcessingSummary(
            source_id=source_id,
            chunks_created=result.total_chunks,
            total_tokens=result.total_tokens,
            average_chunk_size=result.average_chunk_size,
            pages_processed=document.metadata.page_count,
            pdf_metadata=pdf_metadata,
        )

    # ========================================
    # Embedding
    # ========================================

    async def generate_embeddings(
        self,
        source_id: int,
        owner_id: Optional[str] = None,
        batch_size: Optional[int] = None,
    ) -> EmbeddingBatchSummary:
        """
        Embed one batch of the source's chunks that still lack a vector.

        Idempotent: already-embedded chunks are never sent again, and a
        source without pending chunks makes no provider call.

        Args:
            source_id: Source whose chunks to embed
            owner_id: Caller identity; None skips the ownership check
            batch_size: Maximum chunks to embed in this call

        Returns:
            EmbeddingBatchSummary with the remaining un-embedded count

        Raises:
            MissingCredentialError: No usable API key (not retried)
            TransientProviderError: Provider still failing after retries
            ProcessingConflictError: Another batch for this source is running
        """
        source = await self._get_source(source_id, owner_id)
        jobs = await self._jobs_by_type(source_id)
        job = jobs[JobType.EMBEDDING]
        batch_size = batch_size or self.default_batch_size

        if jobs[JobType.CHUNKING].status != JobStatus.COMPLETED:
            raise InvalidRequestError("Source has not been chunked yet")

        total = await self.store.count_chunks(source_id)
        pending = await self.store.list_unembedded_chunks(source_id, batch_size)

        if not pending:
            # Nothing to embed: no provider call. Vectors saved by a run that
            # stopped before finishing still complete the job here.
            if total and job.status == JobStatus.PENDING:
                await self._finish_embedding(source, job, total, expected=[JobStatus.PENDING])
            return EmbeddingBatchSummary(
                source_id=source_id,
                progress=100.0,
                remaining=0,
                all_complete=True,
            )

        if job.status == JobStatus.FAILED:
            if job.error_message == CANCELLED_MESSAGE:
                raise JobCancelledError()
            raise InvalidRequestError("Embedding job has failed; retry the source first")

        await self._start(job, [JobStatus.PENDING, JobStatus.COMPLETED])
        if source.status != SourceStatus.PROCESSING:
            source = await self.store.update_source(source_id, status=SourceStatus.PROCESSING)

        try:
            await self._ensure_active(job)

            batch = await self.embedding_generator.generate_with_retry(
                [chunk.chunk_text for chunk in pending],
                batch_size=batch_size,
            )

            for vector in batch.embeddings:
                if len(vector) != self.store.embedding_dimension:
                    raise ConfigurationError(
                        f"Embedding dimension {len(vector)} does not match "
                        f"configured dimension {self.store.embedding_dimension}"
                    )

            await self._ensure_active(job)

            generated = await self.store.save_embeddings(
                {chunk.id: vector for chunk, vector in zip(pending, batch.embeddings)},
                batch.model,
            )

            embedded = await self.store.count_embedded_chunks(source_id)
            progress = embedded / total * 100 if total else 100.0
            remaining = total - embedded

            cost_metadata = {
                "embedding_cost": source.source_metadata.get("embedding_cost", 0.0) + batch.cost_estimate,
                "embedding_tokens": source.source_metadata.get("embedding_tokens", 0) + batch.total_tokens,
            }

            if remaining == 0:
                await self._finish_embedding(source, job, total, cost_metadata)
            else:
                await self._report(job, int(progress))
                await self.store.update_source(source_id, metadata=cost_metadata)
                # Idle between batches so the next batch can claim the job
                await self.store.transition_job(
                    job.id, [JobStatus.PROCESSING], JobStatus.PENDING,
                )

        except Exception as exc:
            await self._fail(source_id, [job], exc)
            raise

        logger.info(
            "embedding_batch_completed",
            source_id=source_id,
            embeddings_generated=generated,
            remaining=remaining,
            tokens=batch.total_tokens,
            cost=batch.cost_estimate,
        )

        return EmbeddingBatchSummary(
            source_id=source_id,
            embeddings_generated=generated,
            total_tokens=batch.total_tokens,
            cost_estimate=batch.cost_estimate,
            progress=round(progress, 2),
            remaining=remaining,
            all_complete=remaining == 0,
        )

    async def embed_all(
        self,
        source_id: int,
        owner_id: Optional[str] = None,
        batch_size: Optional[int] = None,
    ) -> EmbeddingBatchSummary:
        """Run embedding batches until every chunk has a vector."""
        generated = 0
        tokens = 0
        cost = 0.0

        while True:
            summary = await self.generate_embeddings(source_id, owner_id, batch_size)
            generated += summary.embeddings_generated
            tokens += summary.total_tokens
            cost += summary.cost_estimate

            if summary.all_complete or summary.embeddings_generated == 0:
                return summary.model_copy(update={
                    "embeddings_generated": generated,
                    "total_tokens": tokens,
                    "cost_estimate": cost,
                })

    async def _finish_embedding(
        self,
        source: SourceRecord,
        job: JobRecord,
        total: int,
        metadata: Optional[dict] = None,
        expected: Optional[list[JobStatus]] = None,
    ) -> None:
        applied = await self.store.transition_job(
            job.id,
            expected or [JobStatus.PENDING, JobStatus.PROCESSING],
            JobStatus.COMPLETED,
            progress=100,
            completed_at=utcnow(),
        )
        if not applied:
            raise JobCancelledError()

        await self.store.update_source(
            source.id,
            status=SourceStatus.COMPLETED,
            metadata={
                **(metadata or {}),
                "total_embeddings": total,
                "embeddings_completed_at": utcnow().isoformat(),
            },
        )
        logger.info("source_completed", source_id=source.id, total_embeddings=total)

    # ========================================
    # Read path
    # ========================================

    async def get_status(
        self,
        source_id: int,
        owner_id: Optional[str] = None,
    ) -> ProcessingStatusResponse:
        source = await self._get_source(source_id, owner_id)
        jobs = await self.store.list_jobs(source_id)
        chunk_count = await self.store.count_chunks(source_id)
        return aggregate_status(source, jobs, chunk_count)

    async def embedding_status(
        self,
        source_id: int,
        owner_id: Optional[str] = None,
    ) -> EmbeddingStatus:
        source = await self._get_source(source_id, owner_id)
        return await self._embedding_status(source)

    async def embedding_overview(self, owner_id: str) -> list[EmbeddingStatus]:
        """Embedding progress of every source the owner has."""
        sources = await self.store.list_sources(owner_id)
        return [await self._embedding_status(source) for source in sources]

    async def _embedding_status(self, source: SourceRecord) -> EmbeddingStatus:
        total = await self.store.count_chunks(source.id)
        embedded = await self.store.count_embedded_chunks(source.id)
        return EmbeddingStatus(
            source_id=source.id,
            title=source.title,
            total_chunks=total,
            chunks_with_embeddings=embedded,
            progress=round(embedded / total * 100, 2) if total else 0.0,
            complete=total > 0 and embedded == total,
        )

    async def list_queue(self, owner_id: str) -> list[JobRecord]:
        """The owner's pending and processing jobs, oldest first."""
        return await self.store.list_owner_jobs(owner_id, ACTIVE_STATUSES)

    # ========================================
    # Retry / Cancel
    # ========================================

    async def retry(
        self,
        source_id: int,
        owner_id: Optional[str] = None,
    ) -> ActionResult:
        """Reset every failed job of the source to pending."""
        await self._get_source(source_id, owner_id)
        jobs = await self.store.list_jobs(source_id)

        reset = 0
        for job in jobs:
            if job.status != JobStatus.FAILED:
                continue
            if await self.store.transition_job(
                job.id,
                [JobStatus.FAILED],
                JobStatus.PENDING,
                progress=0,
                error_message=None,
                started_at=None,
                completed_at=None,
            ):
                reset += 1

        if reset:
            await self.store.update_source(source_id, status=SourceStatus.PROCESSING)

        logger.info("source_retry_requested", source_id=source_id, jobs_reset=reset)

        return ActionResult(
            source_id=source_id,
            action="retry",
            jobs_affected=reset,
            message=f"Reset {reset} failed job(s)" if reset else "No failed jobs to retry",
        )

    async def cancel(
        self,
        source_id: int,
        owner_id: Optional[str] = None,
    ) -> ActionResult:
        """
        Fail every pending or processing job of the source.

        Cooperative: a running stage notices at its next checkpoint and
        stops without overwriting the cancellation.
        """
        await self._get_source(source_id, owner_id)
        jobs = await self.store.list_jobs(source_id)

        cancelled = 0
        for job in jobs:
            if job.status not in ACTIVE_STATUSES:
                continue
            if await self.store.transition_job(
                job.id,
                ACTIVE_STATUSES,
                JobStatus.FAILED,
                error_message=CANCELLED_MESSAGE,
                completed_at=utcnow(),
            ):
                cancelled += 1

        if cancelled:
            await self.store.update_source(source_id, status=SourceStatus.FAILED)

        logger.info("source_cancel_requested", source_id=source_id, jobs_cancelled=cancelled)

        return ActionResult(
            source_id=source_id,
            action="cancel",
            jobs_affected=cancelled,
            message=f"Cancelled {cancelled} job(s)" if cancelled else "No active jobs to cancel",
        )

    # ========================================
    # Helpers
    # ========================================

    async def _get_source(self, source_id: int, owner_id: Optional[str]) -> SourceRecord:
        source = await self.store.get_source(source_id)
        if source is None or (owner_id is not None and source.owner_id != owner_id):
            raise SourceNotFoundError(f"Content source {source_id} not found")
        return source

    async def _jobs_by_type(self, source_id: int) -> dict[JobType, JobRecord]:
        jobs = {job.job_type: job for job in await self.store.list_jobs(source_id)}
        missing = [str(job_type) for job_type in JobType if job_type not in jobs]
        if missing:
            raise ConfigurationError(
                f"Source {source_id} is missing processing jobs: {', '.join(missing)}"
            )
        return jobs

    @staticmethod
    def _ensure_idle(jobs: dict[JobType, JobRecord]) -> None:
        running = [str(job.job_type) for job in jobs.values() if job.status == JobStatus.PROCESSING]
        if running:
            raise ProcessingConflictError(
                f"Source is already being processed ({', '.join(running)})"
            )

    async def _start(self, job: JobRecord, expected: list[JobStatus], **fields) -> None:
        """Claim a job for this run (→ PROCESSING) or raise."""
        applied = await self.store.transition_job(
            job.id,
            expected,
            JobStatus.PROCESSING,
            **fields,
            started_at=job.started_at if job.status == JobStatus.PENDING and job.started_at else utcnow(),
            completed_at=None,
            error_message=None,
        )
        if applied:
            return

        current = await self.store.get_job(job.id)
        if current is not None and current.status == JobStatus.FAILED:
            raise InvalidRequestError(
                f"The {job.job_type} job has failed; retry the source or force reprocessing"
            )
        raise ProcessingConflictError(f"The {job.job_type} job is already running or finished")

    async def _release(self, job: JobRecord) -> None:
        """Give back a claimed job, restoring the state it was claimed from."""
        await self.store.transition_job(
            job.id,
            [JobStatus.PROCESSING],
            job.status,
            progress=job.progress,
            error_message=job.error_message,
            started_at=job.started_at,
            completed_at=job.completed_at,
        )

    async def _reset(self, job: JobRecord) -> None:
        """PROCESSING → PENDING with a clean slate, or raise if cancelled."""
        applied = await self.store.transition_job(
            job.id,
            [JobStatus.PROCESSING],
            JobStatus.PENDING,
            progress=0,
            error_message=None,
            started_at=None,
            completed_at=None,
        )
        if not applied:
            raise JobCancelledError()

    async def _report(self, job: JobRecord, progress: int) -> None:
        if not await self.progress.report(job.id, progress):
            raise JobCancelledError()

    async def _ensure_active(self, job: JobRecord) -> None:
        """Checkpoint before expensive work: stop if the job was cancelled."""
        current = await self.store.get_job(job.id)
        if current is None or current.status != JobStatus.PROCESSING:
            raise JobCancelledError()

    async def _complete(self, job: JobRecord) -> None:
        applied = await self.store.transition_job(
            job.id,
            [JobStatus.PROCESSING],
            JobStatus.COMPLETED,
            progress=100,
            completed_at=utcnow(),
        )
        if not applied:
            raise JobCancelledError()

    async def _fail(self, source_id: int, jobs: list[JobRecord], exc: Exception) -> None:
        """Record a stage failure on its jobs and the source."""
        if isinstance(exc, JobCancelledError):
            logger.info("stage_cancelled", source_id=source_id, job_ids=[j.id for j in jobs])
            return

        message = exc.message if isinstance(exc, ContentPipelineError) else str(exc) or type(exc).__name__
        category = exc.category if isinstance(exc, ContentPipelineError) else "unexpected"

        for job in jobs:
            logger.error(
                "stage_failed",
                source_id=source_id,
                job_id=job.id,
                job_type=str(job.job_type),
                category=str(category),
                error=message,
                error_type=type(exc).__name__,
            )
            await self.store.transition_job(
                job.id,
                [JobStatus.PROCESSING],
                JobStatus.FAILED,
                error_message=message,
                completed_at=utcnow(),
            )

        await self.store.update_source(source_id, status=SourceStatus.FAILED)


def build_orchestrator(session_factory=None) -> ProcessingJobOrchestrator:
    """Orchestrator wired to the database, local file storage and the configured provider."""
    from contentpipe.db.session import AsyncSessionLocal
    from contentpipe.services.content.store import SQLAlchemyContentStore
    from contentpipe.services.processors.embedder import get_embedding_generator

    return ProcessingJobOrchestrator(
        store=SQLAlchemyContentStore(session_factory or AsyncSessionLocal),
        file_storage=FileStorage(),
        extractor=PdfExtractor(),
        chunker=TextChunker(),
        embedding_generator=get_embedding_generator(),
    )
