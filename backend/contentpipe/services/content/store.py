"""
Record store for sources, jobs and chunks.

ContentStore is the persistence contract the orchestrator depends on;
SQLAlchemyContentStore implements it on PostgreSQL + pgvector. Every
method runs in its own short session and commits before returning: no
transaction spans pipeline stages.

Job status and progress are the only fields that concurrent runs can race
on, so they are only changed through ``transition_job`` /
``update_job_progress``, which are compare-and-set UPDATEs guarded by the
expected prior status. A False return means another run (or a cancel)
got there first.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Any, Optional

from sqlalchemy import Text, cast, delete, func, literal, select, update
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from pgvector.sqlalchemy import Vector

from contentpipe.core.config import settings
from contentpipe.core.logging import get_logger
from contentpipe.db.base import utcnow
from contentpipe.models.content import (
    ContentChunk,
    ContentSource,
    JobStatus,
    JobType,
    ProcessingJob,
    SourceStatus,
    SourceType,
)
from contentpipe.schemas.content import ChunkRecord, JobRecord, SourceRecord
from contentpipe.services.processors.chunker import TextChunk
from contentpipe.services.processors.vectors import to_vector_literal

logger = get_logger(__name__)

JOB_ORDER = [JobType.TEXT_EXTRACTION, JobType.CHUNKING, JobType.EMBEDDING]

# Columns transition_job may set besides status
JOB_FIELDS = {"progress", "error_message", "started_at", "completed_at"}


def sort_jobs(jobs: Iterable[JobRecord]) -> list[JobRecord]:
    """Jobs in pipeline stage order."""
    return sorted(jobs, key=lambda job: JOB_ORDER.index(job.job_type))


# ================================
# Interface
# ================================

class ContentStore(ABC):
    """Persistence operations used by the pipeline."""

    embedding_dimension: int

    # Sources

    @abstractmethod
    async def create_source(
        self,
        owner_id: str,
        title: str,
        file_path: str,
        source_type: SourceType = SourceType.PDF,
        metadata: Optional[dict[str, Any]] = None,
    ) -> tuple[SourceRecord, list[JobRecord]]:
        """Insert a pending source and one pending job per stage."""

    @abstractmethod
    async def get_source(self, source_id: int) -> Optional[SourceRecord]:
        ...

    @abstractmethod
    async def list_sources(
        self,
        owner_id: str,
        status: Optional[SourceStatus] = None,
    ) -> list[SourceRecord]:
        ...

    @abstractmethod
    async def update_source(
        self,
        source_id: int,
        status: Optional[SourceStatus] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> SourceRecord:
        """Set status and shallow-merge metadata keys into source_metadata."""

    # Jobs

    @abstractmethod
    async def get_job(self, job_id: int) -> Optional[JobRecord]:
        ...

    @abstractmethod
    async def list_jobs(self, source_id: int) -> list[JobRecord]:
        """Jobs of a source in stage order."""

    @abstractmethod
    async def list_owner_jobs(
        self,
        owner_id: str,
        statuses: Iterable[JobStatus],
    ) -> list[JobRecord]:
        """Jobs across the owner's sources with a status in statuses, oldest first."""

    @abstractmethod
    async def transition_job(
        self,
        job_id: int,
        expected: Iterable[JobStatus],
        status: JobStatus,
        **fields: Any,
    ) -> bool:
        """
        Compare-and-set a job's status.

        Applies status and fields (progress, error_message, started_at,
        completed_at) only if the job's current status is in expected.
        """

    @abstractmethod
    async def update_job_progress(self, job_id: int, progress: int) -> bool:
        """Set progress if the job is still processing."""

    # Chunks

    @abstractmethod
    async def count_chunks(self, source_id: int) -> int:
        ...

    @abstractmethod
    async def count_embedded_chunks(self, source_id: int) -> int:
        ...

    @abstractmethod
    async def delete_chunks(self, source_id: int) -> int:
        ...

    @abstractmethod
    async def insert_chunks(self, source_id: int, chunks: list[TextChunk]) -> int:
        ...

    @abstractmethod
    async def list_chunks(
        self,
        source_id: int,
        embedded_only: bool = False,
    ) -> list[ChunkRecord]:
        """Chunks ordered by chunk_index."""

    @abstractmethod
    async def list_unembedded_chunks(self, source_id: int, limit: int) -> list[ChunkRecord]:
        """Up to limit chunks lacking an embedding, ordered by chunk_index."""

    @abstractmethod
    async def save_embeddings(
        self,
        embeddings: dict[int, list[float]],
        model: str,
    ) -> int:
        """
        Write vectors onto chunks that still lack one.

        Stamps embedding_model and embedding_generated_at into the chunk
        metadata. Returns the number of chunks updated.
        """


# ================================
# SQLAlchemy implementation
# ================================

class SQLAlchemyContentStore(ContentStore):
    """
    ContentStore backed by PostgreSQL.

    Usage:
    ------
    store = SQLAlchemyContentStore(AsyncSessionLocal)
    source = await store.get_source(42)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        embedding_dimension: Optional[int] = None,
    ):
        self._session_factory = session_factory
        self.embedding_dimension = embedding_dimension or settings.EMBEDDING_DIMENSION

    # ========================================
    # Sources
    # ========================================

    async def create_source(
        self,
        owner_id: str,
        title: str,
        file_path: str,
        source_type: SourceType = SourceType.PDF,
        metadata: Optional[dict[str, Any]] = None,
    ) -> tuple[SourceRecord, list[JobRecord]]:
        async with self._session_factory() as session:
            source = ContentSource(
                owner_id=owner_id,
                title=title,
                file_path=file_path,
                source_type=source_type,
                status=SourceStatus.PENDING,
                source_metadata=metadata or {},
            )
            session.add(source)
            await session.flush()

            jobs = [
                ProcessingJob(
                    source_id=source.id,
                    job_type=job_type,
                    status=JobStatus.PENDING,
                    progress=0,
                )
                for job_type in JOB_ORDER
            ]
            session.add_all(jobs)
            await session.commit()

            logger.info(
                "content_source_created",
                source_id=source.id,
                owner_id=owner_id,
                file_path=file_path,
            )

            return (
                SourceRecord.model_validate(source),
                [JobRecord.model_validate(job) for job in jobs],
            )

    async def get_source(self, source_id: int) -> Optional[SourceRecord]:
        async with self._session_factory() as session:
            source = await session.get(ContentSource, source_id)
            return SourceRecord.model_validate(source) if source else None

    async def list_sources(
        self,
        owner_id: str,
        status: Optional[SourceStatus] = None,
    ) -> list[SourceRecord]:
        async with self._session_factory() as session:
            stmt = (
                select(ContentSource)
                .where(ContentSource.owner_id == owner_id)
                .order_by(ContentSource.created_at.desc())
            )
            if status is not None:
                stmt = stmt.where(ContentSource.status == status)

            result = await session.execute(stmt)
            return [SourceRecord.model_validate(s) for s in result.scalars().all()]

    async def update_source(
        self,
        source_id: int,
        status: Optional[SourceStatus] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> SourceRecord:
        async with self._session_factory() as session:
            source = await session.get(ContentSource, source_id, with_for_update=True)
            if source is None:
                raise LookupError(f"Content source {source_id} does not exist")

            if status is not None:
                source.status = status
            if metadata:
                # Reassign so the JSONB change is detected
                source.source_metadata = {**(source.source_metadata or {}), **metadata}
            source.updated_at = utcnow()

            await session.commit()
            return SourceRecord.model_validate(source)

    # ========================================
    # Jobs
    # ========================================

    async def get_job(self, job_id: int) -> Optional[JobRecord]:
        async with self._session_factory() as session:
            job = await session.get(ProcessingJob, job_id)
            return JobRecord.model_validate(job) if job else None

    async def list_jobs(self, source_id: int) -> list[JobRecord]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ProcessingJob).where(ProcessingJob.source_id == source_id)
            )
            return sort_jobs(JobRecord.model_validate(j) for j in result.scalars().all())

    async def list_owner_jobs(
        self,
        owner_id: str,
        statuses: Iterable[JobStatus],
    ) -> list[JobRecord]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ProcessingJob)
                .join(ContentSource, ContentSource.id == ProcessingJob.source_id)
                .where(
                    ContentSource.owner_id == owner_id,
                    ProcessingJob.status.in_(list(statuses)),
                )
                .order_by(ProcessingJob.created_at, ProcessingJob.id)
            )
            return [JobRecord.model_validate(j) for j in result.scalars().all()]

    async def transition_job(
        self,
        job_id: int,
        expected: Iterable[JobStatus],
        status: JobStatus,
        **fields: Any,
    ) -> bool:
        unknown = set(fields) - JOB_FIELDS
        if unknown:
            raise ValueError(f"Cannot set job fields: {sorted(unknown)}")

        expected = list(expected)
        async with self._session_factory() as session:
            result = await session.execute(
                update(ProcessingJob)
                .where(
                    ProcessingJob.id == job_id,
                    ProcessingJob.status.in_(expected),
                )
                .values(status=status, **fields)
                .returning(ProcessingJob.id)
            )
            applied = result.scalar_one_or_none() is not None
            await session.commit()

        if not applied:
            logger.warning(
                "job_transition_rejected",
                job_id=job_id,
                expected=[str(s) for s in expected],
                target=str(status),
            )
        return applied

    async def update_job_progress(self, job_id: int, progress: int) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                update(ProcessingJob)
                .where(
                    ProcessingJob.id == job_id,
                    ProcessingJob.status == JobStatus.PROCESSING,
                )
                .values(progress=progress)
                .returning(ProcessingJob.id)
            )
            applied = result.scalar_one_or_none() is not None
            await session.commit()
            return applied

    # ========================================
    # Chunks
    # ========================================

    async def count_chunks(self, source_id: int) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.count(ContentChunk.id))
                .where(ContentChunk.source_id == source_id)
            )
            return result.scalar_one()

    async def count_embedded_chunks(self, source_id: int) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.count(ContentChunk.id))
                .where(
                    ContentChunk.source_id == source_id,
                    ContentChunk.embedding.is_not(None),
                )
            )
            return result.scalar_one()

    async def delete_chunks(self, source_id: int) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(ContentChunk).where(ContentChunk.source_id == source_id)
            )
            await session.commit()
            return result.rowcount or 0

    async def insert_chunks(self, source_id: int, chunks: list[TextChunk]) -> int:
        if not chunks:
            return 0

        async with self._session_factory() as session:
            session.add_all([
                ContentChunk(
                    source_id=source_id,
                    chunk_index=chunk.chunk_index,
                    page_number=chunk.page_number,
                    chunk_text=chunk.text,
                    chunk_metadata=chunk.metadata(),
                )
                for chunk in chunks
            ])
            await session.commit()

        return len(chunks)

    async def list_chunks(
        self,
        source_id: int,
        embedded_only: bool = False,
    ) -> list[ChunkRecord]:
        async with self._session_factory() as session:
            stmt = (
                select(ContentChunk)
                .where(ContentChunk.source_id == source_id)
                .order_by(ContentChunk.chunk_index)
            )
            if embedded_only:
                stmt = stmt.where(ContentChunk.embedding.is_not(None))

            result = await session.execute(stmt)
            return [ChunkRecord.model_validate(c) for c in result.scalars().all()]

    async def list_unembedded_chunks(self, source_id: int, limit: int) -> list[ChunkRecord]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ContentChunk)
                .where(
                    ContentChunk.source_id == source_id,
                    ContentChunk.embedding.is_(None),
                )
                .order_by(ContentChunk.chunk_index)
                .limit(limit)
            )
            return [ChunkRecord.model_validate(c) for c in result.scalars().all()]

    async def save_embeddings(
        self,
        embeddings: dict[int, list[float]],
        model: str,
    ) -> int:
        if not embeddings:
            return 0

        stamp = {
            "embedding_model": model,
            "embedding_generated_at": utcnow().isoformat(),
        }
        updated = 0

        async with self._session_factory() as session:
            for chunk_id, vector in embeddings.items():
                result = await session.execute(
                    update(ContentChunk)
                    .where(
                        ContentChunk.id == chunk_id,
                        ContentChunk.embedding.is_(None),
                    )
                    .values(
                        embedding=cast(
                            literal(to_vector_literal(vector), type_=Text),
                            Vector(self.embedding_dimension),
                        ),
                        chunk_metadata=func.coalesce(
                            ContentChunk.chunk_metadata,
                            literal({}, type_=JSONB),
                        ).op("||")(literal(stamp, type_=JSONB)),
                    )
                )
                updated += result.rowcount or 0
            await session.commit()

        return updated
