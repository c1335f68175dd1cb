"""
Content API Routes

REST endpoints for the content pipeline:
- Upload a PDF and register it as a content source
- Run extraction + chunking and inspect the processing queue
- Read per-source status, retry or cancel a source
- Generate embeddings batch by batch and read embedding progress
- Similarity search over the caller's sources

The caller is identified by the X-Owner-Id header, set by the upstream
auth layer. Pipeline errors propagate to the application's
ContentPipelineError handler.
"""

from functools import lru_cache
from typing import List, Optional, Union

from fastapi import APIRouter, Depends, File, Header, Query, UploadFile, status

from contentpipe.core.errors import InvalidRequestError
from contentpipe.schemas.content import (
    ActionResult,
    EmbeddingBatchSummary,
    EmbeddingRequest,
    EmbeddingStatus,
    JobRecord,
    ProcessingStatusResponse,
    ProcessingSummary,
    ProcessRequest,
    SearchRequest,
    SearchResponse,
    StatusActionRequest,
    UploadResponse,
)
from contentpipe.services.content import (
    ContentSearchService,
    ProcessingJobOrchestrator,
    build_orchestrator,
)

router = APIRouter(prefix="/content", tags=["content"])


# ========================================
# Dependencies
# ========================================

async def get_owner_id(x_owner_id: Optional[str] = Header(None)) -> str:
    """Caller identity from the X-Owner-Id header."""
    if not x_owner_id or not x_owner_id.strip():
        raise InvalidRequestError("X-Owner-Id header is required")
    return x_owner_id.strip()


@lru_cache
def get_orchestrator() -> ProcessingJobOrchestrator:
    return build_orchestrator()


@lru_cache
def get_search_service() -> ContentSearchService:
    orchestrator = get_orchestrator()
    return ContentSearchService(orchestrator.store, orchestrator.embedding_generator)


# ========================================
# Upload
# ========================================

@router.post("/upload", response_model=UploadResponse, status_code=status.HTTP_201_CREATED)
async def upload_source(
    file: UploadFile = File(...),
    owner_id: str = Depends(get_owner_id),
    orchestrator: ProcessingJobOrchestrator = Depends(get_orchestrator),
):
    """
    Upload a PDF.

    Creates a pending source with one pending job per stage.
    """
    data = await file.read()
    return await orchestrator.register_source(
        owner_id=owner_id,
        filename=file.filename or "upload.pdf",
        data=data,
        content_type=file.content_type,
    )


# ========================================
# Processing
# ========================================

@router.post("/process", response_model=ProcessingSummary)
async def process_source(
    request: ProcessRequest,
    owner_id: str = Depends(get_owner_id),
    orchestrator: ProcessingJobOrchestrator = Depends(get_orchestrator),
):
    """Extract and chunk a source's text."""
    return await orchestrator.process_source(
        request.source_id,
        owner_id=owner_id,
        force_reprocess=request.force_reprocess,
    )


@router.get("/process/queue", response_model=List[JobRecord])
async def processing_queue(
    owner_id: str = Depends(get_owner_id),
    orchestrator: ProcessingJobOrchestrator = Depends(get_orchestrator),
):
    """The caller's pending and processing jobs, oldest first."""
    return await orchestrator.list_queue(owner_id)


# ========================================
# Status
# ========================================

@router.get("/status", response_model=ProcessingStatusResponse)
async def source_status(
    source_id: int = Query(..., gt=0),
    owner_id: str = Depends(get_owner_id),
    orchestrator: ProcessingJobOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.get_status(source_id, owner_id=owner_id)


@router.post("/status", response_model=ActionResult)
async def source_action(
    request: StatusActionRequest,
    owner_id: str = Depends(get_owner_id),
    orchestrator: ProcessingJobOrchestrator = Depends(get_orchestrator),
):
    """Retry failed jobs or cancel active ones."""
    if request.action == "retry":
        return await orchestrator.retry(request.source_id, owner_id=owner_id)
    return await orchestrator.cancel(request.source_id, owner_id=owner_id)


# ========================================
# Embeddings
# ========================================

@router.post("/embeddings", response_model=EmbeddingBatchSummary)
async def generate_embeddings(
    request: EmbeddingRequest,
    owner_id: str = Depends(get_owner_id),
    orchestrator: ProcessingJobOrchestrator = Depends(get_orchestrator),
):
    """Embed the next batch of a source's chunks."""
    return await orchestrator.generate_embeddings(
        request.source_id,
        owner_id=owner_id,
        batch_size=request.batch_size,
    )


@router.get(
    "/embeddings",
    response_model=Union[EmbeddingStatus, List[EmbeddingStatus]],
)
async def embedding_status(
    source_id: Optional[int] = Query(None, gt=0),
    owner_id: str = Depends(get_owner_id),
    orchestrator: ProcessingJobOrchestrator = Depends(get_orchestrator),
):
    """Embedding progress of one source, or of all the caller's sources."""
    if source_id is not None:
        return await orchestrator.embedding_status(source_id, owner_id=owner_id)
    return await orchestrator.embedding_overview(owner_id)


# ========================================
# Search
# ========================================

@router.post("/search", response_model=SearchResponse)
async def search_content(
    request: SearchRequest,
    owner_id: str = Depends(get_owner_id),
    search_service: ContentSearchService = Depends(get_search_service),
):
    return await search_service.search(owner_id, request)
