"""
Similarity search over an owner's processed sources.

Each owner gets a VectorStore built from their completed sources, those
whose every chunk has an embedding. The document vector is the centroid
(mean) of the source's chunk embeddings. The index is rebuilt only when the set of
searchable sources or one of their updated_at stamps changes.
"""

import re
from datetime import datetime
from typing import Optional

from contentpipe.core.errors import InvalidRequestError
from contentpipe.core.logging import get_logger
from contentpipe.models.content import SourceStatus
from contentpipe.schemas.content import SearchRequest, SearchResponse, SourceRecord
from contentpipe.services.content.store import ContentStore
from contentpipe.services.processors.embedder import EmbeddingGenerator
from contentpipe.services.processors.vector_store import (
    SearchOptions,
    VectorChunk,
    VectorDocument,
    VectorStore,
)
from contentpipe.services.processors.vectors import centroid

logger = get_logger(__name__)

_NON_SLUG = re.compile(r"[^a-z0-9]+")

Fingerprint = frozenset[tuple[int, Optional[datetime]]]


def slugify(title: str) -> str:
    """Lowercase, non-alphanumerics collapsed to single dashes."""
    return _NON_SLUG.sub("-", title.lower()).strip("-") or "untitled"


class ContentSearchService:
    """
    Answers SearchRequests for an owner.

    Usage:
    ------
    service = ContentSearchService(store, get_embedding_generator())
    response = await service.search("user-1", SearchRequest(query="pricing"))
    """

    def __init__(self, store: ContentStore, embedding_generator: EmbeddingGenerator):
        self.store = store
        self.embedding_generator = embedding_generator
        self._indexes: dict[str, tuple[Fingerprint, VectorStore]] = {}

    async def search(self, owner_id: str, request: SearchRequest) -> SearchResponse:
        query_embedding = request.query_embedding
        if not query_embedding:
            query_embedding = await self.embedding_generator.embed_query(request.query)

        index = await self.get_index(owner_id)
        try:
            results = index.search(
                query_embedding,
                SearchOptions(
                    limit=request.limit,
                    threshold=request.threshold,
                    include_chunks=request.include_chunks,
                ),
            )
        except ValueError as exc:
            raise InvalidRequestError(str(exc)) from exc

        logger.info(
            "content_search",
            owner_id=owner_id,
            results=len(results),
            indexed=len(index),
        )
        return SearchResponse(results=results, total=len(results))

    async def get_index(self, owner_id: str) -> VectorStore:
        """The owner's index, rebuilt if their searchable sources changed."""
        sources = await self.store.list_sources(owner_id)
        candidates = [
            source for source in sources
            if source.status == SourceStatus.COMPLETED
            and await self.store.count_embedded_chunks(source.id) > 0
        ]
        fingerprint = frozenset((s.id, s.updated_at) for s in candidates)

        cached = self._indexes.get(owner_id)
        if cached is not None and cached[0] == fingerprint:
            return cached[1]

        index = VectorStore()
        for source in candidates:
            index.add(await self._build_document(source))

        self._indexes[owner_id] = (fingerprint, index)
        logger.info("search_index_built", owner_id=owner_id, **index.stats())
        return index

    def invalidate(self, owner_id: Optional[str] = None) -> None:
        if owner_id is None:
            self._indexes.clear()
        else:
            self._indexes.pop(owner_id, None)

    async def _build_document(self, source: SourceRecord) -> VectorDocument:
        chunks = await self.store.list_chunks(source.id, embedded_only=True)
        return VectorDocument(
            id=source.id,
            title=source.title,
            slug=slugify(source.title),
            embedding=centroid([chunk.embedding for chunk in chunks]),
            chunks=[
                VectorChunk(
                    id=chunk.id,
                    chunk_index=chunk.chunk_index,
                    text=chunk.chunk_text,
                    embedding=chunk.embedding,
                    page_number=chunk.page_number,
                )
                for chunk in chunks
            ],
        )
