"""
In-memory vector store.

Holds document-level and chunk-level embeddings and answers similarity
queries by linear scan with cosine similarity. Instances are owned by
the caller (the search service keeps one per owner); there is no
module-level store.

Search semantics:
-----------------
- A candidate is returned only if similarity >= threshold (default 0.7).
- include_chunks (default True) adds chunk candidates to document ones.
- Results from both collections are merged, sorted by similarity
  descending (ties keep insertion order), then truncated to limit
  (default 5).
"""

from typing import Literal

import numpy as np
from pydantic import BaseModel, Field

from contentpipe.core.logging import get_logger
from contentpipe.services.processors.vectors import cosine_similarity

logger = get_logger(__name__)


# ================================
# Records
# ================================

class VectorChunk(BaseModel):
    id: int
    chunk_index: int
    text: str
    embedding: list[float] | None = None
    page_number: int | None = None


class VectorDocument(BaseModel):
    """A document and its chunks; records without an embedding are skipped on add."""

    id: int
    title: str
    slug: str
    embedding: list[float] | None = None
    chunks: list[VectorChunk] = Field(default_factory=list)


class SearchOptions(BaseModel):
    limit: int = Field(5, gt=0)
    threshold: float = 0.7
    include_chunks: bool = True


class SearchResult(BaseModel):
    kind: Literal["document", "chunk"]
    document_id: int
    title: str
    slug: str
    similarity: float
    chunk_id: int | None = None
    chunk_index: int | None = None
    page_number: int | None = None
    text: str | None = None


class _Entry(BaseModel):
    """Stored candidate; chunks carry a back-reference to their document."""

    kind: Literal["document", "chunk"]
    document_id: int
    title: str
    slug: str
    embedding: list[float]
    chunk_id: int | None = None
    chunk_index: int | None = None
    page_number: int | None = None
    text: str | None = None


# ================================
# Vector Store
# ================================

class VectorStore:
    """
    Linear-scan similarity index over documents and chunks.

    Usage:
    ------
    store = VectorStore()
    store.add(VectorDocument(id=1, title="Guide", slug="guide", embedding=[...], chunks=[...]))
    results = store.search(query_embedding, SearchOptions(limit=3))
    """

    def __init__(self):
        self._documents: list[_Entry] = []
        self._chunks: list[_Entry] = []

    def add(self, document: VectorDocument) -> None:
        """
        Add a document and its embedded chunks.

        Re-adding a document id replaces the earlier entries.
        """
        self.remove(document.id)

        if document.embedding:
            self._documents.append(_Entry(
                kind="document",
                document_id=document.id,
                title=document.title,
                slug=document.slug,
                embedding=document.embedding,
            ))

        for chunk in document.chunks:
            if not chunk.embedding:
                continue
            self._chunks.append(_Entry(
                kind="chunk",
                document_id=document.id,
                title=document.title,
                slug=document.slug,
                embedding=chunk.embedding,
                chunk_id=chunk.id,
                chunk_index=chunk.chunk_index,
                page_number=chunk.page_number,
                text=chunk.text,
            ))

        logger.debug(
            "vector_document_added",
            document_id=document.id,
            chunks=len(document.chunks),
        )

    def remove(self, document_id: int) -> None:
        self._documents = [e for e in self._documents if e.document_id != document_id]
        self._chunks = [e for e in self._chunks if e.document_id != document_id]

    def clear(self) -> None:
        self._documents = []
        self._chunks = []

    def search(
        self,
        query_embedding: list[float],
        options: SearchOptions | None = None,
    ) -> list[SearchResult]:
        """
        Rank stored entries by cosine similarity to the query.

        Args:
            query_embedding: Query vector
            options: limit / threshold / include_chunks

        Returns:
            At most ``limit`` results, each with similarity >= threshold,
            best first.

        Raises:
            ValueError: If the query dimension differs from a stored vector
        """
        options = options or SearchOptions()

        candidates = list(self._documents)
        if options.include_chunks:
            candidates.extend(self._chunks)

        scored: list[tuple[float, _Entry]] = []
        for entry in candidates:
            similarity = cosine_similarity(query_embedding, entry.embedding)
            if similarity >= options.threshold:
                scored.append((similarity, entry))

        # sorted() is stable, equal scores keep insertion order
        scored = sorted(scored, key=lambda item: item[0], reverse=True)

        return [
            SearchResult(
                similarity=similarity,
                **entry.model_dump(exclude={"embedding"}),
            )
            for similarity, entry in scored[:options.limit]
        ]

    def stats(self) -> dict[str, int]:
        """Entry counts and the embedding dimension in use (0 when empty)."""
        entries = self._documents or self._chunks
        return {
            "documents": len(self._documents),
            "chunks": len(self._chunks),
            "dimension": int(np.asarray(entries[0].embedding).shape[0]) if entries else 0,
        }

    def __len__(self) -> int:
        return len(self._documents) + len(self._chunks)
