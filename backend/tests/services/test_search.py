"""
Tests for ContentSearchService.
"""

import pytest

from contentpipe.core.errors import InvalidRequestError
from contentpipe.models.content import SourceStatus
from contentpipe.schemas.content import SearchRequest
from contentpipe.services.content.search import ContentSearchService, slugify
from contentpipe.services.processors.chunker import TextChunk


async def add_source(store, owner_id: str, title: str, vectors: list) -> int:
    """
    Source with one chunk per vector; None leaves that chunk un-embedded.

    The source is marked completed when every chunk got a vector.
    """
    source, _ = await store.create_source(owner_id, title, f"{owner_id}/uploads/{title}")
    await store.insert_chunks(source.id, [
        TextChunk(
            text=f"{title} part {i}",
            chunk_index=i,
            token_count=3,
            start_index=0,
            end_index=10,
            page_number=i + 1,
        )
        for i in range(len(vectors))
    ])
    chunks = await store.list_chunks(source.id)
    await store.save_embeddings(
        {chunk.id: vector for chunk, vector in zip(chunks, vectors) if vector is not None},
        "text-embedding-3-small",
    )
    if all(vector is not None for vector in vectors):
        await store.update_source(source.id, status=SourceStatus.COMPLETED)
    return source.id


@pytest.fixture
def search_service(store, generator) -> ContentSearchService:
    return ContentSearchService(store, generator)


class TestSlugify:

    @pytest.mark.parametrize(
        "title, expected",
        [
            ("Annual Report 2025.pdf", "annual-report-2025-pdf"),
            ("  --Hello,   World!-- ", "hello-world"),
            ("???", "untitled"),
        ],
    )
    def test_slugify(self, title, expected):
        assert slugify(title) == expected


@pytest.mark.asyncio
class TestSearch:

    async def test_ranks_documents_and_chunks(self, store, search_service):
        first = await add_source(store, "user-1", "Pricing", [[1.0, 0.0, 0.0], [0.9, 0.1, 0.0]])
        await add_source(store, "user-1", "Hiring", [[0.0, 1.0, 0.0]])

        response = await search_service.search(
            "user-1",
            SearchRequest(query_embedding=[1.0, 0.0, 0.0], threshold=0.5, limit=10),
        )

        assert response.total == 3
        assert [(r.kind, r.chunk_index) for r in response.results] == [
            ("chunk", 0),
            ("document", None),
            ("chunk", 1),
        ]
        assert all(r.document_id == first for r in response.results)
        assert response.results[0].similarity == pytest.approx(1.0)
        assert response.results[1].slug == "pricing"
        assert response.results[2].page_number == 2

    async def test_documents_only(self, store, search_service):
        await add_source(store, "user-1", "Pricing", [[1.0, 0.0, 0.0], [0.9, 0.1, 0.0]])

        response = await search_service.search(
            "user-1",
            SearchRequest(query_embedding=[1.0, 0.0, 0.0], include_chunks=False),
        )

        assert [r.kind for r in response.results] == ["document"]

    async def test_query_text_is_embedded(self, store, search_service, provider):
        await add_source(store, "user-1", "Pricing", [[3.0, 1.0, 1.0]])

        response = await search_service.search("user-1", SearchRequest(query="abc"))

        assert provider.calls == [["abc"]]
        assert response.results[0].similarity == pytest.approx(1.0)

    async def test_other_owners_are_not_searched(self, store, search_service):
        await add_source(store, "user-2", "Secret", [[1.0, 0.0, 0.0]])

        response = await search_service.search(
            "user-1",
            SearchRequest(query_embedding=[1.0, 0.0, 0.0]),
        )

        assert response.results == []

    async def test_dimension_mismatch_is_invalid_request(self, store, search_service):
        await add_source(store, "user-1", "Pricing", [[1.0, 0.0, 0.0]])

        with pytest.raises(InvalidRequestError):
            await search_service.search("user-1", SearchRequest(query_embedding=[1.0, 0.0]))


@pytest.mark.asyncio
class TestIndex:

    async def test_sources_without_embeddings_are_skipped(self, store, search_service):
        await add_source(store, "user-1", "Embedded", [[1.0, 0.0, 0.0], [0.0, 1.0, 0.0]])
        await add_source(store, "user-1", "Pending", [None])

        index = await search_service.get_index("user-1")

        assert index.stats() == {"documents": 1, "chunks": 2, "dimension": 3}

    async def test_partially_embedded_sources_are_skipped(self, store, search_service):
        partial = await add_source(store, "user-1", "Partial", [[1.0, 0.0, 0.0], None])
        await store.update_source(partial, status=SourceStatus.PROCESSING)

        index = await search_service.get_index("user-1")

        assert len(index) == 0

    async def test_index_is_reused_until_sources_change(self, store, search_service):
        source_id = await add_source(store, "user-1", "Pricing", [[1.0, 0.0, 0.0]])

        first = await search_service.get_index("user-1")
        assert await search_service.get_index("user-1") is first

        await store.update_source(source_id, metadata={"embedding_tokens": 5})
        rebuilt = await search_service.get_index("user-1")
        assert rebuilt is not first

        search_service.invalidate("user-1")
        assert await search_service.get_index("user-1") is not rebuilt

    async def test_new_source_triggers_rebuild(self, store, search_service):
        await add_source(store, "user-1", "Pricing", [[1.0, 0.0, 0.0]])
        first = await search_service.get_index("user-1")

        await add_source(store, "user-1", "Hiring", [[0.0, 1.0, 0.0]])

        rebuilt = await search_service.get_index("user-1")
        assert rebuilt is not first
        assert rebuilt.stats()["documents"] == 2
