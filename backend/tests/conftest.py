"""
Pytest configuration and fixtures.

Unit tests run against the in-memory fakes in tests/fakes.py. Tests
marked ``integration`` need PostgreSQL with the pgvector extension at
DATABASE_URL and only run with ``--run-integration``.

References:
-----------
- Pytest Fixtures: https://docs.pytest.org/en/stable/fixture.html
- FastAPI Testing: https://fastapi.tiangolo.com/tutorial/testing/
"""

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from contentpipe.api.routes.content import get_orchestrator, get_search_service
from contentpipe.core.config import settings
from contentpipe.db.base import Base
from contentpipe.main import app
from contentpipe.services.content.file_storage import FileStorage
from contentpipe.services.content.orchestrator import ProcessingJobOrchestrator
from contentpipe.services.content.search import ContentSearchService
from contentpipe.services.processors.chunker import ChunkingOptions, TextChunker
from contentpipe.services.processors.embedder import EmbeddingGenerator
from tests.fakes import (
    FakeEmbeddingProvider,
    FakeExtractor,
    InMemoryContentStore,
    RecordingProgressReporter,
    WordCounter,
)

PDF_BYTES = b"%PDF-1.4\n" + b"0" * 200


# ================================
# Pytest Configuration
# ================================

def pytest_addoption(parser):
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="run tests that need PostgreSQL with pgvector",
    )


def pytest_collection_modifyitems(config, items):
    if config.getoption("--run-integration"):
        return
    skip_integration = pytest.mark.skip(reason="needs --run-integration")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


# ================================
# Pipeline Fixtures
# ================================

@pytest.fixture
def store() -> InMemoryContentStore:
    return InMemoryContentStore(embedding_dimension=3)


@pytest.fixture
def provider() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider(dimension=3)


@pytest.fixture
def generator(provider: FakeEmbeddingProvider) -> EmbeddingGenerator:
    return EmbeddingGenerator(provider, batch_limit=100, max_attempts=3, retry_delay=0)


@pytest.fixture
def file_storage(tmp_path) -> FileStorage:
    return FileStorage(root=tmp_path)


@pytest.fixture
def extractor() -> FakeExtractor:
    return FakeExtractor()


@pytest.fixture
def reporter(store: InMemoryContentStore) -> RecordingProgressReporter:
    return RecordingProgressReporter(store)


@pytest.fixture
def orchestrator(
    store: InMemoryContentStore,
    file_storage: FileStorage,
    extractor: FakeExtractor,
    generator: EmbeddingGenerator,
    reporter: RecordingProgressReporter,
) -> ProcessingJobOrchestrator:
    """Orchestrator over in-memory collaborators; chunks by word count."""
    return ProcessingJobOrchestrator(
        store=store,
        file_storage=file_storage,
        extractor=extractor,
        chunker=TextChunker(token_counter=WordCounter()),
        embedding_generator=generator,
        progress=reporter,
        chunking_options=ChunkingOptions(max_tokens=50, overlap=5),
        default_batch_size=20,
    )


@pytest.fixture
def pdf_bytes() -> bytes:
    return PDF_BYTES


# ================================
# FastAPI Client Fixtures
# ================================

@pytest_asyncio.fixture
async def client(
    orchestrator: ProcessingJobOrchestrator,
    store: InMemoryContentStore,
    generator: EmbeddingGenerator,
) -> AsyncGenerator[AsyncClient, None]:
    """
    Async HTTP client for the FastAPI app.

    Overrides the orchestrator and search dependencies with the in-memory
    ones. The lifespan (database init) is not run.

    Usage:
        async def test_something(client: AsyncClient):
            response = await client.get("/api/v1/content/process/queue", headers={"X-Owner-Id": "user-1"})
            assert response.status_code == 200
    """
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_search_service] = lambda: ContentSearchService(store, generator)

    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ================================
# Database Fixtures (integration)
# ================================

@pytest_asyncio.fixture
async def test_engine() -> AsyncGenerator[AsyncEngine, None]:
    """
    Engine on DATABASE_URL with fresh tables for one test.

    NullPool disables connection pooling for tests.
    """
    engine = create_async_engine(settings.DATABASE_URL, poolclass=NullPool)

    async with engine.begin() as conn:
        await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(test_engine, expire_on_commit=False)
