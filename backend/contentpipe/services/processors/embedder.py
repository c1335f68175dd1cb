"""
Embedding Service

Turns chunk texts into embedding vectors through a pluggable provider.

Providers:
----------
- OpenAIEmbeddingProvider: OpenAI embeddings API (default
  text-embedding-3-small, 1536 dimensions). Needs OPENAI_API_KEY.
- SentenceTransformerEmbeddingProvider: local sentence-transformers model
  on CPU/CUDA/MPS. No API costs.

EmbeddingGenerator sits on top of a provider:
- splits requests into provider-sized batches and keeps outputs
  positionally aligned with inputs
- checks every vector has the same dimension
- estimates cost from token usage (informational, not billing)
- ``generate_with_retry`` retries transient failures (rate limits,
  network errors, provider 5xx) with exponential backoff; credential
  errors are raised on the first attempt
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Optional

import numpy as np
import openai
import torch
from pydantic import BaseModel
from sentence_transformers import SentenceTransformer
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from contentpipe.core.config import settings
from contentpipe.core.errors import (
    ConfigurationError,
    EmbeddingProviderError,
    MissingCredentialError,
    RateLimitError,
    TransientProviderError,
)
from contentpipe.core.logging import get_logger
from contentpipe.services.processors.tokens import TokenCounter

logger = get_logger(__name__)


# USD per 1M tokens
PRICING_PER_MILLION_TOKENS: dict[str, float] = {
    "text-embedding-3-small": 0.02,
    "text-embedding-3-large": 0.13,
    "text-embedding-ada-002": 0.10,
}

MODEL_DIMENSIONS: dict[str, int] = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}

LOCAL_MODEL_DIMENSIONS: dict[str, int] = {
    "sentence-transformers/all-MiniLM-L6-v2": 384,
    "sentence-transformers/all-MiniLM-L12-v2": 384,
    "sentence-transformers/all-mpnet-base-v2": 768,
    "google/embeddinggemma-300m": 768,
}


def expected_dimension(provider: str, model: str) -> Optional[int]:
    """Vector size the given provider/model produces, or None if unknown."""
    if provider == "local":
        return LOCAL_MODEL_DIMENSIONS.get(model)
    return MODEL_DIMENSIONS.get(model)


def estimate_cost(model: str, total_tokens: int) -> float:
    """Cost in USD of embedding total_tokens with model (0 for unpriced models)."""
    return total_tokens / 1_000_000 * PRICING_PER_MILLION_TOKENS.get(model, 0.0)


class EmbeddingBatch(BaseModel):
    """Vectors for a list of texts, in input order, plus usage."""

    embeddings: list[list[float]]
    model: str
    total_tokens: int = 0
    cost_estimate: float = 0.0


# ================================
# Providers
# ================================

class EmbeddingProvider(ABC):
    """
    Contract for embedding backends.

    ``embed`` performs one request and must return vectors positionally
    aligned with ``texts``. Implementations raise MissingCredentialError
    for missing or rejected credentials, TransientProviderError (or
    RateLimitError) for failures worth retrying, and
    EmbeddingProviderError for everything else.
    """

    name: str = "embedding"

    @property
    @abstractmethod
    def model(self) -> str:
        ...

    @property
    @abstractmethod
    def dimension(self) -> int:
        ...

    @abstractmethod
    async def embed(self, texts: list[str]) -> EmbeddingBatch:
        ...


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """
    Embedding provider backed by the OpenAI embeddings API.

    The client is created on first use so a missing API key only fails
    embedding calls, not application startup.
    """

    name = "openai"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        dimension: Optional[int] = None,
    ):
        self._api_key = api_key if api_key is not None else settings.OPENAI_API_KEY
        self._model = model or settings.EMBEDDING_MODEL
        self._base_url = base_url if base_url is not None else settings.OPENAI_BASE_URL
        self._dimension = dimension or MODEL_DIMENSIONS.get(
            self._model, settings.EMBEDDING_DIMENSION
        )
        self._client: Optional[openai.AsyncOpenAI] = None

    @property
    def model(self) -> str:
        return self._model

    @property
    def dimension(self) -> int:
        return self._dimension

    def _get_client(self) -> openai.AsyncOpenAI:
        if not self._api_key:
            raise MissingCredentialError(
                "OPENAI_API_KEY is not configured",
                provider_name=self.name,
            )
        if self._client is None:
            client_kwargs: dict = {"api_key": self._api_key, "max_retries": 0}
            if self._base_url:
                client_kwargs["base_url"] = self._base_url
            self._client = openai.AsyncOpenAI(**client_kwargs)
        return self._client

    async def embed(self, texts: list[str]) -> EmbeddingBatch:
        client = self._get_client()

        try:
            response = await client.embeddings.create(
                input=texts,
                model=self._model,
            )
        except openai.AuthenticationError as exc:
            raise MissingCredentialError(
                f"Embedding API rejected the credential: {exc}",
                provider_name=self.name,
            ) from exc
        except openai.RateLimitError as exc:
            raise RateLimitError(str(exc), provider_name=self.name) from exc
        except (openai.APIConnectionError, openai.InternalServerError) as exc:
            raise TransientProviderError(str(exc), provider_name=self.name) from exc
        except openai.APIError as exc:
            raise EmbeddingProviderError(str(exc), provider_name=self.name) from exc

        data = sorted(response.data, key=lambda item: item.index)
        total_tokens = response.usage.total_tokens if response.usage else 0

        logger.info(
            "openai_embedding_batch",
            model=self._model,
            batch_size=len(texts),
            tokens=total_tokens,
        )

        return EmbeddingBatch(
            embeddings=[list(item.embedding) for item in data],
            model=self._model,
            total_tokens=total_tokens,
            cost_estimate=estimate_cost(self._model, total_tokens),
        )


class SentenceTransformerEmbeddingProvider(EmbeddingProvider):
    """
    Local embedding provider using sentence-transformers.

    The model is loaded lazily in a worker thread on first use; encoding
    also runs in a thread so the event loop is never blocked. Embeddings
    are L2-normalized.
    """

    name = "sentence-transformers"

    def __init__(
        self,
        model_name: Optional[str] = None,
        device: Optional[str] = None,
        token_counter: Optional[TokenCounter] = None,
    ):
        self.model_name = model_name or settings.LOCAL_EMBEDDING_MODEL
        self.device = device or settings.EMBEDDING_DEVICE
        self.token_counter = token_counter or TokenCounter()

        self._model: Optional[SentenceTransformer] = None
        self._lock = asyncio.Lock()

        self._validate_device()

    def _validate_device(self) -> None:
        """Fall back to CPU when the requested accelerator is unavailable."""
        if self.device == "cuda" and not torch.cuda.is_available():
            logger.warning("cuda_unavailable_falling_back_to_cpu")
            self.device = "cpu"
        elif self.device == "mps" and not torch.backends.mps.is_available():
            logger.warning("mps_unavailable_falling_back_to_cpu")
            self.device = "cpu"

    @property
    def model(self) -> str:
        return self.model_name

    @property
    def dimension(self) -> int:
        if self._model is None:
            return settings.EMBEDDING_DIMENSION
        return self._model.get_sentence_embedding_dimension()

    async def initialize(self) -> None:
        async with self._lock:
            if self._model is not None:
                return

            logger.info(
                "loading_embedding_model",
                model=self.model_name,
                device=self.device,
            )
            try:
                self._model = await asyncio.to_thread(
                    SentenceTransformer,
                    self.model_name,
                    device=self.device,
                )
            except Exception as exc:
                raise ConfigurationError(
                    f"Failed to load embedding model {self.model_name}: {exc}",
                    provider_name=self.name,
                ) from exc

            logger.info(
                "embedding_model_loaded",
                model=self.model_name,
                dimension=self.dimension,
            )

    def _encode(self, texts: list[str]) -> np.ndarray:
        return self._model.encode(
            texts,
            normalize_embeddings=True,
            show_progress_bar=False,
            convert_to_numpy=True,
        )

    async def embed(self, texts: list[str]) -> EmbeddingBatch:
        await self.initialize()

        try:
            vectors = await asyncio.to_thread(self._encode, texts)
        except RuntimeError as exc:
            raise EmbeddingProviderError(str(exc), provider_name=self.name) from exc

        total_tokens = sum(self.token_counter.count(text) for text in texts)

        return EmbeddingBatch(
            embeddings=[vector.tolist() for vector in vectors],
            model=self.model_name,
            total_tokens=total_tokens,
            cost_estimate=0.0,
        )


# ================================
# Generator
# ================================

class EmbeddingGenerator:
    """
    Batches texts through a provider and retries transient failures.

    Usage:
    ------
    generator = EmbeddingGenerator(OpenAIEmbeddingProvider())
    batch = await generator.generate_with_retry(["chunk one", "chunk two"])
    batch.embeddings[0]   # vector for "chunk one"
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        batch_limit: Optional[int] = None,
        max_attempts: Optional[int] = None,
        retry_delay: Optional[float] = None,
    ):
        self.provider = provider
        self.batch_limit = batch_limit or settings.EMBEDDING_PROVIDER_BATCH_LIMIT
        self.max_attempts = max_attempts or settings.EMBEDDING_MAX_RETRIES
        self.retry_delay = (
            retry_delay if retry_delay is not None
            else settings.EMBEDDING_RETRY_DELAY_SECONDS
        )

    @property
    def model(self) -> str:
        return self.provider.model

    async def generate(
        self,
        texts: list[str],
        batch_size: Optional[int] = None,
    ) -> EmbeddingBatch:
        """
        Embed texts, one provider request per batch.

        Args:
            texts: Texts to embed
            batch_size: Texts per request, capped at the provider batch limit

        Returns:
            EmbeddingBatch aligned with texts; cost_estimate is derived from
            the summed token usage

        Raises:
            ContentPipelineError: Whatever the provider raised; a batch
                failure fails the whole call
        """
        if not texts:
            return EmbeddingBatch(embeddings=[], model=self.model)

        size = min(batch_size or self.batch_limit, self.batch_limit)
        embeddings: list[list[float]] = []
        total_tokens = 0

        for start in range(0, len(texts), size):
            batch = texts[start:start + size]
            result = await self.provider.embed(batch)

            if len(result.embeddings) != len(batch):
                raise EmbeddingProviderError(
                    f"Provider returned {len(result.embeddings)} embeddings for {len(batch)} texts",
                    provider_name=self.provider.name,
                )

            embeddings.extend(result.embeddings)
            total_tokens += result.total_tokens

        dimensions = {len(vector) for vector in embeddings}
        if len(dimensions) > 1:
            raise EmbeddingProviderError(
                f"Provider returned mixed embedding dimensions: {sorted(dimensions)}",
                provider_name=self.provider.name,
            )

        return EmbeddingBatch(
            embeddings=embeddings,
            model=self.model,
            total_tokens=total_tokens,
            cost_estimate=estimate_cost(self.model, total_tokens),
        )

    async def generate_with_retry(
        self,
        texts: list[str],
        batch_size: Optional[int] = None,
    ) -> EmbeddingBatch:
        """
        ``generate`` with bounded retries on transient provider errors.

        Waits grow exponentially from retry_delay. After max_attempts the
        last error is raised. Non-transient errors, including
        MissingCredentialError, are raised immediately.
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.retry_delay, max=self.retry_delay * 8),
            retry=retry_if_exception_type(TransientProviderError),
            before_sleep=self._log_retry,
            reraise=True,
        )

        async for attempt in retrying:
            with attempt:
                return await self.generate(texts, batch_size)

    def _log_retry(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "embedding_retry_scheduled",
            attempt=retry_state.attempt_number,
            max_attempts=self.max_attempts,
            provider=self.provider.name,
            error=str(error),
            error_type=type(error).__name__,
        )

    async def embed_query(self, text: str) -> list[float]:
        """Embed a single search query."""
        batch = await self.generate_with_retry([text])
        return batch.embeddings[0]


# ================================
# Factory
# ================================

_embedding_provider: Optional[EmbeddingProvider] = None


def get_embedding_provider() -> EmbeddingProvider:
    """
    Process-wide provider chosen by EMBEDDING_PROVIDER.

    Shared so the local model is loaded once per process.
    """
    global _embedding_provider

    if _embedding_provider is None:
        if settings.EMBEDDING_PROVIDER == "local":
            _embedding_provider = SentenceTransformerEmbeddingProvider()
        else:
            _embedding_provider = OpenAIEmbeddingProvider()

    return _embedding_provider


def get_embedding_generator() -> EmbeddingGenerator:
    return EmbeddingGenerator(get_embedding_provider())
