"""
Error taxonomy for the content pipeline.

Every error raised by the pipeline inherits from ContentPipelineError and
carries a category that decides how it is handled:

    ContentPipelineError
    +-- fatal: fail immediately, never retried
    |   +-- ConfigurationError
    |   |   +-- MissingCredentialError
    |   +-- InvalidRequestError
    |   +-- SourceNotFoundError
    |   +-- ProcessingConflictError
    |   +-- JobCancelledError
    |   +-- EmbeddingProviderError
    |   +-- StorageError
    +-- validation: document rejected, job and source marked failed
    |   +-- DocumentValidationError
    +-- transient: retried with backoff inside the embedding generator
        +-- TransientProviderError
            +-- RateLimitError

The API layer turns any of these into a JSON error body using
``status_code``; the orchestrator records ``message`` on the failed job.
"""

import enum


class ErrorCategory(str, enum.Enum):
    """How a pipeline error is handled."""

    FATAL = "fatal"
    VALIDATION = "validation"
    TRANSIENT = "transient"

    def __str__(self) -> str:
        return self.value


class ContentPipelineError(Exception):
    """
    Base exception for all content pipeline errors.

    Subclasses set ``category``, ``status_code`` and ``code`` as class
    attributes. ``provider_name`` identifies the external service that
    caused the failure, if any.
    """

    category: ErrorCategory = ErrorCategory.FATAL
    status_code: int = 500
    code: str = "pipeline_error"
    default_message: str = "Content pipeline error"

    def __init__(
        self,
        message: str | None = None,
        provider_name: str | None = None,
    ) -> None:
        self.message = message or self.default_message
        self.provider_name = provider_name
        super().__init__(self.message)

    @property
    def retryable(self) -> bool:
        return self.category == ErrorCategory.TRANSIENT

    def to_dict(self) -> dict[str, str]:
        return {
            "code": self.code,
            "category": str(self.category),
            "message": self.message,
        }

    def __str__(self) -> str:
        if self.provider_name:
            return f"[{self.provider_name}] {self.message}"
        return self.message


# ================================
# Fatal errors
# ================================

class ConfigurationError(ContentPipelineError):
    """Configuration is invalid or missing."""

    code = "configuration_error"
    default_message = "Invalid or missing configuration"


class MissingCredentialError(ConfigurationError):
    """
    An API credential is missing or was rejected.

    Never retried: the embedding generator re-raises it on the first
    attempt.
    """

    code = "missing_credential"
    default_message = "API credential is not configured"


class InvalidRequestError(ContentPipelineError):
    code = "invalid_request"
    status_code = 400
    default_message = "Invalid request"


class SourceNotFoundError(ContentPipelineError):
    """Unknown source, or a source owned by someone else."""

    code = "source_not_found"
    status_code = 404
    default_message = "Content source not found"


class ProcessingConflictError(ContentPipelineError):
    """A run for this source is already in flight."""

    code = "processing_conflict"
    status_code = 409
    default_message = "Source is already being processed"


class JobCancelledError(ContentPipelineError):
    """A stage noticed its job was cancelled and stopped early."""

    code = "job_cancelled"
    status_code = 409
    default_message = "Cancelled by user"


class EmbeddingProviderError(ContentPipelineError):
    """The embedding provider returned an error that retrying won't fix."""

    code = "embedding_provider_error"
    status_code = 502
    default_message = "Embedding provider request failed"


class StorageError(ContentPipelineError):
    code = "storage_error"
    default_message = "Failed to read stored file"


# ================================
# Validation errors
# ================================

class DocumentValidationError(ContentPipelineError):
    """The uploaded document is corrupt or of an unsupported type."""

    category = ErrorCategory.VALIDATION
    code = "document_invalid"
    status_code = 422
    default_message = "Invalid document"


# ================================
# Transient errors
# ================================

class TransientProviderError(ContentPipelineError):
    """Network failure or server-side error at the embedding provider."""

    category = ErrorCategory.TRANSIENT
    code = "provider_unavailable"
    status_code = 503
    default_message = "Embedding provider is temporarily unavailable"


class RateLimitError(TransientProviderError):
    code = "rate_limited"
    status_code = 429
    default_message = "Rate limit exceeded"
