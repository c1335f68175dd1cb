"""
Tests for the pipeline error taxonomy.
"""

import pytest

from contentpipe.core.errors import (
    ConfigurationError,
    ContentPipelineError,
    DocumentValidationError,
    ErrorCategory,
    InvalidRequestError,
    JobCancelledError,
    MissingCredentialError,
    ProcessingConflictError,
    RateLimitError,
    SourceNotFoundError,
    TransientProviderError,
)


class TestCategories:

    @pytest.mark.parametrize(
        "error_cls, category",
        [
            (ConfigurationError, ErrorCategory.FATAL),
            (MissingCredentialError, ErrorCategory.FATAL),
            (InvalidRequestError, ErrorCategory.FATAL),
            (JobCancelledError, ErrorCategory.FATAL),
            (DocumentValidationError, ErrorCategory.VALIDATION),
            (TransientProviderError, ErrorCategory.TRANSIENT),
            (RateLimitError, ErrorCategory.TRANSIENT),
        ],
    )
    def test_category(self, error_cls, category):
        assert error_cls().category == category

    def test_only_transient_errors_are_retryable(self):
        assert RateLimitError().retryable
        assert TransientProviderError().retryable
        assert not MissingCredentialError().retryable
        assert not DocumentValidationError().retryable

    def test_credential_error_is_a_configuration_error(self):
        assert issubclass(MissingCredentialError, ConfigurationError)
        assert issubclass(RateLimitError, TransientProviderError)


class TestErrorBody:

    def test_default_message(self):
        error = SourceNotFoundError()

        assert error.message == "Content source not found"
        assert error.status_code == 404

    def test_to_dict(self):
        error = ProcessingConflictError("Source is already being processed (chunking)")

        assert error.to_dict() == {
            "code": "processing_conflict",
            "category": "fatal",
            "message": "Source is already being processed (chunking)",
        }

    def test_provider_name_in_str(self):
        error = RateLimitError("slow down", provider_name="openai")

        assert str(error) == "[openai] slow down"
        assert error.to_dict()["message"] == "slow down"

    def test_catchable_as_base(self):
        with pytest.raises(ContentPipelineError):
            raise DocumentValidationError("Invalid PDF file format")
