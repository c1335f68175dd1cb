"""
Tests for environment validation.
"""

import pytest

from contentpipe.core import env_validation
from contentpipe.core.config import settings


@pytest.fixture
def valid_settings(monkeypatch):
    monkeypatch.setattr(settings, "APP_ENV", "development")
    monkeypatch.setattr(settings, "DEBUG", True)
    monkeypatch.setattr(settings, "DATABASE_URL", "postgresql+asyncpg://app:secret@db:5432/app")
    monkeypatch.setattr(settings, "CELERY_BROKER_URL", "redis://redis:6379/0")
    monkeypatch.setattr(settings, "CHUNK_MAX_TOKENS", 512)
    monkeypatch.setattr(settings, "CHUNK_OVERLAP_TOKENS", 50)
    monkeypatch.setattr(settings, "OPENAI_API_KEY", "sk-test")
    monkeypatch.setattr(settings, "EMBEDDING_PROVIDER", "openai")
    monkeypatch.setattr(settings, "EMBEDDING_MODEL", "text-embedding-3-small")
    monkeypatch.setattr(settings, "EMBEDDING_DIMENSION", 1536)
    return settings


class TestValidateEnvironment:

    def test_valid(self, valid_settings):
        assert env_validation.validate_environment() == (True, [])

    def test_database_url_needs_asyncpg(self, valid_settings, monkeypatch):
        monkeypatch.setattr(settings, "DATABASE_URL", "postgresql://app:secret@db/app")

        is_valid, errors = env_validation.validate_environment()

        assert not is_valid
        assert any("asyncpg" in error for error in errors)

    def test_broker_must_be_redis(self, valid_settings, monkeypatch):
        monkeypatch.setattr(settings, "CELERY_BROKER_URL", "amqp://guest@rabbit//")

        assert env_validation.validate_broker_url() != []

    def test_overlap_must_be_below_max_tokens(self, valid_settings, monkeypatch):
        monkeypatch.setattr(settings, "CHUNK_OVERLAP_TOKENS", 512)

        assert env_validation.validate_pipeline_settings() == [
            "CHUNK_OVERLAP_TOKENS must be smaller than CHUNK_MAX_TOKENS"
        ]

    def test_missing_api_key_is_only_a_warning(self, valid_settings, monkeypatch):
        monkeypatch.setattr(settings, "OPENAI_API_KEY", None)

        assert env_validation.validate_pipeline_settings() == []

    def test_production_rules(self, valid_settings, monkeypatch):
        monkeypatch.setattr(settings, "APP_ENV", "production")
        monkeypatch.setattr(
            settings,
            "DATABASE_URL",
            "postgresql+asyncpg://contentpipe:contentpipe@db:5432/contentpipe",
        )

        is_valid, errors = env_validation.validate_environment()

        assert not is_valid
        assert "DEBUG must be false in production" in errors
        assert any("default password" in error for error in errors)

    def test_validate_or_exit(self, valid_settings, monkeypatch):
        monkeypatch.setattr(settings, "CELERY_BROKER_URL", "")

        with pytest.raises(SystemExit):
            env_validation.validate_or_exit()


class TestEmbeddingDimension:

    def test_local_model_must_match_dimension(self, valid_settings, monkeypatch):
        monkeypatch.setattr(settings, "EMBEDDING_PROVIDER", "local")
        monkeypatch.setattr(settings, "LOCAL_EMBEDDING_MODEL", "sentence-transformers/all-MiniLM-L6-v2")

        assert env_validation.validate_pipeline_settings() == [
            "EMBEDDING_DIMENSION is 1536 but sentence-transformers/all-MiniLM-L6-v2 "
            "produces 384-dimensional vectors"
        ]

    def test_local_model_with_matching_dimension(self, valid_settings, monkeypatch):
        monkeypatch.setattr(settings, "EMBEDDING_PROVIDER", "local")
        monkeypatch.setattr(settings, "LOCAL_EMBEDDING_MODEL", "sentence-transformers/all-MiniLM-L6-v2")
        monkeypatch.setattr(settings, "EMBEDDING_DIMENSION", 384)

        assert env_validation.validate_pipeline_settings() == []

    def test_openai_model_must_match_dimension(self, valid_settings, monkeypatch):
        monkeypatch.setattr(settings, "EMBEDDING_MODEL", "text-embedding-3-large")

        is_valid, errors = env_validation.validate_environment()

        assert not is_valid
        assert any("3072-dimensional" in error for error in errors)

    def test_unknown_model_is_not_checked(self, valid_settings, monkeypatch):
        monkeypatch.setattr(settings, "EMBEDDING_MODEL", "in-house-embedder")

        assert env_validation.validate_pipeline_settings() == []
