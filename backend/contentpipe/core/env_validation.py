"""
Environment variable validation.

Checks that the configuration is usable before the API or a worker starts.
Missing embedding credentials are only a warning here: the service can
still accept uploads and chunk them, and the embedding stage reports a
fatal MissingCredentialError when it actually needs the key.
EMBEDDING_DIMENSION is checked against the configured model when its
vector size is known.
"""

import sys
from typing import List, Tuple
from contentpipe.core.config import settings
from contentpipe.core.logging import get_logger
from contentpipe.services.processors.embedder import expected_dimension

logger = get_logger(__name__)


def validate_database_url() -> List[str]:
    """
    Validate database URL configuration.

    Returns:
        List of validation errors (empty if valid)
    """
    errors = []

    if not settings.DATABASE_URL:
        errors.append("DATABASE_URL is not set")
        return errors

    if not settings.DATABASE_URL.startswith("postgresql+asyncpg://"):
        errors.append(
            "DATABASE_URL must use asyncpg driver (format: postgresql+asyncpg://...)"
        )

    if settings.is_production and "contentpipe:contentpipe@" in settings.DATABASE_URL:
        errors.append(
            "DATABASE_URL contains default password - update with a secure password in production"
        )

    return errors


def validate_broker_url() -> List[str]:
    """Validate the Celery broker URL."""
    errors = []

    if not settings.CELERY_BROKER_URL:
        errors.append("CELERY_BROKER_URL is not set")
    elif not settings.CELERY_BROKER_URL.startswith(("redis://", "rediss://")):
        errors.append(
            "CELERY_BROKER_URL must start with redis:// (format: redis://host:port/db)"
        )

    return errors


def validate_pipeline_settings() -> List[str]:
    """
    Validate chunking and embedding settings.

    Returns:
        List of validation errors (empty if valid)
    """
    errors = []

    if settings.CHUNK_OVERLAP_TOKENS >= settings.CHUNK_MAX_TOKENS:
        errors.append(
            "CHUNK_OVERLAP_TOKENS must be smaller than CHUNK_MAX_TOKENS"
        )

    model = (
        settings.LOCAL_EMBEDDING_MODEL
        if settings.EMBEDDING_PROVIDER == "local"
        else settings.EMBEDDING_MODEL
    )
    dimension = expected_dimension(settings.EMBEDDING_PROVIDER, model)
    if dimension is not None and dimension != settings.EMBEDDING_DIMENSION:
        errors.append(
            f"EMBEDDING_DIMENSION is {settings.EMBEDDING_DIMENSION} but {model} "
            f"produces {dimension}-dimensional vectors"
        )

    if settings.EMBEDDING_PROVIDER == "openai" and not settings.OPENAI_API_KEY:
        logger.warning(
            "environment_validation_warning",
            message="OPENAI_API_KEY not set - embedding generation will fail until it is configured",
        )

    if settings.EMBEDDING_BATCH_SIZE > settings.EMBEDDING_PROVIDER_BATCH_LIMIT:
        logger.warning(
            "environment_validation_warning",
            message="EMBEDDING_BATCH_SIZE exceeds EMBEDDING_PROVIDER_BATCH_LIMIT - batches will be split",
        )

    return errors


def validate_production_settings() -> List[str]:
    """Validate production-specific settings."""
    errors = []

    if not settings.is_production:
        return errors

    if settings.DEBUG:
        errors.append("DEBUG must be false in production")

    if settings.LOG_FORMAT != "json":
        logger.warning(
            "log_format_not_json",
            message="LOG_FORMAT should be 'json' in production for better log aggregation",
        )

    return errors


def validate_environment() -> Tuple[bool, List[str]]:
    """
    Validate all environment variables.

    Returns:
        (is_valid, list_of_errors)
    """
    all_errors = []

    logger.info(
        "validating_environment",
        app_env=settings.APP_ENV,
        app_name=settings.APP_NAME,
    )

    all_errors.extend(validate_database_url())
    all_errors.extend(validate_broker_url())
    all_errors.extend(validate_pipeline_settings())
    all_errors.extend(validate_production_settings())

    if all_errors:
        logger.error(
            "environment_validation_failed",
            errors=all_errors,
            error_count=len(all_errors),
        )
        return False, all_errors

    logger.info(
        "environment_validation_successful",
        app_env=settings.APP_ENV,
        embedding_provider=settings.EMBEDDING_PROVIDER,
        embedding_model=settings.EMBEDDING_MODEL,
    )
    return True, []


def validate_or_exit():
    """
    Validate environment and exit if validation fails.

    This should be called during application startup.
    """
    is_valid, errors = validate_environment()

    if not is_valid:
        logger.critical(
            "startup_aborted_invalid_environment",
            errors=errors,
        )
        sys.exit(1)

    logger.info("environment_validation_passed")
