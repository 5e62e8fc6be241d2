"""
FastAPI dependency injection.

Dependencies provide instances of repositories, the coverage recomputer
and configuration to route handlers. Using dependency injection means:
- Routes don't instantiate their own dependencies (easier to test)
- Dependencies can be overridden in tests
- Resource lifecycle (connections) is managed per request
"""

import logging
from typing import Annotated, Generator, Optional

from fastapi import Depends, Header, HTTPException, Security, status
from fastapi.security import APIKeyHeader

from ..config.settings import Settings, get_settings
from ..core.billing.recompute import CoverageRecomputer
from ..infrastructure.snowflake.client import MockSnowflakeConnection, create_snowflake_connection
from ..infrastructure.snowflake.repositories.enrolments import (
    EnrolmentCoverageRepository,
    SnowflakeConfig,
)

logger = logging.getLogger(__name__)

# API Key security scheme
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)

# Shared mock connection so mock-mode data persists across requests
_mock_snowflake_connection: Optional[MockSnowflakeConnection] = None


def get_mock_connection() -> MockSnowflakeConnection:
    """Return the process-wide mock connection, creating it on first use."""
    global _mock_snowflake_connection

    if _mock_snowflake_connection is None:
        _mock_snowflake_connection = MockSnowflakeConnection()
        logger.info("Created shared mock Snowflake connection")
    return _mock_snowflake_connection


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

async def verify_api_key(
    settings: Annotated[Settings, Depends(get_settings)],
    api_key: str = Security(api_key_header),
) -> str:
    """
    Validate API key from request header.

    Raises 403 if key is invalid or missing.
    """
    if not api_key:
        logger.warning("Request missing API key")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="API key required. Provide X-API-Key header.",
        )

    if api_key not in settings.api_keys_list:
        logger.warning(
            "Invalid API key attempt",
            extra={"key_prefix": api_key[:8] if api_key else ""}
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid API key",
        )

    return api_key


async def get_actor_id(
    x_actor_id: Annotated[Optional[str], Header()] = None,
) -> Optional[str]:
    """Staff member triggering the change, recorded on coverage audits."""
    if x_actor_id is None:
        return None
    return x_actor_id.strip() or None


# ---------------------------------------------------------------------------
# Repository Dependencies
# ---------------------------------------------------------------------------

def get_coverage_repository(
    settings: Annotated[Settings, Depends(get_settings)],
) -> Generator[EnrolmentCoverageRepository, None, None]:
    """
    Provide EnrolmentCoverageRepository with database connection.

    This is a generator function (yields instead of returns) because
    we need to manage the connection lifecycle:
    1. Create connection
    2. Create repository
    3. Yield repository (FastAPI injects it)
    4. Close connection (cleanup after request)

    In mock mode, we reuse the same connection across requests
    so that data persists during the testing session.
    """
    if settings.snowflake_mock_mode:
        repo = EnrolmentCoverageRepository(get_mock_connection())
        logger.debug("Using shared mock Snowflake connection")
        yield repo
    else:
        config = SnowflakeConfig(
            account=settings.snowflake_account,
            user=settings.snowflake_user,
            password=settings.snowflake_password or None,
            private_key_path=settings.snowflake_private_key_path,
            private_key_base64=settings.snowflake_private_key_base64,
            database=settings.snowflake_database,
            schema=settings.snowflake_schema,
            warehouse=settings.snowflake_warehouse,
            role=settings.snowflake_role,
        )

        with create_snowflake_connection(config=config) as conn:
            repo = EnrolmentCoverageRepository(conn)
            logger.debug("Created EnrolmentCoverageRepository with Snowflake connection")
            yield repo


def get_coverage_recomputer(
    settings: Annotated[Settings, Depends(get_settings)],
    repository: Annotated[EnrolmentCoverageRepository, Depends(get_coverage_repository)],
) -> CoverageRecomputer:
    """Coverage recomputer bound to this request's repository."""
    return CoverageRecomputer(
        repository,
        horizon_fallback_days=settings.coverage_horizon_fallback_days,
        batch_size=settings.recompute_batch_size,
    )


# ---------------------------------------------------------------------------
# Convenience Type Aliases
# ---------------------------------------------------------------------------

# These type aliases make route signatures cleaner
AuthenticatedUser = Annotated[str, Depends(verify_api_key)]
ActorId = Annotated[Optional[str], Depends(get_actor_id)]
CoverageRepositoryDep = Annotated[EnrolmentCoverageRepository, Depends(get_coverage_repository)]
CoverageRecomputerDep = Annotated[CoverageRecomputer, Depends(get_coverage_recomputer)]
SettingsDep = Annotated[Settings, Depends(get_settings)]
