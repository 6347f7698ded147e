"""
FastAPI dependency injection.

Dependencies provide instances of services, clients, and configuration
to route handlers. Using dependency injection means:
- Routes don't instantiate their own dependencies (easier to test)
- Dependencies can be overridden in tests
- Configuration is centralized

The storage gateway is built once per process from settings. The backend
choice (cloud or local disk) never changes while the process runs.
"""

import logging
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, Security, status
from fastapi.security import APIKeyHeader

from ..config.settings import Settings, get_settings
from ..core.media.library import MediaLibrary
from ..infrastructure.storage.client import StorageClient, create_storage_client

logger = logging.getLogger(__name__)

# API Key security scheme
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)

# Process-wide gateway, created on first use
_storage_client: Optional[StorageClient] = None


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

async def verify_api_key(
    settings: Annotated[Settings, Depends(get_settings)],
    api_key: str = Security(api_key_header),
) -> str:
    """
    Validate admin API key from request header.

    Uploads, replacements and deletes are admin operations. Resolving a
    reference is public because every public page needs it.

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


# ---------------------------------------------------------------------------
# Service Dependencies
# ---------------------------------------------------------------------------

def _log_sign_failure(key: str, error: Exception) -> None:
    logger.warning(
        "Serving unsigned public URL",
        extra={"key": key, "error_type": type(error).__name__}
    )


def get_storage_client(
    settings: Annotated[Settings, Depends(get_settings)],
) -> StorageClient:
    """
    Provide the storage gateway.

    Created from settings the first time it's needed and reused after
    that, so every request sees the same backend.
    """
    global _storage_client

    if _storage_client is None:
        _storage_client = create_storage_client(
            settings.storage_config(),
            on_sign_failure=_log_sign_failure,
        )
        logger.info(
            "Created storage gateway",
            extra={"mode": _storage_client.mode.value}
        )

    return _storage_client


def reset_storage_client() -> None:
    """Forget the process gateway. Tests call this after changing settings."""
    global _storage_client
    _storage_client = None


def get_media_library(
    storage: Annotated[StorageClient, Depends(get_storage_client)],
) -> MediaLibrary:
    """
    Provide the media library.

    The library is stateless, so we create a new instance per request.
    """
    return MediaLibrary(storage)


# ---------------------------------------------------------------------------
# Convenience Type Aliases
# ---------------------------------------------------------------------------

# These type aliases make route signatures cleaner
AuthenticatedUser = Annotated[str, Depends(verify_api_key)]
StorageClientDep = Annotated[StorageClient, Depends(get_storage_client)]
MediaLibraryDep = Annotated[MediaLibrary, Depends(get_media_library)]
SettingsDep = Annotated[Settings, Depends(get_settings)]
