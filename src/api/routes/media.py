"""
Media API endpoints.

Admin screens upload files here and persist the returned reference on
their records (document, gallery photo, news image, tournament flyer,
board-member photo). Public pages resolve references to display URLs.

Flow:
1. Admin uploads a file into a folder → gets a reference
2. The record stores the reference as-is
3. Every read resolves the reference (signed URL in cloud mode)
4. Deleting or replacing the record deletes the old file, best-effort
"""

import logging
from typing import Annotated, Optional

from fastapi import APIRouter, File, HTTPException, Query, Response, UploadFile, status
from pydantic import BaseModel, Field

from ...core.media.library import MediaLibrary
from ...core.media.models import StoredObject
from ...core.media.policies import UploadRejectedError
from ...infrastructure.storage.client import StorageError
from ..dependencies import AuthenticatedUser, MediaLibraryDep

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Request/Response Models
# ---------------------------------------------------------------------------

class StoredMediaResponse(BaseModel):
    """Response after storing a file."""
    reference: str = Field(description="Reference to persist on the owning record")
    filename: str = Field(description="Generated file name")
    url: Optional[str] = Field(description="Display URL, valid right now")
    size_bytes: int = Field(description="Stored size")
    content_type: Optional[str] = Field(default=None, description="Content type recorded with the file")


class ResolvedMediaResponse(BaseModel):
    """A reference and the URL it currently resolves to."""
    reference: Optional[str]
    url: Optional[str]


# ---------------------------------------------------------------------------
# Helper Functions
# ---------------------------------------------------------------------------

async def _stored_response(stored: StoredObject, library: MediaLibrary) -> StoredMediaResponse:
    return StoredMediaResponse(
        reference=stored.url,
        filename=stored.filename,
        url=await library.resolve(stored.url),
        size_bytes=stored.size_bytes,
        content_type=stored.content_type,
    )


def _rejected(exc: UploadRejectedError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.message)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get(
    "/resolve",
    response_model=ResolvedMediaResponse,
    summary="Resolve a stored reference",
    description="Return a display URL for a reference. Signed and short-lived in cloud mode.",
)
async def resolve_media(
    library: MediaLibraryDep,
    reference: Annotated[Optional[str], Query()] = None,
) -> ResolvedMediaResponse:
    return ResolvedMediaResponse(
        reference=reference,
        url=await library.resolve(reference),
    )


@router.post(
    "/{folder:path}",
    response_model=StoredMediaResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Upload a file",
    description="Store a file in a folder such as documents, news or gallery/<albumId>",
)
async def upload_media(
    folder: str,
    file: Annotated[UploadFile, File(description="File to store")],
    api_key: AuthenticatedUser,
    library: MediaLibraryDep,
) -> StoredMediaResponse:
    """
    Upload a file for a content record.

    Size and type limits depend on the folder (see core.media.policies).
    """
    data = await file.read()

    logger.info(
        "Media upload started",
        extra={
            "folder": folder,
            "upload_name": file.filename,
            "content_type": file.content_type,
            "size_bytes": len(data),
        }
    )

    try:
        stored = await library.upload(
            data,
            filename=file.filename or "",
            folder=folder,
            content_type=file.content_type,
        )
    except UploadRejectedError as e:
        raise _rejected(e)
    except StorageError as e:
        logger.error(f"Failed to store upload: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to store file"
        )

    return await _stored_response(stored, library)


@router.put(
    "/{folder:path}",
    response_model=StoredMediaResponse,
    summary="Replace a file",
    description="Store a new file, then delete the file it replaces",
)
async def replace_media(
    folder: str,
    file: Annotated[UploadFile, File(description="Replacement file")],
    api_key: AuthenticatedUser,
    library: MediaLibraryDep,
    reference: Annotated[Optional[str], Query(description="Reference being replaced")] = None,
) -> StoredMediaResponse:
    data = await file.read()

    try:
        stored = await library.replace(
            reference,
            data,
            filename=file.filename or "",
            folder=folder,
            content_type=file.content_type,
        )
    except UploadRejectedError as e:
        raise _rejected(e)
    except StorageError as e:
        logger.error(f"Failed to store replacement: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to store file"
        )

    return await _stored_response(stored, library)


@router.delete(
    "",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a file",
    description="Best-effort delete. Always succeeds, even if the file is already gone.",
)
async def delete_media(
    api_key: AuthenticatedUser,
    library: MediaLibraryDep,
    reference: Annotated[Optional[str], Query()] = None,
) -> Response:
    await library.discard(reference)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
