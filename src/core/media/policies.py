"""
Upload policies per destination folder.

The site's upload handlers cap file size and, for image-only content,
restrict content types. Policies are keyed by the first segment of the
destination folder, so "gallery/<albumId>" uses the "gallery" policy.
"""

import logging
from typing import Optional

from .models import UploadPolicy, normalize_folder

logger = logging.getLogger(__name__)

MB = 1024 * 1024

IMAGE_TYPES = frozenset({"image/jpeg", "image/png", "image/webp", "image/gif"})
PHOTO_TYPES = frozenset({"image/jpeg", "image/png", "image/webp"})

DEFAULT_POLICY = UploadPolicy(max_size_bytes=10 * MB)

FOLDER_POLICIES: dict[str, UploadPolicy] = {
    "documents": UploadPolicy(max_size_bytes=20 * MB),
    "gallery": UploadPolicy(max_size_bytes=10 * MB, allowed_types=IMAGE_TYPES),
    "news": UploadPolicy(max_size_bytes=5 * MB),
    "tournaments": UploadPolicy(max_size_bytes=5 * MB),
    "board-members": UploadPolicy(max_size_bytes=5 * MB, allowed_types=PHOTO_TYPES),
    "registrations": UploadPolicy(max_size_bytes=10 * MB),
}


class MediaError(Exception):
    """Base class for media errors raised before anything is stored."""

    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class UploadRejectedError(MediaError):
    """Raised when an upload violates its folder's policy."""
    pass


class EmptyUploadError(UploadRejectedError):
    status_code = 400


class InvalidFolderError(UploadRejectedError):
    status_code = 400


class UploadTooLargeError(UploadRejectedError):
    status_code = 413


class UnsupportedMediaTypeError(UploadRejectedError):
    status_code = 415


def policy_for(folder: str) -> UploadPolicy:
    """Return the policy for a folder, falling back to the default."""
    segments = [segment for segment in (folder or "").split("/") if segment]
    root = segments[0] if segments else ""
    return FOLDER_POLICIES.get(root, DEFAULT_POLICY)


def validate_upload(folder: str, size_bytes: int, content_type: Optional[str]) -> UploadPolicy:
    """
    Check an upload against its folder policy.

    Returns the policy that was applied. Raises an UploadRejectedError
    subclass describing the first violation.
    """
    try:
        normalize_folder(folder)
    except ValueError as e:
        raise InvalidFolderError(str(e)) from e

    policy = policy_for(folder)

    if size_bytes <= 0:
        raise EmptyUploadError("Uploaded file is empty")

    if size_bytes > policy.max_size_bytes:
        logger.info(
            "Upload rejected: too large",
            extra={"folder": folder, "size_bytes": size_bytes, "limit": policy.max_size_bytes},
        )
        raise UploadTooLargeError(
            f"File too large. Maximum size: {policy.max_size_mb:g}MB"
        )

    if not policy.accepts_type(content_type):
        logger.info(
            "Upload rejected: content type",
            extra={"folder": folder, "content_type": content_type},
        )
        allowed = ", ".join(sorted(policy.allowed_types))
        raise UnsupportedMediaTypeError(
            f"Unsupported file type: {content_type}. Allowed: {allowed}"
        )

    return policy
