"""
Media handling for site content.

Contains the stored-object models, per-folder upload policies and the
media library that record handlers use on top of the storage gateway.
"""

from .library import MediaLibrary
from .models import StorageMode, StoredObject, UploadPolicy, generate_object_name
from .policies import (
    EmptyUploadError,
    InvalidFolderError,
    MediaError,
    UnsupportedMediaTypeError,
    UploadRejectedError,
    UploadTooLargeError,
    policy_for,
    validate_upload,
)

__all__ = [
    "MediaLibrary",
    "StorageMode",
    "StoredObject",
    "UploadPolicy",
    "generate_object_name",
    "EmptyUploadError",
    "InvalidFolderError",
    "MediaError",
    "UnsupportedMediaTypeError",
    "UploadRejectedError",
    "UploadTooLargeError",
    "policy_for",
    "validate_upload",
]
