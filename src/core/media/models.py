"""
Domain models for stored media.

A Stored Object Reference is a plain string handed out by the storage
gateway. Callers persist it on their records and pass it back unchanged
to resolve or delete the file; they never parse it. These models have no
dependencies on the storage SDK or the web framework.
"""

import os
import random
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class StorageMode(Enum):
    """Which physical backend the gateway writes to."""
    CLOUD = "cloud"
    LOCAL = "local"


@dataclass(frozen=True)
class StoredObject:
    """
    Result of storing a file.

    `url` is the reference to persist. `filename` is the generated name:
    the full bucket key in cloud mode, the bare file name in local mode.
    """
    url: str
    filename: str
    content_type: Optional[str] = None
    size_bytes: int = 0


@dataclass(frozen=True)
class UploadPolicy:
    """
    Limits applied to an upload before it reaches storage.

    An empty `allowed_types` means any content type is accepted.
    """
    max_size_bytes: int
    allowed_types: frozenset[str] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        if self.max_size_bytes <= 0:
            raise ValueError("max_size_bytes must be positive")

    @property
    def max_size_mb(self) -> float:
        return self.max_size_bytes / (1024 * 1024)

    def accepts_type(self, content_type: Optional[str]) -> bool:
        if not self.allowed_types:
            return True
        return content_type in self.allowed_types


def generate_object_name(original_filename: str) -> str:
    """
    Build a collision-resistant file name: <ms timestamp>-<random><ext>.

    Uniqueness is practical, not guaranteed. Two uploads in the same
    millisecond still need the same random integer out of a billion
    to collide.
    """
    timestamp = int(time.time() * 1000)
    random_id = random.randint(0, 10**9)
    _, ext = os.path.splitext(original_filename or "")
    return f"{timestamp}-{random_id}{ext}"


DEFAULT_FOLDER = "uploads"


def normalize_folder(folder: Optional[str]) -> str:
    """
    Canonical form of a destination folder.

    Empty segments are dropped, so keys never start with '/', and an
    empty folder becomes DEFAULT_FOLDER. Raises ValueError for "." or ".."
    segments, which could point outside the uploads root.
    """
    segments = [segment for segment in (folder or "").split("/") if segment]
    if any(segment in (".", "..") for segment in segments):
        raise ValueError(f"Invalid folder: {folder}")
    return "/".join(segments) or DEFAULT_FOLDER
