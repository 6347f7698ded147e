"""
Media library used by record handlers.

Wraps the storage gateway with the rules the site's content handlers share:
check the folder's upload policy before storing, upload a replacement before
removing the file it replaces, clean up every file a deleted record owned,
and resolve a whole listing's references at once.
"""

import asyncio
import logging
from typing import Iterable, Optional, Protocol

from .models import StorageMode, StoredObject
from .policies import validate_upload

logger = logging.getLogger(__name__)


class MediaStore(Protocol):
    """The gateway operations the library needs."""

    mode: StorageMode

    async def store(
        self,
        data: bytes,
        filename: str,
        folder: str,
        content_type: Optional[str] = None,
    ) -> StoredObject:
        ...

    async def resolve(self, reference: Optional[str]) -> Optional[str]:
        ...

    async def delete(self, reference: Optional[str]) -> None:
        ...


class MediaLibrary:
    """
    Upload, replace, discard and resolve media for content records.

    Stateless apart from the gateway it wraps; safe to share across
    requests.
    """

    def __init__(self, storage: MediaStore) -> None:
        self._storage = storage

    @property
    def mode(self) -> StorageMode:
        return self._storage.mode

    async def upload(
        self,
        data: bytes,
        filename: str,
        folder: str,
        content_type: Optional[str] = None,
    ) -> StoredObject:
        """
        Validate against the folder policy, then store.

        Raises UploadRejectedError before anything is written, or
        StorageError if the write fails.
        """
        validate_upload(folder, len(data), content_type)
        return await self._storage.store(data, filename, folder, content_type)

    async def replace(
        self,
        old_reference: Optional[str],
        data: bytes,
        filename: str,
        folder: str,
        content_type: Optional[str] = None,
    ) -> StoredObject:
        """
        Store a new file and then drop the one it replaces.

        The old file is only removed once the new one is safely stored,
        so a failed upload leaves the record's current file intact.
        """
        stored = await self.upload(data, filename, folder, content_type)

        if old_reference and old_reference != stored.url:
            await self._storage.delete(old_reference)
            logger.info(
                "Replaced stored file",
                extra={"old_reference": old_reference, "new_reference": stored.url},
            )

        return stored

    async def discard(self, *references: Optional[str]) -> int:
        """
        Best-effort delete of every non-empty reference.

        Returns how many deletes were issued. Duplicates (an album cover
        that is also one of its photos) are deleted once.
        """
        unique = list(dict.fromkeys(reference for reference in references if reference))

        for reference in unique:
            await self._storage.delete(reference)

        return len(unique)

    async def resolve(self, reference: Optional[str]) -> Optional[str]:
        return await self._storage.resolve(reference)

    async def resolve_many(self, references: Iterable[Optional[str]]) -> list[Optional[str]]:
        """Resolve a listing's references concurrently, keeping order and Nones."""
        return list(await asyncio.gather(*(self._storage.resolve(ref) for ref in references)))
