"""
Object storage gateway for uploaded site media.

Documents, gallery photos, news images, tournament flyers and board-member
photos all go through the same three operations: store, resolve, delete.
Two backends implement them:

- Cloud object storage, reached through its S3-compatible XML API with
  boto3 (Google Cloud Storage interoperability by default). Stored files
  are referenced by their bucket-relative key and resolved to short-lived
  signed URLs on every read.
- Local disk, for development. Files land under the uploads directory and
  are referenced by their "/uploads/..." URL path, which a static file
  server exposes as-is.

The backend is picked once, from configuration, by create_storage_client.
References are opaque to callers: they store whatever string the gateway
returned and hand it back unchanged.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional, Protocol
from urllib.parse import urlparse

from ...core.media.models import (
    StorageMode,
    StoredObject,
    generate_object_name,
    normalize_folder,
)

logger = logging.getLogger(__name__)

SignFailureHook = Callable[[str, Exception], None]


class StorageError(Exception):
    """Raised when storage operations fail."""
    pass


@dataclass
class StorageConfig:
    """
    Configuration for the storage gateway.

    Cloud mode requires both bucket_name and project_id. Everything
    else has a default that works for Google Cloud Storage or for
    local development.
    """
    bucket_name: Optional[str] = None
    project_id: Optional[str] = None
    credentials_file: Optional[str] = None
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    endpoint_url: str = "https://storage.googleapis.com"
    public_base_url: str = "https://storage.googleapis.com"
    region: str = "auto"
    uploads_dir: Path = field(default_factory=lambda: Path("uploads"))
    local_url_prefix: str = "/uploads"
    signed_url_expiry_seconds: int = 3600
    cache_control: str = "public, max-age=31536000"

    @property
    def mode(self) -> StorageMode:
        if self.bucket_name and self.project_id:
            return StorageMode.CLOUD
        return StorageMode.LOCAL


class StorageClient(Protocol):
    """
    Protocol for the storage gateway.

    Route handlers depend on this, never on a concrete backend, so tests
    can inject either implementation.
    """

    mode: StorageMode

    async def store(
        self,
        data: bytes,
        filename: str,
        folder: str,
        content_type: Optional[str] = None,
    ) -> StoredObject:
        """Write a new object and return its reference."""
        ...

    async def resolve(self, reference: Optional[str]) -> Optional[str]:
        """Turn a reference into a URL a browser can load. Never raises."""
        ...

    async def delete(self, reference: Optional[str]) -> None:
        """Remove the object behind a reference, best-effort. Never raises."""
        ...


def is_external_url(reference: str) -> bool:
    return reference.startswith("http://") or reference.startswith("https://")


def is_local_reference(reference: str, prefix: str = "/uploads") -> bool:
    return reference.startswith(prefix.rstrip("/") + "/")


def is_google_key_file(path: str) -> bool:
    """
    True for a Google JSON credential file such as a service-account key.

    These carry an RSA key or OAuth tokens, not HMAC keys, so botocore can
    neither parse them nor sign S3-compatible requests with them.
    """
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return False
    return isinstance(data, dict) and "type" in data


def _delete_local_file(uploads_dir: Path, reference: str, prefix: str) -> None:
    """
    Unlink the file behind a local reference.

    Missing files are fine. Paths that resolve outside the uploads
    directory are refused.
    """
    relative = reference[len(prefix.rstrip("/")) + 1:]
    root = uploads_dir.resolve()
    target = (root / relative).resolve()

    if not target.is_relative_to(root) or target == root:
        logger.warning(
            "Refusing to delete path outside uploads directory",
            extra={"reference": reference},
        )
        return

    try:
        target.unlink(missing_ok=True)
        logger.info("Deleted local file", extra={"reference": reference})
    except OSError as e:
        logger.error(
            "Failed to delete local file",
            extra={"reference": reference, "error": str(e)},
        )


class CloudStorageClient:
    """
    Cloud object storage backend.

    Uses boto3 against the bucket's S3-compatible endpoint. For Google
    Cloud Storage that is https://storage.googleapis.com with HMAC
    interoperability keys, supplied directly or through a credentials
    file.

    All methods are async to match the Protocol even though boto3 is
    synchronous. Calls block for the duration of the network round trip.
    """

    mode = StorageMode.CLOUD

    def __init__(
        self,
        config: StorageConfig,
        on_sign_failure: Optional[SignFailureHook] = None,
        s3_client: Any = None,
    ) -> None:
        """
        Initialize the client with boto3.

        boto3 is imported here (not at module level) because the local
        backend doesn't need it. Pass s3_client to reuse an existing
        client (tests pass a stubbed one).
        """
        if not config.bucket_name:
            raise ValueError("bucket_name is required for cloud storage")

        self._config = config
        self._on_sign_failure = on_sign_failure
        self._s3_client = s3_client or self._build_s3_client(config)

        logger.info(
            "Initialized cloud storage client",
            extra={
                "bucket": config.bucket_name,
                "project": config.project_id,
                "endpoint": config.endpoint_url,
            }
        )

    @staticmethod
    def _build_s3_client(config: StorageConfig) -> Any:
        try:
            import boto3
            import botocore.session
            from botocore.config import Config
        except ImportError:
            raise ImportError(
                "boto3 is required for cloud storage. Install with: pip install boto3"
            )

        botocore_session = botocore.session.get_session()
        if config.credentials_file and is_google_key_file(config.credentials_file):
            logger.warning(
                "Ignoring Google JSON key file; set HMAC interoperability keys to sign requests",
                extra={"credentials_file": config.credentials_file}
            )
        elif config.credentials_file:
            botocore_session.set_config_variable("credentials_file", config.credentials_file)
        session = boto3.session.Session(botocore_session=botocore_session)

        # v4 signatures and path-style keys are what the interop API expects
        boto_config = Config(
            signature_version="s3v4",
            s3={"addressing_style": "path"},
            request_checksum_calculation="when_required",
            response_checksum_validation="when_required",
        )

        return session.client(
            "s3",
            endpoint_url=config.endpoint_url,
            aws_access_key_id=config.access_key_id or None,
            aws_secret_access_key=config.secret_access_key or None,
            region_name=config.region,
            config=boto_config,
        )

    @property
    def bucket_name(self) -> str:
        return self._config.bucket_name

    async def store(
        self,
        data: bytes,
        filename: str,
        folder: str,
        content_type: Optional[str] = None,
    ) -> StoredObject:
        """
        Upload bytes under <folder>/<timestamp>-<random><ext>.

        The key doubles as the reference. One non-resumable put; any
        failure is raised as StorageError and nothing is retried.
        """
        try:
            folder = normalize_folder(folder)
        except ValueError as e:
            raise StorageError(str(e)) from e

        key = f"{folder}/{generate_object_name(filename)}"
        params = {
            "Bucket": self._config.bucket_name,
            "Key": key,
            "Body": data,
            "CacheControl": self._config.cache_control,
        }
        if content_type:
            params["ContentType"] = content_type

        try:
            self._s3_client.put_object(**params)
        except Exception as e:
            logger.error(
                "Failed to upload object",
                extra={"key": key, "error": str(e)}
            )
            raise StorageError(f"Upload failed: {e}") from e

        logger.info(
            "Uploaded object",
            extra={
                "key": key,
                "size_bytes": len(data),
                "content_type": content_type,
            }
        )

        return StoredObject(
            url=key,
            filename=key,
            content_type=content_type,
            size_bytes=len(data),
        )

    async def resolve(self, reference: Optional[str]) -> Optional[str]:
        """
        Generate a signed read URL for a stored key.

        Empty values, absolute URLs and local paths pass through. A fresh
        URL is signed on every call. If signing fails the public object
        URL is returned instead, which only works for public buckets.
        """
        if not reference:
            return reference
        if is_external_url(reference) or is_local_reference(reference, self._config.local_url_prefix):
            return reference

        try:
            url = self._s3_client.generate_presigned_url(
                "get_object",
                Params={
                    "Bucket": self._config.bucket_name,
                    "Key": reference,
                },
                ExpiresIn=self._config.signed_url_expiry_seconds,
            )
        except Exception as e:
            logger.warning(
                "Failed to generate signed URL, falling back to public URL",
                extra={"key": reference, "error": str(e)}
            )
            self._report_sign_failure(reference, e)
            return self.public_url(reference)

        logger.debug("Signed object URL", extra={"key": reference})
        return url

    def public_url(self, key: str) -> str:
        """Unsigned URL of an object in the configured bucket."""
        base = self._config.public_base_url.rstrip("/")
        return f"{base}/{self._config.bucket_name}/{key}"

    def normalize_reference(self, reference: str) -> str:
        """
        Reduce a reference to a bare key.

        Public or signed object URLs pointing at the configured bucket are
        cut down to the key; query strings are dropped.
        """
        key = reference
        public_host = urlparse(self._config.public_base_url).netloc
        marker = f"{self._config.bucket_name}/"
        if public_host and public_host in key:
            parts = key.split(marker, 1)
            if len(parts) > 1:
                key = parts[1]
        return key.split("?", 1)[0]

    async def delete(self, reference: Optional[str]) -> None:
        """
        Delete the object behind a reference. Failures are logged only.

        Local "/uploads/..." references left over from local mode are
        removed from disk instead.
        """
        if not reference:
            return

        key = self.normalize_reference(reference)

        if is_local_reference(key, self._config.local_url_prefix):
            _delete_local_file(self._config.uploads_dir, key, self._config.local_url_prefix)
            return

        if is_external_url(key):
            logger.warning(
                "Not deleting object outside the configured bucket",
                extra={"reference": reference}
            )
            return

        try:
            self._s3_client.delete_object(
                Bucket=self._config.bucket_name,
                Key=key,
            )
            logger.info("Deleted object", extra={"key": key})
        except Exception as e:
            logger.error(
                "Failed to delete object",
                extra={"key": key, "error": str(e)}
            )

    def _report_sign_failure(self, reference: str, error: Exception) -> None:
        if self._on_sign_failure is None:
            return
        try:
            self._on_sign_failure(reference, error)
        except Exception:
            logger.exception("Sign failure hook raised", extra={"key": reference})


class LocalStorageClient:
    """
    Local filesystem backend for development.

    Files are written under uploads_dir and referenced by their
    "/uploads/<folder>/<name>" URL path, which the app serves statically.
    Resolution is the identity function.
    """

    mode = StorageMode.LOCAL

    def __init__(self, config: StorageConfig) -> None:
        self._config = config
        self._root = Path(config.uploads_dir)
        self._prefix = config.local_url_prefix.rstrip("/")
        logger.info(
            "Initialized local storage client",
            extra={"uploads_dir": str(self._root)}
        )

    @property
    def root(self) -> Path:
        return self._root

    async def store(
        self,
        data: bytes,
        filename: str,
        folder: str,
        content_type: Optional[str] = None,
    ) -> StoredObject:
        """Write bytes to <uploads_dir>/<folder>/<timestamp>-<random><ext>."""
        try:
            folder = normalize_folder(folder)
        except ValueError as e:
            raise StorageError(str(e)) from e

        name = generate_object_name(filename)
        directory = self._root / folder

        # Symlinks inside the uploads directory must not lead out of it
        if not directory.resolve().is_relative_to(self._root.resolve()):
            logger.warning(
                "Refusing to write outside uploads directory",
                extra={"folder": folder}
            )
            raise StorageError(f"Invalid folder: {folder}")

        try:
            directory.mkdir(parents=True, exist_ok=True)
            (directory / name).write_bytes(data)
        except OSError as e:
            logger.error(
                "Failed to write upload",
                extra={"folder": folder, "file_name": name, "error": str(e)}
            )
            raise StorageError(f"Upload failed: {e}") from e

        reference = f"{self._prefix}/{folder}/{name}"

        logger.info(
            "Stored upload on local disk",
            extra={"reference": reference, "size_bytes": len(data)}
        )

        return StoredObject(
            url=reference,
            filename=name,
            content_type=content_type,
            size_bytes=len(data),
        )

    async def resolve(self, reference: Optional[str]) -> Optional[str]:
        """Local references are already web-servable."""
        return reference

    async def delete(self, reference: Optional[str]) -> None:
        """Remove a local upload. Anything that isn't a local path is ignored."""
        if not reference:
            return

        path = reference.split("?", 1)[0]
        if not is_local_reference(path, self._prefix):
            logger.debug(
                "Ignoring non-local reference in local mode",
                extra={"reference": reference}
            )
            return

        _delete_local_file(self._root, path, self._prefix)


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

def create_storage_client(
    config: StorageConfig,
    on_sign_failure: Optional[SignFailureHook] = None,
) -> StorageClient:
    """
    Create the storage gateway for this process.

    Cloud when the config names both a bucket and a project, local disk
    otherwise. Call once at startup and share the result.

    Args:
        config: Storage configuration
        on_sign_failure: Called with (key, error) whenever signing falls
            back to a public URL

    Returns:
        StorageClient implementation (cloud or local)
    """
    if config.mode is StorageMode.CLOUD:
        logger.info(
            "Using cloud object storage",
            extra={"bucket": config.bucket_name}
        )
        return CloudStorageClient(config, on_sign_failure=on_sign_failure)

    logger.info("Using local file storage (cloud storage not configured)")
    return LocalStorageClient(config)
