"""
Tests for the storage gateway: both backends and the factory.

Local-mode tests write to a temporary uploads directory. Cloud-mode tests
use a real boto3 client with static credentials; signing happens offline
and put/delete calls are stubbed.
"""

import asyncio
import re
from datetime import datetime, timezone
from unittest.mock import MagicMock
from urllib.parse import parse_qs, urlparse

import pytest
from botocore.exceptions import ClientError
from botocore.stub import ANY, Stubber

from src.core.media.models import StorageMode
from src.infrastructure.storage.client import (
    CloudStorageClient,
    LocalStorageClient,
    StorageConfig,
    StorageError,
    create_storage_client,
    is_google_key_file,
)

TEST_BUCKET = "demo-bucket"


def _expiry_of(signed_url: str) -> float:
    """Absolute expiry (epoch seconds) encoded in a SigV4 presigned URL."""
    query = parse_qs(urlparse(signed_url).query)
    signed_at = datetime.strptime(query["X-Amz-Date"][0], "%Y%m%dT%H%M%SZ")
    signed_at = signed_at.replace(tzinfo=timezone.utc)
    return signed_at.timestamp() + int(query["X-Amz-Expires"][0])


# ---------------------------------------------------------------------------
# Factory Tests
# ---------------------------------------------------------------------------

class TestCreateStorageClient:

    def test_local_when_nothing_configured(self, uploads_dir):
        client = create_storage_client(StorageConfig(uploads_dir=uploads_dir))
        assert isinstance(client, LocalStorageClient)
        assert client.mode is StorageMode.LOCAL

    def test_local_when_only_bucket_configured(self, uploads_dir):
        config = StorageConfig(bucket_name=TEST_BUCKET, uploads_dir=uploads_dir)
        assert isinstance(create_storage_client(config), LocalStorageClient)

    def test_local_when_only_project_configured(self, uploads_dir):
        config = StorageConfig(project_id="demo-project", uploads_dir=uploads_dir)
        assert isinstance(create_storage_client(config), LocalStorageClient)

    def test_cloud_when_bucket_and_project_configured(self, cloud_config):
        client = create_storage_client(cloud_config)
        assert isinstance(client, CloudStorageClient)
        assert client.mode is StorageMode.CLOUD

    def test_cloud_client_requires_bucket(self):
        with pytest.raises(ValueError, match="bucket_name"):
            CloudStorageClient(StorageConfig(project_id="p"), s3_client=MagicMock())


# ---------------------------------------------------------------------------
# Local Backend Tests
# ---------------------------------------------------------------------------

class TestLocalStore:

    @pytest.mark.asyncio
    async def test_store_writes_file_and_returns_uploads_path(self, local_storage, uploads_dir):
        """3-byte test.pdf into documents lands on disk under /uploads/documents."""
        stored = await local_storage.store(b"abc", "test.pdf", "documents", "application/pdf")

        assert re.fullmatch(r"/uploads/documents/\d+-\d+\.pdf", stored.url)
        assert stored.filename == stored.url.rsplit("/", 1)[1]
        assert (uploads_dir / "documents" / stored.filename).read_bytes() == b"abc"
        assert stored.size_bytes == 3

    @pytest.mark.asyncio
    async def test_store_creates_nested_folders(self, local_storage, uploads_dir):
        stored = await local_storage.store(b"\x89PNG", "p.png", "gallery/album-1")

        assert stored.url.startswith("/uploads/gallery/album-1/")
        assert (uploads_dir / "gallery" / "album-1" / stored.filename).exists()

    @pytest.mark.asyncio
    async def test_store_failure_raises_storage_error(self, tmp_path):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("x")
        storage = LocalStorageClient(StorageConfig(uploads_dir=blocker))

        with pytest.raises(StorageError, match="Upload failed"):
            await storage.store(b"abc", "a.pdf", "documents")

    @pytest.mark.asyncio
    async def test_store_without_folder_uses_default_folder(self, local_storage, uploads_dir):
        stored = await local_storage.store(b"abc", "a.pdf", "")

        assert re.fullmatch(r"/uploads/uploads/\d+-\d+\.pdf", stored.url)
        assert (uploads_dir / "uploads" / stored.filename).read_bytes() == b"abc"

    @pytest.mark.asyncio
    async def test_store_refuses_parent_folder(self, local_storage, tmp_path):
        with pytest.raises(StorageError, match="Invalid folder"):
            await local_storage.store(b"pwn", "x.txt", "../outside")

        assert not (tmp_path / "outside").exists()

    @pytest.mark.asyncio
    async def test_store_refuses_symlink_out_of_uploads(self, local_storage, uploads_dir, tmp_path):
        outside = tmp_path / "elsewhere"
        outside.mkdir()
        uploads_dir.mkdir()
        (uploads_dir / "linked").symlink_to(outside, target_is_directory=True)

        with pytest.raises(StorageError, match="Invalid folder"):
            await local_storage.store(b"pwn", "x.txt", "linked")

        assert list(outside.iterdir()) == []

    @pytest.mark.asyncio
    async def test_concurrent_stores_never_collide(self, local_storage, uploads_dir):
        """1000 concurrent uploads of the same name produce 1000 files."""
        results = await asyncio.gather(*(
            local_storage.store(b"x", "same.jpg", "gallery/abc") for _ in range(1000)
        ))

        references = {stored.url for stored in results}
        assert len(references) == 1000
        assert len(list((uploads_dir / "gallery" / "abc").iterdir())) == 1000


class TestLocalResolve:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reference", [
        None,
        "",
        "/uploads/news/1-2.jpg",
        "https://example.com/x.jpg",
        "http://example.com/x.jpg",
        "news/1-2.jpg",
    ])
    async def test_resolve_is_identity(self, local_storage, reference):
        assert await local_storage.resolve(reference) == reference

    @pytest.mark.asyncio
    async def test_stored_reference_resolves(self, local_storage):
        stored = await local_storage.store(b"abc", "a.pdf", "documents")
        assert await local_storage.resolve(stored.url) == stored.url


class TestLocalDelete:

    @pytest.mark.asyncio
    async def test_delete_removes_file(self, local_storage, uploads_dir):
        stored = await local_storage.store(b"abc", "a.pdf", "documents")

        await local_storage.delete(stored.url)

        assert not (uploads_dir / "documents" / stored.filename).exists()

    @pytest.mark.asyncio
    async def test_delete_ignores_query_string(self, local_storage, uploads_dir):
        stored = await local_storage.store(b"abc", "a.pdf", "documents")

        await local_storage.delete(stored.url + "?v=2")

        assert not (uploads_dir / "documents" / stored.filename).exists()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reference", [None, "", "/uploads/documents/missing.pdf"])
    async def test_delete_of_nothing_does_not_raise(self, local_storage, reference):
        await local_storage.delete(reference)

    @pytest.mark.asyncio
    async def test_delete_ignores_non_local_references(self, local_storage):
        await local_storage.delete("https://example.com/x.jpg")
        await local_storage.delete("news/1-2.jpg")

    @pytest.mark.asyncio
    async def test_delete_refuses_paths_outside_uploads(self, local_storage, uploads_dir, tmp_path):
        uploads_dir.mkdir(parents=True)
        secret = tmp_path / "secret.txt"
        secret.write_text("keep me")

        await local_storage.delete("/uploads/../secret.txt")

        assert secret.exists()


# ---------------------------------------------------------------------------
# Cloud Backend Tests
# ---------------------------------------------------------------------------

class TestCloudStore:

    @pytest.mark.asyncio
    async def test_store_puts_object_and_returns_bare_key(self, cloud_storage):
        """PNG into gallery/abc: key without leading slash or bucket name."""
        with Stubber(cloud_storage._s3_client) as stubber:
            stubber.add_response(
                "put_object",
                {},
                expected_params={
                    "Bucket": TEST_BUCKET,
                    "Key": ANY,
                    "Body": b"\x89PNG",
                    "ContentType": "image/png",
                    "CacheControl": "public, max-age=31536000",
                },
            )

            stored = await cloud_storage.store(b"\x89PNG", "photo.png", "gallery/abc", "image/png")

            stubber.assert_no_pending_responses()

        assert re.fullmatch(r"gallery/abc/\d+-\d+\.png", stored.url)
        assert stored.filename == stored.url
        assert TEST_BUCKET not in stored.url

    @pytest.mark.asyncio
    async def test_store_trims_folder_slashes(self, mocked_cloud_storage, mock_s3):
        stored = await mocked_cloud_storage.store(b"x", "a.jpg", "/news/")

        assert re.fullmatch(r"news/\d+-\d+\.jpg", stored.url)
        assert mock_s3.put_object.call_args.kwargs["Key"] == stored.url

    @pytest.mark.asyncio
    @pytest.mark.parametrize("folder", ["", "/", "//"])
    async def test_store_without_folder_uses_default_folder(self, mocked_cloud_storage, mock_s3, folder):
        stored = await mocked_cloud_storage.store(b"x", "a.png", folder)

        assert re.fullmatch(r"uploads/\d+-\d+\.png", stored.url)
        assert not mock_s3.put_object.call_args.kwargs["Key"].startswith("/")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("folder", ["../other", "gallery/../../x", "news/."])
    async def test_store_refuses_dot_segments(self, mocked_cloud_storage, mock_s3, folder):
        with pytest.raises(StorageError, match="Invalid folder"):
            await mocked_cloud_storage.store(b"x", "a.png", folder)

        mock_s3.put_object.assert_not_called()

    @pytest.mark.asyncio
    async def test_store_without_content_type_omits_it(self, mocked_cloud_storage, mock_s3):
        await mocked_cloud_storage.store(b"x", "a.bin", "documents")

        assert "ContentType" not in mock_s3.put_object.call_args.kwargs

    @pytest.mark.asyncio
    async def test_store_failure_propagates(self, cloud_storage):
        with Stubber(cloud_storage._s3_client) as stubber:
            stubber.add_client_error("put_object", service_error_code="AccessDenied", http_status_code=403)

            with pytest.raises(StorageError) as exc_info:
                await cloud_storage.store(b"x", "a.jpg", "news")

        assert isinstance(exc_info.value.__cause__, ClientError)

    @pytest.mark.asyncio
    async def test_concurrent_stores_never_collide(self, mocked_cloud_storage):
        results = await asyncio.gather(*(
            mocked_cloud_storage.store(b"x", "same.png", "gallery/abc") for _ in range(1000)
        ))
        assert len({stored.url for stored in results}) == 1000


class TestCloudCredentials:

    @pytest.fixture(autouse=True)
    def clear_aws_environment(self, monkeypatch, tmp_path):
        for name in ("AWS_ACCESS_KEY_ID", "AWS_SECRET_ACCESS_KEY", "AWS_SESSION_TOKEN", "AWS_PROFILE"):
            monkeypatch.delenv(name, raising=False)
        monkeypatch.setenv("AWS_CONFIG_FILE", str(tmp_path / "no-aws-config"))
        monkeypatch.setenv("AWS_SHARED_CREDENTIALS_FILE", str(tmp_path / "no-aws-credentials"))
        monkeypatch.setenv("AWS_EC2_METADATA_DISABLED", "true")

    def test_detects_service_account_key(self, service_account_key, tmp_path):
        ini = tmp_path / "credentials"
        ini.write_text("[default]\naws_access_key_id = GOOGFILEKEY\n")

        assert is_google_key_file(str(service_account_key))
        assert not is_google_key_file(str(ini))
        assert not is_google_key_file(str(tmp_path / "missing.json"))

    def test_service_account_key_file_does_not_break_startup(self, service_account_key, uploads_dir):
        config = StorageConfig(
            bucket_name=TEST_BUCKET,
            project_id="demo-project",
            credentials_file=str(service_account_key),
            uploads_dir=uploads_dir,
        )

        client = create_storage_client(config)

        assert isinstance(client, CloudStorageClient)

    @pytest.mark.asyncio
    async def test_hmac_keys_sign_alongside_service_account_key(self, cloud_config, service_account_key):
        cloud_config.credentials_file = str(service_account_key)

        url = await CloudStorageClient(cloud_config).resolve("news/1-2.jpg")

        credential = parse_qs(urlparse(url).query)["X-Amz-Credential"][0]
        assert credential.startswith("GOOGTESTACCESSKEY/")

    @pytest.mark.asyncio
    async def test_ini_credentials_file_supplies_hmac_keys(self, tmp_path, uploads_dir):
        credentials = tmp_path / "credentials"
        credentials.write_text(
            "[default]\naws_access_key_id = GOOGFILEKEY\naws_secret_access_key = file-secret\n"
        )
        config = StorageConfig(
            bucket_name=TEST_BUCKET,
            project_id="demo-project",
            credentials_file=str(credentials),
            uploads_dir=uploads_dir,
        )

        url = await CloudStorageClient(config).resolve("news/1-2.jpg")

        credential = parse_qs(urlparse(url).query)["X-Amz-Credential"][0]
        assert credential.startswith("GOOGFILEKEY/")


class TestCloudResolve:

    @pytest.mark.asyncio
    async def test_signed_url_expires_in_one_hour(self, cloud_storage):
        now = datetime.now(timezone.utc).timestamp()

        url = await cloud_storage.resolve("gallery/abc/1700000000000-42.png")

        assert url.startswith(f"https://storage.googleapis.com/{TEST_BUCKET}/gallery/abc/1700000000000-42.png?")
        assert "X-Amz-Signature=" in url
        assert abs(_expiry_of(url) - (now + 3600)) <= 5

    @pytest.mark.asyncio
    async def test_custom_expiry_is_used(self, cloud_config):
        cloud_config.signed_url_expiry_seconds = 600
        url = await CloudStorageClient(cloud_config).resolve("news/1-2.jpg")

        assert parse_qs(urlparse(url).query)["X-Amz-Expires"] == ["600"]

    @pytest.mark.asyncio
    async def test_each_call_signs_again(self, mocked_cloud_storage, mock_s3):
        mock_s3.generate_presigned_url.side_effect = ["https://signed/1", "https://signed/2"]

        first = await mocked_cloud_storage.resolve("news/1-2.jpg")
        second = await mocked_cloud_storage.resolve("news/1-2.jpg")

        assert (first, second) == ("https://signed/1", "https://signed/2")
        assert mock_s3.generate_presigned_url.call_count == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reference", [
        None,
        "",
        "https://example.com/x.jpg",
        "http://example.com/x.jpg",
        "/uploads/news/1-2.jpg",
    ])
    async def test_pass_through_makes_no_sdk_calls(self, mocked_cloud_storage, mock_s3, reference):
        assert await mocked_cloud_storage.resolve(reference) == reference
        assert mock_s3.method_calls == []

    @pytest.mark.asyncio
    async def test_sign_failure_falls_back_to_public_url(self, cloud_config, mock_s3):
        mock_s3.generate_presigned_url.side_effect = RuntimeError("no signer")
        failures = []
        storage = CloudStorageClient(
            cloud_config,
            on_sign_failure=lambda key, error: failures.append((key, error)),
            s3_client=mock_s3,
        )

        url = await storage.resolve("news/1-2.jpg")

        assert url == f"https://storage.googleapis.com/{TEST_BUCKET}/news/1-2.jpg"
        assert failures[0][0] == "news/1-2.jpg"
        assert isinstance(failures[0][1], RuntimeError)

    @pytest.mark.asyncio
    async def test_failing_hook_does_not_break_resolve(self, cloud_config, mock_s3):
        mock_s3.generate_presigned_url.side_effect = RuntimeError("no signer")

        def broken_hook(key, error):
            raise ValueError("hook bug")

        storage = CloudStorageClient(cloud_config, on_sign_failure=broken_hook, s3_client=mock_s3)

        assert (await storage.resolve("news/1-2.jpg")).endswith(f"/{TEST_BUCKET}/news/1-2.jpg")

    @pytest.mark.asyncio
    async def test_stored_reference_resolves(self, cloud_storage):
        with Stubber(cloud_storage._s3_client) as stubber:
            stubber.add_response("put_object", {})
            stored = await cloud_storage.store(b"%PDF", "rules.pdf", "documents", "application/pdf")

        url = await cloud_storage.resolve(stored.url)
        assert urlparse(url).path == f"/{TEST_BUCKET}/{stored.url}"


class TestCloudDelete:

    @pytest.mark.asyncio
    async def test_delete_issues_delete_object(self, cloud_storage):
        with Stubber(cloud_storage._s3_client) as stubber:
            stubber.add_response(
                "delete_object",
                {},
                expected_params={"Bucket": TEST_BUCKET, "Key": "news/1-2.jpg"},
            )

            await cloud_storage.delete("news/1-2.jpg")

            stubber.assert_no_pending_responses()

    @pytest.mark.asyncio
    async def test_delete_strips_public_url_and_query(self, mocked_cloud_storage, mock_s3):
        await mocked_cloud_storage.delete(
            f"https://storage.googleapis.com/{TEST_BUCKET}/news/1-2.jpg?X-Amz-Signature=abc"
        )
        mock_s3.delete_object.assert_called_once_with(Bucket=TEST_BUCKET, Key="news/1-2.jpg")

    @pytest.mark.asyncio
    async def test_delete_strips_query_from_bare_key(self, mocked_cloud_storage, mock_s3):
        await mocked_cloud_storage.delete("news/1-2.jpg?v=1")
        mock_s3.delete_object.assert_called_once_with(Bucket=TEST_BUCKET, Key="news/1-2.jpg")

    @pytest.mark.asyncio
    async def test_delete_leaves_foreign_urls_alone(self, mocked_cloud_storage, mock_s3):
        await mocked_cloud_storage.delete("https://example.com/x.jpg")
        mock_s3.delete_object.assert_not_called()

    @pytest.mark.asyncio
    async def test_delete_of_local_reference_removes_local_file(self, mocked_cloud_storage, mock_s3, uploads_dir):
        target = uploads_dir / "news" / "1-2.jpg"
        target.parent.mkdir(parents=True)
        target.write_bytes(b"old")

        await mocked_cloud_storage.delete("/uploads/news/1-2.jpg")

        assert not target.exists()
        mock_s3.delete_object.assert_not_called()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reference", [None, ""])
    async def test_delete_of_nothing_is_noop(self, mocked_cloud_storage, mock_s3, reference):
        await mocked_cloud_storage.delete(reference)
        assert mock_s3.method_calls == []

    @pytest.mark.asyncio
    async def test_delete_failure_is_swallowed(self, cloud_storage):
        with Stubber(cloud_storage._s3_client) as stubber:
            stubber.add_client_error("delete_object", service_error_code="AccessDenied", http_status_code=403)

            await cloud_storage.delete("news/1-2.jpg")

    @pytest.mark.asyncio
    async def test_resolve_after_delete_does_not_raise(self, cloud_storage):
        with Stubber(cloud_storage._s3_client) as stubber:
            stubber.add_response("delete_object", {})
            await cloud_storage.delete("news/1-2.jpg")

        url = await cloud_storage.resolve("news/1-2.jpg")
        assert f"/{TEST_BUCKET}/news/1-2.jpg" in url
