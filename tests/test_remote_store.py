"""
Tests for the app-private remote store client.

Uses httpx.MockTransport with an in-memory fake of the Drive v3 API.
"""

import json
from datetime import datetime, timezone

import httpx
import pytest

from conftest import API_BASE, UPLOAD_BASE, FakeDrive
from ledgervault.remote_store import (
    AppDataClient,
    RemoteFile,
    StorageAuthError,
    StorageConnectionError,
    StorageError,
)


def make_client(drive, token="test-token", **kwargs):
    return AppDataClient(
        lambda: token,
        base_url=API_BASE,
        upload_url=UPLOAD_BASE,
        transport=httpx.MockTransport(drive.handler),
        **kwargs,
    )


class TestRemoteFile:

    def test_from_api(self):
        record = RemoteFile.from_api({
            "id": "abc123",
            "name": "backup_uid1.zip",
            "modifiedTime": "2025-03-01T10:00:00.000Z",
            "size": "2048",
        })

        assert record.id == "abc123"
        assert record.size == 2048
        assert record.modified_time == datetime(2025, 3, 1, 10, 0, tzinfo=timezone.utc)

    def test_to_dict(self):
        record = RemoteFile(id="abc123", name="backup_uid1.zip")

        assert record.to_dict() == {
            "id": "abc123", "name": "backup_uid1.zip", "modifiedTime": None, "size": None,
        }


class TestListFiles:

    @pytest.mark.asyncio
    async def test_lists_app_data_space(self, fake_drive):
        fake_drive.add_file("backup_uid1.zip", b"x")
        async with make_client(fake_drive) as client:
            files = await client.list_files()

        assert [f.name for f in files] == ["backup_uid1.zip"]
        request = fake_drive.requests[0]
        assert request.headers["Authorization"] == "Bearer test-token"
        assert request.url.params["spaces"] == "appDataFolder"
        assert "nextPageToken" in request.url.params["fields"]

    @pytest.mark.asyncio
    async def test_name_filter(self, fake_drive):
        fake_drive.add_file("backup_uid1.zip")
        fake_drive.add_file("backup_uid2.zip")
        async with make_client(fake_drive) as client:
            files = await client.list_files("backup_uid2.zip")

        assert [f.name for f in files] == ["backup_uid2.zip"]
        assert fake_drive.requests[0].url.params["q"] == "name='backup_uid2.zip'"

    @pytest.mark.asyncio
    async def test_follows_pages(self):
        drive = FakeDrive(page_size=2)
        for i in range(5):
            drive.add_file(f"backup_uid{i}.zip")
        async with make_client(drive) as client:
            files = await client.list_files()

        assert len(files) == 5
        assert len(drive.requests) == 3
        assert drive.requests[1].url.params["pageToken"] == "2"


class TestUpload:

    @pytest.mark.asyncio
    async def test_create_uses_post_with_parent(self, fake_drive, tmp_path):
        archive = tmp_path / "backup_uid1.zip"
        archive.write_bytes(b"zipbytes")
        async with make_client(fake_drive) as client:
            record = await client.upload_file(archive, "backup_uid1.zip")

        post, put = fake_drive.requests
        assert post.method == "POST"
        assert post.url.params["uploadType"] == "resumable"
        assert post.headers["X-Upload-Content-Length"] == "8"
        assert post.headers["X-Upload-Content-Type"] == "application/zip"
        assert json.loads(post.content)["parents"] == ["appDataFolder"]
        assert put.method == "PUT"
        assert put.content == b"zipbytes"
        assert put.headers["Content-Length"] == "8"
        assert fake_drive.files[record.id]["content"] == b"zipbytes"

    @pytest.mark.asyncio
    async def test_existing_id_uses_patch(self, fake_drive, tmp_path):
        fake_drive.add_file("backup_uid1.zip", b"old", file_id="abc123")
        archive = tmp_path / "backup_uid1.zip"
        archive.write_bytes(b"new bytes")
        async with make_client(fake_drive) as client:
            record = await client.upload_file(archive, "backup_uid1.zip", existing_file_id="abc123")

        assert fake_drive.requests_for("POST") == []
        patch = fake_drive.requests_for("PATCH")[0]
        assert str(patch.url).startswith(f"{UPLOAD_BASE}/files/abc123")
        assert "parents" not in json.loads(patch.content)
        assert record.id == "abc123"
        assert fake_drive.files["abc123"]["content"] == b"new bytes"
        assert len(fake_drive.files) == 1

    @pytest.mark.asyncio
    async def test_missing_location_header(self, fake_drive, tmp_path):
        fake_drive.omit_location = True
        archive = tmp_path / "a.zip"
        archive.write_bytes(b"x")
        async with make_client(fake_drive) as client:
            with pytest.raises(StorageError, match="Location"):
                await client.upload_file(archive, "a.zip")
        assert fake_drive.requests_for("PUT") == []

    @pytest.mark.asyncio
    async def test_resume_upload_retries_same_session(self, fake_drive, tmp_path):
        archive = tmp_path / "a.zip"
        archive.write_bytes(b"payload")
        async with make_client(fake_drive) as client:
            session = await client.open_upload_session(archive, "a.zip")
            fake_drive.fail_upload = 503
            with pytest.raises(StorageError) as excinfo:
                await client.resume_upload(session)
            assert excinfo.value.status_code == 503

            fake_drive.fail_upload = None
            record = await client.resume_upload(session)

        puts = fake_drive.requests_for("PUT")
        assert len(puts) == 2
        assert puts[0].url == puts[1].url
        assert fake_drive.files[record.id]["content"] == b"payload"

    @pytest.mark.asyncio
    async def test_progress_callback(self, fake_drive, tmp_path):
        archive = tmp_path / "a.zip"
        archive.write_bytes(b"x" * 10)
        seen = []
        async with make_client(fake_drive, chunk_size=4) as client:
            await client.upload_file(archive, "a.zip", progress=lambda s, t: seen.append((s, t)))

        assert seen == [(4, 10), (8, 10), (10, 10)]

    @pytest.mark.asyncio
    async def test_missing_local_file(self, fake_drive, tmp_path):
        async with make_client(fake_drive) as client:
            with pytest.raises(FileNotFoundError):
                await client.upload_file(tmp_path / "absent.zip", "absent.zip")


class TestDownload:

    @pytest.mark.asyncio
    async def test_streams_to_disk(self, fake_drive, tmp_path):
        fake_drive.add_file("backup_uid1.zip", b"archive-bytes", file_id="abc123")
        dest = tmp_path / "out" / "restore.zip"
        async with make_client(fake_drive) as client:
            await client.download_file("abc123", dest)

        assert dest.read_bytes() == b"archive-bytes"
        assert fake_drive.requests[0].url.params["alt"] == "media"

    @pytest.mark.asyncio
    async def test_non_200_leaves_no_file(self, fake_drive, tmp_path):
        fake_drive.add_file("backup_uid1.zip", b"x", file_id="abc123")
        fake_drive.fail_download = 500
        dest = tmp_path / "restore.zip"
        async with make_client(fake_drive) as client:
            with pytest.raises(StorageError) as excinfo:
                await client.download_file("abc123", dest)

        assert excinfo.value.status_code == 500
        assert not dest.exists()


class TestErrors:

    @pytest.mark.asyncio
    async def test_missing_token(self, fake_drive):
        async with make_client(fake_drive, token=None) as client:
            with pytest.raises(StorageAuthError):
                await client.list_files()
        assert fake_drive.requests == []

    @pytest.mark.asyncio
    async def test_async_token_provider(self, fake_drive):
        async def provider():
            return "async-token"

        client = AppDataClient(
            provider, base_url=API_BASE, upload_url=UPLOAD_BASE,
            transport=httpx.MockTransport(fake_drive.handler),
        )
        async with client:
            await client.list_files()

        assert fake_drive.requests[0].headers["Authorization"] == "Bearer async-token"

    @pytest.mark.asyncio
    async def test_401_maps_to_auth_error(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(401, text="expired"))
        client = AppDataClient(lambda: "t", base_url=API_BASE, upload_url=UPLOAD_BASE, transport=transport)
        async with client:
            with pytest.raises(StorageAuthError) as excinfo:
                await client.list_files()
        assert excinfo.value.status_code == 401

    @pytest.mark.asyncio
    async def test_transport_error_maps_to_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("offline", request=request)

        client = AppDataClient(lambda: "t", base_url=API_BASE, upload_url=UPLOAD_BASE,
                               transport=httpx.MockTransport(handler))
        async with client:
            with pytest.raises(StorageConnectionError):
                await client.list_files()


class TestQuotaAndDelete:

    @pytest.mark.asyncio
    async def test_quota(self, fake_drive):
        fake_drive.usage = 1024
        async with make_client(fake_drive) as client:
            quota = await client.get_quota()

        assert quota.usage == 1024
        assert quota.limit == fake_drive.limit

    @pytest.mark.asyncio
    async def test_delete(self, fake_drive):
        fake_drive.add_file("backup_uid1.zip", file_id="abc123")
        async with make_client(fake_drive) as client:
            assert await client.delete_file("abc123") is True

        assert fake_drive.files == {}
