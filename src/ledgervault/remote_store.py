"""
Remote Object Store Client - app-private file space over REST

Talks to the Google Drive v3 appDataFolder space with a caller-supplied
bearer token. Uploads use the two-phase resumable protocol:

1. POST (create) or PATCH (update) the file metadata with
   X-Upload-Content-Length / X-Upload-Content-Type, read the session URL
   from the Location header
2. PUT the file bytes to the session URL

The two phases are exposed separately (open_upload_session / resume_upload)
so the byte transfer can be retried against the same session URL.
"""

import inspect
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Union

import aiofiles
import httpx

from .errors import LedgerVaultError

logger = logging.getLogger(__name__)

DRIVE_BASE_URL = "https://www.googleapis.com/drive/v3"
DRIVE_UPLOAD_URL = "https://www.googleapis.com/upload/drive/v3"
APP_DATA_SPACE = "appDataFolder"
FILE_FIELDS = "id,name,modifiedTime,size"
DEFAULT_MIME_TYPE = "application/zip"
DEFAULT_CHUNK_SIZE = 256 * 1024

TokenProvider = Callable[[], Union[Optional[str], Awaitable[Optional[str]]]]
ProgressCallback = Callable[[int, int], None]


class StorageError(LedgerVaultError):
    """Base exception for remote store errors"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class StorageAuthError(StorageError):
    """Exception for authentication/authorization errors"""
    pass


class StorageConnectionError(StorageError):
    """Exception for connection/network errors"""
    pass


@dataclass
class RemoteFile:
    """Metadata for a file in the app-private space"""
    id: str
    name: str
    modified_time: Optional[datetime] = None
    size: Optional[int] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "RemoteFile":
        modified = data.get("modifiedTime")
        size = data.get("size")
        return cls(
            id=str(data.get("id") or ""),
            name=str(data.get("name") or ""),
            modified_time=_parse_rfc3339(modified) if modified else None,
            size=int(size) if size is not None else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return {
            "id": self.id,
            "name": self.name,
            "modifiedTime": self.modified_time.isoformat() if self.modified_time else None,
            "size": self.size,
        }


@dataclass
class Quota:
    """Storage usage in bytes. limit is None for unlimited accounts."""
    usage: int
    limit: Optional[int] = None


@dataclass
class UploadSession:
    """An opened resumable upload, reusable for retrying the byte transfer"""
    session_url: str
    file_path: Path
    file_name: str
    total_bytes: int
    mime_type: str = DEFAULT_MIME_TYPE
    existing_file_id: Optional[str] = None


def _parse_rfc3339(value: str) -> datetime:
    # Drive returns e.g. 2025-01-01T12:00:00.000Z
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


def _escape_query_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


class AppDataClient:
    """
    Async client for the app-private object space

    Usage:
        async with AppDataClient(lambda: token) as client:
            files = await client.list_files("backup_uid.zip")
            record = await client.upload_file(path, "backup_uid.zip", existing_file_id=files[0].id)

    Args:
        token_provider: Callable (sync or async) returning the bearer token
        base_url: Metadata API root
        upload_url: Upload API root
        timeout: Per-request timeout in seconds (None for no timeout)
        transport: Optional httpx transport (tests use httpx.MockTransport)
        chunk_size: Bytes per chunk when streaming uploads and downloads
    """

    def __init__(
        self,
        token_provider: TokenProvider,
        base_url: str = DRIVE_BASE_URL,
        upload_url: str = DRIVE_UPLOAD_URL,
        timeout: Optional[float] = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        self._token_provider = token_provider
        self.base_url = base_url.rstrip("/")
        self.upload_url = upload_url.rstrip("/")
        self.timeout = timeout
        self.chunk_size = chunk_size
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "AppDataClient":
        self._get_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
            )
        return self._client

    async def _auth_headers(self) -> Dict[str, str]:
        token = self._token_provider()
        if inspect.isawaitable(token):
            token = await token
        if not token:
            raise StorageAuthError("Missing access token")
        return {"Authorization": f"Bearer {token}"}

    @staticmethod
    def _raise_for_status(response: httpx.Response, action: str) -> None:
        if response.is_success:
            return
        message = f"Drive API error during {action}: {response.status_code} {response.text}"
        if response.status_code in (401, 403):
            raise StorageAuthError(message, status_code=response.status_code)
        raise StorageError(message, status_code=response.status_code)

    async def _request(self, method: str, url: str, action: str, **kwargs: Any) -> httpx.Response:
        headers = await self._auth_headers()
        headers.update(kwargs.pop("headers", None) or {})
        try:
            response = await self._get_client().request(method, url, headers=headers, **kwargs)
        except httpx.TransportError as e:
            raise StorageConnectionError(f"Network error during {action}: {e}") from e
        self._raise_for_status(response, action)
        return response

    async def get_quota(self) -> Quota:
        """Storage usage for display; not used by the pipeline itself"""
        response = await self._request(
            "GET", f"{self.base_url}/about", "quota",
            params={"fields": "storageQuota"},
        )
        quota = response.json().get("storageQuota") or {}
        limit = quota.get("limit")
        return Quota(
            usage=int(quota.get("usage") or 0),
            limit=int(limit) if limit is not None else None,
        )

    async def list_files(self, name_filter: Optional[str] = None) -> List[RemoteFile]:
        """
        List files in the app-private space.

        Args:
            name_filter: Only return files with exactly this name

        Returns:
            RemoteFile entries across all result pages
        """
        params: Dict[str, str] = {
            "spaces": APP_DATA_SPACE,
            "fields": f"nextPageToken,files({FILE_FIELDS})",
        }
        if name_filter:
            params["q"] = f"name='{_escape_query_value(name_filter)}'"

        files: List[RemoteFile] = []
        while True:
            response = await self._request("GET", f"{self.base_url}/files", "list", params=params)
            data = response.json()
            files.extend(RemoteFile.from_api(item) for item in data.get("files") or [])
            page_token = data.get("nextPageToken")
            if not page_token:
                break
            params["pageToken"] = page_token

        logger.debug(f"Listed {len(files)} file(s) in {APP_DATA_SPACE}")
        return files

    async def open_upload_session(
        self,
        file_path: Path,
        file_name: str,
        existing_file_id: Optional[str] = None,
        mime_type: str = DEFAULT_MIME_TYPE,
    ) -> UploadSession:
        """
        Submit metadata and obtain a resumable session URL.

        Creates a new file with POST, or updates existing_file_id with PATCH.
        """
        file_path = Path(file_path)
        if not file_path.is_file():
            raise FileNotFoundError(f"Local file not found: {file_path}")
        total = file_path.stat().st_size

        headers = {
            "Content-Type": "application/json; charset=UTF-8",
            "X-Upload-Content-Length": str(total),
            "X-Upload-Content-Type": mime_type,
        }
        params = {"uploadType": "resumable", "fields": FILE_FIELDS}
        if existing_file_id:
            method = "PATCH"
            url = f"{self.upload_url}/files/{existing_file_id}"
            metadata: Dict[str, Any] = {"name": file_name, "mimeType": mime_type}
        else:
            method = "POST"
            url = f"{self.upload_url}/files"
            metadata = {"name": file_name, "mimeType": mime_type, "parents": [APP_DATA_SPACE]}

        response = await self._request(
            method, url, "upload session", params=params, headers=headers, json=metadata,
        )
        session_url = response.headers.get("Location")
        if not session_url:
            raise StorageError("Upload session response missing Location header",
                               status_code=response.status_code)

        logger.info(f"Opened {method} upload session for {file_name} ({total} bytes)")
        return UploadSession(
            session_url=session_url,
            file_path=file_path,
            file_name=file_name,
            total_bytes=total,
            mime_type=mime_type,
            existing_file_id=existing_file_id,
        )

    async def _iter_file(self, session: UploadSession,
                         progress: Optional[ProgressCallback]) -> AsyncIterator[bytes]:
        sent = 0
        async with aiofiles.open(session.file_path, "rb") as f:
            while True:
                chunk = await f.read(self.chunk_size)
                if not chunk:
                    break
                sent += len(chunk)
                yield chunk
                if progress:
                    progress(sent, session.total_bytes)

    async def resume_upload(
        self,
        session: UploadSession,
        progress: Optional[ProgressCallback] = None,
    ) -> RemoteFile:
        """PUT the file bytes to an opened session. Safe to call again after a failure."""
        headers = {
            "Content-Type": session.mime_type,
            "Content-Length": str(session.total_bytes),
        }
        response = await self._request(
            "PUT", session.session_url, "upload",
            headers=headers, content=self._iter_file(session, progress),
        )
        record = RemoteFile.from_api(response.json())
        if not record.id and session.existing_file_id:
            record.id = session.existing_file_id
        logger.info(f"Uploaded {session.file_name} as {record.id}")
        return record

    async def upload_file(
        self,
        file_path: Path,
        file_name: str,
        existing_file_id: Optional[str] = None,
        mime_type: str = DEFAULT_MIME_TYPE,
        progress: Optional[ProgressCallback] = None,
    ) -> RemoteFile:
        """Open a resumable session and transfer the file in one call"""
        session = await self.open_upload_session(
            file_path, file_name, existing_file_id=existing_file_id, mime_type=mime_type,
        )
        return await self.resume_upload(session, progress=progress)

    async def download_file(self, file_id: str, dest_path: Path) -> Path:
        """
        Stream a file's bytes to dest_path.

        Raises:
            StorageError: On any non-200 status; no partial file is left behind
        """
        dest_path = Path(dest_path)
        dest_path.parent.mkdir(parents=True, exist_ok=True)
        headers = await self._auth_headers()
        url = f"{self.base_url}/files/{file_id}"

        try:
            async with self._get_client().stream(
                "GET", url, params={"alt": "media"}, headers=headers,
            ) as response:
                if response.status_code != 200:
                    await response.aread()
                    message = f"Drive download failed: {response.status_code}"
                    if response.status_code in (401, 403):
                        raise StorageAuthError(message, status_code=response.status_code)
                    raise StorageError(message, status_code=response.status_code)
                async with aiofiles.open(dest_path, "wb") as f:
                    async for chunk in response.aiter_bytes(self.chunk_size):
                        await f.write(chunk)
        except httpx.TransportError as e:
            dest_path.unlink(missing_ok=True)
            raise StorageConnectionError(f"Network error during download: {e}") from e
        except StorageError:
            dest_path.unlink(missing_ok=True)
            raise

        logger.info(f"Downloaded {file_id} to {dest_path}")
        return dest_path

    async def delete_file(self, file_id: str) -> bool:
        await self._request("DELETE", f"{self.base_url}/files/{file_id}", "delete")
        return True
