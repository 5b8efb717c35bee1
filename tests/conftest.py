"""Pytest fixtures for LedgerVault tests"""
import json
import sqlite3
import sys
from pathlib import Path
from typing import Dict, List, Optional
from urllib.parse import urlparse

import httpx
import pytest


# Ensure ledgervault modules are importable
def ensure_ledgervault_importable():
    """Add src to path if needed."""
    test_dir = Path(__file__).resolve().parent
    src_path = test_dir.parent / "src"
    if str(src_path) not in sys.path:
        sys.path.insert(0, str(src_path))


ensure_ledgervault_importable()

API_BASE = "https://drive.test/drive/v3"
UPLOAD_BASE = "https://drive.test/upload/drive/v3"
SESSION_BASE = "https://drive.test/upload/session"


class FakeDrive:
    """
    In-memory stand-in for the Drive v3 appDataFolder API, served through
    httpx.MockTransport.

    Attributes:
        files: file_id -> {"name", "content", "modifiedTime"}
        requests: every request seen, in order
        page_size: list page size (pagination kicks in above it)
        fail_download / fail_upload: status code to answer with instead
    """

    def __init__(self, page_size: int = 100):
        self.files: Dict[str, Dict] = {}
        self.requests: List[httpx.Request] = []
        self.sessions: Dict[str, Dict] = {}
        self.page_size = page_size
        self.fail_download: Optional[int] = None
        self.fail_upload: Optional[int] = None
        self.omit_location = False
        self.usage = 0
        self.limit: Optional[int] = 15 * 1024 ** 3
        self._next_id = 0
        self._clock = 0

    def add_file(self, name: str, content: bytes = b"", file_id: Optional[str] = None,
                 modified: Optional[str] = None) -> str:
        file_id = file_id or self._new_id()
        self.files[file_id] = {
            "name": name,
            "content": content,
            "modifiedTime": modified or self._tick(),
        }
        return file_id

    def _new_id(self) -> str:
        self._next_id += 1
        return f"file{self._next_id}"

    def _tick(self) -> str:
        self._clock += 1
        return f"2025-01-01T00:{self._clock // 60:02d}:{self._clock % 60:02d}.000Z"

    def _meta(self, file_id: str) -> Dict:
        entry = self.files[file_id]
        return {
            "id": file_id,
            "name": entry["name"],
            "modifiedTime": entry["modifiedTime"],
            "size": str(len(entry["content"])),
        }

    def requests_for(self, method: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        path = urlparse(url).path

        if url.startswith(SESSION_BASE):
            return self._finish_upload(request, path.rsplit("/", 1)[-1])
        if url.startswith(UPLOAD_BASE):
            return self._open_session(request, path)
        if path.endswith("/about"):
            return httpx.Response(200, json={"storageQuota": {
                "usage": str(self.usage),
                "limit": str(self.limit) if self.limit is not None else None,
            }})
        if path.endswith("/files") and request.method == "GET":
            return self._list(request)

        file_id = path.rsplit("/", 1)[-1]
        if request.method == "DELETE":
            if self.files.pop(file_id, None) is None:
                return httpx.Response(404, json={"error": "not found"})
            return httpx.Response(204)
        if request.method == "GET" and request.url.params.get("alt") == "media":
            if self.fail_download:
                return httpx.Response(self.fail_download, text="download refused")
            if file_id not in self.files:
                return httpx.Response(404, json={"error": "not found"})
            return httpx.Response(200, content=self.files[file_id]["content"])
        return httpx.Response(400, json={"error": f"unexpected {request.method} {url}"})

    def _list(self, request: httpx.Request) -> httpx.Response:
        query = request.url.params.get("q")
        ids = sorted(self.files)
        if query:
            wanted = query[len("name='"):-1]
            ids = [i for i in ids if self.files[i]["name"] == wanted]
        start = int(request.url.params.get("pageToken") or 0)
        page = ids[start:start + self.page_size]
        body: Dict = {"files": [self._meta(i) for i in page]}
        if start + self.page_size < len(ids):
            body["nextPageToken"] = str(start + self.page_size)
        return httpx.Response(200, json=body)

    def _open_session(self, request: httpx.Request, path: str) -> httpx.Response:
        metadata = json.loads(request.content or b"{}")
        if request.method == "PATCH":
            file_id = path.rsplit("/", 1)[-1]
            if file_id not in self.files:
                return httpx.Response(404, json={"error": "not found"})
        else:
            file_id = None
        session_id = str(len(self.sessions) + 1)
        self.sessions[session_id] = {"file_id": file_id, "metadata": metadata}
        headers = {} if self.omit_location else {"Location": f"{SESSION_BASE}/{session_id}"}
        return httpx.Response(200, headers=headers, json={})

    def _finish_upload(self, request: httpx.Request, session_id: str) -> httpx.Response:
        if self.fail_upload:
            return httpx.Response(self.fail_upload, text="upload refused")
        session = self.sessions[session_id]
        file_id = session["file_id"] or self._new_id()
        name = session["metadata"].get("name") or self.files.get(file_id, {}).get("name", "")
        self.files[file_id] = {
            "name": name,
            "content": request.content,
            "modifiedTime": self._tick(),
        }
        return httpx.Response(200, json=self._meta(file_id))


def make_sqlite(path: Path, rows: List[str]) -> Path:
    """Create a small rollback-journal database holding rows in table t."""
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path)
    try:
        conn.execute("CREATE TABLE IF NOT EXISTS t (v TEXT)")
        conn.executemany("INSERT INTO t (v) VALUES (?)", [(r,) for r in rows])
        conn.commit()
    finally:
        conn.close()
    return path


def read_rows(path: Path) -> List[str]:
    conn = sqlite3.connect(path)
    try:
        return [row[0] for row in conn.execute("SELECT v FROM t ORDER BY rowid")]
    finally:
        conn.close()


@pytest.fixture
def fake_drive():
    return FakeDrive()


@pytest.fixture
def vault_setup(tmp_path, fake_drive):
    """Create a vault wired to a fake remote space.

    Returns a dict with:
        - vault, client, kv_store, bus, drive
        - data_dir: live database directory
        - scratch_dir: staging root
    """
    from ledgervault.event_bus import EventBus
    from ledgervault.databases import PathResolver
    from ledgervault.kv_store import JSONFileStore
    from ledgervault.remote_store import AppDataClient
    from ledgervault.vault import BackupVault

    data_dir = tmp_path / "app" / "databases"
    data_dir.mkdir(parents=True)
    scratch_dir = tmp_path / "cache"
    kv_store = JSONFileStore(tmp_path / "app" / "asyncStorage.json")
    client = AppDataClient(
        lambda: "test-token",
        base_url=API_BASE,
        upload_url=UPLOAD_BASE,
        transport=httpx.MockTransport(fake_drive.handler),
    )
    bus = EventBus()
    vault = BackupVault(
        client=client,
        kv_store=kv_store,
        resolver=PathResolver(data_dir),
        scratch_dir=scratch_dir,
        event_bus=bus,
    )
    return {
        "vault": vault,
        "client": client,
        "kv_store": kv_store,
        "bus": bus,
        "drive": fake_drive,
        "data_dir": data_dir,
        "scratch_dir": scratch_dir,
    }
