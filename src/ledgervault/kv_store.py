"""
Key-value configuration store

Flat string -> string preferences map shared by the app and the backup
pipeline. The backup pipeline only needs the operations below, so any
store the host app already has can be wrapped behind KeyValueStore.
"""

import asyncio
import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

import aiofiles

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """Async interface over the app's preference store"""

    @abstractmethod
    async def get_item(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    async def set_item(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    async def remove_item(self, key: str) -> None:
        pass

    @abstractmethod
    async def get_all_keys(self) -> List[str]:
        pass

    @abstractmethod
    async def multi_get(self, keys: Iterable[str]) -> List[Tuple[str, Optional[str]]]:
        """Return (key, value) pairs in request order; missing keys map to None"""
        pass

    @abstractmethod
    async def multi_set(self, entries: Iterable[Tuple[str, str]]) -> None:
        pass

    @abstractmethod
    async def clear(self) -> None:
        pass

    async def get_all(self) -> Dict[str, str]:
        keys = await self.get_all_keys()
        return {key: value for key, value in await self.multi_get(keys) if value is not None}


class JSONFileStore(KeyValueStore):
    """
    KeyValueStore persisted as a single JSON object on disk.

    Every mutation rewrites the file through a temporary sibling and
    os.replace, so a crash mid-write leaves the previous contents intact.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = asyncio.Lock()

    async def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        async with aiofiles.open(self.path, "r", encoding="utf-8") as f:
            raw = await f.read()
        if not raw.strip():
            return {}
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError(f"Key-value store at {self.path} is not a JSON object")
        return {str(k): str(v) for k, v in data.items() if v is not None}

    async def _save(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(f".{self.path.name}.tmp")
        async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
            await f.write(json.dumps(data, indent=2, sort_keys=True))
        os.replace(tmp_path, self.path)

    async def get_item(self, key: str) -> Optional[str]:
        async with self._lock:
            data = await self._load()
        return data.get(key)

    async def set_item(self, key: str, value: str) -> None:
        async with self._lock:
            data = await self._load()
            data[key] = str(value)
            await self._save(data)

    async def remove_item(self, key: str) -> None:
        async with self._lock:
            data = await self._load()
            if data.pop(key, None) is not None:
                await self._save(data)

    async def get_all_keys(self) -> List[str]:
        async with self._lock:
            data = await self._load()
        return list(data.keys())

    async def multi_get(self, keys: Iterable[str]) -> List[Tuple[str, Optional[str]]]:
        async with self._lock:
            data = await self._load()
        return [(key, data.get(key)) for key in keys]

    async def multi_set(self, entries: Iterable[Tuple[str, str]]) -> None:
        entries = list(entries)
        if not entries:
            return
        async with self._lock:
            data = await self._load()
            for key, value in entries:
                data[key] = str(value)
            await self._save(data)

    async def clear(self) -> None:
        async with self._lock:
            await self._save({})
        logger.debug(f"Cleared key-value store at {self.path}")
