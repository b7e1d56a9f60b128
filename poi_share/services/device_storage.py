"""
Device-local key/value persistence for anonymous identities.

Anonymous favorites never reach the database; they live in a per-device
store addressed by device id, the way a browser keeps them in local storage
under the ``poi-favorites`` key.
"""
import asyncio
import json
import logging
import os
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Dict, List

from poi_share.core.exceptions import TransientNetworkError, ValidationError

logger = logging.getLogger(__name__)

FAVORITES_KEY = "poi-favorites"

_SAFE_DEVICE_ID = re.compile(r"^[A-Za-z0-9_.-]{1,64}$")


class DeviceStorage(ABC):
    """String-list storage scoped to one device id."""

    @abstractmethod
    async def get_list(self, device_id: str, key: str) -> List[str]:
        ...

    @abstractmethod
    async def update_list(
        self, device_id: str, key: str, mutate: Callable[[List[str]], List[str]]
    ) -> List[str]:
        """Apply ``mutate`` to the stored list atomically and return the result."""
        ...

    @abstractmethod
    async def remove(self, device_id: str, key: str) -> None:
        ...


class MemoryDeviceStorage(DeviceStorage):
    """In-process storage; used by tests and single-process tooling."""

    def __init__(self):
        self._data: Dict[str, Dict[str, List[str]]] = {}

    async def get_list(self, device_id: str, key: str) -> List[str]:
        return list(self._data.get(device_id, {}).get(key, []))

    async def update_list(
        self, device_id: str, key: str, mutate: Callable[[List[str]], List[str]]
    ) -> List[str]:
        values = list(mutate(list(self._data.get(device_id, {}).get(key, []))))
        self._data.setdefault(device_id, {})[key] = values
        return list(values)

    async def remove(self, device_id: str, key: str) -> None:
        self._data.get(device_id, {}).pop(key, None)


class JsonFileDeviceStorage(DeviceStorage):
    """One JSON document per device under ``base_path``.

    Writes go through a temp file and ``os.replace`` so a crash never leaves
    a half-written document behind.
    """

    def __init__(self, base_path: Path):
        self.base_path = Path(base_path)
        self._locks: Dict[str, asyncio.Lock] = {}

    def _path_for(self, device_id: str) -> Path:
        if not _SAFE_DEVICE_ID.match(device_id):
            raise ValidationError("Invalid device id", details={"device_id": device_id})
        return self.base_path / f"{device_id}.json"

    def _lock_for(self, device_id: str) -> asyncio.Lock:
        return self._locks.setdefault(device_id, asyncio.Lock())

    def _read(self, path: Path) -> Dict[str, List[str]]:
        if not path.exists():
            return {}
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError:
            logger.warning(f"Discarding unreadable device document {path.name}")
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, path: Path, data: Dict[str, List[str]]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(".json.tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f)
        os.replace(tmp_path, path)

    async def get_list(self, device_id: str, key: str) -> List[str]:
        path = self._path_for(device_id)
        try:
            data = await asyncio.to_thread(self._read, path)
        except OSError as e:
            raise TransientNetworkError("device_storage", details={"error": str(e)}) from e
        values = data.get(key, [])
        return [str(v) for v in values] if isinstance(values, list) else []

    async def update_list(
        self, device_id: str, key: str, mutate: Callable[[List[str]], List[str]]
    ) -> List[str]:
        path = self._path_for(device_id)
        async with self._lock_for(device_id):
            try:
                data = await asyncio.to_thread(self._read, path)
                current = data.get(key, [])
                values = list(mutate([str(v) for v in current] if isinstance(current, list) else []))
                data[key] = values
                await asyncio.to_thread(self._write, path, data)
            except OSError as e:
                raise TransientNetworkError("device_storage", details={"error": str(e)}) from e
        return list(values)

    async def remove(self, device_id: str, key: str) -> None:
        path = self._path_for(device_id)
        async with self._lock_for(device_id):
            try:
                data = await asyncio.to_thread(self._read, path)
                if key in data:
                    data.pop(key)
                    await asyncio.to_thread(self._write, path, data)
            except OSError as e:
                raise TransientNetworkError("device_storage", details={"error": str(e)}) from e
