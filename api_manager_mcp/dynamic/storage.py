"""Persistence backends for endpoint configs, field definitions and variables.

The registry persists its collection to a remote config store and falls back
to a local durable key-value store when the remote store is unreachable. The
field manager and variable store use the local store directly.
"""

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

import aiohttp

from .errors import PersistenceFailure


class ConfigStore:
    """Remote store boundary: ``get_all() -> {success, data}`` / ``save(collection) -> {success}``"""

    async def get_all(self) -> Dict[str, Any]:
        raise NotImplementedError

    async def save(self, collection: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    async def close(self) -> None:
        return None


class MemoryConfigStore(ConfigStore):
    """Config store kept in process memory, used when no remote store is configured"""

    def __init__(self, collection: Optional[Dict[str, Any]] = None):
        self.collection: Dict[str, Any] = dict(collection or {})

    async def get_all(self) -> Dict[str, Any]:
        return {"success": True, "data": dict(self.collection)}

    async def save(self, collection: Dict[str, Any]) -> Dict[str, Any]:
        self.collection = dict(collection)
        return {"success": True}


class RemoteConfigStore(ConfigStore):
    """Config store backed by an HTTP service

    The service answers ``GET <url>`` with ``{"success": true, "data": {...}}``
    and accepts the whole collection on ``PUT <url>``.

    Args:
        url: Collection URL of the remote config service
        timeout: Request timeout in seconds
        headers: Extra headers sent with every request
    """

    def __init__(self, url: str, timeout: float = 10.0, headers: Optional[Dict[str, str]] = None):
        self.url = url
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.headers = dict(headers or {})
        self._session: Optional[aiohttp.ClientSession] = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout, headers=self.headers)
        return self._session

    async def get_all(self) -> Dict[str, Any]:
        try:
            async with self._get_session().get(self.url) as response:
                if response.status >= 300:
                    logging.warning(f"[ConfigStore] Remote store returned {response.status} for {self.url}")
                    return {"success": False, "data": None}
                body = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logging.warning(f"[ConfigStore] Could not load from remote store {self.url}: {e}")
            return {"success": False, "data": None}

        if isinstance(body, dict) and "success" in body:
            return {"success": bool(body.get("success")), "data": body.get("data")}
        return {"success": True, "data": body}

    async def save(self, collection: Dict[str, Any]) -> Dict[str, Any]:
        """Save the whole collection

        Raises:
            PersistenceFailure: If the remote store is unreachable or rejects the write
        """
        try:
            async with self._get_session().put(self.url, json=collection) as response:
                if response.status >= 300:
                    raise PersistenceFailure(f"Remote store rejected save with status {response.status}")
                body = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise PersistenceFailure(f"Remote store unreachable: {e}") from e

        if isinstance(body, dict) and body.get("success") is False:
            raise PersistenceFailure(body.get("message") or "Remote store reported failure")
        return {"success": True}

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()


class JsonFileStore:
    """Local durable key-value store, one JSON document per name

    Args:
        directory: Directory holding the documents; created on first write
    """

    def __init__(self, directory: str):
        self.directory = Path(directory).expanduser()

    def _path(self, name: str) -> Path:
        return self.directory / f"{name}.json"

    def get(self, name: str, default: Any = None) -> Any:
        path = self._path(name)
        if not path.exists():
            return default
        try:
            with path.open("r", encoding="utf-8") as fh:
                return json.load(fh)
        except (OSError, ValueError) as e:
            logging.error(f"[LocalStore] Failed to read {path}: {e}")
            return default

    def set(self, name: str, value: Any) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.directory, prefix=f".{name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(value, fh, ensure_ascii=False, indent=2, default=str)
            os.replace(tmp_path, self._path(name))
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def remove(self, name: str) -> None:
        path = self._path(name)
        if path.exists():
            path.unlink()


__all__ = [
    "ConfigStore",
    "MemoryConfigStore",
    "RemoteConfigStore",
    "JsonFileStore",
]
