"""Endpoint registry for managed API endpoints.

This module provides the EndpointRegistry class which handles registering,
updating and removing endpoint configurations, hydrating them from the config
store at startup and notifying subscribers about changes.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from .errors import ConfigNotFound, PersistenceFailure
from .models import EndpointCapabilities, EndpointConfig, EndpointEvent, RegistryEvent
from .storage import ConfigStore, JsonFileStore, MemoryConfigStore

LOCAL_COLLECTION_NAME = "api_registry"

Subscriber = Callable[[EndpointEvent], Any]


class RegistryState(Enum):
    LOADING = "loading"
    READY = "ready"


class EndpointRegistry:
    """Keeps the endpoint configurations and their persistence

    Mutations apply to memory immediately and are persisted in a background
    task; ``register`` and ``update`` return that task so callers that need
    durability can await it. Until hydration finished, background writes wait
    for it, so early registrations are saved on top of the loaded collection.

    Args:
        remote_store: Remote config store
        local_store: Local durable fallback store
    """

    def __init__(self, remote_store: Optional[ConfigStore] = None, local_store: Optional[JsonFileStore] = None):
        self.remote_store = remote_store or MemoryConfigStore()
        self.local_store = local_store
        self.endpoints: Dict[str, EndpointConfig] = {}
        self.state = RegistryState.LOADING
        self._subscribers: Dict[RegistryEvent, List[Subscriber]] = {kind: [] for kind in RegistryEvent}
        self._pending: set = set()
        self._hydrated = asyncio.Event()
        logging.info("[EndpointRegistry] Initialized endpoint registry")

    # -- hydration ---------------------------------------------------------

    def is_ready(self) -> bool:
        return self.state == RegistryState.READY

    async def wait_for_ready(self, timeout: float = 10.0, interval: float = 0.05) -> bool:
        """Poll until hydration finished

        Args:
            timeout: Maximum wait in seconds
            interval: Poll interval in seconds

        Returns:
            True if the registry became ready in time
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not self.is_ready():
            if loop.time() >= deadline:
                logging.warning(f"[EndpointRegistry] Not ready after {timeout}s")
                return False
            await asyncio.sleep(interval)
        return True

    async def hydrate(self) -> int:
        """Load the endpoint collection: remote store first, then the local cache

        Returns:
            Number of endpoints loaded
        """
        try:
            return await self._hydrate()
        finally:
            self._hydrated.set()

    async def _hydrate(self) -> int:
        collection = None
        source = None

        try:
            result = await self.remote_store.get_all()
        except Exception as e:
            logging.warning(f"[EndpointRegistry] Remote store unavailable during hydration: {e}")
            result = {"success": False, "data": None}
        if result.get("success") and isinstance(result.get("data"), dict) and result["data"]:
            collection, source = result["data"], "remote store"
        elif self.local_store is not None:
            local = self.local_store.get(LOCAL_COLLECTION_NAME)
            if isinstance(local, dict) and local:
                collection, source = local, "local cache"

        loaded: Dict[str, EndpointConfig] = {}
        for key, config in (collection or {}).items():
            try:
                loaded[key] = EndpointConfig.from_dict(key, config)
            except (ValueError, TypeError) as e:
                logging.error(f"[EndpointRegistry] Skipping invalid endpoint '{key}' from {source}: {e}")

        early = bool(self.endpoints)
        if early:
            logging.warning(
                f"[EndpointRegistry] {len(self.endpoints)} endpoint(s) registered before hydration finished; "
                f"keeping them over hydrated state"
            )
            loaded.update(self.endpoints)
        self.endpoints = loaded

        if source:
            logging.info(f"[EndpointRegistry] Loaded {len(collection)} endpoint(s) from {source}")
            if source == "remote store" and self.local_store is not None:
                self._save_local()
        if early:
            await self.persist()
        elif not self.endpoints:
            logging.info("[EndpointRegistry] No endpoints found, persisting empty collection")
            await self.persist()

        self.state = RegistryState.READY
        return len(self.endpoints)

    # -- persistence -------------------------------------------------------

    def collection(self) -> Dict[str, Dict[str, Any]]:
        return {key: config.to_dict() for key, config in self.endpoints.items()}

    def _save_local(self) -> None:
        if self.local_store is None:
            return
        try:
            self.local_store.set(LOCAL_COLLECTION_NAME, self.collection())
        except OSError as e:
            logging.error(f"[EndpointRegistry] Failed to write local cache: {e}")

    async def persist(self) -> bool:
        """Save the collection to the remote store, falling back to the local cache

        Returns:
            True if the remote store accepted the write
        """
        collection = self.collection()
        try:
            result = await self.remote_store.save(collection)
        except PersistenceFailure as e:
            result = {"success": False, "message": str(e)}
        if not (isinstance(result, dict) and result.get("success")):
            reason = result.get("message") if isinstance(result, dict) else None
            logging.warning(f"[EndpointRegistry] Remote persistence failed, kept local copy only: {reason or result}")
            self._save_local()
            return False
        self._save_local()
        return True

    async def _persist_after_hydration(self) -> bool:
        if not self.is_ready():
            await self._hydrated.wait()
        return await self.persist()

    def _persist_in_background(self) -> "asyncio.Task[bool]":
        task = asyncio.get_running_loop().create_task(self._persist_after_hydration())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def flush(self) -> None:
        """Wait for every pending background write"""
        if self._pending and not self.is_ready():
            logging.warning(f"[EndpointRegistry] {len(self._pending)} write(s) wait for hydration, not flushing")
            return
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # -- events ------------------------------------------------------------

    def subscribe(self, kind: RegistryEvent, callback: Subscriber) -> None:
        self._subscribers[kind].append(callback)

    def unsubscribe(self, kind: RegistryEvent, callback: Subscriber) -> None:
        if callback in self._subscribers[kind]:
            self._subscribers[kind].remove(callback)

    def _emit(self, kind: RegistryEvent, key: str, config: EndpointConfig) -> None:
        event = EndpointEvent(kind=kind, key=key, config=config, timestamp=time.time())
        for callback in list(self._subscribers[kind]):
            try:
                callback(event)
            except Exception as e:
                logging.exception(f"[EndpointRegistry] Subscriber failed on {kind.value} '{key}': {e}")

    # -- mutations ---------------------------------------------------------

    def register(self, key: str, config: Union[Dict[str, Any], EndpointConfig]) -> "asyncio.Task[bool]":
        """Register (or replace) an endpoint

        Args:
            key: Endpoint key
            config: Endpoint configuration dict or EndpointConfig

        Returns:
            Background persistence task resolving to True on remote durability

        Raises:
            ValueError: If the key or url is missing
        """
        if isinstance(config, EndpointConfig):
            if not key or not config.url:
                raise ValueError("Endpoint key and url are required")
            endpoint = config if config.key == key else EndpointConfig.from_dict(key, {**config.to_dict(), "capabilities": config.capabilities})
        else:
            endpoint = EndpointConfig.from_dict(key, config)

        self.endpoints[key] = endpoint
        task = self._persist_in_background()
        self._emit(RegistryEvent.REGISTERED, key, endpoint)
        logging.info(f"[EndpointRegistry] Registered endpoint '{key}' ({endpoint.method.value} {endpoint.url})")
        return task

    def update(self, key: str, partial: Dict[str, Any]) -> "asyncio.Task[bool]":
        """Shallow-merge ``partial`` into an existing endpoint

        Raises:
            ConfigNotFound: If the endpoint does not exist
            ValueError: If the merged config is invalid
        """
        current = self.endpoints.get(key)
        if current is None:
            raise ConfigNotFound(key)

        merged = {**current.to_dict(), **partial}
        capabilities = current.capabilities
        if isinstance(partial.get("capabilities"), EndpointCapabilities):
            capabilities = capabilities.merged(partial["capabilities"])
        merged["capabilities"] = capabilities
        endpoint = EndpointConfig.from_dict(key, merged)

        self.endpoints[key] = endpoint
        task = self._persist_in_background()
        self._emit(RegistryEvent.UPDATED, key, endpoint)
        logging.info(f"[EndpointRegistry] Updated endpoint '{key}'")
        return task

    async def remove(self, key: str) -> bool:
        """Remove an endpoint, rolling back if the removal cannot be persisted

        Returns:
            True if the removal was persisted, False if it was rolled back

        Raises:
            ConfigNotFound: If the endpoint does not exist
        """
        if key not in self.endpoints:
            logging.warning(f"[EndpointRegistry] Endpoint '{key}' not found for removal")
            raise ConfigNotFound(key)

        removed = self.endpoints.pop(key)
        if not await self.persist():
            self.endpoints[key] = removed
            self._save_local()
            logging.error(f"[EndpointRegistry] Removal of '{key}' could not be persisted, restored it")
            return False

        self._emit(RegistryEvent.REMOVED, key, removed)
        logging.info(f"[EndpointRegistry] Removed endpoint '{key}'")
        return True

    # -- reads -------------------------------------------------------------

    def get(self, key: str) -> Optional[EndpointConfig]:
        return self.endpoints.get(key)

    def get_all(self) -> Dict[str, EndpointConfig]:
        return dict(self.endpoints)

    def get_by_category(self, category: str) -> Dict[str, EndpointConfig]:
        category = getattr(category, "value", category)
        return {key: config for key, config in self.endpoints.items() if config.category == category}

    def list_endpoints(self) -> List[dict]:
        """List all configured endpoints as dictionaries"""
        return [config.to_dict() for config in self.endpoints.values()]


__all__ = [
    "EndpointRegistry",
    "RegistryState",
    "LOCAL_COLLECTION_NAME",
]
