"""API manager facade.

This module provides the ApiManager class, the single integration point for
consumers. It wires the endpoint registry, execution proxy, field schema
manager and variable store together once at construction and exposes the
``call`` / ``batch_call`` / ``test`` contract on top of them.
"""

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from ..config import Settings
from .docs import MARKDOWN, DocGenerator
from .fields import FieldSchemaManager
from .models import CallOptions, EndpointConfig, EndpointEvent, FieldDefinition, RegistryEvent
from .proxy import ExecutionProxy, Options
from .registry import EndpointRegistry
from .storage import JsonFileStore, MemoryConfigStore, RemoteConfigStore
from .transport import HttpClient, KeyringTokenProvider
from .variables import HostInfo, VariableStore

_SECRET_MARKERS = ("password", "secret", "token")


def redact(params: Dict[str, Any]) -> Dict[str, Any]:
    return {
        key: "******" if any(marker in str(key).lower() for marker in _SECRET_MARKERS) else value
        for key, value in params.items()
    }


class ApiManager:
    """Facade over registry, proxy, field schemas and variables

    Args:
        registry: Endpoint registry
        proxy: Execution proxy bound to ``registry``
        fields: Field schema manager
        variables: Variable store used to parameterize call params
    """

    def __init__(
        self,
        registry: Optional[EndpointRegistry] = None,
        proxy: Optional[ExecutionProxy] = None,
        fields: Optional[FieldSchemaManager] = None,
        variables: Optional[VariableStore] = None,
    ):
        self.registry = registry or EndpointRegistry()
        self.proxy = proxy or ExecutionProxy(self.registry)
        self.fields = fields or FieldSchemaManager()
        self.variables = variables or VariableStore()
        self.docs = DocGenerator(self.registry, self.fields)
        self._init_task: Optional[asyncio.Task] = None
        self.registry.subscribe(RegistryEvent.REMOVED, self._on_endpoint_removed)
        logging.info("[ApiManager] Initialized API manager")

    @classmethod
    def from_settings(cls, settings: Settings) -> "ApiManager":
        """Build the process-wide manager from settings"""
        local_store = JsonFileStore(settings.data_dir)
        if settings.config_store_url:
            remote_store = RemoteConfigStore(settings.config_store_url)
        else:
            logging.info("[ApiManager] No remote config store configured, using in-memory store")
            remote_store = MemoryConfigStore()

        client = HttpClient(
            "default",
            base_url=settings.api_base_url or None,
            timeout=settings.default_timeout,
            token_provider=KeyringTokenProvider(settings.keyring_service, settings.keyring_key),
        )
        registry = EndpointRegistry(remote_store, local_store)
        return cls(
            registry=registry,
            proxy=ExecutionProxy(registry, clients={"default": client}, mock_enabled=settings.mock_mode),
            fields=FieldSchemaManager(local_store),
            variables=VariableStore(
                local_store,
                HostInfo.detect(mode=settings.mode, base_url=settings.base_url, api_base_url=settings.api_base_url),
            ),
        )

    def _on_endpoint_removed(self, event: EndpointEvent) -> None:
        self.fields.clear_fields(event.key)

    # -- lifecycle ---------------------------------------------------------

    async def initialize(self) -> bool:
        """Hydrate the registry; safe to call more than once"""
        if self._init_task is None:
            self._init_task = asyncio.get_running_loop().create_task(self.registry.hydrate())
        try:
            await self._init_task
        except Exception as e:
            logging.exception(f"[ApiManager] Initialization failed: {e}")
            self._init_task = None
            return False
        return True

    def is_ready(self) -> bool:
        return self.registry.is_ready()

    async def wait_for_ready(self, timeout: float = 10.0) -> bool:
        return await self.registry.wait_for_ready(timeout)

    async def close(self) -> None:
        await self.registry.flush()
        await self.proxy.close()
        await self.registry.remote_store.close()

    # -- registry ----------------------------------------------------------

    def register(self, key: str, config: Union[Dict[str, Any], EndpointConfig]) -> "asyncio.Task[bool]":
        return self.registry.register(key, config)

    def update(self, key: str, partial: Dict[str, Any]) -> "asyncio.Task[bool]":
        return self.registry.update(key, partial)

    async def remove(self, key: str) -> bool:
        return await self.registry.remove(key)

    def get(self, key: str) -> Optional[EndpointConfig]:
        return self.registry.get(key)

    # -- calls -------------------------------------------------------------

    def _transform_envelope(self, key: str, envelope: Any, visible_only: bool) -> Any:
        if isinstance(envelope, dict) and "data" in envelope:
            return {**envelope, "data": self.fields.transform_data(key, envelope["data"], visible_only=visible_only)}
        return envelope

    async def call(self, key: str, params: Optional[Dict[str, Any]] = None, options: Options = None) -> Any:
        """Call an endpoint with variable substitution and field transformation

        Args:
            key: Endpoint key
            params: Call params; ``${name}`` tokens in string values are resolved
            options: CallOptions or a dict of overrides

        Returns:
            The proxy envelope with its ``data`` transformed by the endpoint fields
        """
        opts = CallOptions.coerce(options)
        resolved = self.variables.replace_object_variables(dict(params or {}))
        logging.info(f"[ApiManager] Calling '{key}' with params: {redact(resolved)}")
        envelope = await self.proxy.call(key, resolved, opts)
        return self._transform_envelope(key, envelope, bool(opts.visible_only))

    async def batch_call(
        self,
        calls: Sequence[Dict[str, Any]],
        global_options: Options = None,
        parallel: bool = True,
    ) -> List[Dict[str, Any]]:
        """Run several calls with variable substitution; failures are isolated per item"""
        if not isinstance(calls, (list, tuple)):
            raise ValueError("batch_call requires a non-empty list of calls")
        base = CallOptions.coerce(global_options)
        prepared = [
            {
                "key": item.get("key"),
                "params": self.variables.replace_object_variables(dict(item.get("params") or {})),
                "options": CallOptions.coerce(item.get("options")),
            }
            for item in calls
        ]
        results = await self.proxy.batch_call(prepared, base, parallel=parallel)
        for item, result in zip(prepared, results):
            if result["success"]:
                visible_only = bool(item["options"].merged_over(base).visible_only)
                result["data"] = self._transform_envelope(result["key"], result["data"], visible_only)
        return results

    async def test(self, key: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Test an endpoint; variables are resolved but the response is not transformed"""
        resolved = self.variables.replace_object_variables(dict(params or {}))
        return await self.proxy.test(key, resolved)

    # -- fields ------------------------------------------------------------

    def get_fields(self, key: str) -> List[FieldDefinition]:
        return self.fields.get_fields(key)

    def detect_fields(self, key: str, sample_data: Any, save: bool = False) -> List[FieldDefinition]:
        return self.fields.detect_fields(key, sample_data, save=save)

    # -- docs --------------------------------------------------------------

    def generate_docs(self, keys: Union[None, str, Iterable[str]] = None, format: str = MARKDOWN, toc: bool = True):
        return self.docs.generate_docs(keys, format=format, toc=toc)


__all__ = [
    "ApiManager",
    "redact",
]
