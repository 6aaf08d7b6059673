"""Execution proxy for managed API endpoints.

This module provides the ExecutionProxy class which dispatches calls to the
endpoints held by an EndpointRegistry, through a custom handler or a named
transport client, and owns response caching, retries, mock data and response
normalization.
"""

import asyncio
import inspect
import json
import logging
import re
import time
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from .errors import ApiError, ConfigNotFound, EndpointDisabled, EndpointTimeout, TransportError, ValidationFailed
from .models import (
    DEFAULT_CLIENT,
    CacheEntry,
    CallOptions,
    EndpointConfig,
    EndpointEvent,
    EndpointStatus,
    HTTPMethod,
    RegistryEvent,
)
from .registry import EndpointRegistry
from .transport import HttpClient, TransportResponse

Notifier = Callable[[str], Any]
Options = Union[None, Dict[str, Any], CallOptions]

_MISS = object()


def log_notifier(message: str) -> None:
    logging.error(f"[Notification] {message}")


def normalize_response(raw: Any) -> Dict[str, Any]:
    """Coerce a transport response into the ``{success, data}`` envelope"""
    if isinstance(raw, dict):
        if "success" not in raw:
            return {"success": True, "data": raw}
        if "data" not in raw and not raw.get("error"):
            rest = {k: v for k, v in raw.items() if k != "success"}
            return {"success": raw["success"], "data": rest or None}
        return raw
    return {"success": True, "data": raw}


@dataclass
class TransportRequest:
    method: str
    url: str
    params: Optional[Dict[str, Any]] = None
    json: Optional[Dict[str, Any]] = None
    headers: Dict[str, str] = field(default_factory=dict)


class ExecutionProxy:
    """Dispatches endpoint calls with caching, retries and normalization

    Args:
        registry: Registry the endpoint configs are read from
        clients: Named transport clients; a ``default`` HttpClient is created if missing
        notifier: Receives a message for every terminal failure unless suppressed
        mock_enabled: Serve endpoint mocks without the caller asking for them
        clock: Monotonic clock in seconds, used for cache expiry and latency
    """

    def __init__(
        self,
        registry: EndpointRegistry,
        clients: Optional[Dict[str, Any]] = None,
        notifier: Optional[Notifier] = None,
        mock_enabled: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.registry = registry
        self.clients: Dict[str, Any] = dict(clients or {})
        self.clients.setdefault(DEFAULT_CLIENT, HttpClient(DEFAULT_CLIENT))
        self.notifier = notifier or log_notifier
        self.mock_enabled = mock_enabled
        self._clock = clock
        self._cache: Dict[str, CacheEntry] = {}
        registry.subscribe(RegistryEvent.REMOVED, self._on_endpoint_removed)

    # -- clients -----------------------------------------------------------

    def register_client(self, name: str, client: Any) -> None:
        self.clients[name] = client
        logging.info(f"[ApiProxy] Registered transport client '{name}'")

    def get_client(self, name: Optional[str] = None) -> Any:
        return self.clients.get(name or DEFAULT_CLIENT) or self.clients[DEFAULT_CLIENT]

    async def close(self) -> None:
        for client in self.clients.values():
            close = getattr(client, "close", None)
            if close is not None:
                result = close()
                if inspect.isawaitable(result):
                    await result

    # -- cache -------------------------------------------------------------

    @staticmethod
    def cache_key(key: str, params: Dict[str, Any]) -> str:
        return f"{key}:{json.dumps(params or {}, sort_keys=True, default=str)}"

    def _check_cache(self, cache_key: str) -> Any:
        entry = self._cache.get(cache_key)
        if entry is None:
            return _MISS
        if entry.expiry > self._clock():
            return entry.value
        del self._cache[cache_key]
        return _MISS

    def _set_cache(self, cache_key: Optional[str], value: Any, cache_time: int) -> None:
        if cache_key is not None and cache_time > 0:
            self._cache[cache_key] = CacheEntry(value=value, expiry=self._clock() + cache_time / 1000)

    def clear_cache(self, key: Optional[str] = None) -> int:
        """Clear cached results of one endpoint, or of all endpoints

        Returns:
            Number of entries removed
        """
        if key is None:
            count = len(self._cache)
            self._cache.clear()
            return count
        prefix = f"{key}:"
        stale = [cache_key for cache_key in self._cache if cache_key.startswith(prefix)]
        for cache_key in stale:
            del self._cache[cache_key]
        return len(stale)

    def _on_endpoint_removed(self, event: EndpointEvent) -> None:
        removed = self.clear_cache(event.key)
        logging.info(f"[ApiProxy] Cleared {removed} cache entr{'y' if removed == 1 else 'ies'} of removed endpoint '{event.key}'")

    # -- calls -------------------------------------------------------------

    def _resolve(self, key: str) -> EndpointConfig:
        config = self.registry.get(key)
        if config is None:
            logging.error(f"[ApiProxy] Endpoint '{key}' not found")
            raise ConfigNotFound(key)
        if config.status == EndpointStatus.DISABLED:
            logging.error(f"[ApiProxy] Endpoint '{key}' is disabled")
            raise EndpointDisabled(key)
        if config.status == EndpointStatus.DEPRECATED:
            logging.warning(f"[ApiProxy] Endpoint '{key}' is deprecated")
        return config

    async def call(self, key: str, params: Optional[Dict[str, Any]] = None, options: Options = None) -> Any:
        """Call an endpoint

        Args:
            key: Endpoint key
            params: Call params; URL placeholders are filled from them
            options: CallOptions or a dict of overrides

        Returns:
            ``{success, data}`` envelope for transport calls, or the handler / mock result as is

        Raises:
            ConfigNotFound: If the endpoint does not exist
            EndpointDisabled: If the endpoint is disabled
            ApiError: The last dispatch error once retries are exhausted
        """
        params = dict(params or {})
        opts = CallOptions.coerce(options)
        config = self._resolve(key)

        timeout = opts.timeout if opts.timeout is not None else config.timeout
        retries = opts.retries if opts.retries is not None else config.retries
        cache_time = opts.cache_time if opts.cache_time is not None else config.cache_time
        effective = replace(opts, timeout=timeout, retries=retries, cache_time=cache_time)

        cache_key = None
        if cache_time > 0:
            cache_key = self.cache_key(key, params)
            cached = self._check_cache(cache_key)
            if cached is not _MISS:
                logging.info(f"[ApiProxy] Cache hit for '{key}'")
                return cached

        use_mock = opts.use_mock if opts.use_mock is not None else self.mock_enabled
        if config.capabilities.has_mock() and use_mock:
            result = await self._mock(config, params)
            logging.info(f"[ApiProxy] Served mock data for '{key}'")
            self._set_cache(cache_key, result, cache_time)
            return result

        attempt = 0
        while True:
            try:
                result = await self._with_timeout(self._execute(config, params, effective), config.key, timeout)
                break
            except ApiError as e:
                if attempt < retries:
                    attempt += 1
                    logging.warning(
                        f"[ApiProxy] Call to '{key}' failed ({e}), retry {attempt}/{retries}"
                    )
                    continue
                logging.error(f"[ApiProxy] Call to '{key}' failed after {attempt + 1} attempt(s): {e}")
                if opts.show_error is not False:
                    self._notify(e)
                raise

        self._set_cache(cache_key, result, cache_time)
        return result

    async def _with_timeout(self, coro, key: str, timeout: int) -> Any:
        try:
            return await asyncio.wait_for(coro, timeout / 1000 if timeout and timeout > 0 else None)
        except asyncio.TimeoutError as e:
            raise EndpointTimeout(f"Call to '{key}' timed out after {timeout} ms", key) from e

    async def _execute(self, config: EndpointConfig, params: Dict[str, Any], options: CallOptions) -> Any:
        if config.capabilities.has_handler():
            return await self._run_handler(config, params, options)
        response = await self._send(config, params, options)
        data = self._post_process(config, response.data, params)
        return normalize_response(data)

    async def _run_handler(self, config: EndpointConfig, params: Dict[str, Any], options: CallOptions) -> Any:
        try:
            result = config.capabilities.handler(params, options)
            if inspect.isawaitable(result):
                result = await result
        except ApiError:
            raise
        except Exception as e:
            raise TransportError(f"Handler of '{config.key}' failed: {e}", config.key) from e
        return result

    async def _mock(self, config: EndpointConfig, params: Dict[str, Any]) -> Any:
        mock = config.capabilities.mock
        if not callable(mock):
            return mock
        result = mock(params)
        if inspect.isawaitable(result):
            result = await result
        return result

    def build_request(self, config: EndpointConfig, params: Dict[str, Any], options: CallOptions) -> TransportRequest:
        """Fill URL placeholders and place params in the query or the body"""
        url = config.url
        path_keys = set()
        for name, value in params.items():
            pattern = re.compile(r"\{%s\}|:%s\b" % (re.escape(name), re.escape(name)))
            if pattern.search(url):
                url = pattern.sub(lambda _: str(value), url)
                path_keys.add(name)

        request = TransportRequest(
            method=config.method.value,
            url=url,
            headers={**config.headers, **options.headers},
        )
        if config.method in (HTTPMethod.GET, HTTPMethod.DELETE):
            request.params = {**config.params, **{k: v for k, v in params.items() if k not in path_keys}}
        else:
            request.json = {**config.params, **params}
        return request

    async def _send(self, config: EndpointConfig, params: Dict[str, Any], options: CallOptions) -> TransportResponse:
        request = self.build_request(config, params, options)
        client = self.get_client(config.client)
        try:
            return await client.request(
                request.method,
                request.url,
                params=request.params,
                json=request.json,
                headers=request.headers,
                timeout=options.timeout,
            )
        except ApiError:
            raise
        except Exception as e:
            raise TransportError(f"Transport of '{config.key}' failed: {e}", config.key) from e

    def _post_process(self, config: EndpointConfig, data: Any, params: Dict[str, Any]) -> Any:
        capabilities = config.capabilities
        if capabilities.has_transform():
            try:
                data = capabilities.transform(data, params)
            except Exception as e:
                raise ValidationFailed(f"Transform of '{config.key}' failed: {e}", config.key) from e
        if capabilities.has_validator():
            try:
                verdict = capabilities.validate(data)
            except Exception as e:
                raise ValidationFailed(f"Validator of '{config.key}' failed: {e}", config.key) from e
            if verdict is not True:
                message = verdict if isinstance(verdict, str) and verdict else "Response validation failed"
                raise ValidationFailed(message, config.key)
        return data

    def _notify(self, error: Exception) -> None:
        try:
            self.notifier(str(error) or "Request failed")
        except Exception as e:
            logging.exception(f"[ApiProxy] Notifier failed: {e}")

    async def batch_call(
        self,
        calls: Sequence[Dict[str, Any]],
        global_options: Options = None,
        parallel: bool = True,
    ) -> List[Dict[str, Any]]:
        """Run several calls, isolating failures

        Args:
            calls: Items shaped ``{"key", "params", "options"}``
            global_options: Options every call inherits; per-call options win
            parallel: Run concurrently (True) or one after another

        Returns:
            One ``{key, data, success}`` or ``{key, error, success}`` item per call, in input order

        Raises:
            ValueError: If ``calls`` is not a non-empty list
        """
        if not isinstance(calls, (list, tuple)) or not calls:
            raise ValueError("batch_call requires a non-empty list of calls")
        base = CallOptions.coerce(global_options)

        async def run(item: Dict[str, Any]) -> Dict[str, Any]:
            key = item.get("key")
            options = CallOptions.coerce(item.get("options")).merged_over(base)
            try:
                data = await self.call(key, item.get("params") or {}, options)
            except Exception as e:
                return {"key": key, "error": e, "success": False}
            return {"key": key, "data": data, "success": True}

        if parallel:
            return list(await asyncio.gather(*(run(item) for item in calls)))
        results = []
        for item in calls:
            results.append(await run(item))
        return results

    async def test(self, key: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Call an endpoint once, bypassing cache and mocks. Never raises.

        Returns:
            ``{success, status?, data, response_time, error?}`` with ``response_time`` in ms
        """
        params = dict(params or {})
        start = self._clock()

        def elapsed() -> int:
            return int((self._clock() - start) * 1000)

        config = self.registry.get(key)
        if config is None:
            logging.error(f"[ApiProxy] Test of unknown endpoint '{key}'")
            return {"success": False, "data": None, "response_time": elapsed(), "error": f"Endpoint '{key}' not found"}

        options = CallOptions(timeout=config.timeout, retries=0, cache_time=0, show_error=False)
        uses_handler = config.capabilities.has_handler()
        logging.info(f"[ApiProxy] Testing endpoint '{key}' ({config.method.value} {config.url})")
        try:
            if uses_handler:
                data = await self._with_timeout(self._run_handler(config, params, options), key, config.timeout)
                result = {"success": True, "data": data, "response_time": elapsed(), "is_custom_handler": True}
            else:
                response = await self._with_timeout(self._send(config, params, options), key, config.timeout)
                data = self._post_process(config, response.data, params)
                result = {"success": True, "status": response.status, "data": data, "response_time": elapsed()}
        except Exception as e:
            logging.warning(f"[ApiProxy] Test of '{key}' failed: {e}")
            result = {"success": False, "data": getattr(e, "data", None), "response_time": elapsed(), "error": str(e)}
            if getattr(e, "status", None) is not None:
                result["status"] = e.status
            if uses_handler:
                result["is_custom_handler"] = True
            return result

        logging.info(f"[ApiProxy] Test of '{key}' succeeded in {result['response_time']} ms")
        return result


__all__ = [
    "ExecutionProxy",
    "TransportRequest",
    "normalize_response",
    "log_notifier",
]
