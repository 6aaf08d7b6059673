"""HTTP transport used by the execution proxy.

This module provides the HttpClient class which performs the actual HTTP
requests for managed endpoints, attaching a bearer token read from the OS
keyring when one is stored.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional
from urllib.parse import urljoin

import aiohttp
import keyring
from keyring.errors import KeyringError

from .errors import EndpointTimeout, TransportError
from .models import DEFAULT_TIMEOUT_MS


@dataclass
class TransportResponse:
    """Successful (2xx) HTTP response"""
    status: int
    data: Any
    headers: Dict[str, str] = field(default_factory=dict)


class KeyringTokenProvider:
    """Reads the bearer token from the OS keyring

    Args:
        service_name: Keyring service name
        key_name: Keyring entry holding the token
    """

    def __init__(self, service_name: str, key_name: str):
        self.service_name = service_name
        self.key_name = key_name

    def __call__(self) -> Optional[str]:
        try:
            return keyring.get_password(self.service_name, self.key_name)
        except KeyringError as e:
            logging.warning(f"[HttpClient] Could not read token from keyring: {e}")
            return None

    def set_token(self, token: str) -> None:
        keyring.set_password(self.service_name, self.key_name, token)
        logging.info(f"[HttpClient] Stored bearer token in keyring ({self.service_name}/{self.key_name})")


class HttpClient:
    """aiohttp-backed transport client bound to endpoints by name

    Args:
        name: Client name endpoints refer to
        base_url: Base URL relative endpoint URLs are joined to
        headers: Default headers sent with every request
        timeout: Default timeout in milliseconds
        token_provider: Callable returning the bearer token, or None
    """

    def __init__(
        self,
        name: str = "default",
        base_url: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: int = DEFAULT_TIMEOUT_MS,
        token_provider: Optional[Callable[[], Optional[str]]] = None,
    ):
        self.name = name
        self.base_url = base_url
        self.headers = {"Accept": "application/json", **(headers or {})}
        self.timeout = timeout
        self.token_provider = token_provider
        self._session: Optional[aiohttp.ClientSession] = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    def resolve_url(self, url: str) -> str:
        if self.base_url and not url.startswith(("http://", "https://")):
            return urljoin(self.base_url.rstrip("/") + "/", url.lstrip("/"))
        return url

    async def request(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[int] = None,
    ) -> TransportResponse:
        """Send one HTTP request

        Args:
            method: HTTP method
            url: Absolute URL, or a path relative to ``base_url``
            params: Query parameters
            json: JSON body
            headers: Request headers, merged over the client defaults
            timeout: Timeout in milliseconds

        Returns:
            TransportResponse for 2xx answers

        Raises:
            TransportError: On connection errors and non-2xx answers
            EndpointTimeout: When the request exceeds the timeout
        """
        request_headers = {**self.headers, **(headers or {})}
        token = self.token_provider() if self.token_provider else None
        if token:
            request_headers["Authorization"] = f"Bearer {token}"
        if json is not None:
            request_headers.setdefault("Content-Type", "application/json")

        target = self.resolve_url(url)
        total = (timeout or self.timeout) / 1000
        logging.info(f"[HttpClient:{self.name}] {method} {target}")

        try:
            async with self._get_session().request(
                method,
                target,
                params=_query_params(params),
                json=json,
                headers=request_headers,
                timeout=aiohttp.ClientTimeout(total=total),
            ) as response:
                return await self._process_response(response, method, target)
        except asyncio.TimeoutError as e:
            raise EndpointTimeout(f"Request to {target} timed out after {total} seconds") from e
        except aiohttp.ClientError as e:
            raise TransportError(f"Error calling {target}: {e}") from e

    async def _process_response(self, response: aiohttp.ClientResponse, method: str, target: str) -> TransportResponse:
        if response.content_type and "json" in response.content_type:
            data = await response.json()
        else:
            data = await response.text()

        if 200 <= response.status < 300:
            logging.info(f"[HttpClient:{self.name}] {method} {target} returned {response.status}")
            return TransportResponse(status=response.status, data=data, headers=dict(response.headers))

        logging.warning(f"[HttpClient:{self.name}] {method} {target} failed with status {response.status}")
        message = data.get("message") if isinstance(data, dict) else None
        raise TransportError(
            message or f"Request failed with status {response.status}",
            status=response.status,
            data=data,
        )

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()


def _query_params(params: Optional[Dict[str, Any]]) -> Optional[Dict[str, str]]:
    # aiohttp only accepts str/int/float query values
    if not params:
        return None
    result = {}
    for name, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            result[name] = "true" if value else "false"
        elif isinstance(value, (int, float, str)):
            result[name] = value
        else:
            result[name] = str(value)
    return result


__all__ = [
    "TransportResponse",
    "KeyringTokenProvider",
    "HttpClient",
]
