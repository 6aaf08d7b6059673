"""Error taxonomy for the API management core."""

from typing import Any, Optional


class ApiError(Exception):
    """Base class for all API management errors

    Args:
        message: Human readable error message
        key: Endpoint key the error relates to, if any
    """

    def __init__(self, message: str, key: Optional[str] = None):
        super().__init__(message)
        self.key = key


class ConfigNotFound(ApiError):
    """No endpoint is registered under the requested key"""

    def __init__(self, key: str):
        super().__init__(f"Endpoint '{key}' not found", key)


class EndpointDisabled(ApiError):
    """The endpoint exists but its status is disabled"""

    def __init__(self, key: str):
        super().__init__(f"Endpoint '{key}' is disabled", key)


class ValidationFailed(ApiError):
    """The endpoint validator rejected the response data"""


class TransportError(ApiError):
    """The transport or custom handler failed

    Args:
        status: HTTP status code when the server answered with an error
        data: Response body returned alongside the error status
    """

    def __init__(self, message: str, key: Optional[str] = None, status: Optional[int] = None, data: Any = None):
        super().__init__(message, key)
        self.status = status
        self.data = data


class EndpointTimeout(ApiError):
    """The call exceeded its configured timeout"""


class PersistenceFailure(ApiError):
    """A registry write did not reach the remote config store"""


class VariableScopeError(ApiError):
    """The variable scope is unknown or read-only"""


__all__ = [
    "ApiError",
    "ConfigNotFound",
    "EndpointDisabled",
    "ValidationFailed",
    "TransportError",
    "EndpointTimeout",
    "PersistenceFailure",
    "VariableScopeError",
]
