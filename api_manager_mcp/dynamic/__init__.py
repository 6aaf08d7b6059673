"""Dynamic API manager package.

This package provides the API manager core: an endpoint registry that can
register API endpoints at runtime, an execution proxy with caching, retries
and mocking, field schemas, templated variables, and an MCP server that
exposes registered endpoints as tools.
"""

from .core import DynamicMCPServer
from .errors import (
    ApiError,
    ConfigNotFound,
    EndpointDisabled,
    EndpointTimeout,
    PersistenceFailure,
    TransportError,
    ValidationFailed,
    VariableScopeError,
)
from .fields import FieldSchemaManager
from .models import (
    CallOptions,
    EndpointCapabilities,
    EndpointConfig,
    EndpointStatus,
    FieldDefinition,
    FormatType,
    FieldType,
    HTTPMethod,
    RegistryEvent,
    VariableScope,
)
from .orchestrator import ApiManager
from .proxy import ExecutionProxy
from .registry import EndpointRegistry
from .variables import VariableStore

__all__ = [
    "ApiManager",
    "DynamicMCPServer",
    "EndpointRegistry",
    "ExecutionProxy",
    "FieldSchemaManager",
    "VariableStore",
    "CallOptions",
    "EndpointCapabilities",
    "EndpointConfig",
    "EndpointStatus",
    "FieldDefinition",
    "FormatType",
    "FieldType",
    "HTTPMethod",
    "RegistryEvent",
    "VariableScope",
    "ApiError",
    "ConfigNotFound",
    "EndpointDisabled",
    "EndpointTimeout",
    "PersistenceFailure",
    "TransportError",
    "ValidationFailed",
    "VariableScopeError",
]
