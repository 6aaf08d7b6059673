"""Data models for managed API endpoints, fields and variables.

This module contains the core data structures used to describe endpoints
registered at runtime, the field schemas attached to their responses and the
options accepted by a call.
"""

import time
from dataclasses import asdict, dataclass, field, fields, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union


class HTTPMethod(Enum):
    """Supported HTTP methods for API endpoints"""
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"
    PATCH = "PATCH"


class EndpointStatus(Enum):
    """Lifecycle status of a registered endpoint"""
    ENABLED = "enabled"
    DISABLED = "disabled"
    DEPRECATED = "deprecated"


class EndpointCategory(Enum):
    """Well-known endpoint categories. Other strings are accepted as free tags."""
    SYSTEM = "system"
    DATA = "data"
    DEVICE = "device"
    CUSTOM = "custom"
    ADMIN = "admin"
    AUTH = "auth"
    REPORT = "report"


class RegistryEvent(Enum):
    """Events emitted by the endpoint registry"""
    REGISTERED = "registered"
    UPDATED = "updated"
    REMOVED = "removed"


class FieldType(Enum):
    """Semantic type of a response field"""
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    DATETIME = "datetime"
    OBJECT = "object"
    ARRAY = "array"
    ENUM = "enum"


class FormatType(Enum):
    """Display format hint of a response field"""
    NONE = "none"
    CURRENCY = "currency"
    PERCENTAGE = "percentage"
    DECIMAL = "decimal"
    INTEGER = "integer"
    DATE = "date"
    TIME = "time"
    DATETIME = "datetime"
    CUSTOM = "custom"


class VariableScope(Enum):
    """Variable scopes, listed from highest to lowest resolution precedence"""
    SESSION = "session"
    USER = "user"
    GLOBAL = "global"
    ENV = "env"


DEFAULT_TIMEOUT_MS = 15000
DEFAULT_CLIENT = "default"


@dataclass
class EndpointCapabilities:
    """Optional behaviours an endpoint may carry

    Args:
        handler: Replaces transport dispatch, called as ``handler(params, options)``
        transform: Rewrites transport response data, called as ``transform(data, params)``
        validate: Checks transport response data; anything but ``True`` is a failure
        mock: Literal mock response or a generator called as ``mock(params)``
    """
    handler: Optional[Callable[..., Any]] = None
    transform: Optional[Callable[[Any, Dict[str, Any]], Any]] = None
    validate: Optional[Callable[[Any], Any]] = None
    mock: Any = None

    def has_handler(self) -> bool:
        return callable(self.handler)

    def has_transform(self) -> bool:
        return callable(self.transform)

    def has_validator(self) -> bool:
        return callable(self.validate)

    def has_mock(self) -> bool:
        return self.mock is not None

    def merged(self, other: "EndpointCapabilities") -> "EndpointCapabilities":
        """Return a copy where every slot set on ``other`` wins"""
        changes = {f.name: getattr(other, f.name) for f in fields(other) if getattr(other, f.name) is not None}
        return replace(self, **changes)


_CAPABILITY_KEYS = ("handler", "transform", "validate", "mock")
_ALIASES = {"cacheTime": "cache_time", "axiosInstance": "client"}


@dataclass
class EndpointConfig:
    """Configuration for a managed API endpoint

    Args:
        key: Unique endpoint key (becomes the tool name)
        url: Endpoint URL (supports templating like /users/{id} or /users/:id)
        name: Display name
        method: HTTP method to use
        category: Category tag
        status: Endpoint status; disabled endpoints reject calls
        timeout: Request timeout in milliseconds
        retries: Number of retries after the first failed attempt
        cache_time: Cache TTL in milliseconds, 0 disables caching
        headers: Custom headers sent with every request
        params: Static params merged under the call params
        description: Endpoint description for docs and tool listings
        client: Name of the transport client used for dispatch
        capabilities: Optional handler / transform / validate / mock slots
    """
    key: str
    url: str
    name: str = ""
    method: HTTPMethod = HTTPMethod.GET
    category: str = EndpointCategory.CUSTOM.value
    status: EndpointStatus = EndpointStatus.ENABLED
    timeout: int = DEFAULT_TIMEOUT_MS
    retries: int = 0
    cache_time: int = 0
    headers: Dict[str, str] = field(default_factory=dict)
    params: Dict[str, Any] = field(default_factory=dict)
    description: str = ""
    client: str = DEFAULT_CLIENT
    capabilities: EndpointCapabilities = field(default_factory=EndpointCapabilities)

    @property
    def enabled(self) -> bool:
        return self.status != EndpointStatus.DISABLED

    @classmethod
    def from_dict(cls, key: str, config: Dict[str, Any]) -> "EndpointConfig":
        """Create an EndpointConfig from a configuration dictionary, filling defaults

        Args:
            key: Endpoint key
            config: Configuration dictionary; camelCase ``cacheTime`` is accepted

        Returns:
            EndpointConfig instance

        Raises:
            ValueError: If the key or url is missing, or the method/status is invalid
        """
        data = {_ALIASES.get(k, k): v for k, v in (config or {}).items()}
        if not key or not data.get("url"):
            raise ValueError("Endpoint key and url are required")

        capabilities = data.get("capabilities")
        if not isinstance(capabilities, EndpointCapabilities):
            capabilities = EndpointCapabilities(**(capabilities or {}))
        loose = {k: data[k] for k in _CAPABILITY_KEYS if data.get(k) is not None}
        if loose:
            capabilities = capabilities.merged(EndpointCapabilities(**loose))

        method = data.get("method") or HTTPMethod.GET
        status = data.get("status") or EndpointStatus.ENABLED
        category = data.get("category") or EndpointCategory.CUSTOM.value

        return cls(
            key=key,
            url=data["url"],
            name=data.get("name") or key,
            method=method if isinstance(method, HTTPMethod) else HTTPMethod(str(method).upper()),
            category=category.value if isinstance(category, EndpointCategory) else str(category),
            status=status if isinstance(status, EndpointStatus) else EndpointStatus(str(status).lower()),
            timeout=int(data.get("timeout") or DEFAULT_TIMEOUT_MS),
            retries=int(data.get("retries") or 0),
            cache_time=int(data.get("cache_time") or 0),
            headers=dict(data.get("headers") or {}),
            params=dict(data.get("params") or {}),
            description=data.get("description") or "",
            client=data.get("client") or DEFAULT_CLIENT,
            capabilities=capabilities,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serializable form of the endpoint; callables are left out"""
        result = {
            "key": self.key,
            "name": self.name,
            "url": self.url,
            "method": self.method.value,
            "category": self.category,
            "status": self.status.value,
            "timeout": self.timeout,
            "retries": self.retries,
            "cache_time": self.cache_time,
            "headers": dict(self.headers),
            "params": dict(self.params),
            "description": self.description,
            "client": self.client,
        }
        mock = self.capabilities.mock
        if mock is not None and not callable(mock):
            result["mock"] = mock
        return result


@dataclass
class EndpointEvent:
    """Payload delivered to registry subscribers"""
    kind: RegistryEvent
    key: str
    config: EndpointConfig
    timestamp: float = field(default_factory=time.time)


@dataclass
class FieldOption:
    value: Any
    label: str


@dataclass
class FieldDefinition:
    """Definition of a single response field of an endpoint

    Args:
        key: Field name in the response record
        label: Human readable label
        type: Semantic field type
        format: Display format hint
        unit: Unit shown next to numeric values
        visible: Whether the field is shown; ``visible_only`` transforms drop hidden fields
        default_value: Fallback used for missing or unparsable values
        validation: Regular expression string values must match
        options: Allowed values for enum fields
        color: Display color
    """
    key: str
    label: str = ""
    type: FieldType = FieldType.STRING
    format: FormatType = FormatType.NONE
    unit: Optional[str] = None
    visible: bool = True
    sortable: bool = True
    filterable: bool = True
    editable: bool = False
    required: bool = False
    description: str = ""
    default_value: Any = None
    validation: Optional[str] = None
    options: Optional[List[FieldOption]] = None
    color: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Union[Dict[str, Any], "FieldDefinition"]) -> "FieldDefinition":
        if isinstance(data, FieldDefinition):
            return data
        if not data or not data.get("key"):
            raise ValueError("Field definition requires a key")
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        if "defaultValue" in data and "default_value" not in values:
            values["default_value"] = data["defaultValue"]
        if "type" in values and not isinstance(values["type"], FieldType):
            values["type"] = FieldType(values["type"])
        if "format" in values and not isinstance(values["format"], FormatType):
            values["format"] = FormatType(values["format"] or FormatType.NONE.value)
        if values.get("options") is not None:
            values["options"] = [
                o if isinstance(o, FieldOption) else FieldOption(value=o["value"], label=o.get("label", str(o["value"])))
                for o in values["options"]
            ]
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result["type"] = self.type.value
        result["format"] = self.format.value
        return result


@dataclass
class CacheEntry:
    value: Any
    expiry: float


@dataclass
class CallOptions:
    """Per-call overrides accepted by ``call``, ``batch_call`` and the outer surfaces

    Args:
        timeout: Timeout in milliseconds, overrides the endpoint value
        retries: Retry count, overrides the endpoint value
        cache_time: Cache TTL in milliseconds, overrides the endpoint value
        headers: Extra request headers
        show_error: Notify on terminal failure; unset means True
        use_mock: Return the endpoint mock instead of dispatching; unset defers to the proxy mock mode
        visible_only: Drop fields marked not visible when transforming; unset means False

    Unset (None) fields inherit from the options they are merged over.
    """
    timeout: Optional[int] = None
    retries: Optional[int] = None
    cache_time: Optional[int] = None
    headers: Dict[str, str] = field(default_factory=dict)
    show_error: Optional[bool] = None
    use_mock: Optional[bool] = None
    visible_only: Optional[bool] = None

    _CAMEL = {
        "cacheTime": "cache_time",
        "showError": "show_error",
        "useMock": "use_mock",
        "visibleOnly": "visible_only",
    }

    @classmethod
    def coerce(cls, options: Union[None, Dict[str, Any], "CallOptions"]) -> "CallOptions":
        if isinstance(options, CallOptions):
            return options
        if not options:
            return cls()
        known = {f.name for f in fields(cls)}
        values = {}
        for name, value in options.items():
            name = cls._CAMEL.get(name, name)
            if name in known:
                values[name] = value
        if values.get("headers") is None:
            values.pop("headers", None)
        return cls(**values)

    def merged_over(self, base: "CallOptions") -> "CallOptions":
        """Return options where values set on self override ``base``"""
        return CallOptions(
            timeout=self.timeout if self.timeout is not None else base.timeout,
            retries=self.retries if self.retries is not None else base.retries,
            cache_time=self.cache_time if self.cache_time is not None else base.cache_time,
            headers={**base.headers, **self.headers},
            show_error=self.show_error if self.show_error is not None else base.show_error,
            use_mock=self.use_mock if self.use_mock is not None else base.use_mock,
            visible_only=self.visible_only if self.visible_only is not None else base.visible_only,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


__all__ = [
    "HTTPMethod",
    "EndpointStatus",
    "EndpointCategory",
    "RegistryEvent",
    "FieldType",
    "FormatType",
    "VariableScope",
    "EndpointCapabilities",
    "EndpointConfig",
    "EndpointEvent",
    "FieldOption",
    "FieldDefinition",
    "CacheEntry",
    "CallOptions",
    "DEFAULT_TIMEOUT_MS",
    "DEFAULT_CLIENT",
]
