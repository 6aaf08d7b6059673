"""Documentation generated from the endpoint registry and field definitions.

Markdown output groups endpoints by category; OpenAPI output is a 3.0
document dict with one path per endpoint.
"""

import json
import re
from typing import Any, Dict, Iterable, List, Union

from .fields import FieldSchemaManager
from .models import EndpointConfig, EndpointStatus, FieldDefinition, FieldType, HTTPMethod
from .registry import EndpointRegistry

MARKDOWN = "markdown"
OPENAPI = "openapi"
DOC_FORMATS = (MARKDOWN, OPENAPI)

CATEGORY_NAMES = {
    "system": "System",
    "data": "Data",
    "device": "Device",
    "custom": "Custom",
    "admin": "Administration",
    "auth": "Authentication",
    "report": "Reports",
}

STATUS_BADGES = {
    EndpointStatus.ENABLED: "🟢 Enabled",
    EndpointStatus.DISABLED: "🔴 Disabled",
    EndpointStatus.DEPRECATED: "🟠 Deprecated",
}

_OPENAPI_TYPES = {
    FieldType.STRING: {"type": "string"},
    FieldType.NUMBER: {"type": "number"},
    FieldType.BOOLEAN: {"type": "boolean"},
    FieldType.DATE: {"type": "string", "format": "date"},
    FieldType.DATETIME: {"type": "string", "format": "date-time"},
    FieldType.OBJECT: {"type": "object"},
    FieldType.ARRAY: {"type": "array", "items": {}},
    FieldType.ENUM: {"type": "string"},
}

_PLACEHOLDER = re.compile(r"\{(\w+)\}|:(\w+)\b")


def url_placeholders(url: str) -> List[str]:
    """Names of the ``{name}`` / ``:name`` placeholders of a URL, scheme and port excluded"""
    path = re.sub(r"^[a-z][a-z0-9+.-]*://[^/]*", "", url, flags=re.IGNORECASE)
    names = []
    for braced, colon in _PLACEHOLDER.findall(path):
        name = braced or colon
        if name not in names:
            names.append(name)
    return names


def example_value(definition: FieldDefinition) -> Any:
    if definition.default_value is not None:
        return definition.default_value
    if definition.type == FieldType.NUMBER:
        return 0
    if definition.type == FieldType.BOOLEAN:
        return True
    if definition.type == FieldType.DATE:
        return "2024-01-01"
    if definition.type == FieldType.DATETIME:
        return "2024-01-01T00:00:00Z"
    if definition.type == FieldType.OBJECT:
        return {}
    if definition.type == FieldType.ARRAY:
        return []
    if definition.type == FieldType.ENUM and definition.options:
        return definition.options[0].value
    return definition.label or definition.key


class DocGenerator:
    """Renders documentation for registered endpoints"""

    def __init__(self, registry: EndpointRegistry, fields: FieldSchemaManager):
        self.registry = registry
        self.fields = fields

    def generate_docs(
        self,
        keys: Union[None, str, Iterable[str]] = None,
        format: str = MARKDOWN,
        toc: bool = True,
    ) -> Union[str, Dict[str, Any]]:
        """Generate docs for some or all endpoints

        Args:
            keys: Endpoint key or keys; all endpoints when None
            format: ``markdown`` or ``openapi``
            toc: Include a table of contents (markdown only)

        Raises:
            ValueError: If the format is not supported
        """
        if keys is None:
            keys = list(self.registry.get_all())
        elif isinstance(keys, str):
            keys = [keys]
        endpoints = [config for config in (self.registry.get(key) for key in keys) if config is not None]

        if format == MARKDOWN:
            return self.generate_markdown(endpoints, toc=toc)
        if format == OPENAPI:
            return self.generate_openapi(endpoints)
        raise ValueError(f"Unsupported documentation format: {format}")

    @staticmethod
    def _by_category(endpoints: List[EndpointConfig]) -> Dict[str, List[EndpointConfig]]:
        groups: Dict[str, List[EndpointConfig]] = {}
        for config in endpoints:
            groups.setdefault(config.category or "uncategorized", []).append(config)
        return groups

    def generate_markdown(self, endpoints: List[EndpointConfig], toc: bool = True) -> str:
        if not endpoints:
            return "# API Documentation\n\nNo endpoints found.\n"

        groups = self._by_category(endpoints)
        lines = ["# API Documentation", ""]
        if toc:
            lines += ["## Contents", ""]
            for category, configs in groups.items():
                lines.append(f"- [{CATEGORY_NAMES.get(category, category)}](#{category})")
                lines += [f"  - [{config.name or config.key}](#{config.key})" for config in configs]
            lines.append("")

        for category, configs in groups.items():
            lines += [f"## {CATEGORY_NAMES.get(category, category)} {{#{category}}}", ""]
            for config in configs:
                lines.append(self.endpoint_markdown(config))
        return "\n".join(lines)

    def endpoint_markdown(self, config: EndpointConfig) -> str:
        lines = [
            f"### {config.name or config.key} {{#{config.key}}}",
            "",
            f"**Key:** `{config.key}`",
            "",
            f"**URL:** `{config.url}`",
            "",
            f"**Method:** `{config.method.value}`",
            "",
            f"**Status:** {STATUS_BADGES[config.status]}",
            "",
        ]
        if config.description:
            lines += [f"**Description:** {config.description}", ""]
        lines += [
            f"**Timeout:** {config.timeout} ms, **Retries:** {config.retries}, **Cache:** {config.cache_time} ms",
            "",
        ]
        if config.headers:
            lines += ["**Headers:**", "", "| Name | Value |", "| --- | --- |"]
            lines += [f"| {name} | `{value}` |" for name, value in config.headers.items()]
            lines.append("")

        fields = self.fields.get_fields(config.key)
        if fields:
            lines += ["**Response fields:**", "", "| Field | Label | Type | Format | Unit | Description |",
                      "| --- | --- | --- | --- | --- | --- |"]
            for definition in fields:
                lines.append(
                    f"| `{definition.key}` | {definition.label} | {definition.type.value} | "
                    f"{definition.format.value} | {definition.unit or ''} | {definition.description} |"
                )
            example = {definition.key: example_value(definition) for definition in fields}
            lines += [
                "",
                "**Example response:**",
                "",
                "```json",
                json.dumps({"success": True, "data": [example]}, indent=2, ensure_ascii=False, default=str),
                "```",
                "",
            ]
        return "\n".join(lines)

    def generate_openapi(self, endpoints: List[EndpointConfig], title: str = "API Documentation") -> Dict[str, Any]:
        paths: Dict[str, Dict[str, Any]] = {}
        for config in endpoints:
            path = re.sub(r":(\w+)\b", r"{\1}", re.sub(r"^[a-z][a-z0-9+.-]*://[^/]*", "", config.url, flags=re.IGNORECASE)) or "/"
            operation: Dict[str, Any] = {
                "operationId": config.key,
                "summary": config.name or config.key,
                "description": config.description,
                "tags": [config.category],
                "deprecated": config.status == EndpointStatus.DEPRECATED,
                "parameters": [
                    {"name": name, "in": "path", "required": True, "schema": {"type": "string"}}
                    for name in url_placeholders(config.url)
                ],
                "responses": {"200": {"description": "Successful response", "content": {
                    "application/json": {"schema": self._envelope_schema(config.key)}
                }}},
            }
            if config.method not in (HTTPMethod.GET, HTTPMethod.DELETE):
                operation["requestBody"] = {"content": {"application/json": {"schema": {"type": "object"}}}}
            paths.setdefault(path, {})[config.method.value.lower()] = operation

        return {
            "openapi": "3.0.0",
            "info": {"title": title, "version": "1.0.0"},
            "paths": paths,
        }

    def _envelope_schema(self, key: str) -> Dict[str, Any]:
        properties = {}
        for definition in self.fields.get_fields(key):
            schema = dict(_OPENAPI_TYPES[definition.type])
            if definition.type == FieldType.ENUM and definition.options:
                schema["enum"] = [option.value for option in definition.options]
            if definition.description or definition.label:
                schema["description"] = definition.description or definition.label
            properties[definition.key] = schema
        record: Dict[str, Any] = {"type": "object"}
        if properties:
            record["properties"] = properties
        return {
            "type": "object",
            "properties": {
                "success": {"type": "boolean"},
                "data": {"oneOf": [record, {"type": "array", "items": record}]},
            },
        }


__all__ = [
    "DocGenerator",
    "DOC_FORMATS",
    "MARKDOWN",
    "OPENAPI",
    "url_placeholders",
    "example_value",
]
