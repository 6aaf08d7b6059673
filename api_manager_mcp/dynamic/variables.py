"""Scoped variables and ``${name}`` template resolution.

This module provides the VariableStore class. Variables live in four scopes:
``env`` is computed once from the host and is read-only, ``global`` and
``user`` are durable, and ``session`` lasts until the session ends. Lookups
without an explicit scope resolve session > user > global > env.
"""

import logging
import platform
import re
import shutil
import sys
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Union

from .errors import VariableScopeError
from .models import VariableScope
from .storage import JsonFileStore

VARIABLE_PATTERN = re.compile(r"\$\{([^}]+)\}")

_STORE_NAMES = {
    VariableScope.GLOBAL: "api_global_variables",
    VariableScope.USER: "api_user_variables",
}

_PRECEDENCE = (VariableScope.SESSION, VariableScope.USER, VariableScope.GLOBAL, VariableScope.ENV)

_MISSING = object()


def detect_platform() -> str:
    system = platform.system()
    if system == "Darwin":
        return "Mac"
    if system in ("Windows", "Linux"):
        return system
    if hasattr(sys, "getandroidapilevel"):
        return "Android"
    return system or "Unknown"


def detect_client() -> str:
    return f"{platform.python_implementation()}/{platform.python_version()}"


@dataclass
class HostInfo:
    """Read-only host inputs the ``env`` scope is computed from"""
    mode: str = "development"
    base_url: str = ""
    api_base_url: str = ""
    client: str = field(default_factory=detect_client)
    platform: str = field(default_factory=detect_platform)
    screen_width: int = 0
    screen_height: int = 0
    timestamp: int = field(default_factory=lambda: int(time.time() * 1000))

    @classmethod
    def detect(cls, mode: str = "development", base_url: str = "", api_base_url: str = "") -> "HostInfo":
        size = shutil.get_terminal_size()
        return cls(
            mode=mode,
            base_url=base_url,
            api_base_url=api_base_url or base_url,
            screen_width=size.columns,
            screen_height=size.lines,
        )

    def to_variables(self) -> Dict[str, Any]:
        return {
            "MODE": self.mode,
            "BASE_URL": self.base_url,
            "API_BASE_URL": self.api_base_url,
            "TIMESTAMP": self.timestamp,
            "CLIENT": self.client,
            "PLATFORM": self.platform,
            "SCREEN_WIDTH": self.screen_width,
            "SCREEN_HEIGHT": self.screen_height,
        }


def _scope(scope: Union[str, VariableScope]) -> VariableScope:
    if isinstance(scope, VariableScope):
        return scope
    try:
        return VariableScope(scope)
    except ValueError:
        raise VariableScopeError(f"Unknown variable scope: {scope}") from None


class VariableStore:
    """Scoped variable store and template resolver

    Args:
        store: Local durable store for the global and user scopes
        host: Host inputs for the env scope; detected from the process when None
    """

    def __init__(self, store: Optional[JsonFileStore] = None, host: Optional[HostInfo] = None):
        self.store = store
        self._scopes: Dict[VariableScope, Dict[str, Any]] = {
            VariableScope.GLOBAL: {},
            VariableScope.USER: {},
            VariableScope.SESSION: {},
        }
        self._env: Mapping[str, Any] = MappingProxyType((host or HostInfo.detect()).to_variables())
        self._load()

    def _load(self) -> None:
        if self.store is None:
            return
        for scope, name in _STORE_NAMES.items():
            saved = self.store.get(name)
            if isinstance(saved, dict):
                self._scopes[scope] = saved
        logging.info("[VariableStore] Loaded durable variables")

    def _save(self, scope: VariableScope) -> None:
        if self.store is None or scope not in _STORE_NAMES:
            return
        try:
            self.store.set(_STORE_NAMES[scope], self._scopes[scope])
        except OSError as e:
            logging.error(f"[VariableStore] Failed to save {scope.value} variables: {e}")

    def _writable(self, scope: Union[str, VariableScope]) -> VariableScope:
        scope = _scope(scope)
        if scope == VariableScope.ENV:
            raise VariableScopeError("The env scope is read-only")
        return scope

    def _bucket(self, scope: VariableScope) -> Mapping[str, Any]:
        return self._env if scope == VariableScope.ENV else self._scopes[scope]

    # -- access ------------------------------------------------------------

    def get(self, name: str, scope: Union[None, str, VariableScope] = None, default: Any = None) -> Any:
        """Look a variable up in one scope, or by precedence session > user > global > env

        The first scope defining the name wins, whatever its value.
        """
        if scope is not None:
            return self._bucket(_scope(scope)).get(name, default)
        for candidate in _PRECEDENCE:
            value = self._bucket(candidate).get(name, _MISSING)
            if value is not _MISSING:
                return value
        return default

    def has(self, name: str) -> bool:
        return any(name in self._bucket(scope) for scope in _PRECEDENCE)

    def set(self, name: str, value: Any, scope: Union[str, VariableScope] = VariableScope.USER) -> None:
        scope = self._writable(scope)
        self._scopes[scope][name] = value
        self._save(scope)

    def remove(self, name: str, scope: Union[str, VariableScope] = VariableScope.USER) -> bool:
        scope = self._writable(scope)
        if name not in self._scopes[scope]:
            return False
        del self._scopes[scope][name]
        self._save(scope)
        return True

    def clear(self, scope: Union[str, VariableScope] = VariableScope.USER) -> None:
        scope = self._writable(scope)
        self._scopes[scope] = {}
        self._save(scope)

    def end_session(self) -> None:
        self._scopes[VariableScope.SESSION] = {}
        logging.info("[VariableStore] Session variables cleared")

    def get_all(self, scope: Union[None, str, VariableScope] = None) -> Dict[str, Any]:
        if scope is not None:
            return dict(self._bucket(_scope(scope)))
        merged: Dict[str, Any] = {}
        for candidate in reversed(_PRECEDENCE):
            merged.update(self._bucket(candidate))
        return merged

    def export_variables(self, scope: Union[None, str, VariableScope] = None) -> Dict[str, Any]:
        return {name: value for name, value in self.get_all(scope).items() if not callable(value)}

    def import_variables(
        self,
        values: Dict[str, Any],
        scope: Union[str, VariableScope] = VariableScope.USER,
        overwrite: bool = False,
    ) -> int:
        """Import variables into a writable scope

        Returns:
            Number of variables written
        """
        if not isinstance(values, dict):
            raise ValueError("Variables must be a mapping")
        scope = self._writable(scope)
        written = 0
        for name, value in values.items():
            if not overwrite and name in self._scopes[scope]:
                continue
            self._scopes[scope][name] = value
            written += 1
        self._save(scope)
        return written

    # -- templating --------------------------------------------------------

    def replace_variables(self, text: Any) -> Any:
        """Substitute ``${name}`` tokens; unknown names are left as written"""
        if not isinstance(text, str):
            return text

        def substitute(match: "re.Match") -> str:
            value = self.get(match.group(1), default=_MISSING)
            return match.group(0) if value is _MISSING else str(value)

        return VARIABLE_PATTERN.sub(substitute, text)

    def replace_object_variables(self, obj: Any) -> Any:
        """Recursively substitute variables in the string leaves of dicts and lists"""
        if isinstance(obj, str):
            return self.replace_variables(obj)
        if isinstance(obj, dict):
            return {key: self.replace_object_variables(value) for key, value in obj.items()}
        if isinstance(obj, list):
            return [self.replace_object_variables(item) for item in obj]
        if isinstance(obj, tuple):
            return tuple(self.replace_object_variables(item) for item in obj)
        return obj


__all__ = [
    "VariableStore",
    "HostInfo",
    "VARIABLE_PATTERN",
]
