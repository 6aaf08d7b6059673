"""Process settings read from the environment."""

import os
from dataclasses import dataclass
from typing import Optional


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    host: str = "0.0.0.0"
    port: int = 8080
    mode: str = "development"
    base_url: str = ""
    api_base_url: str = ""
    config_store_url: Optional[str] = None
    data_dir: str = "~/.api-manager-mcp"
    mock_mode: bool = False
    default_timeout: int = 15000
    keyring_service: str = "api-manager-mcp"
    keyring_key: str = "api-token"

    @classmethod
    def from_env(cls) -> "Settings":
        port = int(os.getenv("PORT", 8080))
        host = os.getenv("HOST", "0.0.0.0")
        base_url = os.getenv("API_MANAGER_BASE_URL", f"http://{host}:{port}")
        return cls(
            host=host,
            port=port,
            mode=os.getenv("API_MANAGER_MODE", "development"),
            base_url=base_url,
            api_base_url=os.getenv("API_MANAGER_API_BASE_URL", base_url),
            config_store_url=os.getenv("API_MANAGER_CONFIG_STORE_URL") or None,
            data_dir=os.getenv("API_MANAGER_DATA_DIR", "~/.api-manager-mcp"),
            mock_mode=_env_flag("API_MANAGER_MOCK"),
            default_timeout=int(os.getenv("API_MANAGER_TIMEOUT", 15000)),
            keyring_service=os.getenv("API_MANAGER_KEYRING_SERVICE", "api-manager-mcp"),
            keyring_key=os.getenv("API_MANAGER_KEYRING_KEY", "api-token"),
        )


__all__ = ["Settings"]
