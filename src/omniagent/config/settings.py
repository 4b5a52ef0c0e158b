"""Application settings loaded from environment variables and config files.

Configuration is loaded from (highest priority first):
1. Environment variables (prefix: ``OMNIAGENT_``, nested via ``__``)
2. YAML config file (``OMNIAGENT_CONFIG_PATH`` env var)
3. Defaults defined here
"""

from __future__ import annotations

import enum
from pathlib import Path
from typing import Any, Self

import yaml
from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# ---------------------------------------------------------------------------
# Enums for validated choices
# ---------------------------------------------------------------------------


class DatabaseEngine(enum.StrEnum):
    """Supported database engines."""

    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"


# ---------------------------------------------------------------------------
# Sub-config models
# ---------------------------------------------------------------------------


class ServerConfig(BaseSettings):
    """HTTP server settings."""

    model_config = SettingsConfigDict(
        env_prefix="OMNIAGENT_SERVER__",
        case_sensitive=False,
    )

    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8080


class DatabaseConfig(BaseSettings):
    """Database settings."""

    model_config = SettingsConfigDict(
        env_prefix="OMNIAGENT_DB__",
        case_sensitive=False,
    )

    engine: DatabaseEngine = Field(
        default=DatabaseEngine.SQLITE,
        description="Database backend: sqlite or postgresql",
    )
    dsn: str = Field(
        default="sqlite+aiosqlite:///./omniagent.db",
        description="Async database connection string",
    )
    max_idle_connections: int = 5
    max_open_connections: int = 10
    debug_sql: bool = False


class ProviderClientConfig(BaseModel):
    """OAuth client registration for a single provider."""

    client_id: str = ""
    client_secret: str = ""


class OAuthConfig(BaseSettings):
    """OAuth2 client settings shared by every identity provider."""

    model_config = SettingsConfigDict(
        env_prefix="OMNIAGENT_OAUTH__",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    redirect_uri: str = Field(
        default="http://localhost:8080/oauth-callback",
        description="Callback URL registered with every provider",
    )
    refresh_margin_seconds: int = Field(
        default=300,
        description="Refresh tokens expiring within this many seconds",
    )
    http_timeout: float = 15.0

    gmail: ProviderClientConfig = Field(default_factory=ProviderClientConfig)
    linkedin: ProviderClientConfig = Field(default_factory=ProviderClientConfig)
    twitter: ProviderClientConfig = Field(default_factory=ProviderClientConfig)
    facebook: ProviderClientConfig = Field(default_factory=ProviderClientConfig)

    def client_for(self, provider: str) -> ProviderClientConfig:
        """Return the client registration for *provider* (empty if unknown)."""
        client = getattr(self, provider, None)
        if isinstance(client, ProviderClientConfig):
            return client
        return ProviderClientConfig()


class WebhookConfig(BaseSettings):
    """Outbound webhook delivery settings."""

    model_config = SettingsConfigDict(
        env_prefix="OMNIAGENT_WEBHOOKS__",
        case_sensitive=False,
    )

    enabled: bool = True
    max_attempts: int = 3
    backoff_base: float = 2.0
    timeout: float = 10.0
    response_body_limit: int = 1000
    secret_length: int = Field(default=32, ge=32)
    user_agent: str = "OmniAgent-Webhook/1.0"


class MetricsConfig(BaseSettings):
    """Prometheus metrics settings."""

    model_config = SettingsConfigDict(
        env_prefix="OMNIAGENT_METRICS__",
        case_sensitive=False,
    )

    enabled: bool = True


# ---------------------------------------------------------------------------
# Top-level config
# ---------------------------------------------------------------------------


def _load_yaml(path: str | Path) -> dict[str, Any]:
    """Load a YAML configuration file and return its contents as a dict.

    Returns an empty dict if the file doesn't exist or is empty.
    """
    p = Path(path)
    if not p.exists():
        return {}
    text = p.read_text(encoding="utf-8")
    data = yaml.safe_load(text)
    return data if isinstance(data, dict) else {}


class AppConfig(BaseSettings):
    """Top-level application configuration.

    Loads settings from environment variables (``OMNIAGENT_`` prefix),
    an optional YAML file, and built-in defaults.
    """

    model_config = SettingsConfigDict(
        env_prefix="OMNIAGENT_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    debug: bool = False
    version: str = "0.1.0"
    config_path: str = ""

    server: ServerConfig = Field(default_factory=ServerConfig)
    db: DatabaseConfig = Field(default_factory=DatabaseConfig)
    oauth: OAuthConfig = Field(default_factory=OAuthConfig)
    webhooks: WebhookConfig = Field(default_factory=WebhookConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)

    @model_validator(mode="before")
    @classmethod
    def _merge_yaml(cls, values: dict[str, Any]) -> dict[str, Any]:
        """Merge YAML config file contents under the env var overrides."""
        config_path = values.get("config_path", "")
        if not config_path:
            return values
        yaml_data = _load_yaml(config_path)
        # YAML values serve as defaults; env vars (already in *values*) win.
        for key, val in yaml_data.items():
            if key not in values or values[key] is None:
                values[key] = val
            elif isinstance(val, dict) and isinstance(values.get(key), dict):
                merged = {**val, **values[key]}
                values[key] = merged
        return values

    @classmethod
    def from_yaml(cls, path: str | Path) -> Self:
        """Construct ``AppConfig`` loading defaults from a YAML file.

        Environment variables still override YAML values.
        """
        return cls(config_path=str(path))
