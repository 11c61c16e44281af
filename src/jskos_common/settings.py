"""Runtime settings with typed configuration and fail-fast validation.

RuntimeSettings (pydantic_settings.BaseSettings) composes nested models read
from ``JSKOS_*`` environment variables and raises :class:`SettingsError` with
Problem Details when validation fails.

Examples
--------
>>> from jskos_common.settings import load_settings
>>> settings = load_settings()
>>> assert settings.server.base_url.endswith("/")
"""

from __future__ import annotations

from typing import Literal, Self
from urllib.parse import quote_plus

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from jskos_common.errors import SettingsError
from jskos_common.logging import get_logger

__all__ = [
    "InferenceConfig",
    "MappingsConfig",
    "MongoConfig",
    "ObservabilityConfig",
    "RuntimeSettings",
    "ServerConfig",
    "load_settings",
]

logger = get_logger(__name__)

type Cardinality = Literal["1-to-n", "1-to-1"]


class MongoConfig(BaseSettings):
    """Document store connection settings (``JSKOS_MONGO_*``)."""

    model_config = SettingsConfigDict(env_prefix="JSKOS_MONGO_", extra="forbid")

    host: str = Field(default="localhost", description="MongoDB host name")
    port: int = Field(default=27017, description="MongoDB port")
    user: str = Field(default="", description="MongoDB user (empty disables auth)")
    password: str = Field(default="", description="MongoDB password")
    db: str = Field(default="jskos-server", description="Database name")
    options: dict[str, str | int | bool] = Field(
        default_factory=dict, description="Extra keyword options passed to the client"
    )
    server_selection_timeout_ms: int = Field(
        default=5000, description="Server selection timeout in milliseconds"
    )

    @property
    def url(self) -> str:
        """Connection URL, ``mongodb://[user:password@]host:port``."""
        auth = f"{quote_plus(self.user)}:{quote_plus(self.password)}@" if self.user else ""
        return f"mongodb://{auth}{self.host}:{self.port}"


class ServerConfig(BaseSettings):
    """HTTP server settings (``JSKOS_SERVER_*``)."""

    model_config = SettingsConfigDict(env_prefix="JSKOS_SERVER_", extra="forbid")

    port: int = Field(default=3000, description="Port the server listens on")
    base_url: str = Field(default="", description="Public base URL, always ending in '/'")
    env: Literal["development", "test", "production"] = Field(
        default="development", description="Deployment environment"
    )

    @model_validator(mode="after")
    def _normalise_base_url(self) -> Self:
        base_url = self.base_url or f"http://localhost:{self.port}/"
        if not base_url.endswith("/"):
            base_url += "/"
        self.base_url = base_url
        return self


class MappingsConfig(BaseSettings):
    """Mapping query settings (``JSKOS_MAPPINGS_*``)."""

    model_config = SettingsConfigDict(env_prefix="JSKOS_MAPPINGS_", extra="forbid")

    from_scheme_whitelist: list[str] | None = Field(
        default=None, description="Scheme URIs allowed as fromScheme (None allows all)"
    )
    to_scheme_whitelist: list[str] | None = Field(
        default=None, description="Scheme URIs allowed as toScheme (None allows all)"
    )
    cardinality: Cardinality = Field(
        default="1-to-n", description="Mapping cardinality supported by this instance"
    )
    default_limit: int = Field(default=100, ge=1, description="Default page size")
    max_limit: int = Field(default=10000, ge=1, description="Largest accepted page size")
    create_enabled: bool = Field(default=False, description="Accept new mappings on POST /mappings")


class InferenceConfig(BaseSettings):
    """Mapping inference settings (``JSKOS_INFERENCE_*``)."""

    model_config = SettingsConfigDict(env_prefix="JSKOS_INFERENCE_", extra="forbid")

    default_depth: int | None = Field(
        default=None, ge=0, description="Depth used when a request gives none (None = unlimited)"
    )


class ObservabilityConfig(BaseSettings):
    """Logging and metrics toggles (``JSKOS_*`` namespace)."""

    model_config = SettingsConfigDict(env_prefix="JSKOS_", extra="forbid")

    log_level: str = Field(
        default="INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )
    metrics_enabled: bool = Field(default=True, description="Expose Prometheus metrics")


class RuntimeSettings(BaseSettings):
    """Aggregate runtime configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="JSKOS_",
        env_nested_delimiter="__",
        extra="forbid",
        case_sensitive=False,
    )

    mongo: MongoConfig = Field(default_factory=MongoConfig, description="Document store")
    server: ServerConfig = Field(default_factory=ServerConfig, description="HTTP server")
    mappings: MappingsConfig = Field(
        default_factory=MappingsConfig, description="Mapping query configuration"
    )
    inference: InferenceConfig = Field(
        default_factory=InferenceConfig, description="Mapping inference configuration"
    )
    observability: ObservabilityConfig = Field(
        default_factory=ObservabilityConfig, description="Observability configuration"
    )

    def __init__(self, **overrides: object) -> None:
        """Initialise settings with fail-fast validation."""
        try:
            super().__init__(**overrides)  # type: ignore[arg-type]
        except Exception as exc:
            msg = f"Configuration validation failed: {exc}"
            logger.exception(
                "Settings validation failed",
                extra={"operation": "load_settings", "error_type": type(exc).__name__},
            )
            raise SettingsError(
                msg,
                cause=exc,
                context={"validation_error": str(exc)},
            ) from exc

    @property
    def database_name(self) -> str:
        """Database name, suffixed with ``-test`` in the test environment."""
        if self.server.env == "test":
            return f"{self.mongo.db}-test"
        return self.mongo.db


def load_settings(**overrides: object) -> RuntimeSettings:
    """Load :class:`RuntimeSettings` with optional overrides.

    Raises
    ------
    SettingsError
        If any setting fails validation.
    """
    return RuntimeSettings(**overrides)
