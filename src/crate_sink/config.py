from __future__ import annotations

from functools import lru_cache
from typing import Any, Mapping, Optional

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from crate_client.sql import quote_ident


class ConfigurationError(ValueError):
    """Missing or invalid pipeline settings; the pipeline cannot start."""


class SinkSettings(BaseSettings):
    """Settings shared by the event and metric pipelines."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    hostname: str
    port: int = Field(4200, gt=0, lt=65536)
    table: str
    ssl: bool = False
    ssl_cert: Optional[str] = None
    buffer_size: int = Field(500, gt=0)
    buffer_max_age: float = Field(300, ge=0)  # seconds
    buffer_max_try: int = Field(6, ge=0)
    buffer_max_try_delay: float = Field(120, ge=0)  # seconds
    http_timeout: float = Field(10, gt=0)  # seconds
    http_compression: bool = True
    source: str = "sensu"

    @field_validator("table")
    def _valid_table(cls, v):
        quote_ident(v)
        return v

    @field_validator("hostname")
    def _non_empty_hostname(cls, v):
        if not v.strip():
            raise ValueError("hostname must not be empty")
        return v.strip()

    def client_config(self) -> dict:
        return {
            "hostname": self.hostname,
            "port": self.port,
            "ssl": self.ssl,
            "ssl_cert": self.ssl_cert,
            "timeout": self.http_timeout,
            "compression": self.http_compression,
        }

    @classmethod
    def from_mapping(cls, config: Optional[Mapping[str, Any]]):
        """Build settings from a host-provided config section, failing loudly."""
        if config is None:
            raise ConfigurationError(f"No configuration for {cls.__name__} provided")
        try:
            return cls(**dict(config))
        except ValidationError as e:
            missing = [".".join(str(p) for p in err["loc"]) for err in e.errors() if err["type"] == "missing"]
            if missing:
                raise ConfigurationError(
                    f"Required setting(s) not provided: {', '.join(missing)}"
                ) from e
            raise ConfigurationError(str(e)) from e


class EventSinkSettings(SinkSettings):
    model_config = SettingsConfigDict(
        env_prefix="CRATE_EVENTS_", env_file=".env", case_sensitive=False, extra="ignore"
    )

    buffer_size: int = Field(500, gt=0)


class MetricSinkSettings(SinkSettings):
    model_config = SettingsConfigDict(
        env_prefix="CRATE_METRICS_", env_file=".env", case_sensitive=False, extra="ignore"
    )

    buffer_size: int = Field(5125, gt=0)


@lru_cache()
def get_event_settings() -> EventSinkSettings:
    return EventSinkSettings.from_mapping({})


@lru_cache()
def get_metric_settings() -> MetricSinkSettings:
    return MetricSinkSettings.from_mapping({})
