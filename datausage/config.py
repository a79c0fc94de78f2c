"""
Configuration and settings for the data usage service.

Values come from init kwargs, the environment (``DB__URI``, ``ICAT__ZONE``,
...), a ``.env`` file and finally the YAML service config mounted by the
deployment.
"""

from __future__ import annotations

import os
import re
from datetime import timedelta
from functools import lru_cache
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

DEFAULT_CONFIG_PATH = "/etc/iplant/de/data-usage-api.yml"

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_DURATION_UNITS = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001}


def parse_duration(value: str) -> timedelta:
    """Parse durations written like ``24h``, ``1h30m`` or ``500ms``."""
    text = value.strip()
    if not text or _DURATION_PART.sub("", text):
        raise ValueError(f"invalid duration: {value!r}")
    seconds = sum(
        float(amount) * _DURATION_UNITS[unit]
        for amount, unit in _DURATION_PART.findall(text)
    )
    return timedelta(seconds=seconds)


class DbSettings(BaseModel):
    """DE database connection."""

    model_config = ConfigDict(populate_by_name=True)

    uri: str = Field(min_length=1)
    schema_name: str = Field(alias="schema", min_length=1)


class IcatSettings(BaseModel):
    """ICAT database connection and the resources counted towards usage."""

    model_config = ConfigDict(populate_by_name=True)

    uri: str = Field(min_length=1)
    zone: str = Field(min_length=1)
    root_resources: list[str] = Field(
        validation_alias=AliasChoices("rootResources", "root_resources"),
        min_length=1,
    )


class UsersSettings(BaseModel):
    domain: str = Field(min_length=1)


class ApiSettings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    refresh_interval: timedelta = Field(
        validation_alias=AliasChoices("refreshInterval", "refresh_interval")
    )

    @field_validator("refresh_interval", mode="before")
    @classmethod
    def _parse_duration(cls, value):
        if isinstance(value, str) and _DURATION_PART.search(value):
            return parse_duration(value)
        return value

    @field_validator("refresh_interval")
    @classmethod
    def _positive(cls, value: timedelta) -> timedelta:
        if value.total_seconds() <= 0:
            raise ValueError("refresh interval must be positive")
        return value


class RedisSettings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Without a URL usage events stay in an in-memory queue.
    url: Optional[str] = None
    queue_key: str = Field(
        default="data-usage:updates",
        validation_alias=AliasChoices("queueKey", "queue_key"),
    )


class Settings(BaseSettings):
    """Validated service settings; construction fails on missing values."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        populate_by_name=True,
    )

    db: DbSettings
    icat: IcatSettings
    users: UsersSettings
    data_usage_api: ApiSettings = Field(
        validation_alias=AliasChoices("dataUsageApi", "data_usage_api")
    )
    redis: RedisSettings = Field(default_factory=RedisSettings)

    listen_port: int = Field(
        default=60000, validation_alias=AliasChoices("listenPort", "listen_port")
    )
    api_prefix: str = Field(
        default="", validation_alias=AliasChoices("apiPrefix", "api_prefix")
    )

    @property
    def user_suffix(self) -> str:
        return self.users.domain

    @property
    def refresh_interval(self) -> timedelta:
        return self.data_usage_api.refresh_interval

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        yaml_file = os.environ.get("DATA_USAGE_API_CONFIG", DEFAULT_CONFIG_PATH)
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls, yaml_file=yaml_file),
            file_secret_settings,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
