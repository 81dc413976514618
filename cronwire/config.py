"""Engine configuration using pydantic-settings.

Provides a Settings class covering the declarative scheduler schema:
schedules, calendars, thread pool and default time zone. Values come from
init arguments, environment variables (``CRONWIRE_`` prefix, ``__`` for
nesting) and a ``.env`` file, in that order of precedence.

Example:
    >>> settings = Settings.from_mapping({
    ...     "defaultTimezone": "Europe/Berlin",
    ...     "threadPool": {"threadCount": 4},
    ...     "schedules": {"beat": {"expression": "0/5 * * * * ?"}},
    ... })
"""

import json
from collections.abc import Mapping
from datetime import tzinfo
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel, to_snake
from pydantic_settings import BaseSettings, SettingsConfigDict


class ThreadPoolSettings(BaseModel):
    """Sizing of the firing thread pool.

    Accepts both ``threadCount`` and ``thread_count`` style keys.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    thread_count: int = Field(default=10, ge=1)
    # Validated for compatibility with existing configs; CPython threads have no priority
    thread_priority: int = Field(default=5, ge=1, le=10)
    daemon_threads: bool = False


class Settings(BaseSettings):
    """Scheduler engine settings.

    Schedule and calendar entries are kept as raw mappings here and parsed by
    the scheduler loader, which raises the scheduler's own configuration errors.
    """

    default_timezone: str = "UTC"
    scheduler_name: str = "cronwire"

    thread_pool: ThreadPoolSettings = Field(default_factory=ThreadPoolSettings)

    schedules: dict[str, dict[str, Any]] = Field(default_factory=dict)
    calendars: dict[str, dict[str, Any]] = Field(default_factory=dict)

    # Job defaults handed to the firing scheduler
    coalesce: bool = True
    max_instances: int = Field(default=1, ge=1)
    misfire_grace_time: int | None = 300

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    model_config = SettingsConfigDict(
        env_prefix="CRONWIRE_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    @field_validator("default_timezone")
    @classmethod
    def _validate_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown time zone '{value}'") from e
        return value

    @property
    def timezone(self) -> tzinfo:
        """Get the default time zone as a tzinfo."""
        return ZoneInfo(self.default_timezone)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Settings":
        """Build settings from a declarative mapping.

        Top-level camelCase keys (``defaultTimezone``, ``threadPool``) are
        accepted alongside snake_case ones.

        Args:
            data: Parsed configuration document.

        Returns:
            Settings instance.
        """
        return cls(**{to_snake(key): value for key, value in data.items()})

    @classmethod
    def from_file(cls, path: str | Path) -> "Settings":
        """Build settings from a JSON configuration file.

        Args:
            path: Path to the JSON document.

        Returns:
            Settings instance.
        """
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        return cls.from_mapping(data)
