"""Configuration loading for the WinDoctor diagnostics engine.

This module provides centralized configuration management:
- Load settings from a TOML file, environment variables and .env files
- Validate configuration using pydantic
- Provide typed access to all settings
- Let command-line overrides take precedence over everything else
"""

import os
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

from windoctor.core.exceptions import InvalidConfiguration
from windoctor.core.models import Severity, ensure_utc

DEFAULT_CONFIG_FILE = "windoctor.toml"
_MAX_EVENT_ID = 2**32 - 1


class CrashRuleSettings(BaseModel):
    """One process-failure recognizer rule as written in the config file."""

    provider: str = Field(description="Event provider name (case-insensitive)")
    event_ids: list[int] = Field(
        default_factory=list,
        description="Event ids that identify a crash; empty matches every id",
    )
    path_fields: list[str] = Field(
        default_factory=lambda: ["AppPath"],
        description="EventData fields holding the faulting binary path, in order",
    )

    @field_validator("path_fields")
    @classmethod
    def validate_path_fields(cls, v: list[str]) -> list[str]:
        """Ensure at least one path field is named."""
        if not v:
            raise ValueError("path_fields must name at least one field")
        return v


class Settings(BaseSettings):
    """Application configuration.

    Sources, highest priority first: keyword overrides, environment
    variables (``WINDOCTOR_`` prefix), ``.env``, the TOML file, defaults.
    """

    model_config = SettingsConfigDict(
        env_prefix="WINDOCTOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        toml_file=DEFAULT_CONFIG_FILE,
    )

    # Time window
    since: datetime | None = Field(
        default=None,
        description="Start of the window (inclusive); naive values are UTC",
    )
    until: datetime | None = Field(
        default=None,
        description="End of the window (exclusive); naive values are UTC",
    )
    lookback_minutes: int | None = Field(
        default=None,
        description="When since is unset, start this many minutes before now",
    )

    # Filters
    channels: list[str] = Field(
        default_factory=lambda: ["System", "Application"],
        description="Channel allow-list; empty allows every channel",
    )
    providers: list[str] = Field(default_factory=list, description="Provider allow-list")
    exclude_providers: list[str] = Field(default_factory=list, description="Provider deny-list")
    include_event_ids: list[int] = Field(default_factory=list, description="Event-id include-list")
    exclude_event_ids: list[int] = Field(default_factory=list, description="Event-id exclude-list")
    severities: list[str] = Field(
        default_factory=list,
        description="Severity allow-list (critical, error, warning, information, verbose)",
    )
    patterns: list[str] = Field(
        default_factory=list,
        description="Regular expressions matched against the rendered message",
    )
    only_matched: bool = Field(default=False, description="Drop records matching no pattern")
    enrich: bool = Field(default=False, description="Attach structured EventData fields")
    retain_payload: bool = Field(default=False, description="Keep the raw event XML")

    # Historical source
    evtx_path: str | None = Field(
        default=None,
        description="EVTX file or directory to read",
    )
    evtx_glob: str = Field(default="*.evtx", description="File name glob inside evtx_path")
    evtx_recursive: bool = Field(default=False, description="Search evtx_path recursively")
    evtx_workers: int = Field(default=4, description="Files parsed concurrently")
    ordered: bool = Field(default=False, description="Emit records in timestamp order")

    # Live source
    live: bool = Field(default=False, description="Subscribe to live events")
    live_duration_seconds: float | None = Field(
        default=None,
        description="Stop the live subscription after this many seconds",
    )
    live_backfill: bool = Field(
        default=False,
        description="Replay events from since before streaming live ones",
    )

    # Plain-text log scan
    scan_path: str | None = Field(
        default=None,
        description="File or directory of plain-text logs scanned for pattern hits",
    )
    file_glob: str | None = Field(default=None, description="File name glob inside scan_path")
    file_patterns: list[str] | None = Field(
        default=None,
        description="Patterns for the log scan; defaults to patterns",
    )
    max_file_samples: int = Field(default=20, description="Matching lines kept as samples")

    # Correlation
    correlate: bool = Field(default=False, description="Correlate crashes with missing imports")
    search_dirs: list[str] = Field(
        default_factory=list,
        description="Extra directories searched for imported modules",
    )
    include_system_dirs: bool = Field(default=True, description="Search %SystemRoot% directories")
    include_path_env: bool = Field(default=True, description="Search PATH entries")
    ignored_modules: list[str] = Field(
        default_factory=lambda: ["api-ms-win-*", "ext-ms-win-*"],
        description="Module name globs never resolved (API sets)",
    )
    include_delay_load: bool = Field(default=False, description="Follow delay-load imports")
    max_depth: int = Field(default=2, description="Transitive import depth")
    correlator_workers: int = Field(default=1, description="Concurrent dependency resolutions")
    crash_rules: list[CrashRuleSettings] = Field(
        default_factory=lambda: [
            CrashRuleSettings(
                provider="Application Error",
                event_ids=[1000],
                path_fields=["AppPath", "ModulePath", "param10", "param11"],
            )
        ],
        description="Recognizer rules for process-failure records",
    )

    # Output
    output_format: Literal["text", "ndjson"] = Field(default="text", description="Output format")
    output_path: str | None = Field(default=None, description="Output file; stdout if unset")
    max_records: int | None = Field(default=None, description="Stop after this many records")
    verbose: bool = Field(default=False, description="Include structured fields in text output")

    # Logging configuration
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="WARNING",
        description="Log level",
    )
    log_format: Literal["json", "text"] = Field(
        default="text",
        description="Log format",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls),
        )

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: Any) -> Any:
        """Accept log levels in any case."""
        return v.upper() if isinstance(v, str) else v

    @field_validator("severities")
    @classmethod
    def validate_severities(cls, v: list[str]) -> list[str]:
        """Ensure every severity name is known."""
        for name in v:
            Severity.from_name(name)
        return v

    @field_validator("include_event_ids", "exclude_event_ids")
    @classmethod
    def validate_event_ids(cls, v: list[int]) -> list[int]:
        """Ensure event ids fit an unsigned 32-bit integer."""
        for event_id in v:
            if event_id < 0 or event_id > _MAX_EVENT_ID:
                raise ValueError(f"event id out of range: {event_id}")
        return v

    @field_validator("max_depth")
    @classmethod
    def validate_max_depth(cls, v: int) -> int:
        """Ensure depth is non-negative."""
        if v < 0:
            raise ValueError("max_depth must be non-negative")
        return v

    @field_validator("evtx_workers", "correlator_workers")
    @classmethod
    def validate_workers(cls, v: int) -> int:
        """Ensure worker counts are positive."""
        if v <= 0:
            raise ValueError("worker counts must be positive")
        return v

    @field_validator("max_records", "lookback_minutes")
    @classmethod
    def validate_positive_optional(cls, v: int | None) -> int | None:
        """Ensure optional limits are positive when set."""
        if v is not None and v <= 0:
            raise ValueError("must be positive")
        return v

    @field_validator("max_file_samples")
    @classmethod
    def validate_max_file_samples(cls, v: int) -> int:
        if v < 0:
            raise ValueError("max_file_samples must be non-negative")
        return v

    @field_validator("live_duration_seconds")
    @classmethod
    def validate_live_duration(cls, v: float | None) -> float | None:
        """Ensure live duration is non-negative."""
        if v is not None and v < 0:
            raise ValueError("live_duration_seconds must be non-negative")
        return v

    @model_validator(mode="after")
    def validate_window(self) -> "Settings":
        """Ensure the window is well-ordered. Naive values are UTC."""
        if self.since is not None and self.until is not None:
            if ensure_utc(self.since) > ensure_utc(self.until):
                raise ValueError("since cannot be after until")
        return self


def load_settings(config_file: str | None = None, **overrides: Any) -> Settings:
    """Load application settings.

    Args:
        config_file: TOML file to read instead of ``windoctor.toml``.
            Unlike the default file, it must exist.
        **overrides: Values taking precedence over every other source.
            None values are ignored so unset CLI options fall through.

    Returns:
        Validated Settings instance.

    Raises:
        InvalidConfiguration: If the file is missing or validation fails.
    """
    values = {key: value for key, value in overrides.items() if value is not None}

    settings_cls: type[Settings] = Settings
    if config_file is not None:
        if not os.path.isfile(config_file):
            raise InvalidConfiguration(f"Configuration file not found: {config_file}")

        class FileSettings(Settings):
            model_config = SettingsConfigDict(toml_file=config_file)

        settings_cls = FileSettings

    try:
        return settings_cls(**values)
    except ValidationError as e:
        raise InvalidConfiguration(f"Invalid configuration: {e}") from e
    except ValueError as e:
        # Malformed TOML surfaces as a decode error, which is a ValueError.
        raise InvalidConfiguration(f"Invalid configuration file: {e}") from e


__all__ = ["CrashRuleSettings", "Settings", "load_settings"]
