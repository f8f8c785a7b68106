"""
Configuration schema definitions using Pydantic models.

This module defines the configuration schema for the access-tracking plugin,
the records exchanged by the validator and backup store, and the options
that tune the configuration manager itself.
"""

from typing import Any, Dict, List
from enum import Enum
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, StrictStr, field_validator

CURRENT_VERSION = "1.1.0"
OLDEST_SUPPORTED_VERSION = "0.1.0"

VERSION_PATTERN = r'^\d+\.\d+\.\d+$'
COUNTER_KEY_PATTERN = r'^[A-Za-z_][A-Za-z0-9_]*$'
INVALID_PATH_CHARACTERS = '<>:"|?*'
MAX_PATH_FILTERS = 100


class ConfigurationFormat(str, Enum):
    """Supported text formats for export, import and file storage."""
    JSON = "json"
    YAML = "yaml"
    TOML = "toml"


class ThemeMode(str, Enum):
    """Theme modes."""
    LIGHT = "light"
    DARK = "dark"
    AUTO = "auto"


class Language(str, Enum):
    """Interface languages."""
    ENGLISH = "en"
    CHINESE = "zh"
    SPANISH = "es"
    FRENCH = "fr"
    GERMAN = "de"
    JAPANESE = "ja"
    KOREAN = "ko"


class PerformanceSettings(BaseModel):
    """Performance tuning for background work."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        validate_default=True,
    )

    max_concurrent_ops: int = Field(
        default=5,
        ge=1,
        le=20,
        strict=True,
        description="Maximum concurrent file operations"
    )

    cache_cleanup_interval: int = Field(
        default=60000,
        ge=1000,
        le=3600000,
        strict=True,
        description="Cache cleanup interval in milliseconds"
    )

    enable_background_processing: bool = Field(
        default=True,
        strict=True,
        description="Process queued updates in the background"
    )


class PluginConfiguration(BaseModel):
    """Main configuration model for the access-tracking plugin."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        use_enum_values=True,
        validate_default=True,
    )

    counter_key: str = Field(
        default="access_count",
        min_length=1,
        max_length=100,
        pattern=COUNTER_KEY_PATTERN,
        strict=True,
        description="Frontmatter key holding the access counter"
    )

    included_paths: List[StrictStr] = Field(
        default_factory=list,
        max_length=MAX_PATH_FILTERS,
        description="Paths to include in tracking"
    )

    excluded_paths: List[StrictStr] = Field(
        default_factory=list,
        max_length=MAX_PATH_FILTERS,
        description="Paths to exclude from tracking"
    )

    recursive: bool = Field(
        default=True,
        strict=True,
        description="Include subdirectories of included paths"
    )

    min_interval: int = Field(
        default=1000,
        ge=0,
        le=3600000,
        strict=True,
        description="Minimum milliseconds between two counts of the same note"
    )

    batch_size: int = Field(
        default=10,
        ge=1,
        le=1000,
        strict=True,
        description="Maximum number of updates processed per batch"
    )

    max_cache_size: int = Field(
        default=1000,
        ge=10,
        le=10000,
        strict=True,
        description="Maximum number of tracking records kept in memory"
    )

    enabled: bool = Field(
        default=True,
        strict=True,
        description="Whether tracking is enabled"
    )

    debug_mode: bool = Field(
        default=False,
        strict=True,
        description="Verbose diagnostics"
    )

    auto_flush_interval: int = Field(
        default=5000,
        ge=1000,
        le=3600000,
        strict=True,
        description="Milliseconds between automatic flushes"
    )

    version: str = Field(
        default=CURRENT_VERSION,
        pattern=VERSION_PATTERN,
        strict=True,
        description="Configuration schema version"
    )

    theme: ThemeMode = Field(
        default=ThemeMode.AUTO,
        description="Theme mode (light, dark, or auto)"
    )

    language: Language = Field(
        default=Language.ENGLISH,
        description="Interface language"
    )

    performance: PerformanceSettings = Field(
        default_factory=PerformanceSettings,
        description="Performance settings"
    )

    @field_validator('included_paths', 'excluded_paths')
    @classmethod
    def validate_path_filters(cls, v: List[str]) -> List[str]:
        """Reject blank path filters and characters invalid in vault paths."""
        for index, path in enumerate(v):
            if not path.strip():
                raise ValueError(f"path filter {index} cannot be empty")
            bad = sorted({char for char in path if char in INVALID_PATH_CHARACTERS})
            if bad:
                raise ValueError(f"path filter {index} contains invalid characters: {''.join(bad)}")
        return v

    def to_data(self) -> Dict[str, Any]:
        """Plain serializable representation (enums as their values)."""
        return self.model_dump(mode="json")


def default_configuration(version: str = CURRENT_VERSION) -> PluginConfiguration:
    """Return the default configuration stamped with ``version``."""
    return PluginConfiguration(version=version)


class ValidationIssue(BaseModel):
    """A single validation finding attached to a (dotted) field name."""

    model_config = ConfigDict(frozen=True)

    field: str
    message: str

    def __str__(self) -> str:
        return f"{self.field}: {self.message}"


class ValidationResult(BaseModel):
    """Outcome of validating a candidate configuration."""

    model_config = ConfigDict(frozen=True)

    is_valid: bool
    errors: List[ValidationIssue] = Field(default_factory=list)
    warnings: List[ValidationIssue] = Field(default_factory=list)

    def error_messages(self) -> List[str]:
        return [str(issue) for issue in self.errors]


class Backup(BaseModel):
    """A point-in-time snapshot of the configuration."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(default_factory=datetime.now)
    version: str
    reason: str
    config: Dict[str, Any]


class ManagerOptions(BaseModel):
    """Options controlling the configuration manager."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    storage_key: str = Field(
        default="plugin-config",
        min_length=1,
        description="Storage key holding the configuration"
    )

    target_version: str = Field(
        default=CURRENT_VERSION,
        pattern=VERSION_PATTERN,
        description="Schema version the manager migrates to"
    )

    auto_migrate: bool = Field(
        default=True,
        description="Migrate stored and imported configurations automatically"
    )

    create_backups: bool = Field(
        default=True,
        description="Capture a backup before every committed change"
    )

    max_backups: int = Field(
        default=5,
        ge=1,
        le=100,
        description="Number of configuration backups to keep"
    )

    validate_on_load: bool = Field(
        default=True,
        description="Validate the stored configuration during initialize()"
    )
