"""
Configuration management for the access-tracking plugin.

This module provides a complete configuration lifecycle:
- Schema-based validation using Pydantic models
- Configuration versioning and automatic migration
- Bounded backup history with restore
- Export/import in JSON, YAML and TOML
- Change notifications through a synchronous event bus
- Pluggable storage backends (in-memory and file based)
"""

from .schema import (
    CURRENT_VERSION,
    OLDEST_SUPPORTED_VERSION,
    ConfigurationFormat,
    ThemeMode,
    Language,
    PerformanceSettings,
    PluginConfiguration,
    ValidationIssue,
    ValidationResult,
    Backup,
    ManagerOptions,
    default_configuration,
)
from .validator import ConfigurationValidator, ValidationRule, apply_nested_updates
from .migration import ConfigurationMigrator, MigrationStep
from .backup import BackupStore
from .events import (
    ChangeBus,
    ChangeEvent,
    ChangeEventKind,
    ConfigChangedEvent,
    ConfigValidatedEvent,
    ConfigResetEvent,
    ConfigImportedEvent,
    ConfigExportedEvent,
    ConfigMigratedEvent,
)
from .storage import InMemoryStorage, FileStorage, create_storage
from .manager import ConfigurationManager, ManagerState, create_config_manager

__version__ = "1.1.0"

__all__ = [
    # Schema models
    'PluginConfiguration',
    'PerformanceSettings',
    'ValidationIssue',
    'ValidationResult',
    'Backup',
    'ManagerOptions',
    'default_configuration',

    # Manager and utilities
    'ConfigurationManager',
    'ManagerState',
    'create_config_manager',
    'ConfigurationValidator',
    'ValidationRule',
    'apply_nested_updates',
    'ConfigurationMigrator',
    'MigrationStep',
    'BackupStore',

    # Events
    'ChangeBus',
    'ChangeEvent',
    'ChangeEventKind',
    'ConfigChangedEvent',
    'ConfigValidatedEvent',
    'ConfigResetEvent',
    'ConfigImportedEvent',
    'ConfigExportedEvent',
    'ConfigMigratedEvent',

    # Storage
    'InMemoryStorage',
    'FileStorage',
    'create_storage',

    # Enums and constants
    'CURRENT_VERSION',
    'OLDEST_SUPPORTED_VERSION',
    'ConfigurationFormat',
    'ThemeMode',
    'Language',
]
