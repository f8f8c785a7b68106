"""
Core contracts for the plugin configuration manager.

This module provides the interfaces the manager depends on and the
exception hierarchy it raises.
"""

from .interfaces import IStorage, IEventBus, IConfigManager
from .exceptions import (
    ErrorCategory,
    ErrorSeverity,
    ConfigManagerError,
    ValidationError,
    MigrationError,
    StorageError,
    LifecycleError,
    ParseError,
    BackupError,
    is_recoverable_error,
)

__all__ = [
    # Interfaces
    'IStorage',
    'IEventBus',
    'IConfigManager',

    # Exceptions
    'ErrorCategory',
    'ErrorSeverity',
    'ConfigManagerError',
    'ValidationError',
    'MigrationError',
    'StorageError',
    'LifecycleError',
    'ParseError',
    'BackupError',
    'is_recoverable_error',
]
