"""
Exception hierarchy for the plugin configuration manager.

Every error raised by the manager derives from ConfigManagerError and carries:
- A category and severity for routing and logging
- A stable ``PCM-<nnn>`` error code per failure mode
- The manager operation that failed, free-form context and recovery suggestions
- Whether the authoritative configuration was left untouched

The categories mirror the failure modes of the configuration lifecycle:
rejected candidates, impossible migrations, storage failures, operations
invoked in the wrong lifecycle state, malformed import payloads and
unknown backups.
"""

from typing import Any, Dict, List, Optional
from datetime import datetime
from enum import Enum


class ErrorSeverity(Enum):
    """Enumeration of error severity levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Enumeration of error categories."""
    CONFIGURATION = "configuration"
    VALIDATION = "validation"
    MIGRATION = "migration"
    STORAGE = "storage"
    LIFECYCLE = "lifecycle"
    PARSE = "parse"
    BACKUP = "backup"


ERROR_CODES: Dict[ErrorCategory, str] = {
    ErrorCategory.CONFIGURATION: "PCM-000",
    ErrorCategory.VALIDATION: "PCM-100",
    ErrorCategory.MIGRATION: "PCM-200",
    ErrorCategory.STORAGE: "PCM-300",
    ErrorCategory.LIFECYCLE: "PCM-400",
    ErrorCategory.PARSE: "PCM-500",
    ErrorCategory.BACKUP: "PCM-600",
}


class ConfigManagerError(Exception):
    """
    Base exception class for all configuration manager exceptions.

    ``config_unchanged`` records whether the manager's authoritative
    configuration is exactly what it was before the failing call.
    """

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.CONFIGURATION,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        operation: Optional[str] = None,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        suggestions: Optional[List[str]] = None,
        recoverable: bool = True,
        config_unchanged: bool = True,
        cause: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.severity = severity
        self.operation = operation
        self.error_code = error_code or ERROR_CODES[category]
        self.context = context or {}
        self.suggestions = suggestions or []
        self.recoverable = recoverable
        self.config_unchanged = config_unchanged
        self.cause = cause
        self.timestamp = datetime.now()

        if operation:
            self.context.setdefault('operation', operation)
        if cause:
            self.__cause__ = cause

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging and serialization."""
        return {
            'error_code': self.error_code,
            'message': self.message,
            'category': self.category.value,
            'severity': self.severity.value,
            'operation': self.operation,
            'context': self.context,
            'suggestions': self.suggestions,
            'recoverable': self.recoverable,
            'config_unchanged': self.config_unchanged,
            'timestamp': self.timestamp.isoformat(),
            'exception_type': self.__class__.__name__,
            'cause': str(self.cause) if self.cause else None
        }

    def add_context(self, key: str, value: Any) -> 'ConfigManagerError':
        self.context[key] = value
        return self

    def add_suggestion(self, suggestion: str) -> 'ConfigManagerError':
        if suggestion not in self.suggestions:
            self.suggestions.append(suggestion)
        return self

    def __str__(self) -> str:
        parts = [f"[{self.error_code}] {self.message}"]

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            parts.append(f"Context: {context_str}")

        if self.suggestions:
            parts.append(f"Suggestions: {'; '.join(self.suggestions)}")

        return " | ".join(parts)


class ValidationError(ConfigManagerError):
    """
    Raised when a candidate configuration is rejected.

    The authoritative configuration is left unchanged. The full
    ValidationResult is available as ``result``.
    """

    def __init__(self, message: str, result: Any = None, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.VALIDATION,
            **kwargs
        )
        self.result = result

        if result is not None:
            self.add_context('error_count', len(result.errors))
            self.add_context('fields', sorted({issue.field for issue in result.errors}))

        self.add_suggestion("Check field names, types and ranges against PluginConfiguration")

    @property
    def errors(self) -> List[Any]:
        return list(self.result.errors) if self.result is not None else []


class MigrationError(ConfigManagerError):
    """
    Raised when stored data cannot be brought to the target schema version.

    The manager treats this as non-fatal during initialization and falls
    back to the default configuration.
    """

    def __init__(
        self,
        message: str,
        from_version: Optional[str] = None,
        to_version: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            category=ErrorCategory.MIGRATION,
            **kwargs
        )

        if from_version:
            self.add_context('from_version', from_version)
        if to_version:
            self.add_context('to_version', to_version)

        self.add_suggestion("Register a migration step for the stored version")


class StorageError(ConfigManagerError):
    """Raised when the storage backend fails to load or save a key."""

    def __init__(self, message: str, key: Optional[str] = None, **kwargs):
        kwargs.setdefault('severity', ErrorSeverity.HIGH)
        super().__init__(
            message,
            category=ErrorCategory.STORAGE,
            **kwargs
        )

        if key:
            self.add_context('key', key)

        self.add_suggestion("Verify the storage backend is reachable and writable")


class LifecycleError(ConfigManagerError):
    """Raised when an operation is invoked in the wrong manager state."""

    def __init__(self, message: str, state: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.LIFECYCLE,
            recoverable=False,
            **kwargs
        )

        if state:
            self.add_context('state', state)


class ParseError(ConfigManagerError):
    """Raised when an import payload cannot be decoded."""

    def __init__(self, message: str, format: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.PARSE,
            severity=ErrorSeverity.LOW,
            **kwargs
        )

        if format:
            self.add_context('format', format)

        self.add_suggestion("Check the payload was produced by export_config")


class BackupError(ConfigManagerError):
    """Raised when a requested backup does not exist in the history."""

    def __init__(self, message: str, index: Optional[int] = None, history_size: Optional[int] = None, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.BACKUP,
            severity=ErrorSeverity.LOW,
            **kwargs
        )

        if index is not None:
            self.add_context('index', index)
        if history_size is not None:
            self.add_context('history_size', history_size)

        self.add_suggestion("Pick a backup from get_backups()")


def is_recoverable_error(exception: Exception) -> bool:
    """Return True when the manager remains usable after ``exception``."""
    if isinstance(exception, ConfigManagerError):
        return exception.recoverable
    return False
