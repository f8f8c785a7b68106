"""
Configuration Manager for the access-tracking plugin.

This module provides configuration lifecycle management with:
- Loading from a storage port with automatic migration
- Validation before every commit (invalid values are never observable)
- Partial updates merged field by field
- Backup capture and restore
- Export/import through canonical text documents
- Change notifications on a synchronous event bus

The manager owns a single authoritative configuration. Mutating operations
are serialized through an asyncio lock, so the merge-validate-persist-commit-
notify sequence of one call never interleaves with another.
"""

import asyncio
import copy
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel

from ..core.exceptions import (
    BackupError,
    LifecycleError,
    MigrationError,
    ParseError,
    StorageError,
    ValidationError,
)
from ..core.interfaces import IConfigManager, IStorage
from . import formats
from .backup import BackupStore
from .events import (
    ChangeBus,
    ChangeEvent,
    ChangeEventKind,
    ConfigChangedEvent,
    ConfigExportedEvent,
    ConfigImportedEvent,
    ConfigMigratedEvent,
    ConfigResetEvent,
    ConfigValidatedEvent,
)
from .migration import ConfigurationMigrator
from .schema import (
    Backup,
    ConfigurationFormat,
    ManagerOptions,
    PluginConfiguration,
    ValidationIssue,
    ValidationResult,
    default_configuration,
)
from .validator import ConfigurationValidator, apply_nested_updates

logger = logging.getLogger(__name__)


class ManagerState(Enum):
    """Lifecycle states of the configuration manager."""
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    DISPOSED = "disposed"


def changed_fields(old: PluginConfiguration, new: PluginConfiguration) -> Tuple[str, ...]:
    """Top-level field names whose values differ between two configurations."""
    old_data = old.to_data()
    new_data = new.to_data()
    return tuple(
        name for name in PluginConfiguration.model_fields
        if old_data.get(name) != new_data.get(name)
    )


def _snapshot(config: PluginConfiguration) -> PluginConfiguration:
    """Detached deep copy; list fields of a frozen model are still mutable."""
    return config.model_copy(deep=True)


def _to_plain(value: Any) -> Any:
    """Convert models, enums and containers in a partial update to plain data."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Mapping):
        return {key: _to_plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_plain(item) for item in value]
    return copy.deepcopy(value)


class ConfigurationManager(IConfigManager):
    """
    Configuration manager with validation, migration, backups and events.

    Lifecycle: UNINITIALIZED -> READY -> DISPOSED. ``initialize()`` must be
    awaited exactly once before any other operation.
    """

    def __init__(
        self,
        storage: IStorage,
        options: Optional[ManagerOptions] = None,
        **overrides: Any
    ):
        if options is None:
            options = ManagerOptions(**overrides)
        elif overrides:
            options = ManagerOptions(**{**options.model_dump(), **overrides})

        self.storage = storage
        self.options = options

        # Internal state
        self._config: Optional[PluginConfiguration] = None
        self._state = ManagerState.UNINITIALIZED
        self._initializing = False
        self._lock = asyncio.Lock()
        self._validator = ConfigurationValidator()
        self._migrator = ConfigurationMigrator(options.target_version)
        self._bus = ChangeBus()
        self._backups = BackupStore(storage, options.storage_key, options.max_backups)

        logger.debug(
            f"Configuration manager created (key={options.storage_key}, "
            f"version={options.target_version})"
        )

    @property
    def state(self) -> ManagerState:
        return self._state

    @property
    def validator(self) -> ConfigurationValidator:
        return self._validator

    @property
    def migrator(self) -> ConfigurationMigrator:
        return self._migrator

    @property
    def event_bus(self) -> ChangeBus:
        return self._bus

    @property
    def backup_store(self) -> BackupStore:
        return self._backups

    async def initialize(self) -> None:
        """
        Load, migrate and validate the stored configuration.

        Falls back to defaults when nothing is stored, when the stored data
        cannot be migrated or when it fails validation. The resulting value
        is persisted whenever it differs from what was loaded.

        Raises:
            LifecycleError: If called more than once
            StorageError: If the storage backend fails; the manager stays
                uninitialized and initialize() may be retried
        """
        if self._state is not ManagerState.UNINITIALIZED or self._initializing:
            raise LifecycleError(
                "Configuration manager can only be initialized once",
                state=self._state.value,
                operation="initialize"
            )

        logger.info(f"Initializing configuration manager with key: {self.options.storage_key}")
        self._initializing = True

        try:
            async with self._lock:
                await self._backups.load()
                raw = await self._load(self.options.storage_key)
                config, migrated_event = await self._load_configuration(raw)

                if raw != config.to_data():
                    await self._save(config)

                # dispose() may have run while storage was awaited
                if self._state is ManagerState.DISPOSED:
                    raise LifecycleError(
                        "Configuration manager was disposed during initialize()",
                        state=self._state.value,
                        operation="initialize"
                    )

                self._config = config
                self._state = ManagerState.READY
        finally:
            self._initializing = False

        if migrated_event is not None:
            self._publish(migrated_event)

        logger.info(f"Configuration manager initialized (version {config.version})")

    def get_config(self) -> PluginConfiguration:
        """Return an immutable snapshot of the current configuration."""
        self._ensure_ready("get_config")
        return self._config.model_copy(deep=True)

    def get_default_config(self) -> PluginConfiguration:
        """Return the default configuration for the target version."""
        return default_configuration(self.options.target_version)

    async def update_config(self, partial: Mapping[str, Any]) -> PluginConfiguration:
        """
        Merge ``partial`` over the current configuration and commit it.

        Args:
            partial: Sparse mapping of fields to change; nested mappings
                (e.g. ``{'performance': {'max_concurrent_ops': 3}}``) and dotted
                keys are merged field by field

        Returns:
            The new configuration

        Raises:
            ValidationError: If the merged configuration is invalid
            StorageError: If persisting fails (the previous value is kept)
        """
        self._ensure_ready("update_config")
        if not isinstance(partial, Mapping):
            raise ValidationError(
                f"Partial update must be a mapping, got {type(partial).__name__}",
                result=ValidationResult(
                    is_valid=False,
                    errors=[ValidationIssue(field="", message="partial update must be a mapping")]
                )
            )

        async with self._lock:
            self._ensure_ready("update_config")

            candidate = self._config.to_data()
            apply_nested_updates(candidate, _to_plain(partial))
            candidate['version'] = self.options.target_version

            _, current = await self._commit(candidate, "update_config", backup_reason="Before update")

            logger.info(f"Configuration updated: {list(partial.keys())}")
            return current

    def validate_config(self, candidate: Union[PluginConfiguration, Mapping[str, Any]]) -> ValidationResult:
        """Validate ``candidate`` without touching the current configuration."""
        result = self._validator.validate(candidate)
        if isinstance(candidate, PluginConfiguration):
            published = _snapshot(candidate)
        else:
            published = copy.deepcopy(candidate)
        self._publish(ConfigValidatedEvent(config=published, result=result))
        return result

    def is_modified(self) -> bool:
        """Check whether the configuration differs from the defaults (version ignored)."""
        self._ensure_ready("is_modified")

        current = self._config.to_data()
        defaults = self.get_default_config().to_data()
        current.pop('version', None)
        defaults.pop('version', None)
        return current != defaults

    async def reset_to_defaults(self) -> PluginConfiguration:
        """Commit the default configuration."""
        self._ensure_ready("reset_to_defaults")

        async with self._lock:
            self._ensure_ready("reset_to_defaults")

            candidate = self.get_default_config().to_data()
            previous, current = await self._commit(
                candidate, "reset_to_defaults", backup_reason="Before reset to defaults"
            )
            self._publish(ConfigResetEvent(previous=previous, current=_snapshot(current)))

            logger.info("Configuration reset to defaults")
            return current

    def export_config(self, format: ConfigurationFormat = ConfigurationFormat.JSON) -> str:
        """
        Serialize the current configuration to a canonical text document.

        The document wraps the configuration with export metadata:
        ``{"config": ..., "exported_at": ..., "version": ...}``.
        """
        self._ensure_ready("export_config")
        format = ConfigurationFormat(format)

        document = {
            'config': self._config.to_data(),
            'exported_at': datetime.now().isoformat(),
            'version': self.options.target_version,
        }
        text = formats.dumps(document, format)

        self._publish(ConfigExportedEvent(config=_snapshot(self._config), destination=f"export:{format.value}"))
        logger.info(f"Configuration exported as {format.value}")
        return text

    async def import_config(
        self,
        serialized: str,
        format: ConfigurationFormat = ConfigurationFormat.JSON,
        source: str = "import"
    ) -> PluginConfiguration:
        """
        Import a configuration document produced by export_config().

        Bare configuration documents (without the export envelope) are
        accepted too. Older versions are migrated before validation.

        Raises:
            ParseError: If the document is malformed
            MigrationError: If the payload cannot be migrated
            ValidationError: If the payload is invalid
        """
        self._ensure_ready("import_config")
        format = ConfigurationFormat(format)

        document = formats.loads(serialized, format)
        if not isinstance(document, dict):
            raise ParseError("Imported document must be a mapping", format=format.value)

        payload = document.get('config', document)
        if not isinstance(payload, dict):
            raise ParseError("Imported configuration must be a mapping", format=format.value)

        async with self._lock:
            self._ensure_ready("import_config")

            candidate = self._prepare_candidate(payload)
            _, current = await self._commit(candidate, "import_config", backup_reason="Before import")
            self._publish(ConfigImportedEvent(config=_snapshot(current), source=source))

            logger.info(f"Configuration imported from {source}")
            return current

    async def create_backup(self, reason: str) -> Backup:
        """Capture a backup of the current configuration."""
        self._ensure_ready("create_backup")

        async with self._lock:
            self._ensure_ready("create_backup")
            return await self._backups.capture(self._config, reason)

    def get_backups(self) -> List[Backup]:
        """Return the backup history, oldest first."""
        self._ensure_ready("get_backups")
        return self._backups.list()

    async def restore_backup(self, backup: Union[Backup, int]) -> PluginConfiguration:
        """
        Restore a backup through the normal validate-and-commit path.

        Args:
            backup: A Backup, or its position in get_backups() (oldest first;
                negative indexes count from the most recent)

        Raises:
            ValidationError: If the snapshot is invalid
            BackupError: If an index does not name a backup in the history
            ValidationError: If the snapshot is invalid
            MigrationError: If the snapshot cannot be migrated
        """
        self._ensure_ready("restore_backup")
        backup = self._resolve_backup(backup)

        async with self._lock:
            self._ensure_ready("restore_backup")

            candidate = self._prepare_candidate(self._backups.restore(backup))
            _, current = await self._commit(candidate, "restore_backup", backup_reason="Before restore")

            logger.info(
                f"Configuration restored from backup "
                f"({backup.timestamp.isoformat()}, {backup.version}, {backup.reason})"
            )
            return current

    def on_config_changed(self, callback: Callable[[PluginConfiguration], None]) -> Callable[[], None]:
        """
        Register a callback receiving the new configuration after every change.

        Returns:
            Function that unregisters the callback
        """
        self._ensure_not_disposed("on_config_changed")
        return self._bus.on_config_changed(callback)

    def subscribe(self, kind: ChangeEventKind, handler: Callable[[ChangeEvent], None]) -> Callable[[], None]:
        """Subscribe to lifecycle events of one kind."""
        self._ensure_not_disposed("subscribe")
        return self._bus.subscribe(kind, handler)

    def dispose(self) -> None:
        """Release subscriptions and the in-memory backup history."""
        if self._state is ManagerState.DISPOSED:
            return

        self._bus.clear()
        self._backups.clear()
        self._config = None
        self._state = ManagerState.DISPOSED
        logger.info("Configuration manager disposed")

    # Private methods

    async def _load_configuration(
        self,
        raw: Any
    ) -> Tuple[PluginConfiguration, Optional[ConfigMigratedEvent]]:
        """Turn stored data into a valid configuration, falling back to defaults."""
        defaults = self.get_default_config()

        if raw is None:
            logger.info("No configuration found, using defaults")
            return defaults, None

        data = raw
        migrated_event = None
        target = self.options.target_version

        if self.options.auto_migrate and (not isinstance(raw, dict) or raw.get('version') != target):
            try:
                data = self._migrator.migrate(raw, target_version=target)
            except MigrationError as e:
                logger.warning(f"Stored configuration cannot be migrated, using defaults: {e}")
                await self._preserve_raw(raw, "Unmigratable configuration")
                return defaults, None

        if not isinstance(data, dict):
            logger.warning(f"Stored configuration is a {type(data).__name__}, using defaults")
            return defaults, None

        if self.options.validate_on_load:
            result = self._validator.validate(data)
            self._publish(ConfigValidatedEvent(config=copy.deepcopy(data), result=result))

            if not result.is_valid:
                logger.warning(f"Loaded configuration is invalid, using defaults: {result.error_messages()}")
                await self._preserve_raw(raw, "Invalid stored configuration")
                return defaults, None

        try:
            config = PluginConfiguration.model_validate(data)
        except ValueError as e:
            logger.warning(f"Loaded configuration is invalid, using defaults: {e}")
            await self._preserve_raw(raw, "Invalid stored configuration")
            return defaults, None

        if data is not raw:
            migrated_event = ConfigMigratedEvent(
                from_version=self._migrator.detect_version(raw),
                to_version=target,
                previous=copy.deepcopy(raw),
                current=_snapshot(config)
            )
            logger.info(f"Configuration migrated: {migrated_event.from_version} -> {target}")

        return config, migrated_event

    def _prepare_candidate(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Bring an imported or restored payload to the target version."""
        target = self.options.target_version
        if payload.get('version') == target:
            return copy.deepcopy(payload)

        if not self.options.auto_migrate:
            raise MigrationError(
                f"Configuration version {payload.get('version')} differs from {target} "
                "and automatic migration is disabled",
                from_version=str(payload.get('version')),
                to_version=target
            )

        return self._migrator.migrate(payload, target_version=target)

    def _resolve_backup(self, backup: Union[Backup, int]) -> Backup:
        if isinstance(backup, Backup):
            return backup
        backups = self.get_backups()
        if isinstance(backup, bool) or not isinstance(backup, int):
            raise BackupError(
                f"Expected a Backup or an index into get_backups(), got {type(backup).__name__}",
                history_size=len(backups),
                operation="restore_backup"
            )
        try:
            return backups[backup]
        except IndexError:
            raise BackupError(
                f"No backup at index {backup}",
                index=backup,
                history_size=len(backups),
                operation="restore_backup"
            ) from None

    async def _commit(
        self,
        candidate: Dict[str, Any],
        operation: str,
        backup_reason: str
    ) -> Tuple[PluginConfiguration, PluginConfiguration]:
        """
        Validate, persist, swap, back up and announce a candidate.

        Nothing is swapped until storage has accepted the new value, so a
        failed save leaves both the configuration and the backup history as
        they were.

        Returns:
            Detached copies of the previous and the new configuration
        """
        result = self._validator.validate(candidate)
        new_config = PluginConfiguration.model_validate(candidate) if result.is_valid else None
        self._publish(ConfigValidatedEvent(config=copy.deepcopy(candidate), result=result))

        if new_config is None:
            raise ValidationError(
                f"Configuration validation failed: {'; '.join(result.error_messages())}",
                result=result,
                operation=operation
            )

        await self._save(new_config)
        # dispose() may have run while storage was awaited
        self._ensure_ready(operation)

        previous = self._config
        self._config = new_config

        if self.options.create_backups:
            await self._backups.capture(previous, backup_reason)

        self._publish(ConfigChangedEvent(
            previous=_snapshot(previous),
            current=_snapshot(new_config),
            changed_fields=changed_fields(previous, new_config)
        ))
        return _snapshot(previous), _snapshot(new_config)

    async def _preserve_raw(self, raw: Any, reason: str) -> None:
        if isinstance(raw, dict):
            await self._backups.capture(raw, reason)

    async def _load(self, key: str) -> Any:
        try:
            return await self.storage.load(key)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to load configuration: {e}", key=key, operation="load", cause=e)

    async def _save(self, config: PluginConfiguration) -> None:
        key = self.options.storage_key
        try:
            await self.storage.save(key, config.to_data())
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to save configuration: {e}", key=key, operation="save", cause=e)

    def _publish(self, event: ChangeEvent) -> None:
        self._bus.publish(event)

    def _ensure_ready(self, operation: str) -> None:
        if self._state is not ManagerState.READY:
            raise LifecycleError(
                f"Cannot call {operation}() while the manager is {self._state.value}",
                state=self._state.value,
                operation=operation
            )

    def _ensure_not_disposed(self, operation: str) -> None:
        if self._state is ManagerState.DISPOSED:
            raise LifecycleError(
                f"Cannot call {operation}() after dispose()",
                state=self._state.value,
                operation=operation
            )


def create_config_manager(storage: IStorage, **options: Any) -> ConfigurationManager:
    """
    Create a configuration manager.

    Args:
        storage: Storage backend
        **options: ManagerOptions fields

    Returns:
        New ConfigurationManager instance
    """
    return ConfigurationManager(storage, **options)
