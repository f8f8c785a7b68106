"""
Tests for ConfigurationManager.

Test Coverage
-------------
- Initialization from empty, legacy, unmigratable and invalid storage
- Partial updates, validation failures and storage failure rollback
- Export/import round trips in every format
- Reset, backups and restore
- Change notifications and lifecycle errors
- Serialized concurrent updates
"""

import asyncio

import pytest

from plugin_config.config import (
    ChangeEventKind,
    ConfigurationFormat,
    ConfigurationManager,
    InMemoryStorage,
    ManagerOptions,
    ManagerState,
    PerformanceSettings,
    ThemeMode,
    create_config_manager,
    default_configuration,
)
from plugin_config.core import (
    BackupError,
    LifecycleError,
    MigrationError,
    ParseError,
    StorageError,
    ValidationError,
)
from tests.conftest import EventRecorder, FailingStorage, GatedStorage


# ============================================================================
# INITIALIZATION
# ============================================================================


class TestInitialization:
    """Test loading the stored configuration."""

    async def test_fresh_storage_yields_defaults(self, manager, storage, default_data):
        assert manager.state is ManagerState.READY
        assert manager.get_config().to_data() == default_data
        assert await storage.load("plugin-config") == default_data
        assert not manager.is_modified()

    async def test_stored_configuration_is_loaded(self, default_data):
        stored = {**default_data, 'batch_size': 42, 'theme': 'dark'}
        manager = ConfigurationManager(InMemoryStorage({"plugin-config": stored}))

        await manager.initialize()

        config = manager.get_config()
        assert config.batch_size == 42
        assert config.theme == "dark"
        assert manager.is_modified()

    async def test_legacy_configuration_is_migrated(self):
        storage = InMemoryStorage({"plugin-config": {'version': '0.1.0', 'counterKey': 'views', 'batchSize': 25}})
        manager = ConfigurationManager(storage)
        recorder = EventRecorder()
        manager.subscribe(ChangeEventKind.MIGRATED, recorder)

        await manager.initialize()

        config = manager.get_config()
        assert config.counter_key == "views"
        assert config.batch_size == 25
        assert config.version == "1.1.0"
        assert config.performance.enable_background_processing is True
        assert (await storage.load("plugin-config"))['version'] == "1.1.0"

        [event] = recorder.events
        assert event.from_version == "0.1.0"
        assert event.to_version == "1.1.0"
        assert event.previous['counterKey'] == "views"

    async def test_unmigratable_configuration_falls_back_to_defaults(self, default_data):
        stored = {**default_data, 'version': '9.0.0', 'batch_size': 42}
        manager = ConfigurationManager(InMemoryStorage({"plugin-config": stored}))

        await manager.initialize()

        assert manager.get_config().to_data() == default_data
        [backup] = manager.get_backups()
        assert backup.reason == "Unmigratable configuration"
        assert backup.config['batch_size'] == 42

    async def test_invalid_configuration_falls_back_to_defaults(self, default_data):
        stored = {**default_data, 'batch_size': 0}
        manager = ConfigurationManager(InMemoryStorage({"plugin-config": stored}))
        recorder = EventRecorder()
        manager.subscribe(ChangeEventKind.VALIDATED, recorder)

        await manager.initialize()

        assert manager.get_config().batch_size == 10
        assert recorder.events[0].is_valid is False
        assert manager.get_backups()[0].reason == "Invalid stored configuration"

    async def test_lenient_load_completes_missing_fields(self):
        storage = InMemoryStorage({"plugin-config": {'version': '1.1.0', 'batch_size': 30}})
        manager = ConfigurationManager(storage, validate_on_load=False)

        await manager.initialize()

        assert manager.get_config().batch_size == 30
        assert manager.get_config().max_cache_size == 1000

    async def test_initialize_twice(self, manager):
        with pytest.raises(LifecycleError):
            await manager.initialize()

    async def test_storage_failure_leaves_manager_uninitialized(self):
        storage = FailingStorage()
        storage.fail_load = True
        manager = ConfigurationManager(storage)

        with pytest.raises(StorageError):
            await manager.initialize()

        assert manager.state is ManagerState.UNINITIALIZED

        storage.fail_load = False
        await manager.initialize()
        assert manager.state is ManagerState.READY

    async def test_custom_storage_key(self, storage):
        manager = create_config_manager(storage, storage_key="vault-a")

        await manager.initialize()

        assert storage.keys() == ["vault-a"]

    def test_invalid_options(self, storage):
        with pytest.raises(ValueError):
            ConfigurationManager(storage, max_backups=0)

    def test_options_object_with_overrides(self, storage):
        manager = ConfigurationManager(storage, ManagerOptions(max_backups=3), create_backups=False)

        assert manager.options.max_backups == 3
        assert manager.options.create_backups is False


# ============================================================================
# UPDATES
# ============================================================================


class TestUpdates:
    """Test partial updates."""

    async def test_partial_update_changes_only_named_fields(self, manager, default_data):
        updated = await manager.update_config({'batch_size': 20})

        expected = {**default_data, 'batch_size': 20}
        assert updated.to_data() == expected
        assert manager.get_config().to_data() == expected

    async def test_nested_update_keeps_sibling_fields(self, manager):
        await manager.update_config({'performance': {'max_concurrent_ops': 3}})

        performance = manager.get_config().performance
        assert performance.max_concurrent_ops == 3
        assert performance.cache_cleanup_interval == 60000
        assert performance.enable_background_processing is True

    async def test_models_and_enums_in_partial(self, manager):
        await manager.update_config({
            'theme': ThemeMode.DARK,
            'performance': PerformanceSettings(max_concurrent_ops=2),
        })

        config = manager.get_config()
        assert config.theme == "dark"
        assert config.performance.max_concurrent_ops == 2

    async def test_sequential_updates_accumulate(self, manager):
        await manager.update_config({'batch_size': 20})
        await manager.update_config({'debug_mode': True})

        config = manager.get_config()
        assert config.batch_size == 20
        assert config.debug_mode is True

    async def test_concurrent_disjoint_updates(self, manager):
        await asyncio.gather(
            manager.update_config({'batch_size': 20}),
            manager.update_config({'min_interval': 500}),
            manager.update_config({'included_paths': ['journal']}),
        )

        config = manager.get_config()
        assert config.batch_size == 20
        assert config.min_interval == 500
        assert config.included_paths == ['journal']

    async def test_version_cannot_be_changed(self, manager):
        await manager.update_config({'version': '0.1.0'})

        assert manager.get_config().version == "1.1.0"

    async def test_invalid_update_is_rejected(self, manager, storage, recorder, default_data):
        with pytest.raises(ValidationError) as exc_info:
            await manager.update_config({'batch_size': 1001, 'counter_key': '123invalid'})

        assert sorted(issue.field for issue in exc_info.value.errors) == ['batch_size', 'counter_key']
        assert manager.get_config().to_data() == default_data
        assert await storage.load("plugin-config") == default_data

        [validated] = recorder.of_kind(ChangeEventKind.VALIDATED)
        assert validated.is_valid is False
        assert recorder.of_kind(ChangeEventKind.CHANGED) == []

    async def test_non_mapping_update(self, manager):
        with pytest.raises(ValidationError):
            await manager.update_config(["batch_size", 20])

    async def test_storage_failure_rolls_back(self, default_data):
        storage = FailingStorage()
        manager = ConfigurationManager(storage)
        await manager.initialize()
        recorder = EventRecorder()
        manager.subscribe(ChangeEventKind.CHANGED, recorder)

        storage.fail_save = True
        storage.fail_keys = {"plugin-config"}

        with pytest.raises(StorageError):
            await manager.update_config({'batch_size': 20})

        assert manager.get_config().to_data() == default_data
        assert recorder.events == []

    async def test_backup_persistence_failure_does_not_block_update(self):
        storage = FailingStorage()
        manager = ConfigurationManager(storage)
        await manager.initialize()

        storage.fail_save = True
        storage.fail_keys = {"plugin-config:backups"}

        await manager.update_config({'batch_size': 20})

        assert (await storage.load("plugin-config"))['batch_size'] == 20
        assert manager.backup_store.last_persist_error is not None

    async def test_returned_snapshot_is_detached(self, manager):
        config = manager.get_config()
        config.included_paths.append("notes")

        assert manager.get_config().included_paths == []

    async def test_is_modified_ignores_round_trip_to_defaults(self, manager):
        await manager.update_config({'batch_size': 20})
        assert manager.is_modified()

        await manager.update_config({'batch_size': 10})
        assert not manager.is_modified()


# ============================================================================
# NOTIFICATIONS
# ============================================================================


class TestNotifications:
    """Test events published by the manager."""

    async def test_changed_event(self, manager, recorder):
        await manager.update_config({'batch_size': 20, 'debug_mode': True})

        [event] = recorder.of_kind(ChangeEventKind.CHANGED)
        assert event.previous.batch_size == 10
        assert event.current.batch_size == 20
        assert event.changed_fields == ('batch_size', 'debug_mode')

    async def test_on_config_changed(self, manager):
        received = []
        unsubscribe = manager.on_config_changed(received.append)

        await manager.update_config({'batch_size': 20})
        unsubscribe()
        unsubscribe()
        await manager.update_config({'batch_size': 30})

        assert [config.batch_size for config in received] == [20]

    async def test_failing_listener_does_not_break_update(self, manager):
        received = []

        def broken(config):
            raise RuntimeError("listener failed")

        manager.on_config_changed(broken)
        manager.on_config_changed(received.append)

        await manager.update_config({'batch_size': 20})

        assert manager.get_config().batch_size == 20
        assert len(received) == 1

    async def test_validate_config_publishes_without_mutating(self, manager, recorder, default_data):
        result = manager.validate_config({**default_data, 'min_interval': -1})

        assert not result.is_valid
        assert manager.get_config().min_interval == 1000
        assert recorder.of_kind(ChangeEventKind.VALIDATED)[0].result is result

    async def test_listeners_cannot_corrupt_configuration(self, manager, storage):
        def tamper_with_event(event):
            event.current.included_paths.append("bad<>path")
            event.previous.excluded_paths.append("")

        def tamper_with_config(config):
            config.excluded_paths.append("")

        manager.subscribe(ChangeEventKind.CHANGED, tamper_with_event)
        manager.on_config_changed(tamper_with_config)

        returned = await manager.update_config({'batch_size': 20})

        config = manager.get_config()
        assert config.included_paths == []
        assert config.excluded_paths == []
        assert returned.included_paths == []
        assert manager.validate_config(config).is_valid

        await manager.update_config({'batch_size': 30})
        assert (await storage.load("plugin-config"))['included_paths'] == []
        assert manager.get_backups()[-1].config['excluded_paths'] == []

    async def test_validated_listener_cannot_rewrite_candidate(self, manager, storage):
        def rewrite(event):
            event.config['batch_size'] = 999999

        manager.subscribe(ChangeEventKind.VALIDATED, rewrite)

        updated = await manager.update_config({'batch_size': 20})

        assert updated.batch_size == 20
        assert manager.get_config().batch_size == 20
        assert (await storage.load("plugin-config"))['batch_size'] == 20


# ============================================================================
# RESET, EXPORT AND IMPORT
# ============================================================================


class TestResetExportImport:
    """Test whole-configuration operations."""

    async def test_reset_to_defaults(self, manager, recorder):
        await manager.update_config({'batch_size': 20, 'enabled': False})

        await manager.reset_to_defaults()

        assert not manager.is_modified()
        [event] = recorder.of_kind(ChangeEventKind.RESET)
        assert event.previous.batch_size == 20
        assert event.current.batch_size == 10

    @pytest.mark.parametrize("fmt", list(ConfigurationFormat))
    async def test_export_import_round_trip(self, manager, recorder, fmt):
        await manager.update_config({
            'included_paths': ['journal', 'projects'],
            'theme': 'dark',
            'performance': {'enable_background_processing': False},
        })
        exported = manager.export_config(fmt)

        other = ConfigurationManager(InMemoryStorage())
        await other.initialize()
        imported = await other.import_config(exported, fmt)

        assert imported.to_data() == manager.get_config().to_data()
        assert recorder.of_kind(ChangeEventKind.EXPORTED)[0].destination == f"export:{fmt.value}"

    async def test_export_envelope(self, manager):
        exported = manager.export_config()

        assert '"exported_at"' in exported
        assert '"version": "1.1.0"' in exported

    async def test_import_publishes_event(self, manager, recorder):
        exported = manager.export_config()

        await manager.import_config(exported, source="sync")

        [event] = recorder.of_kind(ChangeEventKind.IMPORTED)
        assert event.source == "sync"

    async def test_import_legacy_document(self, manager):
        await manager.import_config('{"counterKey": "views", "minInterval": 250}')

        config = manager.get_config()
        assert config.counter_key == "views"
        assert config.min_interval == 250
        assert config.version == "1.1.0"

    @pytest.mark.parametrize("payload", ["{not json", "[1, 2, 3]", '{"config": 5}'])
    async def test_malformed_import(self, manager, default_data, payload):
        with pytest.raises(ParseError):
            await manager.import_config(payload)

        assert manager.get_config().to_data() == default_data

    async def test_invalid_import(self, manager, default_data):
        exported = manager.export_config().replace('"batch_size": 10', '"batch_size": 0')

        with pytest.raises(ValidationError):
            await manager.import_config(exported)

        assert manager.get_config().to_data() == default_data

    async def test_unmigratable_import(self, manager):
        with pytest.raises(MigrationError):
            await manager.import_config('{"version": "9.0.0"}')


# ============================================================================
# BACKUPS
# ============================================================================


class TestBackups:
    """Test backup capture and restore."""

    async def test_update_backs_up_previous_value(self, manager):
        await manager.update_config({'batch_size': 20})

        [backup] = manager.get_backups()
        assert backup.reason == "Before update"
        assert backup.config['batch_size'] == 10

    async def test_backups_are_bounded(self, storage):
        manager = ConfigurationManager(storage, max_backups=2)
        await manager.initialize()

        for size in (20, 30, 40):
            await manager.update_config({'batch_size': size})

        assert [backup.config['batch_size'] for backup in manager.get_backups()] == [20, 30]

    async def test_backups_can_be_disabled(self, storage):
        manager = ConfigurationManager(storage, create_backups=False)
        await manager.initialize()

        await manager.update_config({'batch_size': 20})

        assert manager.get_backups() == []

    async def test_manual_backup(self, manager):
        backup = await manager.create_backup("Before experiment")

        assert manager.get_backups()[-1].reason == "Before experiment"
        assert backup.version == "1.1.0"

    async def test_restore_backup(self, manager):
        await manager.update_config({'batch_size': 20})
        await manager.update_config({'batch_size': 30})

        restored = await manager.restore_backup(-1)
        assert restored.batch_size == 20

        await manager.restore_backup(manager.get_backups()[0])
        assert manager.get_config().batch_size == 10

    async def test_restore_migrates_old_snapshot(self, manager, default_data):
        snapshot = {**default_data, 'version': '1.0.0', 'counter_key': 'views'}
        snapshot['performance'] = {'max_concurrent_ops': 5, 'cache_cleanup_interval': 60000}
        await manager.backup_store.capture(snapshot, "legacy")

        restored = await manager.restore_backup(-1)

        assert restored.counter_key == "views"
        assert restored.performance.enable_background_processing is True

    async def test_backups_survive_restart(self, storage):
        first = ConfigurationManager(storage)
        await first.initialize()
        await first.update_config({'batch_size': 20})
        first.dispose()

        second = ConfigurationManager(storage)
        await second.initialize()

        assert second.get_config().batch_size == 20
        assert [backup.config['batch_size'] for backup in second.get_backups()] == [10]

    async def test_failed_save_keeps_backup_history(self):
        storage = FailingStorage()
        manager = ConfigurationManager(storage, max_backups=1)
        await manager.initialize()
        await manager.create_backup("keep me")

        storage.fail_save = True
        storage.fail_keys = {"plugin-config"}

        with pytest.raises(StorageError):
            await manager.update_config({'batch_size': 20})

        assert [backup.reason for backup in manager.get_backups()] == ["keep me"]

    @pytest.mark.parametrize("selector", [99, -99, True, "0", 1.0])
    async def test_restore_unknown_backup(self, manager, selector):
        await manager.update_config({'batch_size': 20})

        with pytest.raises(BackupError) as exc_info:
            await manager.restore_backup(selector)

        assert exc_info.value.context['history_size'] == 1
        assert exc_info.value.operation == "restore_backup"
        assert manager.get_config().batch_size == 20


# ============================================================================
# LIFECYCLE
# ============================================================================


class TestLifecycle:
    """Test state checks around initialize() and dispose()."""

    async def test_operations_before_initialize(self, storage):
        manager = ConfigurationManager(storage)

        with pytest.raises(LifecycleError):
            manager.get_config()
        with pytest.raises(LifecycleError):
            await manager.update_config({'batch_size': 20})

    async def test_subscribe_before_initialize_is_allowed(self, storage):
        manager = ConfigurationManager(storage)
        received = []
        manager.on_config_changed(received.append)

        await manager.initialize()
        await manager.update_config({'batch_size': 20})

        assert len(received) == 1

    async def test_dispose(self, storage):
        manager = ConfigurationManager(storage)
        await manager.initialize()
        unsubscribe = manager.on_config_changed(print)

        manager.dispose()
        manager.dispose()
        unsubscribe()

        assert manager.state is ManagerState.DISPOSED
        assert manager.event_bus.listener_count() == 0
        with pytest.raises(LifecycleError):
            manager.get_config()
        with pytest.raises(LifecycleError):
            await manager.reset_to_defaults()
        with pytest.raises(LifecycleError):
            manager.on_config_changed(print)
        with pytest.raises(LifecycleError):
            await manager.initialize()

    async def test_dispose_during_update(self):
        storage = GatedStorage()
        manager = ConfigurationManager(storage)
        await manager.initialize()
        received = []
        manager.on_config_changed(received.append)

        storage.gate.clear()
        storage.save_started.clear()
        update = asyncio.create_task(manager.update_config({'batch_size': 20}))
        await storage.save_started.wait()

        manager.dispose()
        storage.gate.set()

        with pytest.raises(LifecycleError):
            await update

        assert manager.state is ManagerState.DISPOSED
        assert received == []
        with pytest.raises(LifecycleError):
            manager.get_config()

    async def test_dispose_during_initialize(self):
        storage = GatedStorage()
        storage.gate.clear()
        manager = ConfigurationManager(storage)

        initializing = asyncio.create_task(manager.initialize())
        await storage.save_started.wait()

        manager.dispose()
        storage.gate.set()

        with pytest.raises(LifecycleError):
            await initializing

        assert manager.state is ManagerState.DISPOSED

    def test_default_config(self, storage, default_data):
        manager = ConfigurationManager(storage)

        assert manager.get_default_config().to_data() == default_data
        assert manager.get_default_config().to_data() == default_configuration().to_data()
