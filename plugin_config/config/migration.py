"""
Configuration Migration System for the access-tracking plugin.

This module provides automatic configuration migration between versions with:
- A registered table of migration steps keyed by source version
- Version detection with a fallback for unversioned payloads
- Data transformation and schema updates that never drop user data silently
- Migration logging and history reporting
"""

import copy
import logging
from typing import Any, Callable, Dict, List, Optional

from packaging import version

from ..core.exceptions import MigrationError
from .schema import CURRENT_VERSION, OLDEST_SUPPORTED_VERSION, default_configuration

logger = logging.getLogger(__name__)

MigrationFunc = Callable[[Dict[str, Any]], Dict[str, Any]]

LEGACY_KEY_NAMES = {
    'counterKey': 'counter_key',
    'includedPaths': 'included_paths',
    'excludedPaths': 'excluded_paths',
    'minInterval': 'min_interval',
    'batchSize': 'batch_size',
    'maxCacheSize': 'max_cache_size',
    'debugMode': 'debug_mode',
    'autoFlushInterval': 'auto_flush_interval',
}

LEGACY_PERFORMANCE_KEY_NAMES = {
    'maxConcurrentOps': 'max_concurrent_ops',
    'cacheCleanupInterval': 'cache_cleanup_interval',
    'enableBackgroundProcessing': 'enable_background_processing',
}


class MigrationStep:
    """Represents a single migration step between versions."""

    def __init__(
        self,
        from_version: str,
        to_version: str,
        description: str,
        migration_func: MigrationFunc
    ):
        self.from_version = from_version
        self.to_version = to_version
        self.description = description
        self.migration_func = migration_func

    def apply(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Apply the migration step to a copy of ``data``."""
        logger.info(f"Applying migration: {self.from_version} -> {self.to_version} ({self.description})")

        try:
            result = self.migration_func(copy.deepcopy(data))
        except Exception as e:
            raise MigrationError(
                f"Migration {self.from_version} -> {self.to_version} failed: {e}",
                from_version=self.from_version,
                to_version=self.to_version,
                cause=e
            )

        # Ensure version is updated
        result['version'] = self.to_version
        return result

    def __repr__(self) -> str:
        return f"MigrationStep({self.from_version!r} -> {self.to_version!r})"


class ConfigurationMigrator:
    """
    Handles configuration migration between different versions.

    Steps are kept in a table keyed by source version. Migrating repeatedly
    applies the step registered for the value's current version until the
    target version is reached.
    """

    def __init__(self, current_version: str = CURRENT_VERSION):
        self.current_version = current_version
        self.migration_steps: Dict[str, List[MigrationStep]] = {}

        # Register built-in migration steps
        self._register_builtin_migrations()

    def detect_version(self, data: Dict[str, Any], declared_version: Optional[str] = None) -> str:
        """
        Determine the schema version of raw configuration data.

        Falls back to the oldest supported version when neither a declared
        version nor a ``version`` field is available.
        """
        detected = declared_version or data.get('version')
        if not isinstance(detected, str) or not detected:
            return OLDEST_SUPPORTED_VERSION
        return detected

    def needs_migration(self, data: Dict[str, Any], target_version: Optional[str] = None) -> bool:
        """
        Check if configuration data needs migration.

        Args:
            data: Configuration data to check
            target_version: Version to compare against (defaults to current)

        Returns:
            True if migration is needed
        """
        target = target_version or self.current_version
        config_version = self.detect_version(data)

        try:
            return version.parse(config_version) < version.parse(target)
        except version.InvalidVersion as e:
            logger.warning(f"Invalid version format '{config_version}': {e}")
            return True

    def migrate(
        self,
        data: Dict[str, Any],
        declared_version: Optional[str] = None,
        target_version: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Migrate configuration data to the target version.

        Args:
            data: Raw configuration data (not modified)
            declared_version: Version of ``data`` when known from elsewhere
            target_version: Version to migrate to (defaults to current)

        Returns:
            Migrated configuration data

        Raises:
            MigrationError: If no migration path exists or a step fails
        """
        if not isinstance(data, dict):
            raise MigrationError(f"Cannot migrate {type(data).__name__}, expected a mapping")

        target = target_version or self.current_version
        config_version = self.detect_version(data, declared_version)

        current_data = copy.deepcopy(data)
        current_data['version'] = config_version

        if config_version == target:
            return current_data

        migration_path = self.find_migration_path(config_version, target)
        if migration_path is None:
            raise MigrationError(
                f"No migration path found from {config_version} to {target}",
                from_version=config_version,
                to_version=target
            )

        logger.info(f"Starting migration from version {config_version} to {target}")

        for step in migration_path:
            current_data = step.apply(current_data)

        logger.info(f"Migration completed successfully: {config_version} -> {target}")
        return current_data

    def find_migration_path(self, from_version: str, to_version: str) -> Optional[List[MigrationStep]]:
        """
        Find the chain of steps leading from one version to another.

        Returns:
            List of migration steps (empty when the versions are equal),
            or None if no path exists
        """
        path: List[MigrationStep] = []
        current = from_version
        visited = {current}

        while current != to_version:
            step = self._next_step(current, to_version)
            if step is None or step.to_version in visited:
                return None
            path.append(step)
            visited.add(step.to_version)
            current = step.to_version

        return path

    def can_migrate(self, from_version: str, to_version: Optional[str] = None) -> bool:
        """Check whether a migration path exists."""
        return self.find_migration_path(from_version, to_version or self.current_version) is not None

    def register_migration_step(self, step: MigrationStep) -> None:
        """
        Register a migration step.

        Raises:
            MigrationError: If a step for the same versions already exists
        """
        steps = self.migration_steps.setdefault(step.from_version, [])
        if any(existing.to_version == step.to_version for existing in steps):
            raise MigrationError(
                f"Migration already registered: {step.from_version} -> {step.to_version}",
                from_version=step.from_version,
                to_version=step.to_version
            )

        steps.append(step)
        steps.sort(key=lambda s: version.parse(s.to_version), reverse=True)
        logger.debug(f"Registered migration step: {step.from_version} -> {step.to_version}")

    def get_available_versions(self) -> List[str]:
        """
        Get list of available versions in migration chain.

        Returns:
            List of version strings
        """
        versions = {self.current_version}
        for source, steps in self.migration_steps.items():
            versions.add(source)
            versions.update(step.to_version for step in steps)

        return sorted(versions, key=lambda v: version.parse(v))

    # Private methods

    def _next_step(self, current: str, target: str) -> Optional[MigrationStep]:
        # Prefer the furthest step that does not overshoot the target.
        target_parsed = version.parse(target)
        for step in self.migration_steps.get(current, []):
            if version.parse(step.to_version) <= target_parsed:
                return step
        return None

    def _register_builtin_migrations(self) -> None:
        """Register built-in migration steps."""

        for legacy_version in ("0.1.0", "0.2.0", "0.3.0"):
            self.register_migration_step(MigrationStep(
                from_version=legacy_version,
                to_version="1.0.0",
                description="Rename legacy keys, add theme, language and performance settings",
                migration_func=self._migrate_0_x_to_1_0
            ))

        self.register_migration_step(MigrationStep(
            from_version="1.0.0",
            to_version="1.1.0",
            description="Add background processing to performance settings",
            migration_func=self._migrate_1_0_to_1_1
        ))

    @staticmethod
    def _migrate_0_x_to_1_0(data: Dict[str, Any]) -> Dict[str, Any]:
        """Migrate from a 0.x layout to version 1.0.0."""
        defaults = default_configuration("1.0.0").to_data()
        migrated = {}

        for key, value in data.items():
            migrated[LEGACY_KEY_NAMES.get(key, key)] = value

        # Fill fields the 0.x schema may not have had
        for key in ('counter_key', 'included_paths', 'excluded_paths', 'recursive',
                    'min_interval', 'batch_size', 'max_cache_size', 'enabled',
                    'debug_mode', 'auto_flush_interval', 'theme', 'language'):
            if migrated.get(key) is None:
                migrated[key] = defaults[key]

        performance = migrated.get('performance')
        if isinstance(performance, dict):
            migrated['performance'] = {
                LEGACY_PERFORMANCE_KEY_NAMES.get(key, key): value
                for key, value in performance.items()
            }
        else:
            migrated['performance'] = {}

        for key in ('max_concurrent_ops', 'cache_cleanup_interval'):
            migrated['performance'].setdefault(key, defaults['performance'][key])

        return migrated

    @staticmethod
    def _migrate_1_0_to_1_1(data: Dict[str, Any]) -> Dict[str, Any]:
        """Migrate from version 1.0.0 to 1.1.0."""
        performance = data.get('performance')
        if not isinstance(performance, dict):
            performance = {}
            data['performance'] = performance

        performance.setdefault('enable_background_processing', True)
        return data
