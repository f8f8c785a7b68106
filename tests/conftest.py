"""
Pytest configuration and fixtures for the plugin configuration tests.

Provides in-memory and failing storage backends, a ready-to-use manager and
a recorder that collects published events.
"""

import asyncio
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio

from plugin_config.config import (
    ChangeEvent,
    ChangeEventKind,
    ConfigurationManager,
    InMemoryStorage,
    default_configuration,
)
from plugin_config.core import IStorage, StorageError


# ============================================================================
# STORAGE DOUBLES
# ============================================================================


class FailingStorage(IStorage):
    """In-memory storage that can be told to fail loads or saves."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self.inner = InMemoryStorage(initial)
        self.fail_load = False
        self.fail_save = False
        self.fail_keys: Optional[set] = None
        self.save_calls: List[str] = []

    def _should_fail(self, flag: bool, key: str) -> bool:
        return flag and (self.fail_keys is None or key in self.fail_keys)

    async def save(self, key: str, value: Any) -> None:
        self.save_calls.append(key)
        if self._should_fail(self.fail_save, key):
            raise StorageError("disk full", key=key, operation="save")
        await self.inner.save(key, value)

    async def load(self, key: str) -> Optional[Any]:
        if self._should_fail(self.fail_load, key):
            raise StorageError("backend offline", key=key, operation="load")
        return await self.inner.load(key)


class GatedStorage(InMemoryStorage):
    """In-memory storage whose saves wait until ``gate`` is set."""

    def __init__(self):
        super().__init__()
        self.gate = asyncio.Event()
        self.gate.set()
        self.save_started = asyncio.Event()

    async def save(self, key: str, value: Any) -> None:
        self.save_started.set()
        await self.gate.wait()
        await super().save(key, value)


class EventRecorder:
    """Collects events of every kind published on a bus."""

    def __init__(self):
        self.events: List[ChangeEvent] = []

    def __call__(self, event: ChangeEvent) -> None:
        self.events.append(event)

    def of_kind(self, kind: ChangeEventKind) -> List[ChangeEvent]:
        return [event for event in self.events if event.kind is kind]


# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def failing_storage() -> FailingStorage:
    return FailingStorage()


@pytest.fixture
def default_data() -> Dict[str, Any]:
    """Plain data of the default configuration."""
    return default_configuration().to_data()


@pytest_asyncio.fixture
async def manager(storage) -> ConfigurationManager:
    """Initialized manager over empty in-memory storage."""
    manager = ConfigurationManager(storage)
    await manager.initialize()
    yield manager
    manager.dispose()


@pytest.fixture
def recorder(manager) -> EventRecorder:
    """Recorder subscribed to every event kind of ``manager``."""
    recorder = EventRecorder()
    for kind in ChangeEventKind:
        manager.subscribe(kind, recorder)
    return recorder
