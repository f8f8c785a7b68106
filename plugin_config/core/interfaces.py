"""
Core interfaces for the plugin configuration manager.

These abstract base classes define the contracts between the configuration
manager and its collaborators. The manager depends only on these contracts,
so storage backends and event buses can be swapped without touching it.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional


class IStorage(ABC):
    """
    Interface for configuration storage backends.

    Values are plain serializable data (dicts, lists, strings, numbers,
    booleans). Implementations raise StorageError on failure and own any
    retry policy.
    """

    @abstractmethod
    async def save(self, key: str, value: Any) -> None:
        """Persist ``value`` under ``key``, replacing any previous value."""
        pass

    @abstractmethod
    async def load(self, key: str) -> Optional[Any]:
        """
        Load the value stored under ``key``.

        Returns:
            The stored value, or None when nothing is stored under the key
        """
        pass


class IEventBus(ABC):
    """
    Interface for the configuration change bus.

    Provides synchronous publish-subscribe messaging keyed by event kind.
    """

    @abstractmethod
    def publish(self, event: Any) -> int:
        """Deliver an event to every subscriber of its kind."""
        pass

    @abstractmethod
    def subscribe(self, kind: Any, handler: Callable[[Any], None]) -> Callable[[], None]:
        """
        Subscribe to events of a specific kind.

        Returns:
            Callable that removes the subscription
        """
        pass

    @abstractmethod
    def unsubscribe(self, subscription_id: str) -> bool:
        """Remove a subscription by its identifier."""
        pass


class IConfigManager(ABC):
    """Interface for the configuration manager exposed to the host application."""

    @abstractmethod
    async def initialize(self) -> None:
        pass

    @abstractmethod
    def get_config(self) -> Any:
        pass

    @abstractmethod
    async def update_config(self, partial: Dict[str, Any]) -> Any:
        pass

    @abstractmethod
    def validate_config(self, candidate: Any) -> Any:
        pass

    @abstractmethod
    def on_config_changed(self, callback: Callable[[Any], None]) -> Callable[[], None]:
        pass

    @abstractmethod
    async def reset_to_defaults(self) -> Any:
        pass

    @abstractmethod
    def export_config(self) -> str:
        pass

    @abstractmethod
    async def import_config(self, serialized: str) -> Any:
        pass

    @abstractmethod
    def is_modified(self) -> bool:
        pass

    @abstractmethod
    async def create_backup(self, reason: str) -> Any:
        pass

    @abstractmethod
    def get_backups(self) -> List[Any]:
        pass

    @abstractmethod
    async def restore_backup(self, backup: Any) -> Any:
        pass

    @abstractmethod
    def dispose(self) -> None:
        pass
