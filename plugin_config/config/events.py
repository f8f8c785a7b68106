"""
Change notification bus for configuration lifecycle events.

Subscribers register per event kind and receive events synchronously, in
subscription order. A failing handler is logged and skipped; it never stops
delivery to the remaining handlers.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..core.interfaces import IEventBus
from .schema import PluginConfiguration, ValidationResult

logger = logging.getLogger(__name__)


class ChangeEventKind(Enum):
    """Kinds of configuration lifecycle events."""
    CHANGED = "changed"
    VALIDATED = "validated"
    RESET = "reset"
    IMPORTED = "imported"
    EXPORTED = "exported"
    MIGRATED = "migrated"


@dataclass(frozen=True)
class ChangeEvent:
    """Base class for configuration events."""
    kind = None
    timestamp: datetime = field(default_factory=datetime.now, kw_only=True)


@dataclass(frozen=True)
class ConfigChangedEvent(ChangeEvent):
    previous: PluginConfiguration
    current: PluginConfiguration
    changed_fields: Tuple[str, ...]
    kind = ChangeEventKind.CHANGED


@dataclass(frozen=True)
class ConfigValidatedEvent(ChangeEvent):
    config: Any
    result: ValidationResult
    kind = ChangeEventKind.VALIDATED

    @property
    def is_valid(self) -> bool:
        return self.result.is_valid


@dataclass(frozen=True)
class ConfigResetEvent(ChangeEvent):
    previous: PluginConfiguration
    current: PluginConfiguration
    kind = ChangeEventKind.RESET


@dataclass(frozen=True)
class ConfigImportedEvent(ChangeEvent):
    config: PluginConfiguration
    source: str
    kind = ChangeEventKind.IMPORTED


@dataclass(frozen=True)
class ConfigExportedEvent(ChangeEvent):
    config: PluginConfiguration
    destination: str
    kind = ChangeEventKind.EXPORTED


@dataclass(frozen=True)
class ConfigMigratedEvent(ChangeEvent):
    from_version: str
    to_version: str
    previous: Dict[str, Any]
    current: PluginConfiguration
    kind = ChangeEventKind.MIGRATED


Handler = Callable[[ChangeEvent], None]


@dataclass
class _Subscription:
    subscription_id: str
    kind: ChangeEventKind
    handler: Handler
    once: bool = False


class ChangeBus(IEventBus):
    """
    In-process publish/subscribe bus keyed by ChangeEventKind.

    Subscriptions live in an explicit registry of handler identifiers per
    kind, so unsubscribing is deterministic and idempotent.
    """

    def __init__(self, max_listeners: int = 50):
        self.max_listeners = max_listeners
        self._subscriptions: Dict[ChangeEventKind, List[_Subscription]] = {}

    def subscribe(self, kind: ChangeEventKind, handler: Handler) -> Callable[[], None]:
        """
        Subscribe ``handler`` to events of ``kind``.

        Returns:
            Callable removing the subscription; safe to call more than once
        """
        subscription_id = self._add(kind, handler, once=False)
        return lambda: self.unsubscribe(subscription_id)

    def subscribe_once(self, kind: ChangeEventKind, handler: Handler) -> Callable[[], None]:
        """Subscribe a handler that is removed after its first delivery."""
        subscription_id = self._add(kind, handler, once=True)
        return lambda: self.unsubscribe(subscription_id)

    def on_config_changed(self, callback: Callable[[PluginConfiguration], None]) -> Callable[[], None]:
        """Subscribe to changes, receiving only the new configuration."""
        return self.subscribe(ChangeEventKind.CHANGED, lambda event: callback(event.current))

    def unsubscribe(self, subscription_id: str) -> bool:
        """
        Remove a subscription by identifier.

        Returns:
            True if a subscription was removed
        """
        for kind, subscriptions in list(self._subscriptions.items()):
            for i, subscription in enumerate(subscriptions):
                if subscription.subscription_id == subscription_id:
                    del subscriptions[i]
                    if not subscriptions:
                        del self._subscriptions[kind]
                    return True
        return False

    def publish(self, event: ChangeEvent) -> int:
        """
        Deliver ``event`` to every subscriber of its kind.

        Returns:
            Number of handlers that completed without raising
        """
        # Snapshot so handlers may (un)subscribe while we deliver
        subscriptions = list(self._subscriptions.get(event.kind, []))
        delivered = 0

        for subscription in subscriptions:
            if subscription.once:
                self.unsubscribe(subscription.subscription_id)
            try:
                subscription.handler(event)
                delivered += 1
            except Exception as e:
                logger.error(f"Error in {event.kind.value} handler {subscription.subscription_id}: {e}")

        return delivered

    def listener_count(self, kind: Optional[ChangeEventKind] = None) -> int:
        """Number of subscriptions for ``kind`` (or for all kinds)."""
        if kind is not None:
            return len(self._subscriptions.get(kind, []))
        return sum(len(subscriptions) for subscriptions in self._subscriptions.values())

    def clear(self) -> None:
        """Remove every subscription."""
        self._subscriptions.clear()

    def _add(self, kind: ChangeEventKind, handler: Handler, once: bool) -> str:
        kind = ChangeEventKind(kind)
        subscriptions = self._subscriptions.setdefault(kind, [])

        if len(subscriptions) >= self.max_listeners:
            logger.warning(
                f"{len(subscriptions) + 1} handlers subscribed to '{kind.value}'; "
                f"possible subscription leak"
            )

        subscription_id = str(uuid.uuid4())
        subscriptions.append(_Subscription(subscription_id, kind, handler, once))
        return subscription_id
