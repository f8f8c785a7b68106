"""
Bounded backup history for configuration snapshots.

The history is ordered oldest first: ``list()[0]`` is the oldest backup and
``list()[-1]`` the most recent. Once the history grows past ``max_backups``
the oldest entries are evicted first.

The whole history is persisted under ``<storage_key>:backups`` after every
change. Persistence is best effort: a storage failure is logged and kept
in ``last_persist_error`` but never propagated.
"""

import copy
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ..core.exceptions import StorageError
from ..core.interfaces import IStorage
from .schema import Backup

logger = logging.getLogger(__name__)


def backups_key_for(storage_key: str) -> str:
    """Storage key under which the backup history of ``storage_key`` lives."""
    return f"{storage_key}:backups"


class BackupStore:
    """Ring buffer of Backup records backed by a storage port."""

    def __init__(self, storage: IStorage, storage_key: str, max_backups: int = 5):
        if max_backups < 1:
            raise ValueError("max_backups must be at least 1")

        self.storage = storage
        self.key = backups_key_for(storage_key)
        self.max_backups = max_backups
        self.last_persist_error: Optional[StorageError] = None
        self._history: List[Backup] = []

    def __len__(self) -> int:
        return len(self._history)

    async def capture(
        self,
        config: Union[BaseModel, Mapping[str, Any]],
        reason: str
    ) -> Backup:
        """
        Snapshot ``config`` and append it to the history.

        The snapshot is deep-copied before anything else happens, so later
        changes to ``config`` never leak into the backup.
        """
        if isinstance(config, BaseModel):
            snapshot = config.model_dump(mode="json")
        else:
            snapshot = copy.deepcopy(dict(config))

        backup_version = snapshot.get('version')
        backup = Backup(
            timestamp=self._next_timestamp(),
            version=backup_version if isinstance(backup_version, str) else "unknown",
            reason=reason,
            config=snapshot,
        )

        self._history.append(backup)
        self.evict_if_over_bound()
        await self._persist()

        logger.debug(f"Configuration backup created: {reason} ({backup.version})")
        return backup

    def list(self) -> List[Backup]:
        """Return copies of the backups, oldest first."""
        return [backup.model_copy(deep=True) for backup in self._history]

    def restore(self, backup: Backup) -> Dict[str, Any]:
        """Return a deep copy of the snapshot held by ``backup``."""
        return copy.deepcopy(backup.config)

    def evict_if_over_bound(self) -> List[Backup]:
        """
        Drop the oldest backups beyond ``max_backups``.

        Returns:
            The evicted backups, oldest first
        """
        overflow = len(self._history) - self.max_backups
        if overflow <= 0:
            return []

        evicted = self._history[:overflow]
        del self._history[:overflow]

        for backup in evicted:
            logger.debug(f"Removed old backup from {backup.timestamp.isoformat()}")
        return evicted

    async def load(self) -> List[Backup]:
        """
        Replace the in-memory history with the persisted one.

        Unreadable records are skipped with a warning.
        """
        try:
            records = await self.storage.load(self.key)
        except StorageError as e:
            logger.warning(f"Failed to load configuration backups: {e}")
            self.last_persist_error = e
            return self.list()

        history = []
        for record in records or []:
            try:
                history.append(Backup.model_validate(record))
            except PydanticValidationError as e:
                logger.warning(f"Skipping unreadable backup record: {e}")

        history.sort(key=lambda backup: backup.timestamp)
        self._history = history
        self.evict_if_over_bound()
        return self.list()

    def clear(self) -> None:
        """Drop the in-memory history; the persisted copy is left untouched."""
        self._history = []

    # Private methods

    def _next_timestamp(self) -> datetime:
        # Timestamps must stay strictly increasing so ordering by time equals
        # insertion order even when the clock is coarse.
        now = datetime.now()
        if self._history and now <= self._history[-1].timestamp:
            return self._history[-1].timestamp + timedelta(microseconds=1)
        return now

    async def _persist(self) -> None:
        records = [backup.model_dump(mode="json") for backup in self._history]
        try:
            await self.storage.save(self.key, records)
            self.last_persist_error = None
        except StorageError as e:
            self.last_persist_error = e
            logger.warning(f"Failed to persist configuration backups: {e}")
