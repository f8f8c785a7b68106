"""
Storage backends for configuration persistence.

The configuration manager only depends on the IStorage contract. Two
reference backends are provided:
- InMemoryStorage keeps deep copies of values in a dictionary
- FileStorage writes one document per key (JSON, YAML or TOML)
"""

import asyncio
import copy
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional, Union

from ..core.exceptions import ParseError, StorageError
from ..core.interfaces import IStorage
from . import formats
from .schema import ConfigurationFormat

logger = logging.getLogger(__name__)


def write_document_atomic(file_path: Path, text: str) -> None:
    """Write ``text`` through a temporary file in the same directory, then replace."""
    file_path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=file_path.parent, prefix=f".{file_path.name}.")
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            f.write(text)
        os.replace(tmp_name, file_path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


def read_document(file_path: Path) -> Optional[str]:
    """Return the file's text, or None when it does not exist."""
    if not file_path.exists():
        return None
    return file_path.read_text(encoding='utf-8')


class InMemoryStorage(IStorage):
    """Process-local storage. Values are copied on the way in and out."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = copy.deepcopy(initial) if initial else {}

    async def save(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)

    async def load(self, key: str) -> Optional[Any]:
        return copy.deepcopy(self._data.get(key))

    def keys(self):
        return list(self._data)


class FileStorage(IStorage):
    """
    Stores every key as a document in ``base_dir``.

    Key characters outside ``[A-Za-z0-9_.-]`` are replaced so keys such as
    ``plugin-config:backups`` map to valid file names. Writes go through a
    temporary file followed by an atomic replace.
    File I/O runs in a worker thread.
    """

    def __init__(
        self,
        base_dir: Union[str, Path],
        format: ConfigurationFormat = ConfigurationFormat.JSON
    ):
        self.base_dir = Path(base_dir)
        self.format = ConfigurationFormat(format)

    def path_for(self, key: str) -> Path:
        safe_name = re.sub(r'[^A-Za-z0-9_.-]', '_', key)
        return self.base_dir / f"{safe_name}{formats.FILE_EXTENSIONS[self.format]}"

    async def save(self, key: str, value: Any) -> None:
        file_path = self.path_for(key)
        # TOML documents must be tables, so every value is wrapped
        text = formats.dumps({'value': value}, self.format)

        try:
            await asyncio.to_thread(write_document_atomic, file_path, text)
        except OSError as e:
            raise StorageError(f"Failed to write {file_path}: {e}", key=key, operation="save", cause=e)

        logger.debug(f"Saved {key} to {file_path}")

    async def load(self, key: str) -> Optional[Any]:
        file_path = self.path_for(key)
        try:
            text = await asyncio.to_thread(read_document, file_path)
        except OSError as e:
            raise StorageError(f"Failed to read {file_path}: {e}", key=key, operation="load", cause=e)

        if text is None:
            return None

        try:
            document = formats.loads(text, self.format)
        except ParseError as e:
            raise StorageError(f"Corrupt document {file_path}: {e.message}", key=key, operation="load", cause=e)

        if not isinstance(document, dict) or 'value' not in document:
            raise StorageError(f"Unexpected document layout in {file_path}", key=key, operation="load")
        return document['value']


def create_storage(environment: str, **options: Any) -> IStorage:
    """
    Create a storage backend.

    Args:
        environment: ``'memory'`` or ``'file'``
        **options: ``base_dir`` (required for file) and ``format``

    Returns:
        Storage instance
    """
    if environment == 'memory':
        return InMemoryStorage(options.get('initial'))
    if environment == 'file':
        if 'base_dir' not in options:
            raise ValueError("FileStorage requires the base_dir option")
        return FileStorage(options['base_dir'], options.get('format', ConfigurationFormat.JSON))
    raise ValueError(f"Unknown storage environment: {environment}")
