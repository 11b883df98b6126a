"""
Alerts Module - Persistence Port.

============================================================
RESPONSIBILITY
============================================================
Durable key -> text blob storage for alert state.

- PersistencePort: the interface the store depends on
- InMemoryPersistence: process-local, for tests and --storage memory
- JsonFilePersistence: one JSON file per key in a directory
- SqlPersistence: key_value_store table via SQLAlchemy asyncio

Implementations raise on failure. Callers decide how to degrade.
No implementation blocks the event loop: file I/O runs in a worker
thread and SQL goes through an async driver.

============================================================
"""

import asyncio
import logging
import os
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional, Union

from sqlalchemy.ext.asyncio import AsyncEngine

from database.engine import create_all_tables, create_session_factory, transaction_scope
from database.models import KeyValueRecord


logger = logging.getLogger(__name__)


class PersistencePort(ABC):
    """Async key-value blob storage."""

    async def initialize(self) -> None:
        """
        Prepare the backend before first use.

        Raises:
            Exception: If the backend cannot be used at all
        """
        return None

    @abstractmethod
    async def read(self, key: str) -> Optional[str]:
        """Read the blob under key, or None if absent."""
        pass

    @abstractmethod
    async def write(self, key: str, blob: str) -> None:
        """Replace the blob under key."""
        pass

    async def close(self) -> None:
        """Release resources."""
        return None


class InMemoryPersistence(PersistencePort):
    """Dictionary-backed storage."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    async def read(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def write(self, key: str, blob: str) -> None:
        self._data[key] = blob

    def snapshot(self) -> Dict[str, str]:
        return dict(self._data)


class JsonFilePersistence(PersistencePort):
    """
    One file per key under a directory.

    Writes go to a temporary file that replaces the target, so a crash
    mid-write leaves the previous blob intact.
    """

    _UNSAFE = re.compile(r"[^A-Za-z0-9._-]")

    def __init__(self, directory: Union[str, Path]):
        self._directory = Path(directory)

    @property
    def directory(self) -> Path:
        return self._directory

    def path_for(self, key: str) -> Path:
        return self._directory / f"{self._UNSAFE.sub('_', key)}.json"

    async def read(self, key: str) -> Optional[str]:
        return await asyncio.to_thread(self._read_file, self.path_for(key))

    async def write(self, key: str, blob: str) -> None:
        await asyncio.to_thread(self._write_file, self.path_for(key), blob)

    @staticmethod
    def _read_file(path: Path) -> Optional[str]:
        if not path.exists():
            return None
        with open(path, "r", encoding="utf-8") as f:
            return f.read()

    @staticmethod
    def _write_file(path: Path, blob: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(".json.tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(blob)
        os.replace(tmp_path, path)


class SqlPersistence(PersistencePort):
    """
    Storage in the key_value_store table.

    Tables are created on initialize(), or lazily on first read/write.
    """

    def __init__(self, engine: AsyncEngine, create_tables: bool = True):
        self._engine = engine
        self._session_factory = create_session_factory(engine)
        self._create_tables = create_tables
        self._ready = False
        self._init_lock = asyncio.Lock()

    async def initialize(self) -> None:
        """
        Create the table if needed.

        Raises:
            DatabaseInitializationError: If the database cannot be prepared
        """
        async with self._init_lock:
            if self._ready:
                return
            if self._create_tables:
                await create_all_tables(self._engine)
            self._ready = True

    async def read(self, key: str) -> Optional[str]:
        await self.initialize()
        async with transaction_scope(self._session_factory) as session:
            record = await session.get(KeyValueRecord, key)
            return record.value if record is not None else None

    async def write(self, key: str, blob: str) -> None:
        await self.initialize()
        async with transaction_scope(self._session_factory) as session:
            record = await session.get(KeyValueRecord, key)
            if record is None:
                session.add(KeyValueRecord(key=key, value=blob))
            else:
                record.value = blob
        logger.debug(f"Persisted {len(blob)} bytes under '{key}'")

    async def close(self) -> None:
        await self._engine.dispose()
