"""
PersistenceStrategy interface for ledger snapshots.

The ledger exports a single LedgerSnapshot blob (events + relationships +
run id). Persistence stores and retrieves that blob under a save key; it
never interprets it. Version checks happen in EventLedger.import_snapshot().

Three included implementations:
1. InMemoryPersistence - dict-backed, lost on exit (tests, prototyping)
2. JsonPersistence - one pretty-printed JSON file per save key
3. PostgresPersistence - JSONB rows keyed by save key (asyncpg pool)

Usage pattern:
    persistence = JsonPersistence("saves")
    await persistence.initialize()
    await persistence.save_snapshot("slot-1", ledger.export_snapshot())
    payload = await persistence.load_snapshot("slot-1")
    await persistence.close()
"""

import asyncio
import json
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

import asyncpg

from .config import Config
from .schemas import LedgerSnapshot


_SAVE_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


def validate_save_key(save_key: str) -> str:
    """Reject keys that could escape a save directory or break a filename."""
    if not save_key or not _SAVE_KEY_PATTERN.match(save_key) or save_key.startswith("."):
        raise ValueError(
            f"Invalid save key {save_key!r}: use letters, digits, '.', '_' or '-' "
            "and do not start with '.'"
        )
    return save_key


class PersistenceStrategy(ABC):
    """Abstract base class for snapshot storage.

    All methods are async so database and file backends never block the
    game loop. initialize() and close() manage pools and directories.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare the backend (create pool, tables or directories)."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release backend resources."""
        pass

    @abstractmethod
    async def save_snapshot(self, save_key: str, snapshot: LedgerSnapshot) -> None:
        """Store ``snapshot`` under ``save_key``, replacing any previous save."""
        pass

    @abstractmethod
    async def load_snapshot(self, save_key: str) -> Optional[Dict[str, Any]]:
        """Return the raw JSON payload saved under ``save_key`` or None."""
        pass

    @abstractmethod
    async def delete_snapshot(self, save_key: str) -> bool:
        """Delete a save. Returns True if something was deleted."""
        pass

    @abstractmethod
    async def list_saves(self) -> List[str]:
        """Return all save keys, sorted."""
        pass


class InMemoryPersistence(PersistenceStrategy):
    """Dict-backed storage. Payloads are stored as JSON-mode dicts so a load
    never aliases live ledger objects."""

    def __init__(self):
        self.saves: Dict[str, Dict[str, Any]] = {}

    async def initialize(self) -> None:
        pass

    async def close(self) -> None:
        # Data is kept so callers can still read saves after close.
        pass

    async def save_snapshot(self, save_key: str, snapshot: LedgerSnapshot) -> None:
        self.saves[save_key] = snapshot.model_dump(mode="json")

    async def load_snapshot(self, save_key: str) -> Optional[Dict[str, Any]]:
        payload = self.saves.get(save_key)
        return json.loads(json.dumps(payload)) if payload is not None else None

    async def delete_snapshot(self, save_key: str) -> bool:
        return self.saves.pop(save_key, None) is not None

    async def list_saves(self) -> List[str]:
        return sorted(self.saves)


class JsonPersistence(PersistenceStrategy):
    """File-based storage, one human-readable file per save.

    Directory structure:
    ```
    {base_path}/
      slot-1.json
      autosave.json
    ```

    All file I/O runs in a worker thread (asyncio.to_thread).
    """

    def __init__(self, base_path: Optional[Path | str] = None):
        self.base_path = Path(base_path) if base_path is not None else Config.SAVE_DIR

    def _path(self, save_key: str) -> Path:
        return self.base_path / f"{validate_save_key(save_key)}.json"

    async def initialize(self) -> None:
        await asyncio.to_thread(self.base_path.mkdir, parents=True, exist_ok=True)

    async def close(self) -> None:
        pass

    async def save_snapshot(self, save_key: str, snapshot: LedgerSnapshot) -> None:
        path = self._path(save_key)
        payload = snapshot.model_dump(mode="json")
        await asyncio.to_thread(path.parent.mkdir, parents=True, exist_ok=True)
        await asyncio.to_thread(path.write_text, json.dumps(payload, indent=2), "utf-8")

    async def load_snapshot(self, save_key: str) -> Optional[Dict[str, Any]]:
        path = self._path(save_key)
        if not path.exists():
            return None
        text = await asyncio.to_thread(path.read_text, "utf-8")
        return json.loads(text)

    async def delete_snapshot(self, save_key: str) -> bool:
        path = self._path(save_key)
        if not path.exists():
            return False
        await asyncio.to_thread(path.unlink)
        return True

    async def list_saves(self) -> List[str]:
        if not self.base_path.exists():
            return []
        paths = await asyncio.to_thread(lambda: sorted(self.base_path.glob("*.json")))
        return [path.stem for path in paths]


class PostgresPersistence(PersistenceStrategy):
    """PostgreSQL storage: one JSONB row per save key.

    initialize() creates the connection pool and the ``rapport_saves``
    table if it does not exist yet.
    """

    CREATE_TABLE = """
        CREATE TABLE IF NOT EXISTS rapport_saves (
            save_key TEXT PRIMARY KEY,
            snapshot JSONB NOT NULL,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """

    def __init__(self, database_url: Optional[str] = None):
        self.database_url = database_url or Config.DATABASE_URL
        self.pool: Optional[asyncpg.Pool] = None

    async def initialize(self) -> None:
        if self.pool is None:
            self.pool = await asyncpg.create_pool(self.database_url)
        async with self.pool.acquire() as conn:
            await conn.execute(self.CREATE_TABLE)

    async def close(self) -> None:
        if self.pool is not None:
            await self.pool.close()
            self.pool = None

    async def save_snapshot(self, save_key: str, snapshot: LedgerSnapshot) -> None:
        assert self.pool is not None, "Persistence not initialized"

        query = """
            INSERT INTO rapport_saves (save_key, snapshot, updated_at)
            VALUES ($1, $2::jsonb, now())
            ON CONFLICT (save_key) DO UPDATE SET snapshot = $2::jsonb, updated_at = now()
        """
        async with self.pool.acquire() as conn:
            await conn.execute(query, save_key, snapshot.model_dump_json())

    async def load_snapshot(self, save_key: str) -> Optional[Dict[str, Any]]:
        assert self.pool is not None, "Persistence not initialized"

        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT snapshot FROM rapport_saves WHERE save_key = $1", save_key
            )
        if not row:
            return None
        return json.loads(row["snapshot"])

    async def delete_snapshot(self, save_key: str) -> bool:
        assert self.pool is not None, "Persistence not initialized"

        async with self.pool.acquire() as conn:
            status = await conn.execute("DELETE FROM rapport_saves WHERE save_key = $1", save_key)
        # asyncpg returns the command tag, e.g. "DELETE 1"
        return status.split()[-1] != "0"

    async def list_saves(self) -> List[str]:
        assert self.pool is not None, "Persistence not initialized"

        async with self.pool.acquire() as conn:
            rows = await conn.fetch("SELECT save_key FROM rapport_saves ORDER BY save_key")
        return [row["save_key"] for row in rows]
