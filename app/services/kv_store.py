"""
Key-value store capability backed by the kv_entries table.
"""
import asyncio
import logging
from typing import Callable, Optional, Protocol

from sqlalchemy.orm import Session

from app.database import SessionLocal
from app.models.kv_entry import KeyValueEntry

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    async def get(self, key: str) -> Optional[str]:
        ...

    async def set(self, key: str, value: str) -> None:
        ...


class SqlKeyValueStore:
    """Each call opens its own session, so it is safe to use from background tasks."""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self.session_factory = session_factory

    async def get(self, key: str) -> Optional[str]:
        return await asyncio.to_thread(self._get, key)

    async def set(self, key: str, value: str) -> None:
        await asyncio.to_thread(self._set, key, value)

    def _get(self, key: str) -> Optional[str]:
        with self.session_factory() as db:
            entry = db.get(KeyValueEntry, key)
            return entry.value if entry else None

    def _set(self, key: str, value: str) -> None:
        with self.session_factory() as db:
            entry = db.get(KeyValueEntry, key)
            if entry is None:
                db.add(KeyValueEntry(key=key, value=value))
            else:
                entry.value = value
            try:
                db.commit()
            except Exception:
                db.rollback()
                raise
        logger.info(f"KV set {key} ({len(value)} chars)")
