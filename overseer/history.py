"""
Bounded, persisted alert history.

Newest entries first. Every append is written through an ``AlertStore``;
a failing store is logged and the history keeps working in memory.
"""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
from collections import deque
from collections.abc import Iterable
from pathlib import Path
from typing import Any, Protocol

from redis.asyncio import Redis

from .config import settings
from .models import AlertHistoryEntry, ResultStatus, SupervisorResult, now_ms
from .redis_client import get_redis_client
from .text import preview

logger = logging.getLogger(__name__)

DEFAULT_MESSAGE = "Alert without message"


class AlertStore(Protocol):
    """Durable backing for the alert history."""

    async def load(self) -> list[AlertHistoryEntry]: ...

    async def save(self, entry: AlertHistoryEntry, entries: list[AlertHistoryEntry]) -> None: ...

    async def clear(self) -> None: ...


class MemoryAlertStore:
    def __init__(self) -> None:
        self.entries: list[AlertHistoryEntry] = []

    async def load(self) -> list[AlertHistoryEntry]:
        return list(self.entries)

    async def save(self, entry: AlertHistoryEntry, entries: list[AlertHistoryEntry]) -> None:
        self.entries = list(entries)

    async def clear(self) -> None:
        self.entries = []


class JsonFileAlertStore:
    """Whole history rewritten as a JSON list on every save."""

    def __init__(self, path: Path | None = None) -> None:
        self.path = path or settings.history_file

    async def load(self) -> list[AlertHistoryEntry]:
        data = await asyncio.to_thread(self._read)
        if data is None:
            return []
        if not isinstance(data, list):
            raise ValueError(f"{self.path} does not hold a JSON list")
        return [AlertHistoryEntry.from_dict(item) for item in data]

    async def save(self, entry: AlertHistoryEntry, entries: list[AlertHistoryEntry]) -> None:
        payload = json.dumps([e.to_dict() for e in entries], ensure_ascii=False, indent=2)
        await asyncio.to_thread(self._write, payload)

    async def clear(self) -> None:
        await asyncio.to_thread(self.path.unlink, missing_ok=True)

    def _read(self) -> Any:
        if not self.path.exists():
            return None
        return json.loads(self.path.read_text(encoding="utf-8"))

    def _write(self, payload: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".tmp")
        tmp_path.write_text(payload, encoding="utf-8")
        tmp_path.replace(self.path)


class RedisAlertStore:
    """Redis list, newest at the head, trimmed to the history capacity."""

    def __init__(self, redis: Redis, key: str | None = None, capacity: int | None = None) -> None:
        self._redis = redis
        self.key = key or settings.history_key
        self.capacity = capacity or settings.history_capacity

    async def load(self) -> list[AlertHistoryEntry]:
        raw = await self._redis.lrange(self.key, 0, self.capacity - 1)
        return [AlertHistoryEntry.from_dict(json.loads(item)) for item in raw]

    async def save(self, entry: AlertHistoryEntry, entries: list[AlertHistoryEntry]) -> None:
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.lpush(self.key, json.dumps(entry.to_dict(), ensure_ascii=False))
            pipe.ltrim(self.key, 0, self.capacity - 1)
            await pipe.execute()

    async def clear(self) -> None:
        await self._redis.delete(self.key)


def create_store(backend: str | None = None) -> AlertStore:
    backend = (backend or settings.history_backend).lower()
    if backend == "memory":
        return MemoryAlertStore()
    if backend == "redis":
        return RedisAlertStore(get_redis_client())
    if backend == "file":
        return JsonFileAlertStore()
    raise ValueError(f"Unknown history backend: {backend}")


def new_entry_id() -> str:
    return f"alert-{now_ms()}-{secrets.token_hex(4)}"


class AlertHistory:
    """Fixed-capacity alert log, newest first."""

    def __init__(self, store: AlertStore | None = None, capacity: int | None = None) -> None:
        self.capacity = capacity or settings.history_capacity
        self._store: AlertStore = store if store is not None else MemoryAlertStore()
        self._entries: deque[AlertHistoryEntry] = deque(maxlen=self.capacity)

    def __len__(self) -> int:
        return len(self._entries)

    async def load(self) -> int:
        """Restore persisted entries. Returns how many were loaded."""
        try:
            loaded = await self._store.load()
        except Exception as exc:
            logger.warning("Could not load alert history: %s", exc)
            return 0
        self._entries = deque(loaded[: self.capacity], maxlen=self.capacity)
        return len(self._entries)

    async def append(self, result: SupervisorResult, chunk_content: str) -> AlertHistoryEntry:
        entry = AlertHistoryEntry(
            id=new_entry_id(),
            supervisor_name=result.supervisor_name,
            message=result.message or DEFAULT_MESSAGE,
            status=result.status.value,
            timestamp=now_ms(),
            chunk_preview=preview(chunk_content, 200),
        )
        # maxlen evicts the oldest entry from the tail.
        self._entries.appendleft(entry)
        await self._persist(entry)
        return entry

    async def extend(
        self, results: Iterable[SupervisorResult], chunk_content: str
    ) -> list[AlertHistoryEntry]:
        return [await self.append(r, chunk_content) for r in results]

    async def _persist(self, entry: AlertHistoryEntry) -> None:
        try:
            await self._store.save(entry, list(self._entries))
        except Exception as exc:
            logger.warning("Alert history not persisted, keeping it in memory: %s", exc)

    async def clear(self) -> None:
        self._entries.clear()
        try:
            await self._store.clear()
        except Exception as exc:
            logger.warning("Could not clear persisted alert history: %s", exc)

    def entries(self) -> list[AlertHistoryEntry]:
        return list(self._entries)

    def by_supervisor(self, name: str) -> list[AlertHistoryEntry]:
        return [e for e in self._entries if e.supervisor_name == name]

    def within(self, window_seconds: float, *, now: int | None = None) -> list[AlertHistoryEntry]:
        """Entries newer than ``window_seconds`` ago."""
        cutoff = (now if now is not None else now_ms()) - int(window_seconds * 1000)
        return [e for e in self._entries if e.timestamp > cutoff]

    def pending(
        self, window_seconds: float | None = None, *, now: int | None = None
    ) -> list[AlertHistoryEntry]:
        """Recent entries still marked ``alert``."""
        window = settings.pending_alert_window if window_seconds is None else window_seconds
        return [
            e for e in self.within(window, now=now) if e.status == ResultStatus.ALERT.value
        ]

    def to_list(self) -> list[dict[str, Any]]:
        return [e.to_dict() for e in self._entries]
