from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
import math
from pathlib import Path
import sqlite3
import time

import redis

from hugstatus.config import QueueConfig


_SQLITE_POLL_INTERVAL_SECONDS = 0.25


class WorkQueueError(RuntimeError):
    """Raised when the durable queue cannot be reached or written."""


class WorkQueue(ABC):
    """Ordered multi-list queue: tail push, atomic head pop, FIFO per list."""

    @abstractmethod
    def push(self, key: str, payload: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def pop(self, key: str, timeout_seconds: float) -> str | None:
        """Remove and return the head of ``key``, or ``None`` after the timeout."""
        raise NotImplementedError

    @abstractmethod
    def length(self, key: str) -> int:
        raise NotImplementedError

    def close(self) -> None:
        return None


class RedisWorkQueue(WorkQueue):
    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> RedisWorkQueue:
        return cls(redis.Redis.from_url(url))

    def push(self, key: str, payload: str) -> None:
        try:
            self._client.rpush(key, payload)
        except redis.RedisError as exc:
            raise WorkQueueError(f"RPUSH {key} failed: {exc}") from exc

    def pop(self, key: str, timeout_seconds: float) -> str | None:
        # BLPOP treats 0 as "block forever"; keep the wait bounded.
        timeout = max(1, math.ceil(timeout_seconds))
        try:
            result = self._client.blpop([key], timeout=timeout)
        except redis.RedisError as exc:
            raise WorkQueueError(f"BLPOP {key} failed: {exc}") from exc
        if result is None:
            return None
        _, value = result
        if isinstance(value, bytes):
            return value.decode("utf-8", errors="replace")
        return str(value)

    def length(self, key: str) -> int:
        try:
            return int(self._client.llen(key))
        except redis.RedisError as exc:
            raise WorkQueueError(f"LLEN {key} failed: {exc}") from exc

    def close(self) -> None:
        self._client.close()


class SqliteWorkQueue(WorkQueue):
    """Single-host durable queue kept in one SQLite file.

    Pops run inside ``BEGIN IMMEDIATE`` so two consumers, even in different
    processes, never receive the same entry.
    """

    def __init__(self, db_path: Path) -> None:
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db_path = db_path
        self._init_schema()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self._db_path, timeout=30, isolation_level=None)
        except sqlite3.Error as exc:
            raise WorkQueueError(f"Cannot open queue database {self._db_path}: {exc}") from exc
        try:
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
            yield conn
        except sqlite3.Error as exc:
            raise WorkQueueError(f"Queue database operation failed: {exc}") from exc
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS queue_entries (
                    entry_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    list_key TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    enqueued_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
                )
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_queue_entries_list_key
                ON queue_entries (list_key, entry_id)
                """
            )

    def push(self, key: str, payload: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO queue_entries (list_key, payload) VALUES (?, ?)",
                (key, payload),
            )

    def pop(self, key: str, timeout_seconds: float) -> str | None:
        deadline = time.monotonic() + max(0.0, timeout_seconds)
        while True:
            payload = self._pop_now(key)
            if payload is not None:
                return payload
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            time.sleep(min(_SQLITE_POLL_INTERVAL_SECONDS, remaining))

    def length(self, key: str) -> int:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM queue_entries WHERE list_key = ?",
                (key,),
            ).fetchone()
        return int(row[0])

    def _pop_now(self, key: str) -> str | None:
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                row = conn.execute(
                    """
                    SELECT entry_id, payload
                    FROM queue_entries
                    WHERE list_key = ?
                    ORDER BY entry_id ASC
                    LIMIT 1
                    """,
                    (key,),
                ).fetchone()
                if row is None:
                    conn.execute("COMMIT")
                    return None
                conn.execute("DELETE FROM queue_entries WHERE entry_id = ?", (row[0],))
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise
        return str(row[1])


def open_work_queue(config: QueueConfig) -> WorkQueue:
    if config.backend == "sqlite":
        if config.path is None:
            raise WorkQueueError("queue.path is required for the sqlite backend")
        return SqliteWorkQueue(config.path)
    return RedisWorkQueue.from_url(config.url)
