"""
kv/store.py -- Expiring key-value store used as ShareNote's only persistence.

The service needs exactly eight operations from its storage collaborator:
get / set / setex / delete / keys / smembers / sadd / srem. Two backends
implement them behind the KeyValueStore protocol:

  SQLKeyValueStore   -- SQLite via SQLAlchemy. Single-node deployments, local
                        development and the test suite. Expiry is checked on
                        read (same approach as a TTL cache) and purged by the
                        background loop in api/main.py.
  RedisKeyValueStore -- redis.asyncio. Production; Redis owns expiry.

open_store(url) picks the backend from the URL scheme.

Every operation is a coroutine bounded by a caller-imposed timeout. Timeouts
and transport failures surface as core.errors.TransientError and are never
retried here -- retry policy belongs to the caller.

Values are plain strings. JSON encoding of records is the caller's concern
(see auth/store.py).

Layer rule: kv/ may import from core/ only.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any, Optional, Protocol, TypeVar

import redis.asyncio as redis_asyncio
from redis.exceptions import RedisError
from sqlalchemy import Column, Float, MetaData, String, Table, Text, create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from core.errors import TransientError

logger = logging.getLogger("sharenote.kv")

T = TypeVar("T")


class KeyValueStore(Protocol):
    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str) -> None: ...

    async def setex(self, key: str, ttl_seconds: int, value: str) -> None: ...

    async def delete(self, *keys: str) -> int: ...

    async def keys(self, pattern: str) -> list[str]: ...

    async def smembers(self, key: str) -> set[str]: ...

    async def sadd(self, key: str, *members: str) -> int: ...

    async def srem(self, key: str, *members: str) -> int: ...

    async def ping(self) -> bool: ...

    async def close(self) -> None: ...


# ---------------------------------------------------------------------------
# SQL backend
# ---------------------------------------------------------------------------

_metadata = MetaData()

_entries = Table(
    "kv_entries",
    _metadata,
    Column("key", String(512), primary_key=True),
    Column("value", Text, nullable=False),
    Column("expires_at", Float),  # epoch seconds; NULL = no expiry
)

_set_members = Table(
    "kv_set_members",
    _metadata,
    Column("key", String(512), primary_key=True),
    Column("member", String(512), primary_key=True),
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block on writers."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _glob_to_like(pattern: str) -> str:
    """Translate a Redis-style glob (only * and ?) into a LIKE pattern with \\ escapes."""
    escaped = pattern.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return escaped.replace("*", "%").replace("?", "_")


class SQLKeyValueStore:
    """SQLite-backed KeyValueStore.

    Usage:
        store = SQLKeyValueStore("sqlite:///./sharenote_kv.db")
        await store.setex("verification:register:a@x.com", 300, "123456")
        code = await store.get("verification:register:a@x.com")
        store.purge_expired()
        await store.close()

    The engine is synchronous; each coroutine runs its query in a worker
    thread so the event loop never blocks on disk I/O.
    """

    def __init__(self, db_url: str, timeout: float = 5.0) -> None:
        self.timeout = timeout
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite") and "mode=memory" not in db_url:
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        try:
            return await asyncio.wait_for(asyncio.to_thread(fn, *args), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            logger.error("KV operation %s timed out after %.1fs", fn.__name__, self.timeout)
            raise TransientError("Storage backend timed out.") from exc
        except SQLAlchemyError as exc:
            logger.error("KV operation %s failed: %s", fn.__name__, exc)
            raise TransientError("Storage backend unavailable.") from exc

    # ------------------------------------------------------------------
    # Synchronous primitives (run in worker threads)
    # ------------------------------------------------------------------

    def _get(self, key: str) -> Optional[str]:
        with self.engine.connect() as conn:
            row = conn.execute(
                _entries.select().where(_entries.c.key == key)
            ).fetchone()
            if row is None:
                return None
            if row.expires_at is not None and row.expires_at <= time.time():
                conn.execute(_entries.delete().where(_entries.c.key == key))
                conn.commit()
                return None
        return row.value

    def _put(self, key: str, value: str, expires_at: Optional[float]) -> None:
        with self.engine.connect() as conn:
            conn.execute(
                text("INSERT OR REPLACE INTO kv_entries (key, value, expires_at) VALUES (:key, :value, :expires_at)"),
                {"key": key, "value": value, "expires_at": expires_at},
            )
            conn.commit()

    def _delete(self, keys: tuple[str, ...]) -> int:
        with self.engine.connect() as conn:
            removed = conn.execute(_entries.delete().where(_entries.c.key.in_(keys))).rowcount
            set_keys = {
                row.key
                for row in conn.execute(
                    _set_members.select().where(_set_members.c.key.in_(keys))
                ).fetchall()
            }
            conn.execute(_set_members.delete().where(_set_members.c.key.in_(keys)))
            conn.commit()
        return removed + len(set_keys)

    def _keys(self, pattern: str) -> list[str]:
        like = _glob_to_like(pattern)
        now = time.time()
        with self.engine.connect() as conn:
            rows = conn.execute(
                text(
                    "SELECT key FROM kv_entries WHERE key LIKE :p ESCAPE '\\' "
                    "AND (expires_at IS NULL OR expires_at > :now) "
                    "UNION SELECT DISTINCT key FROM kv_set_members WHERE key LIKE :p ESCAPE '\\'"
                ),
                {"p": like, "now": now},
            ).fetchall()
        return sorted(row[0] for row in rows)

    def _smembers(self, key: str) -> set[str]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _set_members.select().where(_set_members.c.key == key)
            ).fetchall()
        return {row.member for row in rows}

    def _sadd(self, key: str, members: tuple[str, ...]) -> int:
        added = 0
        with self.engine.connect() as conn:
            for member in members:
                result = conn.execute(
                    text("INSERT OR IGNORE INTO kv_set_members (key, member) VALUES (:key, :member)"),
                    {"key": key, "member": member},
                )
                added += result.rowcount
            conn.commit()
        return added

    def _srem(self, key: str, members: tuple[str, ...]) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _set_members.delete().where(
                    (_set_members.c.key == key) & (_set_members.c.member.in_(members))
                )
            )
            conn.commit()
        return result.rowcount

    def _ping(self) -> bool:
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    # ------------------------------------------------------------------
    # KeyValueStore protocol
    # ------------------------------------------------------------------

    async def get(self, key: str) -> Optional[str]:
        return await self._run(self._get, key)

    async def set(self, key: str, value: str) -> None:
        await self._run(self._put, key, value, None)

    async def setex(self, key: str, ttl_seconds: int, value: str) -> None:
        await self._run(self._put, key, value, time.time() + ttl_seconds)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return await self._run(self._delete, keys)

    async def keys(self, pattern: str) -> list[str]:
        return await self._run(self._keys, pattern)

    async def smembers(self, key: str) -> set[str]:
        return await self._run(self._smembers, key)

    async def sadd(self, key: str, *members: str) -> int:
        if not members:
            return 0
        return await self._run(self._sadd, key, members)

    async def srem(self, key: str, *members: str) -> int:
        if not members:
            return 0
        return await self._run(self._srem, key, members)

    async def ping(self) -> bool:
        return await self._run(self._ping)

    def purge_expired(self) -> int:
        """Delete all expired entries. Returns number of rows removed."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _entries.delete().where(
                    _entries.c.expires_at.is_not(None) & (_entries.c.expires_at <= time.time())
                )
            )
            conn.commit()
        return result.rowcount

    async def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Redis backend
# ---------------------------------------------------------------------------


class RedisKeyValueStore:
    """KeyValueStore over redis.asyncio. Redis handles TTLs natively.

    The client is injectable so tests can pass a mock; production code uses
    RedisKeyValueStore.from_url().
    """

    def __init__(self, client: Any, timeout: float = 5.0) -> None:
        self._client = client
        self.timeout = timeout

    @classmethod
    def from_url(cls, url: str, timeout: float = 5.0) -> "RedisKeyValueStore":
        client = redis_asyncio.from_url(
            url,
            decode_responses=True,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
        )
        return cls(client, timeout)

    async def _call(self, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            logger.error("Redis call timed out after %.1fs", self.timeout)
            raise TransientError("Storage backend timed out.") from exc
        except RedisError as exc:
            logger.error("Redis call failed: %s", exc)
            raise TransientError("Storage backend unavailable.") from exc

    async def get(self, key: str) -> Optional[str]:
        return await self._call(self._client.get(key))

    async def set(self, key: str, value: str) -> None:
        await self._call(self._client.set(key, value))

    async def setex(self, key: str, ttl_seconds: int, value: str) -> None:
        await self._call(self._client.setex(key, ttl_seconds, value))

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return await self._call(self._client.delete(*keys))

    async def keys(self, pattern: str) -> list[str]:
        return sorted(await self._call(self._client.keys(pattern)))

    async def smembers(self, key: str) -> set[str]:
        return set(await self._call(self._client.smembers(key)))

    async def sadd(self, key: str, *members: str) -> int:
        if not members:
            return 0
        return await self._call(self._client.sadd(key, *members))

    async def srem(self, key: str, *members: str) -> int:
        if not members:
            return 0
        return await self._call(self._client.srem(key, *members))

    async def ping(self) -> bool:
        return bool(await self._call(self._client.ping()))

    async def close(self) -> None:
        await self._client.aclose()


def open_store(url: str, timeout: float = 5.0) -> KeyValueStore:
    """Return the backend matching the URL scheme (redis:// / rediss:// or an SQLAlchemy URL)."""
    if url.startswith(("redis://", "rediss://", "unix://")):
        return RedisKeyValueStore.from_url(url, timeout)
    return SQLKeyValueStore(url, timeout)
