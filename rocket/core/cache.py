# rocket/core/cache.py
"""
Key/value cache backends

Two interchangeable implementations of the same operation set:
- RedisCache: remote in-memory store behind a shared connection pool
- EmbeddedCache: on-disk store under ``<root>/tmp/badger`` (SQLite file)

Keys are strings, values are bytes, TTLs are seconds (0 = never expires).
"""

import os
import time
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import redis
from sqlalchemy import (
    Column, Float, LargeBinary, MetaData, String, Table, create_engine, delete, func, select, text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from rocket.core.exceptions import CacheUnavailableError

logger = logging.getLogger(__name__)

DEFAULT_REDIS_PORT = 6379


class Cache(ABC):
    """Abstract interface for cache backends"""

    @abstractmethod
    def has(self, key: str) -> bool:
        ...

    @abstractmethod
    def get(self, key: str) -> Optional[bytes]:
        """Return the stored value, or None when missing or expired"""
        ...

    @abstractmethod
    def set(self, key: str, value: bytes, ttl: int = 0) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...

    @abstractmethod
    def empty_by_prefix(self, prefix: str) -> None:
        """Remove every entry whose key starts with ``prefix``"""
        ...

    @abstractmethod
    def empty(self) -> None:
        """Remove every entry owned by this cache"""
        ...

    @abstractmethod
    def close(self) -> None:
        ...


@dataclass(frozen=True)
class RedisPoolOptions:
    """Pool sizing for the remote cache and the session store that shares it"""
    max_idle: int = 50
    max_active: int = 10000
    idle_timeout: int = 240       # seconds
    health_check_interval: int = 1  # ping connections idle longer than this when borrowed


def split_host(host: str):
    """Split ``host[:port]`` into its parts"""
    name, sep, port = host.rpartition(':')
    if not sep:
        return host, DEFAULT_REDIS_PORT
    return name, int(port)


def create_redis_pool(host: str, password: str = '',
                      options: RedisPoolOptions = RedisPoolOptions()) -> redis.ConnectionPool:
    """
    Create the connection pool shared by the remote cache and session store

    Connections are opened lazily; nothing touches the network here.
    """
    hostname, port = split_host(host)
    pool = redis.ConnectionPool(
        host=hostname,
        port=port,
        password=password or None,
        max_connections=options.max_active,
        health_check_interval=options.health_check_interval,
        socket_keepalive=True,
        socket_connect_timeout=5,
    )
    logger.info(f"Redis pool created for {hostname}:{port} (max {options.max_active} connections)")
    return pool


class RedisCache(Cache):
    """Cache stored in Redis under ``<prefix>:<key>``"""

    def __init__(self, pool: redis.ConnectionPool, prefix: str = ''):
        self.pool = pool
        self.prefix = prefix
        self._client = redis.Redis(connection_pool=pool)

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    def has(self, key: str) -> bool:
        return bool(self._client.exists(self._key(key)))

    def get(self, key: str) -> Optional[bytes]:
        return self._client.get(self._key(key))

    def set(self, key: str, value: bytes, ttl: int = 0) -> None:
        if ttl > 0:
            self._client.setex(self._key(key), ttl, value)
        else:
            self._client.set(self._key(key), value)

    def delete(self, key: str) -> None:
        self._client.delete(self._key(key))

    def empty_by_prefix(self, prefix: str) -> None:
        self._delete_matching(self._key(prefix) + '*')

    def empty(self) -> None:
        self._delete_matching(self._key('*'))

    def _delete_matching(self, pattern: str) -> None:
        keys = list(self._client.scan_iter(match=pattern, count=500))
        if keys:
            self._client.delete(*keys)

    def close(self) -> None:
        self.pool.disconnect()


class EmbeddedCache(Cache):
    """
    On-disk cache for single-node deployments

    Expired entries are invisible to readers immediately and physically
    removed by ``run_value_log_gc``, which the scheduler calls daily.
    """

    FILENAME = 'cache.db'

    def __init__(self, path: str):
        self.path = path
        self._metadata = MetaData()
        self._entries = Table(
            'cache_entries', self._metadata,
            Column('key', String(512), primary_key=True),
            Column('value', LargeBinary, nullable=False),
            Column('expires_at', Float, nullable=True),
        )
        try:
            os.makedirs(path, mode=0o755, exist_ok=True)
            self.engine: Engine = create_engine(
                f"sqlite:///{os.path.join(path, self.FILENAME)}",
                connect_args={'check_same_thread': False, 'timeout': 20},
            )
            self._metadata.create_all(self.engine)
        except (OSError, SQLAlchemyError) as e:
            raise CacheUnavailableError(f"cannot open embedded cache at {path}: {e}") from e

    def _live(self, now: float):
        expires = self._entries.c.expires_at
        return (expires.is_(None)) | (expires > now)

    def has(self, key: str) -> bool:
        return self.get(key) is not None

    def get(self, key: str) -> Optional[bytes]:
        stmt = select(self._entries.c.value).where(
            self._entries.c.key == key, self._live(time.time())
        )
        with self.engine.connect() as conn:
            return conn.execute(stmt).scalar_one_or_none()

    def set(self, key: str, value: bytes, ttl: int = 0) -> None:
        expires_at = time.time() + ttl if ttl > 0 else None
        with self.engine.begin() as conn:
            conn.execute(delete(self._entries).where(self._entries.c.key == key))
            conn.execute(self._entries.insert().values(key=key, value=value, expires_at=expires_at))

    def delete(self, key: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(delete(self._entries).where(self._entries.c.key == key))

    def empty_by_prefix(self, prefix: str) -> None:
        escaped = prefix.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')
        with self.engine.begin() as conn:
            conn.execute(delete(self._entries).where(
                self._entries.c.key.like(escaped + '%', escape='\\')
            ))

    def empty(self) -> None:
        with self.engine.begin() as conn:
            conn.execute(delete(self._entries))

    def count(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(self._entries)).scalar_one()

    def run_value_log_gc(self, discard_ratio: float) -> bool:
        """
        Drop expired entries and reclaim disk space

        The file is only rewritten (VACUUM) once at least ``discard_ratio``
        of its pages are free.

        Returns:
            True if the file was rewritten
        """
        if not 0 < discard_ratio < 1:
            raise ValueError("discard_ratio must be between 0 and 1")

        expires = self._entries.c.expires_at
        with self.engine.begin() as conn:
            removed = conn.execute(
                delete(self._entries).where(expires.is_not(None), expires <= time.time())
            ).rowcount

        with self.engine.connect().execution_options(isolation_level='AUTOCOMMIT') as conn:
            free = conn.execute(text('PRAGMA freelist_count')).scalar_one()
            total = conn.execute(text('PRAGMA page_count')).scalar_one()
            if not total or free / total < discard_ratio:
                logger.debug(f"Embedded cache GC removed {removed} entries, no rewrite")
                return False
            conn.execute(text('VACUUM'))

        logger.info(f"Embedded cache GC removed {removed} entries and rewrote {self.path}")
        return True

    def close(self) -> None:
        self.engine.dispose()
