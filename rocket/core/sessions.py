# rocket/core/sessions.py
"""
Server-side sessions for Flask

The browser only holds a random token in the session cookie; the session
payload lives in one of three stores:
- MemoryStore: process-local dict (the default)
- SQLStore: a ``sessions`` table reached through the relational pool
- RedisStore: keys in Redis, sharing the cache's connection pool
"""

import secrets
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Tuple

import redis
from flask.json.tag import TaggedJSONSerializer
from flask.sessions import SessionInterface, SessionMixin
from sqlalchemy import Column, DateTime, LargeBinary, MetaData, String, Table, delete, select
from sqlalchemy.engine import Engine
from werkzeug.datastructures import CallbackDict

from rocket.core.exceptions import ConfigMissingError

logger = logging.getLogger(__name__)

DEFAULT_LIFETIME_MINUTES = 60
DEFAULT_COOKIE_NAME = 'session'
MEMORY_CLEANUP_INTERVAL = timedelta(minutes=1)

REDIS_STORE_TYPES = ('remote-kv', 'redis')
SQL_STORE_TYPES = ('mysql', 'mariadb', 'postgres', 'postgresql')


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class SessionStore(ABC):
    """Persistence for encoded session payloads keyed by token"""

    @abstractmethod
    def find(self, token: str) -> Optional[bytes]:
        """Return the payload, or None if missing or expired"""
        ...

    @abstractmethod
    def commit(self, token: str, data: bytes, expiry: datetime) -> None:
        ...

    @abstractmethod
    def delete(self, token: str) -> None:
        ...


class MemoryStore(SessionStore):
    """
    Thread-safe in-process store; sessions are lost on restart

    Expired entries are swept on commit, at most once per ``cleanup_interval``.
    """

    def __init__(self, cleanup_interval: timedelta = MEMORY_CLEANUP_INTERVAL):
        self._items: Dict[str, Tuple[bytes, datetime]] = {}
        self._lock = threading.Lock()
        self.cleanup_interval = cleanup_interval
        self._next_sweep = _utcnow() + cleanup_interval

    def find(self, token: str) -> Optional[bytes]:
        with self._lock:
            item = self._items.get(token)
            if item is None:
                return None
            data, expiry = item
            if expiry <= _utcnow():
                del self._items[token]
                return None
            return data

    def commit(self, token: str, data: bytes, expiry: datetime) -> None:
        with self._lock:
            self._items[token] = (data, expiry)
            now = _utcnow()
            if now >= self._next_sweep:
                self._sweep(now)

    def delete(self, token: str) -> None:
        with self._lock:
            self._items.pop(token, None)

    def delete_expired(self) -> int:
        """Remove every expired entry and return how many were dropped"""
        with self._lock:
            return self._sweep(_utcnow())

    def _sweep(self, now: datetime) -> int:
        # Caller holds the lock
        expired = [token for token, (_, expiry) in self._items.items() if expiry <= now]
        for token in expired:
            del self._items[token]
        self._next_sweep = now + self.cleanup_interval
        return len(expired)


class SQLStore(SessionStore):
    """
    Store backed by a ``sessions`` table

    Works with any SQLAlchemy engine (PostgreSQL, MySQL/MariaDB). The table
    is normally created by a migration; ``create_table`` exists for tests
    and quick starts.
    """

    def __init__(self, pool: Engine, table_name: str = 'sessions'):
        self.pool = pool
        self._metadata = MetaData()
        self.table = Table(
            table_name, self._metadata,
            Column('token', String(64), primary_key=True),
            Column('data', LargeBinary, nullable=False),
            Column('expiry', DateTime, nullable=False, index=True),
        )

    def create_table(self) -> None:
        self._metadata.create_all(self.pool, checkfirst=True)

    def find(self, token: str) -> Optional[bytes]:
        stmt = select(self.table.c.data).where(
            self.table.c.token == token, self.table.c.expiry > _utcnow()
        )
        with self.pool.connect() as conn:
            return conn.execute(stmt).scalar_one_or_none()

    def commit(self, token: str, data: bytes, expiry: datetime) -> None:
        with self.pool.begin() as conn:
            conn.execute(delete(self.table).where(self.table.c.token == token))
            conn.execute(self.table.insert().values(token=token, data=data, expiry=expiry))

    def delete(self, token: str) -> None:
        with self.pool.begin() as conn:
            conn.execute(delete(self.table).where(self.table.c.token == token))

    def delete_expired(self) -> int:
        """Remove expired rows; the scheduler runs this periodically"""
        with self.pool.begin() as conn:
            removed = conn.execute(delete(self.table).where(self.table.c.expiry <= _utcnow())).rowcount
        if removed:
            logger.info(f"Removed {removed} expired sessions")
        return removed


class RedisStore(SessionStore):
    """Store backed by Redis keys that expire with the session"""

    def __init__(self, pool: redis.ConnectionPool, prefix: str = 'rocket:session:'):
        self.pool = pool
        self.prefix = prefix
        self._client = redis.Redis(connection_pool=pool)

    def find(self, token: str) -> Optional[bytes]:
        return self._client.get(self.prefix + token)

    def commit(self, token: str, data: bytes, expiry: datetime) -> None:
        ttl_ms = int((expiry - _utcnow()).total_seconds() * 1000)
        if ttl_ms <= 0:
            self.delete(token)
            return
        self._client.set(self.prefix + token, data, px=ttl_ms)

    def delete(self, token: str) -> None:
        self._client.delete(self.prefix + token)


class ServerSession(CallbackDict, SessionMixin):
    """Session dict that remembers its token, deadline and whether it changed"""

    def __init__(self, initial=None, token: Optional[str] = None,
                 deadline: Optional[datetime] = None):
        def on_update(self):
            self.modified = True
            self.accessed = True

        super().__init__(initial, on_update)
        self.new = token is None
        self.token = token or secrets.token_urlsafe(32)
        self.deadline = deadline
        self.modified = False
        self.accessed = False


class SessionManager(SessionInterface):
    """
    Flask session interface that loads the session before the handler runs
    and writes it back (once) before the response is sent
    """

    serializer = TaggedJSONSerializer()

    def __init__(self, store: SessionStore, lifetime: timedelta,
                 cookie_name: str = DEFAULT_COOKIE_NAME, cookie_domain: str = '',
                 cookie_persist: bool = True, cookie_secure: bool = False,
                 cookie_samesite: str = 'Lax'):
        self.store = store
        self.lifetime = lifetime
        self.cookie_name = cookie_name or DEFAULT_COOKIE_NAME
        self.cookie_domain = cookie_domain
        self.cookie_persist = cookie_persist
        self.cookie_secure = cookie_secure
        self.cookie_samesite = cookie_samesite

    def _encode(self, session: ServerSession) -> bytes:
        payload = {'deadline': session.deadline.isoformat(), 'values': dict(session)}
        return self.serializer.dumps(payload).encode('utf-8')

    def _decode(self, data: bytes) -> Tuple[datetime, dict]:
        payload = self.serializer.loads(data.decode('utf-8'))
        return datetime.fromisoformat(payload['deadline']), payload['values']

    def open_session(self, app, request) -> ServerSession:
        token = request.cookies.get(self.cookie_name)
        if token:
            data = self.store.find(token)
            if data is not None:
                deadline, values = self._decode(data)
                if deadline > _utcnow():
                    return ServerSession(values, token=token, deadline=deadline)
        return ServerSession(deadline=_utcnow() + self.lifetime)

    def save_session(self, app, session: ServerSession, response) -> None:
        if session.accessed:
            response.vary.add('Cookie')

        if not session.modified:
            return

        if not session:
            # Emptied or destroyed: drop it from the store and expire the cookie
            if not session.new:
                self.store.delete(session.token)
                response.delete_cookie(
                    self.cookie_name, path='/', domain=self.cookie_domain or None,
                    secure=self.cookie_secure, httponly=True, samesite=self.cookie_samesite,
                )
            return

        self.store.commit(session.token, self._encode(session), session.deadline)
        response.set_cookie(
            self.cookie_name,
            session.token,
            expires=session.deadline if self.cookie_persist else None,
            path='/',
            domain=self.cookie_domain or None,
            secure=self.cookie_secure,
            httponly=True,
            samesite=self.cookie_samesite,
        )

    def renew_token(self, session: ServerSession) -> None:
        """Give the session a fresh token, e.g. after a privilege change"""
        if not session.new:
            self.store.delete(session.token)
        session.token = secrets.token_urlsafe(32)
        session.new = True
        session.modified = True

    def destroy(self, session: ServerSession) -> None:
        """Remove the session from the store and clear its data"""
        self.store.delete(session.token)
        session.clear()
        session.modified = True
        session.new = False


@dataclass
class Session:
    """Session settings as read from the environment, plus the shared pools"""
    cookie_lifetime: str = ''
    cookie_persist: str = ''
    cookie_name: str = ''
    cookie_domain: str = ''
    session_type: str = ''
    cookie_secure: str = ''
    db_pool: Optional[Engine] = None
    redis_pool: Optional[redis.ConnectionPool] = None

    def init_session(self) -> SessionManager:
        """Build the session manager for the configured store"""
        try:
            minutes = int(self.cookie_lifetime)
        except ValueError:
            minutes = DEFAULT_LIFETIME_MINUTES

        persist = self.cookie_persist.lower() == 'true'
        secure = self.cookie_secure.lower() == 'true'

        session_type = self.session_type.lower()
        if session_type in REDIS_STORE_TYPES:
            if self.redis_pool is None:
                raise ConfigMissingError("SESSION_TYPE remote-kv requires a Redis pool (set REDIS_HOST)")
            store = RedisStore(self.redis_pool)
        elif session_type in SQL_STORE_TYPES:
            if self.db_pool is None:
                raise ConfigMissingError(
                    f"SESSION_TYPE {session_type} requires a relational database (set DATABASE_TYPE)"
                )
            store = SQLStore(self.db_pool)
        else:
            store = MemoryStore()

        logger.info(f"Session store: {type(store).__name__}, lifetime {minutes} minutes")
        return SessionManager(
            store=store,
            lifetime=timedelta(minutes=minutes),
            cookie_name=self.cookie_name,
            cookie_domain=self.cookie_domain,
            cookie_persist=persist,
            cookie_secure=secure,
            cookie_samesite='Lax',
        )
