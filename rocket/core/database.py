# rocket/core/database.py
"""
Database opener: a pooled relational engine or a document-store client,
selected by a type tag and verified with a ping before it is handed out.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pymongo import MongoClient
from pymongo.errors import PyMongoError
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import QueuePool

from rocket.core.exceptions import StorageUnavailableError

logger = logging.getLogger(__name__)

RELATIONAL_CONNECT_TIMEOUT = 5   # seconds
DOCUMENT_CONNECT_TIMEOUT = 10    # seconds

# Public type tags mapped onto SQLAlchemy dialect+driver names
DRIVER_ALIASES = {
    'postgres': 'postgresql+psycopg',
    'postgresql': 'postgresql+psycopg',
}


class DatabaseKind(Enum):
    """Which payload a Database handle carries"""
    RELATIONAL = "relational"
    DOCUMENT = "document"


@dataclass(frozen=True)
class Database:
    """
    Tagged database handle

    Exactly one of ``pool`` (relational) or ``client`` (document) is set and
    ``kind`` says which. Consumers dispatch on ``kind``.
    """
    kind: DatabaseKind
    type_name: str
    pool: Optional[Engine] = None
    client: Optional[MongoClient] = None

    def __post_init__(self):
        if self.kind is DatabaseKind.RELATIONAL and (self.pool is None or self.client is not None):
            raise ValueError("relational handle needs a pool and no client")
        if self.kind is DatabaseKind.DOCUMENT and (self.client is None or self.pool is not None):
            raise ValueError("document handle needs a client and no pool")

    @classmethod
    def relational(cls, type_name: str, pool: Engine) -> 'Database':
        return cls(kind=DatabaseKind.RELATIONAL, type_name=type_name, pool=pool)

    @classmethod
    def document(cls, type_name: str, client: MongoClient) -> 'Database':
        return cls(kind=DatabaseKind.DOCUMENT, type_name=type_name, client=client)

    def close(self) -> None:
        if self.kind is DatabaseKind.RELATIONAL:
            self.pool.dispose()
        else:
            self.client.close()


def sqlalchemy_url(dsn: str) -> str:
    """
    Turn a DSN into a SQLAlchemy URL

    ``postgres://`` and ``postgresql://`` URLs get the psycopg driver; other
    URLs (``sqlite:///...``, explicit ``dialect+driver://``) pass through.
    """
    scheme, sep, rest = dsn.partition('://')
    if not sep:
        return dsn
    if scheme in DRIVER_ALIASES:
        return f"{DRIVER_ALIASES[scheme]}://{rest}"
    return dsn


def open_relational(db_type: str, dsn: str) -> Engine:
    """
    Open a pooled relational connection and verify it with a ping

    Args:
        db_type: ``postgres`` or ``postgresql``
        dsn: URL-style DSN or a libpq ``key=value`` connection string

    Raises:
        StorageUnavailableError: if the engine cannot be created or pinged
    """
    driver = DRIVER_ALIASES.get(db_type, db_type)

    engine_options = {
        'poolclass': QueuePool,
        'pool_pre_ping': True,   # Verify connections before use
        'pool_recycle': 3600,
    }

    if '://' in dsn:
        url = sqlalchemy_url(dsn)
        connect_args = {'connect_timeout': RELATIONAL_CONNECT_TIMEOUT}
    else:
        # libpq keyword string, handed to the driver untouched
        url = f"{driver}://"
        connect_args = {'conninfo': dsn, 'connect_timeout': RELATIONAL_CONNECT_TIMEOUT}

    try:
        engine = create_engine(url, connect_args=connect_args, **engine_options)
    except (SQLAlchemyError, ValueError) as e:
        raise StorageUnavailableError(f"cannot open {db_type} database: {e}") from e

    try:
        with engine.connect() as conn:
            conn.execute(text('SELECT 1'))
    except SQLAlchemyError as e:
        engine.dispose()
        raise StorageUnavailableError(f"cannot reach {db_type} database: {e}") from e

    logger.info(f"Relational database verified: {engine.url.render_as_string(hide_password=True)}")
    return engine


def open_document(uri: str) -> MongoClient:
    """
    Open a document-store client and verify it with a ping

    Raises:
        StorageUnavailableError: if the client cannot connect within 10 seconds
    """
    timeout_ms = DOCUMENT_CONNECT_TIMEOUT * 1000
    try:
        client = MongoClient(
            uri,
            serverSelectionTimeoutMS=timeout_ms,
            connectTimeoutMS=timeout_ms,
        )
    except (PyMongoError, ValueError) as e:
        raise StorageUnavailableError(f"cannot open document database: {e}") from e

    try:
        client.admin.command('ping')
    except PyMongoError as e:
        client.close()
        raise StorageUnavailableError(f"cannot reach document database: {e}") from e

    return client
