# rocket/app.py
"""
Composition root for a Rocket application

Rocket wires together, in a fixed order:
- working directories and environment (optionally from ``.env``)
- info/error loggers
- the relational or document database handle
- the periodic task scheduler
- the remote (Redis) or embedded on-disk cache
- mailer, router, session manager and view renderer
- the request middleware pipeline

``serve()`` then blocks in the HTTP server loop and releases every acquired
resource, in reverse order, when it returns.
"""

import os
import signal
import secrets
import logging
import threading
from contextlib import ExitStack
from functools import partial
from typing import List, Optional

import redis
from flask import Flask
from werkzeug.serving import WSGIRequestHandler, make_server

from rocket.config.settings import (
    EMBEDDED_KV, REMOTE_KV, DOCUMENT_TYPES, RELATIONAL_TYPES, VERSION,
    Settings, ServerConfig, build_dsn, load_environment,
)
from rocket.core.cache import Cache, EmbeddedCache, RedisCache, create_redis_pool
from rocket.core.database import Database, DatabaseKind, open_document, open_relational
from rocket.core.encryption import Encryption
from rocket.core.exceptions import (
    ConfigMissingError, FilesystemInitError, MigrationError, NoChangeError,
    SchedulerError, StorageUnavailableError,
)
from rocket.core.loggers import start_loggers
from rocket.core.mailer import Mailer
from rocket.core.migrations import Migrator, migration_source
from rocket.core.paths import InitPaths, init_paths
from rocket.core.render import Renderer, create_view_set
from rocket.core.sessions import Session, SessionManager, SQLStore
from rocket.middleware.request import RequestID, install_access_log, install_recoverer, real_ip
from rocket.middleware.security import CsrfGuard
from rocket.tasks.scheduler import Scheduler

logger = logging.getLogger(__name__)

IDLE_TIMEOUT = 30     # seconds, also bounds reading the request
WRITE_TIMEOUT = 600   # seconds
GC_DISCARD_RATIO = 0.7
SESSION_CLEANUP_SCHEDULE = '@every 5m'


class TimeoutRequestHandler(WSGIRequestHandler):
    """Request handler with idle/read and write socket timeouts"""

    timeout = IDLE_TIMEOUT

    def run_wsgi(self):
        self.connection.settimeout(WRITE_TIMEOUT)
        try:
            super().run_wsgi()
        finally:
            self.connection.settimeout(self.timeout)


class Rocket:
    """
    The application: configuration plus every long-lived subsystem

    Call ``initialize(root_path)`` once, attach blueprints to ``routes`` and
    then call ``serve()``.
    """

    def __init__(self):
        self.app_name = ''
        self.debug = False
        self.version = VERSION
        self.root_path = ''
        self.encryption_key = ''
        self.config: Optional[Settings] = None
        self.server: Optional[ServerConfig] = None

        self.info_log: Optional[logging.Logger] = None
        self.error_log: Optional[logging.Logger] = None

        self.db: Optional[Database] = None
        self.cache: Optional[Cache] = None
        self.redis_pool: Optional[redis.ConnectionPool] = None
        self.embedded_cache: Optional[EmbeddedCache] = None
        self.scheduler: Optional[Scheduler] = None

        self.routes: Optional[Flask] = None
        self.session: Optional[SessionManager] = None
        self.jet_views = None
        self.render: Optional[Renderer] = None
        self.mail: Optional[Mailer] = None
        self.csrf: Optional[CsrfGuard] = None
        self.middleware: List[str] = []

        self._resources = ExitStack()

    def initialize(self, root_path: str) -> None:
        """
        Boot every subsystem from the environment

        Directory creation, database open and scheduler registration
        failures are fatal (SystemExit(1)); other errors propagate. Anything
        acquired before a failure is released.
        """
        with ExitStack() as stack:
            self._initialize(root_path, stack)
            self._resources = stack.pop_all()

    def _initialize(self, root_path: str, stack: ExitStack) -> None:
        # 1. working directories
        try:
            init_paths(InitPaths(root_path=root_path))
        except FilesystemInitError as e:
            logger.error(f"Cannot create working directories: {e}")
            raise SystemExit(1) from e

        # 2. environment
        env_notice = load_environment(root_path)

        # 3. loggers and settings
        self.info_log, self.error_log = start_loggers()
        self.info_log.info(env_notice)
        settings = Settings.from_env(root_path)
        self.root_path = root_path
        self.app_name = settings.app_name
        self.version = settings.version

        # 4. database
        if settings.database.database:
            try:
                self.db = self.open_database(settings.database.database, settings.database.dsn)
            except StorageUnavailableError as e:
                self.error_log.error(str(e))
                raise SystemExit(1) from e
            stack.callback(self.db.close)
            self.info_log.info(f"Connected to {settings.database.database} database")

        # 5. scheduler
        self.scheduler = Scheduler()

        # 6. cache
        if REMOTE_KV in (settings.cache, settings.session_type):
            redis_cache = self.create_redis_cache(settings)
            stack.callback(redis_cache.close)
            self.cache = redis_cache
            self.redis_pool = redis_cache.pool

        if settings.cache == EMBEDDED_KV:
            embedded = self.create_embedded_cache()
            stack.callback(embedded.close)
            self.cache = embedded
            self.embedded_cache = embedded
            try:
                self.scheduler.add_func('@daily', partial(embedded.run_value_log_gc, GC_DISCARD_RATIO))
            except SchedulerError as e:
                self.error_log.error(str(e))
                raise SystemExit(1) from e

        # 7. debug
        self.debug = settings.debug

        # 8. mailer and router
        self.mail = self.create_mailer(settings)
        self.routes = Flask(settings.app_name, root_path=root_path, static_folder=None)
        self.routes.secret_key = settings.encryption_key or secrets.token_urlsafe(32)
        if not settings.encryption_key:
            self.info_log.info("KEY not set - using a random secret, sessions and tokens reset on restart")

        # 9. cookie, session, database and Redis sub-configs
        self.config = settings

        # 10. server descriptor
        self.server = settings.server

        # 11. session manager
        self.session = self.create_session(settings)
        if isinstance(self.session.store, SQLStore):
            self.scheduler.add_func(
                SESSION_CLEANUP_SCHEDULE, self.session.store.delete_expired, name='session-cleanup'
            )
        self.encryption_key = settings.encryption_key

        # 12. views and renderer
        self.jet_views = create_view_set(os.path.join(root_path, 'views'), development=self.debug)
        self.render = self.create_renderer(settings)

        # 13. middleware pipeline
        self.install_middleware()

    # Subsystem factories

    def open_database(self, db_type: str, dsn: str) -> Database:
        if db_type in DOCUMENT_TYPES:
            return Database.document(db_type, open_document(dsn))
        if db_type in RELATIONAL_TYPES:
            return Database.relational(db_type, open_relational(db_type, dsn))
        raise StorageUnavailableError(f"unsupported DATABASE_TYPE {db_type!r}")

    def create_redis_cache(self, settings: Settings) -> RedisCache:
        if not settings.redis.host:
            raise ConfigMissingError("REDIS_HOST must be set when CACHE or SESSION_TYPE is remote-kv")
        pool = create_redis_pool(settings.redis.host, settings.redis.password)
        return RedisCache(pool, prefix=settings.redis.prefix)

    def create_embedded_cache(self) -> EmbeddedCache:
        return EmbeddedCache(os.path.join(self.root_path, 'tmp', 'badger'))

    def create_mailer(self, settings: Settings) -> Mailer:
        return Mailer(
            templates=settings.mail.templates,
            from_name=settings.mail.from_name,
            from_address=settings.mail.from_address,
            public_api=settings.mail.public_api,
            private_api=settings.mail.private_api,
            error_log=self.error_log,
        )

    def create_session(self, settings: Settings) -> SessionManager:
        db_pool = None
        if self.db is not None and self.db.kind is DatabaseKind.RELATIONAL:
            db_pool = self.db.pool

        session = Session(
            cookie_lifetime=settings.cookie.lifetime,
            cookie_persist=settings.cookie.persists,
            cookie_name=settings.cookie.name,
            cookie_domain=settings.cookie.domain,
            cookie_secure=settings.cookie.secure,
            session_type=settings.session_type,
            db_pool=db_pool,
            redis_pool=self.redis_pool,
        )
        return session.init_session()

    def create_renderer(self, settings: Settings) -> Renderer:
        return Renderer(
            renderer=settings.renderer,
            root_path=self.root_path,
            view_set=self.jet_views,
            port=settings.port,
            server_name=settings.server.server_name,
            secure=settings.server.secure,
            error_log=self.error_log,
        )

    def install_middleware(self) -> None:
        """
        Assemble the request pipeline, outermost first:
        request ID, real IP, access log (debug only), recovery, session, CSRF
        """
        app = self.routes

        # WSGI layers: the last wrapper added runs first
        app.wsgi_app = real_ip(app.wsgi_app)
        app.wsgi_app = RequestID(app.wsgi_app)
        self.middleware = ['request_id', 'real_ip']

        if self.debug:
            install_access_log(app, self.info_log)
            self.middleware.append('access_log')

        install_recoverer(app, self.error_log)
        self.middleware.append('recoverer')

        app.session_interface = self.session
        self.middleware.append('session')

        self.csrf = CsrfGuard(self.config.cookie)
        self.csrf.init_app(app)
        self.middleware.append('csrf')

    # Running

    def serve(self) -> None:
        """Listen on :PORT and block; resources are closed on every exit path"""
        port = self.server.port if self.server else ''
        if not port:
            self.close()
            raise ConfigMissingError("PORT must be set to serve")

        try:
            server = make_server(
                '', int(port), self.routes,
                threaded=True, request_handler=TimeoutRequestHandler,
            )
        except (OSError, ValueError) as e:
            self.error_log.error(f"Cannot listen on port {port}: {e}")
            self.close()
            raise SystemExit(1) from e

        if threading.current_thread() is threading.main_thread():
            signal.signal(signal.SIGTERM, _terminate)

        self.info_log.info(f"Listening on port {port}")
        try:
            self.scheduler.start()
            server.serve_forever()
        except KeyboardInterrupt:
            self.info_log.info("Interrupted, shutting down")
        finally:
            server.server_close()
            self.close()

    def close(self) -> None:
        """Stop the scheduler, then release resources in reverse acquisition order"""
        if self.scheduler is not None:
            self.scheduler.shutdown()
        self._resources.close()

    # Migrations

    def migrate_up(self, dsn: str) -> None:
        """Apply all pending migrations; nothing to apply is not an error"""
        with Migrator(migration_source(self.root_path), dsn) as m:
            try:
                m.up()
            except NoChangeError:
                pass
            except MigrationError as e:
                self._log_error(f"Error running migration: {e}")
                raise

    def migrate_down_all(self, dsn: str) -> None:
        with Migrator(migration_source(self.root_path), dsn) as m:
            m.down()

    def steps(self, n: int, dsn: str) -> None:
        with Migrator(migration_source(self.root_path), dsn) as m:
            m.steps(n)

    def migrate_force(self, dsn: str, version: int = -1) -> None:
        with Migrator(migration_source(self.root_path), dsn) as m:
            m.force(version)

    # Helpers

    def build_dsn(self) -> str:
        return build_dsn()

    def encryption(self) -> Encryption:
        return Encryption(self.encryption_key)

    def _log_error(self, message: str) -> None:
        (self.error_log or logger).error(message)


def _terminate(signum, frame):
    raise SystemExit(0)
