# tests/conftest.py
"""
Shared fixtures: a temporary application root, an isolated environment,
fakeredis standing in for the remote cache and SQLite for the relational pool
"""

import fakeredis
import pytest
from sqlalchemy import create_engine

from rocket.app import Rocket

ENV_KEYS = [
    'RENDER', 'APP_NAME', 'DATABASE_TYPE', 'DATABASE_CONN_STR', 'CACHE',
    'SESSION_TYPE', 'DEBUG', 'PORT', 'RENDERER', 'COOKIE_NAME',
    'COOKIE_LIFETIME', 'COOKIE_PERSISTS', 'COOKIE_SECURE', 'COOKIE_DOMAIN',
    'REDIS_HOST', 'REDIS_PASSWORD', 'REDIS_PREFIX', 'SERVER_NAME', 'APP_URL',
    'SECURE', 'KEY', 'FROM_NAME', 'FROM_ADDRESS', 'PUBLIC_API', 'PRIVATE_API',
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Start every test from an empty scaffold environment"""
    for key in ENV_KEYS:
        # setenv first so the original value is restored even if .env loading sets it
        monkeypatch.setenv(key, '')
        monkeypatch.delenv(key)
    # Skip .env loading unless a test opts in
    monkeypatch.setenv('RENDER', 'test')


@pytest.fixture
def root(tmp_path):
    return str(tmp_path)


@pytest.fixture
def fake_redis_pool(monkeypatch):
    """A fakeredis-backed pool returned wherever the app would dial Redis"""
    pool = fakeredis.FakeRedis(server=fakeredis.FakeServer()).connection_pool
    monkeypatch.setattr('rocket.app.create_redis_pool', lambda host, password='': pool)
    return pool


@pytest.fixture
def sqlite_pool(monkeypatch, tmp_path):
    """SQLite engine handed out in place of a PostgreSQL pool"""
    engine = create_engine(f"sqlite:///{tmp_path / 'app.db'}")
    monkeypatch.setattr('rocket.app.open_relational', lambda db_type, dsn: engine)
    return engine


@pytest.fixture
def make_app(root, monkeypatch):
    """Boot a Rocket with extra environment variables; closed after the test"""
    apps = []

    def _make(**env):
        for key, value in env.items():
            monkeypatch.setenv(key, value)
        app = Rocket()
        app.initialize(root)
        apps.append(app)
        return app

    yield _make

    for app in apps:
        app.close()
