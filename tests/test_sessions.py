from datetime import timedelta

import fakeredis
import pytest
from flask import Flask, session
from sqlalchemy import create_engine

from rocket.core.exceptions import ConfigMissingError
from rocket.core.sessions import (
    DEFAULT_LIFETIME_MINUTES, MemoryStore, RedisStore, Session, SessionManager, SQLStore, _utcnow,
)


def make_client(manager):
    app = Flask(__name__)
    app.secret_key = 'test'
    app.session_interface = manager

    @app.route('/login')
    def login():
        session['userID'] = 7
        return 'ok'

    @app.route('/whoami')
    def whoami():
        return str(session.get('userID', 'anonymous'))

    @app.route('/logout')
    def logout():
        manager.destroy(session)
        return 'bye'

    @app.route('/renew')
    def renew():
        manager.renew_token(session)
        return 'renewed'

    return app.test_client()


@pytest.fixture
def sql_engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'sessions.db'}")
    yield engine
    engine.dispose()


def test_lifetime_falls_back_on_garbage():
    manager = Session(cookie_lifetime='abc').init_session()

    assert manager.lifetime == timedelta(minutes=DEFAULT_LIFETIME_MINUTES)
    assert manager.cookie_samesite == 'Lax'


def test_flags_are_true_only_for_true():
    manager = Session(cookie_lifetime='30', cookie_persist='TRUE', cookie_secure='yes').init_session()

    assert manager.lifetime == timedelta(minutes=30)
    assert manager.cookie_persist is True
    assert manager.cookie_secure is False


@pytest.mark.parametrize('session_type', ['', 'cookie', 'unknown'])
def test_default_store_is_memory(session_type):
    assert isinstance(Session(session_type=session_type).init_session().store, MemoryStore)


@pytest.mark.parametrize('session_type', ['postgres', 'postgresql', 'mysql', 'mariadb'])
def test_sql_store_uses_relational_pool(sql_engine, session_type):
    manager = Session(session_type=session_type, db_pool=sql_engine).init_session()

    assert isinstance(manager.store, SQLStore)
    assert manager.store.pool is sql_engine


def test_redis_store_shares_pool():
    pool = fakeredis.FakeRedis().connection_pool
    manager = Session(session_type='remote-kv', redis_pool=pool).init_session()

    assert isinstance(manager.store, RedisStore)
    assert manager.store.pool is pool


@pytest.mark.parametrize('session_type', ['remote-kv', 'postgres'])
def test_store_without_pool_is_a_config_error(session_type):
    with pytest.raises(ConfigMissingError):
        Session(session_type=session_type).init_session()


def test_cookie_attributes():
    manager = Session(cookie_name='myapp_session', cookie_persist='true',
                      cookie_secure='true', cookie_domain='example.com').init_session()
    client = make_client(manager)

    response = client.get('/login')

    cookie = response.headers['Set-Cookie']
    assert cookie.startswith('myapp_session=')
    assert 'HttpOnly' in cookie
    assert 'Secure' in cookie
    assert 'SameSite=Lax' in cookie
    assert 'Domain=example.com' in cookie
    assert 'Expires=' in cookie


def test_non_persistent_cookie_has_no_expiry():
    client = make_client(Session(cookie_persist='false').init_session())

    response = client.get('/login')

    assert 'Expires=' not in response.headers['Set-Cookie']


def test_memory_round_trip_and_destroy():
    manager = Session().init_session()
    client = make_client(manager)

    assert client.get('/whoami').text == 'anonymous'
    client.get('/login')
    assert client.get('/whoami').text == '7'

    client.get('/logout')
    assert client.get('/whoami').text == 'anonymous'


def test_untouched_session_sets_no_cookie():
    client = make_client(Session().init_session())

    response = client.get('/whoami')

    assert 'Set-Cookie' not in response.headers


def test_renew_token_moves_data_to_new_token():
    manager = Session().init_session()
    client = make_client(manager)
    client.get('/login')
    old_token = client.get_cookie('session').value

    client.get('/renew')

    new_token = client.get_cookie('session').value
    assert new_token != old_token
    assert manager.store.find(old_token) is None
    assert client.get('/whoami').text == '7'


def test_sql_store_round_trip_and_cleanup(sql_engine):
    manager = Session(session_type='postgres', db_pool=sql_engine).init_session()
    manager.store.create_table()
    client = make_client(manager)

    client.get('/login')
    assert client.get('/whoami').text == '7'

    manager.store.commit('stale', b'{}', _utcnow() - timedelta(minutes=1))
    assert manager.store.delete_expired() == 1
    assert client.get('/whoami').text == '7'


def test_redis_store_round_trip():
    pool = fakeredis.FakeRedis(server=fakeredis.FakeServer()).connection_pool
    manager = Session(session_type='redis', redis_pool=pool).init_session()
    client = make_client(manager)

    client.get('/login')

    assert client.get('/whoami').text == '7'
    token = client.get_cookie('session').value
    assert manager.store.find(token) is not None


def test_expired_payload_starts_fresh_session():
    store = MemoryStore()
    manager = SessionManager(store, lifetime=timedelta(minutes=5))
    client = make_client(manager)
    client.get('/login')
    token = client.get_cookie('session').value

    store.commit(token, store.find(token), _utcnow() - timedelta(seconds=1))

    assert client.get('/whoami').text == 'anonymous'


def test_memory_store_sweeps_expired_entries_on_commit():
    store = MemoryStore(cleanup_interval=timedelta(0))
    past = _utcnow() - timedelta(minutes=1)
    for i in range(1000):
        store.commit(f'stale-{i}', b'{}', past)

    store.commit('live', b'{}', _utcnow() + timedelta(minutes=5))

    assert store.find('live') == b'{}'
    assert len(store._items) == 1


def test_memory_store_delete_expired():
    store = MemoryStore()
    store.commit('stale', b'{}', _utcnow() - timedelta(seconds=1))
    store.commit('live', b'{}', _utcnow() + timedelta(minutes=5))

    assert store.delete_expired() == 1
    assert store.find('live') == b'{}'
    assert store.delete_expired() == 0
