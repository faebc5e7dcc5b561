# rocket/config/settings.py
"""
Environment-driven configuration for the scaffold

Everything is read from the process environment once at boot (optionally
seeded from a ``.env`` file) and frozen into dataclasses afterwards.
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

VERSION = '1.0.0'

REMOTE_KV = 'remote-kv'
EMBEDDED_KV = 'embedded-kv'

# Older deployments still use the backend names
CACHE_ALIASES = {
    'redis': REMOTE_KV,
    'badger': EMBEDDED_KV,
}

RELATIONAL_TYPES = ('postgres', 'postgresql')
DOCUMENT_TYPES = ('mongodb', 'mongo')

HOSTED_NOTICE = "Running on a hosted platform - using external environment variables"
DOTENV_NOTICE = "Loaded .env file for local development"

_TRUE_VALUES = {'1', 't', 'T', 'TRUE', 'true', 'True'}


def parse_bool(value: Optional[str]) -> bool:
    """True only for 1, t, T, TRUE, true or True; anything else is False"""
    return (value or '') in _TRUE_VALUES


def normalize_backend(tag: Optional[str]) -> str:
    """Lowercase a cache/session tag and resolve legacy aliases"""
    tag = (tag or '').strip().lower()
    return CACHE_ALIASES.get(tag, tag)


def load_environment(root_path: str) -> str:
    """
    Seed the process environment from ``<root>/.env`` unless running hosted

    Hosted deployments set ``RENDER`` and provide the environment directly;
    variables that are already set always win over the dotfile.

    Returns:
        A notice describing where the environment came from. Loggers are not
        running yet at this point, so the caller logs it.
    """
    if os.environ.get('RENDER', '') != '':
        return HOSTED_NOTICE

    env_path = os.path.join(root_path, '.env')
    if not os.path.isfile(env_path):
        return f"No .env file found at {env_path}, skipping"

    load_dotenv(env_path, override=False)
    return DOTENV_NOTICE


def build_dsn() -> str:
    """Return the connection string for the configured database type"""
    if os.environ.get('DATABASE_TYPE', '') in RELATIONAL_TYPES + DOCUMENT_TYPES:
        return os.environ.get('DATABASE_CONN_STR', '')
    return ''


@dataclass(frozen=True)
class CookieConfig:
    """Session cookie settings, kept as the raw environment strings"""
    name: str
    lifetime: str
    persists: str
    secure: str
    domain: str


@dataclass(frozen=True)
class DatabaseConfig:
    database: str
    dsn: str


@dataclass(frozen=True)
class RedisConfig:
    host: str
    password: str
    prefix: str


@dataclass(frozen=True)
class ServerConfig:
    """Public description of the running server"""
    server_name: str
    port: str
    secure: bool
    url: str


@dataclass(frozen=True)
class MailConfig:
    templates: str
    from_name: str
    from_address: str
    public_api: str
    private_api: str


@dataclass(frozen=True)
class Settings:
    """Root configuration; read-only once the application has started"""
    app_name: str
    debug: bool
    version: str
    root_path: str
    encryption_key: str
    port: str
    renderer: str
    cache: str
    session_type: str
    server: ServerConfig
    cookie: CookieConfig
    database: DatabaseConfig
    redis: RedisConfig
    mail: MailConfig

    @classmethod
    def from_env(cls, root_path: str) -> 'Settings':
        env = os.environ.get

        # Secure unless explicitly switched off
        secure = env('SECURE', '').lower() != 'false'

        return cls(
            app_name=env('APP_NAME', 'rocket'),
            debug=parse_bool(env('DEBUG')),
            version=VERSION,
            root_path=root_path,
            encryption_key=env('KEY', ''),
            port=env('PORT', ''),
            renderer=env('RENDERER', ''),
            cache=normalize_backend(env('CACHE')),
            session_type=normalize_backend(env('SESSION_TYPE')),
            server=ServerConfig(
                server_name=env('SERVER_NAME', ''),
                port=env('PORT', ''),
                secure=secure,
                url=env('APP_URL', ''),
            ),
            cookie=CookieConfig(
                name=env('COOKIE_NAME', ''),
                lifetime=env('COOKIE_LIFETIME', ''),
                persists=env('COOKIE_PERSISTS', ''),
                secure=env('COOKIE_SECURE', ''),
                domain=env('COOKIE_DOMAIN', ''),
            ),
            database=DatabaseConfig(
                database=env('DATABASE_TYPE', ''),
                dsn=build_dsn(),
            ),
            redis=RedisConfig(
                host=env('REDIS_HOST', ''),
                password=env('REDIS_PASSWORD', ''),
                prefix=env('REDIS_PREFIX', ''),
            ),
            mail=MailConfig(
                templates=os.path.join(root_path, 'mail'),
                from_name=env('FROM_NAME', ''),
                from_address=env('FROM_ADDRESS', ''),
                public_api=env('PUBLIC_API', ''),
                private_api=env('PRIVATE_API', ''),
            ),
        )
