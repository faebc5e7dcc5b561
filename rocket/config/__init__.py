from rocket.config.settings import (
    Settings,
    ServerConfig,
    CookieConfig,
    DatabaseConfig,
    RedisConfig,
    MailConfig,
    load_environment,
    build_dsn,
    parse_bool,
)

__all__ = [
    'Settings',
    'ServerConfig',
    'CookieConfig',
    'DatabaseConfig',
    'RedisConfig',
    'MailConfig',
    'load_environment',
    'build_dsn',
    'parse_bool',
]
