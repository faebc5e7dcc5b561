from rocket.core.exceptions import (
    RocketError,
    ConfigMissingError,
    StorageUnavailableError,
    CacheUnavailableError,
    TemplateNotFoundError,
    TemplateRenderError,
    MailSendError,
    MigrationError,
    NoChangeError,
    FilesystemInitError,
    SchedulerError,
)

__all__ = [
    'RocketError',
    'ConfigMissingError',
    'StorageUnavailableError',
    'CacheUnavailableError',
    'TemplateNotFoundError',
    'TemplateRenderError',
    'MailSendError',
    'MigrationError',
    'NoChangeError',
    'FilesystemInitError',
    'SchedulerError',
]
