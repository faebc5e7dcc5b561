# rocket/core/exceptions.py
"""
Error kinds surfaced at the scaffold boundary
"""


class RocketError(Exception):
    """Base exception for scaffold operations"""


class ConfigMissingError(RocketError):
    """A required setting is missing, usually because another setting implies it"""


class StorageUnavailableError(RocketError):
    """Database open or ping failed"""


class CacheUnavailableError(RocketError):
    """Cache backend could not be opened"""


class TemplateNotFoundError(RocketError):
    """View or mail template does not exist"""


class TemplateRenderError(RocketError):
    """Template exists but could not be rendered"""


class MailSendError(RocketError):
    """Mail provider rejected the message or could not be reached"""


class MigrationError(RocketError):
    """Schema migration failed"""


class NoChangeError(MigrationError):
    """There was nothing to migrate"""


class FilesystemInitError(RocketError):
    """Working directories or files could not be created"""


class SchedulerError(RocketError):
    """A periodic task could not be registered or run"""
