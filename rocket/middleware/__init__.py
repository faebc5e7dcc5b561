from rocket.middleware.request import RequestID, real_ip, install_access_log, install_recoverer
from rocket.middleware.security import CsrfGuard, csrf_token

__all__ = [
    'RequestID',
    'real_ip',
    'install_access_log',
    'install_recoverer',
    'CsrfGuard',
    'csrf_token',
]
