# rocket/middleware/security.py
"""
CSRF guard for request processing
"""

import logging
from fnmatch import fnmatchcase
from typing import Iterable

from flask import Flask, request
from flask_wtf.csrf import CSRFProtect, generate_csrf

from rocket.config.settings import CookieConfig, parse_bool

logger = logging.getLogger(__name__)

CSRF_COOKIE_NAME = 'csrf_token'
DEFAULT_EXEMPT_GLOBS = ('/api/*',)


def match_path(pattern: str, path: str) -> bool:
    """Shell-style match where wildcards never cross a ``/``"""
    pattern_parts = pattern.split('/')
    path_parts = path.split('/')
    if len(pattern_parts) != len(path_parts):
        return False
    return all(fnmatchcase(part, glob) for part, glob in zip(path_parts, pattern_parts))


def csrf_token() -> str:
    """Token for the current request, for embedding in forms and headers"""
    return generate_csrf()


class CsrfGuard:
    """
    Reject unsafe requests that lack a valid anti-forgery token

    Paths matching an exempt glob are never checked. Every response carries
    the current token in an http-only, same-site strict cookie.
    """

    def __init__(self, cookie: CookieConfig, exempt_globs: Iterable[str] = DEFAULT_EXEMPT_GLOBS):
        self.exempt_globs = list(exempt_globs)
        self.cookie_secure = parse_bool(cookie.secure)
        self.cookie_domain = cookie.domain
        self.csrf = CSRFProtect()

    def is_exempt(self, path: str) -> bool:
        return any(match_path(pattern, path) for pattern in self.exempt_globs)

    def init_app(self, app: Flask) -> None:
        # Checking happens in our own hook so exemptions can be path globs
        app.config['WTF_CSRF_CHECK_DEFAULT'] = False
        self.csrf.init_app(app)
        app.before_request(self.protect)
        app.after_request(self.set_cookie)

    def protect(self) -> None:
        if self.is_exempt(request.path):
            return
        # Raises CSRFError (400) for unsafe methods without a valid token
        self.csrf.protect()

    def set_cookie(self, response):
        response.set_cookie(
            CSRF_COOKIE_NAME,
            csrf_token(),
            path='/',
            domain=self.cookie_domain or None,
            secure=self.cookie_secure,
            httponly=True,
            samesite='Strict',
        )
        return response
