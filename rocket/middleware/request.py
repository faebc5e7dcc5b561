# rocket/middleware/request.py
"""
Per-request middleware: request IDs, real client IPs, access logging and
recovery from unhandled exceptions
"""

import time
import uuid
import logging

from flask import Flask, g, request
from werkzeug.exceptions import HTTPException, InternalServerError
from werkzeug.middleware.proxy_fix import ProxyFix

REQUEST_ID_HEADER = 'X-Request-Id'
_ENVIRON_KEY = 'HTTP_X_REQUEST_ID'


class RequestID:
    """
    WSGI middleware that tags every request with an ID

    An inbound ``X-Request-Id`` header is kept; otherwise a new one is
    generated. The ID is echoed on the response.
    """

    def __init__(self, app):
        self.app = app

    def __call__(self, environ, start_response):
        request_id = environ.get(_ENVIRON_KEY) or uuid.uuid4().hex
        environ[_ENVIRON_KEY] = request_id

        def _start_response(status, headers, exc_info=None):
            if not any(name.lower() == REQUEST_ID_HEADER.lower() for name, _ in headers):
                headers.append((REQUEST_ID_HEADER, request_id))
            return start_response(status, headers, exc_info)

        return self.app(environ, _start_response)


def real_ip(app):
    """Trust one proxy hop for the client address, scheme and host"""
    return ProxyFix(app, x_for=1, x_proto=1, x_host=1)


def request_id() -> str:
    return request.headers.get(REQUEST_ID_HEADER, '')


def install_access_log(app: Flask, info_log: logging.Logger) -> None:
    """Log one line per request through the info logger"""

    @app.before_request
    def start_timer():
        g.request_started = time.perf_counter()

    @app.after_request
    def log_request(response):
        started = g.get('request_started')
        elapsed = (time.perf_counter() - started) * 1000 if started else 0.0
        info_log.info(
            f'[{request_id()}] "{request.method} {request.full_path.rstrip("?")} '
            f'{request.environ.get("SERVER_PROTOCOL", "")}" from {request.remote_addr} - '
            f'{response.status_code} {response.calculate_content_length() or 0}B in {elapsed:.1f}ms'
        )
        return response


def install_recoverer(app: Flask, error_log: logging.Logger) -> None:
    """Turn unhandled exceptions into 500 responses; HTTP errors pass through"""

    @app.errorhandler(Exception)
    def handle_exception(e):
        if isinstance(e, HTTPException):
            return e

        error_log.error(f"[{request_id()}] Unhandled exception: {e}", exc_info=True)
        return InternalServerError()
