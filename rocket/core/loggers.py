# rocket/core/loggers.py
"""
Informational and error log sinks for the running application
"""

import sys
import logging
from typing import Tuple

INFO_FORMAT = 'INFO\t%(asctime)s %(message)s'
ERROR_FORMAT = 'ERROR\t%(asctime)s %(filename)s:%(lineno)d: %(message)s'
DATE_FORMAT = '%Y/%m/%d %H:%M:%S'


def _configure(name: str, fmt: str, level: int) -> logging.Logger:
    log = logging.getLogger(name)
    # Remove previous handlers so repeated starts don't duplicate lines
    log.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(fmt=fmt, datefmt=DATE_FORMAT))
    handler.setLevel(level)

    log.addHandler(handler)
    log.setLevel(level)
    log.propagate = False
    return log


def start_loggers() -> Tuple[logging.Logger, logging.Logger]:
    """
    Create the logger pair used by the composition root

    Returns:
        Tuple of (info_log, error_log). The error sink also records the
        source file and line of the call site.
    """
    info_log = _configure('rocket.info', INFO_FORMAT, logging.INFO)
    error_log = _configure('rocket.error', ERROR_FORMAT, logging.ERROR)
    return info_log, error_log
