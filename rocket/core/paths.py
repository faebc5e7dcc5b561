# rocket/core/paths.py
"""
Working directory layout for a scaffolded application
"""

import os
import logging
from dataclasses import dataclass, field
from typing import List

from rocket.core.exceptions import FilesystemInitError

logger = logging.getLogger(__name__)

FOLDER_NAMES = [
    'handlers',
    'migrations',
    'views',
    'mail',
    'data',
    'public',
    'temp',
    'logs',
    'middleware',
]


@dataclass
class InitPaths:
    """Root path plus the folders that must exist beneath it"""
    root_path: str
    folder_names: List[str] = field(default_factory=lambda: list(FOLDER_NAMES))


def create_dir_if_not_exist(path: str) -> None:
    """Create a directory (and parents) with mode 0755 unless it already exists"""
    try:
        os.makedirs(path, mode=0o755, exist_ok=True)
    except OSError as e:
        raise FilesystemInitError(f"cannot create directory {path}: {e}") from e


def create_file_if_not_exists(path: str) -> None:
    """Create an empty file unless it already exists"""
    if os.path.exists(path):
        return
    try:
        with open(path, 'a'):
            pass
    except OSError as e:
        raise FilesystemInitError(f"cannot create file {path}: {e}") from e


def init_paths(paths: InitPaths) -> None:
    """Create every folder in the path set under the root path"""
    for folder in paths.folder_names:
        create_dir_if_not_exist(os.path.join(paths.root_path, folder))
    logger.debug(f"Working directories ready under {paths.root_path}")


def check_dot_env(root_path: str) -> str:
    """Make sure ``<root>/.env`` exists and return its path"""
    path = os.path.join(root_path, '.env')
    create_file_if_not_exists(path)
    return path
