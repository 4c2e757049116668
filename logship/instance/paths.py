"""Filesystem path service.

Shares are expected to be mounted (or UNC paths resolvable) on the host
running the orchestrator, so reachability is checked from here for every
role. Role-specific credentials are not used for filesystem access.
"""

import logging
import os
import shutil

from logship.instance.base import PathService
from logship.models.errors import EngineError

logger = logging.getLogger(__name__)


class LocalPathService(PathService):
    def path_reachable(self, role, path) -> bool:
        return bool(path) and os.path.isdir(path)

    def create_directory(self, role, path):
        try:
            os.makedirs(path, exist_ok=True)
        except OSError as e:
            raise EngineError(f"Cannot create directory {path} for {role}: {e}") from e
        logger.info("Created directory %s", path)

    def list_files(self, role, path) -> list:
        try:
            names = sorted(os.listdir(path))
        except OSError as e:
            raise EngineError(f"Cannot list {path}: {e}") from e
        return [os.path.join(path, n) for n in names if os.path.isfile(os.path.join(path, n))]

    def copy_file(self, role, source, destination_directory) -> str:
        try:
            return shutil.copy2(source, destination_directory)
        except OSError as e:
            raise EngineError(f"Cannot copy {source} to {destination_directory}: {e}") from e


def join(base: str, *parts: str) -> str:
    """Join path parts using the separator style already present in ``base``."""
    sep = "\\" if "\\" in base else "/"
    return sep.join([base.rstrip("\\/")] + [p.strip("\\/") for p in parts])
