"""Safe file I/O utilities.

Provides an atomic whole-file write: the payload goes to a sibling
temporary file, is ``fsync``-ed, and is then moved over the destination
with ``os.replace``.  A crash at any point leaves either the old file or
the complete new one on disk, never a truncated mix.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)

TEMP_SUFFIX = ".tmp"


def atomic_write_text(path: Path, text: str, encoding: str = "utf-8") -> None:
    """Write *text* to *path* atomically.

    * The temporary file lives in the same directory so the final
      ``os.replace`` is a same-filesystem rename.
    * ``os.fsync`` on the file and then on the directory makes the data
      and the rename durable before the function returns.
    * The caller is responsible for creating parent directories.
    """
    tmp_path = path.with_name(path.name + TEMP_SUFFIX)
    try:
        with open(tmp_path, "w", encoding=encoding) as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        try:
            tmp_path.unlink()
        except FileNotFoundError:
            pass
        raise
    _fsync_directory(path.parent)


def _fsync_directory(directory: Path) -> None:
    """Flush directory metadata (the rename) where the platform allows it."""
    try:
        fd = os.open(directory, os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        logger.debug("Directory fsync not supported for %s", directory)
    finally:
        os.close(fd)
