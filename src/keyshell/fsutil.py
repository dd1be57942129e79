"""
Filesystem helpers.
"""

import os
import tempfile
from pathlib import Path
from typing import Union


def atomic_write(path: Union[str, Path], data: Union[bytes, str], mode: int = 0o600) -> None:
    """
    Write ``data`` to ``path`` so that readers see either the old file or the
    complete new one, never a partial write.
    """
    path = Path(path)
    if isinstance(data, str):
        data = data.encode("utf-8")

    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp, mode)
        os.replace(tmp, path)
    finally:
        if os.path.exists(tmp):
            os.unlink(tmp)


__all__ = ["atomic_write"]
