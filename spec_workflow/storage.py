"""File writes for the document tree.

Writes replace the whole file through a temporary sibling and ``os.replace`` so
readers never observe a half-written document. Each path has an in-process lock
that read-modify-write operations hold from the read until the write completes.
"""

from __future__ import annotations

import json
import os
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator

from .errors import IOFailureError

_LOCKS: Dict[str, threading.RLock] = {}
_LOCKS_GUARD = threading.Lock()


def _lock_for(path: Path) -> threading.RLock:
    key = os.path.normcase(str(Path(path).resolve()))
    with _LOCKS_GUARD:
        lock = _LOCKS.get(key)
        if lock is None:
            lock = threading.RLock()
            _LOCKS[key] = lock
        return lock


@contextmanager
def path_lock(path: Path) -> Iterator[None]:
    """Serialize writers of ``path`` within this process."""
    lock = _lock_for(path)
    with lock:
        yield


def read_text(path: Path) -> str:
    # newline="" keeps \r\n intact so rewrites stay byte-preserving.
    with open(path, "r", encoding="utf-8", newline="") as handle:
        return handle.read()


def write_text_atomic(path: Path, content: str) -> None:
    """Replace ``path`` with ``content``, creating parent directories."""
    path = Path(path)
    with path_lock(path):
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
            try:
                with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
                    handle.write(content)
                os.replace(tmp_name, path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as exc:
            raise IOFailureError(f"Failed to write {path}: {exc}") from exc


def write_json_atomic(path: Path, data: Dict[str, Any]) -> None:
    write_text_atomic(path, json.dumps(data, indent=2) + "\n")
