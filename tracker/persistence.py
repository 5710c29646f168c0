"""Locked, atomically replaced JSON files for state kept on local disk."""
from __future__ import annotations

import contextlib
import json
import os
import tempfile
from typing import Any

import portalocker


@contextlib.contextmanager
def with_json_lock(path: str):
    lock_path = f"{path}.lock"
    os.makedirs(os.path.dirname(lock_path) or ".", exist_ok=True)
    with open(lock_path, "a+") as lock_file:
        portalocker.lock(lock_file, portalocker.LOCK_EX)
        try:
            yield
        finally:
            portalocker.unlock(lock_file)


def write_json_atomic(path: str, data: Any) -> None:
    """Replace ``path`` with ``data``. Callers must hold the lock."""
    directory = os.path.dirname(path) or "."
    os.makedirs(directory, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=".tmp-", dir=directory)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    finally:
        try:
            os.remove(tmp)
        except OSError:
            pass


def read_json(path: str, default: Any) -> Any:
    """Read ``path`` without locking; a missing or corrupt file yields ``default``."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (FileNotFoundError, json.JSONDecodeError):
        return default

