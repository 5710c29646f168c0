"""Keep the tracker usable while the document store is unreachable.

Reads fall back to the last result seen for the same request; only the
most recently used results are kept. Writes are appended to a JSON file
on local disk and replayed, in order, once the connectivity monitor
reports the store is back.
"""
from __future__ import annotations

import contextlib
import logging
import threading
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .config import OFFLINE_QUEUE_FILE, OFFLINE_READ_CACHE_SIZE
from .connectivity import ConnectivityMonitor
from .errors import ConflictError, NotFoundError, StoreUnavailable
from .persistence import read_json, with_json_lock, write_json_atomic
from .store import new_document_id

LOGGER = logging.getLogger(__name__)


class OfflineWriteQueue:
    def __init__(self, path: str = OFFLINE_QUEUE_FILE):
        self.path = path

    def pending(self) -> List[Dict[str, Any]]:
        with with_json_lock(self.path):
            return list(read_json(self.path, []))

    def __len__(self) -> int:
        return len(self.pending())

    def enqueue(self, kind: str, path: str, doc_id: str, data: Dict[str, Any]) -> None:
        entry = {
            "kind": kind,
            "path": path,
            "docId": doc_id,
            "data": dict(data),
            "queuedAt": datetime.now(timezone.utc).isoformat(),
        }
        with with_json_lock(self.path):
            items = read_json(self.path, [])
            items.append(entry)
            write_json_atomic(self.path, items)

    def replay(self, store) -> int:
        """Apply queued writes to ``store`` oldest first.

        Stops at the first write the store cannot take because it is
        unreachable; everything from there on stays queued. Writes the
        store rejects outright are dropped with a warning.
        """
        applied = 0
        with with_json_lock(self.path):
            items = read_json(self.path, [])
            done = 0
            for entry in items:
                try:
                    store.apply([(entry["kind"], entry["path"], entry["docId"], entry.get("data") or {})])
                    applied += 1
                except StoreUnavailable:
                    LOGGER.warning("Store went away during replay; %d write(s) still queued", len(items) - done)
                    break
                except (ConflictError, NotFoundError) as exc:
                    LOGGER.warning("Dropping queued %s on %s/%s: %s",
                                   entry["kind"], entry["path"], entry["docId"], exc)
                done += 1
            write_json_atomic(self.path, items[done:])
        return applied


class QueueingStore:
    """Document store wrapper exposing the same API as :class:`DocumentStore`."""

    def __init__(self, store, monitor: Optional[ConnectivityMonitor] = None,
                 queue: Optional[OfflineWriteQueue] = None, read_cache_size: int = OFFLINE_READ_CACHE_SIZE):
        self.store = store
        self.queue = queue or OfflineWriteQueue()
        self.monitor = monitor or ConnectivityMonitor(store.ping)
        self._unsubscribe = self.monitor.subscribe(self._on_connectivity)
        self._reads: "OrderedDict[Tuple, Any]" = OrderedDict()
        self.read_cache_size = read_cache_size
        self._lock = threading.Lock()

    @property
    def online(self) -> bool:
        return self.monitor.online

    def _on_connectivity(self, online: bool) -> None:
        if not online:
            return
        applied = self.replay()
        if applied:
            LOGGER.info("Replayed %d queued write(s)", applied)

    def replay(self) -> int:
        return self.queue.replay(self.store)

    def close(self) -> None:
        self._unsubscribe()
        self.monitor.close()

    # ------------------------------------------------------------------ reads
    def _read(self, key: Tuple, fetch: Callable[[], Any]) -> Any:
        if self.monitor.online:
            try:
                result = fetch()
            except StoreUnavailable:
                self.monitor.mark_offline()
            else:
                with self._lock:
                    self._reads[key] = result
                    self._reads.move_to_end(key)
                    while len(self._reads) > self.read_cache_size:
                        self._reads.popitem(last=False)
                return result
        with self._lock:
            if key in self._reads:
                self._reads.move_to_end(key)
                LOGGER.info("Serving cached result for %s while offline", key[1])
                return self._reads[key]
        raise StoreUnavailable("The document store is offline and nothing is cached for this request")

    def ping(self) -> None:
        self.store.ping()

    def get(self, path: str, doc_id: str):
        return self._read(("get", path, doc_id), lambda: self.store.get(path, doc_id))

    def query(self, path: str, where: Iterable = (), limit: Optional[int] = None):
        where = list(where)
        key = ("query", path, repr(where), limit)
        return self._read(key, lambda: self.store.query(path, where, limit=limit))

    # ----------------------------------------------------------------- writes
    def _write(self, kind: str, path: str, doc_id: str, data: Dict[str, Any]) -> None:
        if self.monitor.online:
            try:
                self.store.apply([(kind, path, doc_id, dict(data))])
                return
            except StoreUnavailable:
                self.monitor.mark_offline()
        self.queue.enqueue(kind, path, doc_id, data)
        LOGGER.warning("Queued %s on %s/%s until the store is reachable", kind, path, doc_id)

    def add(self, path: str, data: Dict[str, Any]) -> str:
        doc_id = new_document_id()
        self._write("create", path, doc_id, data)
        return doc_id

    def set(self, path: str, doc_id: str, data: Dict[str, Any]) -> None:
        self._write("set", path, doc_id, data)

    def create(self, path: str, doc_id: str, data: Dict[str, Any]) -> None:
        self._write("create", path, doc_id, data)

    def update(self, path: str, doc_id: str, data: Dict[str, Any]) -> None:
        self._write("update", path, doc_id, data)

    def delete(self, path: str, doc_id: str) -> None:
        self._write("delete", path, doc_id, {})

    @contextlib.contextmanager
    def batch(self):
        # Batches must land together, so they are never queued.
        with self.store.batch() as batch:
            yield batch

    def apply(self, ops) -> None:
        self.store.apply(ops)
