import os
import tempfile

os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="tracker-tests-"))

import pytest

from tracker.catalog import TaskTemplateCache
from tracker.config import USERS
from tracker.connectivity import ConnectivityMonitor
from tracker.errors import StoreUnavailable
from tracker.offline import OfflineWriteQueue, QueueingStore
from tracker.storage import LocalBlobStorage
from tracker.store import SERVER_TIMESTAMP, DocumentStore


class FakeTimer:
    """Stands in for threading.Timer; tests fire it by hand."""

    def __init__(self, interval, function, args=None, kwargs=None):
        self.interval = interval
        self.function = function
        self.args = args or ()
        self.kwargs = kwargs or {}
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        return self.function(*self.args, **self.kwargs)


class FlakyStore:
    """Wraps a store and fails every call with StoreUnavailable while ``down``."""

    def __init__(self, inner):
        self.inner = inner
        self.down = False

    def _check(self):
        if self.down:
            raise StoreUnavailable("connection refused")

    def ping(self):
        self._check()
        self.inner.ping()

    def get(self, *args, **kwargs):
        self._check()
        return self.inner.get(*args, **kwargs)

    def query(self, *args, **kwargs):
        self._check()
        return self.inner.query(*args, **kwargs)

    def apply(self, ops):
        self._check()
        self.inner.apply(ops)

    def add(self, path, data):
        self._check()
        return self.inner.add(path, data)

    def set(self, path, doc_id, data):
        self._check()
        self.inner.set(path, doc_id, data)

    def create(self, path, doc_id, data):
        self._check()
        self.inner.create(path, doc_id, data)

    def update(self, path, doc_id, data):
        self._check()
        self.inner.update(path, doc_id, data)

    def delete(self, path, doc_id):
        self._check()
        self.inner.delete(path, doc_id)

    def batch(self):
        self._check()
        return self.inner.batch()


@pytest.fixture
def store(tmp_path):
    return DocumentStore(f"sqlite:///{tmp_path / 'store.db'}")


@pytest.fixture
def cache():
    return TaskTemplateCache()


@pytest.fixture
def blobs(tmp_path):
    return LocalBlobStorage(str(tmp_path / "blobs"))


@pytest.fixture
def timers():
    created = []

    def factory(interval, function, args=None, kwargs=None):
        timer = FakeTimer(interval, function, args=args, kwargs=kwargs)
        created.append(timer)
        return timer

    factory.created = created
    return factory


@pytest.fixture
def flaky(store):
    return FlakyStore(store)


@pytest.fixture
def queueing_store(flaky, timers, tmp_path):
    monitor = ConnectivityMonitor(flaky.ping, timer_factory=timers)
    queue = OfflineWriteQueue(str(tmp_path / "queue.json"))
    return QueueingStore(flaky, monitor=monitor, queue=queue)


def add_user(store, uid, role="employee", name=None, email=None):
    store.set(USERS, uid, {
        "email": email or f"{uid}@example.com",
        "displayName": name or uid.title(),
        "role": role,
        "createdAt": SERVER_TIMESTAMP,
    })
    return uid
