"""Document store on top of SQLAlchemy.

Documents live in a single ``documents`` table keyed by their collection
path (``users``, ``users/<uid>/dailyTasks`` ...) and document id, with the
payload in a JSON column. Queries scan one collection and filter in
Python, which is fine for the volumes this application handles.
"""
from __future__ import annotations

import contextlib
import logging
import operator
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
    select,
    text,
)
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from .config import DATABASE_URL, IN_QUERY_LIMIT
from .errors import ConflictError, NotFoundError, StoreUnavailable, WriteError

LOGGER = logging.getLogger(__name__)

SERVER_TIMESTAMP = "__server_timestamp__"
DOCUMENT_ID = "__name__"

Filter = Tuple[str, str, Any]

Base = declarative_base()


class DocumentModel(Base):
    __tablename__ = "documents"
    __table_args__ = (UniqueConstraint("path", "doc_id", name="uq_document_path_id"),)
    id = Column(Integer, primary_key=True)
    path = Column(String(255), nullable=False, index=True)
    doc_id = Column(String(128), nullable=False)
    data = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


@dataclass(slots=True)
class DocumentSnapshot:
    """A document as read from the store."""

    id: str
    path: str
    data: Dict[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)


def server_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_document_id() -> str:
    return uuid.uuid4().hex[:20]


def resolve_sentinels(data: Dict[str, Any], now: str) -> Dict[str, Any]:
    return {key: (now if value == SERVER_TIMESTAMP else value) for key, value in data.items()}


def _in(actual: Any, values: Sequence[Any]) -> bool:
    return actual in values


OPERATORS = {
    "==": operator.eq,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "in": _in,
}


def matches(doc_id: str, data: Dict[str, Any], where: Iterable[Filter]) -> bool:
    for field_name, op, expected in where:
        actual = doc_id if field_name == DOCUMENT_ID else data.get(field_name)
        if op != "==" and op != "in" and actual is None:
            return False
        try:
            if not OPERATORS[op](actual, expected):
                return False
        except TypeError:
            return False
    return True


class WriteBatch:
    """Collects writes and applies them in one transaction."""

    def __init__(self, store: "DocumentStore"):
        self._store = store
        self._ops: List[Tuple[str, str, str, Dict[str, Any]]] = []

    def __len__(self) -> int:
        return len(self._ops)

    def set(self, path: str, doc_id: str, data: Dict[str, Any]) -> None:
        self._ops.append(("set", path, doc_id, dict(data)))

    def create(self, path: str, doc_id: str, data: Dict[str, Any]) -> None:
        self._ops.append(("create", path, doc_id, dict(data)))

    def update(self, path: str, doc_id: str, data: Dict[str, Any]) -> None:
        self._ops.append(("update", path, doc_id, dict(data)))

    def delete(self, path: str, doc_id: str) -> None:
        self._ops.append(("delete", path, doc_id, {}))

    def commit(self) -> None:
        if self._ops:
            self._store.apply(self._ops)
        self._ops = []


class DocumentStore:
    def __init__(self, url: str = DATABASE_URL, *, in_limit: int = IN_QUERY_LIMIT, echo: bool = False):
        engine_kwargs: dict[str, Any] = {"future": True, "echo": echo}
        if str(url).startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            pool_pre_ping = False
        else:
            pool_pre_ping = True
        self.url = url
        self.in_limit = in_limit
        self.engine = create_engine(url, pool_pre_ping=pool_pre_ping, **engine_kwargs)
        self._session_factory = sessionmaker(
            bind=self.engine, autoflush=False, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(bind=self.engine)

    @contextlib.contextmanager
    def _session(self, write: bool = False):
        try:
            if write:
                with self._session_factory.begin() as session:
                    yield session
            else:
                with self._session_factory() as session:
                    yield session
        except OperationalError as exc:
            raise StoreUnavailable(str(exc.orig or exc)) from exc
        except IntegrityError as exc:
            raise ConflictError(str(exc.orig or exc)) from exc
        except SQLAlchemyError as exc:
            if not write:
                raise
            raise WriteError(str(exc)) from exc

    @staticmethod
    def _row(session, path: str, doc_id: str) -> Optional[DocumentModel]:
        stmt = select(DocumentModel).where(DocumentModel.path == path, DocumentModel.doc_id == doc_id)
        return session.execute(stmt).scalar_one_or_none()

    # ------------------------------------------------------------------ reads
    def ping(self) -> None:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except OperationalError as exc:
            raise StoreUnavailable(str(exc.orig or exc)) from exc

    def get(self, path: str, doc_id: str) -> Optional[DocumentSnapshot]:
        with self._session() as session:
            row = self._row(session, path, doc_id)
            if row is None:
                return None
            return DocumentSnapshot(id=row.doc_id, path=row.path, data=dict(row.data or {}))

    def query(self, path: str, where: Iterable[Filter] = (), limit: Optional[int] = None) -> List[DocumentSnapshot]:
        """Return documents of ``path`` matching every filter, in insertion order."""
        where = list(where)
        stmt = select(DocumentModel).where(DocumentModel.path == path)
        for field_name, op, value in where:
            if op not in OPERATORS:
                raise ValueError(f"Unsupported query operator: {op}")
            if op == "in":
                if len(value) > self.in_limit:
                    raise ValueError(f"'in' filters accept at most {self.in_limit} values")
                if field_name == DOCUMENT_ID:
                    stmt = stmt.where(DocumentModel.doc_id.in_(list(value)))
            elif op == "==" and field_name == DOCUMENT_ID:
                stmt = stmt.where(DocumentModel.doc_id == value)
        stmt = stmt.order_by(DocumentModel.id)

        results: List[DocumentSnapshot] = []
        with self._session() as session:
            for row in session.execute(stmt).scalars():
                data = dict(row.data or {})
                if not matches(row.doc_id, data, where):
                    continue
                results.append(DocumentSnapshot(id=row.doc_id, path=row.path, data=data))
                if limit is not None and len(results) >= limit:
                    break
        return results

    # ----------------------------------------------------------------- writes
    def add(self, path: str, data: Dict[str, Any]) -> str:
        doc_id = new_document_id()
        self.apply([("create", path, doc_id, dict(data))])
        return doc_id

    def set(self, path: str, doc_id: str, data: Dict[str, Any]) -> None:
        self.apply([("set", path, doc_id, dict(data))])

    def create(self, path: str, doc_id: str, data: Dict[str, Any]) -> None:
        self.apply([("create", path, doc_id, dict(data))])

    def update(self, path: str, doc_id: str, data: Dict[str, Any]) -> None:
        self.apply([("update", path, doc_id, dict(data))])

    def delete(self, path: str, doc_id: str) -> None:
        self.apply([("delete", path, doc_id, {})])

    @contextlib.contextmanager
    def batch(self) -> Iterator[WriteBatch]:
        batch = WriteBatch(self)
        yield batch
        batch.commit()

    def apply(self, ops: Sequence[Tuple[str, str, str, Dict[str, Any]]]) -> None:
        now = server_now()
        with self._session(write=True) as session:
            for kind, path, doc_id, data in ops:
                payload = resolve_sentinels(data, now)
                row = self._row(session, path, doc_id)
                if kind == "delete":
                    if row is not None:
                        session.delete(row)
                elif kind == "update":
                    if row is None:
                        raise NotFoundError(f"No document {path}/{doc_id}")
                    row.data = {**(row.data or {}), **payload}
                elif kind == "create":
                    if row is not None:
                        raise ConflictError(f"Document {path}/{doc_id} already exists")
                    session.add(DocumentModel(path=path, doc_id=doc_id, data=payload))
                elif kind == "set":
                    if row is None:
                        session.add(DocumentModel(path=path, doc_id=doc_id, data=payload))
                    else:
                        row.data = payload
                else:
                    raise ValueError(f"Unknown write kind: {kind}")
                session.flush()


@lru_cache(maxsize=1)
def default_store() -> DocumentStore:
    return DocumentStore(DATABASE_URL)
