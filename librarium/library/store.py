"""
Document store used by the library repositories.

Documents live at slash separated paths (``users/u1/books/b1``); the parent
path is the collection. Every implementation offers the same surface:

* single document CRUD (``get``, ``set``, ``add``, ``update``, ``delete``),
* filtered/ordered/limited queries over one collection,
* atomic multi-document ``WriteBatch`` commits,
* push subscriptions that re-deliver the full query result on every change.

All calls return a ``StoreResult`` instead of raising. ``SERVER_TIMESTAMP``
placed anywhere in written data is replaced by the store clock at write time,
stored as a UTC ISO-8601 string, and every write also receives a monotonically
increasing sequence number used to break timestamp ties in ordered queries.
"""

from __future__ import annotations

import itertools
import json
import logging
import queue
import threading
import uuid
from copy import deepcopy
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable, Dict, Generic, Iterator, List, Optional, Tuple, TypeVar

from sqlalchemy import Column, Integer, String, Text, create_engine, delete, select
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .errors import StoreErrorCode, StoreResult
from .models import to_iso, utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _ServerTimestamp:
    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


def collection_of(path: str) -> str:
    return path.rsplit("/", 1)[0]


def doc_id_of(path: str) -> str:
    return path.rsplit("/", 1)[-1]


def get_field(data: Dict[str, Any], name: str) -> Any:
    """Read a possibly dotted field name (``progress.current_page``)."""
    value: Any = data
    for part in name.split("."):
        if not isinstance(value, dict) or part not in value:
            return None
        value = value[part]
    return value


@dataclass(frozen=True)
class Document:
    path: str
    data: Dict[str, Any]
    sequence: int = 0

    @property
    def id(self) -> str:
        return doc_id_of(self.path)


# region Queries

_OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "==": lambda a, b: a == b,
    "!=": lambda a, b: a != b,
    "<": lambda a, b: a < b,
    "<=": lambda a, b: a <= b,
    ">": lambda a, b: a > b,
    ">=": lambda a, b: a >= b,
    "in": lambda a, b: a in b,
}


@dataclass(frozen=True)
class Filter:
    field: str
    op: str
    value: Any

    def matches(self, data: Dict[str, Any]) -> bool:
        actual = get_field(data, self.field)
        if actual is None:
            return False
        return _OPERATORS[self.op](actual, self.value)


@dataclass(frozen=True)
class Query:
    collection: str
    filters: Tuple[Filter, ...] = ()
    order_by: Optional[str] = None
    descending: bool = False
    limit: Optional[int] = None

    def where(self, field_name: str, op: str, value: Any) -> "Query":
        if op not in _OPERATORS:
            raise ValueError(f"Unsupported operator: {op}")
        return replace(self, filters=self.filters + (Filter(field_name, op, value),))

    def order(self, field_name: str, descending: bool = False) -> "Query":
        return replace(self, order_by=field_name, descending=descending)

    def take(self, limit: int) -> "Query":
        return replace(self, limit=limit)

    def run(self, documents: List[Document]) -> List[Document]:
        matched = [d for d in documents if all(f.matches(d.data) for f in self.filters)]
        if self.order_by:
            matched = [d for d in matched if get_field(d.data, self.order_by) is not None]
            matched.sort(
                key=lambda d: (get_field(d.data, self.order_by), d.sequence),
                reverse=self.descending,
            )
        else:
            matched.sort(key=lambda d: d.sequence)
        if self.limit is not None:
            matched = matched[: self.limit]
        return matched


# endregion

# region Subscriptions


class CancellationToken:
    def __init__(self):
        self._cancelled = threading.Event()
        self._callbacks: List[Callable[[], None]] = []
        self._lock = threading.Lock()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def on_cancel(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if not self.cancelled:
                self._callbacks.append(callback)
                return
        callback()

    def cancel(self) -> None:
        with self._lock:
            if self.cancelled:
                return
            self._cancelled.set()
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()


_END = object()


class Subscription(Generic[T]):
    """
    Stream of full snapshots. Iterating blocks until the next snapshot and
    stops once the token is cancelled or the underlying query fails; nothing
    queued before cancellation is delivered afterwards.
    """

    def __init__(self, token: Optional[CancellationToken] = None, transform: Optional[Callable[[Any], T]] = None):
        self.token = token or CancellationToken()
        self.error: Optional[str] = None
        self._transform = transform
        self._queue: "queue.Queue[Any]" = queue.Queue()
        self._last_key: Any = None
        self._delivered_any = False
        self.token.on_cancel(self._close)

    def cancel(self) -> None:
        self.token.cancel()

    @property
    def active(self) -> bool:
        return not self.token.cancelled and self.error is None

    def push(self, documents: List[Document]) -> None:
        if not self.active:
            return
        key = [(d.path, d.data) for d in documents]
        if self._delivered_any and key == self._last_key:
            return
        self._last_key = key
        self._delivered_any = True
        snapshot = self._transform(documents) if self._transform else documents
        self._queue.put(snapshot)

    def fail(self, message: str) -> None:
        if not self.active:
            return
        self.error = message
        self._queue.put(_END)

    def _close(self) -> None:
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                break
        self._queue.put(_END)

    def next_snapshot(self, timeout: Optional[float] = None) -> Optional[T]:
        """Next snapshot, or ``None`` on timeout or once the stream has ended."""
        if self.token.cancelled:
            return None
        try:
            item = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
        if item is _END:
            self._queue.put(_END)
            return None
        return item

    def __iter__(self) -> Iterator[T]:
        while True:
            if self.token.cancelled:
                return
            item = self._queue.get()
            if item is _END:
                self._queue.put(_END)
                return
            yield item


# endregion

# region Writes


@dataclass(frozen=True)
class WriteOp:
    kind: str  # set | update | delete
    path: str
    data: Dict[str, Any] = field(default_factory=dict)
    merge: bool = False


class WriteBatch:
    """Collects writes and commits them all-or-nothing."""

    def __init__(self, store: "DocumentStore"):
        self._store = store
        self.ops: List[WriteOp] = []
        self.committed = False

    def set(self, path: str, data: Dict[str, Any], merge: bool = False) -> "WriteBatch":
        self.ops.append(WriteOp("set", path, dict(data), merge))
        return self

    def add(self, collection: str, data: Dict[str, Any]) -> str:
        path = f"{collection}/{self._store.new_id()}"
        self.set(path, data)
        return doc_id_of(path)

    def update(self, path: str, data: Dict[str, Any]) -> "WriteBatch":
        self.ops.append(WriteOp("update", path, dict(data)))
        return self

    def delete(self, path: str) -> "WriteBatch":
        self.ops.append(WriteOp("delete", path))
        return self

    def commit(self) -> StoreResult[None]:
        if self.committed:
            return StoreResult.fail("Batch already committed", StoreErrorCode.INVALID_ARGUMENT)
        result = self._store.apply(self.ops)
        if result.success:
            self.committed = True
        return result


class _MissingDocument(Exception):
    def __init__(self, path: str):
        super().__init__(f"No document to update: {path}")
        self.path = path


def _merge(target: Dict[str, Any], changes: Dict[str, Any]) -> Dict[str, Any]:
    merged = deepcopy(target)
    for key, value in changes.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = deepcopy(value)
    return merged


# endregion


class DocumentStore:
    """
    Shared behaviour for every backend. Subclasses implement ``_load``,
    ``_load_collection`` and ``_write``; this class resolves server
    timestamps, sequences writes and fans changes out to subscribers.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.clock = clock
        self._lock = threading.RLock()
        self._sequence = itertools.count(1)
        self._subscriptions: List[Tuple[Query, Subscription]] = []

    # region Backend hooks
    def _load(self, path: str) -> Optional[Document]:
        raise NotImplementedError

    def _load_collection(self, collection: str) -> List[Document]:
        raise NotImplementedError

    def _write(self, ops: List[Tuple[WriteOp, Optional[Dict[str, Any]], int]]) -> None:
        """Persist resolved ops: (op, resulting data or None for delete, sequence)."""
        raise NotImplementedError

    def _classify(self, exc: Exception) -> StoreResult[Any]:
        return StoreResult.fail(str(exc), StoreErrorCode.UNKNOWN)

    # endregion

    def new_id(self) -> str:
        return uuid.uuid4().hex

    def _resolve(self, value: Any, now: str) -> Any:
        if value is SERVER_TIMESTAMP:
            return now
        if isinstance(value, dict):
            return {k: self._resolve(v, now) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [self._resolve(v, now) for v in value]
        return value

    # region Reads
    def get(self, path: str) -> StoreResult[Document]:
        try:
            with self._lock:
                document = self._load(path)
        except Exception as exc:  # noqa: BLE001
            return self._classify(exc)
        if document is None:
            return StoreResult.fail(f"Document not found: {path}", StoreErrorCode.NOT_FOUND)
        return StoreResult.ok(document)

    def query(self, query: Query) -> StoreResult[List[Document]]:
        try:
            with self._lock:
                documents = self._load_collection(query.collection)
            return StoreResult.ok(query.run(documents))
        except Exception as exc:  # noqa: BLE001
            return self._classify(exc)

    # endregion

    # region Writes
    def batch(self) -> WriteBatch:
        return WriteBatch(self)

    def set(self, path: str, data: Dict[str, Any], merge: bool = False) -> StoreResult[str]:
        result = self.batch().set(path, data, merge).commit()
        return StoreResult.ok(doc_id_of(path)) if result.success else StoreResult.fail(result.error, result.code)

    def add(self, collection: str, data: Dict[str, Any]) -> StoreResult[str]:
        batch = self.batch()
        doc_id = batch.add(collection, data)
        result = batch.commit()
        return StoreResult.ok(doc_id) if result.success else StoreResult.fail(result.error, result.code)

    def update(self, path: str, data: Dict[str, Any]) -> StoreResult[None]:
        return self.batch().update(path, data).commit()

    def delete(self, path: str) -> StoreResult[None]:
        return self.batch().delete(path).commit()

    def apply(self, ops: List[WriteOp]) -> StoreResult[None]:
        if not ops:
            return StoreResult.ok()
        try:
            with self._lock:
                now = to_iso(self.clock())
                staged: Dict[str, Optional[Dict[str, Any]]] = {}
                resolved: List[Tuple[WriteOp, Optional[Dict[str, Any]], int]] = []
                for op in ops:
                    if op.path in staged:
                        existing = staged[op.path]
                    else:
                        loaded = self._load(op.path)
                        existing = loaded.data if loaded else None
                    if op.kind == "delete":
                        data = None
                    elif op.kind == "update":
                        if existing is None:
                            raise _MissingDocument(op.path)
                        data = _merge(existing, self._resolve(op.data, now))
                    elif op.merge and existing is not None:
                        data = _merge(existing, self._resolve(op.data, now))
                    else:
                        data = self._resolve(op.data, now)
                    staged[op.path] = data
                    resolved.append((op, data, next(self._sequence)))
                self._write(resolved)
        except _MissingDocument as exc:
            return StoreResult.fail(str(exc), StoreErrorCode.NOT_FOUND)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Store write failed: %s", exc)
            return self._classify(exc)
        self._notify({collection_of(op.path) for op in ops})
        return StoreResult.ok()

    # endregion

    # region Subscriptions
    def subscribe(
        self,
        query: Query,
        token: Optional[CancellationToken] = None,
        transform: Optional[Callable[[List[Document]], T]] = None,
    ) -> Subscription[T]:
        subscription: Subscription[T] = Subscription(token, transform)
        with self._lock:
            self._subscriptions.append((query, subscription))
        subscription.token.on_cancel(lambda: self._unsubscribe(subscription))
        self._deliver(query, subscription)
        return subscription

    def _unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            self._subscriptions = [(q, s) for q, s in self._subscriptions if s is not subscription]

    def _deliver(self, query: Query, subscription: Subscription) -> None:
        result = self.query(query)
        if result.success:
            try:
                subscription.push(result.data or [])
            except Exception as exc:  # noqa: BLE001
                logger.warning("Subscription on %s ended: %s", query.collection, exc)
                subscription.fail(f"Subscription snapshot failed: {exc}")
                self._unsubscribe(subscription)
        else:
            subscription.fail(result.error or "Subscription query failed")
            self._unsubscribe(subscription)

    def _notify(self, collections: set) -> None:
        with self._lock:
            targets = [(q, s) for q, s in self._subscriptions if q.collection in collections]
        for query, subscription in targets:
            if subscription.active:
                self._deliver(query, subscription)

    # endregion


class InMemoryDocumentStore(DocumentStore):
    """
    Dict backed store for local runs and tests. Documents are deep copied on
    the way in and out so callers never share state with the store.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        super().__init__(clock)
        self.documents: Dict[str, Document] = {}

    def _load(self, path: str) -> Optional[Document]:
        document = self.documents.get(path)
        return deepcopy(document) if document else None

    def _load_collection(self, collection: str) -> List[Document]:
        return [deepcopy(d) for path, d in self.documents.items() if collection_of(path) == collection]

    def _write(self, ops: List[Tuple[WriteOp, Optional[Dict[str, Any]], int]]) -> None:
        for op, data, sequence in ops:
            if data is None:
                self.documents.pop(op.path, None)
            else:
                self.documents[op.path] = Document(op.path, deepcopy(data), sequence)


Base = declarative_base()


class DocumentModel(Base):
    __tablename__ = "documents"
    path = Column(String, primary_key=True)
    collection = Column(String, index=True)
    data_json = Column(Text)
    sequence = Column(Integer)


class SqlAlchemyDocumentStore(DocumentStore):
    """
    SQL-backed store using SQLAlchemy. Works with SQLite/Postgres URLs.
    Documents are kept as JSON text; filtering and ordering run in Python so
    both backends share the exact query semantics.
    """

    def __init__(self, database_url: str, clock: Callable[[], datetime] = utcnow):
        super().__init__(clock)
        self.engine = create_engine(database_url, future=True)
        Base.metadata.create_all(self.engine)
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False, future=True)
        with self._session() as session:
            highest = session.execute(select(DocumentModel.sequence).order_by(DocumentModel.sequence.desc())).first()
        self._sequence = itertools.count((highest[0] if highest and highest[0] else 0) + 1)

    def _session(self) -> Session:
        return self.SessionLocal()

    def _to_document(self, model: DocumentModel) -> Document:
        return Document(model.path, json.loads(model.data_json or "{}"), int(model.sequence or 0))

    def _load(self, path: str) -> Optional[Document]:
        with self._session() as session:
            model = session.get(DocumentModel, path)
            return self._to_document(model) if model else None

    def _load_collection(self, collection: str) -> List[Document]:
        with self._session() as session:
            stmt = select(DocumentModel).where(DocumentModel.collection == collection)
            return [self._to_document(m) for m in session.execute(stmt).scalars().all()]

    def _write(self, ops: List[Tuple[WriteOp, Optional[Dict[str, Any]], int]]) -> None:
        with self._session() as session:
            try:
                for op, data, sequence in ops:
                    if data is None:
                        session.execute(delete(DocumentModel).where(DocumentModel.path == op.path))
                    else:
                        session.merge(
                            DocumentModel(
                                path=op.path,
                                collection=collection_of(op.path),
                                data_json=json.dumps(data),
                                sequence=sequence,
                            )
                        )
                session.commit()
            except SQLAlchemyError:
                session.rollback()
                raise

    def _classify(self, exc: Exception) -> StoreResult[Any]:
        if isinstance(exc, OperationalError):
            return StoreResult.fail(str(exc), StoreErrorCode.UNAVAILABLE)
        if isinstance(exc, IntegrityError):
            return StoreResult.fail(str(exc), StoreErrorCode.ALREADY_EXISTS)
        return StoreResult.fail(str(exc), StoreErrorCode.UNKNOWN)
