"""Document store used by the survey, matching and dashboard services.

The services only rely on the abstract ``RecordStore`` contract::

    insert(collection, record) -> id
    update(collection, id, fields, expected_revision=None) -> Document
    query_equals(collection, {field: value, ...}) -> [Document, ...]
    subscribe_latest(collection, order_field, limit) -> Subscription

Two implementations are provided: ``MemoryRecordStore`` for a single process
(and tests) and ``DatabaseRecordStore`` which keeps JSON documents in one SQL
table through the ``databases`` async driver.
"""

from __future__ import annotations

import asyncio
import copy
import json
import re
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from databases import Database

from services.date_utils import coerce_timestamp, utc_now
from services.logging_utils import get_logger


class StorageError(Exception):
    """Raised when a query or write against the record store fails."""

    retryable = True


class StaleRecordError(StorageError):
    """Raised when a conditional update finds a newer revision than expected."""


class _ServerTimestamp:
    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"

    def __copy__(self) -> "_ServerTimestamp":
        return self

    def __deepcopy__(self, memo: Dict[int, Any]) -> "_ServerTimestamp":
        return self


# Placeholder replaced by the store clock when a record is written
SERVER_TIMESTAMP = _ServerTimestamp()

_FIELD_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@dataclass
class Document:
    """A stored record: its id, field data and write revision."""

    id: str
    data: Dict[str, Any] = field(default_factory=dict)
    revision: int = 0

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, **self.data}


def resolve_server_timestamps(fields: Dict[str, Any], now: Optional[datetime] = None) -> Dict[str, Any]:
    """Return a copy of ``fields`` with SERVER_TIMESTAMP placeholders filled."""

    now = now or utc_now()
    return {k: (now if v is SERVER_TIMESTAMP else v) for k, v in fields.items()}


def _order_key(value: Any) -> Optional[float]:
    ts = coerce_timestamp(value) if not isinstance(value, (int, float)) else None
    if ts is not None:
        return ts.timestamp()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    return None


class Subscription:
    """Cancellable stream of snapshots of the latest documents in a collection.

    Iterating yields a list of ``Document`` objects ordered newest first.
    Snapshots that arrive faster than the consumer reads them coalesce: only
    the most recent pending snapshot is delivered.
    """

    def __init__(self, store: "RecordStore", collection: str, order_field: str, limit: int) -> None:
        self.store = store
        self.collection = collection
        self.order_field = order_field
        self.limit = limit
        self._pending: Optional[List[Document]] = None
        self._ready = asyncio.Event()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, snapshot: List[Document]) -> None:
        if self._closed:
            return
        self._pending = snapshot
        self._ready.set()

    def close(self) -> None:
        """Stop delivering snapshots and unregister from the store."""
        if self._closed:
            return
        self._closed = True
        self._pending = None
        self._ready.set()
        self.store._unsubscribe(self)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> List[Document]:
        while True:
            if self._closed:
                raise StopAsyncIteration
            if self._pending is not None:
                snapshot, self._pending = self._pending, None
                return snapshot
            self._ready.clear()
            await self._ready.wait()

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()


class RecordStore(ABC):
    """Abstract document store with push-based "latest N" subscriptions."""

    def __init__(self) -> None:
        self._subscriptions: Dict[str, List[Subscription]] = {}

    @abstractmethod
    async def insert(self, collection: str, record: Dict[str, Any]) -> str:
        """Store a new record and return its generated id."""

    @abstractmethod
    async def get(self, collection: str, record_id: str) -> Optional[Document]:
        """Return one document, or None if it does not exist."""

    @abstractmethod
    async def update(
        self,
        collection: str,
        record_id: str,
        fields: Dict[str, Any],
        expected_revision: Optional[int] = None,
    ) -> Document:
        """Merge ``fields`` into a document, all or nothing.

        When ``expected_revision`` is given the write only happens if the
        stored revision still equals it; otherwise StaleRecordError is raised.
        """

    @abstractmethod
    async def query_equals(self, collection: str, criteria: Dict[str, Any]) -> List[Document]:
        """Return documents whose fields equal every criterion, in insertion order."""

    @abstractmethod
    async def fetch_latest(self, collection: str, order_field: str, limit: int) -> List[Document]:
        """Return up to ``limit`` documents ordered by ``order_field`` descending.

        Documents without a usable ``order_field`` value are left out.
        """

    async def subscribe_latest(self, collection: str, order_field: str, limit: int) -> Subscription:
        """Open a subscription primed with the current snapshot."""
        sub = Subscription(self, collection, order_field, limit)
        self._subscriptions.setdefault(collection, []).append(sub)
        await self._refresh(sub)
        get_logger("store.subscribe").debug(
            "subscribed", extra={"collection": collection, "limit": limit}
        )
        return sub

    def _unsubscribe(self, sub: Subscription) -> None:
        subs = self._subscriptions.get(sub.collection, [])
        if sub in subs:
            subs.remove(sub)

    async def _refresh(self, sub: Subscription) -> None:
        try:
            sub.push(await self.fetch_latest(sub.collection, sub.order_field, sub.limit))
        except StorageError:
            # subscribers keep their last snapshot until the next write
            get_logger("store.subscribe").exception(
                "snapshot refresh failed", extra={"collection": sub.collection}
            )

    async def _publish(self, collection: str) -> None:
        for sub in list(self._subscriptions.get(collection, [])):
            await self._refresh(sub)

    async def close(self) -> None:
        for subs in list(self._subscriptions.values()):
            for sub in list(subs):
                sub.close()


class MemoryRecordStore(RecordStore):
    """In-process store; documents are deep-copied in and out."""

    def __init__(self) -> None:
        super().__init__()
        self._collections: Dict[str, Dict[str, Document]] = {}

    def _docs(self, collection: str) -> Dict[str, Document]:
        return self._collections.setdefault(collection, {})

    async def insert(self, collection: str, record: Dict[str, Any]) -> str:
        record_id = uuid.uuid4().hex
        data = resolve_server_timestamps(copy.deepcopy(record))
        self._docs(collection)[record_id] = Document(record_id, data, 0)
        await self._publish(collection)
        return record_id

    async def get(self, collection: str, record_id: str) -> Optional[Document]:
        doc = self._docs(collection).get(record_id)
        return copy.deepcopy(doc) if doc else None

    async def update(
        self,
        collection: str,
        record_id: str,
        fields: Dict[str, Any],
        expected_revision: Optional[int] = None,
    ) -> Document:
        doc = self._docs(collection).get(record_id)
        if doc is None:
            raise StorageError(f"{collection}/{record_id} does not exist")
        if expected_revision is not None and doc.revision != expected_revision:
            raise StaleRecordError(
                f"{collection}/{record_id} is at revision {doc.revision}, expected {expected_revision}"
            )
        doc.data.update(resolve_server_timestamps(copy.deepcopy(fields)))
        doc.revision += 1
        await self._publish(collection)
        return copy.deepcopy(doc)

    async def query_equals(self, collection: str, criteria: Dict[str, Any]) -> List[Document]:
        return [
            copy.deepcopy(doc)
            for doc in self._docs(collection).values()
            if all(k in doc.data and doc.data[k] == v for k, v in criteria.items())
        ]

    async def fetch_latest(self, collection: str, order_field: str, limit: int) -> List[Document]:
        keyed = [
            (key, doc)
            for doc in self._docs(collection).values()
            for key in [_order_key(doc.data.get(order_field))]
            if key is not None
        ]
        keyed.sort(key=lambda item: item[0], reverse=True)
        return [copy.deepcopy(doc) for _, doc in keyed[:limit]]


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _dumps(data: Dict[str, Any]) -> str:
    return json.dumps(data, default=_json_default)


def _check_field(name: str) -> str:
    if not _FIELD_NAME.match(name):
        raise StorageError(f"Unsupported field name: {name!r}")
    return name


class DatabaseRecordStore(RecordStore):
    """Asynchronous record store on top of a single ``documents`` table."""

    TABLE = "documents"

    def __init__(self, database_url: str, db: Optional[Database] = None) -> None:
        super().__init__()
        self.database_url = database_url
        self.db = db or Database(database_url)

    @property
    def is_postgres(self) -> bool:
        return self.database_url.startswith("postgres")

    async def _connect(self) -> None:
        if not self.db.is_connected:
            await self.db.connect()

    async def close(self) -> None:
        await super().close()
        if self.db.is_connected:
            await self.db.disconnect()

    async def create_schema(self) -> None:
        """Create the documents table if it does not exist."""

        await self._connect()
        if self.is_postgres:
            query = (
                f"CREATE TABLE IF NOT EXISTS {self.TABLE} ("
                "seq BIGSERIAL PRIMARY KEY,"
                "id TEXT NOT NULL UNIQUE,"
                "collection TEXT NOT NULL,"
                "revision INTEGER NOT NULL DEFAULT 0,"
                "data TEXT NOT NULL"
                ")"
            )
        else:
            query = (
                f"CREATE TABLE IF NOT EXISTS {self.TABLE} ("
                "seq INTEGER PRIMARY KEY AUTOINCREMENT,"
                "id TEXT NOT NULL UNIQUE,"
                "collection TEXT NOT NULL,"
                "revision INTEGER NOT NULL DEFAULT 0,"
                "data TEXT NOT NULL"
                ")"
            )
        try:
            await self.db.execute(query)
        except Exception as e:
            raise StorageError(f"schema creation failed: {e}") from e

    def _extract(self, name: str) -> str:
        name = _check_field(name)
        if self.is_postgres:
            return f"(CAST(data AS jsonb) ->> '{name}')"
        return f"json_extract(data, '$.{name}')"

    def _param(self, value: Any) -> Any:
        # ->> yields text on postgres; sqlite's json_extract yields native values
        if self.is_postgres:
            if isinstance(value, bool):
                return "true" if value else "false"
            return None if value is None else str(value)
        if isinstance(value, bool):
            return int(value)
        return value

    @staticmethod
    def _row_to_document(row: Any) -> Document:
        return Document(id=row["id"], data=json.loads(row["data"]), revision=int(row["revision"]))

    async def insert(self, collection: str, record: Dict[str, Any]) -> str:
        await self._connect()
        record_id = uuid.uuid4().hex
        data = resolve_server_timestamps(record)
        try:
            await self.db.execute(
                f"INSERT INTO {self.TABLE} (id, collection, revision, data) "
                "VALUES (:id, :collection, 0, :data)",
                {"id": record_id, "collection": collection, "data": _dumps(data)},
            )
        except Exception as e:
            raise StorageError(f"insert into {collection} failed: {e}") from e
        await self._publish(collection)
        return record_id

    async def get(self, collection: str, record_id: str) -> Optional[Document]:
        await self._connect()
        try:
            row = await self.db.fetch_one(
                f"SELECT id, revision, data FROM {self.TABLE} "
                "WHERE collection = :collection AND id = :id",
                {"collection": collection, "id": record_id},
            )
        except Exception as e:
            raise StorageError(f"read of {collection}/{record_id} failed: {e}") from e
        return self._row_to_document(row) if row else None

    async def update(
        self,
        collection: str,
        record_id: str,
        fields: Dict[str, Any],
        expected_revision: Optional[int] = None,
    ) -> Document:
        await self._connect()
        lock = " FOR UPDATE" if self.is_postgres else ""
        try:
            async with self.db.transaction():
                row = await self.db.fetch_one(
                    f"SELECT id, revision, data FROM {self.TABLE} "
                    f"WHERE collection = :collection AND id = :id{lock}",
                    {"collection": collection, "id": record_id},
                )
                if row is None:
                    raise StorageError(f"{collection}/{record_id} does not exist")
                doc = self._row_to_document(row)
                if expected_revision is not None and doc.revision != expected_revision:
                    raise StaleRecordError(
                        f"{collection}/{record_id} is at revision {doc.revision}, "
                        f"expected {expected_revision}"
                    )
                doc.data.update(resolve_server_timestamps(fields))
                doc.revision += 1
                await self.db.execute(
                    f"UPDATE {self.TABLE} SET data = :data, revision = :revision "
                    "WHERE collection = :collection AND id = :id",
                    {
                        "data": _dumps(doc.data),
                        "revision": doc.revision,
                        "collection": collection,
                        "id": record_id,
                    },
                )
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"update of {collection}/{record_id} failed: {e}") from e
        await self._publish(collection)
        return Document(doc.id, json.loads(_dumps(doc.data)), doc.revision)

    async def query_equals(self, collection: str, criteria: Dict[str, Any]) -> List[Document]:
        await self._connect()
        clauses = ["collection = :collection"]
        values: Dict[str, Any] = {"collection": collection}
        for i, (name, value) in enumerate(criteria.items()):
            clauses.append(f"{self._extract(name)} = :v{i}")
            values[f"v{i}"] = self._param(value)
        query = (
            f"SELECT id, revision, data FROM {self.TABLE} "
            f"WHERE {' AND '.join(clauses)} ORDER BY seq"
        )
        try:
            rows = await self.db.fetch_all(query, values)
        except Exception as e:
            raise StorageError(f"query on {collection} failed: {e}") from e
        return [self._row_to_document(r) for r in rows]

    async def fetch_latest(self, collection: str, order_field: str, limit: int) -> List[Document]:
        await self._connect()
        column = self._extract(order_field)
        query = (
            f"SELECT id, revision, data FROM {self.TABLE} "
            f"WHERE collection = :collection AND {column} IS NOT NULL "
            f"ORDER BY {column} DESC, seq DESC LIMIT :limit"
        )
        try:
            rows = await self.db.fetch_all(query, {"collection": collection, "limit": int(limit)})
        except Exception as e:
            raise StorageError(f"latest query on {collection} failed: {e}") from e
        return [self._row_to_document(r) for r in rows]
