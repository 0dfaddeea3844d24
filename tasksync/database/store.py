"""Document store adapters.

Two implementations share the `DocumentStore` contract:
- `MongoStore`: MongoDB through the async `motor` driver (production)
- `InMemoryStore`: dict-backed store with an in-process change feed (dev mode and tests)
"""

import asyncio
import copy
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional, Protocol, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from pymongo.errors import DuplicateKeyError, OperationFailure, PyMongoError

from tasksync.errors import AlreadyExists, ResumeTokenExpired, StoreUnavailable, ValidationError
from tasksync.models.constants import STORE_INDEXES

logger = logging.getLogger(__name__)

# Server error codes meaning a change stream cannot resume from the given token
_RESUME_FAILURE_CODES = {260, 280, 286}

Document = Dict[str, Any]
ChangeEvent = Dict[str, Any]


def parse_object_id(raw: Any) -> ObjectId:
    """Convert a client-supplied identifier to the store's native ObjectId.

    Raises:
        ValidationError: If the value is not a valid 24-hex ObjectId
    """
    if isinstance(raw, ObjectId):
        return raw
    try:
        return ObjectId(str(raw))
    except (InvalidId, TypeError) as e:
        raise ValidationError(f"Invalid identifier: {raw!r}") from e


class DocumentStore(Protocol):
    """Interface for document database access."""

    async def insert(self, collection: str, document: Document) -> str:
        """Insert and return the new id. Raises AlreadyExists on a unique-index conflict."""
        ...

    async def find_one(self, collection: str, filter: Document) -> Optional[Document]:
        ...

    async def find_many(self, collection: str, filter: Document) -> List[Document]:
        ...

    async def update_one(self, collection: str, id: ObjectId, patch: Document) -> int:
        ...

    async def delete_one(self, collection: str, id: ObjectId) -> int:
        ...

    def watch(self, collection: str, resume_after: Optional[Document] = None):
        """Async context manager yielding an async iterator of change events."""
        ...

    async def ping(self) -> None:
        ...

    async def close(self) -> None:
        ...


class MongoStore:
    """MongoDB-backed store using a shared motor client.

    Indexes are created on the first successful `ensure_indexes` call. A
    store that starts while the database is down retries before each insert
    until the indexes exist.
    """

    def __init__(self, client, db_name: str, timeout_sec: float = 5.0, indexes=None):
        self.client = client
        self.db = client[db_name]
        self.timeout_sec = timeout_sec
        self.indexes: Dict[str, List[Tuple[str, bool]]] = STORE_INDEXES if indexes is None else indexes
        self._indexes_ready = False

    async def _run(self, op_name: str, collection: str, awaitable):
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout_sec)
        except asyncio.TimeoutError as e:
            logger.error(f"Store {op_name} on {collection} timed out after {self.timeout_sec}s")
            raise StoreUnavailable(f"{op_name} timed out") from e
        except DuplicateKeyError as e:
            logger.debug(f"Store {op_name} on {collection} hit a duplicate key: {str(e)}")
            raise AlreadyExists(f"{op_name} on {collection}: duplicate key") from e
        except PyMongoError as e:
            logger.error(f"Store {op_name} on {collection} failed: {type(e).__name__}: {str(e)}")
            raise StoreUnavailable(f"{op_name} failed") from e

    async def ensure_indexes(self) -> bool:
        """Create the configured indexes once. Returns False if the store could not be reached."""
        if self._indexes_ready:
            return True
        try:
            for collection, fields in self.indexes.items():
                for field_name, unique in fields:
                    await self._run(
                        "create_index", collection, self.db[collection].create_index(field_name, unique=unique)
                    )
        except StoreUnavailable as e:
            logger.warning(f"Failed to create indexes: {e.message}")
            return False
        self._indexes_ready = True
        logger.info("Store indexes ready")
        return True

    async def insert(self, collection: str, document: Document) -> str:
        await self.ensure_indexes()
        result = await self._run("insert", collection, self.db[collection].insert_one(dict(document)))
        return str(result.inserted_id)

    async def find_one(self, collection: str, filter: Document) -> Optional[Document]:
        return await self._run("find_one", collection, self.db[collection].find_one(filter))

    async def find_many(self, collection: str, filter: Document) -> List[Document]:
        cursor = self.db[collection].find(filter)
        return await self._run("find_many", collection, cursor.to_list(length=None))

    async def update_one(self, collection: str, id: ObjectId, patch: Document) -> int:
        result = await self._run(
            "update_one", collection, self.db[collection].update_one({"_id": id}, {"$set": patch})
        )
        return result.matched_count

    async def delete_one(self, collection: str, id: ObjectId) -> int:
        result = await self._run("delete_one", collection, self.db[collection].delete_one({"_id": id}))
        return result.deleted_count

    @asynccontextmanager
    async def watch(self, collection: str, resume_after: Optional[Document] = None):
        """Open a change stream on `collection`.

        Updates are delivered with the post-image (`fullDocument`) looked up by the server.
        Requires a replica set or sharded cluster.
        """
        try:
            async with self.db[collection].watch(
                full_document="updateLookup",
                resume_after=resume_after,
            ) as stream:
                yield stream
        except OperationFailure as e:
            if e.code in _RESUME_FAILURE_CODES:
                raise ResumeTokenExpired(str(e)) from e
            raise StoreUnavailable(f"change stream failed: {e}") from e
        except PyMongoError as e:
            raise StoreUnavailable(f"change stream failed: {e}") from e

    async def ping(self) -> None:
        await self._run("ping", "admin", self.db.command("ping"))

    async def close(self) -> None:
        self.client.close()


_STREAM_CLOSED = object()


class _QueueStream:
    """Async iterator over change events pushed into a queue."""

    def __init__(self, queue: asyncio.Queue):
        self._queue = queue

    def __aiter__(self) -> "_QueueStream":
        return self

    async def __anext__(self) -> ChangeEvent:
        item = await self._queue.get()
        if item is _STREAM_CLOSED:
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            raise item
        return item


class InMemoryStore:
    """Simple in-memory document store for development and tests.

    Mirrors MongoDB change stream semantics closely enough for the bridge:
    events carry a resume token in `_id`, inserts/updates carry `fullDocument`,
    deletes only carry `documentKey`.
    """

    def __init__(self, history_limit: int = 1000, indexes=None):
        self._collections: Dict[str, Dict[ObjectId, Document]] = {}
        self._watchers: Dict[str, List[asyncio.Queue]] = {}
        self._history: Dict[str, List[ChangeEvent]] = {}
        self._history_limit = history_limit
        self._seq = 0
        self.closed = False
        self._unique_fields = {
            collection: [field_name for field_name, unique in fields if unique]
            for collection, fields in (STORE_INDEXES if indexes is None else indexes).items()
        }

    def _collection(self, name: str) -> Dict[ObjectId, Document]:
        return self._collections.setdefault(name, {})

    @staticmethod
    def _matches(document: Document, filter: Document) -> bool:
        return all(document.get(key) == value for key, value in filter.items())

    def _emit(self, collection: str, operation: str, doc_id: ObjectId, full_document: Optional[Document]) -> None:
        self._seq += 1
        event: ChangeEvent = {
            "_id": {"_data": f"{self._seq:016x}"},
            "operationType": operation,
            "ns": {"coll": collection},
            "documentKey": {"_id": doc_id},
        }
        if full_document is not None:
            event["fullDocument"] = copy.deepcopy(full_document)

        history = self._history.setdefault(collection, [])
        history.append(event)
        if len(history) > self._history_limit:
            del history[: len(history) - self._history_limit]

        for queue in list(self._watchers.get(collection, [])):
            queue.put_nowait(copy.deepcopy(event))

    async def insert(self, collection: str, document: Document) -> str:
        stored = copy.deepcopy(document)
        stored.setdefault("_id", ObjectId())
        for field_name in self._unique_fields.get(collection, []):
            taken = any(
                existing.get(field_name) == stored.get(field_name) for existing in self._collection(collection).values()
            )
            if field_name in stored and taken:
                raise AlreadyExists(f"insert on {collection}: duplicate {field_name}")
        self._collection(collection)[stored["_id"]] = stored
        self._emit(collection, "insert", stored["_id"], stored)
        logger.debug(f"Inserted {stored['_id']} into {collection}")
        return str(stored["_id"])

    async def find_one(self, collection: str, filter: Document) -> Optional[Document]:
        for document in self._collection(collection).values():
            if self._matches(document, filter):
                return copy.deepcopy(document)
        return None

    async def find_many(self, collection: str, filter: Document) -> List[Document]:
        return [
            copy.deepcopy(document)
            for document in self._collection(collection).values()
            if self._matches(document, filter)
        ]

    async def update_one(self, collection: str, id: ObjectId, patch: Document) -> int:
        document = self._collection(collection).get(id)
        if document is None:
            return 0
        document.update(copy.deepcopy(patch))
        self._emit(collection, "update", id, document)
        return 1

    async def delete_one(self, collection: str, id: ObjectId) -> int:
        if self._collection(collection).pop(id, None) is None:
            return 0
        self._emit(collection, "delete", id, None)
        return 1

    def _backlog(self, collection: str, resume_after: Optional[Document]) -> List[ChangeEvent]:
        if resume_after is None:
            return []
        history = self._history.get(collection, [])
        for index, event in enumerate(history):
            if event["_id"] == resume_after:
                return [copy.deepcopy(e) for e in history[index + 1:]]
        raise ResumeTokenExpired(f"resume token {resume_after!r} not in history")

    @asynccontextmanager
    async def watch(self, collection: str, resume_after: Optional[Document] = None):
        if self.closed:
            raise StoreUnavailable("store is closed")
        queue: asyncio.Queue = asyncio.Queue()
        for event in self._backlog(collection, resume_after):
            queue.put_nowait(event)
        watchers = self._watchers.setdefault(collection, [])
        watchers.append(queue)
        try:
            yield _QueueStream(queue)
        finally:
            if queue in watchers:
                watchers.remove(queue)

    def watcher_count(self, collection: str) -> int:
        return len(self._watchers.get(collection, []))

    def interrupt_watchers(self, collection: str, error: Optional[BaseException] = None) -> None:
        """Break every open change stream on `collection` (simulates a stream fault)."""
        error = error or StoreUnavailable("change stream interrupted")
        for queue in list(self._watchers.get(collection, [])):
            queue.put_nowait(error)

    async def ping(self) -> None:
        if self.closed:
            raise StoreUnavailable("store is closed")

    async def close(self) -> None:
        self.closed = True
        for watchers in self._watchers.values():
            for queue in list(watchers):
                queue.put_nowait(_STREAM_CLOSED)
