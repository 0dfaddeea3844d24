"""Tests for the document store adapters."""

import asyncio
import pytest
from unittest.mock import AsyncMock, MagicMock

from bson import ObjectId
from pymongo.errors import AutoReconnect, DuplicateKeyError, OperationFailure

from tasksync.database.store import InMemoryStore, MongoStore, parse_object_id
from tasksync.errors import AlreadyExists, ResumeTokenExpired, StoreUnavailable, ValidationError


class TestParseObjectId:
    """Identifier parsing."""

    def test_valid_hex_string(self):
        oid = ObjectId()
        assert parse_object_id(str(oid)) == oid

    def test_object_id_passes_through(self):
        oid = ObjectId()
        assert parse_object_id(oid) is oid

    @pytest.mark.parametrize("raw", ["nonexistent-id", "123", "", None, "z" * 24])
    def test_malformed_identifier_is_validation_error(self, raw):
        with pytest.raises(ValidationError, match="Invalid identifier"):
            parse_object_id(raw)


class TestInMemoryStore:
    """Test InMemoryStore CRUD operations."""

    def test_insert_generates_unique_ids(self, store, sample_task_document):
        async def scenario():
            first = await store.insert("tasks", sample_task_document)
            second = await store.insert("tasks", sample_task_document)
            return first, second

        first, second = asyncio.run(scenario())
        assert first != second
        assert ObjectId.is_valid(first) and ObjectId.is_valid(second)

    def test_insert_does_not_mutate_caller_document(self, store, sample_task_document):
        asyncio.run(store.insert("tasks", sample_task_document))
        assert "_id" not in sample_task_document

    def test_find_one_and_find_many(self, store, sample_task_document):
        async def scenario():
            task_id = await store.insert("tasks", sample_task_document)
            await store.insert("tasks", {**sample_task_document, "ownerId": "owner-b"})
            found = await store.find_one("tasks", {"_id": ObjectId(task_id)})
            owned = await store.find_many("tasks", {"ownerId": "owner-b"})
            everything = await store.find_many("tasks", {})
            missing = await store.find_one("tasks", {"_id": ObjectId()})
            return task_id, found, owned, everything, missing

        task_id, found, owned, everything, missing = asyncio.run(scenario())
        assert str(found["_id"]) == task_id
        assert found["title"] == sample_task_document["title"]
        assert [d["ownerId"] for d in owned] == ["owner-b"]
        assert len(everything) == 2
        assert missing is None

    def test_find_many_preserves_insertion_order(self, store):
        async def scenario():
            for title in ("Task 1", "Task 2", "Task 3"):
                await store.insert("tasks", {"title": title})
            return await store.find_many("tasks", {})

        assert [d["title"] for d in asyncio.run(scenario())] == ["Task 1", "Task 2", "Task 3"]

    def test_update_and_delete_counts(self, store, sample_task_document):
        async def scenario():
            oid = ObjectId(await store.insert("tasks", sample_task_document))
            matched = await store.update_one("tasks", oid, {"title": "New"})
            unmatched = await store.update_one("tasks", ObjectId(), {"title": "New"})
            updated = await store.find_one("tasks", {"_id": oid})
            deleted = await store.delete_one("tasks", oid)
            deleted_again = await store.delete_one("tasks", oid)
            return matched, unmatched, updated, deleted, deleted_again

        matched, unmatched, updated, deleted, deleted_again = asyncio.run(scenario())
        assert (matched, unmatched) == (1, 0)
        assert updated["title"] == "New"
        assert updated["description"] == "Test description"
        assert (deleted, deleted_again) == (1, 0)

    def test_returned_documents_are_copies(self, store, sample_task_document):
        async def scenario():
            oid = ObjectId(await store.insert("tasks", sample_task_document))
            found = await store.find_one("tasks", {"_id": oid})
            found["title"] = "Changed locally"
            return await store.find_one("tasks", {"_id": oid})

        assert asyncio.run(scenario())["title"] == sample_task_document["title"]

    def test_duplicate_external_id_is_rejected(self, store):
        asyncio.run(store.insert("users", {"externalId": "uid-1"}))

        with pytest.raises(AlreadyExists):
            asyncio.run(store.insert("users", {"externalId": "uid-1"}))

        assert len(asyncio.run(store.find_many("users", {}))) == 1
        # Tasks carry no unique index on ownerId
        asyncio.run(store.insert("tasks", {"ownerId": "A"}))
        asyncio.run(store.insert("tasks", {"ownerId": "A"}))


class TestInMemoryChangeFeed:
    """Change stream emulation."""

    def test_watch_delivers_insert_update_delete(self, store, sample_task_document):
        async def scenario():
            events = []
            async with store.watch("tasks") as stream:
                oid = ObjectId(await store.insert("tasks", sample_task_document))
                await store.update_one("tasks", oid, {"title": "Renamed"})
                await store.delete_one("tasks", oid)
                # Other collections are not part of this stream
                await store.insert("users", {"externalId": "u1"})
                async for change in stream:
                    events.append(change)
                    if len(events) == 3:
                        break
            return oid, events

        oid, events = asyncio.run(scenario())
        assert [e["operationType"] for e in events] == ["insert", "update", "delete"]
        assert all(e["documentKey"]["_id"] == oid for e in events)
        assert events[1]["fullDocument"]["title"] == "Renamed"
        assert "fullDocument" not in events[2]
        assert len({e["_id"]["_data"] for e in events}) == 3

    def test_watch_resumes_after_token(self, store):
        async def scenario():
            await store.insert("tasks", {"title": "first"})
            await store.insert("tasks", {"title": "second"})
            await store.insert("tasks", {"title": "third"})
            # Token of the first recorded change
            first_token = store._history["tasks"][0]["_id"]
            seen = []
            async with store.watch("tasks", resume_after=first_token) as stream:
                async for change in stream:
                    seen.append(change["fullDocument"]["title"])
                    if len(seen) == 2:
                        break
            return seen

        assert asyncio.run(scenario()) == ["second", "third"]

    def test_watch_with_unknown_token_raises(self, store):
        async def scenario():
            async with store.watch("tasks", resume_after={"_data": "bogus"}):
                pass

        with pytest.raises(ResumeTokenExpired):
            asyncio.run(scenario())

    def test_watchers_are_removed_on_exit(self, store):
        async def scenario():
            async with store.watch("tasks"):
                during = store.watcher_count("tasks")
            return during, store.watcher_count("tasks")

        assert asyncio.run(scenario()) == (1, 0)

    def test_close_ends_open_streams(self, store):
        async def scenario():
            seen = []
            async with store.watch("tasks") as stream:
                await store.close()
                async for change in stream:
                    seen.append(change)
            return seen

        assert asyncio.run(scenario()) == []

    def test_interrupt_raises_in_stream(self, store):
        async def scenario():
            async with store.watch("tasks") as stream:
                store.interrupt_watchers("tasks")
                async for _ in stream:
                    pass

        with pytest.raises(StoreUnavailable, match="interrupted"):
            asyncio.run(scenario())


def _mongo_store(collection, timeout_sec=1.0):
    if not isinstance(collection.create_index, AsyncMock):
        collection.create_index = AsyncMock()
    db = MagicMock()
    db.__getitem__.return_value = collection
    client = MagicMock()
    client.__getitem__.return_value = db
    return MongoStore(client, "taskManagerDB", timeout_sec=timeout_sec), client


class TestMongoStore:
    """MongoStore driver calls and error translation (no server required)."""

    def test_update_uses_set_and_returns_matched_count(self):
        collection = MagicMock()
        collection.update_one = AsyncMock(return_value=MagicMock(matched_count=1))
        store, _ = _mongo_store(collection)
        oid = ObjectId()

        matched = asyncio.run(store.update_one("tasks", oid, {"title": "t2"}))

        assert matched == 1
        collection.update_one.assert_awaited_once_with({"_id": oid}, {"$set": {"title": "t2"}})

    def test_insert_returns_string_id(self):
        oid = ObjectId()
        collection = MagicMock()
        collection.insert_one = AsyncMock(return_value=MagicMock(inserted_id=oid))
        store, _ = _mongo_store(collection)

        assert asyncio.run(store.insert("tasks", {"title": "t"})) == str(oid)

    def test_delete_returns_deleted_count(self):
        collection = MagicMock()
        collection.delete_one = AsyncMock(return_value=MagicMock(deleted_count=0))
        store, _ = _mongo_store(collection)

        assert asyncio.run(store.delete_one("tasks", ObjectId())) == 0

    def test_driver_errors_become_store_unavailable(self):
        collection = MagicMock()
        collection.find_one = AsyncMock(side_effect=AutoReconnect("connection closed"))
        store, _ = _mongo_store(collection)

        with pytest.raises(StoreUnavailable):
            asyncio.run(store.find_one("tasks", {}))

    def test_slow_operations_time_out(self):
        async def never_finishes(document):
            await asyncio.sleep(10)

        collection = MagicMock()
        collection.insert_one = never_finishes
        store, _ = _mongo_store(collection, timeout_sec=0.01)

        with pytest.raises(StoreUnavailable, match="timed out"):
            asyncio.run(store.insert("tasks", {"title": "t"}))

    def test_watch_translates_lost_resume_token(self):
        class _ExpiredStream:
            async def __aenter__(self):
                raise OperationFailure("resume point may no longer be in the oplog", code=286)

            async def __aexit__(self, *exc_info):
                return False

        collection = MagicMock()
        collection.watch.return_value = _ExpiredStream()
        store, _ = _mongo_store(collection)

        async def scenario():
            async with store.watch("tasks", resume_after={"_data": "old"}):
                pass

        with pytest.raises(ResumeTokenExpired):
            asyncio.run(scenario())
        collection.watch.assert_called_once_with(full_document="updateLookup", resume_after={"_data": "old"})

    def test_close_closes_client(self):
        store, client = _mongo_store(MagicMock())
        asyncio.run(store.close())
        client.close.assert_called_once()

    def test_duplicate_key_becomes_already_exists(self):
        collection = MagicMock()
        collection.insert_one = AsyncMock(side_effect=DuplicateKeyError("E11000 duplicate key error"))
        store, _ = _mongo_store(collection)

        with pytest.raises(AlreadyExists):
            asyncio.run(store.insert("users", {"externalId": "uid-1"}))

    def test_indexes_are_created_once_the_store_comes_up(self):
        collection = MagicMock()
        collection.create_index = AsyncMock(side_effect=[AutoReconnect("no primary"), None, None])
        collection.insert_one = AsyncMock(return_value=MagicMock(inserted_id=ObjectId()))
        store, _ = _mongo_store(collection)

        # Startup while the database is down
        assert asyncio.run(store.ensure_indexes()) is False
        assert collection.create_index.await_count == 1

        asyncio.run(store.insert("users", {"externalId": "uid-1"}))
        asyncio.run(store.insert("users", {"externalId": "uid-2"}))

        # One retry for each configured index, then never again
        assert collection.create_index.await_count == 3
        collection.create_index.assert_any_await("externalId", unique=True)
        collection.create_index.assert_any_await("ownerId", unique=False)
