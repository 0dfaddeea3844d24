"""Store connection management for tasksync.

This module supports both:
- MongoDB (Atlas or self-hosted) via `MONGODB_URI` or `DB_USER`/`DB_PASS`
- An in-memory store for local development (`TASKSYNC_USE_IN_MEMORY_STORE=true`)
"""

import logging
import os
from typing import Optional
from urllib.parse import quote_plus

from dotenv import load_dotenv
from fastapi import Request
from motor.motor_asyncio import AsyncIOMotorClient

from tasksync.database.store import DocumentStore, InMemoryStore, MongoStore
from tasksync.errors import StoreUnavailable
from tasksync.models.constants import (
    DEFAULT_DB_HOST,
    DEFAULT_DB_NAME,
    DEFAULT_DB_TIMEOUT_MS,
)

load_dotenv()

logger = logging.getLogger(__name__)


def _env_flag(name: str, default: str = "False") -> bool:
    return os.getenv(name, default).lower() == "true"


def get_db_name() -> str:
    return os.getenv("DB_NAME", DEFAULT_DB_NAME)


def get_timeout_ms() -> int:
    return int(os.getenv("DB_TIMEOUT_MS", str(DEFAULT_DB_TIMEOUT_MS)))


def build_mongo_uri() -> Optional[str]:
    """Return the MongoDB connection string from the environment.

    `MONGODB_URI` wins when set. Otherwise an Atlas SRV string is built from
    `DB_USER`, `DB_PASS` and `DB_HOST`. Returns None when neither is configured.
    """
    uri = os.getenv("MONGODB_URI", "").strip()
    if uri:
        return uri

    user = os.getenv("DB_USER")
    password = os.getenv("DB_PASS")
    if not user or not password:
        return None

    host = os.getenv("DB_HOST", DEFAULT_DB_HOST)
    return (
        f"mongodb+srv://{quote_plus(user)}:{quote_plus(password)}@{host}/"
        f"{get_db_name()}?retryWrites=true&w=majority"
    )


def get_client_kwargs() -> dict:
    """Return deterministic AsyncIOMotorClient kwargs.

    This is separated to allow deterministic unit testing without connecting.
    """
    timeout_ms = get_timeout_ms()
    return {
        "serverSelectionTimeoutMS": timeout_ms,
        "connectTimeoutMS": timeout_ms,
        "socketTimeoutMS": timeout_ms,
        "tz_aware": False,
    }


def use_in_memory_store() -> bool:
    return _env_flag("TASKSYNC_USE_IN_MEMORY_STORE")


def require_db() -> bool:
    """Whether an unreachable store should abort startup instead of degrading."""
    return _env_flag("TASKSYNC_REQUIRE_DB")


def build_store() -> DocumentStore:
    """Create the process-wide store (no network I/O yet)."""
    if use_in_memory_store():
        logger.info("Using in-memory store")
        return InMemoryStore()

    uri = build_mongo_uri()
    if not uri:
        raise StoreUnavailable("No MongoDB connection configured. Set MONGODB_URI or DB_USER/DB_PASS.")

    client = AsyncIOMotorClient(uri, **get_client_kwargs())
    return MongoStore(client, get_db_name(), timeout_sec=get_timeout_ms() / 1000)


async def init_store(store: DocumentStore) -> None:
    """Prepare indexes on a freshly connected MongoDB store.

    A store that could not be reached here retries on its first insert.
    """
    if isinstance(store, MongoStore):
        await store.ensure_indexes()


async def connect_store(store: Optional[DocumentStore] = None) -> Optional[DocumentStore]:
    """Connect once at process start.

    Returns the connected store. When the store cannot be reached:
    - `TASKSYNC_REQUIRE_DB=true`: the error propagates and startup fails
    - otherwise: the failure is logged and the (unreachable) store is returned,
      so requests fail with StoreUnavailable until it comes back
    """
    try:
        if store is None:
            store = build_store()
        await store.ping()
        await init_store(store)
        logger.info("Connected to document store")
    except StoreUnavailable as e:
        if require_db():
            logger.error(f"Failed to connect to document store: {e.message}")
            raise
        logger.warning(f"Failed to connect to document store, running degraded: {e.message}")
    return store


def get_store(request: Request) -> DocumentStore:
    """Get the process-wide store (dependency for FastAPI)."""
    store = getattr(request.app.state, "store", None)
    if store is None:
        raise StoreUnavailable("Store is not configured")
    return store
