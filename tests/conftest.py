"""Pytest fixtures and configuration for tasksync tests."""

import pytest
from datetime import datetime
from fastapi.testclient import TestClient

from tasksync.database.store import InMemoryStore
from tasksync.services.task_service import TaskService
from tasksync.services.user_service import UserService


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep tests independent of the developer's environment / .env file."""
    for name in (
        "MONGODB_URI",
        "DB_USER",
        "DB_PASS",
        "DB_HOST",
        "DB_NAME",
        "DB_TIMEOUT_MS",
        "TASKSYNC_USE_IN_MEMORY_STORE",
        "TASKSYNC_REQUIRE_DB",
        "TASKSYNC_CLIENT_QUEUE_SIZE",
    ):
        monkeypatch.delenv(name, raising=False)
    # Retry quickly if a test breaks the change stream
    monkeypatch.setenv("TASKSYNC_BRIDGE_BACKOFF_SEC", "0.01")
    monkeypatch.setenv("TASKSYNC_BRIDGE_BACKOFF_MAX_SEC", "0.05")


@pytest.fixture
def store():
    """Fresh in-memory document store for each test."""
    return InMemoryStore()


@pytest.fixture
def task_service(store):
    """Create a TaskService instance for testing."""
    return TaskService(store)


@pytest.fixture
def user_service(store):
    """Create a UserService instance for testing."""
    return UserService(store)


@pytest.fixture
def test_owner_id():
    """Owner externalId for owner-scope tests."""
    return "owner-a"


@pytest.fixture
def sample_task_base(test_owner_id):
    """Base task payload for creating test tasks.

    Returns a dict with default task attributes that can be overridden.
    """
    return {
        "title": "Test Task",
        "description": "Test description",
        "category": "work",
        "ownerId": test_owner_id,
    }


@pytest.fixture
def sample_task_document(sample_task_base):
    """Raw task document as stored in the tasks collection."""
    return {**sample_task_base, "createdAt": datetime(2024, 1, 1, 12, 0, 0)}


@pytest.fixture
def app(store):
    """Application wired to the in-memory store."""
    from tasksync.api.app import create_app
    return create_app(store=store)


@pytest.fixture
def test_client(app):
    """FastAPI test client; the lifespan (store connect, bridge) runs for the duration."""
    with TestClient(app) as client:
        yield client
