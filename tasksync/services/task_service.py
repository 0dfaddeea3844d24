"""Task operations: validation plus a single store interaction each."""

import logging
from datetime import datetime
from typing import List, Optional

from pydantic import ValidationError as ModelValidationError

from tasksync.database.store import DocumentStore, parse_object_id
from tasksync.errors import NotFoundError, StoreUnavailable, TaskSyncError, ValidationError
from tasksync.models.constants import TASK_MUTABLE_FIELDS, TASKS_COLLECTION
from tasksync.models.task import Task

logger = logging.getLogger(__name__)


def require_fields(**fields) -> None:
    """Raise ValidationError naming every missing or blank field."""
    missing = [
        name for name, value in fields.items()
        if value is None or (isinstance(value, str) and not value.strip())
    ]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")


class TaskService:
    """Service for Task CRUD operations."""

    def __init__(self, store: DocumentStore):
        self.store = store

    async def create(
        self,
        title: Optional[str],
        description: Optional[str],
        category: Optional[str],
        owner_id: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> str:
        """Create a task and return its store-generated id.

        Args:
            title: Task title (required)
            description: Task description (required)
            category: Task category (required)
            owner_id: Optional externalId of the owning user
            timestamp: Optional client-supplied creation time; defaults to now

        Raises:
            ValidationError: If a required field is missing or empty
            StoreUnavailable: If the store write fails
        """
        require_fields(title=title, description=description, category=category)

        document = {
            "title": title,
            "description": description,
            "category": category,
            "createdAt": timestamp or datetime.utcnow(),
        }
        if owner_id:
            document["ownerId"] = owner_id

        try:
            task_id = await self.store.insert(TASKS_COLLECTION, document)
        except TaskSyncError:
            raise
        except Exception as e:
            logger.error(f"Failed to create task: {type(e).__name__}: {str(e)}")
            raise StoreUnavailable("Failed to add task") from e
        logger.debug(f"Created task {task_id}: {title[:50]}")
        return task_id

    async def list_all(self, owner_id: Optional[str] = None) -> List[Task]:
        """List every task, or only those owned by `owner_id` when given."""
        filter = {"ownerId": owner_id} if owner_id else {}
        try:
            documents = await self.store.find_many(TASKS_COLLECTION, filter)
        except TaskSyncError:
            raise
        except Exception as e:
            logger.error(f"Failed to fetch tasks: {type(e).__name__}: {str(e)}")
            raise StoreUnavailable("Failed to fetch tasks") from e

        tasks = []
        for document in documents:
            try:
                tasks.append(Task.from_document(document))
            except ModelValidationError as e:
                # Written around the API; one bad document must not hide the rest
                logger.warning(f"Skipping malformed task {document.get('_id')}: {e.error_count()} errors")
        return tasks

    async def get(self, task_id: str) -> Task:
        object_id = parse_object_id(task_id)
        try:
            document = await self.store.find_one(TASKS_COLLECTION, {"_id": object_id})
        except TaskSyncError:
            raise
        except Exception as e:
            logger.error(f"Failed to fetch task {task_id}: {type(e).__name__}: {str(e)}")
            raise StoreUnavailable("Failed to fetch task") from e
        if document is None:
            raise NotFoundError(f"Task {task_id} not found")
        return Task.from_document(document)

    async def update(
        self,
        task_id: str,
        title: Optional[str],
        description: Optional[str],
        category: Optional[str],
    ) -> None:
        """Replace a task's title, description and category.

        Raises:
            ValidationError: If a field is missing/empty or the id is malformed
            NotFoundError: If no task matched the id
        """
        require_fields(title=title, description=description, category=category)
        object_id = parse_object_id(task_id)

        values = {"title": title, "description": description, "category": category}
        patch = {name: values[name] for name in TASK_MUTABLE_FIELDS}
        patch["updatedAt"] = datetime.utcnow()
        try:
            matched = await self.store.update_one(TASKS_COLLECTION, object_id, patch)
        except TaskSyncError:
            raise
        except Exception as e:
            logger.error(f"Failed to update task {task_id}: {type(e).__name__}: {str(e)}")
            raise StoreUnavailable("Failed to update task") from e

        if matched == 0:
            raise NotFoundError(f"Task {task_id} not found")
        logger.debug(f"Updated task {task_id}: {title[:50]}")

    async def delete(self, task_id: str) -> None:
        """Delete a task permanently.

        Raises:
            ValidationError: If the id is malformed
            NotFoundError: If no task was deleted
        """
        object_id = parse_object_id(task_id)
        try:
            deleted = await self.store.delete_one(TASKS_COLLECTION, object_id)
        except TaskSyncError:
            raise
        except Exception as e:
            logger.error(f"Failed to delete task {task_id}: {type(e).__name__}: {str(e)}")
            raise StoreUnavailable("Failed to delete task") from e

        if deleted == 0:
            raise NotFoundError(f"Task {task_id} not found")
        logger.debug(f"Deleted task {task_id}")
