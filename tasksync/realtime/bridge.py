"""Change notification bridge.

Watches the tasks collection's change stream and forwards each change to every
connected realtime client as a `taskUpdate` event.

Delivery is best-effort and at-most-once: clients that connect after a change
never see it, and nothing is replayed across process restarts. Within one
process the last resume token is kept in memory, so a broken stream is resumed
right after the last change it delivered.
"""

import asyncio
import logging
import os
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from pydantic import ValidationError as ModelValidationError

from tasksync.database.store import DocumentStore
from tasksync.errors import ResumeTokenExpired
from tasksync.models.change_event import ChangeOperation, TaskChangeEvent
from tasksync.models.constants import (
    DEFAULT_BRIDGE_BACKOFF_MAX_SEC,
    DEFAULT_BRIDGE_BACKOFF_SEC,
    TASK_UPDATE_EVENT,
    TASKS_COLLECTION,
)
from tasksync.models.task import Task
from tasksync.realtime.registry import ConnectionRegistry

logger = logging.getLogger(__name__)

_DOCUMENT_OPERATIONS = {ChangeOperation.INSERT.value, ChangeOperation.UPDATE.value, ChangeOperation.REPLACE.value}


class BridgeState(str, Enum):
    """Subscription lifecycle."""
    UNSUBSCRIBED = "unsubscribed"
    SUBSCRIBING = "subscribing"
    ACTIVE = "active"
    CLOSED = "closed"
    ERRORED = "errored"


def to_change_event(change: Dict[str, Any]) -> Optional[TaskChangeEvent]:
    """Convert a raw change stream event to the payload sent to clients.

    Inserts, updates and replaces carry the task's full current state. Deletes
    become a tombstone with the task id. Returns None for events that have
    nothing to forward (other operation types, or an update whose document
    was already gone when the server looked it up).
    """
    operation = change.get("operationType")
    document_key = change.get("documentKey") or {}

    if operation in _DOCUMENT_OPERATIONS:
        full_document = change.get("fullDocument")
        if not full_document:
            return None
        task = Task.from_document(full_document)
        return TaskChangeEvent(operation=operation, taskId=task.id, task=task)

    if operation == ChangeOperation.DELETE.value and "_id" in document_key:
        return TaskChangeEvent(
            operation=ChangeOperation.DELETE,
            taskId=str(document_key["_id"]),
            deleted=True,
        )

    return None


class ChangeNotificationBridge:
    """Long-lived subscription from the store's change feed to the realtime registry."""

    def __init__(
        self,
        store: DocumentStore,
        registry: ConnectionRegistry,
        collection: str = TASKS_COLLECTION,
        backoff_sec: Optional[float] = None,
        backoff_max_sec: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.registry = registry
        self.collection = collection
        self.backoff_sec = backoff_sec if backoff_sec is not None else float(
            os.getenv("TASKSYNC_BRIDGE_BACKOFF_SEC", str(DEFAULT_BRIDGE_BACKOFF_SEC))
        )
        self.backoff_max_sec = backoff_max_sec if backoff_max_sec is not None else float(
            os.getenv("TASKSYNC_BRIDGE_BACKOFF_MAX_SEC", str(DEFAULT_BRIDGE_BACKOFF_MAX_SEC))
        )
        self._sleep = sleep

        self.state = BridgeState.UNSUBSCRIBED
        self.resume_token: Optional[Dict[str, Any]] = None
        self.failures = 0
        self.forwarded = 0
        self._task: Optional[asyncio.Task] = None
        self._active = asyncio.Event()

    def _set_state(self, state: BridgeState) -> None:
        if state != self.state:
            logger.debug(f"Bridge {self.collection}: {self.state.value} -> {state.value}")
        self.state = state
        if state == BridgeState.ACTIVE:
            self._active.set()
        else:
            self._active.clear()

    def backoff_delay(self, attempt: int) -> float:
        """Exponential backoff for the given (1-based) consecutive failure."""
        return min(self.backoff_max_sec, self.backoff_sec * (2 ** max(0, attempt - 1)))

    def start(self) -> asyncio.Task:
        """Spawn the background consumer on the running loop."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._set_state(BridgeState.CLOSED)

    async def wait_until_active(self, timeout: float = 5.0) -> None:
        await asyncio.wait_for(self._active.wait(), timeout=timeout)

    def handle_change(self, change: Dict[str, Any]) -> Optional[TaskChangeEvent]:
        """Forward one raw change event to all connected clients."""
        if change.get("_id") is not None:
            self.resume_token = change["_id"]

        try:
            event = to_change_event(change)
        except ModelValidationError as e:
            logger.warning(f"Skipping malformed task change {change.get('documentKey')}: {e.error_count()} errors")
            return None
        if event is None:
            logger.debug(f"Nothing to forward for {change.get('operationType')} change")
            return None

        reached = self.registry.broadcast(TASK_UPDATE_EVENT, event.to_payload())
        self.forwarded += 1
        logger.debug(f"Forwarded {event.operation} of task {event.taskId} to {reached} clients")
        return event

    async def run(self) -> None:
        """Consume the change stream until cancelled, resubscribing after faults."""
        attempt = 0
        while True:
            self._set_state(BridgeState.SUBSCRIBING)
            invalidated = False
            try:
                async with self.store.watch(self.collection, resume_after=self.resume_token) as stream:
                    self._set_state(BridgeState.ACTIVE)
                    logger.info(f"Watching {self.collection} for changes")
                    attempt = 0
                    async for change in stream:
                        if change.get("operationType") == "invalidate":
                            invalidated = True
                            break
                        self.handle_change(change)
                if not invalidated:
                    logger.info(f"Change stream on {self.collection} closed")
                    self._set_state(BridgeState.CLOSED)
                    return
                # An invalidated stream cannot be resumed; start over from now
                logger.warning(f"Change stream on {self.collection} invalidated, resubscribing")
                self.resume_token = None
                continue
            except asyncio.CancelledError:
                self._set_state(BridgeState.CLOSED)
                raise
            except ResumeTokenExpired as e:
                logger.warning(f"Cannot resume {self.collection} change stream, missed changes are lost: {e.message}")
                self.resume_token = None
            except Exception as e:
                logger.error(f"Change stream on {self.collection} failed: {type(e).__name__}: {str(e)}")

            self._set_state(BridgeState.ERRORED)
            self.failures += 1
            attempt += 1
            delay = self.backoff_delay(attempt)
            logger.warning(f"Resubscribing to {self.collection} in {delay:.1f}s (attempt {attempt})")
            await self._sleep(delay)
