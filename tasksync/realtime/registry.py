"""Registry of connected realtime clients with fire-and-forget broadcast.

Each client owns a bounded outbound queue drained by its own sender task, so a
slow or dead client never blocks the others or the producer.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

from tasksync.models.constants import DEFAULT_CLIENT_QUEUE_SIZE

logger = logging.getLogger(__name__)


class Connection(Protocol):
    """Anything that can push a JSON message to one client (e.g. a WebSocket)."""

    async def send_json(self, data: Any) -> None:
        ...


@dataclass
class ClientHandle:
    connection: Connection
    queue: asyncio.Queue
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    sender: Optional[asyncio.Task] = None
    dropped: int = 0


class ConnectionRegistry:
    """Publish/subscribe registry keyed by client handle."""

    def __init__(self, queue_size: int = DEFAULT_CLIENT_QUEUE_SIZE):
        self.queue_size = queue_size
        self._clients: Dict[str, ClientHandle] = {}

    def __len__(self) -> int:
        return len(self._clients)

    def handles(self) -> List[ClientHandle]:
        return list(self._clients.values())

    def register(self, connection: Connection) -> ClientHandle:
        """Add a client and start its sender task. Must be called on the running loop."""
        handle = ClientHandle(connection=connection, queue=asyncio.Queue(maxsize=self.queue_size))
        handle.sender = asyncio.create_task(self._pump(handle))
        self._clients[handle.id] = handle
        logger.debug(f"Registered realtime client {handle.id} ({len(self._clients)} connected)")
        return handle

    async def unregister(self, handle: ClientHandle) -> None:
        self._clients.pop(handle.id, None)
        sender = handle.sender
        if sender is not None and sender is not asyncio.current_task() and not sender.done():
            sender.cancel()
            try:
                await sender
            except asyncio.CancelledError:
                pass
        logger.debug(f"Unregistered realtime client {handle.id} ({len(self._clients)} connected)")

    def send(self, handle: ClientHandle, event: str, data: Any) -> None:
        """Queue one message for a single client, dropping its oldest message when full."""
        message = {"event": event, "data": data}
        try:
            handle.queue.put_nowait(message)
        except asyncio.QueueFull:
            handle.queue.get_nowait()
            handle.queue.put_nowait(message)
            handle.dropped += 1
            logger.warning(f"Realtime client {handle.id} is slow, dropped oldest message")

    def broadcast(self, event: str, data: Any) -> int:
        """Queue a message for every connected client.

        Iterates a snapshot of the current clients, so connects and disconnects
        during the broadcast are safe. Returns the number of clients reached.
        """
        handles = self.handles()
        for handle in handles:
            self.send(handle, event, data)
        return len(handles)

    async def _pump(self, handle: ClientHandle) -> None:
        while True:
            message = await handle.queue.get()
            try:
                await handle.connection.send_json(message)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.info(f"Dropping realtime client {handle.id}: {type(e).__name__}: {str(e)}")
                self._clients.pop(handle.id, None)
                return

    async def close(self) -> None:
        for handle in self.handles():
            await self.unregister(handle)
