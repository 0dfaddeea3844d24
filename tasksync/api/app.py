"""FastAPI web application for tasksync."""

import logging
import os
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from tasksync.api.errors import install_error_handlers
from tasksync.api.models import (
    LoginRequest,
    LoginResponse,
    MessageResponse,
    TaskCreateRequest,
    TaskCreatedResponse,
    TaskUpdateRequest,
)
from tasksync.database.database import connect_store, get_store
from tasksync.database.store import DocumentStore
from tasksync.errors import StoreUnavailable
from tasksync.models.constants import DEFAULT_CLIENT_QUEUE_SIZE, WELCOME_EVENT, WELCOME_MESSAGE
from tasksync.models.task import Task
from tasksync.realtime.bridge import ChangeNotificationBridge
from tasksync.realtime.registry import ConnectionRegistry
from tasksync.services.task_service import TaskService
from tasksync.services.user_service import UserService

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


def get_task_service(store: DocumentStore = Depends(get_store)) -> TaskService:
    return TaskService(store)


def get_user_service(store: DocumentStore = Depends(get_store)) -> UserService:
    return UserService(store)


def _cors_origins() -> List[str]:
    raw = os.getenv("CORS_ALLOW_ORIGINS", "*")
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


def create_app(store: Optional[DocumentStore] = None, registry: Optional[ConnectionRegistry] = None) -> FastAPI:
    """Build the application.

    Args:
        store: Store to use instead of the one configured from the environment (tests, embedding)
        registry: Realtime client registry; a fresh one is created when omitted
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.store = await connect_store(store)
        app.state.registry = registry or ConnectionRegistry(
            queue_size=int(os.getenv("TASKSYNC_CLIENT_QUEUE_SIZE", str(DEFAULT_CLIENT_QUEUE_SIZE)))
        )
        app.state.bridge = None
        if app.state.store is not None:
            app.state.bridge = ChangeNotificationBridge(app.state.store, app.state.registry)
            app.state.bridge.start()
        else:
            logger.warning("No store configured, realtime notifications disabled")
        try:
            yield
        finally:
            if app.state.bridge is not None:
                await app.state.bridge.stop()
            await app.state.registry.close()
            if app.state.store is not None:
                await app.state.store.close()
            logger.info("tasksync shutdown complete")

    app = FastAPI(
        title="tasksync API",
        description="Task management backend with realtime change notifications",
        version=VERSION,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(),
        allow_methods=["*"],
        allow_headers=["*"],
    )
    install_error_handlers(app)

    @app.get("/", response_class=PlainTextResponse)
    async def root():
        """Root endpoint."""
        return "Task Manager Backend is Running!"

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        bridge = app.state.bridge
        return {
            "status": "healthy",
            "version": VERSION,
            "realtime": bridge.state.value if bridge is not None else "disabled",
            "clients": len(app.state.registry),
        }

    @app.get("/ready")
    async def ready():
        """Readiness: the store answers a ping."""
        try:
            if app.state.store is None:
                raise StoreUnavailable("Store is not configured")
            await app.state.store.ping()
        except StoreUnavailable as e:
            raise HTTPException(status_code=503, detail="store not ready") from e
        return {"status": "ok"}

    async def record_login(body: LoginRequest, users: UserService) -> JSONResponse:
        result = await users.record_login(body.resolved_external_id(), body.email, body.displayName)
        response = LoginResponse(
            message="User created successfully" if result.created else "User updated successfully",
            created=result.created,
        )
        return JSONResponse(status_code=201 if result.created else 200, content=response.model_dump())

    @app.post("/users", response_model=LoginResponse)
    async def login(body: LoginRequest, users: UserService = Depends(get_user_service)):
        """Record a login: create the user on first sight, refresh it afterwards."""
        return await record_login(body, users)

    @app.post("/users/login", response_model=LoginResponse, include_in_schema=False)
    async def login_legacy(body: LoginRequest, users: UserService = Depends(get_user_service)):
        return await record_login(body, users)

    @app.post("/tasks", response_model=TaskCreatedResponse, status_code=201)
    async def create_task(body: TaskCreateRequest, tasks: TaskService = Depends(get_task_service)):
        """Create a task."""
        task_id = await tasks.create(
            body.title, body.description, body.category, owner_id=body.ownerId, timestamp=body.timestamp
        )
        return TaskCreatedResponse(taskId=task_id)

    @app.get("/tasks", response_model=List[Task])
    async def list_tasks(
        ownerId: Optional[str] = Query(None, description="Only tasks owned by this externalId"),
        owner: Optional[str] = Query(None, description="Alias of ownerId"),
        tasks: TaskService = Depends(get_task_service),
    ):
        """List tasks, optionally scoped to one owner."""
        return await tasks.list_all(owner_id=ownerId or owner)

    @app.put("/tasks/{task_id}", response_model=MessageResponse)
    async def update_task(task_id: str, body: TaskUpdateRequest, tasks: TaskService = Depends(get_task_service)):
        """Update a task's title, description and category."""
        await tasks.update(task_id, body.title, body.description, body.category)
        return MessageResponse(message="Task updated successfully")

    @app.delete("/tasks/{task_id}", response_model=MessageResponse)
    async def delete_task(task_id: str, tasks: TaskService = Depends(get_task_service)):
        """Delete a task."""
        await tasks.delete(task_id)
        return MessageResponse(message="Task deleted successfully")

    @app.websocket("/ws")
    async def realtime(websocket: WebSocket):
        """Realtime channel: `welcome` on connect, then one `taskUpdate` per task change."""
        await websocket.accept()
        registry: ConnectionRegistry = app.state.registry
        handle = registry.register(websocket)
        registry.send(handle, WELCOME_EVENT, WELCOME_MESSAGE)
        try:
            # Client messages are not part of the protocol; reading them surfaces disconnects
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
        finally:
            await registry.unregister(handle)

    return app


app = create_app()
