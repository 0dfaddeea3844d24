"""Uniform mapping from typed failures to HTTP responses."""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from tasksync.errors import AlreadyExists, NotFoundError, StoreUnavailable, TaskSyncError, ValidationError

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR = (
    (ValidationError, 400),
    (NotFoundError, 404),
    (AlreadyExists, 409),
    (StoreUnavailable, 500),
)


def status_for(exc: BaseException) -> int:
    """HTTP status for an exception raised below the transport. Unknown faults are 500."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 500


def public_message(exc: BaseException) -> str:
    """Client-facing message. Internal faults never leak their detail."""
    if isinstance(exc, (ValidationError, NotFoundError)):
        return exc.message
    if isinstance(exc, TaskSyncError):
        return type(exc).public_message
    return TaskSyncError.public_message


def error_response(exc: BaseException) -> JSONResponse:
    return JSONResponse(status_code=status_for(exc), content={"error": public_message(exc)})


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(TaskSyncError)
    async def _handle_tasksync_error(request: Request, exc: TaskSyncError) -> JSONResponse:
        if status_for(exc) >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {type(exc).__name__}: {exc.message}")
        return error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def _handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
        # Malformed JSON or wrongly-typed fields are client errors, like missing fields
        return error_response(ValidationError("Invalid request body"))

    @app.exception_handler(Exception)
    async def _handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.error(f"{request.method} {request.url.path} failed: {type(exc).__name__}: {str(exc)}")
        return error_response(exc)
