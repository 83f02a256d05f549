"""
Error taxonomy and global exception handling for AutoTrack API.

Core services raise the typed errors below; callers branch on ``kind``.
The FastAPI handlers turn them into structured JSON error responses,
preventing stack traces from leaking to clients.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
import structlog

logger = structlog.get_logger(__name__)


class AutoTrackException(Exception):
    """Base exception for AutoTrack application errors."""

    kind = "error"

    def __init__(self, message: str, status_code: int = 500, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class InvalidTransition(AutoTrackException):
    """A state machine precondition was violated."""

    kind = "invalid_transition"

    def __init__(self, entity: str, entity_id: Any, current: str, target: str, message: str = None):
        super().__init__(
            message=message or f"Cannot move {entity} {entity_id} from {current} to {target}",
            status_code=409,
            details={"entity": entity, "id": str(entity_id), "current": current, "target": target},
        )


class NotFound(AutoTrackException):
    """A referenced sprint, task, backlog item or commit does not exist."""

    kind = "not_found"

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(
            message=f"{entity.capitalize()} not found: {entity_id}",
            status_code=404,
            details={"entity": entity, "id": str(entity_id)},
        )


class MissingReason(AutoTrackException):
    """A rejection was submitted without a reason."""

    kind = "missing_reason"

    def __init__(self, commit_id: Any):
        super().__init__(
            message=f"A rejection reason is required to reject commit {commit_id}",
            status_code=422,
            details={"commit_id": str(commit_id)},
        )


class DuplicateCommit(AutoTrackException):
    """A commit SHA was ingested more than once."""

    kind = "duplicate_commit"

    def __init__(self, commit_sha: str):
        super().__init__(
            message=f"Commit {commit_sha} has already been submitted for review",
            status_code=409,
            details={"commit_sha": commit_sha},
        )


class AlreadyReviewed(AutoTrackException):
    """The commit left PENDING_REVIEW before this decision could be applied."""

    kind = "already_reviewed"

    def __init__(self, commit_id: Any, current: str):
        super().__init__(
            message=f"Commit {commit_id} has already been reviewed ({current})",
            status_code=409,
            details={"commit_id": str(commit_id), "current": current},
        )


class ReconciliationFailure(AutoTrackException):
    """A disposition policy could not be applied in full."""

    kind = "reconciliation_failure"

    def __init__(self, sprint_id: Any, policy: str, message: str):
        super().__init__(
            message=f"Reconciliation of sprint {sprint_id} with {policy} failed: {message}",
            status_code=500,
            details={"sprint_id": str(sprint_id), "policy": policy},
        )


class PersistenceFailure(AutoTrackException):
    """Opaque storage error passed through from the database layer."""

    kind = "persistence_failure"

    def __init__(self, message: str):
        super().__init__(message=f"Storage error: {message}", status_code=503)


class ValidationFailure(AutoTrackException):
    """Input that is well-formed but violates a business rule."""

    kind = "validation_failure"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, status_code=422, details=details)


async def _autotrack_exception_handler(request: Request, exc: AutoTrackException) -> JSONResponse:
    """Handle AutoTrack application exceptions."""
    error_id = datetime.utcnow().strftime("%Y%m%d_%H%M%S_%f")

    logger.warning(
        "autotrack_exception",
        error_id=error_id,
        error_type=type(exc).__name__,
        message=exc.message,
        path=request.url.path,
        method=request.method,
        details=exc.details,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "message": exc.message,
                "type": type(exc).__name__,
                "kind": exc.kind,
                "error_id": error_id,
                "details": exc.details,
                "timestamp": datetime.utcnow().isoformat(),
            }
        },
    )


async def _global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unhandled exceptions."""
    error_id = datetime.utcnow().strftime("%Y%m%d_%H%M%S_%f")

    logger.error(
        "unhandled_exception",
        error_id=error_id,
        error_type=type(exc).__name__,
        error_message=str(exc),
        path=request.url.path,
        method=request.method,
        exc_info=exc,
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": {
                "message": "Internal server error",
                "type": "InternalServerError",
                "error_id": error_id,
                "timestamp": datetime.utcnow().isoformat(),
            }
        },
    )


async def _validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle Pydantic validation errors with structured detail."""
    logger.warning(
        "validation_error",
        path=request.url.path,
        method=request.method,
        errors=exc.errors(),
    )

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": {
                "message": "Validation error",
                "type": "ValidationError",
                "details": jsonable_errors(exc),
                "timestamp": datetime.utcnow().isoformat(),
            }
        },
    )


def jsonable_errors(exc: RequestValidationError) -> list:
    """Pydantic error contexts may hold exception objects; keep them printable."""
    errors = []
    for err in exc.errors():
        err = dict(err)
        if "ctx" in err:
            err["ctx"] = {k: str(v) for k, v in err["ctx"].items()}
        errors.append(err)
    return errors


async def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handle HTTP exceptions with consistent format."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "message": exc.detail,
                "type": "HTTPException",
                "status_code": exc.status_code,
                "timestamp": datetime.utcnow().isoformat(),
            }
        },
    )


def register_exception_handlers(app: FastAPI):
    """Register all exception handlers with the FastAPI app."""
    app.add_exception_handler(AutoTrackException, _autotrack_exception_handler)
    app.add_exception_handler(RequestValidationError, _validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(Exception, _global_exception_handler)
    logger.info("exception_handlers_registered")
