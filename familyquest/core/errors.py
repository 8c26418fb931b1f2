"""
Ledger error taxonomy and the FastAPI handlers that render it.

Every handled error becomes::

    {"error": {"code": ..., "message": ..., "request_id": ...}, "detail": message}

with the request id echoed in the ``x-request-id`` header.
"""

import logging
from typing import Optional
from uuid import uuid4

from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException
from starlette.requests import Request

from familyquest.core.logging import LOGGER_NAME, get_request_id

logger = logging.getLogger(LOGGER_NAME)


class AppError(Exception):
    """Base for errors the API reports to callers. Subclasses pin code and status."""

    code = "app_error"
    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        request_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.code
        self.status_code = status_code or self.status_code
        self.request_id = request_id


class ValidationError(AppError, ValueError):
    code = "validation_error"
    status_code = 400


class NotFoundError(AppError, LookupError):
    """A user, family, goal, task, adventure or challenge reference did not resolve."""

    code = "not_found"
    status_code = 404


class AchievementNotFoundError(NotFoundError):
    """A goal reward points at an achievement that left the catalog."""

    code = "achievement_not_found"


class AlreadyCompletedError(AppError):
    """Second completion of the same task or challenge."""

    code = "already_completed"
    status_code = 400


class AlreadyUnlockedError(AppError):
    code = "already_unlocked"
    status_code = 400


class InvalidStateError(AppError):
    code = "invalid_state"
    status_code = 409


class ConflictError(AppError):
    """Optimistic retries ran out; the caller may resubmit."""

    code = "conflict"
    status_code = 409


class PersistenceError(AppError):
    code = "persistence_error"
    status_code = 500


class VersionConflict(Exception):
    """Raised by a document store when an expected version is stale. Never reaches HTTP."""

    def __init__(self, collection: str, doc_id: str, expected: int):
        super().__init__(f"{collection}/{doc_id} changed since version {expected}")
        self.collection = collection
        self.doc_id = doc_id
        self.expected = expected


def _request_id_for(request: Request) -> str:
    return getattr(request.state, "request_id", None) or get_request_id() or str(uuid4())


def _render(status: int, code: str, message: str, rid: str) -> JSONResponse:
    response = JSONResponse(
        status_code=status,
        content={"error": {"code": code, "message": message, "request_id": rid}, "detail": message},
    )
    response.headers["x-request-id"] = rid
    return response


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or _request_id_for(request)
    logger.log(
        logging.ERROR if exc.status_code >= 500 else logging.WARNING,
        "app.error",
        extra={"request_id": rid, "error_code": exc.code, "status": exc.status_code, "path": request.url.path},
    )
    return _render(exc.status_code, exc.code, exc.message, rid)


async def http_error_handler(request: Request, exc: HTTPException):
    rid = _request_id_for(request)
    code = "not_found" if exc.status_code == 404 else "http_error"
    logger.warning("http.error", extra={"request_id": rid, "error_code": code, "status": exc.status_code})
    return _render(exc.status_code, code, exc.detail or "HTTP error", rid)


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _request_id_for(request)
    logger.error("unhandled.exception", exc_info=exc, extra={"request_id": rid, "error_code": "internal_error"})
    return _render(500, "internal_error", "Unexpected error", rid)
