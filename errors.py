"""
Domain errors and the handlers that turn them into JSON responses.

Every handler answers with the same envelope:

    {"error": {"code": ..., "message": ..., "fields": [...]}, "generated_at": ...}

`fields` is only present for validation failures.
"""
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError

logger = logging.getLogger(__name__)


class DomainError(Exception):
    """Base exception for business rule violations."""


class ValidationError(DomainError):
    """Raised when input data is invalid or violates domain rules."""

    def __init__(self, message: str, fields: Optional[List[Dict[str, str]]] = None):
        super().__init__(message)
        self.message = message
        self.fields = fields or []


class AuthenticationError(DomainError):
    """Raised when the caller identity cannot be verified."""


class AuthorizationError(DomainError):
    """Raised when a user acts on a resource they do not own."""


class NotFoundError(DomainError):
    """Raised when an id does not resolve to a document."""


def _now_iso():
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def error_response(status_code: int, code: str, message: str, fields=None, headers=None) -> JSONResponse:
    error = {"code": code, "message": message}
    if fields is not None:
        error["fields"] = fields
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "generated_at": _now_iso()},
        headers=headers,
    )


def _request_fields(exc: RequestValidationError) -> List[Dict[str, str]]:
    fields = []
    for err in exc.errors():
        # drop the "body"/"query" prefix so paths read like records.0.status
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        fields.append({"field": ".".join(loc), "message": err.get("msg", "Invalid value")})
    return fields


def add_error_handlers(app: FastAPI):
    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return error_response(400, "VALIDATION_ERROR", "Invalid request", fields=_request_fields(exc))

    @app.exception_handler(ValidationError)
    async def validation_handler(request: Request, exc: ValidationError):
        return error_response(400, "VALIDATION_ERROR", exc.message, fields=exc.fields)

    @app.exception_handler(AuthenticationError)
    async def authentication_handler(request: Request, exc: AuthenticationError):
        return error_response(
            401, "UNAUTHENTICATED", str(exc) or "Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    @app.exception_handler(AuthorizationError)
    async def authorization_handler(request: Request, exc: AuthorizationError):
        return error_response(403, "FORBIDDEN", str(exc) or "Not authorized")

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return error_response(404, "NOT_FOUND", str(exc) or "Not found")

    @app.exception_handler(PyMongoError)
    async def store_error_handler(request: Request, exc: PyMongoError):
        logger.exception("Database error on %s %s", request.method, request.url.path)
        return error_response(500, "INTERNAL_ERROR", "Server Error")

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return error_response(500, "INTERNAL_ERROR", "Server Error")
