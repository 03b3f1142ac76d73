"""Shared helpers for API routes (error handling and logging)."""

from __future__ import annotations

import json
from functools import wraps
from typing import Any, Callable, ParamSpec, TypeVar

from flask import current_app, jsonify, request, session
from werkzeug.exceptions import HTTPException

from codes.store import PersistenceError
from games.service import GameConflictError, GameNotFoundError
from media.covers import MediaError

P = ParamSpec("P")
R = TypeVar("R")


class APIError(Exception):
    """Base class for API errors that includes an HTTP status code."""

    status_code: int = 500
    message: str = "An unexpected error occurred."

    def __init__(
        self,
        message: str | None = None,
        *,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message or self.message)
        self.message = message or self.message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict[str, Any]:
        return {"success": False, "error": self.message}


class BadRequestError(APIError):
    status_code = 400
    message = "Invalid request."


class UnauthorizedError(APIError):
    status_code = 401
    message = "Unauthorized."


class NotFoundError(APIError):
    status_code = 404
    message = "Resource not found."


class ConflictError(APIError):
    status_code = 409
    message = "Conflict detected."


class StorageError(APIError):
    status_code = 500
    message = "Database operation failed."


def translate_domain_error(exc: Exception) -> APIError | None:
    """Return the :class:`APIError` a service-layer exception maps to."""

    if isinstance(exc, APIError):
        return exc
    if isinstance(exc, GameNotFoundError):
        return NotFoundError(str(exc) or None)
    if isinstance(exc, GameConflictError):
        return ConflictError(str(exc) or None)
    if isinstance(exc, MediaError):
        return BadRequestError(str(exc) or None)
    if isinstance(exc, PersistenceError):
        return StorageError(str(exc) or None)
    if isinstance(exc, ValueError):
        return BadRequestError(str(exc) or None)
    return None


def _resolve_user() -> str:
    try:
        if session.get("authenticated"):
            return "admin"
    except RuntimeError:
        return "unknown"
    return "anonymous"


def _collect_request_context() -> dict[str, Any]:
    context: dict[str, Any] = {
        "route": request.path,
        "endpoint": request.endpoint,
        "method": request.method,
        "user": _resolve_user(),
        "view_args": dict(request.view_args or {}),
        "args": request.args.to_dict(flat=False),
    }

    if request.form:
        context["form"] = request.form.to_dict(flat=False)
    if request.files:
        context["files"] = sorted(request.files.keys())

    json_payload = request.get_json(silent=True)
    if json_payload is not None:
        context["json"] = json_payload

    return context


def _serialize_context(context: dict[str, Any]) -> str:
    try:
        return json.dumps(context, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return repr(context)


def log_api_error(exc: BaseException, *, status_code: int, handled: bool) -> None:
    context = _collect_request_context()
    context["status_code"] = status_code
    context_str = _serialize_context(context)
    if handled and status_code < 500:
        current_app.logger.warning(
            "Handled API error (%s): %s | context=%s", status_code, exc, context_str
        )
        return
    if handled:
        current_app.logger.error(
            "Handled API error (%s): %s | context=%s", status_code, exc, context_str,
            exc_info=exc,
        )
        return
    current_app.logger.error(
        "Unhandled API error (%s): %s | context=%s", status_code, exc, context_str,
        exc_info=exc,
    )


def handle_api_errors(func: Callable[P, R]) -> Callable[P, R]:
    """Decorator that maps service exceptions to JSON error responses."""

    @wraps(func)
    def wrapper(*args: P.args, **kwargs: P.kwargs):  # type: ignore[misc]
        try:
            return func(*args, **kwargs)
        except HTTPException as exc:
            status_code = exc.code or 500
            api_error = APIError(message=exc.description or str(exc), status_code=status_code)
            log_api_error(exc, status_code=status_code, handled=True)
            return jsonify(api_error.to_dict()), status_code
        except Exception as exc:
            api_error = translate_domain_error(exc)
            if api_error is None:
                log_api_error(exc, status_code=500, handled=False)
                return jsonify({"success": False, "error": "Internal server error"}), 500
            log_api_error(exc, status_code=api_error.status_code, handled=True)
            return jsonify(api_error.to_dict()), api_error.status_code

    return wrapper


__all__ = [
    "APIError",
    "BadRequestError",
    "ConflictError",
    "NotFoundError",
    "StorageError",
    "UnauthorizedError",
    "handle_api_errors",
    "log_api_error",
    "translate_domain_error",
]
