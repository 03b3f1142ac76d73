"""Session login gate and dashboard routes."""
from __future__ import annotations

import hmac
from typing import Any, Callable, Mapping

from flask import (
    Blueprint,
    current_app,
    jsonify,
    redirect,
    request,
    session,
    url_for,
)

from routes.api_utils import UnauthorizedError

web_blueprint = Blueprint("web", __name__)

_context: dict[str, Any] = {}

_PUBLIC_ENDPOINTS = frozenset({"web.login", "static", "games.media_file"})


def configure(context: Mapping[str, Any]) -> None:
    """Provide shared state required by the login and dashboard routes."""
    _context.update(context)


def _ctx(key: str) -> Any:
    if key not in _context:
        raise RuntimeError(f"web routes missing context value: {key}")
    return _context[key]


def _get_app_password() -> str:
    getter: Callable[[], str] = _ctx("get_app_password")
    return getter()


def _get_dashboard_counts() -> dict[str, int]:
    getter: Callable[[], dict[str, int]] = _ctx("get_dashboard_counts")
    return getter()


def _submitted_password() -> str:
    if request.is_json:
        payload = request.get_json(silent=True) or {}
        value = payload.get("password") if isinstance(payload, Mapping) else None
    else:
        value = request.form.get("password")
    return value if isinstance(value, str) else ""


@web_blueprint.before_app_request
def require_login():
    if request.endpoint in _PUBLIC_ENDPOINTS:
        return None
    if session.get("authenticated"):
        return None
    if request.path.startswith("/api/"):
        error = UnauthorizedError()
        return jsonify(error.to_dict()), error.status_code
    return redirect(url_for("web.login"))


@web_blueprint.route("/login", methods=["GET", "POST"])
def login():
    if request.method == "GET":
        return jsonify({"authenticated": bool(session.get("authenticated"))})
    submitted = _submitted_password().encode("utf-8")
    if hmac.compare_digest(submitted, _get_app_password().encode("utf-8")):
        session["authenticated"] = True
        return jsonify({"success": True})
    current_app.logger.warning("Rejected admin login from %s", request.remote_addr)
    return jsonify({"success": False, "error": "Invalid password"}), 401


@web_blueprint.route("/logout")
def logout():
    session.clear()
    return redirect(url_for("web.login"))


@web_blueprint.route("/")
def index():
    return jsonify(_get_dashboard_counts())
