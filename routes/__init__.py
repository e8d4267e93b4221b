"""Shared helpers for route blueprints."""

from __future__ import annotations

from functools import wraps

from flask import current_app, g, jsonify, request
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from database import db
from forms import first_error
from models.user import is_elevated_admin_role
from services.account_service import ConflictError

__all__ = [
    "admin_required",
    "commit_or_error",
    "form_error",
    "json_error",
    "json_payload",
    "login_required",
    "query_int",
    "service_error",
]

ERROR_TITLES = {
    400: "Invalid request",
    401: "Unauthorized",
    403: "Forbidden",
    404: "Not Found",
    405: "Method Not Allowed",
    409: "Conflict",
    429: "Too Many Requests",
    500: "Internal Server Error",
}


def json_error(message: str, *, status: int = 400, title: str | None = None):
    """Return the JSON error body shared by every API endpoint."""

    return (
        jsonify(
            {
                "success": False,
                "title": title or ERROR_TITLES.get(status, "Error"),
                "message": message,
            }
        ),
        status,
    )


def form_error(form):
    return json_error(first_error(form))


def service_error(exc: Exception):
    """Roll back pending changes and map a service exception to a JSON error."""

    db.session.rollback()
    if isinstance(exc, PermissionError):
        return json_error(str(exc) or "You do not have access to this resource.", status=403)
    if isinstance(exc, LookupError):
        return json_error(str(exc) or "Not found.", status=404)
    if isinstance(exc, ConflictError):
        return json_error(str(exc), status=409)
    return json_error(str(exc) or "Invalid request.")


def commit_or_error(message: str = "Unable to save changes. Please try again."):
    """Commit the session; return an error response on failure, else None."""

    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return json_error("Resource already exists.", status=409)
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Database commit failed")
        return json_error(message, status=500)
    return None


def json_payload() -> dict:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def query_int(name: str, default: int | None = None) -> int | None:
    value = request.args.get(name)
    if value in (None, ""):
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer") from None


def login_required(f):
    """Answer 401 unless a user is signed in."""

    @wraps(f)
    def decorated_function(*args, **kwargs):
        if g.get("user") is None:
            return json_error("You must be signed in.", status=401)
        return f(*args, **kwargs)

    return decorated_function


def admin_required(f):
    """Require an ADMIN or PLATFORM user.

    Usage:
        @bp.route("/api/teams", methods=["POST"])
        @admin_required
        def create_team():
            ...
    """

    @wraps(f)
    def decorated_function(*args, **kwargs):
        if g.get("user") is None:
            return json_error("You must be signed in.", status=401)
        if not is_elevated_admin_role(g.user.role):
            return json_error("Admin access required.", status=403)
        return f(*args, **kwargs)

    return decorated_function
