"""Notification inbox routes."""
from __future__ import annotations

from flask import Blueprint, g, jsonify

from forms import NotificationReadForm
from routes import commit_or_error, form_error, login_required, service_error
from services.notification_service import (
    get_recent_notifications,
    mark_all_read,
    serialize_notifications,
    set_read,
    unread_count,
)

notifications_bp = Blueprint("notifications", __name__, url_prefix="/api/notifications")


@notifications_bp.route("", methods=["GET"])
@login_required
def list_notifications():
    """Return the newest notifications for the current user."""

    return jsonify(serialize_notifications(get_recent_notifications(g.user)))


@notifications_bp.route("/unread-count", methods=["GET"])
@login_required
def get_unread_count():
    return jsonify({"count": unread_count(g.user)})


@notifications_bp.route("/<int:notification_id>/read", methods=["POST"])
@login_required
def read_notification(notification_id: int):
    """Mark a single notification as read, or unread with ``{"read": false}``."""

    form = NotificationReadForm()
    if not form.validate():
        return form_error(form)
    read = True if form.read.data is None else form.read.data
    try:
        notification = set_read(notification_id, g.user, read)
    except LookupError as exc:
        return service_error(exc)
    error = commit_or_error()
    if error:
        return error
    return jsonify(notification.to_dict())


@notifications_bp.route("/read-all", methods=["POST"])
@login_required
def read_all():
    updated = mark_all_read(g.user)
    error = commit_or_error()
    if error:
        return error
    return jsonify({"success": True, "updated": updated})
