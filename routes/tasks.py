"""Task endpoints: CRUD, transitions, history, attachments and presence."""
from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from forms import TaskForm, TransitionForm
from routes import (
    commit_or_error,
    form_error,
    json_error,
    json_payload,
    login_required,
    query_int,
    service_error,
)
from services import task_service
from services.access import can_write_task, get_readable_task, get_writable_task
from services.realtime import registry
from services.search_service import parse_datetime

tasks_bp = Blueprint("tasks", __name__, url_prefix="/api/tasks")


def _list_filters() -> dict[str, object]:
    args = request.args
    return {
        "owner_id": query_int("owner_id"),
        "created_by": query_int("created_by"),
        "status": [status.upper() for status in args.getlist("status") if status],
        "due_from": parse_datetime(args.get("due_from")),
        "due_to": parse_datetime(args.get("due_to")),
        "tag": [tag for tag in args.getlist("tag") if tag],
        "visibility": (args.get("visibility") or "").upper() or None,
        "team_id": query_int("team_id"),
        "q": (args.get("q") or "").strip() or None,
    }


@tasks_bp.route("", methods=["GET"])
@login_required
def list_tasks():
    try:
        filters = _list_filters()
    except ValueError as exc:
        return json_error(str(exc))
    tasks = task_service.list_tasks(g.user, filters)
    return jsonify([task_service.serialize_task(task) for task in tasks])


@tasks_bp.route("", methods=["POST"])
@login_required
def create_task():
    form = TaskForm()
    if not form.validate():
        return form_error(form)
    data = form.cleaned(set(json_payload()))
    try:
        task = task_service.create_task(g.user, data)
    except (ValueError, PermissionError) as exc:
        return service_error(exc)
    error = commit_or_error("Unable to create the task. Please try again.")
    if error:
        return error
    current_app.logger.info("Task %s created by user %s", task.id, g.user.id)
    return jsonify(task_service.serialize_task(task)), 201


@tasks_bp.route("/<int:task_id>", methods=["GET"])
@login_required
def get_task(task_id: int):
    try:
        task = get_readable_task(task_id, g.user)
    except LookupError as exc:
        return service_error(exc)
    payload = task_service.serialize_task(task)
    payload["can_edit"] = can_write_task(g.user, task)
    return jsonify(payload)


@tasks_bp.route("/<int:task_id>", methods=["PATCH", "PUT"])
@login_required
def update_task(task_id: int):
    try:
        task = get_writable_task(task_id, g.user)
    except (LookupError, PermissionError) as exc:
        return service_error(exc)
    form = TaskForm()
    if not form.validate():
        return form_error(form)
    data = form.cleaned(set(json_payload()))
    try:
        task_service.update_task(task, g.user, data)
    except (ValueError, LookupError, PermissionError) as exc:
        return service_error(exc)
    error = commit_or_error("Unable to update the task. Please try again.")
    if error:
        return error
    return jsonify(task_service.serialize_task(task))


@tasks_bp.route("/<int:task_id>", methods=["DELETE"])
@login_required
def delete_task(task_id: int):
    try:
        task = get_writable_task(task_id, g.user)
        stored_names = task_service.delete_task(task, g.user)
    except (LookupError, PermissionError) as exc:
        return service_error(exc)
    error = commit_or_error("Unable to delete the task. Please try again.")
    if error:
        return error
    task_service.remove_stored_files(stored_names)
    return jsonify({"success": True})


@tasks_bp.route("/<int:task_id>/transition", methods=["POST"])
@login_required
def transition_task(task_id: int):
    try:
        task = get_readable_task(task_id, g.user)
    except LookupError as exc:
        return service_error(exc)
    form = TransitionForm()
    if not form.validate():
        return form_error(form)
    try:
        task_service.transition_task(task, g.user, form.action.data)
    except (ValueError, PermissionError) as exc:
        return service_error(exc)
    error = commit_or_error("Unable to update the task. Please try again.")
    if error:
        return error
    return jsonify(task_service.serialize_task(task))


@tasks_bp.route("/<int:task_id>/history", methods=["GET"])
@login_required
def task_history(task_id: int):
    try:
        task = get_readable_task(task_id, g.user)
        page = query_int("page", 1)
        limit = query_int("limit", task_service.ACTIVITY_PAGE_SIZE)
    except (LookupError, ValueError) as exc:
        return service_error(exc)
    return jsonify(task_service.activity_page(task, page=page, limit=limit))


@tasks_bp.route("/<int:task_id>/attachments", methods=["GET"])
@login_required
def list_attachments(task_id: int):
    try:
        task = get_readable_task(task_id, g.user)
    except LookupError as exc:
        return service_error(exc)
    return jsonify([attachment.to_dict() for attachment in task.attachments])


@tasks_bp.route("/<int:task_id>/attachments", methods=["POST"])
@login_required
def upload_attachment(task_id: int):
    upload = request.files.get("file")
    if upload is None:
        return json_error("A file is required")
    try:
        task = get_writable_task(task_id, g.user)
        attachment = task_service.save_attachment(task, g.user, upload)
    except (LookupError, PermissionError, ValueError) as exc:
        return service_error(exc)
    error = commit_or_error()
    if error:
        return error
    return jsonify(attachment.to_dict()), 201


@tasks_bp.route("/<int:task_id>/attachments/<int:attachment_id>", methods=["DELETE"])
@login_required
def delete_attachment(task_id: int, attachment_id: int):
    try:
        task = get_writable_task(task_id, g.user)
        stored_names = task_service.delete_attachment(task, attachment_id)
    except (LookupError, PermissionError) as exc:
        return service_error(exc)
    error = commit_or_error()
    if error:
        return error
    task_service.remove_stored_files(stored_names)
    return jsonify({"success": True})


@tasks_bp.route("/<int:task_id>/presence", methods=["GET"])
@login_required
def task_presence(task_id: int):
    try:
        get_readable_task(task_id, g.user)
    except LookupError as exc:
        return service_error(exc)
    return jsonify({"task_id": task_id, "viewers": registry.viewers(task_id)})
