"""Task comments."""
from __future__ import annotations

from flask import Blueprint, g, jsonify

from forms import CommentForm
from routes import commit_or_error, form_error, json_error, login_required, query_int, service_error
from services import comment_service
from services.access import get_readable_task

comments_bp = Blueprint("comments", __name__, url_prefix="/api/comments")


@comments_bp.route("", methods=["POST"])
@login_required
def create_comment():
    form = CommentForm()
    if not form.validate():
        return form_error(form)
    try:
        task = get_readable_task(form.task_id.data, g.user)
        comment = comment_service.create_comment(task, g.user, form.content.data, form.parent_id.data)
    except (LookupError, ValueError) as exc:
        return service_error(exc)
    error = commit_or_error("Unable to save the comment. Please try again.")
    if error:
        return error
    return jsonify(comment.to_dict()), 201


@comments_bp.route("", methods=["GET"])
@login_required
def list_comments():
    try:
        task_id = query_int("task_id")
        parent_id = query_int("parent_id")
        page = query_int("page", 1)
        limit = query_int("limit", comment_service.DEFAULT_PAGE_SIZE)
    except ValueError as exc:
        return json_error(str(exc))
    if task_id is None:
        return json_error("task_id is required")
    try:
        task = get_readable_task(task_id, g.user)
    except LookupError as exc:
        return service_error(exc)
    comments = comment_service.list_comments(task, parent_id=parent_id, page=page, limit=limit)
    return jsonify([comment.to_dict() for comment in comments])
