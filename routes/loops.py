"""Task loops and reusable loop templates."""
from __future__ import annotations

from flask import Blueprint, g, jsonify

from forms import LoopForm, LoopTemplateForm, LoopTemplateUpdateForm, LoopUpdateForm
from routes import (
    commit_or_error,
    form_error,
    json_error,
    json_payload,
    login_required,
    query_int,
    service_error,
)
from services import loop_service
from services.access import get_readable_task, get_writable_task

loops_bp = Blueprint("loops", __name__, url_prefix="/api")


@loops_bp.route("/tasks/<int:task_id>/loop", methods=["POST"])
@login_required
def create_loop(task_id: int):
    try:
        task = get_writable_task(task_id, g.user)
    except (LookupError, PermissionError) as exc:
        return service_error(exc)
    form = LoopForm()
    if not form.validate():
        return form_error(form)
    if not form.sequence.data:
        return json_error("sequence must be a non-empty list.")
    try:
        loop = loop_service.create_loop(task, form.sequence.data, g.user, parallel=bool(form.parallel.data))
    except ValueError as exc:
        return service_error(exc)
    error = commit_or_error()
    if error:
        return error
    return jsonify(loop.to_dict()), 201


@loops_bp.route("/tasks/<int:task_id>/loop", methods=["GET"])
@login_required
def get_loop(task_id: int):
    try:
        task = get_readable_task(task_id, g.user)
        loop = loop_service.get_loop(task)
    except LookupError as exc:
        return service_error(exc)
    return jsonify(loop.to_dict())


@loops_bp.route("/tasks/<int:task_id>/loop", methods=["PATCH"])
@login_required
def update_loop(task_id: int):
    try:
        task = get_writable_task(task_id, g.user)
    except (LookupError, PermissionError) as exc:
        return service_error(exc)
    form = LoopUpdateForm()
    if not form.validate():
        return form_error(form)
    try:
        loop = loop_service.update_loop(task, form.sequence.data, g.user)
    except (ValueError, LookupError) as exc:
        return service_error(exc)
    error = commit_or_error()
    if error:
        return error
    return jsonify(loop.to_dict())


@loops_bp.route("/tasks/<int:task_id>/loop", methods=["DELETE"])
@login_required
def delete_loop(task_id: int):
    try:
        task = get_writable_task(task_id, g.user)
        loop_service.delete_loop(task)
    except (LookupError, PermissionError) as exc:
        return service_error(exc)
    error = commit_or_error()
    if error:
        return error
    return jsonify({"success": True})


@loops_bp.route("/tasks/<int:task_id>/loop/steps/<int:index>/complete", methods=["POST"])
@login_required
def complete_step(task_id: int, index: int):
    try:
        task = get_readable_task(task_id, g.user)
        loop_service.get_loop(task)
    except LookupError as exc:
        return service_error(exc)
    if not loop_service.can_complete_step(g.user, task, index):
        return json_error("Only the step assignee or a task editor can complete this step.", status=403)
    result = loop_service.complete_step(task, index, g.user)
    if not result.completed:
        return json_error("Step cannot be completed.")
    error = commit_or_error()
    if error:
        return error
    return jsonify({"loop": task.loop.to_dict(), "newly_active": result.newly_active})


@loops_bp.route("/tasks/<int:task_id>/loop/history", methods=["GET"])
@login_required
def loop_history(task_id: int):
    try:
        task = get_readable_task(task_id, g.user)
        page = query_int("page", 1)
        limit = query_int("limit", 20)
    except (LookupError, ValueError) as exc:
        return service_error(exc)
    return jsonify(loop_service.loop_history_page(task, page=page, limit=limit))


@loops_bp.route("/tasks/<int:task_id>/loop/from-template/<int:template_id>", methods=["POST"])
@login_required
def create_loop_from_template(task_id: int, template_id: int):
    try:
        task = get_writable_task(task_id, g.user)
        template = loop_service.get_template(template_id, g.user.organization_id)
        loop = loop_service.create_loop_from_template(task, template, g.user)
    except (LookupError, PermissionError, ValueError) as exc:
        return service_error(exc)
    error = commit_or_error()
    if error:
        return error
    return jsonify(loop.to_dict()), 201


@loops_bp.route("/loop-templates", methods=["GET"])
@login_required
def list_templates():
    templates = loop_service.list_templates(g.user.organization_id)
    return jsonify([template.to_dict() for template in templates])


@loops_bp.route("/loop-templates", methods=["POST"])
@login_required
def create_template():
    form = LoopTemplateForm()
    if not form.validate():
        return form_error(form)
    try:
        template = loop_service.create_template(g.user, form.name.data, form.steps.data)
    except ValueError as exc:
        return service_error(exc)
    error = commit_or_error()
    if error:
        return error
    return jsonify(template.to_dict()), 201


@loops_bp.route("/loop-templates/<int:template_id>", methods=["PUT"])
@login_required
def update_template(template_id: int):
    form = LoopTemplateUpdateForm()
    if not form.validate():
        return form_error(form)
    present = set(json_payload())
    try:
        template = loop_service.get_template(template_id, g.user.organization_id)
        loop_service.update_template(
            template,
            name=(form.name.data or "") if "name" in present else None,
            steps=form.steps.data if "steps" in present else None,
        )
    except (LookupError, ValueError) as exc:
        return service_error(exc)
    error = commit_or_error()
    if error:
        return error
    return jsonify(template.to_dict())


@loops_bp.route("/loop-templates/<int:template_id>", methods=["DELETE"])
@login_required
def delete_template(template_id: int):
    try:
        template = loop_service.get_template(template_id, g.user.organization_id)
    except LookupError as exc:
        return service_error(exc)
    loop_service.delete_template(template)
    error = commit_or_error()
    if error:
        return error
    return jsonify({"success": True})
