"""Project types and projects."""
from __future__ import annotations

from flask import Blueprint, g, jsonify

from forms import ProjectForm, ProjectTypeForm
from routes import (
    commit_or_error,
    form_error,
    json_error,
    json_payload,
    login_required,
    query_int,
    service_error,
)
from services import project_service
from services.account_service import ConflictError

projects_bp = Blueprint("projects", __name__, url_prefix="/api")


def _project_data(form, present) -> dict:
    values = {
        "name": form.name.data,
        "description": form.description.data,
        "type_id": form.type_id.data,
    }
    return {key: value for key, value in values.items() if key in present}


@projects_bp.route("/project-types", methods=["GET"])
@login_required
def list_project_types():
    types = project_service.list_project_types(g.user.organization_id)
    return jsonify([project_type.to_dict() for project_type in types])


@projects_bp.route("/project-types", methods=["POST"])
@login_required
def create_project_type():
    form = ProjectTypeForm()
    if not form.validate():
        return form_error(form)
    try:
        project_type = project_service.create_project_type(g.user, form.name.data)
    except (ValueError, ConflictError) as exc:
        return service_error(exc)
    error = commit_or_error()
    if error:
        return error
    return jsonify(project_type.to_dict()), 201


@projects_bp.route("/projects", methods=["GET"])
@login_required
def list_projects():
    try:
        type_id = query_int("type_id")
    except ValueError as exc:
        return json_error(str(exc))
    return jsonify(project_service.list_projects(g.user.organization_id, type_id))


@projects_bp.route("/projects", methods=["POST"])
@login_required
def create_project():
    form = ProjectForm()
    if not form.validate():
        return form_error(form)
    try:
        project = project_service.create_project(g.user, _project_data(form, set(json_payload())))
    except ValueError as exc:
        return service_error(exc)
    error = commit_or_error()
    if error:
        return error
    return jsonify(project_service.serialize_project(project)), 201


@projects_bp.route("/projects/<int:project_id>", methods=["GET"])
@login_required
def get_project(project_id: int):
    try:
        project = project_service.get_project(project_id, g.user.organization_id)
    except LookupError as exc:
        return service_error(exc)
    return jsonify(project_service.serialize_project(project))


@projects_bp.route("/projects/<int:project_id>", methods=["PATCH", "PUT"])
@login_required
def update_project(project_id: int):
    form = ProjectForm()
    if not form.validate():
        return form_error(form)
    try:
        project = project_service.get_project(project_id, g.user.organization_id)
        project_service.update_project(project, g.user, _project_data(form, set(json_payload())))
    except (LookupError, ValueError) as exc:
        return service_error(exc)
    error = commit_or_error()
    if error:
        return error
    return jsonify(project_service.serialize_project(project))


@projects_bp.route("/projects/<int:project_id>", methods=["DELETE"])
@login_required
def delete_project(project_id: int):
    try:
        project = project_service.get_project(project_id, g.user.organization_id)
        project_service.delete_project(project)
    except (LookupError, ConflictError) as exc:
        return service_error(exc)
    error = commit_or_error()
    if error:
        return error
    return jsonify({"success": True})
