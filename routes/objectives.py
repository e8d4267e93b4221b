"""Daily objectives and the daily dashboard."""
from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from forms import ObjectiveForm
from routes import commit_or_error, form_error, json_error, login_required, query_int, service_error
from services import objective_service

objectives_bp = Blueprint("objectives", __name__, url_prefix="/api")


def _day_and_team():
    team_id = query_int("team_id")
    if team_id is None:
        raise ValueError("team_id is required")
    return objective_service.parse_day(request.args.get("date")), team_id


@objectives_bp.route("/objectives", methods=["POST"])
@login_required
def upsert_objective():
    form = ObjectiveForm()
    if not form.validate():
        return form_error(form)
    data = {
        "id": form.id.data,
        "date": form.date.data,
        "team_id": form.team_id.data,
        "title": form.title.data,
        "owner_id": form.owner_id.data,
        "linked_task_ids": form.linked_task_ids.data,
        "status": form.status.data,
    }
    try:
        objective, created = objective_service.upsert_objective(g.user, data)
    except (ValueError, LookupError, PermissionError) as exc:
        return service_error(exc)
    error = commit_or_error()
    if error:
        return error
    return jsonify(objective.to_dict()), 201 if created else 200


@objectives_bp.route("/objectives", methods=["GET"])
@login_required
def list_objectives():
    try:
        day, team_id = _day_and_team()
        objectives = objective_service.list_objectives(g.user, day, team_id)
    except (ValueError, LookupError, PermissionError) as exc:
        return service_error(exc)
    return jsonify([objective.to_dict() for objective in objectives])


@objectives_bp.route("/objectives/<int:objective_id>", methods=["PATCH"])
@login_required
def toggle_objective(objective_id: int):
    try:
        objective = objective_service.toggle_objective(g.user, objective_id)
    except (LookupError, PermissionError) as exc:
        return service_error(exc)
    error = commit_or_error()
    if error:
        return error
    return jsonify(objective.to_dict())


@objectives_bp.route("/dashboard/daily", methods=["GET"])
@login_required
def daily_dashboard():
    try:
        day, team_id = _day_and_team()
    except ValueError as exc:
        return json_error(str(exc))
    try:
        dashboard = objective_service.daily_dashboard(g.user, day, team_id)
    except (LookupError, PermissionError) as exc:
        return service_error(exc)
    return jsonify(dashboard)
