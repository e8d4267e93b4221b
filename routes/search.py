"""Task search, global search, suggestions, exports and saved searches."""
from __future__ import annotations

from datetime import date

from flask import Blueprint, Response, g, jsonify, request

from forms import SavedSearchForm, SavedSearchUpdateForm
from routes import (
    commit_or_error,
    form_error,
    json_error,
    json_payload,
    login_required,
    query_int,
    service_error,
)
from services import search_service
from services.search_service import TaskSearch

search_bp = Blueprint("search", __name__, url_prefix="/api/search")


@search_bp.route("/saved", methods=["GET"])
@login_required
def list_saved():
    presets = search_service.get_presets(g.user.id, date.today())
    saved = [item.to_dict() for item in search_service.list_saved_searches(g.user)]
    return jsonify(presets + saved)


@search_bp.route("/saved", methods=["POST"])
@login_required
def create_saved():
    form = SavedSearchForm()
    if not form.validate():
        return form_error(form)
    try:
        saved = search_service.save_search(g.user, form.name.data, form.query.data)
    except ValueError as exc:
        return service_error(exc)
    error = commit_or_error()
    if error:
        return error
    return jsonify(saved.to_dict()), 201


@search_bp.route("/saved/<int:search_id>", methods=["GET"])
@login_required
def get_saved(search_id: int):
    try:
        saved = search_service.get_saved_search(search_id, g.user)
    except LookupError as exc:
        return service_error(exc)
    return jsonify(saved.to_dict())


@search_bp.route("/saved/<int:search_id>", methods=["PUT"])
@login_required
def update_saved(search_id: int):
    form = SavedSearchUpdateForm()
    if not form.validate():
        return form_error(form)
    present = set(json_payload())
    try:
        saved = search_service.get_saved_search(search_id, g.user)
        search_service.update_saved_search(
            saved,
            name=(form.name.data or "") if "name" in present else None,
            query=(form.query.data or "") if "query" in present else None,
        )
    except (LookupError, ValueError) as exc:
        return service_error(exc)
    error = commit_or_error()
    if error:
        return error
    return jsonify(saved.to_dict())


@search_bp.route("/saved/<int:search_id>", methods=["DELETE"])
@login_required
def delete_saved(search_id: int):
    try:
        saved = search_service.get_saved_search(search_id, g.user)
    except LookupError as exc:
        return service_error(exc)
    search_service.delete_saved_search(saved)
    error = commit_or_error()
    if error:
        return error
    return jsonify({"success": True})


@search_bp.route("/tasks", methods=["GET"])
@login_required
def search_tasks():
    try:
        search = TaskSearch.from_args(request.args)
    except ValueError as exc:
        return json_error(str(exc))
    return jsonify(search_service.search_tasks(g.user, search))


@search_bp.route("/global", methods=["GET"])
@login_required
def search_global():
    try:
        page = query_int("page", 1)
        limit = query_int("limit", 20)
        result = search_service.search_global(
            g.user, request.args.get("q"), page=page, limit=limit, sort=request.args.get("sort")
        )
    except ValueError as exc:
        return json_error(str(exc))
    return jsonify(result)


@search_bp.route("/suggestions", methods=["GET"])
@login_required
def suggestions():
    return jsonify(search_service.suggestions(g.user, request.args.get("q")))


@search_bp.route("/export", methods=["GET"])
@login_required
def export():
    export_format = (request.args.get("format") or "csv").lower()
    if export_format not in ("csv", "json"):
        return json_error("format must be csv or json")
    global_results = not search_service.wants_task_search(request.args)
    try:
        if global_results:
            results = search_service.search_global(
                g.user, request.args.get("q"), page=1, limit=100, sort=request.args.get("sort")
            )["results"]
        else:
            results = search_service.search_tasks(g.user, TaskSearch.from_args(request.args))
    except ValueError as exc:
        return json_error(str(exc))

    if export_format == "json":
        response = jsonify(results)
        response.headers["Content-Disposition"] = "attachment; filename=search-export.json"
        return response
    return Response(
        search_service.export_csv(results, global_results=global_results),
        mimetype="text/csv",
        headers={"Content-Disposition": "attachment; filename=search-export.csv"},
    )
