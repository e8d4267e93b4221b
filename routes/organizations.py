"""Organizations and teams."""
from __future__ import annotations

from flask import Blueprint, g, jsonify

from forms import TeamForm
from models.organization import Organization, Team
from routes import admin_required, commit_or_error, form_error, login_required, service_error
from services import account_service
from services.account_service import ConflictError

organizations_bp = Blueprint("organizations", __name__, url_prefix="/api")


@organizations_bp.route("/organizations", methods=["GET"])
def list_organizations():
    """Public list used by the registration page."""

    organizations = Organization.query.order_by(Organization.name).all()
    return jsonify([{"id": org.id, "name": org.name} for org in organizations])


@organizations_bp.route("/teams", methods=["GET"])
@login_required
def list_teams():
    teams = Team.query.filter_by(organization_id=g.user.organization_id).order_by(Team.name).all()
    return jsonify([team.to_dict() for team in teams])


@organizations_bp.route("/teams", methods=["POST"])
@admin_required
def create_team():
    form = TeamForm()
    if not form.validate():
        return form_error(form)
    try:
        team = account_service.create_team(g.user.organization_id, form.name.data, form.timezone.data)
    except (ValueError, ConflictError) as exc:
        return service_error(exc)
    error = commit_or_error()
    if error:
        return error
    return jsonify(team.to_dict()), 201
