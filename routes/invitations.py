"""Organization invitations."""
from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from forms import AcceptInvitationForm, InvitationForm
from routes import admin_required, commit_or_error, form_error, service_error
from services import account_service
from services.account_service import ConflictError

invitations_bp = Blueprint("invitations", __name__, url_prefix="/api/invitations")


@invitations_bp.route("", methods=["GET"])
@admin_required
def list_invitations():
    invitations = account_service.list_invitations(g.user.organization_id)
    return jsonify([invitation.to_dict() for invitation in invitations])


@invitations_bp.route("", methods=["POST"])
@admin_required
def create_invitation():
    form = InvitationForm()
    if not form.validate():
        return form_error(form)
    origin = request.headers.get("Origin") or current_app.config.get("APP_ORIGIN", "")
    invitation, link = account_service.create_invitation(
        g.user, form.email.data, form.role.data, origin
    )
    error = commit_or_error()
    if error:
        return error
    account_service.send_invitation(invitation, link)
    current_app.logger.info("Invitation %s sent by user %s", invitation.id, g.user.id)
    return jsonify({"ok": True, "invitation": invitation.to_dict()}), 201


@invitations_bp.route("/accept", methods=["POST"])
def accept_invitation():
    form = AcceptInvitationForm()
    if not form.validate():
        return form_error(form)
    try:
        user = account_service.accept_invitation(form.token.data, form.name.data, form.password.data)
    except (ValueError, ConflictError) as exc:
        return service_error(exc)
    error = commit_or_error()
    if error:
        return error
    return jsonify({"id": user.id}), 201
