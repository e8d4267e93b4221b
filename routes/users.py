"""User directory, profile and notification preferences."""
from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from forms import AdminUserForm, NewUserForm, NotificationSettingsForm, ProfileForm
from models.user import UserRole
from routes import (
    admin_required,
    commit_or_error,
    form_error,
    json_payload,
    login_required,
    service_error,
)
from services import account_service
from services.account_service import PROFILE_FIELDS, ConflictError

users_bp = Blueprint("users", __name__, url_prefix="/api/users")


def _profile(user) -> dict[str, object]:
    return {key: getattr(user, key) for key in ("id", *PROFILE_FIELDS)}


@users_bp.route("", methods=["GET"])
@login_required
def list_users():
    users = account_service.search_users(g.user.organization_id, request.args.get("q"))
    return jsonify([user.to_dict() for user in users])


@users_bp.route("", methods=["POST"])
@admin_required
def create_user():
    form = NewUserForm()
    if not form.validate():
        return form_error(form)
    try:
        user = account_service.create_user(
            g.user.organization,
            name=form.name.data,
            email=form.email.data,
            password=form.password.data,
            role=form.role.data or UserRole.USER.value,
            team_id=form.team_id.data,
        )
    except (ValueError, ConflictError) as exc:
        return service_error(exc)
    error = commit_or_error()
    if error:
        return error
    return jsonify(user.to_dict()), 201


@users_bp.route("/me", methods=["GET"])
@login_required
def get_me():
    return jsonify(_profile(g.user))


@users_bp.route("/me", methods=["PUT"])
@login_required
def update_me():
    form = ProfileForm(user=g.user)
    if not form.validate():
        return form_error(form)
    payload = json_payload()
    changes = {key: form[key].data for key in PROFILE_FIELDS if key in payload}
    try:
        account_service.update_profile(g.user, changes)
    except (ValueError, ConflictError) as exc:
        return service_error(exc)
    error = commit_or_error()
    if error:
        return error
    return jsonify(_profile(g.user))


@users_bp.route("/me/notifications", methods=["GET"])
@login_required
def get_notification_settings():
    return jsonify(g.user.notification_settings())


@users_bp.route("/me/notifications", methods=["PUT"])
@login_required
def update_notification_settings():
    form = NotificationSettingsForm()
    if not form.validate():
        return form_error(form)
    account_service.update_notification_settings(
        g.user,
        {
            "email": form.email.data,
            "push": form.push.data,
            "digest_frequency": form.digest_frequency.data,
            "types": form.types.data,
        },
    )
    error = commit_or_error()
    if error:
        return error
    return jsonify(g.user.notification_settings())


@users_bp.route("/<int:user_id>", methods=["GET"])
@login_required
def get_user(user_id: int):
    try:
        user = account_service.get_org_user(user_id, g.user.organization_id)
    except LookupError as exc:
        return service_error(exc)
    return jsonify(user.to_dict())


@users_bp.route("/<int:user_id>", methods=["PUT"])
@admin_required
def update_user(user_id: int):
    try:
        user = account_service.get_org_user(user_id, g.user.organization_id)
    except LookupError as exc:
        return service_error(exc)
    form = AdminUserForm(user=user)
    if not form.validate():
        return form_error(form)
    payload = json_payload()
    fields = (*PROFILE_FIELDS, "role", "team_id", "is_active", "password")
    changes = {key: form[key].data for key in fields if key in payload}
    try:
        account_service.admin_update_user(user, changes)
    except (ValueError, ConflictError) as exc:
        return service_error(exc)
    error = commit_or_error()
    if error:
        return error
    return jsonify(user.to_dict())


@users_bp.route("/<int:user_id>", methods=["DELETE"])
@admin_required
def delete_user(user_id: int):
    try:
        user = account_service.get_org_user(user_id, g.user.organization_id)
    except LookupError as exc:
        return service_error(exc)
    account_service.deactivate_user(user)
    error = commit_or_error()
    if error:
        return error
    return jsonify({"ok": True})
