"""Web Push subscriptions."""
from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify

from forms import PushSendForm, PushSubscribeForm, PushUnsubscribeForm
from routes import admin_required, commit_or_error, form_error, login_required, service_error
from services import account_service, push_service

push_bp = Blueprint("push", __name__, url_prefix="/api/push")


@push_bp.route("/subscribe", methods=["POST"])
@login_required
def subscribe():
    form = PushSubscribeForm()
    if not form.validate():
        return form_error(form)
    data = form.subscription.data
    push_service.subscribe(g.user, data["endpoint"], data["keys"]["p256dh"], data["keys"]["auth"])
    error = commit_or_error()
    if error:
        return error
    return jsonify({"ok": True})


@push_bp.route("/unsubscribe", methods=["POST"])
@login_required
def unsubscribe():
    form = PushUnsubscribeForm()
    if not form.validate():
        return form_error(form)
    removed = push_service.unsubscribe(g.user, form.endpoint.data)
    error = commit_or_error()
    if error:
        return error
    return jsonify({"ok": True, "removed": removed})


@push_bp.route("/send", methods=["POST"])
@admin_required
def send():
    form = PushSendForm()
    if not form.validate():
        return form_error(form)
    try:
        user = account_service.get_org_user(form.user_id.data, g.user.organization_id)
    except LookupError as exc:
        return service_error(exc)
    delivered = push_service.send_push_to_user(user, {"title": form.title.data, "body": form.body.data})
    # expired subscriptions are deleted during delivery
    error = commit_or_error()
    if error:
        return error
    current_app.logger.info("Admin %s pushed to user %s (%s delivered)", g.user.id, user.id, delivered)
    return jsonify({"ok": True, "delivered": delivered})
