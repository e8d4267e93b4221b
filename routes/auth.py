"""Registration, password and one-time code sign-in."""
from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request, session
from flask_wtf.csrf import generate_csrf

from forms import AdminRegisterForm, LoginForm, OtpRequestForm, OtpVerifyForm, RegisterForm
from routes import commit_or_error, form_error, json_error, service_error
from services import account_service, mail_service, otp_service
from services.account_service import ConflictError
from services.otp_service import OtpError

auth_bp = Blueprint("auth", __name__, url_prefix="/api")


def _sign_in(user) -> None:
    session.clear()
    session["user_id"] = user.id
    session["user"] = user.name
    g.user = user


def _client_ip() -> str:
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.remote_addr or "unknown"


@auth_bp.route("/csrf", methods=["GET"])
def csrf_token():
    """Return a fresh CSRF token for the X-CSRFToken header."""

    return jsonify({"csrf_token": generate_csrf()})


@auth_bp.route("/register", methods=["POST"])
def register():
    form = RegisterForm()
    if not form.validate():
        return form_error(form)
    try:
        user = account_service.register(
            name=form.name.data,
            email=form.email.data,
            password=form.password.data,
            organization_id=form.organization_id.data,
            organization_name=form.organization_name.data,
        )
    except (ValueError, ConflictError) as exc:
        return service_error(exc)
    error = commit_or_error()
    if error:
        return error
    current_app.logger.info("Registered user %s in organization %s", user.id, user.organization_id)
    return jsonify({"id": user.id}), 201


@auth_bp.route("/admin/register", methods=["POST"])
def register_admin():
    """Self-service sign-up of a new organization and its first admin."""

    form = AdminRegisterForm()
    if not form.validate():
        return form_error(form)
    try:
        user = account_service.register_admin(
            name=form.name.data,
            email=form.email.data,
            password=form.password.data,
            organization_name=form.organization_name.data,
            organization_domain=form.organization_domain.data,
        )
    except (ValueError, ConflictError) as exc:
        return service_error(exc)
    error = commit_or_error()
    if error:
        return error
    current_app.logger.info("Registered admin %s for organization %s", user.id, user.organization_id)
    return jsonify({"id": user.id}), 201


@auth_bp.route("/auth/login", methods=["POST"])
def login():
    form = LoginForm()
    if not form.validate():
        return form_error(form)
    user = account_service.authenticate(form.email.data, form.password.data)
    if user is None:
        return json_error("Invalid email or password", status=401)
    _sign_in(user)
    return jsonify({"success": True, "user": user.to_dict()})


@auth_bp.route("/auth/logout", methods=["POST"])
def logout():
    session.pop("user", None)
    session.pop("user_id", None)
    g.user = None
    return jsonify({"success": True})


@auth_bp.route("/auth/otp/request", methods=["POST"])
def request_otp():
    form = OtpRequestForm()
    if not form.validate():
        return form_error(form)
    email = form.email.data.strip().lower()

    allowed = otp_service.check_rate_limit(f"otp:email:{email}") and otp_service.check_rate_limit(
        f"otp:ip:{_client_ip()}"
    )
    if not allowed:
        error = commit_or_error()
        return error or json_error("rate-limit", status=429)

    code = otp_service.generate_otp()
    try:
        otp_service.create_otp_token(email, _client_ip(), code)
    except OtpError as exc:
        error = commit_or_error()
        return error or json_error(exc.reason, status=exc.status_code)
    error = commit_or_error()
    if error:
        return error
    mail_service.send_otp_email(email, code)
    return jsonify({"ok": True})


@auth_bp.route("/auth/otp/verify", methods=["POST"])
def verify_otp():
    form = OtpVerifyForm()
    if not form.validate():
        return form_error(form)
    email = form.email.data.strip().lower()
    try:
        otp_service.verify_and_consume_otp(email, form.code.data)
    except OtpError as exc:
        # attempt counters and expired tokens must persist
        error = commit_or_error()
        return error or json_error(exc.reason, status=exc.status_code)
    error = commit_or_error()
    if error:
        return error

    user = account_service.find_active_user_by_email(email)
    if user is None:
        return json_error("Account not found", status=404)
    _sign_in(user)
    return jsonify({"success": True, "user": user.to_dict()})
