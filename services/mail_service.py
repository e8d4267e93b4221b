"""Outgoing email helpers built on Flask-Mail."""
from __future__ import annotations

from flask import current_app, render_template
from flask_mail import Message
from jinja2 import TemplateNotFound

from extensions import mail


def send_email(to_address: str, subject: str, *, text: str, html: str | None = None) -> bool:
    """Send an email and report whether the transport accepted it.

    Failures are logged and swallowed so callers never abort a request
    because the mail server is unavailable.
    """

    sender = current_app.config.get("MAIL_DEFAULT_SENDER")
    app_name = current_app.config.get("APP_NAME", "LoopTask")
    msg = Message(subject, sender=(app_name, sender), recipients=[to_address])
    msg.body = text
    if html:
        msg.html = html
    try:
        mail.send(msg)
    except Exception as exc:  # noqa: BLE001 - transport errors vary by backend
        current_app.logger.warning("[Mail] Sending '%s' to %s failed: %s", subject, to_address, exc)
        return False
    current_app.logger.info("[Mail] Email sent to %s [%s]", to_address, subject)
    return True


def render_email_template(name: str, **context) -> str | None:
    """Render ``templates/emails/<name>`` or return None when it does not exist."""

    try:
        return render_template(f"emails/{name}", **context)
    except TemplateNotFound:
        return None


def send_otp_email(to_address: str, code: str) -> bool:
    expiry = current_app.config.get("OTP_EXPIRY_MINUTES", 10)
    text = f"Your verification code is {code}"
    html = render_email_template("otp.html", code=code, expiry_minutes=expiry)
    return send_email(to_address, "Your login code", text=text, html=html)


def send_invitation_email(to_address: str, link: str, organization_name: str) -> bool:
    text = f"You have been invited to join {organization_name} on LoopTask: {link}"
    html = render_email_template("invitation.html", link=link, organization_name=organization_name)
    return send_email(to_address, f"Join {organization_name} on LoopTask", text=text, html=html)
