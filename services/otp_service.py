"""One-time sign-in codes: generation, rate limiting and verification."""

from __future__ import annotations

import hashlib
import hmac
import secrets
from datetime import datetime, timedelta

from flask import current_app

from database import db
from models.otp_token import OtpToken, RateLimit


class OtpError(Exception):
    """A refused OTP operation; ``reason`` is a short machine-readable code."""

    def __init__(self, reason: str, message: str | None = None):
        super().__init__(message or reason)
        self.reason = reason

    @property
    def status_code(self) -> int:
        return 429 if self.reason in ("attempts", "rate-limit", "cooldown") else 400


def generate_otp() -> str:
    return f"{secrets.randbelow(1_000_000):06d}"


def hash_otp(code: str) -> str:
    return hashlib.sha256(str(code).encode("utf-8")).hexdigest()


def verify_otp(code: str, code_hash: str) -> bool:
    return hmac.compare_digest(hash_otp(code), code_hash)


def hash_key(key: str) -> str:
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


def check_rate_limit(key: str, *, limit: int | None = None, now: datetime | None = None) -> bool:
    """Count one request against ``key``; False once the hourly limit is spent."""

    now = now or datetime.utcnow()
    if limit is None:
        limit = current_app.config.get("OTP_MAX_REQUESTS_PER_HOUR", 5)
    hashed = hash_key(key)
    record = RateLimit.query.filter_by(key=hashed).one_or_none()
    if record is None or record.window_ends_at <= now:
        if record is None:
            record = RateLimit(key=hashed)
            db.session.add(record)
        record.count = 1
        record.window_ends_at = now + timedelta(hours=1)
        db.session.flush()
        return True
    if record.count >= limit:
        return False
    record.count += 1
    db.session.flush()
    return True


def _latest_token(email: str) -> OtpToken | None:
    return (
        OtpToken.query.filter_by(email=email)
        .order_by(OtpToken.created_at.desc(), OtpToken.id.desc())
        .first()
    )


def _delete_tokens(email: str) -> None:
    OtpToken.query.filter_by(email=email).delete(synchronize_session=False)


def create_otp_token(email: str, ip: str | None, code: str, *, now: datetime | None = None) -> OtpToken:
    """Store a hashed code for ``email`` unless the resend cooldown is running."""

    now = now or datetime.utcnow()
    email = email.strip().lower()
    cooldown = timedelta(seconds=current_app.config.get("OTP_RESEND_COOLDOWN_SECONDS", 60))
    latest = _latest_token(email)
    if latest is not None and now - latest.created_at < cooldown:
        raise OtpError("cooldown", "Please wait before requesting another code.")
    token = OtpToken(
        email=email,
        ip=ip,
        code_hash=hash_otp(code),
        attempts=0,
        created_at=now,
        expires_at=now + timedelta(minutes=current_app.config.get("OTP_EXPIRY_MINUTES", 10)),
    )
    db.session.add(token)
    db.session.flush()
    return token


def verify_and_consume_otp(email: str, code: str, *, now: datetime | None = None) -> None:
    """Check ``code`` against the newest token for ``email``.

    Raises OtpError with reason ``invalid``, ``expired`` or ``attempts``. On
    success every token of the email is removed.
    """

    now = now or datetime.utcnow()
    email = email.strip().lower()
    max_attempts = current_app.config.get("OTP_MAX_ATTEMPTS", 5)
    token = _latest_token(email)
    if token is None:
        raise OtpError("invalid", "Invalid code.")
    if token.expires_at <= now:
        _delete_tokens(email)
        raise OtpError("expired", "The code has expired.")
    if token.attempts >= max_attempts:
        raise OtpError("attempts", "Too many attempts.")
    if not verify_otp(code, token.code_hash):
        token.attempts += 1
        db.session.flush()
        if token.attempts >= max_attempts:
            raise OtpError("attempts", "Too many attempts.")
        raise OtpError("invalid", "Invalid code.")
    _delete_tokens(email)
    db.session.flush()
