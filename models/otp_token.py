"""Hashed one-time sign-in codes and the fixed-window counters guarding them."""

from __future__ import annotations

from datetime import datetime

from database import db


class OtpToken(db.Model):
    __tablename__ = "otp_tokens"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False, index=True)
    code_hash = db.Column(db.String(64), nullable=False)
    attempts = db.Column(db.Integer, nullable=False, default=0)
    ip = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    expires_at = db.Column(db.DateTime, nullable=False)


class RateLimit(db.Model):
    """A named counter that resets once ``window_ends_at`` has passed."""

    __tablename__ = "rate_limits"

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(255), nullable=False, unique=True)
    count = db.Column(db.Integer, nullable=False, default=0)
    window_ends_at = db.Column(db.DateTime, nullable=False)
