"""Application configuration loaded from the environment."""

import os

from dotenv import load_dotenv

load_dotenv()  # Load environment variables from .env file

_BASE_DIR = os.path.abspath(os.path.dirname(__file__))


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, default))
    except (TypeError, ValueError):
        return default


class Config:
    APP_NAME = os.environ.get("APP_NAME", "LoopTask")
    SECRET_KEY = os.environ.get("SECRET_KEY", "change_me_in_env")
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Database
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", f"sqlite:///{os.path.join(_BASE_DIR, 'looptask.db')}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Public origin used to build links sent by email
    APP_ORIGIN = os.environ.get("APP_ORIGIN", "http://localhost:5000")

    # Mail
    MAIL_SERVER = os.environ.get("MAIL_SERVER", "localhost")
    MAIL_PORT = _env_int("MAIL_PORT", 25)
    MAIL_USE_TLS = _env_flag("MAIL_USE_TLS")
    MAIL_USE_SSL = _env_flag("MAIL_USE_SSL")
    MAIL_USERNAME = os.environ.get("MAIL_USERNAME")
    MAIL_PASSWORD = os.environ.get("MAIL_PASSWORD")
    MAIL_DEFAULT_SENDER = os.environ.get("MAIL_DEFAULT_SENDER", "notify@looptask.local")
    MAIL_SUPPRESS_SEND = _env_flag("MAIL_SUPPRESS_SEND")

    # Web push (VAPID); push is disabled while either key is missing
    VAPID_PUBLIC_KEY = os.environ.get("VAPID_PUBLIC_KEY")
    VAPID_PRIVATE_KEY = os.environ.get("VAPID_PRIVATE_KEY")
    VAPID_CLAIMS_EMAIL = os.environ.get("VAPID_CLAIMS_EMAIL", "mailto:notify@looptask.local")

    # Realtime
    SOCKETIO_ASYNC_MODE = os.environ.get("SOCKETIO_ASYNC_MODE", "threading")

    UPLOAD_FOLDER = os.environ.get("UPLOAD_FOLDER", os.path.join(_BASE_DIR, "uploads"))
    MAX_CONTENT_LENGTH = _env_int("MAX_CONTENT_LENGTH", 16 * 1024 * 1024)
    DEFAULT_TIMEZONE = os.environ.get("DEFAULT_TIMEZONE", "Asia/Kolkata")

    # One-time passwords
    OTP_EXPIRY_MINUTES = _env_int("OTP_EXPIRY_MINUTES", 10)
    OTP_RESEND_COOLDOWN_SECONDS = _env_int("OTP_RESEND_COOLDOWN_SECONDS", 60)
    OTP_MAX_REQUESTS_PER_HOUR = _env_int("OTP_MAX_REQUESTS_PER_HOUR", 5)
    OTP_MAX_ATTEMPTS = _env_int("OTP_MAX_ATTEMPTS", 5)

    NOTIFICATION_THROTTLE_SECONDS = _env_int("NOTIFICATION_THROTTLE_SECONDS", 60)
    DUE_SWEEP_INTERVAL_MINUTES = _env_int("DUE_SWEEP_INTERVAL_MINUTES", 15)
    INVITATION_EXPIRY_DAYS = _env_int("INVITATION_EXPIRY_DAYS", 7)

    WTF_CSRF_ENABLED = _env_flag("WTF_CSRF_ENABLED", True)
    WTF_CSRF_HEADERS = ["X-CSRFToken", "X-CSRF-Token"]
