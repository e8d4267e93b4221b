""" Represents a user in the system.

Users always belong to exactly one Organization and optionally to a Team.
A User signs in with a password or with a one-time code sent by email.
A User can edit its profile (name, email, username, avatar, timezone)
A User chooses how notifications reach it (in-app, email, push, digests)
Tenant admins manage the users of their own organization only.

"""
from __future__ import annotations

from enum import StrEnum

from werkzeug.security import generate_password_hash, check_password_hash
from database import db
from models.organization import DEFAULT_TEAM_TIMEZONE

# Notification categories users can switch off individually
CONFIGURABLE_NOTIFICATION_TYPES = (
    "ASSIGNMENT",
    "LOOP_STEP_READY",
    "TASK_CLOSED",
    "OVERDUE",
)


class UserRole(StrEnum):
    USER = "USER"
    ADMIN = "ADMIN"
    PLATFORM = "PLATFORM"


class DigestFrequency(StrEnum):
    IMMEDIATE = "immediate"
    DAILY = "daily"
    WEEKLY = "weekly"


def is_platform_role(role: str | None) -> bool:
    return role == UserRole.PLATFORM


def is_tenant_admin_role(role: str | None) -> bool:
    return role == UserRole.ADMIN


def is_elevated_admin_role(role: str | None) -> bool:
    return role in (UserRole.ADMIN, UserRole.PLATFORM)


class User(db.Model):
    __tablename__ = "user"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(120), unique=True, nullable=False)
    password_hash = db.Column(db.Text)
    role = db.Column(db.String(20), nullable=False, default=UserRole.USER.value)
    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(255), nullable=False, index=True)
    organization_id = db.Column(
        db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True
    )
    team_id = db.Column(db.Integer, db.ForeignKey("teams.id"), nullable=True, index=True)
    timezone = db.Column(db.String(64), nullable=False, default=DEFAULT_TEAM_TIMEZONE)
    avatar = db.Column(db.String(500), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    permissions = db.Column(db.JSON, nullable=True)

    notify_email = db.Column(db.Boolean, nullable=False, default=True)
    notify_push = db.Column(db.Boolean, nullable=False, default=True)
    digest_frequency = db.Column(
        db.String(20), nullable=False, default=DigestFrequency.IMMEDIATE.value
    )
    last_digest_at = db.Column(db.DateTime, nullable=True)
    notification_types = db.Column(db.JSON, nullable=True)

    organization = db.relationship("Organization", back_populates="users")
    team = db.relationship("Team", back_populates="members")
    push_subscriptions = db.relationship(
        "PushSubscription",
        back_populates="user",
        lazy="selectin",
        cascade="all, delete-orphan",
    )
    notifications = db.relationship(
        "Notification",
        back_populates="user",
        lazy="dynamic",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        db.UniqueConstraint("organization_id", "email", name="uq_user_org_email"),
    )

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        if not self.password_hash:
            return False
        return check_password_hash(self.password_hash, password)

    def __repr__(self):
        return f"<User {self.id}>"

    @property
    def role_enum(self) -> UserRole:
        return UserRole(self.role)

    @role_enum.setter
    def role_enum(self, value: UserRole) -> None:
        self.role = value.value

    @property
    def is_admin(self) -> bool:
        return is_elevated_admin_role(self.role)

    def wants_notification_type(self, notification_type: str) -> bool:
        """True unless the user switched this notification category off."""

        toggles = self.notification_types or {}
        return toggles.get(str(notification_type)) is not False

    def notification_settings(self) -> dict[str, object]:
        toggles = self.notification_types or {}
        return {
            "email": self.notify_email,
            "push": self.notify_push,
            "digest_frequency": self.digest_frequency,
            "last_digest_at": self.last_digest_at.isoformat() if self.last_digest_at else None,
            "types": {
                name: toggles.get(name) is not False
                for name in CONFIGURABLE_NOTIFICATION_TYPES
            },
        }

    def to_dict(self, *, include_settings: bool = False) -> dict[str, object]:
        payload = {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "username": self.username,
            "role": self.role,
            "organization_id": self.organization_id,
            "team_id": self.team_id,
            "timezone": self.timezone,
            "avatar": self.avatar,
            "is_active": self.is_active,
        }
        if include_settings:
            payload["notification_settings"] = self.notification_settings()
        return payload
