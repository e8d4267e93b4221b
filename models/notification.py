"""Notification models for user-facing alerts."""
from __future__ import annotations
from datetime import datetime
from enum import StrEnum

from database import db


class NotificationType(StrEnum):
    """Supported notification categories."""

    ASSIGNMENT = "ASSIGNMENT"
    LOOP_STEP_READY = "LOOP_STEP_READY"
    TASK_CLOSED = "TASK_CLOSED"
    OVERDUE = "OVERDUE"
    COMMENT_MENTION = "COMMENT_MENTION"
    STATUS_CHANGE = "STATUS_CHANGE"
    DUE_SOON = "DUE_SOON"
    DUE_NOW = "DUE_NOW"


class Notification(db.Model):
    """Persisted message for a user, optionally pointing at a task."""

    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    task_id = db.Column(db.Integer, db.ForeignKey("task.id"), nullable=True, index=True)
    notification_type = db.Column(db.String(50), nullable=False)
    message = db.Column(db.Text, nullable=False)
    read = db.Column(db.Boolean, nullable=False, default=False)
    read_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    user = db.relationship("User", back_populates="notifications", foreign_keys=[user_id])
    task = db.relationship("Task", back_populates="notifications", foreign_keys=[task_id])

    __table_args__ = (
        db.Index("ix_notifications_user_read", "user_id", "read"),
    )

    @property
    def type_enum(self) -> NotificationType:
        """Return the notification type as an enum value."""

        return NotificationType(self.notification_type)

    @type_enum.setter
    def type_enum(self, value: NotificationType) -> None:
        self.notification_type = value.value

    def mark_read(self, read: bool = True) -> None:
        """Record whether the notification has been seen."""

        self.read = read
        self.read_at = datetime.utcnow() if read else None

    def to_dict(self) -> dict[str, object]:
        """Return a serialized representation of the notification."""

        return {
            "id": self.id,
            "user_id": self.user_id,
            "task_id": self.task_id,
            "type": self.notification_type,
            "message": self.message,
            "read": self.read,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
