"""Audit trail of task level events."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from database import db


class ActivityType(StrEnum):
    CREATED = "CREATED"
    UPDATED = "UPDATED"
    TRANSITIONED = "TRANSITIONED"
    COMMENT = "COMMENT"


class ActivityLog(db.Model):
    __tablename__ = "activity_logs"

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(db.Integer, db.ForeignKey("task.id"), nullable=False, index=True)
    actor_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    activity_type = db.Column(db.String(20), nullable=False)
    payload = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    task = db.relationship("Task", back_populates="activity")
    actor = db.relationship("User")

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "task_id": self.task_id,
            "actor_id": self.actor_id,
            "type": self.activity_type,
            "payload": self.payload or {},
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return f"<ActivityLog task={self.task_id} type={self.activity_type}>"
