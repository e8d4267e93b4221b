"""Per-step audit trail of a task loop."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from database import db


class LoopAction(StrEnum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    COMPLETE = "COMPLETE"
    REASSIGN = "REASSIGN"


class LoopHistory(db.Model):
    __tablename__ = "loop_history"

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(db.Integer, db.ForeignKey("task.id"), nullable=False, index=True)
    step_index = db.Column(db.Integer, nullable=False)
    action = db.Column(db.String(20), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    task = db.relationship("Task", back_populates="loop_history")

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "task_id": self.task_id,
            "step_index": self.step_index,
            "action": self.action,
            "user_id": self.user_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
