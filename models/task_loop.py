"""Execution state of a task's step sequence.

A loop mirrors the steps of a task (or is built by hand or from a template)
and tracks which steps are ready to be worked on. Each LoopStep lists the
indexes of the steps it depends on; a step only becomes ACTIVE once all of
them are COMPLETED.
"""
from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from sqlalchemy.ext.orderinglist import ordering_list

from database import db


class LoopStepStatus(StrEnum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    BLOCKED = "BLOCKED"


# Task step vocabulary accepted as aliases on input
LOOP_STATUS_ALIASES = {
    "IN_PROGRESS": LoopStepStatus.ACTIVE,
    "DONE": LoopStepStatus.COMPLETED,
}


def normalize_loop_status(value: str | None) -> LoopStepStatus:
    """Return the canonical loop status for ``value`` or raise ValueError."""

    text = (value or "").strip().upper()
    if text in LOOP_STATUS_ALIASES:
        return LOOP_STATUS_ALIASES[text]
    try:
        return LoopStepStatus(text)
    except ValueError:
        raise ValueError(f"Unknown step status '{value}'.") from None


class TaskLoop(db.Model):
    __tablename__ = "task_loops"

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(db.Integer, db.ForeignKey("task.id"), nullable=False, unique=True)
    current_step = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    parallel = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(
        db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    task = db.relationship("Task", back_populates="loop")
    sequence = db.relationship(
        "LoopStep",
        back_populates="loop",
        order_by="LoopStep.position",
        collection_class=ordering_list("position"),
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "task_id": self.task_id,
            "current_step": self.current_step,
            "is_active": self.is_active,
            "parallel": self.parallel,
            "sequence": [step.to_dict() for step in self.sequence],
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class LoopStep(db.Model):
    __tablename__ = "loop_steps"

    id = db.Column(db.Integer, primary_key=True)
    loop_id = db.Column(db.Integer, db.ForeignKey("task_loops.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)
    assigned_to = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    description = db.Column(db.Text, nullable=False)
    status = db.Column(db.String(20), nullable=False, default=LoopStepStatus.PENDING.value)
    estimated_time = db.Column(db.Integer, nullable=True)
    actual_time = db.Column(db.Integer, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)
    comments = db.Column(db.Text, nullable=True)
    dependencies = db.Column(db.JSON, nullable=False, default=list)

    loop = db.relationship("TaskLoop", back_populates="sequence")
    assignee = db.relationship("User")

    @property
    def status_enum(self) -> LoopStepStatus:
        return LoopStepStatus(self.status)

    @status_enum.setter
    def status_enum(self, value: LoopStepStatus) -> None:
        self.status = value.value

    def to_dict(self) -> dict[str, object]:
        return {
            "index": self.position,
            "assigned_to": self.assigned_to,
            "description": self.description,
            "status": self.status,
            "estimated_time": self.estimated_time,
            "actual_time": self.actual_time,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "comments": self.comments,
            "dependencies": list(self.dependencies or []),
        }
