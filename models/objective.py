"""Daily team objectives."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from database import db


class ObjectiveStatus(StrEnum):
    OPEN = "OPEN"
    DONE = "DONE"


class Objective(db.Model):
    __tablename__ = "objectives"

    id = db.Column(db.Integer, primary_key=True)
    date = db.Column(db.String(10), nullable=False, index=True)  # YYYY-MM-DD in team time
    team_id = db.Column(db.Integer, db.ForeignKey("teams.id"), nullable=False, index=True)
    title = db.Column(db.String(255), nullable=False)
    owner_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    linked_task_ids = db.Column(db.JSON, nullable=False, default=list)
    status = db.Column(db.String(10), nullable=False, default=ObjectiveStatus.OPEN.value)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(
        db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    @property
    def status_enum(self) -> ObjectiveStatus:
        return ObjectiveStatus(self.status)

    @status_enum.setter
    def status_enum(self, value: ObjectiveStatus) -> None:
        self.status = value.value

    def toggle(self) -> None:
        if self.status_enum == ObjectiveStatus.DONE:
            self.status_enum = ObjectiveStatus.OPEN
        else:
            self.status_enum = ObjectiveStatus.DONE

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "date": self.date,
            "team_id": self.team_id,
            "title": self.title,
            "owner_id": self.owner_id,
            "linked_task_ids": list(self.linked_task_ids or []),
            "status": self.status,
        }
