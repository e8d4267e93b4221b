"""A task represent a piece of work owned by one user at a time

A Task belongs to an Organization and optionally to a Team and a Project
A User can create Tasks and assign them to any member of its organization
A Task can be split into ordered Steps, each with its own owner
While a Task has Steps, its owner is the owner of the current Step
A Task with Steps is completed by completing its Steps one after the other
A Task without Steps moves through OPEN, IN_PROGRESS, IN_REVIEW, REVISIONS and DONE
A PRIVATE Task is visible to its participants only, a TEAM Task to its whole team

"""
from __future__ import annotations
from datetime import datetime
from enum import StrEnum
from typing import Optional

import bleach
from database import db
from markdown import markdown as render_markdown
from markupsafe import Markup
from sqlalchemy.ext.orderinglist import ordering_list

from .task_association import task_helpers, task_mentions, task_participants


class TaskStatus(StrEnum):
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    IN_REVIEW = "IN_REVIEW"
    REVISIONS = "REVISIONS"
    FLOW_IN_PROGRESS = "FLOW_IN_PROGRESS"
    DONE = "DONE"


class TaskPriority(StrEnum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class TaskVisibility(StrEnum):
    PRIVATE = "PRIVATE"
    TEAM = "TEAM"


class StepStatus(StrEnum):
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"


def render_markdown_html(text: Optional[str]) -> Markup:
    """Render user supplied Markdown into sanitized HTML."""
    if not text:
        return Markup("")
    html = render_markdown(
        text,
        extensions=["extra", "sane_lists", "codehilite"],
        output_format="html5",
        tab_length=2,
    )
    allowed_tags = list(bleach.sanitizer.ALLOWED_TAGS) + [
        "p",
        "pre",
        "code",
        "ul",
        "ol",
        "li",
        "table",
        "thead",
        "tbody",
        "tr",
        "th",
        "td",
        "div",
        "span",
        "blockquote",
        "br",
        "h1",
        "h2",
        "h3",
        "h4",
        "hr",
    ]
    allowed_attributes = {
        **bleach.sanitizer.ALLOWED_ATTRIBUTES,
        "a": ["href", "title", "rel"],
        "code": ["class"],
    }
    return Markup(bleach.clean(html, tags=allowed_tags, attributes=allowed_attributes))


class TaskStep(db.Model):
    __tablename__ = "task_steps"

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(db.Integer, db.ForeignKey("task.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)
    title = db.Column(db.String(255), nullable=False)
    owner_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    description = db.Column(db.Text, nullable=True)
    due_at = db.Column(db.DateTime, nullable=True)
    status = db.Column(db.String(20), nullable=False, default=StepStatus.OPEN.value)
    completed_at = db.Column(db.DateTime, nullable=True)

    task = db.relationship("Task", back_populates="steps")
    owner = db.relationship("User", lazy="joined")

    @property
    def status_enum(self) -> StepStatus:
        return StepStatus(self.status)

    @status_enum.setter
    def status_enum(self, value: StepStatus) -> None:
        self.status = value.value

    @property
    def is_done(self) -> bool:
        return self.status == StepStatus.DONE

    def complete(self) -> None:
        self.status_enum = StepStatus.DONE
        self.completed_at = datetime.utcnow()

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "index": self.position,
            "title": self.title,
            "owner_id": self.owner_id,
            "description": self.description,
            "due_at": self.due_at.isoformat() if self.due_at else None,
            "status": self.status,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


class Task(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.Text, nullable=False)
    description = db.Column(db.Text, nullable=True)
    created_by = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    owner_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    organization_id = db.Column(
        db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True
    )
    project_id = db.Column(db.Integer, db.ForeignKey("projects.id"), nullable=True, index=True)
    team_id = db.Column(db.Integer, db.ForeignKey("teams.id"), nullable=True, index=True)
    status = db.Column(db.String(30), nullable=False, default=TaskStatus.OPEN.value)
    priority = db.Column(db.String(10), nullable=False, default=TaskPriority.MEDIUM.value)
    visibility = db.Column(db.String(10), nullable=False, default=TaskVisibility.PRIVATE.value)
    due_date = db.Column(db.DateTime, nullable=True)
    current_step_index = db.Column(db.Integer, nullable=False, default=0)
    custom = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(
        db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    creator = db.relationship("User", foreign_keys=[created_by])
    owner = db.relationship("User", foreign_keys=[owner_id])
    project = db.relationship("Project", back_populates="tasks")
    team = db.relationship("Team")
    steps = db.relationship(
        "TaskStep",
        back_populates="task",
        order_by="TaskStep.position",
        collection_class=ordering_list("position"),
        lazy="selectin",
        cascade="all, delete-orphan",
    )
    helpers = db.relationship("User", secondary=task_helpers, lazy="selectin")
    mentions = db.relationship("User", secondary=task_mentions, lazy="selectin")
    participants = db.relationship("User", secondary=task_participants, lazy="selectin")
    tag_links = db.relationship(
        "TaskTag",
        back_populates="task",
        lazy="selectin",
        cascade="all, delete-orphan",
    )
    loop = db.relationship(
        "TaskLoop",
        back_populates="task",
        uselist=False,
        cascade="all, delete-orphan",
    )
    comments = db.relationship(
        "Comment", back_populates="task", lazy="dynamic", cascade="all, delete-orphan"
    )
    attachments = db.relationship(
        "Attachment", back_populates="task", lazy="selectin", cascade="all, delete-orphan"
    )
    activity = db.relationship(
        "ActivityLog", back_populates="task", lazy="dynamic", cascade="all, delete-orphan"
    )
    loop_history = db.relationship(
        "LoopHistory", back_populates="task", lazy="dynamic", cascade="all, delete-orphan"
    )
    notifications = db.relationship(
        "Notification", back_populates="task", lazy="dynamic", cascade="all, delete-orphan"
    )

    @property
    def status_enum(self) -> TaskStatus:
        return TaskStatus(self.status)

    @status_enum.setter
    def status_enum(self, value: TaskStatus) -> None:
        self.status = value.value

    @property
    def tags(self) -> list[str]:
        return [link.name for link in self.tag_links]

    @property
    def helper_ids(self) -> list[int]:
        return [user.id for user in self.helpers]

    @property
    def mention_ids(self) -> list[int]:
        return [user.id for user in self.mentions]

    @property
    def participant_ids(self) -> list[int]:
        return [user.id for user in self.participants]

    @property
    def current_step(self) -> TaskStep | None:
        if not self.steps:
            return None
        index = self.current_step_index or 0
        if 0 <= index < len(self.steps):
            return self.steps[index]
        return None

    @property
    def description_html(self):
        return render_markdown_html(self.description)

    def __repr__(self):
        return f"<Task {self.title}>"
