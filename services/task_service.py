"""Task lifecycle: creation, updates, transitions and serialization."""

from __future__ import annotations

import json
import os
import uuid
from enum import StrEnum
from typing import Iterable, Sequence

from flask import current_app
from sqlalchemy import or_
from werkzeug.utils import secure_filename

from database import db
from models.activity_log import ActivityLog, ActivityType
from models.attachment import Attachment
from models.organization import Team
from models.project import Project
from models.tag import TaskTag
from models.task import StepStatus, Task, TaskPriority, TaskStatus, TaskStep, TaskVisibility
from models.user import User
from services import notification_service, realtime
from services.access import accessible_tasks_filter, can_write_task
from services.loop_service import sync_loop_from_task

ACTIVITY_PAGE_SIZE = 20


class TransitionAction(StrEnum):
    START = "START"
    SEND_FOR_REVIEW = "SEND_FOR_REVIEW"
    REQUEST_CHANGES = "REQUEST_CHANGES"
    DONE = "DONE"


# action -> (allowed source statuses, target status) for tasks without steps
TRANSITIONS = {
    TransitionAction.START: ({TaskStatus.OPEN}, TaskStatus.IN_PROGRESS),
    TransitionAction.SEND_FOR_REVIEW: (
        {TaskStatus.IN_PROGRESS, TaskStatus.REVISIONS},
        TaskStatus.IN_REVIEW,
    ),
    TransitionAction.REQUEST_CHANGES: ({TaskStatus.IN_REVIEW}, TaskStatus.REVISIONS),
    TransitionAction.DONE: ({TaskStatus.IN_REVIEW, TaskStatus.REVISIONS}, TaskStatus.DONE),
}

TRANSITION_ERRORS = {
    TransitionAction.START: "Task is not OPEN",
    TransitionAction.SEND_FOR_REVIEW: "Task not ready for review",
    TransitionAction.REQUEST_CHANGES: "Task not in review",
    TransitionAction.DONE: "Task cannot be completed",
}


def _step_value(step, name: str):
    if isinstance(step, dict):
        return step.get(name)
    return getattr(step, name, None)


def derive_task_status_from_steps(steps: Sequence) -> TaskStatus:
    if not steps:
        return TaskStatus.OPEN
    statuses = [_step_value(step, "status") or StepStatus.OPEN for step in steps]
    if all(status == StepStatus.DONE for status in statuses):
        return TaskStatus.DONE
    if any(status != StepStatus.OPEN for status in statuses):
        return TaskStatus.IN_PROGRESS
    return TaskStatus.OPEN


def resolve_current_step_index(steps: Sequence) -> int:
    """Index of the first unfinished step, else the last one (0 when empty)."""

    if not steps:
        return 0
    for index, step in enumerate(steps):
        if (_step_value(step, "status") or StepStatus.OPEN) != StepStatus.DONE:
            return index
    return len(steps) - 1


def assert_sequential_step_due_dates(steps: Sequence) -> None:
    """Raise ValueError when a dated step is due before the previous dated one."""

    previous_label = None
    previous_due = None
    for index, step in enumerate(steps):
        due = _step_value(step, "due_at")
        if due is None:
            continue
        title = (_step_value(step, "title") or "").strip()
        label = title or f"#{index + 1}"
        if previous_due is not None and due < previous_due:
            raise ValueError(
                f'Step "{label}" due date must not be before step "{previous_label}" due date'
            )
        previous_due = due
        previous_label = label


def _organization_members(organization_id: int, user_ids: Iterable[int]) -> dict[int, User]:
    ids = {user_id for user_id in user_ids if user_id is not None}
    if not ids:
        return {}
    members = User.query.filter(User.id.in_(ids), User.organization_id == organization_id).all()
    return {member.id: member for member in members}


def _require_members(organization_id: int, user_ids: Iterable[int], message: str) -> dict[int, User]:
    ids = [user_id for user_id in user_ids if user_id is not None]
    members = _organization_members(organization_id, ids)
    if any(user_id not in members for user_id in ids):
        raise ValueError(message)
    return members


def _validate_team(organization_id: int, team_id: int | None) -> None:
    if team_id is None:
        return
    team = Team.query.get(team_id)
    if team is None or team.organization_id != organization_id:
        raise ValueError("Team must belong to your organization")


def _validate_project(organization_id: int, project_id: int | None) -> None:
    if project_id is None:
        return
    project = Project.query.get(project_id)
    if project is None or project.organization_id != organization_id:
        raise ValueError("Project must belong to your organization")


def refresh_participants(task: Task) -> None:
    """Recompute the denormalized participant set of the task."""

    ids = [task.created_by, task.owner_id]
    ids.extend(task.helper_ids)
    ids.extend(task.mention_ids)
    ids.extend(step.owner_id for step in task.steps)
    unique = list(dict.fromkeys(user_id for user_id in ids if user_id is not None))
    users = {user.id: user for user in User.query.filter(User.id.in_(unique)).all()} if unique else {}
    task.participants = [users[user_id] for user_id in unique if user_id in users]


def _set_tags(task: Task, tags: Iterable[str]) -> None:
    names = []
    for tag in tags:
        name = str(tag or "").strip()
        if name and name not in names:
            names.append(name)
    existing = {link.name: link for link in task.tag_links}
    task.tag_links = [existing.get(name) or TaskTag(name=name) for name in names]


def _build_steps(steps: Sequence[dict]) -> list[TaskStep]:
    return [
        TaskStep(
            title=step["title"],
            owner_id=step["owner_id"],
            description=step.get("description"),
            due_at=step.get("due_at"),
            status=str(step.get("status") or StepStatus.OPEN.value),
            completed_at=step.get("completed_at"),
        )
        for step in steps
    ]


def log_activity(task: Task, actor: User, activity_type: ActivityType, payload: dict | None = None) -> ActivityLog:
    entry = ActivityLog(
        task_id=task.id,
        actor_id=actor.id,
        activity_type=activity_type.value,
        payload=payload or {},
    )
    db.session.add(entry)
    return entry


def create_task(actor: User, data: dict) -> Task:
    """Create a task for the actor's organization from validated form data."""

    title = (data.get("title") or "").strip()
    if not title:
        raise ValueError("Title is required")
    steps = list(data.get("steps") or [])
    if any(not (step.get("title") or "").strip() for step in steps):
        raise ValueError("Step title is required")
    assert_sequential_step_due_dates(steps)

    organization_id = actor.organization_id
    owner_id = data.get("owner_id") or actor.id
    status = TaskStatus.OPEN
    current_step_index = 0
    if steps:
        owner_id = steps[0]["owner_id"]
        status = TaskStatus.FLOW_IN_PROGRESS

    _require_members(organization_id, [owner_id], "Owner must be in your organization")
    helpers = _require_members(
        organization_id, data.get("helpers") or [], "Helpers must be in your organization"
    )
    mentions = _organization_members(organization_id, data.get("mentions") or [])
    _require_members(
        organization_id,
        [step["owner_id"] for step in steps],
        "Step owners must be in your organization",
    )
    _validate_team(organization_id, data.get("team_id"))
    _validate_project(organization_id, data.get("project_id"))

    task = Task(
        title=title,
        description=data.get("description"),
        created_by=actor.id,
        owner_id=owner_id,
        organization_id=organization_id,
        project_id=data.get("project_id"),
        team_id=data.get("team_id"),
        status=status.value,
        priority=(data.get("priority") or TaskPriority.MEDIUM).upper(),
        visibility=(data.get("visibility") or TaskVisibility.PRIVATE).upper(),
        due_date=data.get("due_date"),
        current_step_index=current_step_index,
        custom=data.get("custom") or None,
    )
    task.helpers = list(helpers.values())
    task.mentions = list(mentions.values())
    task.steps = _build_steps(steps)
    _set_tags(task, data.get("tags") or [])
    db.session.add(task)
    db.session.flush()
    refresh_participants(task)
    log_activity(task, actor, ActivityType.CREATED)
    sync_loop_from_task(task)
    db.session.flush()

    assignment_ids = [task.owner_id, *task.helper_ids]
    notification_service.notify_assignment(
        [user_id for user_id in assignment_ids if user_id != actor.id], task
    )
    notification_service.notify_mention(
        [user_id for user_id in task.mention_ids if user_id != actor.id], task
    )
    return task


def list_tasks(user: User, filters: dict) -> list[Task]:
    """Return tasks readable by ``user`` matching ``filters``, newest update first."""

    query = Task.query.filter(accessible_tasks_filter(user))
    if filters.get("owner_id"):
        query = query.filter(Task.owner_id == filters["owner_id"])
    if filters.get("created_by"):
        query = query.filter(Task.created_by == filters["created_by"])
    if filters.get("status"):
        query = query.filter(Task.status.in_(filters["status"]))
    if filters.get("due_from"):
        query = query.filter(Task.due_date >= filters["due_from"])
    if filters.get("due_to"):
        query = query.filter(Task.due_date <= filters["due_to"])
    if filters.get("tag"):
        query = query.filter(Task.tag_links.any(TaskTag.name.in_(filters["tag"])))
    if filters.get("visibility"):
        query = query.filter(Task.visibility == filters["visibility"])
    if filters.get("team_id"):
        query = query.filter(Task.team_id == filters["team_id"])
    if filters.get("q"):
        pattern = f"%{filters['q']}%"
        query = query.filter(or_(Task.title.ilike(pattern), Task.description.ilike(pattern)))
    return query.order_by(Task.updated_at.desc(), Task.id.desc()).all()


def _snapshot(task: Task) -> dict[str, object]:
    return {
        "title": task.title,
        "description": task.description,
        "owner_id": task.owner_id,
        "helpers": task.helper_ids,
        "mentions": task.mention_ids,
        "team_id": task.team_id,
        "project_id": task.project_id,
        "status": task.status,
        "priority": task.priority,
        "visibility": task.visibility,
        "tags": task.tags,
        "due_date": task.due_date.isoformat() if task.due_date else None,
        "steps": [step.to_dict() for step in task.steps],
        "current_step_index": task.current_step_index,
        "custom": task.custom or {},
    }


def diff(previous: dict, current: dict) -> dict[str, object]:
    """Return the keys whose values differ, with their new value."""

    changes: dict[str, object] = {}
    for key in set(previous) | set(current):
        before = previous.get(key)
        after = current.get(key)
        if json.dumps(before, sort_keys=True, default=str) != json.dumps(after, sort_keys=True, default=str):
            changes[key] = after
    return changes


def update_task(task: Task, actor: User, data: dict) -> Task:
    """Apply a partial update; only keys present in ``data`` are changed."""

    if not can_write_task(actor, task):
        raise PermissionError("You do not have permission to modify this task.")
    organization_id = task.organization_id
    before = _snapshot(task)

    if "title" in data:
        title = (data.get("title") or "").strip()
        if not title:
            raise ValueError("Title is required")
        task.title = title
    if "description" in data:
        task.description = data["description"]
    if "owner_id" in data and data["owner_id"] is not None:
        _require_members(organization_id, [data["owner_id"]], "Owner must be in your organization")
        task.owner_id = data["owner_id"]
    if "helpers" in data:
        helpers = _require_members(
            organization_id, data["helpers"] or [], "Helpers must be in your organization"
        )
        task.helpers = list(helpers.values())
    if "mentions" in data:
        task.mentions = list(_organization_members(organization_id, data["mentions"] or []).values())
    if "team_id" in data:
        _validate_team(organization_id, data["team_id"])
        task.team_id = data["team_id"]
    if "project_id" in data:
        _validate_project(organization_id, data["project_id"])
        task.project_id = data["project_id"]
    if data.get("priority"):
        task.priority = data["priority"].upper()
    if data.get("visibility"):
        task.visibility = data["visibility"].upper()
    if "due_date" in data:
        task.due_date = data["due_date"]
    if "tags" in data:
        _set_tags(task, data["tags"] or [])
    if "custom" in data:
        task.custom = data["custom"] or None
    if data.get("status") and not task.steps and "steps" not in data:
        task.status = data["status"]

    if "steps" in data:
        steps = list(data["steps"] or [])
        if any(not (step.get("title") or "").strip() for step in steps):
            raise ValueError("Step title is required")
        assert_sequential_step_due_dates(steps)
        _require_members(
            organization_id,
            [step["owner_id"] for step in steps],
            "Step owners must be in your organization",
        )
        task.steps = _build_steps(steps)
        index = data.get("current_step_index")
        if not isinstance(index, int) or not 0 <= index < len(steps):
            index = resolve_current_step_index(steps)
        task.current_step_index = index
        if not steps:
            task.status = derive_task_status_from_steps(steps).value

    if task.steps:
        if task.status != TaskStatus.DONE:
            task.status = TaskStatus.FLOW_IN_PROGRESS.value
        current = task.current_step
        if current is not None:
            task.owner_id = current.owner_id

    db.session.flush()
    refresh_participants(task)
    changes = diff(before, _snapshot(task))
    log_activity(task, actor, ActivityType.UPDATED, {"changes": changes})
    if "steps" in changes or "current_step_index" in changes or "owner_id" in changes:
        sync_loop_from_task(task)
    db.session.flush()
    return task


def delete_task(task: Task, actor: User) -> list[str]:
    """Delete ``task``; return the stored attachment names to remove once committed."""

    if not can_write_task(actor, task):
        raise PermissionError("You do not have permission to delete this task.")
    stored_names = [attachment.stored_name for attachment in task.attachments]
    db.session.delete(task)
    db.session.flush()
    return stored_names


def _other_participants(task: Task, actor: User) -> list[int]:
    return [user_id for user_id in task.participant_ids if user_id != actor.id]


def transition_task(task: Task, actor: User, action: str) -> Task:
    """Advance a task by ``action``.

    Raises PermissionError when the actor is neither creator nor owner and
    ValueError when the action does not apply to the task's current state.
    """

    try:
        action = TransitionAction(str(action or "").upper())
    except ValueError:
        raise ValueError("Unknown transition action") from None
    is_creator = task.created_by == actor.id
    is_owner = task.owner_id == actor.id
    if not is_creator and not is_owner:
        raise PermissionError("You cannot transition this task")

    if task.steps:
        if action != TransitionAction.DONE:
            raise ValueError("Only DONE is allowed for step tasks")
        if not is_owner:
            raise PermissionError("Only current step owner may complete the step")
        step = task.current_step
        if step is None or step.is_done:
            raise ValueError("The current step is already complete")
        step.complete()
        next_index = resolve_current_step_index(task.steps)
        next_step = task.steps[next_index]
        if not next_step.is_done:
            task.current_step_index = next_index
            task.owner_id = next_step.owner_id
            task.status = TaskStatus.FLOW_IN_PROGRESS.value
        else:
            task.status = TaskStatus.DONE.value
        db.session.flush()
        refresh_participants(task)
        log_activity(task, actor, ActivityType.TRANSITIONED, {"action": action.value})
        sync_loop_from_task(task)
        db.session.flush()
        if task.status == TaskStatus.DONE:
            notification_service.notify_task_closed(_other_participants(task, actor), task)
        elif task.owner_id != actor.id:
            notification_service.notify_assignment([task.owner_id], task, next_step.title)
            notification_service.notify_loop_step_ready([task.owner_id], task, next_step.title)
    else:
        allowed, target = TRANSITIONS[action]
        if task.status_enum not in allowed:
            raise ValueError(TRANSITION_ERRORS[action])
        task.status = target.value
        log_activity(task, actor, ActivityType.TRANSITIONED, {"action": action.value})
        db.session.flush()
        recipients = _other_participants(task, actor)
        if target == TaskStatus.DONE:
            notification_service.notify_task_closed(recipients, task)
        else:
            notification_service.notify_status_change(recipients, task)

    realtime.emit_task_transitioned(task, serialize_task(task))
    return task


def activity_page(task: Task, *, page: int = 1, limit: int = ACTIVITY_PAGE_SIZE) -> dict[str, object]:
    page = max(page, 1)
    limit = max(1, min(limit, 100))
    query = ActivityLog.query.filter_by(task_id=task.id)
    total = query.count()
    entries = (
        query.order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {"page": page, "limit": limit, "total": total, "history": [e.to_dict() for e in entries]}


def serialize_task(task: Task) -> dict[str, object]:
    """Serialize a task for API responses and realtime payloads."""

    return {
        "id": task.id,
        "title": task.title,
        "description": task.description or "",
        "description_html": str(task.description_html),
        "created_by": task.created_by,
        "owner_id": task.owner_id,
        "helpers": task.helper_ids,
        "mentions": task.mention_ids,
        "participant_ids": task.participant_ids,
        "organization_id": task.organization_id,
        "team_id": task.team_id,
        "project": {"id": task.project.id, "name": task.project.name} if task.project else None,
        "status": task.status,
        "priority": task.priority,
        "visibility": task.visibility,
        "tags": task.tags,
        "due_date": task.due_date.isoformat() if task.due_date else None,
        "steps": [step.to_dict() for step in task.steps],
        "current_step_index": task.current_step_index,
        "custom": task.custom or {},
        "created_at": task.created_at.isoformat() if task.created_at else None,
        "updated_at": task.updated_at.isoformat() if task.updated_at else None,
    }


def _upload_folder() -> str:
    folder = current_app.config["UPLOAD_FOLDER"]
    os.makedirs(folder, exist_ok=True)
    return folder


def save_attachment(task: Task, user: User, upload) -> Attachment:
    """Store an uploaded file under the upload folder and record it."""

    filename = secure_filename(upload.filename or "")
    if not filename:
        raise ValueError("A file is required")
    stored_name = f"{uuid.uuid4().hex}_{filename}"
    upload.save(os.path.join(_upload_folder(), stored_name))
    attachment = Attachment(
        task_id=task.id,
        user_id=user.id,
        filename=filename,
        stored_name=stored_name,
        url=f"/uploads/{stored_name}",
    )
    db.session.add(attachment)
    db.session.flush()
    return attachment


def remove_stored_files(stored_names: list[str]) -> None:
    """Unlink uploaded files; call only after the rows are committed away."""

    for stored_name in stored_names:
        path = os.path.join(current_app.config["UPLOAD_FOLDER"], stored_name)
        try:
            os.remove(path)
        except FileNotFoundError:
            current_app.logger.info("Attachment file %s already removed", path)


def delete_attachment(task: Task, attachment_id: int) -> list[str]:
    attachment = Attachment.query.get(attachment_id)
    if attachment is None or attachment.task_id != task.id:
        raise LookupError("Attachment not found.")
    stored_names = [attachment.stored_name]
    db.session.delete(attachment)
    db.session.flush()
    return stored_names
