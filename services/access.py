"""Helpers for evaluating task access rules."""

from __future__ import annotations

from sqlalchemy import and_, or_

from models.task import Task, TaskVisibility
from models.task_loop import LoopStep, TaskLoop
from models.user import User


def _same_organization(user: User | None, task: Task | None) -> bool:
    if user is None or task is None:
        return False
    return user.organization_id == task.organization_id


def can_read_task(user: User | None, task: Task | None) -> bool:
    """Return True when the user may see the task."""

    if not _same_organization(user, task):
        return False
    if user.id in (task.created_by, task.owner_id):
        return True
    if user.id in task.helper_ids or user.id in task.mention_ids:
        return True
    if user.id in task.participant_ids:
        return True
    if task.loop is not None and any(step.assigned_to == user.id for step in task.loop.sequence):
        return True
    return (
        task.visibility == TaskVisibility.TEAM
        and task.team_id is not None
        and task.team_id == user.team_id
    )


def can_write_task(user: User | None, task: Task | None) -> bool:
    """Return True when the user may modify the task (creator or owner)."""

    if not _same_organization(user, task):
        return False
    return user.id in (task.created_by, task.owner_id)


def accessible_tasks_filter(user: User):
    """SQL criterion matching every task the user is allowed to read."""

    clauses = [
        Task.participants.any(User.id == user.id),
        Task.loop.has(TaskLoop.sequence.any(LoopStep.assigned_to == user.id)),
    ]
    if user.team_id is not None:
        clauses.append(
            and_(
                Task.visibility == TaskVisibility.TEAM.value,
                Task.team_id == user.team_id,
            )
        )
    return and_(Task.organization_id == user.organization_id, or_(*clauses))


def get_readable_task(task_id: int, user: User) -> Task:
    """Return the task or raise LookupError when it is missing or hidden."""

    task = Task.query.get(task_id)
    if task is None or not can_read_task(user, task):
        raise LookupError("Task not found.")
    return task


def get_writable_task(task_id: int, user: User) -> Task:
    """Return the task or raise LookupError/PermissionError."""

    task = Task.query.get(task_id)
    if task is None or task.organization_id != user.organization_id:
        raise LookupError("Task not found.")
    if not can_write_task(user, task):
        raise PermissionError("You do not have permission to modify this task.")
    return task
