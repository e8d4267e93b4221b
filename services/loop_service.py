"""Loop stepping: dependency-driven activation of a task's step sequence."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Sequence

from database import db
from models.loop_history import LoopAction, LoopHistory
from models.loop_template import LoopTemplate
from models.task import StepStatus, Task, TaskStatus, TaskStep
from models.task_loop import LoopStep, LoopStepStatus, TaskLoop, normalize_loop_status
from models.user import User
from services import notification_service, realtime
from services.access import can_write_task

MAX_HISTORY_PAGE_SIZE = 100


@dataclass
class StepCompletion:
    completed: bool
    newly_active: list[int] = field(default_factory=list)


def _dependencies_met(loop: TaskLoop, step: LoopStep) -> bool:
    sequence = loop.sequence
    for dependency in step.dependencies or []:
        if not isinstance(dependency, int) or not 0 <= dependency < len(sequence):
            return False
        if sequence[dependency].status != LoopStepStatus.COMPLETED:
            return False
    return True


def _activate(loop: TaskLoop) -> list[int]:
    """Recompute the status of every incomplete step; return new actives."""

    newly_active: list[int] = []
    activated = False
    for index, step in enumerate(loop.sequence):
        if step.status == LoopStepStatus.COMPLETED:
            continue
        if not _dependencies_met(loop, step):
            step.status_enum = LoopStepStatus.BLOCKED
            continue
        if loop.parallel or not activated:
            if step.status != LoopStepStatus.ACTIVE:
                newly_active.append(index)
            step.status_enum = LoopStepStatus.ACTIVE
            activated = activated or not loop.parallel
        else:
            step.status_enum = LoopStepStatus.PENDING

    if newly_active:
        loop.current_step = min(newly_active)
    else:
        loop.current_step = next(
            (i for i, s in enumerate(loop.sequence) if s.status == LoopStepStatus.ACTIVE),
            -1,
        )
    if loop.sequence and all(s.status == LoopStepStatus.COMPLETED for s in loop.sequence):
        loop.is_active = False
    return newly_active


def apply_step_completion(loop: TaskLoop, index: int) -> StepCompletion:
    """Complete step ``index`` and advance the loop.

    Out of range indexes and already completed steps leave the loop untouched.
    """

    if index < 0 or index >= len(loop.sequence):
        return StepCompletion(completed=False)
    step = loop.sequence[index]
    if step.status == LoopStepStatus.COMPLETED:
        return StepCompletion(completed=False)
    step.status_enum = LoopStepStatus.COMPLETED
    step.completed_at = datetime.utcnow()
    return StepCompletion(completed=True, newly_active=_activate(loop))


def recompute_loop_state(loop: TaskLoop) -> list[int]:
    """Run the activation pass without completing anything."""

    return _activate(loop)


def _step_description(step: TaskStep, index: int) -> str:
    for candidate in (step.description, step.title):
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
    return f"Step {index + 1}"


def prepare_loop_from_steps(
    steps: Sequence[TaskStep],
    current_index: int | None = None,
    task_status: str | None = None,
) -> TaskLoop | None:
    """Build an unsaved loop mirroring the steps of a task."""

    if not steps:
        return None
    fallback = next((i for i, s in enumerate(steps) if s.status != StepStatus.DONE), -1)
    if isinstance(current_index, int) and 0 <= current_index < len(steps):
        active_index = current_index
    else:
        active_index = fallback

    sequence = []
    for index, step in enumerate(steps):
        if step.status == StepStatus.DONE or active_index == -1 or index < active_index:
            status = LoopStepStatus.COMPLETED
        elif index == active_index:
            status = LoopStepStatus.ACTIVE
        else:
            status = LoopStepStatus.BLOCKED
        sequence.append(
            LoopStep(
                assigned_to=step.owner_id,
                description=_step_description(step, index),
                status=status.value,
                dependencies=[] if index == 0 else [index - 1],
                completed_at=step.completed_at if step.status == StepStatus.DONE else None,
            )
        )

    has_incomplete = any(s.status != LoopStepStatus.COMPLETED for s in sequence)
    if has_incomplete:
        current_step = active_index if active_index >= 0 else next(
            i for i, s in enumerate(sequence) if s.status != LoopStepStatus.COMPLETED
        )
    else:
        current_step = -1
    loop = TaskLoop(
        current_step=current_step,
        is_active=has_incomplete and task_status != TaskStatus.DONE,
        parallel=False,
    )
    loop.sequence.extend(sequence)
    return loop


def sync_loop_from_task(task: Task) -> TaskLoop | None:
    """Replace the loop of a task with one rebuilt from its steps."""

    prepared = prepare_loop_from_steps(task.steps, task.current_step_index, task.status)
    if task.loop is not None:
        db.session.delete(task.loop)
        db.session.flush()
        task.loop = None
    if prepared is None:
        return None
    task.loop = prepared
    db.session.add(prepared)
    db.session.flush()
    return prepared


def get_loop(task: Task) -> TaskLoop:
    loop = TaskLoop.query.filter_by(task_id=task.id).one_or_none()
    if loop is None:
        raise LookupError("Loop not found.")
    return loop


def _record(task: Task, step_index: int, action: LoopAction, user: User | None) -> None:
    db.session.add(
        LoopHistory(
            task_id=task.id,
            step_index=step_index,
            action=action.value,
            user_id=user.id if user else None,
        )
    )


def _assignee_error(user: User | None, task: Task) -> str | None:
    if user is None:
        return "Assignee not found"
    if user.organization_id != task.organization_id:
        return "Assignee outside organization"
    if task.team_id is not None and user.team_id != task.team_id:
        return "Assignee not in task team"
    return None


def _format_errors(errors: list[tuple[int, str]]) -> str:
    return "; ".join(f"Step {index}: {message}" for index, message in errors)


def _parse_user_id(value) -> int | None:
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def validate_loop_steps(task: Task, steps: Sequence[dict]) -> list[dict]:
    """Validate raw loop step payloads; raise ValueError listing every problem."""

    if not isinstance(steps, (list, tuple)):
        raise ValueError("sequence must be a list.")
    errors: list[tuple[int, str]] = []
    cleaned: list[dict] = []
    user_ids: dict[int, int] = {}
    for index, raw in enumerate(steps):
        if not isinstance(raw, dict):
            errors.append((index, "Invalid step"))
            continue
        user_id = _parse_user_id(raw.get("assigned_to"))
        if user_id is None:
            errors.append((index, "Invalid user ID"))
        else:
            user_ids[index] = user_id
        description = str(raw.get("description") or "").strip()
        if not description:
            errors.append((index, "Description is required"))
        dependencies = raw.get("dependencies") or []
        if not isinstance(dependencies, list) or any(
            isinstance(d, bool) or not isinstance(d, int) or not 0 <= d < len(steps) or d == index
            for d in dependencies
        ):
            errors.append((index, "Invalid dependencies"))
            dependencies = []
        estimated = raw.get("estimated_time")
        if estimated is not None and (isinstance(estimated, bool) or not isinstance(estimated, (int, float))):
            errors.append((index, "Invalid estimated time"))
            estimated = None
        cleaned.append(
            {
                "assigned_to": user_id,
                "description": description,
                "estimated_time": int(estimated) if estimated is not None else None,
                "dependencies": sorted(set(dependencies)),
            }
        )

    if user_ids:
        users = {u.id: u for u in User.query.filter(User.id.in_(set(user_ids.values()))).all()}
        for index, user_id in user_ids.items():
            message = _assignee_error(users.get(user_id), task)
            if message:
                errors.append((index, message))

    if errors:
        raise ValueError(_format_errors(sorted(errors)))
    return cleaned


def _notify_active(task: Task, loop: TaskLoop, indexes: Iterable[int]) -> None:
    for index in indexes:
        step = loop.sequence[index]
        notification_service.notify_assignment([step.assigned_to], task, step.description)
        notification_service.notify_loop_step_ready([step.assigned_to], task, step.description)


def create_loop(task: Task, steps: Sequence[dict], actor: User, *, parallel: bool = False) -> TaskLoop:
    """Create (or replace) the loop of a task from validated step payloads."""

    cleaned = validate_loop_steps(task, steps)
    if task.loop is not None:
        db.session.delete(task.loop)
        db.session.flush()
    loop = TaskLoop(task_id=task.id, parallel=parallel, is_active=True, current_step=-1)
    loop.sequence.extend(
        LoopStep(
            assigned_to=item["assigned_to"],
            description=item["description"],
            estimated_time=item["estimated_time"],
            dependencies=item["dependencies"],
            status=LoopStepStatus.PENDING.value,
        )
        for item in cleaned
    )
    task.loop = loop
    db.session.add(loop)
    newly_active = recompute_loop_state(loop)
    db.session.flush()
    for index in range(len(loop.sequence)):
        _record(task, index, LoopAction.CREATE, actor)
    _notify_active(task, loop, newly_active)
    realtime.emit_loop_updated(task.id, loop.to_dict())
    return loop


def create_loop_from_template(task: Task, template: LoopTemplate, actor: User) -> TaskLoop:
    if template.organization_id != task.organization_id:
        raise LookupError("Template not found.")
    return create_loop(task, list(template.steps or []), actor)


def complete_step(task: Task, index: int, actor: User | None) -> StepCompletion:
    """Complete a loop step, record it and notify the newly active assignees."""

    loop = get_loop(task)
    result = apply_step_completion(loop, index)
    if not result.completed:
        return result
    _record(task, index, LoopAction.COMPLETE, actor)
    db.session.flush()
    _notify_active(task, loop, result.newly_active)
    realtime.emit_loop_updated(task.id, loop.to_dict())
    return result


def can_complete_step(user: User, task: Task, index: int) -> bool:
    if can_write_task(user, task):
        return True
    loop = task.loop
    if loop is None or not 0 <= index < len(loop.sequence):
        return False
    return loop.sequence[index].assigned_to == user.id


def update_loop(task: Task, entries: Sequence[dict], actor: User) -> TaskLoop:
    """Reorder, reassign, relabel or change the status of loop steps.

    ``entries`` must list every current step exactly once by ``index``; the
    new sequence follows the order of the entries.
    """

    loop = get_loop(task)
    if not isinstance(entries, (list, tuple)):
        raise ValueError("sequence must be a list.")
    size = len(loop.sequence)
    if len(entries) != size:
        raise ValueError("Sequence length mismatch")

    errors: list[tuple[int, str]] = []
    seen: set[int] = set()
    parsed: list[dict] = []
    assignees: dict[int, int] = {}
    for position, entry in enumerate(entries):
        if not isinstance(entry, dict):
            errors.append((position, "Invalid step"))
            continue
        index = entry.get("index")
        if isinstance(index, bool) or not isinstance(index, int):
            errors.append((position, "Invalid index"))
            continue
        if index in seen:
            errors.append((position, "Duplicate index"))
            continue
        if not 0 <= index < size:
            errors.append((position, "Invalid index"))
            continue
        seen.add(index)
        item = {"index": index}
        if entry.get("assigned_to") is not None:
            user_id = _parse_user_id(entry.get("assigned_to"))
            if user_id is None:
                errors.append((position, "Invalid user ID"))
            else:
                assignees[position] = user_id
                item["assigned_to"] = user_id
        if entry.get("description") is not None:
            item["description"] = str(entry["description"]).strip() or None
        if entry.get("status") is not None:
            try:
                item["status"] = normalize_loop_status(entry["status"])
            except ValueError:
                errors.append((position, "Invalid status"))
        parsed.append(item)

    if assignees and not errors:
        users = {u.id: u for u in User.query.filter(User.id.in_(set(assignees.values()))).all()}
        for position, user_id in assignees.items():
            message = _assignee_error(users.get(user_id), task)
            if message:
                errors.append((position, message))
    if errors:
        raise ValueError(_format_errors(sorted(errors)))

    current = list(loop.sequence)
    remap = {item["index"]: position for position, item in enumerate(parsed)}
    reordered = [current[item["index"]] for item in parsed]
    for position, step in enumerate(reordered):
        step.position = position
    loop.sequence.sort(key=lambda step: step.position)
    for step in reordered:
        step.dependencies = sorted(remap[d] for d in (step.dependencies or []) if d in remap)

    reassigned: list[tuple[int, int | None]] = []
    to_complete: list[int] = []
    for position, item in enumerate(parsed):
        step = loop.sequence[position]
        action = None
        new_assignee = item.get("assigned_to")
        if new_assignee is not None and new_assignee != step.assigned_to:
            reassigned.append((position, step.assigned_to))
            step.assigned_to = new_assignee
            if step.status != LoopStepStatus.COMPLETED:
                step.status_enum = LoopStepStatus.PENDING
            action = LoopAction.REASSIGN
        if item.get("description") and item["description"] != step.description:
            step.description = item["description"]
            action = action or LoopAction.UPDATE
        status = item.get("status")
        if status is not None and status != step.status:
            if status == LoopStepStatus.COMPLETED:
                to_complete.append(position)
            else:
                step.status_enum = status
                if step.completed_at is not None:
                    step.completed_at = None
                action = action or LoopAction.UPDATE
        if action is not None:
            _record(task, position, action, actor)

    newly_active = set(recompute_loop_state(loop))
    for position in to_complete:
        result = apply_step_completion(loop, position)
        if result.completed:
            _record(task, position, LoopAction.COMPLETE, actor)
            newly_active.update(result.newly_active)
    if loop.sequence and any(s.status != LoopStepStatus.COMPLETED for s in loop.sequence):
        loop.is_active = task.status != TaskStatus.DONE
    db.session.flush()

    for position, previous in reassigned:
        step = loop.sequence[position]
        notification_service.notify_assignment([step.assigned_to, previous], task, step.description)
        if step.status == LoopStepStatus.ACTIVE:
            notification_service.notify_loop_step_ready([step.assigned_to], task, step.description)
            newly_active.discard(position)
    _notify_active(task, loop, sorted(newly_active))
    realtime.emit_loop_updated(task.id, loop.to_dict())
    return loop


def delete_loop(task: Task) -> None:
    loop = get_loop(task)
    db.session.delete(loop)
    task.loop = None
    db.session.flush()
    realtime.emit_loop_updated(task.id, None)


def loop_history_page(task: Task, *, page: int = 1, limit: int = 20) -> dict[str, object]:
    page = max(page, 1)
    limit = max(1, min(limit, MAX_HISTORY_PAGE_SIZE))
    query = LoopHistory.query.filter_by(task_id=task.id)
    total = query.count()
    entries = (
        query.order_by(LoopHistory.created_at.desc(), LoopHistory.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "history": [entry.to_dict() for entry in entries],
    }


def _clean_template_steps(steps) -> list[dict]:
    if not isinstance(steps, (list, tuple)) or not steps:
        raise ValueError("steps must be a non-empty list.")
    cleaned = []
    errors: list[tuple[int, str]] = []
    for index, raw in enumerate(steps):
        if not isinstance(raw, dict):
            errors.append((index, "Invalid step"))
            continue
        user_id = _parse_user_id(raw.get("assigned_to"))
        description = str(raw.get("description") or "").strip()
        dependencies = raw.get("dependencies") or []
        if user_id is None:
            errors.append((index, "Invalid user ID"))
        if not description:
            errors.append((index, "Description is required"))
        if not isinstance(dependencies, list) or any(
            isinstance(d, bool) or not isinstance(d, int) for d in dependencies
        ):
            errors.append((index, "Invalid dependencies"))
            dependencies = []
        cleaned.append(
            {
                "assigned_to": user_id,
                "description": description,
                "estimated_time": raw.get("estimated_time"),
                "dependencies": dependencies,
            }
        )
    if errors:
        raise ValueError(_format_errors(errors))
    return cleaned


def list_templates(organization_id: int) -> list[LoopTemplate]:
    return (
        LoopTemplate.query.filter_by(organization_id=organization_id)
        .order_by(LoopTemplate.name, LoopTemplate.id)
        .all()
    )


def get_template(template_id: int, organization_id: int) -> LoopTemplate:
    template = LoopTemplate.query.get(template_id)
    if template is None or template.organization_id != organization_id:
        raise LookupError("Template not found.")
    return template


def create_template(user: User, name: str, steps) -> LoopTemplate:
    name = (name or "").strip()
    if not name:
        raise ValueError("Name is required")
    template = LoopTemplate(
        organization_id=user.organization_id,
        name=name,
        steps=_clean_template_steps(steps),
        created_by=user.id,
    )
    db.session.add(template)
    db.session.flush()
    return template


def update_template(template: LoopTemplate, *, name: str | None = None, steps=None) -> LoopTemplate:
    if name is not None:
        if not name.strip():
            raise ValueError("Name is required")
        template.name = name.strip()
    if steps is not None:
        template.steps = _clean_template_steps(steps)
    db.session.flush()
    return template


def delete_template(template: LoopTemplate) -> None:
    db.session.delete(template)
    db.session.flush()
