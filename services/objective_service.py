"""Daily team objectives and the daily dashboard built on them."""

from __future__ import annotations

from datetime import date, datetime, timedelta

from database import db
from models.objective import Objective, ObjectiveStatus
from models.organization import Team
from models.task import Task
from models.user import User
from services.access import accessible_tasks_filter
from services.task_service import serialize_task


def parse_day(value: str | None) -> str:
    """Validate a ``YYYY-MM-DD`` string and return it unchanged."""

    try:
        date.fromisoformat(value or "")
    except ValueError:
        raise ValueError("date must be formatted as YYYY-MM-DD") from None
    return value


def check_team(user: User, team_id: int) -> Team:
    """Return the team or raise when it is hidden from or foreign to the user."""

    team = Team.query.get(team_id)
    if team is None or team.organization_id != user.organization_id:
        raise LookupError("Team not found.")
    if user.team_id is not None and user.team_id != team_id:
        raise PermissionError("Wrong team")
    return team


def upsert_objective(user: User, data: dict) -> tuple[Objective, bool]:
    """Create an objective, or update the one named by ``data['id']``.

    Returns the objective and whether it was created.
    """

    check_team(user, data["team_id"])
    owner = User.query.get(data["owner_id"])
    if owner is None or owner.organization_id != user.organization_id:
        raise ValueError("Owner must be in your organization")
    fields = {
        "date": parse_day(data["date"]),
        "team_id": data["team_id"],
        "title": data["title"].strip(),
        "owner_id": data["owner_id"],
        "linked_task_ids": list(data.get("linked_task_ids") or []),
    }
    if data.get("id"):
        objective = Objective.query.get(data["id"])
        if objective is None:
            raise LookupError("Objective not found.")
        if objective.team_id != data["team_id"]:
            raise PermissionError("Wrong team")
        for key, value in fields.items():
            setattr(objective, key, value)
        if data.get("status"):
            objective.status = data["status"]
        db.session.flush()
        return objective, False
    objective = Objective(status=data.get("status") or ObjectiveStatus.OPEN.value, **fields)
    db.session.add(objective)
    db.session.flush()
    return objective, True


def list_objectives(user: User, day: str, team_id: int) -> list[Objective]:
    check_team(user, team_id)
    return (
        Objective.query.filter_by(date=parse_day(day), team_id=team_id)
        .order_by(Objective.owner_id, Objective.id)
        .all()
    )


def toggle_objective(user: User, objective_id: int) -> Objective:
    objective = Objective.query.get(objective_id)
    if objective is None:
        raise LookupError("Objective not found.")
    check_team(user, objective.team_id)
    objective.toggle()
    db.session.flush()
    return objective


def daily_dashboard(user: User, day: str, team_id: int) -> dict[str, object]:
    """Per-owner objective progress, pending objectives and tasks due that day."""

    objectives = list_objectives(user, day, team_id)
    summary: dict[int, dict[str, int]] = {}
    pending = []
    for objective in objectives:
        record = summary.setdefault(
            objective.owner_id, {"owner_id": objective.owner_id, "completed": 0, "total": 0}
        )
        record["total"] += 1
        if objective.status_enum == ObjectiveStatus.DONE:
            record["completed"] += 1
        else:
            pending.append(objective.to_dict())

    start = datetime.combine(date.fromisoformat(day), datetime.min.time())
    end = start + timedelta(days=1)
    tasks = (
        Task.query.filter(accessible_tasks_filter(user))
        .filter(Task.due_date >= start, Task.due_date < end)
        .order_by(Task.due_date, Task.id)
        .all()
    )
    by_owner: dict[int, list[dict[str, object]]] = {}
    for task in tasks:
        by_owner.setdefault(task.owner_id, []).append(serialize_task(task))

    return {
        "summary": list(summary.values()),
        "pending": pending,
        "tasks": [{"owner_id": owner_id, "tasks": items} for owner_id, items in by_owner.items()],
    }
