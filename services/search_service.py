"""Task search, global search across tasks, loops and comments, and saved searches."""

from __future__ import annotations

import csv
import io
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Iterable

from markupsafe import escape
from sqlalchemy import and_, func, or_

from database import db
from models.comment import Comment
from models.saved_search import SavedSearch
from models.tag import TaskTag
from models.task import Task, TaskStatus, TaskVisibility
from models.task_loop import LoopStep, TaskLoop
from models.user import User
from services.access import accessible_tasks_filter
from services.task_service import serialize_task

EXCERPT_LENGTH = 120
SUGGESTION_LIMIT = 10
TASK_SORTS = ("relevance", "updated_at", "due_date")
GLOBAL_SORTS = ("recent", "oldest")
# Query parameters that select the task search over the global search on export
TASK_SPECIFIC_PARAMS = ("status", "tag", "owner_id", "helpers", "created_by", "team_id", "visibility")
_CUSTOM_PARAM = re.compile(r"^custom\[(.+)\]$")


def parse_datetime(value: str | None) -> datetime | None:
    """Parse ``YYYY-MM-DD`` or an ISO timestamp into a naive UTC datetime."""

    if value is None or not str(value).strip():
        return None
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise ValueError(f"Invalid date '{value}'") from None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _int_list(values: Iterable[str], name: str) -> list[int]:
    result = []
    for value in values:
        try:
            result.append(int(value))
        except (TypeError, ValueError):
            raise ValueError(f"Invalid {name}") from None
    return result


@dataclass
class TaskSearch:
    q: str | None = None
    status: list[str] = field(default_factory=list)
    tag: list[str] = field(default_factory=list)
    due_ranges: list[tuple[datetime | None, datetime | None]] = field(default_factory=list)
    owner_id: list[int] = field(default_factory=list)
    helpers: list[int] = field(default_factory=list)
    created_by: list[int] = field(default_factory=list)
    team_id: int | None = None
    visibility: str | None = None
    custom: dict[str, list[str]] = field(default_factory=dict)
    sort: str | None = None

    @classmethod
    def from_args(cls, args) -> "TaskSearch":
        """Build a search from request query arguments (a MultiDict)."""

        search = cls()
        search.q = (args.get("q") or "").strip() or None
        search.status = [s.upper() for s in args.getlist("status") if s]
        search.tag = [t for t in args.getlist("tag") if t]
        due_from = [parse_datetime(v) for v in args.getlist("due_from")]
        due_to = [parse_datetime(v) for v in args.getlist("due_to")]
        for index in range(max(len(due_from), len(due_to))):
            start = due_from[index] if index < len(due_from) else None
            end = due_to[index] if index < len(due_to) else None
            if start is not None or end is not None:
                search.due_ranges.append((start, end))
        search.owner_id = _int_list(args.getlist("owner_id"), "owner_id")
        search.helpers = _int_list(args.getlist("helpers"), "helpers")
        search.created_by = _int_list(args.getlist("created_by"), "created_by")
        if args.get("team_id"):
            search.team_id = _int_list([args["team_id"]], "team_id")[0]
        visibility = (args.get("visibility") or "").upper()
        if visibility:
            if visibility not in (TaskVisibility.PRIVATE, TaskVisibility.TEAM):
                raise ValueError("Invalid visibility")
            search.visibility = visibility
        for key in args.keys():
            match = _CUSTOM_PARAM.match(key)
            if match:
                search.custom[match.group(1)] = args.getlist(key)
        sort = args.get("sort")
        if sort:
            if sort not in TASK_SORTS:
                raise ValueError("Invalid sort")
            search.sort = sort
        return search


def _apply_filters(query, search: TaskSearch):
    if search.owner_id:
        query = query.filter(Task.owner_id.in_(search.owner_id))
    if search.created_by:
        query = query.filter(Task.created_by.in_(search.created_by))
    if search.helpers:
        query = query.filter(Task.helpers.any(User.id.in_(search.helpers)))
    if search.status:
        query = query.filter(Task.status.in_(search.status))
    if search.tag:
        query = query.filter(Task.tag_links.any(TaskTag.name.in_(search.tag)))
    if search.visibility:
        query = query.filter(Task.visibility == search.visibility)
    if search.team_id is not None:
        query = query.filter(Task.team_id == search.team_id)
    if search.due_ranges:
        ranges = []
        for start, end in search.due_ranges:
            clauses = []
            if start is not None:
                clauses.append(Task.due_date >= start)
            if end is not None:
                clauses.append(Task.due_date <= end)
            ranges.append(and_(*clauses))
        query = query.filter(or_(*ranges))
    for name, values in search.custom.items():
        query = query.filter(or_(*(Task.custom[name].as_string() == value for value in values)))
    return query


def _contains(column, q: str):
    return func.lower(column).contains(q.lower(), autoescape=True)


def excerpt(text: str | None) -> str:
    return (text or "")[:EXCERPT_LENGTH]


def search_tasks(user: User, search: TaskSearch) -> list[dict[str, object]]:
    """Run a task search and return serialized tasks with an ``excerpt``."""

    query = _apply_filters(Task.query.filter(accessible_tasks_filter(user)), search)
    tasks = query.all()

    if search.q:
        comment_hits = {
            task_id
            for (task_id,) in db.session.query(Comment.task_id)
            .filter(_contains(Comment.content, search.q))
            .distinct()
        }
        loop_hits = {
            task_id
            for (task_id,) in db.session.query(TaskLoop.task_id)
            .join(LoopStep, LoopStep.loop_id == TaskLoop.id)
            .filter(_contains(LoopStep.description, search.q))
            .distinct()
        }
        needle = search.q.lower()
        scored = []
        for task in tasks:
            score = 0
            if needle in (task.title or "").lower():
                score += 3
            if needle in (task.description or "").lower():
                score += 2
            if task.id in comment_hits or task.id in loop_hits:
                score += 1
            if score:
                scored.append((score, task))
        tasks = [task for _, task in scored]
        if search.sort in (None, "relevance"):
            scored.sort(key=lambda item: (item[0], item[1].updated_at, item[1].id), reverse=True)
            tasks = [task for _, task in scored]

    if search.sort == "due_date":
        tasks.sort(key=lambda t: (t.due_date is None, t.due_date or datetime.max, t.id))
    elif search.sort == "updated_at" or (not search.q and search.sort != "due_date"):
        tasks.sort(key=lambda t: (t.updated_at, t.id), reverse=True)

    results = []
    for task in tasks:
        payload = serialize_task(task)
        payload["excerpt"] = excerpt(task.description)
        results.append(payload)
    return results


def highlight(text: str | None, q: str | None) -> str:
    """HTML-escape ``text`` and wrap literal matches of ``q`` in ``<mark>``."""

    text = text or ""
    if not q:
        return str(escape(text))
    pattern = re.compile(f"({re.escape(q)})", re.IGNORECASE)
    parts = pattern.split(text)
    return "".join(
        f"<mark>{escape(part)}</mark>" if index % 2 else str(escape(part))
        for index, part in enumerate(parts)
    )


def snippet(text: str | None, q: str | None, length: int = EXCERPT_LENGTH) -> str:
    """A highlighted window of ``text`` centred on the first match of ``q``."""

    text = text or ""
    if not q:
        return str(escape(text[:length]))
    match = re.search(re.escape(q), text, re.IGNORECASE)
    if match is None:
        return str(escape(text[:length]))
    start = max(match.start() - length // 2, 0)
    end = min(start + length, len(text))
    prefix = "..." if start > 0 else ""
    suffix = "..." if end < len(text) else ""
    return prefix + highlight(text[start:end], q) + suffix


def search_global(user: User, q: str | None, *, page: int = 1, limit: int = 20, sort: str | None = None) -> dict[str, object]:
    """Search tasks, loop steps and comments the user can read."""

    if sort is not None and sort not in GLOBAL_SORTS:
        raise ValueError("Invalid sort")
    page = max(page, 1)
    limit = max(1, min(limit, 100))
    q = (q or "").strip() or None

    accessible = Task.query.filter(accessible_tasks_filter(user))
    task_ids = [task_id for (task_id,) in accessible.with_entities(Task.id)]
    results: list[dict[str, object]] = []

    task_query = accessible
    if q:
        task_query = task_query.filter(or_(_contains(Task.title, q), _contains(Task.description, q)))
    for task in task_query:
        results.append(
            {
                "id": task.id,
                "type": "task",
                "task_id": task.id,
                "title": highlight(task.title, q),
                "excerpt": snippet(task.description, q),
                "created_at": task.created_at,
            }
        )

    if task_ids:
        loops = TaskLoop.query.filter(TaskLoop.task_id.in_(task_ids))
        if q:
            loops = loops.filter(TaskLoop.sequence.any(_contains(LoopStep.description, q)))
        for loop in loops:
            step = next(
                (s for s in loop.sequence if not q or q.lower() in (s.description or "").lower()),
                None,
            )
            description = step.description if step is not None else ""
            results.append(
                {
                    "id": loop.id,
                    "type": "loop",
                    "task_id": loop.task_id,
                    "title": snippet(description, q, 80) if description else "Loop step",
                    "excerpt": snippet(description, q),
                    "created_at": loop.created_at,
                }
            )

        comments = Comment.query.filter(Comment.task_id.in_(task_ids))
        if q:
            comments = comments.filter(_contains(Comment.content, q))
        for comment in comments:
            results.append(
                {
                    "id": comment.id,
                    "type": "comment",
                    "task_id": comment.task_id,
                    "title": snippet(comment.content, q, 80),
                    "excerpt": snippet(comment.content, q),
                    "created_at": comment.created_at,
                }
            )

    results.sort(key=lambda item: item["created_at"], reverse=sort != "oldest")
    offset = (page - 1) * limit
    paged = results[offset : offset + limit]
    for item in paged:
        item["created_at"] = item["created_at"].isoformat() if item["created_at"] else None
    return {"results": paged, "total": len(results)}


def suggestions(user: User, q: str | None) -> list[str]:
    """Distinct task titles and tags starting with ``q``."""

    q = (q or "").strip()
    if not q:
        return []
    prefix = q.lower()
    found: list[str] = []
    accessible = Task.query.filter(accessible_tasks_filter(user))
    titles = (
        accessible.filter(func.lower(Task.title).startswith(prefix, autoescape=True))
        .order_by(Task.updated_at.desc())
        .limit(SUGGESTION_LIMIT)
    )
    for task in titles:
        if task.title not in found:
            found.append(task.title)
    tags = (
        db.session.query(TaskTag.name)
        .join(Task, Task.id == TaskTag.task_id)
        .filter(accessible_tasks_filter(user))
        .filter(func.lower(TaskTag.name).startswith(prefix, autoescape=True))
        .distinct()
        .limit(SUGGESTION_LIMIT)
    )
    for (name,) in tags:
        if name not in found:
            found.append(name)
    return found[:SUGGESTION_LIMIT]


def wants_task_search(args) -> bool:
    if any(name in args for name in TASK_SPECIFIC_PARAMS):
        return True
    return args.get("sort") in TASK_SORTS


def export_csv(results: list[dict[str, object]], *, global_results: bool) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    if global_results:
        writer.writerow(["id", "type", "title", "excerpt"])
        for row in results:
            writer.writerow([row["id"], row["type"], row["title"], row["excerpt"]])
    else:
        writer.writerow(["id", "title", "status", "due_date"])
        for row in results:
            writer.writerow([row["id"], row["title"], row["status"], row.get("due_date") or ""])
    return buffer.getvalue()


def get_presets(user_id: int | None, today: date | None = None) -> list[dict[str, object]]:
    today = today or date.today()
    presets: list[dict[str, object]] = []
    if user_id:
        presets.append({"id": "preset-my-tasks", "name": "My Tasks", "query": f"owner_id={user_id}"})
    open_statuses = "&".join(
        f"status={status.value}" for status in TaskStatus if status != TaskStatus.DONE
    )
    presets.append(
        {
            "id": "preset-overdue",
            "name": "Overdue",
            "query": f"{open_statuses}&due_to={today.isoformat()}",
        }
    )
    start = today - timedelta(days=today.weekday())
    end = start + timedelta(days=6)
    presets.append(
        {
            "id": "preset-this-week",
            "name": "This Week",
            "query": f"due_from={start.isoformat()}&due_to={end.isoformat()}",
        }
    )
    return presets


def list_saved_searches(user: User) -> list[SavedSearch]:
    return (
        SavedSearch.query.filter_by(user_id=user.id)
        .order_by(SavedSearch.created_at.desc(), SavedSearch.id.desc())
        .all()
    )


def get_saved_search(search_id: int, user: User) -> SavedSearch:
    saved = SavedSearch.query.get(search_id)
    if saved is None or saved.user_id != user.id:
        raise LookupError("Saved search not found.")
    return saved


def save_search(user: User, name: str, query: str) -> SavedSearch:
    name = (name or "").strip()
    if not name:
        raise ValueError("Name is required")
    saved = SavedSearch(user_id=user.id, name=name, query_string=query or "")
    db.session.add(saved)
    db.session.flush()
    return saved


def update_saved_search(saved: SavedSearch, *, name: str | None = None, query: str | None = None) -> SavedSearch:
    if name is not None:
        if not name.strip():
            raise ValueError("Name is required")
        saved.name = name.strip()
    if query is not None:
        saved.query_string = query
    db.session.flush()
    return saved


def delete_saved_search(saved: SavedSearch) -> None:
    db.session.delete(saved)
    db.session.flush()
