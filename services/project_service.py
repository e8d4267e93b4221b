"""Projects and project types of an organization."""

from __future__ import annotations

from sqlalchemy import case, func

from database import db
from models.project import Project, ProjectType, normalize_project_type_name
from models.task import Task, TaskStatus
from models.user import User
from services.account_service import ConflictError


def list_project_types(organization_id: int) -> list[ProjectType]:
    return ProjectType.query.filter_by(organization_id=organization_id).order_by(ProjectType.name).all()


def create_project_type(user: User, name: str) -> ProjectType:
    name = (name or "").strip()
    normalized = normalize_project_type_name(name)
    if not normalized:
        raise ValueError("Name is required")
    existing = ProjectType.query.filter_by(
        organization_id=user.organization_id, normalized=normalized
    ).first()
    if existing is not None:
        raise ConflictError("Project type already exists")
    project_type = ProjectType(
        organization_id=user.organization_id,
        name=name,
        normalized=normalized,
        created_by=user.id,
        updated_by=user.id,
    )
    db.session.add(project_type)
    db.session.flush()
    return project_type


def _check_type(organization_id: int, type_id: int | None) -> None:
    if type_id is None:
        return
    project_type = ProjectType.query.get(type_id)
    if project_type is None or project_type.organization_id != organization_id:
        raise ValueError("Project type not found")


def task_counts(project_ids: list[int]) -> dict[int, tuple[int, int]]:
    """Map project id to ``(pending, done)`` task counts."""

    if not project_ids:
        return {}
    done = case((Task.status == TaskStatus.DONE.value, 1), else_=0)
    rows = (
        db.session.query(Task.project_id, func.count(Task.id), func.sum(done))
        .filter(Task.project_id.in_(project_ids))
        .group_by(Task.project_id)
        .all()
    )
    return {project_id: (total - (done_count or 0), done_count or 0) for project_id, total, done_count in rows}


def serialize_project(project: Project, counts: tuple[int, int] | None = None) -> dict[str, object]:
    if counts is None:
        counts = task_counts([project.id]).get(project.id, (0, 0))
    payload = project.to_dict()
    payload["pending_count"], payload["done_count"] = counts
    return payload


def list_projects(organization_id: int, type_id: int | None = None) -> list[dict[str, object]]:
    query = Project.query.filter_by(organization_id=organization_id)
    if type_id is not None:
        query = query.filter_by(type_id=type_id)
    projects = query.order_by(Project.created_at.desc(), Project.id.desc()).all()
    counts = task_counts([project.id for project in projects])
    return [serialize_project(project, counts.get(project.id, (0, 0))) for project in projects]


def get_project(project_id: int, organization_id: int) -> Project:
    project = Project.query.get(project_id)
    if project is None or project.organization_id != organization_id:
        raise LookupError("Project not found.")
    return project


def create_project(user: User, data: dict) -> Project:
    name = (data.get("name") or "").strip()
    if not name:
        raise ValueError("Name is required")
    _check_type(user.organization_id, data.get("type_id"))
    project = Project(
        organization_id=user.organization_id,
        name=name,
        description=data.get("description"),
        type_id=data.get("type_id"),
        created_by=user.id,
        updated_by=user.id,
    )
    db.session.add(project)
    db.session.flush()
    return project


def update_project(project: Project, user: User, data: dict) -> Project:
    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            raise ValueError("Name is required")
        project.name = name
    if "description" in data:
        project.description = data["description"]
    if "type_id" in data:
        _check_type(project.organization_id, data["type_id"])
        project.type_id = data["type_id"]
    project.updated_by = user.id
    db.session.flush()
    return project


def delete_project(project: Project) -> None:
    if project.tasks.count():
        raise ConflictError("Project has tasks")
    db.session.delete(project)
    db.session.flush()
