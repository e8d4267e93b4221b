"""Task comments and the mention notifications they trigger."""

from __future__ import annotations

from sqlalchemy import func

from database import db
from models.activity_log import ActivityType
from models.comment import Comment
from models.task import Task
from models.user import User
from services import notification_service, realtime
from services.task_service import log_activity
from utils.mentions import parse_mentions

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def create_comment(task: Task, author: User, content: str, parent_id: int | None = None) -> Comment:
    content = (content or "").strip()
    if not content:
        raise ValueError("Comment content is required")
    if parent_id is not None:
        parent = Comment.query.get(parent_id)
        if parent is None or parent.task_id != task.id:
            raise ValueError("Parent comment not found")

    comment = Comment(task_id=task.id, user_id=author.id, content=content, parent_id=parent_id)
    db.session.add(comment)
    db.session.flush()
    log_activity(task, author, ActivityType.COMMENT, {"comment_id": comment.id})

    emails = parse_mentions(content)
    if emails:
        mentioned = User.query.filter(
            User.organization_id == task.organization_id,
            func.lower(User.email).in_(emails),
            User.id != author.id,
        ).all()
        notification_service.notify_mention([user.id for user in mentioned], task)

    realtime.emit_comment_created(comment)
    return comment


def list_comments(task: Task, *, parent_id: int | None = None, page: int = 1, limit: int = DEFAULT_PAGE_SIZE) -> list[Comment]:
    """Top level comments, or the replies of ``parent_id``, newest first."""

    page = max(page, 1)
    limit = max(1, min(limit, MAX_PAGE_SIZE))
    query = Comment.query.filter(Comment.task_id == task.id)
    if parent_id is None:
        query = query.filter(Comment.parent_id.is_(None))
    else:
        query = query.filter(Comment.parent_id == parent_id)
    return (
        query.order_by(Comment.created_at.desc(), Comment.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
