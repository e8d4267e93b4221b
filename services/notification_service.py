"""Utilities for creating, delivering and presenting user notifications."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Iterable

from flask import current_app

from database import db
from models.notification import Notification, NotificationType
from models.otp_token import RateLimit
from models.task import Task
from models.user import DigestFrequency, User
from services import mail_service, push_service, realtime

logger = logging.getLogger(__name__)

RECENT_NOTIFICATION_LIMIT = 50

EMAIL_TEMPLATES = {
    NotificationType.ASSIGNMENT: "task-assigned.html",
    NotificationType.LOOP_STEP_READY: "loop-step-ready.html",
    NotificationType.TASK_CLOSED: "task-completed.html",
    NotificationType.OVERDUE: "overdue-alert.html",
}


def throttle_key(user_id: int, notification_type: NotificationType, task_id: int | None, step: str | None) -> str:
    return f"notify:{user_id}:{notification_type.value}:{task_id or ''}:{step or ''}"


def should_send(key: str, *, now: datetime | None = None) -> bool:
    """Open a throttle window for ``key`` unless one is still running."""

    now = now or datetime.utcnow()
    window = timedelta(seconds=current_app.config.get("NOTIFICATION_THROTTLE_SECONDS", 60))
    record = RateLimit.query.filter_by(key=key).one_or_none()
    if record is not None and record.window_ends_at > now:
        return False
    if record is None:
        record = RateLimit(key=key)
        db.session.add(record)
    record.count = 1
    record.window_ends_at = now + window
    db.session.flush()
    return True


def _unique_ids(user_ids: Iterable[int | None]) -> list[int]:
    seen: list[int] = []
    for user_id in user_ids:
        if user_id is not None and user_id not in seen:
            seen.append(user_id)
    return seen


def _deliver_email(user: User, notification_type: NotificationType, subject: str, text: str, task: Task | None):
    template = EMAIL_TEMPLATES.get(notification_type)
    html = None
    if template:
        html = mail_service.render_email_template(template, subject=subject, text=text, task=task, user=user)
    mail_service.send_email(user.email, subject, text=text, html=html)


def create_and_deliver(
    user_ids: Iterable[int | None],
    notification_type: NotificationType,
    *,
    subject: str,
    text: str,
    task: Task | None = None,
    step: str | None = None,
) -> list[Notification]:
    """Persist notifications and fan them out over realtime, push and email.

    Recipients notified about the same task, step and type within the
    throttle window are skipped. Delivery beyond the database row is
    best-effort; errors are logged and never raised.
    """

    task_id = task.id if task is not None else None
    recipients = [
        user_id
        for user_id in _unique_ids(user_ids)
        if should_send(throttle_key(user_id, notification_type, task_id, step))
    ]
    if not recipients:
        return []

    notifications = [
        Notification(
            user_id=user_id,
            task_id=task_id,
            notification_type=notification_type.value,
            message=text,
        )
        for user_id in recipients
    ]
    db.session.add_all(notifications)
    db.session.flush()

    for notification in notifications:
        realtime.emit_notification(notification)

    users = User.query.filter(User.id.in_(recipients), User.is_active.is_(True)).all()
    push_payload = {"title": subject, "body": text, "type": notification_type.value}
    for user in users:
        if not user.wants_notification_type(notification_type):
            continue
        if user.notify_push:
            try:
                push_service.send_push_to_user(user, push_payload)
            except Exception:  # noqa: BLE001 - delivery is best-effort
                logger.exception("Push delivery failed for user %s", user.id)
        if user.notify_email and user.digest_frequency == DigestFrequency.IMMEDIATE:
            try:
                _deliver_email(user, notification_type, subject, text, task)
            except Exception:  # noqa: BLE001 - delivery is best-effort
                logger.exception("Email delivery failed for user %s", user.id)
    return notifications


def notify_assignment(user_ids: Iterable[int | None], task: Task, step: str | None = None) -> list[Notification]:
    step_text = f'step "{step}" of ' if step else ""
    return create_and_deliver(
        user_ids,
        NotificationType.ASSIGNMENT,
        task=task,
        step=step,
        subject=f"Task assigned: {task.title}",
        text=f'You have been assigned to {step_text}task "{task.title}" (#{task.id}).',
    )


def notify_mention(user_ids: Iterable[int | None], task: Task) -> list[Notification]:
    return create_and_deliver(
        user_ids,
        NotificationType.COMMENT_MENTION,
        task=task,
        subject="You were mentioned",
        text="You were mentioned in a comment.",
    )


def notify_status_change(user_ids: Iterable[int | None], task: Task) -> list[Notification]:
    return create_and_deliver(
        user_ids,
        NotificationType.STATUS_CHANGE,
        task=task,
        step=task.status,
        subject="Task status updated",
        text=f'Task "{task.title}" is now {task.status}.',
    )


def notify_due_soon(user_ids: Iterable[int | None], task: Task, step: str | None = None) -> list[Notification]:
    return create_and_deliver(
        user_ids,
        NotificationType.DUE_SOON,
        task=task,
        step=step,
        subject="Task due soon",
        text=f'Task "{task.title}" is due soon.',
    )


def notify_due_now(user_ids: Iterable[int | None], task: Task, step: str | None = None) -> list[Notification]:
    return create_and_deliver(
        user_ids,
        NotificationType.DUE_NOW,
        task=task,
        step=step,
        subject="Task due now",
        text=f'Task "{task.title}" is due now.',
    )


def notify_overdue(user_ids: Iterable[int | None], task: Task, step: str | None = None) -> list[Notification]:
    return create_and_deliver(
        user_ids,
        NotificationType.OVERDUE,
        task=task,
        step=step,
        subject="Task overdue",
        text=f'Task "{task.title}" is overdue.',
    )


def notify_loop_step_ready(user_ids: Iterable[int | None], task: Task, step: str | None = None) -> list[Notification]:
    target = f'step "{step}"' if step else "the next step"
    return create_and_deliver(
        user_ids,
        NotificationType.LOOP_STEP_READY,
        task=task,
        step=step,
        subject=f"Task flow advanced: {task.title}",
        text=f'Task "{task.title}" (#{task.id}) advanced to {target}.',
    )


def notify_task_closed(user_ids: Iterable[int | None], task: Task) -> list[Notification]:
    return create_and_deliver(
        user_ids,
        NotificationType.TASK_CLOSED,
        task=task,
        subject="Task closed",
        text=f'Task "{task.title}" has been completed.',
    )


def get_recent_notifications(user: User, *, limit: int = RECENT_NOTIFICATION_LIMIT) -> list[Notification]:
    """Return the newest notifications for the user."""

    return (
        Notification.query.filter_by(user_id=user.id)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(limit)
        .all()
    )


def unread_count(user: User) -> int:
    return Notification.query.filter_by(user_id=user.id, read=False).count()


def load_notification(notification_id: int, user: User) -> Notification:
    """Return a notification owned by the user or raise LookupError."""

    notification = Notification.query.get(notification_id)
    if notification is None or notification.user_id != user.id:
        raise LookupError("Notification not found.")
    return notification


def set_read(notification_id: int, user: User, read: bool = True) -> Notification:
    notification = load_notification(notification_id, user)
    notification.mark_read(read)
    return notification


def mark_all_read(user: User) -> int:
    """Mark every unread notification of the user as read."""

    now = datetime.utcnow()
    return Notification.query.filter_by(user_id=user.id, read=False).update(
        {"read": True, "read_at": now}, synchronize_session=False
    )


def serialize_notifications(notifications: Iterable[Notification]) -> list[dict[str, object]]:
    return [notification.to_dict() for notification in notifications]
