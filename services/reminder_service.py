"""Periodic jobs: due date reminders and notification digests."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from flask import current_app

from models.notification import Notification, NotificationType
from models.task import StepStatus, Task, TaskStatus, TaskStep
from models.user import DigestFrequency, User
from services import mail_service, notification_service

logger = logging.getLogger(__name__)

DUE_SOON_HORIZON = timedelta(hours=24)
OVERDUE_REPEAT = timedelta(hours=24)
DIGEST_INTERVALS = {
    DigestFrequency.DAILY: timedelta(days=1),
    DigestFrequency.WEEKLY: timedelta(days=7),
}


@dataclass
class SweepResult:
    due_soon: int = 0
    due_now: int = 0
    overdue: int = 0


def _recently_overdue(user_id: int, task_id: int, now: datetime) -> bool:
    return (
        Notification.query.filter(
            Notification.user_id == user_id,
            Notification.task_id == task_id,
            Notification.notification_type == NotificationType.OVERDUE.value,
            Notification.created_at > now - OVERDUE_REPEAT,
        ).first()
        is not None
    )


def _classify(due: datetime, now: datetime, interval: timedelta) -> NotificationType | None:
    """Pick the reminder for ``due`` in the sweep ending at ``now``.

    DUE_SOON fires once, in the sweep where the due date enters the 24 hour
    horizon. DUE_NOW fires in the sweep covering the due date itself.
    """

    if due > now:
        horizon = now + DUE_SOON_HORIZON
        if horizon - interval < due <= horizon:
            return NotificationType.DUE_SOON
        return None
    if due > now - interval:
        return NotificationType.DUE_NOW
    return NotificationType.OVERDUE


def _remind(task: Task, user_id: int, kind: NotificationType, step: TaskStep | None, now: datetime, result: SweepResult) -> None:
    label = step.title if step is not None else None
    if kind == NotificationType.DUE_SOON:
        if notification_service.notify_due_soon([user_id], task, label):
            result.due_soon += 1
    elif kind == NotificationType.DUE_NOW:
        if notification_service.notify_due_now([user_id], task, label):
            result.due_now += 1
    elif not _recently_overdue(user_id, task.id, now):
        if notification_service.notify_overdue([user_id], task, label):
            result.overdue += 1


def run_due_sweep(*, now: datetime | None = None, interval_minutes: int | None = None) -> SweepResult:
    """Notify owners of tasks and steps that are due soon, due now or overdue."""

    now = now or datetime.utcnow()
    if interval_minutes is None:
        interval_minutes = current_app.config.get("DUE_SWEEP_INTERVAL_MINUTES", 15)
    interval = timedelta(minutes=interval_minutes)
    horizon = now + DUE_SOON_HORIZON
    result = SweepResult()

    tasks = Task.query.filter(
        Task.status != TaskStatus.DONE.value,
        Task.due_date.isnot(None),
        Task.due_date <= horizon,
    ).all()
    for task in tasks:
        kind = _classify(task.due_date, now, interval)
        if kind is not None:
            _remind(task, task.owner_id, kind, None, now, result)

    steps = (
        TaskStep.query.join(Task, Task.id == TaskStep.task_id)
        .filter(
            Task.status != TaskStatus.DONE.value,
            TaskStep.status != StepStatus.DONE.value,
            TaskStep.due_at.isnot(None),
            TaskStep.due_at <= horizon,
        )
        .all()
    )
    for step in steps:
        kind = _classify(step.due_at, now, interval)
        if kind is not None:
            _remind(step.task, step.owner_id, kind, step, now, result)

    logger.info(
        "Due sweep sent %s due soon, %s due now and %s overdue reminders",
        result.due_soon,
        result.due_now,
        result.overdue,
    )
    return result


def send_digests(*, now: datetime | None = None) -> int:
    """Email unread notifications to users on a daily or weekly digest.

    Returns the number of digests sent.
    """

    now = now or datetime.utcnow()
    users = User.query.filter(
        User.is_active.is_(True),
        User.notify_email.is_(True),
        User.digest_frequency.in_([DigestFrequency.DAILY.value, DigestFrequency.WEEKLY.value]),
    ).all()
    sent = 0
    for user in users:
        interval = DIGEST_INTERVALS[DigestFrequency(user.digest_frequency)]
        last = user.last_digest_at or datetime.min
        if now - last < interval:
            continue
        notifications = (
            Notification.query.filter(
                Notification.user_id == user.id,
                Notification.read.is_(False),
                Notification.created_at > last,
            )
            .order_by(Notification.created_at)
            .all()
        )
        if not notifications:
            continue
        text = "\n".join(f"- {notification.message}" for notification in notifications)
        html = mail_service.render_email_template(
            "digest.html", user=user, notifications=notifications
        )
        mail_service.send_email(user.email, "Notification Digest", text=text, html=html)
        user.last_digest_at = now
        sent += 1
    logger.info("Sent %s notification digests", sent)
    return sent
