"""Socket.IO event handlers for notifications, presence and typing indicators."""
from __future__ import annotations

import logging

from flask import request, session
from flask_socketio import emit, join_room, leave_room

from extensions import socketio
from models.task import Task
from models.user import User
from services.access import can_read_task
from services.realtime import registry, task_room, user_room

logger = logging.getLogger(__name__)


def _current_user() -> User | None:
    user_id = session.get("user_id")
    if not user_id:
        return None
    user = User.query.get(user_id)
    if user is None or not user.is_active:
        return None
    return user


def _task_id(data) -> int | None:
    value = data.get("task_id") if isinstance(data, dict) else None
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@socketio.on("connect")
def handle_connect(auth=None):
    """Refuse anonymous connections and join the user's private room."""

    user = _current_user()
    if user is None:
        return False
    registry.register(request.sid, user.id)
    join_room(user_room(user.id))
    logger.debug("Socket %s connected for user %s", request.sid, user.id)
    return True


@socketio.on("disconnect")
def handle_disconnect(*args):
    user_id, left = registry.unregister(request.sid)
    for task_id in left:
        emit("user.left", {"task_id": task_id, "user_id": user_id}, to=task_room(task_id))


@socketio.on("task.join")
def handle_task_join(data):
    user = _current_user()
    task_id = _task_id(data)
    if user is None or task_id is None:
        return
    task = Task.query.get(task_id)
    if task is None or not can_read_task(user, task):
        emit("error", {"message": "Task not found.", "task_id": task_id})
        return
    join_room(task_room(task_id))
    if registry.join(request.sid, task_id):
        emit(
            "user.joined",
            {"task_id": task_id, "user_id": user.id},
            to=task_room(task_id),
            include_self=False,
        )
    emit("presence", {"task_id": task_id, "viewers": registry.viewers(task_id)})


@socketio.on("task.leave")
def handle_task_leave(data):
    task_id = _task_id(data)
    if task_id is None:
        return
    user_id = registry.user_for(request.sid)
    leave_room(task_room(task_id))
    if registry.leave(request.sid, task_id):
        emit("user.left", {"task_id": task_id, "user_id": user_id}, to=task_room(task_id))


@socketio.on("comment.typing")
def handle_typing(data):
    task_id = _task_id(data)
    if task_id is None or not registry.has_joined(request.sid, task_id):
        return
    emit(
        "comment.typing",
        {"task_id": task_id, "user_id": registry.user_for(request.sid)},
        to=task_room(task_id),
        include_self=False,
    )
