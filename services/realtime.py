"""In-process connection registry and best-effort event fan-out.

Every Socket.IO connection of this process is tracked here together with the
tasks it is currently viewing. Presence is derived from the registry only, so
it is lost on restart and never shared between processes. Emits are fire and
forget: a failure is logged and the caller carries on.
"""
from __future__ import annotations

import logging
import threading
from collections import defaultdict

from extensions import socketio

logger = logging.getLogger(__name__)


def user_room(user_id: int) -> str:
    return f"user:{user_id}"


def task_room(task_id: int) -> str:
    return f"task:{task_id}"


class ConnectionRegistry:
    """Map socket ids to users and the tasks each connection has joined."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._connections: dict[str, int] = {}
        self._joined: dict[str, set[int]] = defaultdict(set)
        # task id -> user id -> number of connections of that user viewing the task
        self._viewers: dict[int, dict[int, int]] = defaultdict(lambda: defaultdict(int))

    def register(self, sid: str, user_id: int) -> None:
        with self._lock:
            self._connections[sid] = user_id

    def user_for(self, sid: str) -> int | None:
        with self._lock:
            return self._connections.get(sid)

    def has_joined(self, sid: str, task_id: int) -> bool:
        with self._lock:
            return task_id in self._joined.get(sid, ())

    def join(self, sid: str, task_id: int) -> bool:
        """Record that ``sid`` views ``task_id``.

        Returns True when this makes the user newly present on the task.
        """

        with self._lock:
            user_id = self._connections.get(sid)
            if user_id is None or task_id in self._joined[sid]:
                return False
            self._joined[sid].add(task_id)
            viewers = self._viewers[task_id]
            viewers[user_id] += 1
            return viewers[user_id] == 1

    def leave(self, sid: str, task_id: int) -> bool:
        """Forget that ``sid`` views ``task_id``.

        Returns True when the user has no connection left on the task.
        """

        with self._lock:
            return self._leave_locked(sid, task_id)

    def unregister(self, sid: str) -> tuple[int | None, list[int]]:
        """Drop a connection; return its user and the tasks the user has left."""

        with self._lock:
            user_id = self._connections.get(sid)
            left = [
                task_id
                for task_id in sorted(self._joined.get(sid, set()))
                if self._leave_locked(sid, task_id)
            ]
            self._joined.pop(sid, None)
            self._connections.pop(sid, None)
            return user_id, left

    def viewers(self, task_id: int) -> list[int]:
        with self._lock:
            return sorted(self._viewers.get(task_id, {}).keys())

    def connection_count(self) -> int:
        with self._lock:
            return len(self._connections)

    def clear(self) -> None:
        with self._lock:
            self._connections.clear()
            self._joined.clear()
            self._viewers.clear()

    def _leave_locked(self, sid: str, task_id: int) -> bool:
        user_id = self._connections.get(sid)
        joined = self._joined.get(sid)
        if user_id is None or not joined or task_id not in joined:
            return False
        joined.discard(task_id)
        viewers = self._viewers.get(task_id)
        if viewers is None:
            return False
        viewers[user_id] -= 1
        if viewers[user_id] > 0:
            return False
        del viewers[user_id]
        if not viewers:
            del self._viewers[task_id]
        return True


registry = ConnectionRegistry()


def broadcast(event: str, payload: dict, *, to: str) -> None:
    """Emit ``event`` to a room without waiting for or tracking delivery."""

    try:
        socketio.emit(event, payload, to=to)
    except Exception:  # noqa: BLE001 - delivery is best-effort
        logger.exception("Failed to emit %s to %s", event, to)


def emit_notification(notification) -> None:
    broadcast(
        "notification",
        {"notification": notification.to_dict()},
        to=user_room(notification.user_id),
    )


def emit_task_transitioned(task, task_payload: dict) -> None:
    payload = {"task_id": task.id, "task": task_payload}
    broadcast("task.transitioned", payload, to=task_room(task.id))
    for participant_id in task.participant_ids:
        broadcast("task.transitioned", payload, to=user_room(participant_id))


def emit_comment_created(comment) -> None:
    broadcast(
        "comment.created",
        {"task_id": comment.task_id, "comment": comment.to_dict()},
        to=task_room(comment.task_id),
    )


def emit_loop_updated(task_id: int, loop_payload: dict | None) -> None:
    broadcast("loop.updated", {"task_id": task_id, "loop": loop_payload}, to=task_room(task_id))
