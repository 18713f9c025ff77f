from __future__ import annotations

import base64
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from urllib.parse import urlencode

from sandbox_context.api.capabilities import CallCapability
from sandbox_context.errors import TaskAlreadyExistsError, UnknownQueueError

__all__ = [
    "QueueStatistics",
    "Task",
    "TaskAlreadyExistsError",
    "UnknownQueueError",
    "add",
    "add_multi",
    "new_post_task",
    "purge",
    "queue_stats",
]

_SERVICE = "taskqueue"
DEFAULT_QUEUE = "default"


@dataclass(slots=True)
class Task:
    path: str = "/"
    payload: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)
    method: str = "POST"
    # Empty name lets the emulator assign one.
    name: str = ""
    eta: datetime | None = None


@dataclass(frozen=True, slots=True)
class QueueStatistics:
    queue: str
    tasks: int
    oldest_eta: datetime | None = None


def new_post_task(path: str, params: Mapping[str, list[str] | str]) -> Task:
    """POST task whose payload is the form-encoded ``params``."""
    return Task(
        path=path,
        payload=urlencode(dict(params), doseq=True).encode("ascii"),
        headers={"Content-Type": "application/x-www-form-urlencoded"},
        method="POST",
    )


def add(ctx: CallCapability, task: Task, queue_name: str = DEFAULT_QUEUE) -> Task:
    result = ctx.call(_SERVICE, "add", {"queue": queue_name or DEFAULT_QUEUE, "task": _task_to_wire(task)})
    return _task_from_wire(result["task"])


def add_multi(ctx: CallCapability, tasks: list[Task], queue_name: str = DEFAULT_QUEUE) -> list[Task]:
    # All-or-nothing: a duplicate name rejects the whole batch.
    result = ctx.call(
        _SERVICE,
        "add_multi",
        {"queue": queue_name or DEFAULT_QUEUE, "tasks": [_task_to_wire(task) for task in tasks]},
    )
    return [_task_from_wire(raw) for raw in result["tasks"]]


def purge(ctx: CallCapability, queue_name: str = DEFAULT_QUEUE) -> None:
    ctx.call(_SERVICE, "purge", {"queue": queue_name or DEFAULT_QUEUE})


def queue_stats(ctx: CallCapability, queue_names: list[str]) -> list[QueueStatistics]:
    result = ctx.call(_SERVICE, "stats", {"queues": list(queue_names)})
    return [
        QueueStatistics(
            queue=str(raw["queue"]),
            tasks=int(raw["tasks"]),
            oldest_eta=_eta_from_wire(raw.get("oldest_eta")),
        )
        for raw in result["stats"]
    ]


def _task_to_wire(task: Task) -> dict[str, object]:
    wire: dict[str, object] = {
        "path": task.path,
        "method": task.method,
        "payload": base64.b64encode(task.payload).decode("ascii"),
        "headers": dict(task.headers),
    }
    if task.name:
        wire["name"] = task.name
    if task.eta is not None:
        wire["eta"] = task.eta.timestamp()
    return wire


def _task_from_wire(raw: dict[str, object]) -> Task:
    return Task(
        path=str(raw.get("path", "/")),
        payload=base64.b64decode(str(raw.get("payload", ""))),
        headers={str(key): str(value) for key, value in dict(raw.get("headers") or {}).items()},
        method=str(raw.get("method", "POST")),
        name=str(raw.get("name", "")),
        eta=_eta_from_wire(raw.get("eta")),
    )


def _eta_from_wire(value: object) -> datetime | None:
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        return None
    return datetime.fromtimestamp(float(value), tz=UTC)
