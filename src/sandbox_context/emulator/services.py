from __future__ import annotations

import base64
import binascii
import itertools
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field

# Minimal service emulation behind the RPC server. Every store is keyed by
# namespace first; the empty namespace is the default scope.


class ServiceError(Exception):
    # Failure reported back to the caller as {"ok": false, "code": ...}.
    def __init__(self, code: str, message: str = "") -> None:
        super().__init__(message or code)
        self.code = code
        self.message = message or code


class NamespacedKvStore:
    # KV store where identical keys under different namespaces never collide.
    def __init__(self) -> None:
        self._store: dict[tuple[str, str], object] = {}

    def get(self, namespace: str, key: str) -> object | None:
        return self._store.get((namespace, key))

    def set(self, namespace: str, key: str, value: object) -> None:
        self._store[(namespace, key)] = value

    def delete(self, namespace: str, key: str) -> bool:
        return self._store.pop((namespace, key), None) is not None

    def contains(self, namespace: str, key: str) -> bool:
        return (namespace, key) in self._store

    def clear(self) -> None:
        self._store.clear()

    def size(self) -> int:
        return len(self._store)


@dataclass(slots=True)
class _CacheEntry:
    value: str
    flags: int
    expires_at: float | None


class MemcacheService:
    # Values travel base64-encoded; the emulator never decodes them.
    def __init__(self, *, clock: Callable[[], float] | None = None) -> None:
        self._store = NamespacedKvStore()
        self._clock = clock or time.monotonic

    def get(self, namespace: str, args: dict[str, object]) -> dict[str, object]:
        key = _require_str(args, "key")
        entry = self._live_entry(namespace, key)
        if entry is None:
            raise ServiceError("memcache.cache_miss", f"cache miss: {key}")
        return {"key": key, "value": entry.value, "flags": entry.flags}

    def get_multi(self, namespace: str, args: dict[str, object]) -> dict[str, object]:
        keys = _require_str_list(args, "keys")
        items: dict[str, object] = {}
        for key in keys:
            entry = self._live_entry(namespace, key)
            if entry is not None:
                items[key] = {"key": key, "value": entry.value, "flags": entry.flags}
        return {"items": items}

    def set(self, namespace: str, args: dict[str, object]) -> dict[str, object]:
        key, entry = self._entry_from_args(args)
        self._store.set(namespace, key, entry)
        return {}

    def add(self, namespace: str, args: dict[str, object]) -> dict[str, object]:
        key, entry = self._entry_from_args(args)
        if self._live_entry(namespace, key) is not None:
            raise ServiceError("memcache.not_stored", f"key already present: {key}")
        self._store.set(namespace, key, entry)
        return {}

    def delete(self, namespace: str, args: dict[str, object]) -> dict[str, object]:
        key = _require_str(args, "key")
        if self._live_entry(namespace, key) is None:
            raise ServiceError("memcache.cache_miss", f"cache miss: {key}")
        self._store.delete(namespace, key)
        return {}

    def increment(self, namespace: str, args: dict[str, object]) -> dict[str, object]:
        key = _require_str(args, "key")
        delta = args.get("delta", 1)
        initial = args.get("initial")
        if not isinstance(delta, int) or isinstance(delta, bool):
            raise ServiceError("call.bad_request", "delta must be an integer")
        entry = self._live_entry(namespace, key)
        if entry is None:
            if initial is None:
                raise ServiceError("memcache.cache_miss", f"cache miss: {key}")
            if not isinstance(initial, int) or isinstance(initial, bool):
                raise ServiceError("call.bad_request", "initial must be an integer")
            current = initial
            entry = _CacheEntry(value="", flags=0, expires_at=None)
        else:
            current = _decode_counter(entry.value)
        updated = max(0, current + delta)
        entry.value = _encode_counter(updated)
        self._store.set(namespace, key, entry)
        return {"value": updated}

    def flush(self, namespace: str, args: dict[str, object]) -> dict[str, object]:
        _ = (namespace, args)
        self._store.clear()
        return {}

    def _live_entry(self, namespace: str, key: str) -> _CacheEntry | None:
        entry = self._store.get(namespace, key)
        if not isinstance(entry, _CacheEntry):
            return None
        if entry.expires_at is not None and entry.expires_at <= self._clock():
            self._store.delete(namespace, key)
            return None
        return entry

    def _entry_from_args(self, args: dict[str, object]) -> tuple[str, _CacheEntry]:
        key = _require_str(args, "key")
        value = args.get("value", "")
        if not isinstance(value, str):
            raise ServiceError("call.bad_request", "value must be base64 text")
        flags = args.get("flags", 0)
        if not isinstance(flags, int) or isinstance(flags, bool):
            raise ServiceError("call.bad_request", "flags must be an integer")
        expiration = args.get("expiration")
        expires_at: float | None = None
        if expiration is not None:
            if not isinstance(expiration, (int, float)) or isinstance(expiration, bool) or expiration < 0:
                raise ServiceError("call.bad_request", "expiration must be a non-negative number")
            if expiration > 0:
                expires_at = self._clock() + float(expiration)
        return key, _CacheEntry(value=value, flags=flags, expires_at=expires_at)


def _encode_counter(value: int) -> str:
    return base64.b64encode(str(value).encode("ascii")).decode("ascii")


def _decode_counter(value: str) -> int:
    try:
        return int(base64.b64decode(value.encode("ascii"), validate=True).decode("ascii"))
    except (ValueError, binascii.Error, UnicodeDecodeError) as exc:
        raise ServiceError("memcache.not_a_counter", "cached value is not an integer") from exc


@dataclass(slots=True)
class _Queue:
    tasks: deque[dict[str, object]] = field(default_factory=deque)
    names: set[str] = field(default_factory=set)


class TaskQueueService:
    # Push queues are provisioned up front; adding to an undeclared queue is an error.
    def __init__(self, queue_names: list[str]) -> None:
        self._queues: dict[str, _Queue] = {name: _Queue() for name in queue_names}
        self._name_seq = itertools.count(1)

    def add(self, namespace: str, args: dict[str, object]) -> dict[str, object]:
        queue = self._queue(args)
        task = self._build_task(namespace, args.get("task"), queue.names)
        self._push(queue, task)
        return {"task": task}

    def add_multi(self, namespace: str, args: dict[str, object]) -> dict[str, object]:
        queue = self._queue(args)
        raw_tasks = args.get("tasks")
        if not isinstance(raw_tasks, list):
            raise ServiceError("call.bad_request", "tasks must be a list")
        # Every task is validated before any is enqueued.
        taken = set(queue.names)
        tasks: list[dict[str, object]] = []
        for raw in raw_tasks:
            task = self._build_task(namespace, raw, taken)
            taken.add(str(task["name"]))
            tasks.append(task)
        for task in tasks:
            self._push(queue, task)
        return {"tasks": tasks}

    def purge(self, namespace: str, args: dict[str, object]) -> dict[str, object]:
        _ = namespace
        queue = self._queue(args)
        queue.tasks.clear()
        queue.names.clear()
        return {}

    def stats(self, namespace: str, args: dict[str, object]) -> dict[str, object]:
        _ = namespace
        names = _require_str_list(args, "queues")
        stats: list[dict[str, object]] = []
        for name in names:
            queue = self._queues.get(name)
            if queue is None:
                raise ServiceError("taskqueue.unknown_queue", f"unknown queue: {name}")
            oldest = min((task["eta"] for task in queue.tasks), default=None)
            stats.append({"queue": name, "tasks": len(queue.tasks), "oldest_eta": oldest})
        return {"stats": stats}

    def _queue(self, args: dict[str, object]) -> _Queue:
        name = args.get("queue") or "default"
        if not isinstance(name, str):
            raise ServiceError("call.bad_request", "queue must be a string")
        queue = self._queues.get(name)
        if queue is None:
            raise ServiceError("taskqueue.unknown_queue", f"unknown queue: {name}")
        return queue

    def _build_task(self, namespace: str, raw: object, taken: set[str]) -> dict[str, object]:
        if not isinstance(raw, dict):
            raise ServiceError("call.bad_request", "task must be a mapping")
        name = raw.get("name") or f"task{next(self._name_seq)}"
        if not isinstance(name, str):
            raise ServiceError("call.bad_request", "task name must be a string")
        if name in taken:
            raise ServiceError("taskqueue.task_already_exists", f"task already exists: {name}")
        path = raw.get("path", "/")
        method = raw.get("method", "POST")
        payload = raw.get("payload", "")
        if not isinstance(path, str) or not isinstance(method, str) or not isinstance(payload, str):
            raise ServiceError("call.bad_request", "task path, method and payload must be strings")
        headers = raw.get("headers") or {}
        if not isinstance(headers, dict) or not all(
            isinstance(key, str) and isinstance(value, str) for key, value in headers.items()
        ):
            raise ServiceError("call.bad_request", "task headers must map strings to strings")
        eta = raw.get("eta")
        if eta is not None and (isinstance(eta, bool) or not isinstance(eta, (int, float))):
            raise ServiceError("call.bad_request", "task eta must be a number")
        return {
            "name": name,
            "path": path,
            "method": method,
            "payload": payload,
            "headers": dict(headers),
            "eta": time.time() if eta is None else eta,
            "namespace": namespace,
        }

    @staticmethod
    def _push(queue: _Queue, task: dict[str, object]) -> None:
        queue.tasks.append(task)
        queue.names.add(str(task["name"]))


class DatastoreService:
    # Entities keyed by (namespace, key path); incomplete keys get allocated integer ids.
    def __init__(self) -> None:
        self._entities: dict[tuple[str, tuple[tuple[str, object], ...]], dict[str, object]] = {}
        self._id_seq = itertools.count(1)

    def put(self, namespace: str, args: dict[str, object]) -> dict[str, object]:
        path = _require_path(args.get("key"), allow_incomplete=True)
        properties = args.get("properties", {})
        if not isinstance(properties, dict):
            raise ServiceError("call.bad_request", "properties must be a mapping")
        kind, ident = path[-1]
        if ident in (None, 0, ""):
            path = path[:-1] + ((kind, next(self._id_seq)),)
        self._entities[(namespace, path)] = dict(properties)
        return {"key": {"path": [list(element) for element in path]}}

    def get(self, namespace: str, args: dict[str, object]) -> dict[str, object]:
        path = _require_path(args.get("key"), allow_incomplete=False)
        entity = self._entities.get((namespace, path))
        if entity is None:
            raise ServiceError("datastore.no_such_entity", "no such entity")
        return {"properties": dict(entity)}

    def delete(self, namespace: str, args: dict[str, object]) -> dict[str, object]:
        path = _require_path(args.get("key"), allow_incomplete=False)
        self._entities.pop((namespace, path), None)
        return {}


class EmulatorServices:
    """Dispatch table for ``service.method`` calls against one emulator instance."""

    def __init__(self, *, queue_names: list[str]) -> None:
        self.memcache = MemcacheService()
        self.taskqueue = TaskQueueService(queue_names)
        self.datastore = DatastoreService()
        self._handlers: dict[tuple[str, str], Callable[[str, dict[str, object]], dict[str, object]]] = {
            ("memcache", "get"): self.memcache.get,
            ("memcache", "get_multi"): self.memcache.get_multi,
            ("memcache", "set"): self.memcache.set,
            ("memcache", "add"): self.memcache.add,
            ("memcache", "delete"): self.memcache.delete,
            ("memcache", "increment"): self.memcache.increment,
            ("memcache", "flush"): self.memcache.flush,
            ("taskqueue", "add"): self.taskqueue.add,
            ("taskqueue", "add_multi"): self.taskqueue.add_multi,
            ("taskqueue", "purge"): self.taskqueue.purge,
            ("taskqueue", "stats"): self.taskqueue.stats,
            ("datastore", "put"): self.datastore.put,
            ("datastore", "get"): self.datastore.get,
            ("datastore", "delete"): self.datastore.delete,
        }

    def dispatch(self, service: str, method: str, namespace: str, args: dict[str, object]) -> dict[str, object]:
        handler = self._handlers.get((service, method))
        if handler is None:
            raise ServiceError("call.unknown_method", f"unknown method: {service}.{method}")
        return handler(namespace, args)


def _require_str(args: dict[str, object], name: str) -> str:
    value = args.get(name)
    if not isinstance(value, str) or not value:
        raise ServiceError("call.bad_request", f"{name} must be a non-empty string")
    return value


def _require_str_list(args: dict[str, object], name: str) -> list[str]:
    value = args.get(name)
    if not isinstance(value, list) or not all(isinstance(item, str) and item for item in value):
        raise ServiceError("call.bad_request", f"{name} must be a list of non-empty strings")
    return list(value)


def _require_path(raw: object, *, allow_incomplete: bool) -> tuple[tuple[str, object], ...]:
    if not isinstance(raw, dict) or not isinstance(raw.get("path"), list) or not raw["path"]:
        raise ServiceError("call.bad_request", "key.path must be a non-empty list")
    elements: list[tuple[str, object]] = []
    raw_path = raw["path"]
    for index, element in enumerate(raw_path):
        if not isinstance(element, list) or len(element) != 2:
            raise ServiceError("call.bad_request", "key path elements must be [kind, id] pairs")
        kind, ident = element
        if not isinstance(kind, str) or not kind:
            raise ServiceError("call.bad_request", "key kind must be a non-empty string")
        incomplete = ident in (None, 0, "")
        if incomplete and (not allow_incomplete or index != len(raw_path) - 1):
            raise ServiceError("call.bad_request", "key is incomplete")
        if not incomplete and (isinstance(ident, bool) or not isinstance(ident, (int, str))):
            raise ServiceError("call.bad_request", "key id must be an integer or string")
        elements.append((kind, ident))
    return tuple(elements)
