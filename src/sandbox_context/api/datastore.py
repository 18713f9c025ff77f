from __future__ import annotations

import dataclasses
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TypeVar

from sandbox_context.api.capabilities import CallCapability
from sandbox_context.errors import NoSuchEntityError

__all__ = ["Key", "NoSuchEntityError", "delete", "get", "new_incomplete_key", "new_key", "put"]

_SERVICE = "datastore"

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Key:
    # A key names an entity by kind plus either string_id or int_id; neither means incomplete.
    kind: str
    string_id: str = ""
    int_id: int = 0
    parent: Key | None = None

    def __post_init__(self) -> None:
        if not self.kind:
            raise ValueError("datastore Key.kind must be a non-empty string")
        if self.string_id and self.int_id:
            raise ValueError("datastore Key cannot have both string_id and int_id")
        if self.int_id < 0:
            raise ValueError("datastore Key.int_id must be >= 0")
        if self.parent is not None and self.parent.incomplete:
            raise ValueError("datastore Key.parent must be complete")

    @property
    def incomplete(self) -> bool:
        return not self.string_id and not self.int_id

    def path(self) -> list[list[object]]:
        prefix = self.parent.path() if self.parent is not None else []
        ident: object = self.string_id or self.int_id
        return [*prefix, [self.kind, ident]]

    @classmethod
    def from_path(cls, path: list[list[object]]) -> Key:
        key: Key | None = None
        for kind, ident in path:
            if isinstance(ident, str):
                key = cls(kind=str(kind), string_id=ident, parent=key)
            else:
                key = cls(kind=str(kind), int_id=int(ident or 0), parent=key)
        if key is None:
            raise ValueError("datastore key path must not be empty")
        return key


def new_key(kind: str, string_id: str = "", int_id: int = 0, parent: Key | None = None) -> Key:
    return Key(kind=kind, string_id=string_id, int_id=int_id, parent=parent)


def new_incomplete_key(kind: str, parent: Key | None = None) -> Key:
    return Key(kind=kind, parent=parent)


def put(ctx: CallCapability, key: Key, entity: object) -> Key:
    """Store ``entity`` (a dataclass instance or mapping); returns the complete key."""
    result = ctx.call(_SERVICE, "put", {"key": {"path": key.path()}, "properties": _properties(entity)})
    return Key.from_path(result["key"]["path"])


def get(ctx: CallCapability, key: Key, cls: type[T] | None = None) -> T | dict[str, object]:
    # Raises NoSuchEntityError when nothing is stored under key.
    if key.incomplete:
        raise ValueError("cannot get an incomplete key")
    result = ctx.call(_SERVICE, "get", {"key": {"path": key.path()}})
    properties = dict(result.get("properties", {}))
    if cls is None:
        return properties
    return cls(**properties)


def delete(ctx: CallCapability, key: Key) -> None:
    if key.incomplete:
        raise ValueError("cannot delete an incomplete key")
    ctx.call(_SERVICE, "delete", {"key": {"path": key.path()}})


def _properties(entity: object) -> dict[str, object]:
    if dataclasses.is_dataclass(entity) and not isinstance(entity, type):
        return dataclasses.asdict(entity)
    if isinstance(entity, Mapping):
        return dict(entity)
    raise TypeError(f"datastore entity must be a dataclass instance or mapping, got {type(entity).__name__}")
