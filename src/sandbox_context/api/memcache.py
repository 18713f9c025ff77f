from __future__ import annotations

import base64
from dataclasses import dataclass

from sandbox_context.api.capabilities import CallCapability
from sandbox_context.errors import CacheMissError, NotStoredError

__all__ = [
    "CacheMissError",
    "Item",
    "NotStoredError",
    "add",
    "delete",
    "flush",
    "get",
    "get_multi",
    "increment",
    "set",
]

_SERVICE = "memcache"


@dataclass(slots=True)
class Item:
    key: str
    value: bytes = b""
    flags: int = 0
    # Seconds until expiry; 0 means never.
    expiration: float = 0

    def __post_init__(self) -> None:
        if not self.key:
            raise ValueError("memcache Item.key must be a non-empty string")
        if isinstance(self.value, str):
            self.value = self.value.encode("utf-8")


def get(ctx: CallCapability, key: str) -> Item:
    """Fetch one item; raises :class:`CacheMissError` when the key is absent."""
    result = ctx.call(_SERVICE, "get", {"key": key})
    return _item_from_wire(result)


def get_multi(ctx: CallCapability, keys: list[str]) -> dict[str, Item]:
    # Misses are simply absent from the returned mapping.
    result = ctx.call(_SERVICE, "get_multi", {"keys": list(keys)})
    items = result.get("items", {})
    return {key: _item_from_wire(raw) for key, raw in items.items()}


def set(ctx: CallCapability, item: Item) -> None:  # noqa: A001 - mirrors the service verb
    ctx.call(_SERVICE, "set", _item_to_wire(item))


def add(ctx: CallCapability, item: Item) -> None:
    """Store only if absent; raises :class:`NotStoredError` otherwise."""
    ctx.call(_SERVICE, "add", _item_to_wire(item))


def delete(ctx: CallCapability, key: str) -> None:
    ctx.call(_SERVICE, "delete", {"key": key})


def increment(ctx: CallCapability, key: str, delta: int = 1, initial: int | None = None) -> int:
    args: dict[str, object] = {"key": key, "delta": delta}
    if initial is not None:
        args["initial"] = initial
    result = ctx.call(_SERVICE, "increment", args)
    return int(result["value"])


def flush(ctx: CallCapability) -> None:
    ctx.call(_SERVICE, "flush", {})


def _item_to_wire(item: Item) -> dict[str, object]:
    wire: dict[str, object] = {
        "key": item.key,
        "value": base64.b64encode(item.value).decode("ascii"),
        "flags": item.flags,
    }
    if item.expiration:
        wire["expiration"] = item.expiration
    return wire


def _item_from_wire(raw: object) -> Item:
    if not isinstance(raw, dict):
        raise ValueError("memcache item payload must be a mapping")
    return Item(
        key=str(raw["key"]),
        value=base64.b64decode(str(raw.get("value", ""))),
        flags=int(raw.get("flags", 0)),
    )
