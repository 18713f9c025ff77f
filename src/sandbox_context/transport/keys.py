from __future__ import annotations

import hashlib
import hmac
import secrets
from collections.abc import Callable
from dataclasses import dataclass


class KeyMaterialError(ValueError):
    pass


@dataclass(frozen=True, slots=True)
class ContextKeyMaterial:
    # One master secret per Context; each module gets its own derived signing key.
    master_secret: bytes

    def __post_init__(self) -> None:
        if not isinstance(self.master_secret, bytes) or len(self.master_secret) < 16:
            raise KeyMaterialError("master secret must be at least 16 bytes")

    def module_secret(self, module: str) -> bytes:
        if not module:
            raise KeyMaterialError("module name is required for key derivation")
        info = f"sandbox-context/module/{module}/signing".encode("utf-8")
        return hmac.new(self.master_secret, info, hashlib.sha256).digest()


def generate_key_material(*, token_bytes_fn: Callable[[int], bytes] | None = None) -> ContextKeyMaterial:
    generator = token_bytes_fn or secrets.token_bytes
    return ContextKeyMaterial(master_secret=generator(32))
