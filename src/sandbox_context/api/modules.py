from __future__ import annotations

from sandbox_context.api.capabilities import ModuleCapability
from sandbox_context.config.models import DEFAULT_MODULE

__all__ = ["hostname"]


def hostname(ctx: ModuleCapability, module: str = DEFAULT_MODULE) -> str:
    # "host:port" of the module's HTTP listener.
    return ctx.module_hostname(module or DEFAULT_MODULE)
