from sandbox_context.api import datastore, memcache, modules, taskqueue, user
from sandbox_context.api.capabilities import (
    CallCapability,
    IdentityCapability,
    LogCapability,
    ModuleCapability,
    NamespaceCapability,
)

__all__ = [
    "CallCapability",
    "IdentityCapability",
    "LogCapability",
    "ModuleCapability",
    "NamespaceCapability",
    "datastore",
    "memcache",
    "modules",
    "taskqueue",
    "user",
]
