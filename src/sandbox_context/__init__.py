from sandbox_context.config.models import ModuleConfig, Options
from sandbox_context.context import Context, build_options, new_context
from sandbox_context.errors import (
    CacheMissError,
    CallError,
    ConfigError,
    ContextClosedError,
    ModuleNotReadyError,
    ModuleStartError,
    NoSuchEntityError,
    NotStoredError,
    SandboxContextError,
    StartupError,
    StartupTimeoutError,
    TaskAlreadyExistsError,
    TeardownError,
    UnknownModuleError,
    UnknownQueueError,
)
from sandbox_context.observability.domain.logging import Severity
from sandbox_context.state import InvalidNamespaceError, SimulatedUser

__all__ = [
    "CacheMissError",
    "CallError",
    "ConfigError",
    "Context",
    "ContextClosedError",
    "InvalidNamespaceError",
    "ModuleConfig",
    "ModuleNotReadyError",
    "ModuleStartError",
    "NoSuchEntityError",
    "NotStoredError",
    "Options",
    "SandboxContextError",
    "Severity",
    "SimulatedUser",
    "StartupError",
    "StartupTimeoutError",
    "TaskAlreadyExistsError",
    "TeardownError",
    "UnknownModuleError",
    "UnknownQueueError",
    "build_options",
    "new_context",
]
