from __future__ import annotations


class SandboxContextError(Exception):
    # Root of every error raised by the harness.
    pass


class StartupError(SandboxContextError):
    # Context construction failed; raised synchronously from new_context().
    pass


class ConfigError(StartupError, ValueError):
    # Raised for invalid harness/module configuration (fail fast).
    pass


class ModuleStartError(StartupError):
    # An emulator child reported a definitive startup failure.
    def __init__(self, module: str, message: str, *, category: str = "execution") -> None:
        super().__init__(f"module '{module}' failed to start ({category}): {message}")
        self.module = module
        self.category = category


class StartupTimeoutError(StartupError, TimeoutError):
    # Startup deadline elapsed before every module reported ready or failed.
    def __init__(self, modules: list[str], timeout_seconds: float) -> None:
        names = ", ".join(sorted(modules))
        super().__init__(f"module(s) {names} did not fail fast or become ready within {timeout_seconds}s")
        self.modules = list(modules)
        self.timeout_seconds = timeout_seconds


class ContextClosedError(SandboxContextError, RuntimeError):
    # Context was used after close().
    pass


class UnknownModuleError(SandboxContextError, LookupError):
    # Module name is not part of this context.
    pass


class ModuleNotReadyError(SandboxContextError, RuntimeError):
    # Module exists but has not reached readiness (or was stopped).
    pass


class TeardownError(SandboxContextError, RuntimeError):
    # One or more instances could not be terminated; every instance still got an attempt.
    def __init__(self, failures: dict[str, str]) -> None:
        detail = "; ".join(f"{name}: {reason}" for name, reason in sorted(failures.items()))
        super().__init__(f"teardown failed for {len(failures)} module(s): {detail}")
        self.failures = dict(failures)


class CallError(SandboxContextError):
    # Generic failure reported by the wrapped service protocol.
    code = "call.failed"

    def __init__(self, message: str = "", *, code: str | None = None) -> None:
        super().__init__(message or self.code)
        if code is not None:
            self.code = code


class CacheMissError(CallError):
    code = "memcache.cache_miss"


class NotStoredError(CallError):
    code = "memcache.not_stored"


class NoSuchEntityError(CallError):
    code = "datastore.no_such_entity"


class UnknownQueueError(CallError):
    code = "taskqueue.unknown_queue"


class TaskAlreadyExistsError(CallError):
    code = "taskqueue.task_already_exists"


SENTINEL_ERRORS: dict[str, type[CallError]] = {
    cls.code: cls
    for cls in (
        CacheMissError,
        NotStoredError,
        NoSuchEntityError,
        UnknownQueueError,
        TaskAlreadyExistsError,
    )
}


def error_for_code(code: str, message: str) -> CallError:
    # Sentinel codes map back to their own exception type; anything else stays generic.
    cls = SENTINEL_ERRORS.get(code)
    if cls is None:
        return CallError(message, code=code)
    return cls(message)
