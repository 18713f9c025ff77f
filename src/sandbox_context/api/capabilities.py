from __future__ import annotations

from typing import Protocol, runtime_checkable

from sandbox_context.state import SimulatedUser

# Capability contracts the API modules depend on. Context implements all of them;
# tests can hand an API function any object that satisfies the one it needs.


@runtime_checkable
class CallCapability(Protocol):
    def call(
        self,
        service: str,
        method: str,
        args: dict[str, object] | None = None,
        *,
        module: str | None = None,
    ) -> dict[str, object]:
        raise NotImplementedError("CallCapability.call must be implemented")


@runtime_checkable
class IdentityCapability(Protocol):
    def current_user(self) -> SimulatedUser | None:
        raise NotImplementedError("IdentityCapability.current_user must be implemented")


@runtime_checkable
class ModuleCapability(Protocol):
    def module_hostname(self, module: str) -> str:
        raise NotImplementedError("ModuleCapability.module_hostname must be implemented")


@runtime_checkable
class LogCapability(Protocol):
    def debug(self, message: str, *args: object) -> None:
        raise NotImplementedError("LogCapability.debug must be implemented")

    def info(self, message: str, *args: object) -> None:
        raise NotImplementedError("LogCapability.info must be implemented")

    def warning(self, message: str, *args: object) -> None:
        raise NotImplementedError("LogCapability.warning must be implemented")

    def error(self, message: str, *args: object) -> None:
        raise NotImplementedError("LogCapability.error must be implemented")

    def critical(self, message: str, *args: object) -> None:
        raise NotImplementedError("LogCapability.critical must be implemented")


@runtime_checkable
class NamespaceCapability(Protocol):
    @property
    def namespace(self) -> str:
        raise NotImplementedError("NamespaceCapability.namespace must be implemented")

    def current_namespace(self, namespace: str) -> None:
        raise NotImplementedError("NamespaceCapability.current_namespace must be implemented")
