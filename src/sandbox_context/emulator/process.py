from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from threading import Lock

from sandbox_context.config.loader import load_module_definition
from sandbox_context.config.models import ModuleDefinition
from sandbox_context.config.validator import check_definition_application
from sandbox_context.emulator.http_server import ModuleHttpServer
from sandbox_context.emulator.rpc_server import RpcServer
from sandbox_context.emulator.services import EmulatorServices
from sandbox_context.errors import ConfigError
from sandbox_context.transport.framed_tcp import FramedTcpTransport, TransportConfig

# Control pipe messages, child -> parent:
#   {"kind": "log", "level": str, "message": str}
#   {"kind": "ready", "rpc_port": int, "http_port": int, "pid": int}
#   {"kind": "failed", "category": str, "message": str}
#   {"kind": "stop_ack"}
# parent -> child:
#   {"kind": "stop"}


@dataclass(frozen=True, slots=True)
class EmulatorBundle:
    # Picklable startup payload handed to the spawned child.
    module: str
    app_id: str
    config_path: str | None
    queue_names: tuple[str, ...]
    secret: bytes


class _ControlChannel:
    # Child end of the control pipe; RPC and HTTP threads log through it concurrently.
    def __init__(self, pipe: object) -> None:
        self._pipe = pipe
        self._lock = Lock()

    def send(self, payload: dict[str, object]) -> None:
        with self._lock:
            try:
                self._pipe.send(payload)
            except (OSError, EOFError, ValueError):
                # Parent side is gone; nothing left to report to.
                return

    def log(self, level: str, message: str) -> None:
        self.send({"kind": "log", "level": level, "message": message})

    def wait_for_stop(self, poll_seconds: float = 0.1) -> None:
        while True:
            try:
                if not self._pipe.poll(poll_seconds):
                    continue
                command = self._pipe.recv()
            except (EOFError, OSError):
                return
            if isinstance(command, dict) and command.get("kind") == "stop":
                self.send({"kind": "stop_ack"})
                return

    def close(self) -> None:
        with self._lock:
            try:
                self._pipe.close()
            except OSError:
                return


def load_bundle_definition(bundle: EmulatorBundle) -> ModuleDefinition | None:
    if bundle.config_path is None:
        return None
    path = Path(bundle.config_path)
    if not path.is_file():
        raise ConfigError(f"module '{bundle.module}' configuration path does not exist: {path}")
    definition = load_module_definition(path)
    check_definition_application(definition, bundle.app_id)
    if definition.module is not None and definition.module != bundle.module:
        raise ConfigError(
            f"module definition '{path}' declares module '{definition.module}', expected '{bundle.module}'"
        )
    return definition


def run_emulator(control: object, bundle: EmulatorBundle) -> None:
    """Child process entry point: report readiness (or failure), then serve until stopped."""
    channel = _ControlChannel(control)
    channel.log("info", f"emulator starting module={bundle.module} app={bundle.app_id} pid={os.getpid()}")

    try:
        definition = load_bundle_definition(bundle)
    except ConfigError as exc:
        channel.send({"kind": "failed", "category": "config", "message": str(exc)})
        channel.close()
        return

    services = EmulatorServices(queue_names=list(bundle.queue_names))
    transport = FramedTcpTransport(TransportConfig(secret=bundle.secret))
    rpc = RpcServer(transport, services, module=bundle.module, log=channel.log)
    http: ModuleHttpServer | None = None
    try:
        try:
            http = ModuleHttpServer(definition, module=bundle.module, log=channel.log)
            rpc_port = rpc.start()
            http_port = http.start()
        except OSError as exc:
            channel.send({"kind": "failed", "category": "bind", "message": f"{type(exc).__name__}: {exc}"})
            return

        handler_count = len(definition.handlers) if definition is not None else 0
        channel.log(
            "info",
            f"emulator ready module={bundle.module} rpc=:{rpc_port} http=:{http_port} handlers={handler_count}",
        )
        channel.send({"kind": "ready", "rpc_port": rpc_port, "http_port": http_port, "pid": os.getpid()})
        channel.wait_for_stop()
    finally:
        rpc.stop()
        if http is not None:
            http.stop()
        channel.close()
