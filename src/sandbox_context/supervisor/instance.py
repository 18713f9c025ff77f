from __future__ import annotations

import multiprocessing as mp
import threading
from dataclasses import dataclass

STATUS_STARTING = "starting"
STATUS_READY = "ready"
STATUS_FAILED = "failed"
STATUS_STOPPED = "stopped"


@dataclass(slots=True)
class ModuleInstance:
    # Handle to one spawned emulator process; owned by exactly one ProcessSupervisor.
    name: str
    process: mp.Process
    control: object
    watcher: threading.Thread | None = None
    host: str = "127.0.0.1"
    rpc_port: int | None = None
    http_port: int | None = None
    status: str = STATUS_STARTING
    failure: str | None = None

    @property
    def ready(self) -> bool:
        return self.status == STATUS_READY

    @property
    def rpc_address(self) -> tuple[str, int]:
        if self.rpc_port is None:
            raise RuntimeError(f"module '{self.name}' has no rpc address yet")
        return self.host, self.rpc_port

    @property
    def hostname(self) -> str:
        if self.http_port is None:
            raise RuntimeError(f"module '{self.name}' has no http address yet")
        return f"{self.host}:{self.http_port}"

    def snapshot(self) -> dict[str, object]:
        return {
            "name": self.name,
            "pid": self.process.pid,
            "alive": self.process.is_alive(),
            "status": self.status,
            "rpc_port": self.rpc_port,
            "http_port": self.http_port,
            "failure": self.failure,
        }
