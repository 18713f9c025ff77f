from __future__ import annotations

import multiprocessing as mp
import queue
import threading
import time
from collections.abc import Callable
from threading import Lock

from sandbox_context.config.models import Options
from sandbox_context.config.validator import ModulePlan, effective_app_id, validate_options
from sandbox_context.emulator.process import EmulatorBundle, run_emulator
from sandbox_context.errors import (
    ModuleNotReadyError,
    ModuleStartError,
    StartupTimeoutError,
    TeardownError,
    UnknownModuleError,
)
from sandbox_context.observability.domain.logging import Severity
from sandbox_context.observability.log_sink import LogSink
from sandbox_context.supervisor.instance import (
    STATUS_FAILED,
    STATUS_READY,
    STATUS_STOPPED,
    ModuleInstance,
)
from sandbox_context.transport.keys import ContextKeyMaterial

EmulatorTarget = Callable[[object, EmulatorBundle], None]


class ProcessSupervisor:
    """Spawns, health-checks and terminates the emulator processes of one Context.

    Readiness is reported asynchronously: one watcher thread per child reads
    its control pipe and posts a single ``ready``/``failed``/``exited`` outcome
    to a completion queue. ``start()`` races that queue against one deadline,
    so a broken configuration always surfaces as an error and never as a hang.
    """

    def __init__(
        self,
        *,
        log_sink: LogSink,
        key_material: ContextKeyMaterial,
        startup_timeout: float = 5.0,
        stop_timeout: float = 2.0,
        start_method: str = "spawn",
        target: EmulatorTarget | None = None,
    ) -> None:
        if startup_timeout <= 0:
            raise ValueError("startup_timeout must be > 0")
        if stop_timeout <= 0:
            raise ValueError("stop_timeout must be > 0")
        self._ctx = mp.get_context(start_method)
        self._log_sink = log_sink
        self._keys = key_material
        self._startup_timeout = startup_timeout
        self._stop_timeout = stop_timeout
        self._target = target or run_emulator
        self._instances: dict[str, ModuleInstance] = {}
        self._completions: queue.Queue[tuple[str, dict[str, object]]] = queue.Queue()
        self._events: list[dict[str, object]] = []
        self._lock = Lock()
        self._started = False
        self._stopped = False

    def start(self, options: Options) -> dict[str, ModuleInstance]:
        # Validation runs before anything is spawned.
        plans = validate_options(options)
        with self._lock:
            if self._stopped:
                raise RuntimeError("supervisor is stopped and cannot be restarted")
            if self._started:
                raise RuntimeError("supervisor is already started")
            self._started = True

        app_id = effective_app_id(options)
        queue_names = tuple(options.queue_names())
        try:
            for plan in plans:
                self._spawn(plan, app_id=app_id, queue_names=queue_names)
            self._await_ready([plan.name for plan in plans])
        except BaseException:
            self._stop_after_failed_start()
            raise
        self._emit_event(kind="supervisor_ready", modules=[plan.name for plan in plans])
        return dict(self._instances)

    def stop(self) -> None:
        # Every instance gets a termination attempt; failures are reported after all attempts.
        with self._lock:
            if self._stopped:
                return
            self._stopped = True
            instances = list(self._instances.values())
        if not instances:
            return

        for instance in instances:
            self._request_stop(instance)

        failures: dict[str, str] = {}
        deadline = time.monotonic() + self._stop_timeout
        for instance in instances:
            try:
                self._terminate(instance, deadline)
            except (OSError, TimeoutError, ValueError) as exc:
                failures[instance.name] = f"{type(exc).__name__}: {exc}"
                self._emit_event(kind="module_stop_failed", module=instance.name, error=type(exc).__name__)
        self._emit_event(kind="supervisor_stopped", modules=len(instances), failures=len(failures))
        if failures:
            raise TeardownError(failures)

    @property
    def stopped(self) -> bool:
        return self._stopped

    def resolve(self, name: str) -> ModuleInstance:
        # Registry lookup never blocks: unknown and non-ready modules are errors.
        instance = self._instances.get(name)
        if instance is None:
            known = sorted(self._instances)
            raise UnknownModuleError(f"unknown module '{name}' (known: {known})")
        if instance.status != STATUS_READY:
            raise ModuleNotReadyError(f"module '{name}' is not ready (status: {instance.status})")
        return instance

    def hostname(self, name: str) -> str:
        return self.resolve(name).hostname

    def module_names(self) -> list[str]:
        return list(self._instances)

    def snapshot(self) -> dict[str, dict[str, object]]:
        return {name: instance.snapshot() for name, instance in self._instances.items()}

    def lifecycle_events(self) -> list[dict[str, object]]:
        with self._lock:
            return [dict(event) for event in self._events]

    def _spawn(self, plan: ModulePlan, *, app_id: str, queue_names: tuple[str, ...]) -> None:
        parent_conn, child_conn = self._ctx.Pipe(duplex=True)
        bundle = EmulatorBundle(
            module=plan.name,
            app_id=app_id,
            config_path=plan.path,
            queue_names=queue_names,
            secret=self._keys.module_secret(plan.name),
        )
        process = self._ctx.Process(
            target=self._target,
            args=(child_conn, bundle),
            name=f"emulator:{plan.name}",
            daemon=True,
        )
        try:
            process.start()
        except OSError as exc:
            parent_conn.close()
            child_conn.close()
            raise ModuleStartError(plan.name, f"{type(exc).__name__}: {exc}", category="spawn") from exc
        # Parent keeps only its own end, so child exit shows up as EOF.
        child_conn.close()

        instance = ModuleInstance(name=plan.name, process=process, control=parent_conn)
        instance.watcher = threading.Thread(
            target=self._watch,
            args=(instance,),
            name=f"watch:{plan.name}",
            daemon=True,
        )
        self._instances[plan.name] = instance
        instance.watcher.start()
        self._emit_event(kind="module_spawned", module=plan.name, pid=process.pid, config=plan.path)

    def _watch(self, instance: ModuleInstance) -> None:
        # Reports exactly one readiness outcome, then keeps forwarding child log lines until EOF.
        reported = False
        while True:
            try:
                message = instance.control.recv()
            except (EOFError, OSError):
                break
            if not isinstance(message, dict):
                continue
            kind = message.get("kind")
            if kind == "log":
                self._log_sink.forward_child(
                    instance.name,
                    str(message.get("level") or "info"),
                    str(message.get("message") or ""),
                )
                continue
            if kind in ("ready", "failed") and not reported:
                reported = True
                self._completions.put((instance.name, message))
        if not reported:
            self._completions.put((instance.name, {"kind": "exited"}))

    def _await_ready(self, names: list[str]) -> None:
        deadline = time.monotonic() + self._startup_timeout
        pending = set(names)
        while pending:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                for name in sorted(pending):
                    self._instances[name].status = STATUS_FAILED
                    self._instances[name].failure = "startup deadline exceeded"
                    self._emit_event(kind="module_startup_timeout", module=name)
                raise StartupTimeoutError(sorted(pending), self._startup_timeout)
            try:
                name, message = self._completions.get(timeout=remaining)
            except queue.Empty:
                continue

            instance = self._instances[name]
            if message.get("kind") == "ready":
                rpc_port = message.get("rpc_port")
                http_port = message.get("http_port")
                if isinstance(rpc_port, int) and isinstance(http_port, int):
                    instance.rpc_port = rpc_port
                    instance.http_port = http_port
                    instance.status = STATUS_READY
                    pending.discard(name)
                    self._emit_event(kind="module_ready", module=name, rpc_port=rpc_port, http_port=http_port)
                    continue
                category, detail = "protocol", "ready message carries no ports"
            elif message.get("kind") == "failed":
                category = str(message.get("category") or "execution")
                detail = str(message.get("message") or "emulator reported failure")
            else:
                instance.process.join(timeout=0.5)
                category, detail = "exited", f"emulator exited with code {instance.process.exitcode}"

            instance.status = STATUS_FAILED
            instance.failure = detail
            self._emit_event(kind="module_failed", module=name, category=category)
            raise ModuleStartError(name, detail, category=category)

    def _stop_after_failed_start(self) -> None:
        try:
            self.stop()
        except TeardownError as exc:
            # The startup error stays primary; teardown problems are logged.
            self._log_sink.log(Severity.ERROR, str(exc))

    def _request_stop(self, instance: ModuleInstance) -> None:
        if not instance.process.is_alive():
            return
        try:
            instance.control.send({"kind": "stop"})
        except (OSError, ValueError):
            # Graceful stop is best effort; join/terminate below is the source of truth.
            return

    def _terminate(self, instance: ModuleInstance, deadline: float) -> None:
        process = instance.process
        mode = "graceful"
        process.join(timeout=max(0.01, deadline - time.monotonic()))
        if process.is_alive():
            mode = "forced"
            process.terminate()
            process.join(timeout=1.0)
        if process.is_alive():
            mode = "killed"
            process.kill()
            process.join(timeout=1.0)
        if process.is_alive():
            raise TimeoutError(f"emulator '{instance.name}' (pid {process.pid}) did not exit")

        if instance.watcher is not None:
            instance.watcher.join(timeout=1.0)
        instance.control.close()
        instance.status = STATUS_STOPPED
        self._emit_event(
            kind="module_stopped",
            module=instance.name,
            pid=process.pid,
            mode=mode,
            exitcode=process.exitcode,
        )

    def _emit_event(self, *, kind: str, **fields: object) -> None:
        event = {"kind": kind, **fields}
        with self._lock:
            self._events.append(event)
        self._log_sink.log(Severity.DEBUG, f"supervisor.{kind}", **fields)
