from __future__ import annotations

from types import TracebackType

from pydantic import ValidationError

from sandbox_context.config.models import Options
from sandbox_context.config.validator import effective_app_id
from sandbox_context.errors import ConfigError, ContextClosedError, StartupError
from sandbox_context.gateway.rpc import CallRequest, RPCGateway
from sandbox_context.observability.adapters.logging import ReporterLogSink, StdoutLogSink, build_exporters
from sandbox_context.observability.domain.logging import Severity
from sandbox_context.observability.log_sink import LogSink
from sandbox_context.state import AuthState, NamespaceState, SimulatedUser
from sandbox_context.supervisor.process_supervisor import ProcessSupervisor
from sandbox_context.transport.keys import generate_key_material


class Context:
    """Sandboxed platform context handed to test code.

    Owns the supervisor (and so every emulator process), the log sink, the
    namespace and identity state, and the gateway that all capability calls
    go through. Build it with :func:`new_context`; release it with
    :meth:`close`. Any use after close raises :class:`ContextClosedError`.
    Not safe for concurrent use from several threads.
    """

    def __init__(
        self,
        *,
        options: Options,
        log_sink: LogSink,
        supervisor: ProcessSupervisor,
        gateway: RPCGateway,
        namespace: NamespaceState | None = None,
        auth: AuthState | None = None,
    ) -> None:
        self._options = options
        self._log_sink = log_sink
        self._supervisor = supervisor
        self._gateway = gateway
        self._namespace = namespace or NamespaceState()
        self._auth = auth or AuthState()
        self._closed = False

    @property
    def app_id(self) -> str:
        return effective_app_id(self._options)

    @property
    def options(self) -> Options:
        return self._options

    @property
    def supervisor(self) -> ProcessSupervisor:
        return self._supervisor

    @property
    def closed(self) -> bool:
        return self._closed

    # Logging

    def debug(self, message: str, *args: object) -> None:
        self._log(Severity.DEBUG, message, args)

    def info(self, message: str, *args: object) -> None:
        self._log(Severity.INFO, message, args)

    def warning(self, message: str, *args: object) -> None:
        self._log(Severity.WARNING, message, args)

    def error(self, message: str, *args: object) -> None:
        self._log(Severity.ERROR, message, args)

    def critical(self, message: str, *args: object) -> None:
        self._log(Severity.CRITICAL, message, args)

    @property
    def did_log_anything(self) -> bool:
        self._ensure_open()
        return self._log_sink.did_log_anything

    def reset_log_flag(self) -> None:
        self._ensure_open()
        self._log_sink.reset()

    @property
    def log_threshold(self) -> Severity:
        self._ensure_open()
        return self._log_sink.threshold

    @log_threshold.setter
    def log_threshold(self, value: Severity) -> None:
        self._ensure_open()
        self._log_sink.threshold = value

    # Namespace and identity

    @property
    def namespace(self) -> str:
        self._ensure_open()
        return self._namespace.current

    def current_namespace(self, namespace: str) -> None:
        self._ensure_open()
        self._namespace.set(namespace)

    def login(self, user: SimulatedUser) -> SimulatedUser:
        self._ensure_open()
        return self._auth.login(user)

    def logout(self) -> None:
        self._ensure_open()
        self._auth.logout()

    def current_user(self) -> SimulatedUser | None:
        self._ensure_open()
        return self._auth.current()

    # Dispatch

    def module_hostname(self, module: str) -> str:
        self._ensure_open()
        return self._supervisor.hostname(module)

    def call(
        self,
        service: str,
        method: str,
        args: dict[str, object] | None = None,
        *,
        module: str | None = None,
    ) -> dict[str, object]:
        self._ensure_open()
        request = CallRequest(
            service=service,
            method=method,
            args=dict(args or {}),
            namespace=self._namespace.current,
            module=module,
            user=self._auth.snapshot(),
        )
        return self._gateway.call(request)

    # Lifecycle

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._supervisor.stop()
        finally:
            self._log_sink.close()

    def __enter__(self) -> Context:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def _ensure_open(self) -> None:
        if self._closed:
            raise ContextClosedError("context is closed")

    def _log(self, severity: Severity, message: str, args: tuple[object, ...]) -> None:
        self._ensure_open()
        self._log_sink.log(severity, message % args if args else message)


def build_options(options: Options | None = None, **overrides: object) -> Options:
    try:
        if options is None:
            return Options(**overrides)
        if not overrides:
            return options
        return Options.model_validate({**options.model_dump(), **overrides})
    except ValidationError as exc:
        raise ConfigError(f"invalid context options: {exc}") from exc


def new_context(options: Options | None = None, **overrides: object) -> Context:
    """Spawn the emulator(s) described by ``options`` and return a ready Context.

    Startup problems raise a :class:`StartupError` subclass within
    ``options.startup_timeout``; the reporter (if any) gets the diagnostic first.
    """
    options = build_options(options, **overrides)

    try:
        sinks = build_exporters(options.log_exporters)
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc
    if options.reporter is not None:
        sinks.append(ReporterLogSink(options.reporter))
    elif not sinks:
        sinks.append(StdoutLogSink())
    log_sink = LogSink(options.log_threshold, sinks)

    key_material = generate_key_material()
    supervisor = ProcessSupervisor(
        log_sink=log_sink,
        key_material=key_material,
        startup_timeout=options.startup_timeout,
        stop_timeout=options.stop_timeout,
        start_method=options.start_method,
    )
    try:
        supervisor.start(options)
    except StartupError as exc:
        if options.reporter is not None:
            options.reporter.log(f"sandbox context setup failed: {exc}")
        log_sink.close()
        raise

    gateway = RPCGateway(supervisor, key_material, log_sink=log_sink)
    return Context(options=options, log_sink=log_sink, supervisor=supervisor, gateway=gateway)
