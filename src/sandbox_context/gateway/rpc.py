from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from sandbox_context.config.models import DEFAULT_MODULE
from sandbox_context.errors import CallError
from sandbox_context.observability.domain.logging import Severity
from sandbox_context.observability.log_sink import LogSink
from sandbox_context.supervisor.instance import ModuleInstance
from sandbox_context.transport.calls import decode_response, encode_call
from sandbox_context.transport.framed_tcp import KIND_REQUEST, FramedTcpTransport, TransportConfig, TransportError
from sandbox_context.transport.keys import ContextKeyMaterial


class ModuleResolver(Protocol):
    # Registry surface the gateway needs from the supervisor.
    def resolve(self, name: str) -> ModuleInstance:
        raise NotImplementedError("ModuleResolver.resolve must be implemented")


@dataclass(frozen=True, slots=True)
class CallRequest:
    # One service call plus the context snapshot (namespace, module, user) it runs under.
    service: str
    method: str
    args: dict[str, object] = field(default_factory=dict)
    namespace: str = ""
    module: str | None = None
    user: dict[str, object] | None = None

    def __post_init__(self) -> None:
        if not self.service or not self.method:
            raise ValueError("CallRequest requires non-empty service/method")


class RPCGateway:
    """Single dispatch point for every capability call issued through a Context.

    Calls go to the ``default`` module unless a module is named explicitly.
    Sentinel failures (cache miss, no such entity, ...) come back as their own
    exception types so callers can match them with ``except``.
    """

    def __init__(
        self,
        resolver: ModuleResolver,
        key_material: ContextKeyMaterial,
        *,
        log_sink: LogSink | None = None,
        io_timeout_seconds: float = 10.0,
    ) -> None:
        self._resolver = resolver
        self._keys = key_material
        self._log_sink = log_sink
        self._io_timeout_seconds = io_timeout_seconds
        self._transports: dict[str, FramedTcpTransport] = {}

    def call(self, request: CallRequest) -> dict[str, object]:
        module = request.module or DEFAULT_MODULE
        instance = self._resolver.resolve(module)
        transport = self._transport_for(module)
        frame = transport.sign(
            kind=KIND_REQUEST,
            payload_bytes=encode_call(
                service=request.service,
                method=request.method,
                namespace=request.namespace,
                module=module,
                args=request.args,
                user=request.user,
            ),
        )
        host, port = instance.rpc_address
        try:
            response = transport.request(host, port, frame)
        except (TransportError, OSError) as exc:
            if self._log_sink is not None:
                self._log_sink.log(
                    Severity.ERROR,
                    f"call {request.service}.{request.method} to module '{module}' failed in transport",
                    module=module,
                    error=type(exc).__name__,
                )
            raise CallError(
                f"{request.service}.{request.method} transport failure: {type(exc).__name__}: {exc}",
                code="call.transport",
            ) from exc
        return decode_response(response.payload_bytes)

    def _transport_for(self, module: str) -> FramedTcpTransport:
        transport = self._transports.get(module)
        if transport is None:
            transport = FramedTcpTransport(
                TransportConfig(
                    secret=self._keys.module_secret(module),
                    io_timeout_seconds=self._io_timeout_seconds,
                )
            )
            self._transports[module] = transport
        return transport
