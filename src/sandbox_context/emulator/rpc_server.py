from __future__ import annotations

import json
import socket
import threading
from collections.abc import Callable

from sandbox_context.emulator.services import EmulatorServices, ServiceError
from sandbox_context.transport.calls import encode_failure, encode_result
from sandbox_context.transport.framed_tcp import Frame, FramedTcpTransport, TransportError

LogFn = Callable[[str, str], None]


class RpcServer:
    """Accept loop answering signed service calls for one emulator instance.

    Connections are handled one at a time on a background thread; a call
    never outlives its connection.
    """

    def __init__(
        self,
        transport: FramedTcpTransport,
        services: EmulatorServices,
        *,
        module: str,
        log: LogFn | None = None,
    ) -> None:
        self._transport = transport
        self._services = services
        self._module = module
        self._log = log or (lambda _level, _message: None)
        self._listener: socket.socket | None = None
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()

    @property
    def port(self) -> int:
        if self._listener is None:
            raise RuntimeError("rpc server is not started")
        return int(self._listener.getsockname()[1])

    def start(self) -> int:
        listener = self._transport.open_listener()
        listener.settimeout(0.1)
        self._listener = listener
        self._thread = threading.Thread(target=self._accept_loop, name=f"rpc:{self._module}", daemon=True)
        self._thread.start()
        return self.port

    def stop(self, timeout_seconds: float = 1.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout_seconds)
        if self._listener is not None:
            self._listener.close()

    def handle(self, frame: Frame) -> bytes:
        # Request payload -> response payload; service failures become coded responses.
        try:
            call = json.loads(frame.payload_bytes.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            return encode_failure("call.bad_request", "request payload is not valid json")
        if not isinstance(call, dict):
            return encode_failure("call.bad_request", "request payload must be a json object")
        service = call.get("service")
        method = call.get("method")
        namespace = call.get("namespace", "")
        args = call.get("args", {})
        if not isinstance(service, str) or not isinstance(method, str):
            return encode_failure("call.bad_request", "service/method must be strings")
        if not isinstance(namespace, str) or not isinstance(args, dict):
            return encode_failure("call.bad_request", "namespace must be a string and args a mapping")

        self._log("debug", f"rpc {service}.{method} ns={namespace!r}")
        try:
            return encode_result(self._services.dispatch(service, method, namespace, args))
        except ServiceError as exc:
            self._log("debug", f"rpc {service}.{method} -> {exc.code}")
            return encode_failure(exc.code, exc.message)
        except Exception as exc:
            # A handler bug fails this call only; the server keeps serving.
            self._log("error", f"rpc {service}.{method} raised {type(exc).__name__}: {exc}")
            return encode_failure("call.failed", f"{service}.{method} failed: {type(exc).__name__}: {exc}")

    def _accept_loop(self) -> None:
        listener = self._listener
        if listener is None:
            return
        while not self._stop.is_set():
            try:
                conn, _ = listener.accept()
            except TimeoutError:
                continue
            except OSError:
                return
            try:
                self._transport.serve_connection(conn, self.handle)
            except (TransportError, OSError) as exc:
                # A rejected frame drops only that connection.
                self._log("warning", f"rpc connection rejected: {type(exc).__name__}: {exc}")
            except Exception as exc:
                self._log("error", f"rpc connection failed: {type(exc).__name__}: {exc}")
