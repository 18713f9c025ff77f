from __future__ import annotations

import json
import urllib.error
import urllib.request
from pathlib import Path

import pytest

from sandbox_context.config.models import HandlerDecl, ModuleDefinition
from sandbox_context.emulator.http_server import HEALTH_PATH, ModuleHttpServer
from sandbox_context.emulator.process import EmulatorBundle, load_bundle_definition
from sandbox_context.emulator.rpc_server import RpcServer
from sandbox_context.emulator.services import EmulatorServices
from sandbox_context.errors import ConfigError
from sandbox_context.transport.calls import encode_call
from sandbox_context.transport.framed_tcp import Frame, FramedTcpTransport, TransportConfig, TransportError


def _rpc_server(log: list[tuple[str, str]] | None = None) -> RpcServer:
    transport = FramedTcpTransport(TransportConfig(secret=b"module-secret"))
    sink = log if log is not None else []
    return RpcServer(
        transport,
        EmulatorServices(queue_names=["default"]),
        module="default",
        log=lambda level, message: sink.append((level, message)),
    )


def _frame_payload(**call: object) -> bytes:
    defaults: dict[str, object] = {"namespace": "", "module": "default", "args": {}, "user": None}
    defaults.update(call)
    return encode_call(**defaults)


def test_rpc_server_handle_returns_result_payload() -> None:
    # EMU-01: handled calls answer with an ok payload.
    server = _rpc_server()
    transport = FramedTcpTransport(TransportConfig(secret=b"module-secret"))
    frame = transport.sign(
        kind="request",
        payload_bytes=_frame_payload(service="memcache", method="set", args={"key": "k", "value": "dg=="}),
    )

    assert json.loads(server.handle(frame)) == {"ok": True, "result": {}}


def test_rpc_server_handle_maps_service_errors_to_codes() -> None:
    # EMU-02: service failures become coded failure payloads.
    server = _rpc_server()
    transport = FramedTcpTransport(TransportConfig(secret=b"module-secret"))
    frame = transport.sign(
        kind="request",
        payload_bytes=_frame_payload(service="memcache", method="get", args={"key": "missing"}),
    )

    body = json.loads(server.handle(frame))
    assert body["ok"] is False
    assert body["code"] == "memcache.cache_miss"


def test_rpc_server_handle_rejects_bad_payload() -> None:
    # EMU-03: non-json request payloads are bad requests.
    server = _rpc_server()
    transport = FramedTcpTransport(TransportConfig(secret=b"module-secret"))
    frame = transport.sign(kind="request", payload_bytes=b"\xff")

    assert json.loads(server.handle(frame))["code"] == "call.bad_request"


def test_rpc_server_serves_over_tcp_and_logs_rejections() -> None:
    # EMU-04: running server answers signed calls and logs frames signed with another secret.
    log: list[tuple[str, str]] = []
    server = _rpc_server(log)
    try:
        port = server.start()
    except PermissionError:
        pytest.skip("AF_INET socket creation is not permitted in this sandbox")
    try:
        client = FramedTcpTransport(TransportConfig(secret=b"module-secret"))
        request = client.sign(
            kind="request",
            payload_bytes=_frame_payload(service="taskqueue", method="stats", args={"queues": ["default"]}),
        )
        response = client.request("127.0.0.1", port, request)
        body = json.loads(response.payload_bytes)
        assert body["result"]["stats"][0]["tasks"] == 0

        intruder = FramedTcpTransport(TransportConfig(secret=b"other-secret"))
        with pytest.raises((TransportError, OSError)):
            intruder.request("127.0.0.1", port, intruder.sign(kind="request", payload_bytes=b"{}"))
    finally:
        server.stop()

    assert any(level == "warning" and "InvalidSignatureError" in message for level, message in log)


def test_http_server_serves_declared_handlers_and_health() -> None:
    # EMU-05: declared handlers answer with their body; health check is always present.
    definition = ModuleDefinition(handlers=[HandlerDecl(url="/test", body="hello from custom")])
    try:
        server = ModuleHttpServer(definition, module="custom")
    except PermissionError:
        pytest.skip("AF_INET socket creation is not permitted in this sandbox")
    port = server.start()
    try:
        with urllib.request.urlopen(f"http://127.0.0.1:{port}/test", timeout=5) as response:
            assert response.status == 200
            assert response.read() == b"hello from custom"
        with urllib.request.urlopen(f"http://127.0.0.1:{port}{HEALTH_PATH}", timeout=5) as response:
            assert response.read() == b"ok"
        with pytest.raises(urllib.error.HTTPError) as excinfo:
            urllib.request.urlopen(f"http://127.0.0.1:{port}/missing", timeout=5)
        assert excinfo.value.code == 404
        excinfo.value.close()
    finally:
        server.stop()


def test_http_server_stop_without_start() -> None:
    # EMU-06: stopping a server that never started returns promptly.
    try:
        server = ModuleHttpServer(None, module="default")
    except PermissionError:
        pytest.skip("AF_INET socket creation is not permitted in this sandbox")
    server.stop()


def _bundle(path: str | None, app_id: str = "app", module: str = "custom") -> EmulatorBundle:
    return EmulatorBundle(module=module, app_id=app_id, config_path=path, queue_names=("default",), secret=b"s")


def test_load_bundle_definition_missing_path(tmp_path: Path) -> None:
    # EMU-07: a configuration path that does not exist is a config failure.
    with pytest.raises(ConfigError, match="does not exist"):
        load_bundle_definition(_bundle(str(tmp_path / "missing.yaml")))


def test_load_bundle_definition_checks_application(tmp_path: Path) -> None:
    # EMU-08: the module YAML application must match the harness app id.
    path = tmp_path / "custom.yaml"
    path.write_text("application: other\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="application"):
        load_bundle_definition(_bundle(str(path)))


def test_load_bundle_definition_checks_module_name(tmp_path: Path) -> None:
    # EMU-09: a module YAML naming another module is rejected.
    path = tmp_path / "custom.yaml"
    path.write_text("application: app\nmodule: billing\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="declares module 'billing'"):
        load_bundle_definition(_bundle(str(path)))


def test_load_bundle_definition_without_path() -> None:
    # EMU-10: the implicit default module has no definition file.
    assert load_bundle_definition(_bundle(None, module="default")) is None


class _FaultyServices(EmulatorServices):
    # memcache.boom raises a plain exception instead of a ServiceError.
    def dispatch(self, service: str, method: str, namespace: str, args: dict[str, object]) -> dict[str, object]:
        if (service, method) == ("memcache", "boom"):
            raise RuntimeError("handler exploded")
        return super().dispatch(service, method, namespace, args)


class _OnceBrokenRpcServer(RpcServer):
    # The first connection fails outside the service layer; later ones are served normally.
    def __init__(self, *args: object, **kwargs: object) -> None:
        super().__init__(*args, **kwargs)
        self.failures_left = 1

    def handle(self, frame: Frame) -> bytes:
        if self.failures_left:
            self.failures_left -= 1
            raise KeyError("broken connection handler")
        return super().handle(frame)


def test_rpc_server_handle_maps_unexpected_errors_to_call_failed() -> None:
    # EMU-11: a handler exception becomes a call.failed response and is logged.
    log: list[tuple[str, str]] = []
    server = RpcServer(
        FramedTcpTransport(TransportConfig(secret=b"module-secret")),
        _FaultyServices(queue_names=["default"]),
        module="default",
        log=lambda level, message: log.append((level, message)),
    )
    transport = FramedTcpTransport(TransportConfig(secret=b"module-secret"))
    frame = transport.sign(kind="request", payload_bytes=_frame_payload(service="memcache", method="boom"))

    body = json.loads(server.handle(frame))
    assert body["ok"] is False
    assert body["code"] == "call.failed"
    assert "RuntimeError" in body["message"]
    assert any(level == "error" and "handler exploded" in message for level, message in log)


def test_rpc_server_keeps_serving_after_failed_calls() -> None:
    # EMU-12: neither a failing handler nor a failing connection stops the accept loop.
    log: list[tuple[str, str]] = []
    server = _OnceBrokenRpcServer(
        FramedTcpTransport(TransportConfig(secret=b"module-secret")),
        _FaultyServices(queue_names=["default"]),
        module="default",
        log=lambda level, message: log.append((level, message)),
    )
    try:
        port = server.start()
    except PermissionError:
        pytest.skip("AF_INET socket creation is not permitted in this sandbox")
    try:
        client = FramedTcpTransport(TransportConfig(secret=b"module-secret"))

        def call(method: str, args: dict[str, object]) -> dict[str, object]:
            payload = _frame_payload(service="memcache", method=method, args=args)
            request = client.sign(kind="request", payload_bytes=payload)
            return json.loads(client.request("127.0.0.1", port, request).payload_bytes)

        with pytest.raises((TransportError, OSError)):
            call("get", {"key": "k"})
        assert call("boom", {})["code"] == "call.failed"
        assert call("get", {"key": "k"})["code"] == "memcache.cache_miss"
    finally:
        server.stop()

    assert any(level == "error" and "KeyError" in message for level, message in log)
