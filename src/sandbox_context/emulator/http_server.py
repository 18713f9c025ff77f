from __future__ import annotations

import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import urlsplit

from sandbox_context.config.models import HandlerDecl, ModuleDefinition
from sandbox_context.emulator.rpc_server import LogFn
from sandbox_context.transport.framed_tcp import LOCALHOST

HEALTH_PATH = "/_ah/health"


def _build_handler(routes: dict[str, HandlerDecl], module: str, log: LogFn) -> type[BaseHTTPRequestHandler]:
    class _ModuleRequestHandler(BaseHTTPRequestHandler):
        server_version = "sandbox-context"

        def do_GET(self) -> None:  # noqa: N802 - http.server naming
            self._respond()

        def do_POST(self) -> None:  # noqa: N802 - http.server naming
            length = int(self.headers.get("Content-Length") or 0)
            if length:
                self.rfile.read(length)
            self._respond()

        def log_message(self, format: str, *args: object) -> None:  # noqa: A002 - stdlib signature
            log("debug", f"http {module}: {format % args}")

        def _respond(self) -> None:
            path = urlsplit(self.path).path
            if path == HEALTH_PATH:
                self._write(200, "ok", "text/plain; charset=utf-8")
                return
            route = routes.get(path)
            if route is None:
                self._write(404, "not found", "text/plain; charset=utf-8")
                return
            self._write(route.status, route.body, route.content_type)

        def _write(self, status: int, body: str, content_type: str) -> None:
            data = body.encode("utf-8")
            self.send_response(status)
            self.send_header("Content-Type", content_type)
            self.send_header("Content-Length", str(len(data)))
            self.end_headers()
            self.wfile.write(data)

    return _ModuleRequestHandler


class ModuleHttpServer:
    # Serves the static handlers declared in a module definition on an ephemeral loopback port.
    def __init__(self, definition: ModuleDefinition | None, *, module: str, log: LogFn | None = None) -> None:
        routes = {handler.url: handler for handler in (definition.handlers if definition else [])}
        handler_cls = _build_handler(routes, module, log or (lambda _level, _message: None))
        self._server = ThreadingHTTPServer((LOCALHOST, 0), handler_cls)
        self._server.daemon_threads = True
        self._thread = threading.Thread(
            target=self._server.serve_forever,
            kwargs={"poll_interval": 0.1},
            name=f"http:{module}",
            daemon=True,
        )

    @property
    def port(self) -> int:
        return int(self._server.server_address[1])

    def start(self) -> int:
        self._thread.start()
        return self.port

    def stop(self, timeout_seconds: float = 1.0) -> None:
        # shutdown() waits for serve_forever, so it only applies to a started server.
        if self._thread.is_alive():
            self._server.shutdown()
            self._thread.join(timeout=timeout_seconds)
        self._server.server_close()
