from __future__ import annotations

import json
from pathlib import Path
from typing import Protocol, runtime_checkable

from sandbox_context.observability.domain.logging import LogMessage


@runtime_checkable
class Reporter(Protocol):
    # Testing handle supplied by the caller; receives log lines and fatal setup diagnostics.
    def log(self, message: str) -> None:
        raise NotImplementedError("Reporter.log must be implemented")

    def fatal(self, message: str) -> None:
        raise NotImplementedError("Reporter.fatal must be implemented")


class StdoutLogSink:
    # Structured stdout sink, one JSON object per line.
    def emit(self, message: LogMessage) -> None:
        print(json.dumps(_log_to_dict(message), separators=(",", ":"), ensure_ascii=False))


class JsonlLogSink:
    # File-backed structured log sink for keeping a test run's harness output.
    def __init__(self, path: Path) -> None:
        self._path = path
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._file = self._path.open("a", encoding="utf-8")

    def emit(self, message: LogMessage) -> None:
        payload = json.dumps(_log_to_dict(message), separators=(",", ":"), ensure_ascii=False)
        self._file.write(payload + "\n")
        self._file.flush()

    def close(self) -> None:
        if not self._file.closed:
            self._file.close()


class ReporterLogSink:
    # Routes log records into the caller's testing handle as plain text lines.
    def __init__(self, reporter: Reporter) -> None:
        self._reporter = reporter

    def emit(self, message: LogMessage) -> None:
        self._reporter.log(format_log_line(message))


def build_exporters(exporters: list[dict[str, object]]) -> list[object]:
    # Exporter declarations: {"kind": "stdout"} or {"kind": "jsonl", "settings": {"path": ...}}.
    sinks: list[object] = []
    for index, exporter in enumerate(exporters):
        if not isinstance(exporter, dict):
            raise ValueError(f"log_exporters[{index}] must be a mapping")
        kind = exporter.get("kind")
        if kind == "stdout":
            sinks.append(StdoutLogSink())
            continue
        if kind != "jsonl":
            raise ValueError(f"log_exporters[{index}].kind must be one of: ['jsonl', 'stdout']")
        settings = exporter.get("settings", {})
        path = settings.get("path") if isinstance(settings, dict) else None
        if not isinstance(path, str) or not path:
            raise ValueError(f"log_exporters[{index}].settings.path must be a non-empty string")
        sinks.append(JsonlLogSink(Path(path)))
    return sinks


def format_log_line(message: LogMessage) -> str:
    source = message.fields.get("module")
    prefix = f"[{message.level}]" if source is None else f"[{message.level}] {source}:"
    return f"{prefix} {message.message}"


def _log_to_dict(message: LogMessage) -> dict[str, object]:
    return {
        "level": message.level,
        "message": message.message,
        "timestamp": message.timestamp.isoformat().replace("+00:00", "Z"),
        "fields": message.fields,
    }
