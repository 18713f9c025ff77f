from __future__ import annotations

from threading import Lock

from sandbox_context.observability.domain.logging import LogMessage, Severity


class LogSink:
    """Severity-gated log channel shared by a Context and its emulator children.

    Direct calls are emitted when ``OFF < severity <= threshold``. Lines coming
    from an emulator process are only forwarded at the ``CHILD`` threshold.
    Every emission flips ``did_log_anything``; suppressed calls never do.
    """

    def __init__(self, threshold: Severity, sinks: list[object] | None = None) -> None:
        self._threshold = Severity.parse(threshold)
        self._sinks: list[object] = list(sinks or [])
        self._lock = Lock()
        self._wrote = False

    @property
    def threshold(self) -> Severity:
        return self._threshold

    @threshold.setter
    def threshold(self, value: Severity) -> None:
        self._threshold = Severity.parse(value)

    @property
    def did_log_anything(self) -> bool:
        return self._wrote

    def reset(self) -> None:
        with self._lock:
            self._wrote = False

    def enabled(self, severity: Severity) -> bool:
        if severity in (Severity.OFF, Severity.CHILD):
            return False
        return severity <= self._threshold

    def log(self, severity: Severity, message: str, **fields: object) -> bool:
        severity = Severity.parse(severity)
        if severity is Severity.CHILD:
            raise ValueError("CHILD is a threshold, not a call severity")
        if not self.enabled(severity):
            return False
        self._emit(LogMessage(level=severity.name.lower(), message=message, fields=dict(fields)))
        return True

    def forward_child(self, module: str, level: str, message: str) -> bool:
        # Emulator output is an opaque stream; it passes only when the threshold asks for it.
        if self._threshold is not Severity.CHILD or not message:
            return False
        self._emit(
            LogMessage(
                level=level or "info",
                message=message,
                fields={"module": module, "source": "child"},
            )
        )
        return True

    def close(self) -> None:
        with self._lock:
            sinks = list(self._sinks)
            self._sinks.clear()
        for sink in sinks:
            close = getattr(sink, "close", None)
            if callable(close):
                close()

    def _emit(self, message: LogMessage) -> None:
        with self._lock:
            self._wrote = True
            sinks = list(self._sinks)
        for sink in sinks:
            sink.emit(message)
