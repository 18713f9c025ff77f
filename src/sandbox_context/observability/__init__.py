from sandbox_context.observability.adapters.logging import (
    JsonlLogSink,
    Reporter,
    ReporterLogSink,
    StdoutLogSink,
    build_exporters,
)
from sandbox_context.observability.domain.logging import LogMessage, Severity
from sandbox_context.observability.log_sink import LogSink

__all__ = [
    "JsonlLogSink",
    "LogMessage",
    "LogSink",
    "Reporter",
    "ReporterLogSink",
    "Severity",
    "StdoutLogSink",
    "build_exporters",
]
