from sandbox_context.observability.adapters.logging import (
    JsonlLogSink,
    Reporter,
    ReporterLogSink,
    StdoutLogSink,
    build_exporters,
)

__all__ = ["JsonlLogSink", "Reporter", "ReporterLogSink", "StdoutLogSink", "build_exporters"]
