from sandbox_context.observability.domain.logging import LogMessage, Severity

__all__ = ["LogMessage", "Severity"]
