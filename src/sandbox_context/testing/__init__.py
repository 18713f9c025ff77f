from sandbox_context.testing.plugin import PytestReporter

__all__ = ["PytestReporter"]
