from sandbox_context.supervisor.instance import (
    STATUS_FAILED,
    STATUS_READY,
    STATUS_STARTING,
    STATUS_STOPPED,
    ModuleInstance,
)
from sandbox_context.supervisor.process_supervisor import ProcessSupervisor

__all__ = [
    "STATUS_FAILED",
    "STATUS_READY",
    "STATUS_STARTING",
    "STATUS_STOPPED",
    "ModuleInstance",
    "ProcessSupervisor",
]
