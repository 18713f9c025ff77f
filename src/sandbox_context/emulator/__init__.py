from sandbox_context.emulator.process import EmulatorBundle, run_emulator
from sandbox_context.emulator.rpc_server import RpcServer
from sandbox_context.emulator.services import EmulatorServices, ServiceError

__all__ = ["EmulatorBundle", "EmulatorServices", "RpcServer", "ServiceError", "run_emulator"]
