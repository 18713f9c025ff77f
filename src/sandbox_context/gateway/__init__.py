from sandbox_context.gateway.rpc import CallRequest, ModuleResolver, RPCGateway

__all__ = ["CallRequest", "ModuleResolver", "RPCGateway"]
