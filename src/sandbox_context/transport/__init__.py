from sandbox_context.transport.framed_tcp import (
    KIND_REQUEST,
    KIND_RESPONSE,
    LOCALHOST,
    BindPolicyError,
    Frame,
    FramedTcpTransport,
    InvalidSignatureError,
    MissingSignatureError,
    ReplayNonceError,
    TimestampExpiredError,
    TransportConfig,
    TransportError,
    UnsupportedKindError,
    WirePayloadTooLargeError,
)
from sandbox_context.transport.keys import ContextKeyMaterial, KeyMaterialError, generate_key_material

__all__ = [
    "KIND_REQUEST",
    "KIND_RESPONSE",
    "LOCALHOST",
    "BindPolicyError",
    "ContextKeyMaterial",
    "Frame",
    "FramedTcpTransport",
    "InvalidSignatureError",
    "KeyMaterialError",
    "MissingSignatureError",
    "ReplayNonceError",
    "TimestampExpiredError",
    "TransportConfig",
    "TransportError",
    "UnsupportedKindError",
    "WirePayloadTooLargeError",
    "generate_key_material",
]
