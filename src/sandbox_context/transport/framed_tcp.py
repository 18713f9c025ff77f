from __future__ import annotations

import base64
import hashlib
import hmac
import json
import secrets
import socket
import time
from collections import deque
from dataclasses import dataclass, field, replace
from typing import Callable

LOCALHOST = "127.0.0.1"

KIND_REQUEST = "request"
KIND_RESPONSE = "response"


class TransportError(ValueError):
    # Base transport error for deterministic caller-side handling.
    pass


class BindPolicyError(TransportError):
    # Emulator traffic never leaves the loopback interface.
    pass


class MissingSignatureError(TransportError):
    pass


class InvalidSignatureError(TransportError):
    # HMAC signature mismatch (frame signed with another context's secret).
    pass


class TimestampExpiredError(TransportError):
    pass


class ReplayNonceError(TransportError):
    pass


class WirePayloadTooLargeError(TransportError):
    # Framed payload length exceeds configured max before decode.
    pass


class UnsupportedKindError(TransportError):
    pass


@dataclass(frozen=True, slots=True)
class TransportConfig:
    secret: bytes
    bind_host: str = LOCALHOST
    bind_port: int = 0
    ttl_seconds: int = 30
    nonce_cache_size: int = 4096
    max_payload_bytes: int = 4 * 1024 * 1024
    io_timeout_seconds: float = 10.0
    allowed_kinds: frozenset[str] = frozenset({KIND_REQUEST, KIND_RESPONSE})

    def __post_init__(self) -> None:
        if self.bind_host != LOCALHOST:
            raise BindPolicyError(f"bind_host must be {LOCALHOST}")
        if not isinstance(self.bind_port, int) or self.bind_port < 0 or self.bind_port > 65535:
            raise BindPolicyError("bind_port must be in range [0, 65535]")
        if not isinstance(self.secret, bytes) or not self.secret:
            raise BindPolicyError("secret must be non-empty bytes")
        if self.ttl_seconds <= 0:
            raise BindPolicyError("ttl_seconds must be > 0")
        if self.nonce_cache_size <= 0:
            raise BindPolicyError("nonce_cache_size must be > 0")
        if self.max_payload_bytes <= 0:
            raise BindPolicyError("max_payload_bytes must be > 0")
        if self.io_timeout_seconds <= 0:
            raise BindPolicyError("io_timeout_seconds must be > 0")
        if not self.allowed_kinds:
            raise BindPolicyError("allowed_kinds must not be empty")
        object.__setattr__(self, "allowed_kinds", frozenset(self.allowed_kinds))


@dataclass(frozen=True, slots=True)
class Frame:
    # One signed message; payload is opaque bytes (JSON for service calls).
    kind: str
    call_id: str
    payload_bytes: bytes
    headers: dict[str, str] = field(default_factory=dict)
    ts: int = 0
    nonce: str = ""
    sig: str = ""


class _ReplayGuard:
    # Fixed-size replay guard: rejects duplicate (nonce, ts) keys in acceptance window.
    def __init__(self, capacity: int) -> None:
        self._capacity = capacity
        self._queue: deque[tuple[str, int]] = deque()
        self._seen: set[tuple[str, int]] = set()

    def accept(self, nonce: str, ts: int) -> None:
        key = (nonce, ts)
        if key in self._seen:
            raise ReplayNonceError("replayed nonce detected")
        self._queue.append(key)
        self._seen.add(key)
        if len(self._queue) > self._capacity:
            oldest = self._queue.popleft()
            self._seen.remove(oldest)


class FramedTcpTransport:
    """Length-prefixed, HMAC-signed JSON frames over loopback TCP.

    A call is one connection: the client writes a ``request`` frame and reads
    exactly one ``response`` frame back. Both ends share the per-context secret,
    so an emulator rejects traffic from any other context.
    """

    def __init__(
        self,
        config: TransportConfig,
        *,
        now_fn: Callable[[], int] | None = None,
    ) -> None:
        self.config = config
        self._now_fn = now_fn or (lambda: int(time.time()))
        self._replay = _ReplayGuard(config.nonce_cache_size)

    def sign(
        self,
        *,
        kind: str,
        payload_bytes: bytes,
        call_id: str | None = None,
        headers: dict[str, str] | None = None,
        ts: int | None = None,
        nonce: str | None = None,
    ) -> Frame:
        frame = Frame(
            kind=kind,
            call_id=call_id or secrets.token_hex(8),
            payload_bytes=payload_bytes,
            headers=dict(headers or {}),
            ts=int(self._now_fn() if ts is None else ts),
            nonce=nonce or secrets.token_hex(16),
        )
        return replace(frame, sig=self._sign_canonical(frame))

    def open_listener(self) -> socket.socket:
        listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        listener.bind((self.config.bind_host, self.config.bind_port))
        listener.listen()
        return listener

    def request(self, host: str, port: int, frame: Frame) -> Frame:
        # Client side of one call: send request frame, wait for the matching response.
        if host != LOCALHOST:
            raise BindPolicyError(f"send host must be {LOCALHOST}")
        if not isinstance(port, int) or port <= 0 or port > 65535:
            raise BindPolicyError("send port must be in range [1, 65535]")
        with socket.create_connection((host, port), timeout=self.config.io_timeout_seconds) as conn:
            conn.sendall(self.encode_framed_message(frame))
            response = self.decode_framed_message(self._read_framed_message(conn))
        if response.kind != KIND_RESPONSE:
            raise UnsupportedKindError(f"expected response frame, got {response.kind}")
        if response.call_id != frame.call_id:
            raise TransportError("response call_id does not match request")
        return response

    def serve_connection(self, conn: socket.socket, handler: Callable[[Frame], bytes]) -> None:
        # Server side of one call; handler maps the request frame to response payload bytes.
        with conn:
            conn.settimeout(self.config.io_timeout_seconds)
            request = self.decode_framed_message(self._read_framed_message(conn))
            if request.kind != KIND_REQUEST:
                raise UnsupportedKindError(f"expected request frame, got {request.kind}")
            response = self.sign(kind=KIND_RESPONSE, payload_bytes=handler(request), call_id=request.call_id)
            conn.sendall(self.encode_framed_message(response))

    def encode_framed_message(self, frame: Frame) -> bytes:
        payload = json.dumps(self._wire_dict(frame), sort_keys=True, separators=(",", ":")).encode("utf-8")
        return len(payload).to_bytes(4, byteorder="big", signed=False) + payload

    def decode_framed_message(self, framed: bytes) -> Frame:
        if len(framed) < 4:
            raise TransportError("framed message must contain 4-byte length prefix")
        declared = int.from_bytes(framed[:4], byteorder="big", signed=False)
        if declared > self.config.max_payload_bytes:
            raise WirePayloadTooLargeError("framed payload exceeds max_payload_bytes")
        payload = framed[4:]
        if len(payload) != declared:
            raise TransportError("framed payload length does not match prefix")
        return self._decode_payload(payload)

    def _decode_payload(self, payload: bytes) -> Frame:
        wire = self._decode_wire_json(payload)

        sig = wire.get("sig")
        if not isinstance(sig, str) or not sig:
            raise MissingSignatureError("missing signature")

        frame = self._wire_to_frame(wire)
        if frame.kind not in self.config.allowed_kinds:
            raise UnsupportedKindError(f"unsupported kind: {frame.kind}")
        if abs(int(self._now_fn()) - frame.ts) > self.config.ttl_seconds:
            raise TimestampExpiredError("timestamp outside ttl window")

        expected = self._sign_canonical(replace(frame, sig=""))
        if not hmac.compare_digest(sig, expected):
            raise InvalidSignatureError("invalid signature")

        self._replay.accept(nonce=frame.nonce, ts=frame.ts)
        return frame

    def _read_framed_message(self, conn: socket.socket) -> bytes:
        header = self._read_exact(conn, 4)
        declared = int.from_bytes(header, byteorder="big", signed=False)
        if declared > self.config.max_payload_bytes:
            raise WirePayloadTooLargeError("framed payload exceeds max_payload_bytes")
        return header + self._read_exact(conn, declared)

    @staticmethod
    def _read_exact(conn: socket.socket, size: int) -> bytes:
        chunks: list[bytes] = []
        remaining = size
        while remaining > 0:
            chunk = conn.recv(remaining)
            if not chunk:
                raise TransportError("unexpected EOF while reading framed payload")
            chunks.append(chunk)
            remaining -= len(chunk)
        return b"".join(chunks)

    @staticmethod
    def _wire_dict(frame: Frame) -> dict[str, object]:
        return {
            "kind": frame.kind,
            "call_id": frame.call_id,
            "payload_b64": base64.b64encode(frame.payload_bytes).decode("ascii"),
            "headers": frame.headers,
            "ts": frame.ts,
            "nonce": frame.nonce,
            "sig": frame.sig,
        }

    @staticmethod
    def _decode_wire_json(payload: bytes) -> dict[str, object]:
        try:
            parsed = json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise TransportError("invalid wire payload json") from exc
        if not isinstance(parsed, dict):
            raise TransportError("wire payload must be a json object")
        return parsed

    @staticmethod
    def _wire_to_frame(wire: dict[str, object]) -> Frame:
        kind = wire.get("kind")
        if not isinstance(kind, str) or not kind:
            raise TransportError("kind must be a non-empty string")

        call_id = wire.get("call_id")
        if not isinstance(call_id, str) or not call_id:
            raise TransportError("call_id must be a non-empty string")

        payload_b64 = wire.get("payload_b64")
        if not isinstance(payload_b64, str):
            raise TransportError("payload_b64 must be a string")
        try:
            payload_bytes = base64.b64decode(payload_b64.encode("ascii"), validate=True)
        except (ValueError, UnicodeEncodeError) as exc:
            raise TransportError("payload_b64 is not valid base64") from exc

        headers_raw = wire.get("headers", {})
        if not isinstance(headers_raw, dict):
            raise TransportError("headers must be a mapping")
        headers: dict[str, str] = {}
        for key, value in headers_raw.items():
            if not isinstance(key, str) or not isinstance(value, str):
                raise TransportError("headers keys/values must be strings")
            headers[key] = value

        ts = wire.get("ts")
        if not isinstance(ts, int):
            raise TransportError("ts must be an integer")

        nonce = wire.get("nonce")
        if not isinstance(nonce, str) or not nonce:
            raise TransportError("nonce must be a non-empty string")

        sig = wire.get("sig")
        if not isinstance(sig, str):
            raise TransportError("sig must be a string")

        return Frame(
            kind=kind,
            call_id=call_id,
            payload_bytes=payload_bytes,
            headers=headers,
            ts=ts,
            nonce=nonce,
            sig=sig,
        )

    def _sign_canonical(self, frame: Frame) -> str:
        body = {
            "kind": frame.kind,
            "call_id": frame.call_id,
            "payload_b64": base64.b64encode(frame.payload_bytes).decode("ascii"),
            "headers": frame.headers,
            "ts": frame.ts,
            "nonce": frame.nonce,
        }
        canonical = json.dumps(body, sort_keys=True, separators=(",", ":")).encode("utf-8")
        return hmac.new(self.config.secret, canonical, digestmod=hashlib.sha256).hexdigest()
