from __future__ import annotations

import threading
from dataclasses import replace

import pytest

from sandbox_context.transport.framed_tcp import (
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


def _transport(
    *,
    now: int = 1_000_000,
    max_payload_bytes: int = 4096,
    secret: bytes = b"context-secret",
) -> FramedTcpTransport:
    return FramedTcpTransport(
        TransportConfig(
            secret=secret,
            ttl_seconds=30,
            nonce_cache_size=128,
            max_payload_bytes=max_payload_bytes,
        ),
        now_fn=lambda: now,
    )


def test_framed_transport_accepts_valid_signed_frame() -> None:
    # TCP-01: valid signed frame decodes with payload and metadata.
    transport = _transport()
    frame = transport.sign(kind="request", payload_bytes=b"hello", call_id="c1", headers={"x": "y"})

    decoded = transport.decode_framed_message(transport.encode_framed_message(frame))

    assert decoded.kind == "request"
    assert decoded.payload_bytes == b"hello"
    assert decoded.call_id == "c1"
    assert decoded.headers == {"x": "y"}


def test_framed_transport_request_response_over_localhost() -> None:
    # TCP-02: request() and serve_connection() complete one call over loopback TCP.
    server = _transport()
    client = _transport()
    try:
        listener = server.open_listener()
    except PermissionError:
        pytest.skip("AF_INET socket creation is not permitted in this sandbox")
    host, port = listener.getsockname()
    assert host == "127.0.0.1"

    seen: list[Frame] = []
    errors: list[Exception] = []

    def _serve() -> None:
        try:
            conn, _ = listener.accept()
            server.serve_connection(conn, lambda frame: seen.append(frame) or b"pong:" + frame.payload_bytes)
        except Exception as exc:  # pragma: no cover - test harness path
            errors.append(exc)

    thread = threading.Thread(target=_serve)
    thread.start()
    try:
        request = client.sign(kind="request", payload_bytes=b"ping", call_id="call-7")
        response = client.request("127.0.0.1", port, request)
    finally:
        thread.join(timeout=2)
        listener.close()

    assert not errors
    assert seen[0].payload_bytes == b"ping"
    assert response.kind == "response"
    assert response.call_id == "call-7"
    assert response.payload_bytes == b"pong:ping"


def test_framed_transport_rejects_frame_signed_with_other_secret() -> None:
    # TCP-03: a frame from another context's secret is rejected.
    sender = _transport(secret=b"context-a")
    receiver = _transport(secret=b"context-b")
    frame = sender.sign(kind="request", payload_bytes=b"hello")

    with pytest.raises(InvalidSignatureError):
        receiver.decode_framed_message(sender.encode_framed_message(frame))


def test_framed_transport_rejects_tampered_signature() -> None:
    # TCP-04: tampered signature rejected.
    transport = _transport()
    frame = replace(transport.sign(kind="request", payload_bytes=b"hello"), sig="deadbeef")

    with pytest.raises(InvalidSignatureError):
        transport.decode_framed_message(transport.encode_framed_message(frame))


def test_framed_transport_rejects_missing_signature() -> None:
    # TCP-05: unsigned frame rejected.
    transport = _transport()
    frame = replace(transport.sign(kind="request", payload_bytes=b"hello"), sig="")

    with pytest.raises(MissingSignatureError):
        transport.decode_framed_message(transport.encode_framed_message(frame))


def test_framed_transport_rejects_expired_timestamp() -> None:
    # TCP-06: frame outside the ttl window rejected.
    transport = _transport(now=100)
    frame = transport.sign(kind="request", payload_bytes=b"hello", ts=10)

    with pytest.raises(TimestampExpiredError):
        transport.decode_framed_message(transport.encode_framed_message(frame))


def test_framed_transport_rejects_replayed_nonce() -> None:
    # TCP-07: the same frame cannot be accepted twice.
    transport = _transport()
    framed = transport.encode_framed_message(transport.sign(kind="request", payload_bytes=b"x", nonce="n-1"))

    transport.decode_framed_message(framed)
    with pytest.raises(ReplayNonceError):
        transport.decode_framed_message(framed)


def test_framed_transport_rejects_oversized_payload_before_decode() -> None:
    # TCP-08: declared length above the limit fails before json decode.
    transport = _transport(max_payload_bytes=8)
    oversized = (9).to_bytes(4, byteorder="big", signed=False) + b"x" * 9

    with pytest.raises(WirePayloadTooLargeError):
        transport.decode_framed_message(oversized)


def test_framed_transport_rejects_length_mismatch() -> None:
    # TCP-09: truncated frames are rejected.
    transport = _transport()
    framed = transport.encode_framed_message(transport.sign(kind="request", payload_bytes=b"x"))

    with pytest.raises(TransportError, match="does not match prefix"):
        transport.decode_framed_message(framed[:-1])


def test_framed_transport_rejects_unsupported_kind() -> None:
    # TCP-10: only request/response kinds are accepted.
    transport = _transport()
    frame = transport.sign(kind="event", payload_bytes=b"x")

    with pytest.raises(UnsupportedKindError):
        transport.decode_framed_message(transport.encode_framed_message(frame))


def test_framed_transport_rejects_non_localhost_bind() -> None:
    # TCP-11: emulator traffic is loopback only.
    with pytest.raises(BindPolicyError):
        TransportConfig(secret=b"s", bind_host="0.0.0.0")


def test_framed_transport_rejects_invalid_bind_port() -> None:
    # TCP-12: bind port must be a valid TCP port.
    with pytest.raises(BindPolicyError):
        TransportConfig(secret=b"s", bind_port=70_000)


def test_framed_transport_request_rejects_remote_host() -> None:
    # TCP-13: client side refuses non-loopback destinations.
    transport = _transport()
    frame = transport.sign(kind="request", payload_bytes=b"x")

    with pytest.raises(BindPolicyError):
        transport.request("10.0.0.1", 8080, frame)
