from __future__ import annotations

import json

from sandbox_context.errors import CallError, error_for_code

# Service call payloads carried inside request/response frames.


def encode_call(
    *,
    service: str,
    method: str,
    namespace: str,
    module: str,
    args: dict[str, object],
    user: dict[str, object] | None,
) -> bytes:
    body = {
        "service": service,
        "method": method,
        "namespace": namespace,
        "module": module,
        "args": args,
        "user": user,
    }
    try:
        encoded = json.dumps(body, separators=(",", ":"), default=_reject_value)
    except (TypeError, ValueError) as exc:
        message = f"{service}.{method} arguments are not json-serializable: {exc}"
        raise CallError(message, code="call.bad_request") from exc
    return encoded.encode("utf-8")


def _reject_value(value: object) -> object:
    # Arguments must be plain json; bytes and datetimes are encoded by the api layer.
    raise TypeError(f"unsupported value of type {type(value).__name__}")


def encode_result(result: dict[str, object]) -> bytes:
    return json.dumps({"ok": True, "result": result}, separators=(",", ":")).encode("utf-8")


def encode_failure(code: str, message: str) -> bytes:
    return json.dumps({"ok": False, "code": code, "message": message}, separators=(",", ":")).encode("utf-8")


def decode_response(payload: bytes) -> dict[str, object]:
    # Successful result dict, or the sentinel/generic CallError raised as-is.
    try:
        body = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise CallError("response payload is not valid json", code="call.bad_response") from exc
    if not isinstance(body, dict):
        raise CallError("response payload must be a json object", code="call.bad_response")
    if body.get("ok") is True:
        result = body.get("result", {})
        if not isinstance(result, dict):
            raise CallError("response result must be a json object", code="call.bad_response")
        return result
    code = body.get("code")
    message = body.get("message")
    if not isinstance(code, str) or not code:
        raise CallError("failure response carries no code", code="call.bad_response")
    raise error_for_code(code, message if isinstance(message, str) else code)
