"""NitroRPC wire codec.

Request frame:   {"req": [id, method, params, timestamp_ms], "sig": ["0x..."]}
Response frame:  {"res": [id, method, result, timestamp_ms], "sig": ["0x..."]}
Error response:  method == "error", result == {"error": "<message>"}
Push:            same as a response but id is 0 (or absent)

Signatures are computed over the compact JSON of the ``req`` array, so
``canonical_json`` must be byte-stable for a given payload.
"""

import json
from dataclasses import dataclass, field
from typing import Any

from src.pm_common.enums import RpcMethod
from src.pm_common.errors import ProtocolError


def canonical_json(payload: Any) -> str:
    """Compact, key-order-preserving JSON used for signing and framing."""
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


@dataclass(frozen=True)
class RpcRequest:
    request_id: int
    method: str
    params: dict[str, Any]
    timestamp: int

    def payload(self) -> list[Any]:
        return [self.request_id, self.method, self.params, self.timestamp]


@dataclass(frozen=True)
class RpcMessage:
    """Decoded inbound frame (response or push)."""

    request_id: int | None
    method: str
    result: Any
    timestamp: int | None = None
    signatures: tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_push(self) -> bool:
        return not self.request_id

    @property
    def is_error(self) -> bool:
        return self.method == RpcMethod.ERROR.value

    @property
    def error_message(self) -> str:
        if isinstance(self.result, dict):
            return str(self.result.get("error") or self.result.get("message") or self.result)
        return str(self.result)


def encode_request(request: RpcRequest, signatures: list[str] | None = None) -> str:
    return canonical_json({"req": request.payload(), "sig": list(signatures or [])})


def decode_message(raw: str | bytes) -> RpcMessage:
    """Decode one inbound frame. Raises ProtocolError on anything unparseable."""
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise ProtocolError(f"invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ProtocolError("frame is not a JSON object")

    sigs = tuple(str(s) for s in data.get("sig") or ())
    body = data.get("res")
    if body is None:
        # Legacy top-level error shape: {"id": 7, "error": {"message": "..."}}
        if "error" in data:
            err = data["error"]
            detail = err.get("message", err) if isinstance(err, dict) else err
            return RpcMessage(
                request_id=_as_request_id(data.get("id")),
                method=RpcMethod.ERROR.value,
                result={"error": str(detail)},
                signatures=sigs,
            )
        raise ProtocolError("frame has neither 'res' nor 'error'")

    if not isinstance(body, list) or len(body) < 3:
        raise ProtocolError("'res' must be [id, method, result, timestamp]")
    if not isinstance(body[1], str):
        raise ProtocolError("method must be a string")
    timestamp = body[3] if len(body) > 3 and isinstance(body[3], int) else None
    return RpcMessage(
        request_id=_as_request_id(body[0]),
        method=body[1],
        result=body[2],
        timestamp=timestamp,
        signatures=sigs,
    )


def _as_request_id(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ProtocolError(f"request id is not an integer: {value!r}") from e
