"""Gateway RPC frame shapes and error codes."""

from dataclasses import dataclass
from typing import Any


class ErrorCodes:
    """Machine-readable error codes returned in response frames."""
    INVALID_REQUEST = "INVALID_REQUEST"
    UNAVAILABLE = "UNAVAILABLE"


@dataclass
class ErrorShape:
    """Error carried by a failed response."""
    code: str
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message}


def error_shape(code: str, message: str) -> ErrorShape:
    return ErrorShape(code=code, message=message)


def response_frame(
    request_id: str | None,
    ok: bool,
    payload: Any = None,
    error: ErrorShape | None = None,
) -> dict[str, Any]:
    """Build a ``res`` frame for a request id."""
    frame: dict[str, Any] = {"type": "res", "id": request_id, "ok": ok}
    if payload is not None:
        frame["payload"] = payload
    if error is not None:
        frame["error"] = error.to_dict()
    return frame


def event_frame(event: str, payload: Any, seq: int) -> dict[str, Any]:
    """Build an ``event`` frame pushed to subscribers."""
    return {"type": "event", "event": event, "payload": payload, "seq": seq}
