"""Gateway RPC methods for channel pairing."""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from loguru import logger

from pairgate.gateway.protocol import ErrorCodes, ErrorShape, error_shape, response_frame
from pairgate.pairing.channel import resolve_channel
from pairgate.pairing.workflow import (
    ApprovalWorkflow,
    Broadcast,
    PairingNotFoundError,
    PairingUnavailableError,
)

Respond = Callable[[bool, Any, ErrorShape | None], None]


@dataclass
class GatewayRequestContext:
    """What a method handler may touch besides its params."""
    workflow: ApprovalWorkflow
    broadcast: Broadcast
    conn_id: str | None = None
    meta: dict[str, Any] = field(default_factory=dict)


GatewayHandler = Callable[[Any, Respond, GatewayRequestContext], Awaitable[None]]


def _non_empty_str(value: Any) -> bool:
    return isinstance(value, str) and len(value.strip()) > 0


def validate_pair_list_params(params: Any) -> bool:
    return isinstance(params, dict) and _non_empty_str(params.get("channel"))


def validate_pair_approve_params(params: Any) -> bool:
    if not isinstance(params, dict):
        return False
    if not (_non_empty_str(params.get("channel")) and _non_empty_str(params.get("code"))):
        return False
    notify = params.get("notify")
    return notify is None or isinstance(notify, bool)


async def handle_pair_list(params: Any, respond: Respond, context: GatewayRequestContext) -> None:
    if not validate_pair_list_params(params):
        respond(False, None, error_shape(
            ErrorCodes.INVALID_REQUEST,
            "invalid channel.pair.list params: channel (string) required",
        ))
        return

    channel = resolve_channel(params["channel"])
    if channel is None:
        respond(False, None, error_shape(ErrorCodes.INVALID_REQUEST, f"invalid channel: {params['channel']}"))
        return

    try:
        requests = await context.workflow.list_requests(channel)
    except PairingUnavailableError as e:
        respond(False, None, error_shape(ErrorCodes.UNAVAILABLE, str(e)))
        return

    respond(True, {"channel": channel.value, "requests": [r.to_dict() for r in requests]}, None)


async def handle_pair_approve(params: Any, respond: Respond, context: GatewayRequestContext) -> None:
    if not validate_pair_approve_params(params):
        respond(False, None, error_shape(
            ErrorCodes.INVALID_REQUEST,
            "invalid channel.pair.approve params: channel (string) and code (string) required",
        ))
        return

    channel = resolve_channel(params["channel"])
    if channel is None:
        respond(False, None, error_shape(ErrorCodes.INVALID_REQUEST, f"invalid channel: {params['channel']}"))
        return

    try:
        result = await context.workflow.approve(
            channel,
            params["code"],
            notify=params.get("notify") is True,
            broadcast=context.broadcast,
        )
    except PairingNotFoundError as e:
        respond(False, None, error_shape(ErrorCodes.INVALID_REQUEST, str(e)))
        return
    except PairingUnavailableError as e:
        respond(False, None, error_shape(ErrorCodes.UNAVAILABLE, str(e)))
        return

    respond(True, result.to_dict(), None)


CHANNEL_PAIRING_HANDLERS: dict[str, GatewayHandler] = {
    "channel.pair.list": handle_pair_list,
    "channel.pair.approve": handle_pair_approve,
}


async def handle_gateway_request(
    frame: Any,
    context: GatewayRequestContext,
    handlers: dict[str, GatewayHandler] | None = None,
) -> dict[str, Any]:
    """
    Dispatch one ``req`` frame and return its ``res`` frame.

    Handler exceptions are converted to UNAVAILABLE errors so nothing
    propagates to the transport.
    """
    handlers = CHANNEL_PAIRING_HANDLERS if handlers is None else handlers

    if not isinstance(frame, dict) or frame.get("type") != "req" or not _non_empty_str(frame.get("method")):
        request_id = frame.get("id") if isinstance(frame, dict) else None
        return response_frame(request_id, False, error=error_shape(
            ErrorCodes.INVALID_REQUEST, "invalid request frame",
        ))

    request_id = frame.get("id")
    method = frame["method"]
    handler = handlers.get(method)
    if handler is None:
        return response_frame(request_id, False, error=error_shape(
            ErrorCodes.INVALID_REQUEST, f"unknown method: {method}",
        ))

    responses: list[dict[str, Any]] = []

    def respond(ok: bool, payload: Any = None, error: ErrorShape | None = None) -> None:
        if responses:
            logger.warning(f"{method} responded more than once")
            return
        responses.append(response_frame(request_id, ok, payload, error))

    try:
        await handler(frame.get("params"), respond, context)
    except Exception as e:
        logger.error(f"gateway method {method} failed: {e}")
        if not responses:
            respond(False, None, error_shape(ErrorCodes.UNAVAILABLE, str(e)))

    if not responses:
        return response_frame(request_id, False, error=error_shape(
            ErrorCodes.UNAVAILABLE, f"{method} did not respond",
        ))
    return responses[0]
