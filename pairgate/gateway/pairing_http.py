"""HTTP API for channel pairing.

Endpoints:
    GET  {base_path}/{channel}/list     - List pending pairing requests
    POST {base_path}/{channel}/approve  - Approve a pairing code
"""

import json
from typing import Any

from aiohttp import web
from loguru import logger

from pairgate.gateway.auth import ResolvedGatewayAuth, authorize_http_request
from pairgate.pairing.channel import resolve_channel
from pairgate.pairing.workflow import (
    ApprovalWorkflow,
    PairingNotFoundError,
    PairingUnavailableError,
)

PAIRING_BASE_PATH = "/api/pairing"


def _json(status: int, body: dict[str, Any]) -> web.Response:
    return web.json_response(body, status=status)


def _error(status: int, message: str) -> web.Response:
    return _json(status, {"ok": False, "error": message})


async def _read_json_body(request: web.Request) -> dict[str, Any] | None:
    """Parse the body as a JSON object; None when it is anything else."""
    try:
        data = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    except web.HTTPRequestEntityTooLarge:
        logger.warning(f"Pairing request body from {request.remote} exceeds {request.client_max_size} bytes")
        return None
    return data if isinstance(data, dict) else None


class PairingHttpHandler:
    """
    aiohttp handler for the pairing REST routes.

    Requests carry no session, so each one passes the auth gate before any
    channel or action logic. No broadcast happens on this path.
    """

    def __init__(
        self,
        workflow: ApprovalWorkflow,
        auth: ResolvedGatewayAuth,
        trusted_proxies: list[str] | None = None,
        base_path: str = PAIRING_BASE_PATH,
    ):
        self.workflow = workflow
        self.auth = auth
        self.trusted_proxies = trusted_proxies or []
        self.base_path = "/" + base_path.strip("/")

    def register(self, app: web.Application) -> None:
        """Mount the handler on base_path and everything below it."""
        app.router.add_route("*", self.base_path, self.handle)
        app.router.add_route("*", self.base_path + "/{tail:.*}", self.handle)

    async def handle(self, request: web.Request) -> web.Response:
        parts = [p for p in request.path[len(self.base_path):].split("/") if p]
        if len(parts) != 2:
            return _error(404, "Not Found")

        channel_raw, action = parts

        auth_result = await authorize_http_request(request, self.auth, self.trusted_proxies)
        if not auth_result.ok:
            logger.warning(f"Rejected pairing request from {request.remote}: {auth_result.reason}")
            return _error(401, "Unauthorized")

        channel = resolve_channel(channel_raw)
        if channel is None:
            return _error(400, f"Invalid channel: {channel_raw}")

        if action == "list" and request.method == "GET":
            try:
                requests = await self.workflow.list_requests(channel)
            except PairingUnavailableError as e:
                return _error(500, str(e))
            return _json(200, {
                "ok": True,
                "channel": channel.value,
                "requests": [r.to_dict() for r in requests],
            })

        if action == "approve" and request.method == "POST":
            body = await _read_json_body(request)
            code = body.get("code") if body else None
            code = code.strip() if isinstance(code, str) else ""
            if not code:
                return _error(400, "code is required")

            try:
                result = await self.workflow.approve(channel, code, notify=body.get("notify") is True)
            except PairingNotFoundError:
                return _error(404, f"No pending pairing request found for code: {code}")
            except PairingUnavailableError as e:
                return _error(500, str(e))

            return _json(200, {"ok": True, **result.to_dict()})

        return _error(404, "Not Found")
