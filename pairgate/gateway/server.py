"""HTTP and WebSocket server for the pairing gateway."""

import asyncio
import json
import secrets
from typing import Any

from aiohttp import WSMsgType, web
from loguru import logger

from pairgate.config.schema import Config
from pairgate.gateway.auth import ResolvedGatewayAuth, authorize_http_request
from pairgate.gateway.broadcast import SLOW_CONSUMER_CLOSE_CODE, Broadcaster, GatewayClient
from pairgate.gateway.methods import GatewayRequestContext, handle_gateway_request
from pairgate.gateway.pairing_http import PairingHttpHandler
from pairgate.gateway.protocol import ErrorCodes, error_shape, response_frame
from pairgate.pairing.store import FilePairingStore
from pairgate.pairing.workflow import ApprovalWorkflow


class GatewayServer:
    """
    HTTP API server for operators and connected gateway clients.

    Provides endpoints for:
    - Health check (GET /health)
    - Gateway RPC and events (GET /ws, WebSocket)
    - Pairing REST API (GET/POST {base_path}/{channel}/{action})
    """

    def __init__(
        self,
        config: Config | None = None,
        workflow: ApprovalWorkflow | None = None,
        host: str | None = None,
        port: int | None = None,
    ):
        """
        Initialize the gateway server.

        Args:
            config: Loaded configuration; defaults are used when omitted.
            workflow: Approval workflow; built over the file store when omitted.
            host: Host to bind to, overriding config.
            port: Port to listen on, overriding config.
        """
        self.config = config or Config()
        self.host = host or self.config.gateway.host
        self.port = port if port is not None else self.config.gateway.port
        self.workflow = workflow or ApprovalWorkflow(FilePairingStore(
            credentials_dir=self.config.credentials_path,
            ttl=self.config.pairing_ttl,
            max_pending=self.config.pairing.max_pending,
        ))
        self.auth = ResolvedGatewayAuth.from_config(self.config.gateway.auth)
        self.trusted_proxies = list(self.config.gateway.trusted_proxies)
        self.broadcaster = Broadcaster(queue_size=self.config.gateway.broadcast_queue_size)
        self._sockets: set[web.WebSocketResponse] = set()
        self._in_flight: set[asyncio.Task] = set()
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None

    def create_app(self) -> web.Application:
        """Create the aiohttp application."""
        app = web.Application()
        app.router.add_get("/health", self._handle_health)
        app.router.add_get("/ws", self._handle_ws)
        if self.config.gateway.pairing.enabled:
            PairingHttpHandler(
                workflow=self.workflow,
                auth=self.auth,
                trusted_proxies=self.trusted_proxies,
                base_path=self.config.gateway.pairing.base_path,
            ).register(app)
        app.on_shutdown.append(self._on_shutdown)
        return app

    async def _handle_health(self, request: web.Request) -> web.Response:
        """Health check endpoint."""
        return web.json_response({"status": "ok", "clients": self.broadcaster.client_count})

    async def _handle_ws(self, request: web.Request) -> web.StreamResponse:
        """
        Gateway connection.

        Inbound text frames are ``req`` frames; each is handled in its own
        task so a slow store call does not block the socket, and a
        disconnect does not cancel a call already in flight.
        """
        auth_result = await authorize_http_request(
            request,
            self.auth,
            self.trusted_proxies,
            allow_tailscale=self.auth.allow_tailscale,
        )
        if not auth_result.ok:
            logger.warning(f"Rejected gateway connection from {request.remote}: {auth_result.reason}")
            return web.json_response({"ok": False, "error": "Unauthorized"}, status=401)

        ws = web.WebSocketResponse(heartbeat=30.0)
        await ws.prepare(request)

        conn_id = secrets.token_hex(8)
        client = self.broadcaster.connect(conn_id, remote=request.remote, auth_method=auth_result.method)
        self._sockets.add(ws)
        writer = asyncio.create_task(self._write_loop(ws, client))
        context = GatewayRequestContext(
            workflow=self.workflow,
            broadcast=self.broadcaster.broadcast,
            conn_id=conn_id,
            meta={"remote": request.remote, "auth_method": auth_result.method},
        )
        logger.info(f"Gateway client {conn_id} connected from {request.remote} ({auth_result.method})")

        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    task = asyncio.create_task(self._handle_text(msg.data, context, client))
                    self._in_flight.add(task)
                    task.add_done_callback(self._in_flight.discard)
                elif msg.type == WSMsgType.ERROR:
                    logger.warning(f"Gateway client {conn_id} error: {ws.exception()}")
        finally:
            self.broadcaster.disconnect(conn_id)
            self._sockets.discard(ws)
            await writer
            logger.info(f"Gateway client {conn_id} disconnected")

        return ws

    async def _handle_text(self, data: str, context: GatewayRequestContext, client: GatewayClient) -> None:
        try:
            frame = json.loads(data)
        except json.JSONDecodeError:
            response = response_frame(None, False, error=error_shape(ErrorCodes.INVALID_REQUEST, "invalid JSON"))
        else:
            response = await handle_gateway_request(frame, context)

        if client.closed:
            return
        try:
            client.queue.put_nowait(response)
        except asyncio.QueueFull:
            self.broadcaster.close_slow(client)

    async def _write_loop(self, ws: web.WebSocketResponse, client: GatewayClient) -> None:
        """Drain the client's queue onto the socket until the close sentinel."""
        while True:
            frame: dict[str, Any] | None = await client.queue.get()
            if frame is None:
                break
            try:
                await ws.send_json(frame)
            except (ConnectionResetError, RuntimeError) as e:
                logger.debug(f"Gateway client {client.conn_id} send failed: {e}")
                self.broadcaster.disconnect(client.conn_id)
                break

        if client.close_reason == "slow consumer" and not ws.closed:
            await ws.close(code=SLOW_CONSUMER_CLOSE_CODE, message=b"slow consumer")

    async def _on_shutdown(self, app: web.Application) -> None:
        self.broadcaster.close_all()
        for ws in list(self._sockets):
            await ws.close(code=1001, message=b"server shutdown")

    async def start(self) -> None:
        """Start the HTTP server."""
        self._app = self.create_app()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self.host, self.port)
        await self._site.start()
        logger.info(f"Gateway API listening on http://{self.host}:{self.port}")

    async def stop(self) -> None:
        """Stop the HTTP server and wait for pending notifications."""
        if self._site:
            await self._site.stop()
        if self._runner:
            await self._runner.cleanup()
        if self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)
        await self.workflow.wait_for_notifications()
        logger.info("Gateway API stopped")
