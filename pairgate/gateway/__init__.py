"""Gateway transports: RPC over WebSocket and the pairing HTTP API."""

from pairgate.gateway.server import GatewayServer

__all__ = ["GatewayServer"]
