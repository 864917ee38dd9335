"""Event fan-out to connected gateway clients."""

import asyncio
import itertools
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from pairgate.gateway.protocol import event_frame

SLOW_CONSUMER_CLOSE_CODE = 1008


@dataclass
class GatewayClient:
    """A connected subscriber with a bounded outbound queue."""
    conn_id: str
    queue: asyncio.Queue
    closed: bool = False
    close_reason: str | None = None
    dropped: int = 0
    meta: dict[str, Any] = field(default_factory=dict)

    def close(self, reason: str) -> None:
        """Mark the client closed; the writer loop stops on the sentinel."""
        if self.closed:
            return
        self.closed = True
        self.close_reason = reason
        # Make room for the sentinel if the queue is full
        while True:
            try:
                self.queue.put_nowait(None)
                return
            except asyncio.QueueFull:
                self.queue.get_nowait()


class Broadcaster:
    """
    Pushes event frames to every connected client.

    Delivery never blocks the caller. When a client's queue is full the
    event is either dropped for that client (drop_if_slow) or the client is
    closed as a slow consumer.
    """

    def __init__(self, queue_size: int = 256):
        self.queue_size = queue_size
        self._clients: dict[str, GatewayClient] = {}
        self._seq = itertools.count(1)

    def connect(self, conn_id: str, **meta: Any) -> GatewayClient:
        client = GatewayClient(
            conn_id=conn_id,
            queue=asyncio.Queue(maxsize=self.queue_size),
            meta=meta,
        )
        self._clients[conn_id] = client
        return client

    def disconnect(self, conn_id: str) -> None:
        client = self._clients.pop(conn_id, None)
        if client:
            client.close("disconnected")

    @property
    def client_count(self) -> int:
        return len(self._clients)

    def broadcast(self, event: str, payload: Any, drop_if_slow: bool = False) -> int:
        """
        Queue an event frame for every client.

        Returns the number of clients the frame was queued for.
        """
        frame = event_frame(event, payload, next(self._seq))
        delivered = 0
        for client in list(self._clients.values()):
            if client.closed:
                continue
            try:
                client.queue.put_nowait(frame)
                delivered += 1
            except asyncio.QueueFull:
                if drop_if_slow:
                    client.dropped += 1
                    logger.debug(f"dropped {event} for slow client {client.conn_id}")
                    continue
                self.close_slow(client)
        return delivered

    def close_slow(self, client: GatewayClient) -> None:
        """Drop a client whose queue is full and mark it for a 1008 close."""
        logger.warning(f"closing slow gateway client {client.conn_id}")
        self._clients.pop(client.conn_id, None)
        client.close("slow consumer")

    def close_all(self) -> None:
        for conn_id in list(self._clients):
            self.disconnect(conn_id)
