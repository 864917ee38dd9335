"""Transport-agnostic pairing approval workflow."""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Protocol

from loguru import logger

from pairgate.channels.pairing import notify_pairing_approved
from pairgate.config.loader import load_config
from pairgate.config.schema import Config
from pairgate.pairing.channel import PairingChannel
from pairgate.pairing.store import PairingRequest

PAIR_RESOLVED_EVENT = "channel.pair.resolved"

Notifier = Callable[[str, str, Config], Awaitable[None]]
Broadcast = Callable[..., Any]


class PairingRequestStore(Protocol):
    """What the workflow needs from a pairing store."""

    async def list_requests(self, channel: str) -> list[PairingRequest]: ...

    async def approve_code(self, channel: str, code: str) -> PairingRequest | None: ...


class PairingError(Exception):
    """Base error for the approval workflow."""


class PairingNotFoundError(PairingError):
    """Well-formed code with no matching pending request."""

    def __init__(self, code: str):
        super().__init__(f"no pending pairing request found for code: {code}")
        self.code = code


class PairingUnavailableError(PairingError):
    """The pairing store failed; the message is the underlying error text."""


@dataclass
class ApprovalResult:
    """Outcome of a successful approval."""
    channel: str
    id: str
    approved: bool = True
    notification: asyncio.Task | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"channel": self.channel, "id": self.id, "approved": self.approved}


class ApprovalWorkflow:
    """
    List and approve pending pairing requests.

    Shared by the gateway RPC methods, the HTTP API and the CLI. The only
    state held here is the set of notification tasks still running, so
    failures can be logged and shutdown can wait for them.
    """

    def __init__(
        self,
        store: PairingRequestStore,
        notifier: Notifier = notify_pairing_approved,
        config_loader: Callable[[], Config] = load_config,
    ):
        self.store = store
        self.notifier = notifier
        self.config_loader = config_loader
        self._notifications: set[asyncio.Task] = set()

    async def list_requests(self, channel: PairingChannel) -> list[PairingRequest]:
        """List pending requests; store failures raise PairingUnavailableError."""
        try:
            return await self.store.list_requests(channel.value)
        except Exception as e:
            raise PairingUnavailableError(str(e)) from e

    async def approve(
        self,
        channel: PairingChannel,
        code: str,
        notify: bool = False,
        broadcast: Broadcast | None = None,
    ) -> ApprovalResult:
        """
        Approve a pending pairing code.

        Args:
            channel: Resolved channel the code belongs to.
            code: Pairing code as supplied by the operator.
            notify: Start a notification to the approved sender.
            broadcast: Gateway event sink; None on transports without subscribers.

        Raises:
            PairingNotFoundError: No pending request matches the code.
            PairingUnavailableError: The store failed.
        """
        try:
            approved = await self.store.approve_code(channel.value, code)
        except Exception as e:
            raise PairingUnavailableError(str(e)) from e

        if approved is None:
            raise PairingNotFoundError(code)

        logger.info(f"channel pairing approved channel={channel.value} id={approved.id}")

        if broadcast is not None:
            self._emit_resolved(broadcast, channel.value, approved.id)

        notification = None
        if notify:
            notification = self._start_notification(channel.value, approved.id)

        return ApprovalResult(channel=channel.value, id=approved.id, notification=notification)

    def _emit_resolved(self, broadcast: Broadcast, channel: str, id: str) -> None:
        payload = {
            "channel": channel,
            "id": id,
            "decision": "approved",
            "ts": int(time.time() * 1000),
        }
        try:
            broadcast(PAIR_RESOLVED_EVENT, payload, drop_if_slow=True)
        except Exception as e:
            # Approval is already committed in the store
            logger.warning(f"failed to broadcast {PAIR_RESOLVED_EVENT}: {e}")

    def _start_notification(self, channel: str, id: str) -> asyncio.Task:
        task = asyncio.create_task(self._notify(channel, id), name=f"pairing-notify:{channel}:{id}")
        self._notifications.add(task)
        task.add_done_callback(self._notifications.discard)
        return task

    async def _notify(self, channel: str, id: str) -> bool:
        """Run one notification; never raises."""
        try:
            config = self.config_loader()
            await self.notifier(channel, id, config)
            return True
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"failed to notify pairing requester: {e}")
            return False

    @property
    def pending_notifications(self) -> int:
        return len(self._notifications)

    async def wait_for_notifications(self) -> None:
        """Wait for every in-flight notification to finish."""
        while self._notifications:
            await asyncio.gather(*list(self._notifications), return_exceptions=True)
