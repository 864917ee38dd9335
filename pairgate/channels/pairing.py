"""Pairing support for channel plugins."""

import httpx
from loguru import logger

from pairgate.config.schema import Config

TELEGRAM_API_BASE = "https://api.telegram.org"
PAIRING_APPROVED_MESSAGE = "✅ Access approved! Send a message to start chatting."


class ChannelPairingAdapter:
    """
    Pairing hooks a channel plugin exposes.

    Subclasses set ``channel`` and override ``notify_approval`` when the
    channel can message the approved sender.
    """

    channel: str = ""

    def normalize_allow_entry(self, entry: str) -> str:
        """Strip channel prefixes such as ``telegram:`` from an allow entry."""
        entry = entry.strip()
        prefix = f"{self.channel}:"
        if entry.lower().startswith(prefix):
            return entry[len(prefix):]
        return entry

    @property
    def supports_notify(self) -> bool:
        return type(self).notify_approval is not ChannelPairingAdapter.notify_approval

    async def notify_approval(self, config: Config, id: str) -> None:
        """Tell the approved sender they now have access."""
        return None


class TelegramPairingAdapter(ChannelPairingAdapter):
    """Sends the approval notice through the Telegram Bot API."""

    channel = "telegram"

    def __init__(
        self,
        api_base: str = TELEGRAM_API_BASE,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def normalize_allow_entry(self, entry: str) -> str:
        entry = super().normalize_allow_entry(entry)
        if entry.lower().startswith("tg:"):
            entry = entry[3:]
        return entry

    async def notify_approval(self, config: Config, id: str) -> None:
        token = config.channels.telegram.token
        if not token:
            raise RuntimeError("telegram token not configured")

        url = f"{self.api_base}/bot{token}/sendMessage"
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            response = await client.post(url, json={
                "chat_id": id,
                "text": PAIRING_APPROVED_MESSAGE,
            })
            response.raise_for_status()


class WhatsAppPairingAdapter(ChannelPairingAdapter):
    """WhatsApp pairs through the bridge and has no approval notice."""

    channel = "whatsapp"

    def normalize_allow_entry(self, entry: str) -> str:
        entry = super().normalize_allow_entry(entry)
        return entry.replace(" ", "")


_PAIRING_ADAPTERS: dict[str, ChannelPairingAdapter] = {}


def register_pairing_adapter(adapter: ChannelPairingAdapter) -> None:
    """Register (or replace) the pairing adapter for ``adapter.channel``."""
    if not adapter.channel:
        raise ValueError("pairing adapter must declare a channel")
    _PAIRING_ADAPTERS[adapter.channel] = adapter
    logger.debug(f"Registered pairing adapter for {adapter.channel}")


def get_pairing_adapter(channel: str) -> ChannelPairingAdapter | None:
    return _PAIRING_ADAPTERS.get(channel)


def list_pairing_channels() -> list[str]:
    """Channel ids with a registered pairing adapter, in registration order."""
    return list(_PAIRING_ADAPTERS)


def normalize_allow_entry(channel_id: str, entry: str) -> str:
    """Allow-list form of a sender id; channels without an adapter only trim."""
    adapter = get_pairing_adapter(channel_id)
    if adapter is None:
        return entry.strip()
    return adapter.normalize_allow_entry(entry)


async def notify_pairing_approved(channel_id: str, id: str, config: Config) -> None:
    """
    Notify the approved sender through its channel.

    Raises ValueError when the channel has no pairing adapter. Adapters
    without a notification hook make this a no-op.
    """
    adapter = get_pairing_adapter(channel_id)
    if adapter is None:
        raise ValueError(f"Channel {channel_id} does not support pairing")
    if not adapter.supports_notify:
        return
    await adapter.notify_approval(config, id)


register_pairing_adapter(TelegramPairingAdapter())
register_pairing_adapter(WhatsAppPairingAdapter())
