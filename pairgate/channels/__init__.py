"""Channel plugins: pairing registry and approval notifications."""

from pairgate.channels.pairing import (
    ChannelPairingAdapter,
    get_pairing_adapter,
    list_pairing_channels,
    normalize_allow_entry,
    notify_pairing_approved,
    register_pairing_adapter,
)

__all__ = [
    "ChannelPairingAdapter",
    "get_pairing_adapter",
    "list_pairing_channels",
    "normalize_allow_entry",
    "notify_pairing_approved",
    "register_pairing_adapter",
]
