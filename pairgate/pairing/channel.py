"""Channel identifier resolution for pairing requests."""

import re
from dataclasses import dataclass
from typing import Iterable

from pairgate.channels.pairing import list_pairing_channels

# Extension channels: plugins that are not registered here still pair if
# their identifier is well formed.
EXTENSION_CHANNEL_RE = re.compile(r"^[a-z][a-z0-9_-]{0,63}$")


@dataclass(frozen=True)
class PairingChannel:
    """A normalized channel identifier that passed resolution."""
    value: str
    known: bool = False

    def __str__(self) -> str:
        return self.value


def normalize_channel(raw: str) -> str:
    """Trim and lowercase a raw channel identifier."""
    return raw.strip().lower()


def resolve_channel(raw: str, known: Iterable[str] | None = None) -> PairingChannel | None:
    """
    Resolve a raw channel string into a PairingChannel.

    Registered channels are accepted on membership alone. Anything else must
    match EXTENSION_CHANNEL_RE. Returns None when the value is rejected.

    Args:
        raw: Channel identifier as supplied by the caller.
        known: Registered channel ids; defaults to the live plugin registry.
    """
    value = normalize_channel(raw)
    channels = list_pairing_channels() if known is None else list(known)

    if value in channels:
        return PairingChannel(value=value, known=True)

    # fullmatch so a trailing newline cannot slip past "$"
    if EXTENSION_CHANNEL_RE.fullmatch(value):
        return PairingChannel(value=value)

    return None
