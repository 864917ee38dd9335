"""Pairing system for secure channel authorization."""

from pairgate.pairing.channel import PairingChannel, resolve_channel
from pairgate.pairing.store import FilePairingStore, PairingRequest
from pairgate.pairing.workflow import (
    ApprovalResult,
    ApprovalWorkflow,
    PairingError,
    PairingNotFoundError,
    PairingUnavailableError,
)

__all__ = [
    "PairingChannel",
    "resolve_channel",
    "FilePairingStore",
    "PairingRequest",
    "ApprovalResult",
    "ApprovalWorkflow",
    "PairingError",
    "PairingNotFoundError",
    "PairingUnavailableError",
]
