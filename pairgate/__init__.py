"""pairgate - pairing approval gateway for chat channels."""

__version__ = "0.1.0"
__logo__ = "🔗"
