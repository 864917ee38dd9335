"""Configuration schema using Pydantic."""

from datetime import timedelta
from pathlib import Path
from typing import Literal
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings


class WhatsAppConfig(BaseModel):
    """WhatsApp channel configuration."""
    enabled: bool = False
    bridge_url: str = "ws://localhost:3001"
    allow_from: list[str] = Field(default_factory=list)  # Allowed phone numbers


class TelegramConfig(BaseModel):
    """Telegram channel configuration."""
    enabled: bool = False
    token: str = ""  # Bot token from @BotFather
    allow_from: list[str] = Field(default_factory=list)  # Allowed user IDs or usernames
    dm_policy: Literal["open", "pairing", "allowlist"] = "pairing"  # DM access policy


class ChannelsConfig(BaseModel):
    """Configuration for chat channels."""
    whatsapp: WhatsAppConfig = Field(default_factory=WhatsAppConfig)
    telegram: TelegramConfig = Field(default_factory=TelegramConfig)


class GatewayAuthConfig(BaseModel):
    """Gateway authentication."""
    mode: Literal["none", "token", "password"] = "token"
    token: str = ""
    password: str = ""
    allow_tailscale: bool = False  # Trust Tailscale Serve identity headers on /ws


class PairingApiConfig(BaseModel):
    """Pairing HTTP API."""
    enabled: bool = True
    base_path: str = "/api/pairing"


class GatewayConfig(BaseModel):
    """Gateway/server configuration."""
    host: str = "0.0.0.0"
    port: int = 18790
    auth: GatewayAuthConfig = Field(default_factory=GatewayAuthConfig)
    trusted_proxies: list[str] = Field(default_factory=list)  # Reverse proxy IPs
    pairing: PairingApiConfig = Field(default_factory=PairingApiConfig)
    broadcast_queue_size: int = 256  # Per-client pending event frames


class PairingConfig(BaseModel):
    """Pairing store configuration."""
    credentials_dir: str = "~/.pairgate/credentials"
    ttl_minutes: int = 60
    max_pending: int = 3


class Config(BaseSettings):
    """Root configuration for pairgate."""
    channels: ChannelsConfig = Field(default_factory=ChannelsConfig)
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    pairing: PairingConfig = Field(default_factory=PairingConfig)

    @property
    def credentials_path(self) -> Path:
        """Get expanded credentials path."""
        return Path(self.pairing.credentials_dir).expanduser()

    @property
    def pairing_ttl(self) -> timedelta:
        return timedelta(minutes=self.pairing.ttl_minutes)

    class Config:
        env_prefix = "PAIRGATE_"
        env_nested_delimiter = "__"
