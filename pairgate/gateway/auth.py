"""Gateway authorization: local-origin checks and token/password auth."""

import hmac
import ipaddress
from dataclasses import dataclass, replace
from typing import Literal

from aiohttp import web
from loguru import logger

from pairgate.config.schema import GatewayAuthConfig

GatewayAuthMode = Literal["none", "token", "password"]

LOCAL_HOSTNAMES = {"localhost", "127.0.0.1", "::1"}
FORWARDED_HEADERS = ("x-forwarded-for", "x-real-ip", "x-forwarded-host")


@dataclass
class ResolvedGatewayAuth:
    """Effective auth settings for one transport."""
    mode: GatewayAuthMode = "token"
    token: str | None = None
    password: str | None = None
    allow_tailscale: bool = False

    @classmethod
    def from_config(cls, cfg: GatewayAuthConfig) -> "ResolvedGatewayAuth":
        return cls(
            mode=cfg.mode,
            token=cfg.token or None,
            password=cfg.password or None,
            allow_tailscale=cfg.allow_tailscale,
        )


@dataclass
class ConnectAuth:
    """Credentials presented by a caller."""
    token: str | None = None
    password: str | None = None


@dataclass
class GatewayAuthResult:
    ok: bool
    method: str | None = None
    user: str | None = None
    reason: str | None = None


def _safe_equal(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def _first_header(request: web.BaseRequest, key: str) -> str | None:
    value = request.headers.get(key)
    if not value:
        return None
    return value.split(",")[0].strip() or None


def _parse_ip(value: str | None) -> ipaddress.IPv4Address | ipaddress.IPv6Address | None:
    if not value:
        return None
    candidate = value.strip()
    if candidate.startswith("[") and "]" in candidate:
        candidate = candidate[1:candidate.index("]")]
    try:
        ip = ipaddress.ip_address(candidate)
    except ValueError:
        return None
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped:
        return ip.ipv4_mapped
    return ip


def is_loopback_address(value: str | None) -> bool:
    ip = _parse_ip(value)
    return bool(ip and ip.is_loopback)


def is_trusted_proxy_address(value: str | None, trusted_proxies: list[str]) -> bool:
    """Check an address against trusted proxy IPs or CIDR ranges."""
    ip = _parse_ip(value)
    if not ip or not trusted_proxies:
        return False
    for entry in trusted_proxies:
        try:
            if ip in ipaddress.ip_network(entry.strip(), strict=False):
                return True
        except ValueError:
            logger.warning(f"Ignoring invalid trusted proxy entry: {entry}")
    return False


def _has_forwarded_headers(request: web.BaseRequest) -> bool:
    return any(request.headers.get(h) for h in FORWARDED_HEADERS)


def resolve_client_ip(request: web.BaseRequest, trusted_proxies: list[str]) -> str | None:
    """Client IP, honouring forwarding headers only from trusted proxies."""
    remote = request.remote
    if not is_trusted_proxy_address(remote, trusted_proxies):
        return remote
    return (
        _first_header(request, "x-forwarded-for")
        or _first_header(request, "x-real-ip")
        or remote
    )


def _is_local_host(raw_host: str | None) -> bool:
    if not raw_host:
        return False
    host = raw_host.strip().lower()
    if host.startswith("["):
        end = host.find("]")
        host = host[1:end] if end != -1 else host
    elif host.count(":") == 1:
        host = host.split(":")[0]
    return host in LOCAL_HOSTNAMES or is_loopback_address(host)


def is_local_direct_request(request: web.BaseRequest, trusted_proxies: list[str]) -> bool:
    """
    True when the request comes straight from this machine.

    Forwarded requests only count when the direct peer is a trusted proxy
    and the forwarded client is itself local.
    """
    if not is_loopback_address(resolve_client_ip(request, trusted_proxies)):
        return False

    if not _is_local_host(request.headers.get("host")):
        return False

    if not _has_forwarded_headers(request):
        return True
    return is_trusted_proxy_address(request.remote, trusted_proxies)


def get_bearer_token(request: web.BaseRequest) -> str | None:
    """Extract the token from ``Authorization: Bearer <token>``."""
    header = request.headers.get("authorization", "")
    scheme, _, token = header.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


def _tailscale_user(request: web.BaseRequest) -> str | None:
    """Identity set by Tailscale Serve, which proxies from loopback."""
    login = request.headers.get("tailscale-user-login", "").strip()
    if not login:
        return None
    if not is_loopback_address(request.remote):
        return None
    if not _has_forwarded_headers(request):
        return None
    return login


async def authorize_gateway_connect(
    auth: ResolvedGatewayAuth,
    connect_auth: ConnectAuth | None,
    request: web.BaseRequest | None = None,
    trusted_proxies: list[str] | None = None,
) -> GatewayAuthResult:
    """
    Authorize a gateway caller.

    Args:
        auth: Configured auth mode and secrets.
        connect_auth: Credentials the caller presented.
        request: Originating HTTP request, used for Tailscale identity.
        trusted_proxies: Proxy addresses allowed to set forwarding headers.
    """
    if auth.mode == "none":
        return GatewayAuthResult(ok=True, method="none")

    if auth.allow_tailscale and request is not None and not is_local_direct_request(request, trusted_proxies or []):
        user = _tailscale_user(request)
        if user:
            return GatewayAuthResult(ok=True, method="tailscale", user=user)

    connect_auth = connect_auth or ConnectAuth()

    if auth.mode == "token":
        if not auth.token:
            return GatewayAuthResult(ok=False, reason="token_missing_config")
        if not connect_auth.token:
            return GatewayAuthResult(ok=False, reason="token_missing")
        if not _safe_equal(connect_auth.token, auth.token):
            return GatewayAuthResult(ok=False, reason="token_mismatch")
        return GatewayAuthResult(ok=True, method="token")

    if auth.mode == "password":
        if not auth.password:
            return GatewayAuthResult(ok=False, reason="password_missing_config")
        if not connect_auth.password:
            return GatewayAuthResult(ok=False, reason="password_missing")
        if not _safe_equal(connect_auth.password, auth.password):
            return GatewayAuthResult(ok=False, reason="password_mismatch")
        return GatewayAuthResult(ok=True, method="password")

    return GatewayAuthResult(ok=False, reason="unauthorized")


async def authorize_http_request(
    request: web.BaseRequest,
    auth: ResolvedGatewayAuth,
    trusted_proxies: list[str],
    allow_tailscale: bool = False,
) -> GatewayAuthResult:
    """
    Gate for requests without a session: local callers pass, everyone else
    needs a bearer token, offered to the engine as both token and password.
    """
    if is_local_direct_request(request, trusted_proxies):
        return GatewayAuthResult(ok=True, method="local")

    token = get_bearer_token(request)
    if not token:
        return GatewayAuthResult(ok=False, reason="token_missing")

    return await authorize_gateway_connect(
        auth=replace(auth, allow_tailscale=allow_tailscale),
        connect_auth=ConnectAuth(token=token, password=token),
        request=request,
        trusted_proxies=trusted_proxies,
    )
