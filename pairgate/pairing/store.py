"""File-backed pairing store for channel authorization."""

import asyncio
import json
import secrets
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path

from filelock import FileLock
from loguru import logger

# Constants
PAIRING_CODE_LENGTH = 8
PAIRING_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"  # No ambiguous chars (0O1I)
PAIRING_TTL = timedelta(hours=1)
PAIRING_MAX_PENDING = 3
LOCK_TIMEOUT_SECONDS = 10


@dataclass
class PairingRequest:
    """A pending pairing request."""
    id: str
    code: str
    created_at: str
    last_seen_at: str
    meta: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "PairingRequest":
        return cls(
            id=str(data["id"]),
            code=str(data["code"]),
            created_at=data["created_at"],
            last_seen_at=data.get("last_seen_at", data["created_at"]),
            meta=data.get("meta") or {},
        )


def default_credentials_dir() -> Path:
    """Get the default credentials directory."""
    return Path.home() / ".pairgate" / "credentials"


def _now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f") + "Z"


def _read_json_file(path: Path, default: dict) -> dict:
    """Safely read a JSON file."""
    try:
        if path.exists():
            return json.loads(path.read_text())
    except (json.JSONDecodeError, IOError) as e:
        logger.warning(f"Error reading {path}: {e}")
    return default


def _write_json_file(path: Path, data: dict) -> None:
    """Safely write a JSON file with atomic rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(f".{secrets.token_hex(4)}.tmp")
    tmp_path.write_text(json.dumps(data, indent=2) + "\n")
    tmp_path.chmod(0o600)
    tmp_path.replace(path)


def _generate_code(existing_codes: set[str]) -> str:
    """Generate a unique pairing code."""
    for _ in range(500):
        code = "".join(secrets.choice(PAIRING_CODE_ALPHABET) for _ in range(PAIRING_CODE_LENGTH))
        if code not in existing_codes:
            return code
    raise RuntimeError("Failed to generate unique pairing code")


class FilePairingStore:
    """
    Pairing requests and allow lists persisted as JSON files.

    Layout under the credentials directory:
    - <channel>-pairing.json (pending requests)
    - <channel>-allowFrom.json (approved sender ids)

    Every read-modify-write happens under a per-file FileLock, so two
    processes approving the same code see exactly one success.
    """

    def __init__(
        self,
        credentials_dir: Path | None = None,
        ttl: timedelta = PAIRING_TTL,
        max_pending: int = PAIRING_MAX_PENDING,
    ):
        self.credentials_dir = credentials_dir or default_credentials_dir()
        self.ttl = ttl
        self.max_pending = max_pending

    # ── Paths ───────────────────────────────────────────────────────

    def _pairing_path(self, channel: str) -> Path:
        return self.credentials_dir / f"{channel}-pairing.json"

    def _allow_from_path(self, channel: str) -> Path:
        return self.credentials_dir / f"{channel}-allowFrom.json"

    def _lock(self, path: Path) -> FileLock:
        path.parent.mkdir(parents=True, exist_ok=True)
        return FileLock(path.with_suffix(".lock"), timeout=LOCK_TIMEOUT_SECONDS)

    # ── Pending requests ────────────────────────────────────────────

    def _is_expired(self, request: PairingRequest) -> bool:
        """Check if a pairing request has expired."""
        try:
            created = datetime.fromisoformat(request.created_at.replace("Z", "+00:00"))
            if created.tzinfo is None:
                created = created.replace(tzinfo=timezone.utc)
            return datetime.now(timezone.utc) - created > self.ttl
        except (ValueError, TypeError):
            return True

    def _prune(self, requests: list[PairingRequest]) -> tuple[list[PairingRequest], bool]:
        """Remove expired requests, return (kept, was_modified)."""
        kept = [r for r in requests if not self._is_expired(r)]

        # Also limit to max pending
        if len(kept) > self.max_pending:
            # Sort by last_seen_at and keep most recent
            kept.sort(key=lambda r: r.last_seen_at)
            kept = kept[-self.max_pending:]

        return kept, len(kept) != len(requests)

    def _load_requests(self, path: Path) -> list[PairingRequest]:
        data = _read_json_file(path, {"version": 1, "requests": []})
        return [
            PairingRequest.from_dict(r)
            for r in data.get("requests", [])
            if isinstance(r, dict) and "id" in r and "code" in r and "created_at" in r
        ]

    def _save_requests(self, path: Path, requests: list[PairingRequest]) -> None:
        _write_json_file(path, {
            "version": 1,
            "requests": [r.to_dict() for r in requests],
        })

    def list_requests_sync(self, channel: str) -> list[PairingRequest]:
        """List pending pairing requests for a channel."""
        path = self._pairing_path(channel)

        with self._lock(path):
            requests = self._load_requests(path)
            pruned, modified = self._prune(requests)
            if modified:
                self._save_requests(path, pruned)
            return sorted(pruned, key=lambda r: r.created_at)

    def upsert_request_sync(
        self,
        channel: str,
        id: str,
        meta: dict[str, str] | None = None,
    ) -> tuple[str, bool]:
        """
        Create or update a pairing request.

        Returns (code, created) where created=True if new request.
        An empty code means the pending limit for the channel is reached.
        """
        path = self._pairing_path(channel)

        with self._lock(path):
            requests, _ = self._prune(self._load_requests(path))
            now = _now_iso()

            for i, r in enumerate(requests):
                if r.id == id:
                    requests[i] = PairingRequest(
                        id=r.id,
                        code=r.code,
                        created_at=r.created_at,
                        last_seen_at=now,
                        meta=meta or r.meta,
                    )
                    self._save_requests(path, requests)
                    return r.code, False

            if len(requests) >= self.max_pending:
                logger.warning(f"Max pending pairing requests reached for {channel}")
                return "", False

            code = _generate_code({r.code.upper() for r in requests})
            requests.append(PairingRequest(
                id=id,
                code=code,
                created_at=now,
                last_seen_at=now,
                meta=meta or {},
            ))
            self._save_requests(path, requests)
            return code, True

    def approve_code_sync(self, channel: str, code: str) -> PairingRequest | None:
        """
        Approve a pairing code and add the sender to allow_from.

        Returns the approved request, or None if code not found.
        """
        code = code.strip().upper()
        if not code:
            return None

        path = self._pairing_path(channel)

        with self._lock(path):
            requests, _ = self._prune(self._load_requests(path))

            approved = None
            remaining = []
            for r in requests:
                if approved is None and r.code.upper() == code:
                    approved = r
                else:
                    remaining.append(r)

            if not approved:
                return None

            self._save_requests(path, remaining)

        self.add_allow_from(channel, approved.id)
        return approved

    # ── Async contract used by the approval workflow ────────────────

    async def list_requests(self, channel: str) -> list[PairingRequest]:
        return await asyncio.to_thread(self.list_requests_sync, channel)

    async def approve_code(self, channel: str, code: str) -> PairingRequest | None:
        return await asyncio.to_thread(self.approve_code_sync, channel, code)

    # ── Allow list ──────────────────────────────────────────────────

    def read_allow_from(self, channel: str) -> list[str]:
        """Read the allow_from store for a channel."""
        data = _read_json_file(self._allow_from_path(channel), {"version": 1, "allow_from": []})
        return [str(e).strip() for e in data.get("allow_from", []) if e]

    def add_allow_from(self, channel: str, entry: str) -> bool:
        """Add an entry to the allow_from store. Returns True if added."""
        entry = str(entry).strip()
        if not entry:
            return False

        path = self._allow_from_path(channel)

        with self._lock(path):
            allow_from = self.read_allow_from(channel)
            if entry in allow_from:
                return False

            allow_from.append(entry)
            _write_json_file(path, {"version": 1, "allow_from": allow_from})
            return True

    def remove_allow_from(self, channel: str, entry: str) -> bool:
        """Remove an entry from the allow_from store. Returns True if removed."""
        entry = str(entry).strip()
        if not entry:
            return False

        path = self._allow_from_path(channel)

        with self._lock(path):
            allow_from = self.read_allow_from(channel)
            if entry not in allow_from:
                return False

            allow_from.remove(entry)
            _write_json_file(path, {"version": 1, "allow_from": allow_from})
            return True
