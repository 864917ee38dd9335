"""Shared fixtures: in-memory pairing store and recording collaborators."""

from typing import Any

import pytest

from pairgate.config.schema import Config
from pairgate.pairing.store import PairingRequest
from pairgate.pairing.workflow import ApprovalWorkflow


class FakeStore:
    """In-memory store honouring the at-most-once approve transition."""

    def __init__(self):
        self.pending: dict[str, list[PairingRequest]] = {}
        self.fail_with: Exception | None = None
        self.calls: list[tuple[str, str, str | None]] = []

    def add(self, channel: str, id: str, code: str) -> PairingRequest:
        request = PairingRequest(
            id=id,
            code=code,
            created_at="2026-01-01T00:00:00Z",
            last_seen_at="2026-01-01T00:00:00Z",
        )
        self.pending.setdefault(channel, []).append(request)
        return request

    async def list_requests(self, channel: str) -> list[PairingRequest]:
        self.calls.append(("list", channel, None))
        if self.fail_with:
            raise self.fail_with
        return list(self.pending.get(channel, []))

    async def approve_code(self, channel: str, code: str) -> PairingRequest | None:
        self.calls.append(("approve", channel, code))
        if self.fail_with:
            raise self.fail_with
        for request in self.pending.get(channel, []):
            if request.code == code.strip():
                self.pending[channel].remove(request)
                return request
        return None


class RecordingNotifier:
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.calls: list[tuple[str, str, Config]] = []

    async def __call__(self, channel_id: str, id: str, config: Config) -> None:
        self.calls.append((channel_id, id, config))
        if self.error:
            raise self.error


class RecordingBroadcast:
    def __init__(self):
        self.events: list[tuple[str, dict[str, Any], bool]] = []

    def __call__(self, event: str, payload: dict[str, Any], drop_if_slow: bool = False) -> int:
        self.events.append((event, payload, drop_if_slow))
        return 1


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def broadcast() -> RecordingBroadcast:
    return RecordingBroadcast()


@pytest.fixture
def config_loads() -> list[Config]:
    return []


@pytest.fixture
def workflow(store, notifier, config_loads) -> ApprovalWorkflow:
    def load() -> Config:
        config = Config()
        config_loads.append(config)
        return config

    return ApprovalWorkflow(store, notifier=notifier, config_loader=load)
