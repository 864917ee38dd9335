"""Tests for the pairing HTTP API."""

import pytest
from aiohttp import web
from aiohttp.test_utils import TestClient, TestServer

from pairgate.gateway.auth import ResolvedGatewayAuth
from pairgate.gateway.pairing_http import PairingHttpHandler

REMOTE = {"X-Forwarded-For": "203.0.113.7"}


def make_client(workflow, auth: ResolvedGatewayAuth | None = None, base_path: str = "/api/pairing") -> TestClient:
    app = web.Application()
    PairingHttpHandler(
        workflow=workflow,
        auth=auth or ResolvedGatewayAuth(mode="token", token="secret"),
        # The test client connects from loopback; trusting it lets
        # X-Forwarded-For stand in for a remote caller.
        trusted_proxies=["127.0.0.1"],
        base_path=base_path,
    ).register(app)
    return TestClient(TestServer(app))


# ── Routing ─────────────────────────────────────────────────────────


class TestRouting:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("path", [
        "/api/pairing",
        "/api/pairing/",
        "/api/pairing/sms",
        "/api/pairing/sms/list/extra",
    ])
    async def test_wrong_shape_is_not_found(self, workflow, path):
        async with make_client(workflow) as client:
            resp = await client.get(path)
            assert resp.status == 404
            assert await resp.json() == {"ok": False, "error": "Not Found"}

    @pytest.mark.asyncio
    async def test_prefix_must_end_at_segment(self, workflow, store):
        store.add("x", "req_1", "111111")
        async with make_client(workflow) as client:
            resp = await client.get("/api/pairingx/list")
            assert resp.status == 404
        assert store.calls == []

    @pytest.mark.asyncio
    async def test_unknown_action(self, workflow):
        async with make_client(workflow) as client:
            resp = await client.get("/api/pairing/sms/reject")
            assert resp.status == 404

    @pytest.mark.asyncio
    async def test_wrong_method(self, workflow, store):
        async with make_client(workflow) as client:
            resp = await client.post("/api/pairing/sms/list")
            assert resp.status == 404
            resp = await client.get("/api/pairing/sms/approve")
            assert resp.status == 404
        assert store.calls == []

    @pytest.mark.asyncio
    async def test_custom_base_path(self, workflow, store):
        store.add("sms", "req_1", "111111")
        async with make_client(workflow, base_path="/pair/") as client:
            resp = await client.get("/pair/sms/list")
            assert resp.status == 200

    @pytest.mark.asyncio
    async def test_invalid_channel(self, workflow, store):
        async with make_client(workflow) as client:
            resp = await client.post("/api/pairing/xyz!/approve", json={"code": "123456"})
            assert resp.status == 400
            assert await resp.json() == {"ok": False, "error": "Invalid channel: xyz!"}
        assert store.calls == []


# ── Authorization ───────────────────────────────────────────────────


class TestAuthorization:
    @pytest.mark.asyncio
    async def test_remote_without_token(self, workflow, store):
        async with make_client(workflow) as client:
            resp = await client.post("/api/pairing/sms/approve", json={"code": "123456"}, headers=REMOTE)
            assert resp.status == 401
            assert await resp.json() == {"ok": False, "error": "Unauthorized"}
        assert store.calls == []

    @pytest.mark.asyncio
    async def test_remote_with_wrong_token(self, workflow):
        async with make_client(workflow) as client:
            resp = await client.get(
                "/api/pairing/sms/list",
                headers={**REMOTE, "Authorization": "Bearer nope"},
            )
            assert resp.status == 401

    @pytest.mark.asyncio
    async def test_auth_checked_before_channel(self, workflow):
        async with make_client(workflow) as client:
            resp = await client.get("/api/pairing/xyz!/list", headers=REMOTE)
            assert resp.status == 401

    @pytest.mark.asyncio
    async def test_remote_with_token(self, workflow, store):
        store.add("sms", "req_1", "111111")
        async with make_client(workflow) as client:
            resp = await client.get(
                "/api/pairing/sms/list",
                headers={**REMOTE, "Authorization": "Bearer secret"},
            )
            assert resp.status == 200

    @pytest.mark.asyncio
    async def test_token_doubles_as_password(self, workflow, store):
        auth = ResolvedGatewayAuth(mode="password", password="hunter2")
        async with make_client(workflow, auth=auth) as client:
            resp = await client.get(
                "/api/pairing/sms/list",
                headers={**REMOTE, "Authorization": "Bearer hunter2"},
            )
            assert resp.status == 200

    @pytest.mark.asyncio
    async def test_tailscale_headers_ignored(self, workflow):
        auth = ResolvedGatewayAuth(mode="token", token="secret", allow_tailscale=True)
        async with make_client(workflow, auth=auth) as client:
            resp = await client.get(
                "/api/pairing/sms/list",
                headers={**REMOTE, "Tailscale-User-Login": "alice@example.com", "Authorization": "Bearer x"},
            )
            assert resp.status == 401

    @pytest.mark.asyncio
    async def test_local_needs_no_token(self, workflow):
        async with make_client(workflow) as client:
            resp = await client.get("/api/pairing/sms/list")
            assert resp.status == 200


# ── list ────────────────────────────────────────────────────────────


class TestList:
    @pytest.mark.asyncio
    async def test_lists(self, workflow, store):
        store.add("sms", "req_1", "111111")
        store.add("sms", "req_2", "222222")
        async with make_client(workflow) as client:
            resp = await client.get("/api/pairing/SMS/list")
            body = await resp.json()
        assert resp.status == 200
        assert body["ok"] is True
        assert body["channel"] == "sms"
        assert [r["id"] for r in body["requests"]] == ["req_1", "req_2"]

    @pytest.mark.asyncio
    async def test_store_failure(self, workflow, store):
        store.fail_with = OSError("disk full")
        async with make_client(workflow) as client:
            resp = await client.get("/api/pairing/sms/list")
            body = await resp.json()
        assert resp.status == 500
        assert body == {"ok": False, "error": "disk full"}


# ── approve ─────────────────────────────────────────────────────────


class TestApprove:
    @pytest.mark.asyncio
    async def test_approves(self, workflow, store, notifier):
        store.add("sms", "req_1", "123456")
        async with make_client(workflow) as client:
            resp = await client.post("/api/pairing/sms/approve", json={"code": " 123456 "})
            body = await resp.json()
        assert resp.status == 200
        assert body == {"ok": True, "channel": "sms", "id": "req_1", "approved": True}
        assert store.calls == [("approve", "sms", "123456")]
        assert notifier.calls == []

    @pytest.mark.asyncio
    async def test_not_found(self, workflow):
        async with make_client(workflow) as client:
            resp = await client.post("/api/pairing/sms/approve", json={"code": "000000"})
            body = await resp.json()
        assert resp.status == 404
        assert body == {"ok": False, "error": "No pending pairing request found for code: 000000"}

    @pytest.mark.asyncio
    async def test_replay_is_not_found(self, workflow, store):
        store.add("sms", "req_1", "123456")
        async with make_client(workflow) as client:
            first = await client.post("/api/pairing/sms/approve", json={"code": "123456"})
            second = await client.post("/api/pairing/sms/approve", json={"code": "123456"})
            assert first.status == 200
            assert second.status == 404

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [b"not json", b"[1, 2]", b"{}", b'{"code": 123}', b'{"code": "  "}', b""])
    async def test_bad_body(self, workflow, store, body):
        async with make_client(workflow) as client:
            resp = await client.post("/api/pairing/sms/approve", data=body)
            assert resp.status == 400
            assert await resp.json() == {"ok": False, "error": "code is required"}
        assert store.calls == []

    @pytest.mark.asyncio
    async def test_oversized_body(self, workflow, store):
        store.add("sms", "req_1", "123456")
        body = b'{"code": "123456", "pad": "' + b"x" * (2 * 1024 * 1024) + b'"}'
        async with make_client(workflow) as client:
            resp = await client.post("/api/pairing/sms/approve", data=body)
            assert resp.status == 400
            assert resp.content_type == "application/json"
            assert await resp.json() == {"ok": False, "error": "code is required"}
        assert store.calls == []

    @pytest.mark.asyncio
    async def test_notify(self, workflow, store, notifier):
        store.add("sms", "req_1", "123456")
        async with make_client(workflow) as client:
            resp = await client.post("/api/pairing/sms/approve", json={"code": "123456", "notify": True})
            assert resp.status == 200
        await workflow.wait_for_notifications()
        assert [(c, i) for c, i, _ in notifier.calls] == [("sms", "req_1")]

    @pytest.mark.asyncio
    async def test_notify_must_be_true(self, workflow, store, notifier):
        store.add("sms", "req_1", "123456")
        async with make_client(workflow) as client:
            resp = await client.post("/api/pairing/sms/approve", json={"code": "123456", "notify": "yes"})
            assert resp.status == 200
        await workflow.wait_for_notifications()
        assert notifier.calls == []

    @pytest.mark.asyncio
    async def test_notify_failure_still_ok(self, workflow, store, notifier):
        notifier.error = RuntimeError("no token")
        store.add("sms", "req_1", "123456")
        async with make_client(workflow) as client:
            resp = await client.post("/api/pairing/sms/approve", json={"code": "123456", "notify": True})
            assert resp.status == 200
        await workflow.wait_for_notifications()

    @pytest.mark.asyncio
    async def test_store_failure(self, workflow, store):
        store.fail_with = RuntimeError("timeout acquiring lock")
        async with make_client(workflow) as client:
            resp = await client.post("/api/pairing/sms/approve", json={"code": "123456"})
            assert resp.status == 500
            assert (await resp.json())["error"] == "timeout acquiring lock"
