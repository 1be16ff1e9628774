"""API integration tests for gateway selection and webhook management."""

import pytest

from conftest import FakeGatewayService
from payhub.database import async_session
from payhub.main import services
from payhub.models import PaymentGateway


@pytest.fixture
def queued():
    """Capture scheduled sends instead of hitting the network."""
    sent = []
    services.dispatcher.enqueue = sent.append
    yield sent
    services.dispatcher.enqueue = None


@pytest.fixture
def gateways():
    services.registry.register("mpesa", FakeGatewayService(name="mpesa", healthy=False))
    services.registry.register("mtn_momo", FakeGatewayService(name="mtn_momo", healthy=True))
    services.probe.invalidate()
    yield services.registry
    services.registry._services.clear()
    services.probe.invalidate()


async def _create_webhook(client, **overrides):
    body = {"app_id": "app_1", "url": "https://merchant.example.com/hooks", "events": ["payment.succeeded"]}
    body.update(overrides)
    return await client.post("/api/v1/webhooks/", json=body)


# ── Health ───────────────────────────────────────────────

@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


# ── Gateway selection ────────────────────────────────────

@pytest.mark.asyncio
async def test_select_with_empty_catalog(client):
    resp = await client.post("/api/v1/gateways/select", json={"amount": "100", "currency": "KES"})
    assert resp.status_code == 200
    assert resp.json() == {"best": None, "candidates": []}


@pytest.mark.asyncio
async def test_select_prefers_healthy_gateway(client, gateways):
    async with async_session() as db:
        db.add(PaymentGateway(name="M-Pesa", code="mpesa_ke", type="mpesa", priority=1))
        db.add(PaymentGateway(name="MTN MoMo", code="mtn_ke", type="mtn_momo", priority=2))
        await db.commit()

    resp = await client.post("/api/v1/gateways/select", json={"currency": "KES", "payment_method": "mobile_money"})
    assert resp.status_code == 200
    data = resp.json()
    assert data["best"]["code"] == "mtn_ke"
    assert [c["type"] for c in data["candidates"]] == ["mtn_momo", "mpesa"]
    assert [c["is_healthy"] for c in data["candidates"]] == [True, False]


@pytest.mark.asyncio
async def test_select_rejects_bad_currency(client):
    resp = await client.post("/api/v1/gateways/select", json={"currency": "KESH"})
    assert resp.status_code == 422


# ── Webhooks ─────────────────────────────────────────────

@pytest.mark.asyncio
async def test_list_event_types(client):
    resp = await client.get("/api/v1/webhooks/events")
    assert resp.status_code == 200
    assert "payment_intent.succeeded" in resp.json()


@pytest.mark.asyncio
async def test_create_webhook_masks_secret(client):
    resp = await _create_webhook(client, secret="whsec_abcdefghijklmnopqrstuvwxyz")
    assert resp.status_code == 201
    data = resp.json()
    assert data["secret"] != "whsec_abcdefghijklmnopqrstuvwxyz"
    assert data["secret"].startswith("whsec_")
    assert data["secret"].endswith("wxyz")
    assert data["events"] == ["payment.succeeded"]
    assert data["is_active"] is True


@pytest.mark.asyncio
async def test_create_webhook_generates_secret(client):
    resp = await _create_webhook(client)
    assert resp.status_code == 201
    assert resp.json()["secret"].startswith("whsec_")


@pytest.mark.asyncio
async def test_create_webhook_invalid_event(client):
    resp = await _create_webhook(client, events=["contact.created"])
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_list_and_get_webhook(client):
    created = (await _create_webhook(client)).json()
    await _create_webhook(client, app_id="app_2")

    resp = await client.get("/api/v1/webhooks/", params={"app_id": "app_1"})
    assert [w["id"] for w in resp.json()] == [created["id"]]

    resp = await client.get(f"/api/v1/webhooks/{created['id']}")
    assert resp.status_code == 200
    assert resp.json()["url"] == "https://merchant.example.com/hooks"


@pytest.mark.asyncio
async def test_missing_webhook_404(client):
    for path in ("", "/deliveries", "/stats"):
        resp = await client.get(f"/api/v1/webhooks/nonexistent{path}")
        assert resp.status_code == 404
    resp = await client.post("/api/v1/webhooks/nonexistent/test", json={})
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_test_webhook_queues_delivery(client, queued):
    created = (await _create_webhook(client)).json()

    resp = await client.post(f"/api/v1/webhooks/{created['id']}/test", json={})
    assert resp.status_code == 202
    data = resp.json()
    assert data["status"] == "pending"
    assert queued == [data["delivery_id"]]

    resp = await client.get(f"/api/v1/webhooks/{created['id']}/deliveries")
    deliveries = resp.json()
    assert len(deliveries) == 1
    assert deliveries[0]["event_type"] == "test.ping"
    assert deliveries[0]["attempt_count"] == 0

    resp = await client.get(f"/api/v1/webhooks/{created['id']}/stats")
    assert resp.json() == {
        "total": 1,
        "succeeded": 0,
        "failed": 0,
        "exhausted": 0,
        "pending": 1,
        "success_rate": 0.0,
    }
