"""Webhook endpoint management and delivery inspection API."""

from fastapi import APIRouter, Depends, HTTPException, Query

from payhub.api.gateways import get_services
from payhub.container import CoreServices
from payhub.schemas import (
    DeliveryOut,
    DeliveryStatsOut,
    TestWebhookRequest,
    WebhookCreate,
    WebhookOut,
)
from payhub.services.webhook_signer import generate_secret

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


# ── Event Types ──────────────────────────────────────────
VALID_EVENTS = [
    "payment_intent.created",
    "payment_intent.requires_action",
    "payment_intent.succeeded",
    "payment_intent.payment_failed",
    "payment_intent.canceled",
    "payment.succeeded",
    "refund.created",
    "refund.succeeded",
    "refund.failed",
    "payout.created",
    "payout.succeeded",
    "payout.failed",
    "account.updated",
    "balance.updated",
    "charge.created",
    "charge.succeeded",
    "charge.failed",
    "settlement.created",
    "settlement.completed",
]


async def _get_endpoint_or_404(services: CoreServices, webhook_id: str):
    endpoint = await services.store.get_endpoint(webhook_id)
    if not endpoint:
        raise HTTPException(404, "Webhook not found")
    return endpoint


# ── Endpoints ────────────────────────────────────────────
@router.get("/events", response_model=list[str])
async def list_event_types():
    """List all available webhook event types."""
    return VALID_EVENTS


@router.post("/", response_model=WebhookOut, status_code=201)
async def create_webhook(data: WebhookCreate, services: CoreServices = Depends(get_services)):
    for evt in data.events:
        if evt != "*" and evt not in VALID_EVENTS:
            raise HTTPException(400, f"Invalid event type: {evt}")

    endpoint = await services.store.create_endpoint(
        app_id=data.app_id,
        url=data.url,
        secret=data.secret or generate_secret(),
        events=data.events,
        headers=data.headers,
        timeout_seconds=data.timeout_seconds,
        description=data.description,
    )
    return WebhookOut.from_model(endpoint)


@router.get("/", response_model=list[WebhookOut])
async def list_webhooks(app_id: str, services: CoreServices = Depends(get_services)):
    return [WebhookOut.from_model(ep) for ep in await services.store.list_endpoints(app_id)]


@router.get("/{webhook_id}", response_model=WebhookOut)
async def get_webhook(webhook_id: str, services: CoreServices = Depends(get_services)):
    return WebhookOut.from_model(await _get_endpoint_or_404(services, webhook_id))


@router.get("/{webhook_id}/deliveries", response_model=list[DeliveryOut])
async def list_deliveries(
    webhook_id: str,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    services: CoreServices = Depends(get_services),
):
    """List delivery history for a webhook."""
    await _get_endpoint_or_404(services, webhook_id)
    return await services.store.list_deliveries(webhook_id, limit=limit, offset=skip)


@router.get("/{webhook_id}/stats", response_model=DeliveryStatsOut)
async def delivery_stats(webhook_id: str, services: CoreServices = Depends(get_services)):
    await _get_endpoint_or_404(services, webhook_id)
    return await services.store.delivery_stats(webhook_id)


@router.post("/{webhook_id}/test", status_code=202)
async def test_webhook(
    webhook_id: str,
    data: TestWebhookRequest = TestWebhookRequest(),
    services: CoreServices = Depends(get_services),
):
    """Queue a test ping to the webhook endpoint."""
    endpoint = await _get_endpoint_or_404(services, webhook_id)
    delivery = await services.dispatcher.dispatch(endpoint, data.event_type, data.payload)
    return {"message": "Test webhook queued", "delivery_id": delivery.id, "status": delivery.status}
