"""
FastAPI Web Application - ReviewFlow API
========================================

Inbound side of the pipeline: order webhooks, vendor delivery webhooks,
the review-link landing resolve, and operator endpoints.

ARCHITECTURAL DECISION:
- The lifespan builds one Container and stores it on app.state; handlers
  reach services through it, never through module globals
- Signature checks run on the raw body before anything is parsed or stored
- Any AppError becomes {"success": false, "error": {code, message}} with the
  error's status code
"""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Header, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from src.application import Container, build_container
from src.domain.errors import AppError, NotFoundError, UnauthorizedError, ValidationError
from src.domain.models import NotificationStatus, NotificationType, OrderData, Platform, utc_now
from src.infrastructure.config import Settings, get_settings
from src.infrastructure.integrations import DullyWebhookPayload

logger = logging.getLogger(__name__)


# ── Request Models ─────────────────────────────────────────────────

class ManualOrderRequest(BaseModel):
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_email: Optional[str] = None
    order_total: Optional[float] = Field(default=None, ge=0)


# ── Dependencies ───────────────────────────────────────────────────

def get_container(request: Request) -> Container:
    return request.app.state.container


def require_internal_key(
    request: Request,
    x_internal_key: Optional[str] = Header(default=None),
):
    expected = get_container(request).settings.server.internal_api_key
    if not expected:
        raise AppError("Internal API is disabled", "SERVICE_UNAVAILABLE", 503)
    if x_internal_key != expected:
        raise UnauthorizedError("Invalid internal API key")


def _load_business(container: Container, business_id: str):
    business = container.db.get_business(business_id)
    if business is None:
        raise NotFoundError("Business")
    return business


# ── Webhooks: order sources ────────────────────────────────────────

webhooks = APIRouter(prefix="/api/v1/webhooks", tags=["webhooks"])


@webhooks.post("/dully/{business_id}")
async def dully_webhook(business_id: str, request: Request, container: Container = Depends(get_container)):
    body = await request.body()
    return await asyncio.to_thread(_handle_dully, container, business_id, request.headers, body)


def _handle_dully(container: Container, business_id: str, headers, body: bytes) -> dict:
    business = _load_business(container, business_id)
    integration = business.get_integration(Platform.DULLY.value)
    if integration is None or not integration.enabled:
        raise NotFoundError("Dully integration")

    if not container.dully.verify_request(integration.webhook_secret, headers, body):
        logger.warning(f"Rejected Dully webhook for business {business_id}: bad signature")
        raise UnauthorizedError("Invalid webhook signature")

    try:
        payload = DullyWebhookPayload.model_validate_json(body)
    except PydanticValidationError as e:
        details = [{"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]} for err in e.errors()]
        raise AppError("Invalid webhook payload", "VALIDATION_ERROR", 422, details)

    dully = container.dully
    if dully.is_cancellation(payload):
        cancelled = container.intake.cancel_order(business_id, payload.order_id, Platform.DULLY.value)
        return {"success": True, "message": "Order cancelled" if cancelled else "Event skipped"}

    if not dully.should_process(payload):
        logger.info(f"Skipping Dully event {payload.event} for order {payload.order_id}")
        return {"success": True, "message": "Event skipped"}

    order = dully.transform_payload(payload)
    item = container.intake.enqueue_order(business_id, order)
    return {
        "success": True,
        "message": "Order queued",
        "order_id": order.order_id,
        "queue_id": item.id,
        "scheduled_for": item.scheduled_for.isoformat(),
    }


# ── Webhooks: delivery status ──────────────────────────────────────

async def _ingest(provider_name: str, request: Request, container: Container) -> dict:
    body = await request.body()
    result = await asyncio.to_thread(container.ingester.ingest, provider_name, request.headers, body)
    return result.to_dict()


@webhooks.post("/gatewayapi/delivery")
async def gatewayapi_delivery(request: Request, container: Container = Depends(get_container)):
    return await _ingest("gatewayapi", request, container)


@webhooks.post("/inmobile/delivery")
async def inmobile_delivery(request: Request, container: Container = Depends(get_container)):
    return await _ingest("inmobile", request, container)


@webhooks.post("/sendgrid/events")
async def sendgrid_events(request: Request, container: Container = Depends(get_container)):
    return await _ingest("sendgrid", request, container)


@webhooks.post("/resend/events")
async def resend_events(request: Request, container: Container = Depends(get_container)):
    return await _ingest("resend", request, container)


# ── Internal (operator) ────────────────────────────────────────────

internal = APIRouter(
    prefix="/api/v1/internal",
    tags=["internal"],
    dependencies=[Depends(require_internal_key)],
)


@internal.post("/queue/{item_id}/retry")
def retry_queue_item(
    item_id: int,
    delay_minutes: int = Query(default=60, ge=0),
    container: Container = Depends(get_container),
):
    item = container.queue.retry_failed(item_id, delay_minutes)
    return {"success": True, "data": item.to_dict()}


@internal.get("/businesses/{business_id}/queue-stats")
def queue_stats(business_id: str, container: Container = Depends(get_container)):
    _load_business(container, business_id)
    return {"success": True, "data": container.queue.get_business_stats(business_id)}


@internal.get("/businesses/{business_id}/notification-stats")
def notification_stats(business_id: str, container: Container = Depends(get_container)):
    _load_business(container, business_id)
    return {"success": True, "data": container.notifications.get_stats(business_id)}


@internal.get("/businesses/{business_id}/notifications")
def list_notifications(
    business_id: str,
    type: Optional[str] = None,
    status: Optional[str] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    container: Container = Depends(get_container),
):
    _load_business(container, business_id)
    try:
        type_filter = NotificationType(type) if type else None
        status_filter = NotificationStatus(status) if status else None
    except ValueError as e:
        raise ValidationError(str(e))

    result = container.notifications.list(business_id, type_filter, status_filter, page, limit)
    return {
        "success": True,
        "data": [n.to_dict() for n in result["data"]],
        "pagination": result["pagination"],
    }


@internal.post("/businesses/{business_id}/test-order")
def create_test_order(
    business_id: str,
    body: ManualOrderRequest,
    container: Container = Depends(get_container),
):
    """Creates test notifications straight away; nothing goes through the queue."""
    business = _load_business(container, business_id)
    now = utc_now()
    order = OrderData(
        order_id=f"test-{uuid.uuid4().hex[:12]}",
        platform=Platform.TEST.value,
        order_date=now,
        completed_at=now,
        customer_name=body.customer_name,
        customer_phone=body.customer_phone,
        customer_email=body.customer_email,
        order_total=body.order_total,
        metadata={"test": True},
    )

    processor = container.processor
    channels = processor.eligible_channels(business, order)
    if not channels:
        raise ValidationError("No enabled channel matches the given contact details")

    created = []
    for channel in channels:
        notification = processor.build_notification(business, order, channel)
        created.append(container.notifications.create(notification))
    logger.info(f"Created {len(created)} test notifications for business {business_id}")
    return {"success": True, "data": [n.to_dict() for n in created]}


# ── Public ─────────────────────────────────────────────────────────

public = APIRouter(tags=["public"])


@public.get("/r/{token}")
def resolve_review_link(token: str, container: Container = Depends(get_container)):
    payload = container.links.verify(token)
    if payload is None:
        raise NotFoundError("Review link")
    business = _load_business(container, payload.business_id)

    if payload.notification_id:
        container.ingester.record_click(payload.notification_id)

    return {
        "success": True,
        "data": {
            "business": business.to_public_dict(),
            "customer": payload.customer.to_claim() if payload.customer else None,
            "order_id": payload.order_id,
            "source_platform": payload.source_platform,
        },
    }


@public.get("/health")
def health(container: Container = Depends(get_container)):
    return {
        "status": "ok",
        "processor": container.processor.get_status(),
        "dispatcher": container.dispatcher.get_status(),
        "poller": container.poller.get_status(),
        "providers": container.providers.status(),
        "integrations": container.integrations.get_all_names(),
    }


# ── App Factory ────────────────────────────────────────────────────

async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.to_dict()})


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        container = build_container(settings or get_settings())
        app.state.container = container
        logger.info("ReviewFlow ready")
        if container.settings.server.run_jobs:
            await container.start_jobs()
        try:
            yield
        finally:
            await container.stop_jobs()

    app = FastAPI(
        title="ReviewFlow",
        description="Delayed review-request delivery over SMS and email",
        lifespan=lifespan,
    )
    app.add_exception_handler(AppError, app_error_handler)
    app.include_router(webhooks)
    app.include_router(internal)
    app.include_router(public)
    return app


app = create_app()
