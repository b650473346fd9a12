from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from fastapi import APIRouter, BackgroundTasks, HTTPException, Request, status
from fastapi.responses import PlainTextResponse

from app.config import settings
from app.domain.dtos import WebhookAck
from app.domain.errors import ExtractionEmpty
from app.providers.factory import get_gateway
from app.repositories.factory import get_ledger_store
from app.services.extractor import ParsedNotification, parse_notification
from app.services.reconciliation_service import ReconciliationService
from app.utils.security import verify_mp_signature

router = APIRouter()

ledger_store = get_ledger_store(settings)
reconciliation_service = ReconciliationService(ledger_store, get_gateway(settings, store=ledger_store))
logger = logging.getLogger(__name__)

WEBHOOK_PATH = "/api/webhooks/mercadopago"
LEGACY_WEBHOOK_PATH = "/pagamento"


def _decode_body(raw: bytes) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except ValueError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _signature_data_id(body: dict[str, Any], query: dict[str, str]) -> str | None:
    if query.get("data.id"):
        return query["data.id"]
    data = body.get("data")
    if isinstance(data, dict) and data.get("id") is not None:
        return str(data["id"])
    return None


async def _reconcile_in_background(notification: ParsedNotification) -> None:
    try:
        results = await reconciliation_service.handle_notification(notification)
    except Exception as exc:  # noqa: BLE001
        logger.error(
            "notification reconciliation crashed",
            exc_info=True,
            extra={"notification_id": notification.notification_id, "error": str(exc)},
        )
        return
    logger.info(
        "notification reconciled",
        extra={
            "notification_id": notification.notification_id,
            "topic": notification.topic,
            "outcome": {str(r.payment_id): r.outcome.value for r in results},
        },
    )


@router.get(WEBHOOK_PATH, response_class=PlainTextResponse)
@router.get(LEGACY_WEBHOOK_PATH, response_class=PlainTextResponse, include_in_schema=False)
async def webhook_alive() -> str:
    return "Webhook OK (GET)"


@router.post(WEBHOOK_PATH, response_model=WebhookAck)
@router.post(LEGACY_WEBHOOK_PATH, response_model=WebhookAck, include_in_schema=False)
async def mercadopago_webhook(request: Request, background_tasks: BackgroundTasks) -> WebhookAck:
    """Acknowledge a Mercado Pago notification and reconcile it after responding.

    Only an unusable payload (no payment or order id) or a bad signature is
    refused; reconciliation failures never reach the processor.
    """
    body = _decode_body(await request.body())
    query = dict(request.query_params)
    notification = parse_notification(body, query)

    logger.info(
        "mercadopago webhook received",
        extra={
            "endpoint": WEBHOOK_PATH,
            "notification_id": notification.notification_id,
            "topic": notification.topic,
            "payment_id": sorted(notification.payment_ids),
        },
    )

    verification_status = "SKIPPED"
    if settings.mp_webhook_secret:
        valid = verify_mp_signature(
            request.headers.get("x-signature"),
            request.headers.get("x-request-id"),
            _signature_data_id(body, query),
            settings.mp_webhook_secret,
        )
        if not valid:
            logger.warning(
                "mercadopago webhook signature invalid",
                extra={"endpoint": WEBHOOK_PATH, "notification_id": notification.notification_id},
            )
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook signature")
        verification_status = "SUCCESS"

    try:
        reconciliation_service.accept(notification)
    except ExtractionEmpty as exc:
        logger.warning(
            "mercadopago webhook without payment id",
            extra={"endpoint": WEBHOOK_PATH, "event": str(exc), "topic": notification.topic},
        )
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No payment id in notification")

    # Record webhook inbox entry for traceability
    try:
        await asyncio.to_thread(
            ledger_store.record_webhook,
            provider="mercadopago",
            event_id=notification.notification_id,
            event_type=notification.topic or None,
            verification_status=verification_status,
            headers=dict(request.headers),
            payload={"body": body, "query": query},
            related_payment_ids=sorted(notification.payment_ids),
        )
    except Exception as exc:  # noqa: BLE001
        logger.info(
            "mercadopago webhook log error",
            extra={"endpoint": WEBHOOK_PATH, "event": str(exc)},
        )

    background_tasks.add_task(_reconcile_in_background, notification)
    return WebhookAck(
        notification_id=notification.notification_id,
        payment_ids=sorted(notification.payment_ids),
        order_resources=notification.order_resources,
    )
