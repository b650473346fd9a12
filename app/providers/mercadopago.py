from __future__ import annotations

import logging
import time
from decimal import Decimal, InvalidOperation
from typing import Any, Dict

import httpx

from app.config import Settings
from app.domain.models import PaymentDetails
from app.domain.errors import UpstreamError, UpstreamTimeoutError
from app.repositories.base import LedgerStore
from app.services.extractor import order_id_from_resource, to_int

from .base import PaymentGateway

logger = logging.getLogger(__name__)


def _amount(value: Any) -> Decimal | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float, Decimal, str)):
        try:
            parsed = Decimal(str(value))
        except (InvalidOperation, ValueError):
            return None
        return parsed if parsed.is_finite() else None
    return None


def payment_details_from_payload(payment_id: int, data: Dict[str, Any]) -> PaymentDetails:
    metadata = data.get("metadata")
    return PaymentDetails(
        payment_id=payment_id,
        status=str(data.get("status") or ""),
        status_detail=str(data.get("status_detail") or ""),
        transaction_amount=_amount(data.get("transaction_amount")),
        payment_method_id=str(data.get("payment_method_id") or ""),
        metadata=dict(metadata) if isinstance(metadata, dict) else {},
        external_reference=str(data.get("external_reference") or "").strip(),
        raw=data,
    )


class MercadoPagoGateway(PaymentGateway):
    """Mercado Pago REST client (payments and merchant orders).

    - fetch_payment(): GET /v1/payments/{id}
    - fetch_order_payments(): GET /merchant_orders/{id}, payment ids from ``payments[]``
    """

    def __init__(self, settings: Settings, store: LedgerStore | None = None):
        self.settings = settings
        self.base_url = settings.mp_api_base.rstrip("/")
        self.timeout = settings.mp_timeout_seconds
        self.store = store

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.settings.access_token()}",
            "Accept": "application/json",
        }

    async def _get_json(self, operation: str, url: str, external_payment_id: int | None = None) -> Dict[str, Any]:
        headers = self._headers()
        started = time.monotonic()
        response_status: int | None = None
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.get(url, headers=headers)
        except httpx.TimeoutException as exc:
            self._log_event(
                operation=operation,
                request_url=url,
                external_payment_id=external_payment_id,
                request_headers=self._mask_headers(headers),
                error_message="timeout",
                latency_ms=int((time.monotonic() - started) * 1000),
            )
            raise UpstreamTimeoutError(f"{operation} timed out after {self.timeout}s: {url}") from exc
        response_status = resp.status_code
        latency_ms = int((time.monotonic() - started) * 1000)
        try:
            data = resp.json()
        except Exception:  # noqa: BLE001
            data = {"raw": resp.text[:512]} if resp.text else {}
        body = data if isinstance(data, dict) else {"raw": data}
        if resp.is_error:
            self._log_event(
                operation=operation,
                request_url=url,
                external_payment_id=external_payment_id,
                request_headers=self._mask_headers(headers),
                response_status=response_status,
                response_body=body,
                error_message=str(body.get("message") or body.get("error") or f"HTTP {response_status}"),
                latency_ms=latency_ms,
            )
            logger.info(
                "mercadopago request failed",
                extra={"endpoint": url, "response_code": response_status, "payment_id": external_payment_id},
            )
            raise UpstreamError(response_status, body, url=url)
        self._log_event(
            operation=operation,
            request_url=url,
            external_payment_id=external_payment_id,
            request_headers=self._mask_headers(headers),
            response_status=response_status,
            response_body={"status": body.get("status"), "id": body.get("id")},
            latency_ms=latency_ms,
        )
        return body

    async def fetch_payment(self, payment_id: int) -> PaymentDetails:
        url = f"{self.base_url}/v1/payments/{payment_id}"
        data = await self._get_json("GET_PAYMENT", url, external_payment_id=payment_id)
        details = payment_details_from_payload(payment_id, data)
        logger.info(
            "mercadopago payment fetched",
            extra={"payment_id": payment_id, "status": details.status, "mode": self.settings.resolved_mode},
        )
        return details

    async def fetch_order_payments(self, resource: str) -> set[int]:
        # Only the order id is taken from the payload; the host is always ours
        order_id = order_id_from_resource(resource)
        if order_id is None:
            raise ValueError(f"cannot read an order id from resource {resource!r}")
        url = f"{self.base_url}/merchant_orders/{order_id}"
        data = await self._get_json("GET_ORDER", url)
        payment_ids: set[int] = set()
        for item in data.get("payments") or []:
            if not isinstance(item, dict):
                continue
            pid = to_int(item.get("id"))
            if pid is not None:
                payment_ids.add(pid)
        logger.info(
            "mercadopago order expanded",
            extra={"endpoint": url, "event": f"{len(payment_ids)} payments"},
        )
        return payment_ids

    def _mask_headers(self, headers: Dict[str, str]) -> Dict[str, str]:
        masked: Dict[str, str] = {}
        for key, value in (headers or {}).items():
            if key.lower() == "authorization":
                masked[key] = "***"
            else:
                masked[key] = value
        return masked

    def _log_event(
        self,
        *,
        operation: str,
        request_url: str,
        external_payment_id: int | None = None,
        request_headers: Dict[str, str] | None = None,
        response_status: int | None = None,
        response_body: Dict[str, Any] | None = None,
        error_message: str | None = None,
        latency_ms: int | None = None,
    ) -> None:
        if not self.settings.log_provider_events or self.store is None:
            return
        try:
            self.store.log_provider_event(
                provider="mercadopago",
                direction="OUTBOUND",
                operation=operation,
                request_url=request_url,
                external_payment_id=external_payment_id,
                response_status=response_status,
                error_message=error_message,
                latency_ms=latency_ms,
                request_headers=request_headers,
                response_body=response_body,
            )
        except Exception as exc:  # noqa: BLE001
            logger.info(
                "provider event log error",
                extra={"event": str(exc)},
            )
