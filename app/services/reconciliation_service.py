from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable

from app.config import Settings, settings
from app.domain.enums import PaymentMethod, ReconcileOutcome
from app.domain.errors import ExtractionEmpty
from app.domain.merge import merge_observation
from app.domain.models import PaymentDetails, PaymentRecord, ReconcileResult
from app.domain.statuses import PaymentStatus
from app.providers.base import PaymentGateway
from app.repositories.base import LedgerStore
from app.services.extractor import ParsedNotification
from app.services.ledger_service import LedgerService
from app.services.user_resolution import resolve_user_id
from app.utils.idempotency import DedupGuard, credit_lock_key


def credit_reference(payment_id: int) -> str:
    return f"mp:{payment_id}"


class ReconciliationService:
    """Turns processor notifications into local payment records and credits."""

    def __init__(
        self,
        store: LedgerStore,
        gateway: PaymentGateway,
        guard: DedupGuard | None = None,
        ledger: LedgerService | None = None,
        cfg: Settings = settings,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.store = store
        self.gateway = gateway
        self.guard = guard if guard is not None else DedupGuard()
        self.settings = cfg
        self.clock = clock
        self.ledger = ledger if ledger is not None else LedgerService(store, cfg, clock=clock)
        self.logger = logging.getLogger(__name__)

    def accept(self, notification: ParsedNotification) -> ParsedNotification:
        """Gate run before acknowledging: something must be extractable."""
        if notification.is_empty:
            raise ExtractionEmpty("no payment or order identifier in notification")
        return notification

    async def handle_notification(self, notification: ParsedNotification) -> list[ReconcileResult]:
        payment_ids = set(notification.payment_ids)
        for resource in notification.order_resources:
            try:
                payment_ids |= await self.gateway.fetch_order_payments(resource)
            except Exception as exc:  # noqa: BLE001
                self.logger.error(
                    "order expansion failed",
                    extra={
                        "notification_id": notification.notification_id,
                        "topic": notification.topic,
                        "endpoint": resource,
                        "error": str(exc),
                    },
                )
        if not payment_ids:
            self.logger.info(
                "nothing to process",
                extra={"notification_id": notification.notification_id, "topic": notification.topic},
            )
            return []
        ordered = sorted(payment_ids)
        return list(
            await asyncio.gather(
                *(self.reconcile_safely(pid, notification.notification_id) for pid in ordered)
            )
        )

    async def reconcile_safely(self, payment_id: int, notification_id: str | None = None) -> ReconcileResult:
        try:
            return await self.reconcile_payment(payment_id, notification_id)
        except Exception as exc:  # noqa: BLE001
            self.logger.error(
                "reconciliation failed",
                exc_info=True,
                extra={
                    "payment_id": payment_id,
                    "notification_id": notification_id,
                    "error": f"{type(exc).__name__}: {exc}",
                    "outcome": ReconcileOutcome.FAILED,
                },
            )
            return ReconcileResult(
                payment_id=payment_id,
                outcome=ReconcileOutcome.FAILED,
                error=f"{type(exc).__name__}: {exc}",
            )

    async def reconcile_payment(self, payment_id: int, notification_id: str | None = None) -> ReconcileResult:
        details = await self.gateway.fetch_payment(payment_id)
        observed = self.observe(details)
        existing = await asyncio.to_thread(self.store.get_payment_record, payment_id)
        record = await asyncio.to_thread(self.store.save_payment_record, merge_observation(existing, observed))
        log_extra = {
            "payment_id": payment_id,
            "notification_id": notification_id,
            "status": record.status,
            "user_id": observed.user_id,
            "amount": observed.amount,
            "method": record.method,
        }
        self.logger.info("payment record upserted", extra=log_extra)

        if record.status is not PaymentStatus.APPROVED:
            return self._result(record, ReconcileOutcome.RECORDED)

        key = credit_lock_key(payment_id)
        if not self.guard.try_acquire(key, self.settings.dedup_ttl_seconds):
            self.logger.info("credit already in flight", extra={**log_extra, "outcome": ReconcileOutcome.IN_FLIGHT})
            return self._result(record, ReconcileOutcome.IN_FLIGHT)

        # Fields from this observation; the stored record may predate them
        user_id = observed.user_id or record.user_id
        amount = observed.amount
        if not user_id:
            self.logger.warning(
                "approved payment without user id; credit skipped",
                extra={**log_extra, "outcome": ReconcileOutcome.MISSING_USER},
            )
            return self._result(record, ReconcileOutcome.MISSING_USER)
        if record.credited:
            return self._result(record, ReconcileOutcome.ALREADY_CREDITED)
        if amount <= 0:
            self.logger.warning(
                "approved payment with non-positive amount; credit skipped",
                extra={**log_extra, "outcome": ReconcileOutcome.INVALID_AMOUNT},
            )
            return self._result(record, ReconcileOutcome.INVALID_AMOUNT)

        reference = credit_reference(payment_id)
        try:
            credit = await self.ledger.credit(user_id, amount, reference)
        except Exception:
            # Let processor redelivery retry without waiting out the window
            self.guard.release(key)
            raise
        await asyncio.to_thread(
            self.store.mark_credited,
            payment_id,
            credited_at=self.clock(),
            duplicated=credit.duplicated,
        )
        self.logger.info(
            "credit recorded",
            extra={
                **log_extra,
                "user_id": user_id,
                "reference": reference,
                "duplicated": credit.duplicated,
                "outcome": ReconcileOutcome.CREDITED,
            },
        )
        return ReconcileResult(
            payment_id=payment_id,
            outcome=ReconcileOutcome.CREDITED,
            status=record.status,
            user_id=user_id,
            duplicated=credit.duplicated,
        )

    def observe(self, details: PaymentDetails) -> PaymentRecord:
        """Derive a local record from gateway data."""
        amount = details.transaction_amount if details.transaction_amount is not None else Decimal("0")
        return PaymentRecord(
            external_payment_id=details.payment_id,
            status=PaymentStatus.from_provider(details.status),
            provider_status=details.status,
            status_detail=details.status_detail,
            user_id=resolve_user_id(
                details.metadata.get("user_id"),
                details.external_reference,
                self.settings.reference_prefixes,
            ),
            amount=amount,
            method=PaymentMethod.from_provider_id(details.payment_method_id),
            external_reference=details.external_reference,
        )

    @staticmethod
    def _result(record: PaymentRecord, outcome: ReconcileOutcome) -> ReconcileResult:
        return ReconcileResult(
            payment_id=record.external_payment_id,
            outcome=outcome,
            status=record.status,
            user_id=record.user_id,
        )
