from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from app.domain.models import PaymentRecord, TransactionHistoryEntry, UserAccount


class LedgerStore(ABC):
    """Durable store consumed by the reconciliation core."""

    @abstractmethod
    def get_payment_record(self, external_payment_id: int) -> Optional[PaymentRecord]:
        """Return the local record for a processor payment id, if any."""

    @abstractmethod
    def save_payment_record(self, record: PaymentRecord) -> PaymentRecord:
        """Upsert by ``external_payment_id`` following ``PAYMENT_RECORD_MERGE_POLICY``.

        Status fields are overwritten; the rest are only filled while empty,
        so the first non-empty value wins. Must never clear
        ``credited``/``credited_at`` on an existing row.
        """

    @abstractmethod
    def mark_credited(self, external_payment_id: int, *, credited_at: datetime, duplicated: bool) -> bool:
        """Flip ``credited`` false->true. Returns False when it was already set."""

    @abstractmethod
    def get_user(self, user_id: str) -> Optional[UserAccount]:
        """Load the balance slice of a user."""

    @abstractmethod
    def compare_and_set_balance(
        self,
        user_id: str,
        *,
        expected_version: int,
        balance: Decimal,
        applied_references: list[str],
        history: TransactionHistoryEntry,
    ) -> int:
        """Write balance, applied references and the history entry together.

        Succeeds only when the stored version still equals
        ``expected_version``; returns the new version or raises
        ``StoreConflict``. Nothing is written when any part fails.
        """

    @abstractmethod
    def record_webhook(
        self,
        *,
        provider: str,
        event_id: str | None,
        event_type: str | None,
        verification_status: str = "UNKNOWN",
        headers: dict[str, Any] | None = None,
        payload: dict[str, Any] | None = None,
        related_payment_ids: list[int] | None = None,
    ) -> None:
        """Insert an inbound notification into the webhook inbox."""

    @abstractmethod
    def log_provider_event(
        self,
        *,
        provider: str,
        operation: str,
        direction: str,
        request_url: str | None = None,
        external_payment_id: int | None = None,
        response_status: int | None = None,
        error_message: str | None = None,
        latency_ms: int | None = None,
        request_headers: dict[str, Any] | None = None,
        response_body: dict[str, Any] | None = None,
    ) -> None:
        """Insert an outbound gateway call into the provider event log."""

    @abstractmethod
    def payment_status_counts(self) -> dict[str, Any]:
        """Counts of payment records by status plus credited total."""
