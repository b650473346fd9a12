from __future__ import annotations

import threading
from collections import Counter
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

from app.domain.errors import StoreConflict
from app.domain.merge import merge_observation
from app.domain.models import PaymentRecord, TransactionHistoryEntry, UserAccount

from .base import LedgerStore


class InMemoryLedgerStore(LedgerStore):
    """Lock-protected in-memory ledger, used when no database is configured."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self.records: Dict[int, PaymentRecord] = {}
        self.users: Dict[str, UserAccount] = {}
        self.history: list[TransactionHistoryEntry] = []
        self.webhooks: list[dict[str, Any]] = []
        self.provider_events: list[dict[str, Any]] = []

    def add_user(self, user: UserAccount) -> None:
        with self._lock:
            self.users[user.id] = replace(user, applied_references=list(user.applied_references))

    def get_payment_record(self, external_payment_id: int) -> Optional[PaymentRecord]:
        with self._lock:
            record = self.records.get(external_payment_id)
            return replace(record) if record else None

    def save_payment_record(self, record: PaymentRecord) -> PaymentRecord:
        now = datetime.now(timezone.utc)
        with self._lock:
            current = self.records.get(record.external_payment_id)
            stored = merge_observation(current, record)
            stored.created_at = current.created_at if current is not None else now
            stored.updated_at = now
            self.records[record.external_payment_id] = stored
            return replace(stored)

    def mark_credited(self, external_payment_id: int, *, credited_at: datetime, duplicated: bool) -> bool:
        with self._lock:
            current = self.records.get(external_payment_id)
            if current is None or current.credited:
                return False
            self.records[external_payment_id] = replace(
                current,
                credited=True,
                credited_at=credited_at,
                credit_duplicated=duplicated,
                updated_at=datetime.now(timezone.utc),
            )
            return True

    def get_user(self, user_id: str) -> Optional[UserAccount]:
        with self._lock:
            user = self.users.get(user_id)
            if user is None:
                return None
            references = user.applied_references
            return replace(user, applied_references=list(references) if isinstance(references, list) else references)

    def compare_and_set_balance(
        self,
        user_id: str,
        *,
        expected_version: int,
        balance: Decimal,
        applied_references: list[str],
        history: TransactionHistoryEntry,
    ) -> int:
        with self._lock:
            current = self.users.get(user_id)
            if current is None or current.version != expected_version:
                raise StoreConflict(f"user {user_id} changed since version {expected_version}")
            # History goes first: if it fails the user row is untouched
            self._append_history(history)
            new_version = current.version + 1
            self.users[user_id] = replace(
                current,
                balance=balance,
                applied_references=list(applied_references),
                version=new_version,
            )
            return new_version

    def _append_history(self, entry: TransactionHistoryEntry) -> None:
        self.history.append(replace(entry))

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
        with self._lock:
            self.webhooks.append(
                {
                    "provider": provider,
                    "event_id": event_id,
                    "event_type": event_type,
                    "verification_status": verification_status,
                    "headers": dict(headers or {}),
                    "payload": payload or {},
                    "related_payment_ids": list(related_payment_ids or []),
                    "received_at": datetime.now(timezone.utc),
                }
            )

    def log_provider_event(self, *, provider: str, operation: str, direction: str, **fields: Any) -> None:
        with self._lock:
            self.provider_events.append(
                {"provider": provider, "operation": operation, "direction": direction, **fields}
            )

    def payment_status_counts(self) -> dict[str, Any]:
        with self._lock:
            counts = Counter(record.status.value for record in self.records.values())
            credited = sum(1 for record in self.records.values() if record.credited)
        return {"status_counts": dict(counts), "credited": credited}
