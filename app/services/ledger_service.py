from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable

from app.config import Settings, settings
from app.domain.errors import StoreConflict, UserNotFound
from app.domain.models import CreditResult, TransactionHistoryEntry, UserAccount
from app.repositories.base import LedgerStore

LEGACY_REFERENCE_PREFIX = "ref:"


def _as_decimal(value: Any) -> Decimal:
    if isinstance(value, bool):
        return Decimal("0")
    if isinstance(value, Decimal):
        return value if value.is_finite() else Decimal("0")
    if isinstance(value, (int, float)):
        try:
            parsed = Decimal(str(value))
        except InvalidOperation:
            return Decimal("0")
        return parsed if parsed.is_finite() else Decimal("0")
    return Decimal("0")


def _as_references(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]


def reference_applied(applied: list[str], reference: str) -> bool:
    """Membership test that also accepts the legacy ``ref:``-prefixed form."""
    return reference in applied or f"{LEGACY_REFERENCE_PREFIX}{reference}" in applied


class LedgerService:
    """Idempotent balance credits keyed by an opaque reference."""

    def __init__(
        self,
        store: LedgerStore,
        cfg: Settings = settings,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.store = store
        self.settings = cfg
        self.clock = clock
        self.logger = logging.getLogger(__name__)

    async def credit(self, user_id: str, amount: Decimal, reference: str) -> CreditResult:
        """Add ``amount`` to the user's balance at most once per ``reference``.

        The read-modify-write is re-run from a fresh read on every version
        conflict, so a credit applied by a concurrent writer is detected as a
        duplicate instead of being applied twice.
        """
        attempts = max(1, self.settings.credit_max_attempts)
        for attempt in range(1, attempts + 1):
            user = await asyncio.to_thread(self.store.get_user, user_id)
            if user is None:
                raise UserNotFound(user_id)
            balance = _as_decimal(user.balance)
            applied = _as_references(user.applied_references)
            if reference_applied(applied, reference):
                self.logger.info(
                    "credit already applied",
                    extra={"user_id": user_id, "reference": reference, "duplicated": True},
                )
                return CreditResult(duplicated=True, new_balance=balance)

            new_balance = balance + amount
            try:
                await asyncio.to_thread(
                    self.store.compare_and_set_balance,
                    user_id,
                    expected_version=user.version,
                    balance=new_balance,
                    applied_references=[*applied, reference],
                    history=self._history_entry(user, amount, reference),
                )
            except StoreConflict:
                self.logger.info(
                    "balance write conflict; retrying",
                    extra={"user_id": user_id, "reference": reference, "attempt": attempt},
                )
                continue

            self.logger.info(
                "credit applied",
                extra={"user_id": user_id, "reference": reference, "amount": amount, "duplicated": False},
            )
            return CreditResult(duplicated=False, new_balance=new_balance)
        raise StoreConflict(f"credit {reference} for user {user_id} lost {attempts} write races")

    def _history_entry(self, user: UserAccount, amount: Decimal, reference: str) -> TransactionHistoryEntry:
        return TransactionHistoryEntry(
            user_id=user.id,
            user_name=user.name or "—",
            user_email=user.email or "—",
            amount=amount,
            description=f"Credit confirmed ({reference})",
            reference=reference,
            created_at=self.clock(),
        )
