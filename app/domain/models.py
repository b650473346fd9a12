from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

from .enums import HistoryKind, PaymentMethod, ReconcileOutcome
from .statuses import PaymentStatus


@dataclass
class PaymentRecord:
    """Local mirror of a Mercado Pago payment."""

    external_payment_id: int
    status: PaymentStatus = PaymentStatus.UNKNOWN
    provider_status: str = ""
    status_detail: str = ""
    user_id: str | None = None
    amount: Decimal = Decimal("0")
    method: PaymentMethod = PaymentMethod.UNKNOWN
    external_reference: str = ""
    credited: bool = False
    credited_at: datetime | None = None
    credit_duplicated: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class UserAccount:
    """Balance-bearing slice of a user entity."""

    id: str
    name: str | None = None
    email: str | None = None
    balance: Decimal = Decimal("0")
    applied_references: list[str] = field(default_factory=list)
    version: int = 0


@dataclass
class TransactionHistoryEntry:
    user_id: str
    user_name: str
    user_email: str
    amount: Decimal
    description: str
    reference: str
    kind: HistoryKind = HistoryKind.DEPOSIT
    created_at: datetime | None = None


@dataclass
class PaymentDetails:
    """Authoritative payment data as read from the gateway."""

    payment_id: int
    status: str = ""
    status_detail: str = ""
    transaction_amount: Decimal | None = None
    payment_method_id: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    external_reference: str = ""
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class CreditResult:
    duplicated: bool
    new_balance: Decimal


@dataclass
class ReconcileResult:
    payment_id: int
    outcome: ReconcileOutcome
    status: PaymentStatus | None = None
    user_id: str | None = None
    duplicated: bool | None = None
    error: str | None = None
