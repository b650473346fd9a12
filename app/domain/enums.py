from __future__ import annotations

from enum import Enum


class PaymentMethod(str, Enum):
    """Payment instrument families tracked locally."""

    PIX = "pix"
    CARD = "card"
    BOLETO = "boleto"
    UNKNOWN = "unknown"

    @classmethod
    def from_provider_id(cls, payment_method_id: str | None) -> "PaymentMethod":
        # Mercado Pago ids: "pix", "bolbradesco", "visa", "master", ...
        value = (payment_method_id or "").strip().lower()
        if not value:
            return cls.UNKNOWN
        if value == "pix":
            return cls.PIX
        if value.startswith("bol"):
            return cls.BOLETO
        return cls.CARD


class HistoryKind(str, Enum):
    DEPOSIT = "deposit"


class ReconcileOutcome(str, Enum):
    """What happened to one candidate payment id."""

    RECORDED = "recorded"
    CREDITED = "credited"
    ALREADY_CREDITED = "already_credited"
    IN_FLIGHT = "in_flight"
    MISSING_USER = "missing_user"
    INVALID_AMOUNT = "invalid_amount"
    FAILED = "failed"
