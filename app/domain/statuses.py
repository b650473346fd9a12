from __future__ import annotations

from enum import Enum


class PaymentStatus(str, Enum):
    """Local status of a payment record."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"

    @classmethod
    def from_provider(cls, raw: str | None) -> "PaymentStatus":
        """Map a Mercado Pago payment status onto the local enum."""

        value = (raw or "").strip().lower()
        mapping = {
            "pending": cls.PENDING,
            "in_process": cls.PENDING,
            "in_mediation": cls.PENDING,
            "authorized": cls.PENDING,
            "approved": cls.APPROVED,
            "rejected": cls.REJECTED,
            "cancelled": cls.CANCELLED,
        }
        return mapping.get(value, cls.UNKNOWN)
