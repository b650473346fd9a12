from __future__ import annotations

from abc import ABC, abstractmethod

from app.domain.models import PaymentDetails


class PaymentGateway(ABC):
    """Read-only view of the payment processor."""

    @abstractmethod
    async def fetch_payment(self, payment_id: int) -> PaymentDetails:
        """Return authoritative details for one payment.

        Raises UpstreamError on non-2xx answers and UpstreamTimeoutError
        when the deadline is exceeded.
        """

    @abstractmethod
    async def fetch_order_payments(self, resource: str) -> set[int]:
        """Expand an order aggregate (URL or bare id) into its payment ids.

        Same failure modes as ``fetch_payment``.
        """
