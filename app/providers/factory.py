from __future__ import annotations

from app.config import Settings
from app.repositories.base import LedgerStore

from .base import PaymentGateway


def get_gateway(settings: Settings, store: LedgerStore | None = None) -> PaymentGateway:
    """Return the payment gateway client after checking mode/token consistency."""
    settings.validate_mode()
    from .mercadopago import MercadoPagoGateway

    return MercadoPagoGateway(settings, store=store)
