from __future__ import annotations

from pydantic import BaseModel, Field


class WebhookAck(BaseModel):
    """Acknowledgement returned to the processor for an accepted notification."""

    status: str = "accepted"
    notification_id: str | None = None
    payment_ids: list[int] = Field(default_factory=list, description="Payment ids queued for reconciliation")
    order_resources: list[str] = Field(
        default_factory=list, description="Order aggregates queued for expansion"
    )


class ConfigDiagnostics(BaseModel):
    """Masked view of the active gateway configuration."""

    mode: str
    access_token: str = Field(..., description="Masked access token for the active mode")
    token_configured: bool
    api_base: str
    timeout_seconds: float
    dedup_ttl_seconds: int
    signature_verification: bool
    db_enabled: bool
