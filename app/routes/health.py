from __future__ import annotations

import asyncio
import os
import platform
from datetime import datetime, timezone
from typing import Any

import logging

from fastapi import APIRouter, Depends

from app.config import mask_token, settings
from app.domain.dtos import ConfigDiagnostics
from app.routes import webhooks
from app.utils.security import verify_bearer_token

router = APIRouter()
logger = logging.getLogger(__name__)

SERVICE_STARTED_AT = datetime.now(timezone.utc)


@router.get("/health")
async def health() -> dict[str, str]:
    """Simple health check endpoint for load balancers."""
    return {"status": "ok"}


async def _collect_payment_metrics() -> dict[str, Any]:
    metrics: dict[str, Any] = {"connected": False, "status_counts": {}, "credited": 0}
    try:
        counts = await asyncio.to_thread(webhooks.ledger_store.payment_status_counts)
        metrics.update(counts)
        metrics["connected"] = True
    except Exception as exc:  # noqa: BLE001
        logger.info("health metrics collection failed", extra={"error": str(exc)})
    return metrics


@router.get("/health/metrics")
async def health_metrics() -> dict[str, Any]:
    """Detailed service health endpoint with lightweight ledger metrics."""

    captured_at = datetime.now(timezone.utc)
    raw_metrics = await _collect_payment_metrics()
    store_connected = bool(raw_metrics.pop("connected", False))
    uptime_seconds = int((captured_at - SERVICE_STARTED_AT).total_seconds())

    return {
        "status": "ok" if store_connected else "degraded",
        "timestamp": captured_at.isoformat(),
        "uptime_seconds": uptime_seconds,
        "service": {
            "mode": settings.resolved_mode,
            "host": platform.node(),
            "pid": os.getpid(),
        },
        "database": {
            "enabled": settings.db_enabled,
            "connected": store_connected,
            "schema": settings.db_schema or None,
        },
        "payments": raw_metrics,
    }


@router.get("/health/config", response_model=ConfigDiagnostics, dependencies=[Depends(verify_bearer_token)])
async def health_config() -> ConfigDiagnostics:
    """Operating mode and masked gateway configuration."""
    token = settings.mode_token()
    return ConfigDiagnostics(
        mode=settings.resolved_mode,
        access_token=mask_token(token),
        token_configured=bool(token),
        api_base=settings.mp_api_base,
        timeout_seconds=settings.mp_timeout_seconds,
        dedup_ttl_seconds=settings.dedup_ttl_seconds,
        signature_verification=bool(settings.mp_webhook_secret),
        db_enabled=settings.db_enabled,
    )
