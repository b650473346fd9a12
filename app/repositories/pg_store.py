from __future__ import annotations

from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from psycopg2.extras import Json

from app.db.client import get_conn
from app.domain.enums import PaymentMethod
from app.domain.errors import StoreConflict
from app.domain.models import PaymentRecord, TransactionHistoryEntry, UserAccount
from app.domain.statuses import PaymentStatus

from .base import LedgerStore

_RECORD_COLUMNS = """
    external_payment_id, status, provider_status, status_detail, user_id, amount,
    method, external_reference, credited, credited_at, credit_duplicated,
    created_at, updated_at
"""


def _to_decimal(value: Any) -> Decimal:
    if value is None or isinstance(value, bool):
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        return Decimal("0")


def _to_references(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if isinstance(item, str)]


class PgLedgerStore(LedgerStore):
    """PostgreSQL-backed ledger using raw psycopg2.

    Tables: payment_record, app_user, balance_history, webhook_inbox,
    provider_event_log (all in ``settings.db_schema``).
    """

    def _hydrate_record(self, row: tuple[Any, ...]) -> PaymentRecord:
        try:
            status = PaymentStatus(str(row[1]))
        except ValueError:
            status = PaymentStatus.UNKNOWN
        try:
            method = PaymentMethod(str(row[6]))
        except ValueError:
            method = PaymentMethod.UNKNOWN
        return PaymentRecord(
            external_payment_id=int(row[0]),
            status=status,
            provider_status=str(row[2] or ""),
            status_detail=str(row[3] or ""),
            user_id=str(row[4]) if row[4] else None,
            amount=_to_decimal(row[5]),
            method=method,
            external_reference=str(row[7] or ""),
            credited=bool(row[8]),
            credited_at=row[9],
            credit_duplicated=bool(row[10]),
            created_at=row[11],
            updated_at=row[12],
        )

    def get_payment_record(self, external_payment_id: int) -> Optional[PaymentRecord]:
        with get_conn() as conn:
            if conn is None:
                return None
            with conn.cursor() as cur:
                cur.execute(
                    f"SELECT {_RECORD_COLUMNS} FROM payment_record WHERE external_payment_id = %s LIMIT 1",
                    (external_payment_id,),
                )
                row = cur.fetchone()
                return self._hydrate_record(row) if row else None

    def save_payment_record(self, record: PaymentRecord) -> PaymentRecord:
        with get_conn() as conn:
            if conn is None:
                return record
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    INSERT INTO payment_record (
                        external_payment_id, status, provider_status, status_detail, user_id,
                        amount, method, external_reference, credited, credit_duplicated,
                        created_at, updated_at
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, FALSE, FALSE, NOW(), NOW())
                    ON CONFLICT (external_payment_id) DO UPDATE
                        SET status = EXCLUDED.status,
                            provider_status = EXCLUDED.provider_status,
                            status_detail = COALESCE(NULLIF(payment_record.status_detail, ''), EXCLUDED.status_detail),
                            user_id = COALESCE(NULLIF(payment_record.user_id, ''), EXCLUDED.user_id),
                            amount = CASE WHEN COALESCE(payment_record.amount, 0) = 0
                                          THEN EXCLUDED.amount ELSE payment_record.amount END,
                            method = CASE WHEN COALESCE(payment_record.method, 'unknown') IN ('', 'unknown')
                                          THEN EXCLUDED.method ELSE payment_record.method END,
                            external_reference = COALESCE(
                                NULLIF(payment_record.external_reference, ''), EXCLUDED.external_reference
                            ),
                            updated_at = NOW()
                    RETURNING {_RECORD_COLUMNS}
                    """,
                    (
                        record.external_payment_id,
                        record.status.value,
                        record.provider_status,
                        record.status_detail,
                        record.user_id,
                        record.amount,
                        record.method.value,
                        record.external_reference,
                    ),
                )
                row = cur.fetchone()
                return self._hydrate_record(row)

    def mark_credited(self, external_payment_id: int, *, credited_at: datetime, duplicated: bool) -> bool:
        with get_conn() as conn:
            if conn is None:
                return False
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE payment_record
                       SET credited = TRUE,
                           credited_at = %s,
                           credit_duplicated = %s,
                           updated_at = NOW()
                     WHERE external_payment_id = %s AND credited = FALSE
                    """,
                    (credited_at, duplicated, external_payment_id),
                )
                return cur.rowcount == 1

    def get_user(self, user_id: str) -> Optional[UserAccount]:
        with get_conn() as conn:
            if conn is None:
                return None
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT id, name, email, balance, applied_references, version
                      FROM app_user
                     WHERE id = %s
                     LIMIT 1
                    """,
                    (user_id,),
                )
                row = cur.fetchone()
                if not row:
                    return None
                return UserAccount(
                    id=str(row[0]),
                    name=row[1],
                    email=row[2],
                    balance=_to_decimal(row[3]),
                    applied_references=_to_references(row[4]),
                    version=int(row[5] or 0),
                )

    def compare_and_set_balance(
        self,
        user_id: str,
        *,
        expected_version: int,
        balance: Decimal,
        applied_references: list[str],
        history: TransactionHistoryEntry,
    ) -> int:
        with get_conn() as conn:
            if conn is None:
                raise StoreConflict("database not configured")
            # One transaction: balance, references and history commit or roll back together
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE app_user
                       SET balance = %s,
                           applied_references = %s,
                           version = version + 1,
                           updated_at = NOW()
                     WHERE id = %s AND COALESCE(version, 0) = %s
                     RETURNING version
                    """,
                    (balance, Json(list(applied_references)), user_id, expected_version),
                )
                row = cur.fetchone()
                if not row:
                    raise StoreConflict(f"user {user_id} changed since version {expected_version}")
                cur.execute(
                    """
                    INSERT INTO balance_history (
                        user_id, user_name, user_email, amount, kind, description, reference, created_at
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s, COALESCE(%s, NOW()))
                    """,
                    (
                        history.user_id,
                        history.user_name,
                        history.user_email,
                        history.amount,
                        history.kind.value,
                        history.description,
                        history.reference,
                        history.created_at,
                    ),
                )
                return int(row[0])

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
        with get_conn() as conn:
            if conn is None:
                return
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO webhook_inbox (
                        provider, event_id, event_type, verification_status, headers, payload,
                        related_payment_ids, received_at
                    ) VALUES (
                        %s, %s, %s, %s, %s, %s, %s, NOW()
                    )
                    """,
                    (
                        provider,
                        event_id,
                        event_type,
                        verification_status,
                        Json(headers or {}),
                        Json(payload or {}),
                        Json(list(related_payment_ids or [])),
                    ),
                )

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
        with get_conn() as conn:
            if conn is None:
                return
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO provider_event_log (
                        external_payment_id, provider, direction, operation, request_url,
                        request_headers, response_status, response_body,
                        error_message, latency_ms, created_at
                    ) VALUES (
                        %s, %s, %s, %s, %s,
                        %s, %s, %s,
                        %s, %s, NOW()
                    )
                    """,
                    (
                        external_payment_id,
                        provider,
                        direction,
                        operation,
                        request_url,
                        Json(request_headers or {}),
                        response_status,
                        Json(response_body or {}),
                        error_message,
                        latency_ms,
                    ),
                )

    def payment_status_counts(self) -> dict[str, Any]:
        metrics: dict[str, Any] = {"status_counts": {}, "credited": 0}
        with get_conn() as conn:
            if conn is None:
                return metrics
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT status, COUNT(*)
                      FROM payment_record
                     GROUP BY status
                    """,
                )
                for status_value, count in cur.fetchall() or []:
                    metrics["status_counts"][str(status_value)] = int(count)
                cur.execute("SELECT COUNT(*) FROM payment_record WHERE credited")
                row = cur.fetchone()
                metrics["credited"] = int(row[0] or 0) if row else 0
        return metrics
