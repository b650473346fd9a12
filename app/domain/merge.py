from __future__ import annotations

from dataclasses import replace
from decimal import Decimal
from enum import Enum
from typing import Any

from .enums import PaymentMethod
from .models import PaymentRecord


class MergeRule(str, Enum):
    OVERWRITE = "overwrite"
    FILL_IF_EMPTY = "fill_if_empty"


# Per-field policy applied when a new gateway observation meets an existing record.
# Fields not listed here (id, credit flags, timestamps) are never touched by a merge.
PAYMENT_RECORD_MERGE_POLICY: dict[str, MergeRule] = {
    "status": MergeRule.OVERWRITE,
    "provider_status": MergeRule.OVERWRITE,
    "status_detail": MergeRule.FILL_IF_EMPTY,
    "user_id": MergeRule.FILL_IF_EMPTY,
    "amount": MergeRule.FILL_IF_EMPTY,
    "method": MergeRule.FILL_IF_EMPTY,
    "external_reference": MergeRule.FILL_IF_EMPTY,
}


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, PaymentMethod):
        return value == PaymentMethod.UNKNOWN
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
        return value == 0
    return False


def merge_observation(
    existing: PaymentRecord | None,
    observed: PaymentRecord,
    policy: dict[str, MergeRule] = PAYMENT_RECORD_MERGE_POLICY,
) -> PaymentRecord:
    """Fold a fresh observation into the stored record.

    A missing record is created from the observation as-is. Otherwise each
    field in ``policy`` is either replaced by the observed value or filled
    only while the stored value is still empty.
    """
    if existing is None:
        return replace(observed, credited=False, credited_at=None, credit_duplicated=False)
    changes: dict[str, Any] = {}
    for name, rule in policy.items():
        new_value = getattr(observed, name)
        if rule is MergeRule.OVERWRITE:
            changes[name] = new_value
        elif is_empty(getattr(existing, name)) and not is_empty(new_value):
            changes[name] = new_value
    return replace(existing, **changes)
