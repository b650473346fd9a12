from __future__ import annotations

from typing import Any, Iterable

DEFAULT_REFERENCE_PREFIXES = ("rbc",)
MIN_LEGACY_USER_ID_LENGTH = 6


def _clean(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def parse_user_id_from_reference(
    external_reference: Any,
    prefixes: Iterable[str] = DEFAULT_REFERENCE_PREFIXES,
) -> str | None:
    """Read the user id out of a legacy external reference.

    ``rbc:<userId>:<paymentId>:<method>`` yields the second segment; any
    other string of at least six characters is taken to be the user id.
    """
    reference = _clean(external_reference)
    if not reference:
        return None
    parts = reference.split(":")
    if len(parts) >= 2 and parts[0] in set(prefixes):
        return parts[1].strip() or None
    if len(reference) >= MIN_LEGACY_USER_ID_LENGTH:
        return reference
    return None


def resolve_user_id(
    metadata_user_id: Any,
    external_reference: Any,
    prefixes: Iterable[str] = DEFAULT_REFERENCE_PREFIXES,
) -> str | None:
    user_id = _clean(metadata_user_id)
    if user_id:
        return user_id
    return parse_user_id_from_reference(external_reference, prefixes)
