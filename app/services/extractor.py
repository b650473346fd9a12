from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Mapping, Union
from urllib.parse import urlparse

ORDER_KEYWORDS = re.compile(r"merchant|order", re.IGNORECASE)
PAYMENT_RESOURCE_PATH = re.compile(r"/payments/(\d+)/?$")
TRAILING_INT = re.compile(r"(\d+)/?$")


@dataclass(frozen=True)
class DirectId:
    """Payment id given directly (``data.id``, ``id`` or a bare ``resource``)."""

    payment_id: int
    source: str


@dataclass(frozen=True)
class ResourceUrl:
    """Payment id taken from a ``/payments/<id>`` resource URL."""

    payment_id: int
    url: str


@dataclass(frozen=True)
class OrderAggregate:
    """Pointer to an order whose payments must be looked up."""

    resource: str


NotificationVariant = Union[DirectId, ResourceUrl, OrderAggregate]


@dataclass
class ParsedNotification:
    notification_id: str | None = None
    topic: str = ""
    variants: list[NotificationVariant] = field(default_factory=list)

    @property
    def payment_ids(self) -> set[int]:
        return {v.payment_id for v in self.variants if isinstance(v, (DirectId, ResourceUrl))}

    @property
    def order_resources(self) -> list[str]:
        seen: list[str] = []
        for v in self.variants:
            if isinstance(v, OrderAggregate) and v.resource not in seen:
                seen.append(v.resource)
        return seen

    @property
    def is_empty(self) -> bool:
        return not self.variants


def to_int(value: Any) -> int | None:
    """Parse an unsigned integer id; anything else is ``None``."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, str):
        text = value.strip()
        if text.isdigit():
            parsed = int(text)
            return parsed if parsed > 0 else None
    return None


def _text(value: Any) -> str:
    if value is None or isinstance(value, (dict, list)):
        return ""
    return str(value).strip()


def _payment_id_from_resource(resource: str) -> int | None:
    try:
        path = urlparse(resource).path
    except ValueError:
        return None
    match = PAYMENT_RESOURCE_PATH.search(path or "")
    if not match:
        return None
    return to_int(match.group(1))


def _is_order_resource(resource: str) -> bool:
    if not resource or resource.isdigit():
        return False
    try:
        path = urlparse(resource).path
    except ValueError:
        return False
    return bool(ORDER_KEYWORDS.search(path or ""))


def parse_notification(
    body: Mapping[str, Any] | None,
    query: Mapping[str, Any] | None = None,
) -> ParsedNotification:
    """Turn a loosely shaped webhook/IPN payload into tagged variants.

    Body fields win over query parameters. Unknown fields are ignored and
    malformed ids are dropped, so the result may be empty.
    """
    body = body if isinstance(body, Mapping) else {}
    query = query or {}

    data = body.get("data")
    data = data if isinstance(data, Mapping) else {}
    topic = _text(body.get("topic") or body.get("type") or query.get("topic") or query.get("type"))
    resource = _text(body.get("resource") or query.get("resource"))
    data_id_raw = data.get("id") if "id" in data else query.get("data.id")
    top_id_raw = body.get("id") if "id" in body else query.get("id")

    order_typed = bool(ORDER_KEYWORDS.search(topic)) or _is_order_resource(resource)
    variants: list[NotificationVariant] = []

    data_id = to_int(data_id_raw)
    if data_id is not None:
        variants.append(DirectId(payment_id=data_id, source="data.id"))

    # Without data.id the top-level id is the subject itself (feed-style IPN);
    # with it, the top-level id only names the notification.
    top_id = to_int(top_id_raw)
    if data_id_raw is None and top_id is not None:
        if order_typed and not resource:
            variants.append(OrderAggregate(resource=str(top_id)))
        elif not order_typed:
            variants.append(DirectId(payment_id=top_id, source="id"))

    if resource:
        payment_id = _payment_id_from_resource(resource)
        if payment_id is not None:
            variants.append(ResourceUrl(payment_id=payment_id, url=resource))
        elif order_typed:
            variants.append(OrderAggregate(resource=resource))
        elif resource.isdigit():
            bare = to_int(resource)
            if bare is not None:
                variants.append(DirectId(payment_id=bare, source="resource"))

    notification_id = _text(top_id_raw) if data_id_raw is not None else None
    return ParsedNotification(
        notification_id=notification_id or None,
        topic=topic,
        variants=variants,
    )


def order_id_from_resource(resource: str) -> int | None:
    """Trailing integer of an order URL, or the bare id itself."""
    text = (resource or "").strip()
    if text.isdigit():
        return to_int(text)
    try:
        path = urlparse(text).path
    except ValueError:
        return None
    match = TRAILING_INT.search(path or "")
    return to_int(match.group(1)) if match else None
