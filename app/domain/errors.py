from __future__ import annotations

from typing import Any


class ReconciliationError(Exception):
    """Base class for errors raised by the reconciliation core."""


class ExtractionEmpty(ReconciliationError):
    """The notification carried no usable payment or order identifier."""


class UpstreamError(ReconciliationError):
    """Non-2xx answer from the payment gateway."""

    def __init__(self, status_code: int, body: Any, url: str | None = None):
        self.status_code = status_code
        self.body = body
        self.url = url
        super().__init__(f"gateway answered {status_code}: {body}")


class UpstreamTimeoutError(ReconciliationError, TimeoutError):
    """Gateway call exceeded its deadline."""


class UserNotFound(ReconciliationError):
    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"user {user_id} not found for credit")


class ConfigurationError(ReconciliationError):
    """Operating mode and credentials do not match."""


class StoreConflict(ReconciliationError):
    """A concurrent writer changed the row between read and write."""
