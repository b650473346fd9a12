from __future__ import annotations

import hashlib
import threading
import time
from typing import Callable, Dict

Clock = Callable[[], float]


def credit_lock_key(payment_id: int | str) -> str:
    """Derive the dedup key guarding the credit path of one payment."""
    return hashlib.sha256(f"credit:{payment_id}".encode("utf-8")).hexdigest()


class DedupGuard:
    """Process-local expiring lock table.

    A key granted by ``try_acquire`` stays busy until ``now + ttl``; every
    other call for that key inside the window gets ``False``. This only
    collapses bursty redelivery within one process. The durable ``credited``
    flag and the applied-reference set on the user remain the correctness
    gate, and several replicas each keep their own table.
    """

    def __init__(self, clock: Clock = time.monotonic) -> None:
        self._clock = clock
        self._expires: Dict[str, float] = {}
        self._lock = threading.Lock()

    def try_acquire(self, key: str, ttl: float) -> bool:
        with self._lock:
            now = self._clock()
            self._purge(now)
            expires_at = self._expires.get(key)
            if expires_at is not None and expires_at > now:
                return False
            self._expires[key] = now + ttl
            return True

    def release(self, key: str) -> None:
        with self._lock:
            self._expires.pop(key, None)

    def _purge(self, now: float) -> None:
        expired = [key for key, expires_at in self._expires.items() if expires_at <= now]
        for key in expired:
            del self._expires[key]
