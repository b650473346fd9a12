from __future__ import annotations

import asyncio
import pathlib
import sys
from decimal import Decimal

import pytest

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))
from app.config import Settings
from app.domain.errors import StoreConflict, UserNotFound
from app.domain.models import UserAccount
from app.repositories.memory_store import InMemoryLedgerStore
from app.services.ledger_service import LedgerService


def _service(store: InMemoryLedgerStore, attempts: int = 5) -> LedgerService:
    return LedgerService(store, Settings(credit_max_attempts=attempts))


def _store_with_user(**fields) -> InMemoryLedgerStore:
    store = InMemoryLedgerStore()
    store.add_user(UserAccount(id="u1", name="Ana", email="ana@example.com", **fields))
    return store


def test_credit_applies_once_and_appends_history() -> None:
    store = _store_with_user(balance=Decimal("10"))
    result = asyncio.run(_service(store).credit("u1", Decimal("50"), "mp:777"))
    assert result.duplicated is False
    assert result.new_balance == Decimal("60")
    user = store.get_user("u1")
    assert user.balance == Decimal("60")
    assert user.applied_references == ["mp:777"]
    assert len(store.history) == 1
    entry = store.history[0]
    assert entry.reference == "mp:777"
    assert entry.kind.value == "deposit"
    assert "mp:777" in entry.description
    assert entry.user_name == "Ana"


def test_repeated_credit_is_duplicated() -> None:
    store = _store_with_user()
    service = _service(store)
    asyncio.run(service.credit("u1", Decimal("50"), "mp:777"))
    again = asyncio.run(service.credit("u1", Decimal("50"), "mp:777"))
    assert again.duplicated is True
    assert again.new_balance == Decimal("50")
    assert store.get_user("u1").balance == Decimal("50")
    assert len(store.history) == 1


def test_legacy_prefixed_reference_counts_as_applied() -> None:
    store = _store_with_user(balance=Decimal("5"), applied_references=["ref:mp:777"])
    result = asyncio.run(_service(store).credit("u1", Decimal("50"), "mp:777"))
    assert result.duplicated is True
    assert store.get_user("u1").balance == Decimal("5")


def test_malformed_balance_and_references_default() -> None:
    store = InMemoryLedgerStore()
    store.add_user(UserAccount(id="u1", balance="oops", applied_references=[]))  # type: ignore[arg-type]
    store.users["u1"].applied_references = "not-a-list"  # type: ignore[assignment]
    result = asyncio.run(_service(store).credit("u1", Decimal("7"), "mp:1"))
    assert result.new_balance == Decimal("7")
    assert store.get_user("u1").applied_references == ["mp:1"]


def test_unknown_user_raises() -> None:
    with pytest.raises(UserNotFound):
        asyncio.run(_service(InMemoryLedgerStore()).credit("ghost", Decimal("1"), "mp:1"))


def test_concurrent_credits_with_same_reference_apply_once() -> None:
    store = _store_with_user()
    service = _service(store)

    async def burst():
        return await asyncio.gather(*(service.credit("u1", Decimal("50"), "mp:9") for _ in range(10)))

    results = asyncio.run(burst())
    assert sum(1 for r in results if not r.duplicated) == 1
    assert all(r.new_balance == Decimal("50") for r in results)
    assert store.get_user("u1").balance == Decimal("50")
    assert len(store.history) == 1


def test_concurrent_credits_with_different_references_are_not_lost() -> None:
    store = _store_with_user()
    service = _service(store, attempts=10)

    async def burst():
        return await asyncio.gather(*(service.credit("u1", Decimal("10"), f"mp:{i}") for i in range(5)))

    results = asyncio.run(burst())
    assert not any(r.duplicated for r in results)
    user = store.get_user("u1")
    assert user.balance == Decimal("50")
    assert sorted(user.applied_references) == [f"mp:{i}" for i in range(5)]


class RacingStore(InMemoryLedgerStore):
    """Another writer lands the same credit right before our first write."""

    def __init__(self) -> None:
        super().__init__()
        self.cas_calls = 0

    def compare_and_set_balance(self, user_id, *, expected_version, balance, applied_references, history):
        self.cas_calls += 1
        if self.cas_calls == 1:
            super().compare_and_set_balance(
                user_id,
                expected_version=expected_version,
                balance=balance,
                applied_references=applied_references,
                history=history,
            )
            raise StoreConflict("lost the race")
        return super().compare_and_set_balance(
            user_id,
            expected_version=expected_version,
            balance=balance,
            applied_references=applied_references,
            history=history,
        )


def test_conflict_retry_rechecks_reference() -> None:
    store = RacingStore()
    store.add_user(UserAccount(id="u1"))
    result = asyncio.run(_service(store).credit("u1", Decimal("50"), "mp:777"))
    assert result.duplicated is True
    assert store.get_user("u1").balance == Decimal("50")
    assert store.cas_calls == 1
    assert len(store.history) == 1


class AlwaysConflictStore(InMemoryLedgerStore):
    def compare_and_set_balance(self, user_id, **kwargs):
        raise StoreConflict("busy")


def test_conflicts_exhausting_attempts_raise() -> None:
    store = AlwaysConflictStore()
    store.add_user(UserAccount(id="u1"))
    with pytest.raises(StoreConflict):
        asyncio.run(_service(store, attempts=3).credit("u1", Decimal("1"), "mp:1"))
    assert store.get_user("u1").balance == Decimal("0")


class FailingHistoryStore(InMemoryLedgerStore):
    """History insert fails a set number of times, like a dropped connection."""

    def __init__(self, failures: int = 1) -> None:
        super().__init__()
        self.failures = failures

    def _append_history(self, entry):
        if self.failures:
            self.failures -= 1
            raise RuntimeError("history insert failed")
        super()._append_history(entry)


def test_failed_history_write_leaves_balance_untouched() -> None:
    store = FailingHistoryStore()
    store.add_user(UserAccount(id="u1", balance=Decimal("10")))
    service = _service(store)
    with pytest.raises(RuntimeError):
        asyncio.run(service.credit("u1", Decimal("50"), "mp:777"))
    user = store.get_user("u1")
    assert user.balance == Decimal("10")
    assert user.applied_references == []
    assert user.version == 0
    assert store.history == []

    retry = asyncio.run(service.credit("u1", Decimal("50"), "mp:777"))
    assert retry.duplicated is False
    assert store.get_user("u1").balance == Decimal("60")
    assert [h.reference for h in store.history] == ["mp:777"]
