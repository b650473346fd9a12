from __future__ import annotations

import hashlib
import hmac
import pathlib
import sys
from decimal import Decimal

import httpx
import pytest
from fastapi.testclient import TestClient

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))
from app.main import app
from app.config import settings
from app.domain.models import UserAccount
from app.providers.mercadopago import MercadoPagoGateway
from app.repositories.memory_store import InMemoryLedgerStore
from app.routes import webhooks
from app.services.reconciliation_service import ReconciliationService

PAYMENTS = {
    "777": {
        "id": 777,
        "status": "approved",
        "status_detail": "accredited",
        "transaction_amount": 50,
        "metadata": {"user_id": "u9"},
        "payment_method_id": "pix",
    },
    "10": {"id": 10, "status": "approved", "transaction_amount": 5, "metadata": {"user_id": "u9"}},
    "20": {"id": 20, "status": "pending", "transaction_amount": 7, "external_reference": "rbc:u9:20:pix"},
}


@pytest.fixture(autouse=True)
def fresh_service(monkeypatch: pytest.MonkeyPatch) -> InMemoryLedgerStore:
    monkeypatch.setattr(settings, "mp_mode", "test")
    monkeypatch.setattr(settings, "mp_access_token_test", "TEST-0000-webhook-tests")
    monkeypatch.setattr(settings, "mp_webhook_secret", "")

    async def fake_get(self, url, headers=None, **kwargs):  # type: ignore[override]
        url = str(url)
        request = httpx.Request("GET", url)
        if "/merchant_orders/" in url:
            return httpx.Response(200, json={"payments": [{"id": 10}, {"id": 20}]}, request=request)
        payment_id = url.rsplit("/", 1)[-1]
        if payment_id in PAYMENTS:
            return httpx.Response(200, json=PAYMENTS[payment_id], request=request)
        return httpx.Response(404, json={"message": "Payment not found"}, request=request)

    monkeypatch.setattr(httpx.AsyncClient, "get", fake_get)

    store = InMemoryLedgerStore()
    store.add_user(UserAccount(id="u9", name="Bia", email="bia@example.com"))
    service = ReconciliationService(store, MercadoPagoGateway(settings, store=store), cfg=settings)
    monkeypatch.setattr(webhooks, "ledger_store", store)
    monkeypatch.setattr(webhooks, "reconciliation_service", service)
    return store


def test_webhook_credits_approved_payment(fresh_service: InMemoryLedgerStore) -> None:
    client = TestClient(app)
    response = client.post("/api/webhooks/mercadopago", json={"id": 1, "type": "payment", "data": {"id": "777"}})
    assert response.status_code == 200
    assert response.json()["payment_ids"] == [777]

    record = fresh_service.get_payment_record(777)
    assert record.status.value == "approved"
    assert record.method.value == "pix"
    assert record.credited is True
    assert fresh_service.get_user("u9").balance == Decimal("50")
    assert [h.reference for h in fresh_service.history] == ["mp:777"]
    assert fresh_service.webhooks[0]["related_payment_ids"] == [777]

    replay = client.post("/api/webhooks/mercadopago", json={"id": 2, "type": "payment", "data": {"id": "777"}})
    assert replay.status_code == 200
    assert fresh_service.get_user("u9").balance == Decimal("50")
    assert len(fresh_service.history) == 1


def test_legacy_path_and_query_ipn(fresh_service: InMemoryLedgerStore) -> None:
    client = TestClient(app)
    response = client.post("/pagamento?topic=payment&id=777")
    assert response.status_code == 200
    assert fresh_service.get_payment_record(777).credited is True


def test_order_notification_expands_payments(fresh_service: InMemoryLedgerStore) -> None:
    client = TestClient(app)
    response = client.post(
        "/api/webhooks/mercadopago",
        json={"topic": "merchant_order", "resource": "https://api.mercadopago.com/merchant_orders/5"},
    )
    assert response.status_code == 200
    assert response.json()["order_resources"] == ["https://api.mercadopago.com/merchant_orders/5"]
    assert fresh_service.get_payment_record(10).credited is True
    assert fresh_service.get_payment_record(20).status.value == "pending"
    assert fresh_service.get_user("u9").balance == Decimal("5")


def test_upstream_failure_is_still_acknowledged(fresh_service: InMemoryLedgerStore) -> None:
    client = TestClient(app)
    response = client.post("/api/webhooks/mercadopago", json={"data": {"id": "404404"}})
    assert response.status_code == 200
    assert fresh_service.get_payment_record(404404) is None


def test_payload_without_ids_is_rejected(fresh_service: InMemoryLedgerStore) -> None:
    client = TestClient(app)
    assert client.post("/api/webhooks/mercadopago", json={"data": {"id": "abc"}}).status_code == 400
    assert client.post("/api/webhooks/mercadopago", content=b"not json").status_code == 400
    assert fresh_service.webhooks == []


def test_get_liveness() -> None:
    client = TestClient(app)
    response = client.get("/pagamento")
    assert response.status_code == 200
    assert "OK" in response.text


def test_signature_verification(monkeypatch: pytest.MonkeyPatch, fresh_service: InMemoryLedgerStore) -> None:
    secret = "whsec"
    monkeypatch.setattr(settings, "mp_webhook_secret", secret)
    client = TestClient(app)
    body = {"type": "payment", "data": {"id": "777"}}

    bad = client.post(
        "/api/webhooks/mercadopago?data.id=777",
        json=body,
        headers={"x-signature": "ts=1,v1=deadbeef", "x-request-id": "req-1"},
    )
    assert bad.status_code == 401

    manifest = "id:777;request-id:req-1;ts:1700000000;"
    digest = hmac.new(secret.encode(), manifest.encode(), hashlib.sha256).hexdigest()
    good = client.post(
        "/api/webhooks/mercadopago?data.id=777",
        json=body,
        headers={"x-signature": f"ts=1700000000,v1={digest}", "x-request-id": "req-1"},
    )
    assert good.status_code == 200
    assert fresh_service.webhooks[0]["verification_status"] == "SUCCESS"


def test_health_endpoints(fresh_service: InMemoryLedgerStore) -> None:
    client = TestClient(app)
    assert client.get("/health").json() == {"status": "ok"}
    metrics = client.get("/health/metrics").json()
    assert metrics["status"] == "ok"
    assert "payments" in metrics

    assert client.get("/health/config").status_code == 401
    config = client.get(
        "/health/config", headers={"Authorization": f"Bearer {settings.api_bearer_token}"}
    ).json()
    assert config["mode"] == "test"
    assert config["token_configured"] is True
    assert "webhook-tests" not in config["access_token"]
    assert config["access_token"].endswith("ests")


def test_shutdown_closes_ledger_pool(monkeypatch: pytest.MonkeyPatch) -> None:
    closed: list[bool] = []
    monkeypatch.setattr("app.main.close_pool", lambda: closed.append(True))
    with TestClient(app) as client:
        assert client.get("/health").status_code == 200
        assert closed == []
    assert closed == [True]
