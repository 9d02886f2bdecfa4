import pytest
from conftest import RECEIVER, make_address, make_payment_tx, make_signature
from fastapi.testclient import TestClient

from x402_oracle.main import create_app

ENDPOINT = "/api/reputation"


@pytest.fixture
def client(settings, ledger, replay_guard):
    app = create_app(settings, ledger=ledger, replay_guard=replay_guard)
    with TestClient(app) as test_client:
        yield test_client


def test_unpaid_request_returns_402(client):
    response = client.get(ENDPOINT)

    assert response.status_code == 402
    body = response.json()
    assert body["payment"]["amount"] == 0.05
    assert body["payment"]["token"] == "USDC"
    assert body["payment"]["receiver"] == RECEIVER
    assert response.headers["x-payment-required"] == "true"
    assert response.headers["x-payment-amount"] == "0.05"
    assert response.headers["x-payment-token"] == "USDC"
    assert response.headers["x-payment-network"] == "devnet"
    assert response.headers["x-request-id"]


def test_unpaid_post_returns_402(client):
    response = client.post(ENDPOINT, json={"wallet": make_address()})
    assert response.status_code == 402


def test_malformed_proof_returns_400(client, ledger):
    response = client.get(ENDPOINT, headers={"Authorization": "Bearer nope"})

    assert response.status_code == 400
    assert response.json()["code"] == "malformed_proof"
    assert ledger.calls == []


def test_paid_get_for_payer(client, ledger):
    sender = make_address()
    signature = make_signature()
    ledger.add(make_payment_tx(signature, sender=sender))

    response = client.get(ENDPOINT, headers={"Authorization": signature})

    assert response.status_code == 200
    body = response.json()
    assert body["walletAddress"] == sender
    assert 50 <= body["score"] <= 99
    assert body["paymentVerification"]["paidAmount"] == 0.05
    assert response.headers["x-payment-verified"] == "true"
    assert response.headers["x-payment-signature"] == signature


def test_paid_get_for_named_wallet(client, ledger):
    signature = make_signature()
    ledger.add(make_payment_tx(signature))
    wallet = make_address()

    response = client.get(
        ENDPOINT, params={"wallet": wallet}, headers={"Authorization": f"Bearer {signature}"}
    )

    assert response.status_code == 200
    assert response.json()["walletAddress"] == wallet


def test_paid_post_with_wallet_body(client, ledger):
    signature = make_signature()
    ledger.add(make_payment_tx(signature))
    wallet = make_address()

    response = client.post(
        ENDPOINT, json={"wallet": wallet}, headers={"Authorization": signature}
    )

    assert response.status_code == 200
    assert response.json()["walletAddress"] == wallet


def test_replayed_signature_rejected(client, ledger):
    signature = make_signature()
    ledger.add(make_payment_tx(signature))

    first = client.get(ENDPOINT, headers={"Authorization": signature})
    second = client.get(ENDPOINT, headers={"Authorization": signature})

    assert first.status_code == 200
    assert second.status_code == 402
    assert second.json()["code"] == "replay_detected"
    assert second.json()["required"]["amount"] == 0.05


def test_ledger_outage_returns_503(client, ledger):
    from x402_oracle.crypto.interfaces import LedgerUnavailableError

    ledger.error = LedgerUnavailableError("down")

    response = client.get(ENDPOINT, headers={"Authorization": make_signature()})

    assert response.status_code == 503
    assert response.headers["retry-after"] == "5"


def test_options_documents_price(client):
    response = client.options(ENDPOINT)

    assert response.status_code == 200
    body = response.json()
    assert body["endpoint"] == ENDPOINT
    assert body["payment"]["receiver"] == RECEIVER
    assert body["payment"]["network"] == "devnet"


def test_injected_guard_is_shared(settings, ledger, replay_guard):
    app = create_app(settings, ledger=ledger, replay_guard=replay_guard)
    signature = make_signature()
    ledger.add(make_payment_tx(signature))

    with TestClient(app) as test_client:
        test_client.get(ENDPOINT, headers={"Authorization": signature})

    assert app.state.replay_guard is replay_guard
    assert replay_guard.contains(signature)


def test_request_id_is_propagated(client):
    response = client.get("/healthz", headers={"X-Request-ID": "req-123"})
    assert response.headers["x-request-id"] == "req-123"


def test_liveness(client):
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_readiness(client, ledger):
    assert client.get("/readyz").json()["status"] == "ready"

    ledger.healthy = False
    response = client.get("/readyz")

    assert response.status_code == 503
    assert response.json()["detail"]["dependencies"]["ledger_rpc"] == "error"


def test_detailed_health(client, ledger):
    signature = make_signature()
    ledger.add(make_payment_tx(signature))
    client.get(ENDPOINT, headers={"Authorization": signature})

    body = client.get("/health").json()

    assert body["status"] == "healthy"
    assert body["checks"]["ledger_rpc"] == "ok"
    assert body["replay_guard_entries"] == 1


def test_detailed_health_degraded(client, ledger):
    ledger.error = RuntimeError("boom")

    body = client.get("/health").json()

    assert body["status"] == "degraded"
    assert body["checks"]["ledger_rpc"] == "error"
