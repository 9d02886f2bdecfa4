"""Agent wallet paying the reputation API over ASGI, backed by an in-memory ledger."""

import time
from datetime import datetime
from decimal import Decimal

import httpx
import pytest
import pytest_asyncio
from conftest import RECEIVER

from x402_oracle.client import AgentWallet
from x402_oracle.main import create_app

BASE_URL = "http://oracle.test"
URL = f"{BASE_URL}/api/reputation"


@pytest.fixture
def app(settings, ledger, replay_guard):
    return create_app(settings, ledger=ledger, replay_guard=replay_guard)


@pytest_asyncio.fixture
async def http(app):
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url=BASE_URL
    ) as client:
        yield client


@pytest.mark.asyncio
async def test_unpaid_then_paid(http, signer, replay_guard):
    unpaid = await http.get(URL)
    assert unpaid.status_code == 402
    assert unpaid.json()["payment"]["amount"] == 0.05
    assert unpaid.json()["payment"]["token"] == "USDC"

    wallet = AgentWallet(http_client=http, signer=signer)
    result = await wallet.pay(URL, 0.05)

    assert result.success, result.error
    assert result.status == 200
    assert signer.transfers == [(RECEIVER, Decimal("0.05"))]

    proof = result.data["paymentVerification"]
    assert proof["paidAmount"] == 0.05
    assert proof["txSignature"] == result.tx_signature
    assert proof["proofSignature"] == result.tx_signature
    assert proof["payer"] == signer.address
    assert result.data["walletAddress"] == signer.address
    verified_at = datetime.fromisoformat(proof["verifiedAt"]).timestamp()
    assert abs(verified_at - proof["blockTime"]) <= 300
    assert abs(time.time() - verified_at) < 60

    assert replay_guard.contains(result.tx_signature)


@pytest.mark.asyncio
async def test_reusing_proof_is_rejected(http, signer):
    wallet = AgentWallet(http_client=http, signer=signer)
    result = await wallet.pay(URL, 0.05)

    replay = await http.get(URL, headers={"Authorization": result.tx_signature})

    assert replay.status_code == 402
    assert replay.json()["code"] == "replay_detected"


@pytest.mark.asyncio
async def test_budget_guard_blocks_payment(http, signer, ledger):
    wallet = AgentWallet(http_client=http, signer=signer)

    result = await wallet.pay(URL, 0.03)

    assert not result.success
    assert result.status == 402
    assert signer.transfers == []
    assert ledger.transactions == {}


@pytest.mark.asyncio
async def test_pay_for_named_wallet(http, signer):
    wallet = AgentWallet(http_client=http, signer=signer)

    result = await wallet.pay(
        URL, 0.05, method="POST", json={"wallet": RECEIVER}
    )

    assert result.success
    assert result.data["walletAddress"] == RECEIVER
