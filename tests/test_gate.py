from dataclasses import replace
from decimal import Decimal

import pytest
from conftest import RECEIVER, make_address, make_payment_tx, make_signature

from x402_oracle.crypto.interfaces import LedgerUnavailableError, TokenBalance
from x402_oracle.gate import GateState, PaymentRequirement, ResourceGate, extract_proof


@pytest.fixture
def requirement():
    return PaymentRequirement(
        receiver=RECEIVER, amount=Decimal("0.05"), token="USDC", network="devnet"
    )


@pytest.fixture
def gate(verifier, requirement):
    return ResourceGate(verifier, requirement)


def test_extract_proof():
    assert extract_proof("abc") == "abc"
    assert extract_proof("Bearer abc") == "abc"
    assert extract_proof("bearer   abc ") == "abc"
    assert extract_proof(None) == ""


@pytest.mark.asyncio
async def test_no_credential_requires_payment(gate):
    outcome = await gate.authorize(None)

    assert outcome.state is GateState.PAYMENT_REQUIRED
    assert outcome.status_code == 402
    assert outcome.body["status"] == 402
    assert outcome.body["payment"]["receiver"] == RECEIVER
    assert outcome.body["payment"]["amount"] == 0.05
    assert outcome.body["payment"]["token"] == "USDC"
    assert outcome.body["payment"]["network"] == "devnet"
    assert "Authorization" in outcome.body["payment"]["instructions"]
    assert outcome.headers["X-Payment-Required"] == "true"
    assert outcome.headers["X-Payment-Amount"] == "0.05"
    assert outcome.headers["X-Payment-Receiver"] == RECEIVER


@pytest.mark.asyncio
async def test_malformed_credential_denied_without_verification(gate, ledger):
    outcome = await gate.authorize("Bearer 12345")

    assert outcome.state is GateState.DENIED
    assert outcome.status_code == 400
    assert outcome.body["code"] == "malformed_proof"
    assert ledger.calls == []


@pytest.mark.asyncio
async def test_verified_payment_defaults_to_payer(gate, ledger):
    sender = make_address()
    signature = make_signature()
    tx = ledger.add(make_payment_tx(signature, sender=sender))

    outcome = await gate.authorize(f"Bearer {signature}")

    assert outcome.state is GateState.GRANTED
    assert outcome.status_code == 200
    assert outcome.body["walletAddress"] == sender
    proof = outcome.body["paymentVerification"]
    assert proof["txSignature"] == signature
    assert proof["proofSignature"] == signature
    assert proof["payer"] == sender
    assert proof["paidAmount"] == 0.05
    assert proof["blockTime"] == tx.block_time
    assert proof["slot"] == tx.slot
    assert "verifiedAt" in proof
    assert outcome.headers["X-Payment-Verified"] == "true"
    assert outcome.headers["X-Payment-Signature"] == signature


@pytest.mark.asyncio
async def test_explicit_subject(gate, ledger):
    signature = make_signature()
    ledger.add(make_payment_tx(signature))
    subject = make_address()

    outcome = await gate.authorize(signature, subject=subject)

    assert outcome.body["walletAddress"] == subject


@pytest.mark.asyncio
async def test_failed_verification_echoes_requirement(gate, ledger):
    signature = make_signature()
    ledger.add(make_payment_tx(signature, amount=10_000))

    outcome = await gate.authorize(signature)

    assert outcome.status_code == 402
    assert outcome.body["error"] == "Payment verification failed"
    assert outcome.body["code"] == "amount_mismatch"
    assert outcome.body["retryable"] is False
    assert outcome.body["received"] == 0.01
    assert outcome.body["required"] == {
        "receiver": RECEIVER,
        "amount": 0.05,
        "token": "USDC",
        "network": "devnet",
    }


@pytest.mark.asyncio
async def test_replay_denied(gate, ledger):
    signature = make_signature()
    ledger.add(make_payment_tx(signature))

    await gate.authorize(signature)
    outcome = await gate.authorize(signature)

    assert outcome.status_code == 402
    assert outcome.body["code"] == "replay_detected"


@pytest.mark.asyncio
async def test_ledger_outage_is_503(gate, ledger):
    ledger.error = LedgerUnavailableError("down")

    outcome = await gate.authorize(make_signature())

    assert outcome.status_code == 503
    assert outcome.headers["Retry-After"] == "5"
    assert outcome.body["retryable"] is True


@pytest.mark.asyncio
async def test_misconfigured_network_is_500(verifier, requirement):
    gate = ResourceGate(verifier, replace(requirement, network="testnet"))

    outcome = await gate.authorize(make_signature())

    assert outcome.status_code == 500
    assert outcome.body["code"] == "configuration_error"


@pytest.mark.asyncio
async def test_unattributable_payer_without_subject(gate, ledger):
    signature = make_signature()
    tx = make_payment_tx(signature)
    # Sender account spent more than the receiver got (fees to a third party)
    ledger.add(
        replace(
            tx,
            post_token_balances=[
                TokenBalance(1, b.mint, b.owner, b.amount - 1_000)
                if b.account_index == 1
                else b
                for b in tx.post_token_balances
            ],
        )
    )

    outcome = await gate.authorize(signature)

    assert outcome.status_code == 400
    assert outcome.verification.valid


@pytest.mark.asyncio
async def test_custom_payload_resolver(verifier, requirement, ledger):
    gate = ResourceGate(verifier, requirement, resolve_payload=lambda w: {"owner": w})
    signature = make_signature()
    ledger.add(make_payment_tx(signature))

    outcome = await gate.authorize(signature, subject="wallet-1")

    assert outcome.body["owner"] == "wallet-1"
    assert "paymentVerification" in outcome.body


def test_describe(gate):
    doc = gate.describe("/api/reputation", "http://localhost:3000")

    assert doc["payment"]["protocol"] == "x402"
    assert doc["payment"]["amount"] == 0.05
    assert doc["payment"]["mint"] == "4zMMC9srt5Ri5X14GAgXhaHii3GnPAEERYPJgZJDncDU"
    assert set(doc["methods"]) == {"GET", "POST"}
    assert "http://localhost:3000/api/reputation" in doc["example"]["curl"]
