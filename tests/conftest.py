"""Pytest configuration and shared fixtures."""

import asyncio
import time
from decimal import Decimal

import pytest
from solders.keypair import Keypair  # type: ignore

from x402_oracle.config import PaymentSettings, ServerSettings, Settings
from x402_oracle.config.payment import DEFAULT_MINTS
from x402_oracle.crypto.interfaces import (
    LedgerUnavailableError,
    ParsedInstruction,
    TokenBalance,
    TransactionDetail,
)
from x402_oracle.crypto.verifier import PaymentVerifier
from x402_oracle.guard.replay import ReplayGuard

DEVNET_MINT = DEFAULT_MINTS["devnet"]
RECEIVER = PaymentSettings().receiver_wallet
PRICE_RAW = 50_000  # 0.05 USDC


def make_signature() -> str:
    """A well-formed, unique base58 transaction signature."""
    return str(Keypair().sign_message(b"x402-test-payment"))


def make_address() -> str:
    return str(Keypair().pubkey())


def make_payment_tx(
    signature: str,
    amount: int = PRICE_RAW,
    receiver: str = RECEIVER,
    sender: str | None = None,
    mint: str = DEVNET_MINT,
    block_time: int | None = -1,
    success: bool = True,
    receiver_pre: int | None = 0,
    sender_pre: int = 1_000_000,
    slot: int = 250_000_000,
) -> TransactionDetail:
    """
    Build a token transfer of `amount` raw units from `sender` to `receiver`.

    `block_time=-1` means "ten seconds ago"; None means unknown.
    `receiver_pre=None` models a receiver token account created by this transaction.
    """
    sender = sender or make_address()
    if block_time == -1:
        block_time = int(time.time()) - 10

    source_account = make_address()
    destination_account = make_address()
    account_keys = [sender, source_account, destination_account, mint]

    pre = [TokenBalance(1, mint, sender, sender_pre)]
    if receiver_pre is not None:
        pre.append(TokenBalance(2, mint, receiver, receiver_pre))
    post = [
        TokenBalance(1, mint, sender, sender_pre - amount),
        TokenBalance(2, mint, receiver, (receiver_pre or 0) + amount),
    ]

    return TransactionDetail(
        signature=signature,
        success=success,
        slot=slot,
        block_time=block_time,
        error=None if success else {"InstructionError": [0, "Custom"]},
        account_keys=account_keys,
        instructions=[
            ParsedInstruction(
                program="spl-token",
                type="transferChecked",
                info={
                    "source": source_account,
                    "destination": destination_account,
                    "mint": mint,
                    "authority": sender,
                    "tokenAmount": {"amount": str(amount), "decimals": 6},
                },
            )
        ],
        pre_token_balances=pre,
        post_token_balances=post if success else pre,
    )


class FakeLedger:
    """In-memory LedgerClient."""

    def __init__(self):
        self.transactions: dict[str, TransactionDetail] = {}
        self.calls: list[str] = []
        self.healthy = True
        self.error: Exception | None = None
        self.delay = 0.0

    def add(self, tx: TransactionDetail) -> TransactionDetail:
        self.transactions[tx.signature] = tx
        return tx

    async def get_transaction(
        self, signature: str, rpc_url: str
    ) -> TransactionDetail | None:
        self.calls.append(signature)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.transactions.get(signature)

    async def get_health(self, rpc_url: str) -> bool:
        if self.error:
            raise LedgerUnavailableError("down")
        return self.healthy


class FakeSigner:
    """TransferSigner that books the transfer straight into a FakeLedger."""

    def __init__(self, ledger: FakeLedger, balance: Decimal = Decimal("10")):
        self.ledger = ledger
        self.balance = balance
        self.address = make_address()
        self.transfers: list[tuple[str, Decimal]] = []

    async def get_balance(self) -> Decimal:
        return self.balance

    async def transfer(self, receiver: str, amount: Decimal) -> str:
        self.transfers.append((receiver, amount))
        signature = make_signature()
        self.ledger.add(
            make_payment_tx(
                signature,
                amount=int(amount * 1_000_000),
                receiver=receiver,
                sender=self.address,
            )
        )
        self.balance -= amount
        return signature


@pytest.fixture
def payment_settings():
    return PaymentSettings()


@pytest.fixture
def settings(payment_settings):
    return Settings(payment=payment_settings, server=ServerSettings())


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def replay_guard():
    return ReplayGuard()


@pytest.fixture
def verifier(payment_settings, ledger, replay_guard):
    return PaymentVerifier.from_settings(payment_settings, ledger, replay_guard)


@pytest.fixture
def signer(ledger):
    return FakeSigner(ledger)
