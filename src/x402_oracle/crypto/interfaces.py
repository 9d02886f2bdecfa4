"""
Ledger-facing types and protocols for payment verification.

The verifier depends only on the `LedgerClient` protocol, so the Solana RPC
client can be swapped for a fake in tests or another transport in production.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Protocol, runtime_checkable


class ErrorKind(str, Enum):
    """Why a payment proof was rejected."""

    MALFORMED_PROOF = "malformed_proof"
    REPLAY_DETECTED = "replay_detected"
    TRANSACTION_NOT_FOUND = "transaction_not_found"
    TRANSACTION_FAILED = "transaction_failed"
    TRANSACTION_TOO_OLD = "transaction_too_old"
    TRANSACTION_FROM_FUTURE = "transaction_from_future"
    TRANSFER_NOT_FOUND = "transfer_not_found"
    AMOUNT_MISMATCH = "amount_mismatch"
    VERIFICATION_UNAVAILABLE = "verification_unavailable"
    CONFIGURATION_ERROR = "configuration_error"

    @property
    def retryable(self) -> bool:
        """True when presenting the same signature later may succeed."""
        return self in (
            ErrorKind.TRANSACTION_NOT_FOUND,
            ErrorKind.VERIFICATION_UNAVAILABLE,
        )


class LedgerUnavailableError(Exception):
    """The ledger could not be queried (network, RPC or response error)."""


@dataclass(frozen=True)
class TokenBalance:
    """Balance snapshot of one token account, before or after a transaction."""

    account_index: int
    mint: str
    owner: str | None
    amount: int  # Raw integer amount in the token's smallest unit


@dataclass(frozen=True)
class ParsedInstruction:
    program: str
    type: str
    info: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TransactionDetail:
    """Confirmed transaction as reported by the ledger."""

    signature: str
    success: bool
    slot: int
    block_time: int | None = None
    error: Any = None
    account_keys: list[str] = field(default_factory=list)
    instructions: list[ParsedInstruction] = field(default_factory=list)
    pre_token_balances: list[TokenBalance] = field(default_factory=list)
    post_token_balances: list[TokenBalance] = field(default_factory=list)


@dataclass(frozen=True)
class TransferRecord:
    """Token movement that credited the expected receiver."""

    receiver: str
    amount: int  # Raw integer amount
    sender: str | None = None


@dataclass
class VerificationResult:
    """
    Outcome of verifying one payment proof.

    This is the only thing downstream code may rely on; it must never inspect
    ledger data directly.
    """

    valid: bool
    signature: str
    sender: str | None = None
    receiver: str | None = None
    amount: Decimal | None = None  # Human units (e.g. 0.05 USDC)
    timestamp: int | None = None  # Block time (unix seconds)
    slot: int | None = None
    error: ErrorKind | None = None
    message: str | None = None

    @classmethod
    def rejected(
        cls, signature: str, error: ErrorKind, message: str, **details: Any
    ) -> "VerificationResult":
        return cls(
            valid=False, signature=signature, error=error, message=message, **details
        )


@runtime_checkable
class LedgerClient(Protocol):
    """Capability to fetch confirmed transactions from the ledger."""

    async def get_transaction(
        self, signature: str, rpc_url: str
    ) -> TransactionDetail | None:
        """
        Fetch a transaction at "confirmed" commitment with parsed instructions.

        Returns:
            TransactionDetail, or None if the ledger has no record of it

        Raises:
            LedgerUnavailableError: If the ledger could not be queried
        """
        ...

    async def get_health(self, rpc_url: str) -> bool:
        """Return True if the RPC node reports itself healthy."""
        ...
