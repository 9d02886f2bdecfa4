"""Ledger access and payment verification."""

from .interfaces import (
    ErrorKind,
    LedgerClient,
    LedgerUnavailableError,
    ParsedInstruction,
    TokenBalance,
    TransactionDetail,
    TransferRecord,
    VerificationResult,
)
from .solana_rpc import SolanaRpcClient
from .transfer import find_transfer
from .verifier import (
    NetworkConfig,
    PaymentVerifier,
    VerificationPolicy,
    is_well_formed_signature,
)

__all__ = [
    "ErrorKind",
    "LedgerClient",
    "LedgerUnavailableError",
    "NetworkConfig",
    "ParsedInstruction",
    "PaymentVerifier",
    "SolanaRpcClient",
    "TokenBalance",
    "TransactionDetail",
    "TransferRecord",
    "VerificationPolicy",
    "VerificationResult",
    "find_transfer",
    "is_well_formed_signature",
]
