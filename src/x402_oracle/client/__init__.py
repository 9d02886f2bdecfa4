from .requirements import DecodedRequirement, RequirementDecodeError, decode_requirement
from .signer import (
    InsufficientBalanceError,
    PaymentError,
    SolanaTransferSigner,
    TransferError,
    TransferSigner,
)
from .wallet import AgentWallet, PaymentResponse

__all__ = [
    "AgentWallet",
    "DecodedRequirement",
    "InsufficientBalanceError",
    "PaymentError",
    "PaymentResponse",
    "RequirementDecodeError",
    "SolanaTransferSigner",
    "TransferError",
    "TransferSigner",
    "decode_requirement",
]
