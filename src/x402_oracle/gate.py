"""
Resource gate: maps a request's payment credential to a gate outcome.

Transport-agnostic; the FastAPI routes in `main` only translate the outcome
into an HTTP response.
"""

import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from x402_oracle.crypto.interfaces import ErrorKind, VerificationResult
from x402_oracle.crypto.verifier import PaymentVerifier, is_well_formed_signature
from x402_oracle.logging_config import get_logger
from x402_oracle.reputation import score_wallet

logger = get_logger("gate")

BEARER_PREFIX = re.compile(r"^bearer\s+", re.IGNORECASE)


@dataclass(frozen=True)
class PaymentRequirement:
    """What a client must pay to access the resource."""

    receiver: str
    amount: Decimal
    token: str
    network: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "receiver": self.receiver,
            "amount": float(self.amount),
            "token": self.token,
            "network": self.network,
        }

    def headers(self) -> dict[str, str]:
        return {
            "X-Payment-Required": "true",
            "X-Payment-Receiver": self.receiver,
            "X-Payment-Amount": str(self.amount),
            "X-Payment-Token": self.token,
            "X-Payment-Network": self.network,
        }


class GateState(str, Enum):
    PAYMENT_REQUIRED = "payment_required"
    GRANTED = "granted"
    DENIED = "denied"


@dataclass
class GateOutcome:
    state: GateState
    status_code: int
    body: dict[str, Any]
    headers: dict[str, str] = field(default_factory=dict)
    verification: VerificationResult | None = None


# HTTP status for denials that are not a plain "payment invalid"
_DENIAL_STATUS = {
    ErrorKind.MALFORMED_PROOF: 400,
    ErrorKind.VERIFICATION_UNAVAILABLE: 503,
    ErrorKind.CONFIGURATION_ERROR: 500,
}


def extract_proof(credential: str | None) -> str:
    """Accept either a raw signature or a "Bearer <signature>" value."""
    return BEARER_PREFIX.sub("", credential or "").strip()


class ResourceGate:
    """
    Gatekeeper for one priced resource.

    States per request:
    - PAYMENT_REQUIRED: no credential presented
    - DENIED: malformed credential or failed verification
    - GRANTED: verified payment; payload resolved for the subject wallet
    """

    def __init__(
        self,
        verifier: PaymentVerifier,
        requirement: PaymentRequirement,
        resolve_payload: Callable[[str], dict[str, Any]] = score_wallet,
    ):
        self.verifier = verifier
        self.requirement = requirement
        self.resolve_payload = resolve_payload

    def payment_required(self) -> GateOutcome:
        req = self.requirement
        return GateOutcome(
            state=GateState.PAYMENT_REQUIRED,
            status_code=402,
            body={
                "status": 402,
                "message": (
                    f"Payment Required - Send {req.token} to access "
                    "wallet reputation data"
                ),
                "payment": {
                    **req.to_dict(),
                    "instructions": (
                        f"Send {req.amount} {req.token} to {req.receiver} on "
                        f"Solana {req.network}. Include the transaction signature "
                        "in the Authorization header."
                    ),
                },
            },
            headers=req.headers(),
        )

    async def authorize(
        self, credential: str | None, subject: str | None = None
    ) -> GateOutcome:
        """
        Resolve one request.

        Args:
            credential: Raw Authorization header value, if any
            subject: Wallet the caller asked about; defaults to the payer

        Returns:
            GateOutcome describing the response to send
        """
        if not credential:
            logger.info("payment_credential_missing")
            return self.payment_required()

        signature = extract_proof(credential)
        if not is_well_formed_signature(signature):
            logger.info("payment_credential_malformed", length=len(signature))
            return GateOutcome(
                state=GateState.DENIED,
                status_code=400,
                body={
                    "error": (
                        "Invalid authorization format. "
                        "Expected Solana transaction signature."
                    ),
                    "code": ErrorKind.MALFORMED_PROOF.value,
                },
            )

        req = self.requirement
        verification = await self.verifier.verify(
            signature, req.amount, req.receiver, req.network
        )

        if not verification.valid:
            return self._denied(verification)

        target = subject or verification.sender
        if not target:
            logger.warning("payment_subject_unknown", signature=signature)
            return GateOutcome(
                state=GateState.DENIED,
                status_code=400,
                body={
                    "error": (
                        "No wallet address provided and could not "
                        "determine payer wallet"
                    )
                },
                verification=verification,
            )

        payload = self.resolve_payload(target)
        payload["lastUpdated"] = datetime.now(UTC).isoformat()
        payload["paymentVerification"] = {
            "txSignature": signature,
            "proofSignature": signature,
            "payer": verification.sender,
            "paidAmount": float(verification.amount or req.amount),
            "verifiedAt": datetime.now(UTC).isoformat(),
            "blockTime": verification.timestamp,
            "slot": verification.slot,
        }

        logger.info(
            "payment_granted",
            signature=signature,
            subject=target,
            payer=verification.sender,
        )
        return GateOutcome(
            state=GateState.GRANTED,
            status_code=200,
            body=payload,
            headers={
                "X-Payment-Verified": "true",
                "X-Payment-Signature": signature,
            },
            verification=verification,
        )

    def _denied(self, verification: VerificationResult) -> GateOutcome:
        error = verification.error or ErrorKind.VERIFICATION_UNAVAILABLE
        status_code = _DENIAL_STATUS.get(error, 402)
        headers = {}
        if error is ErrorKind.VERIFICATION_UNAVAILABLE:
            headers["Retry-After"] = "5"

        logger.info(
            "payment_denied",
            signature=verification.signature,
            error=error.value,
            details=verification.message,
        )
        body: dict[str, Any] = {
            "error": "Payment verification failed",
            "code": error.value,
            "details": verification.message,
            "retryable": error.retryable,
            "required": self.requirement.to_dict(),
        }
        if verification.amount is not None:
            body["received"] = float(verification.amount)
        return GateOutcome(
            state=GateState.DENIED,
            status_code=status_code,
            body=body,
            headers=headers,
            verification=verification,
        )

    def describe(self, endpoint: str, base_url: str) -> dict[str, Any]:
        """Machine-readable price and request-shape documentation."""
        req = self.requirement
        return {
            "endpoint": endpoint,
            "description": "Wallet Reputation API with x402 Solana micropayments",
            "version": "1.0.0",
            "payment": {
                "required": True,
                **req.to_dict(),
                "protocol": "x402",
                **self.verifier.describe(req.network),
            },
            "methods": {
                "GET": {
                    "description": "Get wallet reputation data",
                    "headers": {
                        "Authorization": "Solana transaction signature (required)"
                    },
                    "queryParams": {
                        "wallet": "Wallet address to query (optional, defaults to payer)"
                    },
                },
                "POST": {
                    "description": "Get wallet reputation data",
                    "headers": {
                        "Authorization": "Solana transaction signature (required)"
                    },
                    "body": {"wallet": "Wallet address to query (optional)"},
                },
            },
            "response": {
                "score": "Reputation score (0-100)",
                "badge": "Primary badge earned",
                "tier": "Reputation tier (Bronze/Silver/Gold/Platinum)",
                "age": "Wallet age estimation",
                "metrics": "Detailed reputation metrics",
                "badges": "List of earned badges",
            },
            "example": {
                "curl": (
                    f'curl -H "Authorization: <tx-signature>" '
                    f'"{base_url}{endpoint}?wallet=<wallet-address>"'
                )
            },
        }
