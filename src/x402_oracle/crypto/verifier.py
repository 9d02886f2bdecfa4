"""
On-chain payment verification for the x402 protocol.

Verifies that a Solana transaction signature represents a fresh, unused
payment of the configured token to the expected receiver.
"""

import asyncio
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from opentelemetry import trace
from solders.signature import Signature  # type: ignore

from x402_oracle.config import PaymentSettings
from x402_oracle.guard.replay import ReplayGuard
from x402_oracle.logging_config import get_current_request_id, get_logger

from .interfaces import (
    ErrorKind,
    LedgerClient,
    LedgerUnavailableError,
    TransactionDetail,
    VerificationResult,
)
from .transfer import find_transfer

logger = get_logger("verifier")
tracer = trace.get_tracer(__name__)

# Base58-encoded 64-byte signatures are 86-88 characters long
MIN_SIGNATURE_LENGTH = 80
MAX_SIGNATURE_LENGTH = 90


def is_well_formed_signature(signature: str | None) -> bool:
    """Cheap structural check run before any RPC call."""
    if not signature or not isinstance(signature, str):
        return False
    if not MIN_SIGNATURE_LENGTH <= len(signature) <= MAX_SIGNATURE_LENGTH:
        return False
    try:
        Signature.from_string(signature)
    except ValueError:
        return False
    return True


def to_raw_amount(amount: Decimal, decimals: int) -> int:
    """Convert a human-unit amount to the token's smallest unit."""
    scaled = amount * (Decimal(10) ** decimals)
    return int(scaled.to_integral_value(rounding=ROUND_HALF_UP))


def from_raw_amount(raw: int, decimals: int) -> Decimal:
    return Decimal(raw) / (Decimal(10) ** decimals)


@dataclass(frozen=True)
class NetworkConfig:
    """Token mint and RPC endpoint for one Solana cluster."""

    name: str
    rpc_url: str
    token_mint: str
    token: str = "USDC"
    token_decimals: int = 6


@dataclass(frozen=True)
class VerificationPolicy:
    max_age_seconds: int = 300
    clock_skew_seconds: int = 60
    amount_tolerance: Decimal = Decimal("0.001")
    rpc_timeout_seconds: float = 10.0


class PaymentVerifier:
    """
    Verifies payment proofs against the ledger.

    Checks run in order and stop at the first failure:
    1. Replay: signature not already accepted
    2. Fetch: transaction exists at "confirmed" commitment
    3. Execution: transaction did not fail on-chain
    4. Freshness: block time within the allowed window
    5. Transfer: receiver credited in the expected mint
    6. Amount: credited amount within tolerance of the price
    7. Commit: signature recorded in the replay guard

    Only step 7 mutates shared state. Payer-supplied input never raises;
    every outcome is a VerificationResult.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        replay_guard: ReplayGuard,
        networks: Mapping[str, NetworkConfig],
        policy: VerificationPolicy | None = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the verifier.

        Args:
            ledger: Ledger query capability
            replay_guard: Shared record of accepted signatures
            networks: Known networks keyed by id ("devnet", "mainnet-beta")
            policy: Freshness, tolerance and timeout policy
            clock: Source of the current unix time
        """
        self.ledger = ledger
        self.replay_guard = replay_guard
        self.networks = dict(networks)
        self.policy = policy or VerificationPolicy()
        self.clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: PaymentSettings,
        ledger: LedgerClient,
        replay_guard: ReplayGuard | None = None,
    ) -> "PaymentVerifier":
        networks = {
            name: NetworkConfig(
                name=name,
                rpc_url=str(settings.rpc_urls[name]),
                token_mint=mint,
                token=settings.token,
                token_decimals=settings.token_decimals,
            )
            for name, mint in settings.mints.items()
            if name in settings.rpc_urls
        }
        policy = VerificationPolicy(
            max_age_seconds=settings.max_age_seconds,
            clock_skew_seconds=settings.clock_skew_seconds,
            amount_tolerance=settings.amount_tolerance,
            rpc_timeout_seconds=settings.rpc_timeout_seconds,
        )
        if replay_guard is None:
            replay_guard = ReplayGuard(
                max_entries=settings.replay_max_entries,
                retain_entries=settings.replay_retain_entries,
            )
        return cls(ledger, replay_guard, networks, policy)

    async def verify(
        self,
        signature: str,
        expected_amount: Decimal | float | str,
        expected_receiver: str,
        network: str,
    ) -> VerificationResult:
        """
        Verify a payment proof.

        Args:
            signature: Transaction signature presented by the payer
            expected_amount: Price in human units (e.g. 0.05 for $0.05)
            expected_receiver: Wallet address that should receive the payment
            network: Network id the payment must have been made on

        Returns:
            VerificationResult; `valid` is True only if every check passed
        """
        with tracer.start_as_current_span("payment.verify") as span:
            span.set_attribute("payment.network", network)
            request_id = get_current_request_id()
            if request_id:
                span.set_attribute("http.request_id", request_id)
            try:
                result = await self._verify(
                    signature, expected_amount, expected_receiver, network
                )
            except Exception as e:
                logger.error(
                    "payment_verification_crashed",
                    signature=signature,
                    error=str(e),
                    exc_info=True,
                )
                result = VerificationResult.rejected(
                    signature,
                    ErrorKind.VERIFICATION_UNAVAILABLE,
                    "Verification failed unexpectedly",
                )
            span.set_attribute("payment.valid", result.valid)
            if result.error:
                span.set_attribute("payment.error", result.error.value)
            return result

    async def _verify(
        self,
        signature: str,
        expected_amount: Decimal | float | str,
        expected_receiver: str,
        network: str,
    ) -> VerificationResult:
        if not is_well_formed_signature(signature):
            logger.info("payment_proof_malformed", length=len(signature or ""))
            return VerificationResult.rejected(
                signature,
                ErrorKind.MALFORMED_PROOF,
                "Expected a base58-encoded Solana transaction signature",
            )

        net = self.networks.get(network)
        if net is None:
            logger.error("unknown_network", network=network)
            return VerificationResult.rejected(
                signature,
                ErrorKind.CONFIGURATION_ERROR,
                f"Unknown network: {network}",
            )

        try:
            amount = Decimal(str(expected_amount))
        except InvalidOperation:
            amount = Decimal(0)
        if not amount.is_finite() or amount <= 0:
            logger.error("invalid_expected_amount", expected_amount=str(expected_amount))
            return VerificationResult.rejected(
                signature,
                ErrorKind.CONFIGURATION_ERROR,
                f"Expected amount must be positive, got {expected_amount}",
            )

        # 1. Replay check before any ledger call
        if self.replay_guard.contains(signature):
            logger.warning("payment_replay_detected", signature=signature)
            return VerificationResult.rejected(
                signature,
                ErrorKind.REPLAY_DETECTED,
                "Transaction signature already used",
            )

        # 2. Fetch
        try:
            tx = await asyncio.wait_for(
                self.ledger.get_transaction(signature, net.rpc_url),
                timeout=self.policy.rpc_timeout_seconds,
            )
        except TimeoutError:
            logger.warning(
                "ledger_fetch_timeout",
                signature=signature,
                timeout_seconds=self.policy.rpc_timeout_seconds,
            )
            return VerificationResult.rejected(
                signature,
                ErrorKind.VERIFICATION_UNAVAILABLE,
                f"Ledger query timed out after {self.policy.rpc_timeout_seconds}s",
            )
        except LedgerUnavailableError as e:
            logger.warning("ledger_fetch_failed", signature=signature, error=str(e))
            return VerificationResult.rejected(
                signature,
                ErrorKind.VERIFICATION_UNAVAILABLE,
                f"Ledger unavailable: {e}",
            )

        if tx is None:
            logger.info("transaction_not_found", signature=signature)
            return VerificationResult.rejected(
                signature,
                ErrorKind.TRANSACTION_NOT_FOUND,
                "Transaction not found (it may not be confirmed yet)",
            )

        # 3. Execution
        if not tx.success:
            logger.info("transaction_failed_onchain", signature=signature, error=tx.error)
            return VerificationResult.rejected(
                signature,
                ErrorKind.TRANSACTION_FAILED,
                f"Transaction failed: {tx.error}",
                slot=tx.slot,
            )

        # 4. Freshness
        stale = self._check_freshness(tx)
        if stale is not None:
            return stale

        # 5. Transfer extraction
        transfer = find_transfer(tx, net.token_mint, expected_receiver)
        if transfer is None:
            logger.info(
                "transfer_not_found",
                signature=signature,
                receiver=expected_receiver,
                mint=net.token_mint,
            )
            return VerificationResult.rejected(
                signature,
                ErrorKind.TRANSFER_NOT_FOUND,
                f"No {net.token} transfer to {expected_receiver} found in transaction",
                timestamp=tx.block_time,
                slot=tx.slot,
            )

        # 6. Amount
        received = from_raw_amount(transfer.amount, net.token_decimals)
        expected_raw = to_raw_amount(amount, net.token_decimals)
        tolerance_raw = to_raw_amount(self.policy.amount_tolerance, net.token_decimals)
        if abs(transfer.amount - expected_raw) > tolerance_raw:
            logger.info(
                "amount_mismatch",
                signature=signature,
                expected_raw=expected_raw,
                actual_raw=transfer.amount,
                tolerance_raw=tolerance_raw,
            )
            return VerificationResult.rejected(
                signature,
                ErrorKind.AMOUNT_MISMATCH,
                f"Amount mismatch: expected {amount} {net.token}, "
                f"got {received} {net.token}",
                sender=transfer.sender,
                receiver=transfer.receiver,
                amount=received,
                timestamp=tx.block_time,
                slot=tx.slot,
            )

        # 7. Commit; try_add settles races between concurrent presentations
        if not self.replay_guard.try_add(signature):
            logger.warning("payment_replay_detected", signature=signature, race=True)
            return VerificationResult.rejected(
                signature,
                ErrorKind.REPLAY_DETECTED,
                "Transaction signature already used",
            )

        logger.info(
            "payment_verified",
            signature=signature,
            sender=transfer.sender,
            receiver=transfer.receiver,
            amount=str(received),
            slot=tx.slot,
        )
        return VerificationResult(
            valid=True,
            signature=signature,
            sender=transfer.sender,
            receiver=transfer.receiver,
            amount=received,
            timestamp=tx.block_time,
            slot=tx.slot,
        )

    def _check_freshness(self, tx: TransactionDetail) -> VerificationResult | None:
        # Ledger may omit blockTime for very recent blocks; freshness is then skipped
        if tx.block_time is None:
            logger.info("block_time_unknown", signature=tx.signature)
            return None

        age = int(self.clock()) - tx.block_time
        if age > self.policy.max_age_seconds:
            logger.info(
                "transaction_too_old",
                signature=tx.signature,
                age_seconds=age,
                max_age_seconds=self.policy.max_age_seconds,
            )
            return VerificationResult.rejected(
                tx.signature,
                ErrorKind.TRANSACTION_TOO_OLD,
                f"Transaction too old ({age}s > {self.policy.max_age_seconds}s max)",
                timestamp=tx.block_time,
                slot=tx.slot,
            )

        if -age > self.policy.clock_skew_seconds:
            logger.info(
                "transaction_from_future",
                signature=tx.signature,
                ahead_seconds=-age,
            )
            return VerificationResult.rejected(
                tx.signature,
                ErrorKind.TRANSACTION_FROM_FUTURE,
                "Transaction timestamp is in the future",
                timestamp=tx.block_time,
                slot=tx.slot,
            )

        return None

    def describe(self, network: str) -> dict[str, Any]:
        """Public parameters for a network, used by documentation responses."""
        net = self.networks[network]
        return {
            "network": net.name,
            "token": net.token,
            "mint": net.token_mint,
            "decimals": net.token_decimals,
            "maxAgeSeconds": self.policy.max_age_seconds,
        }
