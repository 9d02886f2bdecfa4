"""
Agent wallet: pays for x402-gated resources automatically.

Flow per `pay` call:
1. Send the request unmodified
2. On 402, decode the payment requirement
3. Enforce the caller's budget before any signing call
4. Transfer the tokens and wait for confirmation
5. Retry the request with the transaction signature as proof
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any

import httpx
from solders.keypair import Keypair  # type: ignore
from solders.pubkey import Pubkey  # type: ignore

from x402_oracle.config import normalize_network
from x402_oracle.config.payment import DEFAULT_MINTS, DEFAULT_RPC_URLS
from x402_oracle.crypto.solana_rpc import SolanaRpcClient
from x402_oracle.logging_config import get_logger

from .requirements import RequirementDecodeError, decode_requirement
from .signer import (
    InsufficientBalanceError,
    PaymentError,
    SolanaTransferSigner,
    TransferSigner,
)

logger = get_logger("wallet")

PAYMENT_REQUIRED = 402


@dataclass
class PaymentResponse:
    """Outcome of one `pay` call."""

    success: bool
    data: Any = None
    error: str | None = None
    tx_signature: str | None = None
    status: int = 0


def _response_data(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class AgentWallet:
    """
    Solana wallet of an autonomous agent.

    Owns its signing key and HTTP connection; concurrent `pay` calls on
    different wallets share nothing.
    """

    def __init__(
        self,
        private_key: str | None = None,
        network: str = "devnet",
        rpc_url: str | None = None,
        token: str = "USDC",
        token_decimals: int = 6,
        http_client: httpx.AsyncClient | None = None,
        signer: TransferSigner | None = None,
        keypair: Keypair | None = None,
    ):
        """
        Initialize the wallet with an existing key or generate a new one.

        Args:
            private_key: Base58-encoded secret key (optional)
            network: Network to pay on ("devnet", "mainnet-beta")
            rpc_url: RPC endpoint; the public endpoint of `network` if omitted
            token: Token symbol this wallet pays in
            token_decimals: Decimals of the payment token
            http_client: Client for resource requests (optional)
            signer: Transfer capability; built from the keypair if omitted
            keypair: Ready keypair, takes precedence over `private_key`
        """
        self.network = normalize_network(network)
        self.token = token.upper()
        self.rpc_url = rpc_url or DEFAULT_RPC_URLS.get(self.network)
        self.http = http_client or httpx.AsyncClient(timeout=30.0)
        self._rpc: SolanaRpcClient | None = None

        if keypair is None and private_key:
            keypair = Keypair.from_base58_string(private_key)
        self.keypair = keypair

        if signer is None:
            if self.keypair is None:
                self.keypair = Keypair()
            if self.network not in DEFAULT_MINTS or not self.rpc_url:
                raise ValueError(f"Unsupported network: {network}")
            self._rpc = SolanaRpcClient()
            signer = SolanaTransferSigner(
                self.keypair,
                self._rpc,
                self.rpc_url,
                DEFAULT_MINTS[self.network],
                token_decimals=token_decimals,
                token=self.token,
            )
        self.signer = signer

    @property
    def address(self) -> str:
        return self.signer.address

    @property
    def public_key(self) -> Pubkey:
        return Pubkey.from_string(self.signer.address)

    async def get_balance(self) -> Decimal:
        """Token balance in human units (0 if the token account doesn't exist)."""
        return await self.signer.get_balance()

    def explorer_url(self, signature: str) -> str:
        url = f"https://explorer.solana.com/tx/{signature}"
        if self.network != "mainnet-beta":
            url += f"?cluster={self.network}"
        return url

    async def pay(
        self,
        url: str,
        max_amount: float | Decimal,
        method: str = "GET",
        **request_kwargs: Any,
    ) -> PaymentResponse:
        """
        Request `url`, paying up to `max_amount` if the server asks for it.

        Args:
            url: Resource URL
            max_amount: Largest amount (human units) this call may spend
            method: HTTP method, reused unchanged for the paid retry
            **request_kwargs: Passed to httpx (headers, params, json, content)

        Returns:
            PaymentResponse with the final outcome and the signature spent, if any
        """
        budget = Decimal(str(max_amount))
        status = 0

        try:
            response = await self.http.request(method, url, **request_kwargs)
        except httpx.HTTPError as e:
            logger.warning("resource_request_failed", url=url, error=str(e))
            return PaymentResponse(success=False, error=f"Request failed: {e}")

        status = response.status_code
        if status != PAYMENT_REQUIRED:
            return PaymentResponse(
                success=response.is_success,
                data=_response_data(response),
                error=None if response.is_success else f"HTTP {status}",
                status=status,
            )

        try:
            requirement = decode_requirement(
                _response_data(response),
                response.headers,
                default_token=self.token,
                default_network=self.network,
            )
        except RequirementDecodeError as e:
            return PaymentResponse(
                success=False, error=f"Invalid payment requirement: {e}", status=status
            )

        logger.info(
            "payment_requested",
            url=url,
            receiver=requirement.receiver,
            amount=str(requirement.amount),
            token=requirement.token,
            network=requirement.network,
        )

        if requirement.amount > budget:
            logger.warning(
                "payment_over_budget",
                required=str(requirement.amount),
                max_amount=str(budget),
            )
            return PaymentResponse(
                success=False,
                error=(
                    f"Payment amount {requirement.amount} {requirement.token} "
                    f"exceeds budget {budget}"
                ),
                status=status,
            )

        if requirement.token != self.token:
            return PaymentResponse(
                success=False,
                error=(
                    f"Unsupported payment token {requirement.token}; "
                    f"wallet pays in {self.token}"
                ),
                status=status,
            )
        if requirement.network != self.network:
            return PaymentResponse(
                success=False,
                error=(
                    f"Payment network mismatch: server wants {requirement.network}, "
                    f"wallet is on {self.network}"
                ),
                status=status,
            )

        # A failed or stuck transfer is reported, never resubmitted
        try:
            signature = await self.signer.transfer(
                requirement.receiver, requirement.amount
            )
        except InsufficientBalanceError as e:
            logger.warning("payment_insufficient_balance", have=str(e.have), need=str(e.need))
            return PaymentResponse(success=False, error=str(e), status=status)
        except PaymentError as e:
            logger.error("payment_transfer_failed", error=str(e))
            return PaymentResponse(
                success=False,
                error=f"Payment transfer failed: {e}",
                tx_signature=getattr(e, "signature", None),
                status=status,
            )
        except Exception as e:
            logger.error("payment_transfer_crashed", error=str(e), exc_info=True)
            return PaymentResponse(
                success=False,
                error=f"Payment transfer failed unexpectedly: {e}",
                status=status,
            )

        logger.info("payment_sent", signature=signature, amount=str(requirement.amount))

        headers = dict(request_kwargs.pop("headers", None) or {})
        headers["Authorization"] = signature
        try:
            paid = await self.http.request(method, url, headers=headers, **request_kwargs)
        except httpx.HTTPError as e:
            logger.error("paid_request_failed", signature=signature, error=str(e))
            return PaymentResponse(
                success=False,
                error=f"Paid request failed: {e}",
                tx_signature=signature,
                status=status,
            )

        data = _response_data(paid)
        error = None
        if not paid.is_success:
            error = f"HTTP {paid.status_code}"
            if isinstance(data, dict) and data.get("error"):
                error = f"{error}: {data['error']}"
                if data.get("code"):
                    error = f"{error} ({data['code']})"

        return PaymentResponse(
            success=paid.is_success,
            data=data,
            error=error,
            tx_signature=signature,
            status=paid.status_code,
        )

    async def close(self) -> None:
        await self.http.aclose()
        if self._rpc is not None:
            await self._rpc.close()
