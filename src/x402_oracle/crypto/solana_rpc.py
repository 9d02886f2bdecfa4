"""
Solana JSON-RPC client.

Fetches confirmed transactions for payment verification and exposes the few
extra calls the paying agent needs to submit a token transfer.
"""

from typing import Any

import httpx

from x402_oracle.logging_config import get_logger

from .interfaces import (
    LedgerUnavailableError,
    ParsedInstruction,
    TokenBalance,
    TransactionDetail,
)

logger = get_logger("solana_rpc")

# Solana RPC commitment levels
CONFIRMED_COMMITMENT = "confirmed"


class SolanaRpcClient:
    """
    Thin async JSON-RPC client over a shared httpx connection pool.

    The endpoint is passed per call so one client can serve several networks.
    """

    def __init__(self, client: httpx.AsyncClient | None = None, timeout: float = 30.0):
        """
        Initialize the RPC client.

        Args:
            client: Pre-configured httpx client (tests inject a MockTransport)
            timeout: Request timeout in seconds when creating our own client
        """
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def call(self, rpc_url: str, method: str, params: list[Any]) -> Any:
        """
        Perform one JSON-RPC call and return its "result".

        Raises:
            LedgerUnavailableError: On transport failure, HTTP error status,
                or a JSON-RPC error object in the response
        """
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}

        try:
            response = await self.client.post(rpc_url, json=payload)
            response.raise_for_status()
            data = response.json()
        except (httpx.RequestError, httpx.HTTPStatusError) as e:
            logger.warning("rpc_request_failed", method=method, error=str(e))
            raise LedgerUnavailableError(f"RPC request failed: {e}") from e
        except ValueError as e:
            raise LedgerUnavailableError("RPC returned a non-JSON response") from e

        if not isinstance(data, dict):
            raise LedgerUnavailableError("RPC returned an unexpected payload")

        if "error" in data:
            error = data["error"] or {}
            logger.warning("rpc_error", method=method, error=error)
            raise LedgerUnavailableError(
                f"RPC error {error.get('code')}: {error.get('message')}"
            )

        return data.get("result")

    async def get_transaction(
        self, signature: str, rpc_url: str
    ) -> TransactionDetail | None:
        """
        Fetches a transaction with parsed instructions and token balances.

        Args:
            signature: Transaction signature
            rpc_url: RPC endpoint for the target network

        Returns:
            TransactionDetail or None if the ledger has no confirmed record
        """
        result = await self.call(
            rpc_url,
            "getTransaction",
            [
                signature,
                {
                    "encoding": "jsonParsed",
                    "commitment": CONFIRMED_COMMITMENT,
                    "maxSupportedTransactionVersion": 0,
                },
            ],
        )

        if not result or not result.get("meta"):
            return None

        try:
            return parse_transaction(signature, result)
        except (KeyError, ValueError, TypeError, AttributeError) as e:
            logger.error(
                "transaction_parse_failed",
                signature=signature,
                error=str(e),
                exc_info=True,
            )
            raise LedgerUnavailableError("Malformed transaction in RPC response") from e

    async def get_health(self, rpc_url: str) -> bool:
        try:
            return await self.call(rpc_url, "getHealth", []) == "ok"
        except LedgerUnavailableError:
            return False

    async def get_latest_blockhash(self, rpc_url: str) -> str:
        result = await self.call(
            rpc_url, "getLatestBlockhash", [{"commitment": CONFIRMED_COMMITMENT}]
        )
        try:
            blockhash = result["value"]["blockhash"]
        except (KeyError, TypeError) as e:
            raise LedgerUnavailableError("RPC returned no blockhash") from e
        if not isinstance(blockhash, str) or not blockhash:
            raise LedgerUnavailableError("RPC returned no blockhash")
        return blockhash

    async def get_token_account_balance(self, rpc_url: str, account: str) -> int | None:
        """
        Returns the raw balance of a token account, or None if it doesn't exist.
        """
        try:
            result = await self.call(
                rpc_url,
                "getTokenAccountBalance",
                [account, {"commitment": CONFIRMED_COMMITMENT}],
            )
        except LedgerUnavailableError as e:
            # Nonexistent accounts surface as an "invalid param" RPC error
            if "could not find account" in str(e).lower() or "-32602" in str(e):
                return None
            raise

        if not isinstance(result, dict) or not result.get("value"):
            return None
        try:
            return int(result["value"]["amount"])
        except (KeyError, TypeError, ValueError) as e:
            raise LedgerUnavailableError("RPC returned a malformed token balance") from e

    async def send_transaction(self, rpc_url: str, encoded_tx: str) -> str:
        """Submits a base64-encoded signed transaction and returns its signature."""
        signature = await self.call(
            rpc_url,
            "sendTransaction",
            [
                encoded_tx,
                {"encoding": "base64", "preflightCommitment": CONFIRMED_COMMITMENT},
            ],
        )
        if not isinstance(signature, str) or not signature:
            raise LedgerUnavailableError("RPC did not return a transaction signature")
        return signature

    async def get_signature_status(
        self, rpc_url: str, signature: str
    ) -> dict[str, Any] | None:
        result = await self.call(
            rpc_url,
            "getSignatureStatuses",
            [[signature], {"searchTransactionHistory": True}],
        )
        if result is None:
            return None
        if not isinstance(result, dict) or not isinstance(result.get("value"), list):
            raise LedgerUnavailableError("RPC returned malformed signature statuses")
        statuses = result["value"]
        if not statuses or not isinstance(statuses[0], dict):
            return None
        return statuses[0]

    async def close(self) -> None:
        """Closes the HTTP client connection."""
        await self.client.aclose()


def parse_transaction(signature: str, tx_data: dict[str, Any]) -> TransactionDetail:
    """
    Parse a jsonParsed getTransaction result into a TransactionDetail.

    Inner instructions (CPI calls) are appended after the top-level ones so
    transfers routed through other programs are still visible.
    """
    meta = tx_data["meta"]
    message = tx_data.get("transaction", {}).get("message", {})

    account_keys = [
        key if isinstance(key, str) else key["pubkey"]
        for key in message.get("accountKeys", [])
    ]

    raw_instructions = list(message.get("instructions", []))
    for group in meta.get("innerInstructions") or []:
        raw_instructions.extend(group.get("instructions", []))

    return TransactionDetail(
        signature=signature,
        success=meta.get("err") is None,
        error=meta.get("err"),
        slot=int(tx_data.get("slot", 0)),
        block_time=tx_data.get("blockTime"),
        account_keys=account_keys,
        instructions=[_parse_instruction(ix) for ix in raw_instructions],
        pre_token_balances=[
            _parse_token_balance(b) for b in meta.get("preTokenBalances") or []
        ],
        post_token_balances=[
            _parse_token_balance(b) for b in meta.get("postTokenBalances") or []
        ],
    )


def _parse_instruction(ix: dict[str, Any]) -> ParsedInstruction:
    program = ix.get("program") or ix.get("programId", "")
    parsed = ix.get("parsed")
    if isinstance(parsed, dict):
        return ParsedInstruction(
            program=program,
            type=parsed.get("type", ""),
            info=parsed.get("info") or {},
        )
    if isinstance(parsed, str):
        # spl-memo reports its payload as a bare string
        return ParsedInstruction(program=program, type="memo", info={"text": parsed})
    return ParsedInstruction(program=program, type="")


def _parse_token_balance(entry: dict[str, Any]) -> TokenBalance:
    return TokenBalance(
        account_index=int(entry["accountIndex"]),
        mint=entry["mint"],
        owner=entry.get("owner"),
        amount=int(entry["uiTokenAmount"]["amount"]),
    )
