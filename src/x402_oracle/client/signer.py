"""
Solana USDC transfer signer for the paying agent.

Builds a TransferChecked instruction between associated token accounts, signs
it with the agent's keypair, submits it and waits for "confirmed" status.
"""

import asyncio
import base64
import struct
import time
from decimal import Decimal
from typing import Protocol, runtime_checkable

from solders.hash import Hash  # type: ignore
from solders.instruction import AccountMeta, Instruction  # type: ignore
from solders.keypair import Keypair  # type: ignore
from solders.message import Message  # type: ignore
from solders.pubkey import Pubkey  # type: ignore
from solders.system_program import ID as SYSTEM_PROGRAM_ID  # type: ignore
from solders.transaction import Transaction  # type: ignore

from x402_oracle.crypto.interfaces import LedgerUnavailableError
from x402_oracle.crypto.solana_rpc import SolanaRpcClient
from x402_oracle.crypto.verifier import from_raw_amount, to_raw_amount
from x402_oracle.logging_config import get_logger

logger = get_logger("signer")

# SPL Token Program IDs
TOKEN_PROGRAM_ID = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
ASSOCIATED_TOKEN_PROGRAM_ID = Pubkey.from_string(
    "ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL"
)

TRANSFER_CHECKED_OPCODE = 12
CREATE_IDEMPOTENT_OPCODE = 1


class PaymentError(Exception):
    """A payment could not be executed."""


class InsufficientBalanceError(PaymentError):
    def __init__(self, have: Decimal, need: Decimal, token: str = "USDC"):
        self.have = have
        self.need = need
        super().__init__(
            f"Insufficient {token} balance. Have: {have}, Need: {need}"
        )


class TransferError(PaymentError):
    """Signing, submission or confirmation of the transfer failed."""

    def __init__(self, message: str, signature: str | None = None):
        self.signature = signature
        super().__init__(message)


@runtime_checkable
class TransferSigner(Protocol):
    """Capability to move tokens from the agent's wallet."""

    @property
    def address(self) -> str: ...

    async def get_balance(self) -> Decimal: ...

    async def transfer(self, receiver: str, amount: Decimal) -> str:
        """
        Send `amount` (human units) to `receiver` and wait for confirmation.

        Returns:
            Transaction signature

        Raises:
            InsufficientBalanceError: Before submission, if funds are short
            TransferError: If the transfer could not be submitted or confirmed
        """
        ...


def derive_associated_token_address(owner: Pubkey, mint: Pubkey) -> Pubkey:
    """
    Derives the Associated Token Account (ATA) address for a given owner and mint.

    Formula:
        find_program_address([owner, TOKEN_PROGRAM_ID, mint], ASSOCIATED_TOKEN_PROGRAM_ID)
    """
    seeds = [bytes(owner), bytes(TOKEN_PROGRAM_ID), bytes(mint)]
    ata, _ = Pubkey.find_program_address(seeds, ASSOCIATED_TOKEN_PROGRAM_ID)
    return ata


def create_transfer_checked_instruction(
    source: Pubkey,
    mint: Pubkey,
    destination: Pubkey,
    owner: Pubkey,
    amount: int,
    decimals: int,
) -> Instruction:
    data = struct.pack("<BQB", TRANSFER_CHECKED_OPCODE, amount, decimals)
    keys = [
        AccountMeta(pubkey=source, is_signer=False, is_writable=True),
        AccountMeta(pubkey=mint, is_signer=False, is_writable=False),
        AccountMeta(pubkey=destination, is_signer=False, is_writable=True),
        AccountMeta(pubkey=owner, is_signer=True, is_writable=False),
    ]
    return Instruction(TOKEN_PROGRAM_ID, data, keys)


def create_associated_account_idempotent_instruction(
    payer: Pubkey, associated_account: Pubkey, owner: Pubkey, mint: Pubkey
) -> Instruction:
    """No-op on-chain if the receiver's token account already exists."""
    keys = [
        AccountMeta(pubkey=payer, is_signer=True, is_writable=True),
        AccountMeta(pubkey=associated_account, is_signer=False, is_writable=True),
        AccountMeta(pubkey=owner, is_signer=False, is_writable=False),
        AccountMeta(pubkey=mint, is_signer=False, is_writable=False),
        AccountMeta(pubkey=SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    return Instruction(
        ASSOCIATED_TOKEN_PROGRAM_ID, bytes([CREATE_IDEMPOTENT_OPCODE]), keys
    )


class SolanaTransferSigner:
    """Signs and submits SPL token transfers from a local keypair."""

    def __init__(
        self,
        keypair: Keypair,
        rpc: SolanaRpcClient,
        rpc_url: str,
        token_mint: str,
        token_decimals: int = 6,
        token: str = "USDC",
        confirm_timeout: float = 60.0,
        poll_interval: float = 2.0,
    ):
        """
        Initialize the signer.

        Args:
            keypair: Agent keypair (fee payer and token owner)
            rpc: JSON-RPC client
            rpc_url: Endpoint of the network to pay on
            token_mint: Mint of the payment token
            token_decimals: Decimals of the payment token
            token: Token symbol, for messages
            confirm_timeout: Seconds to wait for "confirmed" status
            poll_interval: Seconds between status polls
        """
        self.keypair = keypair
        self.rpc = rpc
        self.rpc_url = rpc_url
        self.mint = Pubkey.from_string(token_mint)
        self.token_decimals = token_decimals
        self.token = token
        self.confirm_timeout = confirm_timeout
        self.poll_interval = poll_interval
        self.token_account = derive_associated_token_address(
            keypair.pubkey(), self.mint
        )

    @property
    def address(self) -> str:
        return str(self.keypair.pubkey())

    async def get_balance(self) -> Decimal:
        raw = await self.rpc.get_token_account_balance(
            self.rpc_url, str(self.token_account)
        )
        return from_raw_amount(raw or 0, self.token_decimals)

    async def transfer(self, receiver: str, amount: Decimal) -> str:
        amount_raw = to_raw_amount(amount, self.token_decimals)
        if amount_raw <= 0:
            raise TransferError(f"Transfer amount must be positive, got {amount}")

        try:
            receiver_key = Pubkey.from_string(receiver)
        except ValueError as e:
            raise TransferError(f"Invalid receiver address: {receiver}") from e

        owner = self.keypair.pubkey()
        destination = derive_associated_token_address(receiver_key, self.mint)

        try:
            balance_raw = await self.rpc.get_token_account_balance(
                self.rpc_url, str(self.token_account)
            )
        except LedgerUnavailableError as e:
            raise TransferError(f"Could not read token balance: {e}") from e

        if (balance_raw or 0) < amount_raw:
            raise InsufficientBalanceError(
                have=from_raw_amount(balance_raw or 0, self.token_decimals),
                need=amount,
                token=self.token,
            )

        instructions = [
            create_associated_account_idempotent_instruction(
                owner, destination, receiver_key, self.mint
            ),
            create_transfer_checked_instruction(
                self.token_account,
                self.mint,
                destination,
                owner,
                amount_raw,
                self.token_decimals,
            ),
        ]

        try:
            blockhash = Hash.from_string(
                await self.rpc.get_latest_blockhash(self.rpc_url)
            )
            message = Message.new_with_blockhash(instructions, owner, blockhash)
            tx = Transaction([self.keypair], message, blockhash)
            encoded = base64.b64encode(bytes(tx)).decode()
            signature = await self.rpc.send_transaction(self.rpc_url, encoded)
        except (LedgerUnavailableError, ValueError) as e:
            raise TransferError(f"Transaction submission failed: {e}") from e

        signature = signature or str(tx.signatures[0])
        logger.info(
            "transfer_submitted",
            signature=signature,
            receiver=receiver,
            amount=str(amount),
        )

        await self._wait_for_confirmation(signature)
        return signature

    async def _wait_for_confirmation(self, signature: str) -> None:
        deadline = time.monotonic() + self.confirm_timeout

        while time.monotonic() < deadline:
            try:
                status = await self.rpc.get_signature_status(self.rpc_url, signature)
            except LedgerUnavailableError as e:
                logger.warning("confirmation_poll_failed", signature=signature, error=str(e))
                status = None

            if status:
                if status.get("err"):
                    raise TransferError(
                        f"Transaction failed on-chain: {status['err']}",
                        signature=signature,
                    )
                if status.get("confirmationStatus") in ("confirmed", "finalized"):
                    logger.info("transfer_confirmed", signature=signature)
                    return

            await asyncio.sleep(self.poll_interval)

        raise TransferError(
            f"Transaction not confirmed within {self.confirm_timeout}s",
            signature=signature,
        )
