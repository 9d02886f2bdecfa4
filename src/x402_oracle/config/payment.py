from decimal import Decimal

from pydantic import BaseModel, Field, HttpUrl, field_validator, model_validator

# USDC mint addresses by network
DEFAULT_MINTS = {
    "devnet": "4zMMC9srt5Ri5X14GAgXhaHii3GnPAEERYPJgZJDncDU",
    "mainnet-beta": "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v",
}

DEFAULT_RPC_URLS = {
    "devnet": "https://api.devnet.solana.com",
    "mainnet-beta": "https://api.mainnet-beta.solana.com",
}


def normalize_network(network: str) -> str:
    """Map labels like "solana-devnet" or "Solana Devnet" to a network id."""
    value = network.strip().lower().replace(" ", "-")
    if value.startswith("solana-"):
        value = value[len("solana-") :]
    if value == "mainnet":
        value = "mainnet-beta"
    return value


class PaymentSettings(BaseModel):
    """Pricing, receiver and verification policy for the gated resource."""

    # Where payments must land
    receiver_wallet: str = "GiDRjzYbFvzBxyhkCjrYj9kPHti9Gz3rYKtNmKwPiqEA"
    price: Decimal = Decimal("0.05")
    token: str = "USDC"
    token_decimals: int = 6
    network: str = "devnet"  # "devnet", "mainnet-beta"

    # Per-network token mint and RPC endpoint
    mints: dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_MINTS))
    rpc_urls: dict[str, HttpUrl] = Field(
        default_factory=lambda: dict(DEFAULT_RPC_URLS)  # type: ignore[arg-type]
    )

    # Verification policy
    max_age_seconds: int = 300
    clock_skew_seconds: int = 60
    amount_tolerance: Decimal = Decimal("0.001")
    rpc_timeout_seconds: float = 10.0

    # Replay guard bounds
    replay_max_entries: int = 10_000
    replay_retain_entries: int = 5_000

    @field_validator("network")
    @classmethod
    def _normalize_network(cls, value: str) -> str:
        return normalize_network(value)

    @model_validator(mode="after")
    def validate_payment_config(self) -> "PaymentSettings":
        """Reject configurations the verifier could never satisfy."""
        if self.price <= 0:
            raise ValueError("X402_PAYMENT__PRICE must be positive")
        if self.amount_tolerance < 0:
            raise ValueError("X402_PAYMENT__AMOUNT_TOLERANCE cannot be negative")
        if self.network not in self.mints:
            raise ValueError(
                f"No token mint configured for network '{self.network}'. "
                f"Known networks: {', '.join(sorted(self.mints))}"
            )
        if self.network not in self.rpc_urls:
            raise ValueError(f"No RPC endpoint configured for network '{self.network}'")
        if not 0 < self.replay_retain_entries < self.replay_max_entries:
            raise ValueError(
                "X402_PAYMENT__REPLAY_RETAIN_ENTRIES must be positive and below "
                "X402_PAYMENT__REPLAY_MAX_ENTRIES"
            )
        return self

    @property
    def token_mint(self) -> str:
        return self.mints[self.network]

    @property
    def rpc_url(self) -> str:
        return str(self.rpc_urls[self.network])
