from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .payment import PaymentSettings, normalize_network
from .server import ServerSettings


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        env_prefix="X402_",
        extra="ignore",
    )

    payment: PaymentSettings = Field(default_factory=PaymentSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)


class ClientSettings(BaseSettings):
    """Settings for the paying agent (see scripts/pay_job.py)."""

    model_config = SettingsConfigDict(
        env_file=".env.local",
        env_file_encoding="utf-8",
        env_prefix="X402_CLIENT_",
        extra="ignore",
    )

    private_key: str = ""  # Base58-encoded Solana secret key
    network: str = "devnet"
    rpc_url: str | None = None
    api_url: str = "http://localhost:3000/api/reputation"
    max_amount: float = 0.05


@lru_cache
def get_settings() -> Settings:
    return Settings()


__all__ = [
    "ClientSettings",
    "PaymentSettings",
    "ServerSettings",
    "Settings",
    "get_settings",
    "normalize_network",
]
