"""
Pay for a wallet reputation report with devnet USDC.

Usage:
    X402_CLIENT_PRIVATE_KEY=<base58 secret> python scripts/pay_job.py [wallet]

Reads X402_CLIENT_* settings from .env.local.
"""

import asyncio
import sys

import httpx
from dotenv import load_dotenv

from x402_oracle.client import AgentWallet
from x402_oracle.config import ClientSettings
from x402_oracle.logging_config import configure_logging

load_dotenv(".env.local")


async def main(target_wallet: str | None) -> int:
    settings = ClientSettings()
    if not settings.private_key:
        print("❌ X402_CLIENT_PRIVATE_KEY is not set (see .env.local)")
        return 1

    wallet = AgentWallet(
        private_key=settings.private_key,
        network=settings.network,
        rpc_url=settings.rpc_url,
    )
    print(f"🔑 Agent wallet: {wallet.address} ({wallet.network})")

    try:
        balance = await wallet.get_balance()
        print(f"💰 Balance: {balance} {wallet.token}")
        if balance <= 0:
            print("   ❌ No USDC. Fund the wallet at https://faucet.circle.com first.")
            return 1

        params = {"wallet": target_wallet} if target_wallet else None

        print(f"\n🔍 STEP 1: Requesting {settings.api_url} without payment...")
        async with httpx.AsyncClient(timeout=30.0) as http:
            unpaid = await http.get(settings.api_url, params=params)
        if unpaid.status_code == 402:
            payment = unpaid.json().get("payment", {})
            print(f"   💳 402 Payment Required: {payment.get('amount')} {payment.get('token')}")
            print(f"      Receiver: {payment.get('receiver')}")
            print(f"      Network: {payment.get('network')}")
        else:
            print(f"   ⚠️ Expected 402, got {unpaid.status_code}")

        print(f"\n💸 STEP 2: Paying (budget {settings.max_amount} {wallet.token})...")
        result = await wallet.pay(settings.api_url, settings.max_amount, params=params)

        if result.tx_signature:
            print(f"   🧾 Transaction: {wallet.explorer_url(result.tx_signature)}")

        if not result.success:
            print(f"   ❌ Payment failed (status {result.status}): {result.error}")
            return 1

        data = result.data
        print("\n🎉 SUCCESS! Reputation report received")
        print(f"   Wallet: {data['walletAddress']}")
        print(f"   Score: {data['score']} ({data['tier']}, {data['badge']})")
        print(f"   Paid: {data['paymentVerification']['paidAmount']} {wallet.token}")
        return 0
    finally:
        await wallet.close()


if __name__ == "__main__":
    configure_logging("warning")
    sys.exit(asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else None)))
