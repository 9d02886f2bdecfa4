"""
Wallet reputation scoring.

Mock scoring: results are deterministic per address so repeated queries
agree. In production this would analyze on-chain history.
"""

from typing import Any

BADGES = [
    "Diamond Hands",
    "Early Adopter",
    "DeFi Degen",
    "NFT Collector",
    "DAO Voter",
    "Staking Pro",
    "Bridge Builder",
    "Airdrop Hunter",
]

AGE_BUCKETS = [
    "< 1 month",
    "1-3 months",
    "3-6 months",
    "6-12 months",
    "1-2 years",
    "2+ years",
]


def _tier(score: int) -> str:
    if score >= 90:
        return "Platinum"
    if score >= 75:
        return "Gold"
    if score >= 60:
        return "Silver"
    return "Bronze"


def score_wallet(wallet_address: str) -> dict[str, Any]:
    """Compute the reputation report for a wallet address."""
    address_hash = sum(ord(c) for c in wallet_address)

    score = 50 + address_hash % 50  # 50-99
    badges = [b for i, b in enumerate(BADGES) if (address_hash + i) % 3 == 0]

    return {
        "walletAddress": wallet_address,
        "score": score,
        "badge": badges[0] if badges else "Newcomer",
        "tier": _tier(score),
        "age": AGE_BUCKETS[address_hash % len(AGE_BUCKETS)],
        "metrics": {
            "totalTransactions": 100 + address_hash % 5000,
            "uniqueInteractions": 10 + address_hash % 200,
            "avgTransactionValue": round(0.1 + (address_hash % 100) / 10, 2),
            "trustScore": round(0.5 + (address_hash % 50) / 100, 2),
        },
        "badges": badges,
    }
