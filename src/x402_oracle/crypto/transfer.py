"""
Locate the token transfer that paid a receiver inside a confirmed transaction.

Instruction parsing alone is not trusted: plain `transfer` instructions omit
the mint, and their destination is a token account rather than the owner's
wallet. Balance deltas (post minus pre, per token account) are authoritative;
`transferChecked` instructions naming the mint only decide which credited
account is examined first.
"""

from .interfaces import TokenBalance, TransactionDetail, TransferRecord

SPL_TOKEN_PROGRAMS = {"spl-token", "spl-token-2022"}


def find_transfer(
    detail: TransactionDetail, expected_mint: str, expected_receiver: str
) -> TransferRecord | None:
    """
    Find the credit of `expected_mint` tokens to accounts owned by
    `expected_receiver`.

    Args:
        detail: Confirmed transaction detail
        expected_mint: Token mint the payment must be made in
        expected_receiver: Wallet address (owner) that must be credited

    Returns:
        TransferRecord with the raw amount received, or None. The sender is
        best-effort and may be None even when the transfer is found.
    """
    pre_by_index = {b.account_index: b for b in detail.pre_token_balances}
    post_by_index = {b.account_index: b for b in detail.post_token_balances}

    credited = [
        post
        for post in detail.post_token_balances
        if post.mint == expected_mint and post.owner == expected_receiver
    ]

    preferred = _checked_destinations(detail, expected_mint)
    if preferred:
        credited.sort(key=lambda b: _account_key(detail, b) not in preferred)

    for post in credited:
        pre = pre_by_index.get(post.account_index)
        delta = post.amount - (pre.amount if pre else 0)
        if delta <= 0:
            continue

        return TransferRecord(
            receiver=expected_receiver,
            amount=delta,
            sender=_attribute_sender(
                pre_by_index, post_by_index, expected_mint, expected_receiver, delta
            ),
        )

    return None


def _checked_destinations(detail: TransactionDetail, expected_mint: str) -> set[str]:
    """Destination token accounts of transferChecked instructions for the mint."""
    return {
        ix.info["destination"]
        for ix in detail.instructions
        if ix.program in SPL_TOKEN_PROGRAMS
        and ix.type == "transferChecked"
        and ix.info.get("mint") == expected_mint
        and ix.info.get("destination")
    }


def _account_key(detail: TransactionDetail, balance: TokenBalance) -> str | None:
    if 0 <= balance.account_index < len(detail.account_keys):
        return detail.account_keys[balance.account_index]
    return None


def _attribute_sender(
    pre_by_index: dict[int, TokenBalance],
    post_by_index: dict[int, TokenBalance],
    expected_mint: str,
    expected_receiver: str,
    delta: int,
) -> str | None:
    # Exact-delta match; multi-party transactions may leave this unattributed
    for index, pre in pre_by_index.items():
        if pre.mint != expected_mint or pre.owner == expected_receiver:
            continue
        post = post_by_index.get(index)
        spent = pre.amount - (post.amount if post else 0)
        if spent == delta:
            return pre.owner
    return None
