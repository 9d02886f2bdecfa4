"""
Decoding of 402 payment requirements.

Servers format the requirement slightly differently, so each logical field
accepts a fixed list of aliases. Anything outside the table is ignored.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

from x402_oracle.config import normalize_network

# Where the requirement object may live in the response body
ENVELOPE_KEYS = ("payment", "required", "paymentRequirements")

FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "receiver": ("receiver", "address", "wallet", "recipient", "payTo", "pay_to"),
    "amount": ("amount", "price", "cost"),
    "token": ("token", "asset", "currency"),
    "network": ("network", "chain", "cluster"),
}

# Header fallbacks for clients that don't parse the body
HEADER_ALIASES: dict[str, str] = {
    "receiver": "x-payment-receiver",
    "amount": "x-payment-amount",
    "token": "x-payment-token",
    "network": "x-payment-network",
}


class RequirementDecodeError(ValueError):
    """The 402 response did not describe a usable payment requirement."""


@dataclass(frozen=True)
class DecodedRequirement:
    receiver: str
    amount: Decimal
    token: str
    network: str


def _first(source: Mapping[str, Any], aliases: tuple[str, ...]) -> Any:
    for alias in aliases:
        value = source.get(alias)
        if value not in (None, ""):
            return value
    return None


def _parse_amount(raw: Any) -> Decimal:
    if isinstance(raw, bool):
        raise RequirementDecodeError(f"Invalid payment amount: {raw!r}")
    text = str(raw).strip().lstrip("$").replace(",", "").strip()
    try:
        amount = Decimal(text)
    except InvalidOperation as e:
        raise RequirementDecodeError(f"Invalid payment amount: {raw!r}") from e
    if not amount.is_finite() or amount <= 0:
        raise RequirementDecodeError(f"Payment amount must be positive: {raw!r}")
    return amount


def decode_requirement(
    body: Any,
    headers: Mapping[str, str] | None = None,
    default_token: str = "USDC",
    default_network: str = "devnet",
) -> DecodedRequirement:
    """
    Extract the payment requirement from a 402 response.

    Args:
        body: Parsed JSON body (any shape; non-dicts are ignored)
        headers: Response headers, consulted for fields missing from the body
        default_token: Token assumed when none is advertised
        default_network: Network assumed when none is advertised

    Returns:
        DecodedRequirement

    Raises:
        RequirementDecodeError: If receiver or amount cannot be determined
    """
    payment: Mapping[str, Any] = {}
    if isinstance(body, Mapping):
        payment = body
        for key in ENVELOPE_KEYS:
            nested = body.get(key)
            if isinstance(nested, Mapping):
                payment = nested
                break

    lowered = {k.lower(): v for k, v in (headers or {}).items()}

    fields: dict[str, Any] = {}
    for name, aliases in FIELD_ALIASES.items():
        value = _first(payment, aliases)
        if value is None:
            value = lowered.get(HEADER_ALIASES[name]) or None
        fields[name] = value

    if not fields["receiver"] or not isinstance(fields["receiver"], str):
        raise RequirementDecodeError("Payment requirement has no receiver address")
    if fields["amount"] is None:
        raise RequirementDecodeError("Payment requirement has no amount")

    return DecodedRequirement(
        receiver=fields["receiver"].strip(),
        amount=_parse_amount(fields["amount"]),
        token=str(fields["token"] or default_token).upper(),
        network=normalize_network(str(fields["network"] or default_network)),
    )
