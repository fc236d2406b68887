"""
fastcomm/services/commission.py

Commission arithmetic for the FastComm bot.

Responsibilities:
- Parse user-entered amounts leniently ("1,200,000" -> 1200000)
- Validate that consultant shares add up to 100%
- Split the total commission between consultants
- Derive the "fast commission" portion for a project

This module is purely computational:
- No Discord logic
- No network access
- Safe to call repeatedly (confirmation, re-calculation after edits)
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable

HUNDRED = Decimal("100")
CENT = Decimal("0.01")
SHARE_TOLERANCE = Decimal("0.01")
MAX_PARTICIPANTS = 4


@dataclass
class Participant:
    """
    One consultant slot of a submission.

    A slot with a blank name is "empty": it is kept for positional
    editing but never counts towards the share total.
    """
    name: str = ""
    code: str = ""
    share: float = 0.0
    payout: str | None = None

    @property
    def is_filled(self) -> bool:
        return bool(self.name and self.name.strip())


def parse_amount(value) -> Decimal:
    """
    Parse a user-entered number.

    Grouping commas and surrounding whitespace are removed. Anything that
    still isn't a finite number becomes 0.
    """
    if value is None:
        return Decimal(0)
    if isinstance(value, Decimal):
        return value if value.is_finite() else Decimal(0)

    cleaned = str(value).replace(",", "").strip()
    if not cleaned:
        return Decimal(0)
    try:
        parsed = Decimal(cleaned)
    except InvalidOperation:
        return Decimal(0)
    return parsed if parsed.is_finite() else Decimal(0)


def parse_share(value) -> float:
    """Parse a share percentage, defaulting to 0 for junk input."""
    return float(parse_amount(value))


def to_money(value: Decimal) -> str:
    """Round half-up to 2 decimals and render as a fixed-point string."""
    return str(value.quantize(CENT, rounding=ROUND_HALF_UP))


def share_total(participants: Iterable[Participant]) -> Decimal:
    """Sum of shares over filled slots only."""
    return sum(
        (Decimal(str(p.share)) for p in participants if p.is_filled),
        Decimal(0),
    )


def validate_shares(participants: Iterable[Participant]) -> bool:
    """
    True when the filled slots' shares total 100% within 0.01.

    The comparison is done in Decimal so that 99.99 and 100.01 are
    accepted while 99.98 and 100.02 are not.
    """
    return abs(share_total(participants) - HUNDRED) <= SHARE_TOLERANCE


def total_commission(net_price, commission_rate) -> Decimal:
    """net price x rate / 100, unrounded."""
    return parse_amount(net_price) * parse_amount(commission_rate) / HUNDRED


def calculate_commissions(net_price, commission_rate, participants: Iterable[Participant]) -> list[Participant]:
    """
    Return copies of `participants` with their `payout` filled in.

    payout = total commission x share / 100, rounded to 2 decimals.
    Inputs are never mutated.
    """
    total = total_commission(net_price, commission_rate)
    out: list[Participant] = []

    for p in participants:
        payout = total * parse_amount(p.share) / HUNDRED
        out.append(replace(p, payout=to_money(payout)))

    return out


def total_payout(participants: Iterable[Participant]) -> Decimal:
    """Sum of already computed payouts over filled slots."""
    return sum(
        (parse_amount(p.payout) for p in participants if p.is_filled),
        Decimal(0),
    )


def fast_commission(amount, percentage) -> Decimal:
    """Portion of `amount` paid out early, rounded to 2 decimals."""
    value = parse_amount(amount) * parse_amount(percentage) / HUNDRED
    return value.quantize(CENT, rounding=ROUND_HALF_UP)
