"""
fastcomm/utils/formatting.py

Shared formatting utilities for the FastComm bot.

Responsibilities:
- Render money and percentages the way consultants expect to read them
- Convert stored UTC timestamps to the display timezone
- Split long output into Discord-safe chunks / embed fields

This module contains no Discord or GitHub logic.
It is safe to import anywhere.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import List
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fastcomm.services.commission import parse_amount

# Discord hard limit for a single embed field value
FIELD_LIMIT = 1024

DEFAULT_TIMEZONE = "Asia/Singapore"


def format_money(value, currency: str = "RM") -> str:
    """
    Format an amount with grouping and 2 decimals.

    Accepts Decimal, numbers or user-entered strings ("1,200,000").

    Returns:
        e.g. "RM1,200,000.00"
    """
    amount = value if isinstance(value, Decimal) else parse_amount(value)
    return f"{currency}{amount:,.2f}"


def format_percentage(value) -> str:
    """50.0 -> "50%", 33.33 -> "33.33%"."""
    amount = parse_amount(value).normalize()
    text = format(amount, "f")
    return f"{text}%"


def format_timestamp(iso_value: str, tz_name: str = DEFAULT_TIMEZONE, fmt: str = "%d/%m/%Y %H:%M") -> str:
    """
    Convert a stored ISO-8601 timestamp to the display timezone.

    Unparseable values are returned unchanged.
    """
    if not iso_value:
        return "-"
    try:
        parsed = datetime.fromisoformat(iso_value.replace("Z", "+00:00"))
    except ValueError:
        return iso_value

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    try:
        zone = ZoneInfo(tz_name)
    except ZoneInfoNotFoundError:
        zone = timezone.utc
    return parsed.astimezone(zone).strftime(fmt)


def truncate(text: str, limit: int = FIELD_LIMIT) -> str:
    """Cut `text` so it fits in one embed field."""
    if len(text) <= limit:
        return text or "-"
    return text[: limit - 3] + "..."


def chunk_message_blocks(blocks: List[str], max_chars: int = 1900) -> List[str]:
    """
    Split a list of pre-formatted message blocks into
    Discord-safe message chunks.

    Block boundaries are preserved; a single block longer than
    `max_chars` becomes its own chunk.

    Args:
        blocks: List of already-formatted string blocks
        max_chars: Maximum characters per chunk

    Returns:
        List of chunks ready to be sent
    """
    chunks = []
    current = []
    current_len = 0

    for b in blocks:
        blen = len(b) + 1  # account for newline
        if current and current_len + blen > max_chars:
            chunks.append("\n".join(current))
            current = [b]
            current_len = blen
        else:
            current.append(b)
            current_len += blen

    if current:
        chunks.append("\n".join(current))

    return chunks
