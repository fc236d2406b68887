"""
fastcomm/utils/parsing.py

Text parsing utilities for the FastComm bot.

Responsibilities:
- Parse operator index lists ("1,3,5-8,12") for bulk actions
- Pull webhook fields out of loosely shaped form payloads
- Check customer date strings are YYYY-MM-DD

This module is purely computational:
- No Discord logic
- No GitHub / Jotform logic
"""

import re
from typing import List, Mapping


def parse_index_ranges(text: str) -> List[int]:
    """
    Parse a comma-separated list of indices and inclusive ranges.

    Accepted formats include:
    - "1,3,5"
    - "1-5"          (1, 2, 3, 4, 5)
    - "1,3,5-8,12"

    Malformed parts and reversed ranges ("8-5") are ignored.
    Duplicates are removed; the result is sorted descending so callers
    can delete from the end without shifting later positions.

    Args:
        text: Raw operator input

    Returns:
        Unique indices, highest first
    """
    indices = set()

    for part in (text or "").split(","):
        segment = part.strip()
        if not segment:
            continue

        m = re.fullmatch(r"(\d+)\s*-\s*(\d+)", segment)
        if m:
            start, end = int(m.group(1)), int(m.group(2))
            if start <= end:
                indices.update(range(start, end + 1))
            continue

        if segment.isdigit():
            indices.add(int(segment))

    return sorted(indices, reverse=True)


def is_iso_date(text: str) -> bool:
    """Shape check only; "2024-02-31" passes."""
    return bool(re.fullmatch(r"\d{4}-\d{2}-\d{2}", (text or "").strip()))


def first_value(payload: Mapping, *names: str) -> str:
    """
    First non-blank value among `names` (case-insensitive keys).

    Jotform is inconsistent about casing ("submissionID" vs
    "submission_id"), so webhook handlers look fields up through this.
    """
    lowered = {str(k).lower(): v for k, v in payload.items()}
    for name in names:
        value = lowered.get(name.lower())
        if isinstance(value, str) and value.strip():
            return value.strip()
        if value is not None and not isinstance(value, str):
            return str(value)
    return ""
