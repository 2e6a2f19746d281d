"""Shared canonical parsing for user-entered and scraped figures.

Single source of truth, imported by the transport adapters (form fields),
the listing scraper (page text) and the post-processor (money-math rows).
"""

from __future__ import annotations

import re
from typing import Any

from auto_eval.constants import VIN_RE

_AMOUNT_RE = re.compile(r"-?\$?\s*\d[\d,]*(?:\.\d+)?(?:[kK]\b)?")


def clean_numeric_string(raw: str) -> str:
    """Keep only digits, ``'.'``, and ``'-'``."""
    return "".join(c for c in raw if c.isdigit() or c in {".", "-"})


def parse_price(value: Any) -> float | None:
    """Best-effort price parsing.  Returns ``None`` for unparseable input.

    Accepts ``"$6,000"``, ``"6000.00"``, ``"6.5k"`` and plain numbers.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return None
        multiplier = 1000.0 if stripped.lower().endswith("k") else 1.0
        cleaned = clean_numeric_string(stripped)
        if not cleaned or cleaned in {"-", ".", "-."}:
            return None
        try:
            return float(cleaned) * multiplier
        except ValueError:
            return None
    return None


def parse_int(value: Any) -> int | None:
    """Best-effort integer parsing.  Returns ``None`` for unparseable input."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        parsed = parse_price(value)
        if parsed is None:
            return None
        return int(parsed)
    return None


def parse_amounts(text: str) -> list[float]:
    """All dollar-ish amounts in *text*, in order of appearance."""
    amounts = []
    for match in _AMOUNT_RE.finditer(text or ""):
        parsed = parse_price(match.group(0).replace(" ", ""))
        if parsed is not None:
            amounts.append(parsed)
    return amounts


def parse_amount_range(text: str) -> tuple[float, float] | None:
    """Parse ``"$800 – $1,200"`` into ``(800.0, 1200.0)``.

    A single amount yields a degenerate range.
    """
    amounts = [abs(a) for a in parse_amounts(text)]
    if not amounts:
        return None
    if len(amounts) == 1:
        return amounts[0], amounts[0]
    low, high = amounts[0], amounts[1]
    return (low, high) if low <= high else (high, low)


def normalize_vin(vin: str | None) -> str | None:
    """Upper-cased VIN, or ``None`` when absent or not 17 valid characters."""
    if not vin:
        return None
    normalized = vin.strip().upper()
    if not VIN_RE.fullmatch(normalized):
        return None
    return normalized


def normalize_text(value: str | None) -> str:
    return (value or "").strip()
