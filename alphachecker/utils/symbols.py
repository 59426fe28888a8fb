"""Symbol normalization for alpha tokens."""
import re
from typing import List

# Alpha listings sometimes prefix tickers with a marker character ("$ROAM")
SYMBOL_MARKER = "$"

SYMBOL_PATTERN = re.compile(r"^\$?[A-Za-z0-9][A-Za-z0-9._-]{0,31}$")


def strip_marker(symbol: str) -> str:
    """Strip surrounding whitespace and any leading marker characters."""
    return symbol.strip().lstrip(SYMBOL_MARKER)


def canonical_symbol(symbol: str) -> str:
    """Storage key for a symbol: marker stripped, uppercased."""
    return strip_marker(symbol).upper()


def symbol_candidates(symbol: str) -> List[str]:
    """
    Lookup candidates for a symbol, in precedence order.

    The raw input comes first, then the marker-stripped form, then the
    marker-prefixed form, so a marker present on only one side still matches.
    """
    raw = symbol.strip()
    stripped = strip_marker(raw)
    if not stripped:
        return []
    candidates = []
    for candidate in (raw, stripped, f"{SYMBOL_MARKER}{stripped}"):
        if candidate and candidate not in candidates:
            candidates.append(candidate)
    return candidates


def validate_symbol(symbol: str) -> str:
    """
    Validate and canonicalize a curator-supplied symbol.

    Args:
        symbol: Raw symbol input

    Returns:
        Canonical (uppercase, marker-free) symbol

    Raises:
        ValueError: If symbol is empty or contains invalid characters
    """
    if not symbol or not symbol.strip():
        raise ValueError("Symbol is required")

    if not SYMBOL_PATTERN.match(symbol.strip()):
        raise ValueError(f"Invalid symbol format: {symbol}")

    return canonical_symbol(symbol)
