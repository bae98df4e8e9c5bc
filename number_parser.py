#!/usr/bin/env python3
"""
pt-BR number parsing for pasted spreadsheet cells.
===================================================
Cells arrive as text in the Brazilian convention: "." groups thousands,
"," separates decimals, values may carry a trailing "%" or a leading
"R$". Anything that cannot be read as a number becomes -inf, the
pipeline-wide "missing" marker, so every downstream sort is a plain
numeric comparison.
"""

import math
import re

MISSING = -math.inf

_STRIP_RE = re.compile(r"[R$%\s]")
_LEADING_NUMBER_RE = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?", re.ASCII)


def parse_br_number(text) -> float:
    """Parse a pt-BR formatted cell ("1.234,56", "12,50%", "R$ 16,18").

    Like a lenient float parser, only the leading number is read, so
    "8x por ano" gives 8.0. Returns MISSING (-inf) for None, non-strings,
    blank cells and cells with no leading number.
    """
    if not text or not isinstance(text, str):
        return MISSING

    clean = _STRIP_RE.sub("", text)
    clean = clean.replace(".", "")
    clean = clean.replace(",", ".", 1)

    m = _LEADING_NUMBER_RE.match(clean)
    if m is None:
        return MISSING
    value = float(m.group(0))
    if not math.isfinite(value):  # "1e999" overflows
        return MISSING
    return value


def parse_br_number_asc(text) -> float:
    """Same as parse_br_number, but missing sorts last in ascending order."""
    value = parse_br_number(text)
    return math.inf if value == MISSING else value


def format_br_percent(value: float, decimals: int = 2) -> str:
    """-16.6667 -> "-16,67%"."""
    if value == 0:  # drop the sign of -0.0
        value = 0.0
    return f"{value:.{decimals}f}".replace(".", ",") + "%"


def is_missing(value: float) -> bool:
    return math.isinf(value)
