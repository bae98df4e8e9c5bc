#!/usr/bin/env python3
"""
Table view logic — column order, filtering, sorting and visibility for
the ranked table. Pure functions over display rows, so the CLI, the
dashboard payload and the tests all share one implementation.
"""

from functools import cmp_to_key

from number_parser import is_missing, parse_br_number
from schemas import LayoutConfig, StockRecord

SORT_DIRECTIONS = ("asc", "desc")

# Substring (lower-case) -> badge category, first match wins.
STATUS_CATEGORIES = [
    ("quente", "hot"),
    ("carteira", "portfolio"),
    ("no radar", "watch"),
    ("fora", "out"),
]


def ordered_column_indices(headers: list[str], layout: LayoutConfig | None) -> list[int]:
    """Sticky columns first (in sticky order), then the rest in header order."""
    if layout is None:
        return list(range(len(headers)))
    fixed = list(layout.sticky_column_indices)
    return fixed + [i for i in range(len(headers)) if i not in fixed]


def filter_records(records: list[StockRecord], filters: dict[int, str]) -> list[StockRecord]:
    """Keep records whose cell contains every filter text (case-insensitive)."""
    active = {col: text.lower() for col, text in filters.items() if text}
    if not active:
        return list(records)

    def _matches(rec: StockRecord) -> bool:
        row = rec.raw
        for col, needle in active.items():
            cell = row[col] if col < len(row) else ""
            if needle not in (cell or "").lower():
                return False
        return True

    return [r for r in records if _matches(r)]


def _compare_cells(a: str, b: str) -> int:
    num_a, num_b = parse_br_number(a), parse_br_number(b)
    if not is_missing(num_a) and not is_missing(num_b):
        return (num_a > num_b) - (num_a < num_b)
    str_a, str_b = a or "", b or ""
    return (str_a > str_b) - (str_a < str_b)


def sort_records(records: list[StockRecord], column: int,
                 direction: str = "asc") -> list[StockRecord]:
    """Sort by one display column: numerically when both cells are numbers,
    otherwise by text. Stable."""
    if direction not in SORT_DIRECTIONS:
        raise ValueError(f"direction must be 'asc' or 'desc', got {direction!r}")
    sign = 1 if direction == "asc" else -1

    def _cell(rec):
        row = rec.raw
        return row[column] if column < len(row) else ""

    return sorted(records,
                  key=cmp_to_key(lambda x, y: sign * _compare_cells(_cell(x), _cell(y))))


def next_sort_direction(current: tuple[int, str] | None, column: int) -> tuple[int, str]:
    """Header-click cycle: asc first, asc -> desc on the same column."""
    if current is not None and current == (column, "asc"):
        return column, "desc"
    return column, "asc"


def status_category(status: str | None) -> str:
    if not status or not status.strip() or status.strip() == "-":
        return "none"
    s = status.lower()
    for needle, category in STATUS_CATEGORIES:
        if needle in s:
            return category
    return "other"


class ColumnVisibility:
    """Hidden-column set seeded from the layout defaults; sticky columns
    can never be hidden."""

    def __init__(self, layout: LayoutConfig | None, hidden=()):
        self.layout = layout
        self.hidden = set(hidden)

    def is_sticky(self, index: int) -> bool:
        return self.layout is not None and index in self.layout.sticky_column_indices

    def toggle(self, index: int) -> bool:
        """Flip a column; returns True when it is now visible."""
        if self.is_sticky(index):
            return True
        if index in self.hidden:
            self.hidden.discard(index)
            return True
        self.hidden.add(index)
        return False

    def visible(self, headers: list[str]) -> list[int]:
        return [i for i in ordered_column_indices(headers, self.layout)
                if i not in self.hidden]
