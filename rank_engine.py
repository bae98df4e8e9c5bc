#!/usr/bin/env python3
"""
Ranking Engine
===============
Ranks normalized StockRecords on six fundamentals, sums the ranks into a
total and ranks the total into the general rank. Each metric is ranked by
a stable sort of the whole set (ties keep the order left by the previous
sort), with missing values pushed to the worst end whatever the
direction. The set is finally ordered by price-vs-fair-value ascending.

Usage:
    result = normalize_and_rank(text, "standard")
    result.records[0].rank_general
"""

import logging
import math

import numpy as np
import pandas as pd

from schemas import ProcessResult, StockRecord
from sheet_normalizer import MalformedInput, normalize  # noqa: F401

logger = logging.getLogger(__name__)

# =========================================================================
# A. Metric directions (True = higher is better)
# =========================================================================
RANKED_METRICS = [
    # (value field,        rank field,            higher_is_better)
    ("pl_projected",     "rank_pl",             False),
    ("pl_deviation",     "rank_deviation",      False),
    ("dividend_yield",   "rank_dividend_yield", True),
    ("margin_of_safety", "rank_margin",         True),
    ("cagr",             "rank_cagr",           True),
    ("debt_to_ebitda",   "rank_debt",           False),
]

METRIC_DIR = {field: higher for field, _, higher in RANKED_METRICS}

RANK_COLS = [rank for _, rank, _ in RANKED_METRICS]

FRAME_COLS = [
    "id", "ticker", "company", "sector",
    "pl_projected", "pl_deviation", "dividend_yield", "margin_of_safety",
    "cagr", "debt_to_ebitda", "current_price", "fair_price",
    "price_diff_percent",
] + RANK_COLS + ["rank_total", "rank_general"]


def sort_key(values: pd.Series, higher_is_better: bool) -> pd.Series:
    """Ascending sort key where smaller is better and missing is +inf.

    Both infinities count as missing, so a -inf sentinel can never win a
    descending metric.
    """
    vals = values.astype(float)
    key = -vals if higher_is_better else vals
    return key.where(np.isfinite(vals), math.inf)


def apply_rank(df: pd.DataFrame, value_col: str, rank_col: str,
               higher_is_better: bool) -> pd.DataFrame:
    """Stable-sort df by value_col and write positions 1..N to rank_col."""
    df = df.assign(_key=sort_key(df[value_col], higher_is_better))
    df = df.sort_values("_key", kind="stable").drop(columns="_key")
    df[rank_col] = np.arange(1, len(df) + 1)
    return df


def compute_ranks(df: pd.DataFrame) -> pd.DataFrame:
    """Add the six metric ranks, rank_total and rank_general to df.

    The returned frame is in default display order (price diff ascending,
    missing last); rows keep their original index labels.
    """
    for value_col, rank_col, higher in RANKED_METRICS:
        df = apply_rank(df, value_col, rank_col, higher)

    df["rank_total"] = df[RANK_COLS].sum(axis=1).astype(int)
    df = apply_rank(df, "rank_total", "rank_general", False)

    df = df.assign(_key=sort_key(df["price_diff_percent"], False))
    return df.sort_values("_key", kind="stable").drop(columns="_key")


def records_frame(records: list[StockRecord]) -> pd.DataFrame:
    """Tabular view of the typed and rank fields, one row per record."""
    if not records:
        return pd.DataFrame(columns=FRAME_COLS)
    return pd.DataFrame([r.model_dump(include=set(FRAME_COLS)) for r in records],
                        columns=FRAME_COLS)


def rank_records(records: list[StockRecord]) -> None:
    """Rank records in place and reorder the list into display order."""
    if not records:
        return
    df = records_frame(records)
    ranked = compute_ranks(df)

    rank_fields = RANK_COLS + ["rank_total", "rank_general"]
    for pos, row in ranked[rank_fields].iterrows():
        rec = records[pos]
        for col in rank_fields:
            setattr(rec, col, int(row[col]))

    records[:] = [records[pos] for pos in ranked.index]


def normalize_and_rank(raw_text: str, mode: str) -> ProcessResult:
    """Core entry point: parse, normalize and rank a pasted sheet.

    Raises:
        MalformedInput: fewer than two lines in raw_text.
    """
    result = normalize(raw_text, mode)
    rank_records(result.records)
    if result.records:
        best = min(result.records, key=lambda r: r.rank_general)
        logger.info(f"Ranked {len(result.records)} stocks ({mode}); "
                    f"#1 is {best.ticker or best.id}",
                    extra={"phase": "rank", "count": len(result.records),
                           "ticker": best.ticker})
    return result

