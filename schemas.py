#!/usr/bin/env python3
"""
Typed schemas for the fundamental ranking screener.

Provides Pydantic models for data validation at pipeline boundaries.
These schemas are documentation-as-code: they define what the pipeline
expects and produces, making assumptions explicit and testable.
"""

from typing import Literal, Optional

from pydantic import (BaseModel, Field, computed_field, field_validator,
                      model_validator)

from number_parser import MISSING

Mode = Literal["standard", "neto"]

# Display-row slot -> rank field, for layouts that carry rank columns.
RANK_COLUMN_SLOTS = {
    0: "rank_general",
    2: "rank_pl",
    3: "rank_deviation",
    4: "rank_dividend_yield",
    5: "rank_margin",
    6: "rank_cagr",
    7: "rank_debt",
    8: "rank_total",
}


class StockRecord(BaseModel):
    """One normalized spreadsheet row.

    Numeric fields hold a finite float or MISSING (-inf); the parser
    never lets NaN through. Rank fields are 0 until the ranking engine
    has run, then 1-based.
    """
    id: str
    mode: Mode
    cells: list[str]

    ticker: str = ""
    company: str = ""
    sector: str = ""

    pl_projected: float = MISSING
    pl_deviation: float = MISSING
    dividend_yield: float = MISSING
    margin_of_safety: float = MISSING
    cagr: float = MISSING
    debt_to_ebitda: float = MISSING
    current_price: float = MISSING
    fair_price: float = MISSING
    price_diff_percent: float = 0.0

    rank_pl: int = Field(0, ge=0)
    rank_deviation: int = Field(0, ge=0)
    rank_dividend_yield: int = Field(0, ge=0)
    rank_margin: int = Field(0, ge=0)
    rank_cagr: int = Field(0, ge=0)
    rank_debt: int = Field(0, ge=0)
    rank_total: int = Field(0, ge=0)
    rank_general: int = Field(0, ge=0)

    @property
    def is_ranked(self) -> bool:
        return self.rank_general > 0

    @computed_field
    @property
    def raw(self) -> list[str]:
        """Display row: source cells with computed ranks in the rank slots.

        Only the standard layout has rank columns; a neto row is shown
        exactly as it was pasted.
        """
        row = list(self.cells)
        if self.mode != "standard" or not self.is_ranked:
            return row
        for slot, field in RANK_COLUMN_SLOTS.items():
            if slot < len(row):
                row[slot] = str(getattr(self, field))
        return row


class LayoutConfig(BaseModel):
    """Which display columns are pinned and which hold identity fields."""
    sticky_column_indices: list[int]
    ticker_column_index: int
    company_column_index: int
    status_column_index: Optional[int] = None
    general_rank_column_index: Optional[int] = None


class ProcessResult(BaseModel):
    """Everything the shell needs to render one processed paste."""
    records: list[StockRecord]
    headers: list[str]
    initial_hidden_column_indices: list[int] = []
    layout: LayoutConfig


# =========================================================================
# RunConfig — top-level config schema
# =========================================================================

class RunConfig(BaseModel):
    """Schema for validated config.yaml contents."""

    class AssistantConfig(BaseModel):
        model: str = "gemini-2.5-flash"
        api_key_env: str = "GEMINI_API_KEY"
        top_rankings: int = 7
        top_discounts: int = 5
        top_risks: int = 5
        top_contributions: int = 5
        contribution_max_rank: int = 20

        @field_validator("top_rankings", "top_discounts", "top_risks",
                         "top_contributions", "contribution_max_rank")
        @classmethod
        def count_positive(cls, v: int) -> int:
            if v < 1:
                raise ValueError(f"Count must be >= 1, got {v}")
            return v

    class ChartsConfig(BaseModel):
        top_margin_n: int = Field(5, ge=1)
        debt_min: float = -5
        debt_max: float = 10

        @model_validator(mode="after")
        def debt_window_not_empty(self) -> "RunConfig.ChartsConfig":
            if self.debt_min >= self.debt_max:
                raise ValueError(
                    f"debt_min must be < debt_max (got {self.debt_min} >= {self.debt_max})"
                )
            return self

    class OutputConfig(BaseModel):
        tsv_file: str = "ranked.tsv"
        excel_file: str = "ranked.xlsx"
        dashboard_file: str = "dashboard.html"

    assistant: AssistantConfig = AssistantConfig()
    charts: ChartsConfig = ChartsConfig()
    output: OutputConfig = OutputConfig()
