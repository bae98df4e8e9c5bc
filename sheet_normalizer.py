#!/usr/bin/env python3
"""
Schema Normalizer
==================
Turns a pasted tab-separated sheet into typed StockRecords for one of two
fixed layouts:

  * standard — 33 columns, rank block at 0..8, identity at 9..11. A
    "simplified" 21-column paste (header starting with "Empresa") is
    remapped into the 33-column layout first.
  * neto     — 21 columns; the pasted header row is ignored.

Column positions live in the named tables below so each layout's
contract can be read (and tested) in one place.
"""

import logging
import uuid

from number_parser import format_br_percent, is_missing, parse_br_number
from schemas import LayoutConfig, ProcessResult, StockRecord

logger = logging.getLogger(__name__)


class MalformedInput(ValueError):
    """The paste does not contain a header row plus at least one data row."""


# =========================================================================
# A. Header sets
# =========================================================================
STANDARD_HEADERS = [
    "Ranking Geral", "Status", "Ranking PL", "Ranking Desvio PL", "Ranking DY",
    "Ranking Mg", "Ranking CAGR", "Ranking Divida", "Ranking Total", "Empresa",
    "Código", "Atuação", "Quantidade total de ações", "Valor de mercado",
    "Lucro líquido estimado 2025", "P/L projetado", "P/L médio (últ. 10 anos)",
    "Desvio do P/L da sua média", "CAGR lucros (últ. 5 anos)",
    "Dívida líquida/EBITDA", "Lucro por ação estimado", "Payout esperado",
    "Dividendo por ação bruto projetado", "Dividend Yield estimado",
    "Cotação atual", "Preço Teto", "Margem de segurança", "Preço de entrada",
    "Dif. Preço Atual x Entrada", "Frequência nos anúncios",
    "Meses que costumam anunciar dividendos", "Última atualização",
    "Investidor10",
]

NETO_HEADERS = [
    "Empresa", "Código", "Atuação", "Quantidade total de ações",
    "Valor de mercado", "Lucro líquido estimado 2025", "P/L projetado",
    "P/L médio (últ. 10 anos)", "Desvio do P/L da sua média",
    "CAGR lucros (últ. 5 anos)", "Dívida líquida/EBITDA",
    "Lucro por ação estimado", "Payout esperado",
    "Dividendo por ação bruto projetado", "Dividend Yield bruto estimado",
    "Cotação atual", "Preço Teto", "Margem de segurança",
    "Frequência nos anúncios", "Meses que costumam anunciar dividendos",
    "Última atualização",
]

# =========================================================================
# B. Column maps (record field -> source column index)
# =========================================================================
STANDARD_COLUMNS = {
    "company": 9,
    "ticker": 10,
    "sector": 11,
    "pl_projected": 15,
    "pl_deviation": 17,
    "cagr": 18,
    "debt_to_ebitda": 19,
    "dividend_yield": 23,
    "current_price": 24,
    "fair_price": 25,
    "margin_of_safety": 26,
    "price_diff_percent": 28,
}

NETO_COLUMNS = {
    "company": 0,
    "ticker": 1,
    "sector": 2,
    "pl_projected": 6,
    "pl_deviation": 8,
    "cagr": 9,
    "debt_to_ebitda": 10,
    "dividend_yield": 14,
    "current_price": 15,
    "fair_price": 16,
    "margin_of_safety": 17,
}

# Simplified 21-column paste -> standard 33-column slot.
SIMPLIFIED_TO_STANDARD = {
    0: 9,     # Empresa
    1: 10,    # Código
    2: 11,    # Atuação
    6: 15,    # P/L projetado
    8: 17,    # Desvio do P/L
    9: 18,    # CAGR
    10: 19,   # Dívida/EBITDA
    14: 23,   # DY
    15: 24,   # Cotação
    16: 25,   # Preço Teto
    17: 26,   # Margem
    18: 29,   # Frequência
    19: 30,   # Meses
    20: 31,   # Última atualização
}

SIMPLIFIED_MARKER = "empresa"
SIMPLIFIED_HIDDEN_COLUMNS = [1, 27]   # Status, Preço de entrada
PRICE_DIFF_SLOT = 28
PROFILE_LINK_SLOT = 32
PROFILE_URL = "https://investidor10.com.br/acoes/{ticker}"
ZERO_PERCENT = "0,00%"

_TEXT_FIELDS = ("company", "ticker", "sector")

STANDARD_LAYOUT = LayoutConfig(
    sticky_column_indices=[0, 9, 10],
    general_rank_column_index=0,
    status_column_index=1,
    company_column_index=9,
    ticker_column_index=10,
)

NETO_LAYOUT = LayoutConfig(
    sticky_column_indices=[0, 1],
    company_column_index=0,
    ticker_column_index=1,
)


# =========================================================================
# C. Helpers
# =========================================================================
def split_rows(raw_text: str) -> list[list[str]]:
    """Split a paste into rows of cells; raise MalformedInput below 2 rows."""
    raw_text = raw_text.lstrip("\ufeff") if raw_text else raw_text
    lines = raw_text.strip().split("\n") if raw_text else [""]
    rows = [line.rstrip("\r").split("\t") for line in lines]
    if len(rows) < 2:
        raise MalformedInput(
            f"Need a header row and at least one data row (got {len(rows)} line)"
        )
    return rows


def pad_row(row: list[str], width: int) -> list[str]:
    """Right-pad with empty cells up to width; longer rows are kept whole."""
    return list(row) + [""] * max(0, width - len(row))


def _new_id(ticker: str) -> str:
    return ticker or f"unknown-{uuid.uuid4().hex[:8]}"


def _build_record(cells: list[str], columns: dict, mode: str) -> StockRecord:
    fields = {}
    for name, idx in columns.items():
        if name in _TEXT_FIELDS:
            fields[name] = cells[idx]
        else:
            fields[name] = parse_br_number(cells[idx])
    return StockRecord(id=_new_id(fields["ticker"]), mode=mode,
                       cells=cells, **fields)


def remap_simplified_row(row: list[str]) -> list[str]:
    """Place a simplified 21-column row into the 33-column standard layout."""
    out = [""] * len(STANDARD_HEADERS)
    for src, dst in SIMPLIFIED_TO_STANDARD.items():
        if src < len(row):
            out[dst] = row[src]

    ticker = row[1].strip() if len(row) > 1 else ""
    if ticker:
        out[PROFILE_LINK_SLOT] = PROFILE_URL.format(ticker=ticker)

    price = parse_br_number(row[15] if len(row) > 15 else None)
    fair = parse_br_number(row[16] if len(row) > 16 else None)
    if not is_missing(price) and not is_missing(fair) and fair != 0:
        out[PRICE_DIFF_SLOT] = format_br_percent((price - fair) / fair * 100)
    else:
        out[PRICE_DIFF_SLOT] = ZERO_PERCENT
    return out


def is_simplified_header(header: list[str]) -> bool:
    return bool(header) and header[0].strip().lower() == SIMPLIFIED_MARKER


# =========================================================================
# D. Per-mode normalization
# =========================================================================
def _normalize_neto(rows: list[list[str]]) -> ProcessResult:
    width = len(NETO_HEADERS)
    records = []
    for row in rows[1:]:
        rec = _build_record(pad_row(row, width), NETO_COLUMNS, "neto")
        if not is_missing(rec.current_price) and rec.fair_price > 0:
            rec.price_diff_percent = (
                (rec.current_price - rec.fair_price) / rec.fair_price * 100
            )
        else:
            rec.price_diff_percent = 0.0
        records.append(rec)

    return ProcessResult(
        records=records,
        headers=list(NETO_HEADERS),
        initial_hidden_column_indices=[],
        layout=NETO_LAYOUT.model_copy(deep=True),
    )


def _normalize_standard(rows: list[list[str]]) -> ProcessResult:
    header, data_rows = rows[0], rows[1:]
    hidden = []
    if is_simplified_header(header):
        logger.info("Simplified header detected; remapping to standard layout",
                    extra={"phase": "normalize", "count": len(data_rows)})
        data_rows = [remap_simplified_row(r) for r in data_rows]
        hidden = list(SIMPLIFIED_HIDDEN_COLUMNS)

    width = len(STANDARD_HEADERS)
    records = [_build_record(pad_row(r, width), STANDARD_COLUMNS, "standard")
               for r in data_rows]

    return ProcessResult(
        records=records,
        headers=list(STANDARD_HEADERS),
        initial_hidden_column_indices=hidden,
        layout=STANDARD_LAYOUT.model_copy(deep=True),
    )


def normalize(raw_text: str, mode: str) -> ProcessResult:
    """Normalize a pasted sheet into unranked records for the given mode.

    Raises:
        MalformedInput: fewer than two lines (no header + data).
        ValueError: unknown mode.
    """
    if mode not in ("standard", "neto"):
        raise ValueError(f"Unknown mode {mode!r}; expected 'standard' or 'neto'")
    rows = split_rows(raw_text)
    if mode == "neto":
        result = _normalize_neto(rows)
    else:
        result = _normalize_standard(rows)

    n_missing = sum(1 for r in result.records if not r.ticker)
    if n_missing:
        logger.warning(f"{n_missing} rows without ticker; placeholder ids assigned",
                       extra={"phase": "normalize", "count": n_missing})
    return result
