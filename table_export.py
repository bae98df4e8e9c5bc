#!/usr/bin/env python3
"""
Table export — tab-separated text (clipboard format) and Excel.
"""

import math
from pathlib import Path

import pandas as pd
from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from rank_engine import records_frame
from schemas import ProcessResult


def export_tsv(result: ProcessResult) -> str:
    """Headers plus display rows, tab/newline joined like the pasted input."""
    lines = ["\t".join(result.headers)]
    lines += ["\t".join(r.raw) for r in result.records]
    return "\n".join(lines)


# =========================================================================
# Excel writing — 2 sheets
# =========================================================================

# Styling constants
HEADER_FILL = PatternFill(start_color="1F4E79", end_color="1F4E79", fill_type="solid")
HEADER_FONT = Font(name="Calibri", size=11, bold=True, color="FFFFFF")
DATA_FONT = Font(name="Calibri", size=10)
THIN_BORDER = Border(
    left=Side(style="thin", color="D0D0D0"),
    right=Side(style="thin", color="D0D0D0"),
    top=Side(style="thin", color="D0D0D0"),
    bottom=Side(style="thin", color="D0D0D0"),
)
GREEN_FILL = PatternFill(start_color="C6EFCE", end_color="C6EFCE", fill_type="solid")

TOP_HIGHLIGHT = 10


def _style_header_row(ws, row, n_cols):
    """Apply header styling to a row."""
    for c in range(1, n_cols + 1):
        cell = ws.cell(row=row, column=c)
        cell.fill = HEADER_FILL
        cell.font = HEADER_FONT
        cell.alignment = Alignment(horizontal="center", vertical="center")
        cell.border = THIN_BORDER


def _auto_width(ws, min_width=8, max_width=40):
    """Auto-adjust column widths."""
    for col_cells in ws.columns:
        col_letter = get_column_letter(col_cells[0].column)
        max_len = 0
        for cell in col_cells:
            if cell.value is not None:
                max_len = max(max_len, len(str(cell.value)))
        width = min(max(max_len + 2, min_width), max_width)
        ws.column_dimensions[col_letter].width = width


def write_table_sheet(wb: Workbook, result: ProcessResult):
    """Display rows exactly as shown in the table, initial hidden columns hidden."""
    ws = wb.active
    ws.title = "Ranking"
    ws.append(result.headers)
    _style_header_row(ws, 1, len(result.headers))

    for rec in result.records:
        ws.append(rec.raw)

    _auto_width(ws)
    for idx in result.initial_hidden_column_indices:
        ws.column_dimensions[get_column_letter(idx + 1)].hidden = True

    sticky = result.layout.sticky_column_indices
    # Freeze panes only work on a contiguous left block
    if sticky == list(range(len(sticky))):
        ws.freeze_panes = ws.cell(row=2, column=len(sticky) + 1)
    else:
        ws.freeze_panes = "A2"
    return ws


def write_scores_sheet(wb: Workbook, df: pd.DataFrame):
    """Typed values and ranks; missing values left blank."""
    ws = wb.create_sheet("Scores")
    cols = list(df.columns)
    ws.append(cols)
    _style_header_row(ws, 1, len(cols))

    for r, (_, row) in enumerate(df.iterrows(), 2):
        for c, col in enumerate(cols, 1):
            v = row[col]
            if isinstance(v, float) and not math.isfinite(v):
                v = None
            elif isinstance(v, float):
                v = round(v, 4)
            elif hasattr(v, "item"):
                v = v.item()
            cell = ws.cell(row=r, column=c, value=v)
            cell.font = DATA_FONT
            cell.border = THIN_BORDER
        if 0 < int(row["rank_general"]) <= TOP_HIGHLIGHT:
            ws.cell(row=r, column=cols.index("rank_general") + 1).fill = GREEN_FILL

    _auto_width(ws)
    return ws


def write_excel(result: ProcessResult, path: str | Path) -> str:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    wb = Workbook()
    write_table_sheet(wb, result)
    write_scores_sheet(wb, records_frame(result.records))
    wb.save(str(path))
    return str(path)
