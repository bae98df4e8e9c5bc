"""Tests for TSV and Excel export of the ranked table."""

import sys
from pathlib import Path

from openpyxl import load_workbook

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))
from rank_engine import FRAME_COLS, normalize_and_rank
from table_export import HEADER_FILL, TOP_HIGHLIGHT, export_tsv, write_excel


class TestExportTsv:
    def test_header_line_first(self, ranked_standard):
        lines = export_tsv(ranked_standard).split("\n")
        assert lines[0].split("\t") == ranked_standard.headers
        assert len(lines) == 1 + len(ranked_standard.records)

    def test_rows_in_display_order_with_ranks(self, ranked_standard):
        lines = export_tsv(ranked_standard).split("\n")
        first = lines[1].split("\t")
        assert first[10] == "ITSA4"
        assert first[0] == "2"
        assert first[8] == "14"

    def test_neto_export_is_input_rows(self, neto_text):
        result = normalize_and_rank(neto_text, "neto")
        lines = export_tsv(result).split("\n")
        assert len(lines[1].split("\t")) == 21
        assert lines[1].split("\t")[1] == "ITSA4"


class TestWriteExcel:
    def test_two_sheets(self, ranked_standard, tmp_path):
        path = write_excel(ranked_standard, tmp_path / "out" / "ranked.xlsx")
        wb = load_workbook(path)
        assert wb.sheetnames == ["Ranking", "Scores"]

    def test_ranking_sheet_matches_display(self, ranked_standard, tmp_path):
        wb = load_workbook(write_excel(ranked_standard, tmp_path / "r.xlsx"))
        ws = wb["Ranking"]
        headers = [c.value for c in ws[1]]
        assert headers == ranked_standard.headers
        assert ws.cell(row=2, column=11).value == "ITSA4"
        assert ws.cell(row=1, column=1).fill.start_color.rgb.endswith(HEADER_FILL.start_color.rgb[-6:])
        assert ws.max_row == 1 + len(ranked_standard.records)

    def test_hidden_columns(self, simplified_text, tmp_path):
        result = normalize_and_rank(simplified_text, "standard")
        ws = load_workbook(write_excel(result, tmp_path / "s.xlsx"))["Ranking"]
        assert ws.column_dimensions["B"].hidden
        assert ws.column_dimensions["AB"].hidden
        assert not ws.column_dimensions["C"].hidden

    def test_scores_sheet_blanks_missing(self, ranked_standard, tmp_path):
        ws = load_workbook(write_excel(ranked_standard, tmp_path / "r.xlsx"))["Scores"]
        cols = [c.value for c in ws[1]]
        assert cols == FRAME_COLS
        debt_col = cols.index("debt_to_ebitda") + 1
        ticker_col = cols.index("ticker") + 1
        values = {ws.cell(row=r, column=ticker_col).value: ws.cell(row=r, column=debt_col).value
                  for r in range(2, ws.max_row + 1)}
        assert values["BBAS3"] is None
        assert values["TAEE11"] == 3.5

    def test_top_ranks_highlighted(self, ranked_standard, tmp_path):
        ws = load_workbook(write_excel(ranked_standard, tmp_path / "r.xlsx"))["Scores"]
        col = FRAME_COLS.index("rank_general") + 1
        for r in range(2, ws.max_row + 1):
            if ws.cell(row=r, column=col).value <= TOP_HIGHLIGHT:
                assert ws.cell(row=r, column=col).fill.fill_type == "solid"
