"""Tests for dashboard data preparation, chart series and HTML output."""

import json
import sys
from datetime import datetime
from pathlib import Path

import numpy as np

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))
from generate_dashboard import (
    _safe,
    generate_dashboard,
    generate_html,
    prepare_dashboard_data,
    risk_reward_points,
    top_margin_series,
)
from portfolio_assistant import ChatMessage
from schemas import RunConfig


class TestSafe:
    def test_infinities_become_none(self):
        assert _safe(float("-inf")) is None
        assert _safe(float("inf")) is None
        assert _safe(float("nan")) is None

    def test_numpy_types(self):
        assert _safe(np.int64(3)) == 3
        assert isinstance(_safe(np.int64(3)), int)
        assert _safe(np.float64(1.23456)) == 1.2346
        assert _safe(np.bool_(True)) is True

    def test_passthrough(self):
        assert _safe("x") == "x"
        assert _safe(None) is None


class TestChartSeries:
    def test_top_margin_order_and_floor(self, ranked_standard):
        series = top_margin_series(ranked_standard.records, n=5)
        assert [p["name"] for p in series] == ["BBAS3", "ITSA4", "TAEE11", "WEGE3", ""]
        by_name = {p["name"]: p["margin"] for p in series}
        assert by_name["BBAS3"] == 22.86
        assert by_name["WEGE3"] == 0       # -100% plots as 0
        assert by_name[""] == 0            # missing plots as 0

    def test_top_margin_n(self, ranked_standard):
        assert len(top_margin_series(ranked_standard.records, n=2)) == 2

    def test_risk_reward_filters(self, ranked_standard):
        points = risk_reward_points(ranked_standard.records)
        names = {p["name"] for p in points}
        # BBAS3 has no debt figure; the blank row has no DY
        assert names == {"ITSA4", "WEGE3", "TAEE11"}
        itsa = next(p for p in points if p["name"] == "ITSA4")
        assert itsa == {"x": 0.5, "y": 8.2, "z": 20.0, "name": "ITSA4"}

    def test_risk_reward_bounds_are_exclusive(self, ranked_standard):
        points = risk_reward_points(ranked_standard.records, debt_min=-0.2, debt_max=3.5)
        assert {p["name"] for p in points} == {"ITSA4"}


class TestPrepareData:
    def test_valid_json_without_infinities(self, ranked_standard):
        data_json = prepare_dashboard_data(ranked_standard)
        assert "Infinity" not in data_json
        data = json.loads(data_json)
        assert data["mode"] == "standard"
        assert len(data["rows"]) == 5
        assert len(data["headers"]) == 33
        assert data["order"][:3] == [0, 9, 10]
        assert data["hidden"] == []

    def test_rows_are_display_rows_with_status(self, ranked_standard):
        data = json.loads(prepare_dashboard_data(ranked_standard))
        first = data["rows"][0]
        assert first["cells"][10] == "ITSA4"
        assert first["cells"][0] == "2"
        assert first["status"] == "portfolio"

    def test_kpis(self, ranked_standard):
        kpis = json.loads(prepare_dashboard_data(ranked_standard))["kpis"]
        assert kpis["stocks"] == 5
        assert kpis["best_ticker"] == "BBAS3"
        assert kpis["below_entry"] == 2   # ITSA4 and BBAS3; the blank row has no diff

    def test_chart_config_applied(self, ranked_standard):
        cfg = RunConfig(charts={"top_margin_n": 1})
        data = json.loads(prepare_dashboard_data(ranked_standard, cfg))
        assert len(data["top_margin"]) == 1

    def test_transcript_rendered_from_markdown(self, ranked_standard):
        msgs = [ChatMessage("user", "Oi?", datetime(2025, 10, 1, 9, 30)),
                ChatMessage("assistant", "**BBAS3** | 1\n\n- item")]
        data = json.loads(prepare_dashboard_data(ranked_standard, transcript=msgs))
        assert data["transcript"][0]["time"] == "09:30"
        assert "<strong>BBAS3</strong>" in data["transcript"][1]["html"]
        assert "<li>item</li>" in data["transcript"][1]["html"]

    def test_script_close_tag_escaped(self, ranked_standard):
        msgs = [ChatMessage("assistant", "</script><b>x</b>")]
        data_json = prepare_dashboard_data(ranked_standard, transcript=msgs)
        assert "</script>" not in data_json

    def test_neto(self, neto_text):
        from rank_engine import normalize_and_rank
        data = json.loads(prepare_dashboard_data(normalize_and_rank(neto_text, "neto")))
        assert data["status_column"] is None
        assert all(row["status"] is None for row in data["rows"])


class TestHtml:
    def test_embeds_data_and_chartjs(self, ranked_standard):
        html = generate_html(prepare_dashboard_data(ranked_standard))
        assert html.startswith("<!DOCTYPE html>")
        assert "chart.js" in html
        assert "const DATA = {" in html
        assert "ITSA4" in html

    def test_generate_dashboard_writes_file(self, ranked_standard, tmp_path):
        out = generate_dashboard(ranked_standard, tmp_path / "sub" / "dash.html")
        assert out.exists()
        assert "Ranking de Ações" in out.read_text(encoding="utf-8")

    def test_html_escape_covers_quotes(self, ranked_standard):
        html = generate_html(prepare_dashboard_data(ranked_standard))
        assert ".replace(/\"/g, '&quot;')" in html
        assert ".replace(/'/g, '&#39;')" in html
