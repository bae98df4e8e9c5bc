#!/usr/bin/env python3
"""
Interactive HTML Dashboard Generator for the Ranking Screener.
===============================================================
Turns a ProcessResult (plus any assistant transcript) into a single
self-contained HTML page with the ranked table (sticky columns, column
toggles, per-column filters, click-to-sort, status badges), two Chart.js
charts and the assistant conversation rendered from Markdown.

Usage:
    python generate_dashboard.py ranked.tsv                 # standard mode
    python generate_dashboard.py neto.tsv --mode neto --output neto.html
"""

import argparse
import json
import logging
import math
import sys
from datetime import datetime
from pathlib import Path

import markdown
import numpy as np

from number_parser import is_missing
from schemas import ProcessResult, RunConfig, StockRecord
from table_view import ordered_column_indices, status_category

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _safe(v):
    """Convert numpy types and non-finite floats to JSON-safe Python values."""
    if v is None:
        return None
    if isinstance(v, np.integer):
        return int(v)
    if isinstance(v, np.bool_):
        return bool(v)
    if isinstance(v, (float, np.floating)):
        v = float(v)
        return round(v, 4) if math.isfinite(v) else None
    return v


def _embed_json(data: dict) -> str:
    """json.dumps that is safe inside a <script> block."""
    return json.dumps(data, ensure_ascii=False, allow_nan=False).replace("</", "<\\/")


# ---------------------------------------------------------------------------
# Chart series
# ---------------------------------------------------------------------------

def top_margin_series(records: list[StockRecord], n: int = 5) -> list[dict]:
    """Top-n stocks by margin of safety; -100% or worse plots as 0."""
    top = sorted(records, key=lambda r: r.margin_of_safety, reverse=True)[:n]
    return [
        {"name": r.ticker,
         "margin": _safe(r.margin_of_safety) if r.margin_of_safety > -100 else 0}
        for r in top
    ]


def risk_reward_points(records: list[StockRecord], debt_min: float = -5,
                       debt_max: float = 10) -> list[dict]:
    """Bubble points (x=debt/EBITDA, y=DY, z=margin) for paying, non-outlier stocks."""
    return [
        {"x": _safe(r.debt_to_ebitda), "y": _safe(r.dividend_yield),
         "z": _safe(r.margin_of_safety), "name": r.ticker}
        for r in records
        if r.dividend_yield > 0 and debt_min < r.debt_to_ebitda < debt_max
    ]


# ---------------------------------------------------------------------------
# Prepare JSON data for the dashboard
# ---------------------------------------------------------------------------

def _kpis(records: list[StockRecord]) -> dict:
    dys = [r.dividend_yield for r in records if not is_missing(r.dividend_yield)]
    best = min(records, key=lambda r: r.rank_general) if records else None
    return {
        "stocks": len(records),
        "best_ticker": best.ticker if best else None,
        "avg_dividend_yield": _safe(float(np.mean(dys))) if dys else None,
        "below_entry": sum(1 for r in records
                           if not is_missing(r.price_diff_percent) and r.price_diff_percent < 0),
    }


def _transcript_entries(transcript) -> list[dict]:
    entries = []
    for msg in transcript or []:
        entries.append({
            "role": msg.role,
            "html": markdown.markdown(msg.content, extensions=["tables", "fenced_code"]),
            "time": msg.timestamp.strftime("%H:%M"),
        })
    return entries


def prepare_dashboard_data(result: ProcessResult, cfg: RunConfig | None = None,
                           transcript=None) -> str:
    """Convert a ProcessResult into a JSON string for embedding in HTML."""
    cfg = cfg or RunConfig()
    records = result.records
    layout = result.layout
    mode = records[0].mode if records else None

    status_col = layout.status_column_index
    rows = []
    for rec in records:
        raw = rec.raw
        rows.append({
            "cells": raw,
            "status": status_category(raw[status_col]) if status_col is not None else None,
        })

    dashboard_json = {
        "generated": datetime.now().strftime("%Y-%m-%d %H:%M"),
        "mode": mode,
        "headers": result.headers,
        "order": ordered_column_indices(result.headers, layout),
        "sticky": layout.sticky_column_indices,
        "hidden": result.initial_hidden_column_indices,
        "status_column": status_col,
        "rank_column": layout.general_rank_column_index,
        "rows": rows,
        "kpis": _kpis(records),
        "top_margin": top_margin_series(records, cfg.charts.top_margin_n),
        "risk_reward": risk_reward_points(records, cfg.charts.debt_min,
                                          cfg.charts.debt_max),
        "transcript": _transcript_entries(transcript),
    }
    return _embed_json(dashboard_json)


# ---------------------------------------------------------------------------
# HTML generation
# ---------------------------------------------------------------------------

def generate_html(data_json: str) -> str:
    """Build the complete dashboard HTML string."""
    return f"""<!DOCTYPE html>
<html lang="pt-BR">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Ranking de Ações</title>
    <script src="https://cdn.jsdelivr.net/npm/chart.js@4.5.1" integrity="sha384-jb8JQMbMoBUzgWatfe6COACi2ljcDdZQ2OxczGA3bGNeWe+6DChMTBJemed7ZnvJ" crossorigin="anonymous"></script>
    <style>
{_css()}
    </style>
</head>
<body>
    <div class="dashboard-container">
        <header class="dashboard-header">
            <h1>Ranking de Ações</h1>
            <span class="run-info" id="run-info"></span>
        </header>

        <section class="kpi-row" id="kpi-row"></section>

        <section class="chart-row">
            <div class="chart-container">
                <h3 class="chart-title">Top Margem de Segurança</h3>
                <canvas id="margin-chart"></canvas>
            </div>
            <div class="chart-container">
                <h3 class="chart-title">Risco x Retorno (Dívida/EBITDA x DY)</h3>
                <canvas id="risk-chart"></canvas>
            </div>
        </section>

        <section class="section">
            <div class="table-toolbar">
                <h2 class="section-title">Tabela</h2>
                <details class="column-picker">
                    <summary>Colunas</summary>
                    <div id="column-toggles"></div>
                </details>
            </div>
            <div class="table-wrap">
                <table id="rank-table">
                    <thead><tr id="header-row"></tr><tr id="filter-row"></tr></thead>
                    <tbody id="table-body"></tbody>
                </table>
            </div>
        </section>

        <section class="section" id="transcript-section">
            <h2 class="section-title">Assistente</h2>
            <div id="transcript"></div>
        </section>
    </div>

    <script>
const DATA = {data_json};
{_js()}
    </script>
</body>
</html>
"""


def _css() -> str:
    return """
        :root {
            --bg-primary: #0d1117;
            --bg-card: #161b22;
            --bg-elevated: #21262d;
            --border: rgba(255,255,255,.08);
            --text-primary: #e6edf3;
            --text-secondary: #7d8590;
            --accent: #58a6ff;
            --green: #3fb950;
            --red: #f85149;
            --amber: #d29922;
            --gap: 16px;
            --radius: 10px;
        }
        * { box-sizing: border-box; }
        body { margin: 0; background: var(--bg-primary); color: var(--text-primary);
               font-family: 'DM Sans', system-ui, sans-serif; font-size: 14px; }
        .dashboard-container { max-width: 1600px; margin: 0 auto; padding: 24px; }
        .dashboard-header { display: flex; align-items: baseline; gap: 16px; margin-bottom: var(--gap); }
        .dashboard-header h1 { margin: 0; font-size: 24px; }
        .run-info { color: var(--text-secondary); font-size: 12px; }

        .kpi-row { display: flex; gap: var(--gap); margin-bottom: var(--gap); }
        .kpi-card { flex: 1; background: var(--bg-card); border: 1px solid var(--border);
                    border-radius: var(--radius); padding: 14px 18px; }
        .kpi-label { color: var(--text-secondary); font-size: 11px; text-transform: uppercase; }
        .kpi-value { font-size: 22px; font-weight: 600; margin-top: 4px; }

        .chart-row { display: flex; gap: var(--gap); margin-bottom: var(--gap); }
        .chart-container { flex: 1; background: var(--bg-card); border: 1px solid var(--border);
                           border-radius: var(--radius); padding: 16px; min-height: 300px; }
        .chart-title { margin: 0 0 12px; font-size: 14px; color: var(--text-secondary); }

        .section { background: var(--bg-card); border: 1px solid var(--border);
                   border-radius: var(--radius); padding: 16px; margin-bottom: var(--gap); }
        .section-title { margin: 0 0 12px; font-size: 16px; }
        .table-toolbar { display: flex; justify-content: space-between; align-items: center; }
        .column-picker summary { cursor: pointer; color: var(--accent); }
        #column-toggles { display: grid; grid-template-columns: repeat(3, 1fr); gap: 4px;
                          padding: 8px; background: var(--bg-elevated); border-radius: 6px; }
        #column-toggles label { font-size: 12px; white-space: nowrap; }

        .table-wrap { overflow: auto; max-height: 70vh; }
        table { border-collapse: separate; border-spacing: 0; font-size: 12px; }
        th, td { padding: 6px 10px; border-bottom: 1px solid var(--border); white-space: nowrap;
                 background: var(--bg-card); }
        thead th { position: sticky; top: 0; z-index: 2; background: var(--bg-elevated);
                   cursor: pointer; user-select: none; }
        #filter-row th { top: 30px; cursor: default; }
        #filter-row input { width: 100%; min-width: 60px; background: var(--bg-primary);
                            color: var(--text-primary); border: 1px solid var(--border);
                            border-radius: 4px; padding: 2px 4px; font-size: 11px; }
        .sticky-col { position: sticky; z-index: 1; }
        thead .sticky-col { z-index: 3; }
        th.sorted-asc::after { content: " \\25B2"; }
        th.sorted-desc::after { content: " \\25BC"; }
        td a { color: var(--accent); }

        .badge { padding: 2px 8px; border-radius: 10px; font-size: 11px; font-weight: 600; }
        .badge-hot { background: rgba(248,81,73,.2); color: var(--red); }
        .badge-portfolio { background: rgba(63,185,80,.2); color: var(--green); }
        .badge-watch { background: rgba(88,166,255,.2); color: var(--accent); }
        .badge-out { background: rgba(125,133,144,.2); color: var(--text-secondary); }
        .badge-other { background: rgba(210,153,34,.2); color: var(--amber); }

        .msg { padding: 10px 14px; border-radius: 8px; margin-bottom: 10px; }
        .msg-user { background: var(--bg-elevated); margin-left: 20%; }
        .msg-assistant { background: rgba(88,166,255,.08); margin-right: 20%; }
        .msg-time { color: var(--text-secondary); font-size: 11px; }
        .msg table { border-collapse: collapse; }
        .msg td, .msg th { border: 1px solid var(--border); }
"""


def _js() -> str:
    return r"""
// ---- Number parsing (pt-BR), same rules as the ranking engine ----
function parseBr(text) {
    if (typeof text !== 'string' || !text) return null;
    const cleaned = text.replace(/[R$%\s]/g, '').replace(/\./g, '').replace(',', '.');
    const m = cleaned.match(/^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?/);
    if (!m) return null;
    const v = parseFloat(m[0]);
    return isFinite(v) ? v : null;
}

function compareCells(a, b) {
    const na = parseBr(a), nb = parseBr(b);
    if (na !== null && nb !== null) return na - nb;
    a = a || ''; b = b || '';
    return a < b ? -1 : (a > b ? 1 : 0);
}

function escapeHtml(s) {
    return String(s).replace(/&/g, '&amp;').replace(/</g, '&lt;').replace(/>/g, '&gt;')
        .replace(/"/g, '&quot;').replace(/'/g, '&#39;');
}

function fmt(v, digits) {
    return v === null || v === undefined ? '—' : v.toFixed(digits).replace('.', ',');
}

// ---- Table state ----
const state = {
    hidden: new Set(DATA.hidden),
    filters: {},
    sort: null,   // [column, 'asc' | 'desc']
};

function visibleColumns() {
    return DATA.order.filter(i => !state.hidden.has(i));
}

function toggleColumn(i) {
    if (DATA.sticky.includes(i)) return;
    if (state.hidden.has(i)) state.hidden.delete(i); else state.hidden.add(i);
    renderTable();
}

function clickHeader(i) {
    state.sort = (state.sort && state.sort[0] === i && state.sort[1] === 'asc')
        ? [i, 'desc'] : [i, 'asc'];
    renderTable();
}

function currentRows() {
    const active = Object.entries(state.filters).filter(([, t]) => t);
    let rows = DATA.rows.filter(r => active.every(([col, t]) =>
        (r.cells[col] || '').toLowerCase().includes(t.toLowerCase())));
    if (state.sort) {
        const [col, dir] = state.sort;
        const sign = dir === 'asc' ? 1 : -1;
        rows = rows.slice().sort((x, y) => sign * compareCells(x.cells[col], y.cells[col]));
    }
    return rows;
}

function renderCell(row, col) {
    const value = row.cells[col] || '';
    if (col === DATA.status_column && row.status && row.status !== 'none') {
        return `<span class="badge badge-${row.status}">${escapeHtml(value)}</span>`;
    }
    if (/^https?:\/\//.test(value)) {
        return `<a href="${escapeHtml(value)}" target="_blank" rel="noopener">Ver</a>`;
    }
    if (col === DATA.rank_column && value) return `<strong>#${escapeHtml(value)}</strong>`;
    return escapeHtml(value);
}

function renderTable() {
    const cols = visibleColumns();
    const offsets = {};
    let left = 0;
    cols.forEach(i => {
        if (DATA.sticky.includes(i)) { offsets[i] = left; left += 110; }
    });
    const stickyAttr = i => i in offsets
        ? ` class="sticky-col" style="left:${offsets[i]}px;min-width:110px"` : '';

    document.getElementById('header-row').innerHTML = cols.map(i => {
        let cls = i in offsets ? 'sticky-col' : '';
        if (state.sort && state.sort[0] === i) cls += ' sorted-' + state.sort[1];
        const style = i in offsets ? ` style="left:${offsets[i]}px;min-width:110px"` : '';
        return `<th class="${cls}"${style} onclick="clickHeader(${i})">${escapeHtml(DATA.headers[i])}</th>`;
    }).join('');

    document.getElementById('filter-row').innerHTML = cols.map(i =>
        `<th${stickyAttr(i)}><input data-col="${i}" value="${escapeHtml(state.filters[i] || '')}" placeholder="filtrar"></th>`
    ).join('');
    document.querySelectorAll('#filter-row input').forEach(el => {
        el.addEventListener('input', e => {
            state.filters[e.target.dataset.col] = e.target.value;
            renderBody(cols, stickyAttr);
        });
    });

    document.getElementById('column-toggles').innerHTML = DATA.order.map(i =>
        `<label><input type="checkbox" ${state.hidden.has(i) ? '' : 'checked'} ` +
        `${DATA.sticky.includes(i) ? 'disabled' : ''} onchange="toggleColumn(${i})"> ` +
        `${escapeHtml(DATA.headers[i])}</label>`
    ).join('');

    renderBody(cols, stickyAttr);
}

function renderBody(cols, stickyAttr) {
    document.getElementById('table-body').innerHTML = currentRows().map(r =>
        '<tr>' + cols.map(i => `<td${stickyAttr(i)}>${renderCell(r, i)}</td>`).join('') + '</tr>'
    ).join('');
}

// ---- KPIs, charts, transcript ----
function renderKpis() {
    const k = DATA.kpis;
    const cards = [
        ['Ações', k.stocks],
        ['#1 Ranking Geral', k.best_ticker || '—'],
        ['DY médio', fmt(k.avg_dividend_yield, 2) + '%'],
        ['Abaixo do preço de entrada', k.below_entry],
    ];
    document.getElementById('kpi-row').innerHTML = cards.map(([label, value]) =>
        `<div class="kpi-card"><div class="kpi-label">${label}</div>` +
        `<div class="kpi-value">${escapeHtml(value)}</div></div>`
    ).join('');
    document.getElementById('run-info').textContent =
        `Gerado em ${DATA.generated} · modo ${DATA.mode || '—'}`;
}

function renderCharts() {
    Chart.defaults.color = '#7d8590';
    Chart.defaults.borderColor = 'rgba(255,255,255,.06)';

    new Chart(document.getElementById('margin-chart'), {
        type: 'bar',
        data: {
            labels: DATA.top_margin.map(p => p.name),
            datasets: [{ label: 'Margem de segurança (%)',
                         data: DATA.top_margin.map(p => p.margin),
                         backgroundColor: '#3fb950' }],
        },
        options: { indexAxis: 'y', plugins: { legend: { display: false } } },
    });

    new Chart(document.getElementById('risk-chart'), {
        type: 'bubble',
        data: {
            datasets: [{
                label: 'Ações',
                data: DATA.risk_reward.map(p => ({
                    x: p.x, y: p.y, r: Math.max(3, Math.min(20, Math.abs(p.z || 0) / 5)), name: p.name, z: p.z })),
                backgroundColor: 'rgba(88,166,255,.5)',
            }],
        },
        options: {
            scales: {
                x: { title: { display: true, text: 'Dívida/EBITDA' } },
                y: { title: { display: true, text: 'DY (%)' } },
            },
            plugins: {
                legend: { display: false },
                tooltip: { callbacks: { label: c =>
                    `${c.raw.name}: DY ${fmt(c.raw.y, 2)}% · Dív ${fmt(c.raw.x, 2)} · Mg ${fmt(c.raw.z, 1)}%` } },
            },
        },
    });
}

function renderTranscript() {
    const section = document.getElementById('transcript-section');
    if (!DATA.transcript.length) { section.style.display = 'none'; return; }
    document.getElementById('transcript').innerHTML = DATA.transcript.map(m =>
        `<div class="msg msg-${m.role}"><div class="msg-time">${m.time}</div>${m.html}</div>`
    ).join('');
}

renderKpis();
renderCharts();
renderTable();
renderTranscript();
"""


def generate_dashboard(result: ProcessResult, output_path: str | Path,
                       cfg: RunConfig | None = None, transcript=None) -> Path:
    """Generate the dashboard HTML for a processed paste.

    Args:
        result: normalized and ranked records.
        output_path: where to write the HTML.
        cfg: run config (chart parameters); defaults when omitted.
        transcript: assistant ChatMessages to render, if any.

    Returns:
        Path to the generated HTML file.
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    html = generate_html(prepare_dashboard_data(result, cfg, transcript))
    output_path.write_text(html, encoding="utf-8")
    logger.info(f"Dashboard generated: {output_path} "
                f"({output_path.stat().st_size / 1024:.0f} KB)",
                extra={"phase": "dashboard", "count": len(result.records)})
    return output_path


def main():
    from rank_engine import MalformedInput, normalize_and_rank

    parser = argparse.ArgumentParser(description="Generate interactive HTML dashboard")
    parser.add_argument("input", help="Tab-separated sheet to rank")
    parser.add_argument("--mode", choices=["standard", "neto"], default="standard")
    parser.add_argument("--output", type=str, default="dashboard.html",
                        help="Output HTML path (default: dashboard.html)")
    args = parser.parse_args()

    text = Path(args.input).read_text(encoding="utf-8-sig")
    try:
        result = normalize_and_rank(text, args.mode)
    except MalformedInput as exc:
        print(f"ERROR: {exc}")
        sys.exit(1)
    path = generate_dashboard(result, args.output)
    print(f"Dashboard generated: {path}")


if __name__ == "__main__":
    main()
