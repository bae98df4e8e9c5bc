#!/usr/bin/env python3
"""
Fundamental Ranking Screener — Master Entry Point
===================================================
Single-command run over one pasted spreadsheet:
    python run_ranker.py planilha.tsv                      # standard layout
    python run_ranker.py neto.tsv --mode neto
    pbpaste | python run_ranker.py - --excel
    python run_ranker.py planilha.tsv --action rankings --ask "Qual paga mais dividendos?"
    python run_ranker.py planilha.tsv --no-dashboard

Outputs land in runs/<run_id>/: ranked.tsv, ranked.xlsx (--excel),
dashboard.html, ranked.parquet, events.csv/md, run.log, meta.json.
"""

import argparse
import os
import sys
import time
from pathlib import Path

import yaml
from pydantic import ValidationError

from generate_dashboard import generate_dashboard
from instrumentation import EventLog, trace_event
from number_parser import is_missing
from portfolio_assistant import PortfolioAssistant, QuickAction
from rank_engine import MalformedInput, normalize_and_rank, records_frame
from run_context import RunContext
from schemas import RunConfig
from table_export import export_tsv, write_excel

ROOT = Path(__file__).resolve().parent
CONFIG_PATH = ROOT / "config.yaml"


# ---------------------------------------------------------------------------
# CLI argument parsing
# ---------------------------------------------------------------------------
def parse_args(argv=None):
    p = argparse.ArgumentParser(
        description="Rank a pasted fundamentals spreadsheet")
    p.add_argument("input",
                   help="Tab-separated sheet (path, or '-' for stdin)")
    p.add_argument("--mode", choices=["standard", "neto"], default="standard",
                   help="Sheet layout (default: standard)")
    p.add_argument("--ask", action="append", default=[], metavar="QUESTION",
                   help="Question for the assistant (repeatable)")
    p.add_argument("--action", action="append", default=[],
                   choices=[a.value for a in QuickAction],
                   help="Assistant quick analysis (repeatable)")
    p.add_argument("--no-dashboard", action="store_true",
                   help="Skip the HTML dashboard")
    p.add_argument("--excel", action="store_true",
                   help="Also write the ranked table as .xlsx")
    p.add_argument("--config", type=str, default=str(CONFIG_PATH),
                   help="Path to config.yaml")
    p.add_argument("--runs-dir", type=str, default=None,
                   help="Directory for run folders (default: ./runs)")
    return p.parse_args(argv)


# ---------------------------------------------------------------------------
# Config loader with error handling
# ---------------------------------------------------------------------------
def load_config(path: str | Path = CONFIG_PATH) -> tuple[dict, RunConfig]:
    """Load and validate config.yaml.

    Raises:
        FileNotFoundError: no file at path.
        ValidationError: values rejected by RunConfig.
    """
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ValueError("config.yaml is malformed (expected a mapping)")
    return raw, RunConfig(**raw)


def load_config_safe(path: str | Path = CONFIG_PATH) -> tuple[dict, RunConfig]:
    """load_config, but print a clear error and exit(1) on failure."""
    try:
        return load_config(path)
    except FileNotFoundError:
        print(f"\n  ERROR: config.yaml not found at {path}")
        sys.exit(1)
    except (ValidationError, ValueError, yaml.YAMLError) as e:
        print(f"\n  ERROR: Invalid config {path}: {e}")
        sys.exit(1)


def read_input(source: str) -> str:
    if source == "-":
        return sys.stdin.read()
    return Path(source).read_text(encoding="utf-8-sig")


# ---------------------------------------------------------------------------
# Assistant
# ---------------------------------------------------------------------------
def run_assistant(args, cfg: RunConfig, records, events: EventLog):
    """Answer --action / --ask requests; returns the chat history."""
    api_key = os.environ.get(cfg.assistant.api_key_env)
    assistant = PortfolioAssistant(cfg.assistant, api_key=api_key)
    if not assistant.available:
        print(f"  WARNING: ${cfg.assistant.api_key_env} not set; assistant disabled")

    for action in args.action:
        with trace_event(events, "NET", f"Assistant action: {action}"):
            answer = assistant.run_action(action, records)
        print(f"\n--- {action} ---\n{answer}")
    for question in args.ask:
        with trace_event(events, "NET", "Assistant question", details=question[:60]):
            answer = assistant.ask(question, records)
        print(f"\n--- {question} ---\n{answer}")
    return assistant.history


def print_summary(result, run_dir: Path, written: list[str], total_time: float):
    records = result.records
    top = sorted(records, key=lambda r: r.rank_general)[:5]
    print()
    print("============================================")
    print("  RANKING SCREENER — SUMMARY")
    print("============================================")
    print(f"Stocks ranked:            {len(records)}")
    below = sum(1 for r in records
                if not is_missing(r.price_diff_percent) and r.price_diff_percent < 0)
    print(f"Below entry price:        {below}")
    print("Top 5 (Ranking Geral):")
    for r in top:
        print(f"  #{r.rank_general:<3d} {r.ticker or r.id:<10s} total={r.rank_total}")
    print("--------------------------------------------")
    print("OUTPUT:")
    for name in written:
        print(f"  {name}")
    print("--------------------------------------------")
    print(f"Run directory:            {run_dir}")
    print(f"Total runtime:            {total_time}s")
    print("============================================")


# ---------------------------------------------------------------------------
# MAIN
# ---------------------------------------------------------------------------
def main(argv=None) -> Path:
    t0 = time.time()
    args = parse_args(argv)
    events = EventLog()

    # ---- 1. Config ----
    with trace_event(events, "INIT", "Load config"):
        raw_cfg, cfg = load_config_safe(args.config)

    # ---- 2. Run context ----
    ctx = RunContext(runs_dir=args.runs_dir)
    ctx.save_config(raw_cfg)
    ctx.log.info(f"Config loaded (hash {ctx.config_hash(raw_cfg)})",
                 extra={"phase": "init", "mode": args.mode})

    try:
        # ---- 3. Read + rank ----
        try:
            with trace_event(events, "READ", "Read input", details=args.input):
                text = read_input(args.input)
        except OSError as e:
            ctx.log.error(f"Cannot read input: {e}", extra={"phase": "read"})
            print(f"\n  ERROR: Cannot read {args.input}: {e}")
            sys.exit(1)
        try:
            with trace_event(events, "CALC", "Normalize and rank",
                             details=f"mode={args.mode}"):
                result = normalize_and_rank(text, args.mode)
        except MalformedInput as e:
            ctx.log.error(f"Malformed input: {e}", extra={"phase": "rank"})
            print("\n  ERROR: Could not read the sheet. Check the format: "
                  "a header row plus at least one data row, tab-separated.")
            events.flush_all(ctx.run_dir)
            sys.exit(1)
        ctx.log.info(f"{len(result.records)} records ranked",
                     extra={"phase": "rank", "count": len(result.records),
                            "mode": args.mode})

        # ---- 4. Artifacts ----
        written = []
        with trace_event(events, "WRITE", "Write TSV"):
            tsv_path = ctx.run_dir / cfg.output.tsv_file
            tsv_path.write_text(export_tsv(result), encoding="utf-8")
            written.append(tsv_path.name)
        with trace_event(events, "WRITE", "Save ranked frame"):
            ctx.save_artifact("ranked", records_frame(result.records))
            written.append("ranked.parquet")
        if args.excel:
            with trace_event(events, "WRITE", "Write Excel"):
                write_excel(result, ctx.run_dir / cfg.output.excel_file)
                written.append(cfg.output.excel_file)

        # ---- 5. Assistant ----
        history = None
        if args.action or args.ask:
            history = run_assistant(args, cfg, result.records, events)

        # ---- 6. Dashboard ----
        if not args.no_dashboard:
            with trace_event(events, "WRITE", "Generate dashboard"):
                generate_dashboard(result, ctx.run_dir / cfg.output.dashboard_file,
                                   cfg, history)
                written.append(cfg.output.dashboard_file)

        # ---- 7. Event log + metadata ----
        events.flush_all(ctx.run_dir)
        written += ["events.csv", "events.md"]
        total_time = round(time.time() - t0, 1)
        ctx.save_metadata({
            "cli_flags": {
                "input": args.input,
                "mode": args.mode,
                "actions": args.action,
                "questions": len(args.ask),
                "excel": args.excel,
                "no_dashboard": args.no_dashboard,
            },
            "config_hash": ctx.config_hash(raw_cfg),
            "records": len(result.records),
            "hidden_columns": result.initial_hidden_column_indices,
            "event_failures": len(events.failures),
            "total_time_seconds": total_time,
        })
        print_summary(result, ctx.run_dir, written, total_time)
    finally:
        ctx.close()
    return ctx.run_dir


def cli():
    """Console-script entry point (exit status 0 on success)."""
    main()


if __name__ == "__main__":
    cli()
