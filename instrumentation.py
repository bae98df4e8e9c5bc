#!/usr/bin/env python3
"""
Instrumentation Layer for the Ranking Screener
================================================
Lightweight event tracing: every significant step of a run (READ, CALC,
NET, WRITE, INIT) is recorded to an in-memory log and flushed to
CSV/Markdown when the run ends.

Usage:
    from instrumentation import EventLog, trace_event

    events = EventLog()
    with trace_event(events, "CALC", "Normalize and rank", details="mode=standard"):
        result = normalize_and_rank(text, "standard")

    events.flush_all(ctx.run_dir)
"""

import csv
import inspect
import time
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Optional

EVENT_TYPES = ("INIT", "READ", "CALC", "NET", "WRITE")
COLUMNS = ["#", "Time", "Type", "Duration", "Operation", "Caller", "Status", "Details"]


class Event:
    """Single instrumentation event."""
    __slots__ = ("seq", "wall_time", "event_type", "duration_ms",
                 "operation", "caller", "status", "details")

    def __init__(self, seq: int, wall_time: str, event_type: str,
                 duration_ms: float, operation: str, caller: str,
                 status: str, details: str):
        self.seq = seq
        self.wall_time = wall_time
        self.event_type = event_type
        self.duration_ms = duration_ms
        self.operation = operation
        self.caller = caller
        self.status = status
        self.details = details

    def duration_human(self) -> str:
        ms = self.duration_ms
        if ms < 1000:
            return f"{ms:.0f} ms"
        return f"{ms:.0f} ms ({ms/1000:.1f}s)"

    def to_dict(self) -> dict:
        return dict(zip(COLUMNS, (
            self.seq, self.wall_time, self.event_type, self.duration_human(),
            self.operation, self.caller, self.status, self.details,
        )))


class EventLog:
    """In-memory event log that flushes to CSV/MD."""

    def __init__(self):
        self.events: list[Event] = []

    def record(self, event_type: str, operation: str, duration_ms: float,
               status: str = "OK", details: str = "",
               caller: Optional[str] = None) -> Event:
        if event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type {event_type!r}")
        evt = Event(
            seq=len(self.events) + 1,
            wall_time=datetime.now().strftime("%H:%M:%S"),
            event_type=event_type,
            duration_ms=round(duration_ms, 1),
            operation=operation,
            caller=caller or _get_caller(skip=2),
            status=status,
            details=details,
        )
        self.events.append(evt)
        return evt

    @property
    def failures(self) -> list[Event]:
        return [e for e in self.events if e.status != "OK"]

    def flush_csv(self, path: str | Path) -> str:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", newline="", encoding="utf-8") as f:
            w = csv.DictWriter(f, fieldnames=COLUMNS)
            w.writeheader()
            for evt in self.events:
                w.writerow(evt.to_dict())
        return str(path)

    def flush_md(self, path: str | Path) -> str:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        counts = {}
        for e in self.events:
            counts[e.event_type] = counts.get(e.event_type, 0) + 1
        total_ms = sum(e.duration_ms for e in self.events)

        lines = [
            "# Run Log",
            "",
            f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
            "",
            "## Summary",
            "",
            f"- Total events: {len(self.events)}",
            f"- Total traced time: {total_ms/1000:.2f}s",
            f"- Event types: {', '.join(f'{k}={v}' for k, v in sorted(counts.items()))}",
            f"- Failures: {len(self.failures)}",
            "",
            "## Events",
            "",
            "| " + " | ".join(COLUMNS) + " |",
            "| " + " | ".join("---" for _ in COLUMNS) + " |",
        ]
        for evt in self.events:
            d = evt.to_dict()
            lines.append("| " + " | ".join(str(d[c]).replace("|", "\\|")
                                           for c in COLUMNS) + " |")
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return str(path)

    def flush_all(self, report_dir: str | Path):
        d = Path(report_dir)
        d.mkdir(parents=True, exist_ok=True)
        self.flush_csv(d / "events.csv")
        self.flush_md(d / "events.md")


def _get_caller(skip: int = 2) -> str:
    """Get caller info as file:function:line."""
    try:
        frame = inspect.stack()[skip]
        return f"{Path(frame.filename).name}:{frame.function}:{frame.lineno}"
    except (IndexError, AttributeError):
        return "unknown"


@contextmanager
def trace_event(log: EventLog, event_type: str, operation: str,
                details: str = "", caller: Optional[str] = None):
    """Context manager that records a timed event to the log.

    A raised exception marks the event FAIL and is re-raised.
    """
    # trace_event -> contextmanager __enter__ -> actual caller
    if caller is None:
        caller = _get_caller(skip=3)
    t0 = time.monotonic()
    status = "OK"
    try:
        yield
    except Exception as exc:
        status = "FAIL"
        err = f"ERROR: {type(exc).__name__}: {exc}"
        details = f"{details}; {err}" if details else err
        raise
    finally:
        log.record(event_type, operation, (time.monotonic() - t0) * 1000,
                   status=status, details=details, caller=caller)
