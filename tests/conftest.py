"""Shared fixtures for the ranking screener tests."""

import sys
from pathlib import Path

import pytest
import yaml

# Ensure project root is importable
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

FIXTURES = Path(__file__).resolve().parent / "fixtures"


@pytest.fixture
def cfg():
    """Load the production config.yaml."""
    with open(ROOT / "config.yaml", encoding="utf-8") as f:
        return yaml.safe_load(f)


@pytest.fixture
def standard_text():
    """Five-stock 33-column sheet (one row without ticker)."""
    return (FIXTURES / "sample_standard.tsv").read_text(encoding="utf-8")


@pytest.fixture
def simplified_text():
    """21-column sheet whose header starts with 'Empresa'."""
    return (FIXTURES / "sample_simplified.tsv").read_text(encoding="utf-8")


@pytest.fixture
def neto_text():
    """Three-stock neto sheet (one row without a price)."""
    return (FIXTURES / "sample_neto.tsv").read_text(encoding="utf-8")


@pytest.fixture
def ranked_standard(standard_text):
    from rank_engine import normalize_and_rank
    return normalize_and_rank(standard_text, "standard")


def make_sheet(rows, width=21, header=None):
    """Build a tab-separated paste from partial rows ({col: text})."""
    header = header or [f"H{i}" for i in range(width)]
    lines = ["\t".join(header)]
    for row in rows:
        cells = [""] * width
        for col, text in row.items():
            cells[col] = text
        lines.append("\t".join(cells))
    return "\n".join(lines)
