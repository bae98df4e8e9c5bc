"""Tests for the portfolio assistant: prompt context, quick-action
selections, disclaimer, failure messages and the busy flag.

The Gemini model is replaced by a fake with the same generate_content
surface, so no network access is needed.
"""

import sys
import threading
from pathlib import Path
from types import SimpleNamespace

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))
import portfolio_assistant as pa
from portfolio_assistant import (
    ASK_FAILURE,
    DISCLAIMER,
    DISCOUNTS_FAILURE,
    MISSING_KEY_MESSAGE,
    PortfolioAssistant,
    QuickAction,
    format_stock_context,
    select_contributions,
    select_discounts,
    select_risks,
    select_top_ranked,
)
from schemas import RunConfig


class FakeModel:
    """Records prompts and returns a canned answer."""

    def __init__(self, text="**BBAS3** parece barata.", error=None):
        self.text = text
        self.error = error
        self.prompts = []

    def generate_content(self, prompt):
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(text=self.text)


class BlockingModel:
    """Holds the call open until released, to exercise the busy flag."""

    def __init__(self):
        self.started = threading.Event()
        self.release = threading.Event()

    def generate_content(self, prompt):
        self.started.set()
        self.release.wait(timeout=5)
        return SimpleNamespace(text="ok")


@pytest.fixture
def assistant_cfg():
    return RunConfig().assistant


@pytest.fixture
def records(ranked_standard):
    return ranked_standard.records


# =====================================================================
# CONTEXT AND SELECTIONS
# =====================================================================

class TestContext:
    def test_one_line_per_record(self, records):
        ctx = format_stock_context(records)
        lines = ctx.split("\n")
        assert len(lines) == len(records)
        assert lines[0].startswith("[ITSA4] Itaúsa | Rank: #2")

    def test_missing_values_shown_as_na(self, records):
        bbas = next(r for r in records if r.ticker == "BBAS3")
        assert "Div/EBITDA: N/A" in format_stock_context([bbas])

    def test_status_from_display_row(self, records):
        bbas = next(r for r in records if r.ticker == "BBAS3")
        assert "Status: Quente" in format_stock_context([bbas])

    def test_neto_status_na(self, neto_text):
        from rank_engine import normalize_and_rank
        recs = normalize_and_rank(neto_text, "neto").records
        assert "Status: N/A" in format_stock_context(recs[:1])


class TestSelections:
    def test_top_ranked(self, records):
        assert [r.ticker for r in select_top_ranked(records, 3)] == ["BBAS3", "ITSA4", "TAEE11"]

    def test_discounts_skip_missing(self, records):
        picks = select_discounts(records, 5)
        assert [r.ticker for r in picks] == ["ITSA4", "BBAS3", "TAEE11", "WEGE3"]

    def test_risks_highest_debt_first(self, records):
        assert select_risks(records, 1)[0].ticker == "TAEE11"

    def test_contributions(self, records):
        picks = select_contributions(records, 5, max_rank=20)
        assert [r.ticker for r in picks] == ["BBAS3", "ITSA4"]

    def test_contributions_rank_cutoff(self, records):
        picks = select_contributions(records, 5, max_rank=1)
        assert [r.ticker for r in picks] == ["BBAS3"]


# =====================================================================
# ASSISTANT CALLS
# =====================================================================

class TestAsk:
    def test_answer_has_disclaimer(self, assistant_cfg, records):
        model = FakeModel()
        bot = PortfolioAssistant(assistant_cfg, model=model)
        answer = bot.ask("Qual a melhor?", records)
        assert answer == DISCLAIMER + "**BBAS3** parece barata."
        assert "Qual a melhor?" in model.prompts[0]
        assert "[WEGE3]" in model.prompts[0]

    def test_history(self, assistant_cfg, records):
        bot = PortfolioAssistant(assistant_cfg, model=FakeModel())
        assert [m.role for m in bot.history] == ["assistant"]
        bot.ask("Oi?", records)
        assert [m.role for m in bot.history] == ["assistant", "user", "assistant"]
        assert bot.history[1].content == "Oi?"

    def test_blank_question_ignored(self, assistant_cfg, records):
        model = FakeModel()
        bot = PortfolioAssistant(assistant_cfg, model=model)
        assert bot.ask("   ", records) is None
        assert model.prompts == []

    def test_failure_returns_apology(self, assistant_cfg, records):
        bot = PortfolioAssistant(assistant_cfg, model=FakeModel(error=RuntimeError("quota")))
        assert bot.ask("Oi?", records) == ASK_FAILURE
        assert not bot.busy

    def test_empty_model_text(self, assistant_cfg, records):
        bot = PortfolioAssistant(assistant_cfg, model=FakeModel(text=""))
        assert bot.ask("Oi?", records) == DISCLAIMER + pa.EMPTY_ANSWER

    def test_missing_key(self, assistant_cfg, records):
        bot = PortfolioAssistant(assistant_cfg, api_key=None)
        assert not bot.available
        assert bot.ask("Oi?", records) == MISSING_KEY_MESSAGE

    def test_records_untouched(self, assistant_cfg, records):
        before = [r.model_dump() for r in records]
        PortfolioAssistant(assistant_cfg, model=FakeModel()).ask("Oi?", records)
        assert [r.model_dump() for r in records] == before


class TestQuickActions:
    def test_rankings_prompt_uses_top_n(self, records):
        cfg = RunConfig(assistant={"top_rankings": 2}).assistant
        model = FakeModel()
        PortfolioAssistant(cfg, model=model).run_action("rankings", records)
        prompt = model.prompts[0]
        assert "BBAS3" in prompt and "ITSA4" in prompt
        assert "WEGE3" not in prompt

    def test_discounts_failure_message(self, assistant_cfg, records):
        bot = PortfolioAssistant(assistant_cfg, model=FakeModel(error=ValueError("x")))
        assert bot.run_action(QuickAction.DISCOUNTS, records) == DISCOUNTS_FAILURE

    def test_risks_prompt(self, assistant_cfg, records):
        model = FakeModel()
        PortfolioAssistant(assistant_cfg, model=model).run_action("risks", records)
        assert "gestor de riscos" in model.prompts[0]
        assert "TAEE11" in model.prompts[0]

    def test_contributions_without_candidates_skips_model(self, assistant_cfg, records):
        model = FakeModel()
        bot = PortfolioAssistant(assistant_cfg, model=model)
        above_entry = [r for r in records if r.price_diff_percent >= 0]
        answer = bot.run_action("contributions", above_entry)
        assert "Top 20" in answer
        assert model.prompts == []

    def test_unknown_action(self, assistant_cfg, records):
        with pytest.raises(ValueError):
            PortfolioAssistant(assistant_cfg, model=FakeModel()).run_action("yolo", records)


class TestBusyFlag:
    def test_second_request_ignored_while_in_flight(self, assistant_cfg, records):
        model = BlockingModel()
        bot = PortfolioAssistant(assistant_cfg, model=model)
        results = {}
        worker = threading.Thread(target=lambda: results.setdefault(
            "first", bot.ask("Primeira?", records)))
        worker.start()
        assert model.started.wait(timeout=5)

        assert bot.busy
        assert bot.ask("Segunda?", records) is None
        assert bot.run_action("risks", records) is None

        model.release.set()
        worker.join(timeout=5)
        assert results["first"] == DISCLAIMER + "ok"
        assert not bot.busy
        questions = [m.content for m in bot.history if m.role == "user"]
        assert questions == ["Primeira?"]
