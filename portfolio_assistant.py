#!/usr/bin/env python3
"""
Portfolio Assistant — Gemini-backed Q&A over the ranked records.
=================================================================
The ranked records are serialized into a plain-text context block and
sent with a pt-BR prompt; the model's Markdown answer comes back as one
opaque string. Nothing flows back into the ranking.

One request at a time: while a call is in flight further requests are
ignored (return None), not queued. No retries, no timeout. Any failure
becomes a fixed apology message.

Usage:
    assistant = PortfolioAssistant(cfg.assistant, api_key=os.environ["GEMINI_API_KEY"])
    assistant.ask("Quais ações pagam mais dividendos?", result.records)
    assistant.run_action(QuickAction.RISKS, result.records)
"""

import logging
import math
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

import google.generativeai as genai

from schemas import RunConfig, StockRecord

logger = logging.getLogger(__name__)

DISCLAIMER = (
    "⚠️ **Importante:** Nada aqui é recomendação de compra ou venda. "
    "As análises são apenas para fins de estudo e ampliação de conhecimento.\n\n"
)

WELCOME = (
    DISCLAIMER
    + "Olá! Sou seu analista de investimentos pessoal. **Como posso ajudar sua "
      "carteira hoje?** Escolha uma opção ou digite sua pergunta abaixo."
)

MISSING_KEY_MESSAGE = "Chave de API não encontrada."
ASK_FAILURE = "Erro ao processar sua pergunta. Tente novamente."
ANALYSIS_FAILURE = "Falha ao gerar análise. Por favor, tente novamente mais tarde."
DISCOUNTS_FAILURE = "Erro ao analisar descontos."
RISKS_FAILURE = "Erro ao analisar riscos."
EMPTY_ANSWER = "Não consegui gerar uma resposta."
NO_CONTRIBUTION_CANDIDATES = (
    "No momento, não encontrei ações que satisfaçam simultaneamente o critério "
    "de estar no Top {max_rank} do Ranking E abaixo do preço de entrada. "
    "Considere olhar as **Oportunidades de Desconto** isoladamente."
)


class QuickAction(str, Enum):
    RANKINGS = "rankings"
    DISCOUNTS = "discounts"
    RISKS = "risks"
    CONTRIBUTIONS = "contributions"


ACTION_QUESTIONS = {
    QuickAction.RANKINGS: "Quais são as melhores ações baseadas no Ranking Geral?",
    QuickAction.DISCOUNTS: "Analise as maiores oportunidades de desconto (Preço vs Entrada).",
    QuickAction.RISKS: "Quais ações apresentam maior risco na minha lista?",
    QuickAction.CONTRIBUTIONS: "Onde devo aportar meu dinheiro hoje?",
}


@dataclass
class ChatMessage:
    role: str
    content: str
    timestamp: datetime = field(default_factory=datetime.now)


# =========================================================================
# A. Context formatting and prompts
# =========================================================================
def _fmt(value: float) -> str:
    if value is None or not math.isfinite(value):
        return "N/A"
    return f"{value:.2f}".rstrip("0").rstrip(".")


def _status(rec: StockRecord) -> str:
    if rec.mode == "standard" and len(rec.raw) > 1 and rec.raw[1]:
        return rec.raw[1]
    return "N/A"


def format_stock_context(records: list[StockRecord]) -> str:
    return "\n".join(
        f"[{r.ticker}] {r.company} | Rank: #{r.rank_general} | "
        f"Preço: R${_fmt(r.current_price)} | Teto: R${_fmt(r.fair_price)} | "
        f"DY: {_fmt(r.dividend_yield)}% | P/L: {_fmt(r.pl_projected)} | "
        f"Div/EBITDA: {_fmt(r.debt_to_ebitda)} | Margem: {_fmt(r.margin_of_safety)}% | "
        f"Diff Preço: {_fmt(r.price_diff_percent)}% | Status: {_status(r)}"
        for r in records
    )


def build_question_prompt(question: str, records: list[StockRecord]) -> str:
    return f"""
Você é um assistente financeiro especialista em Value Investing (Graham/Buffett/Barsi) analisando a carteira do usuário.

ABAIXO ESTÃO OS DADOS ATUAIS DAS AÇÕES (Rastreador do Usuário):
---
{format_stock_context(records)}
---

PERGUNTA DO USUÁRIO:
"{question}"

INSTRUÇÕES:
1. Responda APENAS com base nos dados fornecidos acima e em seu conhecimento geral de finanças.
2. Se o usuário perguntar sobre uma ação que não está na lista, avise que não tem dados sobre ela.
3. Seja objetivo, direto e utilize Markdown para formatar (negrito para Tickers e valores importantes).
4. Responda em Português do Brasil.
"""


def build_ranking_prompt(records: list[StockRecord]) -> str:
    summaries = "\n".join(
        f"- {r.ticker} ({r.company}): Rank Geral #{r.rank_general}, "
        f"Preço R${_fmt(r.current_price)}, Preço Teto R${_fmt(r.fair_price)}, "
        f"DY {_fmt(r.dividend_yield)}%, P/L {_fmt(r.pl_projected)}, "
        f"Dívida/EBITDA {_fmt(r.debt_to_ebitda)}, Margem de Segurança {_fmt(r.margin_of_safety)}%"
        for r in records
    )
    return f"""
Atue como um analista financeiro sênior e investidor de valor (estilo Graham/Buffett).
Analise as seguintes ações brasileiras que ficaram no topo do meu ranking fundamentalista:

{summaries}

Forneça uma análise concisa (máx 300 palavras) cobrindo:
1. A oportunidade mais atrativa baseada na relação Risco x Retorno (Ranking Geral e Margem).
2. Quaisquer sinais de alerta visíveis nas métricas (ex: dívida alta ou crescimento negativo se aparente).
3. Uma recomendação final sobre qual priorizar para estudo.

Formate usando Markdown. Responda em Português do Brasil.
"""


def _entry_price(rec: StockRecord) -> str:
    if not rec.price_diff_percent or not math.isfinite(rec.current_price):
        return "N/A"
    return f"{rec.current_price / (1 + rec.price_diff_percent / 100):.2f}"


def build_discount_prompt(records: list[StockRecord]) -> str:
    summaries = "\n".join(
        f"- {r.ticker}: Preço Atual R${_fmt(r.current_price)} vs Preço Entrada "
        f"R${_entry_price(r)} (Diferença: {_fmt(r.price_diff_percent)}%), "
        f"P/L {_fmt(r.pl_projected)}, DY {_fmt(r.dividend_yield)}%"
        for r in records
    )
    return f"""
Você é um especialista em identificar oportunidades de compra em ações descontadas ("Bargain Hunting").
Eu selecionei as ações da minha lista que estão com o maior DESCONTO em relação ao meu preço de entrada estipulado (Diferença negativa).

Dados das ações mais baratas vs entrada:
{summaries}

Por favor, analise:
1. Quais destas parecem ser uma oportunidade real de aporte agora (estão baratas por ineficiência do mercado)?
2. Quais podem ser uma "Armadilha de Valor" (estão baratas porque a empresa está piorando)? Olhe para o P/L para ajudar a decidir.
3. Indique a top #1 para aportar hoje visando valorização e dividendos.

Seja direto. Use Markdown.
"""


def build_risk_prompt(records: list[StockRecord]) -> str:
    summaries = "\n".join(
        f"- {r.ticker}: Dívida/EBITDA {_fmt(r.debt_to_ebitda)}, "
        f"Margem Seg {_fmt(r.margin_of_safety)}%, P/L {_fmt(r.pl_projected)}, "
        f"DY {_fmt(r.dividend_yield)}%"
        for r in records
    )
    return f"""
Atue como um gestor de riscos. Analise as seguintes ações da minha lista que apresentam indicadores preocupantes (Dívida alta ou Margem de segurança negativa):

{summaries}

1. Identifique qual delas representa o maior risco para a carteira no momento.
2. Explique brevemente o impacto da Dívida/EBITDA alta ou Margem negativa neste contexto.
3. Recomende se devo manter observação ou considerar saída (hipoteticamente).

Seja cauteloso e direto. Use Markdown.
"""


# =========================================================================
# B. Quick-action selections
# =========================================================================
def select_top_ranked(records: list[StockRecord], n: int) -> list[StockRecord]:
    return sorted(records, key=lambda r: r.rank_general)[:n]


def select_discounts(records: list[StockRecord], n: int) -> list[StockRecord]:
    finite = [r for r in records if math.isfinite(r.price_diff_percent)]
    return sorted(finite, key=lambda r: r.price_diff_percent)[:n]


def select_risks(records: list[StockRecord], n: int) -> list[StockRecord]:
    return sorted(records, key=lambda r: r.debt_to_ebitda, reverse=True)[:n]


def select_contributions(records: list[StockRecord], n: int,
                         max_rank: int) -> list[StockRecord]:
    # A missing price diff (-inf) is not a discount
    picks = [r for r in records
             if r.rank_general <= max_rank
             and math.isfinite(r.price_diff_percent) and r.price_diff_percent < 0]
    return sorted(picks, key=lambda r: r.rank_general)[:n]


# =========================================================================
# C. Assistant
# =========================================================================
class PortfolioAssistant:
    """Chat-style front end to the Gemini model with a one-call busy flag."""

    def __init__(self, cfg: RunConfig.AssistantConfig, api_key: str | None = None,
                 model=None):
        self.cfg = cfg
        self.model = model
        self.history: list[ChatMessage] = [ChatMessage("assistant", WELCOME)]
        self._busy = threading.Lock()

        if self.model is None and api_key:
            genai.configure(api_key=api_key)
            self.model = genai.GenerativeModel(cfg.model)
            logger.info(f"Gemini model configured ({cfg.model})",
                        extra={"phase": "assistant"})

    @property
    def available(self) -> bool:
        return self.model is not None

    @property
    def busy(self) -> bool:
        return self._busy.locked()

    def _add(self, role: str, content: str):
        self.history.append(ChatMessage(role, content))

    def _generate(self, prompt: str, failure: str) -> str:
        if self.model is None:
            return MISSING_KEY_MESSAGE
        try:
            response = self.model.generate_content(prompt)
            text = response.text
        except Exception:
            logger.exception("Gemini request failed", extra={"phase": "assistant"})
            return failure
        return DISCLAIMER + (text or EMPTY_ANSWER)

    def ask(self, question: str, records: list[StockRecord]) -> str | None:
        """Free-form question over all records. None if busy or blank."""
        if not question.strip():
            return None
        if not self._busy.acquire(blocking=False):
            logger.info("Assistant busy; question ignored", extra={"phase": "assistant"})
            return None
        try:
            self._add("user", question)
            answer = self._generate(build_question_prompt(question, records), ASK_FAILURE)
            self._add("assistant", answer)
            return answer
        finally:
            self._busy.release()

    def run_action(self, action: QuickAction | str, records: list[StockRecord]) -> str | None:
        """One of the canned analyses. None if busy."""
        action = QuickAction(action)
        if not self._busy.acquire(blocking=False):
            logger.info(f"Assistant busy; action {action.value} ignored",
                        extra={"phase": "assistant"})
            return None
        try:
            self._add("user", ACTION_QUESTIONS[action])
            answer = self._run_action(action, records)
            self._add("assistant", answer)
            return answer
        finally:
            self._busy.release()

    def _run_action(self, action: QuickAction, records: list[StockRecord]) -> str:
        cfg = self.cfg
        if action is QuickAction.RANKINGS:
            picks = select_top_ranked(records, cfg.top_rankings)
            return self._generate(build_ranking_prompt(picks), ANALYSIS_FAILURE)
        if action is QuickAction.DISCOUNTS:
            picks = select_discounts(records, cfg.top_discounts)
            return self._generate(build_discount_prompt(picks), DISCOUNTS_FAILURE)
        if action is QuickAction.RISKS:
            picks = select_risks(records, cfg.top_risks)
            return self._generate(build_risk_prompt(picks), RISKS_FAILURE)

        picks = select_contributions(records, cfg.top_contributions,
                                     cfg.contribution_max_rank)
        if not picks:
            return NO_CONTRIBUTION_CANDIDATES.format(max_rank=cfg.contribution_max_rank)
        return self._generate(build_ranking_prompt(picks), ANALYSIS_FAILURE)
