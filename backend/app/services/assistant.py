"""AI assistant: insight, chat, holding prediction and risk opinion.

Talks to an OpenAI-compatible ``/chat/completions`` endpoint. Every public
call degrades to a local answer (canned text, hash-based prediction or the
heuristic risk profile); failures never reach the caller.
"""

import asyncio
import json
import logging
from typing import Any

import httpx
from pydantic import BaseModel

from app.config import (
    LLM_API_KEY,
    LLM_BASE_URL,
    LLM_MAX_TOKENS,
    LLM_MODEL,
    LLM_RETRIES,
    LLM_TIMEOUT,
)
from app.models.holding import AssetClass, Holding
from app.services.errors import AssistantError
from app.services.risk import RiskProfile, merge_risk_profiles, score_risk, validate_llm_risk
from app.services.series import seed_hash

logger = logging.getLogger(__name__)

CHAT_HISTORY_TURNS = 8
CHAT_TOP_HOLDINGS = 12
RISK_TOP_HOLDINGS = 20

CLASS_NAMES = {
    AssetClass.STOCKS: "stocks",
    AssetClass.MUTUAL_FUNDS: "mutual funds",
    AssetClass.GOLD: "gold",
    AssetClass.FIXED_DEPOSIT: "FDs",
}

SYSTEM_PROMPT = "\n".join(
    [
        "You are Novus AI, a practical personal finance copilot for Indian retail investors.",
        "Use only the provided portfolio context and the user prompt.",
        "Style: concise, clear, supportive, non-judgmental.",
        "Answer only what the user asked. Keep default responses to 2-5 lines, max ~90 words.",
        "Always include numbers when possible.",
        "If asked for a future estimate, give safe and optimistic scenarios with assumptions.",
        "If asked about goal planning, give the monthly SIP needed and a success confidence.",
        "Never claim guaranteed returns.",
    ]
)

RISK_SYSTEM_PROMPT = "\n".join(
    [
        "You are Novus AI risk engine.",
        "Return ONLY valid JSON with keys: score,label,note,categoryBreakdown,factors.",
        "score must be a 0-100 number.",
        "label must be one of: Low, Moderate Low, Moderate, Moderate High, High, No Data.",
        "categoryBreakdown must include STOCKS, MUTUAL_FUNDS, GOLD, FIXED_DEPOSIT.",
        "Each category item: type,label,value,share,score,level.",
        "level must be one of: Low, Moderate, Moderate High, High.",
        "No markdown and no extra text.",
    ]
)

PREDICTION_SYSTEM_PROMPT = "\n".join(
    [
        "You are Novus AI, a practical investing assistant.",
        "Give a concise 30-day directional prediction with reason and risk.",
        "Keep the answer under 45 words. No markdown, no bullets, no guarantees.",
    ]
)

EMPTY_PORTFOLIO_REPLY = (
    "There is no portfolio data yet. Add a holding first, then ask about returns, "
    "risk, allocation or goal planning."
)


class ChatTurn(BaseModel):
    role: str
    content: str


def format_rs(value: float) -> str:
    return f"Rs {round(abs(value)):,}"


def build_portfolio_snapshot(holdings: list[Holding], top: int = CHAT_TOP_HOLDINGS) -> dict[str, Any]:
    """JSON-able context: totals, allocation share and largest holdings first."""
    invested = sum(h.invested_amount for h in holdings)
    current = sum(h.current_value for h in holdings)
    by_class: dict[AssetClass, float] = {}
    for h in holdings:
        by_class[h.asset_class] = by_class.get(h.asset_class, 0.0) + h.current_value
    gain = current - invested

    allocation = sorted(
        (
            {
                "type": cls.value,
                "label": CLASS_NAMES[cls],
                "value": value,
                "share": (value / current * 100) if current > 0 else 0.0,
            }
            for cls, value in by_class.items()
            if value > 0
        ),
        key=lambda a: -a["value"],
    )
    ranked = sorted(holdings, key=lambda h: -h.current_value)[:top]
    return {
        "totals": {
            "invested": invested,
            "current": current,
            "gain": gain,
            "gainPct": (gain / invested * 100) if invested > 0 else 0.0,
        },
        "allocation": allocation,
        "holdings": [
            {
                "name": h.name,
                "type": h.asset_class.value,
                "invested": h.invested_amount,
                "current": h.current_value,
                "pnl": h.current_value - h.invested_amount,
                "pnlPct": ((h.current_value - h.invested_amount) / h.invested_amount * 100)
                if h.invested_amount > 0
                else 0.0,
                "purchaseDate": h.purchase_date.isoformat(),
                "symbol": h.tracking_symbol or "",
            }
            for h in ranked
        ],
    }


def extract_content(payload: Any) -> str | None:
    """Text of the first choice; None for any payload not shaped like a chat completion."""
    if not isinstance(payload, dict):
        return None
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return None
    message = choices[0].get("message")
    if not isinstance(message, dict):
        return None
    content = message.get("content")
    if isinstance(content, str) and content.strip():
        return content.strip()
    if isinstance(content, list):
        text = "".join(
            p.get("text") or "" for p in content if isinstance(p, dict) and p.get("type") == "text"
        ).strip()
        return text or None
    return None


def parse_first_json_object(text: str) -> dict[str, Any] | None:
    start, end = text.find("{"), text.rfind("}")
    if start < 0 or end <= start:
        return None
    try:
        obj = json.loads(text[start : end + 1])
    except json.JSONDecodeError:
        return None
    return obj if isinstance(obj, dict) else None


def fallback_prediction(holding_name: str) -> str:
    pct = ((seed_hash(holding_name, multiplier=33) % 900) - 300) / 100
    if pct >= 2:
        return f"Bias is positive: {pct:.1f}% potential upside in the next 30 days if trend continues."
    if pct >= 0:
        return f"Outlook is neutral-positive: around {pct:.1f}% move expected over the next 30 days."
    return f"Expect higher volatility: about {abs(pct):.1f}% downside risk in the next 30 days."


def fallback_insight(holdings: list[Holding]) -> str:
    if not holdings:
        return "No holdings recorded yet. Add your first asset to start tracking."
    totals = build_portfolio_snapshot(holdings)["totals"]
    sign = "+" if totals["gain"] >= 0 else "-"
    return (
        f"Portfolio value is {format_rs(totals['current'])} against {format_rs(totals['invested'])} "
        f"invested ({sign}{abs(totals['gainPct']):.1f}%)."
    )


class AssistantService:
    def __init__(
        self,
        base_url: str = LLM_BASE_URL,
        api_key: str | None = LLM_API_KEY,
        model: str = LLM_MODEL,
        retries: int = LLM_RETRIES,
        timeout: float = LLM_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
        backoff: float = 0.3,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.retries = retries
        self.timeout = timeout
        self.backoff = backoff
        self._transport = transport

    async def complete(self, messages: list[dict[str, str]]) -> str:
        """One chat completion with linear back-off; raises AssistantError."""
        if not self.api_key:
            raise AssistantError("LLM API key is not configured")

        payload = {
            "model": self.model,
            "messages": messages,
            "temperature": 0.25,
            "top_p": 0.9,
            "max_tokens": LLM_MAX_TOKENS,
        }
        last_error: Exception | None = None
        for attempt in range(1, self.retries + 1):
            try:
                async with httpx.AsyncClient(
                    base_url=self.base_url, timeout=self.timeout, transport=self._transport
                ) as client:
                    resp = await client.post(
                        "/chat/completions",
                        json=payload,
                        headers={"Authorization": f"Bearer {self.api_key}"},
                    )
                    resp.raise_for_status()
                    content = extract_content(resp.json())
                if not content:
                    raise AssistantError("LLM returned empty content")
                return content
            except (httpx.HTTPError, ValueError, AssistantError) as e:
                last_error = e
                logger.warning(f"LLM attempt {attempt}/{self.retries} failed: {e}")
                if attempt < self.retries:
                    await asyncio.sleep(self.backoff * attempt)

        raise AssistantError(f"LLM request failed: {last_error}")

    async def get_insight(self, holdings: list[Holding], asset_class: AssetClass | None = None) -> str:
        filtered = [h for h in holdings if asset_class is None or h.asset_class == asset_class]
        if not filtered:
            return fallback_insight(filtered)

        snapshot = build_portfolio_snapshot(filtered)
        totals = snapshot["totals"]
        scope = CLASS_NAMES[asset_class] if asset_class else "full portfolio"
        user = "\n".join(
            [
                f"Generate an insight summary for {scope}.",
                f"Totals: current {format_rs(totals['current'])}, invested {format_rs(totals['invested'])}, "
                f"gain {format_rs(totals['gain'])} ({totals['gainPct']:.1f}%).",
                "Allocation: " + ", ".join(f"{a['label']} {a['share']:.0f}%" for a in snapshot["allocation"]) + ".",
                "Top holdings: "
                + ", ".join(f"{h['name']} ({h['pnlPct']:.1f}%)" for h in snapshot["holdings"][:4])
                + ".",
                "Give: current health, biggest risk, and next action.",
            ]
        )
        try:
            return await self.complete(
                [{"role": "system", "content": SYSTEM_PROMPT}, {"role": "user", "content": user}]
            )
        except AssistantError as e:
            logger.error(f"Insight fallback: {e}")
            return fallback_insight(filtered)

    async def get_chat_reply(
        self, holdings: list[Holding], prompt: str, history: list[ChatTurn] | None = None
    ) -> str:
        if not holdings:
            return EMPTY_PORTFOLIO_REPLY

        snapshot = build_portfolio_snapshot(holdings, top=CHAT_TOP_HOLDINGS)
        context = {
            "totals": snapshot["totals"],
            "monthlyInvestEstimate": snapshot["totals"]["invested"] / max(1, len(holdings) * 3),
            "allocation": snapshot["allocation"],
            "holdings": snapshot["holdings"],
        }
        turns = [
            {"role": t.role, "content": t.content.strip()}
            for t in history or []
            if t.role in ("user", "assistant") and t.content.strip()
        ][-CHAT_HISTORY_TURNS:]
        user = "\n".join(
            [
                f"User question: {prompt}",
                "Portfolio context (JSON):",
                json.dumps(context),
                "Answer with actionable guidance grounded in this data.",
            ]
        )
        try:
            return await self.complete(
                [{"role": "system", "content": SYSTEM_PROMPT}, *turns, {"role": "user", "content": user}]
            )
        except AssistantError as e:
            logger.error(f"Chat fallback: {e}")
            totals = snapshot["totals"]
            return (
                f"The AI service is unavailable right now. Portfolio snapshot: current "
                f"{format_rs(totals['current'])}, invested {format_rs(totals['invested'])}."
            )

    async def get_holding_prediction(self, holding: Holding) -> str:
        context = {
            "name": holding.name,
            "type": holding.asset_class.value,
            "invested": holding.invested_amount,
            "current": holding.current_value,
            "pnl": holding.current_value - holding.invested_amount,
            "purchaseDate": holding.purchase_date.isoformat(),
            "symbol": holding.tracking_symbol or holding.display_symbol or "",
        }
        user = "\n".join(
            ["Holding context:", json.dumps(context), "Respond with one short prediction sentence."]
        )
        try:
            return await self.complete(
                [{"role": "system", "content": PREDICTION_SYSTEM_PROMPT}, {"role": "user", "content": user}]
            )
        except AssistantError as e:
            logger.error(f"Prediction fallback for {holding.name}: {e}")
            return fallback_prediction(holding.name)

    async def get_risk_opinion(self, holdings: list[Holding]) -> RiskProfile | None:
        """Validated LLM risk profile, or None when the model is unusable."""
        if not holdings:
            return None
        snapshot = build_portfolio_snapshot(holdings, top=RISK_TOP_HOLDINGS)
        user = "Portfolio snapshot JSON:\n" + json.dumps(snapshot)
        try:
            raw = await self.complete(
                [{"role": "system", "content": RISK_SYSTEM_PROMPT}, {"role": "user", "content": user}]
            )
        except AssistantError as e:
            logger.error(f"Risk opinion unavailable: {e}")
            return None

        obj = parse_first_json_object(raw)
        if obj is None:
            logger.error("LLM risk response was not a JSON object")
            return None
        return validate_llm_risk(obj)

    async def get_risk_profile(self, holdings: list[Holding]) -> RiskProfile:
        base = score_risk(holdings)
        return merge_risk_profiles(base, await self.get_risk_opinion(holdings))


# Global instance
assistant_service = AssistantService()
