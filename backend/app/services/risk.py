"""Portfolio risk: local heuristic score plus a validated merge with an LLM opinion."""

import logging
import math
from typing import Any

from pydantic import BaseModel, Field

from app.models.holding import ASSET_LABELS, AssetClass, Holding
from app.services.holdings import merge_holdings

logger = logging.getLogger(__name__)

RISK_LABELS = ("Low", "Moderate Low", "Moderate", "Moderate High", "High", "No Data")
NO_DATA = "No Data"
NO_DATA_NOTE = "Add holdings to generate a real portfolio risk profile."
DEFAULT_LLM_NOTE = "Risk profile generated from your portfolio allocation and concentration."

BASE_RISK = {
    AssetClass.STOCKS: 78,
    AssetClass.MUTUAL_FUNDS: 62,
    AssetClass.GOLD: 28,
    AssetClass.FIXED_DEPOSIT: 15,
}


class RiskCategory(BaseModel):
    asset_class: AssetClass
    label: str
    value: float
    share: float  # fraction 0..1
    score: int
    level: str


class RiskProfile(BaseModel):
    score: float
    label: str
    note: str = ""
    category_breakdown: list[RiskCategory] = Field(default_factory=list)
    factors: list[str] = Field(default_factory=list)


def clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def risk_label(score: float) -> str:
    if score > 80:
        return "High"
    if score > 65:
        return "Moderate High"
    if score > 45:
        return "Moderate"
    if score > 25:
        return "Moderate Low"
    return "Low"


def category_level(score: float) -> str:
    if score > 80:
        return "High"
    if score > 60:
        return "Moderate High"
    if score > 35:
        return "Moderate"
    return "Low"


def sanitize_level(level: str) -> str:
    v = level.lower()
    if "high" in v and "moderate" in v:
        return "Moderate High"
    if "high" in v:
        return "High"
    if "moderate" in v:
        return "Moderate"
    return "Low"


def score_risk(holdings: list[Holding]) -> RiskProfile:
    """Heuristic risk from class mix and concentration.

    score = 35 + 35*growth - 18*safe + 55*max(0, top_holding - 0.25)
            + 40*max(0, top_class - 0.5) + (8 if <= 2 positions), clamped 0..100
    """
    by_class = {cls: 0.0 for cls in AssetClass}
    total = 0.0
    for h in holdings:
        value = max(0.0, h.current_value or 0.0)
        total += value
        by_class[h.asset_class] += value

    if total <= 0:
        return RiskProfile(score=0, label=NO_DATA, note=NO_DATA_NOTE)

    shares = {cls: value / total for cls, value in by_class.items()}
    safe_share = shares[AssetClass.GOLD] + shares[AssetClass.FIXED_DEPOSIT]
    growth_share = shares[AssetClass.STOCKS] + shares[AssetClass.MUTUAL_FUNDS]
    top_class = max(AssetClass, key=lambda cls: shares[cls])
    top_class_share = shares[top_class]

    merged = merge_holdings(holdings)
    top_name, top_share = "N/A", 0.0
    for item in merged:
        share = item.current_value / total if item.current_value > 0 else 0.0
        if share > top_share:
            top_name, top_share = item.name, share

    score = 35.0
    score += growth_share * 35
    score -= safe_share * 18
    score += max(0.0, top_share - 0.25) * 55
    score += max(0.0, top_class_share - 0.5) * 40
    if len(merged) <= 2:
        score += 8
    score = clamp(score)

    breakdown = []
    for cls in AssetClass:
        category_score = clamp(BASE_RISK[cls] + shares[cls] * 35)
        breakdown.append(
            RiskCategory(
                asset_class=cls,
                label=ASSET_LABELS[cls],
                value=by_class[cls],
                share=shares[cls],
                score=round(category_score),
                level=category_level(category_score),
            )
        )

    top_label = ASSET_LABELS[top_class]
    note = (
        f"{top_label} is {round(top_class_share * 100)}% of wealth, safe assets are "
        f"{round(safe_share * 100)}%, largest holding is {round(top_share * 100)}%."
    )
    factors = [
        f"Growth assets (Stocks + MF): {round(growth_share * 100)}%",
        f"Defensive assets (Gold + FD): {round(safe_share * 100)}%",
        f"Largest category: {top_label} ({round(top_class_share * 100)}%)",
        f"Largest holding: {top_name} ({round(top_share * 100)}%)",
        f"Diversification units: {len(merged)}",
    ]
    return RiskProfile(
        score=score, label=risk_label(score), note=note, category_breakdown=breakdown, factors=factors
    )


def _number(value: Any, default: float = 0.0) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number if math.isfinite(number) else default


def validate_llm_risk(raw: dict[str, Any]) -> RiskProfile:
    """Coerce a model-supplied risk JSON object into a RiskProfile.

    Unknown labels become "Moderate", scores are clamped (missing -> 50),
    categories with an unknown asset class are dropped, at most 6 factors.
    """
    label = str(raw.get("label") or "Moderate")
    if label not in RISK_LABELS:
        label = "Moderate"

    factors_raw = raw.get("factors")
    factors = [str(f) for f in factors_raw][:6] if isinstance(factors_raw, list) else []

    categories_raw = raw.get("categoryBreakdown", raw.get("category_breakdown"))
    breakdown = []
    for item in categories_raw if isinstance(categories_raw, list) else []:
        if not isinstance(item, dict):
            continue
        type_name = str(item.get("type") or item.get("asset_class") or "").upper()
        try:
            cls = AssetClass(type_name)
        except ValueError:
            continue
        breakdown.append(
            RiskCategory(
                asset_class=cls,
                label=str(item.get("label") or ASSET_LABELS[cls]),
                value=_number(item.get("value")),
                share=_number(item.get("share")),
                score=round(clamp(_number(item.get("score")))),
                level=sanitize_level(str(item.get("level") or "Moderate")),
            )
        )

    return RiskProfile(
        score=clamp(_number(raw.get("score"), 50.0)),
        label=label,
        note=str(raw.get("note") or "") or DEFAULT_LLM_NOTE,
        category_breakdown=breakdown,
        factors=factors,
    )


def merge_risk_profiles(base: RiskProfile, llm: RiskProfile | None) -> RiskProfile:
    """LLM score and label win; empty breakdown, factors or note keep the heuristic."""
    if llm is None:
        return base
    return RiskProfile(
        score=llm.score,
        label=llm.label,
        note=llm.note or base.note,
        category_breakdown=llm.category_breakdown or base.category_breakdown,
        factors=llm.factors or base.factors,
    )
