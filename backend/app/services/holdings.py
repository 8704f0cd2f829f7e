"""Holding merge engine and ledger fingerprint."""

from app.models.holding import AssetClass, Holding, MergedHolding

MERGEABLE_CLASSES = (AssetClass.STOCKS, AssetClass.MUTUAL_FUNDS)
BASELINE_FIELDS = ("price_start_of_day", "price_start_of_week", "price_start_of_month")


def holding_key(holding: Holding) -> str:
    if holding.asset_class in MERGEABLE_CLASSES:
        return f"{holding.asset_class.value}:{holding.tracking_symbol or holding.name.upper()}"
    return holding.id


def _member_ids(holding: Holding) -> list[str]:
    if isinstance(holding, MergedHolding) and holding.member_ids:
        return list(holding.member_ids)
    return [holding.id]


def _weighted_baseline(prev: MergedHolding, item: Holding, field: str, total_qty: float) -> float | None:
    a, b = getattr(prev, field), getattr(item, field)
    if a is None and b is None:
        return None
    if total_qty <= 0:
        return a
    return ((a or 0) * prev.quantity + (b or 0) * item.quantity) / total_qty


def _fold(prev: MergedHolding, item: Holding) -> MergedHolding:
    total_qty = prev.quantity + item.quantity
    invested = prev.invested_amount + item.invested_amount
    sip_amount = (prev.sip_amount or 0) + (item.sip_amount or 0)
    return prev.model_copy(
        update={
            "quantity": total_qty,
            "invested_amount": invested,
            "current_value": prev.current_value + item.current_value,
            "purchase_price": invested / total_qty if total_qty > 0 else prev.purchase_price,
            "purchase_date": min(prev.purchase_date, item.purchase_date),
            "last_updated": max(prev.last_updated, item.last_updated),
            **{f: _weighted_baseline(prev, item, f, total_qty) for f in BASELINE_FIELDS},
            "is_sip": prev.is_sip or item.is_sip,
            "sip_amount": sip_amount or None,
            "member_ids": prev.member_ids + _member_ids(item),
        }
    )


def merge_holdings(holdings: list[Holding]) -> list[MergedHolding]:
    """Group same-instrument Stocks/Mutual Funds entries; first-seen order.

    Quantities, invested amounts and values are summed, baselines are
    quantity-weighted. Inputs that are already merged composites fold the
    same way, so merging twice changes nothing but member-id order.
    """
    merged: dict[str, MergedHolding] = {}
    for item in holdings:
        key = holding_key(item)
        prev = merged.get(key)
        if prev is None:
            base = item.model_dump(exclude={"member_ids"})
            merged[key] = MergedHolding(**base, member_ids=_member_ids(item))
        else:
            merged[key] = _fold(prev, item)
    return list(merged.values())


def ledger_fingerprint(holdings: list[Holding]) -> str:
    """Identity of the ledger inputs that shape a trend; prices are excluded."""
    return "||".join(
        "|".join(
            str(part)
            for part in (
                h.id,
                h.asset_class.value,
                h.purchase_date.isoformat(),
                h.invested_amount,
                h.quantity,
                h.tracking_symbol or h.name,
                1 if h.is_sip else 0,
                h.sip_amount or 0,
                h.sip_day or 0,
            )
        )
        for h in holdings
    )
