from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timedelta

from ..db import Store
from ..ledger import storage
from ..models import HoldingStatus, PerformanceBreakdown, PeriodPerformance, SectorPerformance, TimePeriod
from ..utils import pct, utc_now

BASELINE_SNAPSHOT = "snapshot"
BASELINE_COST = "cost_basis"
OTHER_SECTOR = "Other"


def _period_days(period: int | TimePeriod) -> int:
    days = period.days if isinstance(period, TimePeriod) else period
    if isinstance(days, bool) or not isinstance(days, int) or days <= 0:
        raise ValueError(f"period must be a positive number of days, got {period!r}")
    return days


def performance_for_period(store: Store, period: int | TimePeriod, now: datetime | None = None) -> PeriodPerformance:
    """Value change and dividends since ``now - period``.

    The baseline is the first snapshot taken on or after the period start. With
    no such snapshot the current cost basis stands in, so the figure reads as
    gain since purchase.
    """
    days = _period_days(period)
    now = now or utc_now()
    start = now - timedelta(days=days)
    with store.read() as cur:
        baseline = storage.first_snapshot_since(cur, start)
        holdings = storage.list_holdings(cur, HoldingStatus.OPEN)
        dividends = storage.dividends_total(cur, since=start)

    current_value = sum(h.market_value for h in holdings)
    if baseline is not None:
        start_value, source = baseline.total_value, BASELINE_SNAPSHOT
    else:
        start_value, source = sum(h.total_cost for h in holdings), BASELINE_COST

    value_change = current_value - start_value
    total_return = value_change + dividends
    return PeriodPerformance(
        period_days=days,
        start_value=start_value,
        end_value=current_value,
        value_change=value_change,
        value_change_pct=pct(value_change, start_value),
        dividends_received=dividends,
        total_return=total_return,
        total_return_pct=pct(total_return, start_value),
        baseline_source=source,
        baseline_snapshot_id=baseline.id if baseline else None,
    )


def performance_breakdown(store: Store) -> list[PerformanceBreakdown]:
    with store.read() as cur:
        holdings = storage.list_holdings(cur, HoldingStatus.OPEN)
        paid = storage.dividends_by_holding(cur)

    out = []
    for h in holdings:
        dividends = paid.get(h.id, 0.0)
        total_return = h.profit_loss + dividends
        out.append(PerformanceBreakdown(
            holding_id=h.id,
            symbol=h.symbol,
            display_name=h.display_name,
            price_gain=h.profit_loss,
            price_gain_pct=h.profit_loss_pct,
            dividend_gain=dividends,
            dividend_yield_pct=pct(dividends, h.total_cost),
            total_return=total_return,
            total_return_pct=pct(total_return, h.total_cost),
            total_cost=h.total_cost,
            current_value=h.market_value,
        ))
    out.sort(key=lambda b: b.total_return, reverse=True)
    return out


def portfolio_summary(store: Store) -> dict:
    with store.read() as cur:
        holdings = storage.list_holdings(cur, HoldingStatus.OPEN)
        dividends = storage.dividends_total(cur)

    total_value = sum(h.market_value for h in holdings)
    total_cost = sum(h.total_cost for h in holdings)
    sectors = defaultdict(float)
    roles = defaultdict(float)
    for h in holdings:
        sectors[h.sector or OTHER_SECTOR] += h.market_value
        roles[h.role.value] += h.market_value

    ranked = sorted(holdings, key=lambda h: h.profit_loss_pct)
    return {
        "total_value": total_value,
        "total_cost": total_cost,
        "profit_loss": total_value - total_cost,
        "profit_loss_pct": pct(total_value - total_cost, total_cost),
        "total_dividends": dividends,
        "holdings_count": len(holdings),
        "profitable_count": sum(1 for h in holdings if h.is_profit),
        "losing_count": sum(1 for h in holdings if not h.is_profit),
        "top_gainer": ranked[-1].symbol if ranked else None,
        "top_loser": ranked[0].symbol if ranked else None,
        "sector_allocation": {
            name: {"value": value, "pct": pct(value, total_value)}
            for name, value in sorted(sectors.items(), key=lambda kv: kv[1], reverse=True)
        },
        "role_allocation": {
            name: {"value": value, "pct": pct(value, total_value)}
            for name, value in sorted(roles.items(), key=lambda kv: kv[1], reverse=True)
        },
    }


def sector_performance(store: Store) -> list[SectorPerformance]:
    """Open holdings grouped by sector, heaviest weight first."""
    with store.read() as cur:
        holdings = storage.list_holdings(cur, HoldingStatus.OPEN)

    total_value = sum(h.market_value for h in holdings)
    groups = defaultdict(list)
    for h in holdings:
        groups[h.sector or OTHER_SECTOR].append(h)

    out = []
    for sector, members in groups.items():
        value = sum(h.market_value for h in members)
        cost = sum(h.total_cost for h in members)
        out.append(SectorPerformance(
            sector=sector,
            total_value=value,
            total_cost=cost,
            profit_loss=value - cost,
            profit_loss_pct=pct(value - cost, cost),
            weight=pct(value, total_value),
            holdings_count=len(members),
        ))
    out.sort(key=lambda s: s.weight, reverse=True)
    return out


def stock_allocation(store: Store) -> list[dict]:
    with store.read() as cur:
        holdings = storage.list_holdings(cur, HoldingStatus.OPEN)

    total_value = sum(h.market_value for h in holdings)
    rows = [
        {"holding_id": h.id, "symbol": h.symbol, "value": h.market_value, "pct": pct(h.market_value, total_value)}
        for h in holdings
    ]
    rows.sort(key=lambda r: r["pct"], reverse=True)
    return rows


def allocation_drift(store: Store, tolerance: float = 0.5) -> list[dict]:
    """Holdings with a target weight, ranked from most over-weight to most under-weight."""
    with store.read() as cur:
        holdings = storage.list_holdings(cur, HoldingStatus.OPEN)

    total_value = sum(h.market_value for h in holdings)
    if total_value <= 0:
        return []

    rows = []
    for h in holdings:
        if h.target_percentage is None:
            continue
        current = pct(h.market_value, total_value)
        difference = current - h.target_percentage
        if difference > tolerance:
            band = "ABOVE"
        elif difference < -tolerance:
            band = "BELOW"
        else:
            band = "AT"
        rows.append({
            "holding_id": h.id,
            "symbol": h.symbol,
            "current_pct": current,
            "target_pct": h.target_percentage,
            "difference": difference,
            "band": band,
            # positive means buy, negative means sell
            "amount_to_target": (h.target_percentage - current) / 100 * total_value,
        })
    rows.sort(key=lambda r: r["difference"], reverse=True)
    return rows
