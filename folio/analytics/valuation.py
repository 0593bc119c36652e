"""Price-only valuation heuristics: fair value, buy zones and a recommendation.

These are rules of thumb built from a single quote (current, high, low, open,
previous close) and optionally the holder's average cost. They are not a
fundamental model and make no network calls.
"""
from __future__ import annotations

from ..errors import InvalidQuantity
from ..models import BuyZone, FairValue, Recommendation, StockAnalysis, ZoneStrength
from ..utils import is_finite_number

FAIR_VALUE_BAND = 0.10
STRONG_ZONE_PROXIMITY = 0.05


def _num(value) -> float | None:
    return float(value) if is_finite_number(value) else None


def fair_value(
    current: float,
    high: float | None = None,
    low: float | None = None,
    open_: float | None = None,
    prev_close: float | None = None,
    avg_cost: float | None = None,
) -> FairValue | None:
    """Average of every method the available inputs allow; None if none apply."""
    high, low, open_, prev_close, avg_cost = map(_num, (high, low, open_, prev_close, avg_cost))
    methods: dict[str, float] = {}
    has_range = high is not None and low is not None
    if has_range:
        mid = (high + low) / 2.0
        methods["range_mid"] = mid
        if open_ is not None:
            methods["weighted"] = current * 0.5 + open_ * 0.3 + mid * 0.2
        if prev_close is not None:
            methods["mean_reversion"] = current * 0.4 + mid * 0.6
    if avg_cost is not None and avg_cost > 0:
        methods["avg_cost"] = avg_cost
    if has_range:
        methods["support_resistance"] = (low * 0.95 + high * 1.05) / 2.0
    if not methods:
        return None
    value = sum(methods.values()) / len(methods)
    return FairValue(
        value=value,
        range_low=value * (1 - FAIR_VALUE_BAND),
        range_high=value * (1 + FAIR_VALUE_BAND),
        methods=methods,
    )


def buy_zones(
    current: float,
    high: float | None = None,
    low: float | None = None,
    prev_close: float | None = None,
    avg_cost: float | None = None,
) -> list[BuyZone]:
    high, low, prev_close, avg_cost = map(_num, (high, low, prev_close, avg_cost))
    zones = []
    if low is not None and low * 0.95 < current:
        zones.append(BuyZone(low * 0.95, ZoneStrength.STRONG, "Strong support level (5% below recent low)"))
    if avg_cost is not None and 0 < avg_cost < current * 1.1:
        zones.append(BuyZone(avg_cost, ZoneStrength.MODERATE, "Average cost level (good entry point)"))
    if low is not None and current > low:
        midpoint = (current + low) / 2.0
        if midpoint < current * 0.95:
            zones.append(BuyZone(midpoint, ZoneStrength.MODERATE, "Mean reversion zone (midpoint between low and current)"))
    if prev_close is not None and prev_close < current:
        zones.append(BuyZone(prev_close * 0.98, ZoneStrength.WEAK, "Previous close support level"))
    if high is not None and low is not None and high > low:
        span = high - low
        for ratio, strength, label in (
            (0.382, ZoneStrength.STRONG, "Fibonacci 38.2% retracement (strong support)"),
            (0.618, ZoneStrength.MODERATE, "Fibonacci 61.8% retracement (golden ratio)"),
        ):
            level = high - span * ratio
            if low < level < current:
                zones.append(BuyZone(level, strength, label))

    # stable sort keeps the first zone added when two round to the same cent
    zones.sort(key=lambda z: z.price)
    seen, out = set(), []
    for zone in zones:
        key = round(zone.price * 100) / 100
        if key not in seen:
            seen.add(key)
            out.append(zone)
    return out


def recommendation(current: float, fair: FairValue | float | None, zones: list[BuyZone]) -> Recommendation:
    # nothing to compare against
    if fair is None or not is_finite_number(current) or current <= 0:
        return Recommendation.HOLD
    value = fair.value if isinstance(fair, FairValue) else float(fair)
    if not is_finite_number(value) or value <= 0:
        return Recommendation.HOLD
    ratio = current / value
    if ratio < 0.85:
        near_strong = any(
            z.strength == ZoneStrength.STRONG and abs(current - z.price) / current < STRONG_ZONE_PROXIMITY
            for z in zones
        )
        return Recommendation.STRONG_BUY if near_strong else Recommendation.BUY
    if ratio < 0.95:
        return Recommendation.BUY
    if ratio <= 1.05:
        return Recommendation.HOLD
    if ratio > 1.15:
        return Recommendation.STRONG_SELL
    return Recommendation.SELL


def graham_value(eps: float | None, growth_rate: float | None) -> float | None:
    """Graham's formula EPS × (8.5 + 2g), g in percent per year."""
    eps, growth_rate = _num(eps), _num(growth_rate)
    if eps is None or growth_rate is None:
        return None
    return eps * (8.5 + 2 * growth_rate)


def upside_pct(current: float, target: float | None) -> float | None:
    if target is None or current <= 0:
        return None
    return (target / current - 1) * 100


def margin_of_safety_pct(current: float, target: float | None) -> float | None:
    if target is None or target <= 0:
        return None
    return (target - current) / target * 100


def analyze(
    symbol: str,
    quote,
    avg_cost: float | None = None,
    eps: float | None = None,
    growth_rate: float | None = None,
    user_fair_value: float | None = None,
) -> StockAnalysis:
    """Run every heuristic for one quote (anything with price/high/low/open/prev_close)."""
    current = getattr(quote, "price", None)
    if not is_finite_number(current) or current <= 0:
        raise InvalidQuantity(f"current price must be a positive finite number, got {current!r}")
    high = getattr(quote, "high", None)
    low = getattr(quote, "low", None)
    prev_close = getattr(quote, "prev_close", None)

    fv = fair_value(current, high, low, getattr(quote, "open", None), prev_close, avg_cost)
    zones = buy_zones(current, high, low, prev_close, avg_cost)
    user_fv = _num(user_fair_value)
    target = user_fv if user_fv is not None and user_fv > 0 else (fv.value if fv else None)
    return StockAnalysis(
        symbol=symbol.strip().upper(),
        current_price=float(current),
        fair_value=fv,
        buy_zones=zones,
        recommendation=recommendation(current, fv, zones),
        graham_value=graham_value(eps, growth_rate),
        user_fair_value=user_fv,
        upside_pct=upside_pct(current, target),
        margin_of_safety_pct=margin_of_safety_pct(current, target),
    )
