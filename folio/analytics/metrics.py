from __future__ import annotations

from typing import Iterable

import numpy as np
import pandas as pd

from ..models import PortfolioSnapshot

ANNUAL_PERIODS = 252


def _slice_window(series: pd.Series, window_days: int | None = None) -> pd.Series:
    if series is None or series.empty or not window_days:
        return series
    start = series.index.max() - pd.Timedelta(days=window_days)
    return series.loc[series.index >= start]


def snapshot_frame(snapshots: Iterable[PortfolioSnapshot]) -> pd.DataFrame:
    """One row per UTC day (last snapshot wins), indexed by UTC timestamp."""
    rows = [
        {"timestamp": s.timestamp, "value": s.total_value, "cost": s.total_cost}
        for s in snapshots
    ]
    if not rows:
        return pd.DataFrame(columns=["value", "cost"], dtype=float)
    df = pd.DataFrame(rows)
    df["timestamp"] = pd.to_datetime(df["timestamp"], utc=True)
    df = df.sort_values("timestamp").set_index("timestamp")
    df = df.groupby(df.index.normalize()).last()
    return df.astype(float)


def snapshot_series(snapshots: Iterable[PortfolioSnapshot]) -> pd.Series:
    return snapshot_frame(snapshots)["value"]


def snapshot_returns(snapshots: Iterable[PortfolioSnapshot]) -> pd.Series:
    """Daily returns with cost-basis changes treated as external cash flows.

    Buying more shares raises market value without being a gain, so the change
    in total cost between two points is subtracted before dividing.
    """
    df = snapshot_frame(snapshots)
    if len(df) < 2:
        return pd.Series(dtype=float)
    prev = df["value"].shift(1)
    flows = df["cost"].diff()
    rets = (df["value"] - prev - flows) / prev
    return rets.replace([np.inf, -np.inf], np.nan).dropna()


def twr(returns: pd.Series, window_days: int | None = None) -> float | None:
    rets = _slice_window(returns, window_days)
    if rets is None or rets.empty:
        return None
    return float((1.0 + rets).prod() - 1.0)


def volatility_pct(returns: pd.Series, window_days: int | None = None, periods: int = ANNUAL_PERIODS) -> float | None:
    rets = _slice_window(returns, window_days)
    if rets is None or rets.size < 2:
        return None
    return _pct(float(rets.std(ddof=0) * np.sqrt(periods)))


def downside_deviation(returns: pd.Series, window_days: int | None = None, periods: int = ANNUAL_PERIODS) -> float | None:
    rets = _slice_window(returns, window_days)
    if rets is None or rets.empty:
        return None
    downside = rets[rets < 0]
    if downside.empty:
        return 0.0
    return float(downside.std(ddof=0) * np.sqrt(periods))


def sharpe_ratio(returns: pd.Series, rf_annual: float = 0.0, periods: int = ANNUAL_PERIODS) -> float | None:
    if returns is None or returns.size < 2:
        return None
    vol = returns.std(ddof=0)
    if vol == 0:
        return None
    return float((returns.mean() * periods - rf_annual) / (vol * np.sqrt(periods)))


def sortino_ratio(returns: pd.Series, rf_annual: float = 0.0, periods: int = ANNUAL_PERIODS) -> float | None:
    if returns is None or returns.size < 2:
        return None
    dd = downside_deviation(returns, periods=periods)
    if dd in (None, 0.0):
        return None
    return float((returns.mean() * periods - rf_annual) / dd)


def max_drawdown_pct(values: pd.Series, window_days: int | None = None) -> tuple[float | None, int | None]:
    """Worst peak-to-trough decline in percent and the longest drawdown in points."""
    v = _slice_window(values.dropna() if values is not None else values, window_days)
    if v is None or v.size < 2:
        return None, None
    dd = v / v.cummax() - 1.0
    duration = current = 0
    for val in dd:
        if val < 0:
            current += 1
        else:
            duration = max(duration, current)
            current = 0
    return _pct(float(dd.min())), max(duration, current)


def var_cvar(returns: pd.Series, alpha: float = 0.05) -> tuple[float | None, float | None]:
    if returns is None or returns.empty:
        return None, None
    var = float(np.quantile(returns, alpha))
    tail = returns[returns <= var]
    return var, (float(tail.mean()) if not tail.empty else None)


def risk_summary(snapshots: Iterable[PortfolioSnapshot], rf_annual: float = 0.0) -> dict | None:
    snapshots = list(snapshots)
    values = snapshot_series(snapshots)
    returns = snapshot_returns(snapshots)
    if returns.size < 2:
        return None
    max_dd, dd_points = max_drawdown_pct(values, window_days=365)
    var_95, cvar_95 = var_cvar(returns)
    return {
        "points": int(values.size),
        "twr_1m_pct": _pct(twr(returns, 30)),
        "twr_3m_pct": _pct(twr(returns, 90)),
        "twr_1y_pct": _pct(twr(returns, 365)),
        "vol_30d_pct": volatility_pct(returns, 30),
        "vol_1y_pct": volatility_pct(returns, 365),
        "downside_dev_pct": _pct(downside_deviation(returns)),
        "sharpe": _round(sharpe_ratio(returns, rf_annual)),
        "sortino": _round(sortino_ratio(returns, rf_annual)),
        "max_drawdown_1y_pct": max_dd,
        "drawdown_points": dd_points,
        "var_95_1d_pct": _pct(var_95),
        "cvar_95_1d_pct": _pct(cvar_95),
    }


def _pct(val: float | None) -> float | None:
    return None if val is None else round(val * 100, 3)


def _round(val: float | None) -> float | None:
    return None if val is None else round(val, 3)
