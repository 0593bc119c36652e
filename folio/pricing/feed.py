from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

import pandas as pd
import structlog
import yfinance as yf

from ..config import settings
from ..utils import RateLimiter, is_finite_number, retry_call

log = structlog.get_logger()


@dataclass(frozen=True)
class PriceQuote:
    symbol: str
    price: float
    high: Optional[float] = None
    low: Optional[float] = None
    open: Optional[float] = None
    prev_close: Optional[float] = None
    source: str = ""


class PriceFeed(Protocol):
    def quote(self, symbol: str) -> Optional[PriceQuote]:
        """Latest quote for ``symbol`` or None when the feed has nothing usable."""


def _retry_on_empty_df(result) -> bool:
    return result is None or getattr(result, "empty", True)


def _field(row: pd.Series, name: str) -> Optional[float]:
    if name not in row.index:
        return None
    val = pd.to_numeric(row[name], errors="coerce")
    if pd.isna(val) or not is_finite_number(float(val)):
        return None
    return float(val)


class YFinanceFeed:
    """Daily bars from Yahoo Finance, reduced to the latest session's quote.

    ``suffix`` maps a local ticker onto Yahoo's exchange code (``COMI`` →
    ``COMI.CA`` for the Egyptian exchange).
    """

    def __init__(self, enabled: bool | None = None, suffix: str | None = None):
        self.enabled = bool(settings.yf_enable if enabled is None else enabled)
        self.suffix = settings.price_symbol_suffix if suffix is None else suffix
        self.rate_limiter = RateLimiter(settings.market_rate_limit_seconds)

    def ticker(self, symbol: str) -> str:
        symbol = symbol.strip().upper()
        if self.suffix and not symbol.endswith(self.suffix.upper()):
            return f"{symbol}{self.suffix.upper()}"
        return symbol

    def _history(self, ticker: str) -> Optional[pd.DataFrame]:
        df = yf.download(ticker, period="5d", interval="1d", auto_adjust=False, progress=False)
        if not isinstance(df, pd.DataFrame) or df.empty:
            return None
        if isinstance(df.columns, pd.MultiIndex):
            df.columns = [col[0] for col in df.columns]
        return df.dropna(subset=["Close"]) if "Close" in df.columns else None

    def quote(self, symbol: str) -> Optional[PriceQuote]:
        if not self.enabled:
            return None
        ticker = self.ticker(symbol)
        self.rate_limiter.wait()
        try:
            df = retry_call(
                lambda: self._history(ticker),
                attempts=settings.http_retry_attempts,
                base_delay=settings.http_retry_backoff_seconds,
                retry_on_result=_retry_on_empty_df,
            )
        except Exception as exc:
            log.warning("quote_fetch_failed", symbol=symbol, ticker=ticker, error=str(exc))
            return None
        if df is None or df.empty:
            log.info("quote_empty", symbol=symbol, ticker=ticker)
            return None

        last = df.iloc[-1]
        price = _field(last, "Close")
        if price is None or price <= 0:
            return None
        prev_close = _field(df.iloc[-2], "Close") if len(df) > 1 else None
        return PriceQuote(
            symbol=symbol.strip().upper(),
            price=price,
            high=_field(last, "High"),
            low=_field(last, "Low"),
            open=_field(last, "Open"),
            prev_close=prev_close,
            source="yfinance",
        )


class StaticFeed:
    """Fixed quotes keyed by symbol; used by scripts and tests that must not hit the network."""

    def __init__(self, quotes: dict[str, PriceQuote | float]):
        self.quotes = {}
        for sym, q in quotes.items():
            sym = sym.strip().upper()
            self.quotes[sym] = q if isinstance(q, PriceQuote) else PriceQuote(symbol=sym, price=float(q), source="static")

    def quote(self, symbol: str) -> Optional[PriceQuote]:
        return self.quotes.get(symbol.strip().upper())
