"""Cost-basis ledger: holdings under buy/sell/adjust with an append-only audit log.

Every mutating call runs as one read-modify-append unit: the per-holding lock
serialises callers touching the same holding, and ``Store.transaction`` makes
the position update, transaction row, cost-history row and realized gain land
together or not at all.
"""
from __future__ import annotations

import math
import sqlite3
import uuid
from dataclasses import replace
from datetime import date, datetime
from typing import Callable

import structlog

from ..config import settings
from ..db import Store
from ..errors import ComputationError, DuplicateHolding, HoldingNotFound, InvalidQuantity
from ..models import (
    CostChangeType,
    CostHistory,
    Dividend,
    Holding,
    HoldingRole,
    HoldingStatus,
    RealizedGain,
    SaleResult,
    Transaction,
    TransactionType,
)
from ..utils import as_utc_datetime, is_finite_number, pct, utc_now
from . import storage
from .locking import KeyedLocks

log = structlog.get_logger()

CLOSE_POLICIES = ("retain", "purge")

_PROFILE_FIELDS = {
    "display_name", "local_name", "sector", "notes",
    "target_percentage", "fair_value", "eps", "growth_rate", "pe_ratio", "role",
}


def normalize_symbol(symbol: str) -> str:
    if not isinstance(symbol, str) or not symbol.strip():
        raise InvalidQuantity("symbol must be a non-empty string")
    return symbol.strip().upper()


def weighted_average_cost(shares: int, avg_cost: float, added_shares: int, price: float) -> float:
    """(s×a + n×p) / (s+n). Shared by mutations and replay so both round identically."""
    total = shares + added_shares
    if total <= 0:
        raise ComputationError("weighted average over zero shares")
    value = (shares * avg_cost + added_shares * price) / total
    if not math.isfinite(value):
        raise ComputationError(f"non-finite average cost: {value}")
    return value


def _require_shares(shares) -> int:
    if isinstance(shares, bool) or not isinstance(shares, int) or shares <= 0:
        raise InvalidQuantity(f"shares must be a positive integer, got {shares!r}")
    return shares


def _require_price(price, allow_zero: bool = False, name: str = "price") -> float:
    if not is_finite_number(price):
        raise InvalidQuantity(f"{name} must be a finite number, got {price!r}")
    if price < 0 or (price == 0 and not allow_zero):
        bound = "non-negative" if allow_zero else "positive"
        raise InvalidQuantity(f"{name} must be {bound}, got {price!r}")
    return float(price)


def _holding_id(ref: Holding | str) -> str:
    return ref.id if isinstance(ref, Holding) else str(ref)


class Ledger:
    def __init__(
        self,
        store: Store,
        close_policy: str | None = None,
        clock: Callable[[], datetime] = utc_now,
        locks: KeyedLocks | None = None,
    ):
        policy = close_policy or settings.close_policy
        if policy not in CLOSE_POLICIES:
            raise ValueError(f"close_policy must be one of {CLOSE_POLICIES}")
        self.store = store
        self.close_policy = policy
        self.clock = clock
        self.locks = locks or KeyedLocks()

    # ------------------------------------------------------------- helpers

    def _load_open(self, cur: sqlite3.Cursor, holding_id: str) -> Holding:
        holding = storage.get_holding(cur, holding_id)
        if holding is None or not holding.is_open:
            raise HoldingNotFound(holding_id)
        return holding

    @staticmethod
    def _audit(
        cur: sqlite3.Cursor,
        before: Holding,
        after: Holding,
        change_type: CostChangeType,
        price: float,
        shares: int,
        notes: str,
        at: datetime,
    ) -> CostHistory:
        entry = CostHistory(
            id=str(uuid.uuid4()),
            holding_id=after.id,
            symbol=after.symbol,
            previous_avg_cost=before.avg_cost,
            new_avg_cost=after.avg_cost,
            previous_shares=before.shares,
            new_shares=after.shares,
            change_type=change_type,
            transaction_price=price,
            transaction_shares=shares,
            notes=notes,
            timestamp=at,
        )
        storage.insert_cost_history(cur, entry)
        return entry

    @staticmethod
    def _record(
        cur: sqlite3.Cursor, holding: Holding, tx_type: TransactionType, shares: int,
        price: float, notes: str, at: datetime, total: float | None = None,
    ) -> Transaction:
        tx = Transaction(
            id=str(uuid.uuid4()),
            holding_id=holding.id,
            symbol=holding.symbol,
            type=tx_type,
            shares=shares,
            price=price,
            total=shares * price if total is None else total,
            notes=notes,
            timestamp=at,
        )
        storage.insert_transaction(cur, tx)
        return tx

    # ----------------------------------------------------------- mutations

    def open(
        self,
        symbol: str,
        shares: int,
        price: float,
        display_name: str = "",
        local_name: str = "",
        sector: str = "",
        notes: str = "Initial purchase",
        **profile,
    ) -> Holding:
        symbol = normalize_symbol(symbol)
        shares = _require_shares(shares)
        price = _require_price(price)
        profile = self._clean_profile(profile)
        with self.locks.hold(f"symbol:{symbol}"), self.store.transaction() as cur:
            if storage.get_open_holding_by_symbol(cur, symbol) is not None:
                raise DuplicateHolding(f"open holding already exists for {symbol}")
            at = self.clock()
            holding = Holding(
                id=str(uuid.uuid4()),
                symbol=symbol,
                shares=shares,
                avg_cost=weighted_average_cost(0, 0.0, shares, price),
                current_price=price,
                created_at=at,
                updated_at=at,
                display_name=display_name,
                local_name=local_name,
                sector=sector,
                **profile,
            )
            try:
                storage.insert_holding(cur, holding)
            except sqlite3.IntegrityError as exc:
                raise DuplicateHolding(f"open holding already exists for {symbol}") from exc
            self._record(cur, holding, TransactionType.BUY, shares, price, notes, at)
            empty = replace(holding, shares=0, avg_cost=0.0)
            self._audit(cur, empty, holding, CostChangeType.BUY, price, shares, notes, at)
        log.info("holding_opened", holding_id=holding.id, symbol=symbol, shares=shares, price=price)
        return holding

    def buy_more(self, holding: Holding | str, shares: int, price: float, notes: str = "") -> Holding:
        shares = _require_shares(shares)
        price = _require_price(price)
        holding_id = _holding_id(holding)
        with self.locks.hold(holding_id), self.store.transaction() as cur:
            before = self._load_open(cur, holding_id)
            at = self.clock()
            after = replace(
                before,
                shares=before.shares + shares,
                avg_cost=weighted_average_cost(before.shares, before.avg_cost, shares, price),
                updated_at=at,
            )
            storage.update_holding_position(cur, after)
            self._record(cur, after, TransactionType.BUY, shares, price, notes, at)
            self._audit(cur, before, after, CostChangeType.BUY, price, shares, notes, at)
        log.info(
            "holding_bought",
            holding_id=holding_id,
            symbol=after.symbol,
            shares=shares,
            price=price,
            avg_cost=after.avg_cost,
        )
        return after

    def sell(self, holding: Holding | str, shares: int, price: float, notes: str = "") -> SaleResult:
        shares = _require_shares(shares)
        price = _require_price(price)
        holding_id = _holding_id(holding)
        with self.locks.hold(holding_id), self.store.transaction() as cur:
            before = self._load_open(cur, holding_id)
            at = self.clock()
            # selling at least the whole position closes it; the excess is not an error
            sold = min(shares, before.shares)
            closed = sold >= before.shares
            after = replace(
                before,
                shares=before.shares - sold,
                updated_at=at,
                status=HoldingStatus.CLOSED if closed else HoldingStatus.OPEN,
                closed_at=at if closed else None,
            )
            gain = RealizedGain(
                id=str(uuid.uuid4()),
                holding_id=before.id,
                symbol=before.symbol,
                shares_sold=sold,
                sell_price=price,
                avg_cost=before.avg_cost,
                profit_loss=(price - before.avg_cost) * sold,
                profit_loss_pct=pct(price - before.avg_cost, before.avg_cost),
                closed_position=closed,
                sold_at=at,
            )
            if not math.isfinite(gain.profit_loss):
                raise ComputationError("non-finite realized gain")
            storage.insert_realized_gain(cur, gain)
            if closed and self.close_policy == "purge":
                counts = storage.delete_holding_cascade(cur, holding_id)
                log.info("holding_purged", holding_id=holding_id, symbol=before.symbol, **counts)
            else:
                storage.update_holding_position(cur, after)
                self._record(cur, after, TransactionType.SELL, sold, price, notes, at)
                self._audit(cur, before, after, CostChangeType.SELL, price, sold, notes, at)
        log.info(
            "holding_sold",
            holding_id=holding_id,
            symbol=before.symbol,
            shares=sold,
            requested=shares,
            price=price,
            closed=closed,
            realized=gain.profit_loss,
        )
        return SaleResult(holding=after, realized_gain=gain, closed=closed)

    def adjust_cost(self, holding: Holding | str, new_avg_cost: float, notes: str = "Manual adjustment") -> Holding:
        new_avg_cost = _require_price(new_avg_cost, allow_zero=True, name="new_avg_cost")
        holding_id = _holding_id(holding)
        with self.locks.hold(holding_id), self.store.transaction() as cur:
            before = self._load_open(cur, holding_id)
            at = self.clock()
            after = replace(before, avg_cost=new_avg_cost, updated_at=at)
            storage.update_holding_position(cur, after)
            self._audit(cur, before, after, CostChangeType.ADJUSTMENT, new_avg_cost, 0, notes, at)
        log.info(
            "holding_cost_adjusted",
            holding_id=holding_id,
            previous_avg_cost=before.avg_cost,
            new_avg_cost=new_avg_cost,
        )
        return after

    def update_price(self, symbol: str, price: float) -> int:
        symbol = normalize_symbol(symbol)
        price = _require_price(price, allow_zero=True)
        # same key as open; lookup and write share one transaction
        with self.locks.hold(f"symbol:{symbol}"), self.store.transaction() as cur:
            holding = storage.get_open_holding_by_symbol(cur, symbol)
            if holding is None:
                log.debug("price_update_no_holding", symbol=symbol)
                return 0
            updated = storage.update_current_price(cur, holding.id, price, self.clock())
        log.debug("price_updated", symbol=symbol, holding_id=holding.id, price=price, updated=updated)
        return updated

    def _clean_profile(self, fields: dict) -> dict:
        unknown = set(fields) - _PROFILE_FIELDS
        if unknown:
            raise ValueError(f"unknown holding fields: {sorted(unknown)}")
        clean = {}
        for name, value in fields.items():
            if name in ("display_name", "local_name", "sector", "notes"):
                clean[name] = "" if value is None else str(value)
                continue
            if name == "role":
                try:
                    clean[name] = HoldingRole.CORE if value is None else HoldingRole(str(value).strip().upper())
                except ValueError:
                    roles = "|".join(r.value for r in HoldingRole)
                    raise InvalidQuantity(f"role must be one of {roles}, got {value!r}") from None
                continue
            if value is None:
                clean[name] = None
                continue
            if not is_finite_number(value):
                raise InvalidQuantity(f"{name} must be a finite number, got {value!r}")
            if name == "target_percentage" and not 0 <= value <= 100:
                raise InvalidQuantity("target_percentage must be within 0..100")
            if name == "fair_value" and value <= 0:
                raise InvalidQuantity("fair_value must be positive")
            clean[name] = float(value)
        return clean

    def update_profile(self, holding: Holding | str, **fields) -> Holding:
        clean = self._clean_profile(fields)
        holding_id = _holding_id(holding)
        with self.locks.hold(holding_id), self.store.transaction() as cur:
            self._load_open(cur, holding_id)
            storage.update_holding_profile(cur, holding_id, clean, self.clock())
            after = storage.get_holding(cur, holding_id)
        log.info("holding_profile_updated", holding_id=holding_id, fields=sorted(clean))
        return after

    def add_dividend(
        self,
        holding: Holding | str,
        amount_per_share: float,
        payment_date: datetime | date,
        shares: int | None = None,
        ex_dividend_date: date | None = None,
        notes: str = "",
    ) -> Dividend:
        amount_per_share = _require_price(amount_per_share, name="amount_per_share")
        if shares is not None:
            shares = _require_shares(shares)
        holding_id = _holding_id(holding)
        with self.locks.hold(holding_id), self.store.transaction() as cur:
            current = self._load_open(cur, holding_id)
            count = current.shares if shares is None else shares
            total = amount_per_share * count
            if not math.isfinite(total):
                raise ComputationError("non-finite dividend total")
            at = self.clock()
            dividend = Dividend(
                id=str(uuid.uuid4()),
                holding_id=holding_id,
                symbol=current.symbol,
                amount_per_share=amount_per_share,
                shares=count,
                total_amount=total,
                payment_date=as_utc_datetime(payment_date),
                created_at=at,
                ex_dividend_date=ex_dividend_date,
                notes=notes,
            )
            storage.insert_dividend(cur, dividend)
            self._record(
                cur, current, TransactionType.DIVIDEND, count, amount_per_share, notes,
                dividend.payment_date, total=total,
            )
        log.info("dividend_recorded", holding_id=holding_id, symbol=current.symbol, total=total)
        return dividend

    def remove_holding(self, holding: Holding | str) -> dict:
        holding_id = _holding_id(holding)
        with self.locks.hold(holding_id), self.store.transaction() as cur:
            if storage.get_holding(cur, holding_id) is None:
                raise HoldingNotFound(holding_id)
            counts = storage.delete_holding_cascade(cur, holding_id)
        log.info("holding_removed", holding_id=holding_id, **counts)
        return counts

    # --------------------------------------------------------------- reads

    def get_holding(self, holding_id: str) -> Holding | None:
        with self.store.read() as cur:
            return storage.get_holding(cur, holding_id)

    def get_holding_by_symbol(self, symbol: str) -> Holding | None:
        with self.store.read() as cur:
            return storage.get_open_holding_by_symbol(cur, normalize_symbol(symbol))

    def holdings(self) -> list[Holding]:
        with self.store.read() as cur:
            return storage.list_holdings(cur, HoldingStatus.OPEN)

    def closed_holdings(self) -> list[Holding]:
        with self.store.read() as cur:
            return storage.list_holdings(cur, HoldingStatus.CLOSED)

    def transactions(self, holding: Holding | str | None = None, order: str = "desc") -> list[Transaction]:
        holding_id = _holding_id(holding) if holding is not None else None
        with self.store.read() as cur:
            return storage.list_transactions(cur, holding_id, order)

    def cost_history(self, holding: Holding | str, order: str = "desc") -> list[CostHistory]:
        with self.store.read() as cur:
            return storage.list_cost_history(cur, _holding_id(holding), order)

    def recent_cost_history(self, limit: int = 50) -> list[CostHistory]:
        with self.store.read() as cur:
            return storage.recent_cost_history(cur, limit)

    def dividends(self, holding: Holding | str | None = None) -> list[Dividend]:
        holding_id = _holding_id(holding) if holding is not None else None
        with self.store.read() as cur:
            return storage.list_dividends(cur, holding_id)

    def realized_gains(self, symbol: str | None = None) -> list[RealizedGain]:
        with self.store.read() as cur:
            return storage.list_realized_gains(cur, normalize_symbol(symbol) if symbol else None)

    def replay(self, holding: Holding | str) -> tuple[int, float]:
        """Fold the cost history from (0, 0.0) back into (shares, avg_cost)."""
        shares, avg_cost = 0, 0.0
        for entry in self.cost_history(holding, order="asc"):
            if entry.change_type == CostChangeType.BUY:
                avg_cost = weighted_average_cost(shares, avg_cost, entry.transaction_shares, entry.transaction_price)
                shares += entry.transaction_shares
            elif entry.change_type == CostChangeType.SELL:
                shares -= entry.transaction_shares
            else:
                avg_cost = entry.new_avg_cost
        return shares, avg_cost

    def verify(self, holding: Holding | str) -> bool:
        current = self.get_holding(_holding_id(holding))
        if current is None:
            return False
        ok = self.replay(current) == (current.shares, current.avg_cost)
        if not ok:
            log.warning("cost_history_mismatch", holding_id=current.id, symbol=current.symbol)
        return ok
