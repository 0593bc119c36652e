from __future__ import annotations

import uuid
from datetime import datetime

import structlog

from ..config import settings
from ..db import Store
from ..ledger import storage
from ..models import HoldingStatus, PortfolioSnapshot
from ..utils import pct, utc_now

log = structlog.get_logger()


def take_snapshot(store: Store, now: datetime | None = None) -> PortfolioSnapshot | None:
    """Freeze current portfolio totals into an immutable snapshot.

    Nothing is written when there are no open holdings. ``total_dividends`` is
    cumulative over every dividend paid on or before ``now``.
    """
    now = now or utc_now()
    with store.transaction() as cur:
        holdings = storage.list_holdings(cur, HoldingStatus.OPEN)
        if not holdings:
            log.info("snapshot_skipped", reason="no_open_holdings")
            return None
        total_value = sum(h.market_value for h in holdings)
        total_cost = sum(h.total_cost for h in holdings)
        snap = PortfolioSnapshot(
            id=str(uuid.uuid4()),
            total_value=total_value,
            total_cost=total_cost,
            profit_loss=total_value - total_cost,
            profit_loss_pct=pct(total_value - total_cost, total_cost),
            total_dividends=storage.dividends_total(cur, until=now),
            holdings_count=len(holdings),
            timestamp=now,
        )
        storage.insert_snapshot(cur, snap)
    log.info(
        "snapshot_taken",
        snapshot_id=snap.id,
        total_value=snap.total_value,
        holdings=snap.holdings_count,
    )
    return snap


def snapshots(store: Store, since: datetime | None = None, limit: int | None = None) -> list[PortfolioSnapshot]:
    """Newest first when ``since`` is None, otherwise ascending from ``since``."""
    with store.read() as cur:
        if since is None:
            return storage.recent_snapshots(cur, limit or settings.snapshot_list_limit)
        rows = storage.list_snapshots_since(cur, since)
    return rows[:limit] if limit else rows


def latest_snapshot(store: Store) -> PortfolioSnapshot | None:
    with store.read() as cur:
        rows = storage.recent_snapshots(cur, 1)
    return rows[0] if rows else None


def first_snapshot_since(store: Store, start: datetime) -> PortfolioSnapshot | None:
    with store.read() as cur:
        return storage.first_snapshot_since(cur, start)
