from __future__ import annotations

import json
import time
import uuid
from dataclasses import dataclass, field

import structlog

from ..analytics.snapshots import take_snapshot
from ..config import settings
from ..db import Store
from ..ledger.ledger import Ledger
from ..ledger.locking import acquire_lock, release_lock
from ..utils import is_finite_number, now_utc_iso
from .feed import PriceFeed

log = structlog.get_logger()

LOCK_NAME = "price_refresh"


@dataclass
class RefreshResult:
    run_id: str
    updated: int = 0
    failed_symbols: list[str] = field(default_factory=list)
    snapshot_id: str | None = None
    skipped: bool = False


def start_run(store: Store, run_id: str):
    with store.transaction() as cur:
        cur.execute(
            "INSERT OR REPLACE INTO refresh_runs(run_id, started_at_utc, status) VALUES(?,?,?)",
            (run_id, now_utc_iso(), "running"),
        )


def finish_run(store: Store, run_id: str, status: str, result: RefreshResult | None = None, err: str | None = None):
    with store.transaction() as cur:
        cur.execute(
            """
            UPDATE refresh_runs
            SET finished_at_utc=?, status=?, updated_count=?, failed_symbols=?, snapshot_id=?, error_message=?
            WHERE run_id=?
            """,
            (
                now_utc_iso(),
                status,
                result.updated if result else None,
                json.dumps(result.failed_symbols) if result else None,
                result.snapshot_id if result else None,
                err[:1000] if err else None,
                run_id,
            ),
        )


def get_run_status(store: Store, run_id: str) -> dict | None:
    with store.read() as cur:
        row = cur.execute(
            """
            SELECT run_id, started_at_utc, finished_at_utc, status, updated_count,
                   failed_symbols, snapshot_id, error_message
            FROM refresh_runs WHERE run_id=?
            """,
            (run_id,),
        ).fetchone()
    if not row:
        return None
    return {
        "run_id": row[0],
        "started_at_utc": row[1],
        "finished_at_utc": row[2],
        "status": row[3],
        "updated_count": row[4],
        "failed_symbols": json.loads(row[5]) if row[5] else [],
        "snapshot_id": row[6],
        "error_message": row[7],
    }


def refresh_prices(ledger: Ledger, feed: PriceFeed, run_id: str | None = None) -> RefreshResult:
    """Pull a quote for every open holding, then freeze the result as one snapshot.

    A symbol the feed cannot price keeps its last price and is reported in
    ``failed_symbols``; the snapshot is taken regardless. Only one refresh runs
    at a time across processes sharing the database.
    """
    store = ledger.store
    run_id = run_id or str(uuid.uuid4())
    result = RefreshResult(run_id=run_id)
    start_run(store, run_id)

    with store.transaction():
        locked = acquire_lock(store.conn, LOCK_NAME, run_id, settings.refresh_lock_ttl_seconds)
    if not locked:
        result.skipped = True
        finish_run(store, run_id, "skipped", result, "lock_held")
        log.info("refresh_skipped", run_id=run_id, reason="lock_held")
        return result

    started = time.monotonic()
    log.info("refresh_started", run_id=run_id)
    try:
        for holding in ledger.holdings():
            try:
                quote = feed.quote(holding.symbol)
            except Exception as e:
                log.warning("quote_failed", run_id=run_id, symbol=holding.symbol, err=str(e))
                result.failed_symbols.append(holding.symbol)
                continue
            if quote is None or not is_finite_number(quote.price) or quote.price < 0:
                log.info("quote_unusable", run_id=run_id, symbol=holding.symbol)
                result.failed_symbols.append(holding.symbol)
                continue
            result.updated += ledger.update_price(holding.symbol, quote.price)

        snap = take_snapshot(store, ledger.clock())
        result.snapshot_id = snap.id if snap else None
        finish_run(store, run_id, "succeeded", result)
        log.info(
            "refresh_done",
            run_id=run_id,
            updated=result.updated,
            failed=len(result.failed_symbols),
            snapshot_id=result.snapshot_id,
            elapsed_sec=round(time.monotonic() - started, 2),
        )
    except Exception as e:
        log.error("refresh_failed", run_id=run_id, err=str(e))
        finish_run(store, run_id, "failed", result, str(e))
        raise
    finally:
        with store.transaction():
            release_lock(store.conn, LOCK_NAME, run_id)
    return result
