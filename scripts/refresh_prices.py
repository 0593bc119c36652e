#!/usr/bin/env python3
"""
Refresh current prices for every open holding and take a portfolio snapshot.

Usage:
    python scripts/refresh_prices.py                      # quotes from Yahoo Finance
    python scripts/refresh_prices.py --price COMI=82.5    # fixed quote(s), no network
"""
from pathlib import Path
import os
import sys
import uuid

# Ensure repo root is on sys.path and is the working directory.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
os.chdir(ROOT)

from folio.config import settings
from folio.db import Store
from folio.ledger.ledger import Ledger
from folio.logging import setup_logging
from folio.pricing.feed import StaticFeed, YFinanceFeed
from folio.pricing.refresh import refresh_prices


def _static_quotes(pairs: list[str]) -> dict[str, float]:
    quotes = {}
    for pair in pairs:
        symbol, _, price = pair.partition('=')
        if not symbol or not price:
            raise SystemExit(f'bad --price value {pair!r}, expected SYMBOL=PRICE')
        quotes[symbol] = float(price)
    return quotes


if __name__ == '__main__':
    import argparse
    p = argparse.ArgumentParser(description="Refresh holding prices and snapshot the portfolio.")
    p.add_argument("--price", action="append", default=[], help="SYMBOL=PRICE fixed quote (repeatable)")
    args = p.parse_args()

    setup_logging()
    feed = StaticFeed(_static_quotes(args.price)) if args.price else YFinanceFeed()
    store = Store.open(settings.db_path)
    try:
        run_id = str(uuid.uuid4())
        print('Run', run_id)
        result = refresh_prices(Ledger(store), feed, run_id)
    finally:
        store.close()
    if result.skipped:
        print('Skipped: another refresh holds the lock.')
    else:
        print('Updated', result.updated, '| failed:', ', '.join(result.failed_symbols) or '-', '| snapshot:', result.snapshot_id)
    print('Done.')
