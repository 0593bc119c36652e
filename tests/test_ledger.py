import math
import threading
import unittest
from datetime import date, datetime, timedelta, timezone

from folio.db import Store, get_conn, migrate
from folio.errors import ComputationError, DuplicateHolding, HoldingNotFound, InvalidQuantity
from folio.ledger.ledger import Ledger, weighted_average_cost
from folio.models import CostChangeType, HoldingRole, HoldingStatus, TransactionType


class StepClock:
    def __init__(self, start=datetime(2025, 1, 5, 9, 0, tzinfo=timezone.utc), step_seconds=1):
        self.now = start
        self.step = timedelta(seconds=step_seconds)

    def __call__(self):
        current = self.now
        self.now += self.step
        return current


class LedgerTestCase(unittest.TestCase):
    close_policy = "retain"

    def setUp(self):
        self.store = Store.open(":memory:")
        self.ledger = Ledger(self.store, close_policy=self.close_policy, clock=StepClock())

    def tearDown(self):
        self.store.close()


class OpenAndBuyTests(LedgerTestCase):
    def test_open_sets_avg_cost_and_writes_audit(self):
        h = self.ledger.open(" comi ", 100, 10.0, display_name="CIB")
        self.assertEqual(h.symbol, "COMI")
        self.assertEqual(h.shares, 100)
        self.assertEqual(h.avg_cost, 10.0)
        txs = self.ledger.transactions(h)
        self.assertEqual(len(txs), 1)
        self.assertEqual(txs[0].type, TransactionType.BUY)
        self.assertEqual(txs[0].total, 1000.0)
        history = self.ledger.cost_history(h)
        self.assertEqual(len(history), 1)
        self.assertEqual(history[0].previous_shares, 0)
        self.assertEqual(history[0].previous_avg_cost, 0.0)
        self.assertEqual(history[0].new_avg_cost, 10.0)

    def test_buy_more_weighted_average(self):
        h = self.ledger.open("COMI", 100, 10.0)
        h = self.ledger.buy_more(h, 50, 16.0)
        self.assertEqual(h.shares, 150)
        self.assertAlmostEqual(h.avg_cost, 12.0)
        self.assertEqual(self.ledger.get_holding(h.id).avg_cost, h.avg_cost)

    def test_buy_order_matters_only_through_running_totals(self):
        h = self.ledger.open("ETEL", 10, 20.0)
        h = self.ledger.buy_more(h, 30, 10.0)
        h = self.ledger.buy_more(h, 60, 15.0)
        expected = (10 * 20.0 + 30 * 10.0 + 60 * 15.0) / 100
        self.assertAlmostEqual(h.avg_cost, expected)

    def test_invalid_quantities_rejected_before_storage(self):
        for shares, price in ((0, 10.0), (-5, 10.0), (10, 0.0), (10, -1.0), (10, math.nan), (10, math.inf), (2.5, 10.0), (True, 10.0)):
            with self.subTest(shares=shares, price=price):
                with self.assertRaises(InvalidQuantity):
                    self.ledger.open("COMI", shares, price)
        self.assertEqual(self.ledger.holdings(), [])
        self.assertEqual(self.ledger.transactions(), [])

    def test_duplicate_open_symbol(self):
        self.ledger.open("COMI", 10, 10.0)
        with self.assertRaises(DuplicateHolding):
            self.ledger.open("comi", 5, 11.0)

    def test_buy_on_missing_holding(self):
        with self.assertRaises(HoldingNotFound):
            self.ledger.buy_more("nope", 10, 10.0)

    def test_non_finite_average_is_computation_error(self):
        with self.assertRaises(ComputationError):
            weighted_average_cost(1, 1e308, 1, 1e308)
        h = self.ledger.open("COMI", 1, 1e308)
        with self.assertRaises(ComputationError):
            self.ledger.buy_more(h, 1, 1e308)
        self.assertEqual(self.ledger.get_holding(h.id).shares, 1)
        self.assertEqual(len(self.ledger.cost_history(h)), 1)


class SellTests(LedgerTestCase):
    def test_partial_sell_keeps_avg_cost(self):
        h = self.ledger.open("COMI", 100, 10.0)
        h = self.ledger.buy_more(h, 50, 16.0)
        result = self.ledger.sell(h, 30, 15.0)
        self.assertFalse(result.closed)
        self.assertEqual(result.holding.shares, 120)
        self.assertAlmostEqual(result.holding.avg_cost, 12.0)
        self.assertAlmostEqual(result.realized_gain.profit_loss, 90.0)
        self.assertAlmostEqual(result.realized_gain.profit_loss_pct, 25.0)
        sells = [e for e in self.ledger.cost_history(h) if e.change_type == CostChangeType.SELL]
        self.assertEqual(len(sells), 1)
        self.assertEqual(sells[0].previous_avg_cost, sells[0].new_avg_cost)
        self.assertEqual(sells[0].new_shares, 120)

    def test_full_sell_closes_and_retains_history(self):
        h = self.ledger.open("COMI", 150, 10.0)
        self.ledger.add_dividend(h, 0.5, date(2025, 3, 1))
        result = self.ledger.sell(h, 150, 12.0)
        self.assertTrue(result.closed)
        self.assertEqual(result.holding.status, HoldingStatus.CLOSED)
        self.assertEqual(result.holding.shares, 0)
        self.assertEqual(self.ledger.holdings(), [])
        closed = self.ledger.closed_holdings()
        self.assertEqual([c.id for c in closed], [h.id])
        self.assertIsNotNone(closed[0].closed_at)
        self.assertEqual(len(self.ledger.transactions(h)), 3)
        self.assertEqual(len(self.ledger.dividends(h)), 1)
        gains = self.ledger.realized_gains("COMI")
        self.assertEqual(len(gains), 1)
        self.assertTrue(gains[0].closed_position)
        self.assertAlmostEqual(gains[0].profit_loss, 300.0)
        with self.assertRaises(HoldingNotFound):
            self.ledger.buy_more(h, 1, 10.0)

    def test_oversell_is_full_close(self):
        h = self.ledger.open("COMI", 10, 10.0)
        result = self.ledger.sell(h, 25, 9.0)
        self.assertTrue(result.closed)
        self.assertEqual(result.realized_gain.shares_sold, 10)
        self.assertAlmostEqual(result.realized_gain.profit_loss, -10.0)

    def test_reopen_after_close_gets_new_identity(self):
        first = self.ledger.open("COMI", 10, 10.0)
        self.ledger.sell(first, 10, 11.0)
        second = self.ledger.open("COMI", 5, 12.0)
        self.assertNotEqual(first.id, second.id)
        self.assertEqual(self.ledger.get_holding_by_symbol("COMI").id, second.id)


class PurgePolicyTests(LedgerTestCase):
    close_policy = "purge"

    def test_full_sell_deletes_holding_and_history(self):
        h = self.ledger.open("COMI", 150, 10.0)
        self.ledger.add_dividend(h, 1.0, date(2025, 2, 1))
        result = self.ledger.sell(h, 150, 11.0)
        self.assertTrue(result.closed)
        self.assertIsNone(self.ledger.get_holding(h.id))
        self.assertEqual(self.ledger.transactions(h), [])
        self.assertEqual(self.ledger.cost_history(h), [])
        self.assertEqual(self.ledger.dividends(h), [])
        self.assertEqual(len(self.ledger.realized_gains()), 1)


class AdjustAndProfileTests(LedgerTestCase):
    def test_adjust_cost_writes_adjustment_entry(self):
        h = self.ledger.open("COMI", 100, 10.0)
        h = self.ledger.adjust_cost(h, 8.5)
        self.assertEqual(h.avg_cost, 8.5)
        self.assertEqual(h.shares, 100)
        latest = self.ledger.cost_history(h)[0]
        self.assertEqual(latest.change_type, CostChangeType.ADJUSTMENT)
        self.assertEqual(latest.transaction_price, 8.5)
        self.assertEqual(latest.transaction_shares, 0)
        self.assertEqual(len(self.ledger.transactions(h)), 1)

    def test_adjust_cost_rejects_negative(self):
        h = self.ledger.open("COMI", 100, 10.0)
        with self.assertRaises(InvalidQuantity):
            self.ledger.adjust_cost(h, -1.0)

    def test_update_price_only_touches_open_holding(self):
        h = self.ledger.open("COMI", 100, 10.0)
        self.assertEqual(self.ledger.update_price("comi", 12.5), 1)
        self.assertEqual(self.ledger.get_holding(h.id).current_price, 12.5)
        self.assertEqual(self.ledger.update_price("UNKNOWN", 1.0), 0)
        self.assertEqual(len(self.ledger.cost_history(h)), 1)

    def test_update_profile(self):
        h = self.ledger.open("COMI", 100, 10.0)
        h = self.ledger.update_profile(h, target_percentage=25, sector="Banks", eps=2.0)
        self.assertEqual(h.target_percentage, 25.0)
        self.assertEqual(h.sector, "Banks")
        with self.assertRaises(InvalidQuantity):
            self.ledger.update_profile(h, target_percentage=120)
        with self.assertRaises(ValueError):
            self.ledger.update_profile(h, shares=5)

    def test_role_defaults_to_core(self):
        h = self.ledger.open("COMI", 100, 10.0)
        self.assertEqual(h.role, HoldingRole.CORE)
        h = self.ledger.update_profile(h, role="growth")
        self.assertEqual(h.role, HoldingRole.GROWTH)
        self.assertEqual(self.ledger.get_holding(h.id).role, HoldingRole.GROWTH)
        income = self.ledger.open("ETEL", 10, 20.0, role="INCOME")
        self.assertEqual(self.ledger.get_holding(income.id).role, HoldingRole.INCOME)
        with self.assertRaises(ValueError):
            self.ledger.update_profile(h, role="hedge")

    def test_update_price_follows_reopened_symbol(self):
        first = self.ledger.open("COMI", 10, 10.0)
        self.ledger.sell(first, 10, 11.0)
        second = self.ledger.open("COMI", 5, 12.0)
        self.assertEqual(self.ledger.update_price("COMI", 13.0), 1)
        self.assertEqual(self.ledger.get_holding(second.id).current_price, 13.0)
        # the closed row keeps its last price
        self.assertEqual(self.ledger.get_holding(first.id).current_price, 10.0)

    def test_dividend_defaults_to_current_shares(self):
        h = self.ledger.open("COMI", 100, 10.0)
        d = self.ledger.add_dividend(h, 0.75, date(2025, 4, 1))
        self.assertEqual(d.shares, 100)
        self.assertAlmostEqual(d.total_amount, 75.0)
        self.assertEqual(self.ledger.get_holding(h.id).avg_cost, 10.0)
        div_tx = [t for t in self.ledger.transactions(h) if t.type == TransactionType.DIVIDEND]
        self.assertEqual(len(div_tx), 1)
        self.assertAlmostEqual(div_tx[0].total, 75.0)

    def test_remove_holding_cascades(self):
        h = self.ledger.open("COMI", 100, 10.0)
        counts = self.ledger.remove_holding(h)
        self.assertEqual(counts["holdings"], 1)
        self.assertEqual(counts["transactions"], 1)
        self.assertIsNone(self.ledger.get_holding(h.id))


class ReplayTests(LedgerTestCase):
    def test_replay_matches_after_mixed_operations(self):
        h = self.ledger.open("COMI", 100, 10.0)
        self.ledger.buy_more(h, 50, 16.0)
        self.ledger.sell(h, 30, 15.0)
        self.ledger.adjust_cost(h, 11.25)
        self.ledger.buy_more(h, 7, 13.37)
        self.ledger.sell(h, 3, 20.0)
        current = self.ledger.get_holding(h.id)
        self.assertEqual(self.ledger.replay(h), (current.shares, current.avg_cost))
        self.assertTrue(self.ledger.verify(h))

    def test_replay_order_is_stable_for_equal_timestamps(self):
        frozen = datetime(2025, 1, 1, tzinfo=timezone.utc)
        ledger = Ledger(self.store, clock=lambda: frozen)
        h = ledger.open("SWDY", 10, 5.0)
        ledger.buy_more(h, 10, 7.0)
        ledger.sell(h, 5, 8.0)
        ledger.buy_more(h, 5, 9.0)
        current = ledger.get_holding(h.id)
        self.assertEqual(ledger.replay(h), (current.shares, current.avg_cost))
        kinds = [e.change_type for e in ledger.cost_history(h, order="asc")]
        self.assertEqual(kinds, [CostChangeType.BUY, CostChangeType.BUY, CostChangeType.SELL, CostChangeType.BUY])


class ConcurrencyTests(LedgerTestCase):
    def test_concurrent_buys_on_one_holding_are_serialised(self):
        h = self.ledger.open("COMI", 10, 10.0)
        errors = []

        def worker():
            try:
                for _ in range(20):
                    self.ledger.buy_more(h.id, 1, 10.0)
            except Exception as exc:  # surfaced through the assertion below
                errors.append(exc)

        threads = [threading.Thread(target=worker) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.assertEqual(errors, [])
        current = self.ledger.get_holding(h.id)
        self.assertEqual(current.shares, 110)
        self.assertEqual(len(self.ledger.cost_history(h)), 101)
        self.assertTrue(self.ledger.verify(h))
        self.assertEqual(len(self.ledger.locks), 0)


class MigrationTests(unittest.TestCase):
    def test_role_column_added_to_existing_database(self):
        conn = get_conn(":memory:")
        conn.execute(
            """
            CREATE TABLE holdings (
              id TEXT PRIMARY KEY,
              symbol TEXT NOT NULL,
              display_name TEXT NOT NULL DEFAULT '',
              local_name TEXT NOT NULL DEFAULT '',
              sector TEXT NOT NULL DEFAULT '',
              notes TEXT NOT NULL DEFAULT '',
              shares INTEGER NOT NULL,
              avg_cost REAL NOT NULL,
              current_price REAL NOT NULL DEFAULT 0,
              status TEXT NOT NULL DEFAULT 'OPEN',
              created_at_utc TEXT NOT NULL,
              updated_at_utc TEXT NOT NULL
            )
            """
        )
        conn.execute(
            "INSERT INTO holdings(id, symbol, shares, avg_cost, current_price, created_at_utc, updated_at_utc) "
            "VALUES('h1', 'COMI', 100, 10.0, 11.0, '2024-06-01T00:00:00+00:00', '2024-06-01T00:00:00+00:00')"
        )
        migrate(conn)
        migrate(conn)
        cols = {row[1] for row in conn.execute("PRAGMA table_info(holdings)").fetchall()}
        self.assertIn("role", cols)
        store = Store(conn)
        try:
            holding = Ledger(store).get_holding_by_symbol("COMI")
            self.assertEqual(holding.role, HoldingRole.CORE)
            self.assertIsNone(holding.target_percentage)
        finally:
            store.close()


if __name__ == "__main__":
    unittest.main()
