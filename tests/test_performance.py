import unittest
from datetime import date, datetime, timedelta, timezone

from folio.analytics import performance, snapshots
from folio.db import Store
from folio.ledger.ledger import Ledger
from folio.models import TimePeriod


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


class StepClock:
    def __init__(self, start=utc(2025, 1, 5, 9)):
        self.now = start

    def __call__(self):
        current = self.now
        self.now += timedelta(seconds=1)
        return current


class PortfolioTestCase(unittest.TestCase):
    def setUp(self):
        self.store = Store.open(":memory:")
        self.ledger = Ledger(self.store, clock=StepClock())
        self.comi = self.ledger.open("COMI", 100, 10.0, sector="Banks")
        self.etel = self.ledger.open("ETEL", 50, 20.0, sector="Telecom")
        self.ledger.update_price("COMI", 12.0)
        self.ledger.update_price("ETEL", 18.0)

    def tearDown(self):
        self.store.close()


class SnapshotTests(PortfolioTestCase):
    def test_snapshot_totals(self):
        self.ledger.add_dividend(self.comi, 0.5, date(2025, 1, 20))
        self.ledger.add_dividend(self.etel, 1.0, date(2025, 3, 1))
        snap = snapshots.take_snapshot(self.store, utc(2025, 2, 1))
        self.assertEqual(snap.total_value, 2100.0)
        self.assertEqual(snap.total_cost, 2000.0)
        self.assertEqual(snap.profit_loss, 100.0)
        self.assertAlmostEqual(snap.profit_loss_pct, 5.0)
        # only dividends paid by the snapshot time
        self.assertEqual(snap.total_dividends, 50.0)
        self.assertEqual(snap.holdings_count, 2)
        self.assertEqual(snapshots.latest_snapshot(self.store).id, snap.id)

    def test_no_snapshot_without_open_holdings(self):
        self.ledger.sell(self.comi, 100, 12.0)
        self.ledger.sell(self.etel, 50, 18.0)
        self.assertIsNone(snapshots.take_snapshot(self.store, utc(2025, 2, 1)))
        self.assertEqual(snapshots.snapshots(self.store), [])

    def test_listing_order(self):
        first = snapshots.take_snapshot(self.store, utc(2025, 2, 1))
        second = snapshots.take_snapshot(self.store, utc(2025, 2, 2))
        self.assertEqual([s.id for s in snapshots.snapshots(self.store)], [second.id, first.id])
        since = snapshots.snapshots(self.store, since=utc(2025, 1, 1))
        self.assertEqual([s.id for s in since], [first.id, second.id])
        self.assertEqual(snapshots.first_snapshot_since(self.store, utc(2025, 2, 1, 12)).id, second.id)


class PeriodPerformanceTests(PortfolioTestCase):
    def test_uses_first_snapshot_inside_the_period(self):
        early = snapshots.take_snapshot(self.store, utc(2025, 1, 10))
        chosen = snapshots.take_snapshot(self.store, utc(2025, 2, 1))
        self.ledger.update_price("COMI", 14.0)
        snapshots.take_snapshot(self.store, utc(2025, 2, 5))
        self.ledger.update_price("COMI", 13.0)
        self.ledger.add_dividend(self.comi, 0.5, date(2025, 2, 10))

        perf = performance.performance_for_period(self.store, TimePeriod.MONTH, now=utc(2025, 2, 20))
        self.assertNotEqual(perf.baseline_snapshot_id, early.id)
        self.assertEqual(perf.baseline_snapshot_id, chosen.id)
        self.assertEqual(perf.baseline_source, performance.BASELINE_SNAPSHOT)
        self.assertEqual(perf.period_days, 30)
        self.assertEqual(perf.start_value, 2100.0)
        self.assertEqual(perf.end_value, 2200.0)
        self.assertEqual(perf.value_change, 100.0)
        self.assertEqual(perf.dividends_received, 50.0)
        self.assertEqual(perf.total_return, 150.0)
        self.assertAlmostEqual(perf.total_return_pct, 150.0 / 2100.0 * 100)

    def test_falls_back_to_cost_basis(self):
        snapshots.take_snapshot(self.store, utc(2025, 1, 10))
        self.ledger.add_dividend(self.comi, 0.5, date(2025, 2, 10))
        perf = performance.performance_for_period(self.store, 7, now=utc(2025, 2, 20))
        self.assertEqual(perf.baseline_source, performance.BASELINE_COST)
        self.assertIsNone(perf.baseline_snapshot_id)
        self.assertEqual(perf.start_value, 2000.0)
        self.assertEqual(perf.value_change, 100.0)
        self.assertAlmostEqual(perf.value_change_pct, 5.0)
        self.assertEqual(perf.dividends_received, 0.0)

    def test_empty_portfolio_reports_zero_percentages(self):
        self.ledger.sell(self.comi, 100, 12.0)
        self.ledger.sell(self.etel, 50, 18.0)
        perf = performance.performance_for_period(self.store, TimePeriod.YEAR, now=utc(2025, 2, 20))
        self.assertEqual(perf.start_value, 0.0)
        self.assertEqual(perf.value_change_pct, 0.0)
        self.assertEqual(perf.total_return_pct, 0.0)

    def test_rejects_bad_period(self):
        for period in (0, -3, 2.5, True):
            with self.subTest(period=period):
                with self.assertRaises(ValueError):
                    performance.performance_for_period(self.store, period)


class BreakdownAndSummaryTests(PortfolioTestCase):
    def test_breakdown_sorted_by_total_return(self):
        self.ledger.add_dividend(self.etel, 10.0, date(2025, 2, 1))
        rows = performance.performance_breakdown(self.store)
        self.assertEqual([r.symbol for r in rows], ["ETEL", "COMI"])
        etel = rows[0]
        self.assertEqual(etel.price_gain, -100.0)
        self.assertEqual(etel.dividend_gain, 500.0)
        self.assertEqual(etel.total_return, 400.0)
        self.assertAlmostEqual(etel.dividend_yield_pct, 50.0)
        self.assertAlmostEqual(rows[1].total_return_pct, 20.0)

    def test_summary(self):
        summary = performance.portfolio_summary(self.store)
        self.assertEqual(summary["total_value"], 2100.0)
        self.assertEqual(summary["holdings_count"], 2)
        self.assertEqual(summary["profitable_count"], 1)
        self.assertEqual(summary["losing_count"], 1)
        self.assertEqual(summary["top_gainer"], "COMI")
        self.assertEqual(summary["top_loser"], "ETEL")
        self.assertEqual(list(summary["sector_allocation"]), ["Banks", "Telecom"])
        self.assertAlmostEqual(summary["sector_allocation"]["Banks"]["pct"], 1200.0 / 2100.0 * 100)

    def test_allocation_drift_bands(self):
        self.ledger.update_profile(self.comi, target_percentage=40)
        self.ledger.update_profile(self.etel, target_percentage=43)
        rows = performance.allocation_drift(self.store, tolerance=0.5)
        self.assertEqual([r["symbol"] for r in rows], ["COMI", "ETEL"])
        comi, etel = rows
        self.assertEqual(comi["band"], "ABOVE")
        self.assertLess(comi["amount_to_target"], 0)
        # 900 / 2100 is 42.86%, inside the tolerance of 43%
        self.assertEqual(etel["band"], "AT")

    def test_allocation_drift_skips_untargeted(self):
        self.ledger.update_profile(self.etel, target_percentage=60)
        rows = performance.allocation_drift(self.store)
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]["band"], "BELOW")
        self.assertAlmostEqual(rows[0]["amount_to_target"], 0.6 * 2100 - 900)


class GroupingTests(PortfolioTestCase):
    def test_role_allocation(self):
        self.ledger.update_profile(self.etel, role="income")
        roles = performance.portfolio_summary(self.store)["role_allocation"]
        self.assertEqual(list(roles), ["CORE", "INCOME"])
        self.assertEqual(roles["INCOME"]["value"], 900.0)
        self.assertAlmostEqual(roles["CORE"]["pct"], 1200.0 / 2100.0 * 100)

    def test_sector_performance(self):
        self.ledger.open("SWDY", 10, 30.0, sector="Banks")
        rows = performance.sector_performance(self.store)
        self.assertEqual([r.sector for r in rows], ["Banks", "Telecom"])
        banks, telecom = rows
        self.assertEqual(banks.holdings_count, 2)
        self.assertEqual(banks.total_value, 1500.0)
        self.assertEqual(banks.total_cost, 1300.0)
        self.assertEqual(banks.profit_loss, 200.0)
        self.assertAlmostEqual(banks.profit_loss_pct, 200.0 / 1300.0 * 100)
        self.assertAlmostEqual(banks.weight, 1500.0 / 2400.0 * 100)
        self.assertEqual(telecom.profit_loss, -100.0)
        self.assertAlmostEqual(banks.weight + telecom.weight, 100.0)

    def test_blank_sector_is_other(self):
        self.ledger.open("SWDY", 10, 30.0)
        self.assertIn("Other", [r.sector for r in performance.sector_performance(self.store)])
        self.assertIn("Other", performance.portfolio_summary(self.store)["sector_allocation"])

    def test_stock_allocation(self):
        rows = performance.stock_allocation(self.store)
        self.assertEqual([r["symbol"] for r in rows], ["COMI", "ETEL"])
        self.assertEqual(rows[0]["value"], 1200.0)
        self.assertAlmostEqual(rows[1]["pct"], 900.0 / 2100.0 * 100)

    def test_groupings_on_empty_portfolio(self):
        self.ledger.sell(self.comi, 100, 12.0)
        self.ledger.sell(self.etel, 50, 18.0)
        self.assertEqual(performance.sector_performance(self.store), [])
        self.assertEqual(performance.stock_allocation(self.store), [])


if __name__ == "__main__":
    unittest.main()
