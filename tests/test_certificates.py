import unittest
from datetime import date

from freezegun import freeze_time

from folio.certificates import income, schedule
from folio.db import Store
from folio.errors import CertificateNotFound, InvalidQuantity
from folio.models import Certificate, CertificateStatus, InterestFrequency

MONTHLY = 100000 * 0.20 / 12


def make_cert(frequency=InterestFrequency.MONTHLY, purchase=date(2024, 1, 15), years=3,
              principal=100000.0, rate=20.0, status=CertificateStatus.ACTIVE, cert_id="c1"):
    return Certificate(
        id=cert_id,
        bank_name="NBE",
        principal=principal,
        duration_years=years,
        annual_rate=rate,
        purchase_date=purchase,
        frequency=frequency,
        status=status,
    )


class ScheduleTests(unittest.TestCase):
    def test_monthly_income_between_purchase_and_maturity(self):
        cert = make_cert()
        self.assertAlmostEqual(schedule.monthly_interest(cert), 100000 * 0.20 / 12)
        self.assertEqual(schedule.maturity_date(cert), date(2027, 1, 15))
        self.assertAlmostEqual(schedule.monthly_income(cert, 2024, 1), MONTHLY)
        self.assertAlmostEqual(schedule.monthly_income(cert, 2026, 12), MONTHLY)
        # maturity month itself still pays
        self.assertAlmostEqual(schedule.monthly_income(cert, 2027, 1), MONTHLY)
        self.assertEqual(schedule.monthly_income(cert, 2023, 12), 0.0)
        self.assertEqual(schedule.monthly_income(cert, 2027, 2), 0.0)

    def test_at_maturity_pays_lump_sum_once(self):
        cert = make_cert(InterestFrequency.AT_MATURITY)
        paid = [(y, m, schedule.monthly_income(cert, y, m)) for y in range(2023, 2029) for m in range(1, 13)]
        nonzero = [(y, m, v) for y, m, v in paid if v > 0]
        self.assertEqual(len(nonzero), 1)
        self.assertEqual(nonzero[0][:2], (2027, 1))
        self.assertAlmostEqual(nonzero[0][2], 60000.0)

    def test_quarterly_pays_every_third_month_from_purchase(self):
        cert = make_cert(InterestFrequency.QUARTERLY, purchase=date(2024, 2, 10), years=1)
        months = [m for m in range(1, 13) if schedule.monthly_income(cert, 2024, m) > 0]
        self.assertEqual(months, [2, 5, 8, 11])
        self.assertAlmostEqual(schedule.monthly_income(cert, 2024, 5), 5000.0)
        self.assertAlmostEqual(schedule.monthly_income(cert, 2025, 2), 5000.0)
        self.assertEqual(schedule.monthly_income(cert, 2025, 5), 0.0)

    def test_annual_pays_in_purchase_month(self):
        cert = make_cert(InterestFrequency.ANNUALLY, purchase=date(2024, 6, 1), years=2)
        self.assertAlmostEqual(schedule.monthly_income(cert, 2025, 6), 20000.0)
        self.assertEqual(schedule.monthly_income(cert, 2025, 7), 0.0)

    def test_inactive_certificate_pays_nothing(self):
        cert = make_cert(status=CertificateStatus.WITHDRAWN)
        self.assertEqual(schedule.monthly_income(cert, 2024, 6), 0.0)
        self.assertEqual(schedule.accrued_interest(cert, date(2025, 1, 1)), 0.0)
        self.assertIsNone(schedule.current_value(cert, date(2025, 1, 1)))

    def test_invalid_month(self):
        with self.assertRaises(ValueError):
            schedule.monthly_income(make_cert(), 2024, 13)

    def test_due_date_clamps_to_month_end(self):
        cert = make_cert(purchase=date(2024, 1, 31), years=1)
        self.assertEqual(schedule.due_date(cert, 2024, 2), date(2024, 2, 29))
        self.assertEqual(schedule.due_date(cert, 2024, 4), date(2024, 4, 30))
        self.assertEqual(schedule.due_date(cert, 2024, 5), date(2024, 5, 31))
        self.assertIsNone(schedule.due_date(cert, 2023, 12))

    def test_leap_day_maturity(self):
        cert = make_cert(purchase=date(2024, 2, 29), years=1)
        self.assertEqual(schedule.maturity_date(cert), date(2025, 2, 28))

    def test_accrual_is_simple_interest_over_365_days(self):
        cert = make_cert()
        self.assertAlmostEqual(schedule.accrued_interest(cert, date(2025, 1, 14)), 20000.0)
        self.assertEqual(schedule.accrued_interest(cert, date(2023, 1, 1)), 0.0)
        previous = 0.0
        for offset in range(0, 400, 37):
            as_of = date.fromordinal(cert.purchase_date.toordinal() + offset)
            value = schedule.accrued_interest(cert, as_of)
            self.assertGreaterEqual(value, previous)
            previous = value
        self.assertAlmostEqual(schedule.current_value(cert, date(2025, 1, 14)), 120000.0)

    def test_days_until_maturity_and_matured(self):
        cert = make_cert(years=1)
        self.assertEqual(schedule.days_until_maturity(cert, date(2025, 1, 5)), 10)
        self.assertEqual(schedule.days_until_maturity(cert, date(2026, 1, 1)), 0)
        self.assertFalse(schedule.is_matured(cert, date(2025, 1, 14)))
        self.assertTrue(schedule.is_matured(cert, date(2025, 1, 15)))

    @freeze_time("2025-01-14 23:30:00")
    def test_today_is_local_calendar_date(self):
        # 01:30 in Cairo
        self.assertEqual(schedule.today(), date(2025, 1, 15))
        cert = make_cert(years=1)
        self.assertEqual(schedule.days_until_maturity(cert), 0)
        self.assertTrue(schedule.is_matured(cert))

    def test_payment_schedule_for_each_frequency(self):
        for freq in InterestFrequency:
            with self.subTest(frequency=freq):
                cert = make_cert(freq, purchase=date(2024, 3, 1), years=2)
                total = sum(amount for _, amount in schedule.payment_schedule(cert))
                self.assertGreater(total, 0)
        monthly = schedule.payment_schedule(make_cert(years=1))
        self.assertEqual(len(monthly), 13)
        self.assertEqual(monthly[0][0], date(2024, 1, 15))


class IncomeSummaryTests(unittest.TestCase):
    def test_monthly_summary_lists_paying_certificates(self):
        certs = [
            make_cert(cert_id="a"),
            make_cert(InterestFrequency.AT_MATURITY, cert_id="b"),
            make_cert(purchase=date(2024, 3, 5), principal=50000, cert_id="c"),
        ]
        summary = income.monthly_certificate_income(certs, 2024, 3)
        self.assertEqual([d.certificate_id for d in summary.certificates], ["c", "a"])
        self.assertAlmostEqual(summary.total_income, MONTHLY + MONTHLY / 2)
        self.assertEqual(summary.certificates[0].due_date, date(2024, 3, 5))

    def test_income_range_is_inclusive(self):
        months = income.certificate_income_range([make_cert()], (2024, 11), (2025, 2))
        self.assertEqual([(m.year, m.month) for m in months], [(2024, 11), (2024, 12), (2025, 1), (2025, 2)])

    def test_upcoming_maturities_sorted_and_limited(self):
        certs = [
            make_cert(purchase=date(2022, 5, 20), years=3, cert_id="late"),
            make_cert(purchase=date(2024, 5, 10), years=1, cert_id="early"),
            make_cert(purchase=date(2020, 5, 1), years=10, cert_id="far"),
            make_cert(purchase=date(2024, 5, 12), years=1, status=CertificateStatus.RENEWED, cert_id="renewed"),
        ]
        due = income.upcoming_maturities(certs, within_days=30, limit=10, as_of=date(2025, 5, 1))
        self.assertEqual([c.id for c in due], ["early", "late"])
        self.assertEqual(len(income.upcoming_maturities(certs, 30, 1, date(2025, 5, 1))), 1)

    def test_totals_only_count_active(self):
        certs = [make_cert(), make_cert(status=CertificateStatus.MATURED, cert_id="m")]
        totals = income.certificate_totals(certs, as_of=date(2024, 1, 15))
        self.assertEqual(totals["active_count"], 1)
        self.assertEqual(totals["total_principal"], 100000.0)
        self.assertAlmostEqual(totals["total_current_value"], 100000.0)


class CertificateStoreTests(unittest.TestCase):
    def setUp(self):
        self.store = Store.open(":memory:")

    def tearDown(self):
        self.store.close()

    def test_add_list_and_status(self):
        cert = income.add_certificate(self.store, "CIB", 50000, 3, 19.5, date(2024, 7, 1), "QUARTERLY", "235")
        self.assertEqual(income.get_certificate(self.store, cert.id).frequency, InterestFrequency.QUARTERLY)
        updated = income.set_certificate_status(self.store, cert.id, "MATURED")
        self.assertEqual(updated.status, CertificateStatus.MATURED)
        self.assertEqual(income.list_certificates(self.store, CertificateStatus.ACTIVE), [])
        income.delete_certificate(self.store, cert.id)
        with self.assertRaises(CertificateNotFound):
            income.get_certificate(self.store, cert.id)

    def test_rejects_bad_principal(self):
        with self.assertRaises(InvalidQuantity):
            income.add_certificate(self.store, "CIB", 0, 3, 19.5, date(2024, 7, 1), "MONTHLY")


if __name__ == "__main__":
    unittest.main()
