"""Interest schedule for fixed-income certificates.

Everything here is a pure function of a ``Certificate`` and a queried
(year, month) or as-of date, so results are reproducible and safe to call
from any thread.
"""
from __future__ import annotations

import calendar
from datetime import date

from dateutil.relativedelta import relativedelta

from ..config import settings
from ..models import Certificate, CertificateStatus, InterestFrequency
from ..utils import month_iter, to_local_date, utc_now

DAYS_PER_YEAR = 365


def today() -> date:
    return to_local_date(utc_now(), settings.local_tz, settings.daily_cutover)


def _check_month(month: int):
    if not 1 <= month <= 12:
        raise ValueError(f"month must be within 1..12, got {month}")


def maturity_date(cert: Certificate) -> date:
    # relativedelta clamps Feb 29 to Feb 28 in non-leap years
    return cert.purchase_date + relativedelta(years=cert.duration_years)


def monthly_interest(cert: Certificate) -> float:
    return cert.principal * cert.annual_rate / 100 / 12


def total_interest_at_maturity(cert: Certificate) -> float:
    return cert.principal * (cert.annual_rate / 100) * cert.duration_years


def payment_day(cert: Certificate) -> int:
    return cert.purchase_date.day


def monthly_income(cert: Certificate, year: int, month: int) -> float:
    """Interest paid by ``cert`` in the given calendar month (0.0 when nothing is due)."""
    _check_month(month)
    if cert.status != CertificateStatus.ACTIVE:
        return 0.0
    start = (cert.purchase_date.year, cert.purchase_date.month)
    end_date = maturity_date(cert)
    end = (end_date.year, end_date.month)
    if (year, month) < start or (year, month) > end:
        return 0.0

    months_since = (year - start[0]) * 12 + (month - start[1])
    if cert.frequency == InterestFrequency.MONTHLY:
        return monthly_interest(cert)
    if cert.frequency == InterestFrequency.QUARTERLY:
        return monthly_interest(cert) * 3 if months_since % 3 == 0 else 0.0
    if cert.frequency == InterestFrequency.ANNUALLY:
        return monthly_interest(cert) * 12 if month == cert.purchase_date.month else 0.0
    if cert.frequency == InterestFrequency.AT_MATURITY:
        return total_interest_at_maturity(cert) if (year, month) == end else 0.0
    raise ValueError(f"unknown interest frequency: {cert.frequency}")


def due_date(cert: Certificate, year: int, month: int) -> date | None:
    if monthly_income(cert, year, month) <= 0:
        return None
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(payment_day(cert), last_day))


def days_since_purchase(cert: Certificate, as_of: date | None = None) -> int:
    as_of = as_of or today()
    return max(0, (as_of - cert.purchase_date).days)


def accrued_interest(cert: Certificate, as_of: date | None = None) -> float:
    if cert.status != CertificateStatus.ACTIVE:
        return 0.0
    years = days_since_purchase(cert, as_of) / DAYS_PER_YEAR
    return cert.principal * (cert.annual_rate / 100) * years


def current_value(cert: Certificate, as_of: date | None = None) -> float | None:
    if cert.status != CertificateStatus.ACTIVE:
        return None
    return cert.principal + accrued_interest(cert, as_of)


def days_until_maturity(cert: Certificate, as_of: date | None = None) -> int:
    as_of = as_of or today()
    return max(0, (maturity_date(cert) - as_of).days)


def is_matured(cert: Certificate, as_of: date | None = None) -> bool:
    as_of = as_of or today()
    return as_of >= maturity_date(cert)


def payment_schedule(cert: Certificate) -> list[tuple[date, float]]:
    """Every (due date, amount) the certificate pays between purchase and maturity."""
    end = maturity_date(cert)
    out = []
    for year, month in month_iter((cert.purchase_date.year, cert.purchase_date.month), (end.year, end.month)):
        when = due_date(cert, year, month)
        if when is not None:
            out.append((when, monthly_income(cert, year, month)))
    return out
