#!/usr/bin/env python3
"""
Print certificate interest due per month, plus certificates maturing soon.

Usage:
    python scripts/certificate_calendar.py                   # next 12 months from today
    python scripts/certificate_calendar.py 2025-01 2025-12   # explicit month range
"""
from pathlib import Path
import os
import sys

# Ensure repo root is on sys.path and is the working directory.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
os.chdir(ROOT)

from dateutil.relativedelta import relativedelta

from folio.certificates import income, schedule
from folio.config import settings
from folio.db import Store
from folio.models import CertificateStatus


def _month(text: str) -> tuple[int, int]:
    year, month = text.split('-', 1)
    return int(year), int(month)


if __name__ == '__main__':
    today = schedule.today()
    if len(sys.argv) >= 3:
        start, end = _month(sys.argv[1]), _month(sys.argv[2])
    else:
        last = today + relativedelta(months=11)
        start, end = (today.year, today.month), (last.year, last.month)

    store = Store.open(settings.db_path)
    try:
        certs = income.list_certificates(store, CertificateStatus.ACTIVE)
    finally:
        store.close()

    grand_total = 0.0
    for month in income.certificate_income_range(certs, start, end):
        grand_total += month.total_income
        print(f'{month.year}-{month.month:02d}  {month.total_income:>14,.2f}')
        for d in month.certificates:
            label = d.certificate_number or d.certificate_id[:8]
            print(f'    {d.due_date.isoformat()}  {d.bank_name} #{label}  {d.amount:,.2f}')
    print(f'Total {grand_total:,.2f}')

    due = income.upcoming_maturities(certs, settings.maturity_window_days, settings.maturity_list_limit, today)
    if due:
        print(f'\nMaturing within {settings.maturity_window_days} days:')
        for c in due:
            print(f'    {schedule.maturity_date(c).isoformat()}  {c.bank_name}  {c.principal:,.2f}')
