from __future__ import annotations

import uuid
from datetime import date, timedelta
from typing import Iterable

import structlog

from ..db import Store
from ..errors import CertificateNotFound, InvalidQuantity
from ..ledger import storage
from ..models import (
    Certificate,
    CertificateIncomeDetail,
    CertificateStatus,
    InterestFrequency,
    MonthlyCertificateIncome,
)
from ..utils import is_finite_number, month_iter, utc_now
from . import schedule

log = structlog.get_logger()


def add_certificate(
    store: Store,
    bank_name: str,
    principal: float,
    duration_years: int,
    annual_rate: float,
    purchase_date: date,
    frequency: InterestFrequency | str,
    certificate_number: str = "",
    notes: str = "",
) -> Certificate:
    if not bank_name or not bank_name.strip():
        raise InvalidQuantity("bank_name is required")
    if not is_finite_number(principal) or principal <= 0:
        raise InvalidQuantity(f"principal must be positive, got {principal!r}")
    if isinstance(duration_years, bool) or not isinstance(duration_years, int) or duration_years <= 0:
        raise InvalidQuantity(f"duration_years must be a positive integer, got {duration_years!r}")
    if not is_finite_number(annual_rate) or annual_rate < 0:
        raise InvalidQuantity(f"annual_rate must be a non-negative percent, got {annual_rate!r}")
    now = utc_now()
    cert = Certificate(
        id=str(uuid.uuid4()),
        bank_name=bank_name.strip(),
        principal=float(principal),
        duration_years=duration_years,
        annual_rate=float(annual_rate),
        purchase_date=purchase_date,
        frequency=InterestFrequency(frequency),
        certificate_number=certificate_number,
        notes=notes,
        created_at=now,
        updated_at=now,
    )
    with store.transaction() as cur:
        storage.insert_certificate(cur, cert)
    log.info("certificate_added", certificate_id=cert.id, bank=cert.bank_name, principal=cert.principal)
    return cert


def get_certificate(store: Store, certificate_id: str) -> Certificate:
    with store.read() as cur:
        cert = storage.get_certificate(cur, certificate_id)
    if cert is None:
        raise CertificateNotFound(certificate_id)
    return cert


def list_certificates(store: Store, status: CertificateStatus | None = None) -> list[Certificate]:
    with store.read() as cur:
        return storage.list_certificates(cur, status)


def set_certificate_status(store: Store, certificate_id: str, status: CertificateStatus | str) -> Certificate:
    status = CertificateStatus(status)
    with store.transaction() as cur:
        if not storage.update_certificate_status(cur, certificate_id, status, utc_now()):
            raise CertificateNotFound(certificate_id)
        cert = storage.get_certificate(cur, certificate_id)
    log.info("certificate_status_changed", certificate_id=certificate_id, status=status.value)
    return cert


def delete_certificate(store: Store, certificate_id: str):
    with store.transaction() as cur:
        if not storage.delete_certificate(cur, certificate_id):
            raise CertificateNotFound(certificate_id)
    log.info("certificate_deleted", certificate_id=certificate_id)


def monthly_certificate_income(certs: Iterable[Certificate], year: int, month: int) -> MonthlyCertificateIncome:
    details = []
    for cert in certs:
        amount = schedule.monthly_income(cert, year, month)
        if amount <= 0:
            continue
        details.append(CertificateIncomeDetail(
            certificate_id=cert.id,
            certificate_number=cert.certificate_number,
            bank_name=cert.bank_name,
            amount=amount,
            due_date=schedule.due_date(cert, year, month),
        ))
    details.sort(key=lambda d: (d.due_date, d.bank_name))
    return MonthlyCertificateIncome(
        year=year,
        month=month,
        total_income=sum(d.amount for d in details),
        certificates=details,
    )


def certificate_income_range(
    certs: Iterable[Certificate], start: tuple[int, int], end: tuple[int, int]
) -> list[MonthlyCertificateIncome]:
    """One summary per month from ``start`` to ``end`` inclusive."""
    for _, month in (start, end):
        if not 1 <= month <= 12:
            raise ValueError(f"month must be within 1..12, got {month}")
    certs = list(certs)
    return [monthly_certificate_income(certs, y, m) for y, m in month_iter(start, end)]


def upcoming_maturities(
    certs: Iterable[Certificate],
    within_days: int = 30,
    limit: int = 10,
    as_of: date | None = None,
) -> list[Certificate]:
    as_of = as_of or schedule.today()
    horizon = as_of + timedelta(days=within_days)
    due = [
        c for c in certs
        if c.status == CertificateStatus.ACTIVE and schedule.maturity_date(c) <= horizon
    ]
    due.sort(key=schedule.maturity_date)
    return due[:limit]


def certificate_totals(certs: Iterable[Certificate], as_of: date | None = None) -> dict:
    active = [c for c in certs if c.status == CertificateStatus.ACTIVE]
    return {
        "active_count": len(active),
        "total_principal": sum(c.principal for c in active),
        "total_current_value": sum(schedule.current_value(c, as_of) for c in active),
        "total_monthly_interest": sum(schedule.monthly_interest(c) for c in active),
    }
