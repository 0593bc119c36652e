from __future__ import annotations

import sqlite3
from datetime import date, datetime
from enum import Enum

from ..models import (
    Certificate,
    CertificateStatus,
    CostChangeType,
    CostHistory,
    Dividend,
    Holding,
    HoldingRole,
    HoldingStatus,
    InterestFrequency,
    PortfolioSnapshot,
    RealizedGain,
    Transaction,
    TransactionType,
)
from ..utils import parse_iso, to_iso

_ORDER = {"asc": "ASC", "desc": "DESC"}

HOLDING_COLS = (
    "id, symbol, display_name, local_name, sector, notes, shares, avg_cost, current_price, "
    "target_percentage, fair_value, eps, growth_rate, pe_ratio, status, "
    "created_at_utc, updated_at_utc, closed_at_utc, role"
)
TX_COLS = "id, holding_id, symbol, type, shares, price, total, notes, timestamp_utc"
COST_COLS = (
    "id, holding_id, symbol, previous_avg_cost, new_avg_cost, previous_shares, new_shares, "
    "change_type, transaction_price, transaction_shares, notes, timestamp_utc"
)
DIV_COLS = (
    "id, holding_id, symbol, amount_per_share, shares, total_amount, ex_dividend_date, "
    "payment_date_utc, notes, created_at_utc"
)
SNAP_COLS = (
    "id, total_value, total_cost, profit_loss, profit_loss_pct, total_dividends, "
    "holdings_count, timestamp_utc"
)
GAIN_COLS = (
    "id, holding_id, symbol, shares_sold, sell_price, avg_cost, profit_loss, "
    "profit_loss_pct, closed_position, sold_at_utc"
)
CERT_COLS = (
    "id, bank_name, certificate_number, principal, duration_years, annual_rate, "
    "purchase_date, frequency, status, notes, created_at_utc, updated_at_utc"
)


def _order(order: str) -> str:
    try:
        return _ORDER[order.lower()]
    except (KeyError, AttributeError):
        raise ValueError("order must be asc|desc") from None


def _date_or_none(val: str | None) -> date | None:
    return date.fromisoformat(val) if val else None


# ---------------------------------------------------------------- holdings

def _holding(row) -> Holding:
    return Holding(
        id=row[0],
        symbol=row[1],
        display_name=row[2],
        local_name=row[3],
        sector=row[4],
        notes=row[5],
        shares=int(row[6]),
        avg_cost=float(row[7]),
        current_price=float(row[8]),
        target_percentage=row[9],
        fair_value=row[10],
        eps=row[11],
        growth_rate=row[12],
        pe_ratio=row[13],
        status=HoldingStatus(row[14]),
        created_at=parse_iso(row[15]),
        updated_at=parse_iso(row[16]),
        closed_at=parse_iso(row[17]),
        role=HoldingRole(row[18]),
    )


def insert_holding(cur: sqlite3.Cursor, h: Holding):
    cur.execute(
        f"INSERT INTO holdings ({HOLDING_COLS}) VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?)",
        (
            h.id, h.symbol, h.display_name, h.local_name, h.sector, h.notes,
            h.shares, h.avg_cost, h.current_price,
            h.target_percentage, h.fair_value, h.eps, h.growth_rate, h.pe_ratio,
            h.status.value, to_iso(h.created_at), to_iso(h.updated_at),
            to_iso(h.closed_at) if h.closed_at else None, h.role.value,
        ),
    )


def update_holding_position(cur: sqlite3.Cursor, h: Holding):
    """Write (shares, avg_cost, status) in one statement so readers never see half of it."""
    cur.execute(
        """
        UPDATE holdings
        SET shares=?, avg_cost=?, status=?, updated_at_utc=?, closed_at_utc=?
        WHERE id=?
        """,
        (
            h.shares, h.avg_cost, h.status.value, to_iso(h.updated_at),
            to_iso(h.closed_at) if h.closed_at else None, h.id,
        ),
    )


def update_holding_profile(cur: sqlite3.Cursor, holding_id: str, fields: dict, updated_at: datetime):
    if not fields:
        return
    assignments = ", ".join(f"{name}=?" for name in fields)
    cur.execute(
        f"UPDATE holdings SET {assignments}, updated_at_utc=? WHERE id=?",
        (*(v.value if isinstance(v, Enum) else v for v in fields.values()), to_iso(updated_at), holding_id),
    )


def update_current_price(cur: sqlite3.Cursor, holding_id: str, price: float, updated_at: datetime) -> int:
    cur.execute(
        "UPDATE holdings SET current_price=?, updated_at_utc=? WHERE id=? AND status='OPEN'",
        (price, to_iso(updated_at), holding_id),
    )
    return cur.rowcount or 0


def get_holding(cur: sqlite3.Cursor, holding_id: str) -> Holding | None:
    row = cur.execute(f"SELECT {HOLDING_COLS} FROM holdings WHERE id=?", (holding_id,)).fetchone()
    return _holding(row) if row else None


def get_open_holding_by_symbol(cur: sqlite3.Cursor, symbol: str) -> Holding | None:
    row = cur.execute(
        f"SELECT {HOLDING_COLS} FROM holdings WHERE symbol=? AND status='OPEN'", (symbol,)
    ).fetchone()
    return _holding(row) if row else None


def list_holdings(cur: sqlite3.Cursor, status: HoldingStatus = HoldingStatus.OPEN) -> list[Holding]:
    rows = cur.execute(
        f"SELECT {HOLDING_COLS} FROM holdings WHERE status=? ORDER BY symbol ASC, created_at_utc ASC",
        (status.value,),
    ).fetchall()
    return [_holding(r) for r in rows]


def delete_holding_cascade(cur: sqlite3.Cursor, holding_id: str) -> dict:
    counts = {}
    for table in ("transactions", "cost_history", "dividends", "holdings"):
        key = "id" if table == "holdings" else "holding_id"
        cur.execute(f"DELETE FROM {table} WHERE {key}=?", (holding_id,))
        counts[table] = cur.rowcount or 0
    return counts


# ------------------------------------------------------------ transactions

def _transaction(row) -> Transaction:
    return Transaction(
        id=row[0],
        holding_id=row[1],
        symbol=row[2],
        type=TransactionType(row[3]),
        shares=int(row[4]),
        price=float(row[5]),
        total=float(row[6]),
        notes=row[7],
        timestamp=parse_iso(row[8]),
    )


def insert_transaction(cur: sqlite3.Cursor, tx: Transaction):
    cur.execute(
        f"INSERT INTO transactions ({TX_COLS}) VALUES (?,?,?,?,?,?,?,?,?)",
        (
            tx.id, tx.holding_id, tx.symbol, tx.type.value, tx.shares, tx.price,
            tx.total, tx.notes, to_iso(tx.timestamp),
        ),
    )


def list_transactions(cur: sqlite3.Cursor, holding_id: str | None = None, order: str = "desc") -> list[Transaction]:
    direction = _order(order)
    if holding_id is None:
        rows = cur.execute(
            f"SELECT {TX_COLS} FROM transactions ORDER BY timestamp_utc {direction}, seq {direction}"
        ).fetchall()
    else:
        rows = cur.execute(
            f"""
            SELECT {TX_COLS} FROM transactions WHERE holding_id=?
            ORDER BY timestamp_utc {direction}, seq {direction}
            """,
            (holding_id,),
        ).fetchall()
    return [_transaction(r) for r in rows]


# ------------------------------------------------------------ cost history

def _cost_history(row) -> CostHistory:
    return CostHistory(
        id=row[0],
        holding_id=row[1],
        symbol=row[2],
        previous_avg_cost=float(row[3]),
        new_avg_cost=float(row[4]),
        previous_shares=int(row[5]),
        new_shares=int(row[6]),
        change_type=CostChangeType(row[7]),
        transaction_price=float(row[8]),
        transaction_shares=int(row[9]),
        notes=row[10],
        timestamp=parse_iso(row[11]),
    )


def insert_cost_history(cur: sqlite3.Cursor, entry: CostHistory):
    cur.execute(
        f"INSERT INTO cost_history ({COST_COLS}) VALUES (?,?,?,?,?,?,?,?,?,?,?,?)",
        (
            entry.id, entry.holding_id, entry.symbol,
            entry.previous_avg_cost, entry.new_avg_cost,
            entry.previous_shares, entry.new_shares,
            entry.change_type.value, entry.transaction_price, entry.transaction_shares,
            entry.notes, to_iso(entry.timestamp),
        ),
    )


def list_cost_history(cur: sqlite3.Cursor, holding_id: str, order: str = "desc") -> list[CostHistory]:
    direction = _order(order)
    rows = cur.execute(
        f"""
        SELECT {COST_COLS} FROM cost_history WHERE holding_id=?
        ORDER BY timestamp_utc {direction}, seq {direction}
        """,
        (holding_id,),
    ).fetchall()
    return [_cost_history(r) for r in rows]


def recent_cost_history(cur: sqlite3.Cursor, limit: int = 50) -> list[CostHistory]:
    rows = cur.execute(
        f"SELECT {COST_COLS} FROM cost_history ORDER BY timestamp_utc DESC, seq DESC LIMIT ?",
        (limit,),
    ).fetchall()
    return [_cost_history(r) for r in rows]


# --------------------------------------------------------------- dividends

def _dividend(row) -> Dividend:
    return Dividend(
        id=row[0],
        holding_id=row[1],
        symbol=row[2],
        amount_per_share=float(row[3]),
        shares=int(row[4]),
        total_amount=float(row[5]),
        ex_dividend_date=_date_or_none(row[6]),
        payment_date=parse_iso(row[7]),
        notes=row[8],
        created_at=parse_iso(row[9]),
    )


def insert_dividend(cur: sqlite3.Cursor, d: Dividend):
    cur.execute(
        f"INSERT INTO dividends ({DIV_COLS}) VALUES (?,?,?,?,?,?,?,?,?,?)",
        (
            d.id, d.holding_id, d.symbol, d.amount_per_share, d.shares, d.total_amount,
            d.ex_dividend_date.isoformat() if d.ex_dividend_date else None,
            to_iso(d.payment_date), d.notes, to_iso(d.created_at),
        ),
    )


def list_dividends(cur: sqlite3.Cursor, holding_id: str | None = None) -> list[Dividend]:
    if holding_id is None:
        rows = cur.execute(f"SELECT {DIV_COLS} FROM dividends ORDER BY payment_date_utc DESC").fetchall()
    else:
        rows = cur.execute(
            f"SELECT {DIV_COLS} FROM dividends WHERE holding_id=? ORDER BY payment_date_utc DESC",
            (holding_id,),
        ).fetchall()
    return [_dividend(r) for r in rows]


def dividends_total(
    cur: sqlite3.Cursor,
    holding_id: str | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
) -> float:
    clauses, params = [], []
    if holding_id is not None:
        clauses.append("holding_id=?")
        params.append(holding_id)
    if since is not None:
        clauses.append("payment_date_utc >= ?")
        params.append(to_iso(since))
    if until is not None:
        clauses.append("payment_date_utc <= ?")
        params.append(to_iso(until))
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    row = cur.execute(f"SELECT SUM(total_amount) FROM dividends {where}", params).fetchone()
    return float(row[0]) if row and row[0] is not None else 0.0


def dividends_by_holding(cur: sqlite3.Cursor) -> dict[str, float]:
    rows = cur.execute("SELECT holding_id, SUM(total_amount) FROM dividends GROUP BY holding_id").fetchall()
    return {r[0]: float(r[1] or 0.0) for r in rows}


# --------------------------------------------------------------- snapshots

def _snapshot(row) -> PortfolioSnapshot:
    return PortfolioSnapshot(
        id=row[0],
        total_value=float(row[1]),
        total_cost=float(row[2]),
        profit_loss=float(row[3]),
        profit_loss_pct=float(row[4]),
        total_dividends=float(row[5]),
        holdings_count=int(row[6]),
        timestamp=parse_iso(row[7]),
    )


def insert_snapshot(cur: sqlite3.Cursor, s: PortfolioSnapshot):
    cur.execute(
        f"INSERT INTO portfolio_snapshots ({SNAP_COLS}) VALUES (?,?,?,?,?,?,?,?)",
        (
            s.id, s.total_value, s.total_cost, s.profit_loss, s.profit_loss_pct,
            s.total_dividends, s.holdings_count, to_iso(s.timestamp),
        ),
    )


def first_snapshot_since(cur: sqlite3.Cursor, start: datetime) -> PortfolioSnapshot | None:
    row = cur.execute(
        f"""
        SELECT {SNAP_COLS} FROM portfolio_snapshots
        WHERE timestamp_utc >= ? ORDER BY timestamp_utc ASC, seq ASC LIMIT 1
        """,
        (to_iso(start),),
    ).fetchone()
    return _snapshot(row) if row else None


def list_snapshots_since(cur: sqlite3.Cursor, start: datetime) -> list[PortfolioSnapshot]:
    rows = cur.execute(
        f"""
        SELECT {SNAP_COLS} FROM portfolio_snapshots
        WHERE timestamp_utc >= ? ORDER BY timestamp_utc ASC, seq ASC
        """,
        (to_iso(start),),
    ).fetchall()
    return [_snapshot(r) for r in rows]


def recent_snapshots(cur: sqlite3.Cursor, limit: int = 100) -> list[PortfolioSnapshot]:
    rows = cur.execute(
        f"SELECT {SNAP_COLS} FROM portfolio_snapshots ORDER BY timestamp_utc DESC, seq DESC LIMIT ?",
        (limit,),
    ).fetchall()
    return [_snapshot(r) for r in rows]


# ---------------------------------------------------------- realized gains

def _realized_gain(row) -> RealizedGain:
    return RealizedGain(
        id=row[0],
        holding_id=row[1],
        symbol=row[2],
        shares_sold=int(row[3]),
        sell_price=float(row[4]),
        avg_cost=float(row[5]),
        profit_loss=float(row[6]),
        profit_loss_pct=float(row[7]),
        closed_position=bool(row[8]),
        sold_at=parse_iso(row[9]),
    )


def insert_realized_gain(cur: sqlite3.Cursor, g: RealizedGain):
    cur.execute(
        f"INSERT INTO realized_gains ({GAIN_COLS}) VALUES (?,?,?,?,?,?,?,?,?,?)",
        (
            g.id, g.holding_id, g.symbol, g.shares_sold, g.sell_price, g.avg_cost,
            g.profit_loss, g.profit_loss_pct, int(g.closed_position), to_iso(g.sold_at),
        ),
    )


def list_realized_gains(cur: sqlite3.Cursor, symbol: str | None = None) -> list[RealizedGain]:
    if symbol is None:
        rows = cur.execute(f"SELECT {GAIN_COLS} FROM realized_gains ORDER BY sold_at_utc DESC").fetchall()
    else:
        rows = cur.execute(
            f"SELECT {GAIN_COLS} FROM realized_gains WHERE symbol=? ORDER BY sold_at_utc DESC",
            (symbol,),
        ).fetchall()
    return [_realized_gain(r) for r in rows]


# ------------------------------------------------------------ certificates

def _certificate(row) -> Certificate:
    return Certificate(
        id=row[0],
        bank_name=row[1],
        certificate_number=row[2],
        principal=float(row[3]),
        duration_years=int(row[4]),
        annual_rate=float(row[5]),
        purchase_date=date.fromisoformat(row[6]),
        frequency=InterestFrequency(row[7]),
        status=CertificateStatus(row[8]),
        notes=row[9],
        created_at=parse_iso(row[10]),
        updated_at=parse_iso(row[11]),
    )


def insert_certificate(cur: sqlite3.Cursor, c: Certificate):
    cur.execute(
        f"INSERT INTO certificates ({CERT_COLS}) VALUES (?,?,?,?,?,?,?,?,?,?,?,?)",
        (
            c.id, c.bank_name, c.certificate_number, c.principal, c.duration_years,
            c.annual_rate, c.purchase_date.isoformat(), c.frequency.value, c.status.value,
            c.notes, to_iso(c.created_at), to_iso(c.updated_at),
        ),
    )


def get_certificate(cur: sqlite3.Cursor, certificate_id: str) -> Certificate | None:
    row = cur.execute(f"SELECT {CERT_COLS} FROM certificates WHERE id=?", (certificate_id,)).fetchone()
    return _certificate(row) if row else None


def list_certificates(cur: sqlite3.Cursor, status: CertificateStatus | None = None) -> list[Certificate]:
    if status is None:
        rows = cur.execute(f"SELECT {CERT_COLS} FROM certificates ORDER BY purchase_date DESC").fetchall()
    else:
        rows = cur.execute(
            f"SELECT {CERT_COLS} FROM certificates WHERE status=? ORDER BY purchase_date DESC",
            (status.value,),
        ).fetchall()
    return [_certificate(r) for r in rows]


def update_certificate_status(
    cur: sqlite3.Cursor, certificate_id: str, status: CertificateStatus, updated_at: datetime
) -> int:
    cur.execute(
        "UPDATE certificates SET status=?, updated_at_utc=? WHERE id=?",
        (status.value, to_iso(updated_at), certificate_id),
    )
    return cur.rowcount or 0


def delete_certificate(cur: sqlite3.Cursor, certificate_id: str) -> int:
    cur.execute("DELETE FROM certificates WHERE id=?", (certificate_id,))
    return cur.rowcount or 0
