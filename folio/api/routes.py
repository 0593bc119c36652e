from dataclasses import asdict
from datetime import datetime
import uuid
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from .schemas import (
    AdjustCostRequest,
    CertificateRequest,
    CertificateStatusRequest,
    DividendRequest,
    OpenHoldingRequest,
    PriceUpdate,
    ProfileUpdate,
    RefreshRun,
    RefreshStatusResponse,
    TradeRequest,
)
from ..analytics import metrics, performance, snapshots as snaps, valuation
from ..certificates import income, schedule
from ..config import settings
from ..db import Store
from ..ledger.ledger import Ledger
from ..models import Certificate, CertificateStatus, Holding, TimePeriod
from ..pricing.feed import PriceQuote
from ..pricing.refresh import get_run_status, refresh_prices

router = APIRouter()


def get_store(request: Request) -> Store:
    return request.app.state.store

def get_ledger(request: Request) -> Ledger:
    return request.app.state.ledger


def _holding_out(h: Holding) -> dict:
    out = asdict(h)
    out.update(
        market_value=h.market_value,
        total_cost=h.total_cost,
        profit_loss=h.profit_loss,
        profit_loss_pct=h.profit_loss_pct,
    )
    return out

def _certificate_out(c: Certificate) -> dict:
    out = asdict(c)
    out.update(
        maturity_date=schedule.maturity_date(c),
        monthly_interest=schedule.monthly_interest(c),
        total_interest_at_maturity=schedule.total_interest_at_maturity(c),
        accrued_interest=schedule.accrued_interest(c),
        current_value=schedule.current_value(c),
        days_until_maturity=schedule.days_until_maturity(c),
    )
    return out

def _holding_or_404(ledger: Ledger, holding_id: str) -> Holding:
    h = ledger.get_holding(holding_id)
    if h is None:
        raise HTTPException(404, 'holding not found')
    return h

def _parse_month(value: str, name: str) -> tuple[int, int]:
    try:
        year, month = (int(p) for p in value.split('-', 1))
    except ValueError:
        raise HTTPException(400, f'{name} must be YYYY-MM')
    if not 1 <= month <= 12:
        raise HTTPException(400, f'{name} month must be 1..12')
    return year, month

def _parse_period(value: str) -> int | TimePeriod:
    if value.isdigit():
        return int(value)
    try:
        return TimePeriod[value.upper()]
    except KeyError:
        names = '|'.join(p.name for p in TimePeriod)
        raise HTTPException(400, f'period must be a day count or one of {names}')


@router.get('/health', summary="Health check", tags=["Health"])
def health(store: Store = Depends(get_store)):
    try:
        with store.read() as cur:
            row = cur.execute(
                "SELECT run_id, status, started_at_utc, finished_at_utc FROM refresh_runs "
                "ORDER BY started_at_utc DESC LIMIT 1"
            ).fetchone()
    except Exception as e:
        raise HTTPException(503, f'db_error: {e}')
    last = None
    if row:
        last = {'run_id': row[0], 'status': row[1], 'started_at_utc': row[2], 'finished_at_utc': row[3]}
    return {'ok': True, 'db': 'ok', 'last_refresh': last}

# ----------------------------------------------------------------- holdings

@router.get('/holdings', summary="List holdings", tags=["Holdings"])
def list_holdings(status: str = 'open', ledger: Ledger = Depends(get_ledger)):
    if status not in ('open', 'closed'):
        raise HTTPException(400, 'status must be open|closed')
    rows = ledger.holdings() if status == 'open' else ledger.closed_holdings()
    return [_holding_out(h) for h in rows]

@router.post('/holdings', status_code=201, summary="Open a holding", tags=["Holdings"])
def open_holding(req: OpenHoldingRequest, ledger: Ledger = Depends(get_ledger)):
    body = req.model_dump()
    h = ledger.open(body.pop('symbol'), body.pop('shares'), body.pop('price'), **body)
    return _holding_out(h)

@router.get('/holdings/{holding_id}', summary="Get a holding", tags=["Holdings"])
def get_holding(holding_id: str, ledger: Ledger = Depends(get_ledger)):
    return _holding_out(_holding_or_404(ledger, holding_id))

@router.post('/holdings/{holding_id}/buy', summary="Buy more shares", tags=["Holdings"])
def buy(holding_id: str, req: TradeRequest, ledger: Ledger = Depends(get_ledger)):
    return _holding_out(ledger.buy_more(holding_id, req.shares, req.price, req.notes))

@router.post('/holdings/{holding_id}/sell', summary="Sell shares", tags=["Holdings"])
def sell(holding_id: str, req: TradeRequest, ledger: Ledger = Depends(get_ledger)):
    result = ledger.sell(holding_id, req.shares, req.price, req.notes)
    return {
        'holding': _holding_out(result.holding),
        'realized_gain': asdict(result.realized_gain),
        'closed': result.closed,
    }

@router.post('/holdings/{holding_id}/adjust-cost', summary="Overwrite average cost", tags=["Holdings"])
def adjust_cost(holding_id: str, req: AdjustCostRequest, ledger: Ledger = Depends(get_ledger)):
    return _holding_out(ledger.adjust_cost(holding_id, req.new_avg_cost, req.notes))

@router.patch('/holdings/{holding_id}', summary="Update holding profile", tags=["Holdings"])
def update_profile(holding_id: str, req: ProfileUpdate, ledger: Ledger = Depends(get_ledger)):
    return _holding_out(ledger.update_profile(holding_id, **req.model_dump(exclude_unset=True)))

@router.delete('/holdings/{holding_id}', summary="Delete a holding and its history", tags=["Holdings"])
def remove_holding(holding_id: str, ledger: Ledger = Depends(get_ledger)):
    return {'ok': True, 'deleted': ledger.remove_holding(holding_id)}

@router.get('/holdings/{holding_id}/transactions', tags=["Holdings"])
def holding_transactions(holding_id: str, order: str = 'desc', ledger: Ledger = Depends(get_ledger)):
    _holding_or_404(ledger, holding_id)
    return ledger.transactions(holding_id, order)

@router.get('/holdings/{holding_id}/cost-history', tags=["Holdings"])
def holding_cost_history(holding_id: str, order: str = 'desc', ledger: Ledger = Depends(get_ledger)):
    _holding_or_404(ledger, holding_id)
    return ledger.cost_history(holding_id, order)

@router.get('/holdings/{holding_id}/verify', summary="Replay cost history against the stored position", tags=["Holdings"])
def verify_holding(holding_id: str, ledger: Ledger = Depends(get_ledger)):
    h = _holding_or_404(ledger, holding_id)
    shares, avg_cost = ledger.replay(h)
    return {'ok': (shares, avg_cost) == (h.shares, h.avg_cost), 'replayed_shares': shares, 'replayed_avg_cost': avg_cost}

@router.post('/holdings/{holding_id}/dividends', status_code=201, tags=["Dividends"])
def add_dividend(holding_id: str, req: DividendRequest, ledger: Ledger = Depends(get_ledger)):
    return ledger.add_dividend(
        holding_id,
        req.amount_per_share,
        req.payment_date,
        shares=req.shares,
        ex_dividend_date=req.ex_dividend_date,
        notes=req.notes,
    )

@router.get('/transactions', tags=["Holdings"])
def all_transactions(order: str = 'desc', ledger: Ledger = Depends(get_ledger)):
    return ledger.transactions(None, order)

@router.get('/cost-history/recent', tags=["Holdings"])
def recent_cost_history(limit: int = 50, ledger: Ledger = Depends(get_ledger)):
    return ledger.recent_cost_history(limit)

@router.get('/dividends', tags=["Dividends"])
def dividends(holding_id: str | None = None, ledger: Ledger = Depends(get_ledger)):
    return ledger.dividends(holding_id)

@router.get('/realized-gains', tags=["Holdings"])
def realized_gains(symbol: str | None = None, ledger: Ledger = Depends(get_ledger)):
    return [dict(asdict(g), proceeds=g.proceeds, cost_basis=g.cost_basis) for g in ledger.realized_gains(symbol)]

# ------------------------------------------------------------------ prices

@router.post('/prices', summary="Set the current price for a symbol", tags=["Prices"])
def update_price(req: PriceUpdate, ledger: Ledger = Depends(get_ledger)):
    return {'ok': True, 'updated': ledger.update_price(req.symbol, req.price)}

@router.post(
    '/refresh',
    response_model=RefreshRun,
    status_code=202,
    summary="Trigger price refresh",
    description="Refreshes every open holding from the price feed in the background, then takes a snapshot.",
    tags=["Prices"],
)
def trigger_refresh(request: Request, background: BackgroundTasks, ledger: Ledger = Depends(get_ledger)):
    run_id = str(uuid.uuid4())
    background.add_task(refresh_prices, ledger, request.app.state.feed, run_id)
    return RefreshRun(run_id=run_id)

@router.get('/refresh/{run_id}', response_model=RefreshStatusResponse, tags=["Prices"])
def refresh_status(run_id: str, store: Store = Depends(get_store)):
    st = get_run_status(store, run_id)
    if not st:
        raise HTTPException(404, 'run not found')
    return st

# --------------------------------------------------------------- analytics

@router.get('/snapshots', tags=["Snapshots"])
def list_snapshots(since: datetime | None = None, limit: int | None = None, store: Store = Depends(get_store)):
    return snaps.snapshots(store, since=since, limit=limit)

@router.post('/snapshots', status_code=201, tags=["Snapshots"])
def take_snapshot(store: Store = Depends(get_store)):
    snap = snaps.take_snapshot(store)
    if snap is None:
        raise HTTPException(409, 'no open holdings to snapshot')
    return snap

@router.get('/performance', summary="Performance over a trailing period", tags=["Performance"])
def period_performance(period: str = 'MONTH', store: Store = Depends(get_store)):
    return performance.performance_for_period(store, _parse_period(period))

@router.get('/performance/breakdown', tags=["Performance"])
def performance_breakdown(store: Store = Depends(get_store)):
    return performance.performance_breakdown(store)

@router.get('/performance/summary', tags=["Performance"])
def portfolio_summary(store: Store = Depends(get_store)):
    return performance.portfolio_summary(store)

@router.get('/performance/allocation', tags=["Performance"])
def allocation_drift(tolerance: float = 0.5, store: Store = Depends(get_store)):
    return performance.allocation_drift(store, tolerance)

@router.get('/performance/sectors', tags=["Performance"])
def sector_performance(store: Store = Depends(get_store)):
    return performance.sector_performance(store)

@router.get('/performance/stocks', tags=["Performance"])
def stock_allocation(store: Store = Depends(get_store)):
    return performance.stock_allocation(store)

@router.get('/performance/risk', tags=["Performance"])
def risk(store: Store = Depends(get_store)):
    history = snaps.snapshots(store, limit=100000)
    summary = metrics.risk_summary(history)
    return summary or {'points': len(history), 'note': 'not enough snapshot history'}

@router.get('/analysis/{symbol}', summary="Fair value, buy zones and recommendation", tags=["Analysis"])
def analysis(
    symbol: str,
    price: float | None = None,
    high: float | None = None,
    low: float | None = None,
    open_: float | None = Query(None, alias="open"),
    prev_close: float | None = None,
    avg_cost: float | None = None,
    ledger: Ledger = Depends(get_ledger),
):
    held = ledger.get_holding_by_symbol(symbol)
    if price is None:
        if held is None:
            raise HTTPException(400, 'price is required for symbols that are not held')
        price = held.current_price
    quote = PriceQuote(symbol=symbol, price=price, high=high, low=low, open=open_, prev_close=prev_close)
    return valuation.analyze(
        symbol,
        quote,
        avg_cost=avg_cost if avg_cost is not None else (held.avg_cost if held else None),
        eps=held.eps if held else None,
        growth_rate=held.growth_rate if held else None,
        user_fair_value=held.fair_value if held else None,
    )

# ------------------------------------------------------------ certificates

@router.post('/certificates', status_code=201, tags=["Certificates"])
def add_certificate(req: CertificateRequest, store: Store = Depends(get_store)):
    return _certificate_out(income.add_certificate(store, **req.model_dump()))

@router.get('/certificates', tags=["Certificates"])
def list_certificates(status: str | None = None, store: Store = Depends(get_store)):
    try:
        st = CertificateStatus(status.upper()) if status else None
    except ValueError:
        raise HTTPException(400, 'status must be ACTIVE|MATURED|RENEWED|WITHDRAWN')
    return [_certificate_out(c) for c in income.list_certificates(store, st)]

@router.get('/certificates/income/{year}/{month}', tags=["Certificates"])
def certificate_income(year: int, month: int, store: Store = Depends(get_store)):
    if not 1 <= month <= 12:
        raise HTTPException(400, 'month must be 1..12')
    return income.monthly_certificate_income(income.list_certificates(store), year, month)

@router.get('/certificates/income', summary="Income per month over a range (YYYY-MM)", tags=["Certificates"])
def certificate_income_range(start: str, end: str, store: Store = Depends(get_store)):
    first, last = _parse_month(start, 'start'), _parse_month(end, 'end')
    if first > last:
        raise HTTPException(400, 'start must be <= end')
    return income.certificate_income_range(income.list_certificates(store), first, last)

@router.get('/certificates/maturities', tags=["Certificates"])
def upcoming_maturities(
    within_days: int | None = None,
    limit: int | None = None,
    store: Store = Depends(get_store),
):
    due = income.upcoming_maturities(
        income.list_certificates(store, CertificateStatus.ACTIVE),
        within_days=settings.maturity_window_days if within_days is None else within_days,
        limit=settings.maturity_list_limit if limit is None else limit,
    )
    return [_certificate_out(c) for c in due]

@router.get('/certificates/totals', tags=["Certificates"])
def certificate_totals(store: Store = Depends(get_store)):
    return income.certificate_totals(income.list_certificates(store))

@router.get('/certificates/{certificate_id}', tags=["Certificates"])
def get_certificate(certificate_id: str, store: Store = Depends(get_store)):
    return _certificate_out(income.get_certificate(store, certificate_id))

@router.get('/certificates/{certificate_id}/schedule', tags=["Certificates"])
def certificate_schedule(certificate_id: str, store: Store = Depends(get_store)):
    cert = income.get_certificate(store, certificate_id)
    return [{'due_date': when, 'amount': amount} for when, amount in schedule.payment_schedule(cert)]

@router.put('/certificates/{certificate_id}/status', tags=["Certificates"])
def set_certificate_status(certificate_id: str, req: CertificateStatusRequest, store: Store = Depends(get_store)):
    return _certificate_out(income.set_certificate_status(store, certificate_id, req.status))

@router.delete('/certificates/{certificate_id}', tags=["Certificates"])
def delete_certificate(certificate_id: str, store: Store = Depends(get_store)):
    income.delete_certificate(store, certificate_id)
    return {'ok': True}
