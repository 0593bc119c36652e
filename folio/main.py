from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
import structlog

from .logging import setup_logging
from .api.routes import router as api_router
from .config import settings
from .db import Store
from .errors import CertificateNotFound, DuplicateHolding, HoldingNotFound, LedgerError
from .jobs.scheduler import schedule_jobs
from .ledger.ledger import Ledger
from .pricing.feed import PriceFeed, YFinanceFeed

log = structlog.get_logger()

_STATUS = (
    (HoldingNotFound, 404),
    (CertificateNotFound, 404),
    (DuplicateHolding, 409),
)


def _ledger_error(request: Request, exc: LedgerError):
    status = next((code for kind, code in _STATUS if isinstance(exc, kind)), 400)
    return JSONResponse(status_code=status, content={'detail': str(exc) or type(exc).__name__, 'error': type(exc).__name__})


def _value_error(request: Request, exc: ValueError):
    return JSONResponse(status_code=400, content={'detail': str(exc)})


def create_app(db_path: str | None = None, feed: PriceFeed | None = None, enable_scheduler: bool | None = None) -> FastAPI:
    """Build the service; the store lives exactly as long as the app's lifespan."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        store = Store.open(db_path or settings.db_path)
        ledger = Ledger(store)
        app.state.store = store
        app.state.ledger = ledger
        app.state.feed = feed or YFinanceFeed()
        sched = None
        if settings.refresh_enable if enable_scheduler is None else enable_scheduler:
            sched = schedule_jobs(ledger, app.state.feed)
        log.info('service_started', db_path=db_path or settings.db_path, scheduler=sched is not None)
        try:
            yield
        finally:
            if sched is not None:
                sched.shutdown(wait=False)
            store.close()
            log.info('service_stopped')

    setup_logging()
    app = FastAPI(title="folio-ledger", lifespan=lifespan)
    app.add_exception_handler(LedgerError, _ledger_error)
    app.add_exception_handler(ValueError, _value_error)
    app.include_router(api_router)
    return app


app = create_app()
