from datetime import date
from pydantic import BaseModel, Field
from typing import Optional, Literal

Frequency = Literal['MONTHLY', 'QUARTERLY', 'ANNUALLY', 'AT_MATURITY']
CertStatus = Literal['ACTIVE', 'MATURED', 'RENEWED', 'WITHDRAWN']
Role = Literal['CORE', 'INCOME', 'GROWTH', 'SWING', 'SPECULATIVE']

class OpenHoldingRequest(BaseModel):
    symbol: str
    shares: int
    price: float
    display_name: str = ''
    local_name: str = ''
    sector: str = ''
    notes: str = 'Initial purchase'
    target_percentage: Optional[float] = None
    fair_value: Optional[float] = None
    eps: Optional[float] = None
    growth_rate: Optional[float] = None
    pe_ratio: Optional[float] = None
    role: Optional[Role] = None

class TradeRequest(BaseModel):
    shares: int
    price: float
    notes: str = ''

class AdjustCostRequest(BaseModel):
    new_avg_cost: float
    notes: str = 'Manual adjustment'

class ProfileUpdate(BaseModel):
    display_name: Optional[str] = None
    local_name: Optional[str] = None
    sector: Optional[str] = None
    notes: Optional[str] = None
    target_percentage: Optional[float] = None
    fair_value: Optional[float] = None
    eps: Optional[float] = None
    growth_rate: Optional[float] = None
    pe_ratio: Optional[float] = None
    role: Optional[Role] = None

class DividendRequest(BaseModel):
    amount_per_share: float
    payment_date: date
    shares: Optional[int] = None
    ex_dividend_date: Optional[date] = None
    notes: str = ''

class PriceUpdate(BaseModel):
    symbol: str
    price: float

class CertificateRequest(BaseModel):
    bank_name: str
    principal: float
    duration_years: int
    annual_rate: float = Field(description="Annual interest rate in percent, e.g. 20 for 20%")
    purchase_date: date
    frequency: Frequency
    certificate_number: str = ''
    notes: str = ''

class CertificateStatusRequest(BaseModel):
    status: CertStatus

class RefreshRun(BaseModel):
    run_id: str

class RefreshStatusResponse(BaseModel):
    run_id: str
    status: Literal['running', 'succeeded', 'failed', 'skipped']
    started_at_utc: str
    finished_at_utc: Optional[str] = None
    updated_count: Optional[int] = None
    failed_symbols: list[str] = []
    snapshot_id: Optional[str] = None
    error_message: Optional[str] = None
