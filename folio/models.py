from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum

from .utils import pct


class HoldingStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class HoldingRole(str, Enum):
    CORE = "CORE"
    INCOME = "INCOME"
    GROWTH = "GROWTH"
    SWING = "SWING"
    SPECULATIVE = "SPECULATIVE"


class TransactionType(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    DIVIDEND = "DIVIDEND"


class CostChangeType(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    ADJUSTMENT = "ADJUSTMENT"


class InterestFrequency(str, Enum):
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    ANNUALLY = "ANNUALLY"
    AT_MATURITY = "AT_MATURITY"


class CertificateStatus(str, Enum):
    ACTIVE = "ACTIVE"
    MATURED = "MATURED"
    RENEWED = "RENEWED"
    WITHDRAWN = "WITHDRAWN"


class TimePeriod(Enum):
    WEEK = 7
    MONTH = 30
    FIFTY_DAYS = 50
    TWO_MONTHS = 60
    THREE_MONTHS = 90
    SIX_MONTHS = 180
    YEAR = 365

    @property
    def days(self) -> int:
        return self.value


class ZoneStrength(str, Enum):
    STRONG = "STRONG"
    MODERATE = "MODERATE"
    WEAK = "WEAK"


class Recommendation(str, Enum):
    STRONG_BUY = "STRONG_BUY"
    BUY = "BUY"
    HOLD = "HOLD"
    SELL = "SELL"
    STRONG_SELL = "STRONG_SELL"


@dataclass
class Holding:
    id: str
    symbol: str
    shares: int
    avg_cost: float
    current_price: float
    created_at: datetime
    updated_at: datetime
    display_name: str = ""
    local_name: str = ""
    sector: str = ""
    notes: str = ""
    target_percentage: float | None = None
    fair_value: float | None = None
    eps: float | None = None
    growth_rate: float | None = None
    pe_ratio: float | None = None
    status: HoldingStatus = HoldingStatus.OPEN
    closed_at: datetime | None = None
    role: HoldingRole = HoldingRole.CORE

    @property
    def market_value(self) -> float:
        return self.shares * self.current_price

    @property
    def total_cost(self) -> float:
        return self.shares * self.avg_cost

    @property
    def profit_loss(self) -> float:
        return self.market_value - self.total_cost

    @property
    def profit_loss_pct(self) -> float:
        return pct(self.profit_loss, self.total_cost)

    @property
    def is_profit(self) -> bool:
        return self.profit_loss >= 0

    @property
    def is_open(self) -> bool:
        return self.status == HoldingStatus.OPEN


@dataclass(frozen=True)
class Transaction:
    id: str
    holding_id: str
    symbol: str
    type: TransactionType
    shares: int
    price: float
    total: float
    timestamp: datetime
    notes: str = ""


@dataclass(frozen=True)
class CostHistory:
    id: str
    holding_id: str
    symbol: str
    previous_avg_cost: float
    new_avg_cost: float
    previous_shares: int
    new_shares: int
    change_type: CostChangeType
    transaction_price: float
    transaction_shares: int
    timestamp: datetime
    notes: str = ""

    @property
    def cost_change(self) -> float:
        return self.new_avg_cost - self.previous_avg_cost

    @property
    def cost_change_pct(self) -> float:
        return pct(self.cost_change, self.previous_avg_cost)


@dataclass(frozen=True)
class Dividend:
    id: str
    holding_id: str
    symbol: str
    amount_per_share: float
    shares: int
    total_amount: float
    payment_date: datetime
    created_at: datetime
    ex_dividend_date: date | None = None
    notes: str = ""


@dataclass(frozen=True)
class PortfolioSnapshot:
    id: str
    total_value: float
    total_cost: float
    profit_loss: float
    profit_loss_pct: float
    total_dividends: float
    holdings_count: int
    timestamp: datetime


@dataclass(frozen=True)
class RealizedGain:
    id: str
    holding_id: str
    symbol: str
    shares_sold: int
    sell_price: float
    avg_cost: float
    profit_loss: float
    profit_loss_pct: float
    closed_position: bool
    sold_at: datetime

    @property
    def proceeds(self) -> float:
        return self.shares_sold * self.sell_price

    @property
    def cost_basis(self) -> float:
        return self.shares_sold * self.avg_cost


@dataclass
class Certificate:
    id: str
    bank_name: str
    principal: float
    duration_years: int
    annual_rate: float
    purchase_date: date
    frequency: InterestFrequency
    status: CertificateStatus = CertificateStatus.ACTIVE
    certificate_number: str = ""
    notes: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class SaleResult:
    holding: Holding
    realized_gain: RealizedGain
    closed: bool


@dataclass(frozen=True)
class CertificateIncomeDetail:
    certificate_id: str
    certificate_number: str
    bank_name: str
    amount: float
    due_date: date


@dataclass(frozen=True)
class MonthlyCertificateIncome:
    year: int
    month: int
    total_income: float
    certificates: list[CertificateIncomeDetail] = field(default_factory=list)


@dataclass(frozen=True)
class PeriodPerformance:
    period_days: int
    start_value: float
    end_value: float
    value_change: float
    value_change_pct: float
    dividends_received: float
    total_return: float
    total_return_pct: float
    baseline_source: str
    baseline_snapshot_id: str | None = None


@dataclass(frozen=True)
class PerformanceBreakdown:
    holding_id: str
    symbol: str
    display_name: str
    price_gain: float
    price_gain_pct: float
    dividend_gain: float
    dividend_yield_pct: float
    total_return: float
    total_return_pct: float
    total_cost: float
    current_value: float


@dataclass(frozen=True)
class SectorPerformance:
    sector: str
    total_value: float
    total_cost: float
    profit_loss: float
    profit_loss_pct: float
    weight: float
    holdings_count: int


@dataclass(frozen=True)
class BuyZone:
    price: float
    strength: ZoneStrength
    description: str


@dataclass(frozen=True)
class FairValue:
    value: float
    range_low: float
    range_high: float
    methods: dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class StockAnalysis:
    symbol: str
    current_price: float
    fair_value: FairValue | None
    buy_zones: list[BuyZone]
    recommendation: Recommendation
    graham_value: float | None = None
    user_fair_value: float | None = None
    upside_pct: float | None = None
    margin_of_safety_pct: float | None = None
