"""Data models for the application."""
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, List
from uuid import uuid4

from bondfolio.core.yields import compute_ytm

# Scale of every stored amount
AMOUNT_QUANTUM = Decimal("0.0001")


class CashFlowNature(str, Enum):
    INTEREST = "interest"
    PRINCIPAL = "principal"
    CAPITAL_GAIN = "capitalGain"
    CAPITAL_LOSS = "capitalLoss"
    EXPECTED_PROFIT = "expectedProfit"

    @classmethod
    def _missing_(cls, value):
        # Older exports tagged gains as "capitalGains"
        if value == "capitalGains":
            return cls.CAPITAL_GAIN
        return None


class FlowMode(str, Enum):
    """Which part of a flow is shown or summed."""
    INTEREST = "interest"
    PRINCIPAL = "principal"
    BOTH = "both"


class TaxMode(str, Enum):
    NONE = "none"
    TAX_ONLY = "tax_only"
    POST_TAX = "post_tax"


class BondSortOption(str, Enum):
    NAME = "Bond Name"
    ISSUER = "Issuer"
    ACQUISITION_DATE = "Acquisition Date"
    ACQUISITION_PRICE = "Acquisition Price"
    NOMINAL = "Nominal"
    COUPON = "Coupon"
    MATURITY_DATE = "Maturity Date"
    CUSTODIAN = "Custodian"


@dataclass(frozen=True)
class BondTerms:
    """A bond holding as entered by the user. Edits replace the whole record."""
    name: str
    issuer: str
    isin: str
    wkn: str
    par_value: Decimal
    coupon_rate: Decimal  # annual percent, 3.5 means 3.5%
    initial_price: Decimal
    maturity_date: date
    acquisition_date: date
    custodian: str
    id: str = field(default_factory=lambda: str(uuid4()))

    @property
    def annual_coupon(self) -> Decimal:
        return (self.par_value * self.coupon_rate / Decimal(100)).quantize(AMOUNT_QUANTUM)

    @property
    def yield_at_acquisition(self) -> float:
        return compute_ytm(
            self.par_value,
            self.coupon_rate,
            self.initial_price,
            self.acquisition_date,
            self.maturity_date,
        )


@dataclass
class CashFlowEvent:
    bond_id: str
    date: date
    amount: Decimal
    nature: CashFlowNature


@dataclass
class MonthlyFlow:
    """Coupon and principal falling into one calendar bucket."""
    coupon: Decimal = Decimal("0")
    principal: Decimal = Decimal("0")

    @property
    def total(self) -> Decimal:
        return self.coupon + self.principal

    def part(self, mode: FlowMode) -> Decimal:
        if mode == FlowMode.INTEREST:
            return self.coupon
        if mode == FlowMode.PRINCIPAL:
            return self.principal
        return self.total


@dataclass
class YTMPoint:
    date: date
    ytm: float


@dataclass
class BondGroup:
    bond_id: str
    bond_name: str
    events: List[CashFlowEvent]
    total: Decimal


@dataclass
class MonthGroup:
    year: int
    month: int
    bonds: List[BondGroup]
    total: Decimal


@dataclass
class YearGroup:
    year: int
    months: List[MonthGroup]
    total: Decimal


@dataclass
class PortfolioSnapshot:
    """Events grouped by year, month and bond. Totals leave out capital losses."""
    years: List[YearGroup]
    total: Decimal

    def month(self, year: int, month: int) -> MonthGroup | None:
        for year_group in self.years:
            if year_group.year != year:
                continue
            for month_group in year_group.months:
                if month_group.month == month:
                    return month_group
        return None


@dataclass
class PortfolioSummary:
    """Portfolio-wide figures for the summary panel."""
    bond_count: int
    acquisition_cost: Decimal
    principal: Decimal
    weighted_ytm: float
    projected_interest: Decimal


@dataclass
class MaturedGroup:
    isin: str
    name: str
    issuer: str
    coupon_rate: Decimal
    maturity_date: date
    bond_ids: List[str]
    total_par_value: Decimal


@dataclass
class LaunchEvent:
    """A maturity or coupon that happened since the last launch."""
    name: str
    custodian: str
    kind: str  # "Matured" or "Coupon"
    date: date
    amount: Decimal


@dataclass
class ValidationReport:
    issues: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.issues


class AssetType(str, Enum):
    BOND = "Bond"
    ETF = "ETF"


@dataclass(frozen=True)
class ETF:
    """An exchange-traded fund; the holdings themselves are ETFLots."""
    name: str
    isin: str
    wkn: str
    issuer: str
    last_price: Decimal = Decimal("0")
    id: str = field(default_factory=lambda: str(uuid4()))


@dataclass(frozen=True)
class ETFLot:
    """Shares of one ETF bought on one day at one price."""
    etf_id: str
    acquisition_date: date
    acquisition_price: Decimal
    shares: int
    id: str = field(default_factory=lambda: str(uuid4()))

    @property
    def cost(self) -> Decimal:
        return self.acquisition_price * self.shares


@dataclass
class ETFPricePoint:
    etf_id: str
    ts: datetime
    price: Decimal


@dataclass
class ETFPosition:
    """All lots of one ETF valued at its last price."""
    etf: ETF
    lots: List[ETFLot]
    shares: int
    cost: Decimal
    market_value: Decimal

    @property
    def profit(self) -> Decimal:
        return self.market_value - self.cost

    @property
    def pct_gain(self) -> Decimal:
        return self.profit / self.cost * 100 if self.cost > 0 else Decimal("0")


@dataclass
class ETFSale:
    etf_id: str
    date: date
    shares: int
    proceeds: Decimal
    cost_basis: Decimal

    @property
    def gain(self) -> Decimal:
        return self.proceeds - self.cost_basis


@dataclass
class HistoricalValuation:
    """Invested capital and returns of one asset class at one point in time."""
    taken_at: datetime
    asset_type: AssetType
    custodian: str | None  # bonds only
    invested_capital: Decimal
    interest_received: Decimal | None  # None for ETFs
    capital_gains: Decimal
    id: str = field(default_factory=lambda: str(uuid4()))


RegenerationFailures = Dict[str, Exception]
RefreshFailures = Dict[str, Exception]
