"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple


@dataclass(frozen=True)
class LoanTerms:
    """Borrower's proposed loan, immutable once a quote is accepted"""

    credit_score: int  # 0-100
    loan_amount: Decimal  # in loan token units
    term_months: int
    collateral_ratio: Decimal  # collateral value / loan value
    asset_class: str


@dataclass(frozen=True)
class MarketState:
    """Snapshot of market conditions supplied by the caller"""

    utilization_rate: Decimal  # 0-1
    volatility_factor: Decimal = Decimal("0")


@dataclass(frozen=True)
class RateBreakdown:
    """Additive components of the raw rate, in percent"""

    base_rate: Decimal
    credit_risk: Decimal
    term_risk: Decimal
    market_conditions: Decimal
    collateral_discount: Decimal  # subtracted
    size_adjustment: Decimal

    @property
    def raw_rate(self) -> Decimal:
        return (
            self.base_rate
            + self.credit_risk
            + self.term_risk
            + self.market_conditions
            - self.collateral_discount
            + self.size_adjustment
        )


@dataclass(frozen=True)
class RateQuote:
    """Output of rate quoting"""

    breakdown: RateBreakdown
    raw_rate: Decimal
    perturbation: Decimal  # percentage points added by market jitter
    soft_cap: Optional[Decimal]  # ceiling applied for strong profiles, if any
    final_rate: Decimal  # percent, 2 decimal places
    rate_bps: int
    risk_level: str


@dataclass(frozen=True)
class PricePoint:
    """Unit price in USD observed at a point in time"""

    price_usd: Decimal
    as_of: Optional[datetime] = None


@dataclass(frozen=True)
class CollateralDeposit:
    asset_id: str
    asset_class: str
    amount: Decimal


@dataclass(frozen=True)
class CollateralPosition:
    """Deposits backing one loan; the same asset may appear several times"""

    loan_id: str
    deposits: Tuple[CollateralDeposit, ...] = ()

    def asset_ids(self) -> Tuple[str, ...]:
        return tuple(sorted({d.asset_id for d in self.deposits}))


class HealthStatus(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    WARNING = "warning"
    DANGER = "danger"


@dataclass(frozen=True)
class AssetValuation:
    """Aggregated holding of one asset within a position"""

    asset_id: str
    asset_class: str
    amount: Decimal
    price_usd: Optional[Decimal]
    value_usd: Decimal
    missing_reason: Optional[str] = None


@dataclass(frozen=True)
class HealthReport:
    collateral_value_usd: Decimal
    loan_value_usd: Decimal
    ratio: Decimal
    collateral_ratio_bps: int
    liquidation_threshold: Decimal
    health_factor: Decimal
    status: HealthStatus
    utilization_pct: Decimal
    assets: Tuple[AssetValuation, ...]
    partial: bool = False
    missing_assets: Tuple[str, ...] = ()


class RepaymentStatus(str, Enum):
    ACTIVE = "active"
    PAID_OFF = "paid_off"
    DEFAULTED = "defaulted"


@dataclass(frozen=True)
class PaymentRecord:
    amount: Decimal
    interest_portion: Decimal
    principal_portion: Decimal
    paid_at: datetime
    discount: Decimal = Decimal("0")


@dataclass(frozen=True)
class RepaymentAccount:
    """Stored repayment state of one funded loan"""

    loan_id: str
    principal_remaining: Decimal
    interest_accrued: Decimal  # as of last_payment_date
    rate_bps: int
    funded_at: datetime
    maturity_date: datetime
    last_payment_date: datetime
    next_due_date: datetime
    status: RepaymentStatus = RepaymentStatus.ACTIVE
    payments: Tuple[PaymentRecord, ...] = field(default_factory=tuple)

    @property
    def is_terminal(self) -> bool:
        return self.status is not RepaymentStatus.ACTIVE


@dataclass(frozen=True)
class OwedProjection:
    principal_remaining: Decimal
    interest_accrued: Decimal
    total_owed: Decimal


@dataclass(frozen=True)
class RepaymentPlan:
    full_amount: Decimal
    minimum_payment: Decimal
    early_discount: Decimal


@dataclass(frozen=True)
class OverdueStatus:
    overdue: bool
    days_overdue: int


@dataclass(frozen=True)
class RepaymentInfo:
    """Read model answering "what do you owe right now" """

    loan_id: str
    owed: OwedProjection
    plan: RepaymentPlan
    overdue: OverdueStatus
    status: RepaymentStatus
    last_payment_date: datetime
    next_due_date: datetime
    maturity_date: datetime
    is_early_repayment: bool
    can_liquidate: bool


@dataclass(frozen=True)
class LoanRecord:
    """Loan-level facts fixed at funding"""

    loan_id: str
    borrower_id: str
    loan_asset_id: str
    terms: LoanTerms
    rate_bps: int
    funded_at: datetime


@dataclass(frozen=True)
class PositionView:
    loan: LoanRecord
    repayment: RepaymentInfo
    health: Optional[HealthReport]  # None once collateral has been released


@dataclass(frozen=True)
class LoanState:
    """Everything stored under one loan identifier"""

    record: LoanRecord
    account: RepaymentAccount
    position: CollateralPosition
