"""Pydantic schemas for API request/response validation"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from loan_risk_gateway.domain.models import (
    CollateralDeposit,
    HealthReport,
    LoanState,
    LoanTerms,
    MarketState,
    PositionView,
    RateQuote,
    RepaymentInfo,
)
from loan_risk_gateway.domain import rates
from loan_risk_gateway.domain.numeric import round_to

BREAKDOWN_PLACES = 4


class LoanTermsSchema(BaseModel):
    """Proposed loan terms"""

    credit_score: int = Field(..., ge=0, le=100, description="Borrower credit score, 0-100")
    loan_amount: Decimal = Field(..., gt=0, description="Requested principal in loan token units")
    term_months: int = Field(..., gt=0, description="Loan term in months")
    collateral_ratio: Decimal = Field(..., gt=0, description="Collateral value / loan value")
    collateral_type: str = Field(..., min_length=1, description="Collateral asset class")

    def to_domain(self) -> LoanTerms:
        return LoanTerms(
            credit_score=self.credit_score,
            loan_amount=self.loan_amount,
            term_months=self.term_months,
            collateral_ratio=self.collateral_ratio,
            asset_class=self.collateral_type,
        )


class QuoteRequest(LoanTermsSchema):
    """Request body for POST /v1/quote"""

    utilization_rate: Optional[Decimal] = Field(None, ge=0, le=1, description="Platform utilization, 0-1")
    volatility_factor: Optional[Decimal] = Field(None, ge=0, description="Market volatility factor")

    def market(self, default_utilization: float, default_volatility: float) -> MarketState:
        return MarketState(
            utilization_rate=self.utilization_rate
            if self.utilization_rate is not None
            else Decimal(str(default_utilization)),
            volatility_factor=self.volatility_factor
            if self.volatility_factor is not None
            else Decimal(str(default_volatility)),
        )


class RateBreakdownSchema(BaseModel):
    base_rate: Decimal
    credit_risk: Decimal
    term_risk: Decimal
    market_conditions: Decimal
    collateral_discount: Decimal  # reported negative, as it lowers the rate
    size_adjustment: Decimal
    raw_rate: Decimal
    perturbation: Decimal
    soft_cap: Optional[Decimal] = None
    final_rate: Decimal


class QuoteResponse(BaseModel):
    """Response for POST /v1/quote"""

    success: bool = True
    interest_rate: Decimal
    rate_in_basis_points: int
    risk_level: str
    monthly_payment: Decimal
    total_interest: Decimal
    breakdown: RateBreakdownSchema
    calculated_at: datetime

    @classmethod
    def from_quote(cls, quote: RateQuote, terms: LoanTerms, calculated_at: datetime) -> "QuoteResponse":
        b = quote.breakdown
        payment = rates.monthly_payment(terms.loan_amount, quote.final_rate, terms.term_months)
        interest = rates.total_interest(terms.loan_amount, quote.final_rate, terms.term_months)

        def r(value: Decimal) -> Decimal:
            return round_to(value, BREAKDOWN_PLACES)

        return cls(
            interest_rate=quote.final_rate,
            rate_in_basis_points=quote.rate_bps,
            risk_level=quote.risk_level,
            monthly_payment=r(payment),
            total_interest=r(interest),
            breakdown=RateBreakdownSchema(
                base_rate=r(b.base_rate),
                credit_risk=r(b.credit_risk),
                term_risk=r(b.term_risk),
                market_conditions=r(b.market_conditions),
                collateral_discount=r(-b.collateral_discount),
                size_adjustment=r(b.size_adjustment),
                raw_rate=r(quote.raw_rate),
                perturbation=r(quote.perturbation),
                soft_cap=quote.soft_cap,
                final_rate=quote.final_rate,
            ),
            calculated_at=calculated_at,
        )


class DepositSchema(BaseModel):
    asset_id: str = Field(..., min_length=1)
    asset_class: str = Field(..., min_length=1)
    amount: Decimal = Field(..., gt=0)

    def to_domain(self) -> CollateralDeposit:
        return CollateralDeposit(asset_id=self.asset_id, asset_class=self.asset_class, amount=self.amount)


class FundLoanRequest(BaseModel):
    """Request body for POST /v1/loans"""

    loan_id: str = Field(..., min_length=1, max_length=128)
    borrower_id: str = Field(..., min_length=1)
    loan_asset_id: str = Field(..., min_length=1, description="Token the loan is denominated in")
    terms: LoanTermsSchema
    rate_bps: int = Field(..., ge=0, description="Accepted quote in basis points")
    deposits: List[DepositSchema] = Field(..., min_length=1)


class TopUpRequest(BaseModel):
    deposits: List[DepositSchema] = Field(..., min_length=1)


class WithdrawRequest(BaseModel):
    asset_id: str = Field(..., min_length=1)
    amount: Decimal


class PaymentRequest(BaseModel):
    amount: Decimal


class DefaultCheckRequest(BaseModel):
    liquidation_eligible: bool


class PaymentSchema(BaseModel):
    amount: Decimal
    interest_portion: Decimal
    principal_portion: Decimal
    discount: Decimal
    paid_at: datetime


class LoanResponse(BaseModel):
    """Stored state of a loan after a lifecycle event"""

    loan_id: str
    borrower_id: str
    status: str
    rate_bps: int
    principal_remaining: Decimal
    interest_accrued: Decimal
    last_payment_date: datetime
    next_due_date: datetime
    maturity_date: datetime
    deposits: List[DepositSchema]
    payments: List[PaymentSchema]

    @classmethod
    def from_state(cls, state: LoanState) -> "LoanResponse":
        account = state.account
        return cls(
            loan_id=state.record.loan_id,
            borrower_id=state.record.borrower_id,
            status=account.status.value,
            rate_bps=state.record.rate_bps,
            principal_remaining=account.principal_remaining,
            interest_accrued=account.interest_accrued,
            last_payment_date=account.last_payment_date,
            next_due_date=account.next_due_date,
            maturity_date=account.maturity_date,
            deposits=[
                DepositSchema(asset_id=d.asset_id, asset_class=d.asset_class, amount=d.amount)
                for d in state.position.deposits
            ],
            payments=[
                PaymentSchema(
                    amount=p.amount,
                    interest_portion=p.interest_portion,
                    principal_portion=p.principal_portion,
                    discount=p.discount,
                    paid_at=p.paid_at,
                )
                for p in account.payments
            ],
        )


class RepaymentSchema(BaseModel):
    status: str
    principal_remaining: Decimal
    interest_accrued: Decimal
    total_owed: Decimal
    full_amount: Decimal
    minimum_payment: Decimal
    early_discount: Decimal
    is_overdue: bool
    days_overdue: int
    is_early_repayment: bool
    can_liquidate: bool
    last_payment_date: datetime
    next_due_date: datetime
    maturity_date: datetime

    @classmethod
    def from_info(cls, info: RepaymentInfo) -> "RepaymentSchema":
        return cls(
            status=info.status.value,
            principal_remaining=info.owed.principal_remaining,
            interest_accrued=info.owed.interest_accrued,
            total_owed=info.owed.total_owed,
            full_amount=info.plan.full_amount,
            minimum_payment=info.plan.minimum_payment,
            early_discount=info.plan.early_discount,
            is_overdue=info.overdue.overdue,
            days_overdue=info.overdue.days_overdue,
            is_early_repayment=info.is_early_repayment,
            can_liquidate=info.can_liquidate,
            last_payment_date=info.last_payment_date,
            next_due_date=info.next_due_date,
            maturity_date=info.maturity_date,
        )


class AssetValuationSchema(BaseModel):
    asset_id: str
    asset_class: str
    amount: Decimal
    price_usd: Optional[Decimal] = None
    value_usd: Decimal
    missing_reason: Optional[str] = None


class HealthSchema(BaseModel):
    collateral_value_usd: Decimal
    loan_value_usd: Decimal
    collateral_ratio: Decimal
    collateral_ratio_bps: int
    liquidation_threshold: Decimal
    health_factor: Decimal
    status: str
    utilization_pct: Decimal
    partial: bool
    missing_assets: List[str]
    assets: List[AssetValuationSchema]

    @classmethod
    def from_report(cls, report: HealthReport) -> "HealthSchema":
        return cls(
            collateral_value_usd=report.collateral_value_usd,
            loan_value_usd=report.loan_value_usd,
            collateral_ratio=report.ratio,
            collateral_ratio_bps=report.collateral_ratio_bps,
            liquidation_threshold=report.liquidation_threshold,
            health_factor=report.health_factor,
            status=report.status.value,
            utilization_pct=report.utilization_pct,
            partial=report.partial,
            missing_assets=list(report.missing_assets),
            assets=[
                AssetValuationSchema(
                    asset_id=a.asset_id,
                    asset_class=a.asset_class,
                    amount=a.amount,
                    price_usd=a.price_usd,
                    value_usd=a.value_usd,
                    missing_reason=a.missing_reason,
                )
                for a in report.assets
            ],
        )


class PositionResponse(BaseModel):
    """Response for GET /v1/loans/{loan_id}"""

    loan_id: str
    borrower_id: str
    loan_asset_id: str
    rate_bps: int
    repayment: RepaymentSchema
    health: Optional[HealthSchema] = None

    @classmethod
    def from_view(cls, view: PositionView) -> "PositionResponse":
        return cls(
            loan_id=view.loan.loan_id,
            borrower_id=view.loan.borrower_id,
            loan_asset_id=view.loan.loan_asset_id,
            rate_bps=view.loan.rate_bps,
            repayment=RepaymentSchema.from_info(view.repayment),
            health=HealthSchema.from_report(view.health) if view.health is not None else None,
        )
