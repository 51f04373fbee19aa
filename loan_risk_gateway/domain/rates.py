"""Interest rate quoting - core pricing logic for proposed loans"""

from decimal import Decimal, localcontext
from typing import Optional

from loan_risk_gateway.config import EngineConfig, RateConfig
from loan_risk_gateway.domain.exceptions import ValidationError
from loan_risk_gateway.domain.models import LoanTerms, MarketState, RateBreakdown, RateQuote
from loan_risk_gateway.domain.numeric import (
    FINANCIAL_CONTEXT,
    ONE,
    ZERO,
    Number,
    clamp,
    percent_to_bps,
    round_percent,
    round_to,
    to_decimal,
)

MONTHS_PER_YEAR = Decimal(12)
MAX_PERTURBATION = Decimal("0.5")
# Components are fixed to this scale so their sum is exact under any context
COMPONENT_PLACES = 18


def validate_terms(terms: LoanTerms, config: EngineConfig) -> None:
    """
    Reject malformed loan terms.

    Raises:
        ValidationError: credit score outside 0-100, non-positive amount, term
            or collateral ratio, or unrecognized asset class
    """
    score = terms.credit_score
    if isinstance(score, bool) or not isinstance(score, int):
        raise ValidationError(f"credit_score must be an integer, got {score!r}")
    if not 0 <= score <= 100:
        raise ValidationError(f"credit_score must be between 0 and 100, got {score}")

    if to_decimal(terms.loan_amount, "loan_amount") <= 0:
        raise ValidationError(f"loan_amount must be positive, got {terms.loan_amount}")

    if isinstance(terms.term_months, bool) or not isinstance(terms.term_months, int):
        raise ValidationError(f"term_months must be an integer, got {terms.term_months!r}")
    if terms.term_months <= 0:
        raise ValidationError(f"term_months must be positive, got {terms.term_months}")

    if to_decimal(terms.collateral_ratio, "collateral_ratio") <= 0:
        raise ValidationError(f"collateral_ratio must be positive, got {terms.collateral_ratio}")

    config.asset_class(terms.asset_class)


def validate_market(market: MarketState) -> None:
    utilization = to_decimal(market.utilization_rate, "utilization_rate")
    if not ZERO <= utilization <= ONE:
        raise ValidationError(f"utilization_rate must be between 0 and 1, got {utilization}")
    if to_decimal(market.volatility_factor, "volatility_factor") < 0:
        raise ValidationError(f"volatility_factor must be non-negative, got {market.volatility_factor}")


def collateral_discount(ratio: Number, asset_class: str, config: EngineConfig) -> Decimal:
    """
    Tiered rate discount for collateral above the minimum ratio.

    Below the minimum there is no discount. At or above it the borrower gets
    half the collateral coefficient, plus a capped bonus proportional to the
    excess ratio. The result is divided by the asset class risk factor, so
    stable assets (factor < 1) earn a larger discount.
    """
    rates = config.rates
    ratio = to_decimal(ratio, "collateral_ratio")
    risk_factor = config.asset_class(asset_class).risk_factor

    if ratio < rates.min_collateral_ratio:
        return ZERO

    base = rates.collateral_coefficient * Decimal("0.5")
    excess = ratio - rates.min_collateral_ratio
    additional = min(rates.cap_additional, excess * rates.excess_multiplier)
    return (base + additional) / risk_factor


def size_adjustment(amount: Number, rates: RateConfig) -> Decimal:
    """Larger loans get a reduction, small ones a surcharge"""
    amount = to_decimal(amount, "loan_amount")
    for band in sorted(rates.size_bands, key=lambda b: b.min_amount, reverse=True):
        if amount >= band.min_amount:
            return band.adjustment
    return ZERO


def rate_breakdown(terms: LoanTerms, market: MarketState, config: EngineConfig) -> RateBreakdown:
    """Compute each additive rate component for the given terms"""
    rates = config.rates
    with localcontext(FINANCIAL_CONTEXT):
        normalized_score = min(Decimal(terms.credit_score) / 100, ONE)
        term_years = Decimal(terms.term_months) / MONTHS_PER_YEAR

        components = dict(
            base_rate=rates.base_rate,
            credit_risk=rates.credit_coefficient * (ONE - normalized_score),
            term_risk=rates.term_coefficient * (ONE + term_years).ln(),
            market_conditions=rates.market_coefficient * to_decimal(market.utilization_rate),
            collateral_discount=collateral_discount(terms.collateral_ratio, terms.asset_class, config),
            size_adjustment=size_adjustment(terms.loan_amount, rates),
        )
    return RateBreakdown(**{name: round_to(value, COMPONENT_PLACES) for name, value in components.items()})


def applicable_soft_cap(terms: LoanTerms, config: EngineConfig) -> Optional[Decimal]:
    """Lowest ceiling among the soft caps this borrower qualifies for"""
    stable = config.asset_class(terms.asset_class).stable
    ratio = to_decimal(terms.collateral_ratio)
    caps = [
        cap.max_rate
        for cap in config.rates.soft_caps
        if terms.credit_score >= cap.min_credit_score
        and ratio >= cap.min_collateral_ratio
        and (stable or not cap.stable_only)
    ]
    return min(caps) if caps else None


def classify_rate(rate: Decimal, rates: RateConfig) -> str:
    for level in rates.risk_levels:
        if level.max_rate is None or rate <= level.max_rate:
            return level.label
    return rates.risk_levels[-1].label


def quote(
    terms: LoanTerms,
    market: MarketState,
    config: EngineConfig,
    perturbation: Number = 0,
) -> RateQuote:
    """
    Quote an annual interest rate for the proposed terms.

    Pure function: the market jitter is passed in as `perturbation`, a unit
    draw in [-0.5, 0.5] that is scaled by the market volatility factor.

    Steps:
    1. Sum the breakdown components into the raw rate
    2. Add perturbation x volatility
    3. Apply any soft cap for strong profiles
    4. Clamp to [min_rate, max_rate]
    5. Round once to 2 places and encode as basis points

    Example (default config):
        score 80, amount 1000, 12 months, ratio 2.0, NATIVE, utilization 0.65
        8.0 + 3.0 + 1.386 + 3.25 - 4.5 + 0 = 11.136 -> 11.14% (1114 bps)
    """
    validate_terms(terms, config)
    validate_market(market)

    unit_draw = to_decimal(perturbation, "perturbation")
    if not -MAX_PERTURBATION <= unit_draw <= MAX_PERTURBATION:
        raise ValidationError(f"perturbation must be between -0.5 and 0.5, got {unit_draw}")

    rates = config.rates
    breakdown = rate_breakdown(terms, market, config)

    with localcontext(FINANCIAL_CONTEXT):
        raw_rate = breakdown.raw_rate
        jitter = unit_draw * to_decimal(market.volatility_factor)
        rate = raw_rate + jitter

        soft_cap = applicable_soft_cap(terms, config)
        if soft_cap is not None:
            rate = min(rate, soft_cap)

        final_rate = round_percent(clamp(rate, rates.min_rate, rates.max_rate))

    return RateQuote(
        breakdown=breakdown,
        raw_rate=raw_rate,
        perturbation=jitter,
        soft_cap=soft_cap,
        final_rate=final_rate,
        rate_bps=percent_to_bps(final_rate),
        risk_level=classify_rate(final_rate, rates),
    )


def monthly_payment(principal: Number, annual_rate_pct: Number, term_months: int) -> Decimal:
    """
    Level monthly payment that amortizes `principal` over `term_months`.

    Standard annuity formula; a zero rate splits the principal evenly.
    """
    if term_months <= 0:
        raise ValidationError(f"term_months must be positive, got {term_months}")
    principal = to_decimal(principal, "principal")
    monthly_rate = to_decimal(annual_rate_pct, "annual_rate") / 100 / MONTHS_PER_YEAR

    with localcontext(FINANCIAL_CONTEXT):
        if monthly_rate == 0:
            return principal / term_months
        growth = (ONE + monthly_rate) ** term_months
        return principal * monthly_rate * growth / (growth - ONE)


def total_interest(principal: Number, annual_rate_pct: Number, term_months: int) -> Decimal:
    """Interest paid over the full term of an amortizing loan"""
    with localcontext(FINANCIAL_CONTEXT):
        return monthly_payment(principal, annual_rate_pct, term_months) * term_months - to_decimal(principal)
