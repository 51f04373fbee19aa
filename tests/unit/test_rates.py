"""Unit tests for interest rate quoting"""

import pytest
from dataclasses import replace
from decimal import Context, Decimal, localcontext
from loan_risk_gateway.domain import rates
from loan_risk_gateway.domain.exceptions import ValidationError
from loan_risk_gateway.domain.models import LoanTerms, MarketState
from loan_risk_gateway.domain.numeric import round_percent, round_to
from loan_risk_gateway.domain.rates import COMPONENT_PLACES


@pytest.fixture
def native_terms() -> LoanTerms:
    return LoanTerms(
        credit_score=80,
        loan_amount=Decimal("1000"),
        term_months=12,
        collateral_ratio=Decimal("2.0"),
        asset_class="NATIVE",
    )


@pytest.fixture
def market() -> MarketState:
    return MarketState(utilization_rate=Decimal("0.65"))


def test_reference_quote(native_terms, market, config):
    """Test score 80, 1000 units, 12 months, 2.0x native collateral at 65% utilization"""
    quote = rates.quote(native_terms, market, config)

    assert quote.final_rate == Decimal("11.14")
    assert quote.rate_bps == 1114
    assert quote.risk_level == "medium"
    assert quote.soft_cap is None


def test_reference_breakdown(native_terms, market, config):
    """Test each rate component for the reference quote"""
    breakdown = rates.rate_breakdown(native_terms, market, config)

    assert breakdown.base_rate == Decimal("8.0")
    assert breakdown.credit_risk == Decimal("3.0")
    assert round_to(breakdown.term_risk, 4) == Decimal("1.3863")
    assert breakdown.market_conditions == Decimal("3.25")
    assert breakdown.collateral_discount == Decimal("4.5")
    assert breakdown.size_adjustment == Decimal("0")


def test_breakdown_reconciles_with_final_rate(native_terms, market, config):
    """Test final rate is the rounded sum of the breakdown when nothing clamps or caps"""
    quote = rates.quote(native_terms, market, config)
    b = quote.breakdown

    total = b.base_rate + b.credit_risk + b.term_risk + b.market_conditions - b.collateral_discount + b.size_adjustment
    assert quote.raw_rate == total
    assert quote.final_rate == round_percent(total)


def test_breakdown_sum_is_exact_under_default_precision(native_terms, market, config):
    """Test components add up to the raw rate even at 28 significant digits"""
    quote = rates.quote(native_terms, market, config)
    b = quote.breakdown
    components = [b.base_rate, b.credit_risk, b.term_risk, b.market_conditions, b.collateral_discount, b.size_adjustment]

    assert all(c.as_tuple().exponent >= -COMPONENT_PLACES for c in components)
    with localcontext(Context(prec=28)):
        total = b.base_rate + b.credit_risk + b.term_risk + b.market_conditions - b.collateral_discount + b.size_adjustment
    assert quote.raw_rate == total


def test_quote_is_deterministic(native_terms, market, config):
    assert rates.quote(native_terms, market, config) == rates.quote(native_terms, market, config)


def test_perturbation_scales_with_volatility(native_terms, config):
    """Test unit draw 0.5 at volatility 0.02 adds 0.01 percentage points"""
    market = MarketState(utilization_rate=Decimal("0.65"), volatility_factor=Decimal("0.02"))

    quote = rates.quote(native_terms, market, config, perturbation=0.5)

    assert quote.perturbation == Decimal("0.010")
    assert quote.final_rate == Decimal("11.15")


def test_perturbation_ignored_without_volatility(native_terms, market, config):
    quote = rates.quote(native_terms, market, config, perturbation=-0.5)
    assert quote.final_rate == Decimal("11.14")


@pytest.mark.parametrize("draw", [0.6, -0.51])
def test_perturbation_out_of_range_rejected(native_terms, market, config, draw):
    with pytest.raises(ValidationError, match="perturbation"):
        rates.quote(native_terms, market, config, perturbation=draw)


def test_rate_clamped_to_minimum(config):
    """Test an excellent profile with a large raw discount never quotes below 2%"""
    terms = LoanTerms(
        credit_score=100,
        loan_amount=Decimal("20000"),
        term_months=1,
        collateral_ratio=Decimal("3.0"),
        asset_class="USDC",
    )
    quote = rates.quote(terms, MarketState(utilization_rate=Decimal("0")), config)

    assert quote.raw_rate < Decimal("2")
    assert quote.final_rate == Decimal("2.00")
    assert quote.rate_bps == 200
    assert quote.risk_level == "low"


def test_rate_clamped_to_maximum(config):
    """Test a poor profile in a volatile market never quotes above 50%"""
    terms = LoanTerms(
        credit_score=0,
        loan_amount=Decimal("100"),
        term_months=360,
        collateral_ratio=Decimal("1.0"),
        asset_class="CELO",
    )
    market = MarketState(utilization_rate=Decimal("1"), volatility_factor=Decimal("40"))

    quote = rates.quote(terms, market, config, perturbation=0.5)

    assert quote.final_rate == Decimal("50.00")
    assert quote.rate_bps == 5000
    assert quote.risk_level == "very_high"


def test_stable_collateral_soft_cap(config):
    """Test strong borrowers on stable collateral are capped at 12%"""
    terms = LoanTerms(
        credit_score=80,
        loan_amount=Decimal("1000"),
        term_months=12,
        collateral_ratio=Decimal("1.5"),
        asset_class="cUSD",
    )
    quote = rates.quote(terms, MarketState(utilization_rate=Decimal("1")), config)

    assert quote.raw_rate > Decimal("12")
    assert quote.soft_cap == Decimal("12.0")
    assert quote.final_rate == Decimal("12.00")


def test_soft_cap_skipped_for_volatile_collateral(config):
    """Test the same profile on CELO collateral is not capped"""
    terms = LoanTerms(
        credit_score=80,
        loan_amount=Decimal("1000"),
        term_months=12,
        collateral_ratio=Decimal("1.5"),
        asset_class="CELO",
    )
    quote = rates.quote(terms, MarketState(utilization_rate=Decimal("1")), config)

    assert quote.soft_cap is None
    assert quote.final_rate == Decimal("15.89")
    assert quote.risk_level == "high"


def test_excellent_credit_soft_cap(config):
    """Test score >= 90 with 2x collateral is capped at 9% on any asset"""
    terms = LoanTerms(
        credit_score=95,
        loan_amount=Decimal("1000"),
        term_months=12,
        collateral_ratio=Decimal("2.0"),
        asset_class="CELO",
    )
    quote = rates.quote(terms, MarketState(utilization_rate=Decimal("1")), config)

    assert quote.soft_cap == Decimal("9.0")
    assert quote.final_rate == Decimal("9.00")


def test_no_collateral_discount_below_minimum_ratio(config):
    assert rates.collateral_discount(Decimal("1.49"), "CELO", config) == Decimal("0")


def test_collateral_discount_tiers(config):
    """Test base discount at the minimum ratio, then a capped bonus for the excess"""
    assert rates.collateral_discount(Decimal("1.5"), "CELO", config) == Decimal("1.5")
    assert rates.collateral_discount(Decimal("1.6"), "CELO", config) == Decimal("2.1")
    assert rates.collateral_discount(Decimal("2.0"), "CELO", config) == Decimal("4.5")
    assert rates.collateral_discount(Decimal("5.0"), "CELO", config) == Decimal("4.5")


def test_collateral_discount_is_monotonic(config):
    ratios = [Decimal(r) / 10 for r in range(10, 40)]
    discounts = [rates.collateral_discount(r, "CELO", config) for r in ratios]
    assert discounts == sorted(discounts)


def test_stable_collateral_earns_larger_discount(config):
    """Test the discount is divided by the asset class risk factor"""
    assert rates.collateral_discount(Decimal("2.0"), "cUSD", config) == Decimal("5.625")


@pytest.mark.parametrize(
    "amount,expected",
    [
        (Decimal("500"), Decimal("0.25")),
        (Decimal("1000"), Decimal("0")),
        (Decimal("5000"), Decimal("-0.5")),
        (Decimal("20000"), Decimal("-0.75")),
    ],
)
def test_size_adjustment_bands(config, amount, expected):
    assert rates.size_adjustment(amount, config.rates) == expected


@pytest.mark.parametrize(
    "changes",
    [
        {"credit_score": 101},
        {"credit_score": -1},
        {"loan_amount": Decimal("0")},
        {"term_months": 0},
        {"collateral_ratio": Decimal("0")},
        {"asset_class": "DOGE"},
    ],
)
def test_invalid_terms_rejected(native_terms, market, config, changes):
    with pytest.raises(ValidationError):
        rates.quote(replace(native_terms, **changes), market, config)


@pytest.mark.parametrize(
    "market",
    [
        MarketState(utilization_rate=Decimal("1.5")),
        MarketState(utilization_rate=Decimal("-0.1")),
        MarketState(utilization_rate=Decimal("0.5"), volatility_factor=Decimal("-1")),
    ],
)
def test_invalid_market_rejected(native_terms, config, market):
    with pytest.raises(ValidationError):
        rates.quote(native_terms, market, config)


@pytest.mark.parametrize(
    "rate,label",
    [
        (Decimal("8"), "low"),
        (Decimal("8.01"), "medium"),
        (Decimal("25"), "high"),
        (Decimal("25.01"), "very_high"),
    ],
)
def test_classify_rate(config, rate, label):
    assert rates.classify_rate(rate, config.rates) == label


def test_monthly_payment():
    """Test annuity payment for 1000 at 12% over 12 months"""
    assert round_to(rates.monthly_payment(Decimal("1000"), Decimal("12"), 12), 2) == Decimal("88.85")
    assert round_to(rates.total_interest(Decimal("1000"), Decimal("12"), 12), 2) == Decimal("66.19")


def test_monthly_payment_at_zero_rate():
    assert rates.monthly_payment(Decimal("1200"), Decimal("0"), 12) == Decimal("100")
