"""Collateral health engine - values deposits against a loan and classifies risk"""

import logging
from collections import defaultdict
from datetime import datetime
from decimal import Decimal, localcontext
from typing import Dict, Iterable, List, Optional, Tuple

from loan_risk_gateway.config import EngineConfig, HealthConfig
from loan_risk_gateway.domain.exceptions import (
    CollateralWithdrawalError,
    PriceUnavailableError,
    ValidationError,
    ZeroLoanValueError,
)
from loan_risk_gateway.domain.interfaces import PriceLookup
from loan_risk_gateway.domain.models import (
    AssetValuation,
    CollateralDeposit,
    CollateralPosition,
    HealthReport,
    HealthStatus,
    PricePoint,
)
from loan_risk_gateway.domain.numeric import (
    FINANCIAL_CONTEXT,
    ZERO,
    Number,
    ratio_to_bps,
    round_amount,
    round_percent,
    round_to,
    to_decimal,
)
from loan_risk_gateway.utils.date_utils import ensure_utc

logger = logging.getLogger(__name__)

RATIO_PLACES = 4  # one basis point of a unit ratio


def validate_deposit(deposit: CollateralDeposit, config: EngineConfig) -> None:
    if not deposit.asset_id:
        raise ValidationError("asset_id must not be empty")
    config.asset_class(deposit.asset_class)
    if to_decimal(deposit.amount, "amount") <= 0:
        raise ValidationError(f"Deposit of {deposit.asset_id} must be positive, got {deposit.amount}")


def aggregate_deposits(deposits: Iterable[CollateralDeposit]) -> Dict[str, Tuple[str, Decimal]]:
    """
    Sum deposits by asset id.

    Repeated deposits of the same asset are additive. Returns
    {asset_id: (asset_class, total_amount)}.
    """
    totals: Dict[str, Decimal] = defaultdict(lambda: ZERO)
    classes: Dict[str, str] = {}
    with localcontext(FINANCIAL_CONTEXT):
        for deposit in deposits:
            known_class = classes.setdefault(deposit.asset_id, deposit.asset_class)
            if known_class != deposit.asset_class:
                raise ValidationError(
                    f"Asset {deposit.asset_id} deposited as both {known_class} and {deposit.asset_class}"
                )
            totals[deposit.asset_id] += to_decimal(deposit.amount, "amount")
    return {asset_id: (classes[asset_id], totals[asset_id]) for asset_id in sorted(totals)}


def add_deposits(
    position: CollateralPosition,
    deposits: Iterable[CollateralDeposit],
    config: EngineConfig,
) -> CollateralPosition:
    """Top up a position; new deposits never replace existing ones"""
    deposits = tuple(deposits)
    if not deposits:
        raise ValidationError("At least one deposit is required")
    for deposit in deposits:
        validate_deposit(deposit, config)
    combined = position.deposits + deposits
    aggregate_deposits(combined)  # rejects conflicting asset classes
    return CollateralPosition(loan_id=position.loan_id, deposits=combined)


def remove_collateral(position: CollateralPosition, asset_id: str, amount: Number) -> CollateralPosition:
    """Withdraw `amount` of one asset, collapsing its deposits into the remainder"""
    amount = to_decimal(amount, "amount")
    if amount <= 0:
        raise ValidationError(f"Withdrawal amount must be positive, got {amount}")

    holdings = aggregate_deposits(position.deposits)
    if asset_id not in holdings:
        raise CollateralWithdrawalError(f"No {asset_id} deposited for loan {position.loan_id}")

    asset_class, held = holdings[asset_id]
    if amount > held:
        raise CollateralWithdrawalError(
            f"Withdrawal of {amount} {asset_id} exceeds deposited {held} by {amount - held}"
        )

    kept = tuple(d for d in position.deposits if d.asset_id != asset_id)
    with localcontext(FINANCIAL_CONTEXT):
        remaining = held - amount
    if remaining > 0:
        kept += (CollateralDeposit(asset_id=asset_id, asset_class=asset_class, amount=remaining),)
    return CollateralPosition(loan_id=position.loan_id, deposits=kept)


def resolve_price(
    asset_id: str,
    prices: PriceLookup,
    now: Optional[datetime],
    max_age_seconds: Optional[int],
) -> Tuple[Optional[Decimal], Optional[str]]:
    """Return (price, None) or (None, reason) for an unusable price"""
    try:
        point: Optional[PricePoint] = prices.get_unit_price_usd(asset_id)
    except PriceUnavailableError as e:
        return None, e.reason

    if point is None:
        return None, "missing"

    try:
        price = to_decimal(point.price_usd, "price_usd")
    except ValidationError:
        return None, "invalid"
    if price < 0:
        return None, "invalid"

    if now is not None and max_age_seconds is not None and point.as_of is not None:
        age = (ensure_utc(now) - ensure_utc(point.as_of)).total_seconds()
        if age > max_age_seconds:
            return None, "stale"

    return price, None


def classify_health(health_factor: Decimal, health: HealthConfig) -> HealthStatus:
    """
    Map a health factor to a display band.

    Bands (defaults):
    - >= 2.0: excellent
    - >= 1.5: good
    - >= 1.2: warning
    - below:  danger
    """
    if health_factor >= health.excellent:
        return HealthStatus.EXCELLENT
    elif health_factor >= health.good:
        return HealthStatus.GOOD
    elif health_factor >= health.warning:
        return HealthStatus.WARNING
    else:
        return HealthStatus.DANGER


def evaluate(
    position: CollateralPosition,
    loan_value: Number,
    prices: PriceLookup,
    config: EngineConfig,
    now: Optional[datetime] = None,
) -> HealthReport:
    """
    Value a collateral position against a loan and classify its health.

    Prices are looked up on every call, never cached. An asset whose price is
    missing, stale (older than `max_price_age_seconds` at `now`) or invalid
    contributes zero and the report is flagged partial; this never raises.

    The liquidation threshold is the value-weighted average of the held asset
    classes' thresholds, falling back to the configured default when nothing
    has a usable price.

    Raises:
        ZeroLoanValueError: loan value is zero
        ValidationError: loan value is negative
    """
    loan_value = to_decimal(loan_value, "loan_value")
    if loan_value == 0:
        raise ZeroLoanValueError(f"Cannot compute collateral ratio for loan {position.loan_id} with zero value")
    if loan_value < 0:
        raise ValidationError(f"loan_value must be positive, got {loan_value}")

    health = config.health
    valuations: List[AssetValuation] = []
    missing: List[str] = []

    with localcontext(FINANCIAL_CONTEXT):
        collateral_value = ZERO
        weighted_threshold = ZERO

        for asset_id, (asset_class, amount) in aggregate_deposits(position.deposits).items():
            price, reason = resolve_price(asset_id, prices, now, health.max_price_age_seconds)
            if reason is not None:
                logger.warning(
                    "Collateral price unavailable",
                    extra={"loan_id": position.loan_id, "asset_id": asset_id, "reason": reason},
                )
                missing.append(asset_id)
                value = ZERO
            else:
                value = amount * price

            collateral_value += value
            weighted_threshold += value * config.asset_class(asset_class).liquidation_threshold
            valuations.append(
                AssetValuation(
                    asset_id=asset_id,
                    asset_class=asset_class,
                    amount=amount,
                    price_usd=price,
                    value_usd=round_amount(value),
                    missing_reason=reason,
                )
            )

        if collateral_value > 0:
            threshold = weighted_threshold / collateral_value
        else:
            threshold = health.default_liquidation_threshold

        ratio = collateral_value / loan_value
        health_factor = round_to(ratio / threshold, RATIO_PLACES)
        if collateral_value > 0:
            utilization = min(Decimal(100), loan_value / collateral_value * 100)
        else:
            utilization = Decimal(100)

        reported_ratio = round_to(ratio, RATIO_PLACES)
        return HealthReport(
            collateral_value_usd=round_amount(collateral_value),
            loan_value_usd=round_amount(loan_value),
            ratio=reported_ratio,
            collateral_ratio_bps=ratio_to_bps(reported_ratio),
            liquidation_threshold=round_to(threshold, RATIO_PLACES),
            health_factor=health_factor,
            status=classify_health(health_factor, health),
            utilization_pct=round_percent(utilization),
            assets=tuple(valuations),
            partial=bool(missing),
            missing_assets=tuple(missing),
        )
