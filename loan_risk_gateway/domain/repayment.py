"""Repayment accrual engine - interest, due dates and payment application for funded loans"""

from dataclasses import replace
from datetime import datetime, timedelta
from decimal import Decimal, localcontext

from loan_risk_gateway.config import EngineConfig, RepaymentConfig
from loan_risk_gateway.domain.exceptions import OverpaymentError, TerminalAccountError, ValidationError
from loan_risk_gateway.domain.models import (
    OverdueStatus,
    OwedProjection,
    PaymentRecord,
    RepaymentAccount,
    RepaymentInfo,
    RepaymentPlan,
    RepaymentStatus,
)
from loan_risk_gateway.domain.numeric import (
    BPS_PER_UNIT,
    FINANCIAL_CONTEXT,
    ZERO,
    Number,
    round_amount,
    to_decimal,
)
from loan_risk_gateway.utils.date_utils import SECONDS_PER_DAY, add_months, elapsed_seconds, ensure_utc, whole_days


def _to_amount(value: Number, field: str, repayment: RepaymentConfig) -> Decimal:
    amount = to_decimal(value, field)
    if round_amount(amount, repayment.token_decimals) != amount:
        raise ValidationError(f"{field} {amount} has more than {repayment.token_decimals} decimal places")
    return amount


def open_account(
    loan_id: str,
    principal: Number,
    rate_bps: int,
    funded_at: datetime,
    term_months: int,
    config: EngineConfig,
) -> RepaymentAccount:
    """
    Create the repayment account for a newly funded loan.

    Principal remaining starts at the funded amount with no accrued interest;
    the first payment is due one payment interval after funding.
    """
    repayment = config.repayment
    principal = _to_amount(principal, "principal", repayment)
    if principal <= 0:
        raise ValidationError(f"principal must be positive, got {principal}")
    if isinstance(rate_bps, bool) or not isinstance(rate_bps, int) or rate_bps < 0:
        raise ValidationError(f"rate_bps must be a non-negative integer, got {rate_bps!r}")
    if term_months <= 0:
        raise ValidationError(f"term_months must be positive, got {term_months}")

    funded_at = ensure_utc(funded_at)
    return RepaymentAccount(
        loan_id=loan_id,
        principal_remaining=principal,
        interest_accrued=ZERO,
        rate_bps=rate_bps,
        funded_at=funded_at,
        maturity_date=add_months(funded_at, term_months),
        last_payment_date=funded_at,
        next_due_date=funded_at + timedelta(days=repayment.payment_interval_days),
    )


def project_owed(account: RepaymentAccount, now: datetime, config: EngineConfig) -> OwedProjection:
    """
    Project what is owed at `now` without touching stored state.

    Simple interest accrues linearly on the remaining principal since the last
    payment:
        interest = stored + principal x rate x elapsed_seconds / seconds_per_year
    A paid-off account owes nothing.
    """
    if account.status is RepaymentStatus.PAID_OFF:
        return OwedProjection(principal_remaining=ZERO, interest_accrued=ZERO, total_owed=ZERO)

    repayment = config.repayment
    elapsed = elapsed_seconds(account.last_payment_date, now)
    with localcontext(FINANCIAL_CONTEXT):
        accrued = (
            account.principal_remaining
            * Decimal(account.rate_bps)
            / BPS_PER_UNIT
            * Decimal(elapsed)
            / Decimal(repayment.seconds_per_year)
        )
        interest = account.interest_accrued + round_amount(accrued, repayment.token_decimals)
        return OwedProjection(
            principal_remaining=account.principal_remaining,
            interest_accrued=interest,
            total_owed=account.principal_remaining + interest,
        )


def is_overdue(account: RepaymentAccount, now: datetime) -> OverdueStatus:
    """Overdue once `now` passes the next due date; days are floored"""
    if account.status is RepaymentStatus.PAID_OFF:
        return OverdueStatus(overdue=False, days_overdue=0)

    overdue = ensure_utc(now) > ensure_utc(account.next_due_date)
    days = whole_days(elapsed_seconds(account.next_due_date, now)) if overdue else 0
    return OverdueStatus(overdue=overdue, days_overdue=days)


def is_early_repayment(account: RepaymentAccount, now: datetime) -> bool:
    return (
        account.status is RepaymentStatus.ACTIVE
        and ensure_utc(now) < ensure_utc(account.maturity_date)
        and not is_overdue(account, now).overdue
    )


def compute_repayment_plan(account: RepaymentAccount, now: datetime, config: EngineConfig) -> RepaymentPlan:
    """
    Payment amounts available at `now`.

    - early_discount: total owed x early_discount_rate, only before maturity
      and while not overdue
    - full_amount: total owed less the early discount
    - minimum_payment: accrued interest plus a fixed fraction of principal,
      never more than the total owed
    """
    repayment = config.repayment
    owed = project_owed(account, now, config)

    with localcontext(FINANCIAL_CONTEXT):
        if is_early_repayment(account, now):
            discount = round_amount(owed.total_owed * repayment.early_discount_rate, repayment.token_decimals)
        else:
            discount = ZERO

        minimum = owed.interest_accrued + round_amount(
            owed.principal_remaining * repayment.minimum_principal_fraction, repayment.token_decimals
        )
        return RepaymentPlan(
            full_amount=owed.total_owed - discount,
            minimum_payment=min(minimum, owed.total_owed),
            early_discount=discount,
        )


def _check_payable(account: RepaymentAccount, now: datetime) -> None:
    if account.status is RepaymentStatus.DEFAULTED:
        raise TerminalAccountError(
            f"Loan {account.loan_id} is defaulted; payments go through the recovery process"
        )
    if account.status is RepaymentStatus.PAID_OFF:
        raise TerminalAccountError(f"Loan {account.loan_id} is already paid off")
    if ensure_utc(now) < ensure_utc(account.last_payment_date):
        raise ValidationError(
            f"Payment time {now.isoformat()} precedes last payment {account.last_payment_date.isoformat()}"
        )


def apply_payment(account: RepaymentAccount, amount: Number, now: datetime, config: EngineConfig) -> RepaymentAccount:
    """
    Apply a payment, interest first, then principal.

    Payments of at least the minimum payment (or paying off the loan) push the
    next due date one payment interval past `now`; smaller payments are
    accepted but leave the due date in place.

    Raises:
        ValidationError: amount is not positive
        TerminalAccountError: account is paid off or defaulted
        OverpaymentError: amount exceeds total owed
    """
    repayment = config.repayment
    amount = to_decimal(amount, "amount")
    if amount <= 0:
        raise ValidationError(f"Payment amount must be positive, got {amount}")
    _check_payable(account, now)

    owed = project_owed(account, now, config)
    if amount > owed.total_owed:
        with localcontext(FINANCIAL_CONTEXT):
            excess = amount - owed.total_owed
        raise OverpaymentError(f"Payment of {amount} exceeds total owed {owed.total_owed} by {excess}")
    # only amounts within what is owed reach the scale check
    amount = _to_amount(amount, "amount", repayment)

    minimum = compute_repayment_plan(account, now, config).minimum_payment
    now = ensure_utc(now)

    with localcontext(FINANCIAL_CONTEXT):
        interest_portion = min(amount, owed.interest_accrued)
        principal_portion = amount - interest_portion
        principal_remaining = owed.principal_remaining - principal_portion
        interest_remaining = owed.interest_accrued - interest_portion

    next_due = account.next_due_date
    if amount >= minimum or principal_remaining == 0:
        next_due = now + timedelta(days=repayment.payment_interval_days)

    return replace(
        account,
        principal_remaining=principal_remaining,
        interest_accrued=interest_remaining,
        last_payment_date=now,
        next_due_date=next_due,
        status=RepaymentStatus.PAID_OFF if principal_remaining == 0 else RepaymentStatus.ACTIVE,
        payments=account.payments
        + (
            PaymentRecord(
                amount=amount,
                interest_portion=interest_portion,
                principal_portion=principal_portion,
                paid_at=now,
            ),
        ),
    )


def settle_in_full(account: RepaymentAccount, now: datetime, config: EngineConfig) -> RepaymentAccount:
    """
    Pay off the loan for the full amount, early discount included when eligible.

    The discount is forgiven from principal after interest has been covered.
    """
    _check_payable(account, now)
    plan = compute_repayment_plan(account, now, config)
    owed = project_owed(account, now, config)
    now = ensure_utc(now)

    with localcontext(FINANCIAL_CONTEXT):
        interest_portion = min(plan.full_amount, owed.interest_accrued)
        principal_portion = plan.full_amount - interest_portion

    return replace(
        account,
        principal_remaining=ZERO,
        interest_accrued=ZERO,
        last_payment_date=now,
        next_due_date=now,
        status=RepaymentStatus.PAID_OFF,
        payments=account.payments
        + (
            PaymentRecord(
                amount=plan.full_amount,
                interest_portion=interest_portion,
                principal_portion=principal_portion,
                paid_at=now,
                discount=plan.early_discount,
            ),
        ),
    )


def evaluate_default(
    account: RepaymentAccount,
    now: datetime,
    liquidation_eligible: bool,
    config: EngineConfig,
) -> RepaymentAccount:
    """
    Move an Active account to Defaulted once it has been overdue for longer
    than `max_overdue_days` and liquidation has been confirmed eligible.

    A Defaulted account is returned unchanged.

    Raises:
        TerminalAccountError: account is paid off
    """
    if account.status is RepaymentStatus.PAID_OFF:
        raise TerminalAccountError(f"Loan {account.loan_id} is paid off and cannot default")
    if account.status is RepaymentStatus.DEFAULTED:
        return account

    overdue_seconds = elapsed_seconds(account.next_due_date, now)
    if liquidation_eligible and overdue_seconds > config.repayment.max_overdue_days * SECONDS_PER_DAY:
        return replace(account, status=RepaymentStatus.DEFAULTED)
    return account


def repayment_info(account: RepaymentAccount, now: datetime, config: EngineConfig) -> RepaymentInfo:
    """Combined read model of owed amounts, plan and overdue state"""
    return RepaymentInfo(
        loan_id=account.loan_id,
        owed=project_owed(account, now, config),
        plan=compute_repayment_plan(account, now, config),
        overdue=is_overdue(account, now),
        status=account.status,
        last_payment_date=account.last_payment_date,
        next_due_date=account.next_due_date,
        maturity_date=account.maturity_date,
        is_early_repayment=is_early_repayment(account, now),
        can_liquidate=account.status is RepaymentStatus.DEFAULTED,
    )
