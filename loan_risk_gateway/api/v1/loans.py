"""Loan lifecycle endpoints: funding, collateral, payments and position"""

import logging
from fastapi import APIRouter, BackgroundTasks, Depends, Request
from sqlalchemy.orm import Session

from loan_risk_gateway.api.v1.schemas import (
    DefaultCheckRequest,
    FundLoanRequest,
    LoanResponse,
    PaymentRequest,
    PositionResponse,
    TopUpRequest,
    WithdrawRequest,
)
from loan_risk_gateway.api.dependencies import (
    get_loan_book,
    get_price_client,
    get_request_id,
    get_settlement_client,
    to_http_error,
)
from loan_risk_gateway.domain.exceptions import DomainException
from loan_risk_gateway.domain.lifecycle import LoanBook
from loan_risk_gateway.domain.models import LoanState, RepaymentStatus
from loan_risk_gateway.infrastructure.clients.prices import PriceClient
from loan_risk_gateway.infrastructure.clients.settlement import (
    SettlementClient,
    loan_funded_event,
    payment_applied_event,
)
from loan_risk_gateway.infrastructure.database.session import get_db
from loan_risk_gateway.infrastructure.observability.logging import log_health, log_loan_event
from loan_risk_gateway.infrastructure.observability.metrics import loan_event_counter, payment_counter, record_health

router = APIRouter()


def _fail(db: Session, request_id: str, event: str, error: DomainException):
    db.rollback()
    logging.warning(f"{event} rejected: {error}", extra={"request_id": request_id, "step": event})
    return to_http_error(error)


def _commit(db: Session, request_id: str, event: str, state: LoanState) -> LoanResponse:
    db.commit()
    loan_event_counter.labels(event=event).inc()
    log_loan_event(request_id, event, state)
    return LoanResponse.from_state(state)


@router.post("/loans", response_model=LoanResponse, status_code=201)
def fund_loan(
    request_body: FundLoanRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    book: LoanBook = Depends(get_loan_book),
    settlement: SettlementClient = Depends(get_settlement_client),
):
    """
    Record a funded loan at its accepted rate.

    Flow:
    1. Validate terms, rate bounds and collateral
    2. Open the repayment account and collateral position
    3. Persist, then notify settlement in the background
    """
    request_id = get_request_id(request)
    try:
        state = book.fund(
            loan_id=request_body.loan_id,
            borrower_id=request_body.borrower_id,
            terms=request_body.terms.to_domain(),
            rate_bps=request_body.rate_bps,
            loan_asset_id=request_body.loan_asset_id,
            deposits=[d.to_domain() for d in request_body.deposits],
        )
    except DomainException as e:
        raise _fail(db, request_id, "funded", e)

    response = _commit(db, request_id, "funded", state)
    background_tasks.add_task(
        settlement.send_event, loan_funded_event(state, book.config.repayment.token_decimals)
    )
    return response


@router.get("/loans/{loan_id}", response_model=PositionResponse)
async def get_position(
    loan_id: str,
    request: Request,
    book: LoanBook = Depends(get_loan_book),
    price_client: PriceClient = Depends(get_price_client),
):
    """
    Current repayment state and collateral health.

    Prices are fetched once for every asset the loan touches and reused for
    the whole evaluation.
    """
    request_id = get_request_id(request)
    try:
        prices = await price_client.fetch_prices(book.priced_assets(loan_id))
        view = book.position(loan_id, prices)
    except DomainException as e:
        logging.warning(f"Position lookup failed: {e}", extra={"request_id": request_id, "loan_id": loan_id})
        raise to_http_error(e)

    if view.health is not None:
        record_health(view.health)
        log_health(request_id, loan_id, view.health)
    return PositionResponse.from_view(view)


@router.post("/loans/{loan_id}/collateral", response_model=LoanResponse)
def top_up_collateral(
    loan_id: str,
    request_body: TopUpRequest,
    request: Request,
    db: Session = Depends(get_db),
    book: LoanBook = Depends(get_loan_book),
):
    """Add collateral; repeated deposits of an asset accumulate"""
    request_id = get_request_id(request)
    try:
        state = book.top_up(loan_id, [d.to_domain() for d in request_body.deposits])
    except DomainException as e:
        raise _fail(db, request_id, "top_up", e)
    return _commit(db, request_id, "top_up", state)


@router.post("/loans/{loan_id}/collateral/withdraw", response_model=LoanResponse)
async def withdraw_collateral(
    loan_id: str,
    request_body: WithdrawRequest,
    request: Request,
    db: Session = Depends(get_db),
    book: LoanBook = Depends(get_loan_book),
    price_client: PriceClient = Depends(get_price_client),
):
    """Withdraw collateral as long as the minimum collateral ratio still holds"""
    request_id = get_request_id(request)
    try:
        prices = await price_client.fetch_prices(book.priced_assets(loan_id))
        state = book.withdraw(loan_id, request_body.asset_id, request_body.amount, prices)
    except DomainException as e:
        raise _fail(db, request_id, "withdraw", e)
    return _commit(db, request_id, "withdraw", state)


@router.post("/loans/{loan_id}/payments", response_model=LoanResponse)
def make_payment(
    loan_id: str,
    request_body: PaymentRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    book: LoanBook = Depends(get_loan_book),
    settlement: SettlementClient = Depends(get_settlement_client),
):
    """Apply a payment to interest first, then principal; overpayment is rejected"""
    request_id = get_request_id(request)
    try:
        state = book.pay(loan_id, request_body.amount)
    except DomainException as e:
        payment_counter.labels(outcome="rejected").inc()
        raise _fail(db, request_id, "payment", e)

    return _after_payment(db, request_id, "payment", state, book, background_tasks, settlement)


@router.post("/loans/{loan_id}/settle", response_model=LoanResponse)
def settle_loan(
    loan_id: str,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    book: LoanBook = Depends(get_loan_book),
    settlement: SettlementClient = Depends(get_settlement_client),
):
    """Pay off in full, with the early repayment discount when eligible"""
    request_id = get_request_id(request)
    try:
        state = book.settle(loan_id)
    except DomainException as e:
        raise _fail(db, request_id, "settle", e)

    return _after_payment(db, request_id, "settle", state, book, background_tasks, settlement)


@router.post("/loans/{loan_id}/default-check", response_model=LoanResponse)
def check_default(
    loan_id: str,
    request_body: DefaultCheckRequest,
    request: Request,
    db: Session = Depends(get_db),
    book: LoanBook = Depends(get_loan_book),
):
    """Mark the loan defaulted if overdue past the limit and liquidation is eligible"""
    request_id = get_request_id(request)
    try:
        state = book.check_default(loan_id, request_body.liquidation_eligible)
    except DomainException as e:
        raise _fail(db, request_id, "default_check", e)
    return _commit(db, request_id, "default_check", state)


def _after_payment(
    db: Session,
    request_id: str,
    event: str,
    state: LoanState,
    book: LoanBook,
    background_tasks: BackgroundTasks,
    settlement: SettlementClient,
) -> LoanResponse:
    response = _commit(db, request_id, event, state)
    paid_off = state.account.status is RepaymentStatus.PAID_OFF
    payment_counter.labels(outcome="paid_off" if paid_off else "applied").inc()
    background_tasks.add_task(
        settlement.send_event,
        payment_applied_event(state, state.account.payments[-1], book.config.repayment.token_decimals),
    )
    return response
