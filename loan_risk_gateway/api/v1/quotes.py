"""POST /v1/quote - interest rate quote endpoint"""

import time
import logging
from fastapi import APIRouter, Depends, Request

from loan_risk_gateway.api.v1.schemas import QuoteRequest, QuoteResponse
from loan_risk_gateway.api.dependencies import (
    get_clock,
    get_config,
    get_perturbation_source,
    get_request_id,
    to_http_error,
)
from loan_risk_gateway.config import EngineConfig, settings
from loan_risk_gateway.domain import rates
from loan_risk_gateway.domain.exceptions import ValidationError
from loan_risk_gateway.domain.interfaces import Clock, PerturbationSource
from loan_risk_gateway.infrastructure.observability.logging import log_quote
from loan_risk_gateway.infrastructure.observability.metrics import record_quote

router = APIRouter()


@router.post("/quote", response_model=QuoteResponse)
def create_quote(
    request_body: QuoteRequest,
    request: Request,
    clock: Clock = Depends(get_clock),
    config: EngineConfig = Depends(get_config),
    perturbation: PerturbationSource = Depends(get_perturbation_source),
):
    """
    Quote an annual interest rate for proposed loan terms.

    The market snapshot defaults to the configured utilization and volatility
    when the request omits it. Quotes are not stored; the borrower submits the
    accepted basis points when the loan is funded.
    """
    start_time = time.perf_counter()
    request_id = get_request_id(request)

    try:
        market = request_body.market(settings.default_utilization_rate, settings.default_volatility_factor)
        terms = request_body.to_domain()
        quote = rates.quote(terms, market, config, perturbation=perturbation())
        response = QuoteResponse.from_quote(quote, terms, clock.now())
    except ValidationError as e:
        logging.warning(f"Rejected quote request: {e}", extra={"request_id": request_id})
        raise to_http_error(e)

    record_quote(quote)
    log_quote(request_id, quote, (time.perf_counter() - start_time) * 1000)

    return response


@router.get("/quote")
def quote_service_status(clock: Clock = Depends(get_clock)):
    """Liveness probe for quoting"""
    return {"message": "Interest rate quoting is running", "timestamp": clock.now().isoformat()}
