"""Dependency injection for FastAPI endpoints"""

from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session
from loan_risk_gateway.config import EngineConfig, get_engine_config, settings
from loan_risk_gateway.domain.exceptions import (
    DataQualityError,
    DomainException,
    LoanNotFoundError,
    StateError,
    ValidationError,
)
from loan_risk_gateway.domain.interfaces import Clock, PerturbationSource, SystemClock, random_perturbation
from loan_risk_gateway.domain.lifecycle import LoanBook
from loan_risk_gateway.infrastructure.clients.prices import PriceClient
from loan_risk_gateway.infrastructure.clients.settlement import SettlementClient
from loan_risk_gateway.infrastructure.database.repositories import SqlLoanRepository
from loan_risk_gateway.infrastructure.database.session import get_db

# Seeded once per process when PERTURBATION_SEED is set
_perturbation = random_perturbation(settings.perturbation_seed)


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_clock() -> Clock:
    return SystemClock()


def get_perturbation_source() -> PerturbationSource:
    return _perturbation


def get_config() -> EngineConfig:
    return get_engine_config()


def get_price_client() -> PriceClient:
    """Provide price service client instance"""
    return PriceClient()


def get_settlement_client() -> SettlementClient:
    """Provide settlement webhook client instance"""
    return SettlementClient()


def get_loan_book(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    config: EngineConfig = Depends(get_config),
) -> LoanBook:
    return LoanBook(SqlLoanRepository(db), clock, config)


def to_http_error(error: DomainException) -> HTTPException:
    """Map domain errors to HTTP status codes, keeping the invariant message"""
    if isinstance(error, ValidationError):
        return HTTPException(status_code=422, detail=str(error))
    if isinstance(error, LoanNotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, StateError):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, DataQualityError):
        return HTTPException(status_code=503, detail=str(error))
    return HTTPException(status_code=400, detail=str(error))
