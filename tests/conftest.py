"""Pytest fixtures for testing"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")

import pytest
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Generator, Iterable, List
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from loan_risk_gateway.api.main import create_app
from loan_risk_gateway.api.dependencies import (
    get_clock,
    get_perturbation_source,
    get_price_client,
    get_settlement_client,
)
from loan_risk_gateway.config import EngineConfig
from loan_risk_gateway.domain.interfaces import FixedClock, StaticPriceLookup, no_perturbation
from loan_risk_gateway.domain.models import CollateralDeposit, LoanTerms, PricePoint
from loan_risk_gateway.infrastructure.clients.prices import PriceSnapshot
from loan_risk_gateway.infrastructure.database.models import Base
from loan_risk_gateway.infrastructure.database.session import get_db


# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

FUNDED_AT = datetime(2025, 1, 1, tzinfo=timezone.utc)


class FakePriceClient:
    """Serves prices from a dict; assets not in it are simply unpriced"""

    def __init__(self, prices: Dict[str, PricePoint]):
        self.prices = prices
        self.requests: List[List[str]] = []

    async def fetch_prices(self, asset_ids: Iterable[str]) -> PriceSnapshot:
        assets = sorted(set(asset_ids))
        self.requests.append(assets)
        return PriceSnapshot({a: self.prices[a] for a in assets if a in self.prices})


class RecordingSettlementClient:
    def __init__(self):
        self.events: List[Dict[str, Any]] = []

    async def send_event(self, payload: Dict[str, Any]) -> None:
        self.events.append(payload)


@pytest.fixture
def config() -> EngineConfig:
    return EngineConfig()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(FUNDED_AT)


@pytest.fixture
def prices() -> Dict[str, PricePoint]:
    """USD prices for the assets used across tests"""
    return {
        "CELO": PricePoint(price_usd=Decimal("2")),
        "cUSD": PricePoint(price_usd=Decimal("1")),
        "USDC": PricePoint(price_usd=Decimal("1")),
    }


@pytest.fixture
def price_lookup(prices: Dict[str, PricePoint]) -> StaticPriceLookup:
    return StaticPriceLookup(prices)


@pytest.fixture
def terms() -> LoanTerms:
    """1000 cUSD for 12 months against 200% CELO collateral"""
    return LoanTerms(
        credit_score=80,
        loan_amount=Decimal("1000"),
        term_months=12,
        collateral_ratio=Decimal("2.0"),
        asset_class="CELO",
    )


@pytest.fixture
def celo_deposit() -> CollateralDeposit:
    # 1000 CELO at $2 = $2000 against a $1000 loan
    return CollateralDeposit(asset_id="CELO", asset_class="CELO", amount=Decimal("1000"))


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def price_client(prices: Dict[str, PricePoint]) -> FakePriceClient:
    return FakePriceClient(prices)


@pytest.fixture
def settlement_client() -> RecordingSettlementClient:
    return RecordingSettlementClient()


@pytest.fixture
def client(
    db: Session,
    clock: FixedClock,
    price_client: FakePriceClient,
    settlement_client: RecordingSettlementClient,
) -> TestClient:
    """Create FastAPI test client with test database and fake collaborators"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_perturbation_source] = lambda: no_perturbation
    app.dependency_overrides[get_price_client] = lambda: price_client
    app.dependency_overrides[get_settlement_client] = lambda: settlement_client
    return TestClient(app)
