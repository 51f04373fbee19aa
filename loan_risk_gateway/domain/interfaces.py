"""Collaborators the engines consume but never implement"""

import random
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Protocol, runtime_checkable

from loan_risk_gateway.domain.exceptions import PriceUnavailableError
from loan_risk_gateway.domain.models import LoanState, PricePoint


@runtime_checkable
class PriceLookup(Protocol):
    """
    Source of USD unit prices.

    Implementations return None (or raise PriceUnavailableError) when an asset
    has no usable price.
    """

    def get_unit_price_usd(self, asset_id: str) -> Optional[PricePoint]:
        ...


class Clock(Protocol):
    def now(self) -> datetime:
        ...


class LoanRepository(Protocol):
    """Opaque load/store of loan state by identifier"""

    def exists(self, loan_id: str) -> bool:
        ...

    def get(self, loan_id: str) -> LoanState:
        """Read-only snapshot; never blocks writers"""
        ...

    def load(self, loan_id: str) -> LoanState:
        """Snapshot held for update until the surrounding transaction ends"""
        ...

    def save(self, state: LoanState) -> None:
        ...


# Returns a unit draw in [-0.5, 0.5]; the engine scales it by market volatility
PerturbationSource = Callable[[], float]


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """Clock pinned to a given instant, advanced manually"""

    def __init__(self, instant: datetime):
        self.instant = instant

    def now(self) -> datetime:
        return self.instant

    def advance(self, delta) -> None:
        self.instant = self.instant + delta


class StaticPriceLookup:
    """Price lookup backed by a fixed dict of asset id -> price point"""

    def __init__(self, prices: Dict[str, PricePoint]):
        self.prices = dict(prices)

    def get_unit_price_usd(self, asset_id: str) -> Optional[PricePoint]:
        point = self.prices.get(asset_id)
        if point is None:
            raise PriceUnavailableError(asset_id)
        return point

    def update_price(self, asset_id: str, point: PricePoint) -> None:
        self.prices[asset_id] = point

    def __repr__(self):
        return f"StaticPriceLookup({len(self.prices)} prices)"


def random_perturbation(seed: Optional[int] = None) -> PerturbationSource:
    """Seedable source of market jitter for the service boundary"""
    rng = random.Random(seed)
    return lambda: rng.random() - 0.5


def no_perturbation() -> float:
    return 0.0
