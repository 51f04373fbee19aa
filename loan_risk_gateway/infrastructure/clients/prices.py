"""Price service HTTP client for collateral and loan token valuation"""

import logging
import httpx
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable, Optional
from loan_risk_gateway.domain.models import PricePoint
from loan_risk_gateway.domain.exceptions import PriceServiceError
from loan_risk_gateway.config import settings
from loan_risk_gateway.infrastructure.observability.metrics import price_lookup_failures_counter

logger = logging.getLogger(__name__)


class PriceSnapshot:
    """
    Prices fetched once and shared by every evaluation in the same pass.

    Assets the service did not price resolve to None, which the health engine
    treats as a zero contribution.
    """

    def __init__(self, prices: Dict[str, PricePoint]):
        self.prices = dict(prices)

    def get_unit_price_usd(self, asset_id: str) -> Optional[PricePoint]:
        return self.prices.get(asset_id)

    def __contains__(self, asset_id: str) -> bool:
        return asset_id in self.prices


class PriceClient:
    """Client for the external USD price service"""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url or settings.price_api_base
        self.timeout = timeout or settings.http_timeout_seconds
        self.transport = transport

    async def fetch_prices(self, asset_ids: Iterable[str]) -> PriceSnapshot:
        """
        Fetch current USD prices for the given assets.

        Malformed entries are dropped (and counted) rather than failing the
        whole snapshot.

        Raises:
            PriceServiceError: On timeout, HTTP errors, or an unreadable response
        """
        assets = sorted(set(asset_ids))
        if not assets:
            return PriceSnapshot({})

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                response = await client.get(
                    f"{self.base_url}/prices",
                    params={"assets": ",".join(assets)},
                )
                response.raise_for_status()
                data = response.json()
                entries = data["prices"]
            except httpx.TimeoutException as e:
                price_lookup_failures_counter.labels(reason="timeout").inc()
                raise PriceServiceError(f"Price API timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                price_lookup_failures_counter.labels(reason="http_error").inc()
                raise PriceServiceError(f"Price API error: {e.response.status_code}") from e
            except httpx.RequestError as e:
                price_lookup_failures_counter.labels(reason="unreachable").inc()
                raise PriceServiceError(f"Price API unreachable: {e}") from e
            except (KeyError, ValueError, TypeError) as e:
                price_lookup_failures_counter.labels(reason="invalid_response").inc()
                raise PriceServiceError(f"Invalid price data: {e}") from e

        prices: Dict[str, PricePoint] = {}
        for entry in entries:
            try:
                as_of = entry.get("as_of")
                prices[entry["asset_id"]] = PricePoint(
                    price_usd=Decimal(str(entry["price_usd"])),
                    as_of=datetime.fromisoformat(as_of) if as_of else None,
                )
            except (KeyError, ValueError, TypeError, InvalidOperation, AttributeError) as e:
                price_lookup_failures_counter.labels(reason="invalid_entry").inc()
                logger.warning(f"Dropping malformed price entry: {e}", extra={"entry": repr(entry)})

        return PriceSnapshot(prices)
