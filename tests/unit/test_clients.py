"""Unit tests for the price and settlement HTTP clients"""

import httpx
import pytest
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, patch
from loan_risk_gateway.domain.exceptions import PriceServiceError
from loan_risk_gateway.domain.models import PricePoint
from loan_risk_gateway.infrastructure.clients.prices import PriceClient
from loan_risk_gateway.infrastructure.clients.settlement import (
    SettlementClient,
    loan_funded_event,
    payment_applied_event,
)
from loan_risk_gateway.infrastructure.database.repositories import InMemoryLoanRepository
from loan_risk_gateway.domain.lifecycle import KeyedLocks, LoanBook


def price_transport(payload, status_code=200):
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(status_code, json=payload)

    return httpx.MockTransport(handler), requests


async def test_fetch_prices():
    transport, requests = price_transport(
        {
            "prices": [
                {"asset_id": "CELO", "price_usd": "0.65", "as_of": "2025-01-01T00:00:00+00:00"},
                {"asset_id": "cUSD", "price_usd": 1.0},
            ]
        }
    )
    client = PriceClient(base_url="http://prices.test", transport=transport)

    snapshot = await client.fetch_prices(["cUSD", "CELO", "CELO"])

    assert requests[0].url.params["assets"] == "CELO,cUSD"
    assert snapshot.get_unit_price_usd("CELO") == PricePoint(
        price_usd=Decimal("0.65"), as_of=datetime(2025, 1, 1, tzinfo=timezone.utc)
    )
    assert snapshot.get_unit_price_usd("cUSD").price_usd == Decimal("1.0")
    assert snapshot.get_unit_price_usd("USDC") is None


async def test_fetch_prices_drops_malformed_entries():
    transport, _ = price_transport({"prices": [{"asset_id": "CELO", "price_usd": "abc"}, {"price_usd": "1"}]})
    client = PriceClient(base_url="http://prices.test", transport=transport)

    snapshot = await client.fetch_prices(["CELO"])

    assert "CELO" not in snapshot


async def test_fetch_prices_without_assets_skips_request():
    transport, requests = price_transport({"prices": []})
    snapshot = await PriceClient(base_url="http://prices.test", transport=transport).fetch_prices([])

    assert requests == []
    assert snapshot.prices == {}


async def test_fetch_prices_http_error():
    transport, _ = price_transport({"error": "down"}, status_code=500)
    client = PriceClient(base_url="http://prices.test", transport=transport)

    with pytest.raises(PriceServiceError, match="500"):
        await client.fetch_prices(["CELO"])


async def test_fetch_prices_invalid_body():
    transport, _ = price_transport({"unexpected": []})
    client = PriceClient(base_url="http://prices.test", transport=transport)

    with pytest.raises(PriceServiceError, match="Invalid price data"):
        await client.fetch_prices(["CELO"])


def test_settlement_events_use_integer_units(clock, config, terms, celo_deposit):
    book = LoanBook(InMemoryLoanRepository(), clock, config, locks=KeyedLocks())
    state = book.fund("loan_1", "borrower_1", terms, 1114, "cUSD", [celo_deposit])

    funded = loan_funded_event(state)
    assert funded["principal_units"] == 1000 * 10**18
    assert funded["collateral"] == [{"asset_id": "CELO", "amount_units": 1000 * 10**18}]
    assert funded["rate_bps"] == 1114

    state = book.pay("loan_1", Decimal("1.5"))
    applied = payment_applied_event(state, state.account.payments[-1])
    assert applied["amount_units"] == 15 * 10**17
    assert applied["principal_remaining_units"] == 9985 * 10**17
    assert applied["status"] == "active"


@patch("loan_risk_gateway.infrastructure.clients.settlement.asyncio.sleep", new_callable=AsyncMock)
async def test_settlement_retries_then_succeeds(mock_sleep: AsyncMock):
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        return httpx.Response(503 if len(attempts) < 3 else 200)

    client = SettlementClient(webhook_url="http://settlement.test/events", transport=httpx.MockTransport(handler))
    await client.send_event({"event": "LOAN_FUNDED", "loan_id": "loan_1"})

    assert len(attempts) == 3
    assert mock_sleep.await_count == 2


@patch("loan_risk_gateway.infrastructure.clients.settlement.asyncio.sleep", new_callable=AsyncMock)
async def test_settlement_gives_up_after_max_retries(mock_sleep: AsyncMock):
    client = SettlementClient(
        webhook_url="http://settlement.test/events",
        transport=httpx.MockTransport(lambda request: httpx.Response(500)),
    )

    with pytest.raises(httpx.HTTPStatusError):
        await client.send_event({"event": "PAYMENT_APPLIED"})
    assert mock_sleep.await_count == client.max_retries - 1
