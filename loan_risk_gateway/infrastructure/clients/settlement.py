"""Settlement webhook client with exponential backoff retry logic"""

import httpx
import asyncio
from typing import Dict, Any
from loan_risk_gateway.config import settings
from loan_risk_gateway.domain.models import LoanState, PaymentRecord
from loan_risk_gateway.domain.numeric import to_base_units
from loan_risk_gateway.infrastructure.observability.metrics import webhook_latency_histogram, webhook_failure_counter


def loan_funded_event(state: LoanState, token_decimals: int = 18) -> Dict[str, Any]:
    """Integer-encoded funding event; settlement consumes integers only"""
    return {
        "event": "LOAN_FUNDED",
        "loan_id": state.record.loan_id,
        "borrower_id": state.record.borrower_id,
        "loan_asset_id": state.record.loan_asset_id,
        "principal_units": to_base_units(state.account.principal_remaining, token_decimals),
        "rate_bps": state.record.rate_bps,
        "maturity_ts": int(state.account.maturity_date.timestamp()),
        "collateral": [
            {"asset_id": d.asset_id, "amount_units": to_base_units(d.amount, token_decimals)}
            for d in state.position.deposits
        ],
    }


def payment_applied_event(state: LoanState, payment: PaymentRecord, token_decimals: int = 18) -> Dict[str, Any]:
    return {
        "event": "PAYMENT_APPLIED",
        "loan_id": state.record.loan_id,
        "amount_units": to_base_units(payment.amount, token_decimals),
        "interest_units": to_base_units(payment.interest_portion, token_decimals),
        "principal_units": to_base_units(payment.principal_portion, token_decimals),
        "discount_units": to_base_units(payment.discount, token_decimals),
        "principal_remaining_units": to_base_units(state.account.principal_remaining, token_decimals),
        "status": state.account.status.value,
        "paid_at_ts": int(payment.paid_at.timestamp()),
    }


class SettlementClient:
    """Client for sending loan events to the settlement service"""

    def __init__(self, webhook_url: str | None = None, transport: httpx.AsyncBaseTransport | None = None):
        self.webhook_url = webhook_url or settings.settlement_webhook_url
        self.max_retries = settings.webhook_max_retries
        self.backoff_base = settings.webhook_backoff_base
        self.transport = transport

    async def send_event(self, payload: Dict[str, Any]) -> None:
        """
        Deliver a loan event with retry logic.

        Retry strategy:
        - Exponential backoff: 1s, 2s, 4s, 8s, 16s (base^attempt)
        - Retries on non-2xx responses and network failures
        - Tracks latency histogram and failure counter
        """
        attempt = 0
        async with httpx.AsyncClient(transport=self.transport) as client:
            while attempt < self.max_retries:
                try:
                    with webhook_latency_histogram.time():
                        response = await client.post(
                            self.webhook_url,
                            json=payload,
                            timeout=10.0,
                        )
                        response.raise_for_status()
                        return

                except (httpx.HTTPStatusError, httpx.RequestError):
                    attempt += 1
                    webhook_failure_counter.labels(event=payload.get("event", "unknown")).inc()

                    if attempt >= self.max_retries:
                        raise

                    backoff = self.backoff_base * (2 ** (attempt - 1))
                    await asyncio.sleep(backoff)
