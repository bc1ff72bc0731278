"""Hosted-card payment gateway client with exponential backoff retry logic"""

import asyncio
import logging
from decimal import Decimal
from typing import Any, Dict

import httpx

from pos_settlement.config import settings
from pos_settlement.domain.exceptions import GatewayError
from pos_settlement.domain.models import PaymentIntent
from pos_settlement.domain.money import to_cents
from pos_settlement.infrastructure.observability.metrics import gateway_failure_counter, gateway_latency_histogram

logger = logging.getLogger(__name__)


class PaymentGatewayClient:
    """Client for creating payment intents on the hosted-card gateway"""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url or settings.payment_gateway_base
        self.timeout = timeout or settings.http_timeout_seconds
        self.transport = transport
        self.max_retries = settings.gateway_max_retries
        self.backoff_base = settings.gateway_backoff_base

    async def create_payment_intent(self, amount: Decimal, metadata: Dict[str, Any] | None = None) -> PaymentIntent:
        """
        Request a payment intent for a dollar amount.

        The amount is sent as integer cents, rounded half-up. Confirmation of the
        payment arrives out-of-band; this call only reserves the intent.

        Retry strategy:
        - Exponential backoff: base, 2x base, 4x base (base * 2^attempt)
        - Retries on 5xx errors and network failures
        - 4xx responses are declines and fail immediately

        Raises:
            GatewayError: On decline, exhausted retries, or invalid response
        """
        payload = {"amount": to_cents(amount), "currency": "usd", "metadata": metadata or {}}

        attempt = 0
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            while True:
                try:
                    with gateway_latency_histogram.time():
                        response = await client.post(f"{self.base_url}/payment-intents", json=payload)
                        response.raise_for_status()
                    data = response.json()
                    return PaymentIntent(id=data["id"], client_secret=data["client_secret"])

                except httpx.HTTPStatusError as e:
                    gateway_failure_counter.labels(operation="create_payment_intent").inc()
                    if e.response.status_code < 500:
                        raise GatewayError(f"Payment gateway declined the request: {e.response.status_code}") from e
                    attempt += 1
                    if attempt >= self.max_retries:
                        raise GatewayError(f"Payment gateway error: {e.response.status_code}") from e

                except httpx.TimeoutException as e:
                    gateway_failure_counter.labels(operation="create_payment_intent").inc()
                    attempt += 1
                    if attempt >= self.max_retries:
                        raise GatewayError(f"Payment gateway timeout after {self.timeout}s") from e

                except httpx.RequestError as e:
                    gateway_failure_counter.labels(operation="create_payment_intent").inc()
                    attempt += 1
                    if attempt >= self.max_retries:
                        raise GatewayError(f"Payment gateway unreachable: {e}") from e

                except (KeyError, ValueError, TypeError) as e:
                    raise GatewayError(f"Invalid payment intent data from gateway: {e}") from e

                backoff = self.backoff_base * (2 ** (attempt - 1))
                logger.warning(
                    "Retrying payment intent creation",
                    extra={"step": "create_payment_intent", "attempt": attempt, "backoff_seconds": backoff},
                )
                await asyncio.sleep(backoff)
