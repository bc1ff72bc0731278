"""Card-present terminal service client"""

from typing import Any, Dict, List

import httpx

from pos_settlement.config import settings
from pos_settlement.domain.exceptions import GatewayError
from pos_settlement.domain.models import TerminalPaymentResult, TerminalReader
from pos_settlement.infrastructure.observability.metrics import gateway_failure_counter, gateway_latency_histogram


def _to_reader(data: Dict[str, Any]) -> TerminalReader:
    return TerminalReader(id=data["id"], status=data.get("status", "offline"), label=data.get("label"))


class TerminalClient:
    """
    Client for the terminal service that owns card-present authorization.

    Terminal charges are not retried: a repeated charge request could
    authorize the card twice.
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url or settings.terminal_api_base
        self.timeout = timeout or settings.http_timeout_seconds
        self.transport = transport

    async def _request(self, operation: str, method: str, path: str, **kwargs) -> Dict[str, Any]:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                with gateway_latency_histogram.time():
                    response = await client.request(method, f"{self.base_url}{path}", **kwargs)
                    response.raise_for_status()
                return response.json()

            except httpx.TimeoutException as e:
                gateway_failure_counter.labels(operation=operation).inc()
                raise GatewayError(f"Terminal service timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                gateway_failure_counter.labels(operation=operation).inc()
                raise GatewayError(f"Terminal service error: {e.response.status_code}") from e
            except httpx.RequestError as e:
                gateway_failure_counter.labels(operation=operation).inc()
                raise GatewayError(f"Terminal service unreachable: {e}") from e
            except ValueError as e:
                raise GatewayError(f"Invalid response from terminal service: {e}") from e

    async def list_readers(self) -> List[TerminalReader]:
        data = await self._request("list_readers", "GET", "/terminal/readers")
        try:
            return [_to_reader(reader) for reader in data.get("readers", [])]
        except (KeyError, TypeError) as e:
            raise GatewayError(f"Invalid reader data from terminal service: {e}") from e

    async def get_reader(self, reader_id: str) -> TerminalReader:
        data = await self._request("get_reader", "GET", f"/terminal/readers/{reader_id}")
        try:
            return _to_reader(data["reader"])
        except (KeyError, TypeError) as e:
            raise GatewayError(f"Invalid reader data from terminal service: {e}") from e

    async def connect_by_id(self, reader_id: str) -> TerminalReader:
        """
        Connect a registered reader.

        Raises:
            GatewayError: If the reader is offline, unknown, or the call fails
        """
        data = await self._request("connect_reader", "POST", f"/terminal/readers/{reader_id}/connect")

        error = data.get("error")
        if error:
            code = error.get("code")
            if code == "reader_offline":
                raise GatewayError("Reader is offline")
            if code == "not_found":
                raise GatewayError(f"Reader {reader_id} not found")
            raise GatewayError(error.get("message") or "Failed to connect to reader")

        try:
            return _to_reader(data["reader"])
        except (KeyError, TypeError) as e:
            raise GatewayError(f"Invalid reader data from terminal service: {e}") from e

    async def process_payment(self, reader_id: str, amount_cents: int, description: str | None = None) -> TerminalPaymentResult:
        """Charge the card presented at the reader; the terminal runs the full authorization"""
        data = await self._request(
            "process_payment",
            "POST",
            f"/terminal/readers/{reader_id}/process-payment",
            json={"amount": amount_cents, "currency": "usd", "description": description},
        )
        card = data.get("card") or {}
        return TerminalPaymentResult(
            status=data.get("status", "failed"),
            payment_intent_id=data.get("payment_intent_id"),
            payment_method_id=data.get("payment_method_id"),
            card_last4=card.get("last4"),
            card_brand=card.get("brand"),
            error_message=data.get("error"),
        )
