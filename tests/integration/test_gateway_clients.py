"""Integration tests for the payment gateway and terminal HTTP clients"""

import json

import httpx
import pytest
from decimal import Decimal
from pos_settlement.domain.exceptions import GatewayError
from pos_settlement.infrastructure.clients.payment_gateway import PaymentGatewayClient
from pos_settlement.infrastructure.clients.terminal import TerminalClient

BASE_URL = "http://payments.test"


def gateway_client(handler) -> PaymentGatewayClient:
    client = PaymentGatewayClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))
    client.backoff_base = 0
    return client


def terminal_client(handler) -> TerminalClient:
    return TerminalClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))


class TestPaymentGatewayClient:
    async def test_sends_amount_in_cents(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(200, json={"id": "pi_1", "client_secret": "pi_1_secret"})

        intent = await gateway_client(handler).create_payment_intent(Decimal("96.075"), {"item_count": 2})

        assert intent.id == "pi_1"
        assert intent.client_secret == "pi_1_secret"
        assert seen == [{"amount": 9608, "currency": "usd", "metadata": {"item_count": 2}}]

    async def test_retries_server_errors(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) < 3:
                return httpx.Response(503)
            return httpx.Response(200, json={"id": "pi_2", "client_secret": "pi_2_secret"})

        intent = await gateway_client(handler).create_payment_intent(Decimal("10"))

        assert intent.id == "pi_2"
        assert len(calls) == 3

    async def test_gives_up_after_max_retries(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(502)

        client = gateway_client(handler)
        with pytest.raises(GatewayError):
            await client.create_payment_intent(Decimal("10"))

        assert len(calls) == client.max_retries

    async def test_decline_is_not_retried(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(402, json={"error": "card_declined"})

        with pytest.raises(GatewayError, match="declined"):
            await gateway_client(handler).create_payment_intent(Decimal("10"))

        assert len(calls) == 1

    async def test_network_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(GatewayError, match="unreachable"):
            await gateway_client(handler).create_payment_intent(Decimal("10"))

    async def test_malformed_response(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"id": "pi_3"})

        with pytest.raises(GatewayError, match="Invalid payment intent"):
            await gateway_client(handler).create_payment_intent(Decimal("10"))


class TestTerminalClient:
    async def test_lists_readers(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/terminal/readers"
            return httpx.Response(200, json={"readers": [
                {"id": "tmr_1", "status": "online", "label": "Front"},
                {"id": "tmr_2"},
            ]})

        readers = await terminal_client(handler).list_readers()

        assert [(r.id, r.status) for r in readers] == [("tmr_1", "online"), ("tmr_2", "offline")]

    async def test_connect_reports_offline_reader(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"error": {"code": "reader_offline", "message": "Reader is offline"}})

        with pytest.raises(GatewayError, match="offline"):
            await terminal_client(handler).connect_by_id("tmr_1")

    async def test_connect_reports_unknown_reader(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"error": {"code": "not_found"}})

        with pytest.raises(GatewayError, match="tmr_9 not found"):
            await terminal_client(handler).connect_by_id("tmr_9")

    async def test_process_payment_reads_card(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append((request.url.path, json.loads(request.content)))
            return httpx.Response(200, json={
                "status": "succeeded",
                "payment_intent_id": "pi_r",
                "payment_method_id": "pm_r",
                "card": {"last4": "1881", "brand": "mastercard"},
            })

        result = await terminal_client(handler).process_payment("tmr_1", 2500, description="POS sale")

        assert result.succeeded
        assert result.card_last4 == "1881"
        assert result.card_brand == "mastercard"
        assert seen[0][0] == "/terminal/readers/tmr_1/process-payment"
        assert seen[0][1]["amount"] == 2500

    async def test_server_error_is_not_retried(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(500)

        with pytest.raises(GatewayError):
            await terminal_client(handler).process_payment("tmr_1", 2500)

        assert len(calls) == 1
