"""
Unit tests for the HTTP payment backend client.
"""

import json

import httpx
import pytest

from pos_terminal.core.exceptions import (
    BadResponseError,
    CreateIntentError,
    NetworkTransientError,
    ReaderStartAmbiguousError,
)
from pos_terminal.infrastructure.connectivity import HttpConnectivityProbe
from pos_terminal.infrastructure.payment_api_client import PaymentApiClient
from pos_terminal.infrastructure.settings import ApiSettings


SETTINGS = ApiSettings(base_url="https://pos.test", api_key="secret-key")


def client_for(handler):
    return PaymentApiClient(SETTINGS, transport=httpx.MockTransport(handler))


class TestCreateIntent:
    """Tests for create_intent."""

    @pytest.mark.asyncio
    async def test_request_shape(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"id": "pi_1", "status": "requires_payment_method"})

        client = client_for(handler)
        intent = await client.create_intent(1250, "usd", "merch", "Merch Sale")
        await client.aclose()

        request = seen[0]
        assert intent.id == "pi_1"
        assert intent.amount_cents == 1250
        assert request.method == "POST"
        assert request.url == "https://pos.test/api/payments"
        assert request.headers["x-api-key"] == "secret-key"
        assert request.headers["Idempotency-Key"]
        assert json.loads(request.content) == {
            "amount": 1250,
            "currency": "usd",
            "category": "merch",
            "description": "Merch Sale",
        }

    @pytest.mark.asyncio
    async def test_fresh_idempotency_key_per_post(self):
        keys = []

        def handler(request):
            keys.append(request.headers["Idempotency-Key"])
            return httpx.Response(200, json={"id": "pi_1"})

        client = client_for(handler)
        await client.create_intent(100, "usd", "merch", "Merch Sale")
        await client.create_intent(100, "usd", "merch", "Merch Sale")
        await client.aclose()

        assert len(set(keys)) == 2

    @pytest.mark.asyncio
    async def test_server_error_wrapped(self):
        client = client_for(lambda request: httpx.Response(500, text="boom"))

        with pytest.raises(CreateIntentError) as exc_info:
            await client.create_intent(100, "usd", "merch", "Merch Sale")
        await client.aclose()

        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_transport_error_wrapped(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = client_for(handler)
        with pytest.raises(CreateIntentError):
            await client.create_intent(100, "usd", "merch", "Merch Sale")
        await client.aclose()

    @pytest.mark.asyncio
    async def test_missing_id_wrapped(self):
        client = client_for(lambda request: httpx.Response(200, json={"status": "ok"}))

        with pytest.raises(CreateIntentError):
            await client.create_intent(100, "usd", "merch", "Merch Sale")
        await client.aclose()


class TestStartReaderCharge:
    """Tests for start_reader_charge."""

    @pytest.mark.asyncio
    async def test_success(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"reader": {"id": "tmr_1", "status": "online"}})

        client = client_for(handler)
        assert await client.start_reader_charge("pi_1") is True
        await client.aclose()

        assert seen[0].url.path == "/api/terminal/charge"
        assert json.loads(seen[0].content) == {"payment_intent_id": "pi_1"}
        assert seen[0].headers["Idempotency-Key"]

    @pytest.mark.asyncio
    async def test_rejection_returns_false(self):
        client = client_for(lambda request: httpx.Response(409, json={"error": "reader busy"}))
        assert await client.start_reader_charge("pi_1") is False
        await client.aclose()

    @pytest.mark.asyncio
    async def test_timeout_is_ambiguous(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        client = client_for(handler)
        with pytest.raises(ReaderStartAmbiguousError):
            await client.start_reader_charge("pi_1")
        await client.aclose()


class TestGetIntentStatus:
    """Tests for get_intent_status."""

    @pytest.mark.asyncio
    async def test_parses_status(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={
                "id": "pi_1",
                "status": "requires_payment_method",
                "last_payment_error": {"message": "Your card was declined."},
                "latest_charge_outcome_type": "issuer_declined",
            })

        client = client_for(handler)
        status = await client.get_intent_status("pi_1")
        await client.aclose()

        request = seen[0]
        assert request.method == "GET"
        assert request.url.path == "/api/payment_intents/pi_1"
        assert request.headers["Cache-Control"] == "no-store"
        assert request.headers["Accept"] == "application/json"
        assert request.headers["x-api-key"] == "secret-key"
        assert "Idempotency-Key" not in request.headers
        assert status.last_payment_error_message == "Your card was declined."
        assert status.latest_charge_outcome_type == "issuer_declined"

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        client = client_for(handler)
        with pytest.raises(NetworkTransientError):
            await client.get_intent_status("pi_1")
        await client.aclose()

    @pytest.mark.asyncio
    async def test_non_2xx_is_bad_response(self):
        client = client_for(lambda request: httpx.Response(404, json={"error": "not found"}))

        with pytest.raises(BadResponseError) as exc_info:
            await client.get_intent_status("pi_1")
        await client.aclose()

        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_invalid_json_is_bad_response(self):
        client = client_for(lambda request: httpx.Response(200, text="<html>gateway</html>"))

        with pytest.raises(BadResponseError):
            await client.get_intent_status("pi_1")
        await client.aclose()

    @pytest.mark.asyncio
    async def test_missing_fields_is_bad_response(self):
        client = client_for(lambda request: httpx.Response(200, json={"id": "pi_1"}))

        with pytest.raises(BadResponseError):
            await client.get_intent_status("pi_1")
        await client.aclose()


class TestConnectivityProbe:
    """Tests for HttpConnectivityProbe."""

    @pytest.mark.asyncio
    async def test_any_answer_is_reachable(self):
        probe = HttpConnectivityProbe(
            "https://pos.test",
            transport=httpx.MockTransport(lambda request: httpx.Response(503)),
        )
        assert await probe.is_reachable()
        await probe.aclose()

    @pytest.mark.asyncio
    async def test_transport_error_is_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("no route to host", request=request)

        probe = HttpConnectivityProbe("https://pos.test", transport=httpx.MockTransport(handler))
        assert not await probe.is_reachable()
        await probe.aclose()
