"""
Payment API Client - HTTP implementation of the payment backend.

Talks to the point-of-sale backend that fronts the card processor:

- ``POST api/payments``            create a payment intent
- ``POST api/terminal/charge``     hand an intent to the card reader
- ``GET  api/payment_intents/<id>`` poll the intent status

Every request carries the ``x-api-key`` header; every POST carries a
fresh ``Idempotency-Key``.
"""

from __future__ import annotations

import json
import uuid
from typing import Any, Optional

import httpx

from pos_terminal.core.exceptions import (
    BadResponseError,
    CreateIntentError,
    NetworkTransientError,
    PaymentAPIError,
    ReaderStartAmbiguousError,
)
from pos_terminal.core.value_objects import IntentStatus, PaymentIntent, format_cents
from pos_terminal.infrastructure.settings import ApiSettings
from pos_terminal.loggers import logger


API_KEY_HEADER = "x-api-key"
IDEMPOTENCY_HEADER = "Idempotency-Key"

CREATE_INTENT_PATH = "api/payments"
READER_CHARGE_PATH = "api/terminal/charge"
INTENT_STATUS_PATH = "api/payment_intents/{intent_id}"


class PaymentApiClient:
    """
    Async client for the payment backend.

    Transport failures and timeouts raise ``NetworkTransientError``;
    non-2xx answers and undecodable bodies raise ``BadResponseError``.
    """

    def __init__(
        self,
        settings: ApiSettings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            settings: Backend URL, API key, currency and timeouts.
            transport: Optional httpx transport (used by tests).
        """
        self._settings = settings
        headers = {API_KEY_HEADER: settings.api_key} if settings.api_key else {}
        self._client = httpx.AsyncClient(
            base_url=settings.base_url,
            headers=headers,
            transport=transport,
        )

    async def aclose(self) -> None:
        """Close the underlying HTTP connection pool."""
        await self._client.aclose()

    # =========================================================================
    # Payment API
    # =========================================================================

    async def create_intent(
        self,
        amount_cents: int,
        currency: str,
        category: str,
        description: str,
    ) -> PaymentIntent:
        """
        Create a payment intent.

        Raises:
            CreateIntentError: On any failure; no charge can have started.
        """
        body = {
            "amount": amount_cents,
            "currency": currency,
            "category": category,
            "description": description,
        }
        logger.info(f"Creating intent: {format_cents(amount_cents)} {currency} '{description}'")

        try:
            payload = await self._request_json(
                "POST",
                CREATE_INTENT_PATH,
                timeout=self._settings.create_timeout,
                json=body,
                headers=self._idempotency_headers(),
            )
            intent_id = payload["id"]
        except PaymentAPIError as e:
            raise CreateIntentError(
                f"Could not create payment intent: {e.message}",
                status_code=e.status_code,
            ) from e
        except (KeyError, TypeError) as e:
            raise CreateIntentError(f"Malformed create-intent response: {e}") from e

        return PaymentIntent(
            id=str(intent_id),
            amount_cents=amount_cents,
            currency=currency,
            description=description,
        )

    async def start_reader_charge(self, intent_id: str) -> bool:
        """
        Hand an intent to the card reader.

        Returns:
            True on a 2xx answer, False otherwise.

        Raises:
            ReaderStartAmbiguousError: On transport failure or timeout.
        """
        try:
            response = await self._send(
                "POST",
                READER_CHARGE_PATH,
                timeout=self._settings.reader_timeout,
                json={"payment_intent_id": intent_id},
                headers=self._idempotency_headers(),
            )
        except NetworkTransientError as e:
            raise ReaderStartAmbiguousError(
                f"Reader start for {intent_id} not confirmed: {e.message}"
            ) from e

        if response.is_success:
            return True

        logger.warning(f"Reader start for {intent_id} answered {response.status_code}")
        return False

    async def get_intent_status(self, intent_id: str) -> IntentStatus:
        """
        Fetch the current status of an intent.

        Raises:
            NetworkTransientError: On transport failure or timeout.
            BadResponseError: On non-2xx or malformed body.
        """
        payload = await self._request_json(
            "GET",
            INTENT_STATUS_PATH.format(intent_id=intent_id),
            timeout=self._settings.status_timeout,
            headers={"Cache-Control": "no-store", "Accept": "application/json"},
        )
        try:
            return IntentStatus.from_payload(payload)
        except (KeyError, TypeError) as e:
            raise BadResponseError(f"Malformed intent status for {intent_id}: {e}") from e

    # =========================================================================
    # Transport
    # =========================================================================

    @staticmethod
    def _idempotency_headers() -> dict[str, str]:
        return {IDEMPOTENCY_HEADER: str(uuid.uuid4())}

    async def _send(
        self,
        method: str,
        path: str,
        timeout: float,
        **kwargs: Any,
    ) -> httpx.Response:
        try:
            return await self._client.request(method, path, timeout=timeout, **kwargs)
        except httpx.TimeoutException as e:
            raise NetworkTransientError(f"{method} {path} timed out after {timeout}s") from e
        except httpx.TransportError as e:
            raise NetworkTransientError(f"{method} {path} failed: {e}") from e

    async def _request_json(
        self,
        method: str,
        path: str,
        timeout: float,
        **kwargs: Any,
    ) -> Any:
        response = await self._send(method, path, timeout, **kwargs)

        if not response.is_success:
            raise BadResponseError(
                f"{method} {path} answered {response.status_code}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise BadResponseError(f"{method} {path} returned invalid JSON: {e}") from e
