# Overview: HTTP client for the Stripe-compatible payment processor.

"""
Payment Processor Client

The processor is an external collaborator: we create an intent for an
amount, the browser confirms it client-side with the client_secret, and
the processor tells us out-of-band (webhook) that it succeeded.

Requests are form-encoded like Stripe's REST API; metadata is sent as
metadata[key]=value. Any transport failure or non-2xx answer becomes a
PaymentProcessorError (HTTP 502 for our callers).
"""

from __future__ import annotations

import httpx
from flask import current_app

from ..errors import PaymentProcessorError


EXTENSION_KEY = "freshco.payment_processor"


class PaymentProcessorClient:
    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.client = httpx.Client(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={"Authorization": f"Bearer {api_key}"},
        )

    def close(self) -> None:
        self.client.close()

    def _request(self, method: str, path: str, **kwargs) -> dict:
        try:
            response = self.client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise PaymentProcessorError(f"Payment processor unreachable: {exc.__class__.__name__}") from exc

        if response.status_code >= 400:
            message = "Payment processor rejected the request"
            try:
                message = response.json().get("error", {}).get("message") or message
            except ValueError:
                pass
            raise PaymentProcessorError(message, details={"processor_status": response.status_code})

        try:
            return response.json()
        except ValueError as exc:
            raise PaymentProcessorError("Payment processor returned an invalid response") from exc

    def create_intent(self, amount_cents: int, currency: str, metadata: dict | None = None) -> dict:
        form = {"amount": str(amount_cents), "currency": currency}
        for key, value in (metadata or {}).items():
            form[f"metadata[{key}]"] = str(value)
        payload = self._request("POST", "/v1/payment_intents", data=form)
        return {
            "id": payload.get("id"),
            "client_secret": payload.get("client_secret"),
            "status": payload.get("status"),
            "amount": payload.get("amount"),
        }

    def retrieve_intent(self, intent_id: str) -> dict:
        payload = self._request("GET", f"/v1/payment_intents/{intent_id}")
        return {
            "id": payload.get("id"),
            "status": payload.get("status"),
            "amount": payload.get("amount"),
        }


def init_payment_processor(app, transport: httpx.BaseTransport | None = None) -> PaymentProcessorClient:
    client = PaymentProcessorClient(
        app.config["PAYMENT_PROCESSOR_URL"],
        app.config["PAYMENT_PROCESSOR_API_KEY"],
        timeout=app.config["PAYMENT_PROCESSOR_TIMEOUT"],
        transport=transport,
    )
    app.extensions[EXTENSION_KEY] = client
    return client


def get_payment_processor() -> PaymentProcessorClient:
    return current_app.extensions[EXTENSION_KEY]
