"""Client for the Stripe Checkout Sessions REST API."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from time import perf_counter
from typing import Any, Dict

import httpx

from .settings import settings

logger = logging.getLogger(__name__)

SESSIONS_PATH = "/v1/checkout/sessions"
PAYMENT_STATUS_PAID = "paid"


@dataclass
class CheckoutSession:
    """The parts of a Stripe checkout session the service relies on."""

    id: str
    url: str | None = None
    payment_status: str = ""
    client_reference_id: str = ""
    customer_id: str = ""
    customer_email: str = ""

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PAYMENT_STATUS_PAID

    @property
    def payment_reference(self) -> str:
        """Identifier recorded on the sale once it is complete."""
        reference = f"{self.customer_id} {self.customer_email}".strip()
        return reference or self.id


@dataclass
class SessionRequest:
    """Parameters for a one-off card payment."""

    amount_pennies: int
    client_reference_id: str
    success_url: str
    cancel_url: str
    description: str
    product_name: str = "Service"
    currency: str = "gbp"
    mode: str = "payment"

    @property
    def idempotency_key(self) -> str:
        """Retries of the same sale must not open a second session."""
        return f"checkout-session-{self.client_reference_id}"

    def to_form(self) -> Dict[str, str]:
        return {
            "mode": self.mode,
            "success_url": self.success_url,
            "cancel_url": self.cancel_url,
            "client_reference_id": self.client_reference_id,
            "invoice_creation[enabled]": "true",
            "invoice_creation[invoice_data][description]": self.description,
            "line_items[0][quantity]": "1",
            "line_items[0][price_data][currency]": self.currency,
            "line_items[0][price_data][unit_amount]": str(self.amount_pennies),
            "line_items[0][price_data][product_data][name]": self.product_name,
        }


def _parse_session(data: Dict[str, Any]) -> CheckoutSession:
    customer = data.get("customer")
    customer_id = customer.get("id", "") if isinstance(customer, dict) else customer or ""
    details = data.get("customer_details") or {}
    return CheckoutSession(
        id=data["id"],
        url=data.get("url"),
        payment_status=data.get("payment_status") or "",
        client_reference_id=data.get("client_reference_id") or "",
        customer_id=customer_id,
        customer_email=data.get("customer_email") or details.get("email") or "",
    )


class StripeClient:
    """Lightweight client for creating and reading checkout sessions."""

    def __init__(self, secret_key: str | None = None, base_url: str | None = None) -> None:
        key = secret_key if secret_key is not None else settings.stripe_secret_key
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.stripe_api_base,
            timeout=settings.http_timeout_seconds,
            headers={"Authorization": f"Bearer {key}"},
        )

    async def _request(self, method: str, url: str, **kwargs: Any) -> Dict[str, Any]:
        for attempt in range(3):
            try:
                response = await self._client.request(method, url, **kwargs)
                response.raise_for_status()
                return response.json()
            except httpx.TransportError:
                if attempt == 2:
                    raise
                logger.warning("Stripe request retry %s for %s %s", attempt + 1, method, url)
                await asyncio.sleep(2 ** attempt)
        raise RuntimeError("Stripe request failed after retries")

    async def create_session(self, request: SessionRequest) -> CheckoutSession:
        """Create a hosted checkout session and return its redirect URL and ID."""
        started = perf_counter()
        data = await self._request(
            "POST",
            SESSIONS_PATH,
            data=request.to_form(),
            headers={"Idempotency-Key": request.idempotency_key},
        )
        session = _parse_session(data)
        logger.info(
            "Created checkout session %s for sale %s in %.3fs",
            session.id,
            request.client_reference_id,
            perf_counter() - started,
        )
        return session

    async def get_session(self, session_id: str) -> CheckoutSession:
        """Fetch a checkout session by ID."""
        data = await self._request("GET", f"{SESSIONS_PATH}/{session_id}", params={"expand[]": "customer"})
        return _parse_session(data)

    async def close(self) -> None:
        await self._client.aclose()


__all__ = ["CheckoutSession", "PAYMENT_STATUS_PAID", "SessionRequest", "StripeClient"]
