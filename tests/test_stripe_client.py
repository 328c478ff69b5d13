import asyncio
import unittest
from unittest.mock import AsyncMock, patch

import httpx

from payments.stripe_client import SessionRequest, StripeClient


def response(method: str, path: str, payload: dict) -> httpx.Response:
    return httpx.Response(200, json=payload, request=httpx.Request(method, f"https://api.stripe.test{path}"))


class StripeClientTests(unittest.TestCase):
    def setUp(self) -> None:
        self.client = StripeClient(secret_key="sk_test_1", base_url="https://api.stripe.test")
        self.addCleanup(lambda: asyncio.run(self.client.close()))

    def test_create_session_posts_form(self) -> None:
        request = SessionRequest(
            amount_pennies=2400,
            client_reference_id="5",
            success_url="https://pay.example.org/success?session_id={CHECKOUT_SESSION_ID}",
            cancel_url="https://pay.example.org/cancel",
            description="Society membership year 2025",
        )
        payload = {"id": "cs_1", "url": "https://checkout.stripe.test/cs_1", "payment_status": "unpaid"}
        with patch.object(
            self.client._client, "request", AsyncMock(return_value=response("POST", "/v1/checkout/sessions", payload))
        ) as sent:
            session = asyncio.run(self.client.create_session(request))

        self.assertEqual(session.url, "https://checkout.stripe.test/cs_1")
        self.assertFalse(session.is_paid)
        method, path = sent.await_args.args
        self.assertEqual((method, path), ("POST", "/v1/checkout/sessions"))
        self.assertEqual(sent.await_args.kwargs["data"]["line_items[0][price_data][unit_amount]"], "2400")
        self.assertEqual(sent.await_args.kwargs["headers"], {"Idempotency-Key": "checkout-session-5"})
        self.assertEqual(self.client._client.headers["authorization"], "Bearer sk_test_1")

    def test_get_session_reads_customer(self) -> None:
        payload = {
            "id": "cs_1",
            "payment_status": "paid",
            "client_reference_id": "5",
            "customer": {"id": "cus_1"},
            "customer_details": {"email": "ada@example.org"},
        }
        with patch.object(
            self.client._client, "request", AsyncMock(return_value=response("GET", "/v1/checkout/sessions/cs_1", payload))
        ):
            session = asyncio.run(self.client.get_session("cs_1"))

        self.assertTrue(session.is_paid)
        self.assertEqual(session.client_reference_id, "5")
        self.assertEqual(session.payment_reference, "cus_1 ada@example.org")

    def test_payment_reference_falls_back_to_session_id(self) -> None:
        payload = {"id": "cs_2", "payment_status": "paid", "client_reference_id": "6"}
        with patch.object(
            self.client._client, "request", AsyncMock(return_value=response("GET", "/v1/checkout/sessions/cs_2", payload))
        ):
            session = asyncio.run(self.client.get_session("cs_2"))
        self.assertEqual(session.payment_reference, "cs_2")

    def test_transport_errors_are_retried(self) -> None:
        payload = {"id": "cs_3", "payment_status": "paid"}
        flaky = AsyncMock(
            side_effect=[httpx.ConnectError("reset"), response("GET", "/v1/checkout/sessions/cs_3", payload)]
        )
        with patch.object(self.client._client, "request", flaky), patch(
            "payments.stripe_client.asyncio.sleep", AsyncMock()
        ):
            session = asyncio.run(self.client.get_session("cs_3"))
        self.assertEqual(session.id, "cs_3")
        self.assertEqual(flaky.await_count, 2)

    def test_retried_create_reuses_idempotency_key(self) -> None:
        request = SessionRequest(
            amount_pennies=3000,
            client_reference_id="42",
            success_url="https://pay.example.org/success?session_id={CHECKOUT_SESSION_ID}",
            cancel_url="https://pay.example.org/cancel",
            description="Society membership year 2025",
        )
        payload = {"id": "cs_4", "url": "https://checkout.stripe.test/cs_4"}
        flaky = AsyncMock(
            side_effect=[httpx.ReadTimeout("slow"), response("POST", "/v1/checkout/sessions", payload)]
        )
        with patch.object(self.client._client, "request", flaky), patch(
            "payments.stripe_client.asyncio.sleep", AsyncMock()
        ):
            session = asyncio.run(self.client.create_session(request))

        self.assertEqual(session.id, "cs_4")
        keys = [call.kwargs["headers"]["Idempotency-Key"] for call in flaky.await_args_list]
        self.assertEqual(keys, ["checkout-session-42", "checkout-session-42"])


if __name__ == "__main__":
    unittest.main()
