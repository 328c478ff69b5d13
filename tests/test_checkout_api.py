import os
import tempfile
import unittest
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

db_dir = Path(tempfile.mkdtemp(prefix="society-payments-test-api-db-"))
os.environ["DATABASE_URL"] = f"sqlite:///{db_dir / 'payments-test.db'}"

from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import delete

from payments import directory, forms, ledger
from payments.api import get_payment_client, router
from payments.checkout import build_session_request
from payments.db import get_session
from payments.ledger import Sale
from payments.models import (
    Country,
    Interest,
    Member,
    MemberInterest,
    MemberOtherInterests,
    MembershipSale,
    User,
    UserData,
)
from payments.services import init_db
from payments.settings import settings
from payments.stripe_client import CheckoutSession

FIXED_NOW = datetime(2025, 4, 2, 9, 0, tzinfo=timezone.utc)
ADA = {"first_name": "Ada", "last_name": "Lovelace", "email": "ada@example.org"}


def pending_sale() -> Sale:
    sale = Sale(membership_year=2025, ordinary_fee=24.0, **ADA)
    with get_session() as session:
        ledger.create(session, sale)
    return sale


def paid_session(sale: Sale, status: str = "paid") -> CheckoutSession:
    return CheckoutSession(
        id="cs_test_1",
        payment_status=status,
        client_reference_id=str(sale.id),
        customer_id="cus_9",
        customer_email="ada@example.org",
    )


def seed_choices() -> None:
    with get_session() as session:
        if not session.query(Country).count():
            session.add_all(
                [
                    Country(ct_code="ZWE", ct_name="Zimbabwe"),
                    Country(ct_code="GBR", ct_name="United Kingdom"),
                    Country(ct_code="ABW", ct_name="Aruba"),
                ]
            )
        if not session.query(Interest).count():
            session.add_all([Interest(ntrst_name=name) for name in ("abcd", "efgh", "ijkl")])


class CheckoutApiTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        cls.app = FastAPI()
        cls.app.include_router(router)
        cls.client = TestClient(cls.app)

    def setUp(self) -> None:
        init_db()
        with get_session() as session:
            for model in (MemberInterest, MemberOtherInterests, UserData, Member, MembershipSale, User):
                session.execute(delete(model))
        self.provider = MagicMock()
        self.provider.create_session = AsyncMock(
            return_value=CheckoutSession(id="cs_test_1", url="https://checkout.stripe.test/pay/cs_test_1")
        )
        self.provider.get_session = AsyncMock()
        self.app.dependency_overrides[get_payment_client] = lambda: self.provider
        clock = patch("payments.timeutil._utcnow", return_value=FIXED_NOW)
        clock.start()
        self.addCleanup(clock.stop)

    def tearDown(self) -> None:
        self.app.dependency_overrides.clear()

    def test_home_redirects_to_form(self) -> None:
        for path in ("/", "/subscribe"):
            response = self.client.get(path, follow_redirects=False)
            self.assertEqual(response.status_code, 303)
            self.assertEqual(response.headers["location"], "/displayPaymentForm")

    def test_empty_form_marks_mandatory_fields(self) -> None:
        response = self.client.get("/displayPaymentForm")
        self.assertEqual(response.status_code, 200)
        self.assertIn("Membership Year 2025", response.text)
        self.assertIn('<span class="error">*</span>', response.text)

    def test_invalid_form_is_redisplayed_with_messages(self) -> None:
        response = self.client.post(
            "/displayPaymentForm",
            data={"first_name": "Ada", "email": "ada@example.org", "donation_to_society": "-3"},
        )
        self.assertEqual(response.status_code, 200)
        self.assertIn(forms.LAST_NAME_REQUIRED, response.text)
        self.assertIn(forms.NEGATIVE_NUMBER, response.text)
        self.assertIn('value="Ada"', response.text)

    def test_valid_form_shows_confirmation_total(self) -> None:
        response = self.client.post("/displayPaymentForm", data={**ADA, "donation_to_society": "1.5"})
        self.assertEqual(response.status_code, 200)
        self.assertIn('action="/checkout"', response.text)
        self.assertIn("£25.50", response.text)

    def test_checkout_records_pending_sale_and_redirects(self) -> None:
        response = self.client.post("/checkout", data=ADA, follow_redirects=False)

        self.assertEqual(response.status_code, 303)
        self.assertEqual(response.headers["location"], "https://checkout.stripe.test/pay/cs_test_1")
        request = self.provider.create_session.await_args.args[0]
        self.assertEqual(request.amount_pennies, 2400)
        self.assertEqual(request.success_url, "http://testserver/success?session_id={CHECKOUT_SESSION_ID}")
        self.assertEqual(request.cancel_url, "http://testserver/cancel")
        with get_session() as session:
            sales = session.query(MembershipSale).all()
        self.assertEqual(len(sales), 1)
        self.assertEqual(request.client_reference_id, str(sales[0].ms_id))
        self.assertEqual(sales[0].ms_payment_status, ledger.STATUS_PENDING)

    def test_provider_failure_shows_pre_payment_error(self) -> None:
        self.provider.create_session.side_effect = RuntimeError("stripe is down")
        response = self.client.post("/checkout", data=ADA, follow_redirects=False)
        self.assertEqual(response.status_code, 200)
        self.assertIn(settings.email_address_for_questions, response.text)
        self.assertIn("You have not been", response.text)

    def test_unpaid_session_leaves_sale_pending(self) -> None:
        sale = pending_sale()
        self.provider.get_session.return_value = paid_session(sale, status="unpaid")

        response = self.client.get("/success", params={"session_id": "cs_test_1"})

        self.assertEqual(response.status_code, 200)
        self.assertIn(settings.email_address_for_failures, response.text)
        with get_session() as session:
            self.assertEqual(session.query(User).count(), 0)
            self.assertEqual(ledger.fetch_by_id(session, sale.id).status, ledger.STATUS_PENDING)

    def test_paid_session_provisions_member_once(self) -> None:
        sale = pending_sale()
        self.provider.get_session.return_value = paid_session(sale)

        first = self.client.get("/success", params={"session_id": "cs_test_1"})
        second = self.client.get("/success", params={"session_id": "cs_test_1"})

        for response in (first, second):
            self.assertEqual(response.status_code, 200)
            self.assertIn("Thank you for your payment", response.text)
            self.assertIn('name="account_name" value="ada@example.org"', response.text)
        with get_session() as session:
            self.assertEqual(session.query(Member).count(), 1)
            stored = ledger.fetch_by_id(session, sale.id)
        self.assertEqual(stored.payment_id, "cus_9 ada@example.org")

    def test_bookkeeping_failure_still_shows_success(self) -> None:
        sale = pending_sale()
        self.provider.get_session.return_value = paid_session(sale)
        original = directory.set_field

        def failing_set_field(session, name, user_id, value):
            if name == "MEMBERS_AT_ADDRESS":
                raise RuntimeError("constraint violated")
            return original(session, name, user_id, value)

        with patch("payments.directory.set_field", side_effect=failing_set_field):
            with self.assertLogs("payments.reconcile", level="ERROR"):
                response = self.client.get("/success", params={"session_id": "cs_test_1"})

        self.assertIn("Thank you for your payment", response.text)
        with get_session() as session:
            users = directory.get_users_by_login_name(session, "ada@example.org")
            self.assertTrue(directory.is_paid_up(session, users[0].id, 2025))

    def test_provider_lookup_failure_shows_post_payment_error(self) -> None:
        self.provider.get_session.side_effect = RuntimeError("timeout")
        response = self.client.get("/success", params={"session_id": "cs_missing"})
        self.assertEqual(response.status_code, 200)
        self.assertIn(settings.email_address_for_failures, response.text)

    def test_extra_details_are_validated_and_stored(self) -> None:
        sale = pending_sale()
        self.provider.get_session.return_value = paid_session(sale)
        self.client.get("/success", params={"session_id": "cs_test_1"})

        rejected = self.client.post(
            "/extradetails", data={"account_name": "ada@example.org", "phone": "call me"}
        )
        self.assertIn("phone number must start with", rejected.text)

        accepted = self.client.post(
            "/extradetails",
            data={
                "account_name": "ada@example.org",
                "address_line_1": "12 St John's Wood Road",
                "town": "Leatherhead",
                "phone": "01372 000000",
            },
        )
        self.assertIn("Membership for the year 2025", accepted.text)
        with get_session() as session:
            user_id = directory.get_users_by_login_name(session, "ada@example.org")[0].id
            self.assertEqual(directory.get_field(session, "STREET", user_id), "12 St John's Wood Road")
            self.assertEqual(directory.get_field(session, "PHONE", user_id), "01372 000000")

    def test_success_page_offers_countries_and_interests(self) -> None:
        seed_choices()
        sale = pending_sale()
        self.provider.get_session.return_value = paid_session(sale)

        response = self.client.get("/success", params={"session_id": "cs_test_1"})

        self.assertIn('<option value="GBR" selected>United Kingdom</option>', response.text)
        self.assertLess(response.text.index('value="GBR"'), response.text.index('value="ABW"'))
        for name in ("abcd", "efgh", "ijkl"):
            self.assertIn(f">{name}</option>", response.text)
        self.assertIn('name="other_topics_of_interest"', response.text)

    def test_country_and_interests_are_stored_and_prefilled(self) -> None:
        seed_choices()
        sale = pending_sale()
        self.provider.get_session.return_value = paid_session(sale)
        self.client.get("/success", params={"session_id": "cs_test_1"})
        with get_session() as session:
            ids = {interest.name: interest.id for interest in directory.get_interests(session)}

        accepted = self.client.post(
            "/extradetails",
            data={
                "account_name": "ada@example.org",
                "country_code": "ZWE",
                "interest": [str(ids["abcd"]), str(ids["ijkl"])],
                "other_topics_of_interest": "Watermills",
            },
        )

        self.assertIn("Membership for the year 2025", accepted.text)
        with get_session() as session:
            user_id = directory.get_users_by_login_name(session, "ada@example.org")[0].id
            self.assertEqual(directory.get_field(session, "COUNTRY", user_id), "ZWE")
            self.assertEqual(
                directory.get_member_interests(session, user_id), sorted([ids["abcd"], ids["ijkl"]])
            )
            self.assertEqual(directory.get_member_other_interests(session, user_id), "Watermills")

        again = self.client.get("/success", params={"session_id": "cs_test_1"})
        self.assertIn('<option value="ZWE" selected>Zimbabwe</option>', again.text)
        self.assertIn('<option value="GBR">United Kingdom</option>', again.text)
        self.assertIn(f'<option value="{ids["abcd"]}" selected>abcd</option>', again.text)
        self.assertIn(f'<option value="{ids["efgh"]}">efgh</option>', again.text)
        self.assertIn('value="Watermills"', again.text)

    def test_unknown_country_is_a_post_payment_error(self) -> None:
        seed_choices()
        sale = pending_sale()
        self.provider.get_session.return_value = paid_session(sale)
        self.client.get("/success", params={"session_id": "cs_test_1"})

        with self.assertLogs("payments.api", level="ERROR"):
            response = self.client.post(
                "/extradetails", data={"account_name": "ada@example.org", "country_code": "XXX"}
            )

        self.assertIn(settings.email_address_for_failures, response.text)

    def test_extra_details_failure_still_shows_success(self) -> None:
        sale = pending_sale()
        self.provider.get_session.return_value = paid_session(sale)

        with patch("payments.checkout.load_extra_details", side_effect=RuntimeError("db gone")):
            with self.assertLogs("payments.api", level="ERROR") as logs:
                response = self.client.get("/success", params={"session_id": "cs_test_1"})

        self.assertEqual(response.status_code, 200)
        self.assertIn("Thank you for your payment", response.text)
        self.assertIn('name="account_name" value="ada@example.org"', response.text)
        self.assertTrue(any("ada@example.org" in line for line in logs.output))
        with get_session() as session:
            users = directory.get_users_by_login_name(session, "ada@example.org")
            self.assertTrue(directory.is_paid_up(session, users[0].id, 2025))

    def test_cancel_page(self) -> None:
        response = self.client.get("/cancel")
        self.assertEqual(response.status_code, 200)
        self.assertIn("cancelled", response.text)


class SessionRequestTests(unittest.TestCase):
    def test_request_parameters(self) -> None:
        sale = Sale(id=17, membership_year=2025, ordinary_fee=24.0, donation_to_society=0.5, **ADA)
        request = build_session_request(sale, "https://pay.example.org/")
        form = request.to_form()
        self.assertEqual(form["line_items[0][price_data][unit_amount]"], "2450")
        self.assertEqual(form["line_items[0][price_data][currency]"], "gbp")
        self.assertEqual(form["line_items[0][price_data][product_data][name]"], "Service")
        self.assertEqual(form["client_reference_id"], "17")
        self.assertEqual(form["mode"], "payment")
        self.assertEqual(
            form["invoice_creation[invoice_data][description]"],
            f"{settings.organisation_name} membership year 2025",
        )
        self.assertEqual(form["cancel_url"], "https://pay.example.org/cancel")


if __name__ == "__main__":
    unittest.main()
