"""Checkout flow: form, pending sale, provider session, callback."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Mapping

from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from . import directory, ledger
from .db import get_session
from .errors import NotFoundError, PostPaymentError, PrePaymentError
from .forms import ExtraDetailsForm, FormPage, SaleForm
from .ledger import Sale
from .reconcile import ReconcileResult, SessionFactory, reconcile_sale
from .settings import settings
from .stripe_client import SessionRequest, StripeClient
from .timeutil import membership_year

logger = logging.getLogger(__name__)


def prepare_confirmation(data: Mapping[str, Any], *, now: datetime) -> SaleForm:
    """Validate the payment form; raise ValidationError with the page to redisplay."""

    form = SaleForm.from_form(data, membership_year=membership_year(now))
    sale = form.to_sale()
    logger.info(
        "%s %s member %.2f friend %.2f assoc member %.2f assoc friend %.2f",
        sale.first_name,
        sale.last_name,
        sale.ordinary_fee,
        sale.friend_fee,
        sale.assoc_fee,
        sale.assoc_friend_fee,
    )
    return form


def record_pending_sale(form: SaleForm, *, session_factory: SessionFactory = get_session) -> Sale:
    """Persist the sale as pending and commit before any payment starts."""

    sale = form.to_sale()
    if sale.total() <= 0:
        raise PrePaymentError(
            f"refusing to charge a total of {sale.total_for_display()}", operation="create_sale"
        )
    try:
        with session_factory() as session:
            ledger.create(session, sale)
    except Exception as exc:
        raise PrePaymentError(str(exc), operation="create_sale") from exc
    return sale


def build_session_request(sale: Sale, base_url: str) -> SessionRequest:
    base = base_url.rstrip("/")
    return SessionRequest(
        amount_pennies=sale.total_pennies(),
        client_reference_id=str(sale.id),
        success_url=f"{base}/success?session_id={{CHECKOUT_SESSION_ID}}",
        cancel_url=f"{base}/cancel",
        description=f"{settings.organisation_name} membership year {sale.membership_year}",
    )


async def start_checkout(
    data: Mapping[str, Any],
    *,
    client: StripeClient,
    base_url: str,
    now: datetime,
    session_factory: SessionFactory = get_session,
) -> str:
    """Record a pending sale and open a provider session; return its URL."""

    form = prepare_confirmation(data, now=now)
    sale = await run_in_threadpool(record_pending_sale, form, session_factory=session_factory)
    request = build_session_request(sale, base_url)
    try:
        checkout_session = await client.create_session(request)
    except Exception as exc:
        raise PrePaymentError(str(exc), operation="create_session", sale_id=sale.id) from exc
    if not checkout_session.url:
        raise PrePaymentError(
            "provider returned no checkout URL", operation="create_session", sale_id=sale.id
        )
    logger.info(
        "Sale %s awaiting payment of %s in session %s",
        sale.id,
        sale.total_for_display(),
        checkout_session.id,
    )
    return checkout_session.url


async def complete_checkout(
    session_id: str,
    *,
    client: StripeClient,
    now: datetime,
    session_factory: SessionFactory = get_session,
) -> ReconcileResult:
    """Handle the provider's success callback for a checkout session."""

    if not session_id:
        raise PostPaymentError("no session id in callback", operation="get_session")
    try:
        checkout_session = await client.get_session(session_id)
    except Exception as exc:
        raise PostPaymentError(str(exc), operation="get_session") from exc

    if not checkout_session.is_paid:
        raise PostPaymentError(
            f"payment status should be paid - {checkout_session.payment_status or 'missing'}",
            operation="check_payment",
        )

    try:
        sale_id = int(checkout_session.client_reference_id)
    except ValueError as exc:
        raise PostPaymentError(
            f"bad client reference {checkout_session.client_reference_id!r}",
            operation="check_payment",
        ) from exc

    try:
        return await run_in_threadpool(
            reconcile_sale,
            sale_id,
            payment_id=checkout_session.payment_reference,
            now=now,
            session_factory=session_factory,
        )
    except Exception as exc:
        logger.exception("Reconciliation failed for paid sale %s", sale_id)
        raise PostPaymentError(str(exc), operation="reconcile", sale_id=sale_id) from exc


def _user_id(session: Session, account_name: str) -> int:
    users = directory.get_users_by_login_name(session, account_name)
    if not users:
        raise PostPaymentError(f"account {account_name!r} does not exist", operation="extra_details")
    return users[0].id


def load_choices(*, session_factory: SessionFactory = get_session) -> dict[str, list[Any]]:
    """Countries, default first, and topics of interest for the selection lists."""

    with session_factory() as session:
        countries = directory.get_countries(session)
        interests = directory.get_interests(session)
    countries.sort(key=lambda country: country.code != directory.DEFAULT_COUNTRY_CODE)
    return {"countries": countries, "interests": interests}


def load_extra_details(
    account_name: str,
    assoc_account_name: str = "",
    *,
    session_factory: SessionFactory = get_session,
) -> FormPage:
    """Pre-fill the extra-details form with what the member gave last time."""

    values: dict[str, Any] = {"account_name": account_name, "assoc_account_name": assoc_account_name}
    with session_factory() as session:
        users = directory.get_users_by_login_name(session, account_name)
        if not users:
            return FormPage(values=values)
        user_id = users[0].id
        current = directory.get_extra_details(session, user_id)
        values["interests"] = directory.get_member_interests(session, user_id)
        values["other_topics_of_interest"] = directory.get_member_other_interests(session, user_id)
        if assoc_account_name:
            assoc_users = directory.get_users_by_login_name(session, assoc_account_name)
            if assoc_users:
                values["assoc_mobile"] = directory.get_field(session, "MOBILE", assoc_users[0].id)
    lines = [
        line
        for line in (current["STREET"], current["ADDRESS_LINE_2"], current["ADDRESS_LINE_3"])
        if line
    ]
    for index, line in enumerate(lines, start=1):
        values[f"address_line_{index}"] = line
    values.update(
        town=current["TOWN"],
        county=current["COUNTY"],
        postcode=current["POSTCODE"],
        country_code=current["COUNTRY"],
        phone=current["PHONE"],
        mobile=current["MOBILE"],
        location_of_interest=current["LOCATION_OF_INTEREST"],
    )
    return FormPage(values=values)


def save_extra_details(
    form: ExtraDetailsForm, *, session_factory: SessionFactory = get_session
) -> None:
    """Store validated extra details for the member and any associate.

    The associate shares the address and country; topics of interest are
    recorded against the member only.
    """

    if not form.account_name:
        raise PostPaymentError("account_name not given", operation="extra_details")
    with session_factory() as session:
        user_id = _user_id(session, form.account_name)
        try:
            if form.country_code:
                directory.get_country_by_code(session, form.country_code)
            directory.save_extra_details(session, user_id, form.member_details())
            directory.set_member_interests(session, user_id, form.interests)
            directory.set_member_other_interests(session, user_id, form.other_topics_of_interest)
        except NotFoundError as exc:
            raise PostPaymentError(str(exc), operation="extra_details") from exc
        if form.assoc_account_name:
            assoc_id = _user_id(session, form.assoc_account_name)
            directory.save_extra_details(session, assoc_id, form.associate_details())
    logger.info("Stored extra details for %s", form.account_name)


__all__ = [
    "build_session_request",
    "complete_checkout",
    "load_choices",
    "load_extra_details",
    "prepare_confirmation",
    "record_pending_sale",
    "save_extra_details",
    "start_checkout",
]
