"""Provision members for a paid sale and record the bookkeeping fields.

Provisioning and bookkeeping run in two separate transactions. Once the
first one commits the member is entitled for the year; failures in the
second are logged for an operator and never undo the entitlement.
"""
from __future__ import annotations

import logging
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable

from sqlalchemy.orm import Session

from . import directory, ledger, resolver
from .db import get_session
from .errors import BookkeepingError
from .ledger import Sale
from .settings import settings

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AbstractContextManager[Session]]


@dataclass
class ReconcileResult:
    sale: Sale
    account_names: list[str] = field(default_factory=list)
    already_complete: bool = False
    bookkeeping_errors: list[BookkeepingError] = field(default_factory=list)


def _associate_enabled(sale: Sale) -> bool:
    return settings.enable_other_member_types and sale.has_associate


def _create_account(session: Session, login_name: str, *, start: date, year: int) -> int:
    user = directory.create_locked_user(session, directory.unused_login_name(session, login_name))
    role = directory.get_role(session, directory.ROLE_MEMBER)
    directory.create_member(session, user, role, start, date(year, 12, 31))
    return user.id


def _set_names(session: Session, user_id: int, title: str, first_name: str, last_name: str, email: str) -> None:
    if title:
        directory.set_field(session, "SALUTATION", user_id, title)
    if first_name:
        directory.set_field(session, "FIRST_NAME", user_id, first_name)
    if last_name:
        directory.set_field(session, "LAST_NAME", user_id, last_name)
    if email:
        directory.set_field(session, "EMAIL", user_id, email)


def materialise_members(
    session: Session, sale: Sale, primary_id: int, associate_id: int, *, now: datetime
) -> None:
    """Create accounts for new people and extend the end date of everyone."""

    today = now.date()

    if primary_id > 0:
        sale.transaction_type = ledger.TRANSACTION_RENEWAL
        sale.user_id = primary_id
    else:
        sale.transaction_type = ledger.TRANSACTION_NEW_MEMBER
        sale.user_id = _create_account(
            session,
            resolver.login_names(sale)[0],
            start=today,
            year=sale.membership_year,
        )
    directory.set_member_end_date(session, sale.user_id, sale.membership_year)
    _set_names(session, sale.user_id, sale.title, sale.first_name, sale.last_name, sale.email)

    if not _associate_enabled(sale):
        sale.assoc_user_id = 0
        return

    if associate_id == sale.user_id:
        logger.warning(
            "Sale %s associate matched the primary user %s; creating a separate account",
            sale.id,
            sale.user_id,
        )
        associate_id = 0

    if associate_id > 0:
        sale.assoc_user_id = associate_id
    else:
        sale.assoc_user_id = _create_account(
            session,
            resolver.login_names(sale)[1],
            start=today,
            year=sale.membership_year,
        )
    directory.set_member_end_date(session, sale.assoc_user_id, sale.membership_year)
    _set_names(
        session,
        sale.assoc_user_id,
        sale.assoc_title,
        sale.assoc_first_name,
        sale.assoc_last_name,
        sale.assoc_email,
    )


def _bookkeeping_writes(sale: Sale, today: date) -> list[tuple[int, str, Any]]:
    members_at_address = 1
    friends_at_address = 1 if sale.friend else 0
    associate = sale.assoc_user_id > 0 and _associate_enabled(sale)
    if associate:
        members_at_address += 1
        if sale.assoc_friend:
            friends_at_address += 1

    giftaid = settings.enable_giftaid and sale.giftaid
    writes: list[tuple[int, str, Any]] = [
        (sale.user_id, "DATE_LAST_PAID", today),
        (sale.user_id, "VALUE_OF_LAST_PAYMENT", sale.total()),
        (sale.user_id, "MEMBERS_AT_ADDRESS", members_at_address),
        (sale.user_id, "NUMBER_OF_FRIENDS_OF_THE_MUSEUM_AT_THIS_ADDRESS", friends_at_address),
        (sale.user_id, "FRIEND_OF_THE_MUSEUM", sale.friend),
        (sale.user_id, "VALUE_OF_DONATION_TO_LDLHS", sale.donation_to_society),
        (sale.user_id, "VALUE_OF_DONATION_TO_THE_MUSEUM", sale.donation_to_museum),
        (sale.user_id, "GIFT_AID", giftaid),
        (sale.user_id, "DATA_PROTECTION_PERMISSION", True),
        (sale.user_id, "PERMISSION_TO_SEND_EMAILS", True),
    ]
    if associate:
        writes.extend(
            [
                (sale.assoc_user_id, "DATE_LAST_PAID", today),
                (sale.assoc_user_id, "FRIEND_OF_THE_MUSEUM", sale.assoc_friend),
                (sale.assoc_user_id, "MEMBERS_AT_ADDRESS", members_at_address),
                (
                    sale.assoc_user_id,
                    "NUMBER_OF_FRIENDS_OF_THE_MUSEUM_AT_THIS_ADDRESS",
                    friends_at_address,
                ),
                (sale.assoc_user_id, "DATA_PROTECTION_PERMISSION", True),
                (sale.assoc_user_id, "PERMISSION_TO_SEND_EMAILS", True),
            ]
        )
    return writes


def record_bookkeeping(session: Session, sale: Sale, *, today: date) -> list[BookkeepingError]:
    """Write the accounting fields, logging and collecting each failure.

    Each write runs in its own savepoint so a failed one is rolled back
    alone and the transaction stays usable for the rest.
    """

    failures: list[BookkeepingError] = []
    for user_id, name, value in _bookkeeping_writes(sale, today):
        try:
            with session.begin_nested():
                directory.set_field(session, name, user_id, value)
        except Exception as exc:
            error = BookkeepingError(
                f"user {user_id} field {name}: {exc}", sale_id=sale.id, field=name
            )
            logger.error("Bookkeeping write failed for sale %s field %s user %s: %s", sale.id, name, user_id, exc)
            failures.append(error)
    return failures


def reconcile_sale(
    sale_id: int,
    *,
    payment_id: str,
    now: datetime,
    session_factory: SessionFactory = get_session,
) -> ReconcileResult:
    """Provision the members of a paid sale.

    Errors before the first commit propagate and leave nothing behind. A
    sale that is already complete is returned untouched.
    """

    if not payment_id:
        raise ValueError("payment id must not be empty")

    with session_factory() as session:
        sale = ledger.fetch_by_id(session, sale_id)
        if sale.is_complete:
            logger.info("Sale %s already complete; skipping reconciliation", sale.id)
            names = directory.get_login_names(session, [sale.user_id, sale.assoc_user_id])
            return ReconcileResult(sale=sale, account_names=names, already_complete=True)

        primary_id, associate_id = resolver.resolve(session, sale)
        materialise_members(session, sale, primary_id, associate_id, now=now)

        sale.status = ledger.STATUS_COMPLETE
        sale.payment_id = payment_id
        ledger.update(session, sale)
        names = directory.get_login_names(session, [sale.user_id, sale.assoc_user_id])

    logger.info(
        "Sale %s complete: %s for %s %s (user %s, associate user %s)",
        sale.id,
        sale.transaction_type,
        sale.first_name,
        sale.last_name,
        sale.user_id,
        sale.assoc_user_id,
    )

    result = ReconcileResult(sale=sale, account_names=names)
    try:
        with session_factory() as session:
            result.bookkeeping_errors = record_bookkeeping(session, sale, today=now.date())
    except Exception as exc:
        logger.error("Bookkeeping commit failed for sale %s: %s", sale.id, exc)
        result.bookkeeping_errors.append(
            BookkeepingError(f"commit failed: {exc}", sale_id=sale.id)
        )
    return result


__all__ = [
    "ReconcileResult",
    "materialise_members",
    "reconcile_sale",
    "record_bookkeeping",
]
