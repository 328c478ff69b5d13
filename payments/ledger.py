"""Repository helpers for the ``membership_sales`` ledger."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy.orm import Session

from .db import POSTGRES, dialect_name, execute
from .errors import LedgerIntegrityError, SaleNotFoundError

logger = logging.getLogger(__name__)

PAYMENT_SERVICE_STRIPE = "Stripe"

STATUS_PENDING = "pending"
STATUS_COMPLETE = "complete"
STATUS_CANCELLED = "cancelled"

TRANSACTION_NEW_MEMBER = "new member"
TRANSACTION_RENEWAL = "membership renewal"

_COLUMNS = (
    "ms_payment_service",
    "ms_payment_status",
    "ms_payment_id",
    "ms_transaction_type",
    "ms_membership_year",
    "ms_usr1_id",
    "ms_usr1_fee",
    "ms_usr1_friend",
    "ms_usr1_friend_fee",
    "ms_usr1_title",
    "ms_usr1_first_name",
    "ms_usr1_last_name",
    "ms_usr1_email",
    "ms_usr2_id",
    "ms_usr2_fee",
    "ms_usr2_friend",
    "ms_usr2_friend_fee",
    "ms_usr2_title",
    "ms_usr2_first_name",
    "ms_usr2_last_name",
    "ms_usr2_email",
    "ms_donation",
    "ms_donation_museum",
    "ms_giftaid",
)


@dataclass
class Sale:
    """One customer interaction, from form submission to provisioning."""

    id: int = 0
    payment_service: str = PAYMENT_SERVICE_STRIPE
    status: str = STATUS_PENDING
    payment_id: str = ""
    transaction_type: str = TRANSACTION_NEW_MEMBER
    membership_year: int = 0

    user_id: int = 0
    ordinary_fee: float = 0.0
    friend: bool = False
    friend_fee: float = 0.0
    title: str = ""
    first_name: str = ""
    last_name: str = ""
    email: str = ""

    assoc_user_id: int = 0
    assoc_fee: float = 0.0
    assoc_friend: bool = False
    assoc_friend_fee: float = 0.0
    assoc_title: str = ""
    assoc_first_name: str = ""
    assoc_last_name: str = ""
    assoc_email: str = ""

    donation_to_society: float = 0.0
    donation_to_museum: float = 0.0
    giftaid: bool = False

    @property
    def has_associate(self) -> bool:
        return bool(self.assoc_first_name)

    @property
    def is_complete(self) -> bool:
        return self.status == STATUS_COMPLETE

    def total(self) -> float:
        """Sum of fees and donations, or 0 if any of them is negative."""
        amounts = (
            self.ordinary_fee,
            self.friend_fee,
            self.assoc_fee,
            self.assoc_friend_fee,
            self.donation_to_society,
            self.donation_to_museum,
        )
        if any(amount < 0 for amount in amounts):
            return 0.0
        return sum(amounts)

    def total_pennies(self) -> int:
        return int(self.total() * 100 + 0.5)

    def total_for_display(self) -> str:
        return format_money(self.total())

    def _values(self) -> tuple[Any, ...]:
        return (
            self.payment_service,
            self.status,
            self.payment_id,
            self.transaction_type,
            self.membership_year,
            self.user_id or None,
            self.ordinary_fee,
            self.friend,
            self.friend_fee,
            self.title,
            self.first_name,
            self.last_name,
            self.email,
            self.assoc_user_id or None,
            self.assoc_fee,
            self.assoc_friend,
            self.assoc_friend_fee,
            self.assoc_title,
            self.assoc_first_name,
            self.assoc_last_name,
            self.assoc_email,
            self.donation_to_society,
            self.donation_to_museum,
            self.giftaid,
        )


def format_money(amount: float) -> str:
    return f"£{amount:.2f}"


def _placeholders(count: int, start: int = 1) -> str:
    return ", ".join(f"${index}" for index in range(start, start + count))


def create(session: Session, sale: Sale) -> int:
    """Insert the sale and assign the new ID back to it.

    Absent member IDs (zero) are stored as NULL.
    """

    columns = ", ".join(_COLUMNS)
    values = _placeholders(len(_COLUMNS))
    if dialect_name(session) == POSTGRES:
        result = execute(
            session,
            f"INSERT INTO membership_sales ({columns}) VALUES ({values}) RETURNING ms_id",
            *sale._values(),
        )
        sale.id = int(result.scalar_one())
    else:
        result = execute(
            session,
            f"INSERT INTO membership_sales ({columns}) VALUES ({values})",
            *sale._values(),
        )
        sale.id = int(result.lastrowid)
    logger.info("Created %s sale %s for %s", sale.status, sale.id, sale.email)
    return sale.id


def fetch_by_id(session: Session, sale_id: int) -> Sale:
    """Return the sale with the given ID."""

    row = execute(
        session,
        """
        SELECT ms_id, ms_payment_service, ms_payment_status,
               {coalesce}(ms_payment_id, ''), {coalesce}(ms_transaction_type, ''),
               ms_membership_year,
               {coalesce}(ms_usr1_id, 0), ms_usr1_fee, ms_usr1_friend, ms_usr1_friend_fee,
               {coalesce}(ms_usr1_title, ''), ms_usr1_first_name, ms_usr1_last_name, ms_usr1_email,
               {coalesce}(ms_usr2_id, 0), {coalesce}(ms_usr2_fee, 0),
               ms_usr2_friend, {coalesce}(ms_usr2_friend_fee, 0),
               {coalesce}(ms_usr2_title, ''), {coalesce}(ms_usr2_first_name, ''),
               {coalesce}(ms_usr2_last_name, ''), {coalesce}(ms_usr2_email, ''),
               ms_donation, ms_donation_museum, ms_giftaid
        FROM membership_sales
        WHERE ms_id = $1
        """,
        sale_id,
    ).first()
    if row is None:
        raise SaleNotFoundError("no such sale", operation="fetch_by_id", sale_id=sale_id)
    return Sale(
        id=row[0],
        payment_service=row[1],
        status=row[2],
        payment_id=row[3],
        transaction_type=row[4],
        membership_year=int(row[5]),
        user_id=int(row[6]),
        ordinary_fee=float(row[7]),
        friend=bool(row[8]),
        friend_fee=float(row[9]),
        title=row[10],
        first_name=row[11],
        last_name=row[12],
        email=row[13],
        assoc_user_id=int(row[14]),
        assoc_fee=float(row[15]),
        assoc_friend=bool(row[16]),
        assoc_friend_fee=float(row[17]),
        assoc_title=row[18],
        assoc_first_name=row[19],
        assoc_last_name=row[20],
        assoc_email=row[21],
        donation_to_society=float(row[22]),
        donation_to_museum=float(row[23]),
        giftaid=bool(row[24]),
    )


def update(session: Session, sale: Sale) -> None:
    """Overwrite every column of the sale; exactly one row must change."""

    assignments = ", ".join(
        f"{column} = ${index}" for index, column in enumerate(_COLUMNS, start=1)
    )
    id_placeholder = f"${len(_COLUMNS) + 1}"
    result = execute(
        session,
        f"UPDATE membership_sales SET {assignments} WHERE ms_id = {id_placeholder}",
        *sale._values(),
        sale.id,
    )
    if result.rowcount != 1:
        raise LedgerIntegrityError(
            f"update affected {result.rowcount} rows - expected just 1",
            operation="update",
            sale_id=sale.id,
        )


def delete(session: Session, sale: Sale) -> None:
    """Delete the sale and zero its ID; exactly one row must go."""

    result = execute(session, "DELETE FROM membership_sales WHERE ms_id = $1", sale.id)
    if result.rowcount != 1:
        raise LedgerIntegrityError(
            f"delete affected {result.rowcount} rows - expected just 1",
            operation="delete",
            sale_id=sale.id,
        )
    sale.id = 0


__all__ = [
    "PAYMENT_SERVICE_STRIPE",
    "STATUS_CANCELLED",
    "STATUS_COMPLETE",
    "STATUS_PENDING",
    "Sale",
    "TRANSACTION_NEW_MEMBER",
    "TRANSACTION_RENEWAL",
    "create",
    "delete",
    "fetch_by_id",
    "format_money",
    "update",
]
