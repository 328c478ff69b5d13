"""Match the people named on a sale against existing members."""
from __future__ import annotations

import logging
import re

from sqlalchemy.orm import Session

from . import directory
from .ledger import Sale

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"[ \t]+")


def resolve(session: Session, sale: Sale) -> tuple[int, int]:
    """Return the existing member IDs of the primary and associate, 0 for none."""

    primary_id = directory.lookup_member_user_id(
        session, sale.first_name, sale.last_name, sale.email
    )
    associate_id = 0
    if sale.has_associate:
        associate_id = directory.lookup_member_user_id(
            session, sale.assoc_first_name, sale.assoc_last_name, associate_lookup_email(sale)
        )
    logger.info(
        "Resolved sale %s to primary user %s and associate user %s",
        sale.id,
        primary_id,
        associate_id,
    )
    return primary_id, associate_id


def associate_lookup_email(sale: Sale) -> str:
    """Email to look the associate up by; "" means look up by names only.

    An associate sharing the primary's address would otherwise resolve to
    the primary's account, whose login name is that address.
    """

    if not sale.assoc_email or sale.assoc_email.lower() == sale.email.lower():
        return ""
    return sale.assoc_email


def name_login(first_name: str, last_name: str) -> str:
    """Build a ``first.last`` login name, e.g. ``herbert.george.wells``."""

    joined = f"{first_name.strip()} {last_name.strip()}".lower()
    return _WHITESPACE.sub(".", joined.strip())


def login_names(sale: Sale) -> tuple[str, str]:
    """Return the login names for new accounts; the associate's is "" if absent."""

    if not sale.email:
        raise ValueError("no email address given")
    associate = ""
    if sale.has_associate:
        associate = associate_lookup_email(sale) or name_login(
            sale.assoc_first_name, sale.assoc_last_name
        )
    return sale.email, associate


__all__ = ["associate_lookup_email", "login_names", "name_login", "resolve"]
