"""Database initialisation and directory seed data."""
from __future__ import annotations

import logging
import uuid

from sqlalchemy import select
from sqlalchemy.orm import Session

from .db import engine, get_session
from .directory import PROFILE_FIELDS, ROLE_ADMINISTRATOR, ROLE_MEMBER
from .models import Base, Role, UserField

logger = logging.getLogger(__name__)


def seed_directory(session: Session) -> int:
    """Insert the roles and profile fields the service needs, if missing."""

    created = 0
    existing_roles = set(session.scalars(select(Role.rol_name)).all())
    for name in (ROLE_ADMINISTRATOR, ROLE_MEMBER):
        if name in existing_roles:
            continue
        session.add(Role(rol_uuid=str(uuid.uuid4()), rol_name=name, rol_valid=True))
        created += 1

    existing_fields = set(session.scalars(select(UserField.usf_name_intern)).all())
    for sequence, (internal_name, (display_name, type_tag)) in enumerate(
        PROFILE_FIELDS.items(), start=1
    ):
        if internal_name in existing_fields:
            continue
        session.add(
            UserField(
                usf_uuid=str(uuid.uuid4()),
                usf_type=type_tag,
                usf_name_intern=internal_name,
                usf_name=display_name,
                usf_sequence=sequence,
            )
        )
        created += 1
    session.flush()
    return created


def init_db() -> None:
    """Create missing tables and seed the directory reference data."""
    Base.metadata.create_all(engine)
    with get_session() as session:
        created = seed_directory(session)
    if created:
        logger.info("Seeded %s directory reference rows", created)


__all__ = ["init_db", "seed_directory"]
