"""Repository helpers for the membership directory tables.

Every function takes the session owning the caller's transaction. Nothing
here commits, rolls back or retries; SQL errors propagate unchanged.
"""
from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Iterable, Mapping

from sqlalchemy.orm import Session

from .db import POSTGRES, dialect_name, execute
from .errors import NotFoundError
from .timeutil import entitlement_deadline, member_end_wire, parse_member_end

logger = logging.getLogger(__name__)

ROLE_MEMBER = "Member"
ROLE_ADMINISTRATOR = "Administrator"

LOCKED_PASSWORD = "*LK*"
UUID_ATTEMPTS = 10
DEFAULT_COUNTRY_CODE = "GBR"

TEXT = "TEXT"
EMAIL = "EMAIL"
PHONE = "PHONE"
NUMBER = "NUMBER"
DECIMAL = "DECIMAL"
DATE = "DATE"
CHECKBOX = "CHECKBOX"

# Internal name -> (display name, type tag).
PROFILE_FIELDS: dict[str, tuple[str, str]] = {
    "SALUTATION": ("Salutation", TEXT),
    "FIRST_NAME": ("First name", TEXT),
    "LAST_NAME": ("Last name", TEXT),
    "STREET": ("Address line 1", TEXT),
    "ADDRESS_LINE_2": ("Address line 2", TEXT),
    "ADDRESS_LINE_3": ("Address line 3", TEXT),
    "TOWN": ("Town", TEXT),
    "COUNTY": ("County", TEXT),
    "POSTCODE": ("Postcode", TEXT),
    "COUNTRY": ("Country", TEXT),
    "EMAIL": ("Email", EMAIL),
    "PHONE": ("Phone", PHONE),
    "MOBILE": ("Mobile", PHONE),
    "DATE_LAST_PAID": ("Date last paid", DATE),
    "VALUE_OF_LAST_PAYMENT": ("Value of last payment", DECIMAL),
    "FRIEND_OF_THE_MUSEUM": ("Friend of the museum", CHECKBOX),
    "MEMBERS_AT_ADDRESS": ("Members at address", NUMBER),
    "NUMBER_OF_FRIENDS_OF_THE_MUSEUM_AT_THIS_ADDRESS": (
        "Number of friends of the museum at this address",
        NUMBER,
    ),
    "PERMISSION_TO_SEND_EMAILS": ("Permission to send emails", CHECKBOX),
    "VALUE_OF_DONATION_TO_LDLHS": ("Value of donation to the society", DECIMAL),
    "VALUE_OF_DONATION_TO_THE_MUSEUM": ("Value of donation to the museum", DECIMAL),
    "GIFT_AID": ("Gift aid", CHECKBOX),
    "LOCATION_OF_INTEREST": ("Location of interest", TEXT),
    "DATA_PROTECTION_PERMISSION": ("Data protection permission", CHECKBOX),
}

EXTRA_DETAIL_FIELDS = (
    "STREET",
    "ADDRESS_LINE_2",
    "ADDRESS_LINE_3",
    "TOWN",
    "COUNTY",
    "POSTCODE",
    "COUNTRY",
    "PHONE",
    "MOBILE",
    "LOCATION_OF_INTEREST",
)

_field_ids: dict[str, int] = {}
_field_ids_lock = threading.Lock()


@dataclass
class User:
    id: int
    uuid: str
    login_name: str
    password: str = LOCKED_PASSWORD
    valid: bool = True


@dataclass
class Role:
    id: int
    uuid: str
    name: str


@dataclass
class Member:
    id: int
    uuid: str
    user_id: int
    role_id: int
    start_date: str
    end_date: str
    approved: int | None = 1


@dataclass
class Country:
    id: int
    code: str
    name: str


@dataclass
class Interest:
    id: int
    name: str


def _insert_returning_id(session: Session, postgres_sql: str, sqlite_sql: str, *params: Any) -> int:
    if dialect_name(session) == POSTGRES:
        return int(execute(session, postgres_sql, *params).scalar_one())
    result = execute(session, sqlite_sql, *params)
    return int(result.lastrowid)


def create_uuid(session: Session, column: str, table: str) -> str:
    """Generate a UUID that is not yet present in ``table.column``."""

    for _ in range(UUID_ATTEMPTS):
        candidate = str(uuid.uuid4())
        existing = execute(
            session, f"SELECT {column} FROM {table} WHERE {column} = $1", candidate
        ).first()
        if existing is None:
            return candidate
        logger.warning("UUID collision in %s.%s", table, column)
    raise RuntimeError(f"could not generate a unique UUID for {table}.{column}")


def create_locked_user(session: Session, login_name: str) -> User:
    """Create a valid user whose password must be set via password reset."""

    if not login_name:
        raise ValueError("login name must not be empty")
    user_uuid = create_uuid(session, "usr_uuid", "adm_users")
    user_id = _insert_returning_id(
        session,
        """
        INSERT INTO adm_users (usr_uuid, usr_login_name, usr_password, usr_valid)
        VALUES ($1, $2, $3, $4)
        RETURNING usr_id
        """,
        """
        INSERT INTO adm_users (usr_uuid, usr_login_name, usr_password, usr_valid)
        VALUES ($1, $2, $3, $4)
        """,
        user_uuid,
        login_name,
        LOCKED_PASSWORD,
        True,
    )
    logger.info("Created user %s with login name %s", user_id, login_name)
    return User(id=user_id, uuid=user_uuid, login_name=login_name)


def get_users_by_login_name(session: Session, name: str) -> list[User]:
    """Return users whose login name matches ``name`` case-insensitively."""

    rows = execute(
        session,
        """
        SELECT usr_id, usr_uuid, usr_login_name, {coalesce}(usr_password, ''), usr_valid
        FROM adm_users
        WHERE lower(usr_login_name) = lower($1)
        ORDER BY usr_id
        """,
        name,
    ).all()
    return [
        User(id=row[0], uuid=row[1], login_name=row[2], password=row[3], valid=bool(row[4]))
        for row in rows
    ]


def unused_login_name(session: Session, name: str) -> str:
    """Return ``name``, or ``name`` with the lowest suffix from 2 that no user has."""

    candidate = name
    suffix = 1
    while get_users_by_login_name(session, candidate):
        suffix += 1
        candidate = f"{name}{suffix}"
    if candidate != name:
        logger.info("Login name %s is taken; using %s", name, candidate)
    return candidate


def lookup_member_user_id(session: Session, first_name: str, last_name: str, email: str) -> int:
    """Return the ID of the member matching the email or the names, or 0."""

    if email:
        row = execute(
            session,
            """
            SELECT u.usr_id
            FROM adm_users AS u
            JOIN adm_members AS m ON m.mem_usr_id = u.usr_id
            JOIN adm_roles AS r ON r.rol_id = m.mem_rol_id AND r.rol_name = $2
            WHERE lower(u.usr_login_name) = lower($1)
            ORDER BY u.usr_id
            """,
            email,
            ROLE_MEMBER,
        ).first()
        if row is not None:
            return int(row[0])

    if not first_name or not last_name:
        return 0

    first_name_id = resolve_field_id(session, "FIRST_NAME")
    last_name_id = resolve_field_id(session, "LAST_NAME")
    row = execute(
        session,
        """
        SELECT u.usr_id
        FROM adm_users AS u
        JOIN adm_members AS m ON m.mem_usr_id = u.usr_id
        JOIN adm_roles AS r ON r.rol_id = m.mem_rol_id AND r.rol_name = $5
        JOIN adm_user_data AS fn ON fn.usd_usr_id = u.usr_id AND fn.usd_usf_id = $1
        JOIN adm_user_data AS ln ON ln.usd_usr_id = u.usr_id AND ln.usd_usf_id = $2
        WHERE lower(fn.usd_value) = lower($3)
          AND lower(ln.usd_value) = lower($4)
        ORDER BY u.usr_id
        """,
        first_name_id,
        last_name_id,
        first_name,
        last_name,
        ROLE_MEMBER,
    ).first()
    if row is None:
        return 0
    return int(row[0])


def get_role(session: Session, name: str) -> Role:
    row = execute(
        session, "SELECT rol_id, rol_uuid, rol_name FROM adm_roles WHERE rol_name = $1", name
    ).first()
    if row is None:
        raise NotFoundError(f"no role named {name!r}", operation="get_role")
    return Role(id=row[0], uuid=row[1], name=row[2])


def create_member(
    session: Session, user: User, role: Role, start: date | str, end: date | str
) -> Member:
    """Bind ``user`` to ``role`` from ``start`` to ``end`` and approve it."""

    start_text = start.strftime("%Y-%m-%d") if isinstance(start, date) else start
    end_text = end.strftime("%Y-%m-%d") if isinstance(end, date) else end
    member_uuid = create_uuid(session, "mem_uuid", "adm_members")
    member_id = _insert_returning_id(
        session,
        """
        INSERT INTO adm_members (mem_uuid, mem_usr_id, mem_rol_id, mem_begin, mem_end, mem_approved)
        VALUES ($1, $2, $3, $4, $5, $6)
        RETURNING mem_id
        """,
        """
        INSERT INTO adm_members (mem_uuid, mem_usr_id, mem_rol_id, mem_begin, mem_end, mem_approved)
        VALUES ($1, $2, $3, $4, $5, $6)
        """,
        member_uuid,
        user.id,
        role.id,
        start_text,
        end_text,
        1,
    )
    return Member(
        id=member_id,
        uuid=member_uuid,
        user_id=user.id,
        role_id=role.id,
        start_date=start_text,
        end_date=end_text,
    )


def get_member_for_user(session: Session, user_id: int) -> Member:
    """Return the user's membership record with role ``Member``."""

    row = execute(
        session,
        """
        SELECT m.mem_id, m.mem_uuid, m.mem_usr_id, m.mem_rol_id, m.mem_begin, m.mem_end,
               {coalesce}(m.mem_approved, 0)
        FROM adm_members AS m
        JOIN adm_roles AS r ON r.rol_id = m.mem_rol_id
        WHERE r.rol_name = $2 AND m.mem_usr_id = $1
        ORDER BY m.mem_id
        """,
        user_id,
        ROLE_MEMBER,
    ).first()
    if row is None:
        raise NotFoundError(f"user {user_id} has no member record", operation="get_member_for_user")
    return Member(
        id=row[0],
        uuid=row[1],
        user_id=row[2],
        role_id=row[3],
        start_date=str(row[4]),
        end_date=str(row[5]),
        approved=row[6],
    )


def _member_ids(session: Session, user_id: int) -> list[int]:
    rows = execute(
        session,
        """
        SELECT m.mem_id
        FROM adm_members AS m
        JOIN adm_roles AS r ON r.rol_id = m.mem_rol_id
        WHERE r.rol_name = $2 AND m.mem_usr_id = $1
        """,
        user_id,
        ROLE_MEMBER,
    ).all()
    return [int(row[0]) for row in rows]


def set_member_end_date(session: Session, user_id: int, year: int) -> None:
    """Extend every ``Member`` record of the user to the end of ``year``."""

    member_ids = _member_ids(session, user_id)
    if not member_ids:
        raise NotFoundError(f"user {user_id} has no member record", operation="set_member_end_date")
    if len(member_ids) > 1:
        logger.warning("User %s has %s member records; updating all", user_id, len(member_ids))

    end_date = member_end_wire(year)
    if dialect_name(session) == POSTGRES:
        template = """
            UPDATE adm_members
            SET mem_end = to_timestamp($1, 'YYYY-MM-DD HH24:MI:SS US TZH')
            WHERE mem_id = $2
        """
    else:
        template = "UPDATE adm_members SET mem_end = $1 WHERE mem_id = $2"

    for member_id in member_ids:
        result = execute(session, template, end_date, member_id)
        if result.rowcount != 1:
            raise NotFoundError(
                f"member {member_id} vanished while setting end date", operation="set_member_end_date"
            )


def is_paid_up(session: Session, user_id: int, year: int) -> bool:
    """Return True if the user's membership covers ``year``."""

    deadline = entitlement_deadline(year)
    rows = execute(
        session,
        """
        SELECT m.mem_end
        FROM adm_members AS m
        JOIN adm_roles AS r ON r.rol_id = m.mem_rol_id
        WHERE r.rol_name = $2 AND m.mem_usr_id = $1
        """,
        user_id,
        ROLE_MEMBER,
    ).all()
    for row in rows:
        end = parse_member_end(row[0])
        if end is not None and end >= deadline:
            return True
    return False


def resolve_field_id(session: Session, internal_name: str) -> int:
    """Return the ID of the profile field with the given internal name."""

    cached = _field_ids.get(internal_name)
    if cached is not None:
        return cached
    with _field_ids_lock:
        cached = _field_ids.get(internal_name)
        if cached is not None:
            return cached
        row = execute(
            session,
            "SELECT usf_id FROM adm_user_fields WHERE usf_name_intern = $1",
            internal_name,
        ).first()
        if row is None:
            raise NotFoundError(f"no profile field {internal_name!r}", operation="resolve_field_id")
        _field_ids[internal_name] = int(row[0])
        return _field_ids[internal_name]


def to_wire(value: Any) -> str:
    """Serialise a profile value to its stored text form."""

    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d %H:%M:%S")
    if isinstance(value, date):
        return value.strftime("%Y-%m-%d")
    if isinstance(value, float):
        return f"{value:.2f}"
    return str(value)


def from_wire(raw: str | None, kind: type = str) -> Any:
    """Parse a stored profile value into ``kind``."""

    if raw is None:
        return _zero(kind)
    if kind is bool:
        return raw.strip() == "1"
    if kind is int:
        return int(raw) if raw.strip() else 0
    if kind is float:
        return float(raw) if raw.strip() else 0.0
    if kind is datetime:
        return datetime.strptime(raw.strip(), "%Y-%m-%d %H:%M:%S")
    if kind is date:
        return datetime.strptime(raw.strip()[:10], "%Y-%m-%d").date()
    return raw


def _zero(kind: type) -> Any:
    if kind in (date, datetime):
        return None
    return kind()


def _value_row(session: Session, field_id: int, user_id: int):
    return execute(
        session,
        "SELECT usd_id, usd_value FROM adm_user_data WHERE usd_usr_id = $1 AND usd_usf_id = $2",
        user_id,
        field_id,
    ).first()


def set_value(session: Session, field_id: int, user_id: int, value: Any) -> None:
    """Insert or update the value of one profile field for one user."""

    wire = to_wire(value)
    row = _value_row(session, field_id, user_id)
    if row is None:
        execute(
            session,
            "INSERT INTO adm_user_data (usd_usr_id, usd_usf_id, usd_value) VALUES ($1, $2, $3)",
            user_id,
            field_id,
            wire,
        )
    else:
        execute(session, "UPDATE adm_user_data SET usd_value = $1 WHERE usd_id = $2", wire, row[0])


def get_value(session: Session, field_id: int, user_id: int, kind: type = str) -> Any:
    """Return the profile value, or the zero value of ``kind`` when unset."""

    row = _value_row(session, field_id, user_id)
    if row is None:
        return _zero(kind)
    return from_wire(row[1], kind)


def get_value_or_not_found(session: Session, field_id: int, user_id: int, kind: type = str) -> Any:
    row = _value_row(session, field_id, user_id)
    if row is None:
        raise NotFoundError(
            f"user {user_id} has no value for field {field_id}", operation="get_value"
        )
    return from_wire(row[1], kind)


def set_field(session: Session, internal_name: str, user_id: int, value: Any) -> None:
    """Set a profile value addressed by the field's internal name."""

    set_value(session, resolve_field_id(session, internal_name), user_id, value)


def get_field(session: Session, internal_name: str, user_id: int, kind: type = str) -> Any:
    return get_value(session, resolve_field_id(session, internal_name), user_id, kind)


def save_extra_details(session: Session, user_id: int, details: Mapping[str, str]) -> None:
    """Store address and contact fields collected after payment."""

    for name in EXTRA_DETAIL_FIELDS:
        value = details.get(name)
        if value is None:
            continue
        set_field(session, name, user_id, value)


def get_extra_details(session: Session, user_id: int) -> dict[str, str]:
    return {name: get_field(session, name, user_id) for name in EXTRA_DETAIL_FIELDS}


def get_login_names(session: Session, user_ids: Iterable[int]) -> list[str]:
    """Return the login names of the given user IDs, skipping unknown IDs."""

    names: list[str] = []
    for user_id in user_ids:
        row = execute(
            session, "SELECT usr_login_name FROM adm_users WHERE usr_id = $1", user_id
        ).first()
        if row is not None and row[0]:
            names.append(row[0])
    return names


def get_countries(session: Session) -> list[Country]:
    """Return every country, ordered by name."""

    rows = execute(session, "SELECT ct_id, ct_code, ct_name FROM adm_countries ORDER BY ct_name").all()
    return [Country(id=row[0], code=row[1], name=row[2]) for row in rows]


def get_country_by_code(session: Session, code: str) -> Country:
    row = execute(
        session, "SELECT ct_id, ct_code, ct_name FROM adm_countries WHERE ct_code = $1", code
    ).first()
    if row is None:
        raise NotFoundError(f"no country with code {code!r}", operation="get_country")
    return Country(id=row[0], code=row[1], name=row[2])


def get_interests(session: Session) -> list[Interest]:
    rows = execute(session, "SELECT ntrst_id, ntrst_name FROM adm_interests ORDER BY ntrst_name").all()
    return [Interest(id=row[0], name=row[1]) for row in rows]


def get_member_interests(session: Session, user_id: int) -> list[int]:
    """Return the IDs of the topics the user has chosen."""

    rows = execute(
        session,
        "SELECT mi_interest_id FROM adm_members_interests WHERE mi_usr_id = $1 ORDER BY mi_interest_id",
        user_id,
    ).all()
    return [int(row[0]) for row in rows]


def set_member_interests(session: Session, user_id: int, interest_ids: Iterable[int]) -> None:
    """Replace the user's chosen topics; unknown topic IDs raise NotFoundError."""

    chosen = sorted(set(interest_ids))
    known = {interest.id for interest in get_interests(session)}
    unknown = [interest_id for interest_id in chosen if interest_id not in known]
    if unknown:
        raise NotFoundError(f"no interests with IDs {unknown}", operation="set_interests")
    execute(session, "DELETE FROM adm_members_interests WHERE mi_usr_id = $1", user_id)
    for interest_id in chosen:
        execute(
            session,
            "INSERT INTO adm_members_interests (mi_usr_id, mi_interest_id) VALUES ($1, $2)",
            user_id,
            interest_id,
        )


def get_member_other_interests(session: Session, user_id: int) -> str:
    row = execute(
        session,
        "SELECT moi_interests FROM adm_members_other_interests WHERE moi_usr_id = $1",
        user_id,
    ).first()
    if row is None or row[0] is None:
        return ""
    return row[0]


def set_member_other_interests(session: Session, user_id: int, topics: str) -> None:
    """Insert or update the free-text topics of interest."""

    row = execute(
        session, "SELECT moi_id FROM adm_members_other_interests WHERE moi_usr_id = $1", user_id
    ).first()
    if row is None:
        execute(
            session,
            "INSERT INTO adm_members_other_interests (moi_usr_id, moi_interests) VALUES ($1, $2)",
            user_id,
            topics,
        )
    else:
        execute(
            session,
            "UPDATE adm_members_other_interests SET moi_interests = $1 WHERE moi_id = $2",
            topics,
            row[0],
        )

__all__ = [
    "CHECKBOX",
    "Country",
    "DATE",
    "DECIMAL",
    "DEFAULT_COUNTRY_CODE",
    "EMAIL",
    "EXTRA_DETAIL_FIELDS",
    "Interest",
    "LOCKED_PASSWORD",
    "Member",
    "NUMBER",
    "PHONE",
    "PROFILE_FIELDS",
    "ROLE_ADMINISTRATOR",
    "ROLE_MEMBER",
    "Role",
    "TEXT",
    "User",
    "create_locked_user",
    "create_member",
    "create_uuid",
    "from_wire",
    "get_countries",
    "get_country_by_code",
    "get_extra_details",
    "get_field",
    "get_interests",
    "get_login_names",
    "get_member_for_user",
    "get_member_interests",
    "get_member_other_interests",
    "get_role",
    "get_users_by_login_name",
    "get_value",
    "get_value_or_not_found",
    "is_paid_up",
    "lookup_member_user_id",
    "resolve_field_id",
    "save_extra_details",
    "set_field",
    "set_member_end_date",
    "set_member_interests",
    "set_member_other_interests",
    "set_value",
    "to_wire",
    "unused_login_name",
]
