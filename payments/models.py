"""SQLAlchemy models for the membership directory and the sales ledger.

The ``adm_*`` tables belong to the society's CMS. They are declared here so
that a development or test database can be created from scratch; in
production they already exist and ``create_all`` leaves them alone.
"""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for ORM models."""


class User(Base):
    """Directory user account."""

    __tablename__ = "adm_users"

    usr_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    usr_uuid: Mapped[str] = mapped_column(String(36), unique=True)
    usr_login_name: Mapped[str | None] = mapped_column(String(254), unique=True)
    usr_password: Mapped[str | None] = mapped_column(String(255))
    usr_valid: Mapped[bool] = mapped_column(Boolean, default=True)
    usr_timestamp_create: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.current_timestamp()
    )


class Role(Base):
    """Directory role such as ``Member`` or ``Administrator``."""

    __tablename__ = "adm_roles"

    rol_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    rol_uuid: Mapped[str] = mapped_column(String(36), unique=True)
    rol_name: Mapped[str] = mapped_column(String(100))
    rol_valid: Mapped[bool] = mapped_column(Boolean, default=True)


class Member(Base):
    """Binding of a user to a role for a date range."""

    __tablename__ = "adm_members"

    mem_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    mem_uuid: Mapped[str] = mapped_column(String(36), unique=True)
    mem_rol_id: Mapped[int] = mapped_column(Integer, ForeignKey("adm_roles.rol_id"), index=True)
    mem_usr_id: Mapped[int] = mapped_column(Integer, ForeignKey("adm_users.usr_id"), index=True)
    mem_begin: Mapped[str] = mapped_column(String(30))
    mem_end: Mapped[str] = mapped_column(String(30))
    mem_approved: Mapped[int | None] = mapped_column(Integer)


class UserField(Base):
    """Definition of a typed profile field."""

    __tablename__ = "adm_user_fields"

    usf_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    usf_uuid: Mapped[str] = mapped_column(String(36), unique=True)
    usf_type: Mapped[str] = mapped_column(String(30))
    usf_name_intern: Mapped[str] = mapped_column(String(110), unique=True)
    usf_name: Mapped[str] = mapped_column(String(100))
    usf_sequence: Mapped[int] = mapped_column(Integer, default=0)


class UserData(Base):
    """Value of one profile field for one user."""

    __tablename__ = "adm_user_data"
    __table_args__ = (UniqueConstraint("usd_usr_id", "usd_usf_id"),)

    usd_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    usd_usr_id: Mapped[int] = mapped_column(Integer, ForeignKey("adm_users.usr_id"), index=True)
    usd_usf_id: Mapped[int] = mapped_column(Integer, ForeignKey("adm_user_fields.usf_id"))
    usd_value: Mapped[str | None] = mapped_column(String(4000))


class Country(Base):
    """Country offered on the address form, keyed by ISO 3166 alpha-3 code."""

    __tablename__ = "adm_countries"

    ct_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ct_code: Mapped[str] = mapped_column(String(3), unique=True)
    ct_name: Mapped[str] = mapped_column(String(50))


class Interest(Base):
    """Topic of interest a member can choose."""

    __tablename__ = "adm_interests"

    ntrst_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ntrst_name: Mapped[str] = mapped_column(String(50))


class MemberInterest(Base):
    __tablename__ = "adm_members_interests"
    __table_args__ = (UniqueConstraint("mi_usr_id", "mi_interest_id"),)

    mi_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    mi_usr_id: Mapped[int] = mapped_column(Integer, ForeignKey("adm_users.usr_id"), index=True)
    mi_interest_id: Mapped[int] = mapped_column(Integer, ForeignKey("adm_interests.ntrst_id"))


class MemberOtherInterests(Base):
    """Free-text topics of interest not in the list."""

    __tablename__ = "adm_members_other_interests"

    moi_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    moi_usr_id: Mapped[int] = mapped_column(Integer, ForeignKey("adm_users.usr_id"), unique=True)
    moi_interests: Mapped[str | None] = mapped_column(String(200))


class MembershipSale(Base):
    """One customer interaction with the payment service."""

    __tablename__ = "membership_sales"

    ms_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ms_payment_service: Mapped[str] = mapped_column(String(32))
    ms_payment_status: Mapped[str] = mapped_column(String(32))
    ms_payment_id: Mapped[str | None] = mapped_column(String(200))
    ms_transaction_type: Mapped[str | None] = mapped_column(String(32))
    ms_membership_year: Mapped[int] = mapped_column(Integer)

    ms_usr1_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("adm_users.usr_id"))
    ms_usr1_fee: Mapped[float] = mapped_column(Float, default=0.0)
    ms_usr1_friend: Mapped[bool] = mapped_column(Boolean, default=False)
    ms_usr1_friend_fee: Mapped[float] = mapped_column(Float, default=0.0)
    ms_usr1_title: Mapped[str | None] = mapped_column(String(32))
    ms_usr1_first_name: Mapped[str] = mapped_column(String(100))
    ms_usr1_last_name: Mapped[str] = mapped_column(String(100))
    ms_usr1_email: Mapped[str] = mapped_column(String(254))

    ms_usr2_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("adm_users.usr_id"))
    ms_usr2_fee: Mapped[float] = mapped_column(Float, default=0.0)
    ms_usr2_friend: Mapped[bool] = mapped_column(Boolean, default=False)
    ms_usr2_friend_fee: Mapped[float] = mapped_column(Float, default=0.0)
    ms_usr2_title: Mapped[str | None] = mapped_column(String(32))
    ms_usr2_first_name: Mapped[str | None] = mapped_column(String(100))
    ms_usr2_last_name: Mapped[str | None] = mapped_column(String(100))
    ms_usr2_email: Mapped[str | None] = mapped_column(String(254))

    ms_donation: Mapped[float] = mapped_column(Float, default=0.0)
    ms_donation_museum: Mapped[float] = mapped_column(Float, default=0.0)
    ms_giftaid: Mapped[bool] = mapped_column(Boolean, default=False)
    ms_timestamp_create: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.current_timestamp()
    )


__all__ = [
    "Base",
    "Country",
    "Interest",
    "Member",
    "MemberInterest",
    "MemberOtherInterests",
    "MembershipSale",
    "Role",
    "User",
    "UserData",
    "UserField",
]
