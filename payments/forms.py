"""Pydantic models for the payment and extra-details forms."""
from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError
from .ledger import Sale
from .settings import settings

logger = logging.getLogger(__name__)

MANDATORY_MARK = "*"
FIRST_NAME_REQUIRED = "You must fill in the first name"
LAST_NAME_REQUIRED = "You must fill in the last name"
EMAIL_REQUIRED = "You must fill in the email address"
ASSOC_FIRST_NAME_REQUIRED = "If you fill in anything in this section, you must fill in the first name"
ASSOC_LAST_NAME_REQUIRED = "If you fill in anything in this section, you must fill in the last name"
INVALID_NUMBER = "must be a number"
NEGATIVE_NUMBER = "must be 0 or greater"
ILLEGAL_PHONE_NUMBER = (
    "phone number must start with '+' or '0' and then must be all digits or spaces"
)

_PHONE = re.compile(r"[+0][0-9 ]+")

SALE_FORM_FIELDS = (
    "title",
    "first_name",
    "last_name",
    "email",
    "friend",
    "donation_to_society",
    "donation_to_museum",
    "giftaid",
    "assoc_title",
    "assoc_first_name",
    "assoc_last_name",
    "assoc_email",
    "assoc_friend",
)
ASSOCIATE_TEXT_FIELDS = ("assoc_title", "assoc_first_name", "assoc_last_name", "assoc_email")

EXTRA_DETAILS_FIELDS = (
    "account_name",
    "assoc_account_name",
    "address_line_1",
    "address_line_2",
    "address_line_3",
    "town",
    "county",
    "postcode",
    "country_code",
    "phone",
    "mobile",
    "assoc_mobile",
    "location_of_interest",
    "other_topics_of_interest",
)


def tick_box(value: Any) -> bool:
    """A ticked HTML checkbox is submitted as ``on``."""
    if isinstance(value, bool):
        return value
    return str(value or "").strip() == "on"


def parse_amount(value: Any) -> float:
    """Parse a donation; raise ValueError with the inline message if bad."""

    if isinstance(value, str):
        value = value.strip()
        if not value:
            return 0.0
    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise ValueError(INVALID_NUMBER) from None
    if not math.isfinite(amount):
        raise ValueError(INVALID_NUMBER)
    if amount < 0:
        raise ValueError(NEGATIVE_NUMBER)
    return amount


def validate_phone_number(number: str) -> str:
    if not _PHONE.fullmatch(number):
        raise ValueError(ILLEGAL_PHONE_NUMBER)
    return number


def form_errors(exc: PydanticValidationError) -> dict[str, str]:
    """Map a pydantic error to one inline message per form field."""

    errors: dict[str, str] = {}
    for error in exc.errors():
        name = str(error["loc"][0]) if error["loc"] else "form"
        cause = (error.get("ctx") or {}).get("error")
        errors.setdefault(name, str(cause) if isinstance(cause, ValueError) else error["msg"])
    return errors


@dataclass
class FormPage:
    """What a form page redisplays: the entered values and inline messages."""

    values: dict[str, Any] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)

    def get(self, name: str, default: Any = "") -> Any:
        value = self.values.get(name)
        return default if value is None else value

    @classmethod
    def blank_sale_form(cls) -> "FormPage":
        return cls(
            errors={
                "first_name": MANDATORY_MARK,
                "last_name": MANDATORY_MARK,
                "email": MANDATORY_MARK,
            }
        )


class SaleForm(BaseModel):
    """Data entered on the payment page."""

    model_config = ConfigDict(str_strip_whitespace=True, validate_default=True)

    membership_year: int
    title: str = ""
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    friend: bool = False
    donation_to_society: float = 0.0
    donation_to_museum: float = 0.0
    giftaid: bool = False
    associate_entered: bool = Field(False, exclude=True)
    assoc_title: str = ""
    assoc_first_name: str = ""
    assoc_last_name: str = ""
    assoc_email: str = ""
    assoc_friend: bool = False

    @model_validator(mode="before")
    @classmethod
    def note_associate_section(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = dict(data)
            typed = [str(data.get(name) or "").strip() for name in ASSOCIATE_TEXT_FIELDS]
            data["associate_entered"] = any(typed) or tick_box(data.get("assoc_friend"))
        return data

    @field_validator("friend", "giftaid", "assoc_friend", mode="before")
    @classmethod
    def validate_tick_box(cls, value: Any) -> bool:
        return tick_box(value)

    @field_validator("donation_to_society", "donation_to_museum", mode="before")
    @classmethod
    def validate_donation(cls, value: Any) -> float:
        return parse_amount(value)

    @field_validator("first_name")
    @classmethod
    def validate_first_name(cls, value: str) -> str:
        if not value:
            raise ValueError(FIRST_NAME_REQUIRED)
        return value

    @field_validator("last_name")
    @classmethod
    def validate_last_name(cls, value: str) -> str:
        if not value:
            raise ValueError(LAST_NAME_REQUIRED)
        return value

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str) -> str:
        if not value:
            raise ValueError(EMAIL_REQUIRED)
        return value

    @field_validator("assoc_first_name")
    @classmethod
    def validate_assoc_first_name(cls, value: str, info: ValidationInfo) -> str:
        if not value and info.data.get("associate_entered"):
            raise ValueError(ASSOC_FIRST_NAME_REQUIRED)
        return value

    @field_validator("assoc_last_name")
    @classmethod
    def validate_assoc_last_name(cls, value: str, info: ValidationInfo) -> str:
        if not value and info.data.get("associate_entered"):
            raise ValueError(ASSOC_LAST_NAME_REQUIRED)
        return value

    @classmethod
    def from_form(cls, data: Mapping[str, Any], *, membership_year: int) -> "SaleForm":
        """Validate posted form data; raise ValidationError with the page to redisplay."""

        values = {name: str(data.get(name) or "").strip() for name in SALE_FORM_FIELDS}
        if not any(values.values()):
            raise ValidationError(FormPage.blank_sale_form())
        try:
            return cls.model_validate({**values, "membership_year": membership_year})
        except PydanticValidationError as exc:
            page = FormPage(values=values, errors=form_errors(exc))
            logger.info("Sale form rejected: %s", ", ".join(sorted(page.errors)))
            raise ValidationError(page) from exc

    @property
    def has_associate(self) -> bool:
        return bool(self.assoc_first_name)

    def to_sale(self) -> Sale:
        """Price the form from the configured fees and build the pending sale."""

        others = settings.enable_other_member_types
        associate = others and self.has_associate
        friend = others and self.friend
        assoc_friend = associate and self.assoc_friend
        return Sale(
            membership_year=self.membership_year,
            ordinary_fee=settings.ordinary_member_fee,
            friend=friend,
            friend_fee=settings.friend_fee if friend else 0.0,
            title=self.title,
            first_name=self.first_name,
            last_name=self.last_name,
            email=self.email,
            assoc_fee=settings.associate_member_fee if associate else 0.0,
            assoc_friend=assoc_friend,
            assoc_friend_fee=settings.friend_fee if assoc_friend else 0.0,
            assoc_title=self.assoc_title if associate else "",
            assoc_first_name=self.assoc_first_name if associate else "",
            assoc_last_name=self.assoc_last_name if associate else "",
            assoc_email=self.assoc_email if associate else "",
            donation_to_society=self.donation_to_society,
            donation_to_museum=self.donation_to_museum if others else 0.0,
            giftaid=self.giftaid if settings.enable_giftaid else False,
        )

    def total(self) -> float:
        return self.to_sale().total()


class ExtraDetailsForm(BaseModel):
    """Address, contact and interest details collected after a payment."""

    model_config = ConfigDict(str_strip_whitespace=True)

    account_name: str = ""
    assoc_account_name: str = ""
    address_line_1: str = ""
    address_line_2: str = ""
    address_line_3: str = ""
    town: str = ""
    county: str = ""
    postcode: str = ""
    country_code: str = ""
    phone: str = ""
    mobile: str = ""
    assoc_mobile: str = ""
    location_of_interest: str = ""
    interests: list[int] = Field(default_factory=list)
    other_topics_of_interest: str = Field("", max_length=200)

    @field_validator("phone", "mobile", "assoc_mobile")
    @classmethod
    def validate_phone(cls, value: str) -> str:
        if value:
            validate_phone_number(value)
        return value

    @field_validator("country_code")
    @classmethod
    def validate_country_code(cls, value: str) -> str:
        # the selection list sends "0" for no choice
        if value == "0":
            return ""
        return value.upper()

    @classmethod
    def from_form(cls, data: Mapping[str, Any]) -> "ExtraDetailsForm":
        """Validate posted form data; raise ValidationError with the page to redisplay."""

        values: dict[str, Any] = {
            name: str(data.get(name) or "").strip() for name in EXTRA_DETAILS_FIELDS
        }
        # the topics selection posts one "interest" field per chosen topic
        getlist = getattr(data, "getlist", None)
        chosen = getlist("interest") if getlist else data.get("interest") or []
        values["interests"] = [chosen] if isinstance(chosen, str) else list(chosen)
        try:
            return cls.model_validate(values)
        except PydanticValidationError as exc:
            page = FormPage(values=values, errors=form_errors(exc))
            logger.info(
                "Extra details for %s rejected: %s",
                values["account_name"],
                ", ".join(sorted(page.errors)),
            )
            raise ValidationError(page) from exc

    def address_lines(self) -> list[str]:
        lines = [self.address_line_1, self.address_line_2, self.address_line_3]
        lines = [line for line in lines if line]
        return lines + [""] * (3 - len(lines))

    def household_details(self) -> dict[str, str]:
        """Profile values shared by everyone at the address."""
        street, line_2, line_3 = self.address_lines()
        details = {
            "STREET": street,
            "ADDRESS_LINE_2": line_2,
            "ADDRESS_LINE_3": line_3,
            "TOWN": self.town,
            "COUNTY": self.county,
            "POSTCODE": self.postcode,
            "PHONE": self.phone,
        }
        if self.country_code:
            details["COUNTRY"] = self.country_code
        return details

    def member_details(self) -> dict[str, str]:
        details = self.household_details()
        details["MOBILE"] = self.mobile
        details["LOCATION_OF_INTEREST"] = self.location_of_interest
        return details

    def associate_details(self) -> dict[str, str]:
        details = self.household_details()
        details["MOBILE"] = self.assoc_mobile
        return details


__all__ = [
    "ExtraDetailsForm",
    "FormPage",
    "ILLEGAL_PHONE_NUMBER",
    "INVALID_NUMBER",
    "NEGATIVE_NUMBER",
    "SALE_FORM_FIELDS",
    "SaleForm",
    "form_errors",
    "parse_amount",
    "tick_box",
    "validate_phone_number",
]
