"""Error kinds raised along the checkout and reconciliation flow."""
from __future__ import annotations

from typing import Any


class PaymentsError(Exception):
    """Base error carrying the failing operation and the sale it concerns."""

    def __init__(self, message: str, *, operation: str | None = None, sale_id: int | None = None) -> None:
        super().__init__(message)
        self.operation = operation
        self.sale_id = sale_id

    def __str__(self) -> str:
        message = super().__str__()
        prefix = []
        if self.operation:
            prefix.append(self.operation)
        if self.sale_id:
            prefix.append(f"sale {self.sale_id}")
        if prefix:
            return f"{' '.join(prefix)}: {message}"
        return message


class ValidationError(PaymentsError):
    """A form is invalid; ``form`` is the page to redisplay with its messages."""

    def __init__(self, form: Any) -> None:
        super().__init__("form is invalid", operation="validate")
        self.form = form


class PrePaymentError(PaymentsError):
    """Failure before the customer has been charged."""


class PostPaymentError(PaymentsError):
    """Failure after the customer has paid but before they were provisioned."""


class BookkeepingError(PaymentsError):
    """Failure writing bookkeeping fields after the member was provisioned."""

    def __init__(self, message: str, *, sale_id: int | None = None, field: str | None = None) -> None:
        super().__init__(message, operation="bookkeeping", sale_id=sale_id)
        self.field = field


class LedgerIntegrityError(PaymentsError):
    """An update or delete of a sale did not affect exactly one row."""


class NotFoundError(PaymentsError):
    """A directory record that must exist is missing."""


class SaleNotFoundError(NotFoundError):
    """No sale with the requested ID."""


__all__ = [
    "BookkeepingError",
    "LedgerIntegrityError",
    "NotFoundError",
    "PaymentsError",
    "PostPaymentError",
    "PrePaymentError",
    "SaleNotFoundError",
    "ValidationError",
]
