"""FastAPI routes for the membership payment pages."""
from __future__ import annotations

import logging
from pathlib import Path

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from . import checkout, timeutil
from .directory import DEFAULT_COUNTRY_CODE
from .errors import PostPaymentError, PrePaymentError, ValidationError
from .forms import ExtraDetailsForm, FormPage
from .ledger import Sale, format_money
from .settings import settings
from .stripe_client import StripeClient

logger = logging.getLogger(__name__)

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
templates.env.filters["money"] = format_money

router = APIRouter()

_payment_client: StripeClient | None = None


def get_payment_client() -> StripeClient:
    global _payment_client
    if _payment_client is None:
        _payment_client = StripeClient()
    return _payment_client


async def close_payment_client() -> None:
    global _payment_client
    if _payment_client is not None:
        await _payment_client.close()
        _payment_client = None


def _render(request: Request, name: str, **context) -> HTMLResponse:
    context.setdefault("settings", settings)
    context.setdefault("organisation_name", settings.organisation_name)
    return templates.TemplateResponse(request, name, context)


def _pre_payment_error(request: Request, exc: Exception) -> HTMLResponse:
    logger.error("Pre-payment failure: %s", exc)
    return _render(request, "pre_payment_error.html", email=settings.email_address_for_questions)


def _post_payment_error(request: Request, exc: Exception) -> HTMLResponse:
    logger.error("Post-payment failure: %s", exc)
    return _render(request, "post_payment_error.html", email=settings.email_address_for_failures)


def _payment_form(request: Request, page: FormPage) -> HTMLResponse:
    year = timeutil.membership_year(timeutil.now_local())
    return _render(request, "payment_form.html", form=page, membership_year=year)


def _extra_details_page(
    request: Request, *, sale: Sale | None, details: FormPage, membership_year: int
) -> HTMLResponse:
    try:
        choices = checkout.load_choices()
    except Exception:
        logger.exception("Could not load countries and interests")
        choices = {"countries": [], "interests": []}
    account_names = [
        name for name in (details.get("account_name"), details.get("assoc_account_name")) if name
    ]
    return _render(
        request,
        "success.html",
        sale=sale,
        details=details,
        account_names=account_names,
        membership_year=membership_year,
        default_country=DEFAULT_COUNTRY_CODE,
        email=settings.email_address_for_questions,
        **choices,
    )


@router.get("/", include_in_schema=False)
@router.get("/subscribe", include_in_schema=False)
def home() -> RedirectResponse:
    return RedirectResponse("/displayPaymentForm", status_code=303)


@router.get("/displayPaymentForm", response_class=HTMLResponse)
def display_payment_form(request: Request) -> HTMLResponse:
    return _payment_form(request, FormPage.blank_sale_form())


@router.post("/displayPaymentForm", response_class=HTMLResponse)
async def submit_payment_form(request: Request) -> HTMLResponse:
    data = await request.form()
    try:
        form = checkout.prepare_confirmation(data, now=timeutil.now_local())
    except ValidationError as exc:
        return _payment_form(request, exc.form)
    return _render(
        request,
        "confirmation.html",
        form=form,
        sale=form.to_sale(),
        membership_year=form.membership_year,
    )


@router.post("/checkout")
async def start_checkout(
    request: Request, client: StripeClient = Depends(get_payment_client)
):
    data = await request.form()
    try:
        url = await checkout.start_checkout(
            data,
            client=client,
            base_url=str(request.base_url),
            now=timeutil.now_local(),
        )
    except ValidationError as exc:
        return _payment_form(request, exc.form)
    except PrePaymentError as exc:
        return _pre_payment_error(request, exc)
    return RedirectResponse(url, status_code=303)


@router.get("/success", response_class=HTMLResponse)
async def success(
    request: Request,
    session_id: str = Query(""),
    client: StripeClient = Depends(get_payment_client),
) -> HTMLResponse:
    try:
        result = await checkout.complete_checkout(
            session_id, client=client, now=timeutil.now_local()
        )
    except PostPaymentError as exc:
        return _post_payment_error(request, exc)

    sale = result.sale
    names = result.account_names
    account_name = names[0] if names else ""
    assoc_account_name = names[1] if len(names) > 1 else ""
    try:
        details = checkout.load_extra_details(account_name, assoc_account_name)
    except Exception:
        # the member is already provisioned; show the form without pre-filled values
        logger.exception("Could not load extra details for %s", account_name)
        details = FormPage(values={"account_name": account_name, "assoc_account_name": assoc_account_name})
    return _extra_details_page(
        request, sale=sale, details=details, membership_year=sale.membership_year
    )


@router.post("/extradetails", response_class=HTMLResponse)
async def extra_details(request: Request) -> HTMLResponse:
    data = await request.form()
    year = timeutil.membership_year(timeutil.now_local())
    try:
        details = ExtraDetailsForm.from_form(data)
    except ValidationError as exc:
        return _extra_details_page(request, sale=None, details=exc.form, membership_year=year)
    try:
        checkout.save_extra_details(details)
    except PostPaymentError as exc:
        return _post_payment_error(request, exc)
    return _render(request, "completion.html", membership_year=year)


@router.api_route("/completion", methods=["GET", "POST"], response_class=HTMLResponse)
def completion(request: Request) -> HTMLResponse:
    year = timeutil.membership_year(timeutil.now_local())
    return _render(request, "completion.html", membership_year=year)


@router.get("/cancel", response_class=HTMLResponse)
def cancel(request: Request) -> HTMLResponse:
    return _render(request, "cancel.html")


__all__ = ["close_payment_client", "get_payment_client", "router"]
