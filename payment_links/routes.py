import uuid
from datetime import datetime, UTC
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query

from payment_links.auth import MerchantAuthService, verify_token
from payment_links.database import SessionLocal
from payment_links.exceptions import PaymentLinkNotFoundError
from payment_links.models import LinkStatus
from payment_links.references import ReferenceGenerator
from payment_links.repository import SORTABLE_FIELDS, LinkFilter, PageRequest
from payment_links.schemas import (
    CreatePaymentLinkRequest,
    LoginRequest,
    MerchantRegistrationRequest,
    MerchantRegistrationResponse,
    PaymentAttemptResponse,
    PaymentLinkDetail,
    PaymentLinkPage,
    PaymentLinkSummary,
    PayPaymentLinkRequest,
    TokenResponse,
)
from payment_links.service import PaymentLinkService

router = APIRouter(prefix="/payment-links", tags=["payment-links"])

# One counter per process; every request shares it
reference_generator = ReferenceGenerator()

SORT_PATTERN = r"^(" + "|".join(SORTABLE_FIELDS) + r")(,(asc|desc))?$"


def get_link_service() -> PaymentLinkService:
    return PaymentLinkService(SessionLocal, reference_generator)


def get_auth_service() -> MerchantAuthService:
    return MerchantAuthService(SessionLocal)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def _link_id(value: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError:
        raise PaymentLinkNotFoundError()


def _page_request(page: int, size: int, sort: str) -> PageRequest:
    field, _, direction = sort.partition(",")
    return PageRequest(page=page, size=size, sort=field, descending=direction != "asc")


@router.post("/register", response_model=MerchantRegistrationResponse)
def register_merchant(
    request: MerchantRegistrationRequest,
    auth_service: MerchantAuthService = Depends(get_auth_service),
):
    merchant_id = auth_service.register(request.name, request.email, request.password)
    return MerchantRegistrationResponse(merchant_id=merchant_id)


@router.post("/login", response_model=TokenResponse)
def login(
    request: LoginRequest,
    auth_service: MerchantAuthService = Depends(get_auth_service),
):
    return TokenResponse(access_token=auth_service.authenticate(request.email, request.password))


@router.post("", status_code=201, response_model=PaymentLinkSummary)
def create_payment_link(
    request: CreatePaymentLinkRequest,
    merchant_id: uuid.UUID = Depends(verify_token),
    service: PaymentLinkService = Depends(get_link_service),
):
    link = service.create(
        merchant_id,
        request.amount_cents,
        request.currency,
        request.description,
        request.expires_in_minutes,
        request.metadata,
    )
    return PaymentLinkSummary.from_entity(link)


@router.get("", response_model=PaymentLinkPage)
def list_payment_links(
    status: Optional[LinkStatus] = None,
    min_amount: Optional[int] = Query(None, ge=1),
    max_amount: Optional[int] = Query(None, ge=1),
    from_date: Optional[datetime] = None,
    to_date: Optional[datetime] = None,
    page: int = Query(0, ge=0),
    size: int = Query(20, ge=1, le=100),
    sort: str = Query("created_at,desc", pattern=SORT_PATTERN),
    merchant_id: uuid.UUID = Depends(verify_token),
    service: PaymentLinkService = Depends(get_link_service),
):
    link_filter = LinkFilter(
        status=status,
        min_amount=min_amount,
        max_amount=max_amount,
        from_date=_as_utc(from_date),
        to_date=_as_utc(to_date),
    )
    result = service.list(merchant_id, link_filter, _page_request(page, size, sort))
    return PaymentLinkPage.from_page(result)


@router.get("/{identifier}", response_model=PaymentLinkDetail)
def get_payment_link(
    identifier: str,
    merchant_id: uuid.UUID = Depends(verify_token),
    service: PaymentLinkService = Depends(get_link_service),
):
    link = service.get_by_id_or_reference(merchant_id, identifier)
    attempts = service.list_attempts(merchant_id, link.id)
    return PaymentLinkDetail.from_entity(link, attempts)


@router.post("/{link_id}/pay", response_model=PaymentAttemptResponse)
def pay_payment_link(
    link_id: str,
    request: PayPaymentLinkRequest,
    idempotency_key: str = Header(..., alias="Idempotency-Key", min_length=1, max_length=255),
    merchant_id: uuid.UUID = Depends(verify_token),
    service: PaymentLinkService = Depends(get_link_service),
):
    attempt = service.pay(merchant_id, _link_id(link_id), request.payment_token, idempotency_key)
    return PaymentAttemptResponse.from_entity(attempt)


@router.post("/{link_id}/cancel", response_model=PaymentLinkSummary)
def cancel_payment_link(
    link_id: str,
    merchant_id: uuid.UUID = Depends(verify_token),
    service: PaymentLinkService = Depends(get_link_service),
):
    return PaymentLinkSummary.from_entity(service.cancel(merchant_id, _link_id(link_id)))
