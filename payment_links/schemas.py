import uuid
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from payment_links.models import AttemptStatus, LinkStatus, PaymentAttempt, PaymentLink
from payment_links.repository import Page


class MerchantRegistrationRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    email: str = Field(min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    password: str = Field(min_length=8, max_length=72)


class MerchantRegistrationResponse(BaseModel):
    merchant_id: uuid.UUID


class LoginRequest(BaseModel):
    email: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class CreatePaymentLinkRequest(BaseModel):
    amount_cents: int = Field(gt=0)
    currency: str = Field(min_length=3, max_length=3)
    description: str = Field(min_length=1, max_length=255)
    expires_in_minutes: int = Field(ge=0)
    metadata: Optional[dict[str, Any]] = None


class PayPaymentLinkRequest(BaseModel):
    payment_token: str = Field(min_length=1)


class PaymentLinkSummary(BaseModel):
    id: uuid.UUID
    reference: str
    status: LinkStatus
    amount_cents: int
    currency: str
    expires_at: datetime

    @classmethod
    def from_entity(cls, link: PaymentLink) -> "PaymentLinkSummary":
        return cls(
            id=link.id,
            reference=link.reference,
            status=link.status,
            amount_cents=link.amount_cents,
            currency=link.currency,
            expires_at=link.expires_at,
        )


class PaymentAttemptResponse(BaseModel):
    id: uuid.UUID
    payment_link_id: uuid.UUID
    status: AttemptStatus
    reason: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_entity(cls, attempt: PaymentAttempt) -> "PaymentAttemptResponse":
        return cls(
            id=attempt.id,
            payment_link_id=attempt.payment_link_id,
            status=attempt.status,
            reason=attempt.reason,
            created_at=attempt.created_at,
        )


class PaymentLinkDetail(BaseModel):
    """Full view of a link: the summary plus the fields only detail shows."""

    summary: PaymentLinkSummary
    merchant_id: uuid.UUID
    description: str
    created_at: datetime
    paid_at: Optional[datetime] = None
    metadata: Optional[dict[str, Any]] = None
    attempts: list[PaymentAttemptResponse] = []

    @classmethod
    def from_entity(cls, link: PaymentLink, attempts=()) -> "PaymentLinkDetail":
        return cls(
            summary=PaymentLinkSummary.from_entity(link),
            merchant_id=link.merchant_id,
            description=link.description,
            created_at=link.created_at,
            paid_at=link.paid_at,
            metadata=link.metadata_,
            attempts=[PaymentAttemptResponse.from_entity(a) for a in attempts],
        )


class PaymentLinkPage(BaseModel):
    items: list[PaymentLinkSummary]
    page: int
    size: int
    total: int
    total_pages: int

    @classmethod
    def from_page(cls, page: Page) -> "PaymentLinkPage":
        return cls(
            items=[PaymentLinkSummary.from_entity(link) for link in page.items],
            page=page.page,
            size=page.size,
            total=page.total,
            total_pages=page.total_pages,
        )


class ApiError(BaseModel):
    type: str
    title: str
    status: int
    detail: str
    code: str
    errors: Optional[dict[str, Any]] = None
