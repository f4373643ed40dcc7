"""Persistence collaborators.

Each repository wraps one SQLAlchemy session and never commits; the caller's
unit of work decides when writes become visible. Entities reference each
other by id only, so every lookup is an explicit query here.
"""
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import func, select, update

from payment_links.models import LinkStatus, Merchant, PaymentAttempt, PaymentLink
from payment_links.references import REFERENCE_PREFIX, parse_sequence


@dataclass(frozen=True)
class LinkFilter:
    status: LinkStatus | None = None
    min_amount: int | None = None
    max_amount: int | None = None
    from_date: datetime | None = None
    to_date: datetime | None = None


SORTABLE_FIELDS = {
    "created_at": PaymentLink.created_at,
    "expires_at": PaymentLink.expires_at,
    "amount_cents": PaymentLink.amount_cents,
    "reference": PaymentLink.reference,
}


@dataclass(frozen=True)
class PageRequest:
    page: int = 0       # zero-based
    size: int = 20
    sort: str = "created_at"
    descending: bool = True

    def __post_init__(self):
        if self.sort not in SORTABLE_FIELDS:
            raise ValueError(f"cannot sort payment links by {self.sort!r}")


@dataclass
class Page:
    items: list = field(default_factory=list)
    page: int = 0
    size: int = 20
    total: int = 0

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.size) if self.size else 0


def _ordering(page: PageRequest):
    column = SORTABLE_FIELDS[page.sort]
    # Reference breaks ties so paging is stable
    if page.descending:
        return column.desc(), PaymentLink.reference.desc()
    return column.asc(), PaymentLink.reference.asc()

class MerchantRepository:
    def __init__(self, session):
        self.session = session

    def get(self, merchant_id: uuid.UUID) -> Merchant | None:
        return self.session.get(Merchant, merchant_id)

    def get_by_email(self, email: str) -> Merchant | None:
        return self.session.query(Merchant).filter_by(email=email).first()

    def exists_by_email(self, email: str) -> bool:
        return self.get_by_email(email) is not None

    def add(self, merchant: Merchant) -> Merchant:
        self.session.add(merchant)
        self.session.flush()
        return merchant


class PaymentLinkRepository:
    def __init__(self, session):
        self.session = session

    def get_for_merchant(
        self, link_id: uuid.UUID, merchant_id: uuid.UUID, for_update: bool = False
    ) -> PaymentLink | None:
        stmt = select(PaymentLink).where(
            PaymentLink.id == link_id, PaymentLink.merchant_id == merchant_id
        )
        if for_update:
            stmt = stmt.with_for_update()
        return self.session.execute(stmt).scalar_one_or_none()

    def get_by_reference_for_merchant(
        self, reference: str, merchant_id: uuid.UUID
    ) -> PaymentLink | None:
        stmt = select(PaymentLink).where(
            PaymentLink.reference == reference, PaymentLink.merchant_id == merchant_id
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def add(self, link: PaymentLink) -> PaymentLink:
        self.session.add(link)
        self.session.flush()
        return link

    def transition(
        self,
        link_id: uuid.UUID,
        from_status: LinkStatus,
        to_status: LinkStatus,
        open_at: datetime = None,
        **values,
    ) -> bool:
        """Compare-and-swap the status of one link.

        The row changes only if it is still in ``from_status`` (and, when
        ``open_at`` is given, its deadline is still ahead of it). Returns
        whether the swap happened.
        """
        stmt = (
            update(PaymentLink)
            .where(PaymentLink.id == link_id, PaymentLink.status == from_status)
            .values(status=to_status, **values)
            .execution_options(synchronize_session=False)
        )
        if open_at is not None:
            stmt = stmt.where(PaymentLink.expires_at > open_at)
        result = self.session.execute(stmt)
        return result.rowcount == 1

    def expire_overdue(self, now: datetime) -> int:
        """Single conditional bulk update: CREATED and deadline < now -> EXPIRED."""
        stmt = (
            update(PaymentLink)
            .where(PaymentLink.status == LinkStatus.CREATED, PaymentLink.expires_at < now)
            .values(status=LinkStatus.EXPIRED)
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount

    def search(self, merchant_id: uuid.UUID, link_filter: LinkFilter, page: PageRequest) -> Page:
        conditions = [PaymentLink.merchant_id == merchant_id]
        if link_filter.status is not None:
            conditions.append(PaymentLink.status == link_filter.status)
        if link_filter.from_date is not None:
            conditions.append(PaymentLink.created_at >= link_filter.from_date)
        if link_filter.to_date is not None:
            conditions.append(PaymentLink.created_at <= link_filter.to_date)
        if link_filter.min_amount is not None:
            conditions.append(PaymentLink.amount_cents >= link_filter.min_amount)
        if link_filter.max_amount is not None:
            conditions.append(PaymentLink.amount_cents <= link_filter.max_amount)

        total = self.session.execute(
            select(func.count()).select_from(PaymentLink).where(*conditions)
        ).scalar_one()
        items = self.session.execute(
            select(PaymentLink)
            .where(*conditions)
            .order_by(*_ordering(page))
            .offset(page.page * page.size)
            .limit(page.size)
        ).scalars().all()

        return Page(items=list(items), page=page.page, size=page.size, total=total)

    def max_reference_sequence(self, year: int) -> int:
        """Highest sequence already issued for ``year`` (0 if none)."""
        # Longest first: the sequence widens past six digits
        latest = self.session.execute(
            select(PaymentLink.reference)
            .where(PaymentLink.reference.like(f"{REFERENCE_PREFIX}-{year}-%"))
            .order_by(func.length(PaymentLink.reference).desc(), PaymentLink.reference.desc())
            .limit(1)
        ).scalar_one_or_none()
        if latest is None:
            return 0
        return parse_sequence(latest, year) or 0


class PaymentAttemptRepository:
    def __init__(self, session):
        self.session = session

    def find(self, link_id: uuid.UUID, idempotency_key: str) -> PaymentAttempt | None:
        return (
            self.session.query(PaymentAttempt)
            .filter_by(payment_link_id=link_id, idempotency_key=idempotency_key)
            .first()
        )

    def add(self, attempt: PaymentAttempt) -> PaymentAttempt:
        """Insert and flush so the (link, key) constraint fires here."""
        self.session.add(attempt)
        self.session.flush()
        return attempt

    def list_for_link(self, link_id: uuid.UUID) -> list[PaymentAttempt]:
        return (
            self.session.query(PaymentAttempt)
            .filter_by(payment_link_id=link_id)
            .order_by(PaymentAttempt.created_at.desc())
            .all()
        )
