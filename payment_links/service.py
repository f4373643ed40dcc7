import uuid
from datetime import timedelta

import structlog
from sqlalchemy.exc import IntegrityError

from payment_links import state_machine
from payment_links.clock import Clock, SystemClock
from payment_links.database import unit_of_work
from payment_links.exceptions import (
    InvalidStateError,
    MerchantNotFoundError,
    PaymentLinkNotFoundError,
    ValidationError,
)
from payment_links.models import LinkStatus, PaymentAttempt, PaymentLink
from payment_links.processor import IdempotentPaymentProcessor
from payment_links.references import ReferenceGenerator
from payment_links.repository import (
    LinkFilter,
    MerchantRepository,
    Page,
    PageRequest,
    PaymentAttemptRepository,
    PaymentLinkRepository,
)

logger = structlog.get_logger(__name__)

MAX_REFERENCE_ATTEMPTS = 5


def _validate_link_input(amount_cents, currency, description, ttl_minutes):
    errors = {}
    if amount_cents is None or amount_cents <= 0:
        errors["amount_cents"] = ["must be greater than 0"]
    if currency is None or len(currency) != 3:
        errors["currency"] = ["must be exactly 3 characters"]
    if not description:
        errors["description"] = ["must not be blank"]
    if ttl_minutes is None or ttl_minutes < 0:
        errors["ttl_minutes"] = ["must not be negative"]
    if errors:
        raise ValidationError(errors)


class PaymentLinkService:
    """Create, inspect, pay, cancel, list and expire payment links.

    Every public call runs in exactly one unit of work: the read, the state
    check and the write commit together or roll back together. Lookups are
    always scoped to the calling merchant.
    """

    def __init__(
        self,
        session_factory,
        reference_generator: ReferenceGenerator = None,
        clock: Clock = None,
        processor: IdempotentPaymentProcessor = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._references = reference_generator or ReferenceGenerator(clock=self._clock)
        self._processor = processor or IdempotentPaymentProcessor(self._clock)

    def create(
        self,
        merchant_id: uuid.UUID,
        amount_cents: int,
        currency: str,
        description: str,
        ttl_minutes: int,
        metadata: dict = None,
    ) -> PaymentLink:
        _validate_link_input(amount_cents, currency, description, ttl_minutes)
        for attempt in range(1, MAX_REFERENCE_ATTEMPTS + 1):
            try:
                return self._create_once(
                    merchant_id, amount_cents, currency, description, ttl_minutes, metadata
                )
            except IntegrityError:
                # Another process issued the same reference; draw a new one.
                logger.warning("payment_link_reference_collision", attempt=attempt)
                if attempt == MAX_REFERENCE_ATTEMPTS:
                    raise

    def _create_once(self, merchant_id, amount_cents, currency, description, ttl_minutes, metadata):
        with unit_of_work(self._session_factory) as session:
            if MerchantRepository(session).get(merchant_id) is None:
                raise MerchantNotFoundError()

            now = self._clock.now()
            link = PaymentLink(
                id=uuid.uuid4(),
                merchant_id=merchant_id,
                reference=self._references.generate_reference(),
                amount_cents=amount_cents,
                currency=currency.upper(),
                description=description,
                status=LinkStatus.CREATED,
                created_at=now,
                expires_at=now + timedelta(minutes=ttl_minutes),
                metadata_=metadata,
            )
            PaymentLinkRepository(session).add(link)

        logger.info(
            "payment_link_created",
            payment_link_id=str(link.id),
            merchant_id=str(merchant_id),
            reference=link.reference,
            amount_cents=amount_cents,
            expires_at=link.expires_at.isoformat(),
        )
        return link

    def get_by_id_or_reference(self, merchant_id: uuid.UUID, identifier: str) -> PaymentLink:
        with unit_of_work(self._session_factory) as session:
            links = PaymentLinkRepository(session)
            try:
                link = links.get_for_merchant(uuid.UUID(identifier), merchant_id)
            except ValueError:
                link = links.get_by_reference_for_merchant(identifier, merchant_id)
            if link is None:
                raise PaymentLinkNotFoundError()
            return link

    def list_attempts(self, merchant_id: uuid.UUID, link_id: uuid.UUID) -> list[PaymentAttempt]:
        """Attempt history for one link, newest first."""
        with unit_of_work(self._session_factory) as session:
            if PaymentLinkRepository(session).get_for_merchant(link_id, merchant_id) is None:
                raise PaymentLinkNotFoundError()
            return PaymentAttemptRepository(session).list_for_link(link_id)

    def pay(
        self,
        merchant_id: uuid.UUID,
        link_id: uuid.UUID,
        payment_token: str,
        idempotency_key: str,
    ) -> PaymentAttempt:
        with unit_of_work(self._session_factory) as session:
            link = PaymentLinkRepository(session).get_for_merchant(
                link_id, merchant_id, for_update=True
            )
            if link is None:
                raise PaymentLinkNotFoundError()
            return self._processor.process_payment(session, link, payment_token, idempotency_key)

    def cancel(self, merchant_id: uuid.UUID, link_id: uuid.UUID) -> PaymentLink:
        with unit_of_work(self._session_factory) as session:
            links = PaymentLinkRepository(session)
            link = links.get_for_merchant(link_id, merchant_id, for_update=True)
            if link is None:
                raise PaymentLinkNotFoundError()

            now = self._clock.now()
            target = state_machine.next_status(link, state_machine.LinkEvent.CANCEL, now)
            swapped = links.transition(link.id, LinkStatus.CREATED, target)
            session.refresh(link)
            if not swapped:
                raise InvalidStateError(
                    f"Payment link is {link.status.value}; only CREATED links can be cancelled"
                )

        logger.info("payment_link_cancelled", payment_link_id=str(link.id), reference=link.reference)
        return link

    def list(self, merchant_id: uuid.UUID, link_filter: LinkFilter = None, page: PageRequest = None) -> Page:
        with unit_of_work(self._session_factory) as session:
            return PaymentLinkRepository(session).search(
                merchant_id, link_filter or LinkFilter(), page or PageRequest()
            )

    def expire_overdue(self) -> int:
        now = self._clock.now()
        with unit_of_work(self._session_factory) as session:
            expired = PaymentLinkRepository(session).expire_overdue(now)
        logger.info("payment_links_expired", count=expired, now=now.isoformat())
        return expired
