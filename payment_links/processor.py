import structlog
from sqlalchemy.exc import IntegrityError

from payment_links import state_machine
from payment_links.clock import Clock, SystemClock
from payment_links.exceptions import DuplicateAttemptError, InvalidStateError
from payment_links.models import AttemptStatus, LinkStatus, PaymentAttempt, PaymentLink
from payment_links.repository import PaymentAttemptRepository, PaymentLinkRepository

logger = structlog.get_logger(__name__)

SUCCESS_TOKEN_PREFIXES = ("ok_",)
DECLINED_REASON = "payment declined"


def derive_outcome(payment_token: str) -> tuple[AttemptStatus, str | None]:
    """Simulated payment network: the token prefix decides the outcome."""
    if payment_token.startswith(SUCCESS_TOKEN_PREFIXES):
        return AttemptStatus.SUCCESS, None
    return AttemptStatus.FAILED, DECLINED_REASON


class IdempotentPaymentProcessor:
    """Applies a payment attempt to a link at most once per idempotency key.

    The recorded attempt is the single source of truth for a key: a retry
    gets the stored attempt back even if it carries a different token. The
    UNIQUE (link, key) constraint is what actually stops duplicates; the
    lookup before the insert only saves the round trip in the common case.
    """

    def __init__(self, clock: Clock = None):
        self._clock = clock or SystemClock()

    def process_payment(
        self, session, link: PaymentLink, payment_token: str, idempotency_key: str
    ) -> PaymentAttempt:
        """Record one attempt for ``idempotency_key`` and settle ``link`` on success.

        Must run inside the caller's unit of work; nothing is committed here.

        Raises:
            InvalidStateError: link is not CREATED (or stopped being so mid-call).
            PaymentLinkExpiredError: link deadline has passed.
            DuplicateAttemptError: the key collided but no attempt can be found.
        """
        attempts = PaymentAttemptRepository(session)
        links = PaymentLinkRepository(session)

        existing = attempts.find(link.id, idempotency_key)
        if existing is not None:
            logger.info(
                "payment_attempt_replayed",
                payment_link_id=str(link.id),
                attempt_id=str(existing.id),
                status=existing.status.value,
            )
            return existing

        now = self._clock.now()
        state_machine.ensure_payable(link, now)

        status, reason = derive_outcome(payment_token)
        attempt = PaymentAttempt(
            payment_link_id=link.id,
            status=status,
            reason=reason,
            idempotency_key=idempotency_key,
            created_at=now,
        )

        link_id = link.id
        try:
            attempts.add(attempt)
        except IntegrityError:
            # A concurrent request with the same key inserted first. Nothing
            # else was written in this unit of work yet, so roll it back and
            # hand out the winner.
            session.rollback()
            winner = attempts.find(link_id, idempotency_key)
            if winner is None:
                logger.error(
                    "payment_attempt_unresolved_duplicate",
                    payment_link_id=str(link_id),
                )
                raise DuplicateAttemptError(idempotency_key)
            logger.info(
                "payment_attempt_race_resolved",
                payment_link_id=str(link_id),
                attempt_id=str(winner.id),
            )
            return winner

        if status == AttemptStatus.SUCCESS:
            self._settle(session, links, link, now)
        else:
            self._confirm_open(session, links, link, now)

        logger.info(
            "payment_attempt_recorded",
            payment_link_id=str(link.id),
            attempt_id=str(attempt.id),
            status=status.value,
        )
        return attempt

    def _settle(self, session, links: PaymentLinkRepository, link: PaymentLink, now) -> None:
        target = state_machine.next_status(link, state_machine.LinkEvent.PAYMENT_SUCCEEDED, now)
        swapped = links.transition(
            link.id, LinkStatus.CREATED, target, open_at=now, paid_at=now
        )
        session.refresh(link)
        if not swapped:
            # Lost the row to a sweep or a cancel; report what it became.
            state_machine.ensure_payable(link, now)
            raise InvalidStateError("Payment link changed while the payment was being applied")
        logger.info(
            "payment_link_paid", payment_link_id=str(link.id), reference=link.reference
        )

    def _confirm_open(self, session, links: PaymentLinkRepository, link: PaymentLink, now) -> None:
        # A decline leaves the link CREATED, but only while it still is.
        target = state_machine.next_status(link, state_machine.LinkEvent.PAYMENT_FAILED, now)
        if not links.transition(link.id, LinkStatus.CREATED, target, open_at=now):
            session.refresh(link)
            state_machine.ensure_payable(link, now)
            raise InvalidStateError("Payment link changed while the payment was being applied")
