"""Payment link lifecycle.

    CREATED --pay (success, before deadline)--> PAID
    CREATED --cancel--------------------------> CANCELLED
    CREATED --sweep (deadline < now)----------> EXPIRED
    CREATED --pay (failed)--------------------> CREATED

PAID, CANCELLED and EXPIRED are terminal. Every check here is read-only;
callers apply the status write themselves, conditioned on the status they
checked, so a concurrent writer cannot be overwritten.
"""
import enum
from datetime import datetime

from payment_links.exceptions import InvalidStateError, PaymentLinkExpiredError
from payment_links.models import LinkStatus, PaymentLink

TERMINAL_STATES = frozenset({LinkStatus.PAID, LinkStatus.CANCELLED, LinkStatus.EXPIRED})


class LinkEvent(str, enum.Enum):
    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"
    CANCEL = "cancel"
    EXPIRE = "expire"


TRANSITIONS = {
    (LinkStatus.CREATED, LinkEvent.PAYMENT_SUCCEEDED): LinkStatus.PAID,
    (LinkStatus.CREATED, LinkEvent.PAYMENT_FAILED): LinkStatus.CREATED,
    (LinkStatus.CREATED, LinkEvent.CANCEL): LinkStatus.CANCELLED,
    (LinkStatus.CREATED, LinkEvent.EXPIRE): LinkStatus.EXPIRED,
}


def is_past_deadline(link: PaymentLink, now: datetime) -> bool:
    return now >= link.expires_at


def is_overdue(link: PaymentLink, now: datetime) -> bool:
    """Eligible for the sweep: strictly past the deadline."""
    return link.expires_at < now


def next_status(link: PaymentLink, event: LinkEvent, now: datetime) -> LinkStatus:
    """Return the status ``event`` moves ``link`` to, or raise.

    Raises:
        InvalidStateError: the link is terminal, or the sweep fires early.
        PaymentLinkExpiredError: a payment arrives on a CREATED link whose
            deadline has passed.
    """
    target = TRANSITIONS.get((link.status, event))
    if target is None:
        raise InvalidStateError(
            f"Cannot apply {event.value} to a payment link in state {link.status.value}; "
            f"it must be {LinkStatus.CREATED.value}"
        )

    if event in (LinkEvent.PAYMENT_SUCCEEDED, LinkEvent.PAYMENT_FAILED):
        if is_past_deadline(link, now):
            raise PaymentLinkExpiredError(link.expires_at)
    elif event == LinkEvent.EXPIRE and not is_overdue(link, now):
        raise InvalidStateError("Payment link is not past its deadline yet")

    return target


def ensure_payable(link: PaymentLink, now: datetime) -> None:
    """Guard run before a payment outcome is derived; both outcomes share it."""
    next_status(link, LinkEvent.PAYMENT_SUCCEEDED, now)
