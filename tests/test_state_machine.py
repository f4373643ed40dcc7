from datetime import datetime, timedelta, UTC

import pytest

from payment_links.exceptions import InvalidStateError, PaymentLinkExpiredError
from payment_links.models import LinkStatus, PaymentLink
from payment_links.state_machine import (
    LinkEvent,
    TERMINAL_STATES,
    ensure_payable,
    is_overdue,
    next_status,
)

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=UTC)


def make_link(status=LinkStatus.CREATED, expires_in=timedelta(minutes=10)):
    return PaymentLink(status=status, expires_at=NOW + expires_in, created_at=NOW)


@pytest.mark.parametrize(
    "event, expected",
    [
        (LinkEvent.PAYMENT_SUCCEEDED, LinkStatus.PAID),
        (LinkEvent.PAYMENT_FAILED, LinkStatus.CREATED),
        (LinkEvent.CANCEL, LinkStatus.CANCELLED),
    ],
)
def test_created_link_transitions(event, expected):
    assert next_status(make_link(), event, NOW) == expected


@pytest.mark.parametrize("status", sorted(TERMINAL_STATES))
@pytest.mark.parametrize("event", list(LinkEvent))
def test_terminal_states_reject_every_event(status, event):
    link = make_link(status=status, expires_in=timedelta(minutes=-10))

    with pytest.raises(InvalidStateError):
        next_status(link, event, NOW)


def test_payment_on_passed_deadline_is_expired():
    link = make_link(expires_in=timedelta(seconds=-1))

    with pytest.raises(PaymentLinkExpiredError) as exc_info:
        ensure_payable(link, NOW)

    assert exc_info.value.expires_at == link.expires_at
    assert exc_info.value.details == {"expires_at": link.expires_at.isoformat()}


def test_payment_exactly_at_deadline_is_expired():
    with pytest.raises(PaymentLinkExpiredError):
        ensure_payable(make_link(expires_in=timedelta(0)), NOW)


def test_cancel_ignores_deadline():
    link = make_link(expires_in=timedelta(minutes=-5))

    assert next_status(link, LinkEvent.CANCEL, NOW) == LinkStatus.CANCELLED


def test_expire_requires_deadline_strictly_in_the_past():
    at_deadline = make_link(expires_in=timedelta(0))
    overdue = make_link(expires_in=timedelta(microseconds=-1))

    assert not is_overdue(at_deadline, NOW)
    with pytest.raises(InvalidStateError):
        next_status(at_deadline, LinkEvent.EXPIRE, NOW)
    assert next_status(overdue, LinkEvent.EXPIRE, NOW) == LinkStatus.EXPIRED


def test_checks_do_not_mutate_the_link():
    link = make_link()

    next_status(link, LinkEvent.PAYMENT_SUCCEEDED, NOW)

    assert link.status == LinkStatus.CREATED
