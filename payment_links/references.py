import re
import threading
from abc import ABC, abstractmethod

from payment_links.clock import Clock, SystemClock

REFERENCE_PREFIX = "PL"
REFERENCE_PATTERN = re.compile(r"^PL-(\d{4})-(\d{6,})$")


class SequenceCounter(ABC):
    """Monotonic sequence feeding reference numbers."""

    @abstractmethod
    def next(self) -> int:
        """Return the next value. Must be linearizable across threads."""

    @abstractmethod
    def seed(self, value: int) -> None:
        """Make sure later values are greater than ``value``."""


class InMemorySequence(SequenceCounter):
    """Process-wide counter, starts at zero unless seeded."""

    def __init__(self, start: int = 0) -> None:
        self._value = start
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            self._value += 1
            return self._value

    def seed(self, value: int) -> None:
        """Move the counter forward to ``value``; never moves it back."""
        with self._lock:
            self._value = max(self._value, value)


class ReferenceGenerator:
    """Issues ``PL-<year>-<6-digit sequence>`` references.

    Unique within one process only. Across processes the UNIQUE constraint
    on ``payment_links.reference`` is the backstop and the service retries
    creation on a collision.
    """

    def __init__(self, counter: SequenceCounter = None, clock: Clock = None) -> None:
        self._counter = counter or InMemorySequence()
        self._clock = clock or SystemClock()

    def generate_reference(self) -> str:
        year = self._clock.now().year
        return f"{REFERENCE_PREFIX}-{year}-{self._counter.next():06d}"

    def seed(self, value: int) -> None:
        self._counter.seed(value)


def parse_sequence(reference: str, year: int) -> int | None:
    """Return the sequence number of ``reference`` if it was issued in ``year``."""
    match = REFERENCE_PATTERN.match(reference)
    if match is None or int(match.group(1)) != year:
        return None
    return int(match.group(2))
