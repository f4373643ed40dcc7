import re
import threading
from datetime import datetime, UTC

from payment_links.clock import FixedClock
from payment_links.references import (
    InMemorySequence,
    ReferenceGenerator,
    SequenceCounter,
    parse_sequence,
)


class FixedSequence(SequenceCounter):
    """Hands out a scripted list of numbers."""

    def __init__(self, values):
        self._values = iter(values)

    def next(self) -> int:
        return next(self._values)

    def seed(self, value: int) -> None:
        pass


def test_reference_format_uses_clock_year():
    generator = ReferenceGenerator(InMemorySequence(), FixedClock(datetime(2025, 3, 1, tzinfo=UTC)))

    assert generator.generate_reference() == "PL-2025-000001"
    assert generator.generate_reference() == "PL-2025-000002"


def test_counter_can_be_injected():
    generator = ReferenceGenerator(
        FixedSequence([42, 999999]), FixedClock(datetime(2024, 1, 1, tzinfo=UTC))
    )

    assert generator.generate_reference() == "PL-2024-000042"
    assert generator.generate_reference() == "PL-2024-999999"


def test_sequence_beyond_six_digits_widens():
    generator = ReferenceGenerator(InMemorySequence(start=999999))

    assert re.fullmatch(r"PL-\d{4}-1000000", generator.generate_reference())


def test_seed_only_moves_forward():
    sequence = InMemorySequence()
    sequence.seed(41)
    sequence.seed(7)

    assert sequence.next() == 42


def test_concurrent_generation_is_unique():
    generator = ReferenceGenerator()
    issued = []
    lock = threading.Lock()

    def worker():
        refs = [generator.generate_reference() for _ in range(200)]
        with lock:
            issued.extend(refs)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(issued) == 1600
    assert len(set(issued)) == 1600


def test_parse_sequence():
    assert parse_sequence("PL-2025-000042", 2025) == 42
    assert parse_sequence("PL-2024-000042", 2025) is None
    assert parse_sequence("not-a-reference", 2025) is None
