import os
import tempfile
from datetime import datetime, UTC

import pytest

# Settings are read at import time, so they must be in place first
os.environ.setdefault(
    "DATABASE_URL",
    "sqlite:///" + os.path.join(tempfile.gettempdir(), "payment_links_app_test.db"),
)
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ["SWEEPER_ENABLED"] = "false"
os.environ.setdefault("LOG_JSON", "false")

from payment_links.auth import MerchantAuthService  # noqa: E402
from payment_links.clock import FixedClock  # noqa: E402
from payment_links.database import Base, build_engine, build_session_factory  # noqa: E402
from payment_links.references import InMemorySequence, ReferenceGenerator  # noqa: E402
from payment_links.service import PaymentLinkService  # noqa: E402

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def reference_generator(clock):
    return ReferenceGenerator(InMemorySequence(), clock)


@pytest.fixture
def service(session_factory, reference_generator, clock):
    return PaymentLinkService(session_factory, reference_generator, clock)


@pytest.fixture
def auth_service(session_factory, clock):
    return MerchantAuthService(session_factory, clock)


@pytest.fixture
def merchant_id(auth_service):
    return auth_service.register("Acme Store", "billing@acme.test", "correct-horse")


@pytest.fixture
def other_merchant_id(auth_service):
    return auth_service.register("Globex", "billing@globex.test", "battery-staple")


@pytest.fixture
def create_link(service, merchant_id):
    def _create(amount_cents=5000, currency="usd", ttl_minutes=1, **kwargs):
        return service.create(
            kwargs.pop("owner", merchant_id),
            amount_cents,
            currency,
            kwargs.pop("description", "Order #1001"),
            ttl_minutes,
            kwargs.pop("metadata", None),
        )

    return _create
