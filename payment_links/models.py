import enum
import uuid
from datetime import UTC

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    TypeDecorator,
    UniqueConstraint,
    Uuid,
)

from payment_links.database import Base


class UTCDateTime(TypeDecorator):
    """Stores naive UTC, hands back aware UTC (SQLite drops tzinfo)."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("naive datetime given for a UTC column")
        return value.astimezone(UTC).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return value.replace(tzinfo=UTC)


class LinkStatus(str, enum.Enum):
    CREATED = "CREATED"
    PAID = "PAID"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


class AttemptStatus(str, enum.Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class Merchant(Base):
    __tablename__ = "merchants"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=False)
    created_at = Column(UTCDateTime, nullable=False)


class PaymentLink(Base):
    __tablename__ = "payment_links"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    merchant_id = Column(Uuid, ForeignKey("merchants.id"), nullable=False)
    reference = Column(String(32), nullable=False, unique=True)
    amount_cents = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False)
    description = Column(String(255), nullable=False)
    status = Column(
        Enum(LinkStatus, native_enum=False, length=16, create_constraint=True,
             name="link_status"),
        nullable=False,
        default=LinkStatus.CREATED,
    )
    created_at = Column(UTCDateTime, nullable=False)
    expires_at = Column(UTCDateTime, nullable=False)    # fixed at creation
    paid_at = Column(UTCDateTime, nullable=True)        # settlement time
    metadata_ = Column("metadata", JSON, nullable=True)

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="positive_amount"),
        CheckConstraint("length(currency) = 3", name="valid_currency"),
        Index("idx_payment_links_expires_at", "expires_at"),
        Index("idx_payment_links_merchant_status", "merchant_id", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<PaymentLink(id={self.id}, reference={self.reference}, "
            f"status={self.status})>"
        )


class PaymentAttempt(Base):
    __tablename__ = "payment_attempts"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    payment_link_id = Column(Uuid, ForeignKey("payment_links.id"), nullable=False)
    status = Column(
        Enum(AttemptStatus, native_enum=False, length=16, create_constraint=True,
             name="attempt_status"),
        nullable=False,
    )
    reason = Column(String(255), nullable=True)         # set iff FAILED
    idempotency_key = Column(String(255), nullable=False)
    created_at = Column(UTCDateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "payment_link_id", "idempotency_key", name="uq_attempt_link_idempotency_key"
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<PaymentAttempt(id={self.id}, payment_link_id={self.payment_link_id}, "
            f"status={self.status})>"
        )
