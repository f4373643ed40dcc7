import uuid
from datetime import datetime, timedelta, UTC

import bcrypt
import structlog
from fastapi import Header
from jose import JWTError, jwt
from sqlalchemy.exc import IntegrityError

from payment_links import config
from payment_links.clock import SystemClock
from payment_links.database import unit_of_work
from payment_links.exceptions import AuthError, EmailAlreadyExistsError
from payment_links.models import Merchant
from payment_links.repository import MerchantRepository

logger = structlog.get_logger(__name__)


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))


def _secret() -> str:
    if not config.JWT_SECRET:
        raise RuntimeError("JWT_SECRET is not set. Check your .env file.")
    return config.JWT_SECRET


def create_access_token(merchant_id: uuid.UUID, expires_delta: timedelta = None) -> str:
    expire = datetime.now(UTC) + (expires_delta or timedelta(minutes=config.JWT_EXPIRE_MINUTES))
    claims = {"sub": str(merchant_id), "exp": expire}
    return jwt.encode(claims, _secret(), algorithm=config.JWT_ALGORITHM)


def decode_merchant_id(token: str) -> uuid.UUID:
    try:
        payload = jwt.decode(token, _secret(), algorithms=[config.JWT_ALGORITHM])
        return uuid.UUID(payload["sub"])
    except (JWTError, KeyError, TypeError, ValueError):
        raise AuthError("Invalid or expired token")


def verify_token(authorization: str = Header(None)) -> uuid.UUID:
    """FastAPI dependency: the merchant id behind a ``Bearer`` token."""
    if not authorization:
        raise AuthError("Missing bearer token")
    try:
        scheme, token = authorization.split()
    except ValueError:
        raise AuthError("Invalid or missing token")
    if scheme.lower() != "bearer":
        raise AuthError("Invalid or missing token")
    return decode_merchant_id(token)


class MerchantAuthService:
    def __init__(self, session_factory, clock=None):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()

    def register(self, name: str, email: str, password: str) -> uuid.UUID:
        with unit_of_work(self._session_factory) as session:
            merchants = MerchantRepository(session)
            if merchants.exists_by_email(email):
                raise EmailAlreadyExistsError(email)
            merchant = Merchant(
                id=uuid.uuid4(),
                name=name,
                email=email,
                password_hash=hash_password(password),
                created_at=self._clock.now(),
            )
            try:
                merchants.add(merchant)
            except IntegrityError:
                # Lost a race against a concurrent registration
                raise EmailAlreadyExistsError(email)
        logger.info("merchant_registered", merchant_id=str(merchant.id))
        return merchant.id

    def authenticate(self, email: str, password: str) -> str:
        with unit_of_work(self._session_factory) as session:
            merchant = MerchantRepository(session).get_by_email(email)
            if merchant is None or not verify_password(password, merchant.password_hash):
                logger.info("merchant_login_failed")
                raise AuthError("Invalid credentials")
            merchant_id = merchant.id
        return create_access_token(merchant_id)
