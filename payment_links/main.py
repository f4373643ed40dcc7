from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from payment_links import config, routes
from payment_links.clock import SystemClock
from payment_links.database import Base, engine, SessionLocal, unit_of_work
from payment_links.exceptions import PaymentLinksError, ValidationError
from payment_links.logging_config import setup_logging
from payment_links.repository import PaymentLinkRepository
from payment_links.schemas import ApiError
from payment_links.sweeper import ExpirationSweeper

setup_logging()
logger = structlog.get_logger(__name__)


def seed_reference_counter() -> None:
    """Continue the reference sequence from what the store already holds."""
    year = SystemClock().now().year
    with unit_of_work(SessionLocal) as session:
        highest = PaymentLinkRepository(session).max_reference_sequence(year)
    routes.reference_generator.seed(highest)
    logger.info("reference_counter_seeded", year=year, sequence=highest)


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    seed_reference_counter()

    sweeper = None
    if config.SWEEPER_ENABLED:
        sweeper = ExpirationSweeper(routes.get_link_service(), config.EXPIRATION_SWEEP_SECONDS)
        sweeper.start()
    app.state.sweeper = sweeper
    logger.info("application_startup", sweeper_enabled=config.SWEEPER_ENABLED)

    yield

    if sweeper is not None:
        sweeper.stop()
    logger.info("application_shutdown")


app = FastAPI(title="Payment Links Service", lifespan=lifespan)

app.include_router(routes.router)


def _error_response(status: int, code: str, title: str, detail: str, errors=None) -> JSONResponse:
    body = ApiError(
        type=f"/errors/{code.lower()}",
        title=title,
        status=status,
        detail=detail,
        code=code,
        errors=errors,
    )
    return JSONResponse(status_code=status, content=jsonable_encoder(body, exclude_none=True))


@app.exception_handler(PaymentLinksError)
async def payment_links_error_handler(request: Request, exc: PaymentLinksError):
    logger.info(
        "request_rejected",
        path=request.url.path,
        code=exc.code,
        status=exc.status_code,
    )
    return _error_response(exc.status_code, exc.code, exc.title, exc.message, exc.details)


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    errors = {}
    for error in exc.errors():
        location = error["loc"][1:] or error["loc"]
        field = ".".join(str(part) for part in location)
        errors.setdefault(field, []).append(error["msg"])
    return _error_response(
        ValidationError.status_code,
        ValidationError.code,
        ValidationError.title,
        "Invalid fields in request",
        errors,
    )


@app.exception_handler(Exception)
async def internal_error_handler(request: Request, exc: Exception):
    logger.exception("unhandled_error", path=request.url.path)
    return _error_response(500, "INTERNAL_ERROR", "Internal Server Error", "An unexpected error occurred")
