from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app import models
from app.config import get_settings
from app.database import SessionLocal, engine
from app.errors import PaymentError
from app.gateways.cashfree import CashfreeGateway
from app.logging_config import setup_logging
from app.notifications.smtp import SmtpNotifier
from app.schemas.responses import ErrorResponse
from app.services.initiation import OrderInitiator
from app.services.reconciliation import ReconciliationEngine
from app.services.store import TransactionStore

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    setup_logging(settings)
    # Create tables
    models.Base.metadata.create_all(bind=engine)

    store = TransactionStore(SessionLocal)
    gateway = CashfreeGateway.from_settings(settings)
    notifier = SmtpNotifier.from_settings(settings)

    app.state.gateway = gateway
    app.state.reconciler = ReconciliationEngine(
        store, gateway, notifier, claim_ttl_seconds=settings.notification_claim_ttl_seconds
    )
    app.state.initiator = OrderInitiator(gateway, store, settings)
    logger.info(
        "service_started",
        gateway=gateway.gateway_name,
        gateway_environment=settings.gateway_environment,
    )
    try:
        yield
    finally:
        await gateway.aclose()


app = FastAPI(
    title="Payment Broker API",
    description="Brokers gateway payments: order creation, status verification and webhook ingestion",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().get_allowed_origins_list(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


def _error_body(message: str, detail: str = None) -> dict:
    error = detail if get_settings().debug else None
    return ErrorResponse(message=message, error=error).model_dump()


@app.exception_handler(PaymentError)
async def payment_error_handler(request: Request, exc: PaymentError):
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "request_failed",
        path=request.url.path,
        error_type=type(exc).__name__,
        message=exc.message,
        status_code=exc.status_code,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(exc.message, exc.detail),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    logger.warning("request_invalid", path=request.url.path, errors=str(exc.errors()))
    return JSONResponse(
        status_code=400,
        content=_error_body("Invalid request body", str(exc.errors())),
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("request_crashed", path=request.url.path)
    return JSONResponse(
        status_code=500,
        content=_error_body("Internal server error", str(exc)),
    )


@app.get("/health")
def health_check():
    return {"status": "ok", "service": get_settings().app_name}


from app.routers import payments  # noqa: E402
app.include_router(payments.router, prefix="/payment", tags=["payments"])
