import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from merchant_relay.api import auth, transactions
from merchant_relay.api.dependencies import SessionExpired, session_expired_handler
from merchant_relay.core.config import settings
from merchant_relay.core.limiter import limiter
from merchant_relay.core.security import SecurityHeadersMiddleware
from merchant_relay.core.utils.logging_config import (
    init_application_logging,
    set_correlation_id,
)
from merchant_relay.providers.gobiz import GoBizProvider

# Initialize structured logging
init_application_logging()

logger = logging.getLogger("merchant_relay.main")

REQUEST_ID_HEADER = "X-Request-ID"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the shared GoBiz client on startup and close it on shutdown.

    Raises:
        RuntimeError: If MASTER_KEY is missing or malformed; the app must not
            start without a usable sealing key
    """
    try:
        provider = GoBizProvider.create()
    except ValueError as e:
        logger.critical("Cannot start without a valid MASTER_KEY: %s", e)
        raise RuntimeError(f"Application startup failed: {e}") from e

    app.state.gobiz = provider
    logger.info("%s started (%s)", settings.app_name, settings.environment)

    yield

    await provider.aclose()
    logger.info("GoBiz HTTP client closed")


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Merchant login and transaction ledger relay for the GoBiz portal",
    version="1.0.0",
    lifespan=lifespan,
)

# Attach limiter to app.state for access in route decorators
app.state.limiter = limiter

# Consistent HTTP 429 responses with Retry-After headers
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
# 401 with the session cookie cleared
app.add_exception_handler(SessionExpired, session_expired_handler)

logger.info(
    "Rate limiting initialized with configuration: auth=%s, read=%s",
    settings.rate_limit_auth_endpoints,
    settings.rate_limit_read_endpoints,
)

app.add_middleware(SecurityHeadersMiddleware)


@app.middleware("http")
async def correlation_id_middleware(request: Request, call_next):
    correlation_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
    set_correlation_id(correlation_id)
    response = await call_next(request)
    response.headers[REQUEST_ID_HEADER] = correlation_id
    return response


app.include_router(auth.router, prefix="/api/auth", tags=["Authentication"])
app.include_router(transactions.router, prefix="/api", tags=["Merchant"])


# Health check endpoint
@app.get("/health")
def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy"}
