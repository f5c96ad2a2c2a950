"""FastAPI application."""
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from .config import load_key_material, settings
from .domain_errors import DomainError
from .problem_details import build_problem_details_response
from .routers import auth, telegram

logger = logging.getLogger(__name__)

# Production safety checks (fail closed on insecure config).
load_key_material(settings)
if settings.is_production and settings.DEBUG_OTP:
    raise RuntimeError("DEBUG_OTP must be false in production (OTPs would be echoed in responses).")
if settings.is_production and not settings.HMAC_SECRET:
    logger.warning("HMAC_SECRET is not set; lookup digests are keyed with JWT_SECRET_KEY")

# Create app
app = FastAPI(
    title="Telegram second-factor auth",
    version="1.0.0",
    description="One-time login codes, Telegram account linking and recovery codes",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    if exc.http_status >= 500:
        logger.error("Domain error %s on %s: %s", exc.code, request.url.path, exc.message)
    return build_problem_details_response(exc)


# Include routers
app.include_router(auth.router, prefix="/api/v1")
app.include_router(telegram.router, prefix="/api/v1")


@app.get("/api/v1/system/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok", "version": "1.0.0"}
