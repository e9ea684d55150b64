"""
Application entry point.

Run locally:
    uvicorn app.main:app --reload --port 8000

API docs available at:
    http://localhost:8000/docs   (Swagger UI)
    http://localhost:8000/redoc  (ReDoc)
"""
import logging

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from app.config import settings
from app.core.exceptions import OTPError, OTPFailureReason, ResendTooSoonError
from app.core.rate_limiter import limiter
from app.routers import auth, users

# RESEND_TOO_SOON is throttling; every other OTP failure is a bad submission.
OTP_ERROR_STATUS = {
    OTPFailureReason.RESEND_TOO_SOON: status.HTTP_429_TOO_MANY_REQUESTS,
    OTPFailureReason.NO_PENDING_OTP: status.HTTP_400_BAD_REQUEST,
    OTPFailureReason.MAX_RETRY_EXCEEDED: status.HTTP_400_BAD_REQUEST,
    OTPFailureReason.OTP_EXPIRED: status.HTTP_400_BAD_REQUEST,
    OTPFailureReason.INVALID_OTP: status.HTTP_400_BAD_REQUEST,
}


async def otp_error_handler(request: Request, exc: OTPError) -> JSONResponse:
    headers = None
    if isinstance(exc, ResendTooSoonError):
        headers = {"Retry-After": str(exc.wait_seconds)}
    return JSONResponse(
        status_code=OTP_ERROR_STATUS.get(exc.reason, status.HTTP_400_BAD_REQUEST),
        content={"detail": exc.message, "reason": exc.reason.value, **exc.extras()},
        headers=headers,
    )


def create_app() -> FastAPI:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(
        title="Blog API",
        description=(
            "Backend for a blog platform. Account registration, password and "
            "two-factor login, OTP verification and password reset."
        ),
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # ── Rate Limiter ──────────────────────────────────────────────────────────
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # ── OTP errors ────────────────────────────────────────────────────────────
    app.add_exception_handler(OTPError, otp_error_handler)

    # ── CORS ──────────────────────────────────────────────────────────────────
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Routers ───────────────────────────────────────────────────────────────
    app.include_router(auth.router, prefix="/auth", tags=["Auth"])
    app.include_router(users.router, prefix="/users", tags=["Users"])

    @app.get("/health", tags=["Health"])
    def health_check():
        return {"status": "ok", "version": "1.0.0"}

    return app


app = create_app()
