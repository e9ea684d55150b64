"""
Auth router: registration, login, OTP, token refresh, password reset.

OTP flow for registration:
  1. POST /auth/register        → create user (unverified) + send OTP
  2. POST /auth/verify-register → verify OTP → mark verified → return tokens

Login:
  POST /auth/login        → validate credentials → tokens, or an OTP challenge
                            when the account has two-factor enabled
  POST /auth/login/verify → verify the two-factor OTP → tokens

Password reset:
  1. POST /auth/forgot-password → send OTP (always 200, never reveals if email exists)
  2. POST /auth/reset-password  → verify OTP + set new password

GET /auth/admin-only is guarded by get_current_admin (role == "admin").

OTP failures are raised as OTPError and rendered by the handler in app.main.
"""
import uuid

from fastapi import APIRouter, Depends, BackgroundTasks, Request
from sqlalchemy.orm import Session
from jwt.exceptions import InvalidTokenError

from app.database import get_db
from app.core.rate_limiter import limiter
from app.core.security import decode_refresh_token
from app.core.exceptions import CredentialsException
from app.core.dependencies import get_current_user, get_current_admin, get_otp_service
from app.models.otp import OTPPurpose, OTPChannel
from app.models.user import User
from app.schemas.auth import (
    RegisterRequest, SendOTPRequest, VerifyRegisterRequest,
    LoginRequest, VerifyLoginRequest, ForgotPasswordRequest,
    ResetPasswordRequest, ChangePasswordRequest, RefreshTokenRequest,
    TokenResponse, LoginWithTokenResponse, LoginResponse, MessageResponse,
)
from app.schemas.user import UserAuthResponse
from app.services import auth_service
from app.services.otp_service import OTPService
from app.services.notification_service import NotificationDispatcher, get_notification_dispatcher

router = APIRouter()


def _schedule_delivery(
    background_tasks: BackgroundTasks,
    dispatcher: NotificationDispatcher,
    otp_service: OTPService,
    user: User,
    purpose: OTPPurpose,
    channel: OTPChannel,
    raw_otp: str,
) -> None:
    background_tasks.add_task(
        dispatcher.deliver,
        channel,
        auth_service.destination_for(user, channel),
        raw_otp,
        auth_service.otp_context(user, purpose, otp_service),
    )


# ── Register ──────────────────────────────────────────────────────────────────

@router.post("/register", response_model=MessageResponse, status_code=201)
@limiter.limit("5/minute")
def register(
    request: Request,
    body: RegisterRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    otp_service: OTPService = Depends(get_otp_service),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    """
    Step 1 of registration.
    Creates an unverified user account and sends the OTP on the chosen channel.
    """
    user, raw_otp = auth_service.register_user(
        db,
        otp_service,
        name=body.name,
        email=body.email,
        password=body.password,
        phone=body.phone or None,
        channel=body.channel,
    )
    _schedule_delivery(background_tasks, dispatcher, otp_service, user, OTPPurpose.REGISTER, body.channel, raw_otp)
    return {"message": "Registration successful. Check your inbox for the OTP."}


@router.post("/verify-register", response_model=LoginWithTokenResponse)
@limiter.limit("10/minute")
def verify_register(
    request: Request,
    body: VerifyRegisterRequest,
    db: Session = Depends(get_db),
    otp_service: OTPService = Depends(get_otp_service),
):
    """Step 2 of registration: verify OTP and receive auth tokens."""
    user, access_token, refresh_token = auth_service.verify_registration(
        db, otp_service, email=body.email, otp=body.otp, channel=body.channel
    )
    return {
        "access_token": access_token,
        "refresh_token": refresh_token,
        "token_type": "bearer",
        "user": UserAuthResponse.model_validate(user),
    }


# ── Login ─────────────────────────────────────────────────────────────────────

@router.post("/login", response_model=LoginResponse)
@limiter.limit("10/minute")
def login(
    request: Request,
    body: LoginRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    otp_service: OTPService = Depends(get_otp_service),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    """
    Login with email and password.
    Accounts with two_factor_enabled get an OTP challenge instead of tokens.
    """
    user = auth_service.authenticate(db, email=body.email, password=body.password)

    if user.two_factor_enabled:
        raw_otp = auth_service.start_two_factor_login(otp_service, user)
        _schedule_delivery(
            background_tasks, dispatcher, otp_service, user,
            OTPPurpose.TWO_FACTOR_AUTH, OTPChannel.EMAIL, raw_otp,
        )
        return {"otp_required": True, "user_id": str(user.id)}

    access_token, refresh_token = auth_service.issue_tokens(user)
    return {
        "access_token": access_token,
        "refresh_token": refresh_token,
        "token_type": "bearer",
        "user": UserAuthResponse.model_validate(user),
    }


@router.post("/login/verify", response_model=LoginWithTokenResponse)
@limiter.limit("10/minute")
def verify_login(
    request: Request,
    body: VerifyLoginRequest,
    db: Session = Depends(get_db),
    otp_service: OTPService = Depends(get_otp_service),
):
    """Second login step for two-factor accounts."""
    user, access_token, refresh_token = auth_service.verify_login(
        db, otp_service, user_id=body.user_id, otp=body.otp, channel=body.channel
    )
    return {
        "access_token": access_token,
        "refresh_token": refresh_token,
        "token_type": "bearer",
        "user": UserAuthResponse.model_validate(user),
    }


# ── OTP Resend ────────────────────────────────────────────────────────────────

@router.post("/send-otp", response_model=MessageResponse)
@limiter.limit("3/minute")
def send_otp(
    request: Request,
    body: SendOTPRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    otp_service: OTPService = Depends(get_otp_service),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    """
    Resend a REGISTER or RESET_PASSWORD OTP.
    Returns the same 200 for unknown or already-verified emails to prevent enumeration.
    """
    issued = auth_service.resend_otp(db, otp_service, body.email, body.purpose, body.channel)
    if issued:
        user, raw_otp = issued
        _schedule_delivery(background_tasks, dispatcher, otp_service, user, body.purpose, body.channel, raw_otp)
    return {"message": "If an account with that email exists, a new OTP has been sent."}


# ── Token Refresh ─────────────────────────────────────────────────────────────

@router.post("/refresh", response_model=TokenResponse)
@limiter.limit("20/minute")
def refresh_token(
    request: Request,
    body: RefreshTokenRequest,
    db: Session = Depends(get_db),
):
    """
    Exchange a valid refresh token for a new access token + refresh token.
    Stateless JWTs: the old refresh token is not revoked.
    """
    try:
        payload = decode_refresh_token(body.refresh_token)
        user_id = uuid.UUID(payload.get("sub") or "")
    except (InvalidTokenError, ValueError):
        raise CredentialsException("Invalid or expired refresh token")

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise CredentialsException("Invalid or expired refresh token")

    new_access, new_refresh = auth_service.issue_tokens(user)
    return {
        "access_token": new_access,
        "refresh_token": new_refresh,
        "token_type": "bearer",
    }


# ── Forgot / Reset / Change Password ──────────────────────────────────────────

@router.post("/forgot-password", response_model=MessageResponse)
@limiter.limit("3/minute")
def forgot_password(
    request: Request,
    body: ForgotPasswordRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    otp_service: OTPService = Depends(get_otp_service),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    """
    Send password reset OTP.
    ALWAYS returns 200 OK even if email doesn't exist — never reveal account existence.
    """
    issued = auth_service.request_password_reset(db, otp_service, body.email, body.channel)
    if issued:
        user, raw_otp = issued
        _schedule_delivery(
            background_tasks, dispatcher, otp_service, user,
            OTPPurpose.RESET_PASSWORD, body.channel, raw_otp,
        )
    return {"message": "If an account with that email exists, a reset OTP has been sent."}


@router.post("/reset-password", response_model=MessageResponse)
@limiter.limit("5/minute")
def reset_password(
    request: Request,
    body: ResetPasswordRequest,
    db: Session = Depends(get_db),
    otp_service: OTPService = Depends(get_otp_service),
):
    """Verify OTP and set a new password."""
    auth_service.reset_password(
        db, otp_service,
        email=body.email, otp=body.otp, new_password=body.new_password, channel=body.channel,
    )
    return {"message": "Password reset successfully. You can now login with your new password."}


@router.patch("/change-password", response_model=MessageResponse)
def change_password(
    body: ChangePasswordRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    auth_service.change_password(db, current_user, body.current_password, body.new_password)
    return {"message": "Password changed successfully"}


# ── Role-guarded ──────────────────────────────────────────────────────────────

@router.get("/admin-only", response_model=MessageResponse)
def admin_only(current_admin: User = Depends(get_current_admin)):
    return {"message": "This is an admin-only endpoint!"}
