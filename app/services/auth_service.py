"""
Auth service: higher-level auth operations that combine the OTP engine with
user records and tokens.
Keeps routers thin — routers only handle HTTP, services handle logic.

Every flow that issues an OTP returns the plaintext code to the router, which
schedules delivery; nothing here sends messages.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from app.models.user import User
from app.models.otp import OTPPurpose, OTPChannel
from app.core.security import hash_password, verify_password, create_access_token, create_refresh_token, pwd_context
from app.core.exceptions import (
    BadRequestException,
    ConflictException,
    CredentialsException,
    NotFoundException,
    UnverifiedAccountException,
    NoPendingOTPError,
)
from app.services.otp_service import OTPService

# Pre-computed bcrypt hash used ONLY for constant-time comparison when the user
# doesn't exist — prevents timing attacks that reveal valid email addresses.
_DUMMY_HASH: str = pwd_context.hash("__dummy_timing_prevention__")


def destination_for(user: User, channel: OTPChannel) -> str:
    """Email address or phone number the code should be sent to."""
    if channel == OTPChannel.EMAIL:
        return user.email
    if not user.phone:
        raise BadRequestException(f"No phone number on file for {channel.value} delivery")
    return user.phone


def otp_context(user: User, purpose: OTPPurpose, otp_service: OTPService) -> dict:
    """Template values handed to the notification dispatcher."""
    return {
        "purpose": purpose,
        "name": user.name,
        "expiry_minutes": int(otp_service.policy.expiry_for(purpose).total_seconds() // 60),
    }


def issue_tokens(user: User) -> tuple[str, str]:
    return create_access_token(str(user.id), user.role), create_refresh_token(str(user.id))


def get_user_by_email(db: Session, email: str) -> Optional[User]:
    return db.query(User).filter(User.email == email).first()


def register_user(
    db: Session,
    otp_service: OTPService,
    name: str,
    email: str,
    password: str,
    phone: Optional[str] = None,
    channel: OTPChannel = OTPChannel.EMAIL,
) -> tuple[User, str]:
    """
    Creates an unverified account and issues its REGISTER OTP.
    Returns (user, raw_otp).
    """
    existing = get_user_by_email(db, email)
    if existing:
        if not existing.is_verified:
            raise ConflictException("User already registered but not verified. Resend OTP.")
        raise ConflictException("Email already in use.")

    if channel != OTPChannel.EMAIL and not phone:
        raise BadRequestException(f"A phone number is required for {channel.value} verification")

    new_user = User(
        name=name,
        email=email,
        phone=phone,
        hashed_password=hash_password(password),
    )
    db.add(new_user)
    db.commit()
    db.refresh(new_user)

    raw_otp = otp_service.generate_otp(new_user.id, OTPPurpose.REGISTER, channel)
    return new_user, raw_otp


def verify_registration(
    db: Session,
    otp_service: OTPService,
    email: str,
    otp: str,
    channel: OTPChannel = OTPChannel.EMAIL,
) -> tuple[User, str, str]:
    """
    Verifies the REGISTER OTP and marks the user verified.
    Returns (user, access_token, refresh_token).
    """
    user = get_user_by_email(db, email)
    if not user:
        raise NotFoundException("User")
    if user.is_verified:
        raise BadRequestException("User already verified")

    otp_service.verify_otp(user.id, OTPPurpose.REGISTER, channel, otp)

    user.verified_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(user)

    access_token, refresh_token = issue_tokens(user)
    return user, access_token, refresh_token


def authenticate(db: Session, email: str, password: str) -> User:
    """
    Validates credentials and returns the user.

    Security: always use the same error message regardless of whether
    the email exists or the password is wrong (prevents user enumeration).
    """
    user = get_user_by_email(db, email)
    # Always run verify_password so "wrong email" and "wrong password" take
    # the same time.
    password_ok = verify_password(password, user.hashed_password if user else _DUMMY_HASH)

    if not user or not password_ok:
        raise CredentialsException("Invalid email or password")
    if not user.is_verified:
        raise UnverifiedAccountException()
    return user


def start_two_factor_login(otp_service: OTPService, user: User) -> str:
    """Issue the second-step code for a password-authenticated user."""
    return otp_service.generate_otp(user.id, OTPPurpose.TWO_FACTOR_AUTH, OTPChannel.EMAIL)


def verify_login(
    db: Session,
    otp_service: OTPService,
    user_id: uuid.UUID,
    otp: str,
    channel: OTPChannel = OTPChannel.EMAIL,
) -> tuple[User, str, str]:
    """
    Second login step. Returns (user, access_token, refresh_token).

    Only accounts that would have been challenged by authenticate() +
    start_two_factor_login() can finish here.
    """
    user = db.query(User).filter(User.id == user_id).first()
    if not user or not user.is_verified or not user.two_factor_enabled:
        raise CredentialsException("Two-factor login is not available for this account")

    otp_service.verify_otp(user.id, OTPPurpose.TWO_FACTOR_AUTH, channel, otp)

    access_token, refresh_token = issue_tokens(user)
    return user, access_token, refresh_token


def resend_otp(
    db: Session,
    otp_service: OTPService,
    email: str,
    purpose: OTPPurpose,
    channel: OTPChannel,
) -> Optional[tuple[User, str]]:
    """
    Issue a fresh code for an explicit resend request.
    Returns None when nothing should be sent (unknown email, or a REGISTER
    resend for an account that is already verified) so the router answers
    the same 200 either way.
    """
    user = get_user_by_email(db, email)
    if not user:
        return None
    if purpose == OTPPurpose.REGISTER and user.is_verified:
        return None

    destination_for(user, channel)  # fail before issuing a code we can't deliver
    raw_otp = otp_service.generate_otp(user.id, purpose, channel)
    return user, raw_otp


def request_password_reset(
    db: Session,
    otp_service: OTPService,
    email: str,
    channel: OTPChannel = OTPChannel.EMAIL,
) -> Optional[tuple[User, str]]:
    """Issue a RESET_PASSWORD code if the account exists; None otherwise."""
    user = get_user_by_email(db, email)
    if not user:
        return None
    destination_for(user, channel)
    raw_otp = otp_service.generate_otp(user.id, OTPPurpose.RESET_PASSWORD, channel)
    return user, raw_otp


def reset_password(
    db: Session,
    otp_service: OTPService,
    email: str,
    otp: str,
    new_password: str,
    channel: OTPChannel = OTPChannel.EMAIL,
) -> None:
    """Verifies the RESET_PASSWORD OTP then updates the user's password."""
    user = get_user_by_email(db, email)
    if not user:
        # Same answer as a real account with no outstanding code.
        raise NoPendingOTPError()

    otp_service.verify_otp(user.id, OTPPurpose.RESET_PASSWORD, channel, otp)

    user.hashed_password = hash_password(new_password)
    db.commit()


def change_password(db: Session, user: User, current_password: str, new_password: str) -> None:
    if not verify_password(current_password, user.hashed_password):
        raise BadRequestException("Current password is incorrect")

    user.hashed_password = hash_password(new_password)
    db.commit()
