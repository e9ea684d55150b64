"""
FastAPI dependencies used across routers.
Keep this file lean — only auth/DB/service wiring goes here.
Business logic belongs in services/.
"""
import uuid

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session
from jwt.exceptions import InvalidTokenError

from app.config import settings
from app.database import get_db
from app.core.security import decode_access_token, otp_hasher
from app.core.exceptions import CredentialsException, ForbiddenException
from app.models.user import User
from app.services.otp_service import OTPService, OTPPolicy
from app.services.otp_store import SQLAlchemyOTPStore

# tokenUrl must match the actual login endpoint path
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")

otp_policy = OTPPolicy.from_settings(settings)


def get_otp_service(db: Session = Depends(get_db)) -> OTPService:
    """OTP engine bound to the request's DB session."""
    return OTPService(store=SQLAlchemyOTPStore(db), policy=otp_policy, hasher=otp_hasher)


def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> User:
    """
    Validates the JWT access token and returns the authenticated User.

    Checks performed (in order):
    1. Token is a valid JWT signed with our secret key
    2. Token type is 'access' (not refresh)
    3. 'sub' claim exists, is a UUID, and maps to a real user
    """
    try:
        payload = decode_access_token(token)
        user_id = uuid.UUID(payload.get("sub") or "")
    except (InvalidTokenError, ValueError):
        raise CredentialsException()

    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise CredentialsException()

    return user


def get_current_admin(
    current_user: User = Depends(get_current_user),
) -> User:
    """
    Requires the authenticated user to have role 'admin'.
    The role is read from the DB, not the token, so a demotion applies at once.
    """
    if not current_user.is_admin:
        raise ForbiddenException("Admin access required")
    return current_user
