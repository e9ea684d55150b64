"""
Security utilities: OTP code generation and hashing, password hashing, and
JWT token management.
Uses PyJWT (not python-jose) — actively maintained, no known CVEs as of 2026.
"""
import secrets
import jwt
from jwt.exceptions import InvalidTokenError
from passlib.context import CryptContext
from datetime import datetime, timedelta, timezone
from app.config import settings

# ── Password Hashing ──────────────────────────────────────────────────────────
# deprecated="auto" means passlib will auto-upgrade old hashes on next login.
pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.password_hash_rounds,
)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


# ── OTP Codes ─────────────────────────────────────────────────────────────────

def generate_numeric_code(length: int) -> str:
    """
    Generate a cryptographically secure numeric code of exactly `length` digits.

    secrets.randbelow(10 ** length) is uniform over [0, 10^length), so leading
    zeros are legitimate and the result is zero-padded rather than shifted
    into [10^(length-1), 10^length).
    """
    if length < 1:
        raise ValueError("OTP length must be at least 1")
    return f"{secrets.randbelow(10 ** length):0{length}d}"


class CodeHasher:
    """
    One-way hashing for OTP codes.

    A 6-digit code has only 10^6 possible values, so a fast digest would let
    anyone holding a DB dump brute-force every code offline in milliseconds.
    bcrypt's adaptive cost keeps that expensive; `rounds` is the cost factor.
    """

    def __init__(self, rounds: int):
        self._context = CryptContext(schemes=["bcrypt"], bcrypt__rounds=rounds)

    def hash(self, plaintext: str) -> str:
        return self._context.hash(plaintext)

    def verify(self, plaintext: str, hashed: str) -> bool:
        return self._context.verify(plaintext, hashed)


otp_hasher = CodeHasher(rounds=settings.otp_hash_rounds)


# ── JWT Token Creation ────────────────────────────────────────────────────────

def create_access_token(user_id: str, role: str = "user") -> str:
    """
    Short-lived access token (default 15 min).
    Contains user_id (as 'sub') and the user's role.
    """
    payload = {
        "sub": user_id,
        "role": role,
        "type": "access",
        "iat": datetime.now(timezone.utc),
        "exp": datetime.now(timezone.utc) + timedelta(
            minutes=settings.access_token_expire_minutes
        ),
    }
    return jwt.encode(payload, settings.secret_key, algorithm=settings.algorithm)


def create_refresh_token(user_id: str) -> str:
    """
    Long-lived refresh token (default 7 days).
    Does NOT contain the role; it is re-read from the DB on every refresh.
    """
    payload = {
        "sub": user_id,
        "type": "refresh",
        "iat": datetime.now(timezone.utc),
        "exp": datetime.now(timezone.utc) + timedelta(
            days=settings.refresh_token_expire_days
        ),
    }
    return jwt.encode(payload, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str) -> dict:
    """
    Decodes and validates an access token.
    Raises jwt.exceptions.InvalidTokenError (or subclass) on any failure.
    The caller is responsible for converting this into an HTTPException.
    """
    payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    if payload.get("type") != "access":
        raise InvalidTokenError("Not an access token")
    return payload


def decode_refresh_token(token: str) -> dict:
    payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    if payload.get("type") != "refresh":
        raise InvalidTokenError("Not a refresh token")
    return payload
