"""
Centralised custom exceptions.

Two families live here:
  - HTTPException subclasses raised by routers and auth flows.
  - OTPError and its subclasses, raised by the OTP engine. These are plain
    domain errors with a reason code; app.main maps them to HTTP responses.
"""
import enum

from fastapi import HTTPException, status


class CredentialsException(HTTPException):
    def __init__(self, detail: str = "Could not validate credentials"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


class ForbiddenException(HTTPException):
    def __init__(self, detail: str = "You do not have permission to perform this action"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class BadRequestException(HTTPException):
    def __init__(self, detail: str):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class NotFoundException(HTTPException):
    def __init__(self, resource: str = "Resource"):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{resource} not found",
        )


class ConflictException(HTTPException):
    def __init__(self, detail: str = "Resource already exists"):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)


class UnverifiedAccountException(HTTPException):
    def __init__(self):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account not verified. Please complete OTP verification.",
        )


# ── OTP domain errors ─────────────────────────────────────────────────────────

class OTPFailureReason(str, enum.Enum):
    RESEND_TOO_SOON = "RESEND_TOO_SOON"
    NO_PENDING_OTP = "NO_PENDING_OTP"
    MAX_RETRY_EXCEEDED = "MAX_RETRY_EXCEEDED"
    OTP_EXPIRED = "OTP_EXPIRED"
    INVALID_OTP = "INVALID_OTP"


class OTPError(Exception):
    """
    Recoverable, user-facing OTP failure.

    `reason` tells the caller which UX to render (countdown, retry counter,
    "request a new code"). Any state change tied to the failure has already
    been persisted by the time this is raised.
    """
    reason: OTPFailureReason

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def extras(self) -> dict:
        return {}


class ResendTooSoonError(OTPError):
    reason = OTPFailureReason.RESEND_TOO_SOON

    def __init__(self, wait_seconds: int):
        super().__init__(f"Please wait {wait_seconds} seconds before requesting a new OTP")
        self.wait_seconds = wait_seconds

    def extras(self) -> dict:
        return {"wait_seconds": self.wait_seconds}


class NoPendingOTPError(OTPError):
    reason = OTPFailureReason.NO_PENDING_OTP

    def __init__(self):
        super().__init__("No pending OTP found. Please request a new one.")


class MaxRetryExceededError(OTPError):
    reason = OTPFailureReason.MAX_RETRY_EXCEEDED

    def __init__(self):
        super().__init__("Maximum OTP attempts exceeded. Please request a new one.")


class OTPExpiredError(OTPError):
    reason = OTPFailureReason.OTP_EXPIRED

    def __init__(self):
        super().__init__("OTP has expired. Please request a new one.")


class InvalidOTPError(OTPError):
    reason = OTPFailureReason.INVALID_OTP

    def __init__(self, attempt: int, max_attempts: int):
        super().__init__(f"Invalid OTP (attempt {attempt}/{max_attempts})")
        self.attempt = attempt
        self.max_attempts = max_attempts

    def extras(self) -> dict:
        return {"attempt": self.attempt, "max_attempts": self.max_attempts}
