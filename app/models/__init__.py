# models/__init__.py
# Import all models here so that:
# 1. Alembic's env.py can import this single module and detect all tables.
# 2. SQLAlchemy relationship() calls resolve correctly (all classes in same metadata).

from app.models.user import User
from app.models.otp import OTPRecord, OTPPurpose, OTPChannel, OTPStatus

__all__ = [
    "User",
    "OTPRecord",
    "OTPPurpose",
    "OTPChannel",
    "OTPStatus",
]
