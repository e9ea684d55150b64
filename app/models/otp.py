import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, Integer, TIMESTAMP, ForeignKey, Index, Uuid, Enum as SAEnum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func, text
from app.database import Base


class OTPPurpose(str, enum.Enum):
    REGISTER = "register"
    RESET_PASSWORD = "reset_password"
    EMAIL_VERIFICATION = "email_verification"
    LOGIN_VERIFICATION = "login_verification"
    TWO_FACTOR_AUTH = "two_factor_auth"


class OTPChannel(str, enum.Enum):
    EMAIL = "email"
    SMS = "sms"
    WHATSAPP = "whatsapp"


class OTPStatus(str, enum.Enum):
    PENDING = "pending"
    USED = "used"
    EXPIRED = "expired"
    BLOCKED = "blocked"


def _enum_values(enum_cls):
    # Persist the lowercase values, not the member names.
    return [member.value for member in enum_cls]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OTPRecord(Base):
    """
    One issued one-time code for a (user, purpose, channel) key.

    Security notes:
    - Raw OTP is NEVER stored, only the bcrypt hash, and the hash is never
      rewritten once the row exists.
    - PENDING is the only non-terminal status. USED, EXPIRED and BLOCKED rows
      are kept as history and never move again.
    - The partial unique index below allows at most one PENDING row per key,
      so two concurrent generate calls cannot both succeed.
    """
    __tablename__ = "otp_records"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, nullable=False)
    user_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    purpose = Column(
        SAEnum(OTPPurpose, name="otp_purpose", values_callable=_enum_values),
        nullable=False,
    )
    channel = Column(
        SAEnum(OTPChannel, name="otp_channel", values_callable=_enum_values),
        nullable=False,
    )
    code_hash = Column(String, nullable=False)
    status = Column(
        SAEnum(OTPStatus, name="otp_status", values_callable=_enum_values),
        nullable=False,
        default=OTPStatus.PENDING,
        server_default=OTPStatus.PENDING.value,
    )
    retry_count = Column(Integer, nullable=False, default=0, server_default="0")
    expires_at = Column(TIMESTAMP(timezone=True), nullable=False)
    created_at = Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.now(),
    )
    updated_at = Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.now(),
        onupdate=_utcnow,
    )

    __table_args__ = (
        Index("ix_otp_records_key_created", "user_id", "purpose", "channel", "created_at"),
        Index(
            "uq_otp_records_pending_key",
            "user_id",
            "purpose",
            "channel",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )

    # ── Relationships ──────────────────────────────────────────────────────────
    user = relationship("User", back_populates="otp_records")
