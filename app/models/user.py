import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, String, TIMESTAMP, Uuid, false
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, nullable=False)
    name = Column(String(100), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    phone = Column(String(20), nullable=True)  # SMS / WhatsApp destination
    hashed_password = Column(String, nullable=False)
    role = Column(String(20), nullable=False, default="user", server_default="user")

    # Flags
    two_factor_enabled = Column(Boolean, nullable=False, default=False, server_default=false())

    # Timestamps
    verified_at = Column(TIMESTAMP(timezone=True), nullable=True)  # null until registration OTP passes
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

    # ── Relationships ──────────────────────────────────────────────────────────
    otp_records = relationship("OTPRecord", back_populates="user", cascade="all, delete-orphan")

    @property
    def is_verified(self) -> bool:
        return self.verified_at is not None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"
