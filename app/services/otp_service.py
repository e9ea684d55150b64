"""
OTP service: generation, storage (hashed), and verification.

Security design decisions:
  1. Raw OTP is NEVER stored, only a bcrypt hash. If the DB is breached, the
     codes are still expensive to recover.
  2. At most one PENDING OTP per (user, purpose, channel). A new request inside
     the resend cooldown is refused; after it, the old code is expired first.
  3. Expiry is checked lazily on every access; no background sweeper.
  4. Wrong guesses are counted per record. Once the budget is spent the record
     is BLOCKED and the user must request a new code.
  5. Every failure persists its state change before the error is raised.
"""
import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from app.config import Settings
from app.core.exceptions import (
    ResendTooSoonError,
    NoPendingOTPError,
    MaxRetryExceededError,
    OTPExpiredError,
    InvalidOTPError,
)
from app.core.security import CodeHasher, generate_numeric_code
from app.models.otp import OTPRecord, OTPPurpose, OTPChannel, OTPStatus
from app.services.otp_store import OTPRecordStore, DuplicatePendingOTPError

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; every timestamp we write is UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass
class OTPPolicy:
    otp_length: int = 6
    expiry_minutes: int = 15
    max_retry: int = 3
    min_resend_interval_seconds: int = 60
    expiry_minutes_by_purpose: dict[OTPPurpose, int] = field(default_factory=dict)
    resend_interval_seconds_by_purpose: dict[OTPPurpose, int] = field(default_factory=dict)

    @classmethod
    def from_settings(cls, settings: Settings) -> "OTPPolicy":
        return cls(
            otp_length=settings.otp_length,
            expiry_minutes=settings.otp_expiry_minutes,
            max_retry=settings.max_otp_retry,
            min_resend_interval_seconds=settings.min_resend_interval_seconds,
            expiry_minutes_by_purpose={
                OTPPurpose(key): value
                for key, value in settings.otp_expiry_minutes_by_purpose.items()
            },
            resend_interval_seconds_by_purpose={
                OTPPurpose(key): value
                for key, value in settings.min_resend_interval_seconds_by_purpose.items()
            },
        )

    def expiry_for(self, purpose: OTPPurpose) -> timedelta:
        return timedelta(minutes=self.expiry_minutes_by_purpose.get(purpose, self.expiry_minutes))

    def resend_interval_for(self, purpose: OTPPurpose) -> int:
        return self.resend_interval_seconds_by_purpose.get(purpose, self.min_resend_interval_seconds)


class OTPService:
    """
    Orchestrates the OTP lifecycle on top of an OTPRecordStore.

    The service keeps no state between calls; every decision is made from a
    fresh read of the store. The plaintext code is returned to the caller
    exactly once, at generation time, and delivering it is the caller's job.
    """

    def __init__(
        self,
        store: OTPRecordStore,
        policy: OTPPolicy,
        hasher: CodeHasher,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.policy = policy
        self.hasher = hasher
        self.clock = clock

    def generate_otp(self, user_id: uuid.UUID, purpose: OTPPurpose, channel: OTPChannel) -> str:
        """
        Issue a new code for (user_id, purpose, channel) and return it in plain text.

        Raises ResendTooSoonError while the previous PENDING code is still
        inside its resend cooldown.
        """
        now = self.clock()
        interval = self.policy.resend_interval_for(purpose)

        existing = self.store.find_latest_pending(user_id, purpose, channel)
        if existing is not None:
            elapsed = (now - _as_utc(existing.created_at)).total_seconds()
            if elapsed < interval:
                wait_seconds = math.ceil(interval - elapsed)
                logger.info(
                    f"OTP resend refused: user={user_id} purpose={purpose.value} "
                    f"channel={channel.value} wait={wait_seconds}s"
                )
                raise ResendTooSoonError(wait_seconds)
            # A new request supersedes the old code once the cooldown is over.
            self.store.update_status(existing.id, OTPStatus.EXPIRED)

        code = generate_numeric_code(self.policy.otp_length)
        record = OTPRecord(
            user_id=user_id,
            purpose=purpose,
            channel=channel,
            code_hash=self.hasher.hash(code),
            status=OTPStatus.PENDING,
            retry_count=0,
            expires_at=now + self.policy.expiry_for(purpose),
            created_at=now,
            updated_at=now,
        )
        try:
            self.store.insert(record)
        except DuplicatePendingOTPError:
            # A concurrent request issued a code for this key between our read and insert.
            logger.info(
                f"OTP generate lost race: user={user_id} purpose={purpose.value} channel={channel.value}"
            )
            raise ResendTooSoonError(interval)

        logger.info(f"OTP issued: user={user_id} purpose={purpose.value} channel={channel.value}")
        return code

    def verify_otp(
        self,
        user_id: uuid.UUID,
        purpose: OTPPurpose,
        channel: OTPChannel,
        otp_code: str,
    ) -> bool:
        """
        Check a submitted code. Returns True on success, otherwise raises an OTPError.

        Checks run in a fixed order and the first failure wins:
          1. a PENDING record exists             → NoPendingOTPError
          2. retry budget not yet spent          → BLOCKED, MaxRetryExceededError
          3. record not past expires_at          → EXPIRED, OTPExpiredError
          4. code matches the stored hash        → on mismatch retry_count += 1, InvalidOTPError
          5. success                             → USED
        Expiry is checked before the hash so a stale code can never verify.
        """
        record: Optional[OTPRecord] = self.store.find_latest_pending(user_id, purpose, channel)
        if record is None:
            raise NoPendingOTPError()

        if record.retry_count >= self.policy.max_retry:
            self.store.update_status(record.id, OTPStatus.BLOCKED)
            logger.warning(
                f"OTP blocked after {record.retry_count} failed attempts: "
                f"user={user_id} purpose={purpose.value} channel={channel.value}"
            )
            raise MaxRetryExceededError()

        if self.clock() > _as_utc(record.expires_at):
            self.store.update_status(record.id, OTPStatus.EXPIRED)
            logger.info(f"OTP expired: user={user_id} purpose={purpose.value} channel={channel.value}")
            raise OTPExpiredError()

        if not self.hasher.verify(otp_code, record.code_hash):
            attempt = self.store.increment_retry(record.id, self.policy.max_retry)
            logger.info(
                f"Invalid OTP attempt {attempt}/{self.policy.max_retry}: "
                f"user={user_id} purpose={purpose.value} channel={channel.value}"
            )
            raise InvalidOTPError(attempt, self.policy.max_retry)

        if not self.store.update_status(record.id, OTPStatus.USED):
            # Someone else consumed or invalidated it after our read.
            raise NoPendingOTPError()

        logger.info(f"OTP verified: user={user_id} purpose={purpose.value} channel={channel.value}")
        return True
