"""
Persistence for OTP records.

OTPService only talks to the OTPRecordStore protocol, so any backend that
honours these four operations can sit behind it. SQLAlchemyOTPStore is the
one the app uses.

Concurrency: status changes and retry increments are single conditional
UPDATE statements evaluated by the database, never read-modify-write in
Python, so two requests racing on the same record cannot both move it out of
PENDING or push retry_count past the cap.
"""
import uuid
from typing import Optional, Protocol

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.otp import OTPRecord, OTPPurpose, OTPChannel, OTPStatus


class DuplicatePendingOTPError(Exception):
    """A PENDING record already exists for this (user, purpose, channel)."""


class OTPRecordStore(Protocol):
    def find_latest_pending(
        self, user_id: uuid.UUID, purpose: OTPPurpose, channel: OTPChannel
    ) -> Optional[OTPRecord]: ...

    def insert(self, record: OTPRecord) -> OTPRecord: ...

    def update_status(self, record_id: uuid.UUID, new_status: OTPStatus) -> bool: ...

    def increment_retry(self, record_id: uuid.UUID, max_retry: int) -> int: ...


class SQLAlchemyOTPStore:
    def __init__(self, db: Session):
        self.db = db

    def find_latest_pending(
        self, user_id: uuid.UUID, purpose: OTPPurpose, channel: OTPChannel
    ) -> Optional[OTPRecord]:
        return (
            self.db.query(OTPRecord)
            .filter(
                OTPRecord.user_id == user_id,
                OTPRecord.purpose == purpose,
                OTPRecord.channel == channel,
                OTPRecord.status == OTPStatus.PENDING,
            )
            .order_by(OTPRecord.created_at.desc())
            .populate_existing()  # always re-read; never trust identity-map state
            .first()
        )

    def insert(self, record: OTPRecord) -> OTPRecord:
        """
        Persist a new record and return it with its id assigned.

        Raises DuplicatePendingOTPError if the partial unique index rejects it.
        Any other integrity failure (unknown user_id, missing column) is
        re-raised unchanged.
        """
        self.db.add(record)
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            if self._is_pending_conflict(exc, record):
                raise DuplicatePendingOTPError(str(exc.orig)) from exc
            raise
        self.db.refresh(record)
        return record

    def _is_pending_conflict(self, exc: IntegrityError, record: OTPRecord) -> bool:
        # Postgres names the index in the message; SQLite only lists the columns,
        # so also confirm a PENDING row for the key is what we collided with.
        if "uq_otp_records_pending_key" in str(exc.orig):
            return True
        if "unique" not in str(exc.orig).lower() or record.status != OTPStatus.PENDING:
            return False
        return self.find_latest_pending(record.user_id, record.purpose, record.channel) is not None

    def update_status(self, record_id: uuid.UUID, new_status: OTPStatus) -> bool:
        """
        Move a PENDING record to `new_status`.

        Returns False when the record was no longer PENDING (another request
        got there first), which is how the USED transition stays exactly-once.
        """
        result = self.db.execute(
            update(OTPRecord)
            .where(OTPRecord.id == record_id, OTPRecord.status == OTPStatus.PENDING)
            .values(status=new_status)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount == 1

    def increment_retry(self, record_id: uuid.UUID, max_retry: int) -> int:
        """
        Atomically add one failed attempt and return the resulting count.

        The count never passes `max_retry`: once the cap is reached further
        increments are no-ops and the capped value is returned.
        """
        self.db.execute(
            update(OTPRecord)
            .where(
                OTPRecord.id == record_id,
                OTPRecord.status == OTPStatus.PENDING,
                OTPRecord.retry_count < max_retry,
            )
            .values(retry_count=OTPRecord.retry_count + 1)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return self.db.query(OTPRecord.retry_count).filter(OTPRecord.id == record_id).scalar()
