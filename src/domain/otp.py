"""
OTP Verifier
============

Issues and checks short numeric codes that prove a physical pickup or
dropoff happened.

* Codes come from :mod:`secrets`, never from the clock.
* ``verify`` is a pure decision function: it reports ``(valid, reason)``
  and the attempt count *after* this call.  It never touches booking
  status; persisting the result is the state machine's job.
* Attempts are counted on success and failure alike so that lockout
  policy can live upstream.

Check order: ALREADY_VERIFIED -> MAX_ATTEMPTS -> EXPIRED -> MISMATCH.
"""

from __future__ import annotations

import hmac
import secrets
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Optional

from .enums import OTPFailure


@dataclass(frozen=True)
class OTPRecord:
    code: Optional[str] = None
    expires_at: Optional[datetime] = None
    verified: bool = False
    verified_at: Optional[datetime] = None
    attempts: int = 0


@dataclass(frozen=True)
class OTPCheck:
    valid: bool
    reason: Optional[OTPFailure]
    record: OTPRecord


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything we store is UTC.
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def mask_code(code: Optional[str]) -> str:
    if not code:
        return "<none>"
    return code[:2] + "*" * (len(code) - 2)


class OTPVerifier:
    def __init__(self, length: int = 6, max_attempts: int = 5):
        self.length = length
        self.max_attempts = max_attempts

    def generate(
        self,
        expiry_seconds: Optional[int],
        now: Optional[datetime] = None,
    ) -> OTPRecord:
        """New code; ``expiry_seconds=None`` means it never expires."""
        now = now or datetime.now(timezone.utc)
        code = "".join(secrets.choice("0123456789") for _ in range(self.length))
        expires_at = (
            now + timedelta(seconds=expiry_seconds)
            if expiry_seconds is not None
            else None
        )
        return OTPRecord(code=code, expires_at=expires_at)

    def verify(
        self,
        submitted: str,
        record: OTPRecord,
        now: Optional[datetime] = None,
    ) -> OTPCheck:
        now = now or datetime.now(timezone.utc)
        attempted = replace(record, attempts=record.attempts + 1)

        if record.verified:
            return OTPCheck(False, OTPFailure.ALREADY_VERIFIED, attempted)
        if record.attempts >= self.max_attempts:
            return OTPCheck(False, OTPFailure.MAX_ATTEMPTS, attempted)
        if record.expires_at is not None and now > _aware(record.expires_at):
            return OTPCheck(False, OTPFailure.EXPIRED, attempted)
        if not record.code or not hmac.compare_digest(
            record.code.encode(), str(submitted).strip().encode()
        ):
            return OTPCheck(False, OTPFailure.MISMATCH, attempted)

        return OTPCheck(
            True, None, replace(attempted, verified=True, verified_at=now)
        )
