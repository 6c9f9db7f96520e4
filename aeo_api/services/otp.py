from __future__ import annotations

import hmac
import secrets
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional, Tuple

from aeo_api.core.exceptions import (
    OTPAttemptsExhaustedError,
    OTPExpiredError,
    OTPMismatchError,
    OTPNotFoundError,
)
from aeo_api.core.logging import get_structlog_logger
from aeo_api.services.otp_store import OTPRecord, OTPStore, utcnow

logger = get_structlog_logger(__name__)

CODE_LENGTH = 6


class VerifyStatus(str, Enum):
    SUCCESS = "success"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    ATTEMPTS_EXHAUSTED = "attempts_exhausted"
    MISMATCH = "mismatch"


@dataclass(frozen=True)
class VerifyResult:
    status: VerifyStatus
    attempts_remaining: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.status is VerifyStatus.SUCCESS

    def raise_for_status(self) -> None:
        if self.status is VerifyStatus.SUCCESS:
            return
        if self.status is VerifyStatus.MISMATCH:
            raise OTPMismatchError(attempts_remaining=self.attempts_remaining or 0)
        if self.status is VerifyStatus.EXPIRED:
            raise OTPExpiredError()
        if self.status is VerifyStatus.ATTEMPTS_EXHAUSTED:
            raise OTPAttemptsExhaustedError()
        raise OTPNotFoundError()


def generate_code(length: int = CODE_LENGTH) -> str:
    """Uniformly random numeric code; leading zeros are allowed."""
    return f"{secrets.randbelow(10 ** length):0{length}d}"


class OTPIssuer:
    """
    Issues and checks one-time codes.

    A record allows ``max_attempts`` wrong guesses. It is deleted on a
    successful match or once found expired, so a code verifies at most once.
    """

    def __init__(
        self,
        store: OTPStore,
        ttl_seconds: int = 600,
        max_attempts: int = 5,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.ttl = timedelta(seconds=ttl_seconds)
        self.max_attempts = max_attempts
        self._clock = clock

    def prepare(self, email: str) -> OTPRecord:
        """Build a fresh record without storing it. Any current code stays valid."""
        now = self._clock()
        return OTPRecord(
            email=email,
            code=generate_code(),
            created_at=now,
            expires_at=now + self.ttl,
            attempts_remaining=self.max_attempts,
        )

    async def activate(self, record: OTPRecord) -> OTPRecord:
        """Store a prepared record, replacing the previous code for its email."""
        await self.store.save(record)
        logger.info("otp.issued", email=record.email, expires_at=record.expires_at.isoformat())
        return record

    async def issue(self, email: str) -> OTPRecord:
        return await self.activate(self.prepare(email))

    async def resend(self, email: str) -> OTPRecord:
        # Cooldown is the caller's concern.
        return await self.issue(email)

    async def verify(self, email: str, submitted_code: str) -> VerifyResult:
        now = self._clock()
        submitted = (submitted_code or "").strip().encode("utf-8")

        def check(current: Optional[OTPRecord]) -> Tuple[Optional[OTPRecord], VerifyResult]:
            if current is None or current.consumed:
                return current, VerifyResult(VerifyStatus.NOT_FOUND)
            if current.is_expired(now):
                return None, VerifyResult(VerifyStatus.EXPIRED)
            if current.attempts_remaining <= 0:
                return current, VerifyResult(VerifyStatus.ATTEMPTS_EXHAUSTED, attempts_remaining=0)
            if not hmac.compare_digest(current.code.encode("utf-8"), submitted):
                remaining = current.attempts_remaining - 1
                return (
                    replace(current, attempts_remaining=remaining),
                    VerifyResult(VerifyStatus.MISMATCH, attempts_remaining=remaining),
                )
            return None, VerifyResult(VerifyStatus.SUCCESS)

        result = await self.store.update(email, check)

        if result.ok:
            logger.info("otp.verified", email=email)
        else:
            logger.info(
                "otp.verify_failed",
                email=email,
                reason=result.status.value,
                attempts_remaining=result.attempts_remaining,
            )
        return result
