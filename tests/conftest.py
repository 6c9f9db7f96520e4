import os

os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("EMAIL_PROVIDER", "console")

from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

import pytest

from aeo_api.core.exceptions import EmailDeliveryError
from aeo_api.schemas.lead import LeadSubmission
from aeo_api.services.lead_capture import LeadCaptureFlow
from aeo_api.services.otp import OTPIssuer
from aeo_api.services.otp_store import InMemoryOTPStore
from aeo_api.services.session_store import InMemorySessionStore


class FakeClock:
    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class RecordingEmailSender:
    def __init__(self):
        self.sent: List[Tuple[str, str, Optional[str]]] = []
        self.fail = False

    async def send_otp(self, email: str, code: str, first_name: Optional[str] = None) -> str:
        if self.fail:
            raise EmailDeliveryError()
        self.sent.append((email, code, first_name))
        return f"msg-{len(self.sent)}"

    def last_code(self, email: str) -> str:
        return [code for to, code, _ in self.sent if to == email][-1]


class FakeCRM:
    def __init__(self, contact_id: Optional[str] = "501"):
        self.contact_id = contact_id
        self.calls: List[tuple] = []

    async def upsert_contact(self, lead: LeadSubmission, status: str = "New Lead") -> Optional[str]:
        self.calls.append(("upsert_contact", lead.email, status))
        return self.contact_id

    async def attach_note(self, contact_id: str, text: str) -> Optional[str]:
        self.calls.append(("attach_note", contact_id, text))
        return "note-1"

    async def set_status(self, contact_id: str, status: str) -> bool:
        self.calls.append(("set_status", contact_id, status))
        return True


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def otp_store(clock) -> InMemoryOTPStore:
    return InMemoryOTPStore(clock=clock)


@pytest.fixture
def issuer(otp_store, clock) -> OTPIssuer:
    return OTPIssuer(otp_store, ttl_seconds=600, max_attempts=5, clock=clock)


@pytest.fixture
def email_sender() -> RecordingEmailSender:
    return RecordingEmailSender()


@pytest.fixture
def crm() -> FakeCRM:
    return FakeCRM()


@pytest.fixture
def flow(issuer, email_sender, crm, clock) -> LeadCaptureFlow:
    return LeadCaptureFlow(
        issuer=issuer,
        email_sender=email_sender,
        crm=crm,
        sessions=InMemorySessionStore(clock=clock),
        resend_cooldown_seconds=60,
        clock=clock,
    )
