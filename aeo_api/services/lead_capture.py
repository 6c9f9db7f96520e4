"""
Lead capture flow: submit -> code sent -> verified -> submitted to the CRM.

The controller owns the per-email ``LeadSession`` and the resend cooldown.
CRM sync runs as a background task after verification; its outcome is
recorded on the session but never reaches the caller of ``verify_code``.

Returning leads (already verified) sign in with ``login``: the same code
check, without another CRM sync.
"""
from __future__ import annotations

import asyncio
import math
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Callable, Dict, List, Optional, Set

from aeo_api.core.config import Settings
from aeo_api.core.exceptions import CooldownError, LeadNotFoundError, OTPNotFoundError
from aeo_api.core.logging import get_structlog_logger
from aeo_api.schemas.lead import LeadSubmission, LeadSubmitRequest
from aeo_api.services.crm import STATUS_VERIFIED, CRMClient, build_crm_client
from aeo_api.services.email_sender import EmailSender, build_email_sender
from aeo_api.services.normalization import normalize_email
from aeo_api.services.otp import OTPIssuer
from aeo_api.services.otp_store import InMemoryOTPStore, OTPRecord, RedisOTPStore, utcnow
from aeo_api.services.redis import get_redis_client
from aeo_api.services.session_store import (
    InMemorySessionStore,
    LeadSession,
    LeadState,
    RedisSessionStore,
    SessionStore,
)
from aeo_api.services.validation import require_email, validate_lead_submission

logger = get_structlog_logger(__name__)

VERIFIED_STATES = (LeadState.VERIFIED, LeadState.SUBMITTED)


def build_lead_note(lead: LeadSubmission, verified_at: datetime) -> str:
    lines = [
        "AEO Audit Suite lead verified by email code.",
        f"Interest: {lead.lead_interest.value}",
        f"Country: {lead.country}",
    ]
    if lead.url:
        lines.append(f"Analyzed URL: {lead.url}")
    lines.append(f"Verified at: {verified_at.isoformat()}")
    return "\n".join(lines)


class LeadCaptureFlow:
    def __init__(
        self,
        issuer: OTPIssuer,
        email_sender: EmailSender,
        crm: CRMClient,
        sessions: SessionStore,
        resend_cooldown_seconds: int = 60,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.issuer = issuer
        self.email_sender = email_sender
        self.crm = crm
        self.sessions = sessions
        self.resend_cooldown_seconds = resend_cooldown_seconds
        self._clock = clock
        self._tasks: Set[asyncio.Task] = set()
        # email -> [lock, holders]
        self._locks: Dict[str, List] = {}

    @asynccontextmanager
    async def _email_lock(self, email: str) -> AsyncIterator[None]:
        """Serializes code-issuing operations for one email within this process."""
        entry = self._locks.get(email)
        if entry is None:
            entry = self._locks[email] = [asyncio.Lock(), 0]
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[email]

    def cooldown_remaining(self, session: LeadSession) -> int:
        """Whole seconds until a new code may be requested."""
        if session.last_issued_at is None:
            return 0
        elapsed = (self._clock() - session.last_issued_at).total_seconds()
        return max(0, math.ceil(self.resend_cooldown_seconds - elapsed))

    def _check_cooldown(self, session: LeadSession, operation: str) -> None:
        remaining = self.cooldown_remaining(session)
        if remaining > 0:
            logger.info("lead.cooldown_rejected", email=session.email, operation=operation, retry_after=remaining)
            raise CooldownError(retry_after=remaining)

    async def _send_code(self, email: str, first_name: Optional[str]) -> OTPRecord:
        # The new code replaces the stored one only after the email went out,
        # so a failed send leaves the code already in the inbox valid.
        # EmailDeliveryError propagates: without a code the visitor cannot go on.
        record = self.issuer.prepare(email)
        await self.email_sender.send_otp(record.email, record.code, first_name)
        return await self.issuer.activate(record)

    async def submit_lead(self, payload: LeadSubmitRequest) -> LeadSession:
        lead = validate_lead_submission(payload)

        async with self._email_lock(lead.email):
            session = await self.sessions.get(lead.email) or LeadSession(email=lead.email)
            previous_state = session.state
            if previous_state is LeadState.CODE_SENT:
                self._check_cooldown(session, "submit_lead")

            record = await self._send_code(lead.email, lead.first_name)

            session.lead = lead
            session.state = LeadState.CODE_SENT
            session.last_issued_at = record.created_at
            session.contact_id = None
            session.crm_synced = None
            session.authenticated = False
            await self.sessions.save(session)

        logger.info(
            "lead.code_sent",
            email=lead.email,
            country=lead.country,
            lead_interest=lead.lead_interest.value,
            previous_state=previous_state.value,
        )
        return session

    async def login(self, email: str) -> LeadSession:
        """Send a sign-in code to a lead that has already verified."""
        normalized = require_email(email)

        async with self._email_lock(normalized):
            session = await self.sessions.get(normalized)
            if session is None or session.lead is None or session.state not in VERIFIED_STATES:
                raise LeadNotFoundError("No verified lead found for this email. Please register first.")
            self._check_cooldown(session, "login")

            record = await self._send_code(normalized, session.lead.first_name)

            session.last_issued_at = record.created_at
            await self.sessions.save(session)

        logger.info("lead.login_code_sent", email=normalized, state=session.state.value)
        return session

    async def verify_code(self, email: str, code: str) -> LeadSession:
        normalized = normalize_email(email)
        if normalized is None:
            raise OTPNotFoundError()

        result = await self.issuer.verify(normalized, code)
        result.raise_for_status()

        session = await self.sessions.get(normalized) or LeadSession(email=normalized)
        session.authenticated = True

        if session.state in VERIFIED_STATES:
            # Returning lead signing in; the CRM already has the contact.
            await self.sessions.save(session)
            logger.info("lead.signed_in", email=normalized, state=session.state.value)
            return session

        session.state = LeadState.VERIFIED
        await self.sessions.save(session)
        logger.info("lead.verified", email=normalized)

        if session.lead is not None:
            self._schedule(self._sync_crm(normalized, session.lead))
        else:
            logger.warning("lead.crm_sync_skipped", email=normalized, reason="no_lead_on_session")

        return session

    async def resend_code(self, email: str) -> LeadSession:
        normalized = require_email(email)

        async with self._email_lock(normalized):
            session = await self.sessions.get(normalized)
            if session is None or session.lead is None or session.state is not LeadState.CODE_SENT:
                raise LeadNotFoundError()
            self._check_cooldown(session, "resend_code")

            record = await self._send_code(normalized, session.lead.first_name)

            session.last_issued_at = record.created_at
            await self.sessions.save(session)

        logger.info("lead.code_resent", email=normalized)
        return session

    async def get_session(self, email: str) -> Optional[LeadSession]:
        normalized = normalize_email(email)
        if normalized is None:
            return None
        return await self.sessions.get(normalized)

    async def logout(self, email: str) -> None:
        """Drop the signed-in flag. The lead and its CRM outcome are kept."""
        session = await self.get_session(email)
        if session is None or not session.authenticated:
            return
        session.authenticated = False
        await self.sessions.save(session)
        logger.info("lead.logged_out", email=session.email)

    def _schedule(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _sync_crm(self, email: str, lead: LeadSubmission) -> None:
        verified_at = self._clock()
        contact_id = None
        try:
            contact_id = await self.crm.upsert_contact(lead)
            if contact_id:
                await self.crm.attach_note(contact_id, build_lead_note(lead, verified_at))
                await self.crm.set_status(contact_id, STATUS_VERIFIED)
        except Exception:
            # Background task: nothing awaits it, so failures end here.
            logger.exception("lead.crm_sync_crashed", email=email)

        try:
            session = await self.sessions.get(email)
            if session is not None and session.state is LeadState.VERIFIED:
                session.state = LeadState.SUBMITTED
                session.contact_id = contact_id
                session.crm_synced = contact_id is not None
                await self.sessions.save(session)
        except Exception:
            logger.exception("lead.session_update_failed", email=email)
            return

        logger.info("lead.submitted", email=email, contact_id=contact_id, crm_synced=contact_id is not None)

    async def wait_for_background(self) -> None:
        """Wait for outstanding CRM sync tasks."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)


async def build_lead_capture_flow(config: Settings) -> LeadCaptureFlow:
    """Wire the flow from settings, on Redis or in process memory."""
    if config.store_backend == "redis":
        client = await get_redis_client()
        otp_store = RedisOTPStore(client)
        sessions = RedisSessionStore(client, ttl_seconds=config.lead_session_ttl_seconds)
    else:
        otp_store = InMemoryOTPStore()
        sessions = InMemorySessionStore(ttl_seconds=config.lead_session_ttl_seconds)

    issuer = OTPIssuer(
        otp_store,
        ttl_seconds=config.otp_ttl_seconds,
        max_attempts=config.otp_max_attempts,
    )
    return LeadCaptureFlow(
        issuer=issuer,
        email_sender=build_email_sender(config),
        crm=build_crm_client(config),
        sessions=sessions,
        resend_cooldown_seconds=config.otp_resend_cooldown_seconds,
    )
