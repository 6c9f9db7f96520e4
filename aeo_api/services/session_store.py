from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional, Protocol

import redis.asyncio as redis

from aeo_api.core.exceptions import ServiceUnavailableError
from aeo_api.core.logging import get_structlog_logger
from aeo_api.schemas.lead import LeadSubmission
from aeo_api.services.otp_store import utcnow

logger = get_structlog_logger(__name__)


class LeadState(str, Enum):
    IDLE = "idle"
    CODE_SENT = "code_sent"
    VERIFIED = "verified"
    SUBMITTED = "submitted"


@dataclass
class LeadSession:
    email: str
    state: LeadState = LeadState.IDLE
    lead: Optional[LeadSubmission] = None
    last_issued_at: Optional[datetime] = None
    contact_id: Optional[str] = None
    crm_synced: Optional[bool] = None
    authenticated: bool = False
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "email": self.email,
            "state": self.state.value,
            "lead": self.lead.model_dump(mode="json") if self.lead else None,
            "last_issued_at": self.last_issued_at.isoformat() if self.last_issued_at else None,
            "contact_id": self.contact_id,
            "crm_synced": self.crm_synced,
            "authenticated": self.authenticated,
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LeadSession":
        last_issued_at = data.get("last_issued_at")
        return cls(
            email=data["email"],
            state=LeadState(data["state"]),
            lead=LeadSubmission.model_validate(data["lead"]) if data.get("lead") else None,
            last_issued_at=datetime.fromisoformat(last_issued_at) if last_issued_at else None,
            contact_id=data.get("contact_id"),
            crm_synced=data.get("crm_synced"),
            authenticated=bool(data.get("authenticated", False)),
            updated_at=datetime.fromisoformat(data["updated_at"]),
        )


class SessionStore(Protocol):
    async def get(self, email: str) -> Optional[LeadSession]: ...

    async def save(self, session: LeadSession) -> None: ...

    async def delete(self, email: str) -> None: ...


class InMemorySessionStore:
    def __init__(self, ttl_seconds: int = 86400, clock: Callable[[], datetime] = utcnow):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._sessions: Dict[str, LeadSession] = {}

    async def get(self, email: str) -> Optional[LeadSession]:
        session = self._sessions.get(email)
        if session and (self._clock() - session.updated_at).total_seconds() > self.ttl_seconds:
            del self._sessions[email]
            return None
        return session

    async def save(self, session: LeadSession) -> None:
        session.updated_at = self._clock()
        self._sessions[session.email] = session

    async def delete(self, email: str) -> None:
        self._sessions.pop(email, None)


class RedisSessionStore:
    """Sessions as JSON strings under ``<prefix>:<email>``.

    Redis failures raise ``ServiceUnavailableError``. A session that failed to
    save would otherwise strand the visitor after verification.
    """

    def __init__(self, redis_client: redis.Redis, prefix: str = "lead_session", ttl_seconds: int = 86400):
        self.redis = redis_client
        self.prefix = prefix
        self.ttl_seconds = ttl_seconds

    def _make_key(self, email: str) -> str:
        return f"{self.prefix}:{email}"

    async def get(self, email: str) -> Optional[LeadSession]:
        try:
            raw = await self.redis.get(self._make_key(email))
        except redis.RedisError as e:
            raise _unavailable("get", email, e)
        if raw is None:
            return None
        return LeadSession.from_dict(json.loads(raw))

    async def save(self, session: LeadSession) -> None:
        session.updated_at = utcnow()
        try:
            await self.redis.setex(self._make_key(session.email), self.ttl_seconds, json.dumps(session.to_dict()))
        except redis.RedisError as e:
            raise _unavailable("save", session.email, e)

    async def delete(self, email: str) -> None:
        try:
            await self.redis.delete(self._make_key(email))
        except redis.RedisError as e:
            raise _unavailable("delete", email, e)


def _unavailable(operation: str, email: str, error: Exception) -> ServiceUnavailableError:
    logger.error("session_store.redis_error", operation=operation, email=email, error=str(error)[:200])
    return ServiceUnavailableError("Session storage unavailable", details={"store": "sessions"})
