# aeo_api/services/__init__.py
"""
Business logic services organized by domain functionality.
"""

from aeo_api.services.crm import DisabledCRMClient, HubSpotClient
from aeo_api.services.email_sender import ConsoleEmailSender, ResendEmailSender
from aeo_api.services.lead_capture import LeadCaptureFlow, build_lead_capture_flow
from aeo_api.services.otp import OTPIssuer, VerifyResult, VerifyStatus
from aeo_api.services.otp_store import InMemoryOTPStore, OTPRecord, RedisOTPStore
from aeo_api.services.session_store import InMemorySessionStore, LeadSession, LeadState, RedisSessionStore

__all__ = [
    # CRM
    "DisabledCRMClient",
    "HubSpotClient",
    # Email
    "ConsoleEmailSender",
    "ResendEmailSender",
    # Flow
    "LeadCaptureFlow",
    "build_lead_capture_flow",
    # One-time codes
    "OTPIssuer",
    "VerifyResult",
    "VerifyStatus",
    "InMemoryOTPStore",
    "OTPRecord",
    "RedisOTPStore",
    # Sessions
    "InMemorySessionStore",
    "LeadSession",
    "LeadState",
    "RedisSessionStore",
]
