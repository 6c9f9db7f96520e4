# aeo_api/schemas/__init__.py
"""
Pydantic schemas for request/response validation and serialization.
"""

from aeo_api.schemas.lead import LeadInterest, LeadSubmission, LeadSubmitRequest
from aeo_api.schemas.otp import (
    LeadFlowResponse,
    LoginRequest,
    LogoutRequest,
    MessageResponse,
    ResendOTPRequest,
    SessionStatusResponse,
    VerifyOTPRequest,
)

__all__ = [
    "LeadInterest",
    "LeadSubmission",
    "LeadSubmitRequest",
    "LeadFlowResponse",
    "LoginRequest",
    "LogoutRequest",
    "MessageResponse",
    "ResendOTPRequest",
    "SessionStatusResponse",
    "VerifyOTPRequest",
]
