# aeo_api/schemas/otp.py
from __future__ import annotations

from typing import Optional

from pydantic import AliasChoices, BaseModel, Field


class EmailRequest(BaseModel):
    email: str = Field(min_length=1, max_length=320)


class VerifyOTPRequest(EmailRequest):
    otp: str = Field(min_length=1, max_length=16, validation_alias=AliasChoices("otp", "code"))


class ResendOTPRequest(EmailRequest):
    pass


class LoginRequest(EmailRequest):
    pass


class LogoutRequest(EmailRequest):
    pass


class LeadFlowResponse(BaseModel):
    success: bool = True
    message: str
    email: str
    state: str
    resend_available_in: Optional[int] = None


class SessionStatusResponse(BaseModel):
    authenticated: bool
    email: Optional[str] = None
    state: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class MessageResponse(BaseModel):
    success: bool = True
    message: str
