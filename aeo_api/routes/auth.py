# aeo_api/routes/auth.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request

from aeo_api.core.exceptions import ServiceUnavailableError
from aeo_api.core.logging import get_structlog_logger
from aeo_api.schemas.lead import LeadSubmitRequest
from aeo_api.schemas.otp import (
    LeadFlowResponse,
    LoginRequest,
    LogoutRequest,
    MessageResponse,
    ResendOTPRequest,
    SessionStatusResponse,
    VerifyOTPRequest,
)
from aeo_api.services.lead_capture import LeadCaptureFlow

logger = get_structlog_logger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


def get_lead_flow(request: Request) -> LeadCaptureFlow:
    flow = getattr(request.app.state, "lead_flow", None)
    if flow is None:
        raise ServiceUnavailableError("Lead capture is not initialized")
    return flow


@router.post("/submit-lead", response_model=LeadFlowResponse)
async def submit_lead(
    payload: LeadSubmitRequest,
    flow: LeadCaptureFlow = Depends(get_lead_flow),
) -> LeadFlowResponse:
    """Validate the capture form and email a verification code."""
    session = await flow.submit_lead(payload)
    return LeadFlowResponse(
        message="Verification code sent to your email",
        email=session.email,
        state=session.state.value,
        resend_available_in=flow.cooldown_remaining(session),
    )


@router.post("/verify-otp", response_model=LeadFlowResponse)
async def verify_otp(
    payload: VerifyOTPRequest,
    flow: LeadCaptureFlow = Depends(get_lead_flow),
) -> LeadFlowResponse:
    """Check the code. CRM sync continues in the background."""
    session = await flow.verify_code(payload.email, payload.otp)
    return LeadFlowResponse(
        message="Email verified successfully",
        email=session.email,
        state=session.state.value,
    )


@router.post("/resend-otp", response_model=LeadFlowResponse)
async def resend_otp(
    payload: ResendOTPRequest,
    flow: LeadCaptureFlow = Depends(get_lead_flow),
) -> LeadFlowResponse:
    session = await flow.resend_code(payload.email)
    return LeadFlowResponse(
        message="New verification code sent",
        email=session.email,
        state=session.state.value,
        resend_available_in=flow.cooldown_remaining(session),
    )


@router.post("/login", response_model=LeadFlowResponse)
async def login(
    payload: LoginRequest,
    flow: LeadCaptureFlow = Depends(get_lead_flow),
) -> LeadFlowResponse:
    """Email a sign-in code to a lead that has already verified."""
    session = await flow.login(payload.email)
    return LeadFlowResponse(
        message="Verification code sent to your email",
        email=session.email,
        state=session.state.value,
        resend_available_in=flow.cooldown_remaining(session),
    )


@router.get("/session", response_model=SessionStatusResponse)
async def session_status(
    email: str = Query(min_length=1, max_length=320),
    flow: LeadCaptureFlow = Depends(get_lead_flow),
) -> SessionStatusResponse:
    session = await flow.get_session(email)
    if session is None or not session.authenticated:
        return SessionStatusResponse(authenticated=False)

    lead = session.lead
    return SessionStatusResponse(
        authenticated=True,
        email=session.email,
        state=session.state.value,
        first_name=lead.first_name if lead else None,
        last_name=lead.last_name if lead else None,
    )


@router.post("/logout", response_model=MessageResponse)
async def logout(
    payload: LogoutRequest,
    flow: LeadCaptureFlow = Depends(get_lead_flow),
) -> MessageResponse:
    await flow.logout(payload.email)
    return MessageResponse(message="Logged out successfully")
