# aeo_cli/verification.py
"""
Operator checks for the lead capture service.
All functions return a VerificationResult(success, message, data).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional

import httpx

from aeo_api.core.config import Settings
from aeo_api.core.exceptions import EmailDeliveryError
from aeo_api.services.crm import HubSpotClient
from aeo_api.services.email_sender import build_email_sender
from aeo_api.services.otp import generate_code
from aeo_api.services.redis import close_redis_pool, health_check as redis_health_check


@dataclass
class VerificationResult:
    """Structured result from verification functions."""
    success: bool
    message: str
    data: Dict = field(default_factory=dict)


async def check_api_health(api_url: str = "http://localhost:8000", timeout: float = 5.0) -> VerificationResult:
    """Check that the API answers on its liveness endpoint."""
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.get(f"{api_url}/api/health/live")
    except httpx.HTTPError as e:
        return VerificationResult(
            success=False,
            message=f"API not reachable at {api_url}: {e}",
            data={"error": str(e)},
        )

    if response.status_code == 200:
        return VerificationResult(
            success=True,
            message="API health check passed",
            data=response.json(),
        )
    return VerificationResult(
        success=False,
        message=f"API health check returned HTTP {response.status_code}",
        data={"status_code": response.status_code},
    )


async def send_test_otp(config: Settings, email: str) -> VerificationResult:
    """Send a throwaway code through the configured email provider."""
    sender = build_email_sender(config)
    try:
        message_id = await sender.send_otp(email, generate_code(), "Test")
    except EmailDeliveryError as e:
        return VerificationResult(success=False, message=e.message, data={"provider": config.email_provider})
    return VerificationResult(
        success=True,
        message=f"Test code sent to {email}",
        data={"provider": config.email_provider, "message_id": message_id},
    )


async def check_crm(config: Settings) -> VerificationResult:
    """Authenticated no-op against HubSpot."""
    if not config.hubspot_access_token:
        return VerificationResult(success=False, message="HUBSPOT_ACCESS_TOKEN is not set")

    client = HubSpotClient(
        access_token=config.hubspot_access_token,
        api_url=config.hubspot_api_url,
        timeout=config.outbound_timeout_seconds,
    )
    if await client.ping():
        data = {"integration_enabled": config.enable_hubspot_integration}
        return VerificationResult(success=True, message="HubSpot reachable", data=data)
    return VerificationResult(success=False, message="HubSpot request failed (see log)")


async def get_system_status(config: Settings) -> VerificationResult:
    """Summarize configured backends."""
    services: Dict[str, Dict[str, Optional[str]]] = {
        "email": {"status": "configured", "provider": config.email_provider},
        "crm": {"status": "enabled" if config.hubspot_enabled else "disabled"},
    }

    if config.store_backend == "redis":
        result = await redis_health_check()
        await close_redis_pool()
        services["redis"] = {
            "status": "connected" if result.get("status") == "healthy" else "unreachable",
            "error": result.get("error"),
        }
    else:
        services["store"] = {"status": "memory"}

    all_connected = all(s.get("status") != "unreachable" for s in services.values())
    return VerificationResult(
        success=all_connected,
        message="All services connected" if all_connected else "Some services not connected",
        data={"services": services, "all_connected": all_connected},
    )
