from __future__ import annotations

import asyncio
import html
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol, Tuple

import aiohttp

from aeo_api.core.config import Settings
from aeo_api.core.exceptions import EmailDeliveryError
from aeo_api.core.logging import get_structlog_logger

logger = get_structlog_logger(__name__)

OTP_SUBJECT = "Your AEO Audit Verification Code"


class EmailSender(Protocol):
    async def send_otp(self, email: str, code: str, first_name: Optional[str] = None) -> str: ...


def render_otp_email(code: str, first_name: Optional[str] = None, ttl_minutes: int = 10) -> str:
    """HTML body of the verification email."""
    greeting = f"Hi {html.escape(first_name)}" if first_name else "Hi there"
    year = datetime.now(timezone.utc).year
    return f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><meta name="viewport" content="width=device-width, initial-scale=1.0"></head>
<body style="font-family: -apple-system, 'Segoe UI', Roboto, Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
  <div style="background: linear-gradient(135deg, #667eea 0%, #764ba2 100%); padding: 30px; text-align: center; border-radius: 10px 10px 0 0;">
    <h1 style="color: white; margin: 0; font-size: 28px;">AEO Audit Suite</h1>
  </div>
  <div style="background: #f9fafb; padding: 40px 30px; border-radius: 0 0 10px 10px;">
    <h2 style="color: #111827; margin-top: 0;">Verification Code</h2>
    <p style="color: #4b5563; font-size: 16px;">{greeting},</p>
    <p style="color: #4b5563; font-size: 16px;">Thank you for using the AEO Audit Suite! Your verification code is:</p>
    <div style="background: white; border: 2px solid #667eea; border-radius: 8px; padding: 20px; text-align: center; margin: 30px 0;">
      <span style="font-size: 36px; font-weight: bold; letter-spacing: 8px; color: #667eea;">{code}</span>
    </div>
    <p style="color: #6b7280; font-size: 14px;">This code will expire in <strong>{ttl_minutes} minutes</strong>.</p>
    <p style="color: #6b7280; font-size: 14px;">If you didn't request this code, please ignore this email.</p>
    <p style="color: #9ca3af; font-size: 12px; text-align: center;">AEO Audit Suite - Answer Engine Optimization Tools<br>&copy; {year}</p>
  </div>
</body>
</html>"""


class ResendEmailSender:
    """Sends codes through the Resend ``POST /emails`` endpoint."""

    def __init__(
        self,
        api_key: str,
        from_address: str,
        api_url: str = "https://api.resend.com",
        timeout: int = 10,
        ttl_minutes: int = 10,
    ):
        self.api_key = api_key
        self.from_address = from_address
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.ttl_minutes = ttl_minutes

    async def _post(self, payload: Dict[str, Any]) -> Tuple[int, Any]:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout)) as session:
            async with session.post(f"{self.api_url}/emails", json=payload, headers=headers) as response:
                try:
                    body = await response.json(content_type=None)
                except ValueError:
                    body = await response.text()
                return response.status, body

    async def send_otp(self, email: str, code: str, first_name: Optional[str] = None) -> str:
        payload = {
            "from": self.from_address,
            "to": [email],
            "subject": OTP_SUBJECT,
            "html": render_otp_email(code, first_name, self.ttl_minutes),
        }

        try:
            status, body = await self._post(payload)
        except asyncio.TimeoutError:
            logger.error("email.send_timeout", email=email, timeout=self.timeout)
            raise EmailDeliveryError()
        except aiohttp.ClientError as e:
            logger.error("email.send_failed", email=email, error=str(e)[:200])
            raise EmailDeliveryError()

        if not 200 <= status < 300 or not isinstance(body, dict) or not body.get("id"):
            logger.error("email.provider_rejected", email=email, http_status=status, body=str(body)[:200])
            raise EmailDeliveryError()

        logger.info("email.otp_sent", email=email, message_id=body["id"])
        return str(body["id"])


class ConsoleEmailSender:
    """Writes the code to the log instead of sending it. Development only."""

    async def send_otp(self, email: str, code: str, first_name: Optional[str] = None) -> str:
        message_id = f"console-{uuid.uuid4()}"
        logger.warning("email.console_otp", email=email, code=code, message_id=message_id)
        return message_id


def build_email_sender(config: Settings) -> EmailSender:
    if config.email_provider == "resend":
        if not config.resend_api_key:
            raise ValueError("RESEND_API_KEY is required when EMAIL_PROVIDER=resend")
        return ResendEmailSender(
            api_key=config.resend_api_key,
            from_address=config.from_address,
            api_url=config.resend_api_url,
            timeout=config.outbound_timeout_seconds,
            ttl_minutes=max(1, config.otp_ttl_seconds // 60),
        )
    return ConsoleEmailSender()
