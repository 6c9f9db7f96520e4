"""
HubSpot contacts/notes client.

Every public method is best-effort: HubSpot failures are logged and turned
into ``None``/``False`` so the visitor-facing flow never depends on the CRM.
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol

import aiohttp

from aeo_api.core.config import Settings
from aeo_api.core.logging import get_structlog_logger
from aeo_api.schemas.lead import LeadSubmission

logger = get_structlog_logger(__name__)

LEAD_SOURCE = "AEO Audit Suite"
STATUS_NEW_LEAD = "New Lead"
STATUS_VERIFIED = "Verified"

CUSTOM_PROPERTIES = ("lead_source", "aeo_lead_status", "lead_interest")

# HubSpot-defined association type: note -> contact
NOTE_TO_CONTACT_ASSOCIATION = 202


class HubSpotAPIError(Exception):
    """Non-2xx response or transport failure. ``status`` is None for the latter."""

    def __init__(self, status: Optional[int], body: Any):
        self.status = status
        self.body = body
        if isinstance(body, dict):
            self.message = str(body.get("message") or "")
            self.category = body.get("category")
        else:
            self.message = str(body or "")
            self.category = None
        super().__init__(f"HubSpot error {status}: {self.message[:200]}")

    @property
    def is_conflict(self) -> bool:
        return self.status == 409

    def is_unknown_property(self) -> bool:
        if isinstance(self.body, dict):
            for key in ("validationResults", "errors"):
                for item in self.body.get(key) or []:
                    if isinstance(item, dict) and "PROPERTY_DOESNT_EXIST" in (item.get("error"), item.get("code")):
                        return True
            if self.category == "VALIDATION_ERROR" and "PROPERTY_DOESNT_EXIST" in self.message:
                return True

        # Free-text match on the message; HubSpot does not guarantee this wording.
        if "does not exist" in self.message:
            logger.warning("crm.unknown_property_message_match", status=self.status, message=self.message[:200])
            return True
        return False


def build_contact_properties(
    lead: LeadSubmission,
    status: Optional[str] = STATUS_NEW_LEAD,
    include_custom: bool = True,
) -> Dict[str, str]:
    properties = {"email": lead.email}
    if lead.first_name:
        properties["firstname"] = lead.first_name
    if lead.last_name:
        properties["lastname"] = lead.last_name
    if lead.phone_number:
        properties["phone"] = lead.phone_number
    if lead.country:
        properties["country"] = lead.country

    if include_custom:
        properties["lead_source"] = LEAD_SOURCE
        properties["lead_interest"] = lead.lead_interest.value
        if status:
            properties["aeo_lead_status"] = status

    return properties


class CRMClient(Protocol):
    async def upsert_contact(self, lead: LeadSubmission, status: str = STATUS_NEW_LEAD) -> Optional[str]: ...

    async def attach_note(self, contact_id: str, text: str) -> Optional[str]: ...

    async def set_status(self, contact_id: str, status: str) -> bool: ...


class HubSpotClient:
    def __init__(
        self,
        access_token: str,
        api_url: str = "https://api.hubapi.com",
        timeout: int = 10,
    ):
        self.access_token = access_token
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout

    async def _request(self, method: str, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }
        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout)) as session:
                async with session.request(method, f"{self.api_url}{path}", json=payload, headers=headers) as response:
                    try:
                        body = await response.json(content_type=None)
                    except ValueError:
                        body = await response.text()
                    if not 200 <= response.status < 300:
                        raise HubSpotAPIError(response.status, body)
                    return body if isinstance(body, dict) else {}
        except asyncio.TimeoutError:
            raise HubSpotAPIError(None, "Request timeout")
        except aiohttp.ClientError as e:
            raise HubSpotAPIError(None, f"Client error: {str(e)[:200]}")

    async def _create(self, properties: Dict[str, str]) -> str:
        body = await self._request("POST", "/crm/v3/objects/contacts", {"properties": properties})
        if body.get("id") is None:
            raise HubSpotAPIError(None, f"Create response without contact id: {str(body)[:200]}")
        return str(body["id"])

    async def _find_contact_id(self, email: str) -> Optional[str]:
        body = await self._request(
            "POST",
            "/crm/v3/objects/contacts/search",
            {
                "filterGroups": [{
                    "filters": [{"propertyName": "email", "operator": "EQ", "value": email}],
                }],
                "limit": 1,
            },
        )
        results = body.get("results") or []
        if not results:
            return None
        first = results[0]
        if not isinstance(first, dict) or first.get("id") is None:
            raise HubSpotAPIError(None, f"Search result without contact id: {str(first)[:200]}")
        return str(first["id"])

    async def _patch(self, contact_id: str, properties: Dict[str, str]) -> None:
        await self._request("PATCH", f"/crm/v3/objects/contacts/{contact_id}", {"properties": properties})

    async def _create_contact(self, lead: LeadSubmission, status: str) -> str:
        try:
            contact_id = await self._create(build_contact_properties(lead, status))
        except HubSpotAPIError as e:
            if not e.is_unknown_property():
                raise
            logger.warning("crm.custom_properties_rejected", email=lead.email, step="create")
            contact_id = await self._create(build_contact_properties(lead, include_custom=False))
        logger.info("crm.contact_created", email=lead.email, contact_id=contact_id)
        return contact_id

    async def _update_contact(self, lead: LeadSubmission, status: str) -> Optional[str]:
        contact_id = await self._find_contact_id(lead.email)
        if contact_id is None:
            logger.warning("crm.contact_not_found", email=lead.email)
            return None

        try:
            await self._patch(contact_id, build_contact_properties(lead, status))
        except HubSpotAPIError as e:
            if not e.is_unknown_property():
                raise
            logger.warning("crm.custom_properties_rejected", email=lead.email, step="update")
            await self._patch(contact_id, build_contact_properties(lead, include_custom=False))
        logger.info("crm.contact_updated", email=lead.email, contact_id=contact_id)
        return contact_id

    async def upsert_contact(self, lead: LeadSubmission, status: str = STATUS_NEW_LEAD) -> Optional[str]:
        try:
            try:
                return await self._create_contact(lead, status)
            except HubSpotAPIError as e:
                if not e.is_conflict:
                    raise
                logger.info("crm.contact_exists", email=lead.email)
                return await self._update_contact(lead, status)
        except HubSpotAPIError as e:
            logger.error(
                "crm.integration_unavailable",
                operation="upsert_contact",
                email=lead.email,
                status=e.status,
                error=e.message[:200],
            )
            return None

    async def attach_note(self, contact_id: str, text: str) -> Optional[str]:
        if not contact_id:
            return None
        payload = {
            "properties": {
                "hs_note_body": text,
                "hs_timestamp": datetime.now(timezone.utc).isoformat(),
            },
            "associations": [{
                "to": {"id": contact_id},
                "types": [{
                    "associationCategory": "HUBSPOT_DEFINED",
                    "associationTypeId": NOTE_TO_CONTACT_ASSOCIATION,
                }],
            }],
        }
        try:
            body = await self._request("POST", "/crm/v3/objects/notes", payload)
        except HubSpotAPIError as e:
            logger.error("crm.note_failed", contact_id=contact_id, status=e.status, error=e.message[:200])
            return None
        note_id = str(body.get("id")) if body.get("id") is not None else None
        logger.info("crm.note_added", contact_id=contact_id, note_id=note_id)
        return note_id

    async def set_status(self, contact_id: str, status: str) -> bool:
        if not contact_id:
            return False
        try:
            await self._patch(contact_id, {"aeo_lead_status": status})
        except HubSpotAPIError as e:
            logger.error("crm.status_update_failed", contact_id=contact_id, status=e.status, error=e.message[:200])
            return False
        logger.info("crm.status_updated", contact_id=contact_id, lead_status=status)
        return True

    async def ping(self) -> bool:
        """Cheap authenticated call, used by the CLI."""
        try:
            await self._request(
                "POST",
                "/crm/v3/objects/contacts/search",
                {"filterGroups": [], "limit": 1},
            )
        except HubSpotAPIError as e:
            logger.error("crm.ping_failed", status=e.status, error=e.message[:200])
            return False
        return True


class DisabledCRMClient:
    """Stands in when the HubSpot integration is switched off."""

    async def upsert_contact(self, lead: LeadSubmission, status: str = STATUS_NEW_LEAD) -> Optional[str]:
        logger.debug("crm.disabled", operation="upsert_contact", email=lead.email)
        return None

    async def attach_note(self, contact_id: str, text: str) -> Optional[str]:
        return None

    async def set_status(self, contact_id: str, status: str) -> bool:
        return False


def build_crm_client(config: Settings) -> CRMClient:
    if not config.hubspot_enabled:
        return DisabledCRMClient()
    return HubSpotClient(
        access_token=config.hubspot_access_token,
        api_url=config.hubspot_api_url,
        timeout=config.outbound_timeout_seconds,
    )
