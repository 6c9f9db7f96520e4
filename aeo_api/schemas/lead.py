# aeo_api/schemas/lead.py
from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class LeadInterest(str, Enum):
    AEO_AUDIT = "AEO Audit"
    AEO_TOOLS_UPGRADE = "AEO Tools Upgrade"
    AEO_PROFESSIONAL_SERVICES = "AEO Professional Services"


# Countries offered by the capture form
COUNTRIES = tuple(sorted([
    "United Arab Emirates", "United States", "United Kingdom", "Canada", "Australia",
    "India", "Singapore", "Germany", "France", "Saudi Arabia", "Qatar", "Kuwait",
    "Bahrain", "Oman", "Egypt", "Jordan", "Lebanon", "Pakistan", "Bangladesh",
    "Philippines", "Indonesia", "Malaysia", "Thailand", "China", "Japan", "South Korea",
    "Brazil", "Mexico", "South Africa", "Nigeria", "Kenya", "Netherlands", "Belgium",
    "Switzerland", "Italy", "Spain", "Portugal", "Sweden", "Norway", "Denmark", "Finland",
    "Ireland", "Poland", "Austria", "New Zealand", "Russia", "Turkey", "Israel", "Vietnam",
]))

COUNTRY_ALIASES = {
    "uae": "United Arab Emirates",
    "ksa": "Saudi Arabia",
    "us": "United States",
    "usa": "United States",
    "uk": "United Kingdom",
}


class LeadSubmitRequest(BaseModel):
    """Raw capture form payload. Field checks happen in the validation service."""

    email: Optional[str] = None
    country: Optional[str] = None
    first_name: Optional[str] = Field(default=None, max_length=100, validation_alias=AliasChoices("first_name", "firstName"))
    last_name: Optional[str] = Field(default=None, max_length=100, validation_alias=AliasChoices("last_name", "lastName"))
    phone_number: Optional[str] = Field(default=None, max_length=32, validation_alias=AliasChoices("phone_number", "phoneNumber"))
    lead_interest: Optional[LeadInterest] = Field(default=None, validation_alias=AliasChoices("lead_interest", "leadInterest"))
    url: Optional[str] = Field(default=None, max_length=2048)


class LeadSubmission(BaseModel):
    model_config = ConfigDict(frozen=True)

    email: str
    country: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone_number: Optional[str] = None
    lead_interest: LeadInterest = LeadInterest.AEO_AUDIT
    url: Optional[str] = None
