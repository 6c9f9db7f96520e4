"""Validation of capture form submissions."""
from __future__ import annotations

from typing import Optional

from aeo_api.core.exceptions import ValidationError
from aeo_api.schemas.lead import LeadInterest, LeadSubmission, LeadSubmitRequest
from aeo_api.services.normalization import clean_text, normalize_country, normalize_email


def require_email(email: Optional[str]) -> str:
    """Return the normalized email or raise ``invalid_email``."""
    normalized = normalize_email(email)
    if normalized is None:
        raise ValidationError(
            "Invalid email address",
            code="invalid_email",
        )
    return normalized


def validate_lead_submission(payload: LeadSubmitRequest) -> LeadSubmission:
    """Check required fields and build the immutable submission."""
    if not payload.email or not payload.email.strip():
        raise ValidationError("Email and country are required", code="invalid_email")
    email = require_email(payload.email)

    if not payload.country or not payload.country.strip():
        raise ValidationError("Email and country are required", code="missing_country")

    country = normalize_country(payload.country)
    if country is None:
        raise ValidationError(
            "Unsupported country",
            code="invalid_country",
            details={"country": payload.country},
        )

    return LeadSubmission(
        email=email,
        country=country,
        first_name=clean_text(payload.first_name),
        last_name=clean_text(payload.last_name),
        phone_number=clean_text(payload.phone_number),
        lead_interest=payload.lead_interest or LeadInterest.AEO_AUDIT,
        url=clean_text(payload.url),
    )
