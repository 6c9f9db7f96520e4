from __future__ import annotations

import re
from typing import Optional

from aeo_api.schemas.lead import COUNTRIES, COUNTRY_ALIASES

_EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
_WHITESPACE = re.compile(r"\s+")

_COUNTRY_LOOKUP = {name.lower(): name for name in COUNTRIES}
_COUNTRY_LOOKUP.update(COUNTRY_ALIASES)


def normalize_email(email: Optional[str]) -> Optional[str]:
    """Lower-case and trim an email address; None when it is not well formed."""
    if not email:
        return None

    normalized = email.strip().lower()
    if not _EMAIL_PATTERN.match(normalized):
        return None

    return normalized


def normalize_country(country: Optional[str]) -> Optional[str]:
    """Map a submitted country (or a known alias such as UAE) to its canonical name."""
    if not country:
        return None
    key = _WHITESPACE.sub(" ", country.strip()).lower()
    return _COUNTRY_LOOKUP.get(key)


def clean_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    cleaned = value.strip()
    return cleaned or None
