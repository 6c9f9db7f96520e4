from aeo_api.schemas.lead import COUNTRIES
from aeo_api.services.normalization import clean_text, normalize_country, normalize_email


def test_normalize_email():
    assert normalize_email("test@example.com") == "test@example.com"
    assert normalize_email("  Test@Example.COM  ") == "test@example.com"
    assert normalize_email("first.last+aeo@sub.example.ae") == "first.last+aeo@sub.example.ae"

    assert normalize_email(None) is None
    assert normalize_email("") is None
    assert normalize_email("   ") is None
    assert normalize_email("invalid") is None  # No @
    assert normalize_email("invalid@") is None  # No domain
    assert normalize_email("a@b") is None  # No TLD


def test_normalize_country_canonical_names():
    assert normalize_country("Canada") == "Canada"
    assert normalize_country("  united   arab emirates ") == "United Arab Emirates"
    assert normalize_country("SOUTH KOREA") == "South Korea"


def test_normalize_country_aliases():
    assert normalize_country("UAE") == "United Arab Emirates"
    assert normalize_country("uae") == "United Arab Emirates"
    assert normalize_country("KSA") == "Saudi Arabia"
    assert normalize_country("USA") == "United States"
    assert normalize_country("UK") == "United Kingdom"


def test_normalize_country_unknown():
    assert normalize_country(None) is None
    assert normalize_country("") is None
    assert normalize_country("Atlantis") is None


def test_every_listed_country_resolves_to_itself():
    for country in COUNTRIES:
        assert normalize_country(country) == country


def test_clean_text():
    assert clean_text("  Jane ") == "Jane"
    assert clean_text("   ") is None
    assert clean_text(None) is None
