"""AEO Audit Suite lead capture API."""

__version__ = "1.0.0"
