from __future__ import annotations

from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore"
    )

    # Environment
    environment: str = Field(default="development", validation_alias="ENVIRONMENT")
    debug: bool = Field(default=False, validation_alias="DEBUG")

    # Server
    api_host: str = Field(default="0.0.0.0", validation_alias="API_HOST")
    api_port: int = Field(default=8000, validation_alias="API_PORT")
    api_prefix: str = Field(default="/api", validation_alias="API_PREFIX")

    # Storage
    store_backend: str = Field(default="memory", validation_alias="STORE_BACKEND")

    # Redis
    redis_url: str = Field(default="redis://redis:6379/0", validation_alias="REDIS_URL")
    redis_max_connections: int = Field(default=50, validation_alias="REDIS_MAX_CONNECTIONS")
    redis_socket_timeout: int = Field(default=5, validation_alias="REDIS_SOCKET_TIMEOUT")
    redis_socket_connect_timeout: int = Field(default=5, validation_alias="REDIS_SOCKET_CONNECT_TIMEOUT")

    # One-time codes
    otp_ttl_seconds: int = Field(default=600, validation_alias="OTP_TTL_SECONDS")
    otp_max_attempts: int = Field(default=5, validation_alias="OTP_MAX_ATTEMPTS")
    otp_resend_cooldown_seconds: int = Field(default=60, validation_alias="OTP_RESEND_COOLDOWN_SECONDS")
    lead_session_ttl_seconds: int = Field(default=86400, validation_alias="LEAD_SESSION_TTL_SECONDS")

    # Logging
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_format: str = Field(default="json", validation_alias="LOG_FORMAT")

    # CORS
    allowed_origins: str = Field(default="http://localhost:3000,http://127.0.0.1:3000", validation_alias="ALLOWED_ORIGINS")
    allowed_methods: str = Field(default="GET,POST,OPTIONS", validation_alias="ALLOWED_METHODS")
    allowed_headers: str = Field(default="*", validation_alias="ALLOWED_HEADERS")

    # Rate Limiting
    rate_limit_requests: int = Field(default=30, validation_alias="RATE_LIMIT_REQUESTS")
    rate_limit_period: int = Field(default=60, validation_alias="RATE_LIMIT_PERIOD")

    # Outbound HTTP
    outbound_timeout_seconds: int = Field(default=10, validation_alias="OUTBOUND_TIMEOUT_SECONDS")

    # Email
    email_provider: str = Field(default="console", validation_alias="EMAIL_PROVIDER")
    resend_api_key: Optional[str] = Field(default=None, validation_alias="RESEND_API_KEY")
    resend_api_url: str = Field(default="https://api.resend.com", validation_alias="RESEND_API_URL")
    from_email: str = Field(default="noreply@aeoaudit.local", validation_alias="FROM_EMAIL")
    from_name: str = Field(default="AEO Audit Suite", validation_alias="FROM_NAME")

    # HubSpot
    enable_hubspot_integration: bool = Field(default=False, validation_alias="ENABLE_HUBSPOT_INTEGRATION")
    hubspot_access_token: Optional[str] = Field(default=None, validation_alias="HUBSPOT_ACCESS_TOKEN")
    hubspot_api_url: str = Field(default="https://api.hubapi.com", validation_alias="HUBSPOT_API_URL")

    # Monitoring
    sentry_dsn: Optional[str] = Field(default=None, validation_alias="SENTRY_DSN")
    health_check_timeout: int = Field(default=5, validation_alias="HEALTH_CHECK_TIMEOUT")

    @field_validator("environment")
    def validate_environment(cls, v):
        valid_envs = ["development", "testing", "staging", "production"]
        if v not in valid_envs:
            raise ValueError(f"environment must be one of {valid_envs}")
        return v

    @field_validator("log_level")
    def validate_log_level(cls, v):
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return v.upper()

    @field_validator("log_format")
    def validate_log_format(cls, v):
        valid_formats = ["json", "console"]
        if v not in valid_formats:
            raise ValueError(f"log_format must be one of {valid_formats}")
        return v

    @field_validator("store_backend")
    def validate_store_backend(cls, v):
        valid_backends = ["memory", "redis"]
        if v not in valid_backends:
            raise ValueError(f"store_backend must be one of {valid_backends}")
        return v

    @field_validator("email_provider")
    def validate_email_provider(cls, v):
        valid_providers = ["console", "resend"]
        if v not in valid_providers:
            raise ValueError(f"email_provider must be one of {valid_providers}")
        return v

    @field_validator("otp_ttl_seconds", "otp_max_attempts", "outbound_timeout_seconds")
    def validate_positive(cls, v):
        if v <= 0:
            raise ValueError("must be greater than zero")
        return v

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def is_testing(self) -> bool:
        return self.environment == "testing"

    @property
    def hubspot_enabled(self) -> bool:
        return self.enable_hubspot_integration and bool(self.hubspot_access_token)

    @property
    def from_address(self) -> str:
        return f"{self.from_name} <{self.from_email}>"

    def origins(self) -> List[str]:
        if self.allowed_origins.strip() == "*":
            return ["*"]
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]

    def methods(self) -> List[str]:
        return [method.strip() for method in self.allowed_methods.split(",") if method.strip()]


settings = Settings()
