"""
Configuration management for the CloudCall routing service.

Uses Pydantic Settings for environment variable parsing.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerConfig(BaseSettings):
    """HTTP server configuration."""

    model_config = SettingsConfigDict(env_prefix="CLOUDCALL_SERVER_")

    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=5003, description="Bind port")


class TwilioConfig(BaseSettings):
    """Twilio account configuration."""

    model_config = SettingsConfigDict(env_prefix="CLOUDCALL_TWILIO_")

    account_sid: str = Field(default="", description="Twilio account SID")
    auth_token: str = Field(default="", description="Twilio auth token")
    validate_signature: bool = Field(
        default=False,
        description="Reject webhooks without a valid X-Twilio-Signature",
    )


class RoutingSettings(BaseSettings):
    """Call handling defaults used when building gateway instructions."""

    model_config = SettingsConfigDict(env_prefix="CLOUDCALL_ROUTING_")

    dial_timeout: int = Field(
        default=20,
        description="Seconds to ring targets before the no-answer action",
    )
    ivr_gather_timeout: int = Field(
        default=10,
        description="Seconds to wait for an IVR digit",
    )
    ivr_num_digits: int = Field(default=1, description="Digits collected per IVR prompt")
    ivr_max_attempts: int = Field(
        default=3,
        description="Times the IVR menu is played before giving up on input",
    )
    ivr_selection_message: str = Field(
        default="Thank you. Your selection has been received. Goodbye.",
    )
    ivr_no_input_message: str = Field(
        default="We did not receive a selection. Goodbye.",
    )
    default_ivr_prompt: str = Field(
        default=(
            "Thank you for calling. Please press 1 for sales, 2 for support, "
            "or 0 to speak with an operator."
        ),
    )
    voicemail_prompt: str = Field(
        default="Please leave a message after the tone.",
    )
    not_in_service_message: str = Field(default="This number is not in service.")
    user_unavailable_message: str = Field(
        default="The person you are calling is not available.",
    )
    team_unavailable_message: str = Field(
        default="The team you are calling is not available.",
    )
    misconfigured_message: str = Field(
        default="This number is not configured properly.",
    )
    error_message: str = Field(
        default="An error occurred. Please try again later.",
    )
    round_robin_strategy: str = Field(
        default="rotation",
        description="SMS round-robin policy: rotation or random",
    )


class CommsConfig(BaseSettings):
    """Main routing service configuration."""

    model_config = SettingsConfigDict(
        env_prefix="CLOUDCALL_",
        env_file=".env",
        extra="ignore",
    )

    enabled: bool = Field(default=True, description="Connect the gateway on startup")
    provider: str = Field(default="twilio", description="Gateway provider name")
    webhook_base_url: str = Field(
        default="http://localhost:5003",
        description="Public base URL the provider calls back into",
    )
    log_level: str = Field(default="INFO")
    event_window: int = Field(
        default=10000,
        description="Number of processed provider event ids remembered for dedup",
    )
    reconcile_interval: float = Field(
        default=60.0,
        description="Seconds between orphaned-record sweeps (0 disables)",
    )
    numbers_file: Optional[str] = Field(
        default=None,
        description="JSON file of phone number documents loaded at startup",
    )

    # Sub-configs
    server: ServerConfig = Field(default_factory=ServerConfig)
    twilio: TwilioConfig = Field(default_factory=TwilioConfig)
    routing: RoutingSettings = Field(default_factory=RoutingSettings)

    def callback_url(self, path: str) -> str:
        """Absolute URL for a webhook path."""
        return self.webhook_base_url.rstrip("/") + path


# Global settings instance
_settings: Optional[CommsConfig] = None


def get_settings() -> CommsConfig:
    """Get or create global settings instance."""
    global _settings
    if _settings is None:
        _settings = CommsConfig()
    return _settings


comms_settings = get_settings()
