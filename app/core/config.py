"""Application configuration."""
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Telnyx
    telnyx_api_key: Optional[str] = None
    telnyx_api_url: str = "https://api.telnyx.com/v2"
    telnyx_timeout_seconds: float = 10.0
    telnyx_debug: bool = False
    call_control_app_id: Optional[str] = None
    sip_credential_connection_id: Optional[str] = None
    sip_domain: str = "sip.telnyx.com"

    # Routing
    from_number: Optional[str] = None
    fallback_agent_sip_username: Optional[str] = None
    apology_message: str = (
        "Sorry, we couldn't reach an agent right now. We'll call you back shortly."
    )
    hold_music_url: Optional[str] = None

    # Database
    database_url: str

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )


settings = Settings()
