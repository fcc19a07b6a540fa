"""
Environment configuration for the Payconnect backend.

Settings are read from the environment every time ``get_settings()`` is called,
so tests (and redeploys that only touch env vars) never see stale values.
"""

import logging

from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Typed view of the service environment. Field names match env vars case-insensitively."""

    model_config = SettingsConfigDict(env_ignore_empty=True, extra="ignore")

    port: int = 3000
    log_level: str = "INFO"

    # Moolre (payment processor)
    moolre_base: str = "https://api.moolre.com"
    moolre_public_api_key: str = ""
    moolre_username: str = ""
    moolre_secret: str = ""
    moolre_account_number: str = ""

    # Hubtel (SMS)
    hubtel_client_id: str = ""
    hubtel_client_secret: str = ""
    hubtel_sender: str = "Pconnect"

    # Airtable (order store)
    airtable_api_key: str = ""
    airtable_base: str = ""
    airtable_table: str = "Orders"

    public_base_url: str = ""
    upstream_timeout_seconds: float = 15.0
    pending_ttl_seconds: float = 1800.0
    support_phone: str = "233531300654"

    @property
    def webhook_url(self) -> str:
        """Callback URL Moolre should post payment confirmations to."""
        if not self.public_base_url:
            return ""
        return f"{self.public_base_url.rstrip('/')}/api/webhook/moolre"

    def missing_moolre_credentials(self) -> list:
        missing = []
        if not self.moolre_account_number:
            missing.append("MOOLRE_ACCOUNT_NUMBER")
        if not self.moolre_username:
            missing.append("MOOLRE_USERNAME")
        if not self.moolre_public_api_key:
            missing.append("MOOLRE_PUBLIC_API_KEY")
        return missing


def get_settings() -> Settings:
    """
    Build a Settings instance from the current environment.

    Unset or empty variables fall back to the model defaults.

    Raises:
        ConfigurationError: If a numeric variable cannot be parsed
    """
    try:
        return Settings()
    except ValueError as e:
        # pydantic.ValidationError subclasses ValueError
        error_msg = f"Invalid environment configuration: {str(e)}"
        logger.error(error_msg)
        raise ConfigurationError(error_msg)
