"""Settings via pydantic-settings with RELAY_ env prefix.

Credentials use validation_alias so the conventional unprefixed variables
(TELEGRAM_BOT_TOKEN, OPENAI_API_KEY) work without renaming.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from relay.errors import ConfigurationError


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="RELAY_",
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    # Credentials — unprefixed aliases
    telegram_bot_token: str = Field("", validation_alias="TELEGRAM_BOT_TOKEN")
    openai_api_key: str = Field("", validation_alias="OPENAI_API_KEY")

    # Completion endpoint
    api_base_url: str = "https://api.openai.com"
    model: str = "gpt-3.5-turbo"
    api_timeout_connect: int = 10  # seconds
    api_timeout_read: int = 120  # seconds

    # Streaming: edit the placeholder every N non-empty fragments
    edit_every: int = Field(20, ge=1)
    placeholder_text: str = "\U0001f4ad"

    # Telegram
    telegram_api_url: str = "https://api.telegram.org"
    poll_timeout: int = 30  # long-polling seconds
    poll_retry_delay: float = 5.0
    chat_on_plain_text: bool = False

    log_level: str = "info"

    def require_credentials(self) -> None:
        """Raise ConfigurationError if any credential needed to run is empty."""
        missing = []
        if not self.telegram_bot_token:
            missing.append("TELEGRAM_BOT_TOKEN")
        if not self.openai_api_key:
            missing.append("OPENAI_API_KEY")
        if missing:
            raise ConfigurationError(f"{', '.join(missing)} not set")
