"""finbot configuration management."""

import logging
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings

from .communication.inbound import AllowList, parse_allowed_chats
from .errors import ConfigurationError

logger = logging.getLogger("finbot.config")

# Environment keys that must be present before the bot may start.
REQUIRED_ENV_VARS = (
    "GOOGLE_PROJECT_ID",
    "GOOGLE_CLIENT_EMAIL",
    "GOOGLE_PRIVATE_KEY",
    "SHEET_ID",
    "BOT_PHONE_NUMBER",
    "ALLOWED_CHATS",
)


class FinbotSettings(BaseSettings):
    """Settings loaded from environment variables or .env file."""

    # Spreadsheet backend used by the message handler
    google_project_id: Optional[str] = Field(default=None, description="Google Cloud project id")
    google_client_email: Optional[str] = Field(default=None, description="Service account email")
    google_private_key: Optional[str] = Field(default=None, description="Service account private key")
    sheet_id: Optional[str] = Field(default=None, description="Target spreadsheet id")

    # WhatsApp
    bot_phone_number: Optional[str] = Field(default=None, description="Phone number paired with the bot")
    allowed_chats: Optional[str] = Field(
        default=None,
        description="Comma-separated chat ids (groups end with @g.us)",
    )

    # Runtime
    auth_dir: str = Field(default="auth", validation_alias="FINBOT_AUTH_DIR")
    reconnect_delay: float = Field(default=5.0, validation_alias="FINBOT_RECONNECT_DELAY")
    handler_timeout: float = Field(default=60.0, validation_alias="FINBOT_HANDLER_TIMEOUT")
    handler: str = Field(default="finbot.handler:echo", validation_alias="FINBOT_HANDLER")
    transport: str = Field(
        default="finbot.transports.wacli:WacliTransport",
        validation_alias="FINBOT_TRANSPORT",
    )
    log_file: str = Field(default="~/finbot.log", validation_alias="FINBOT_LOG_FILE")
    debug: bool = Field(default=False, validation_alias="FINBOT_DEBUG")

    model_config = {"env_file": ".env", "extra": "ignore", "populate_by_name": True}

    def allow_list(self) -> AllowList:
        """Derive the immutable allow-list from ALLOWED_CHATS."""
        return parse_allowed_chats(self.allowed_chats)


def load_settings() -> FinbotSettings:
    """Load settings from environment."""
    return FinbotSettings()


def check_environment(settings: FinbotSettings) -> list[str]:
    """Return every required environment key that is missing or blank."""
    missing = []
    for name in REQUIRED_ENV_VARS:
        value = getattr(settings, name.lower())
        if not value or not value.strip():
            missing.append(name)
    return missing


def validate_startup(settings: FinbotSettings) -> AllowList:
    """Validate configuration and return the allow-list the bot will run with.

    Raises:
        ConfigurationError: if any required key is missing (all of them are
            listed in ``missing``) or the allow-list is empty after trimming.
    """
    missing = check_environment(settings)
    if missing:
        raise ConfigurationError(
            f"Missing environment variables: {', '.join(missing)}",
            missing=missing,
        )

    allow_list = settings.allow_list()
    if not allow_list:
        raise ConfigurationError("No authorized chat configured in ALLOWED_CHATS")

    logger.debug(f"Configuration valid, {len(allow_list)} authorized chat(s)")
    return allow_list
