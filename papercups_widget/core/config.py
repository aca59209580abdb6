import logging
from functools import lru_cache
from typing import Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from papercups_widget.models.customer import CustomerMetadata

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    # Debug mode turns on verbose widget logging
    DEBUG: bool = False

    # Backend settings
    BASE_URL: str = "https://app.papercups.io"
    REQUEST_TIMEOUT_SECONDS: float = 10.0

    # Realtime channel settings
    CHANNEL_TIMEOUT_SECONDS: float = 10.0  # Wait for a phx_reply before giving up
    HEARTBEAT_INTERVAL_SECONDS: float = 30.0
    RECONNECT_DELAY_SECONDS: float = 5.0

    # Delay before re-fetching conversations after a lobby "conversation:created"
    # push; the backend row may not be queryable immediately
    LOBBY_REFETCH_DELAY_SECONDS: float = 1.0

    # Message bodies that open the embedded game instead of being sent
    GAME_MODE_TRIGGERS: str | list[str] = "/game,/games,/play,play a game,play a game!"

    # Embeds older than this version get a deprecation warning
    MIN_SUPPORTED_VERSION: str = "1.1.2"

    # Unread message previews shown while the widget is closed
    UNREAD_PREVIEW_MAX_CHARS: int = 140
    UNREAD_PREVIEW_MAX_TOTAL_CHARS: int = 100

    model_config = SettingsConfigDict(
        env_prefix="PAPERCUPS_",
        env_file=".env",
        extra="ignore",
    )

    @property
    def WEBSOCKET_URL(self) -> str:
        """Socket endpoint derived from BASE_URL"""
        return get_websocket_url(self.BASE_URL)

    @field_validator("BASE_URL")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Normalize and validate the backend base URL.

        Args:
            v: Base URL

        Returns:
            Base URL with a scheme and no trailing slash

        Raises:
            ValueError: If BASE_URL is empty
        """
        return normalize_base_url(v)

    @field_validator(
        "REQUEST_TIMEOUT_SECONDS",
        "CHANNEL_TIMEOUT_SECONDS",
        "HEARTBEAT_INTERVAL_SECONDS",
    )
    @classmethod
    def validate_positive_interval(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"Timeouts and intervals must be positive, got {v}")
        return v

    @field_validator("LOBBY_REFETCH_DELAY_SECONDS", "RECONNECT_DELAY_SECONDS")
    @classmethod
    def validate_non_negative_delay(cls, v: float) -> float:
        if v < 0:
            raise ValueError(f"Delays must not be negative, got {v}")
        return v

    @field_validator("UNREAD_PREVIEW_MAX_CHARS", "UNREAD_PREVIEW_MAX_TOTAL_CHARS")
    @classmethod
    def validate_preview_limits(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"Unread preview limits must be at least 1, got {v}")
        return v

    @field_validator("GAME_MODE_TRIGGERS", mode="before")
    @classmethod
    def parse_game_mode_triggers(cls, v: str | list[str]) -> list[str]:
        """Normalize GAME_MODE_TRIGGERS to a list of lower-cased phrases.

        Accepts either a comma-separated string or a list of strings.
        Handles trimming whitespace and ignores empty entries.

        Args:
            v: Trigger phrases as string (comma-separated) or list of strings

        Returns:
            List of lower-cased trigger phrases
        """
        if isinstance(v, list):
            return [
                phrase.strip().lower()
                for phrase in v
                if isinstance(phrase, str) and phrase.strip()
            ]

        if isinstance(v, str):
            return [phrase.strip().lower() for phrase in v.split(",") if phrase.strip()]

        return []


class WidgetConfig(BaseModel):
    """Per-embed configuration handed to the widget by the host page."""

    model_config = ConfigDict(extra="ignore")

    account_id: str
    customer_id: Optional[str] = None  # Cached id from a previous page load
    base_url: Optional[str] = None
    greeting: Optional[str] = None
    should_require_email: bool = False
    customer: Optional[CustomerMetadata] = None

    @field_validator("account_id")
    @classmethod
    def validate_account_id(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("account_id must be non-empty")
        return v

    def resolve_base_url(self, settings: Settings) -> str:
        """Base URL for this embed, falling back to the environment default."""
        if self.base_url:
            return normalize_base_url(self.base_url)
        return settings.BASE_URL


def normalize_base_url(v: str) -> str:
    v = v.strip()
    if not v:
        raise ValueError("BASE_URL must be non-empty")
    # Keep internal hosts valid; only the scheme is enforced
    if "://" not in v:
        v = "https://" + v
    return v.rstrip("/")


def get_websocket_url(base_url: str) -> str:
    """Map an HTTP(S) base URL onto the matching socket endpoint.

    Args:
        base_url: Backend base URL, e.g. "https://app.papercups.io"

    Returns:
        Socket URL, e.g. "wss://app.papercups.io/socket"
    """
    parsed = urlparse(base_url if "://" in base_url else f"https://{base_url}")
    scheme = "wss" if parsed.scheme == "https" else "ws"
    return f"{scheme}://{parsed.netloc}/socket"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
