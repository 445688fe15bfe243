"""Application configuration."""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings from environment variables."""

    # Web server
    host: str = "0.0.0.0"
    port: int = 8080

    # Signaling backend
    backend_url: str = "http://localhost:8000"
    signaling_ws_url: Optional[str] = None  # e.g., "wss://pbx.example.com/ws"
    api_token: Optional[str] = None
    request_timeout: float = 10.0
    reconnect_interval: float = 5.0

    # Log in automatically on startup when set
    extension: Optional[str] = None

    # Call timers (seconds)
    dial_timeout: float = 30.0
    accept_timeout: float = 15.0
    hangup_timeout: float = 5.0
    terminal_grace_period: float = 2.0
    offer_timeout: float = 45.0

    # Used for hangup while no channel id has been assigned yet
    hangup_fallback_channel: str = "PJSIP/{extension}"

    # Presence
    heartbeat_interval: float = 30.0
    status_push_timeout: float = 5.0

    # Notifications and event feed
    max_notifications: int = 200
    subscriber_queue_size: int = 100

    # Logging
    log_level: str = "INFO"

    model_config = {
        "env_prefix": "CALLDESK_",
        "env_file": ".env",
    }

    def get_ws_url(self) -> str:
        """Get signaling websocket URL, deriving it from the backend URL if unset."""
        if self.signaling_ws_url:
            return self.signaling_ws_url.rstrip('/')
        base = self.backend_url.rstrip('/')
        if base.startswith("https://"):
            return "wss://" + base[len("https://"):] + "/ws"
        if base.startswith("http://"):
            return "ws://" + base[len("http://"):] + "/ws"
        return base + "/ws"

    def hangup_channel_for(self, extension: str) -> Optional[str]:
        """Channel to hang up when the backend has not assigned one."""
        if not self.hangup_fallback_channel:
            return None
        return self.hangup_fallback_channel.format(extension=extension)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
