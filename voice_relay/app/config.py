"""Runtime configuration for the voice relay service."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError


class Settings(BaseSettings):
    """Environment-backed settings for the relay.

    Values are loaded from environment variables, with `.env` used for local
    development defaults.

    Attributes:
        HOST: Interface the ASGI server binds to.
        PORT: Port the ASGI server listens on.
        OPENAI_API_KEY: Credential for the realtime backend. Required at startup.
        OPENAI_REALTIME_URL: Base websocket URL of the realtime backend.
        OPENAI_REALTIME_MODEL: Realtime model identifier appended to the URL.
        OPENAI_REALTIME_VOICE: Voice identity used for synthesized agent audio.
        OPENAI_TURN_DETECTION_TYPE: Backend turn detection mode (`server_vad`
            or `semantic_vad`).
        OPENAI_TEMPERATURE: Sampling temperature sent with the session config.
        SYSTEM_INSTRUCTIONS: Optional override for the built-in agent prompt.
        INCOMING_CALL_GREETING: Optional line Twilio speaks before the media
            stream connects.
        SESSION_UPDATE_DELAY_S: Settling delay between backend-ready and the
            one-time `session.update`.
        END_CALL_GRACE_DELAY_S: Wait between an accepted end-call and socket
            teardown, so the farewell audio can finish.
        LOG_LEVEL: Application log verbosity.
        WEBSOCKETS_LOG_LEVEL: Log level for `websockets` library internals.
        OBSERVABILITY_LOG_LEVEL: Log level for observability internals.
        LOGGED_REALTIME_EVENT_TYPES: Backend event types logged at info level.
        DB_CONNECTION_STRING: Optional Postgres DSN for call observability.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    HOST: str = "0.0.0.0"
    PORT: int = 5050
    OPENAI_API_KEY: str = ""
    OPENAI_REALTIME_URL: str = "wss://api.openai.com/v1/realtime"
    OPENAI_REALTIME_MODEL: str = "gpt-realtime"
    OPENAI_REALTIME_VOICE: str = "sage"
    OPENAI_TURN_DETECTION_TYPE: str = "semantic_vad"
    OPENAI_TEMPERATURE: float = Field(default=0.8, ge=0.0, le=2.0)
    SYSTEM_INSTRUCTIONS: str | None = None
    INCOMING_CALL_GREETING: str | None = None
    SESSION_UPDATE_DELAY_S: float = Field(default=0.25, ge=0.0)
    END_CALL_GRACE_DELAY_S: float = Field(default=5.0, ge=0.0)
    LOG_LEVEL: str = "info"
    WEBSOCKETS_LOG_LEVEL: str = "info"
    OBSERVABILITY_LOG_LEVEL: str = "info"
    LOGGED_REALTIME_EVENT_TYPES: list[str] = [
        "response.content.done",
        "rate_limits.updated",
        "response.done",
        "input_audio_buffer.committed",
        "input_audio_buffer.speech_stopped",
        "input_audio_buffer.speech_started",
        "session.created",
    ]
    DB_CONNECTION_STRING: str | None = None

    @property
    def realtime_url(self) -> str:
        """Builds the backend websocket URL including the model query."""
        return f"{self.OPENAI_REALTIME_URL}?model={self.OPENAI_REALTIME_MODEL}"

    @property
    def realtime_headers(self) -> dict[str, str]:
        """Builds the handshake headers for the backend websocket."""
        return {
            "Authorization": f"Bearer {self.OPENAI_API_KEY}",
            "OpenAI-Beta": "realtime=v1",
        }

    def require_api_key(self) -> str:
        """Returns the backend credential or fails process startup.

        Raises:
            ConfigurationError: If ``OPENAI_API_KEY`` is empty.
        """
        if not self.OPENAI_API_KEY:
            raise ConfigurationError("OPENAI_API_KEY is required")
        return self.OPENAI_API_KEY


settings = Settings()
