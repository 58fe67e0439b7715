"""Runtime configuration for the varys testbed."""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from varys.models import FailurePolicy
from varys.timing import InteractionTimeouts


class Settings(BaseSettings):
    """Environment-driven runtime settings."""

    model_config = SettingsConfigDict(env_prefix="VARYS_", env_file=".env", extra="ignore")

    app_name: str = "varys"
    log_level: str = "INFO"
    database_url: str = Field(
        default="sqlite:///varys.db",
        description="SQLAlchemy URL of the interaction database.",
    )
    data_dir: Path = Path("data")

    interface: str = Field(default="en0", description="Network interface the device traffic is captured on.")
    voice: str = Field(default="", description="TTS voice id or name used for queries.")
    sensitivity: float = Field(default=0.01, ge=0.0, le=1.0, description="Silence threshold, see `varys calibrate`.")
    model: str = Field(default="whisper-base", description="Speech-to-text model for transcribing responses.")

    capture_ready_timeout_seconds: float = Field(default=0.3, gt=0)
    capture_stop_timeout_seconds: float = Field(default=10.0, gt=0)
    capture_filter: str | None = Field(default=None, description="Optional BPF filter passed to tcpdump.")
    compress_captures: bool = False

    playback_timeout_seconds: float = Field(default=30.0, gt=0)
    response_timeout_seconds: float = Field(default=60.0, gt=0)
    silence_duration_seconds: float = Field(default=2.0, gt=0)
    transcription_timeout_seconds: float = Field(default=120.0, gt=0)

    write_retries: int = Field(default=3, ge=0)
    retry_delay_seconds: float = Field(default=0.5, ge=0)
    failure_policy: FailurePolicy = FailurePolicy.continue_session
    shuffle_queries: bool = True

    assistant: str = Field(
        default="siri",
        description="Assistant profile (siri, alexa) or `none` to speak queries verbatim.",
    )
    save_response_audio: bool = Field(default=True, description="Keep a WAV of every recorded response.")

    monitoring_url: str | None = Field(
        default=None,
        description="URL pinged at every interaction; `{message}` is replaced with the event text.",
    )

    @property
    def capture_dir(self) -> Path:
        return self.data_dir / "captures"

    @property
    def sessions_dir(self) -> Path:
        return self.data_dir / "sessions"

    def timeouts(self) -> InteractionTimeouts:
        return InteractionTimeouts(
            capture_ready=self.capture_ready_timeout_seconds,
            playback=self.playback_timeout_seconds,
            response=self.response_timeout_seconds,
            transcription=self.transcription_timeout_seconds,
            capture_stop=self.capture_stop_timeout_seconds,
        )


settings = Settings()
