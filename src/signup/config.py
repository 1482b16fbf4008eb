"""
Configuration management for the Voice Signup service.

Loads environment variables and provides a strongly-typed configuration object.
Validates required keys at startup.
"""

import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv
import structlog

load_dotenv()

logger = structlog.get_logger(__name__)


class ConfigError(Exception):
    """Raised when configuration is invalid or missing."""
    pass


@dataclass(frozen=True)
class Config:
    """Strongly-typed configuration object."""

    # Server
    public_host: str = ""
    port: int = 7860
    log_level: str = "INFO"

    # Language
    # - default_language is used when the client does not announce one ("en" or "ar")
    default_language: str = "en"
    agent_name: str = "Wakti"

    # OpenAI Realtime (speech session)
    openai_api_key: str = ""
    openai_realtime_model: str = "gpt-4o-realtime-preview"
    openai_realtime_voice: str = "shimmer"
    openai_transcription_model: str = "whisper-1"
    openai_realtime_url: str = "wss://api.openai.com/v1/realtime"
    openai_sessions_url: str = "https://api.openai.com/v1/realtime/sessions"

    # Signaling endpoint (defaults to this server's own /session route)
    signaling_url: str = ""
    signaling_timeout_seconds: float = 10.0

    # Account backend (Supabase-compatible auth API)
    supabase_url: str = ""
    supabase_anon_key: str = ""
    email_redirect_url: str = ""

    # Turn taking
    min_hold_ms: int = 500
    max_record_seconds: int = 10
    countdown_poll_ms: int = 200

    # Interview pacing
    prompt_delay_ms: int = 600
    reveal_pause_ms: int = 400
    welcome_delay_seconds: float = 6.0

    # Validation
    min_password_length: int = 6

    @property
    def base_url(self) -> str:
        """Get the base HTTP URL."""
        if self.public_host:
            return f"https://{self.public_host}"
        return f"http://127.0.0.1:{self.port}"

    @property
    def resolved_signaling_url(self) -> str:
        """Signaling URL, falling back to this server's /session route."""
        return self.signaling_url or f"{self.base_url}/session"

    def validate(self) -> None:
        """Validate that all required configuration is present."""
        missing = []

        if not self.openai_api_key:
            missing.append("OPENAI_API_KEY")
        if not self.openai_realtime_model:
            missing.append("OPENAI_REALTIME_MODEL")
        if not self.supabase_url:
            missing.append("SUPABASE_URL")
        if not self.supabase_anon_key:
            missing.append("SUPABASE_ANON_KEY")

        if self.default_language not in ("en", "ar"):
            raise ConfigError(
                f"Invalid DEFAULT_LANGUAGE '{self.default_language}'. Expected 'en' or 'ar'."
            )
        if self.min_hold_ms < 0 or self.max_record_seconds <= 0:
            raise ConfigError("MIN_HOLD_MS must be >= 0 and MAX_RECORD_SECONDS must be > 0.")
        if self.min_hold_ms >= self.max_record_seconds * 1000:
            raise ConfigError("MIN_HOLD_MS must be shorter than MAX_RECORD_SECONDS.")

        if missing:
            raise ConfigError(
                f"Missing required environment variables: {', '.join(missing)}\n"
                "Please check your .env file."
            )

    def log_config(self) -> None:
        """Log configuration (without secrets)."""
        logger.info(
            "Configuration loaded",
            public_host=self.public_host or None,
            port=self.port,
            log_level=self.log_level,
            default_language=self.default_language,
            realtime_model=self.openai_realtime_model,
            realtime_voice=self.openai_realtime_voice,
            transcription_model=self.openai_transcription_model,
            signaling_url=self.resolved_signaling_url,
            supabase_url=self.supabase_url or "NOT SET",
            min_hold_ms=self.min_hold_ms,
            max_record_seconds=self.max_record_seconds,
            prompt_delay_ms=self.prompt_delay_ms,
            reveal_pause_ms=self.reveal_pause_ms,
            openai_key_set=bool(self.openai_api_key),
            supabase_key_set=bool(self.supabase_anon_key),
        )


def _get_int(key: str, default: int) -> int:
    """Get an integer from environment variable."""
    try:
        return int(os.getenv(key, str(default)))
    except ValueError:
        return default


def _get_float(key: str, default: float) -> float:
    """Get a float from environment variable."""
    try:
        return float(os.getenv(key, str(default)))
    except ValueError:
        return default


@lru_cache(maxsize=1)
def get_config() -> Config:
    """
    Get the application configuration.

    Uses lru_cache to ensure we only load config once.
    """
    default_language_raw = os.getenv("DEFAULT_LANGUAGE", "en").strip().lower()
    default_language = "ar" if default_language_raw.startswith("ar") else "en"

    config = Config(
        # Server
        public_host=os.getenv("PUBLIC_HOST", ""),
        port=_get_int("PORT", 7860),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),

        # Language
        default_language=default_language,
        agent_name=os.getenv("AGENT_NAME", "Wakti"),

        # OpenAI Realtime
        openai_api_key=os.getenv("OPENAI_API_KEY", ""),
        openai_realtime_model=os.getenv("OPENAI_REALTIME_MODEL", "gpt-4o-realtime-preview"),
        openai_realtime_voice=os.getenv("OPENAI_REALTIME_VOICE", "shimmer"),
        openai_transcription_model=os.getenv("OPENAI_TRANSCRIPTION_MODEL", "whisper-1"),
        openai_realtime_url=os.getenv("OPENAI_REALTIME_URL", "wss://api.openai.com/v1/realtime"),
        openai_sessions_url=os.getenv(
            "OPENAI_SESSIONS_URL", "https://api.openai.com/v1/realtime/sessions"
        ),

        # Signaling
        signaling_url=os.getenv("SIGNALING_URL", ""),
        signaling_timeout_seconds=_get_float("SIGNALING_TIMEOUT_SECONDS", 10.0),

        # Accounts
        supabase_url=os.getenv("SUPABASE_URL", "").rstrip("/"),
        supabase_anon_key=os.getenv("SUPABASE_ANON_KEY", ""),
        email_redirect_url=os.getenv("EMAIL_REDIRECT_URL", ""),

        # Turn taking
        min_hold_ms=_get_int("MIN_HOLD_MS", 500),
        max_record_seconds=_get_int("MAX_RECORD_SECONDS", 10),
        countdown_poll_ms=_get_int("COUNTDOWN_POLL_MS", 200),

        # Pacing
        prompt_delay_ms=_get_int("PROMPT_DELAY_MS", 600),
        reveal_pause_ms=_get_int("REVEAL_PAUSE_MS", 400),
        welcome_delay_seconds=_get_float("WELCOME_DELAY_SECONDS", 6.0),

        # Validation
        min_password_length=_get_int("MIN_PASSWORD_LENGTH", 6),
    )

    return config


def init_config() -> Config:
    """
    Initialize and validate configuration.

    Call this at application startup to fail fast if config is invalid.
    """
    config = get_config()
    config.validate()
    config.log_config()
    return config
