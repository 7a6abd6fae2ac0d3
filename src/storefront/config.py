"""
Configuration management for the Khodarji storefront.

Loads environment variables and provides a strongly-typed configuration object.
Validates required keys at startup.
"""

import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
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

    # Language ("ar" or "en")
    default_language: str = "ar"

    # Persistence backend (Supabase / PostgREST)
    supabase_url: str = ""
    supabase_anon_key: str = ""
    oauth_redirect_url: str = ""

    # Gemini
    # - chat model is reached through the OpenAI-compatible endpoint
    # - live model is reached through the bidirectional streaming endpoint
    gemini_api_key: str = ""
    gemini_chat_model: str = "gemini-2.5-flash"
    gemini_live_model: str = "gemini-2.5-flash-native-audio-preview-09-2025"
    gemini_live_voice: str = "Puck"

    # Pricing
    free_shipping_threshold: Decimal = Decimal("20")
    standard_delivery_fee: Decimal = Decimal("2")
    currency: str = "JD"

    # Store
    store_name: str = "Khodarji"
    whatsapp_number: str = "962790801695"
    admin_phone: str = "790000000"
    default_admin_pin: str = "123456"
    strict_terminal_statuses: bool = False
    session_dir: str = ".sessions"

    # Voice
    voice_input_sample_rate: int = 16000
    voice_output_sample_rate: int = 24000
    voice_input_block_size: int = 4096
    voice_notification_seconds: float = 4.0

    # Text assistant conversations kept in memory, least recently used evicted first
    assistant_max_sessions: int = 256

    @property
    def base_url(self) -> str:
        """Get the base HTTP URL."""
        return f"https://{self.public_host}"

    @property
    def assistant_enabled(self) -> bool:
        return bool(self.gemini_api_key)

    def validate(self) -> None:
        """Validate that all required configuration is present."""
        missing = []

        if not self.supabase_url:
            missing.append("SUPABASE_URL")
        if not self.supabase_anon_key:
            missing.append("SUPABASE_ANON_KEY")

        if self.default_language not in ("ar", "en"):
            raise ConfigError(
                f"Invalid DEFAULT_LANGUAGE '{self.default_language}'. Expected 'ar' or 'en'."
            )
        if self.free_shipping_threshold < 0 or self.standard_delivery_fee < 0:
            raise ConfigError("FREE_SHIPPING_THRESHOLD and STANDARD_DELIVERY_FEE must be non-negative.")

        if missing:
            raise ConfigError(
                f"Missing required environment variables: {', '.join(missing)}\n"
                "Please check your .env file."
            )

    def log_config(self) -> None:
        """Log configuration (without secrets)."""
        logger.info(
            "Configuration loaded",
            public_host=self.public_host,
            port=self.port,
            log_level=self.log_level,
            default_language=self.default_language,
            supabase_url=self.supabase_url,
            supabase_key_set=bool(self.supabase_anon_key),
            gemini_key_set=bool(self.gemini_api_key),
            gemini_chat_model=self.gemini_chat_model,
            gemini_live_model=self.gemini_live_model,
            free_shipping_threshold=str(self.free_shipping_threshold),
            standard_delivery_fee=str(self.standard_delivery_fee),
            currency=self.currency,
            strict_terminal_statuses=self.strict_terminal_statuses,
        )


def _get_bool(key: str, default: bool = False) -> bool:
    """Get a boolean from environment variable."""
    value = os.getenv(key, str(default)).lower()
    return value in ("true", "1", "yes", "on")


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


def _get_decimal(key: str, default: str) -> Decimal:
    """Get a Decimal from environment variable."""
    try:
        return Decimal(os.getenv(key, default).strip())
    except InvalidOperation:
        return Decimal(default)


@lru_cache(maxsize=1)
def get_config() -> Config:
    """
    Get the application configuration.

    Uses lru_cache to ensure we only load config once.
    """
    default_language_raw = os.getenv("DEFAULT_LANGUAGE", "ar").strip().lower()
    default_language = "en" if default_language_raw.startswith("en") else "ar"

    config = Config(
        # Server
        public_host=os.getenv("PUBLIC_HOST", ""),
        port=_get_int("PORT", 7860),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),

        default_language=default_language,

        # Supabase
        supabase_url=os.getenv("SUPABASE_URL", "").rstrip("/"),
        supabase_anon_key=os.getenv("SUPABASE_ANON_KEY", ""),
        oauth_redirect_url=os.getenv("OAUTH_REDIRECT_URL", ""),

        # Gemini
        gemini_api_key=os.getenv("GEMINI_API_KEY", os.getenv("API_KEY", "")),
        gemini_chat_model=os.getenv("GEMINI_CHAT_MODEL", "gemini-2.5-flash"),
        gemini_live_model=os.getenv(
            "GEMINI_LIVE_MODEL", "gemini-2.5-flash-native-audio-preview-09-2025"
        ),
        gemini_live_voice=os.getenv("GEMINI_LIVE_VOICE", "Puck"),

        # Pricing
        free_shipping_threshold=_get_decimal("FREE_SHIPPING_THRESHOLD", "20"),
        standard_delivery_fee=_get_decimal("STANDARD_DELIVERY_FEE", "2"),
        currency=os.getenv("CURRENCY", "JD"),

        # Store
        store_name=os.getenv("STORE_NAME", "Khodarji"),
        whatsapp_number=os.getenv("WHATSAPP_NUMBER", "962790801695"),
        admin_phone=os.getenv("ADMIN_PHONE", "790000000"),
        default_admin_pin=os.getenv("DEFAULT_ADMIN_PIN", "123456"),
        strict_terminal_statuses=_get_bool("STRICT_TERMINAL_STATUSES", False),
        session_dir=os.getenv("SESSION_DIR", ".sessions"),

        # Voice
        voice_input_sample_rate=_get_int("VOICE_INPUT_SAMPLE_RATE", 16000),
        voice_output_sample_rate=_get_int("VOICE_OUTPUT_SAMPLE_RATE", 24000),
        voice_input_block_size=_get_int("VOICE_INPUT_BLOCK_SIZE", 4096),
        voice_notification_seconds=_get_float("VOICE_NOTIFICATION_SECONDS", 4.0),

        assistant_max_sessions=_get_int("ASSISTANT_MAX_SESSIONS", 256),
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
