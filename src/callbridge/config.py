"""Startup configuration validation and typed settings.

validate_config() runs at import time of bot.py so that a missing credential
causes a clear startup failure rather than a silent mid-call crash.
Settings.from_env() collects the tunables every component is built from.
"""

import os
import sys
import logging
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

REQUIRED_VARS = [
    "TWILIO_ACCOUNT_SID",
    "TWILIO_AUTH_TOKEN",
    "TWILIO_PHONE_NUMBER",
    "ELEVENLABS_API_KEY",
    "ELEVENLABS_AGENT_ID",
]

OPTIONAL_VARS = [
    "PUBLIC_HOST",
    "MAKE_WEBHOOK_URL",
    "MAKE_VOICEMAIL_WEBHOOK_URL",
    "MAKE_CALLBACK_WEBHOOK_URL",
    "RETRY_WEBHOOK_URL",
    "LOG_LEVEL",
]


def validate_config() -> None:
    """Validate environment variables at startup.

    Exits the process with a clear error if any required variable is missing
    or empty.  Logs warnings for missing optional variables.
    """
    missing = [var for var in REQUIRED_VARS if not os.getenv(var)]

    if missing:
        print(
            f"\nFATAL: Missing required environment variables:\n"
            f"  {', '.join(missing)}\n"
            f"\nSet them in .env (local) or in the deployment secrets.\n",
            file=sys.stderr,
        )
        sys.exit(1)

    for var in OPTIONAL_VARS:
        if not os.getenv(var):
            logger.warning("Optional env var %s is not set", var)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    try:
        return int(raw) if raw else default
    except ValueError:
        logger.warning("Invalid integer for %s=%r, using %s", name, raw, default)
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "")
    try:
        return float(raw) if raw else default
    except ValueError:
        logger.warning("Invalid number for %s=%r, using %s", name, raw, default)
        return default


@dataclass
class IntentConfig:
    minimum_match_count: int = 1
    ambiguity_threshold: float = 0.2
    max_intents_to_track: int = 5


@dataclass
class QualityConfig:
    silence_threshold_s: float = 5.0
    extended_silence_threshold_s: float = 12.0
    # Frame-size proxy: payloads shorter than silence_level are silence,
    # shorter than low_audio_threshold are low-signal.
    silence_level: int = 10
    low_audio_threshold: int = 100
    min_silence_runs: int = 2
    persistent_low_audio_runs: int = 3
    issue_cooldown_s: float = 30.0
    check_interval_s: float = 10.0
    max_log_entries: int = 100


@dataclass
class RelayConfig:
    # AI audio chunks below this many decoded bytes are treated as hold markers
    min_ai_audio_bytes: int = 1000
    stream_path: str = "/outbound-media-stream"


@dataclass
class RetryConfig:
    max_retries: int = 2
    retry_delay_s: float = 60.0
    webhook_url: str = ""
    timeout_s: float = 10.0


@dataclass
class WebhookConfig:
    url: str = ""
    voicemail_url: str = ""
    callback_url: str = ""
    retry_attempts: int = 3
    retry_delay_s: float = 1.0
    timeout_s: float = 10.0
    enabled: bool = True

    def url_for(self, *, is_voicemail: bool = False, callback_requested: bool = False) -> str:
        """Pick the delivery URL for a call's context."""
        if is_voicemail:
            return self.voicemail_url or self.url
        if callback_requested:
            return self.callback_url or self.url
        return self.url


@dataclass
class Settings:
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_phone_number: str = ""
    elevenlabs_api_key: str = ""
    elevenlabs_agent_id: str = ""
    public_host: str = "localhost:8765"

    intent: IntentConfig = field(default_factory=IntentConfig)
    quality: QualityConfig = field(default_factory=QualityConfig)
    relay: RelayConfig = field(default_factory=RelayConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    webhook: WebhookConfig = field(default_factory=WebhookConfig)

    @classmethod
    def from_env(cls) -> "Settings":
        make_url = os.getenv("MAKE_WEBHOOK_URL", "")
        return cls(
            twilio_account_sid=os.getenv("TWILIO_ACCOUNT_SID", ""),
            twilio_auth_token=os.getenv("TWILIO_AUTH_TOKEN", ""),
            twilio_phone_number=os.getenv("TWILIO_PHONE_NUMBER", ""),
            elevenlabs_api_key=os.getenv("ELEVENLABS_API_KEY", ""),
            elevenlabs_agent_id=os.getenv("ELEVENLABS_AGENT_ID", ""),
            public_host=os.getenv("PUBLIC_HOST", "localhost:8765"),
            retry=RetryConfig(
                max_retries=_env_int("MAX_RETRIES", 2),
                retry_delay_s=_env_float("RETRY_DELAY_SECONDS", 60.0),
                webhook_url=os.getenv("RETRY_WEBHOOK_URL", "") or make_url,
            ),
            webhook=WebhookConfig(
                url=make_url,
                voicemail_url=os.getenv("MAKE_VOICEMAIL_WEBHOOK_URL", ""),
                callback_url=os.getenv("MAKE_CALLBACK_WEBHOOK_URL", ""),
                retry_attempts=_env_int("WEBHOOK_RETRY_ATTEMPTS", 3),
                retry_delay_s=_env_float("WEBHOOK_RETRY_DELAY_SECONDS", 1.0),
                timeout_s=_env_float("WEBHOOK_TIMEOUT_SECONDS", 10.0),
                enabled=os.getenv("WEBHOOK_ENABLED", "true").lower() != "false",
            ),
        )
