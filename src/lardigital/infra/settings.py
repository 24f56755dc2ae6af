"""Process configuration loaded from environment variables.

Each integration reads its own frozen dataclass so tests can build one
directly without touching the environment.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "")
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class EvolutionConfig:
    """Evolution API gateway configuration.

    Attributes:
        base_url: Gateway base URL (e.g., http://localhost:8080).
        instance: Instance name holding the paired WhatsApp session.
        api_key: Instance API token.
        webhook_secret: Shared secret expected on inbound webhooks.
    """

    base_url: str = ""
    instance: str = ""
    api_key: str = ""
    webhook_secret: str = ""

    @property
    def configured(self) -> bool:
        return bool(self.base_url and self.instance and self.api_key)


@dataclass(frozen=True)
class ClassifierConfig:
    api_key: str = ""
    model: str = "claude-sonnet-4-6"
    timeout_seconds: float = 20.0
    max_tokens: int = 1024


@dataclass(frozen=True)
class SpeechConfig:
    api_key: str = ""
    model_id: str = "scribe_v1"
    language_code: str = "por"
    max_per_hour: int = 20


@dataclass(frozen=True)
class SmtpConfig:
    host: str = "smtp.gmail.com"
    port: int = 587
    user: str = ""
    password: str = ""
    alert_to: str = ""

    @property
    def configured(self) -> bool:
        return bool(self.user and self.password and self.alert_to)


@dataclass(frozen=True)
class Settings:
    """Top-level settings for the WhatsApp pipeline.

    Attributes:
        whatsapp_enabled: Feature flag; when off the supervisor never starts
            and the health check stays quiet.
        group_id: Household group chat that receives broadcast messages.
        vision_max_per_hour: Image classifications allowed per hour.
        media_dir: Directory where downloaded media is stored.
        health_check_interval: Seconds between session health checks.
    """

    whatsapp_enabled: bool = False
    group_id: str = ""
    vision_max_per_hour: int = 30
    media_dir: str = "uploads/whatsapp"
    health_check_interval: int = 300
    evolution: EvolutionConfig = field(default_factory=EvolutionConfig)
    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)
    speech: SpeechConfig = field(default_factory=SpeechConfig)
    smtp: SmtpConfig = field(default_factory=SmtpConfig)


def load_settings() -> Settings:
    """Build Settings from the environment."""
    return Settings(
        whatsapp_enabled=_env_bool("WHATSAPP_ENABLED"),
        group_id=os.environ.get("WHATSAPP_GROUP_ID", ""),
        vision_max_per_hour=_env_int("VISION_MAX_PER_HOUR", 30),
        media_dir=os.environ.get("MEDIA_DIR", "uploads/whatsapp"),
        health_check_interval=_env_int("HEALTH_CHECK_INTERVAL", 300),
        evolution=EvolutionConfig(
            base_url=os.environ.get("EVOLUTION_BASE_URL", "").rstrip("/"),
            instance=os.environ.get("EVOLUTION_INSTANCE", ""),
            api_key=os.environ.get("EVOLUTION_API_KEY", ""),
            webhook_secret=os.environ.get("EVOLUTION_WEBHOOK_SECRET", ""),
        ),
        classifier=ClassifierConfig(
            api_key=os.environ.get("ANTHROPIC_API_KEY", ""),
            model=os.environ.get("CLASSIFIER_MODEL", "claude-sonnet-4-6"),
            timeout_seconds=float(_env_int("CLASSIFIER_TIMEOUT_SECONDS", 20)),
        ),
        speech=SpeechConfig(
            api_key=os.environ.get("ELEVENLABS_API_KEY", ""),
            max_per_hour=_env_int("SPEECH_MAX_PER_HOUR", 20),
        ),
        smtp=SmtpConfig(
            host=os.environ.get("SMTP_HOST", "smtp.gmail.com"),
            port=_env_int("SMTP_PORT", 587),
            user=os.environ.get("SMTP_USER", ""),
            password=os.environ.get("SMTP_PASS", ""),
            alert_to=os.environ.get("ALERT_EMAIL_TO", ""),
        ),
    )
