"""Shared pytest fixtures for Lar Digital tests."""
import sys
sys.dont_write_bytecode = True

import pytest  # noqa: E402


@pytest.fixture(autouse=True)
def _household_timezone(monkeypatch):
    """Pin the household timezone so local dates and HH:MM are stable."""
    monkeypatch.setenv("APP_TIMEZONE", "America/Sao_Paulo")
    yield


@pytest.fixture
def clean_whatsapp_env(monkeypatch):
    """Clear every pipeline variable so load_settings() sees defaults."""
    for name in (
        "WHATSAPP_ENABLED",
        "WHATSAPP_GROUP_ID",
        "EVOLUTION_BASE_URL",
        "EVOLUTION_INSTANCE",
        "EVOLUTION_API_KEY",
        "EVOLUTION_WEBHOOK_SECRET",
        "ANTHROPIC_API_KEY",
        "CLASSIFIER_MODEL",
        "CLASSIFIER_TIMEOUT_SECONDS",
        "ELEVENLABS_API_KEY",
        "SPEECH_MAX_PER_HOUR",
        "VISION_MAX_PER_HOUR",
        "MEDIA_DIR",
        "HEALTH_CHECK_INTERVAL",
        "SMTP_HOST",
        "SMTP_PORT",
        "SMTP_USER",
        "SMTP_PASS",
        "ALERT_EMAIL_TO",
    ):
        monkeypatch.delenv(name, raising=False)
    yield monkeypatch
