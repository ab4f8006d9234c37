"""Unit tests for environment-driven settings (draftsmith.app.config)."""

from pathlib import Path

from draftsmith.app.config import Settings


def test_from_env_reads_overrides(monkeypatch) -> None:
    monkeypatch.setenv("TEXT_PROVIDER", "OLLAMA")
    monkeypatch.setenv("NO_WATERMARK", "yes")
    monkeypatch.setenv("TEXT_TIMEOUT", "12.5")
    monkeypatch.setenv("DATA_DIR", "/tmp/draftsmith-data")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    settings = Settings.from_env()

    assert settings.text_provider == "ollama"
    assert settings.no_watermark is True
    assert settings.text_timeout == 12.5
    assert settings.data_dir == Path("/tmp/draftsmith-data")
    assert settings.log_level == "DEBUG"


def test_defaults_without_environment(monkeypatch) -> None:
    for name in ("TEXT_PROVIDER", "NO_WATERMARK", "SEARCH_TIMEOUT", "IMAGE_TIMEOUT"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings.from_env()

    assert settings.text_provider == "gemini"
    assert settings.no_watermark is False
    assert settings.search_timeout == 10.0
    assert settings.image_timeout == 60.0
