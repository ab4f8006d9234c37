"""Centralized configuration for draftsmith.

Loads environment variables from a .env file and exposes them as a frozen
``Settings`` object. Settings are passed explicitly into the generation
pipeline and provider factories; no credentials live in source code.
"""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables from .env file (if present).
# Does not override already-set environment variables.
load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    """Typed configuration consumed by the pipeline and storage.

    Attributes:
        text_provider: ``"gemini"`` (HTTP) or ``"ollama"`` (langchain-ollama).
        gemini_*: HTTP text-generation endpoint, key and model.
        ollama_*: local model used when ``text_provider == "ollama"``.
        image_*: primary image provider (may add a watermark).
        image_fallback_*: clean image provider used first when
            ``no_watermark`` is active.
        search_*: external search endpoint; failures degrade to mock text.
        *_timeout: per-call-kind bounds in seconds.
        data_dir: directory holding the JSON storage documents.
    """

    # ---------------------------------------------------------------------
    # Text generation
    # ---------------------------------------------------------------------
    text_provider: str = "gemini"
    gemini_api_key: str = ""
    gemini_endpoint: str = (
        "https://generativelanguage.googleapis.com/v1beta/models/"
        "gemini-2.0-flash:generateContent"
    )
    gemini_model: str = "gemini-2.0-flash"
    ollama_model: str = "llama3.1:8b"
    ollama_base_url: str = "http://localhost:11434"

    # ---------------------------------------------------------------------
    # Image generation (two interchangeable providers)
    # ---------------------------------------------------------------------
    image_api_key: str = ""
    image_endpoint: str = ""
    image_model: str = ""
    image_fallback_api_key: str = ""
    image_fallback_endpoint: str = ""
    image_fallback_model: str = ""
    image_size: str = "1024x1024"
    no_watermark: bool = False

    # ---------------------------------------------------------------------
    # External search
    # ---------------------------------------------------------------------
    search_api_key: str = ""
    search_endpoint: str = ""
    search_model: str = "sonar"

    # ---------------------------------------------------------------------
    # Timeouts (seconds)
    # ---------------------------------------------------------------------
    text_timeout: float = 30.0
    search_timeout: float = 10.0
    image_timeout: float = 60.0

    # ---------------------------------------------------------------------
    # Storage / logging
    # ---------------------------------------------------------------------
    data_dir: Path = Path("./outputs/data")
    log_level: str = "INFO"
    log_format: str = "console"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables, falling back to defaults."""
        defaults = cls()
        return cls(
            text_provider=os.getenv("TEXT_PROVIDER", defaults.text_provider).lower(),
            gemini_api_key=os.getenv("GEMINI_API_KEY", ""),
            gemini_endpoint=os.getenv("GEMINI_ENDPOINT", defaults.gemini_endpoint),
            gemini_model=os.getenv("GEMINI_MODEL", defaults.gemini_model),
            ollama_model=os.getenv("OLLAMA_MODEL", defaults.ollama_model),
            ollama_base_url=os.getenv("OLLAMA_BASE_URL", defaults.ollama_base_url),
            image_api_key=os.getenv("IMAGE_API_KEY", ""),
            image_endpoint=os.getenv("IMAGE_ENDPOINT", ""),
            image_model=os.getenv("IMAGE_MODEL", ""),
            image_fallback_api_key=os.getenv("IMAGE_FALLBACK_API_KEY", ""),
            image_fallback_endpoint=os.getenv("IMAGE_FALLBACK_ENDPOINT", ""),
            image_fallback_model=os.getenv("IMAGE_FALLBACK_MODEL", ""),
            image_size=os.getenv("IMAGE_SIZE", defaults.image_size),
            no_watermark=_env_bool("NO_WATERMARK", defaults.no_watermark),
            search_api_key=os.getenv("SEARCH_API_KEY", ""),
            search_endpoint=os.getenv("SEARCH_ENDPOINT", ""),
            search_model=os.getenv("SEARCH_MODEL", defaults.search_model),
            text_timeout=float(os.getenv("TEXT_TIMEOUT", str(defaults.text_timeout))),
            search_timeout=float(os.getenv("SEARCH_TIMEOUT", str(defaults.search_timeout))),
            image_timeout=float(os.getenv("IMAGE_TIMEOUT", str(defaults.image_timeout))),
            data_dir=Path(os.getenv("DATA_DIR", str(defaults.data_dir))),
            log_level=os.getenv("LOG_LEVEL", defaults.log_level).upper(),
            log_format=os.getenv("LOG_FORMAT", defaults.log_format).lower(),
        )
