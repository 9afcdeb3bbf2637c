from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any
import os

from dotenv import load_dotenv

from src.models.catalog import DEFAULT_MODEL_ID, get_model_option

DEFAULT_OPENAI_BASE_URL = "https://api.openai.com/v1"
MODEL_PROVIDERS = ("openai", "nvidia")
STORAGE_BACKENDS = ("json", "memory")


class ConfigValidationError(ValueError):
    """Raised when enabled features are missing required configuration."""


@dataclass(frozen=True)
class AppConfig:
    app_title: str
    model_provider: str
    default_model: str
    openai_api_key: str | None
    openai_base_url: str
    nvidia_api_key: str | None
    user_name: str
    data_dir: Path
    storage_backend: str
    log_level: str
    log_events: bool
    events_store_path: Path
    config_errors: tuple[str, ...]
    config_warnings: tuple[str, ...]

    @property
    def api_key(self) -> str | None:
        if self.model_provider == "nvidia":
            return self.nvidia_api_key
        return self.openai_api_key

    @property
    def base_url(self) -> str | None:
        if self.model_provider == "openai":
            return self.openai_base_url
        return None

    def masked_summary(self) -> dict[str, Any]:
        return {
            "app_title": self.app_title,
            "model_provider": self.model_provider,
            "default_model": self.default_model,
            "openai_api_key": "SET" if self.openai_api_key else "NOT_SET",
            "openai_base_url": self.openai_base_url,
            "nvidia_api_key": "SET" if self.nvidia_api_key else "NOT_SET",
            "user_name": self.user_name,
            "data_dir": str(self.data_dir),
            "storage_backend": self.storage_backend,
            "log_level": self.log_level,
            "log_events": self.log_events,
            "events_store_path": str(self.events_store_path),
            "config_errors": list(self.config_errors),
            "config_warnings": list(self.config_warnings),
        }

    def require_valid(self) -> None:
        if self.config_errors:
            raise ConfigValidationError("\n".join(self.config_errors))


def load_config() -> AppConfig:
    """Load environment variables and return app configuration."""
    load_dotenv(override=False)

    app_title = os.getenv("APP_TITLE", "BranchChat").strip() or "BranchChat"
    model_provider = os.getenv("MODEL_PROVIDER", "openai").strip().lower() or "openai"
    default_model = os.getenv("DEFAULT_MODEL", DEFAULT_MODEL_ID).strip() or DEFAULT_MODEL_ID
    openai_api_key = os.getenv("OPENAI_API_KEY", "").strip() or None
    openai_base_url = (
        os.getenv("OPENAI_BASE_URL", DEFAULT_OPENAI_BASE_URL).strip().rstrip("/")
        or DEFAULT_OPENAI_BASE_URL
    )
    nvidia_api_key = os.getenv("NVIDIA_API_KEY", "").strip() or None
    user_name = os.getenv("USER_NAME", "").strip()
    data_dir = Path(os.getenv("DATA_DIR", "./data")).expanduser().absolute()
    storage_backend = os.getenv("STORAGE_BACKEND", "json").strip().lower() or "json"
    log_level = os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"
    log_events = _parse_bool(os.getenv("LOG_EVENTS", "false"))
    events_store_path = Path(
        os.getenv("EVENTS_STORE_PATH", "./data/events/events.jsonl")
    ).expanduser().absolute()

    config_errors: list[str] = []
    config_warnings: list[str] = []
    if model_provider not in MODEL_PROVIDERS:
        config_warnings.append(
            f"Invalid MODEL_PROVIDER='{model_provider}'. Falling back to 'openai'."
        )
        model_provider = "openai"
    if storage_backend not in STORAGE_BACKENDS:
        config_warnings.append(
            f"Invalid STORAGE_BACKEND='{storage_backend}'. Falling back to 'json'."
        )
        storage_backend = "json"
    if model_provider == "openai" and not openai_api_key:
        config_warnings.append(
            "OPENAI_API_KEY is not set. Threads can be browsed, but response generation will fail."
        )
    if model_provider == "nvidia" and not nvidia_api_key:
        config_warnings.append(
            "NVIDIA_API_KEY is not set. Threads can be browsed, but response generation will fail."
        )
    if get_model_option(default_model) is None:
        config_warnings.append(
            f"DEFAULT_MODEL='{default_model}' is not in the model catalog; catalog defaults will not apply."
        )
    if not openai_base_url.startswith(("http://", "https://")):
        config_errors.append(f"OPENAI_BASE_URL must be an http(s) URL, got '{openai_base_url}'.")

    return AppConfig(
        app_title=app_title,
        model_provider=model_provider,
        default_model=default_model,
        openai_api_key=openai_api_key,
        openai_base_url=openai_base_url,
        nvidia_api_key=nvidia_api_key,
        user_name=user_name,
        data_dir=data_dir,
        storage_backend=storage_backend,
        log_level=log_level,
        log_events=log_events,
        events_store_path=events_store_path,
        config_errors=tuple(config_errors),
        config_warnings=tuple(config_warnings),
    )


def _parse_bool(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}
