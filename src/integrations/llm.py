from __future__ import annotations

from functools import lru_cache
from threading import Lock
from typing import Any

from src.core.config import AppConfig
from src.models.langchain_adapter import LangChainModelAdapter

_LLM_BUILD_LOCK = Lock()


def get_chat_model(
    *,
    provider: str,
    model_name: str,
    api_key: str | None,
    base_url: str | None = None,
) -> Any:
    resolved_api_key = str(api_key or "").strip()
    if not resolved_api_key:
        env_name = "NVIDIA_API_KEY" if provider == "nvidia" else "OPENAI_API_KEY"
        raise ValueError(f"{env_name} is not set.")
    resolved_model = str(model_name or "").strip()
    if not resolved_model:
        raise ValueError("model_name must not be empty.")
    return _get_chat_model_cached(provider, resolved_model, resolved_api_key, base_url or "")


@lru_cache(maxsize=16)
def _get_chat_model_cached(provider: str, model_name: str, api_key: str, base_url: str) -> Any:
    with _LLM_BUILD_LOCK:
        if provider == "nvidia":
            from langchain_nvidia_ai_endpoints import ChatNVIDIA

            kwargs: dict[str, Any] = {"model": model_name, "api_key": api_key}
            if base_url:
                kwargs["base_url"] = base_url
            return ChatNVIDIA(**kwargs)

        from langchain_openai import ChatOpenAI

        return ChatOpenAI(
            model=model_name,
            api_key=api_key,
            base_url=base_url or None,
            streaming=True,
        )


def build_model_factory(config: AppConfig):
    """Return ``thread -> adapter``; each thread's model id picks the underlying chat model."""

    def _factory(thread) -> LangChainModelAdapter:
        model_name = thread.metadata.model or config.default_model
        llm = get_chat_model(
            provider=config.model_provider,
            model_name=model_name,
            api_key=config.api_key,
            base_url=config.base_url,
        )
        return LangChainModelAdapter(llm, model_name=model_name, provider=config.model_provider)

    return _factory
