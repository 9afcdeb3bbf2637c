from __future__ import annotations

import logging
from time import perf_counter
from typing import Any, Iterator, Mapping, Sequence

from src.chat.errors import GenerationError
from src.chat.types import Message, ModelParameters
from src.history import to_langchain_messages
from src.logging_utils import has_usage_metadata, log_llm_usage
from src.models.base import BaseModelAdapter, ModelCapabilities, ModelResponse
from src.models.catalog import get_model_option
from src.observability.tracing import start_span

LOGGER = logging.getLogger("models.langchain")


class LangChainModelAdapter(BaseModelAdapter):
    """Model port backed by any LangChain chat model (``invoke`` / ``stream``)."""

    id = "langchain"
    name = "LangChain"

    def __init__(self, llm: Any, *, model_name: str = "", provider: str = "") -> None:
        self.llm = llm
        self.model_name = model_name
        self.provider = provider
        option = get_model_option(model_name)
        self.capabilities = ModelCapabilities(
            streaming=True,
            multimodal=True,
            tokenization=True,
            max_tokens=option.max_tokens if option else 4096,
            embedding=False,
        )
        LOGGER.debug("Initialized adapter provider=%s model=%s", provider, model_name)

    def complete(
        self,
        context: Sequence[Message],
        parameters: ModelParameters,
    ) -> ModelResponse:
        start = perf_counter()
        try:
            with start_span("llm.complete", attributes=self._span_attributes()):
                response = self._bound(parameters).invoke(to_langchain_messages(context))
        except Exception as exc:
            LOGGER.debug("Failed to generate response", exc_info=True)
            raise GenerationError("Failed to generate response", exc) from exc

        text = _extract_text(response)
        usage_stats = log_llm_usage("thread.complete", response)
        elapsed_ms = (perf_counter() - start) * 1000.0
        LOGGER.debug("Generated response in %.1fms", elapsed_ms)
        return ModelResponse(
            content=text,
            token_count=int(usage_stats.get("completion_tokens") or self.estimate_tokens(text)),
            elapsed_time=elapsed_ms,
        )

    def stream(
        self,
        context: Sequence[Message],
        parameters: ModelParameters,
    ) -> Iterator[str]:
        messages = to_langchain_messages(context)
        usage_candidate: Any | None = None
        LOGGER.debug("Starting stream model=%s", self.model_name)
        try:
            with start_span("llm.stream", attributes=self._span_attributes()):
                chunks = self._bound(parameters).stream(messages)
                try:
                    for chunk in chunks:
                        if has_usage_metadata(chunk):
                            usage_candidate = chunk
                        text = _extract_text(chunk)
                        if text:
                            yield text
                finally:
                    close = getattr(chunks, "close", None)
                    if callable(close):
                        close()
        except Exception as exc:
            LOGGER.debug("Stream failed", exc_info=True)
            raise GenerationError("Failed to stream response", exc) from exc
        log_llm_usage("thread.stream", usage_candidate)
        LOGGER.debug("Stream completed")

    def _bound(self, parameters: ModelParameters) -> Any:
        return self.llm.bind(**parameters.as_call_kwargs())

    def _span_attributes(self) -> dict[str, Any]:
        return {"provider": self.provider or None, "model": self.model_name or None}


def _extract_text(payload: Any) -> str:
    content = getattr(payload, "content", None)
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, str):
                parts.append(item)
            elif isinstance(item, Mapping):
                text = item.get("text")
                if text:
                    parts.append(str(text))
        return "".join(parts)
    if payload is None:
        return ""
    return str(payload)
