from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
import math
from typing import Iterator, Sequence

from src.chat.types import Message, ModelParameters


@dataclass(frozen=True)
class ModelCapabilities:
    streaming: bool = True
    multimodal: bool = False
    tokenization: bool = True
    max_tokens: int = 4096
    embedding: bool = False


@dataclass(frozen=True)
class ModelResponse:
    content: str
    token_count: int
    elapsed_time: float


class BaseModelAdapter(ABC):
    """Model port: turns a message context into text, whole or as fragments.

    ``stream`` returns a finite, non-restartable iterator of text fragments.
    Fragments already yielded stand even if the stream later fails with
    ``GenerationError``. Closing the iterator must stop production.
    """

    id: str = "base"
    name: str = "Base"
    capabilities: ModelCapabilities = ModelCapabilities()

    @abstractmethod
    def complete(
        self,
        context: Sequence[Message],
        parameters: ModelParameters,
    ) -> ModelResponse:
        ...

    @abstractmethod
    def stream(
        self,
        context: Sequence[Message],
        parameters: ModelParameters,
    ) -> Iterator[str]:
        ...

    def estimate_tokens(self, text: str) -> int:
        return math.ceil(len(text or "") / 4)
