from __future__ import annotations

from dataclasses import dataclass

from src.chat.types import ModelParameters

DEFAULT_MODEL_ID = "gpt-3.5-turbo"


@dataclass(frozen=True)
class ModelOption:
    id: str
    name: str
    description: str
    max_tokens: int
    default_params: ModelParameters


AVAILABLE_MODELS: tuple[ModelOption, ...] = (
    ModelOption(
        id="gpt-4",
        name="GPT-4",
        description="Most capable model, best for complex tasks",
        max_tokens=8192,
        default_params=ModelParameters(max_tokens=2048),
    ),
    ModelOption(
        id="gpt-3.5-turbo",
        name="GPT-3.5 Turbo",
        description="Fast and efficient for most tasks",
        max_tokens=4096,
        default_params=ModelParameters(max_tokens=2048),
    ),
    ModelOption(
        id="gpt-4-turbo",
        name="GPT-4 Turbo",
        description="Latest model with current knowledge",
        max_tokens=128000,
        default_params=ModelParameters(max_tokens=4096),
    ),
)


def get_model_option(model_id: str) -> ModelOption | None:
    normalized = str(model_id or "").strip()
    for option in AVAILABLE_MODELS:
        if option.id == normalized:
            return option
    return None


def default_parameters_for(model_id: str) -> ModelParameters:
    option = get_model_option(model_id)
    if option is None:
        return ModelParameters()
    return option.default_params
