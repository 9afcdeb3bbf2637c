from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from src.chat.types import ModelParameters


class ModelParametersModel(BaseModel):
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=2048, gt=0)
    top_p: float = Field(default=1.0, ge=0.0, le=1.0)
    frequency_penalty: float = Field(default=0.0, ge=-2.0, le=2.0)
    presence_penalty: float = Field(default=0.0, ge=-2.0, le=2.0)

    def to_parameters(self) -> ModelParameters:
        return ModelParameters(**self.model_dump())


class ThreadCreateRequest(BaseModel):
    title: str = "New chat"


class ThreadUpdateRequest(BaseModel):
    title: str | None = None
    tags: list[str] | None = None
    favorite: bool | None = None
    archived: bool | None = None


class ThreadModelRequest(BaseModel):
    model: str
    parameters: ModelParametersModel | None = None


class BranchCreateRequest(BaseModel):
    parent_message_id: str
    name: str = ""


class MessageCreateRequest(BaseModel):
    content: str
    branch_id: str | None = None


class ContentModel(BaseModel):
    type: str = "text"
    value: str = ""
    language: str | None = None
    mime_type: str | None = None


class MessageRecord(BaseModel):
    id: str
    thread_id: str
    branch_id: str
    parent_id: str | None = None
    role: str
    content: ContentModel
    timestamp: int
    status: str
    metadata: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="allow")


class BranchRecord(BaseModel):
    id: str
    thread_id: str
    name: str
    created_at: int
    parent_message_id: str | None = None

    model_config = ConfigDict(extra="allow")


class ThreadRecord(BaseModel):
    id: str
    title: str
    created_at: int
    updated_at: int
    branch_ids: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="allow")


class TurnResponse(BaseModel):
    user_message: MessageRecord
    assistant_message: MessageRecord | None = None
    error: str | None = None
