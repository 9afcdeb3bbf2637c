from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from typing import Any, Mapping

MAIN_BRANCH_ID = "main"

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
ROLE_SYSTEM = "system"
MESSAGE_ROLES = (ROLE_USER, ROLE_ASSISTANT, ROLE_SYSTEM)

CONTENT_TEXT = "text"
CONTENT_MARKDOWN = "markdown"
CONTENT_CODE = "code"
CONTENT_IMAGE = "image"
CONTENT_TYPES = (CONTENT_TEXT, CONTENT_MARKDOWN, CONTENT_CODE, CONTENT_IMAGE)

STATUS_PENDING = "pending"
STATUS_STREAMING = "streaming"
STATUS_FINALIZED = "finalized"
STATUS_FAILED = "failed"
MESSAGE_STATUSES = (STATUS_PENDING, STATUS_STREAMING, STATUS_FINALIZED, STATUS_FAILED)


@dataclass(frozen=True)
class ModelParameters:
    temperature: float = 0.7
    max_tokens: int = 2048
    top_p: float = 1.0
    frequency_penalty: float = 0.0
    presence_penalty: float = 0.0

    def as_call_kwargs(self) -> dict[str, Any]:
        return {
            "temperature": float(self.temperature),
            "max_tokens": int(self.max_tokens),
            "top_p": float(self.top_p),
            "frequency_penalty": float(self.frequency_penalty),
            "presence_penalty": float(self.presence_penalty),
        }


@dataclass(frozen=True)
class ThreadMetadata:
    model: str
    parameters: ModelParameters = field(default_factory=ModelParameters)
    tags: tuple[str, ...] = ()
    favorite: bool = False
    archived: bool = False


@dataclass(frozen=True)
class Thread:
    id: str
    title: str
    metadata: ThreadMetadata
    created_at: int
    updated_at: int
    branch_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class Content:
    type: str = CONTENT_TEXT
    value: str = ""
    language: str | None = None
    mime_type: str | None = None


@dataclass(frozen=True)
class MessageMetadata:
    tokens: int = 0
    processing_time: float = 0.0
    error: str | None = None
    retries: int | None = None


@dataclass(frozen=True)
class Message:
    id: str
    thread_id: str
    branch_id: str
    role: str
    content: Content
    timestamp: int
    metadata: MessageMetadata = field(default_factory=MessageMetadata)
    parent_id: str | None = None
    status: str = STATUS_FINALIZED

    @property
    def text(self) -> str:
        return self.content.value

    def with_text(self, value: str, *, status: str | None = None) -> Message:
        return replace(
            self,
            content=replace(self.content, value=value),
            status=status or self.status,
        )


@dataclass(frozen=True)
class Branch:
    id: str
    thread_id: str
    name: str
    created_at: int
    parent_message_id: str | None = None

    @property
    def is_root(self) -> bool:
        return not self.parent_message_id


@dataclass
class BranchNode:
    branch: Branch
    children: list[BranchNode] = field(default_factory=list)
    depth: int = 0

    def walk(self):
        yield self
        for child in self.children:
            yield from child.walk()


def thread_to_dict(thread: Thread) -> dict[str, Any]:
    payload = asdict(thread)
    payload["branch_ids"] = list(thread.branch_ids)
    payload["metadata"]["tags"] = list(thread.metadata.tags)
    return payload


def thread_from_dict(payload: Mapping[str, Any]) -> Thread:
    raw_metadata = payload.get("metadata") or {}
    raw_parameters = raw_metadata.get("parameters") or {}
    defaults = ModelParameters()
    parameters = ModelParameters(
        temperature=_as_float(raw_parameters.get("temperature"), defaults.temperature),
        max_tokens=_as_int(raw_parameters.get("max_tokens"), defaults.max_tokens),
        top_p=_as_float(raw_parameters.get("top_p"), defaults.top_p),
        frequency_penalty=_as_float(
            raw_parameters.get("frequency_penalty"), defaults.frequency_penalty
        ),
        presence_penalty=_as_float(
            raw_parameters.get("presence_penalty"), defaults.presence_penalty
        ),
    )
    created_at = _as_int(payload.get("created_at"), 0)
    return Thread(
        id=str(payload["id"]),
        title=str(payload.get("title", "") or ""),
        metadata=ThreadMetadata(
            model=str(raw_metadata.get("model", "") or ""),
            parameters=parameters,
            tags=tuple(str(tag) for tag in raw_metadata.get("tags") or []),
            favorite=bool(raw_metadata.get("favorite", False)),
            archived=bool(raw_metadata.get("archived", False)),
        ),
        created_at=created_at,
        updated_at=_as_int(payload.get("updated_at"), created_at),
        branch_ids=tuple(str(item) for item in payload.get("branch_ids") or []),
    )


def message_to_dict(message: Message) -> dict[str, Any]:
    return asdict(message)


def message_from_dict(payload: Mapping[str, Any]) -> Message:
    raw_content = payload.get("content") or {}
    if isinstance(raw_content, str):
        raw_content = {"type": CONTENT_TEXT, "value": raw_content}
    raw_metadata = payload.get("metadata") or {}
    role = str(payload.get("role", "") or ROLE_USER).strip().lower()
    status = str(payload.get("status", "") or STATUS_FINALIZED)
    content_type = str(raw_content.get("type", "") or CONTENT_TEXT)
    return Message(
        id=str(payload["id"]),
        thread_id=str(payload.get("thread_id", "") or ""),
        branch_id=str(payload.get("branch_id", "") or MAIN_BRANCH_ID),
        role=role if role in MESSAGE_ROLES else ROLE_USER,
        content=Content(
            type=content_type if content_type in CONTENT_TYPES else CONTENT_TEXT,
            value=str(raw_content.get("value", "") or ""),
            language=raw_content.get("language"),
            mime_type=raw_content.get("mime_type"),
        ),
        timestamp=_as_int(payload.get("timestamp"), 0),
        metadata=MessageMetadata(
            tokens=_as_int(raw_metadata.get("tokens"), 0),
            processing_time=_as_float(raw_metadata.get("processing_time"), 0.0),
            error=raw_metadata.get("error"),
            retries=raw_metadata.get("retries"),
        ),
        parent_id=payload.get("parent_id"),
        status=status if status in MESSAGE_STATUSES else STATUS_FINALIZED,
    )


def branch_to_dict(branch: Branch) -> dict[str, Any]:
    return asdict(branch)


def branch_from_dict(payload: Mapping[str, Any]) -> Branch:
    return Branch(
        id=str(payload["id"]),
        thread_id=str(payload.get("thread_id", "") or ""),
        name=str(payload.get("name", "") or ""),
        created_at=_as_int(payload.get("created_at"), 0),
        parent_message_id=payload.get("parent_message_id") or None,
    )


def branch_node_to_dict(node: BranchNode) -> dict[str, Any]:
    return {
        "branch": branch_to_dict(node.branch),
        "depth": node.depth,
        "children": [branch_node_to_dict(child) for child in node.children],
    }


def _as_int(value: Any, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_float(value: Any, default: float) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default
