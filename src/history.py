from __future__ import annotations

from typing import Iterable

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from src.chat.types import ROLE_ASSISTANT, ROLE_SYSTEM, Message


def to_langchain_messages(messages: Iterable[Message]) -> list[BaseMessage]:
    history: list[BaseMessage] = []
    for message in messages:
        content = message.content.value
        if not content:
            continue
        if message.role == ROLE_ASSISTANT:
            history.append(AIMessage(content=content))
        elif message.role == ROLE_SYSTEM:
            history.append(SystemMessage(content=content))
        else:
            history.append(HumanMessage(content=content))
    return history


def history_excerpt(messages: Iterable[Message], *, limit: int = 6, width: int = 160) -> str:
    lines = []
    for message in list(messages)[-max(1, int(limit)):]:
        text = " ".join(message.content.value.split())
        if not text:
            continue
        if len(text) > width:
            text = text[: width - 3].rstrip() + "..."
        lines.append(f"{message.role}: {text}")
    return "\n".join(lines)
