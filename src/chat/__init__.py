from __future__ import annotations

from typing import Any

from src.chat.errors import (
    BranchNotFoundError,
    ConversationError,
    GenerationError,
    MessageNotFoundError,
    NoActiveThreadError,
    ParentMessageNotFoundError,
    ThreadNotFoundError,
)
from src.chat.tree import build_branch_tree
from src.chat.types import MAIN_BRANCH_ID, Branch, BranchNode, Message, Thread

__all__ = [
    "MAIN_BRANCH_ID",
    "Branch",
    "BranchNode",
    "BranchNotFoundError",
    "ConversationError",
    "ConversationStore",
    "GenerationError",
    "Message",
    "MessageNotFoundError",
    "NoActiveThreadError",
    "ParentMessageNotFoundError",
    "Thread",
    "ThreadNotFoundError",
    "build_branch_tree",
]


def __getattr__(name: str) -> Any:
    if name == "ConversationStore":
        from src.chat.store import ConversationStore

        return ConversationStore
    raise AttributeError(name)
