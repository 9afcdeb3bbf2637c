from __future__ import annotations


class ConversationError(Exception):
    """Base class for conversation store failures."""


class NoActiveThreadError(ConversationError, RuntimeError):
    def __init__(self, message: str = "No active thread") -> None:
        super().__init__(message)


class ThreadNotFoundError(ConversationError, LookupError):
    def __init__(self, thread_id: str) -> None:
        super().__init__(f"Thread not found: {thread_id}")
        self.thread_id = thread_id


class BranchNotFoundError(ConversationError, LookupError):
    def __init__(self, branch_id: str) -> None:
        super().__init__(f"Branch not found: {branch_id}")
        self.branch_id = branch_id


class MessageNotFoundError(ConversationError, LookupError):
    def __init__(self, message_id: str) -> None:
        super().__init__(f"Message not found: {message_id}")
        self.message_id = message_id


class ParentMessageNotFoundError(ConversationError, LookupError):
    def __init__(self, message_id: str) -> None:
        super().__init__(f"Parent message not found: {message_id}")
        self.message_id = message_id


class GenerationError(ConversationError, RuntimeError):
    """Raised by model adapters; wraps the transport or provider failure."""

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause
