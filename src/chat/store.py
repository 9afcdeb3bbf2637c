from __future__ import annotations

from dataclasses import dataclass, field, replace
import logging
from pathlib import Path
from threading import Event, RLock
import time
from typing import Any, Callable, Iterable, Iterator, Sequence
from uuid import uuid4

from src.chat.errors import (
    BranchNotFoundError,
    MessageNotFoundError,
    NoActiveThreadError,
    ParentMessageNotFoundError,
    ThreadNotFoundError,
)
from src.chat.tree import build_branch_tree
from src.chat.types import (
    MAIN_BRANCH_ID,
    ROLE_ASSISTANT,
    ROLE_USER,
    STATUS_FAILED,
    STATUS_FINALIZED,
    STATUS_PENDING,
    STATUS_STREAMING,
    Branch,
    BranchNode,
    Content,
    Message,
    MessageMetadata,
    ModelParameters,
    Thread,
    ThreadMetadata,
)
from src.logging_utils import log_event
from src.models.base import BaseModelAdapter
from src.models.catalog import DEFAULT_MODEL_ID, default_parameters_for
from src.storage.base import BaseStorage, NotFoundError

LOGGER = logging.getLogger("chat.store")

ModelFactory = Callable[[Thread], BaseModelAdapter]


@dataclass
class GenerationHandle:
    """Bookkeeping for one in-flight assistant response."""

    id: str
    thread_id: str
    branch_id: str
    started_at: float
    message: Message | None = None
    model: BaseModelAdapter | None = None
    discarded: bool = False
    _cancel_event: Event = field(default_factory=Event, repr=False)

    def cancel(self) -> None:
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()


class ConversationStore:
    """In-memory view of threads, branches and messages kept in step with a storage backend.

    Records are immutable snapshots; every change replaces the mapping entry,
    so observers can detect updates by identity. Map mutations happen under a
    re-entrant lock, which is never held while waiting on the model.
    """

    def __init__(
        self,
        storage: BaseStorage,
        model_factory: ModelFactory,
        *,
        default_model: str = DEFAULT_MODEL_ID,
        clock: Callable[[], float] | None = None,
        events_store_path: str | Path | None = None,
    ) -> None:
        self.storage = storage
        self.model_factory = model_factory
        self.default_model = default_model
        self._clock = clock or time.time
        self._events_store_path = events_store_path
        self._lock = RLock()
        self._last_timestamp = 0
        self._generations: dict[str, GenerationHandle] = {}

        self.active_thread_id: str | None = None
        self.active_branch_id: str | None = None
        self.threads: dict[str, Thread] = {}
        self.messages: dict[str, Message] = {}
        self.branches: dict[str, Branch] = {}
        self.error: BaseException | None = None

        self.storage.init()

    @property
    def is_loading(self) -> bool:
        return bool(self._generations)

    @property
    def current_thread(self) -> Thread | None:
        if self.active_thread_id is None:
            return None
        return self.threads.get(self.active_thread_id)

    @property
    def current_branch(self) -> Branch | None:
        if self.active_branch_id is None:
            return None
        return self.branches.get(self.active_branch_id)

    @property
    def branch_tree(self) -> list[BranchNode]:
        if self.current_thread is None:
            return []
        return self.build_branch_tree(self.thread_branches(self.current_thread.id))

    @property
    def active_messages(self) -> list[Message]:
        if self.active_thread_id is None:
            return []
        return self.branch_messages(self.active_thread_id, self.active_branch_id or MAIN_BRANCH_ID)

    @property
    def active_generations(self) -> list[GenerationHandle]:
        with self._lock:
            return list(self._generations.values())

    # Threads

    def create_thread(self, title: str) -> Thread:
        now = self._now()
        thread = Thread(
            id=uuid4().hex,
            title=str(title or ""),
            metadata=ThreadMetadata(model=self.default_model, parameters=ModelParameters()),
            created_at=now,
            updated_at=now,
        )
        self.storage.threads.create(thread)
        with self._lock:
            self.threads[thread.id] = thread
            self.active_thread_id = thread.id
            self.active_branch_id = None
        self._event("thread.created", thread_id=thread.id, model=thread.metadata.model)
        return thread

    def switch_thread(self, thread: Thread) -> None:
        self.clear_state()
        with self._lock:
            self.threads[thread.id] = thread
            self.active_thread_id = thread.id
        self.load_thread_data(thread.id)

    def update_thread(self, thread: Thread) -> Thread:
        existing = self.threads.get(thread.id)
        if existing is not None and not thread.branch_ids:
            thread = replace(thread, branch_ids=existing.branch_ids)
        self.storage.threads.update(thread)
        with self._lock:
            self.threads[thread.id] = thread
        if thread.id == self.active_thread_id:
            self.load_thread_data(thread.id)
        return thread

    def update_thread_model(
        self,
        model_id: str,
        parameters: ModelParameters | None = None,
        *,
        thread_id: str | None = None,
    ) -> Thread:
        thread = self.threads[self._resolve_thread_id(thread_id)]
        updated = replace(
            thread,
            metadata=replace(
                thread.metadata,
                model=model_id,
                parameters=parameters or default_parameters_for(model_id),
            ),
            updated_at=self._now(),
        )
        self.storage.threads.update(updated)
        with self._lock:
            self.threads[updated.id] = updated
        return updated

    def delete_thread(self, thread_id: str) -> None:
        with self._lock:
            for handle in self._generations.values():
                if handle.thread_id == thread_id:
                    handle.discarded = True
                    handle.cancel()
        self.storage.delete_thread_cascade(thread_id)
        with self._lock:
            for message_id in [
                key for key, message in self.messages.items() if message.thread_id == thread_id
            ]:
                del self.messages[message_id]
            for branch_id in [
                key for key, branch in self.branches.items() if branch.thread_id == thread_id
            ]:
                del self.branches[branch_id]
            self.threads.pop(thread_id, None)
            was_active = thread_id == self.active_thread_id
        if was_active:
            self.clear_state()
        self._event("thread.deleted", thread_id=thread_id)

    def load_thread_data(self, thread_id: str) -> None:
        stored_messages = self.storage.get_messages(thread_id)
        stored_branches = self.storage.get_branches(thread_id)
        with self._lock:
            self._merge_stored_messages(stored_messages)
            for branch in stored_branches:
                self.branches[branch.id] = branch

    def load_threads(self) -> list[Thread]:
        threads = self.storage.get_all_threads()
        with self._lock:
            for thread in threads:
                self.threads[thread.id] = thread
        return threads

    def get_thread(self, thread_id: str) -> Thread:
        return self.threads[self._resolve_thread_id(thread_id)]

    def search_threads(self, query: str) -> list[Thread]:
        return self.storage.search_threads(query)

    def search_messages(self, query: str) -> list[Message]:
        return self.storage.search_messages(query)

    def clear_state(self) -> None:
        with self._lock:
            self.messages.clear()
            self.branches.clear()
            self.active_thread_id = None
            self.active_branch_id = None
            self.error = None

    # Messages

    def send_message(
        self,
        content: str,
        *,
        thread_id: str | None = None,
        branch_id: str | None = None,
    ) -> Message | None:
        """Persist a user turn and generate the reply; returns the final assistant snapshot.

        Generation failures are recorded in ``error`` rather than raised.
        """
        user_message = self.add_user_message(content, thread_id=thread_id, branch_id=branch_id)
        return self.generate_response(user_message, self.get_message_context(user_message.id))

    def stream_message(
        self,
        content: str,
        *,
        thread_id: str | None = None,
        branch_id: str | None = None,
    ) -> Iterator[Message]:
        user_message = self.add_user_message(content, thread_id=thread_id, branch_id=branch_id)
        return self.iter_response(user_message, self.get_message_context(user_message.id))

    def generate_response(
        self,
        user_message: Message,
        context_messages: Sequence[Message],
    ) -> Message | None:
        final: Message | None = None
        for snapshot in self.iter_response(user_message, context_messages):
            final = snapshot
        return final

    def iter_response(
        self,
        user_message: Message,
        context_messages: Sequence[Message],
    ) -> Iterator[Message]:
        """Yield each assistant snapshot: the empty placeholder, one per fragment, then the final one.

        Closing the iterator early finalizes and persists the partial answer.
        """
        handle = self._begin_generation(user_message)
        try:
            yield from self._run_generation(handle, user_message, list(context_messages))
        except GeneratorExit:
            handle.cancel()
            if handle.message is not None and handle.message.status in (
                STATUS_PENDING,
                STATUS_STREAMING,
            ):
                try:
                    self._settle(handle)
                except Exception as exc:
                    self._fail(handle, exc)
            raise
        finally:
            self._end_generation(handle)

    def cancel_generation(self, generation_id: str) -> bool:
        with self._lock:
            handle = self._generations.get(generation_id)
        if handle is None:
            return False
        handle.cancel()
        return True

    def get_message_context(self, message_id: str) -> list[Message]:
        with self._lock:
            message = self.messages.get(message_id)
            if message is None:
                raise MessageNotFoundError(message_id)
            context = [
                candidate
                for candidate in self.messages.values()
                if candidate.thread_id == message.thread_id
                and candidate.branch_id == message.branch_id
                and candidate.timestamp <= message.timestamp
            ]
        return sorted(context, key=lambda item: item.timestamp)

    def branch_messages(self, thread_id: str, branch_id: str = MAIN_BRANCH_ID) -> list[Message]:
        with self._lock:
            selected = [
                message
                for message in self.messages.values()
                if message.thread_id == thread_id and message.branch_id == branch_id
            ]
        return sorted(selected, key=lambda item: item.timestamp)

    # Branches

    def create_branch(
        self,
        parent_message_id: str,
        name: str,
        *,
        thread_id: str | None = None,
    ) -> Branch:
        owner_id = self._resolve_thread_id(thread_id)
        parent_message = self.messages.get(parent_message_id)
        if parent_message is None or parent_message.thread_id != owner_id:
            raise ParentMessageNotFoundError(parent_message_id)
        context = self.get_message_context(parent_message_id)

        branch = Branch(
            id=uuid4().hex,
            thread_id=owner_id,
            name=str(name or ""),
            created_at=self._now(),
            parent_message_id=parent_message_id,
        )
        id_map = {message.id: uuid4().hex for message in context}
        copies = [
            replace(
                message,
                id=id_map[message.id],
                branch_id=branch.id,
                parent_id=id_map.get(message.parent_id, message.parent_id)
                if message.parent_id
                else None,
                # A copy of an answer still being generated never receives more fragments.
                status=STATUS_FINALIZED
                if message.status in (STATUS_PENDING, STATUS_STREAMING)
                else message.status,
            )
            for message in context
        ]
        thread = self.threads[owner_id]
        updated_thread = replace(
            thread,
            branch_ids=thread.branch_ids + (branch.id,),
            updated_at=self._now(),
        )

        self.storage.branches.create(branch)
        written: list[str] = []
        try:
            for copy in copies:
                self.storage.messages.create(copy)
                written.append(copy.id)
            self.storage.threads.update(updated_thread)
        except Exception:
            self._rollback_branch(branch, written)
            raise

        with self._lock:
            for copy in copies:
                self.messages[copy.id] = copy
            self.branches[branch.id] = branch
            self.threads[owner_id] = updated_thread
            self.active_thread_id = owner_id
            self.active_branch_id = branch.id
        self._event(
            "branch.created",
            thread_id=owner_id,
            branch_id=branch.id,
            parent_message_id=parent_message_id,
            copied_messages=len(copies),
        )
        return branch

    def switch_branch(self, branch_id: str) -> None:
        if branch_id == MAIN_BRANCH_ID:
            if self.active_thread_id is None:
                raise BranchNotFoundError(branch_id)
            thread_id = self.active_thread_id
        else:
            branch = self.branches.get(branch_id)
            if branch is None:
                raise BranchNotFoundError(branch_id)
            if self.active_thread_id is not None and branch.thread_id != self.active_thread_id:
                raise BranchNotFoundError(branch_id)
            thread_id = branch.thread_id
        stored = self.storage.get_messages(thread_id, branch_id)
        with self._lock:
            self.active_thread_id = thread_id
            self.active_branch_id = branch_id
            self._merge_stored_messages(stored)

    def thread_branches(self, thread_id: str) -> list[Branch]:
        with self._lock:
            return [branch for branch in self.branches.values() if branch.thread_id == thread_id]

    def build_branch_tree(self, branches: Iterable[Branch]) -> list[BranchNode]:
        with self._lock:
            messages = dict(self.messages)
        return build_branch_tree(branches, messages)

    # Internals

    def _now(self) -> int:
        with self._lock:
            stamp = int(self._clock() * 1000)
            if stamp <= self._last_timestamp:
                stamp = self._last_timestamp + 1
            self._last_timestamp = stamp
            return stamp

    def _resolve_thread_id(self, thread_id: str | None) -> str:
        if thread_id is None:
            if self.active_thread_id is None:
                raise NoActiveThreadError()
            return self.active_thread_id
        if thread_id not in self.threads:
            try:
                thread = self.storage.threads.get(thread_id)
            except NotFoundError as exc:
                raise ThreadNotFoundError(thread_id) from exc
            with self._lock:
                self.threads[thread.id] = thread
        return thread_id

    def _resolve_branch_id(self, thread_id: str, branch_id: str | None) -> str:
        if branch_id is None and thread_id == self.active_thread_id:
            branch_id = self.active_branch_id
        if not branch_id or branch_id == MAIN_BRANCH_ID:
            return MAIN_BRANCH_ID
        branch = self.branches.get(branch_id)
        if branch is None:
            try:
                branch = self.storage.branches.get(branch_id)
            except NotFoundError as exc:
                raise BranchNotFoundError(branch_id) from exc
        if branch.thread_id != thread_id:
            raise BranchNotFoundError(branch_id)
        return branch.id

    def add_user_message(
        self,
        content: str,
        *,
        thread_id: str | None,
        branch_id: str | None,
    ) -> Message:
        owner_id = self._resolve_thread_id(thread_id)
        target_branch = self._resolve_branch_id(owner_id, branch_id)
        previous = self.branch_messages(owner_id, target_branch)
        message = Message(
            id=uuid4().hex,
            thread_id=owner_id,
            branch_id=target_branch,
            role=ROLE_USER,
            content=Content(value=str(content or "")),
            timestamp=self._now(),
            metadata=MessageMetadata(),
            parent_id=previous[-1].id if previous else None,
        )
        self.storage.messages.create(message)
        with self._lock:
            self.messages[message.id] = message
        self._touch_thread(owner_id, message.timestamp)
        return message

    def _merge_stored_messages(self, stored: Iterable[Message]) -> None:
        # Stored rows of in-flight answers lag behind their published snapshots.
        streaming_ids = {
            handle.message.id
            for handle in self._generations.values()
            if handle.message is not None
        }
        for message in stored:
            if message.id in streaming_ids and message.id in self.messages:
                continue
            self.messages[message.id] = message

    def _touch_thread(self, thread_id: str, stamp: int) -> None:
        thread = self.threads.get(thread_id)
        if thread is None:
            return
        touched = replace(thread, updated_at=max(thread.updated_at, stamp))
        self.storage.threads.update(touched)
        with self._lock:
            self.threads[thread_id] = touched

    def _thread_for(self, thread_id: str) -> Thread:
        thread = self.threads.get(thread_id)
        if thread is not None:
            return thread
        try:
            return self.storage.threads.get(thread_id)
        except NotFoundError as exc:
            raise ThreadNotFoundError(thread_id) from exc

    def _begin_generation(self, user_message: Message) -> GenerationHandle:
        handle = GenerationHandle(
            id=uuid4().hex,
            thread_id=user_message.thread_id,
            branch_id=user_message.branch_id,
            started_at=self._clock(),
        )
        with self._lock:
            self._generations[handle.id] = handle
        return handle

    def _end_generation(self, handle: GenerationHandle) -> None:
        with self._lock:
            self._generations.pop(handle.id, None)

    def _run_generation(
        self,
        handle: GenerationHandle,
        user_message: Message,
        context: list[Message],
    ) -> Iterator[Message]:
        try:
            thread = self._thread_for(user_message.thread_id)
            placeholder = Message(
                id=uuid4().hex,
                thread_id=user_message.thread_id,
                branch_id=user_message.branch_id,
                role=ROLE_ASSISTANT,
                content=Content(value=""),
                timestamp=self._now(),
                metadata=MessageMetadata(),
                parent_id=user_message.id,
                status=STATUS_PENDING,
            )
            self.storage.messages.create(placeholder)
            yield self._publish(handle, placeholder)

            handle.model = self.model_factory(thread)
            fragments = handle.model.stream(context, thread.metadata.parameters)
            try:
                for fragment in fragments:
                    if handle.cancelled:
                        break
                    current = handle.message
                    yield self._publish(
                        handle,
                        current.with_text(current.content.value + str(fragment), status=STATUS_STREAMING),
                    )
            finally:
                close = getattr(fragments, "close", None)
                if callable(close):
                    close()
            final = self._settle(handle)
        except Exception as exc:
            failed = self._fail(handle, exc)
            if failed is not None:
                yield failed
            return
        yield final

    def _publish(self, handle: GenerationHandle, message: Message) -> Message:
        handle.message = message
        with self._lock:
            # Snapshots of a deleted thread must not reappear in memory.
            if not handle.discarded and message.thread_id in self.threads:
                self.messages[message.id] = message
        return message

    def _settle(self, handle: GenerationHandle) -> Message:
        current = handle.message
        text = current.content.value
        tokens = handle.model.estimate_tokens(text) if handle.model is not None else 0
        final = replace(
            current,
            status=STATUS_FINALIZED,
            metadata=replace(
                current.metadata,
                tokens=tokens,
                processing_time=self._elapsed_ms(handle),
            ),
        )
        if handle.discarded:
            self.storage.messages.delete(final.id)
        else:
            self.storage.messages.update(final)
        self._publish(handle, final)
        self._event(
            "generation.cancelled" if handle.cancelled else "generation.complete",
            generation_id=handle.id,
            thread_id=handle.thread_id,
            branch_id=handle.branch_id,
            message_id=final.id,
            tokens=tokens,
            processing_ms=final.metadata.processing_time,
        )
        return final

    def _fail(self, handle: GenerationHandle, exc: BaseException) -> Message | None:
        self.error = exc
        LOGGER.error("Generation %s failed: %s", handle.id, exc, exc_info=exc)
        self._event(
            "generation.failed",
            generation_id=handle.id,
            thread_id=handle.thread_id,
            branch_id=handle.branch_id,
            error=str(exc) or exc.__class__.__name__,
        )
        current = handle.message
        if current is None:
            return None
        failed = replace(
            current,
            status=STATUS_FAILED,
            metadata=replace(
                current.metadata,
                processing_time=self._elapsed_ms(handle),
                error=str(exc) or exc.__class__.__name__,
            ),
        )
        self._publish(handle, failed)
        try:
            if handle.discarded:
                self.storage.messages.delete(failed.id)
            else:
                self.storage.messages.update(failed)
        except Exception:
            LOGGER.exception("Could not persist failed assistant message %s", failed.id)
        return failed

    def _rollback_branch(self, branch: Branch, written_message_ids: list[str]) -> None:
        try:
            self.storage.messages.delete_many(written_message_ids)
            self.storage.branches.delete(branch.id)
        except Exception:
            LOGGER.exception("Rollback of branch %s left partial rows behind", branch.id)

    def _elapsed_ms(self, handle: GenerationHandle) -> float:
        return max(0.0, (self._clock() - handle.started_at) * 1000.0)

    def _event(self, name: str, **fields: Any) -> None:
        log_event(name, logger_name="chat.events", store_path=self._events_store_path, **fields)
