from __future__ import annotations

from abc import ABC, abstractmethod
import logging
from threading import Lock, RLock
from typing import Any, Callable, Generic, Mapping, TypeVar

from src.chat.types import (
    Branch,
    Message,
    Thread,
    branch_from_dict,
    branch_to_dict,
    message_from_dict,
    message_to_dict,
    thread_from_dict,
    thread_to_dict,
)

THREADS = "threads"
MESSAGES = "messages"
BRANCHES = "branches"
COLLECTION_NAMES = (THREADS, MESSAGES, BRANCHES)

LOGGER = logging.getLogger("storage")

RecordT = TypeVar("RecordT", Thread, Message, Branch)


class StorageError(Exception):
    """Base class for storage port failures."""


class StorageUnavailableError(StorageError):
    def __init__(self, message: str = "Storage is not initialized") -> None:
        super().__init__(message)


class DuplicateKeyError(StorageError):
    def __init__(self, collection: str, record_id: str) -> None:
        super().__init__(f"Duplicate key in {collection}: {record_id}")
        self.collection = collection
        self.record_id = record_id


class NotFoundError(StorageError, LookupError):
    def __init__(self, collection: str, record_id: str) -> None:
        super().__init__(f"Not found in {collection}: {record_id}")
        self.collection = collection
        self.record_id = record_id


class Collection(Generic[RecordT]):
    """Keyed record set; every write goes through the owning storage's persist hook."""

    def __init__(
        self,
        storage: BaseStorage,
        name: str,
        *,
        to_dict: Callable[[RecordT], dict[str, Any]],
        from_dict: Callable[[Mapping[str, Any]], RecordT],
    ) -> None:
        self.name = name
        self.to_dict = to_dict
        self.from_dict = from_dict
        self._storage = storage
        self._records: dict[str, RecordT] = {}

    def create(self, record: RecordT) -> None:
        with self._storage._lock:
            self._storage._require_ready()
            if record.id in self._records:
                raise DuplicateKeyError(self.name, record.id)
            self._commit({**self._records, record.id: record})

    def get(self, record_id: str) -> RecordT:
        with self._storage._lock:
            self._storage._require_ready()
            record = self._records.get(record_id)
            if record is None:
                raise NotFoundError(self.name, record_id)
            return record

    def update(self, record: RecordT) -> None:
        with self._storage._lock:
            self._storage._require_ready()
            self._commit({**self._records, record.id: record})

    def delete(self, record_id: str) -> None:
        with self._storage._lock:
            self._storage._require_ready()
            if record_id not in self._records:
                return
            remaining = dict(self._records)
            remaining.pop(record_id, None)
            self._commit(remaining)

    def delete_many(self, record_ids: list[str]) -> None:
        with self._storage._lock:
            self._storage._require_ready()
            doomed = {record_id for record_id in record_ids if record_id in self._records}
            if not doomed:
                return
            self._commit(
                {key: value for key, value in self._records.items() if key not in doomed}
            )

    def list(self) -> list[RecordT]:
        with self._storage._lock:
            self._storage._require_ready()
            return list(self._records.values())

    def _commit(self, records: dict[str, RecordT]) -> None:
        # Persist before swapping so a failed write leaves the collection untouched.
        self._storage._persist(self, records)
        self._records = records

    def _load(self, records: list[RecordT]) -> None:
        self._records = {record.id: record for record in records}


class BaseStorage(ABC):
    def __init__(self) -> None:
        self._lock = RLock()
        self._init_lock = Lock()
        self._ready = False
        self._init_error: BaseException | None = None
        self.threads: Collection[Thread] = Collection(
            self, THREADS, to_dict=thread_to_dict, from_dict=thread_from_dict
        )
        self.messages: Collection[Message] = Collection(
            self, MESSAGES, to_dict=message_to_dict, from_dict=message_from_dict
        )
        self.branches: Collection[Branch] = Collection(
            self, BRANCHES, to_dict=branch_to_dict, from_dict=branch_from_dict
        )

    @property
    def ready(self) -> bool:
        return self._ready

    def init(self) -> bool:
        """Prepare the backend once; later and concurrent callers get the same outcome."""
        with self._init_lock:
            if self._init_error is not None:
                raise StorageUnavailableError(
                    f"Storage initialization failed: {self._init_error}"
                ) from self._init_error
            if not self._ready:
                try:
                    with self._lock:
                        self._setup()
                except Exception as exc:
                    self._init_error = exc
                    LOGGER.exception("Storage initialization failed")
                    raise StorageUnavailableError(
                        f"Storage initialization failed: {exc}"
                    ) from exc
                self._ready = True
        return self._ready

    def collections(self) -> tuple[Collection, ...]:
        return (self.threads, self.messages, self.branches)

    def get_messages(self, thread_id: str, branch_id: str | None = None) -> list[Message]:
        return [
            message
            for message in self.messages.list()
            if message.thread_id == thread_id
            and (not branch_id or message.branch_id == branch_id)
        ]

    def get_branches(self, thread_id: str) -> list[Branch]:
        return [branch for branch in self.branches.list() if branch.thread_id == thread_id]

    def get_all_threads(self) -> list[Thread]:
        return sorted(self.threads.list(), key=lambda thread: thread.updated_at, reverse=True)

    def search_threads(self, query: str) -> list[Thread]:
        needle = str(query or "").lower()
        return [thread for thread in self.threads.list() if needle in thread.title.lower()]

    def search_messages(self, query: str) -> list[Message]:
        needle = str(query or "").lower()
        return [
            message
            for message in self.messages.list()
            if needle in message.content.value.lower()
        ]

    def delete_thread_cascade(self, thread_id: str) -> None:
        self.messages.delete_many(
            [message.id for message in self.get_messages(thread_id)]
        )
        self.branches.delete_many(
            [branch.id for branch in self.get_branches(thread_id)]
        )
        self.threads.delete(thread_id)

    def _require_ready(self) -> None:
        if not self._ready:
            raise StorageUnavailableError()

    @abstractmethod
    def _setup(self) -> None:
        """Create or load the backing store."""

    @abstractmethod
    def _persist(self, collection: Collection, records: Mapping[str, Any]) -> None:
        """Durably write the full record set of one collection."""


class MemoryStorage(BaseStorage):
    """Process-local storage; nothing survives the instance."""

    def _setup(self) -> None:
        for collection in self.collections():
            collection._load([])

    def _persist(self, collection: Collection, records: Mapping[str, Any]) -> None:
        return None
