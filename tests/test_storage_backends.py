from __future__ import annotations

import json
from pathlib import Path
from tempfile import TemporaryDirectory
from threading import Thread as Worker
from unittest import TestCase
from unittest.mock import patch

from src.chat.types import Branch, Content, Message, Thread, ThreadMetadata
from src.storage import (
    DuplicateKeyError,
    JsonFileStorage,
    MemoryStorage,
    NotFoundError,
    StorageUnavailableError,
    build_storage,
)


def _thread(thread_id: str, title: str = "Thread", updated_at: int = 1) -> Thread:
    return Thread(
        id=thread_id,
        title=title,
        metadata=ThreadMetadata(model="gpt-4", tags=("work",)),
        created_at=1,
        updated_at=updated_at,
    )


def _message(message_id: str, thread_id: str, text: str, branch_id: str = "main") -> Message:
    return Message(
        id=message_id,
        thread_id=thread_id,
        branch_id=branch_id,
        role="assistant",
        content=Content(value=text),
        timestamp=5,
        parent_id=None,
    )


class _FailingSetupStorage(MemoryStorage):
    def __init__(self) -> None:
        super().__init__()
        self.setup_calls = 0

    def _setup(self) -> None:
        self.setup_calls += 1
        raise OSError("read-only filesystem")


class MemoryStorageTests(TestCase):
    def setUp(self) -> None:
        self.storage = MemoryStorage()
        self.storage.init()

    def test_operations_before_init_raise_unavailable(self) -> None:
        storage = MemoryStorage()

        with self.assertRaises(StorageUnavailableError):
            storage.threads.list()
        with self.assertRaises(StorageUnavailableError):
            storage.messages.create(_message("m1", "t1", "hi"))
        with self.assertRaises(StorageUnavailableError):
            storage.get_messages("t1")

    def test_init_is_idempotent(self) -> None:
        self.storage.threads.create(_thread("t1"))

        self.assertTrue(self.storage.init())
        self.assertTrue(self.storage.ready)
        self.assertEqual(len(self.storage.threads.list()), 1)

    def test_init_failure_is_cached(self) -> None:
        storage = _FailingSetupStorage()

        with self.assertRaises(StorageUnavailableError):
            storage.init()
        with self.assertRaises(StorageUnavailableError):
            storage.init()

        self.assertEqual(storage.setup_calls, 1)
        self.assertFalse(storage.ready)

    def test_duplicate_create_raises(self) -> None:
        self.storage.threads.create(_thread("t1"))

        with self.assertRaises(DuplicateKeyError) as raised:
            self.storage.threads.create(_thread("t1"))
        self.assertEqual(raised.exception.record_id, "t1")

    def test_get_missing_raises_not_found(self) -> None:
        with self.assertRaises(NotFoundError):
            self.storage.branches.get("missing")
        with self.assertRaises(LookupError):
            self.storage.messages.get("missing")

    def test_update_replaces_and_delete_is_quiet_for_missing_ids(self) -> None:
        self.storage.threads.create(_thread("t1", title="Old"))
        self.storage.threads.update(_thread("t1", title="New"))
        self.storage.threads.delete("missing")

        self.assertEqual(self.storage.threads.get("t1").title, "New")

    def test_failed_persist_leaves_collection_unchanged(self) -> None:
        with patch.object(self.storage, "_persist", side_effect=OSError("disk full")):
            with self.assertRaises(OSError):
                self.storage.threads.create(_thread("t1"))

        self.assertEqual(self.storage.threads.list(), [])

    def test_queries_filter_and_order(self) -> None:
        self.storage.threads.create(_thread("t1", title="Weekend Trip", updated_at=1))
        self.storage.threads.create(_thread("t2", title="Budget", updated_at=3))
        self.storage.messages.create(_message("m1", "t1", "Pack the TENT"))
        self.storage.messages.create(_message("m2", "t1", "Fork copy", branch_id="b1"))
        self.storage.messages.create(_message("m3", "t2", "numbers"))

        self.assertEqual([thread.id for thread in self.storage.get_all_threads()], ["t2", "t1"])
        self.assertEqual([thread.id for thread in self.storage.search_threads("TRIP")], ["t1"])
        self.assertEqual([message.id for message in self.storage.search_messages("tent")], ["m1"])
        self.assertEqual({message.id for message in self.storage.get_messages("t1")}, {"m1", "m2"})
        self.assertEqual([message.id for message in self.storage.get_messages("t1", "b1")], ["m2"])

    def test_delete_thread_cascade_removes_children(self) -> None:
        self.storage.threads.create(_thread("t1"))
        self.storage.threads.create(_thread("t2"))
        self.storage.messages.create(_message("m1", "t1", "gone"))
        self.storage.messages.create(_message("m2", "t2", "kept"))
        self.storage.branches.create(Branch(id="b1", thread_id="t1", name="alt", created_at=2))

        self.storage.delete_thread_cascade("t1")

        self.assertEqual([thread.id for thread in self.storage.threads.list()], ["t2"])
        self.assertEqual([message.id for message in self.storage.messages.list()], ["m2"])
        self.assertEqual(self.storage.branches.list(), [])


class JsonFileStorageTests(TestCase):
    def setUp(self) -> None:
        self.temp_dir = TemporaryDirectory()
        self.root = Path(self.temp_dir.name) / "store"

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def test_records_survive_reload(self) -> None:
        storage = JsonFileStorage(self.root)
        storage.init()
        thread = _thread("t1", title="Persisted")
        message = _message("m1", "t1", "hello")
        branch = Branch(id="b1", thread_id="t1", name="alt", created_at=3, parent_message_id="m1")
        storage.threads.create(thread)
        storage.messages.create(message)
        storage.branches.create(branch)

        reloaded = JsonFileStorage(self.root)
        reloaded.init()

        self.assertEqual(reloaded.threads.get("t1"), thread)
        self.assertEqual(reloaded.messages.get("m1"), message)
        self.assertEqual(reloaded.branches.get("b1"), branch)
        payload = json.loads((self.root / "threads.json").read_text(encoding="utf-8"))
        self.assertEqual(payload["threads"][0]["metadata"]["tags"], ["work"])
        self.assertFalse((self.root / "threads.json.tmp").exists())

    def test_corrupt_and_malformed_files_load_as_empty(self) -> None:
        self.root.mkdir(parents=True)
        (self.root / "threads.json").write_text("{not json", encoding="utf-8")
        (self.root / "messages.json").write_text(
            json.dumps({"messages": [{"no_id": True}, "junk"]}),
            encoding="utf-8",
        )

        storage = JsonFileStorage(self.root)
        storage.init()

        self.assertEqual(storage.threads.list(), [])
        self.assertEqual(storage.messages.list(), [])

    def test_unknown_content_type_loads_as_text(self) -> None:
        self.root.mkdir(parents=True)
        (self.root / "messages.json").write_text(
            json.dumps(
                {
                    "messages": [
                        {"id": "m1", "thread_id": "t1", "content": {"type": "video", "value": "clip"}},
                        {"id": "m2", "thread_id": "t1", "content": {"type": "code", "value": "x = 1"}},
                    ]
                }
            ),
            encoding="utf-8",
        )

        storage = JsonFileStorage(self.root)
        storage.init()

        self.assertEqual(storage.messages.get("m1").content.type, "text")
        self.assertEqual(storage.messages.get("m1").content.value, "clip")
        self.assertEqual(storage.messages.get("m2").content.type, "code")

    def test_concurrent_init_runs_setup_once(self) -> None:
        storage = JsonFileStorage(self.root)
        original_setup = storage._setup
        calls: list[int] = []

        def _counting_setup() -> None:
            calls.append(1)
            original_setup()

        with patch.object(storage, "_setup", side_effect=_counting_setup):
            workers = [Worker(target=storage.init) for _ in range(8)]
            for worker in workers:
                worker.start()
            for worker in workers:
                worker.join()

        self.assertEqual(len(calls), 1)
        self.assertTrue(storage.ready)

    def test_build_storage_selects_backend(self) -> None:
        self.assertIsInstance(build_storage("memory", self.temp_dir.name), MemoryStorage)
        storage = build_storage("json", self.temp_dir.name)
        self.assertIsInstance(storage, JsonFileStorage)
        self.assertEqual(storage.root, (Path(self.temp_dir.name) / "store").absolute())
