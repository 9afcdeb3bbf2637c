from __future__ import annotations

import json
from unittest import TestCase

from fastapi.testclient import TestClient

from api.dependencies import get_conversation_store
from api.main import app
from src.chat.errors import GenerationError
from src.chat.store import ConversationStore
from src.models.base import BaseModelAdapter, ModelResponse
from src.storage import MemoryStorage


class _ScriptedModel(BaseModelAdapter):
    def __init__(self, fragments: list[str], *, fail: bool = False) -> None:
        self.fragments = fragments
        self.fail = fail

    def complete(self, context, parameters) -> ModelResponse:
        return ModelResponse(content="".join(self.fragments), token_count=1, elapsed_time=0.0)

    def stream(self, context, parameters):
        yield from self.fragments
        if self.fail:
            raise GenerationError("upstream timeout")


def _events(body: str) -> list[dict]:
    return [
        json.loads(line[len("data: "):])
        for line in body.splitlines()
        if line.startswith("data: ")
    ]


class ApiMessageTests(TestCase):
    def setUp(self) -> None:
        self.model = _ScriptedModel(["Hel", "lo", " world"])
        self.store = ConversationStore(MemoryStorage(), lambda thread: self.model)
        app.dependency_overrides[get_conversation_store] = lambda: self.store
        self.client = TestClient(app)
        self.thread_id = self.client.post("/api/threads", json={"title": "Chat"}).json()["thread"]["id"]

    def tearDown(self) -> None:
        app.dependency_overrides.clear()

    def test_send_message_returns_both_turns(self) -> None:
        response = self.client.post(
            f"/api/threads/{self.thread_id}/messages",
            json={"content": "Say hello"},
        )

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["user_message"]["content"]["value"], "Say hello")
        self.assertEqual(payload["assistant_message"]["content"]["value"], "Hello world")
        self.assertEqual(payload["assistant_message"]["status"], "finalized")
        self.assertEqual(payload["assistant_message"]["parent_id"], payload["user_message"]["id"])
        self.assertIsNone(payload["error"])

    def test_send_message_reports_generation_failure(self) -> None:
        self.model.fail = True

        payload = self.client.post(
            f"/api/threads/{self.thread_id}/messages",
            json={"content": "Say hello"},
        ).json()

        self.assertEqual(payload["assistant_message"]["status"], "failed")
        self.assertEqual(payload["error"], "upstream timeout")

    def test_send_to_unknown_thread_is_404(self) -> None:
        response = self.client.post("/api/threads/missing/messages", json={"content": "hi"})

        self.assertEqual(response.status_code, 404)

    def test_stream_emits_chunks_then_done(self) -> None:
        response = self.client.post(
            f"/api/threads/{self.thread_id}/messages/stream",
            json={"content": "Say hello"},
        )

        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.headers["content-type"].startswith("text/event-stream"))
        events = _events(response.text)
        chunks = [event["text"] for event in events if event["type"] == "chunk"]
        self.assertEqual(chunks, ["Hel", "lo", " world"])
        self.assertEqual(events[-1]["type"], "done")
        self.assertEqual(events[-1]["message"]["content"]["value"], "Hello world")
        self.assertEqual(events[-1]["message"]["status"], "finalized")
        self.assertFalse(self.store.is_loading)

    def test_stream_failure_emits_error_event(self) -> None:
        self.model.fail = True

        events = _events(
            self.client.post(
                f"/api/threads/{self.thread_id}/messages/stream",
                json={"content": "Say hello"},
            ).text
        )

        self.assertEqual(events[-1], {"type": "error", "message": "upstream timeout"})
        self.assertEqual(
            "".join(event["text"] for event in events if event["type"] == "chunk"),
            "Hello world",
        )

    def test_search_messages(self) -> None:
        self.client.post(f"/api/threads/{self.thread_id}/messages", json={"content": "Pack the tent"})

        results = self.client.get("/api/messages/search", params={"q": "TENT"}).json()

        self.assertEqual([item["content"]["value"] for item in results], ["Pack the tent"])
