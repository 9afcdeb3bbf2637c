from __future__ import annotations

from unittest import TestCase
from unittest.mock import Mock, patch

from langchain_core.language_models.fake_chat_models import FakeListChatModel
from langchain_core.messages import AIMessage, AIMessageChunk, HumanMessage, SystemMessage

from src.chat.errors import GenerationError
from src.chat.types import Content, Message, ModelParameters
from src.history import history_excerpt, to_langchain_messages
from src.models.base import BaseModelAdapter
from src.models.langchain_adapter import LangChainModelAdapter


def _message(role: str, text: str, timestamp: int = 1) -> Message:
    return Message(
        id=f"{role}-{timestamp}",
        thread_id="t1",
        branch_id="main",
        role=role,
        content=Content(value=text),
        timestamp=timestamp,
    )


class LangChainAdapterTests(TestCase):
    def test_stream_yields_fragments_from_chat_model(self) -> None:
        adapter = LangChainModelAdapter(
            FakeListChatModel(responses=["Hello there"]),
            model_name="gpt-4",
            provider="openai",
        )

        fragments = list(adapter.stream([_message("user", "Hi")], ModelParameters()))

        self.assertGreater(len(fragments), 1)
        self.assertEqual("".join(fragments), "Hello there")
        self.assertEqual(adapter.capabilities.max_tokens, 8192)

    def test_complete_returns_text_and_token_estimate(self) -> None:
        adapter = LangChainModelAdapter(FakeListChatModel(responses=["Hello"]), model_name="gpt-4")

        response = adapter.complete([_message("user", "Hi")], ModelParameters())

        self.assertEqual(response.content, "Hello")
        self.assertEqual(response.token_count, 2)
        self.assertGreaterEqual(response.elapsed_time, 0.0)

    def test_parameters_are_bound_per_call(self) -> None:
        llm = Mock()
        llm.bind.return_value.invoke.return_value = AIMessage(content="ok")
        adapter = LangChainModelAdapter(llm, model_name="custom-model")
        parameters = ModelParameters(temperature=0.2, max_tokens=64)

        adapter.complete(
            [_message("system", "Be brief", 1), _message("user", "Hi", 2)],
            parameters,
        )

        llm.bind.assert_called_once_with(**parameters.as_call_kwargs())
        sent = llm.bind.return_value.invoke.call_args.args[0]
        self.assertIsInstance(sent[0], SystemMessage)
        self.assertIsInstance(sent[1], HumanMessage)
        self.assertEqual(adapter.capabilities.max_tokens, 4096)

    def test_complete_wraps_provider_failure(self) -> None:
        llm = Mock()
        failure = RuntimeError("connection reset")
        llm.bind.return_value.invoke.side_effect = failure
        adapter = LangChainModelAdapter(llm)

        with self.assertRaises(GenerationError) as raised:
            adapter.complete([_message("user", "Hi")], ModelParameters())

        self.assertIs(raised.exception.cause, failure)
        self.assertIs(raised.exception.__cause__, failure)

    def test_stream_failure_keeps_earlier_fragments(self) -> None:
        def _chunks(_messages):
            yield AIMessageChunk(content="par")
            raise RuntimeError("stream dropped")

        llm = Mock()
        llm.bind.return_value.stream.side_effect = _chunks
        adapter = LangChainModelAdapter(llm)

        received: list[str] = []
        with self.assertRaises(GenerationError):
            for fragment in adapter.stream([_message("user", "Hi")], ModelParameters()):
                received.append(fragment)

        self.assertEqual(received, ["par"])

    def test_stream_runs_inside_a_span(self) -> None:
        adapter = LangChainModelAdapter(FakeListChatModel(responses=["ok"]), model_name="gpt-4")

        with patch("src.models.langchain_adapter.start_span") as mocked_span:
            list(adapter.stream([_message("user", "Hi")], ModelParameters()))

        self.assertEqual(mocked_span.call_args.args[0], "llm.stream")

    def test_estimate_tokens_rounds_up(self) -> None:
        self.assertEqual(BaseModelAdapter.estimate_tokens(None, ""), 0)
        self.assertEqual(BaseModelAdapter.estimate_tokens(None, "abcd"), 1)
        self.assertEqual(BaseModelAdapter.estimate_tokens(None, "abcde"), 2)


class HistoryConversionTests(TestCase):
    def test_roles_map_to_langchain_messages_and_empty_turns_are_skipped(self) -> None:
        converted = to_langchain_messages(
            [
                _message("system", "Be brief", 1),
                _message("user", "Hi", 2),
                _message("assistant", "", 3),
                _message("assistant", "Hello", 4),
            ]
        )

        self.assertEqual(
            [(type(item).__name__, item.content) for item in converted],
            [("SystemMessage", "Be brief"), ("HumanMessage", "Hi"), ("AIMessage", "Hello")],
        )

    def test_history_excerpt_truncates_long_turns(self) -> None:
        excerpt = history_excerpt(
            [_message("user", "word " * 100, 1), _message("assistant", "Short", 2)],
            width=20,
        )

        first, second = excerpt.splitlines()
        self.assertTrue(first.startswith("user: "))
        self.assertTrue(first.endswith("..."))
        self.assertEqual(second, "assistant: Short")
