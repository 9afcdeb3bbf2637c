from __future__ import annotations

from typing import Any, Iterator
import json
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from api.dependencies import get_conversation_store
from api.models import MessageCreateRequest, TurnResponse
from src.chat.store import ConversationStore
from src.chat.types import STATUS_FAILED, message_to_dict

LOGGER = logging.getLogger("api.messages")

router = APIRouter(prefix="/api", tags=["messages"])


@router.post("/threads/{thread_id}/messages", response_model=TurnResponse)
def send_message(
    thread_id: str,
    request: MessageCreateRequest,
    store: ConversationStore = Depends(get_conversation_store),
) -> TurnResponse:
    store.load_thread_data(store.get_thread(thread_id).id)
    user_message = store.add_user_message(
        request.content,
        thread_id=thread_id,
        branch_id=request.branch_id,
    )
    assistant = store.generate_response(user_message, store.get_message_context(user_message.id))
    error = None
    if assistant is None or assistant.status == STATUS_FAILED:
        error = (assistant.metadata.error if assistant is not None else None) or str(store.error or "")
    return TurnResponse(
        user_message=message_to_dict(user_message),
        assistant_message=message_to_dict(assistant) if assistant is not None else None,
        error=error or None,
    )


@router.post("/threads/{thread_id}/messages/stream")
def stream_message(
    thread_id: str,
    request: MessageCreateRequest,
    store: ConversationStore = Depends(get_conversation_store),
) -> StreamingResponse:
    store.load_thread_data(store.get_thread(thread_id).id)
    snapshots = store.stream_message(
        request.content,
        thread_id=thread_id,
        branch_id=request.branch_id,
    )

    def event_stream() -> Iterator[str]:
        sent = ""
        last = None
        try:
            for snapshot in snapshots:
                last = snapshot
                text = snapshot.content.value
                if text.startswith(sent) and len(text) > len(sent):
                    yield _sse_event({"type": "chunk", "text": text[len(sent):]})
                sent = text
            if last is None or last.status == STATUS_FAILED:
                message = (last.metadata.error if last is not None else None) or str(store.error or "")
                yield _sse_event({"type": "error", "message": message or "Generation failed."})
            else:
                yield _sse_event({"type": "done", "message": message_to_dict(last)})
        except Exception as exc:
            LOGGER.exception("Streaming response failed")
            yield _sse_event({"type": "error", "message": str(exc) or "Streaming failed."})
        finally:
            snapshots.close()

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.get("/messages/search")
def search_messages(
    q: str,
    store: ConversationStore = Depends(get_conversation_store),
) -> list[dict]:
    return [message_to_dict(message) for message in store.search_messages(q)]


def _sse_event(payload: dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"
