from __future__ import annotations

from dataclasses import replace

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import PlainTextResponse

from api.dependencies import get_conversation_store
from api.models import (
    BranchCreateRequest,
    BranchRecord,
    MessageRecord,
    ThreadCreateRequest,
    ThreadModelRequest,
    ThreadRecord,
    ThreadUpdateRequest,
)
from src.chat.errors import BranchNotFoundError
from src.chat.store import ConversationStore
from src.chat.types import (
    MAIN_BRANCH_ID,
    branch_node_to_dict,
    branch_to_dict,
    message_to_dict,
    thread_to_dict,
)
from src.utils.export import export_branch_json, export_branch_markdown

router = APIRouter(prefix="/api/threads", tags=["threads"])


@router.get("", response_model=list[ThreadRecord])
def list_threads(
    q: str | None = None,
    store: ConversationStore = Depends(get_conversation_store),
) -> list[dict]:
    threads = store.search_threads(q) if q else store.load_threads()
    return [thread_to_dict(thread) for thread in sorted(threads, key=lambda item: item.updated_at, reverse=True)]


@router.post("")
def create_thread(
    request: ThreadCreateRequest,
    store: ConversationStore = Depends(get_conversation_store),
) -> dict:
    thread = store.create_thread(request.title)
    return {"thread": thread_to_dict(thread), "branch_id": MAIN_BRANCH_ID}


@router.get("/{thread_id}", response_model=ThreadRecord)
def read_thread(thread_id: str, store: ConversationStore = Depends(get_conversation_store)) -> dict:
    return thread_to_dict(store.get_thread(thread_id))


@router.patch("/{thread_id}", response_model=ThreadRecord)
def update_thread(
    thread_id: str,
    request: ThreadUpdateRequest,
    store: ConversationStore = Depends(get_conversation_store),
) -> dict:
    thread = store.get_thread(thread_id)
    metadata = thread.metadata
    if request.tags is not None:
        metadata = replace(metadata, tags=tuple(request.tags))
    if request.favorite is not None:
        metadata = replace(metadata, favorite=request.favorite)
    if request.archived is not None:
        metadata = replace(metadata, archived=request.archived)
    updated = replace(
        thread,
        title=request.title if request.title is not None else thread.title,
        metadata=metadata,
    )
    return thread_to_dict(store.update_thread(updated))


@router.put("/{thread_id}/model", response_model=ThreadRecord)
def update_thread_model(
    thread_id: str,
    request: ThreadModelRequest,
    store: ConversationStore = Depends(get_conversation_store),
) -> dict:
    parameters = request.parameters.to_parameters() if request.parameters is not None else None
    updated = store.update_thread_model(request.model, parameters, thread_id=thread_id)
    return thread_to_dict(updated)


@router.delete("/{thread_id}")
def delete_thread(thread_id: str, store: ConversationStore = Depends(get_conversation_store)) -> dict:
    store.get_thread(thread_id)
    store.delete_thread(thread_id)
    return {"deleted": True}


@router.get("/{thread_id}/branches", response_model=list[BranchRecord])
def list_branches(thread_id: str, store: ConversationStore = Depends(get_conversation_store)) -> list[dict]:
    _load(store, thread_id)
    branches = sorted(store.thread_branches(thread_id), key=lambda item: item.created_at)
    return [branch_to_dict(branch) for branch in branches]


@router.get("/{thread_id}/branches/tree")
def read_branch_tree(thread_id: str, store: ConversationStore = Depends(get_conversation_store)) -> list[dict]:
    _load(store, thread_id)
    tree = store.build_branch_tree(store.thread_branches(thread_id))
    return [branch_node_to_dict(node) for node in tree]


@router.post("/{thread_id}/branches", response_model=BranchRecord)
def create_branch(
    thread_id: str,
    request: BranchCreateRequest,
    store: ConversationStore = Depends(get_conversation_store),
) -> dict:
    _load(store, thread_id)
    branch = store.create_branch(request.parent_message_id, request.name, thread_id=thread_id)
    return branch_to_dict(branch)


@router.get("/{thread_id}/branches/{branch_id}/messages", response_model=list[MessageRecord])
def list_branch_messages(
    thread_id: str,
    branch_id: str,
    store: ConversationStore = Depends(get_conversation_store),
) -> list[dict]:
    _load(store, thread_id)
    _require_branch(store, thread_id, branch_id)
    return [message_to_dict(message) for message in store.branch_messages(thread_id, branch_id)]


@router.get("/{thread_id}/branches/{branch_id}/export")
def export_branch(
    thread_id: str,
    branch_id: str,
    format: str = "markdown",
    store: ConversationStore = Depends(get_conversation_store),
) -> PlainTextResponse:
    thread = _load(store, thread_id)
    _require_branch(store, thread_id, branch_id)
    branch = store.branches.get(branch_id)
    messages = store.branch_messages(thread_id, branch_id)
    if format == "json":
        return PlainTextResponse(
            export_branch_json(thread, branch, messages),
            media_type="application/json",
        )
    if format != "markdown":
        raise HTTPException(status_code=400, detail="format must be 'markdown' or 'json'.")
    return PlainTextResponse(
        export_branch_markdown(thread, branch, messages),
        media_type="text/markdown",
    )


def _load(store: ConversationStore, thread_id: str):
    thread = store.get_thread(thread_id)
    store.load_thread_data(thread_id)
    return thread


def _require_branch(store: ConversationStore, thread_id: str, branch_id: str) -> None:
    if branch_id == MAIN_BRANCH_ID:
        return
    branch = store.branches.get(branch_id)
    if branch is None or branch.thread_id != thread_id:
        raise BranchNotFoundError(branch_id)
