from __future__ import annotations

import json
from typing import Sequence

from src.chat.types import (
    MAIN_BRANCH_ID,
    ROLE_ASSISTANT,
    ROLE_SYSTEM,
    Branch,
    Message,
    Thread,
    branch_to_dict,
    message_to_dict,
)


def export_branch_markdown(
    thread: Thread,
    branch: Branch | None,
    messages: Sequence[Message],
) -> str:
    branch_id = branch.id if branch is not None else MAIN_BRANCH_ID
    lines = [
        f"# {thread.title.strip() or 'Untitled thread'}",
        "",
        f"- Branch: `{branch_id}`",
        f"- Branch name: {branch.name.strip() if branch is not None and branch.name.strip() else 'Main'}",
        f"- Model: {thread.metadata.model}",
    ]
    if branch is not None and branch.parent_message_id:
        lines.append(f"- Forked from message: `{branch.parent_message_id}`")
    lines.append("")

    for message in messages:
        content = message.content.value.strip()
        if not content:
            continue
        if message.role == ROLE_ASSISTANT:
            heading = "Assistant"
        elif message.role == ROLE_SYSTEM:
            heading = "System"
        else:
            heading = "User"
        if message.content.type == "code":
            content = f"```{message.content.language or ''}\n{content}\n```"
        lines.extend([f"## {heading}", "", content, ""])
    return "\n".join(lines).strip() + "\n"


def export_branch_json(
    thread: Thread,
    branch: Branch | None,
    messages: Sequence[Message],
) -> str:
    payload = {
        "thread_id": thread.id,
        "thread_title": thread.title,
        "model": thread.metadata.model,
        "branch": (
            branch_to_dict(branch)
            if branch is not None
            else {"id": MAIN_BRANCH_ID, "thread_id": thread.id, "name": "Main"}
        ),
        "messages": [message_to_dict(message) for message in messages],
    }
    return json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True)
