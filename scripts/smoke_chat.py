from __future__ import annotations

import argparse
import json
import sys

from src.chat.store import ConversationStore
from src.core.config import load_config
from src.history import history_excerpt
from src.integrations.llm import build_model_factory
from src.logging_utils import setup_logging
from src.storage import build_storage


def main() -> None:
    parser = argparse.ArgumentParser(description="Stream one turn into a new thread, then fork it.")
    parser.add_argument("--title", default="Smoke thread", help="Title of the thread to create.")
    parser.add_argument("--prompt", default="Say hello in five words.", help="User message to send.")
    parser.add_argument(
        "--fork-prompt",
        default="Now say it in French.",
        help="Message sent on a branch forked from the first user message.",
    )
    args = parser.parse_args()

    config = load_config()
    setup_logging(config.log_level)
    config.require_valid()
    store = ConversationStore(
        build_storage(config.storage_backend, config.data_dir),
        build_model_factory(config),
        default_model=config.default_model,
    )

    thread = store.create_thread(args.title)
    answer = None
    for snapshot in store.stream_message(args.prompt):
        answer = snapshot
        sys.stdout.write("\r" + snapshot.content.value[-120:])
        sys.stdout.flush()
    sys.stdout.write("\n")

    first_user = store.active_messages[0]
    branch = store.create_branch(first_user.id, "fork")
    store.send_message(args.fork_prompt)

    output = {
        "thread_id": thread.id,
        "main_status": answer.status if answer is not None else None,
        "branch_id": branch.id,
        "branch_transcript": history_excerpt(store.active_messages),
        "error": str(store.error) if store.error else None,
    }
    print(json.dumps(output, indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()
