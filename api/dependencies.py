from __future__ import annotations

from functools import lru_cache

from dotenv import load_dotenv

from src.chat.store import ConversationStore
from src.core.config import AppConfig, load_config
from src.integrations.llm import build_model_factory
from src.storage import BaseStorage, build_storage


@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    load_dotenv(override=False)
    return load_config()


@lru_cache(maxsize=1)
def get_storage() -> BaseStorage:
    config = get_config()
    storage = build_storage(config.storage_backend, config.data_dir)
    storage.init()
    return storage


@lru_cache(maxsize=1)
def get_conversation_store() -> ConversationStore:
    config = get_config()
    store = ConversationStore(
        get_storage(),
        build_model_factory(config),
        default_model=config.default_model,
        events_store_path=config.events_store_path if config.log_events else None,
    )
    store.load_threads()
    return store
