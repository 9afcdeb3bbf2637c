from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Mapping

from src.storage.base import BaseStorage, Collection

LOGGER = logging.getLogger("storage.json")


class JsonFileStorage(BaseStorage):
    """Disk-backed storage: one JSON document per collection under ``data_dir``."""

    def __init__(self, data_dir: str | Path) -> None:
        super().__init__()
        self.root = Path(data_dir).expanduser().absolute()

    def collection_path(self, name: str) -> Path:
        return self.root / f"{name}.json"

    def _setup(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        for collection in self.collections():
            collection._load(self._read_records(collection))

    def _persist(self, collection: Collection, records: Mapping[str, Any]) -> None:
        path = self.collection_path(collection.name)
        payload = {
            collection.name: [collection.to_dict(record) for record in records.values()],
        }
        temp_path = path.with_suffix(".json.tmp")
        temp_path.write_text(
            json.dumps(payload, ensure_ascii=False, indent=2),
            encoding="utf-8",
        )
        os.replace(temp_path, path)

    def _read_records(self, collection: Collection) -> list[Any]:
        path = self.collection_path(collection.name)
        if not path.exists():
            return []
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            LOGGER.warning("Ignoring unreadable collection file %s", path)
            return []
        if not isinstance(payload, dict):
            return []
        raw_records = payload.get(collection.name, [])
        if not isinstance(raw_records, list):
            return []
        records = []
        for raw in raw_records:
            if not isinstance(raw, dict) or not str(raw.get("id", "") or "").strip():
                continue
            try:
                records.append(collection.from_dict(raw))
            except (KeyError, TypeError, ValueError):
                LOGGER.warning("Skipping malformed %s record in %s", collection.name, path)
        return records
