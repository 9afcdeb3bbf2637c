from __future__ import annotations

from datetime import datetime, timezone
import json
import logging
from pathlib import Path
from typing import Any, Mapping

_PROMPT_KEYS = ("input_tokens", "prompt_tokens")
_COMPLETION_KEYS = ("output_tokens", "completion_tokens")
_TOTAL_KEYS = ("total_tokens",)


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def get_logger(name: str | None = None) -> logging.Logger:
    return logging.getLogger(name)


def log_event(
    name: str,
    *,
    logger_name: str = "app.events",
    store_path: str | Path | None = None,
    **fields: Any,
) -> dict[str, Any]:
    payload = {
        "event": name,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        **{key: _coerce_json_value(value) for key, value in fields.items()},
    }
    line = json.dumps(payload, ensure_ascii=False, sort_keys=True)
    get_logger(logger_name).info(line)
    if store_path:
        path = Path(store_path).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")
    return payload


def extract_usage_stats(response: Any) -> dict[str, Any]:
    """Read token counts from a LangChain message or chunk, if the provider reported any."""
    usage = _usage_mapping(response)
    prompt_tokens = _first_int(usage, _PROMPT_KEYS)
    completion_tokens = _first_int(usage, _COMPLETION_KEYS)
    total_tokens = _first_int(usage, _TOTAL_KEYS)
    if total_tokens is None and prompt_tokens is not None and completion_tokens is not None:
        total_tokens = prompt_tokens + completion_tokens
    return {
        "prompt_tokens": prompt_tokens,
        "completion_tokens": completion_tokens,
        "total_tokens": total_tokens,
        "model_name": _model_name(response),
    }


def log_llm_usage(tag: str, response: Any) -> dict[str, Any]:
    logger = get_logger("llm.usage")
    usage_stats = extract_usage_stats(response)
    if (
        usage_stats["prompt_tokens"] is None
        and usage_stats["completion_tokens"] is None
        and usage_stats["total_tokens"] is None
    ):
        logger.info("[TOKENS] %s usage metadata not available", tag)
        return usage_stats
    logger.info(
        "[TOKENS] %s prompt=%s completion=%s total=%s model=%s",
        tag,
        _fmt_token(usage_stats["prompt_tokens"]),
        _fmt_token(usage_stats["completion_tokens"]),
        _fmt_token(usage_stats["total_tokens"]),
        usage_stats.get("model_name") or "unknown",
    )
    return usage_stats


def has_usage_metadata(response: Any) -> bool:
    return _usage_mapping(response) is not None


def _usage_mapping(response: Any) -> Mapping[str, Any] | None:
    if response is None:
        return None
    usage_metadata = getattr(response, "usage_metadata", None)
    if isinstance(usage_metadata, Mapping) and usage_metadata:
        return usage_metadata
    response_metadata = getattr(response, "response_metadata", None)
    if isinstance(response_metadata, Mapping):
        for key in ("token_usage", "usage"):
            nested = response_metadata.get(key)
            if isinstance(nested, Mapping) and nested:
                return nested
    return None


def _model_name(response: Any) -> str | None:
    response_metadata = getattr(response, "response_metadata", None)
    if isinstance(response_metadata, Mapping):
        for key in ("model_name", "model", "model_id"):
            value = response_metadata.get(key)
            if value:
                return str(value)
    return None


def _coerce_json_value(value: Any) -> Any:
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, Mapping):
        return {str(key): _coerce_json_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_coerce_json_value(item) for item in value]
    return str(value)


def _first_int(payload: Mapping[str, Any] | None, keys: tuple[str, ...]) -> int | None:
    if payload is None:
        return None
    for key in keys:
        value = payload.get(key)
        if value is None:
            continue
        try:
            return int(value)
        except (TypeError, ValueError):
            continue
    return None


def _fmt_token(value: int | None) -> str:
    if value is None:
        return "na"
    return str(value)
