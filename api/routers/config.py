from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends

from api.dependencies import get_config
from src.core.config import AppConfig
from src.models.catalog import AVAILABLE_MODELS

router = APIRouter(prefix="/api/config", tags=["config"])


@router.get("")
def read_config(config: AppConfig = Depends(get_config)) -> dict:
    return config.masked_summary()


@router.get("/models")
def list_models() -> list[dict]:
    return [asdict(option) for option in AVAILABLE_MODELS]
