from __future__ import annotations

from contextlib import asynccontextmanager
import os

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.dependencies import get_config, get_conversation_store
from api.routers import config, messages, threads
from src.chat.errors import (
    BranchNotFoundError,
    MessageNotFoundError,
    NoActiveThreadError,
    ParentMessageNotFoundError,
    ThreadNotFoundError,
)
from src.logging_utils import setup_logging
from src.storage import StorageUnavailableError

load_dotenv(override=False)


@asynccontextmanager
async def lifespan(_: FastAPI):
    load_dotenv(override=False)
    config_obj = get_config()
    setup_logging(config_obj.log_level)
    config_obj.require_valid()
    get_conversation_store()
    yield


app = FastAPI(title="branchchat", lifespan=lifespan)

frontend_origin = os.getenv("FRONTEND_ORIGIN", "http://localhost:5173").strip() or "http://localhost:5173"
app.add_middleware(
    CORSMiddleware,
    allow_origins=sorted({frontend_origin, "http://localhost:5173"}),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(config.router)
app.include_router(threads.router)
app.include_router(messages.router)


@app.exception_handler(ThreadNotFoundError)
@app.exception_handler(BranchNotFoundError)
@app.exception_handler(MessageNotFoundError)
@app.exception_handler(ParentMessageNotFoundError)
async def not_found_handler(_: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(NoActiveThreadError)
async def no_active_thread_handler(_: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(StorageUnavailableError)
async def storage_unavailable_handler(_: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=503, content={"detail": str(exc)})


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}
