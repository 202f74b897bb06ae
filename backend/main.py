"""Run the FastAPI app for the dialog orchestrator."""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from src.dialog_orchestrator.config import SESSION_CLEANUP_INTERVAL_SECONDS, SESSION_TTL_SECONDS, ensure_dirs
from src.routers import chat_router
from src.routers.chat import get_session_store

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


async def _purge_expired_sessions() -> None:
    store = get_session_store()
    while True:
        await asyncio.sleep(SESSION_CLEANUP_INTERVAL_SECONDS)
        try:
            store.cleanup_expired(SESSION_TTL_SECONDS)
        except (OSError, ValueError) as exc:
            logger.warning("Session cleanup failed: %s", exc)


@asynccontextmanager
async def lifespan(app: FastAPI):
    ensure_dirs()
    task = asyncio.create_task(_purge_expired_sessions())
    try:
        yield
    finally:
        task.cancel()


app = FastAPI(title="Dialog Orchestrator", version="0.1.0", lifespan=lifespan)
app.include_router(chat_router)


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
