# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.config.loader import get_str_env
from src.llms.llm import get_configured_llm_models
from src.server.chat.errors import ChatError
from src.server.chat.router import router as chat_router
from src.server.session.base import HistoryStore
from src.server.session.dependencies import (
    get_session_store,
    initialise_session_store,
    set_session_store,
)
from src.server.session.router import router as session_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    session_store = initialise_session_store()
    await session_store.init()
    set_session_store(session_store)
    try:
        yield
    finally:
        await session_store.close()


app = FastAPI(
    title="Chat Relay API",
    description="Relays streamed chat completions to clients over Server-Sent Events",
    version="0.1.0",
    lifespan=lifespan,
)

# Add CORS middleware
allowed_origins_str = get_str_env("ALLOWED_ORIGINS", "http://localhost:5173")
allowed_origins = [origin.strip() for origin in allowed_origins_str.split(",") if origin.strip()]

logger.info("Allowed origins: %s", allowed_origins)

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(session_router)
app.include_router(chat_router)


@app.exception_handler(ChatError)
async def chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
    logger.warning(
        "%s %s rejected with %d: %s", request.method, request.url.path, exc.status_code, exc.message
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        problems.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    logger.warning("%s %s rejected with invalid body: %s", request.method, request.url.path, problems)
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request body.", "details": "; ".join(problems)},
    )


@app.get("/")
async def root() -> dict:
    return {"message": "Chat API backend is running."}


@app.get("/health")
async def health(store: HistoryStore = Depends(get_session_store)) -> dict:
    return {"ok": True, "store": store.backend, "models": get_configured_llm_models()}
