"""
server.py: chat endpoint for remote voice clients
===================================================
Exposes the mail-aware chat service over HTTP so a voice client can run with
``chat_backend='http'``.

Endpoints
---------
  POST /api/chat   {message, history} -> text/event-stream of chat events
  GET  /health     Service liveness
"""

from __future__ import annotations

import logging
import os
from typing import List

import uvicorn
from fastapi import FastAPI
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from .config import Config
from .core import create_chat_client
from .llm import Message, StreamingChatClient

log = logging.getLogger(__name__)


class ChatRequest(BaseModel):
    message: str = ""
    history: List[Message] = Field(default_factory=list)


def create_app(service: StreamingChatClient) -> FastAPI:
    app = FastAPI(title="Voice Mail Assistant chat")

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.post("/api/chat")
    async def chat(request: ChatRequest):
        if not request.message.strip():
            return JSONResponse({"error": "No message provided"}, status_code=400)

        async def events():
            async for event in service.converse(request.message, request.history):
                yield event.encode()

        log.info("Chat request: %r (%d history messages)", request.message, len(request.history))
        return StreamingResponse(
            events(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache, no-transform", "Connection": "keep-alive"},
        )

    return app


def main():
    logging.basicConfig(
        level=logging.DEBUG if os.getenv("VOICE_DEBUG") else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s – %(message)s",
        datefmt="%H:%M:%S",
    )
    config = Config.from_env(chat_backend="ollama")
    app = create_app(create_chat_client(config))
    uvicorn.run(
        app,
        host=os.getenv("VOICE_MAIL_HOST", "127.0.0.1"),
        port=int(os.getenv("VOICE_MAIL_PORT", "8000")),
    )


if __name__ == "__main__":
    main()
