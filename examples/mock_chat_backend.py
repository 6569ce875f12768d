from __future__ import annotations

import asyncio
import uuid
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse

app = FastAPI(title="mock-chat-backend")

_chats: dict[str, dict[str, Any]] = {}
_stopped: set[str] = set()


def _headers(**extra: str) -> dict[str, str]:
    return {"x-correlation-id": uuid.uuid4().hex, **extra}


@app.post("/health")
async def health() -> JSONResponse:
    return JSONResponse({"status": "ok"}, headers=_headers())


@app.get("/chat-service/chat/mode/{mode}")
@app.get("/chat-service/chat/mode/")
async def chats(mode: str | None = None) -> JSONResponse:
    items = [
        {"chat_id": chat_id, "title": chat["title"], "chat_mode_key": chat["mode"]}
        for chat_id, chat in _chats.items()
        if not chat["hidden"] and (not mode or chat["mode"] == mode)
    ]
    return JSONResponse(items, headers=_headers())


@app.get("/chat-service/chat/id/{chat_id}")
async def chat_by_id(chat_id: str, with_chat: bool = True, with_messages: bool = False) -> JSONResponse:
    chat = _chats.get(chat_id)
    if chat is None:
        return JSONResponse({"detail": "chat not found"}, status_code=404, headers=_headers())
    if with_messages and not with_chat:
        return JSONResponse(chat["messages"], headers=_headers())
    body: dict[str, Any] = {"chat_id": chat_id, "title": chat["title"]}
    if with_messages:
        body["messages"] = chat["messages"]
    return JSONResponse(body, headers=_headers())


@app.patch("/chat-service/chat/hide/{chat_id}")
async def hide(chat_id: str) -> JSONResponse:
    chat = _chats.get(chat_id)
    if chat is not None:
        chat["hidden"] = True
    return JSONResponse({"chat_id": chat_id, "hidden": chat is not None}, headers=_headers())


@app.post("/chat-service/chat/stream/stop/{chat_id}")
async def stop(chat_id: str) -> JSONResponse:
    _stopped.add(chat_id)
    return JSONResponse(chat_id, headers=_headers())


@app.post("/chat-service/chat/stream/start")
async def stream_start(request: Request):
    payload = await request.json()
    chat_id = payload.get("chat_id")
    extra: dict[str, str] = {}
    if not chat_id:
        chat_id = uuid.uuid4().hex
        extra["chat_id"] = chat_id
        _chats[chat_id] = {
            "title": payload.get("user_prompt", "")[:40],
            "mode": payload.get("chat_mode_key"),
            "messages": [],
            "hidden": False,
        }
    _stopped.discard(chat_id)
    prompt = payload.get("user_prompt") or ""
    answer = f"Echo ({payload.get('chat_mode_key')}): {prompt} … ✓"

    async def gen():
        sent = []
        for word in answer.split(" "):
            if chat_id in _stopped:
                break
            piece = word + " "
            sent.append(piece)
            yield piece.encode("utf-8")
            await asyncio.sleep(0.2)
        chat = _chats.get(chat_id)
        if chat is not None:
            chat["messages"].append({"user_prompt": prompt, "answer": "".join(sent).rstrip()})

    return StreamingResponse(gen(), media_type="text/plain; charset=utf-8", headers=_headers(**extra))
