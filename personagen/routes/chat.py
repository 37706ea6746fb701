from __future__ import annotations

import asyncio

from fastapi import APIRouter, HTTPException

from personagen.application import get_chat_gateway
from personagen.core.errors import CharacterNotFound, InferenceFailure, InvalidInput

router = APIRouter(tags=["chat"])


@router.post("/chat")
async def chat_turn(payload: dict) -> dict:
    """Send one message to a subject's character; earlier turns may be resent as ``history``."""
    subject = payload.get("subject") or payload.get("username")
    message = payload.get("message")
    if not subject or not message:
        raise HTTPException(status_code=400, detail="subject and message are required")

    gateway = get_chat_gateway()
    try:
        reply = await asyncio.to_thread(gateway.send_turn, subject, message, payload.get("history"))
    except InvalidInput as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except CharacterNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InferenceFailure as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return {"reply": reply, "response": reply}
