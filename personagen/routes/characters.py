from __future__ import annotations

import asyncio
from typing import Any

from fastapi import APIRouter, HTTPException

from personagen.application import get_job_service
from personagen.core.errors import ArtifactNotFound, DependencyNotReady, InferenceFailure, InvalidInput

router = APIRouter(tags=["characters"])


async def _character(subject: object) -> dict[str, Any]:
    if not subject:
        raise HTTPException(status_code=400, detail="subject is required")
    service = get_job_service()
    try:
        profile = await asyncio.to_thread(service.get_or_generate_character, subject)
    except InvalidInput as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except DependencyNotReady as exc:
        raise HTTPException(status_code=424, detail=str(exc)) from exc
    except InferenceFailure as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return profile.model_dump(mode="json")


@router.get("/characters/{subject}")
async def get_character(subject: str) -> dict:
    return await _character(subject)


@router.post("/characters/{subject}")
async def generate_character(subject: str) -> dict:
    return await _character(subject)


@router.post("/generate-character")
async def generate_character_legacy(payload: dict) -> dict:
    return await _character(payload.get("username") or payload.get("subject"))


@router.get("/artifacts/{subject}/{category}/{name}")
async def get_artifact(subject: str, category: str, name: str) -> Any:
    service = get_job_service()
    try:
        return await asyncio.to_thread(service.get_artifact, subject, category, name)
    except InvalidInput as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except ArtifactNotFound as exc:
        raise HTTPException(status_code=404, detail="artifact not found") from exc
