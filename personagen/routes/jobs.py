from __future__ import annotations

import asyncio

from fastapi import APIRouter, HTTPException

from personagen.application import get_job_service
from personagen.core.errors import InvalidInput, JobAlreadyRunning
from personagen.workers.pipeline import get_pipeline_worker

router = APIRouter(tags=["jobs"])


async def _start(subject: object, include_character: bool) -> dict:
    if not subject:
        raise HTTPException(status_code=400, detail="subject is required")
    worker = get_pipeline_worker()
    try:
        record = await worker.start(subject, include_character=include_character)
    except InvalidInput as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except JobAlreadyRunning as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return {
        "subject": record.identity.subject,
        "day": record.identity.day_label,
        "state": record.state,
    }


@router.post("/jobs", status_code=202)
async def start_job(payload: dict) -> dict:
    """Start the pipeline for a subject; progress streams on ``/api/logs``."""
    return await _start(payload.get("subject"), bool(payload.get("character", False)))


@router.post("/scrape", status_code=202)
async def start_scrape(payload: dict) -> dict:
    result = await _start(payload.get("username"), bool(payload.get("character", False)))
    return {"message": "Scraping started", "username": result["subject"], **result}


@router.get("/jobs")
async def list_jobs() -> dict:
    service = get_job_service()
    return {"items": service.list_jobs()}


async def _status(subject: str) -> dict:
    service = get_job_service()
    try:
        return await asyncio.to_thread(service.get_status, subject)
    except InvalidInput as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.get("/jobs/{subject}/status")
async def get_job_status(subject: str) -> dict:
    return await _status(subject)


@router.get("/status/{subject}")
async def get_status(subject: str) -> dict:
    return await _status(subject)
