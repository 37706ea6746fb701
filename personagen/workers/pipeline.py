from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

from personagen.application import get_event_hub, get_job_repository
from personagen.core.artifacts import ArtifactStore, get_artifact_store
from personagen.core.errors import ArtifactNotFound, InvalidInput, StageFailure
from personagen.core.schema import EventKind
from personagen.domain import AGGREGATE, CHARACTER, COLLECT, JobIdentity, JobRecord, Stage, normalise_subject, stages_for
from personagen.domain.jobs import Clock, utc_today
from personagen.infrastructure import (
    JobRepository,
    LogBroadcastHub,
    get_aggregator,
    get_character_deriver,
    get_collector,
)

logger = logging.getLogger(__name__)

_LOG_LEVELS = {
    "log": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def _describe(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


class PipelineOrchestrator:
    """Runs the collect -> aggregate -> character stages for one subject at a time.

    ``start`` returns as soon as the run is scheduled; progress is only visible
    through the broadcast hub and the job record.
    """

    def __init__(
        self,
        repository: JobRepository,
        hub: LogBroadcastHub,
        *,
        store: ArtifactStore | None = None,
        clock: Clock = utc_today,
    ) -> None:
        self._repository = repository
        self._hub = hub
        self._store = store
        self._clock = clock
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def store(self) -> ArtifactStore:
        return self._store or get_artifact_store()

    @property
    def active_runs(self) -> int:
        return sum(1 for task in list(self._tasks) if not task.done())

    async def start(self, subject: Any, *, include_character: bool = False) -> JobRecord:
        normalised = normalise_subject(subject)
        if normalised is None:
            raise InvalidInput("subject must be a handle of letters, digits, '_', '.' or '-'")

        # The day is frozen here; every stage of this run writes under it.
        identity = JobIdentity(subject=normalised, day=self._clock())
        record = self._repository.begin(identity, include_character=include_character)
        task = asyncio.create_task(self._run(record), name=f"pipeline:{identity}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return record

    async def shutdown(self, timeout: float | None = 10.0) -> None:
        """Wait for in-flight runs; there is no cancellation, only a bounded wait."""

        pending = [task for task in self._tasks if not task.done()]
        if not pending:
            return
        logger.info("waiting for %s pipeline run(s) to finish", len(pending))
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        if still_running:
            logger.warning("%s pipeline run(s) still running at shutdown", len(still_running))

    # ------------------------------------------------------------------
    # run loop
    # ------------------------------------------------------------------
    def _emit(self, kind: EventKind, message: str, identity: JobIdentity) -> None:
        logger.log(_LOG_LEVELS[kind], message, extra={"subject": identity.subject})
        self._hub.emit(kind, message, subject=identity.subject)

    async def _run(self, record: JobRecord) -> None:
        identity = record.identity
        self._emit("info", f"Pipeline started for {identity.subject} ({identity.day_label})", identity)
        record.advance("running")
        upstream: Any = identity.subject
        try:
            for stage in stages_for(record.include_character):
                if record.active:
                    record.current_stage = stage.name
                upstream = await self._run_stage(stage, identity, upstream)
        except StageFailure as exc:
            record.advance("failed", error=str(exc))
            self._emit("error", str(exc), identity)
            return
        except Exception as exc:
            logger.exception("pipeline run for %s crashed", identity)
            record.advance("failed", error=_describe(exc))
            self._emit("error", f"Pipeline error: {_describe(exc)}", identity)
            return

        record.advance("completed")
        self._emit("info", f"Pipeline completed for {identity.subject} ({identity.day_label})", identity)

    async def _run_stage(self, stage: Stage, identity: JobIdentity, upstream: Any) -> Any:
        store = self.store
        if stage.skippable and await asyncio.to_thread(store.exists, identity, stage.category, stage.artifact):
            try:
                cached = await asyncio.to_thread(store.read, identity, stage.category, stage.artifact)
            except (ArtifactNotFound, ValueError):
                self._emit("warning", f"Cached {stage.name} artifact for {identity} is unreadable, rebuilding", identity)
            else:
                self._emit("info", f"Reusing cached {stage.name} artifact for {identity}", identity)
                return cached

        self._emit("log", f"Running stage {stage.name} for {identity}", identity)
        try:
            document = await asyncio.to_thread(self._execute, stage, identity, upstream)
            await asyncio.to_thread(store.write, identity, stage.category, stage.artifact, document)
        except Exception as exc:
            raise StageFailure(stage.name, _describe(exc)) from exc

        self._emit("info", self._summarise(stage, identity, document), identity)
        return document

    def _execute(self, stage: Stage, identity: JobIdentity, upstream: Any) -> dict[str, Any]:
        if stage == COLLECT:
            records = get_collector().collect(identity.subject)
            return {
                "subject": identity.subject,
                "day": identity.day_label,
                "collected_at": datetime.now(timezone.utc).isoformat(),
                "count": len(records),
                "records": records,
            }
        if stage == AGGREGATE:
            records = upstream.get("records") if isinstance(upstream, dict) else None
            if not isinstance(records, list):
                raise ValueError("raw artifact does not contain a records list")
            summary = get_aggregator().aggregate(records, identity.subject)
            return summary.model_dump(mode="json")
        if stage == CHARACTER:
            profile = get_character_deriver().derive(upstream)
            return profile.model_dump(mode="json")
        raise ValueError(f"unknown stage: {stage.name}")

    @staticmethod
    def _summarise(stage: Stage, identity: JobIdentity, document: dict[str, Any]) -> str:
        if stage == COLLECT:
            return f"Collected {document.get('count', 0)} records for {identity.subject}"
        if stage == AGGREGATE:
            return f"Aggregated analytics for {identity.subject}: {document.get('total_records', 0)} records"
        if stage == CHARACTER:
            return f"Derived character {document.get('name')!r} for {identity.subject}"
        return f"Stage {stage.name} finished for {identity.subject}"


_worker: PipelineOrchestrator | None = None


def get_pipeline_worker() -> PipelineOrchestrator:
    global _worker
    if _worker is None:
        _worker = PipelineOrchestrator(get_job_repository(), get_event_hub())
    return _worker


def reset_pipeline_worker() -> None:
    """Drop the process-wide orchestrator (used in tests)."""

    global _worker
    _worker = None
