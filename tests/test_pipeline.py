from __future__ import annotations

import asyncio
from datetime import date

import pytest

from conftest import CHARACTER, SAMPLE_RECORDS, FakeCollector, FakeDeriver
from personagen.application import JobService
from personagen.core.artifacts import ArtifactStore
from personagen.core.errors import InvalidInput, JobAlreadyRunning
from personagen.domain import JobIdentity
from personagen.infrastructure import (
    InMemoryJobRepository,
    LogBroadcastHub,
    configure_aggregator,
    configure_character_deriver,
    configure_collector,
)
from personagen.workers.pipeline import PipelineOrchestrator

DAY = date(2026, 10, 18)


class ExplodingAggregator:
    def aggregate(self, records, subject):
        raise ValueError("bad records")


def _orchestrator(store: ArtifactStore, clock=lambda: DAY):
    repository = InMemoryJobRepository()
    hub = LogBroadcastHub()
    return PipelineOrchestrator(repository, hub, store=store, clock=clock), repository, hub


def _run(orchestrator: PipelineOrchestrator, subject: str, **kwargs):
    async def scenario():
        record = await orchestrator.start(subject, **kwargs)
        await orchestrator.shutdown(timeout=5)
        return record

    return asyncio.run(scenario())


def test_stages_run_in_order_and_emit_progress(store):
    configure_collector(FakeCollector())
    orchestrator, _, hub = _orchestrator(store)
    subscription = hub.subscribe()

    record = _run(orchestrator, "alice")

    assert record.state == "completed"
    identity = JobIdentity("alice", DAY)
    assert store.read(identity, "raw", "records")["count"] == len(SAMPLE_RECORDS)
    assert store.read(identity, "analytics", "stats")["total_records"] == len(SAMPLE_RECORDS)
    assert not store.exists(identity, "character", "character")

    events = subscription.drain()
    messages = [event.message for event in events]
    assert messages[1] == "Pipeline started for alice (2026-10-18)"
    assert messages[2] == "Running stage collect for alice/2026-10-18"
    assert messages[3] == "Collected 3 records for alice"
    assert messages[4] == "Running stage aggregate for alice/2026-10-18"
    assert messages[5] == "Aggregated analytics for alice: 3 records"
    assert messages[-1] == "Pipeline completed for alice (2026-10-18)"
    assert [event.kind for event in events[1:]] == ["info", "log", "info", "log", "info", "info"]
    assert all(event.subject == "alice" for event in events[1:])


def test_character_stage_runs_when_requested(store):
    deriver = FakeDeriver()
    configure_collector(FakeCollector())
    configure_character_deriver(deriver)
    orchestrator, _, _ = _orchestrator(store)

    record = _run(orchestrator, "alice", include_character=True)

    assert record.state == "completed"
    character = store.read(JobIdentity("alice", DAY), "character", "character")
    assert character["name"] == CHARACTER["name"]
    assert deriver.calls[0]["total_records"] == len(SAMPLE_RECORDS)


def test_failure_halts_the_run(store):
    deriver = FakeDeriver()
    configure_collector(FakeCollector())
    configure_aggregator(ExplodingAggregator())
    configure_character_deriver(deriver)
    orchestrator, _, hub = _orchestrator(store)
    subscription = hub.subscribe()

    record = _run(orchestrator, "alice", include_character=True)

    assert record.state == "failed"
    assert record.error == "stage aggregate failed: bad records"
    identity = JobIdentity("alice", DAY)
    assert store.exists(identity, "raw", "records")
    assert not store.exists(identity, "analytics", "stats")
    assert deriver.calls == []

    events = subscription.drain()
    assert events[-1].kind == "error"
    assert events[-1].message == "stage aggregate failed: bad records"


def test_cached_stages_are_skipped(store):
    collector = FakeCollector()
    configure_collector(collector)
    identity = JobIdentity("alice", DAY)
    store.write(identity, "raw", "records", {"count": 1, "records": SAMPLE_RECORDS[:1]})
    orchestrator, _, hub = _orchestrator(store)
    subscription = hub.subscribe()

    record = _run(orchestrator, "alice")

    assert record.state == "completed"
    assert collector.calls == []
    assert store.read(identity, "analytics", "stats")["total_records"] == 1
    assert f"Reusing cached collect artifact for {identity}" in [event.message for event in subscription.drain()]


def test_unreadable_cached_artifact_is_rebuilt(store):
    collector = FakeCollector()
    configure_collector(collector)
    identity = JobIdentity("alice", DAY)
    path = store.path_for(identity, "raw", "records")
    path.parent.mkdir(parents=True)
    path.write_text("{not json", encoding="utf-8")
    orchestrator, _, _ = _orchestrator(store)

    record = _run(orchestrator, "alice")

    assert record.state == "completed"
    assert collector.calls == ["alice"]
    assert store.read(identity, "raw", "records")["count"] == len(SAMPLE_RECORDS)


def test_rerun_of_completed_day_gets_fresh_record(store):
    collector = FakeCollector()
    configure_collector(collector)
    orchestrator, repository, _ = _orchestrator(store)

    first = _run(orchestrator, "alice")
    second = _run(orchestrator, "alice")

    assert first is not second
    assert (first.state, second.state) == ("completed", "completed")
    assert collector.calls == ["alice"]
    assert repository.latest_for("alice") is second
    assert len(repository.list_jobs()) == 1


def test_failed_rerun_of_completed_day_is_recorded(store):
    configure_collector(FakeCollector())
    configure_character_deriver(FakeDeriver(error=RuntimeError("persona model offline")))
    orchestrator, repository, _ = _orchestrator(store)

    _run(orchestrator, "alice")
    rerun = _run(orchestrator, "alice", include_character=True)

    assert rerun.state == "failed"
    assert rerun.error == "stage character failed: persona model offline"
    assert repository.latest_for("alice") is rerun


def test_day_is_frozen_at_start(store):
    configure_collector(FakeCollector())
    days = [date(2026, 10, 18)]
    orchestrator, _, _ = _orchestrator(store, clock=lambda: days[0])

    async def scenario():
        record = await orchestrator.start("alice")
        days[0] = date(2026, 10, 19)
        await orchestrator.shutdown(timeout=5)
        return record

    record = asyncio.run(scenario())

    assert record.identity.day == date(2026, 10, 18)
    assert store.exists(JobIdentity("alice", date(2026, 10, 18)), "analytics", "stats")
    assert not store.identity_root(JobIdentity("alice", date(2026, 10, 19))).exists()


def test_start_rejects_bad_subject_and_running_duplicates(store):
    orchestrator, repository, _ = _orchestrator(store)

    async def bad():
        await orchestrator.start("   ")

    with pytest.raises(InvalidInput):
        asyncio.run(bad())

    repository.begin(JobIdentity("alice", DAY))
    with pytest.raises(JobAlreadyRunning):
        repository.begin(JobIdentity("alice", DAY))


def test_read_paths_follow_active_run_across_midnight(store):
    repository = InMemoryJobRepository()
    today = [date(2026, 10, 19)]
    service = JobService(repository, store=store, clock=lambda: today[0])

    record = repository.begin(JobIdentity("alice", date(2026, 10, 18)))
    record.advance("running")
    assert service.resolve_identity("alice") == JobIdentity("alice", date(2026, 10, 18))

    record.advance("completed")
    assert service.resolve_identity("alice") == JobIdentity("alice", date(2026, 10, 19))

    today[0] = date(2026, 10, 18)
    assert service.resolve_identity("@alice") == JobIdentity("alice", date(2026, 10, 18))


def test_job_record_never_moves_backward():
    repository = InMemoryJobRepository()
    record = repository.begin(JobIdentity("alice", DAY))
    seen = [record.state]
    for state in ("running", "pending", "completed", "running", "failed"):
        record.advance(state)
        seen.append(record.state)

    assert seen == ["pending", "running", "running", "completed", "completed", "completed"]
    assert record.finished_at is not None
