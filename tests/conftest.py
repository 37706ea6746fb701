from __future__ import annotations

import json
import sys
import threading
import time
from pathlib import Path
from typing import Any, Callable

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from personagen.application import reset_job_state
from personagen.core.artifacts import ArtifactStore, configure_artifact_store
from personagen.core.schema import CharacterProfile
from personagen.infrastructure import (
    InferenceCharacterDeriver,
    PandasAggregator,
    configure_aggregator,
    configure_character_deriver,
    configure_collector,
    configure_inference_client,
)
from personagen.infrastructure.collectors import UnconfiguredCollector
from personagen.infrastructure.inference import UnconfiguredInferenceClient
from personagen.workers.pipeline import reset_pipeline_worker


SAMPLE_RECORDS = [
    {
        "id": "1",
        "text": "Shipping today #python #release with @bob",
        "created_at": "2026-10-01T09:15:00+00:00",
        "likes": 10,
        "reposts": 2,
        "replies": 1,
    },
    {
        "id": "2",
        "text": "More #python notes",
        "created_at": "2026-10-02T21:40:00+00:00",
        "likes": 50,
        "reposts": 5,
        "replies": 4,
    },
    {
        "id": "3",
        "text": "quiet day",
        "created_at": "2026-10-03T09:05:00+00:00",
        "likes": 0,
        "reposts": 0,
        "replies": 0,
    },
]

CHARACTER = {
    "name": "Alice Bot",
    "handle": "alice",
    "bio": "I ship Python.",
    "description": "A cheerful engineer who talks about releases.",
    "system_prompt_prefix": "You are Alice.",
    "system_prompt_suffix": "Keep answers short.",
}


class FakeCollector:
    def __init__(
        self,
        records: list[dict[str, Any]] | None = None,
        *,
        error: Exception | None = None,
        gate: threading.Event | None = None,
    ) -> None:
        self.records = SAMPLE_RECORDS if records is None else records
        self.error = error
        self.gate = gate
        self.calls: list[str] = []

    def collect(self, subject: str) -> list[dict[str, Any]]:
        self.calls.append(subject)
        if self.gate is not None:
            assert self.gate.wait(timeout=5), "collector gate was never released"
        if self.error is not None:
            raise self.error
        return list(self.records)


class FakeDeriver:
    def __init__(
        self,
        character: dict[str, Any] | None = None,
        *,
        delay: float = 0.0,
        error: Exception | None = None,
        gate: threading.Event | None = None,
    ) -> None:
        self.character = character or CHARACTER
        self.delay = delay
        self.error = error
        self.gate = gate
        self.calls: list[dict[str, Any]] = []

    def derive(self, analytics: dict[str, Any]) -> CharacterProfile:
        self.calls.append(analytics)
        if self.delay:
            time.sleep(self.delay)
        if self.gate is not None:
            assert self.gate.wait(timeout=5), "deriver gate was never released"
        if self.error is not None:
            raise self.error
        return CharacterProfile.model_validate(self.character)


class FakeInference:
    def __init__(self, responder: Callable[[str, str], str] | None = None, *, error: Exception | None = None) -> None:
        self.responder = responder or (lambda system, message: f"echo: {message}")
        self.error = error
        self.calls: list[tuple[str, str, list]] = []

    def complete(self, system_context: str, message: str, history=()) -> str:
        self.calls.append((system_context, message, list(history)))
        if self.error is not None:
            raise self.error
        return self.responder(system_context, message)


def character_reply(system: str, message: str) -> str:
    """Inference responder that answers derivation prompts with a character."""

    if "Analytics" in message:
        return "```json\n" + json.dumps(CHARACTER) + "\n```"
    return f"Alice says hi back to: {message}"


def wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


@pytest.fixture(autouse=True)
def reset_state():
    reset_job_state()
    reset_pipeline_worker()
    yield
    reset_job_state()
    reset_pipeline_worker()
    configure_artifact_store(None)
    configure_collector(UnconfiguredCollector())
    configure_aggregator(PandasAggregator())
    configure_character_deriver(InferenceCharacterDeriver())
    configure_inference_client(UnconfiguredInferenceClient())


@pytest.fixture()
def store(tmp_path) -> ArtifactStore:
    artifact_store = ArtifactStore(tmp_path / "pipeline")
    configure_artifact_store(artifact_store)
    return artifact_store


@pytest.fixture()
def client(tmp_path, monkeypatch):
    from fastapi.testclient import TestClient

    monkeypatch.setenv("ARTIFACTS_ROOT", str(tmp_path / "pipeline"))
    monkeypatch.setenv("EVENT_KEEPALIVE_SECONDS", "0.05")
    for name in ("COLLECTOR_URL", "COLLECTOR_SOURCE_DIR", "OPENAI_API_KEY"):
        monkeypatch.delenv(name, raising=False)

    from personagen.app import create_app

    app = create_app()
    with TestClient(app) as test_client:
        yield test_client
