"""Application service layer for job status and artifact reads."""
from __future__ import annotations

import logging
import threading
from typing import Any

from personagen.core.artifacts import ArtifactStore, get_artifact_store
from personagen.core.errors import (
    ArtifactNotFound,
    DependencyNotReady,
    InferenceFailure,
    InvalidInput,
)
from personagen.core.schema import CharacterProfile
from personagen.domain import AGGREGATE, CHARACTER, TERMINAL_STAGE, JobIdentity, normalise_subject
from personagen.domain.jobs import Clock, utc_today
from personagen.infrastructure import InMemoryJobRepository, JobRepository, LogBroadcastHub, get_character_deriver

logger = logging.getLogger(__name__)


class JobService:
    """Read side of the pipeline: status, artifacts and the character read-through."""

    def __init__(
        self,
        repository: JobRepository,
        *,
        store: ArtifactStore | None = None,
        clock: Clock = utc_today,
    ) -> None:
        self._repository = repository
        self._store = store
        self._clock = clock
        self._guard = threading.Lock()
        self._locks: dict[JobIdentity, threading.Lock] = {}

    @property
    def store(self) -> ArtifactStore:
        return self._store or get_artifact_store()

    # ------------------------------------------------------------------
    # identity
    # ------------------------------------------------------------------
    def resolve_identity(self, subject: Any) -> JobIdentity:
        """Identity that read paths use for ``subject``.

        A run keeps the day it started with, so while it is active (or if it
        started today) reads follow it across midnight; otherwise today's key
        is used.
        """

        normalised = normalise_subject(subject)
        if normalised is None:
            raise InvalidInput("subject is required")
        today = self._clock()
        latest = self._repository.latest_for(normalised)
        if latest is not None and (latest.active or latest.identity.day == today):
            return latest.identity
        return JobIdentity(subject=normalised, day=today)

    def _lock_for(self, identity: JobIdentity) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(identity, threading.Lock())

    # ------------------------------------------------------------------
    # status
    # ------------------------------------------------------------------
    def get_status(self, subject: Any) -> dict[str, object]:
        identity = self.resolve_identity(subject)
        record = self._repository.get(identity)
        try:
            analytics = self.store.read(identity, TERMINAL_STAGE.category, TERMINAL_STAGE.artifact)
        except (ArtifactNotFound, OSError, ValueError) as exc:
            # Missing and unreadable look the same to a polling client.
            logger.debug("status probe for %s: %s", identity, exc)
            analytics = None

        return {
            "subject": identity.subject,
            "day": identity.day_label,
            "status": "completed" if analytics is not None else "in_progress",
            "state": record.state if record else "unknown",
            "current_stage": record.current_stage if record else None,
            "error": record.error if record else None,
            "analytics": analytics,
        }

    def list_jobs(self) -> list[dict[str, object]]:
        return [record.as_dict() for record in self._repository.list_jobs()]

    # ------------------------------------------------------------------
    # artifacts
    # ------------------------------------------------------------------
    def get_artifact(self, subject: Any, category: str, name: str) -> Any:
        identity = self.resolve_identity(subject)
        return self.store.read(identity, category, name)

    def read_character(self, identity: JobIdentity) -> CharacterProfile:
        return CharacterProfile.model_validate(
            self.store.read(identity, CHARACTER.category, CHARACTER.artifact)
        )

    def get_or_generate_character(self, subject: Any) -> CharacterProfile:
        """Return the cached character, deriving and persisting it on a miss.

        An unreadable cached character counts as a miss.

        Blocks for as long as the deriver takes; concurrent callers for the same
        identity wait on one derivation.
        """

        identity = self.resolve_identity(subject)

        def derive() -> dict[str, Any]:
            try:
                analytics = self.store.read(identity, AGGREGATE.category, AGGREGATE.artifact)
            except (ArtifactNotFound, ValueError) as exc:
                raise DependencyNotReady(
                    f"analytics for {identity.subject} ({identity.day_label}) are not ready"
                ) from exc

            logger.info("deriving character for %s", identity)
            try:
                profile = get_character_deriver().derive(analytics)
            except Exception as exc:
                logger.warning("character derivation failed for %s: %s", identity, exc)
                raise InferenceFailure(str(exc) or type(exc).__name__) from exc
            return profile.model_dump(mode="json")

        with self._lock_for(identity):
            profile, _ = self.store.get_or_compute(
                identity,
                CHARACTER.category,
                CHARACTER.artifact,
                derive,
                parse=CharacterProfile.model_validate,
            )
            return profile

    # ------------------------------------------------------------------
    # testing helpers
    # ------------------------------------------------------------------
    def reset(self) -> None:
        self._repository.reset()
        with self._guard:
            self._locks.clear()


_repository = InMemoryJobRepository()
_hub = LogBroadcastHub()
_service = JobService(_repository)


def get_job_service() -> JobService:
    """Return the singleton job service for the process."""

    return _service


def get_job_repository() -> JobRepository:
    return _repository


def get_event_hub() -> LogBroadcastHub:
    """Return the process-wide broadcast hub shared by every pipeline run."""

    return _hub


def reset_job_state() -> None:
    """Reset job records and drop live subscribers (used in tests)."""

    _service.reset()
    _hub.shutdown()
