"""Infrastructure layer for job state records."""
from __future__ import annotations

import threading
from typing import Protocol

from personagen.core.errors import JobAlreadyRunning
from personagen.domain import JobIdentity, JobRecord


class JobRepository(Protocol):
    """Persistence contract for job state."""

    def begin(self, identity: JobIdentity, *, include_character: bool = False) -> JobRecord: ...

    def get(self, identity: JobIdentity) -> JobRecord | None: ...

    def latest_for(self, subject: str) -> JobRecord | None: ...

    def list_jobs(self) -> list[JobRecord]: ...

    def reset(self) -> None: ...


class InMemoryJobRepository:
    """Keeps one record per job identity for the lifetime of the process."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: dict[JobIdentity, JobRecord] = {}
        self._latest: dict[str, JobIdentity] = {}

    def begin(self, identity: JobIdentity, *, include_character: bool = False) -> JobRecord:
        """Register a run, rejecting it while the subject already has one in flight.

        Every run gets a fresh record; a re-run of a completed day serves its
        stages from the artifact cache but is still tracked as active.
        """

        with self._lock:
            latest_identity = self._latest.get(identity.subject)
            if latest_identity is not None:
                latest = self._records[latest_identity]
                if latest.active:
                    raise JobAlreadyRunning(identity.subject, latest_identity.day_label)

            record = JobRecord(identity=identity, include_character=include_character)
            self._records[identity] = record
            self._latest[identity.subject] = identity
            return record

    def get(self, identity: JobIdentity) -> JobRecord | None:
        with self._lock:
            return self._records.get(identity)

    def latest_for(self, subject: str) -> JobRecord | None:
        with self._lock:
            identity = self._latest.get(subject)
            return self._records.get(identity) if identity is not None else None

    def list_jobs(self) -> list[JobRecord]:
        with self._lock:
            records = list(self._records.values())
        records.sort(key=lambda record: record.started_at, reverse=True)
        return records

    def reset(self) -> None:
        with self._lock:
            self._records.clear()
            self._latest.clear()
