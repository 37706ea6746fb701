"""Domain entities for pipeline jobs."""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Callable, Literal

JobState = Literal["pending", "running", "completed", "failed"]

ACTIVE_STATES: frozenset[str] = frozenset({"pending", "running"})
TERMINAL_STATES: frozenset[str] = frozenset({"completed", "failed"})

_STATE_ORDER = {"pending": 0, "running": 1, "completed": 2, "failed": 2}

_SUBJECT_PATTERN = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]{0,63}$")


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


Clock = Callable[[], date]


def normalise_subject(value: Any) -> str | None:
    """Return the canonical subject handle or ``None`` when it is unusable."""

    if not isinstance(value, str):
        return None
    candidate = value.strip().lstrip("@").strip()
    if not _SUBJECT_PATTERN.fullmatch(candidate):
        return None
    return candidate


@dataclass(frozen=True, slots=True)
class JobIdentity:
    """Key shared by every artifact of one pipeline run."""

    subject: str
    day: date

    @property
    def day_label(self) -> str:
        return self.day.isoformat()

    def __str__(self) -> str:
        return f"{self.subject}/{self.day_label}"


@dataclass(frozen=True, slots=True)
class Stage:
    """One ordered pipeline step and the artifact slot it fills."""

    name: str
    category: str
    artifact: str
    skippable: bool = True


COLLECT = Stage(name="collect", category="raw", artifact="records")
AGGREGATE = Stage(name="aggregate", category="analytics", artifact="stats")
CHARACTER = Stage(name="character", category="character", artifact="character")

# Status is derived from the aggregate artifact, the last stage every run has.
TERMINAL_STAGE = AGGREGATE


def stages_for(include_character: bool) -> tuple[Stage, ...]:
    if include_character:
        return (COLLECT, AGGREGATE, CHARACTER)
    return (COLLECT, AGGREGATE)


@dataclass(slots=True)
class JobRecord:
    """Explicit state record for one pipeline run."""

    identity: JobIdentity
    state: JobState = "pending"
    include_character: bool = False
    current_stage: str | None = None
    error: str | None = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None

    @property
    def active(self) -> bool:
        return self.state in ACTIVE_STATES

    def advance(self, state: JobState, *, error: str | None = None) -> None:
        """Move to ``state``; backward transitions are ignored."""

        if self.state in TERMINAL_STATES:
            return
        if _STATE_ORDER[state] < _STATE_ORDER[self.state]:
            return
        self.state = state
        if state in TERMINAL_STATES:
            self.finished_at = datetime.now(timezone.utc)
            self.current_stage = None
        if error is not None:
            self.error = error

    def as_dict(self) -> dict[str, object]:
        return {
            "subject": self.identity.subject,
            "day": self.identity.day_label,
            "state": self.state,
            "include_character": self.include_character,
            "current_stage": self.current_stage,
            "error": self.error,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }
