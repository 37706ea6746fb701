"""Domain layer definitions."""

from .jobs import (
    AGGREGATE,
    CHARACTER,
    COLLECT,
    TERMINAL_STAGE,
    JobIdentity,
    JobRecord,
    Stage,
    normalise_subject,
    stages_for,
    utc_today,
)

__all__ = [
    "AGGREGATE",
    "CHARACTER",
    "COLLECT",
    "TERMINAL_STAGE",
    "JobIdentity",
    "JobRecord",
    "Stage",
    "normalise_subject",
    "stages_for",
    "utc_today",
]
