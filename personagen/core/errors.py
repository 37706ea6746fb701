from __future__ import annotations


class PersonagenError(Exception):
    """Base class for errors raised by the job and character services."""


class InvalidInput(PersonagenError, ValueError):
    """Raised when a request carries a missing or malformed value."""


class JobAlreadyRunning(PersonagenError):
    """Raised when a job is started for a subject that already has one in flight."""

    def __init__(self, subject: str, day: str) -> None:
        super().__init__(f"a job for {subject} ({day}) is already running")
        self.subject = subject
        self.day = day


class ArtifactNotFound(PersonagenError, LookupError):
    """Raised when an artifact has not been written for the requested key."""

    def __init__(self, key: str) -> None:
        super().__init__(f"artifact not found: {key}")
        self.key = key


class DependencyNotReady(PersonagenError):
    """Raised when an upstream stage artifact required as input is missing."""


class CharacterNotFound(PersonagenError):
    """Raised when a chat turn is attempted before the character exists."""


class InferenceFailure(PersonagenError):
    """Raised when the inference collaborator fails to produce a reply."""


class StageFailure(PersonagenError):
    """Raised inside a pipeline run when a stage collaborator fails."""

    def __init__(self, stage: str, message: str) -> None:
        super().__init__(f"stage {stage} failed: {message}")
        self.stage = stage
        self.reason = message


class CollaboratorNotConfigured(PersonagenError):
    """Raised by placeholder collaborators when no provider is configured."""
