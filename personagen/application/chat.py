from __future__ import annotations

import logging
from typing import Any, Sequence

from personagen.core.errors import ArtifactNotFound, CharacterNotFound, InferenceFailure, InvalidInput
from personagen.infrastructure import InferenceClient, get_inference_client
from personagen.infrastructure.inference import ChatTurn

from .jobs import JobService, get_job_service

logger = logging.getLogger(__name__)


def _validate_history(history: Any) -> list[ChatTurn]:
    if history is None:
        return []
    if not isinstance(history, (list, tuple)):
        raise InvalidInput("history must be a list of {role, content} turns")
    turns: list[ChatTurn] = []
    for turn in history:
        if not isinstance(turn, dict):
            raise InvalidInput("history must be a list of {role, content} turns")
        role, content = turn.get("role"), turn.get("content")
        if role not in {"user", "assistant"} or not isinstance(content, str):
            raise InvalidInput("history turns need role 'user' or 'assistant' and string content")
        turns.append({"role": role, "content": content})
    return turns


class ChatGateway:
    """Stateless chat turns against an already generated character."""

    def __init__(self, jobs: JobService, inference: InferenceClient | None = None) -> None:
        self._jobs = jobs
        self._inference = inference

    def send_turn(self, subject: Any, message: Any, history: Sequence[ChatTurn] | None = None) -> str:
        if not isinstance(message, str) or not message.strip():
            raise InvalidInput("message is required")
        turns = _validate_history(history)

        identity = self._jobs.resolve_identity(subject)
        try:
            character = self._jobs.read_character(identity)
        except ArtifactNotFound as exc:
            raise CharacterNotFound(
                f"no character generated for {identity.subject} ({identity.day_label})"
            ) from exc
        except ValueError as exc:
            # Covers both invalid JSON and a document missing profile fields.
            raise CharacterNotFound(f"character for {identity.subject} is unreadable") from exc

        client = self._inference or get_inference_client()
        try:
            return client.complete(character.system_context(), message, turns)
        except Exception as exc:
            logger.warning("inference failed for %s: %s", identity, exc)
            raise InferenceFailure(str(exc) or type(exc).__name__) from exc


_gateway = ChatGateway(get_job_service())


def get_chat_gateway() -> ChatGateway:
    return _gateway
