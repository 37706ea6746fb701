"""Integration with an OpenAI-compatible chat completions API."""
from __future__ import annotations

import logging
from typing import Any, Protocol, Sequence

import httpx

from personagen.core.errors import CollaboratorNotConfigured

logger = logging.getLogger(__name__)

ChatTurn = dict[str, str]

_ROLES = {"user", "assistant"}


class InferenceError(RuntimeError):
    """Raised when the remote model service returns an error."""


class InferenceClient(Protocol):
    """Contract for language-model integrations."""

    def complete(
        self,
        system_context: str,
        message: str,
        history: Sequence[ChatTurn] = (),
    ) -> str:
        """Return the model reply for ``message`` under ``system_context``."""


class UnconfiguredInferenceClient:
    """Placeholder used until an inference client is configured at start-up."""

    def complete(self, system_context: str, message: str, history: Sequence[ChatTurn] = ()) -> str:
        raise CollaboratorNotConfigured("no inference client configured; set OPENAI_API_KEY")


def build_messages(system_context: str, message: str, history: Sequence[ChatTurn] = ()) -> list[dict[str, str]]:
    messages = [{"role": "system", "content": system_context}]
    for turn in history:
        role = str(turn.get("role") or "")
        content = turn.get("content")
        if role in _ROLES and isinstance(content, str) and content:
            messages.append({"role": role, "content": content})
    messages.append({"role": "user", "content": message})
    return messages


class OpenAIChatClient:
    """Minimal client for ``POST {api_base}/chat/completions``."""

    def __init__(
        self,
        api_key: str,
        *,
        model: str = "gpt-4",
        api_base: str = "https://api.openai.com/v1",
        temperature: float | None = None,
        timeout: float = 60.0,
        http_client: httpx.Client | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("api_key is required")
        if not api_base.startswith(("http://", "https://")):
            raise ValueError("api_base must include scheme and host")
        self._api_key = api_key
        self._model = model
        self._url = f"{api_base.rstrip('/')}/chat/completions"
        self._temperature = temperature
        self._client = http_client or httpx.Client(timeout=timeout)
        self._owns_client = http_client is None

    def _build_payload(self, system_context: str, message: str, history: Sequence[ChatTurn]) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self._model,
            "messages": build_messages(system_context, message, history),
        }
        if self._temperature is not None:
            payload["temperature"] = self._temperature
        return payload

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text[:200] or response.reason_phrase
        error = body.get("error") if isinstance(body, dict) else None
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        return response.reason_phrase

    def complete(self, system_context: str, message: str, history: Sequence[ChatTurn] = ()) -> str:
        payload = self._build_payload(system_context, message, history)
        headers = {"Authorization": f"Bearer {self._api_key}"}
        try:
            response = self._client.post(self._url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            raise InferenceError(f"inference request failed: {exc}") from exc

        if response.status_code >= 400:
            raise InferenceError(
                f"inference API returned HTTP {response.status_code}: {self._error_message(response)}"
            )

        try:
            body = response.json()
            content = body["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise InferenceError("inference API returned an unexpected payload") from exc

        if not isinstance(content, str) or not content.strip():
            raise InferenceError("inference API returned an empty reply")
        logger.debug("inference reply received from %s (%s chars)", self._model, len(content))
        return content

    def close(self) -> None:
        if self._owns_client:
            self._client.close()


_client: InferenceClient = UnconfiguredInferenceClient()


def configure_inference_client(client: InferenceClient) -> None:
    """Install the inference client used for character derivation and chat."""

    global _client
    _client = client


def get_inference_client() -> InferenceClient:
    return _client
