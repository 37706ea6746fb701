"""Character derivation from an analytics summary."""
from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Protocol

import yaml
from pydantic import ValidationError

from personagen.core.schema import AnalyticsSummary, CharacterProfile
from personagen.infrastructure.inference import InferenceClient, get_inference_client

logger = logging.getLogger(__name__)

CONFIG_DIR = Path(__file__).resolve().parent.parent / "config"

_DEFAULT_PROMPT = {
    "system": "Answer with a single JSON object describing a chat persona.",
    "instructions": (
        "Build a character for the account @{subject} from the analytics below. "
        "Return JSON with name, handle, bio, description, system_prompt_prefix "
        "and system_prompt_suffix.\n\n{analytics}"
    ),
    "max_sample_texts": 20,
}

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


class CharacterDerivationError(RuntimeError):
    """Raised when a usable character cannot be derived."""


class CharacterDeriver(Protocol):
    """Contract for character derivation."""

    def derive(self, analytics: dict[str, Any]) -> CharacterProfile:
        """Produce a character profile from an analytics summary document."""


def _load_prompt() -> dict[str, Any]:
    path = CONFIG_DIR / "character_prompt.yaml"
    if not path.exists():
        return dict(_DEFAULT_PROMPT)
    with path.open("r", encoding="utf-8") as fp:
        loaded = yaml.safe_load(fp) or {}
    return {**_DEFAULT_PROMPT, **loaded}


PROMPT = _load_prompt()


def parse_character(reply: str) -> CharacterProfile:
    """Parse a model reply into a profile, tolerating code fences and chatter."""

    text = _FENCE.sub("", reply.strip())
    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end <= start:
        raise CharacterDerivationError("reply does not contain a JSON object")
    try:
        data = json.loads(text[start : end + 1])
    except json.JSONDecodeError as exc:
        raise CharacterDerivationError(f"reply is not valid JSON: {exc.msg}") from exc
    try:
        return CharacterProfile.model_validate(data)
    except ValidationError as exc:
        missing = sorted({str(error["loc"][0]) for error in exc.errors() if error.get("loc")})
        raise CharacterDerivationError(f"character is missing fields: {', '.join(missing)}") from exc


class InferenceCharacterDeriver:
    """Asks the inference client to write the character as JSON."""

    def __init__(self, inference: InferenceClient | None = None, prompt: dict[str, Any] | None = None) -> None:
        self._inference = inference
        self._prompt = prompt or PROMPT

    def _client(self) -> InferenceClient:
        return self._inference or get_inference_client()

    def build_request(self, analytics: dict[str, Any]) -> tuple[str, str]:
        summary = AnalyticsSummary.model_validate(analytics)
        limit = int(self._prompt.get("max_sample_texts") or 0)
        digest = summary.model_dump(mode="json")
        digest["sample_texts"] = digest["sample_texts"][:limit]
        message = str(self._prompt["instructions"]).format(
            subject=summary.subject,
            analytics=json.dumps(digest, ensure_ascii=False, indent=2),
        )
        return str(self._prompt["system"]), message

    def derive(self, analytics: dict[str, Any]) -> CharacterProfile:
        system, message = self.build_request(analytics)
        reply = self._client().complete(system, message)
        profile = parse_character(reply)
        logger.info("derived character %r for %s", profile.name, analytics.get("subject"))
        return profile


_deriver: CharacterDeriver = InferenceCharacterDeriver()


def configure_character_deriver(deriver: CharacterDeriver) -> None:
    """Install the deriver used by the pipeline and the character read-through."""

    global _deriver
    _deriver = deriver


def get_character_deriver() -> CharacterDeriver:
    return _deriver
